"""Unit tests for ``OrderSearch``."""

from __future__ import annotations

import pytest

from modules.orders.config import OrderOptions
from modules.orders.search import OrderSearch

pytestmark = pytest.mark.unit


@pytest.fixture()
def search():
    return OrderSearch()


@pytest.fixture()
def order(make_order):
    return make_order(
        shipping={
            "first_name": "Charles",
            "last_name": "Babbage",
            "city": "Teignmouth",
        }
    )


class TestOrderSearch:
    @pytest.mark.parametrize("term", ["ada@example", "LONDON", "ond", "teignmouth"])
    def test_matches_contact_fields(self, search, order, term):
        assert search.search(term) == {order.id}

    @pytest.mark.parametrize("term", ["Ada Lovelace", "ada love", "Charles Babbage"])
    def test_matches_full_names(self, search, order, term):
        assert search.search(term) == {order.id}

    def test_matches_item_names(self, search, order):
        assert search.search("service") == {order.id}

    def test_numeric_term_matches_the_order_id(self, search, order):
        assert order.id in search.search(str(order.id))

    def test_numeric_term_for_a_missing_order(self, search, order):
        assert search.search("999999") == set()

    @pytest.mark.parametrize("term", ["²", "½", "1²"])
    def test_non_ascii_digits_are_free_text(self, search, order, term):
        assert search.search(term) == set()

    def test_order_prefix_is_stripped(self, search, order):
        assert order.id in search.search(f"Order #{order.id}")

    @pytest.mark.parametrize("term", ["", "   ", "Order #"])
    def test_blank_term(self, search, order, term):
        assert search.search(term) == set()

    def test_no_match(self, search, order):
        assert search.search("nobody@nowhere") == set()

    def test_wildcards_are_live_by_default(self, search, order):
        assert search.search("Lo_don") == {order.id}

    def test_wildcards_can_be_escaped(self, order):
        escaped = OrderSearch(lambda: OrderOptions(search_escape_wildcards=True))
        assert escaped.search("Lo_don") == set()
        assert escaped.search("London") == {order.id}

    def test_without_search_fields_only_ids_match(self, order):
        ids_only = OrderSearch(lambda: OrderOptions(search_fields=()))
        assert ids_only.search("London") == set()
        assert ids_only.search(str(order.id)) == {order.id}

    def test_reads_store_options(self, settings, order):
        settings.ORDERS = {**settings.ORDERS, "SEARCH_ESCAPE_WILDCARDS": True}
        assert OrderSearch().search("%ondon") == set()

    def test_clean_term(self):
        assert OrderSearch.clean_term("  Order #42 ") == "42"
        assert OrderSearch.clean_term(None) == ""
