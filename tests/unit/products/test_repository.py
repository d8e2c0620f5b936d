"""Unit tests for ProductDjangoRepository."""

from decimal import Decimal

import pytest

from modules.products.models import Product
from modules.products.repositories.django_repository import ProductDjangoRepository

pytestmark = pytest.mark.unit

MISSING_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture()
def repo():
    return ProductDjangoRepository()


class TestProductDjangoRepository:
    def test_sku_is_normalised(self, make_product):
        product = make_product(sku="  ebook-7 ")
        assert product.sku == "EBOOK-7"

    @pytest.mark.parametrize("bad_id", ["not-a-uuid", MISSING_ID])
    def test_get_by_id_returns_none(self, repo, bad_id):
        assert repo.get_by_id(bad_id) is None

    def test_reduce_stock_may_go_negative(self, repo, stocked_product):
        assert repo.reduce_stock(stocked_product.id, 4) == 6
        assert repo.reduce_stock(stocked_product.id, 8) == -2

    def test_reduce_stock_of_a_missing_product(self, repo):
        assert repo.reduce_stock(MISSING_ID, 1) is None

    def test_increase_total_sales(self, repo, stocked_product):
        repo.increase_total_sales(stocked_product.id, 3)
        repo.increase_total_sales(stocked_product.id, 2)

        stocked_product.refresh_from_db()
        assert stocked_product.total_sales == 5

    def test_get_downloads(self, repo, downloadable_product, stocked_product):
        (download,) = repo.get_downloads(downloadable_product.id)
        assert download.download_id == "ebook-pdf"
        assert repo.get_downloads(stocked_product.id) == []

    def test_list_and_delete(self, repo, make_product):
        product = make_product(price=Decimal("5.00"), manage_stock=True)
        make_product()

        assert repo.list({"manage_stock": True}) == [product]
        assert repo.delete(product.id) is True
        assert repo.delete(product.id) is False
        assert not Product.objects.filter(id=product.id).exists()

    def test_managing_stock(self, make_product):
        assert make_product(manage_stock=True, stock_quantity=0).managing_stock
        assert not make_product(manage_stock=True).managing_stock
        assert not make_product(stock_quantity=5).managing_stock
