import django_filters

from modules.orders.constants import OrderStatus
from modules.orders.models import OrderNote


class OrderNoteFilter(django_filters.FilterSet):
    customer = django_filters.BooleanFilter(field_name="is_customer_note")
    status = django_filters.ChoiceFilter(
        field_name="new_status", choices=OrderStatus.choices
    )
    added_by = django_filters.CharFilter(field_name="added_by", lookup_expr="iexact")
    start_date = django_filters.DateFilter(field_name="created_at", lookup_expr="gte")
    end_date = django_filters.DateFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = OrderNote
        fields = [
            "customer",
            "status",
            "added_by",
            "start_date",
            "end_date",
        ]
