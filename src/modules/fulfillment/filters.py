import django_filters

from modules.fulfillment.constants import SubOrderStatus
from modules.fulfillment.models import Batch


class BatchFilter(django_filters.FilterSet):
    status = django_filters.ChoiceFilter(
        field_name="sub_orders__status", choices=SubOrderStatus.choices, distinct=True
    )
    shop = django_filters.CharFilter(field_name="sub_orders__shop_id", distinct=True)
    start_date = django_filters.DateFilter(field_name="created_at", lookup_expr="gte")
    end_date = django_filters.DateFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = Batch
        fields = ["status", "shop", "start_date", "end_date"]
