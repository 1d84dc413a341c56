from __future__ import annotations

from rest_framework import serializers

from pkgsync.models import ExceptionOrder, OtaPlatform
from pkgsync.services import codes


class RouteLookupSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=64)
    date = serializers.DateField()

    def validate_code(self, value: str) -> str:
        value = value.strip()
        if not codes.validate(value):
            raise serializers.ValidationError("Expected a code of the form PKG|room|hotel|product.")
        return value


class RoutedOrderSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(source="product.pk")
    product_code = serializers.CharField(source="product.code", allow_null=True)
    hotel_id = serializers.IntegerField()
    room_type_id = serializers.IntegerField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    from_cache = serializers.BooleanField()
    stock_available = serializers.IntegerField()


class ProductSyncSerializer(serializers.Serializer):
    platform = serializers.ChoiceField(choices=OtaPlatform.values)


class ExceptionResolveSerializer(serializers.Serializer):
    remark = serializers.CharField(max_length=2000, required=False, allow_blank=True, default="")


class ExceptionOrderSerializer(serializers.ModelSerializer):
    order_no = serializers.CharField(source="order.order_no", default=None, read_only=True)
    handler_id = serializers.IntegerField(read_only=True, allow_null=True)

    class Meta:
        model = ExceptionOrder
        fields = (
            "id",
            "order_no",
            "exception_type",
            "exception_message",
            "exception_data",
            "status",
            "handler_id",
            "resolved_at",
            "remark",
            "created_at",
        )
        read_only_fields = fields
