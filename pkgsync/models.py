from datetime import date, timedelta
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class PriceSource(models.TextChoices):
    MANUAL = "manual", "Manual"
    API = "api", "Pushed via API"


class OtaPlatform(models.TextChoices):
    CTRIP = "ctrip", "Ctrip"
    MEITUAN = "meituan", "Meituan"
    FLIGGY = "fliggy", "Fliggy"


class ResourceProvider(TimeStampedModel):
    class OrderMode(models.TextChoices):
        MANUAL = "manual", "Manual"
        AUTO = "auto", "Auto confirm"

    code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=128)
    api_url = models.URLField(max_length=500, blank=True)
    api_key = models.CharField(max_length=255, blank=True)
    order_mode = models.CharField(max_length=16, choices=OrderMode.choices, default=OrderMode.MANUAL)
    is_active = models.BooleanField(default=True)

    def __str__(self) -> str:
        return f"ResourceProvider<{self.code}>"

    @property
    def auto_confirms(self) -> bool:
        return bool(self.is_active and self.api_url and self.order_mode == self.OrderMode.AUTO)


class Hotel(TimeStampedModel):
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=64, blank=True)
    provider = models.ForeignKey(ResourceProvider, null=True, blank=True, on_delete=models.SET_NULL, related_name="hotels")
    external_hotel_id = models.CharField(max_length=128, blank=True)
    is_active = models.BooleanField(default=True)

    def __str__(self) -> str:
        return f"Hotel<{self.name}>"


class RoomType(TimeStampedModel):
    hotel = models.ForeignKey(Hotel, on_delete=models.CASCADE, related_name="room_types")
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=64, blank=True)
    external_room_id = models.CharField(max_length=128, blank=True)
    is_active = models.BooleanField(default=True)

    def __str__(self) -> str:
        return f"RoomType<{self.hotel_id}:{self.name}>"


class Ticket(TimeStampedModel):
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=64, blank=True)
    provider = models.ForeignKey(ResourceProvider, null=True, blank=True, on_delete=models.SET_NULL, related_name="tickets")
    external_ticket_id = models.CharField(max_length=128, blank=True)
    is_active = models.BooleanField(default=True)

    def __str__(self) -> str:
        return f"Ticket<{self.name}>"


class HotelDailyStock(TimeStampedModel):
    hotel = models.ForeignKey(Hotel, on_delete=models.CASCADE, related_name="daily_stocks")
    room_type = models.ForeignKey(RoomType, on_delete=models.CASCADE, related_name="daily_stocks")
    biz_date = models.DateField()
    sale_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    cost_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    stock_total = models.IntegerField(default=0)
    stock_sold = models.IntegerField(default=0)
    stock_available = models.IntegerField(default=0)
    source = models.CharField(max_length=16, choices=PriceSource.choices, default=PriceSource.MANUAL)
    is_closed = models.BooleanField(default=False)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["hotel", "room_type", "biz_date"],
                name="pkgsync_hoteldailystock_unique_day",
            ),
        ]
        indexes = [
            models.Index(fields=["room_type", "biz_date"]),
        ]
        ordering = ["biz_date"]

    def __str__(self) -> str:
        return f"HotelDailyStock<{self.room_type_id}:{self.biz_date}>"

    @property
    def available_quantity(self) -> int:
        if self.is_closed:
            return 0
        return max(0, int(self.stock_available))


class TicketPrice(TimeStampedModel):
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, related_name="prices")
    date = models.DateField()
    sale_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    cost_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    stock_available = models.IntegerField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["ticket", "date"], name="pkgsync_ticketprice_unique_day"),
        ]
        ordering = ["date"]

    def __str__(self) -> str:
        return f"TicketPrice<{self.ticket_id}:{self.date}>"


class PackageProductQuerySet(models.QuerySet):
    def alive(self):  # noqa: ANN201
        return self.filter(deleted_at__isnull=True)

    def enabled(self):  # noqa: ANN201
        return self.alive().filter(status=PackageProduct.Status.ENABLED)


class PackageProductManager(models.Manager.from_queryset(PackageProductQuerySet)):
    def get_queryset(self):  # noqa: ANN201
        return super().get_queryset().alive()


class PackageProduct(TimeStampedModel):
    class Status(models.TextChoices):
        ENABLED = "enabled", "Enabled"
        DISABLED = "disabled", "Disabled"

    code = models.CharField(max_length=64, unique=True, blank=True, null=True)
    name = models.CharField(max_length=255)
    stay_days = models.PositiveSmallIntegerField(default=1)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ENABLED, db_index=True)
    sale_start_date = models.DateField(null=True, blank=True)
    sale_end_date = models.DateField(null=True, blank=True)
    deleted_at = models.DateTimeField(null=True, blank=True, db_index=True)

    objects = PackageProductManager()
    all_objects = PackageProductQuerySet.as_manager()

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"PackageProduct<{self.code or self.pk}>"

    @property
    def is_enabled(self) -> bool:
        return self.status == self.Status.ENABLED and self.deleted_at is None

    def soft_delete(self) -> None:
        self.deleted_at = timezone.now()
        self.save(update_fields=["deleted_at", "updated_at"])

    def effective_sale_window(
        self,
        horizon_days: int,
        today: date | None = None,
    ) -> tuple[date, date] | None:
        today = today or timezone.localdate()
        horizon_end = today + timedelta(days=max(1, horizon_days) - 1)
        start = max(today, self.sale_start_date or today)
        end = min(horizon_end, self.sale_end_date or horizon_end)
        if start > end:
            return None
        return start, end

    def is_date_in_sale_range(self, day: date) -> bool:
        if self.sale_start_date and day < self.sale_start_date:
            return False
        if self.sale_end_date and day > self.sale_end_date:
            return False
        return True


class BundleItem(TimeStampedModel):
    product = models.ForeignKey(PackageProduct, on_delete=models.CASCADE, related_name="bundle_items")
    ticket = models.ForeignKey(Ticket, on_delete=models.CASCADE, related_name="bundle_items")
    quantity = models.PositiveSmallIntegerField(default=1)

    class Meta:
        indexes = [
            models.Index(fields=["ticket"], name="pkgsync_bundle_ticket_idx"),
        ]

    def __str__(self) -> str:
        return f"BundleItem<{self.product_id}:{self.ticket_id}x{self.quantity}>"


class HotelRoomAssociation(TimeStampedModel):
    product = models.ForeignKey(PackageProduct, on_delete=models.CASCADE, related_name="hotel_room_types")
    hotel = models.ForeignKey(Hotel, on_delete=models.CASCADE, related_name="package_associations")
    room_type = models.ForeignKey(RoomType, on_delete=models.CASCADE, related_name="package_associations")

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["product", "hotel", "room_type"],
                name="pkgsync_hotelroomassociation_unique",
            ),
        ]
        indexes = [
            models.Index(fields=["hotel", "room_type"], name="pkgsync_assoc_hotel_room_idx"),
        ]

    def __str__(self) -> str:
        return f"HotelRoomAssociation<{self.product_id}:{self.hotel_id}:{self.room_type_id}>"


class DailyPrice(models.Model):
    product = models.ForeignKey(PackageProduct, on_delete=models.CASCADE, related_name="daily_prices")
    hotel = models.ForeignKey(Hotel, on_delete=models.CASCADE, related_name="+")
    room_type = models.ForeignKey(RoomType, on_delete=models.CASCADE, related_name="+")
    biz_date = models.DateField()
    sale_price = models.DecimalField(max_digits=10, decimal_places=2)
    cost_price = models.DecimalField(max_digits=10, decimal_places=2)
    composite_code = models.CharField(max_length=64, db_index=True)
    last_updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["product", "hotel", "room_type", "biz_date"],
                name="pkgsync_dailyprice_unique_cell",
            ),
        ]
        indexes = [
            models.Index(fields=["product", "biz_date"]),
        ]
        ordering = ["biz_date"]

    def __str__(self) -> str:
        return f"DailyPrice<{self.composite_code}:{self.biz_date}>"


class PackageOtaProduct(TimeStampedModel):
    class PushStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        SUCCESS = "success", "Success"
        FAILED = "failed", "Failed"

    product = models.ForeignKey(PackageProduct, on_delete=models.CASCADE, related_name="ota_listings")
    platform = models.CharField(max_length=16, choices=OtaPlatform.choices)
    is_active = models.BooleanField(default=True)
    push_status = models.CharField(max_length=16, choices=PushStatus.choices, default=PushStatus.PENDING)
    push_message = models.TextField(blank=True)
    pushed_at = models.DateTimeField(null=True, blank=True)
    push_completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ("product", "platform")

    def __str__(self) -> str:
        return f"PackageOtaProduct<{self.product_id}:{self.platform}>"


class PackageOrder(TimeStampedModel):
    class Status(models.TextChoices):
        PAID = "paid", "Paid"
        CONFIRMED = "confirmed", "Confirmed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"

    TERMINAL_STATUSES = {Status.CONFIRMED, Status.FAILED, Status.CANCELLED}

    order_no = models.CharField(max_length=32, unique=True)
    ota_order_no = models.CharField(max_length=64, blank=True, db_index=True)
    platform = models.CharField(max_length=16, choices=OtaPlatform.choices)
    product = models.ForeignKey(PackageProduct, on_delete=models.PROTECT, related_name="orders")
    hotel = models.ForeignKey(Hotel, on_delete=models.PROTECT, related_name="package_orders")
    room_type = models.ForeignKey(RoomType, on_delete=models.PROTECT, related_name="package_orders")
    check_in_date = models.DateField()
    check_out_date = models.DateField()
    stay_days = models.PositiveSmallIntegerField(default=1)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    settlement_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    contact_name = models.CharField(max_length=128, blank=True)
    contact_phone = models.CharField(max_length=32, blank=True)
    contact_email = models.EmailField(blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PAID, db_index=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["platform", "ota_order_no"],
                condition=~models.Q(ota_order_no=""),
                name="pkgsync_packageorder_unique_ota_order",
            ),
        ]

    def __str__(self) -> str:
        return f"PackageOrder<{self.order_no}>"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def stay_dates(self) -> list[date]:
        nights = max(1, int(self.stay_days or 1))
        return [self.check_in_date + timedelta(days=offset) for offset in range(nights)]


class PackageOrderItem(TimeStampedModel):
    class ItemType(models.TextChoices):
        TICKET = "ticket", "Ticket"
        HOTEL = "hotel", "Hotel"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        SUCCESS = "success", "Success"
        FAILED = "failed", "Failed"

    order = models.ForeignKey(PackageOrder, on_delete=models.CASCADE, related_name="items")
    item_type = models.CharField(max_length=16, choices=ItemType.choices)
    resource_id = models.BigIntegerField()
    resource_name = models.CharField(max_length=255, blank=True)
    quantity = models.PositiveSmallIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    total_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)
    resource_order_no = models.CharField(max_length=128, blank=True)
    error_message = models.TextField(blank=True)
    retry_count = models.PositiveSmallIntegerField(default=0)
    max_retries = models.PositiveSmallIntegerField(default=3)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"PackageOrderItem<{self.order_id}:{self.item_type}:{self.resource_id}>"


class ExceptionOrder(TimeStampedModel):
    class ExceptionType(models.TextChoices):
        SPLIT_ORDER_FAILED = "split_order_failed", "Split failed"
        TICKET_ORDER_FAILED = "ticket_order_failed", "Ticket order failed"
        HOTEL_ORDER_FAILED = "hotel_order_failed", "Hotel order failed"
        PRICE_MISMATCH = "price_mismatch", "Price mismatch"
        INVENTORY_INSUFFICIENT = "inventory_insufficient", "Inventory insufficient"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        RESOLVED = "resolved", "Resolved"

    order = models.ForeignKey(PackageOrder, null=True, blank=True, on_delete=models.CASCADE, related_name="exception_orders")
    exception_type = models.CharField(max_length=32, choices=ExceptionType.choices)
    exception_message = models.TextField(blank=True)
    exception_data = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING, db_index=True)
    handler = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="handled_exception_orders",
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    remark = models.TextField(blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "exception_type"]),
        ]

    def __str__(self) -> str:
        return f"ExceptionOrder<{self.exception_type}:{self.status}>"
