from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from pkgsync.models import ExceptionOrder, HotelDailyStock, PackageOrder
from pkgsync.services.errors import StateError
from pkgsync.services.fulfillment import record_exception, split_and_process
from pkgsync.services.pricing import money
from pkgsync.services.router import RoutedOrder, route

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    composite_code: str
    check_in_date: date
    platform: str
    ota_order_no: str = ""
    total_amount: Decimal | None = None
    contact_name: str = ""
    contact_phone: str = ""
    contact_email: str = ""


def generate_order_no() -> str:
    return "PKG" + timezone.localtime().strftime("%Y%m%d%H%M%S") + f"{random.randint(1, 99999):05d}"  # noqa: S311


def create_order(routed: RoutedOrder, booking: BookingRequest, *, total_amount: Decimal) -> PackageOrder:
    stay_days = max(1, int(routed.product.stay_days or 1))
    order = PackageOrder.objects.create(
        order_no=generate_order_no(),
        ota_order_no=booking.ota_order_no,
        platform=booking.platform,
        product=routed.product,
        hotel_id=routed.hotel_id,
        room_type_id=routed.room_type_id,
        check_in_date=booking.check_in_date,
        check_out_date=booking.check_in_date + timedelta(days=stay_days),
        stay_days=stay_days,
        total_amount=money(total_amount),
        settlement_amount=money(routed.cost_price),
        contact_name=booking.contact_name,
        contact_phone=booking.contact_phone,
        contact_email=booking.contact_email,
        status=PackageOrder.Status.PAID,
        paid_at=timezone.now(),
    )
    logger.info("Order %s created for %s on %s.", order.order_no, booking.composite_code, booking.check_in_date)
    return order


def unavailable_nights(hotel_id: int, room_type_id: int, check_in: date, stay_days: int) -> list[date]:
    nights = [check_in + timedelta(days=offset) for offset in range(max(1, stay_days))]
    stocks = {
        row.biz_date: row
        for row in HotelDailyStock.objects.filter(hotel_id=hotel_id, room_type_id=room_type_id, biz_date__in=nights)
    }
    return [night for night in nights if night not in stocks or stocks[night].available_quantity < 1]


def existing_order(booking: BookingRequest) -> PackageOrder | None:
    if not booking.ota_order_no:
        return None
    return PackageOrder.objects.filter(platform=booking.platform, ota_order_no=booking.ota_order_no).first()


def accept_booking(booking: BookingRequest) -> PackageOrder:
    existing = existing_order(booking)
    if existing is not None:
        logger.info("OTA order %s already accepted as %s.", booking.ota_order_no, existing.order_no)
        return existing

    routed = route(booking.composite_code, booking.check_in_date)
    stay_days = max(1, int(routed.product.stay_days or 1))
    missing = unavailable_nights(routed.hotel_id, routed.room_type_id, booking.check_in_date, stay_days)
    if missing:
        message = f"No inventory for {booking.composite_code} on {', '.join(day.isoformat() for day in missing)}"
        record_exception(
            None,
            ExceptionOrder.ExceptionType.INVENTORY_INSUFFICIENT,
            message,
            {
                "composite_code": booking.composite_code,
                "ota_order_no": booking.ota_order_no,
                "platform": booking.platform,
                "dates": [day.isoformat() for day in missing],
            },
        )
        raise StateError(message)

    expected = money(routed.price)
    charged = money(booking.total_amount) if booking.total_amount is not None else expected
    try:
        with transaction.atomic():
            order = create_order(routed, booking, total_amount=charged)
            if charged != expected:
                record_exception(
                    order,
                    ExceptionOrder.ExceptionType.PRICE_MISMATCH,
                    f"Charged {charged} but package price is {expected}",
                    {"expected": str(expected), "charged": str(charged), "from_cache": routed.from_cache},
                )
    except IntegrityError:
        existing = existing_order(booking)
        if existing is None:
            raise
        logger.info("OTA order %s was accepted concurrently as %s.", booking.ota_order_no, existing.order_no)
        return existing
    split_and_process(order)
    return order


def cancel_order(order: PackageOrder) -> PackageOrder:
    with transaction.atomic():
        locked = PackageOrder.objects.select_for_update().get(pk=order.pk)
        if locked.is_terminal:
            raise StateError(f"Order {locked.order_no} is {locked.status} and cannot be cancelled.")
        locked.status = PackageOrder.Status.CANCELLED
        locked.cancelled_at = timezone.now()
        locked.save(update_fields=["status", "cancelled_at", "updated_at"])
    logger.info("Order %s cancelled.", locked.order_no)
    order.refresh_from_db()
    return order


def start_handling(exception: ExceptionOrder, handler=None) -> ExceptionOrder:  # noqa: ANN001
    with transaction.atomic():
        locked = ExceptionOrder.objects.select_for_update().get(pk=exception.pk)
        if locked.status != ExceptionOrder.Status.PENDING:
            raise StateError(f"Exception order {locked.pk} is {locked.status}; only pending ones can be picked up.")
        locked.status = ExceptionOrder.Status.PROCESSING
        locked.handler = handler
        locked.save(update_fields=["status", "handler", "updated_at"])
    exception.refresh_from_db()
    return exception


def resolve(exception: ExceptionOrder, remark: str = "") -> ExceptionOrder:
    with transaction.atomic():
        locked = ExceptionOrder.objects.select_for_update().get(pk=exception.pk)
        if locked.status != ExceptionOrder.Status.PROCESSING:
            raise StateError(f"Exception order {locked.pk} is {locked.status}; only ones being handled can be resolved.")
        locked.status = ExceptionOrder.Status.RESOLVED
        locked.resolved_at = timezone.now()
        locked.remark = remark
        locked.save(update_fields=["status", "resolved_at", "remark", "updated_at"])
    exception.refresh_from_db()
    return exception
