"""Order split and per-item fulfillment.

A paid package order is split into one ticket item per bundled ticket and a
single hotel item covering the stay. Items move PENDING -> PROCESSING ->
SUCCESS/FAILED and the order status is rolled up from its items.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

from django.db import OperationalError, transaction
from django.utils import timezone

from pkgsync.models import (
    ExceptionOrder,
    HotelDailyStock,
    PackageOrder,
    PackageOrderItem,
    ResourceProvider,
    RoomType,
    Ticket,
    TicketPrice,
)
from pkgsync.services.errors import StateError, UpstreamPushError
from pkgsync.services.pricing import ZERO, money
from pkgsync.services.resources import ResourceBookingClient

logger = logging.getLogger(__name__)

ItemStatus = PackageOrderItem.Status
OrderStatus = PackageOrder.Status


def record_exception(
    order: PackageOrder | None,
    exception_type: str,
    message: str,
    data: dict | None = None,
) -> ExceptionOrder:
    exception = ExceptionOrder.objects.create(
        order=order,
        exception_type=exception_type,
        exception_message=message[:2000],
        exception_data=data or {},
    )
    logger.warning(
        "Exception order %s recorded (%s) for order %s: %s",
        exception.pk,
        exception_type,
        order.pk if order else None,
        message,
    )
    return exception


def rollup_order_status(order: PackageOrder) -> str:
    statuses = list(order.items.values_list("status", flat=True))
    if not statuses:
        return order.status

    target = None
    if all(status == ItemStatus.SUCCESS for status in statuses):
        target = OrderStatus.CONFIRMED
    elif ItemStatus.FAILED in statuses and not any(
        status in (ItemStatus.PENDING, ItemStatus.PROCESSING) for status in statuses
    ):
        target = OrderStatus.FAILED
    if target is None:
        return order.status

    changes = {"status": target, "updated_at": timezone.now()}
    if target == OrderStatus.CONFIRMED:
        changes["confirmed_at"] = changes["updated_at"]
    updated = PackageOrder.objects.filter(pk=order.pk, status=OrderStatus.PAID).update(**changes)
    order.refresh_from_db(fields=["status", "confirmed_at", "updated_at"])
    if updated:
        logger.info("Order %s rolled up to %s.", order.order_no, target)
    return order.status


def _ticket_unit_price(ticket_id: int, day) -> Decimal:  # noqa: ANN001
    price = TicketPrice.objects.filter(ticket_id=ticket_id, date=day).first()
    return money(price.sale_price) if price else ZERO


def _hotel_night_prices(order: PackageOrder) -> list[Decimal]:
    stocks = {
        row.biz_date: row
        for row in HotelDailyStock.objects.filter(
            hotel_id=order.hotel_id,
            room_type_id=order.room_type_id,
            biz_date__in=order.stay_dates(),
        )
    }
    return [money(stocks[day].sale_price) if day in stocks else ZERO for day in order.stay_dates()]


def build_items(order: PackageOrder) -> list[PackageOrderItem]:
    items = []
    for bundle_item in order.product.bundle_items.select_related("ticket").order_by("id"):
        unit_price = _ticket_unit_price(bundle_item.ticket_id, order.check_in_date)
        items.append(
            PackageOrderItem(
                order=order,
                item_type=PackageOrderItem.ItemType.TICKET,
                resource_id=bundle_item.ticket_id,
                resource_name=bundle_item.ticket.name,
                quantity=bundle_item.quantity,
                unit_price=unit_price,
                total_price=money(unit_price * bundle_item.quantity),
                status=ItemStatus.PENDING,
            )
        )

    nights = _hotel_night_prices(order)
    items.append(
        PackageOrderItem(
            order=order,
            item_type=PackageOrderItem.ItemType.HOTEL,
            resource_id=order.room_type_id,
            resource_name=f"{order.hotel.name} / {order.room_type.name}",
            quantity=1,
            unit_price=nights[0] if nights else ZERO,
            total_price=money(sum(nights, ZERO)),
            status=ItemStatus.PENDING,
        )
    )
    return items


def _enqueue_processing(order_id: int) -> None:
    from pkgsync.tasks import process_split_order

    try:
        process_split_order.delay(order_id)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to enqueue order processing for order %s.", order_id)


def split_and_process(order: PackageOrder) -> list[PackageOrderItem]:
    try:
        with transaction.atomic():
            locked = (
                PackageOrder.objects.select_for_update()
                .select_related("product", "hotel", "room_type")
                .get(pk=order.pk)
            )
            if locked.status != OrderStatus.PAID:
                raise StateError(f"Order {locked.order_no} is {locked.status}; only paid orders can be split.")
            if locked.items.exists():
                raise StateError(f"Order {locked.order_no} has already been split.")

            items = build_items(locked)
            for item in items:
                item.save()
            transaction.on_commit(lambda: _enqueue_processing(locked.pk))
    except StateError:
        raise
    except Exception as exc:
        record_exception(
            order,
            ExceptionOrder.ExceptionType.SPLIT_ORDER_FAILED,
            f"Order split failed: {exc}",
            {"order_no": order.order_no},
        )
        raise

    logger.info("Order %s split into %s items.", order.order_no, len(items))
    return items


def resolve_provider(item: PackageOrderItem) -> tuple[bool, ResourceProvider | None]:
    if item.item_type == PackageOrderItem.ItemType.TICKET:
        ticket = Ticket.objects.select_related("provider").filter(pk=item.resource_id).first()
        return (ticket is not None, ticket.provider if ticket else None)
    room_type = RoomType.objects.select_related("hotel__provider").filter(pk=item.resource_id).first()
    return (room_type is not None, room_type.hotel.provider if room_type else None)


def _failure_type(item: PackageOrderItem) -> str:
    if item.item_type == PackageOrderItem.ItemType.TICKET:
        return ExceptionOrder.ExceptionType.TICKET_ORDER_FAILED
    return ExceptionOrder.ExceptionType.HOTEL_ORDER_FAILED


def _finish(item: PackageOrderItem, *, success: bool, resource_order_no: str = "", error_message: str = "") -> None:
    item.status = ItemStatus.SUCCESS if success else ItemStatus.FAILED
    item.resource_order_no = resource_order_no
    item.error_message = error_message
    item.save(update_fields=["status", "resource_order_no", "error_message", "updated_at"])


def process_item(
    item: PackageOrderItem,
    client_factory: Callable[[ResourceProvider], ResourceBookingClient] = ResourceBookingClient,
) -> PackageOrderItem:
    with transaction.atomic():
        locked = PackageOrderItem.objects.select_for_update().get(pk=item.pk)
        if locked.status != ItemStatus.PENDING:
            raise StateError(f"Item {locked.pk} is {locked.status}; only pending items can be processed.")
        locked.status = ItemStatus.PROCESSING
        locked.processed_at = timezone.now()
        locked.save(update_fields=["status", "processed_at", "updated_at"])

    order = PackageOrder.objects.select_related("hotel", "room_type").get(pk=locked.order_id)
    crash = None
    try:
        _settle(locked, order, client_factory)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Item %s of order %s crashed during fulfillment.", locked.pk, order.order_no)
        _finish(locked, success=False, error_message=f"Unexpected error: {exc}")
        record_exception(
            order,
            _failure_type(locked),
            f"Fulfillment crashed: {exc}",
            {"item_id": locked.pk, "error_type": exc.__class__.__name__},
        )
        crash = exc

    rollup_order_status(order)
    item.refresh_from_db()
    if isinstance(crash, OperationalError):
        raise crash
    return item


def _settle(
    locked: PackageOrderItem,
    order: PackageOrder,
    client_factory: Callable[[ResourceProvider], ResourceBookingClient],
) -> None:
    found, provider = resolve_provider(locked)
    if not found:
        message = f"{locked.item_type} resource {locked.resource_id} not found"
        _finish(locked, success=False, error_message=message)
        record_exception(order, _failure_type(locked), message, {"item_id": locked.pk})
    elif provider is None or not provider.auto_confirms:
        _finish(locked, success=True, resource_order_no=f"MANUAL_{locked.pk}")
    else:
        try:
            confirmation = client_factory(provider).book(locked, order)
        except UpstreamPushError as exc:
            _finish(locked, success=False, error_message=str(exc))
            record_exception(
                order,
                _failure_type(locked),
                str(exc),
                {"item_id": locked.pk, "provider": provider.code, "error_type": exc.error_type},
            )
        else:
            _finish(locked, success=True, resource_order_no=confirmation.resource_order_no)


def process_order_items(order: PackageOrder) -> dict:
    processed, skipped = 0, 0
    for item in list(order.items.filter(status=ItemStatus.PENDING).order_by("id")):
        try:
            process_item(item)
            processed += 1
        except StateError as exc:
            logger.info("Skipping item %s: %s", item.pk, exc)
            skipped += 1
    status = rollup_order_status(order)
    return {"order_id": order.pk, "processed": processed, "skipped": skipped, "status": status}
