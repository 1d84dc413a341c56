"""Maps source-data mutations to the package products whose prices depend on them."""
from __future__ import annotations

import logging
from typing import Iterable

from django.db import transaction

from pkgsync.models import BundleItem, HotelDailyStock, HotelRoomAssociation, TicketPrice

logger = logging.getLogger(__name__)


def products_for_stock(hotel_id: int, room_type_id: int) -> list[int]:
    return list(
        HotelRoomAssociation.objects.filter(hotel_id=hotel_id, room_type_id=room_type_id)
        .values_list("product_id", flat=True)
        .distinct()
        .order_by("product_id")
    )


def products_for_ticket(ticket_id: int) -> list[int]:
    return list(
        BundleItem.objects.filter(ticket_id=ticket_id)
        .values_list("product_id", flat=True)
        .distinct()
        .order_by("product_id")
    )


def affected_products(instance) -> list[int]:  # noqa: ANN001
    if isinstance(instance, (BundleItem, HotelRoomAssociation)):
        return [instance.product_id]
    if isinstance(instance, HotelDailyStock):
        return products_for_stock(instance.hotel_id, instance.room_type_id)
    if isinstance(instance, TicketPrice):
        return products_for_ticket(instance.ticket_id)
    return []


def _enqueue_rebuild(product_id: int) -> None:
    from pkgsync.tasks import rebuild_product_prices

    try:
        rebuild_product_prices.delay(product_id)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to enqueue price rebuild for product %s.", product_id)


def schedule_rebuilds(product_ids: Iterable[int]) -> list[int]:
    scheduled = sorted({int(product_id) for product_id in product_ids if product_id})
    for product_id in scheduled:
        transaction.on_commit(lambda product_id=product_id: _enqueue_rebuild(product_id))
    return scheduled


def react_to_change(instance) -> list[int]:  # noqa: ANN001
    product_ids = affected_products(instance)
    if product_ids:
        logger.debug(
            "%s %s changed; scheduling rebuild for products %s.",
            type(instance).__name__,
            instance.pk,
            product_ids,
        )
    return schedule_rebuilds(product_ids)
