"""Materialized per-day package prices.

Rows are derived from hotel stock prices and ticket prices and can be
rebuilt at any time. A rebuild replaces the product's rows inside its
effective sale window in one transaction holding the product row lock.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from pkgsync.models import DailyPrice, HotelDailyStock, HotelRoomAssociation, PackageProduct, TicketPrice
from pkgsync.services import codes
from pkgsync.services.pricing import combine_prices, effective_sale_window

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 500


@dataclass
class RebuildResult:
    product_id: int
    status: str
    rows_written: int = 0
    window: tuple[date, date] | None = None
    message: str = ""

    @property
    def rebuilt(self) -> bool:
        return self.status == "rebuilt"


@dataclass
class BatchRebuildResult:
    rebuilt: int = 0
    skipped: int = 0
    failed: list[int] = field(default_factory=list)
    purged_rows: int = 0

    def as_dict(self) -> dict:
        return {
            "rebuilt": self.rebuilt,
            "skipped": self.skipped,
            "failed": list(self.failed),
            "purged_rows": self.purged_rows,
        }


def _date_range(start: date, end: date) -> list[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def active_associations(product: PackageProduct) -> list[HotelRoomAssociation]:
    return list(
        HotelRoomAssociation.objects.filter(product=product, room_type__is_active=True)
        .select_related("hotel", "room_type")
        .order_by("id")
    )


def _stage_rows(
    product: PackageProduct,
    associations: list[HotelRoomAssociation],
    bundle_items: list,
    days: list[date],
) -> list[DailyPrice]:
    start, end = days[0], days[-1]
    stock_filter = Q()
    for association in associations:
        stock_filter |= Q(hotel_id=association.hotel_id, room_type_id=association.room_type_id)
    stocks = {
        (row.hotel_id, row.room_type_id, row.biz_date): row
        for row in HotelDailyStock.objects.filter(stock_filter, biz_date__range=(start, end))
    }
    ticket_prices: dict[date, dict[int, TicketPrice]] = defaultdict(dict)
    for row in TicketPrice.objects.filter(
        ticket_id__in={item.ticket_id for item in bundle_items},
        date__range=(start, end),
    ):
        ticket_prices[row.date][row.ticket_id] = row

    now = timezone.now()
    staged: list[DailyPrice] = []
    for association in associations:
        code = codes.generate(product.pk, association.hotel_id, association.room_type_id)
        for day in days:
            cell = combine_prices(
                stocks.get((association.hotel_id, association.room_type_id, day)),
                ticket_prices.get(day, {}),
                bundle_items,
            )
            staged.append(
                DailyPrice(
                    product_id=product.pk,
                    hotel_id=association.hotel_id,
                    room_type_id=association.room_type_id,
                    biz_date=day,
                    sale_price=cell.sale_price,
                    cost_price=cell.cost_price,
                    composite_code=code,
                    last_updated_at=now,
                )
            )
    return staged


def replace_window(product: PackageProduct, start: date, end: date, rows: Iterable[DailyPrice]) -> int:
    rows = list(rows)
    with transaction.atomic():
        outside, _ = (
            DailyPrice.objects.filter(product_id=product.pk).exclude(biz_date__range=(start, end)).delete()
        )
        DailyPrice.objects.filter(product_id=product.pk, biz_date__range=(start, end)).delete()
        DailyPrice.objects.bulk_create(rows, batch_size=INSERT_BATCH_SIZE)
    if outside:
        logger.info(
            "Dropped %s price rows outside %s..%s for product %s.",
            outside,
            start.isoformat(),
            end.isoformat(),
            product.pk,
        )
    return len(rows)


def _lock_product(product_id: int) -> PackageProduct | None:
    return PackageProduct.all_objects.select_for_update().filter(pk=product_id).first()


def rebuild(product: PackageProduct, today: date | None = None) -> RebuildResult:
    window = effective_sale_window(product, today=today)
    if window is None:
        remaining = DailyPrice.objects.filter(product_id=product.pk).count()
        logger.warning(
            "Product %s has an empty sale window; %s cached rows left as orphaned cache.",
            product.pk,
            remaining,
        )
        return RebuildResult(product_id=product.pk, status="skipped_window", message="empty sale window")

    start, end = window
    with transaction.atomic():
        locked = _lock_product(product.pk)
        if locked is None:
            return RebuildResult(product_id=product.pk, status="skipped_missing", window=window, message="product not found")

        associations = active_associations(locked)
        bundle_items = list(locked.bundle_items.select_related("ticket").order_by("id"))
        if not associations or not bundle_items:
            logger.info(
                "Product %s skipped: %s active associations, %s bundle items.",
                locked.pk,
                len(associations),
                len(bundle_items),
            )
            return RebuildResult(
                product_id=locked.pk,
                status="skipped_config",
                window=window,
                message="no active hotel room types or bundle items",
            )

        rows = _stage_rows(locked, associations, bundle_items, _date_range(start, end))
        written = replace_window(locked, start, end, rows)

    logger.info(
        "Rebuilt %s price rows for product %s over %s..%s.",
        written,
        product.pk,
        start.isoformat(),
        end.isoformat(),
    )
    return RebuildResult(product_id=product.pk, status="rebuilt", rows_written=written, window=window)


def cached_rows(
    product: PackageProduct,
    hotel_id: int,
    room_type_id: int,
    dates: Iterable[date] | None = None,
    window: tuple[date, date] | None = None,
):  # noqa: ANN201
    queryset = DailyPrice.objects.filter(product_id=product.pk, hotel_id=hotel_id, room_type_id=room_type_id)
    if dates is not None:
        queryset = queryset.filter(biz_date__in=list(dates))
    elif window is not None:
        queryset = queryset.filter(biz_date__range=window)
    return queryset.order_by("biz_date")


def purge_orphaned_rows(product: PackageProduct, today: date | None = None) -> int:
    window = effective_sale_window(product, today=today)
    queryset = DailyPrice.objects.filter(product_id=product.pk)
    if window is not None:
        queryset = queryset.exclude(biz_date__range=window)
    deleted, _ = queryset.delete()
    if deleted:
        logger.info("Purged %s orphaned price rows for product %s.", deleted, product.pk)
    return deleted


def rebuild_all(today: date | None = None) -> dict:
    result = BatchRebuildResult()
    for product in PackageProduct.objects.enabled().order_by("id").iterator():
        try:
            outcome = rebuild(product, today=today)
            result.purged_rows += purge_orphaned_rows(product, today=today)
        except Exception:
            logger.exception("Price rebuild failed for product %s.", product.pk)
            result.failed.append(product.pk)
            continue
        if outcome.rebuilt:
            result.rebuilt += 1
        else:
            result.skipped += 1
    return result.as_dict()
