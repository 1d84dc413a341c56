"""Pushes cached package prices and derived inventory to OTA platforms."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable

from pkgsync.models import HotelDailyStock, HotelRoomAssociation, OtaPlatform, PackageProduct
from pkgsync.services import codes
from pkgsync.services.errors import ConfigurationError, UpstreamPushError
from pkgsync.services.ota.base import InventoryRecord, PricePusher, PriceRecord, PushRequest
from pkgsync.services.ota.registry import get_pusher
from pkgsync.services.price_cache import cached_rows
from pkgsync.services.pricing import effective_sale_window

logger = logging.getLogger(__name__)


@dataclass
class CombinationResult:
    hotel_id: int
    room_type_id: int
    composite_code: str
    success: bool
    message: str
    dates: int = 0
    result_code: str | None = None


@dataclass
class SyncResult:
    success: bool
    message: str
    details: list[CombinationResult] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "details": [asdict(item) for item in self.details],
            "summary": dict(self.summary),
        }


def _parse_day(value: date | str) -> date:
    return value if isinstance(value, date) else date.fromisoformat(str(value))


def eligible_associations(product: PackageProduct, room_type_id: int | None = None) -> list[HotelRoomAssociation]:
    queryset = HotelRoomAssociation.objects.filter(
        product=product,
        hotel__is_active=True,
        room_type__is_active=True,
    ).select_related("hotel", "room_type")
    if room_type_id is not None:
        queryset = queryset.filter(room_type_id=room_type_id)
    return list(queryset.order_by("id"))


def inventory_records(
    product: PackageProduct,
    association: HotelRoomAssociation,
    days: Iterable[date],
) -> list[InventoryRecord]:
    days = sorted(set(days))
    if not days:
        return []
    stay_days = max(1, int(product.stay_days or 1))
    last_night = days[-1] + timedelta(days=stay_days - 1)
    stocks = {
        row.biz_date: row
        for row in HotelDailyStock.objects.filter(
            hotel_id=association.hotel_id,
            room_type_id=association.room_type_id,
            biz_date__range=(days[0], last_night),
        )
    }

    def night_quantity(day: date) -> int:
        row = stocks.get(day)
        if row is None or not product.is_date_in_sale_range(day):
            return 0
        return row.available_quantity

    records = []
    for day in days:
        quantity = night_quantity(day)
        if quantity > 0 and stay_days > 1:
            if any(night_quantity(day + timedelta(days=offset)) <= 0 for offset in range(1, stay_days)):
                quantity = 0
        records.append(InventoryRecord(date=day, quantity=quantity))
    return records


def _failure(message: str) -> SyncResult:
    return SyncResult(success=False, message=message, summary={"total": 0, "succeeded": 0, "failed": 0})


def _check_product(product: PackageProduct) -> None:
    if not (product.code or "").strip():
        raise ConfigurationError("Product code is empty; set a product code before syncing.")
    if not product.is_enabled:
        raise ConfigurationError("Product is disabled and cannot be synced.")


def _push_combination(
    pusher: PricePusher,
    product: PackageProduct,
    association: HotelRoomAssociation,
    dates: list[date] | None,
    scarcity_signal: bool,
) -> CombinationResult:
    code = codes.generate(product.pk, association.hotel_id, association.room_type_id)
    if dates is not None:
        rows = list(cached_rows(product, association.hotel_id, association.room_type_id, dates=dates))
    else:
        window = effective_sale_window(product)
        rows = (
            list(cached_rows(product, association.hotel_id, association.room_type_id, window=window))
            if window
            else []
        )

    if not rows:
        return CombinationResult(
            hotel_id=association.hotel_id,
            room_type_id=association.room_type_id,
            composite_code=code,
            success=False,
            message="no cached prices",
        )

    prices = [PriceRecord(date=row.biz_date, sale_price=row.sale_price, cost_price=row.cost_price) for row in rows]
    request = PushRequest(
        product_code=product.code,
        composite_code=code,
        hotel_name=association.hotel.name,
        room_type_name=association.room_type.name,
        prices=prices,
        inventory=inventory_records(product, association, [price.date for price in prices]),
        scarcity_signal=scarcity_signal,
    )
    try:
        outcome = pusher.push(request)
    except UpstreamPushError as exc:
        logger.warning(
            "Push of %s to %s failed: %s",
            code,
            pusher.platform,
            exc,
        )
        return CombinationResult(
            hotel_id=association.hotel_id,
            room_type_id=association.room_type_id,
            composite_code=code,
            success=False,
            message=str(exc),
            dates=len(prices),
            result_code=exc.result_code,
        )
    return CombinationResult(
        hotel_id=association.hotel_id,
        room_type_id=association.room_type_id,
        composite_code=code,
        success=outcome.success,
        message=outcome.message,
        dates=len(prices),
        result_code=outcome.result_code,
    )


def sync_product_to_platform(
    product: PackageProduct,
    platform_code: str,
    dates: Iterable[date | str] | None = None,
    *,
    room_type_id: int | None = None,
    scarcity_signal: bool = False,
    pusher: PricePusher | None = None,
) -> SyncResult:
    try:
        _check_product(product)
    except ConfigurationError as exc:
        return _failure(str(exc))

    if pusher is None:
        if platform_code not in OtaPlatform.values:
            return _failure(f"Unsupported platform: {platform_code}")
        pusher = get_pusher(platform_code)
        if pusher is None:
            return _failure(f"Unsupported platform: {platform_code} has no price push integration.")

    associations = eligible_associations(product, room_type_id=room_type_id)
    if not associations:
        return _failure(str(ConfigurationError("No active hotel room types are associated with this product.")))

    requested = sorted({_parse_day(value) for value in dates}) if dates is not None else None
    details = [
        _push_combination(pusher, product, association, requested, scarcity_signal)
        for association in associations
    ]
    succeeded = sum(1 for item in details if item.success)
    failed = len(details) - succeeded
    message = f"Push completed: {succeeded} succeeded, {failed} failed"
    logger.info("Product %s sync to %s. %s", product.pk, platform_code, message)
    return SyncResult(
        success=failed == 0,
        message=message,
        details=details,
        summary={"total": len(details), "succeeded": succeeded, "failed": failed},
    )
