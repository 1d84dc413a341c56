"""Per-day package price computation.

A package cell price is the hotel night price for the combination plus the
bundled ticket prices for the same day. Missing prices count as zero and
totals are floored at zero.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from pkgsync.models import BundleItem, HotelDailyStock, HotelRoomAssociation, PackageProduct, TicketPrice
from pkgsync.services.config import price_horizon_days

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceCell:
    sale_price: Decimal
    cost_price: Decimal


def money(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def effective_sale_window(product: PackageProduct, today: date | None = None) -> tuple[date, date] | None:
    return product.effective_sale_window(today=today, horizon_days=price_horizon_days())


def combine_prices(
    stock: HotelDailyStock | None,
    ticket_prices: Mapping[int, TicketPrice],
    bundle_items: Iterable[BundleItem],
) -> PriceCell:
    sale_total = ZERO
    cost_total = ZERO
    if stock is not None:
        sale_total += money(stock.sale_price)
        cost_total += money(stock.cost_price)
    for item in bundle_items:
        price = ticket_prices.get(item.ticket_id)
        if price is None:
            continue
        quantity = int(item.quantity or 0)
        sale_total += money(price.sale_price) * quantity
        cost_total += money(price.cost_price) * quantity
    return PriceCell(
        sale_price=money(max(ZERO, sale_total)),
        cost_price=money(max(ZERO, cost_total)),
    )


def compute_cell(
    product: PackageProduct,
    association: HotelRoomAssociation,
    bundle_items: Iterable[BundleItem],
    day: date,
) -> PriceCell:
    items = list(bundle_items)
    stock = HotelDailyStock.objects.filter(
        hotel_id=association.hotel_id,
        room_type_id=association.room_type_id,
        biz_date=day,
    ).first()
    ticket_prices = {
        row.ticket_id: row
        for row in TicketPrice.objects.filter(ticket_id__in={item.ticket_id for item in items}, date=day)
    }
    return combine_prices(stock, ticket_prices, items)
