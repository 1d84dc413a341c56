from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from pkgsync.models import DailyPrice, HotelDailyStock, HotelRoomAssociation, PackageProduct
from pkgsync.services import codes
from pkgsync.services.errors import NotFoundError
from pkgsync.services.pricing import compute_cell

logger = logging.getLogger(__name__)


@dataclass
class RoutedOrder:
    product: PackageProduct
    hotel_id: int
    room_type_id: int
    price: Decimal
    cost_price: Decimal
    from_cache: bool
    stock_available: int


def route(composite_code: str, day: date) -> RoutedOrder:
    parsed = codes.parse(composite_code)
    product = PackageProduct.objects.filter(pk=parsed.product_id).first()
    if product is None:
        raise NotFoundError(f"Package product {parsed.product_id} not found.")

    stock = HotelDailyStock.objects.filter(
        hotel_id=parsed.hotel_id,
        room_type_id=parsed.room_type_id,
        biz_date=day,
    ).first()
    stock_available = stock.available_quantity if stock is not None else 0

    cached = DailyPrice.objects.filter(
        product_id=product.pk,
        hotel_id=parsed.hotel_id,
        room_type_id=parsed.room_type_id,
        biz_date=day,
    ).first()
    if cached is not None:
        return RoutedOrder(
            product=product,
            hotel_id=parsed.hotel_id,
            room_type_id=parsed.room_type_id,
            price=cached.sale_price,
            cost_price=cached.cost_price,
            from_cache=True,
            stock_available=stock_available,
        )

    logger.warning(
        "No cached price for %s on %s; computing live.",
        composite_code,
        day.isoformat(),
    )
    association = HotelRoomAssociation(
        product=product,
        hotel_id=parsed.hotel_id,
        room_type_id=parsed.room_type_id,
    )
    cell = compute_cell(product, association, product.bundle_items.all(), day)
    return RoutedOrder(
        product=product,
        hotel_id=parsed.hotel_id,
        room_type_id=parsed.room_type_id,
        price=cell.sale_price,
        cost_price=cell.cost_price,
        from_cache=False,
        stock_available=stock_available,
    )
