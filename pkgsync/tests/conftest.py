from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from django.core.cache import cache
from django.utils import timezone

from pkgsync.models import (
    BundleItem,
    Hotel,
    HotelDailyStock,
    HotelRoomAssociation,
    PackageProduct,
    RoomType,
    Ticket,
    TicketPrice,
)


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch):  # noqa: ANN001
    cache.clear()
    monkeypatch.setenv("ENABLE_AUTO_PUSH_INVENTORY_TO_OTA", "false")
    monkeypatch.delenv("PKG_PRICE_HORIZON_DAYS", raising=False)
    monkeypatch.setattr("pkgsync.services.http_client.JsonApiMixin._backoff", lambda self, attempt: None)
    yield
    cache.clear()


@pytest.fixture
def today() -> date:
    return timezone.localdate()


@pytest.fixture
def catalog(db):  # noqa: ANN001, ANN201
    hotel = Hotel.objects.create(name="Lakeside Inn", code="LAKE")
    room_type = RoomType.objects.create(hotel=hotel, name="Twin Room", code="TWIN")
    ticket = Ticket.objects.create(name="Park Entry", code="PARK")
    product = PackageProduct.objects.create(code="PKG-LAKE-1", name="Lake Weekend", stay_days=1)
    association = HotelRoomAssociation.objects.create(product=product, hotel=hotel, room_type=room_type)
    bundle_item = BundleItem.objects.create(product=product, ticket=ticket, quantity=2)
    return SimpleNamespace(
        hotel=hotel,
        room_type=room_type,
        ticket=ticket,
        product=product,
        association=association,
        bundle_item=bundle_item,
    )


@pytest.fixture
def make_stock(db):  # noqa: ANN001, ANN201
    def _make(hotel, room_type, day, sale="300.00", cost="250.00", available=5, **extra):  # noqa: ANN001, ANN003, ANN202
        return HotelDailyStock.objects.create(
            hotel=hotel,
            room_type=room_type,
            biz_date=day,
            sale_price=Decimal(sale),
            cost_price=Decimal(cost),
            stock_total=available,
            stock_available=available,
            **extra,
        )

    return _make


@pytest.fixture
def make_ticket_price(db):  # noqa: ANN001, ANN201
    def _make(ticket, day, sale="80.00", cost="60.00"):  # noqa: ANN001, ANN202
        return TicketPrice.objects.create(ticket=ticket, date=day, sale_price=Decimal(sale), cost_price=Decimal(cost))

    return _make
