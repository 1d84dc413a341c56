from datetime import timedelta
from decimal import Decimal

import pytest

from pkgsync.models import DailyPrice, Hotel, HotelRoomAssociation, PackageProduct, RoomType
from pkgsync.services import price_cache


@pytest.mark.django_db
def test_rebuild_writes_one_row_per_combination_and_day(catalog, make_stock, make_ticket_price, today):
    make_stock(catalog.hotel, catalog.room_type, today, sale="300.00", cost="250.00")
    make_ticket_price(catalog.ticket, today, sale="80.00", cost="60.00")

    result = price_cache.rebuild(catalog.product, today=today)

    assert result.status == "rebuilt"
    assert result.rows_written == 60
    rows = DailyPrice.objects.filter(product=catalog.product)
    assert rows.count() == 60
    assert rows.values("biz_date").distinct().count() == 60
    first = rows.get(biz_date=today)
    assert first.sale_price == Decimal("460.00")
    assert first.cost_price == Decimal("370.00")
    assert first.composite_code == f"PKG|{catalog.room_type.pk}|{catalog.hotel.pk}|{catalog.product.pk}"
    assert rows.get(biz_date=today + timedelta(days=1)).sale_price == Decimal("0.00")
    assert rows.order_by("biz_date").last().biz_date == today + timedelta(days=59)


@pytest.mark.django_db
def test_rebuild_replaces_stale_rows_inside_window(catalog, make_stock, today):
    stock = make_stock(catalog.hotel, catalog.room_type, today, sale="300.00", cost="250.00")
    price_cache.rebuild(catalog.product, today=today)

    stock.sale_price = Decimal("320.00")
    stock.save()
    price_cache.rebuild(catalog.product, today=today)

    rows = DailyPrice.objects.filter(product=catalog.product, biz_date=today)
    assert rows.count() == 1
    assert rows.get().sale_price == Decimal("320.00")
    assert DailyPrice.objects.filter(product=catalog.product).count() == 60


@pytest.mark.django_db
def test_rebuild_is_idempotent(catalog, make_stock, make_ticket_price, today):
    make_stock(catalog.hotel, catalog.room_type, today)
    make_ticket_price(catalog.ticket, today)

    price_cache.rebuild(catalog.product, today=today)
    first = list(DailyPrice.objects.filter(product=catalog.product).values_list("biz_date", "sale_price", "cost_price"))
    price_cache.rebuild(catalog.product, today=today)
    second = list(DailyPrice.objects.filter(product=catalog.product).values_list("biz_date", "sale_price", "cost_price"))

    assert first == second


@pytest.mark.django_db
def test_rebuild_removes_rows_of_deactivated_room_types(catalog, today):
    other_room = RoomType.objects.create(hotel=catalog.hotel, name="Suite")
    HotelRoomAssociation.objects.create(product=catalog.product, hotel=catalog.hotel, room_type=other_room)
    price_cache.rebuild(catalog.product, today=today)
    assert DailyPrice.objects.filter(product=catalog.product).count() == 120

    other_room.is_active = False
    other_room.save()
    price_cache.rebuild(catalog.product, today=today)

    assert DailyPrice.objects.filter(product=catalog.product, room_type=other_room).count() == 0
    assert DailyPrice.objects.filter(product=catalog.product).count() == 60


@pytest.mark.django_db
def test_rebuild_without_bundle_items_leaves_rows_untouched(catalog, today):
    price_cache.rebuild(catalog.product, today=today)
    catalog.bundle_item.delete()

    result = price_cache.rebuild(catalog.product, today=today)

    assert result.status == "skipped_config"
    assert DailyPrice.objects.filter(product=catalog.product).count() == 60


@pytest.mark.django_db
def test_rebuild_without_associations_is_a_noop(db, today):
    product = PackageProduct.objects.create(code="EMPTY", name="Empty")
    result = price_cache.rebuild(product, today=today)
    assert result.status == "skipped_config"
    assert not DailyPrice.objects.filter(product=product).exists()


@pytest.mark.django_db
def test_empty_window_keeps_rows_until_purged(catalog, today, caplog):
    price_cache.rebuild(catalog.product, today=today)
    catalog.product.sale_end_date = today - timedelta(days=1)
    catalog.product.save()

    with caplog.at_level("WARNING", logger="pkgsync.services.price_cache"):
        result = price_cache.rebuild(catalog.product, today=today)

    assert result.status == "skipped_window"
    assert DailyPrice.objects.filter(product=catalog.product).count() == 60
    assert "orphaned cache" in caplog.text

    assert price_cache.purge_orphaned_rows(catalog.product, today=today) == 60
    assert not DailyPrice.objects.filter(product=catalog.product).exists()


@pytest.mark.django_db
def test_purge_keeps_rows_inside_window(catalog, today):
    price_cache.rebuild(catalog.product, today=today)
    tomorrow = today + timedelta(days=1)

    purged = price_cache.purge_orphaned_rows(catalog.product, today=tomorrow)

    assert purged == 1
    assert not DailyPrice.objects.filter(product=catalog.product, biz_date=today).exists()
    assert DailyPrice.objects.filter(product=catalog.product).count() == 59


@pytest.mark.django_db
def test_narrowed_sale_window_drops_rows_outside_it(catalog, today):
    price_cache.rebuild(catalog.product, today=today)
    catalog.product.sale_end_date = today + timedelta(days=9)
    catalog.product.save()

    result = price_cache.rebuild(catalog.product, today=today)

    assert result.rows_written == 10
    cells = set(DailyPrice.objects.filter(product=catalog.product).values_list("hotel_id", "room_type_id", "biz_date"))
    expected = {(catalog.hotel.pk, catalog.room_type.pk, today + timedelta(days=offset)) for offset in range(10)}
    assert cells == expected


@pytest.mark.django_db
def test_rebuild_drops_days_that_rolled_into_the_past(catalog, today):
    price_cache.rebuild(catalog.product, today=today)
    tomorrow = today + timedelta(days=1)

    price_cache.rebuild(catalog.product, today=tomorrow)

    rows = DailyPrice.objects.filter(product=catalog.product)
    assert rows.count() == 60
    assert not rows.filter(biz_date=today).exists()
    assert rows.order_by("biz_date").last().biz_date == tomorrow + timedelta(days=59)


@pytest.mark.django_db
def test_cached_rows_filters_by_dates(catalog, today):
    price_cache.rebuild(catalog.product, today=today)
    wanted = [today, today + timedelta(days=2)]
    rows = price_cache.cached_rows(catalog.product, catalog.hotel.pk, catalog.room_type.pk, dates=wanted)
    assert [row.biz_date for row in rows] == wanted


@pytest.mark.django_db
def test_rebuild_all_covers_enabled_products_only(catalog, today):
    disabled = PackageProduct.objects.create(code="OFF", name="Off", status=PackageProduct.Status.DISABLED)
    hotel = Hotel.objects.create(name="Hill Lodge")
    room = RoomType.objects.create(hotel=hotel, name="Double")
    HotelRoomAssociation.objects.create(product=disabled, hotel=hotel, room_type=room)

    summary = price_cache.rebuild_all(today=today)

    assert summary["rebuilt"] == 1
    assert summary["failed"] == []
    assert DailyPrice.objects.filter(product=catalog.product).count() == 60
    assert not DailyPrice.objects.filter(product=disabled).exists()
