import json
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest
from django.core.exceptions import ImproperlyConfigured

from pkgsync.models import OtaPlatform, PackageOtaProduct, RoomType
from pkgsync.services import price_cache
from pkgsync.services.errors import UpstreamPushError
from pkgsync.services.ota.base import InventoryRecord, PriceRecord, PricePusher, PushRequest, PushResult
from pkgsync.services.ota.ctrip import CtripPricePusher, ctrip_sign
from pkgsync.services.ota.meituan import MeituanPricePusher
from pkgsync.services.ota.registry import PUSHERS, get_pusher, verify_registry
from pkgsync.services.sync import SyncResult, inventory_records, sync_product_to_platform
from pkgsync.tasks import push_room_type_inventory, sync_product_prices_to_ota


class DummyResponse:
    def __init__(self, payload: dict, status_code: int = 200, url: str = "https://ota.example.test/api"):
        self._payload = payload
        self.status_code = status_code
        self.request = httpx.Request("POST", url)

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            response = httpx.Response(self.status_code, request=self.request)
            raise httpx.HTTPStatusError("Request failed", request=self.request, response=response)

    def json(self) -> dict:
        return self._payload


class FakePusher(PricePusher):
    platform = "fake"

    def __init__(self, fail_codes=()):  # noqa: ANN001
        self.requests = []
        self.fail_codes = set(fail_codes)

    @property
    def enabled(self) -> bool:
        return True

    def push(self, request: PushRequest) -> PushResult:
        self.requests.append(request)
        if request.composite_code in self.fail_codes:
            raise UpstreamPushError("platform said no", result_code="1001")
        return PushResult(success=True, message="ok", result_code="0000")


@pytest.fixture
def priced_catalog(catalog, make_stock, make_ticket_price, today):  # noqa: ANN001, ANN201
    for offset in range(3):
        day = today + timedelta(days=offset)
        make_stock(catalog.hotel, catalog.room_type, day, available=4 - offset)
        make_ticket_price(catalog.ticket, day)
    price_cache.rebuild(catalog.product, today=today)
    return catalog


@pytest.mark.django_db
def test_sync_pushes_cached_prices_and_inventory(priced_catalog, today):
    pusher = FakePusher()
    dates = [today, today + timedelta(days=1)]

    result = sync_product_to_platform(priced_catalog.product, OtaPlatform.CTRIP, dates, pusher=pusher)

    assert result.success is True
    assert result.message == "Push completed: 1 succeeded, 0 failed"
    assert result.summary == {"total": 1, "succeeded": 1, "failed": 0}
    request = pusher.requests[0]
    assert request.composite_code == f"PKG|{priced_catalog.room_type.pk}|{priced_catalog.hotel.pk}|{priced_catalog.product.pk}"
    assert [record.date for record in request.prices] == dates
    assert [str(record.sale_price) for record in request.prices] == ["460.00", "460.00"]
    assert [record.quantity for record in request.inventory] == [4, 3]


@pytest.mark.django_db
def test_sync_fails_fast_without_product_code(priced_catalog):
    priced_catalog.product.code = None
    pusher = FakePusher()

    result = sync_product_to_platform(priced_catalog.product, OtaPlatform.CTRIP, pusher=pusher)

    assert result.success is False
    assert "code is empty" in result.message
    assert pusher.requests == []


@pytest.mark.django_db
def test_sync_fails_fast_for_disabled_product(priced_catalog):
    priced_catalog.product.status = priced_catalog.product.Status.DISABLED
    pusher = FakePusher()

    result = sync_product_to_platform(priced_catalog.product, OtaPlatform.CTRIP, pusher=pusher)

    assert result.success is False
    assert "disabled" in result.message
    assert pusher.requests == []


@pytest.mark.django_db
def test_sync_requires_active_hotel(priced_catalog):
    priced_catalog.hotel.is_active = False
    priced_catalog.hotel.save()

    result = sync_product_to_platform(priced_catalog.product, OtaPlatform.CTRIP, pusher=FakePusher())

    assert result.success is False
    assert "No active hotel room types" in result.message


@pytest.mark.django_db
@pytest.mark.parametrize("platform", [OtaPlatform.FLIGGY, "expedia"])
def test_sync_unsupported_platform(priced_catalog, platform):
    result = sync_product_to_platform(priced_catalog.product, platform)
    assert result.success is False
    assert "Unsupported platform" in result.message


@pytest.mark.django_db
def test_cache_miss_fails_combination_without_calling_platform(priced_catalog, today):
    pusher = FakePusher()

    result = sync_product_to_platform(priced_catalog.product, OtaPlatform.CTRIP, [today + timedelta(days=200)], pusher=pusher)

    assert result.success is False
    assert result.details[0].message == "no cached prices"
    assert pusher.requests == []


@pytest.mark.django_db
def test_partial_failure_is_reported_per_combination(priced_catalog, today):
    suite = RoomType.objects.create(hotel=priced_catalog.hotel, name="Suite")
    priced_catalog.product.hotel_room_types.create(hotel=priced_catalog.hotel, room_type=suite)
    price_cache.rebuild(priced_catalog.product, today=today)
    failing_code = f"PKG|{suite.pk}|{priced_catalog.hotel.pk}|{priced_catalog.product.pk}"
    pusher = FakePusher(fail_codes=[failing_code])

    result = sync_product_to_platform(priced_catalog.product, OtaPlatform.CTRIP, [today], pusher=pusher)

    assert result.success is False
    assert result.message == "Push completed: 1 succeeded, 1 failed"
    failed = [item for item in result.details if not item.success]
    assert failed[0].composite_code == failing_code
    assert failed[0].result_code == "1001"


@pytest.mark.django_db
def test_sync_can_be_restricted_to_one_room_type(priced_catalog, today):
    suite = RoomType.objects.create(hotel=priced_catalog.hotel, name="Suite")
    priced_catalog.product.hotel_room_types.create(hotel=priced_catalog.hotel, room_type=suite)
    pusher = FakePusher()

    result = sync_product_to_platform(
        priced_catalog.product,
        OtaPlatform.CTRIP,
        [today],
        room_type_id=priced_catalog.room_type.pk,
        pusher=pusher,
    )

    assert result.summary["total"] == 1
    assert len(pusher.requests) == 1


@pytest.mark.django_db
def test_inventory_is_zero_outside_sale_range(priced_catalog, today):
    priced_catalog.product.sale_end_date = today
    records = inventory_records(priced_catalog.product, priced_catalog.association, [today, today + timedelta(days=1)])
    assert [record.quantity for record in records] == [4, 0]


@pytest.mark.django_db
def test_multi_night_product_needs_every_night_in_stock(priced_catalog, today):
    priced_catalog.product.stay_days = 2
    records = inventory_records(
        priced_catalog.product,
        priced_catalog.association,
        [today, today + timedelta(days=1), today + timedelta(days=2)],
    )
    # the night after the last stocked day has no stock row
    assert [record.quantity for record in records] == [4, 3, 0]


def test_registry_covers_every_platform():
    assert set(PUSHERS) == set(OtaPlatform.values)
    verify_registry()
    with pytest.raises(ImproperlyConfigured):
        verify_registry({OtaPlatform.CTRIP: CtripPricePusher})


def test_registry_resolves_pushers():
    assert isinstance(get_pusher(OtaPlatform.CTRIP), CtripPricePusher)
    assert isinstance(get_pusher(OtaPlatform.MEITUAN), MeituanPricePusher)
    assert get_pusher(OtaPlatform.FLIGGY) is None


def _request(count: int = 2) -> PushRequest:
    start = date(2026, 6, 1)
    days = [start + timedelta(days=offset) for offset in range(count)]
    return PushRequest(
        product_code="PKG-LAKE-1",
        composite_code="PKG|3|2|1",
        hotel_name="Lakeside Inn",
        room_type_name="Twin Room",
        prices=[PriceRecord(date=day, sale_price=Decimal("460.00"), cost_price=Decimal("370.00")) for day in days],
        inventory=[InventoryRecord(date=day, quantity=2) for day in days],
    )


def test_ctrip_pusher_sends_signed_price_and_stock_calls():
    pusher = CtripPricePusher(account_id="acct", secret_key="secret", price_url="https://ctrip.test/price", stock_url="https://ctrip.test/stock")
    responses = [
        DummyResponse({"header": {"resultCode": "0000", "resultMessage": "ok"}}),
        DummyResponse({"header": {"resultCode": "0000", "resultMessage": "ok"}}),
    ]

    with patch("httpx.request", side_effect=responses) as request_mock:
        result = pusher.push(_request())

    assert result.success is True
    assert [c.kwargs["url"] for c in request_mock.call_args_list] == ["https://ctrip.test/price", "https://ctrip.test/stock"]
    envelope = request_mock.call_args_list[0].kwargs["json"]
    header = envelope["header"]
    assert header["serviceName"] == "DatePriceModify"
    assert header["sign"] == ctrip_sign("acct", "DatePriceModify", header["requestTime"], envelope["body"], "1.0", "secret")
    body = json.loads(envelope["body"])
    assert body["supplierOptionId"] == "PKG|3|2|1"
    assert body["prices"][0] == {"date": "2026-06-01", "salePrice": 460.0, "costPrice": 370.0}
    stock_body = json.loads(request_mock.call_args_list[1].kwargs["json"]["body"])
    assert stock_body["inventorys"][1] == {"date": "2026-06-02", "quantity": 2}


def test_ctrip_rejection_raises_with_result_code():
    pusher = CtripPricePusher(account_id="acct", secret_key="secret")
    rejected = DummyResponse({"header": {"resultCode": "1003", "resultMessage": "option not found"}})

    with patch("httpx.request", return_value=rejected):
        with pytest.raises(UpstreamPushError) as excinfo:
            pusher.push(_request())

    assert excinfo.value.result_code == "1003"
    assert "option not found" in str(excinfo.value)


def test_ctrip_without_credentials_raises():
    with pytest.raises(UpstreamPushError) as excinfo:
        CtripPricePusher(account_id="", secret_key="").push(_request())
    assert excinfo.value.error_type == "auth"


def test_http_errors_are_retried_then_classified():
    pusher = CtripPricePusher(account_id="acct", secret_key="secret")
    responses = [DummyResponse({}, status_code=503), DummyResponse({}, status_code=503)]

    with patch("httpx.request", side_effect=responses) as request_mock:
        with pytest.raises(UpstreamPushError) as excinfo:
            pusher.push(_request())

    assert request_mock.call_count == pusher.max_retries
    assert excinfo.value.http_status == 503


def test_meituan_pusher_batches_skus_and_flags_scarcity():
    pusher = MeituanPricePusher(partner_id="99", client_id="app", client_secret="secret", api_url="https://mt.test/api")
    request = _request(count=45)
    request.scarcity_signal = True

    with patch("httpx.request", return_value=DummyResponse({"code": 200, "describe": "success"})) as request_mock:
        result = pusher.push(request)

    assert result.details == {"skus": 45, "batches": 2}
    first = request_mock.call_args_list[0].kwargs
    assert first["url"] == "https://mt.test/api/level/price/notice/v2"
    assert first["headers"]["Authorization"].startswith("MWS app:")
    assert len(first["json"]["body"]) == 40
    assert first["json"]["stockThresholdCrossed"] is True
    assert first["json"]["body"][0]["stock"] == 2


def test_meituan_rejection_raises():
    pusher = MeituanPricePusher(partner_id="99", client_id="app", client_secret="secret", api_url="https://mt.test/api")
    with patch("httpx.request", return_value=DummyResponse({"code": 300, "describe": "deal offline"})):
        with pytest.raises(UpstreamPushError) as excinfo:
            pusher.push(_request())
    assert excinfo.value.result_code == "300"


@pytest.mark.django_db
def test_sync_task_records_listing_status(priced_catalog):
    listing = PackageOtaProduct.objects.create(product=priced_catalog.product, platform=OtaPlatform.CTRIP)
    outcome = SyncResult(success=False, message="Push completed: 0 succeeded, 1 failed", summary={"total": 1})

    with patch("pkgsync.tasks.sync_product_to_platform", return_value=outcome):
        payload = sync_product_prices_to_ota(priced_catalog.product.pk, OtaPlatform.CTRIP)

    listing.refresh_from_db()
    assert payload["success"] is False
    assert listing.push_status == PackageOtaProduct.PushStatus.FAILED
    assert listing.push_message == outcome.message
    assert listing.pushed_at is not None
    assert listing.push_completed_at is not None


@pytest.mark.django_db
def test_sync_task_swallows_unexpected_errors(priced_catalog):
    listing = PackageOtaProduct.objects.create(product=priced_catalog.product, platform=OtaPlatform.CTRIP)

    with patch("pkgsync.tasks.sync_product_to_platform", side_effect=RuntimeError("boom")):
        payload = sync_product_prices_to_ota(priced_catalog.product.pk, OtaPlatform.CTRIP)

    listing.refresh_from_db()
    assert payload == {"success": False, "message": "boom"}
    assert listing.push_status == PackageOtaProduct.PushStatus.FAILED


@pytest.mark.django_db
def test_inventory_push_task_targets_active_listings(priced_catalog, today):
    PackageOtaProduct.objects.create(product=priced_catalog.product, platform=OtaPlatform.CTRIP)
    PackageOtaProduct.objects.create(product=priced_catalog.product, platform=OtaPlatform.MEITUAN, is_active=False)
    outcome = SyncResult(success=True, message="Push completed: 1 succeeded, 0 failed")

    with patch("pkgsync.tasks.sync_product_to_platform", return_value=outcome) as sync_mock:
        payload = push_room_type_inventory(priced_catalog.room_type.pk, [today.isoformat()], True)

    assert sync_mock.call_count == 1
    args, kwargs = sync_mock.call_args
    assert args[1] == OtaPlatform.CTRIP
    assert args[2] == [today.isoformat()]
    assert kwargs == {"room_type_id": priced_catalog.room_type.pk, "scarcity_signal": True}
    assert payload["results"] == [{"product_id": priced_catalog.product.pk, "platform": "ctrip", "success": True}]
