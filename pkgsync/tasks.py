from __future__ import annotations

import logging

from celery import shared_task
from django.db import OperationalError
from django.utils import timezone

from ota_hub.logging import clear_log_context, set_log_context
from pkgsync.models import HotelRoomAssociation, PackageOrder, PackageOtaProduct, PackageProduct
from pkgsync.services import price_cache
from pkgsync.services.debounce import default_debouncer
from pkgsync.services.fulfillment import process_order_items
from pkgsync.services.sync import sync_product_to_platform

logger = logging.getLogger(__name__)

RETRY_KWARGS = {"max_retries": 3}


@shared_task(
    bind=True,
    soft_time_limit=300,
    time_limit=330,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    retry_jitter=True,
    retry_kwargs=RETRY_KWARGS,
)
def rebuild_product_prices(self, product_id: int) -> dict:  # noqa: ARG001
    set_log_context(product_id=product_id)
    try:
        product = PackageProduct.objects.filter(pk=product_id).first()
        if product is None:
            logger.info("Price rebuild skipped; product %s no longer exists.", product_id)
            return {"product_id": product_id, "status": "missing"}
        result = price_cache.rebuild(product)
        return {"product_id": product_id, "status": result.status, "rows": result.rows_written}
    finally:
        clear_log_context()


@shared_task(bind=True, soft_time_limit=1800, time_limit=1900)
def rebuild_all_product_prices(self) -> dict:  # noqa: ARG001
    summary = price_cache.rebuild_all()
    logger.info("Nightly price rebuild finished: %s", summary)
    return summary


def _mark_listing(product_id: int, platform: str, *, status: str, message: str) -> None:
    now = timezone.now()
    changes = {"push_status": status, "push_message": message[:2000], "updated_at": now}
    if status == PackageOtaProduct.PushStatus.PENDING:
        changes["pushed_at"] = now
    else:
        changes["push_completed_at"] = now
    PackageOtaProduct.objects.filter(product_id=product_id, platform=platform).update(**changes)


@shared_task(
    bind=True,
    soft_time_limit=600,
    time_limit=660,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    retry_jitter=True,
    retry_kwargs=RETRY_KWARGS,
)
def sync_product_prices_to_ota(
    self,  # noqa: ANN001, ARG001
    product_id: int,
    platform: str,
    dates: list[str] | None = None,
    room_type_id: int | None = None,
    scarcity_signal: bool = False,
) -> dict:
    set_log_context(product_id=product_id)
    try:
        product = PackageProduct.objects.filter(pk=product_id).first()
        if product is None:
            logger.warning("OTA sync skipped; product %s not found.", product_id)
            return {"success": False, "message": "product not found"}

        _mark_listing(product_id, platform, status=PackageOtaProduct.PushStatus.PENDING, message="")
        try:
            result = sync_product_to_platform(
                product,
                platform,
                dates,
                room_type_id=room_type_id,
                scarcity_signal=scarcity_signal,
            )
        except OperationalError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("OTA sync of product %s to %s crashed.", product_id, platform)
            _mark_listing(product_id, platform, status=PackageOtaProduct.PushStatus.FAILED, message=str(exc))
            return {"success": False, "message": str(exc)}

        _mark_listing(
            product_id,
            platform,
            status=PackageOtaProduct.PushStatus.SUCCESS if result.success else PackageOtaProduct.PushStatus.FAILED,
            message=result.message,
        )
        if not result.success:
            logger.warning("OTA sync of product %s to %s: %s", product_id, platform, result.message)
        return result.as_dict()
    finally:
        clear_log_context()


@shared_task(
    bind=True,
    soft_time_limit=300,
    time_limit=330,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    retry_jitter=True,
    retry_kwargs=RETRY_KWARGS,
)
def push_room_type_inventory(
    self,  # noqa: ANN001, ARG001
    room_type_id: int,
    dates: list[str],
    scarcity_signal: bool = False,
) -> dict:
    dates, scarcity_signal = default_debouncer().collect(room_type_id, dates, scarcity_signal)
    product_ids = list(
        HotelRoomAssociation.objects.filter(
            room_type_id=room_type_id,
            room_type__is_active=True,
            product__status=PackageProduct.Status.ENABLED,
            product__deleted_at__isnull=True,
        )
        .values_list("product_id", flat=True)
        .distinct()
    )
    listings = PackageOtaProduct.objects.filter(product_id__in=product_ids, is_active=True).order_by("product_id", "platform")

    results = []
    for listing in listings:
        set_log_context(product_id=listing.product_id)
        try:
            result = sync_product_to_platform(
                listing.product,
                listing.platform,
                dates,
                room_type_id=room_type_id,
                scarcity_signal=scarcity_signal,
            )
            results.append({"product_id": listing.product_id, "platform": listing.platform, "success": result.success})
            if not result.success:
                logger.warning(
                    "Inventory push for room type %s to %s failed: %s",
                    room_type_id,
                    listing.platform,
                    result.message,
                )
        except OperationalError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Inventory push for room type %s to %s crashed.", room_type_id, listing.platform)
            results.append({"product_id": listing.product_id, "platform": listing.platform, "success": False})
        finally:
            clear_log_context()

    logger.info(
        "Inventory push for room type %s covered %s dates across %s listings (scarcity=%s).",
        room_type_id,
        len(dates),
        len(results),
        scarcity_signal,
    )
    return {"room_type_id": room_type_id, "dates": dates, "scarcity_signal": scarcity_signal, "results": results}


@shared_task(
    bind=True,
    soft_time_limit=300,
    time_limit=330,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    retry_jitter=True,
    retry_kwargs=RETRY_KWARGS,
)
def process_split_order(self, order_id: int) -> dict:  # noqa: ARG001
    set_log_context(order_id=order_id)
    try:
        order = PackageOrder.objects.filter(pk=order_id).first()
        if order is None:
            logger.warning("Order %s not found for processing.", order_id)
            return {"order_id": order_id, "status": "missing"}
        return process_order_items(order)
    finally:
        clear_log_context()
