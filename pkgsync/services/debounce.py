"""Inventory change debouncing.

Manual edits to hotel stock arrive in bursts. Changes to one room type are
collected for a short window and pushed to the OTA platforms as a single
job carrying every touched date and whether stock crossed the low-stock
threshold in either direction.
"""
from __future__ import annotations

import logging
import math
import time
from datetime import date
from typing import Any, Callable, Iterable

from django.db import transaction

from pkgsync.models import HotelDailyStock, PriceSource
from pkgsync.services.config import auto_push_inventory_enabled, inventory_push_delay_seconds, low_stock_threshold
from pkgsync.services.ephemeral import DjangoCacheStore, ExpiringStore

logger = logging.getLogger(__name__)

PREVIOUS_TTL_SECONDS = 30
SCARCITY_GRACE_SECONDS = 5

Schedule = Callable[[int, list[str], bool, int], Any]


def dates_key(room_type_id: int) -> str:
    return f"inventory_push:{room_type_id}"


def marker_key(room_type_id: int) -> str:
    return f"inventory_push_task:{room_type_id}"


def scarcity_key(room_type_id: int) -> str:
    return f"inventory_scarcity:{room_type_id}"


def previous_key(row_id: int) -> str:
    return f"inventory_prev:{row_id}"


def _iso(value: date | str) -> str:
    return value if isinstance(value, str) else value.isoformat()


def crossed_threshold(previous: int | None, current: int, threshold: int) -> bool:
    if previous is None:
        return False
    went_low = previous > threshold >= current
    recovered = previous <= threshold < current
    return went_low or recovered


class InventoryDebouncer:
    def __init__(
        self,
        store: ExpiringStore,
        schedule: Schedule,
        *,
        delay: int | None = None,
        threshold: int | None = None,
        clock: Callable[[], float] = time.time,
        defer: Callable[[Callable[[], Any]], Any] = transaction.on_commit,
        enabled: Callable[[], bool] = auto_push_inventory_enabled,
    ) -> None:
        self.store = store
        self.schedule = schedule
        self._delay = delay
        self._threshold = threshold
        self.clock = clock
        self.defer = defer
        self.enabled = enabled

    @property
    def delay(self) -> int:
        return inventory_push_delay_seconds() if self._delay is None else max(0, int(self._delay))

    @property
    def threshold(self) -> int:
        return low_stock_threshold() if self._threshold is None else int(self._threshold)

    def remember_previous(self, row: HotelDailyStock) -> None:
        if not row.pk or not self.enabled():
            return
        try:
            previous = (
                HotelDailyStock.objects.filter(pk=row.pk).values_list("stock_available", flat=True).first()
            )
            if previous is not None:
                self.store.put(previous_key(row.pk), int(previous), PREVIOUS_TTL_SECONDS)
        except Exception:
            logger.exception("Could not record previous stock for inventory row %s.", row.pk)

    def on_saved(self, row: HotelDailyStock) -> None:
        if not self.enabled() or row.source == PriceSource.API:
            return
        try:
            self._accumulate(row)
        except Exception:
            logger.exception(
                "Inventory push scheduling failed for room type %s on %s.",
                row.room_type_id,
                row.biz_date,
            )

    def _accumulate(self, row: HotelDailyStock) -> None:
        room_type_id = row.room_type_id
        delay = self.delay
        now = self.clock()

        state = self.store.get(dates_key(room_type_id)) or {}
        deadline = state.get("deadline") or now + delay + 1
        pending = set(state.get("dates") or [])
        pending.add(_iso(row.biz_date))
        self.store.put(
            dates_key(room_type_id),
            {"dates": sorted(pending), "deadline": deadline},
            max(1, math.ceil(deadline - now)),
        )

        previous = self.store.pull(previous_key(row.pk)) if row.pk else None
        if crossed_threshold(previous, int(row.stock_available), self.threshold):
            self.store.put(scarcity_key(room_type_id), True, delay + SCARCITY_GRACE_SECONDS)
            logger.info(
                "Room type %s stock crossed threshold %s (%s -> %s) on %s.",
                room_type_id,
                self.threshold,
                previous,
                row.stock_available,
                row.biz_date,
            )

        if not self.store.add(marker_key(room_type_id), 1, delay or 1):
            return

        scarcity = bool(self.store.get(scarcity_key(room_type_id), False))
        self.defer(lambda: self._dispatch(room_type_id, sorted(pending), scarcity, delay))

    def _dispatch(self, room_type_id: int, dates: list[str], scarcity: bool, delay: int) -> None:
        try:
            self.schedule(room_type_id, dates, scarcity, delay)
        except Exception:
            self.store.delete(marker_key(room_type_id))
            logger.exception("Could not enqueue inventory push for room type %s.", room_type_id)
            return
        logger.info(
            "Scheduled inventory push for room type %s in %ss (%s dates, scarcity=%s).",
            room_type_id,
            delay,
            len(dates),
            scarcity,
        )

    def collect(self, room_type_id: int, dates: Iterable[date | str], scarcity: bool = False) -> tuple[list[str], bool]:
        state = self.store.pull(dates_key(room_type_id)) or {}
        merged = {_iso(value) for value in dates}
        merged.update(state.get("dates") or [])
        scarcity = bool(scarcity) or bool(self.store.pull(scarcity_key(room_type_id), False))
        self.store.delete(marker_key(room_type_id))
        return sorted(merged), scarcity


def _enqueue_push(room_type_id: int, dates: list[str], scarcity: bool, countdown: int) -> None:
    from pkgsync.tasks import push_room_type_inventory

    push_room_type_inventory.apply_async(args=[room_type_id, dates, scarcity], countdown=countdown)


def default_debouncer() -> InventoryDebouncer:
    return InventoryDebouncer(DjangoCacheStore(), _enqueue_push)
