from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from pkgsync.services.http_client import JsonApiMixin


@dataclass(frozen=True)
class PriceRecord:
    date: date
    sale_price: Decimal
    cost_price: Decimal


@dataclass(frozen=True)
class InventoryRecord:
    date: date
    quantity: int


@dataclass
class PushRequest:
    product_code: str
    composite_code: str
    hotel_name: str
    room_type_name: str
    prices: list[PriceRecord]
    inventory: list[InventoryRecord]
    scarcity_signal: bool = False

    @property
    def start_date(self) -> date:
        return min(record.date for record in self.prices)

    @property
    def end_date(self) -> date:
        return max(record.date for record in self.prices)


@dataclass
class PushResult:
    success: bool
    message: str
    result_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class PricePusher(JsonApiMixin, ABC):
    """Sends one composite listing's price calendar and inventory to a platform.

    Implementations raise ``UpstreamPushError`` on transport failures and on
    business rejections reported by the platform.
    """

    platform = "base"
    timeout_seconds = 30
    max_retries = 2

    @property
    @abstractmethod
    def enabled(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def push(self, request: PushRequest) -> PushResult:
        raise NotImplementedError


def format_amount(value: Decimal) -> float:
    return float(Decimal(value).quantize(Decimal("0.01")))
