from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pkgsync.models import PackageOrder, PackageOrderItem, ResourceProvider
from pkgsync.services.errors import UpstreamPushError
from pkgsync.services.http_client import JsonApiMixin

logger = logging.getLogger(__name__)


@dataclass
class BookingConfirmation:
    resource_order_no: str
    raw_payload: dict[str, Any]


class ResourceBookingClient(JsonApiMixin):
    """Places a fulfillment order with a system-connected resource provider."""

    timeout_seconds = 20
    max_retries = 2

    def __init__(self, provider: ResourceProvider) -> None:
        self.provider = provider
        self.base_url = (provider.api_url or "").rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.provider.api_key:
            headers["Authorization"] = f"Bearer {self.provider.api_key}"
        return headers

    def book(self, item: PackageOrderItem, order: PackageOrder) -> BookingConfirmation:
        if not self.enabled:
            raise UpstreamPushError(
                f"Provider {self.provider.code} has no API endpoint configured.",
                error_type="auth",
            )
        body = {
            "reference": f"{order.order_no}-{item.pk}",
            "item_type": item.item_type,
            "resource_id": item.resource_id,
            "quantity": item.quantity,
            "check_in_date": order.check_in_date.isoformat(),
            "check_out_date": order.check_out_date.isoformat(),
            "contact_name": order.contact_name,
            "contact_phone": order.contact_phone,
        }
        payload = self._request_json("POST", f"{self.base_url}/orders", headers=self.headers, json_body=body)
        if not payload.get("success"):
            raise UpstreamPushError(
                str(payload.get("message") or "Provider rejected the booking."),
                error_type="rejected",
                result_code=str(payload.get("code")) if payload.get("code") is not None else None,
                raw_payload=payload,
            )
        order_no = str(payload.get("order_no") or "").strip()
        if not order_no:
            raise UpstreamPushError(
                "Provider accepted the booking without a confirmation number.",
                error_type="parse",
                raw_payload=payload,
            )
        logger.info("Provider %s confirmed item %s as %s.", self.provider.code, item.pk, order_no)
        return BookingConfirmation(resource_order_no=order_no, raw_payload=payload)
