from __future__ import annotations

import hashlib
import json
import logging
import uuid
from typing import Any

from django.utils import timezone

from pkgsync.services.config import ctrip_account_id, ctrip_price_api_url, ctrip_secret_key, ctrip_stock_api_url
from pkgsync.services.errors import UpstreamPushError
from pkgsync.services.ota.base import PricePusher, PushRequest, PushResult, format_amount

logger = logging.getLogger(__name__)

SUCCESS_CODE = "0000"
API_VERSION = "1.0"
PRICE_SERVICE = "DatePriceModify"
STOCK_SERVICE = "DateInventoryModify"


def ctrip_sign(account_id: str, service_name: str, request_time: str, body: str, version: str, secret: str) -> str:
    raw = f"{account_id}{service_name}{request_time}{body}{version}{secret}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest().lower()  # noqa: S324


def sequence_id() -> str:
    return timezone.localdate().strftime("%Y%m%d") + uuid.uuid4().hex


class CtripPricePusher(PricePusher):
    platform = "ctrip"

    def __init__(
        self,
        *,
        account_id: str | None = None,
        secret_key: str | None = None,
        price_url: str | None = None,
        stock_url: str | None = None,
    ) -> None:
        self.account_id = (account_id if account_id is not None else ctrip_account_id()).strip()
        self.secret_key = (secret_key if secret_key is not None else ctrip_secret_key()).strip()
        self.price_url = price_url or ctrip_price_api_url()
        self.stock_url = stock_url or ctrip_stock_api_url()

    @property
    def enabled(self) -> bool:
        return bool(self.account_id and self.secret_key)

    def _envelope(self, service_name: str, body: dict[str, Any]) -> dict[str, Any]:
        body_json = json.dumps(body, ensure_ascii=False, separators=(",", ":"))
        request_time = timezone.localtime().strftime("%Y-%m-%d %H:%M:%S")
        return {
            "header": {
                "accountId": self.account_id,
                "serviceName": service_name,
                "requestTime": request_time,
                "version": API_VERSION,
                "sign": ctrip_sign(self.account_id, service_name, request_time, body_json, API_VERSION, self.secret_key),
            },
            "body": body_json,
        }

    def _call(self, url: str, service_name: str, body: dict[str, Any]) -> dict[str, Any]:
        payload = self._request_json(
            "POST",
            url,
            headers={"Content-Type": "application/json"},
            json_body=self._envelope(service_name, body),
        )
        header = payload.get("header") or {}
        result_code = str(header.get("resultCode") or "")
        if result_code != SUCCESS_CODE:
            raise UpstreamPushError(
                f"Ctrip {service_name} rejected: {header.get('resultMessage') or 'unknown error'} ({result_code or 'no code'})",
                error_type="rejected",
                result_code=result_code or None,
                raw_payload=payload,
            )
        return payload

    def push(self, request: PushRequest) -> PushResult:
        if not self.enabled:
            raise UpstreamPushError("Ctrip credentials are not configured.", error_type="auth", http_status=401)

        price_body = {
            "sequenceId": sequence_id(),
            "dateType": "DATE_REQUIRED",
            "supplierOptionId": request.composite_code,
            "prices": [
                {
                    "date": record.date.isoformat(),
                    "salePrice": format_amount(record.sale_price),
                    "costPrice": format_amount(record.cost_price),
                }
                for record in request.prices
            ],
        }
        self._call(self.price_url, PRICE_SERVICE, price_body)

        stock_body = {
            "sequenceId": sequence_id(),
            "dateType": "DATE_REQUIRED",
            "supplierOptionId": request.composite_code,
            "inventorys": [
                {"date": record.date.isoformat(), "quantity": max(0, int(record.quantity))}
                for record in request.inventory
            ],
        }
        self._call(self.stock_url, STOCK_SERVICE, stock_body)

        logger.info(
            "Ctrip accepted %s prices and %s inventory rows for %s.",
            len(request.prices),
            len(request.inventory),
            request.composite_code,
        )
        return PushResult(
            success=True,
            message="price and inventory accepted",
            result_code=SUCCESS_CODE,
            details={"prices": len(request.prices), "inventory": len(request.inventory)},
        )
