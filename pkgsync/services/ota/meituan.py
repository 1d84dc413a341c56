from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timezone as dt_timezone
from typing import Any
from urllib.parse import urlparse

from pkgsync.services.config import meituan_api_url, meituan_client_id, meituan_client_secret, meituan_partner_id
from pkgsync.services.errors import UpstreamPushError
from pkgsync.services.ota.base import InventoryRecord, PricePusher, PushRequest, PushResult, format_amount

logger = logging.getLogger(__name__)

MAX_SKU_PER_REQUEST = 40
LEVEL_PRICE_PATH = "/level/price/notice/v2"


def mws_authorization(method: str, uri: str, date_header: str, client_id: str, client_secret: str) -> str:
    string_to_sign = f"{method.upper()} {uri}\n{date_header}"
    digest = hmac.new(client_secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1).digest()
    return f"MWS {client_id}:{base64.b64encode(digest).decode('ascii')}"


class MeituanPricePusher(PricePusher):
    platform = "meituan"

    def __init__(
        self,
        *,
        partner_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        api_url: str | None = None,
    ) -> None:
        self.partner_id = (partner_id if partner_id is not None else meituan_partner_id()).strip()
        self.client_id = (client_id if client_id is not None else meituan_client_id()).strip()
        self.client_secret = (client_secret if client_secret is not None else meituan_client_secret()).strip()
        self.api_url = (api_url or meituan_api_url()).rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.partner_id and self.client_id and self.client_secret)

    def _headers(self, url: str) -> dict[str, str]:
        date_header = datetime.now(dt_timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")
        return {
            "Content-Type": "application/json",
            "PartnerId": self.partner_id,
            "Date": date_header,
            "AppKey": self.client_id,
            "Authorization": mws_authorization("POST", urlparse(url).path, date_header, self.client_id, self.client_secret),
        }

    def _sku_items(self, request: PushRequest) -> list[dict[str, Any]]:
        stock_by_date = {record.date: record for record in request.inventory}
        items = []
        for record in request.prices:
            stock: InventoryRecord | None = stock_by_date.get(record.date)
            items.append(
                {
                    "partnerPrimaryKey": f"{request.composite_code}|{record.date.isoformat()}",
                    "skuInfo": {
                        "levelInfoList": [
                            {"levelNo": 1, "levelName": request.hotel_name},
                            {"levelNo": 2, "levelName": request.room_type_name},
                        ],
                    },
                    "priceDate": record.date.isoformat(),
                    "marketPrice": format_amount(record.sale_price),
                    "mtPrice": format_amount(record.sale_price),
                    "settlementPrice": format_amount(record.cost_price),
                    "stock": max(0, int(stock.quantity)) if stock else 0,
                    "attr": None,
                }
            )
        return items

    def push(self, request: PushRequest) -> PushResult:
        if not self.enabled:
            raise UpstreamPushError("Meituan credentials are not configured.", error_type="auth", http_status=401)

        url = f"{self.api_url}{LEVEL_PRICE_PATH}"
        items = self._sku_items(request)
        batches = [items[i:i + MAX_SKU_PER_REQUEST] for i in range(0, len(items), MAX_SKU_PER_REQUEST)]
        for index, batch in enumerate(batches, start=1):
            dates = [item["priceDate"] for item in batch]
            body = {
                "partnerId": self.partner_id,
                "startTime": min(dates),
                "endTime": max(dates),
                "partnerDealId": request.composite_code,
                "stockThresholdCrossed": bool(request.scarcity_signal),
                "body": batch,
            }
            payload = self._request_json("POST", url, headers=self._headers(url), json_body=body)
            code = payload.get("code")
            if str(code) != "200":
                raise UpstreamPushError(
                    f"Meituan level price batch {index}/{len(batches)} rejected: {payload.get('describe') or payload.get('message') or 'unknown error'}",
                    error_type="rejected",
                    result_code=str(code) if code is not None else None,
                    raw_payload=payload,
                )

        logger.info("Meituan accepted %s SKUs in %s batches for %s.", len(items), len(batches), request.composite_code)
        return PushResult(
            success=True,
            message="level price and stock accepted",
            result_code="200",
            details={"skus": len(items), "batches": len(batches)},
        )
