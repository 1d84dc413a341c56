from __future__ import annotations

import os
import time
from typing import Any

import httpx

from pkgsync.services.errors import UpstreamPushError

DEFAULT_USER_AGENT = "PkgSync/1.0 (ota-hub)"


def pkgsync_user_agent() -> str:
    value = (os.getenv("PKGSYNC_USER_AGENT") or "").strip()
    return value or DEFAULT_USER_AGENT


def default_http_timeout() -> httpx.Timeout:
    connect = float(os.getenv("PKGSYNC_HTTP_CONNECT_TIMEOUT", "5.0"))
    read = float(os.getenv("PKGSYNC_HTTP_READ_TIMEOUT", "15.0"))
    write = float(os.getenv("PKGSYNC_HTTP_WRITE_TIMEOUT", str(read)))
    pool = float(os.getenv("PKGSYNC_HTTP_POOL_TIMEOUT", "5.0"))
    return httpx.Timeout(connect=connect, read=read, write=write, pool=pool)


def classify_http_status(status_code: int | None) -> str:
    if status_code == 429:
        return "rate_limit"
    if status_code in {401, 403}:
        return "auth"
    if status_code in {402}:
        return "quota"
    return "unknown"


class JsonApiMixin:
    """Retrying JSON-over-HTTP calls shared by the OTA pushers and resource clients."""

    timeout_seconds: float | httpx.Timeout | None = None
    max_retries = 3

    def _timeout(self) -> float | httpx.Timeout:
        return self.timeout_seconds if self.timeout_seconds is not None else default_http_timeout()

    def _backoff(self, attempt: int) -> None:
        time.sleep(2 ** (attempt - 1))

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        content: str | bytes | None = None,
    ) -> dict[str, Any]:
        attempts = max(1, int(self.max_retries))
        for attempt in range(1, attempts + 1):
            started = time.monotonic()
            try:
                response = httpx.request(
                    method=method,
                    url=url,
                    headers={
                        "User-Agent": pkgsync_user_agent(),
                        **(headers or {}),
                    },
                    params=params,
                    json=json_body,
                    content=content,
                    timeout=self._timeout(),
                )
                response.raise_for_status()
                latency_ms = int((time.monotonic() - started) * 1000)
                try:
                    payload = response.json()
                except ValueError as exc:
                    if attempt == attempts:
                        raise UpstreamPushError(
                            f"{method} {url} parse failure: {exc}",
                            error_type="parse",
                            http_status=response.status_code,
                            latency_ms=latency_ms,
                        ) from exc
                    self._backoff(attempt)
                    continue
                if not isinstance(payload, dict):
                    raise UpstreamPushError(
                        f"{method} {url} returned a non-object body.",
                        error_type="parse",
                        http_status=response.status_code,
                        latency_ms=latency_ms,
                    )
                return payload
            except httpx.TimeoutException as exc:
                latency_ms = int((time.monotonic() - started) * 1000)
                if attempt == attempts:
                    raise UpstreamPushError(
                        f"{method} {url} timeout: {exc}",
                        error_type="timeout",
                        latency_ms=latency_ms,
                    ) from exc
                self._backoff(attempt)
            except httpx.HTTPStatusError as exc:
                status_code = exc.response.status_code if exc.response is not None else None
                latency_ms = int((time.monotonic() - started) * 1000)
                if attempt == attempts or status_code in {401, 403}:
                    raise UpstreamPushError(
                        f"{method} {url} status {status_code}",
                        error_type=classify_http_status(status_code),
                        http_status=status_code,
                        latency_ms=latency_ms,
                    ) from exc
                self._backoff(attempt)
            except httpx.RequestError as exc:
                latency_ms = int((time.monotonic() - started) * 1000)
                if attempt == attempts:
                    raise UpstreamPushError(
                        f"{method} {url} request error: {exc}",
                        error_type="network",
                        latency_ms=latency_ms,
                    ) from exc
                self._backoff(attempt)

        raise UpstreamPushError(f"{method} {url} exhausted retries.")
