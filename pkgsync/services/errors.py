from typing import Any


class PkgSyncError(Exception):
    """Base class for package pricing, sync and fulfillment failures."""


class FormatError(PkgSyncError, ValueError):
    pass


class NotFoundError(PkgSyncError):
    pass


class StateError(PkgSyncError):
    pass


class ConfigurationError(PkgSyncError):
    pass


class UpstreamPushError(PkgSyncError):
    def __init__(
        self,
        message: str,
        *,
        error_type: str = "unknown",
        result_code: str | None = None,
        http_status: int | None = None,
        latency_ms: int | None = None,
        raw_payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.result_code = result_code
        self.http_status = http_status
        self.latency_ms = latency_ms
        self.raw_payload = raw_payload or {}
