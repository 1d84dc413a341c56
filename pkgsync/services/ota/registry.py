from __future__ import annotations

from django.core.exceptions import ImproperlyConfigured

from pkgsync.models import OtaPlatform
from pkgsync.services.ota.base import PricePusher
from pkgsync.services.ota.ctrip import CtripPricePusher
from pkgsync.services.ota.meituan import MeituanPricePusher

# Every platform must be listed. None marks a platform without a price push integration.
PUSHERS: dict[str, type[PricePusher] | None] = {
    OtaPlatform.CTRIP: CtripPricePusher,
    OtaPlatform.MEITUAN: MeituanPricePusher,
    OtaPlatform.FLIGGY: None,
}


def verify_registry(registry: dict[str, type[PricePusher] | None] | None = None) -> None:
    registry = PUSHERS if registry is None else registry
    missing = sorted(set(OtaPlatform.values) - set(registry))
    unknown = sorted(set(registry) - set(OtaPlatform.values))
    if missing or unknown:
        raise ImproperlyConfigured(f"OTA pusher registry mismatch: missing={missing} unknown={unknown}")


def get_pusher(platform_code: str) -> PricePusher | None:
    pusher_class = PUSHERS.get(platform_code)
    if pusher_class is None:
        return None
    return pusher_class()


verify_registry()
