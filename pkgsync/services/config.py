import os

from django.conf import settings


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip())
    except (TypeError, ValueError):
        return default


def inventory_push_delay_seconds() -> int:
    default = getattr(settings, "INVENTORY_PUSH_DELAY_SECONDS", 5)
    return max(0, env_int("INVENTORY_PUSH_DELAY_SECONDS", default))


def auto_push_inventory_enabled() -> bool:
    default = getattr(settings, "ENABLE_AUTO_PUSH_INVENTORY_TO_OTA", True)
    return env_bool("ENABLE_AUTO_PUSH_INVENTORY_TO_OTA", default=default)


def low_stock_threshold() -> int:
    default = getattr(settings, "INVENTORY_LOW_STOCK_THRESHOLD", 0)
    return env_int("INVENTORY_LOW_STOCK_THRESHOLD", default)


def price_horizon_days() -> int:
    return max(1, env_int("PKG_PRICE_HORIZON_DAYS", 60))


def ctrip_account_id() -> str:
    return os.getenv("CTRIP_ACCOUNT_ID", "").strip()


def ctrip_secret_key() -> str:
    return os.getenv("CTRIP_SECRET_KEY", "").strip()


def ctrip_price_api_url() -> str:
    return os.getenv("CTRIP_PRICE_API_URL", "https://ttdopen.ctrip.com/api/product/price.do").strip()


def ctrip_stock_api_url() -> str:
    return os.getenv("CTRIP_STOCK_API_URL", "https://ttdopen.ctrip.com/api/product/stock.do").strip()


def meituan_partner_id() -> str:
    return os.getenv("MEITUAN_PARTNER_ID", "").strip()


def meituan_client_id() -> str:
    return os.getenv("MEITUAN_CLIENT_ID", "").strip()


def meituan_client_secret() -> str:
    return os.getenv("MEITUAN_CLIENT_SECRET", "").strip()


def meituan_api_url() -> str:
    return os.getenv("MEITUAN_API_URL", "https://openapi.meituan.com/rhone/mtp/api").strip().rstrip("/")
