import contextvars
import uuid


_log_context: contextvars.ContextVar[dict] = contextvars.ContextVar(
    "log_context",
    default={},
)


def set_log_context(**kwargs) -> None:  # noqa: ANN003
    current = _log_context.get({}).copy()
    current.update({k: str(v) for k, v in kwargs.items() if v not in (None, "")})
    _log_context.set(current)


def clear_log_context() -> None:
    _log_context.set({})


def new_request_id() -> str:
    return uuid.uuid4().hex


class LogContextFilter:
    def filter(self, record) -> bool:  # noqa: ANN001
        context = _log_context.get({})
        record.request_id = context.get("request_id", "-")
        record.product_id = context.get("product_id", "-")
        record.order_id = context.get("order_id", "-")
        return True
