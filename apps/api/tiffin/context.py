from __future__ import annotations

from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
caused_by_var: ContextVar[str | None] = ContextVar("caused_by", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_caused_by(event_name: str | None) -> Token[str | None]:
    """Mark work done while handling ``event_name`` (e.g. a calendar-driven recompute)."""
    return caused_by_var.set(event_name)


def reset_caused_by(token: Token[str | None]) -> None:
    caused_by_var.reset(token)


def get_caused_by() -> str | None:
    return caused_by_var.get()


def get_log_context() -> dict[str, str | None]:
    return {"correlation_id": get_correlation_id(), "caused_by": get_caused_by()}
