from __future__ import annotations

import re
import uuid
from contextvars import ContextVar, Token

CORRELATION_HEADER = "x-correlation-id"

# ids end up in logs, audit rows and span attributes
_CORRELATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def valid_correlation_id(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if _CORRELATION_ID_PATTERN.fullmatch(value) else None


def resolve_correlation_id(value: str | None) -> str:
    """Keep a caller-supplied id when it is well formed, otherwise mint a fresh one."""

    return valid_correlation_id(value) or uuid.uuid4().hex
