"""Correlation IDs tying a webhook request to the log lines it causes."""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

CORRELATION_ID_HEADER = "X-Correlation-ID"

_current: ContextVar[str] = ContextVar("wacloud_correlation_id", default="")


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def current_correlation_id() -> str:
    """Correlation ID bound to the running context ("" outside a request)."""
    return _current.get()


@contextmanager
def bind_correlation_id(cid: str | None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    Used by the HTTP middleware per request, and again by the webhook
    background task: it runs after the response is sent, when the
    middleware's binding is gone, so the route hands the ID over
    explicitly.

    Args:
        cid: Correlation ID to bind. A fresh one is generated when empty.

    Yields:
        The bound correlation ID.
    """
    bound = cid or new_correlation_id()
    token = _current.set(bound)
    try:
        yield bound
    finally:
        _current.reset(token)
