from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator


# correlation id for the current request or background pass; read by log lines and TransitionEmitter
_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def new_request_id(prefix: str | None = None) -> str:
    value = uuid.uuid4().hex
    return f"{prefix}-{value[:16]}" if prefix else value


def set_request_id(value: str | None) -> None:
    _request_id.set(value)


def get_request_id() -> str | None:
    return _request_id.get()


@contextmanager
def request_id_scope(value: str | None = None, *, prefix: str | None = None) -> Iterator[str]:
    rid = value or new_request_id(prefix)
    token = _request_id.set(rid)
    try:
        yield rid
    finally:
        _request_id.reset(token)
