"""ASGI middleware utilities for the ScheduleScan backend."""

from .request_context import (
    RequestIdLogFilter,
    RequestIdMiddleware,
    bind_request_id,
    get_request_id,
    reset_request_id,
)

__all__ = [
    "RequestIdLogFilter",
    "RequestIdMiddleware",
    "bind_request_id",
    "get_request_id",
    "reset_request_id",
]
