"""Helpers for host-provided callbacks that may be sync or async."""

from __future__ import annotations

__all__ = ["maybe_await"]

import inspect
from typing import Awaitable, TypeVar

T = TypeVar("T")


async def maybe_await(value: "Awaitable[T] | T") -> T:
    """Await value if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value  # type: ignore[return-value]
