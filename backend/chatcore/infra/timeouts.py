"""Deadline helpers for store round-trips."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from chatcore.settings import settings

T = TypeVar("T")


async def bounded(call: Awaitable[T], *, timeout: Optional[float] = None) -> T:
	"""Await a store call, raising ``asyncio.TimeoutError`` past the deadline.

	``timeout=None`` uses ``settings.store_timeout_seconds``; a non-positive value
	disables the deadline.
	"""

	limit = settings.store_timeout_seconds if timeout is None else timeout
	if limit is None or limit <= 0:
		return await call
	return await asyncio.wait_for(call, timeout=limit)
