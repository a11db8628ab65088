"""User directory adapters used to validate ids before membership writes."""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, Optional, Protocol

import asyncpg

from chatcore.domain.conversations import models
from chatcore.infra.postgres import get_pool
from chatcore.infra.timeouts import bounded


class UserDirectory(Protocol):
	"""Lookup contract for the external user directory."""

	async def exists(self, user_id: str) -> bool:
		...

	async def find_by_id(self, user_id: str) -> Optional[models.UserRef]:
		...


class MemoryUserDirectory:
	"""Directory backed by a dict; used in tests and when Postgres is unavailable."""

	def __init__(self, users: Iterable[models.UserRef] | None = None) -> None:
		self._lock = asyncio.Lock()
		self._users: Dict[str, models.UserRef] = {u.id: u for u in users or []}

	async def add(self, user: models.UserRef) -> None:
		async with self._lock:
			self._users[user.id] = user

	async def exists(self, user_id: str) -> bool:
		async with self._lock:
			return user_id in self._users

	async def find_by_id(self, user_id: str) -> Optional[models.UserRef]:
		async with self._lock:
			return self._users.get(user_id)

	async def reset(self) -> None:
		async with self._lock:
			self._users.clear()


_MEMORY_DIRECTORY = MemoryUserDirectory()


class PostgresUserDirectory:
	"""Directory reading the ``users`` table with an in-memory fallback."""

	def __init__(self) -> None:
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		try:
			pool = await get_pool()
		except Exception:
			pool = None
		self._pool_instance = pool
		return pool

	async def exists(self, user_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY_DIRECTORY.exists(user_id)
		async with pool.acquire() as conn:
			row = await bounded(
				conn.fetchval(
					"SELECT EXISTS(SELECT 1 FROM users WHERE id=$1 AND deleted_at IS NULL)",
					user_id,
				)
			)
			return bool(row)

	async def find_by_id(self, user_id: str) -> Optional[models.UserRef]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY_DIRECTORY.find_by_id(user_id)
		async with pool.acquire() as conn:
			row = await bounded(
				conn.fetchrow(
					"""
					SELECT id, username, display_name, avatar_url
					FROM users
					WHERE id=$1 AND deleted_at IS NULL
					""",
					user_id,
				)
			)
			if not row:
				return None
			return models.UserRef(
				id=str(row["id"]),
				username=row["username"],
				display_name=row["display_name"],
				avatar_url=row["avatar_url"],
			)


def memory_directory() -> MemoryUserDirectory:
	return _MEMORY_DIRECTORY
