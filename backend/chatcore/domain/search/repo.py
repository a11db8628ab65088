"""Message store: asyncpg repository with an in-memory fallback."""

from __future__ import annotations

import asyncio
import re
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

import asyncpg

from chatcore.domain.search import exceptions, models
from chatcore.infra.postgres import get_pool

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_TS_CONFIG = "simple"


class MessageStore(Protocol):
	"""Read contract over the external message store."""

	async def text_search(
		self,
		conversation_id: str,
		query: str,
		*,
		page: models.PageRequest,
	) -> List[models.ChatMessage]:
		...

	async def count_text_search(self, conversation_id: str, query: str) -> int:
		...

	async def pattern_search(
		self,
		conversation_id: str,
		pattern: str,
		*,
		page: models.PageRequest,
	) -> List[models.ChatMessage]:
		...

	async def count_pattern_search(self, conversation_id: str, pattern: str) -> int:
		...

	async def get_message(self, message_id: str) -> Optional[models.ChatMessage]:
		...

	async def list_between(self, conversation_id: str, start: datetime, end: datetime) -> List[models.ChatMessage]:
		...

	async def delete_conversation_messages(self, conversation_id: str) -> int:
		...


def _tokens(text: str) -> set[str]:
	return {token.lower() for token in _WORD_RE.findall(text or "")}


def _newest_first(messages: Iterable[models.ChatMessage]) -> List[models.ChatMessage]:
	return sorted(messages, key=lambda m: (m.timestamp, m.id), reverse=True)


class _MemoryMessageStore:
	"""Fallback store used in tests when Postgres is unavailable.

	Text search requires every query term as a whole word, like ``plainto_tsquery``;
	``text_index_ready`` simulates a missing index.
	"""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.messages: Dict[str, models.ChatMessage] = {}
		self.text_index_ready = True

	async def seed(self, messages: Iterable[models.ChatMessage]) -> None:
		async with self._lock:
			for message in messages:
				self.messages[message.id] = replace(message)

	async def reset(self) -> None:
		async with self._lock:
			self.messages.clear()
			self.text_index_ready = True

	def _text_matches(self, conversation_id: str, query: str) -> List[models.ChatMessage]:
		if not self.text_index_ready:
			raise exceptions.IndexUnavailableError()
		terms = _tokens(query)
		return _newest_first(
			m
			for m in self.messages.values()
			if m.conversation_id == conversation_id and terms and terms <= _tokens(m.content)
		)

	def _pattern_matches(self, conversation_id: str, pattern: str) -> List[models.ChatMessage]:
		compiled = re.compile(pattern, re.IGNORECASE)
		return _newest_first(
			m
			for m in self.messages.values()
			if m.conversation_id == conversation_id and compiled.search(m.content or "")
		)

	async def text_search(self, conversation_id: str, query: str, *, page: models.PageRequest) -> List[models.ChatMessage]:
		async with self._lock:
			matches = self._text_matches(conversation_id, query)
			return [replace(m) for m in matches[page.offset : page.offset + page.size]]

	async def count_text_search(self, conversation_id: str, query: str) -> int:
		async with self._lock:
			return len(self._text_matches(conversation_id, query))

	async def pattern_search(self, conversation_id: str, pattern: str, *, page: models.PageRequest) -> List[models.ChatMessage]:
		async with self._lock:
			matches = self._pattern_matches(conversation_id, pattern)
			return [replace(m) for m in matches[page.offset : page.offset + page.size]]

	async def count_pattern_search(self, conversation_id: str, pattern: str) -> int:
		async with self._lock:
			return len(self._pattern_matches(conversation_id, pattern))

	async def get_message(self, message_id: str) -> Optional[models.ChatMessage]:
		async with self._lock:
			message = self.messages.get(message_id)
			return replace(message) if message else None

	async def list_between(self, conversation_id: str, start: datetime, end: datetime) -> List[models.ChatMessage]:
		async with self._lock:
			window = [
				replace(m)
				for m in self.messages.values()
				if m.conversation_id == conversation_id and start <= m.timestamp <= end
			]
			window.sort(key=lambda m: (m.timestamp, m.id))
			return window

	async def delete_conversation_messages(self, conversation_id: str) -> int:
		async with self._lock:
			doomed = [mid for mid, m in self.messages.items() if m.conversation_id == conversation_id]
			for mid in doomed:
				del self.messages[mid]
			return len(doomed)


_MEMORY = _MemoryMessageStore()


class MessageRepository:
	"""Repository backed by asyncpg with an in-memory fallback.

	The primary strategy relies on a ``to_tsvector`` index over ``content``; the
	pattern strategy uses a case-insensitive POSIX regex scan and needs no index.
	"""

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

	async def text_search(self, conversation_id: str, query: str, *, page: models.PageRequest) -> List[models.ChatMessage]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.text_search(conversation_id, query, page=page)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT id, conversation_id, sender_id, sender_username, content, created_at
				FROM chat_messages
				WHERE conversation_id = $1
				  AND to_tsvector('{_TS_CONFIG}', content) @@ plainto_tsquery('{_TS_CONFIG}', $2)
				ORDER BY created_at DESC, id DESC
				LIMIT $3 OFFSET $4
				""",
				conversation_id,
				query,
				page.size,
				page.offset,
			)
			return [_row_to_message(row) for row in rows]

	async def count_text_search(self, conversation_id: str, query: str) -> int:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.count_text_search(conversation_id, query)
		async with pool.acquire() as conn:
			value = await conn.fetchval(
				f"""
				SELECT COUNT(*) FROM chat_messages
				WHERE conversation_id = $1
				  AND to_tsvector('{_TS_CONFIG}', content) @@ plainto_tsquery('{_TS_CONFIG}', $2)
				""",
				conversation_id,
				query,
			)
			return int(value or 0)

	async def pattern_search(self, conversation_id: str, pattern: str, *, page: models.PageRequest) -> List[models.ChatMessage]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.pattern_search(conversation_id, pattern, page=page)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT id, conversation_id, sender_id, sender_username, content, created_at
				FROM chat_messages
				WHERE conversation_id = $1 AND content ~* $2
				ORDER BY created_at DESC, id DESC
				LIMIT $3 OFFSET $4
				""",
				conversation_id,
				pattern,
				page.size,
				page.offset,
			)
			return [_row_to_message(row) for row in rows]

	async def count_pattern_search(self, conversation_id: str, pattern: str) -> int:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.count_pattern_search(conversation_id, pattern)
		async with pool.acquire() as conn:
			value = await conn.fetchval(
				"SELECT COUNT(*) FROM chat_messages WHERE conversation_id = $1 AND content ~* $2",
				conversation_id,
				pattern,
			)
			return int(value or 0)

	async def get_message(self, message_id: str) -> Optional[models.ChatMessage]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_message(message_id)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT id, conversation_id, sender_id, sender_username, content, created_at
				FROM chat_messages
				WHERE id = $1
				""",
				message_id,
			)
			return _row_to_message(row) if row else None

	async def list_between(self, conversation_id: str, start: datetime, end: datetime) -> List[models.ChatMessage]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_between(conversation_id, start, end)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT id, conversation_id, sender_id, sender_username, content, created_at
				FROM chat_messages
				WHERE conversation_id = $1 AND created_at BETWEEN $2 AND $3
				ORDER BY created_at ASC, id ASC
				""",
				conversation_id,
				start,
				end,
			)
			return [_row_to_message(row) for row in rows]

	async def delete_conversation_messages(self, conversation_id: str) -> int:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_conversation_messages(conversation_id)
		async with pool.acquire() as conn:
			status = await conn.execute("DELETE FROM chat_messages WHERE conversation_id = $1", conversation_id)
			return int(status.split()[-1])


def _row_to_message(row: asyncpg.Record) -> models.ChatMessage:
	return models.ChatMessage(
		id=str(row["id"]),
		conversation_id=str(row["conversation_id"]),
		sender_id=str(row["sender_id"]),
		sender_username=row["sender_username"],
		content=row["content"] or "",
		timestamp=row["created_at"],
	)


def memory_store() -> _MemoryMessageStore:
	return _MEMORY


async def seed_memory_store(messages: Iterable[models.ChatMessage]) -> None:
	await _MEMORY.seed(messages)


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	await _MEMORY.reset()
