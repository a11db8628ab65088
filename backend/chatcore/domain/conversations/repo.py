"""Membership store: asyncpg repository with an in-memory fallback."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import asyncpg

from chatcore.domain.conversations import exceptions, models
from chatcore.infra.postgres import get_pool
from chatcore.infra.timeouts import bounded


class MembershipStore(Protocol):
	"""Persistence contract for conversations and participant rows."""

	async def get_conversation(self, conversation_id: str) -> Optional[models.Conversation]:
		...

	async def find_direct_between(self, user_one: str, user_two: str) -> Optional[models.Conversation]:
		...

	async def list_for_participant(
		self,
		user_id: str,
		*,
		conversation_type: Optional[models.ConversationType] = None,
	) -> List[models.Conversation]:
		...

	async def create_conversation(
		self,
		conversation: models.Conversation,
		participants: Sequence[models.Participant],
	) -> models.Conversation:
		...

	async def update_conversation(self, conversation: models.Conversation) -> None:
		...

	async def delete_conversation(self, conversation_id: str) -> int:
		...

	async def get_participant(self, conversation_id: str, user_id: str) -> Optional[models.Participant]:
		...

	async def get_active_participant(self, conversation_id: str, user_id: str) -> Optional[models.Participant]:
		...

	async def list_active_participants(self, conversation_id: str) -> List[models.Participant]:
		...

	async def insert_participant(self, participant: models.Participant) -> None:
		...

	async def update_participant(self, participant: models.Participant) -> None:
		...


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.conversations: Dict[str, models.Conversation] = {}
		self.participants: Dict[Tuple[str, str], models.Participant] = {}

	async def get_conversation(self, conversation_id: str) -> Optional[models.Conversation]:
		async with self._lock:
			conversation = self.conversations.get(conversation_id)
			return replace(conversation) if conversation else None

	async def find_direct_between(self, user_one: str, user_two: str) -> Optional[models.Conversation]:
		async with self._lock:
			for conversation in self.conversations.values():
				if not conversation.is_direct():
					continue
				members = {uid for (cid, uid) in self.participants if cid == conversation.id}
				if members == {user_one, user_two}:
					return replace(conversation)
			return None

	async def list_for_participant(
		self,
		user_id: str,
		*,
		conversation_type: Optional[models.ConversationType] = None,
	) -> List[models.Conversation]:
		async with self._lock:
			result: List[models.Conversation] = []
			for (cid, uid), participant in self.participants.items():
				if uid != user_id or not participant.is_active:
					continue
				conversation = self.conversations.get(cid)
				if conversation is None:
					continue
				if conversation_type is not None and conversation.type != conversation_type:
					continue
				result.append(replace(conversation))
			result.sort(key=lambda c: c.updated_at, reverse=True)
			return result

	async def create_conversation(
		self,
		conversation: models.Conversation,
		participants: Sequence[models.Participant],
	) -> models.Conversation:
		async with self._lock:
			if conversation.id in self.conversations:
				raise exceptions.ConversationConflictError(identifier=conversation.id)
			self.conversations[conversation.id] = replace(conversation)
			for participant in participants:
				self.participants[participant.key] = replace(participant)
			return conversation

	async def update_conversation(self, conversation: models.Conversation) -> None:
		async with self._lock:
			self.conversations[conversation.id] = replace(conversation)

	async def delete_conversation(self, conversation_id: str) -> int:
		async with self._lock:
			keys = [key for key in self.participants if key[0] == conversation_id]
			for key in keys:
				del self.participants[key]
			self.conversations.pop(conversation_id, None)
			return len(keys)

	async def get_participant(self, conversation_id: str, user_id: str) -> Optional[models.Participant]:
		async with self._lock:
			participant = self.participants.get((conversation_id, user_id))
			return replace(participant) if participant else None

	async def get_active_participant(self, conversation_id: str, user_id: str) -> Optional[models.Participant]:
		participant = await self.get_participant(conversation_id, user_id)
		if participant is None or not participant.is_active:
			return None
		return participant

	async def list_active_participants(self, conversation_id: str) -> List[models.Participant]:
		async with self._lock:
			rows = [
				replace(p)
				for (cid, _), p in self.participants.items()
				if cid == conversation_id and p.is_active
			]
			rows.sort(key=lambda p: p.joined_at)
			return rows

	async def insert_participant(self, participant: models.Participant) -> None:
		async with self._lock:
			self.participants[participant.key] = replace(participant)

	async def update_participant(self, participant: models.Participant) -> None:
		async with self._lock:
			self.participants[participant.key] = replace(participant)

	async def reset(self) -> None:
		async with self._lock:
			self.conversations.clear()
			self.participants.clear()


_MEMORY = _MemoryStore()


class ConversationRepository:
	"""Repository backed by asyncpg with an in-memory fallback."""

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

	async def get_conversation(self, conversation_id: str) -> Optional[models.Conversation]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_conversation(conversation_id)
		async with pool.acquire() as conn:
			row = await bounded(conn.fetchrow("SELECT * FROM conversations WHERE id=$1", conversation_id))
			return _row_to_conversation(row) if row else None

	async def find_direct_between(self, user_one: str, user_two: str) -> Optional[models.Conversation]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.find_direct_between(user_one, user_two)
		async with pool.acquire() as conn:
			row = await bounded(
				conn.fetchrow(
					"""
					SELECT c.*
					FROM conversations c
					JOIN conversation_participants p1 ON p1.conversation_id = c.id AND p1.user_id = $1
					JOIN conversation_participants p2 ON p2.conversation_id = c.id AND p2.user_id = $2
					WHERE c.type = 'DIRECT'
					LIMIT 1
					""",
					user_one,
					user_two,
				)
			)
			return _row_to_conversation(row) if row else None

	async def list_for_participant(
		self,
		user_id: str,
		*,
		conversation_type: Optional[models.ConversationType] = None,
	) -> List[models.Conversation]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_for_participant(user_id, conversation_type=conversation_type)
		params: List[object] = [user_id]
		type_clause = ""
		if conversation_type is not None:
			params.append(conversation_type.value)
			type_clause = " AND c.type = $2"
		async with pool.acquire() as conn:
			rows = await bounded(
				conn.fetch(
					f"""
					SELECT c.*
					FROM conversations c
					JOIN conversation_participants p ON p.conversation_id = c.id
					WHERE p.user_id = $1 AND p.is_active{type_clause}
					ORDER BY c.updated_at DESC
					""",
					*params,
				)
			)
			return [_row_to_conversation(row) for row in rows]

	async def create_conversation(
		self,
		conversation: models.Conversation,
		participants: Sequence[models.Participant],
	) -> models.Conversation:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.create_conversation(conversation, participants)
		async with pool.acquire() as conn:
			try:
				async with conn.transaction():
					await conn.execute(
						"""
						INSERT INTO conversations (
							id, type, name, description, is_public, max_participants,
							created_by, created_at, updated_at
						) VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9)
						""",
						conversation.id,
						conversation.type.value,
						conversation.name,
						conversation.description,
						conversation.is_public,
						conversation.max_participants,
						conversation.created_by,
						conversation.created_at,
						conversation.updated_at,
					)
					await conn.executemany(
						"""
						INSERT INTO conversation_participants (
							conversation_id, user_id, role, is_active, joined_at, last_read_at
						) VALUES ($1,$2,$3,$4,$5,$6)
						""",
						[_participant_params(p) for p in participants],
					)
			except asyncpg.UniqueViolationError as exc:
				raise exceptions.ConversationConflictError(identifier=conversation.id) from exc
		return conversation

	async def update_conversation(self, conversation: models.Conversation) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _MEMORY.update_conversation(conversation)
			return
		async with pool.acquire() as conn:
			await bounded(
				conn.execute(
					"""
					UPDATE conversations
					SET name=$2, description=$3, is_public=$4, max_participants=$5, updated_at=$6
					WHERE id=$1
					""",
					conversation.id,
					conversation.name,
					conversation.description,
					conversation.is_public,
					conversation.max_participants,
					conversation.updated_at,
				)
			)

	async def delete_conversation(self, conversation_id: str) -> int:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.delete_conversation(conversation_id)
		async with pool.acquire() as conn:
			async with conn.transaction():
				status = await conn.execute(
					"DELETE FROM conversation_participants WHERE conversation_id=$1",
					conversation_id,
				)
				await conn.execute("DELETE FROM conversations WHERE id=$1", conversation_id)
		# asyncpg returns the command tag, e.g. "DELETE 3"
		return int(status.split()[-1])

	async def get_participant(self, conversation_id: str, user_id: str) -> Optional[models.Participant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_participant(conversation_id, user_id)
		async with pool.acquire() as conn:
			row = await bounded(
				conn.fetchrow(
					"SELECT * FROM conversation_participants WHERE conversation_id=$1 AND user_id=$2",
					conversation_id,
					user_id,
				)
			)
			return _row_to_participant(row) if row else None

	async def get_active_participant(self, conversation_id: str, user_id: str) -> Optional[models.Participant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_active_participant(conversation_id, user_id)
		async with pool.acquire() as conn:
			row = await bounded(
				conn.fetchrow(
					"""
					SELECT * FROM conversation_participants
					WHERE conversation_id=$1 AND user_id=$2 AND is_active
					""",
					conversation_id,
					user_id,
				)
			)
			return _row_to_participant(row) if row else None

	async def list_active_participants(self, conversation_id: str) -> List[models.Participant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_active_participants(conversation_id)
		async with pool.acquire() as conn:
			rows = await bounded(
				conn.fetch(
					"""
					SELECT * FROM conversation_participants
					WHERE conversation_id=$1 AND is_active
					ORDER BY joined_at
					""",
					conversation_id,
				)
			)
			return [_row_to_participant(row) for row in rows]

	async def insert_participant(self, participant: models.Participant) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _MEMORY.insert_participant(participant)
			return
		async with pool.acquire() as conn:
			await bounded(
				conn.execute(
					"""
					INSERT INTO conversation_participants (
						conversation_id, user_id, role, is_active, joined_at, last_read_at
					) VALUES ($1,$2,$3,$4,$5,$6)
					""",
					*_participant_params(participant),
				)
			)

	async def update_participant(self, participant: models.Participant) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _MEMORY.update_participant(participant)
			return
		async with pool.acquire() as conn:
			await bounded(
				conn.execute(
					"""
					UPDATE conversation_participants
					SET role=$3, is_active=$4, last_read_at=$5
					WHERE conversation_id=$1 AND user_id=$2
					""",
					participant.conversation_id,
					participant.user_id,
					participant.role.value,
					participant.is_active,
					participant.last_read_at,
				)
			)


def _participant_params(participant: models.Participant) -> tuple:
	return (
		participant.conversation_id,
		participant.user_id,
		participant.role.value,
		participant.is_active,
		participant.joined_at,
		participant.last_read_at,
	)


def _row_to_conversation(row: asyncpg.Record) -> models.Conversation:
	return models.Conversation(
		id=str(row["id"]),
		type=models.ConversationType(row["type"]),
		created_by=str(row["created_by"]),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
		name=row["name"],
		description=row["description"],
		is_public=row["is_public"],
		max_participants=row["max_participants"],
	)


def _row_to_participant(row: asyncpg.Record) -> models.Participant:
	return models.Participant(
		conversation_id=str(row["conversation_id"]),
		user_id=str(row["user_id"]),
		role=models.ParticipantRole(row["role"]),
		is_active=bool(row["is_active"]),
		joined_at=row["joined_at"],
		last_read_at=row["last_read_at"],
	)


async def reset_memory_state() -> None:
	"""Test helper to clear in-memory store state."""
	await _MEMORY.reset()
