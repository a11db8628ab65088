"""Conversation identity and membership service layer."""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol

import ulid

from chatcore.domain.conversations import directory as directory_module
from chatcore.domain.conversations import exceptions, models, policy, schemas
from chatcore.domain.conversations.repo import ConversationRepository, MembershipStore
from chatcore.obs import logging as obs_logging
from chatcore.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class MessagePurger(Protocol):
	"""Message-store capability used when a conversation is deleted."""

	async def delete_conversation_messages(self, conversation_id: str) -> int:
		...


def _unique_members(creator_id: str, participant_ids: List[str]) -> List[str]:
	seen = {creator_id}
	ordered: List[str] = []
	for user_id in participant_ids:
		if user_id in seen:
			continue
		seen.add(user_id)
		ordered.append(user_id)
	return ordered


def _new_group_id() -> str:
	return f"{models.GROUP_ID_PREFIX}{str(ulid.new()).lower()}"


class ConversationService:
	"""Create and resolve conversations, manage participants, answer role checks."""

	def __init__(
		self,
		repository: MembershipStore | None = None,
		directory: directory_module.UserDirectory | None = None,
		*,
		message_purger: MessagePurger | None = None,
	) -> None:
		self._repo = repository or ConversationRepository()
		self._directory = directory or directory_module.PostgresUserDirectory()
		self._messages = message_purger

	async def create_direct_conversation(self, user_one: str, user_two: str) -> schemas.ConversationView:
		await self._require_user(user_one)
		await self._require_user(user_two)
		if user_one == user_two:
			raise exceptions.InvalidOperationError("cannot_create_direct_conversation_with_self")

		key = models.ConversationKey.from_participants(user_one, user_two)
		existing = await self._repo.get_conversation(key.conversation_id)
		if existing is None:
			existing = await self._repo.find_direct_between(key.user_a, key.user_b)
		if existing is not None:
			logger.info("conversations.direct.exists", extra={"conversation_id": existing.id})
			return await self._to_view(existing)

		now = models.now_utc()
		conversation = models.Conversation(
			id=key.conversation_id,
			type=models.ConversationType.DIRECT,
			created_by=user_one,
			created_at=now,
			updated_at=now,
		)
		participants = [
			models.Participant(
				conversation_id=conversation.id,
				user_id=user_id,
				role=models.ParticipantRole.MEMBER,
				is_active=True,
				joined_at=now,
			)
			for user_id in key.participants()
		]
		try:
			await self._repo.create_conversation(conversation, participants)
		except exceptions.ConversationConflictError:
			# The peer created the same pair concurrently; its row wins.
			winner = await self._repo.get_conversation(key.conversation_id)
			if winner is None:
				raise
			obs_metrics.inc_direct_race()
			logger.info("conversations.direct.race_resolved", extra={"conversation_id": winner.id})
			return await self._to_view(winner)

		obs_metrics.inc_conversation_created(models.ConversationType.DIRECT.value)
		logger.info(
			"conversations.direct.created",
			extra={"conversation_id": conversation.id, "created_by": user_one},
		)
		return await self._to_view(conversation)

	async def create_group(self, creator_id: str, request: schemas.CreateGroupRequest) -> schemas.ConversationView:
		if not await self._directory.exists(creator_id):
			logger.warning("conversations.group.creator_missing", extra={"creator_id": creator_id})
			raise exceptions.UserNotFoundError("creator_not_found", identifier=creator_id)
		member_ids = _unique_members(creator_id, list(request.participant_ids))
		for member_id in member_ids:
			if not await self._directory.exists(member_id):
				logger.warning("conversations.group.participant_missing", extra={"participant_id": member_id})
				raise exceptions.UserNotFoundError("participant_not_found", identifier=member_id)

		now = models.now_utc()
		conversation = models.Conversation(
			id=_new_group_id(),
			type=models.ConversationType.GROUP,
			created_by=creator_id,
			created_at=now,
			updated_at=now,
			name=request.name,
			description=request.description,
			is_public=request.is_public,
			max_participants=request.max_participants,
		)
		participants = [
			models.Participant(
				conversation_id=conversation.id,
				user_id=creator_id,
				role=models.ParticipantRole.OWNER,
				is_active=True,
				joined_at=now,
			)
		]
		participants.extend(
			models.Participant(
				conversation_id=conversation.id,
				user_id=member_id,
				role=models.ParticipantRole.MEMBER,
				is_active=True,
				joined_at=now,
			)
			for member_id in member_ids
		)
		await self._repo.create_conversation(conversation, participants)
		obs_metrics.inc_conversation_created(models.ConversationType.GROUP.value)
		logger.info(
			"conversations.group.created",
			extra={
				"conversation_id": conversation.id,
				"created_by": creator_id,
				"participant_count": len(participants),
			},
		)
		return await self._to_view(conversation)

	async def add_user_to_conversation(self, conversation_id: str, user_id: str) -> None:
		with obs_logging.log_context(conversation_id=conversation_id):
			conversation = await self._require_conversation(conversation_id)
			policy.ensure_group(conversation, "cannot_add_users_to_direct_conversations")
			await self._require_user(user_id)

			existing = await self._repo.get_participant(conversation_id, user_id)
			if existing is None:
				participant = models.Participant(
					conversation_id=conversation_id,
					user_id=user_id,
					role=models.ParticipantRole.MEMBER,
					is_active=True,
					joined_at=models.now_utc(),
				)
				await self._repo.insert_participant(participant)
				obs_metrics.inc_membership_change("added")
				logger.info("conversations.member.added", extra={"member_id": user_id})
				return
			if existing.is_active:
				logger.info("conversations.member.already_active", extra={"member_id": user_id})
				return
			existing.reactivate()
			await self._repo.update_participant(existing)
			obs_metrics.inc_membership_change("reactivated")
			logger.info("conversations.member.reactivated", extra={"member_id": user_id})

	async def remove_user_from_conversation(self, conversation_id: str, user_id: str) -> None:
		with obs_logging.log_context(conversation_id=conversation_id):
			participant = await self._repo.get_participant(conversation_id, user_id)
			if participant is None:
				logger.warning("conversations.member.not_participant", extra={"member_id": user_id})
				return
			participant.deactivate()
			await self._repo.update_participant(participant)
			obs_metrics.inc_membership_change("removed")
			logger.info("conversations.member.removed", extra={"member_id": user_id})

	async def has_user_access(self, user_id: str, conversation_id: str) -> bool:
		return await self.get_user_role(user_id, conversation_id) is not None

	async def can_manage_participants(self, user_id: str, conversation_id: str) -> bool:
		return policy.can_manage_participants(await self.get_user_role(user_id, conversation_id))

	async def can_update_settings(self, user_id: str, conversation_id: str) -> bool:
		return policy.can_update_settings(await self.get_user_role(user_id, conversation_id))

	async def is_owner(self, user_id: str, conversation_id: str) -> bool:
		return policy.is_owner(await self.get_user_role(user_id, conversation_id))

	async def get_user_role(self, user_id: str, conversation_id: str) -> Optional[models.ParticipantRole]:
		participant = await self._repo.get_active_participant(conversation_id, user_id)
		return policy.active_role(participant)

	async def update_group_settings(
		self,
		conversation_id: str,
		patch: schemas.UpdateGroupSettingsRequest,
	) -> schemas.ConversationView:
		with obs_logging.log_context(conversation_id=conversation_id):
			conversation = await self._require_conversation(conversation_id)
			policy.ensure_group(conversation, "cannot_update_settings_for_non_group_conversation")

			changed: List[str] = []
			if patch.name is not None:
				conversation.name = patch.name
				changed.append("name")
			if patch.description is not None:
				conversation.description = patch.description
				changed.append("description")
			if patch.is_public is not None:
				conversation.is_public = patch.is_public
				changed.append("is_public")
			if patch.max_participants is not None:
				conversation.max_participants = patch.max_participants
				changed.append("max_participants")
			conversation.touch()
			await self._repo.update_conversation(conversation)
			logger.info("conversations.group.settings_updated", extra={"fields": changed})
			return await self._to_view(conversation)

	async def get_user_conversations(self, user_id: str) -> List[schemas.ConversationView]:
		await self._require_user(user_id)
		conversations = await self._repo.list_for_participant(user_id)
		return [await self._to_view(conversation) for conversation in conversations]

	async def get_user_conversations_by_type(
		self,
		user_id: str,
		conversation_type: models.ConversationType,
	) -> List[schemas.ConversationView]:
		await self._require_user(user_id)
		conversations = await self._repo.list_for_participant(user_id, conversation_type=conversation_type)
		return [await self._to_view(conversation) for conversation in conversations]

	async def get_conversation_for_user(self, conversation_id: str, user_id: str) -> Optional[schemas.ConversationView]:
		if not await self.has_user_access(user_id, conversation_id):
			logger.warning("conversations.access_denied", extra={"conversation_id": conversation_id, "actor_id": user_id})
			return None
		conversation = await self._repo.get_conversation(conversation_id)
		return await self._to_view(conversation) if conversation else None

	async def delete_conversation(self, conversation_id: str, actor_id: str) -> None:
		with obs_logging.log_context(user_id=actor_id, conversation_id=conversation_id):
			conversation = await self._require_conversation(conversation_id)
			role = await self.get_user_role(actor_id, conversation_id)
			policy.ensure_can_delete(conversation, role)
			purged = 0
			if self._messages is not None:
				purged = await self._messages.delete_conversation_messages(conversation_id)
			removed = await self._repo.delete_conversation(conversation_id)
			obs_metrics.inc_membership_change("conversation_deleted")
			logger.info(
				"conversations.deleted",
				extra={"participants_removed": removed, "messages_removed": purged},
			)

	async def _require_conversation(self, conversation_id: str) -> models.Conversation:
		conversation = await self._repo.get_conversation(conversation_id)
		if conversation is None:
			raise exceptions.ConversationNotFoundError(identifier=conversation_id)
		return conversation

	async def _require_user(self, user_id: str) -> None:
		if not await self._directory.exists(user_id):
			logger.warning("conversations.user_missing", extra={"user_id": user_id})
			raise exceptions.UserNotFoundError(identifier=user_id)

	async def _to_view(self, conversation: models.Conversation) -> schemas.ConversationView:
		participants = await self._repo.list_active_participants(conversation.id)
		views: List[schemas.ParticipantView] = []
		for participant in participants:
			user = await self._directory.find_by_id(participant.user_id)
			if user is None:
				continue
			views.append(schemas.ParticipantView.from_model(participant, user))
		return schemas.ConversationView.from_model(conversation, views)
