"""Role and conversation-type rules for membership management."""

from __future__ import annotations

from typing import Optional

from chatcore.domain.conversations import exceptions, models

MANAGER_ROLES = frozenset({models.ParticipantRole.OWNER, models.ParticipantRole.ADMIN})


def role_at_least(role: Optional[models.ParticipantRole], minimum: models.ParticipantRole) -> bool:
	if role is None:
		return False
	return role.rank >= minimum.rank


def active_role(participant: Optional[models.Participant]) -> Optional[models.ParticipantRole]:
	"""Role of an active row; inactive or missing rows carry no role."""

	if participant is None or not participant.is_active:
		return None
	return participant.role


def can_manage_participants(role: Optional[models.ParticipantRole]) -> bool:
	return role in MANAGER_ROLES


def can_update_settings(role: Optional[models.ParticipantRole]) -> bool:
	return role_at_least(role, models.ParticipantRole.ADMIN)


def is_owner(role: Optional[models.ParticipantRole]) -> bool:
	return role == models.ParticipantRole.OWNER


def ensure_group(conversation: models.Conversation, detail: str) -> None:
	if not conversation.is_group():
		raise exceptions.InvalidOperationError(detail)


def ensure_can_delete(conversation: models.Conversation, role: Optional[models.ParticipantRole]) -> None:
	if conversation.is_group():
		if not is_owner(role):
			raise exceptions.ForbiddenError("only_group_owners_can_delete_groups")
		return
	if role is None:
		raise exceptions.ForbiddenError("no_access_to_conversation")
