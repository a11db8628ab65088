"""Pydantic schemas for conversation management."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from chatcore.settings import settings

from .models import Conversation, ConversationType, Participant, ParticipantRole, UserRef


class CreateGroupRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=100)
	description: Optional[str] = Field(default=None, max_length=500)
	is_public: bool = False
	max_participants: int = Field(default_factory=lambda: settings.group_default_max_participants, ge=2, le=1000)
	participant_ids: List[str] = Field(default_factory=list, description="Initial members besides the creator")


class UpdateGroupSettingsRequest(BaseModel):
	"""Partial update; ``None`` leaves the stored value unchanged."""

	name: Optional[str] = Field(default=None, min_length=1, max_length=100)
	description: Optional[str] = Field(default=None, max_length=500)
	is_public: Optional[bool] = None
	max_participants: Optional[int] = Field(default=None, ge=2, le=1000)


class UserSummary(BaseModel):
	id: str
	username: str
	display_name: Optional[str] = None
	avatar_url: Optional[str] = None

	@classmethod
	def from_ref(cls, user: UserRef) -> "UserSummary":
		return cls(
			id=user.id,
			username=user.username,
			display_name=user.display_name,
			avatar_url=user.avatar_url,
		)


class ParticipantView(BaseModel):
	user: UserSummary
	role: ParticipantRole
	joined_at: datetime
	last_read_at: Optional[datetime] = None

	@classmethod
	def from_model(cls, participant: Participant, user: UserRef) -> "ParticipantView":
		return cls(
			user=UserSummary.from_ref(user),
			role=participant.role,
			joined_at=participant.joined_at,
			last_read_at=participant.last_read_at,
		)


class ConversationView(BaseModel):
	id: str
	type: ConversationType
	name: Optional[str] = None
	created_by: str
	created_at: datetime
	updated_at: datetime
	description: Optional[str] = None
	is_public: Optional[bool] = None
	max_participants: Optional[int] = None
	participants: List[ParticipantView] = Field(default_factory=list)

	@classmethod
	def from_model(
		cls,
		conversation: Conversation,
		participants: Optional[List[ParticipantView]] = None,
	) -> "ConversationView":
		view = cls(
			id=conversation.id,
			type=conversation.type,
			name=conversation.name,
			created_by=conversation.created_by,
			created_at=conversation.created_at,
			updated_at=conversation.updated_at,
			participants=participants or [],
		)
		if conversation.is_group():
			view.description = conversation.description
			view.is_public = conversation.is_public
			view.max_participants = conversation.max_participants
		return view
