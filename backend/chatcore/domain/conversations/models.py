"""Domain models for conversations and their participants."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

DIRECT_ID_PREFIX = "dm_"
DIRECT_ID_SEPARATOR = "_"
GROUP_ID_PREFIX = "grp_"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ConversationType(str, Enum):
    """Conversation kinds; fixed at creation."""

    DIRECT = "DIRECT"
    GROUP = "GROUP"


class ParticipantRole(str, Enum):
    """Participant roles ordered by privilege: OWNER > ADMIN > MEMBER."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {
    ParticipantRole.MEMBER: 0,
    ParticipantRole.ADMIN: 1,
    ParticipantRole.OWNER: 2,
}


@dataclass(slots=True, frozen=True)
class ConversationKey:
    """Canonical representation of a 1:1 conversation."""

    user_a: str
    user_b: str

    @classmethod
    def from_participants(cls, user_one: str, user_two: str) -> "ConversationKey":
        ordered = tuple(sorted((str(user_one), str(user_two))))
        return cls(user_a=ordered[0], user_b=ordered[1])

    @property
    def conversation_id(self) -> str:
        return f"{DIRECT_ID_PREFIX}{self.user_a}{DIRECT_ID_SEPARATOR}{self.user_b}"

    def participants(self) -> Tuple[str, str]:
        return (self.user_a, self.user_b)


@dataclass(slots=True)
class Conversation:
    """Persisted representation of a direct or group conversation."""

    id: str
    type: ConversationType
    created_by: str
    created_at: datetime
    updated_at: datetime
    name: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None
    max_participants: Optional[int] = None

    def is_group(self) -> bool:
        return self.type == ConversationType.GROUP

    def is_direct(self) -> bool:
        return self.type == ConversationType.DIRECT

    def touch(self) -> None:
        self.updated_at = now_utc()


@dataclass(slots=True)
class Participant:
    """Membership row keyed by (conversation_id, user_id).

    Rows are deactivated instead of deleted so a later re-add reuses the row and
    keeps its history.
    """

    conversation_id: str
    user_id: str
    role: ParticipantRole
    is_active: bool
    joined_at: datetime
    last_read_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.conversation_id, self.user_id)

    def deactivate(self) -> None:
        self.is_active = False

    def reactivate(self) -> None:
        self.is_active = True


@dataclass(slots=True)
class UserRef:
    """Directory projection of a user, used when rendering participants."""

    id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
