"""Domain models backing message search results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

STRATEGY_TEXT = "text"
STRATEGY_PATTERN = "pattern"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
	"""Naive datetimes are read as UTC; aware ones are converted to UTC."""

	if value is None:
		return None
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


@dataclass(slots=True)
class ChatMessage:
	"""Read contract for a message owned by the message store."""

	id: str
	conversation_id: str
	sender_id: str
	sender_username: Optional[str]
	content: str
	timestamp: datetime


@dataclass(slots=True, frozen=True)
class PageRequest:
	"""Normalized page window; results are always newest first."""

	page: int
	size: int

	@property
	def offset(self) -> int:
		return self.page * self.size


@dataclass(slots=True)
class MessageFilters:
	"""Optional narrowing applied on top of a query match."""

	sender_username: Optional[str] = None
	date_from: Optional[datetime] = None
	date_to: Optional[datetime] = None

	def __post_init__(self) -> None:
		self.date_from = as_utc(self.date_from)
		self.date_to = as_utc(self.date_to)

	def is_empty(self) -> bool:
		return not (self.sender_username and self.sender_username.strip()) and self.date_from is None and self.date_to is None

	def matches(self, message: ChatMessage) -> bool:
		if self.sender_username and self.sender_username.strip():
			needle = self.sender_username.strip().lower()
			if needle not in (message.sender_username or "").lower():
				return False
		sent_at = as_utc(message.timestamp)
		if self.date_from is not None and sent_at < self.date_from:
			return False
		# date_to names a day; everything up to the end of that day is included
		if self.date_to is not None and sent_at > self.date_to + timedelta(days=1):
			return False
		return True


@dataclass(slots=True)
class StrategyOutcome:
	"""A page served by one search strategy together with that strategy's count."""

	strategy: str
	messages: List[ChatMessage] = field(default_factory=list)
	total: int = 0


@dataclass(slots=True)
class Degraded:
	"""A strategy that could not serve the request."""

	strategy: str
	reason: str
	error: Optional[BaseException] = None
