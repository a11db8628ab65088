"""Pydantic schemas for message search."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from .models import ChatMessage, MessageFilters, as_utc


class MessageSearchRequest(BaseModel):
	"""Search with optional filters; page and size are clamped, not rejected."""

	query: Optional[str] = None
	page: int = 0
	size: int = 20
	sender_username: Optional[str] = None
	date_from: Optional[datetime] = None
	date_to: Optional[datetime] = Field(default=None, description="Inclusive through the end of this day")

	@field_validator("date_from", "date_to", mode="after")
	@classmethod
	def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
		return as_utc(value)

	def filters(self) -> MessageFilters:
		return MessageFilters(
			sender_username=self.sender_username,
			date_from=self.date_from,
			date_to=self.date_to,
		)


class MessageSearchResult(BaseModel):
	id: str
	conversation_id: str
	sender_id: str
	sender_username: Optional[str] = None
	content: str
	highlighted_content: str
	timestamp: datetime
	has_highlighting: bool = False

	@computed_field  # type: ignore[prop-decorator]
	@property
	def display_username(self) -> str:
		if self.sender_username and self.sender_username.strip():
			return self.sender_username
		return self.sender_id

	@classmethod
	def from_message(cls, message: ChatMessage, highlighted: Optional[str] = None) -> "MessageSearchResult":
		rendered = message.content if highlighted is None else highlighted
		return cls(
			id=message.id,
			conversation_id=message.conversation_id,
			sender_id=message.sender_id,
			sender_username=message.sender_username,
			content=message.content,
			highlighted_content=rendered,
			timestamp=message.timestamp,
			has_highlighting=rendered != message.content,
		)


class SearchResultPage(BaseModel):
	query: str
	conversation_id: str
	messages: List[MessageSearchResult] = Field(default_factory=list)
	total_count: int = 0
	current_page: int = 0
	page_size: int = 20
	has_more: bool = False
	next_page: Optional[int] = None
	strategy: Optional[str] = None

	@classmethod
	def build(
		cls,
		*,
		query: str,
		conversation_id: str,
		messages: List[MessageSearchResult],
		total_count: int,
		current_page: int,
		page_size: int,
		strategy: Optional[str] = None,
	) -> "SearchResultPage":
		has_more = (current_page + 1) * page_size < total_count
		return cls(
			query=query,
			conversation_id=conversation_id,
			messages=messages,
			total_count=total_count,
			current_page=current_page,
			page_size=page_size,
			has_more=has_more,
			next_page=current_page + 1 if has_more else None,
			strategy=strategy,
		)

	@classmethod
	def empty(cls, *, query: str, conversation_id: str, current_page: int, page_size: int) -> "SearchResultPage":
		return cls.build(
			query=query,
			conversation_id=conversation_id,
			messages=[],
			total_count=0,
			current_page=current_page,
			page_size=page_size,
		)

	@property
	def result_count(self) -> int:
		return len(self.messages)

	def is_empty(self) -> bool:
		return not self.messages
