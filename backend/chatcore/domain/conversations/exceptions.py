"""Custom exceptions for conversation and membership operations."""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConversationError(Exception):
	"""Base class for conversation related errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "conversation_error"

	def __init__(self, detail: str | None = None, *, identifier: str | None = None) -> None:
		if detail:
			self.detail = detail
		self.identifier = identifier
		message = f"{self.detail}: {identifier}" if identifier is not None else self.detail
		super().__init__(message)


class NotFoundError(ConversationError):
	"""Referenced entity does not exist."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"


class UserNotFoundError(NotFoundError):
	detail = "user_not_found"


class ConversationNotFoundError(NotFoundError):
	detail = "conversation_not_found"


class InvalidOperationError(ConversationError):
	"""Action is structurally disallowed for the target conversation."""

	status_code = _HTTP_422
	detail = "invalid_operation"


class ForbiddenError(ConversationError):
	"""Actor lacks the role required for the action."""

	status_code = status.HTTP_403_FORBIDDEN
	detail = "forbidden"


class ConversationConflictError(ConversationError):
	"""Raised by stores when a conversation id already exists."""

	status_code = status.HTTP_409_CONFLICT
	detail = "conversation_exists"
