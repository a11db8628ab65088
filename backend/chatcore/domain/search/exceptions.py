"""Custom exceptions for message search operations."""

from __future__ import annotations


class SearchError(Exception):
	"""Base class for message search errors."""

	def __init__(self, detail: str, *, status_code: int = 400) -> None:
		super().__init__(detail)
		self.detail = detail
		self.status_code = status_code


class SearchBackendError(SearchError):
	"""Raised when the message store rejects a request."""

	def __init__(self, detail: str = "backend_error", *, status_code: int = 503) -> None:
		super().__init__(detail, status_code=status_code)


class IndexUnavailableError(SearchBackendError):
	"""Raised when the full-text index backing the primary strategy is missing."""

	def __init__(self) -> None:
		super().__init__("text_index_unavailable")
