"""Input normalization for message search requests."""

from __future__ import annotations

import re

from chatcore.domain.search import models
from chatcore.settings import settings

# Quotes and backslashes break literal and regex matching downstream.
_UNSAFE_CHARS = re.compile(r"[\"'\\]")


def sanitize_query(value: str | None) -> str:
	"""Trim, drop quote/backslash characters, cap the length."""

	if value is None:
		return ""
	sanitized = _UNSAFE_CHARS.sub("", value.strip())
	return sanitized[: settings.search_max_query_length]


def is_blank(query: str) -> bool:
	return not query or not query.strip()


def normalize_page(page: int) -> int:
	return max(0, int(page))


def normalize_size(size: int) -> int:
	return min(max(1, int(size)), settings.search_max_page_size)


def page_request(page: int, size: int) -> models.PageRequest:
	return models.PageRequest(page=normalize_page(page), size=normalize_size(size))


def escape_pattern(query: str) -> str:
	"""Pattern that matches ``query`` verbatim."""

	return re.escape(query)
