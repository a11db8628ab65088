"""Result highlighting for message search."""

from __future__ import annotations

import re
from functools import lru_cache

from chatcore.settings import settings


@lru_cache(maxsize=256)
def _term_pattern(query: str) -> re.Pattern[str] | None:
	phrase = query.strip()
	if not phrase:
		return None
	terms = {term for term in phrase.split() if term.lower() != phrase.lower()}
	# Whole phrase first so it wins over its own terms at the same position.
	alternatives = [phrase, *sorted(terms, key=len, reverse=True)]
	return re.compile("|".join(re.escape(item) for item in alternatives), re.IGNORECASE)


def highlight_text(text: str | None, query: str | None) -> str | None:
	"""Wrap case-insensitive occurrences of the query (or its terms) in markers."""

	if not text or not query:
		return text
	pattern = _term_pattern(query)
	if pattern is None:
		return text
	open_tag = settings.highlight_open_tag
	close_tag = settings.highlight_close_tag
	return pattern.sub(lambda match: f"{open_tag}{match.group(0)}{close_tag}", text)
