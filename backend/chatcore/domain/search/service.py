"""Service layer for searching and browsing messages within a conversation."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Awaitable, Callable, List, Optional, Protocol, Union

from chatcore.domain.conversations.service import ConversationService
from chatcore.domain.search import exceptions, guards, models, schemas
from chatcore.domain.search.highlight import highlight_text
from chatcore.domain.search.repo import MessageRepository, MessageStore
from chatcore.infra.timeouts import bounded
from chatcore.obs import logging as obs_logging
from chatcore.obs import metrics as obs_metrics
from chatcore.settings import settings

_LOG = logging.getLogger(__name__)

SearchCall = Callable[[models.PageRequest], Awaitable[List[models.ChatMessage]]]
CountCall = Callable[[], Awaitable[int]]
Attempt = Union[models.StrategyOutcome, models.Degraded]


class AccessChecker(Protocol):
	async def has_user_access(self, user_id: str, conversation_id: str) -> bool:
		...


def _degraded_reason(exc: BaseException) -> str:
	if isinstance(exc, asyncio.TimeoutError):
		return "timeout"
	if isinstance(exc, exceptions.IndexUnavailableError):
		return "index_unavailable"
	return "error"


class MessageSearchService:
	"""Access-gated message search with a pattern fallback, plus context lookups."""

	def __init__(
		self,
		store: MessageStore | None = None,
		access: AccessChecker | None = None,
	) -> None:
		self._store = store or MessageRepository()
		self._access = access or ConversationService()

	async def search_messages(
		self,
		conversation_id: str,
		query: Optional[str],
		actor_id: str,
		page: int = 0,
		size: Optional[int] = None,
	) -> schemas.SearchResultPage:
		with obs_logging.log_context(user_id=actor_id, conversation_id=conversation_id):
			return await self._search(conversation_id, query, actor_id, page, size, filters=None)

	async def search_messages_filtered(
		self,
		conversation_id: str,
		request: schemas.MessageSearchRequest,
		actor_id: str,
	) -> schemas.SearchResultPage:
		filters = request.filters()
		with obs_logging.log_context(user_id=actor_id, conversation_id=conversation_id):
			return await self._search(
				conversation_id,
				request.query,
				actor_id,
				request.page,
				request.size,
				filters=None if filters.is_empty() else filters,
			)

	async def get_message_context(
		self,
		message_id: str,
		actor_id: str,
		context_size: int = 10,
	) -> List[schemas.MessageSearchResult]:
		"""Messages around ``message_id`` in chronological order, anchor included."""

		with obs_logging.log_context(user_id=actor_id):
			try:
				anchor = await bounded(self._store.get_message(message_id))
			except Exception:
				_LOG.exception("search.context.lookup_failed", extra={"message_id": message_id})
				obs_metrics.inc_context_lookup("error")
				return []
			if anchor is None:
				obs_metrics.inc_context_lookup("missing")
				return []
			with obs_logging.log_context(conversation_id=anchor.conversation_id):
				return await self._context_around(anchor, actor_id, context_size)

	async def _context_around(
		self,
		anchor: models.ChatMessage,
		actor_id: str,
		context_size: int,
	) -> List[schemas.MessageSearchResult]:
		if not await self._has_access(actor_id, anchor.conversation_id):
			obs_metrics.inc_context_lookup("denied")
			return []

		window = timedelta(seconds=settings.search_context_window_seconds)
		try:
			nearby = await bounded(
				self._store.list_between(anchor.conversation_id, anchor.timestamp - window, anchor.timestamp + window)
			)
		except Exception:
			_LOG.exception("search.context.range_failed", extra={"message_id": anchor.id})
			obs_metrics.inc_context_lookup("error")
			return []

		ordered = sorted(nearby, key=lambda m: (m.timestamp, m.id))
		index = next((i for i, m in enumerate(ordered) if m.id == anchor.id), None)
		if index is None:
			ordered.append(anchor)
			ordered.sort(key=lambda m: (m.timestamp, m.id))
			index = ordered.index(anchor)

		half = max(0, context_size) // 2
		trimmed = ordered[max(0, index - half) : index + half + 1]
		obs_metrics.inc_context_lookup("served")
		return [schemas.MessageSearchResult.from_message(message) for message in trimmed]

	async def _search(
		self,
		conversation_id: str,
		query: Optional[str],
		actor_id: str,
		page: int,
		size: Optional[int],
		*,
		filters: Optional[models.MessageFilters],
	) -> schemas.SearchResultPage:
		sanitized = guards.sanitize_query(query)
		request = guards.page_request(page, settings.search_default_page_size if size is None else size)

		def empty() -> schemas.SearchResultPage:
			return schemas.SearchResultPage.empty(
				query=sanitized,
				conversation_id=conversation_id,
				current_page=request.page,
				page_size=request.size,
			)

		if not await self._has_access(actor_id, conversation_id):
			_LOG.info("search.access_denied", extra={"conversation_id": conversation_id, "user_id": actor_id})
			return empty()
		if guards.is_blank(sanitized):
			return empty()

		started = time.perf_counter()
		outcome = await self._attempt(
			models.STRATEGY_TEXT,
			lambda window: self._store.text_search(conversation_id, sanitized, page=window),
			lambda: self._store.count_text_search(conversation_id, sanitized),
			request,
			filters,
			timeout=settings.search_store_timeout_seconds,
		)
		if isinstance(outcome, models.Degraded):
			_LOG.warning(
				"search.primary_failed",
				extra={"conversation_id": conversation_id, "reason": outcome.reason, "error": repr(outcome.error)},
			)
			obs_metrics.inc_search_fallback(outcome.reason)
			pattern = guards.escape_pattern(sanitized)
			outcome = await self._attempt(
				models.STRATEGY_PATTERN,
				lambda window: self._store.pattern_search(conversation_id, pattern, page=window),
				lambda: self._store.count_pattern_search(conversation_id, pattern),
				request,
				filters,
			)
		if isinstance(outcome, models.Degraded):
			_LOG.error(
				"search.fallback_failed",
				extra={"conversation_id": conversation_id, "reason": outcome.reason, "error": repr(outcome.error)},
			)
			return empty()

		obs_metrics.inc_search_query(outcome.strategy)
		obs_metrics.observe_search_latency(outcome.strategy, time.perf_counter() - started)
		results = [
			schemas.MessageSearchResult.from_message(message, highlight_text(message.content, sanitized))
			for message in outcome.messages
		]
		return schemas.SearchResultPage.build(
			query=sanitized,
			conversation_id=conversation_id,
			messages=results,
			total_count=outcome.total,
			current_page=request.page,
			page_size=request.size,
			strategy=outcome.strategy,
		)

	async def _attempt(
		self,
		strategy: str,
		search: SearchCall,
		count: CountCall,
		request: models.PageRequest,
		filters: Optional[models.MessageFilters],
		*,
		timeout: Optional[float] = None,
	) -> Attempt:
		# Only store round-trips can degrade a strategy; filtering runs after them.
		try:
			if filters is None:
				messages = await bounded(search(request), timeout=timeout)
				total = await bounded(count(), timeout=timeout)
				return models.StrategyOutcome(strategy=strategy, messages=list(messages), total=int(total))
			scan = models.PageRequest(page=0, size=settings.search_filtered_scan_limit)
			scanned = await bounded(search(scan), timeout=timeout)
		except Exception as exc:
			return models.Degraded(strategy=strategy, reason=_degraded_reason(exc), error=exc)
		matched = [message for message in scanned if filters.matches(message)]
		return models.StrategyOutcome(
			strategy=strategy,
			messages=matched[request.offset : request.offset + request.size],
			total=len(matched),
		)

	async def _has_access(self, actor_id: str, conversation_id: str) -> bool:
		try:
			return bool(await self._access.has_user_access(actor_id, conversation_id))
		except Exception:
			_LOG.exception("search.access_check_failed", extra={"conversation_id": conversation_id})
			return False


__all__ = ["AccessChecker", "MessageSearchService"]
