"""Central registry for Prometheus metrics used by the chatcore services."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

CONVERSATIONS_CREATED = Counter(
	"chatcore_conversations_created_total",
	"Conversations created",
	["type"],
)

DIRECT_CONVERSATION_RACES = Counter(
	"chatcore_direct_conversation_races_total",
	"Direct conversation creations resolved by re-fetching after a uniqueness conflict",
)

MEMBERSHIP_CHANGES = Counter(
	"chatcore_membership_changes_total",
	"Participant mutations by action",
	["action"],
)

SEARCH_QUERIES = Counter(
	"chatcore_message_search_queries_total",
	"Message search requests by serving strategy",
	["strategy"],
)

SEARCH_FALLBACKS = Counter(
	"chatcore_message_search_fallbacks_total",
	"Primary text search failures that triggered the pattern fallback",
	["reason"],
)

SEARCH_LATENCY = Histogram(
	"chatcore_message_search_latency_seconds",
	"Message search latency",
	["strategy"],
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

CONTEXT_LOOKUPS = Counter(
	"chatcore_message_context_lookups_total",
	"Message context lookups by outcome",
	["result"],
)


def inc_conversation_created(kind: str) -> None:
	CONVERSATIONS_CREATED.labels(type=kind).inc()


def inc_direct_race() -> None:
	DIRECT_CONVERSATION_RACES.inc()


def inc_membership_change(action: str) -> None:
	MEMBERSHIP_CHANGES.labels(action=action).inc()


def inc_search_query(strategy: str) -> None:
	SEARCH_QUERIES.labels(strategy=strategy).inc()


def inc_search_fallback(reason: str) -> None:
	SEARCH_FALLBACKS.labels(reason=reason).inc()


def observe_search_latency(strategy: str, latency_seconds: float) -> None:
	SEARCH_LATENCY.labels(strategy=strategy).observe(latency_seconds)


def inc_context_lookup(result: str) -> None:
	CONTEXT_LOOKUPS.labels(result=result).inc()
