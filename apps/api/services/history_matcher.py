"""Find a user's past decisions related to a new question.

Matching is a deliberately shallow OR-over-substrings heuristic: a record
is relevant when any keyword appears in its question or options. History
is an enhancement, so a failing store yields no history instead of an
error.
"""

from typing import Optional

from services.decision_store import (
    DecisionRecord,
    DecisionStore,
    HistoryKind,
    HistoryQuery,
    StoreUnavailableError,
)
from services.keywords import keywords_for_decision
from utils.logging import get_logger

logger = get_logger(__name__)

ANSWERS_LIMIT = 3
DECISIONS_LIMIT = 10

DEFAULT_LIMITS = {
    HistoryKind.ANSWERS: ANSWERS_LIMIT,
    HistoryKind.DECISIONS: DECISIONS_LIMIT,
}

__all__ = [
    "ANSWERS_LIMIT",
    "DECISIONS_LIMIT",
    "HistoryKind",
    "HistoryQuery",
    "find_relevant",
    "find_relevant_answers",
    "find_relevant_decisions",
]


async def find_relevant(
    store: DecisionStore,
    user_id: str,
    keywords: list[str],
    kind: HistoryKind,
    limit: Optional[int] = None,
) -> list[DecisionRecord]:
    """Return the user's records matching any keyword, most recent first.

    Args:
        store: Decision storage collaborator
        user_id: Owner whose history is searched
        keywords: Search terms from extract_keywords(); empty means no lookup
        kind: ANSWERS (records with clarifying answers) or DECISIONS
            (records with a final choice)
        limit: Maximum records returned, defaults to 3 or 10 by kind

    Returns:
        Matching records ordered by created_at descending, ties in
        insertion order. Empty when the store is unavailable.
    """
    if not keywords:
        return []

    if limit is None:
        limit = DEFAULT_LIMITS[kind]

    history_query = HistoryQuery(keywords=tuple(keywords), kind=kind)

    try:
        records = await store.query(user_id, history_query, limit)
    except StoreUnavailableError as e:
        logger.warning(
            f"History lookup degraded to empty: {e}",
            extra={"history_kind": kind.value},
        )
        return []

    # The store already scopes and filters; re-checking keeps a faulty
    # store from leaking another user's or an unrelated record
    scoped = [r for r in records if r.user_id == user_id and history_query.matches(r)]
    if len(scoped) != len(records):
        logger.warning(
            f"Store returned {len(records) - len(scoped)} out-of-scope history records"
        )

    # sorted() is stable, so equal timestamps keep the store's insertion order
    scoped = sorted(scoped, key=lambda r: r.created_at, reverse=True)
    return scoped[:limit]


async def find_relevant_answers(
    store: DecisionStore,
    user_id: str,
    question: str,
    options: list[str],
    limit: int = ANSWERS_LIMIT,
) -> list[DecisionRecord]:
    """Past decisions with clarifying answers, for pre-filling new questions."""
    keywords = keywords_for_decision(question, options)
    return await find_relevant(store, user_id, keywords, HistoryKind.ANSWERS, limit)


async def find_relevant_decisions(
    store: DecisionStore,
    user_id: str,
    question: str,
    options: list[str],
    limit: int = DECISIONS_LIMIT,
) -> list[DecisionRecord]:
    """Past settled decisions, for summarizing the user's tendencies."""
    keywords = keywords_for_decision(question, options)
    return await find_relevant(store, user_id, keywords, HistoryKind.DECISIONS, limit)
