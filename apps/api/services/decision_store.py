"""Decision storage collaborator.

Every operation is scoped by user_id, so a caller can never read or write
another user's decisions. JSON-bearing columns are kept as text and decoded
per record by the DecisionRecord helpers.
"""

import json
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.postgres import Decision, generate_uuid
from models.schemas import ClarifyingAnswer, DecisionSummary, OptionWeight
from utils.logging import get_logger

logger = get_logger(__name__)

# Fields the lifecycle may change after a decision is persisted
ALLOWED_UPDATE_FIELDS = frozenset({"final_choice"})


class StoreUnavailableError(Exception):
    """Raised when the backing database cannot serve a request."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Decision store unavailable during {operation}")


class DecisionNotFoundError(LookupError):
    """Raised when a decision does not exist for this user."""

    def __init__(self, decision_id: str):
        self.decision_id = decision_id
        super().__init__(f"Decision {decision_id} not found")


class DecisionFinalizedError(Exception):
    """Raised when writing to a decision whose final choice is already set."""

    def __init__(self, decision_id: str):
        self.decision_id = decision_id
        super().__init__(f"Decision {decision_id} is already finalized")


class MalformedRecordError(ValueError):
    """Raised when a stored JSON column cannot be decoded."""


def encode_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


@dataclass
class DecisionRecord:
    """A persisted decision, JSON columns still encoded."""

    user_id: str
    question: str
    options: str
    weights: str
    result: str
    clarifying_answers: Optional[str] = None
    analysis: str = ""
    explanation: str = ""
    initial_choice: Optional[str] = None
    final_choice: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def option_list(self) -> list[str]:
        try:
            options = json.loads(self.options)
        except (TypeError, json.JSONDecodeError) as e:
            raise MalformedRecordError(f"options of {self.id}: {e}") from e
        if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
            raise MalformedRecordError(f"options of {self.id} is not a list of strings")
        return options

    def weight_list(self) -> list[OptionWeight]:
        try:
            raw = json.loads(self.weights)
            if not isinstance(raw, list):
                raise MalformedRecordError(f"weights of {self.id} is not a list")
            return [OptionWeight.model_validate(item) for item in raw]
        except (TypeError, json.JSONDecodeError, ValidationError) as e:
            raise MalformedRecordError(f"weights of {self.id}: {e}") from e

    def answer_list(self) -> list[ClarifyingAnswer]:
        """Decoded clarifying answers; empty when none were recorded."""
        if not self.clarifying_answers:
            return []
        try:
            raw = json.loads(self.clarifying_answers)
            if not isinstance(raw, list):
                raise MalformedRecordError(f"clarifying answers of {self.id} is not a list")
            return [ClarifyingAnswer.model_validate(item) for item in raw]
        except (TypeError, json.JSONDecodeError, ValidationError) as e:
            raise MalformedRecordError(f"clarifying answers of {self.id}: {e}") from e

    def to_summary(self) -> DecisionSummary:
        """History view of the record; corrupt JSON columns come back empty."""
        try:
            options = self.option_list()
        except MalformedRecordError:
            options = []
        try:
            weights = self.weight_list()
        except MalformedRecordError:
            weights = []
        try:
            answers = self.answer_list() or None
        except MalformedRecordError:
            answers = None

        return DecisionSummary(
            id=self.id,
            question=self.question,
            options=options,
            result=self.result,
            initial_choice=self.initial_choice,
            final_choice=self.final_choice,
            analysis=self.analysis,
            explanation=self.explanation,
            weights=weights,
            clarifying_answers=answers,
            created_at=self.created_at,
        )


class HistoryKind(str, Enum):
    ANSWERS = "answers"  # Decisions that recorded clarifying answers
    DECISIONS = "decisions"  # Decisions the user settled with a final choice


@dataclass(frozen=True)
class HistoryQuery:
    """Predicate for history lookups: right kind AND any keyword matches.

    A keyword matches when it is a case-insensitive substring of the
    question or of the serialized options text.
    """

    keywords: tuple[str, ...]
    kind: HistoryKind = HistoryKind.DECISIONS
    fields: tuple[str, ...] = field(default=("question", "options"))

    def has_kind(self, record: DecisionRecord) -> bool:
        if self.kind == HistoryKind.ANSWERS:
            return bool(record.clarifying_answers) and record.clarifying_answers != "[]"
        return bool(record.final_choice)

    def matches(self, record: DecisionRecord) -> bool:
        if not self.keywords or not self.has_kind(record):
            return False
        haystacks = [(getattr(record, name) or "").lower() for name in self.fields]
        return any(kw.lower() in text for kw in self.keywords for text in haystacks)


class DecisionStore(ABC):
    """Storage collaborator for decisions. All reads and writes are user-scoped."""

    @abstractmethod
    async def query(
        self, user_id: str, history_query: HistoryQuery, limit: int
    ) -> list[DecisionRecord]:
        """Records of user_id matching the query, newest first, at most limit."""
        ...

    @abstractmethod
    async def create(self, record: DecisionRecord) -> DecisionRecord:
        """Persist a new record, assigning id and created_at."""
        ...

    @abstractmethod
    async def update(
        self, user_id: str, decision_id: str, fields: dict[str, Any]
    ) -> DecisionRecord:
        """Apply fields to a not-yet-finalized record."""
        ...

    @abstractmethod
    async def get(self, user_id: str, decision_id: str) -> Optional[DecisionRecord]:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[DecisionRecord]:
        """All records of user_id, newest first."""
        ...

    @abstractmethod
    async def delete(self, user_id: str, decision_ids: list[str]) -> int:
        """Delete the given records, returning how many were removed."""
        ...


def _check_update_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - ALLOWED_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")


def _to_record(row: Decision) -> DecisionRecord:
    return DecisionRecord(
        id=row.id,
        user_id=row.user_id,
        question=row.question,
        options=row.options,
        weights=row.weights,
        result=row.result,
        clarifying_answers=row.clarifying_answers,
        analysis=row.analysis or "",
        explanation=row.explanation or "",
        initial_choice=row.initial_choice,
        final_choice=row.final_choice,
        created_at=row.created_at,
    )


@contextmanager
def _translate_errors(operation: str):
    try:
        yield
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Decision store {operation} failed: {type(e).__name__}: {e}")
        raise StoreUnavailableError(operation) from e


class SqlDecisionStore(DecisionStore):
    """DecisionStore backed by the PostgreSQL decisions table."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    def _history_filter(self, history_query: HistoryQuery):
        if history_query.kind == HistoryKind.ANSWERS:
            kind_filter = [
                Decision.clarifying_answers.is_not(None),
                Decision.clarifying_answers != "",
                Decision.clarifying_answers != "[]",
            ]
        else:
            kind_filter = [
                Decision.final_choice.is_not(None),
                Decision.final_choice != "",
            ]

        columns = [getattr(Decision, name) for name in history_query.fields]
        keyword_filter = or_(
            *[column.ilike(f"%{kw}%") for kw in history_query.keywords for column in columns]
        )
        return [*kind_filter, keyword_filter]

    async def query(
        self, user_id: str, history_query: HistoryQuery, limit: int
    ) -> list[DecisionRecord]:
        if not history_query.keywords:
            return []

        stmt = (
            select(Decision)
            .where(Decision.user_id == user_id)
            .where(*self._history_filter(history_query))
            .order_by(Decision.created_at.desc(), Decision.seq.asc())
            .limit(limit)
        )
        with _translate_errors("history query"):
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return [_to_record(row) for row in result.scalars().all()]

    async def create(self, record: DecisionRecord) -> DecisionRecord:
        row = Decision(
            id=generate_uuid(),
            user_id=record.user_id,
            question=record.question,
            options=record.options,
            clarifying_answers=record.clarifying_answers,
            weights=record.weights,
            analysis=record.analysis,
            explanation=record.explanation,
            initial_choice=record.initial_choice,
            result=record.result,
            final_choice=record.final_choice,
            created_at=datetime.utcnow(),
        )
        with _translate_errors("create"):
            async with self._session_maker() as session:
                session.add(row)
                await session.commit()
                return _to_record(row)

    async def update(
        self, user_id: str, decision_id: str, fields: dict[str, Any]
    ) -> DecisionRecord:
        _check_update_fields(fields)

        # Only rows without a final choice are writable; the WHERE clause makes
        # concurrent finalize requests race safely
        stmt = (
            update(Decision)
            .where(
                Decision.id == decision_id,
                Decision.user_id == user_id,
                Decision.final_choice.is_(None),
            )
            .values(**fields)
            .returning(Decision)
        )
        with _translate_errors("update"):
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                row = result.scalar_one_or_none()
                if row is None:
                    await session.rollback()
                    existing = await session.execute(
                        select(Decision.id).where(
                            Decision.id == decision_id, Decision.user_id == user_id
                        )
                    )
                    if existing.scalar_one_or_none() is None:
                        raise DecisionNotFoundError(decision_id)
                    raise DecisionFinalizedError(decision_id)
                record = _to_record(row)
                await session.commit()
                return record

    async def get(self, user_id: str, decision_id: str) -> Optional[DecisionRecord]:
        stmt = select(Decision).where(
            Decision.id == decision_id, Decision.user_id == user_id
        )
        with _translate_errors("get"):
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                row = result.scalar_one_or_none()
                return _to_record(row) if row else None

    async def list_for_user(self, user_id: str) -> list[DecisionRecord]:
        stmt = (
            select(Decision)
            .where(Decision.user_id == user_id)
            .order_by(Decision.created_at.desc(), Decision.seq.asc())
        )
        with _translate_errors("list"):
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return [_to_record(row) for row in result.scalars().all()]

    async def delete(self, user_id: str, decision_ids: list[str]) -> int:
        if not decision_ids:
            return 0
        stmt = delete(Decision).where(
            Decision.user_id == user_id, Decision.id.in_(decision_ids)
        )
        with _translate_errors("delete"):
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount or 0
