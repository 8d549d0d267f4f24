"""Tests for the decision store and its record helpers."""

import json
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from models.postgres import Decision
from services.decision_store import (
    DecisionFinalizedError,
    DecisionNotFoundError,
    DecisionRecord,
    HistoryKind,
    HistoryQuery,
    MalformedRecordError,
    SqlDecisionStore,
    StoreUnavailableError,
    encode_json,
)
from tests.factories import DecisionRecordFactory


def make_row(**overrides) -> Decision:
    values = {
        "id": "decision-1",
        "user_id": "user-1",
        "question": "Vegan or normal patty?",
        "options": json.dumps(["vegan patty", "normal patty"]),
        "clarifying_answers": None,
        "weights": json.dumps(
            [{"option": "vegan patty", "weight": 70}, {"option": "normal patty", "weight": 30}]
        ),
        "analysis": "Analysis",
        "explanation": "Go vegan",
        "initial_choice": None,
        "result": "vegan patty",
        "final_choice": None,
        "created_at": datetime(2026, 2, 3, 14, 30),
    }
    values.update(overrides)
    return Decision(**values)


def db_down() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


# ============================================================================
# Record Helpers
# ============================================================================


class TestDecisionRecord:
    """Tests for DecisionRecord JSON helpers."""

    def test_decodes_columns(self):
        """Should decode options, weights and answers."""
        record = DecisionRecordFactory.create(
            options=["vegan patty", "normal patty"],
            weights=[("vegan patty", 70), ("normal patty", 30)],
            answers=[("Hungry?", "Very")],
        )

        assert record.option_list() == ["vegan patty", "normal patty"]
        assert [(w.option, w.weight) for w in record.weight_list()] == [
            ("vegan patty", 70),
            ("normal patty", 30),
        ]
        assert record.answer_list()[0].answer == "Very"

    def test_no_answers(self):
        """Should return an empty list when no answers were recorded."""
        assert DecisionRecordFactory.create().answer_list() == []

    @pytest.mark.parametrize("options", ["not json", '{"a": 1}', "[1, 2]"])
    def test_malformed_options(self, options):
        """Should raise MalformedRecordError for corrupt options."""
        record = DecisionRecordFactory.create()
        record.options = options

        with pytest.raises(MalformedRecordError):
            record.option_list()

    @pytest.mark.parametrize("weights", ["", "[{\"option\": \"A\"}]", '{"option": "A"}'])
    def test_malformed_weights(self, weights):
        """Should raise MalformedRecordError for corrupt weights."""
        record = DecisionRecordFactory.create()
        record.weights = weights

        with pytest.raises(MalformedRecordError):
            record.weight_list()

    def test_summary_tolerates_corrupt_columns(self):
        """Should render corrupt JSON columns as empty values."""
        record = DecisionRecordFactory.create(
            decision_id="d1", created_at=datetime(2026, 2, 3)
        )
        record.options = "oops"
        record.weights = "oops"
        record.clarifying_answers = "oops"

        summary = record.to_summary()

        assert summary.options == []
        assert summary.weights == []
        assert summary.clarifying_answers is None
        assert summary.question == record.question

    def test_summary_camel_case(self):
        """Should serialize with camelCase keys."""
        record = DecisionRecordFactory.create(
            decision_id="d1",
            created_at=datetime(2026, 2, 3),
            initial_choice="Option A",
            final_choice="Option B",
        )

        data = record.to_summary().model_dump(by_alias=True)

        assert data["initialChoice"] == "Option A"
        assert data["finalChoice"] == "Option B"
        assert "createdAt" in data

    def test_encode_json_keeps_unicode(self):
        """Should not escape non-ASCII text."""
        assert encode_json(["café"]) == '["café"]'


class TestHistoryQuery:
    """Tests for the HistoryQuery predicate."""

    def test_decisions_kind_requires_final_choice(self):
        query = HistoryQuery(keywords=("patty",), kind=HistoryKind.DECISIONS)

        assert not query.has_kind(DecisionRecordFactory.create())
        assert query.has_kind(DecisionRecordFactory.create(final_choice="Option A"))

    def test_answers_kind_requires_answers(self):
        query = HistoryQuery(keywords=("patty",), kind=HistoryKind.ANSWERS)
        empty = DecisionRecordFactory.create()
        empty.clarifying_answers = "[]"

        assert not query.has_kind(empty)
        assert query.has_kind(DecisionRecordFactory.create(answers=[("Q?", "A")]))

    def test_matches_options_text(self):
        """Should match keywords inside the serialized options."""
        query = HistoryQuery(keywords=("patty",))
        record = DecisionRecordFactory.create(
            question="Lunch?", options=["Veggie Patty", "Salad"], final_choice="Salad"
        )

        assert query.matches(record)

    def test_no_keywords_never_match(self):
        record = DecisionRecordFactory.create(final_choice="Option A")

        assert not HistoryQuery(keywords=()).matches(record)


# ============================================================================
# SQL Store
# ============================================================================


class TestSqlDecisionStoreQuery:
    """Tests for SqlDecisionStore.query."""

    @pytest.mark.asyncio
    async def test_empty_keywords_skip_database(self, mock_postgres_session, session_maker_for):
        """Should not open a session without keywords."""
        maker = session_maker_for(mock_postgres_session)
        store = SqlDecisionStore(maker)

        result = await store.query("user-1", HistoryQuery(keywords=()), 10)

        assert result == []
        maker.assert_not_called()

    @pytest.mark.asyncio
    async def test_returns_records(
        self, mock_postgres_session, mock_postgres_result_factory, session_maker_for
    ):
        """Should convert rows to DecisionRecords."""
        mock_postgres_session.execute.return_value = mock_postgres_result_factory(
            scalars_all=[make_row(final_choice="vegan patty")]
        )
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        result = await store.query("user-1", HistoryQuery(keywords=("patty",)), 10)

        assert len(result) == 1
        assert isinstance(result[0], DecisionRecord)
        assert result[0].final_choice == "vegan patty"

    @pytest.mark.asyncio
    async def test_database_error_raises_unavailable(
        self, mock_postgres_session, session_maker_for
    ):
        """Should translate SQLAlchemy errors into StoreUnavailableError."""
        mock_postgres_session.execute.side_effect = db_down()
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.query("user-1", HistoryQuery(keywords=("patty",)), 10)

        assert exc_info.value.operation == "history query"

    @pytest.mark.asyncio
    async def test_connection_error_raises_unavailable(
        self, mock_postgres_session, session_maker_for
    ):
        mock_postgres_session.execute.side_effect = ConnectionRefusedError()
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        with pytest.raises(StoreUnavailableError):
            await store.list_for_user("user-1")


class TestSqlDecisionStoreWrites:
    """Tests for SqlDecisionStore create, update and delete."""

    @pytest.mark.asyncio
    async def test_create_assigns_id_and_timestamp(
        self, mock_postgres_session, session_maker_for
    ):
        """Should add the row, commit and return it with id and created_at."""
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))
        draft = DecisionRecordFactory.create(user_id="user-7")

        record = await store.create(draft)

        assert record.id
        assert record.created_at is not None
        assert record.user_id == "user-7"
        mock_postgres_session.add.assert_called_once()
        mock_postgres_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_returns_updated_record(
        self, mock_postgres_session, mock_postgres_result_factory, session_maker_for
    ):
        mock_postgres_session.execute.return_value = mock_postgres_result_factory(
            scalar_one_or_none=make_row(final_choice="normal patty")
        )
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        record = await store.update("user-1", "decision-1", {"final_choice": "normal patty"})

        assert record.final_choice == "normal patty"
        mock_postgres_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_finalized_record(
        self, mock_postgres_session, mock_postgres_result_factory, session_maker_for
    ):
        """Should raise DecisionFinalizedError when the row exists but is locked."""
        mock_postgres_session.execute.side_effect = [
            mock_postgres_result_factory(scalar_one_or_none=None),
            mock_postgres_result_factory(scalar_one_or_none="decision-1"),
        ]
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        with pytest.raises(DecisionFinalizedError):
            await store.update("user-1", "decision-1", {"final_choice": "vegan patty"})

        mock_postgres_session.rollback.assert_awaited_once()
        mock_postgres_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_missing_record(
        self, mock_postgres_session, mock_postgres_result_factory, session_maker_for
    ):
        """Should raise DecisionNotFoundError for unknown or foreign ids."""
        mock_postgres_session.execute.side_effect = [
            mock_postgres_result_factory(scalar_one_or_none=None),
            mock_postgres_result_factory(scalar_one_or_none=None),
        ]
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        with pytest.raises(DecisionNotFoundError):
            await store.update("user-2", "decision-1", {"final_choice": "vegan patty"})

    @pytest.mark.asyncio
    async def test_update_rejects_other_fields(
        self, mock_postgres_session, session_maker_for
    ):
        """Should refuse to change anything but the final choice."""
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        with pytest.raises(ValueError):
            await store.update("user-1", "decision-1", {"result": "normal patty"})

        mock_postgres_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_postgres_session, session_maker_for):
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        assert await store.get("user-1", "missing") is None

    @pytest.mark.asyncio
    async def test_delete_returns_rowcount(
        self, mock_postgres_session, mock_postgres_result_factory, session_maker_for
    ):
        mock_postgres_session.execute.return_value = mock_postgres_result_factory(rowcount=2)
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        assert await store.delete("user-1", ["a", "b", "c"]) == 2
        mock_postgres_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_nothing(self, mock_postgres_session, session_maker_for):
        """Should not touch the database for an empty id list."""
        store = SqlDecisionStore(session_maker_for(mock_postgres_session))

        assert await store.delete("user-1", []) == 0
        mock_postgres_session.execute.assert_not_awaited()
