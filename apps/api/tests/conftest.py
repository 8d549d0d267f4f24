"""Shared pytest fixtures for Tiebreak API tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.oracle import DecisionOracle
from tests.factories import AnalysisFactory
from tests.mocks import FixedRandom, InMemoryDecisionStore, MockLLMClient

# ============================================================================
# PostgreSQL Session Fixtures
# ============================================================================


@pytest.fixture
def mock_postgres_session():
    """Mock PostgreSQL async session for unit tests.

    Provides a mock SQLAlchemy async session with common operations:
    - execute: Run queries (returns mock result)
    - commit: Commit transaction
    - rollback: Rollback transaction
    - add: Add object to session

    Example:
        async def test_get_missing(mock_postgres_session, session_maker_for):
            store = SqlDecisionStore(session_maker_for(mock_postgres_session))
            assert await store.get("user-1", "missing") is None
    """
    session = MagicMock()

    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=None)
    result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    result.rowcount = 0

    session.execute = AsyncMock(return_value=result)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.add = MagicMock()

    # Context manager support
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)

    return session


@pytest.fixture
def mock_postgres_result_factory():
    """Factory for creating mock PostgreSQL query results.

    Example:
        mock_postgres_session.execute.return_value = mock_postgres_result_factory(
            scalars_all=[row_a, row_b]
        )
    """

    def _create_result(scalar_one_or_none=None, scalars_all=None, rowcount=0):
        result = MagicMock()
        result.scalar_one_or_none = MagicMock(return_value=scalar_one_or_none)
        result.scalars = MagicMock(
            return_value=MagicMock(all=MagicMock(return_value=scalars_all or []))
        )
        result.rowcount = rowcount
        return result

    return _create_result


@pytest.fixture
def session_maker_for():
    """Wrap a mock session in a callable that behaves like async_sessionmaker."""

    def _maker(session):
        return MagicMock(return_value=session)

    return _maker


# ============================================================================
# Collaborator Fixtures
# ============================================================================


@pytest.fixture
def store():
    """Empty in-memory decision store."""
    return InMemoryDecisionStore()


@pytest.fixture
def mock_llm():
    """Mock LLM client answering clarify and decide prompts."""
    llm = MockLLMClient()
    llm.set_json_response(
        "clarifying questions",
        {
            "questions": [
                {"question": "How hungry are you?", "defaultAnswer": ""},
                {"question": "Any dietary goals?", "defaultAnswer": "Eating less meat"},
            ]
        },
    )
    llm.set_json_response("decision analysis assistant", AnalysisFactory.payload())
    return llm


@pytest.fixture
def oracle(mock_llm):
    return DecisionOracle(mock_llm)


@pytest.fixture
def fixed_random():
    """Factory for a random source with scripted draws in [0, 1)."""

    def _create(*values: float):
        return FixedRandom(*values)

    return _create


# ============================================================================
# Authentication Fixtures
# ============================================================================


@pytest.fixture
def sample_jwt_payload():
    """Return a sample JWT token payload."""
    now = int(datetime.now(timezone.utc).timestamp())
    return {
        "sub": "test-user-456",
        "email": "testuser@example.com",
        "iat": now,
        "exp": now + 3600,  # 1 hour
    }
