"""Mock implementations for testing."""

from .decision_store_mock import FixedRandom, InMemoryDecisionStore
from .llm_mock import MockLLMClient

__all__ = [
    "FixedRandom",
    "InMemoryDecisionStore",
    "MockLLMClient",
]
