"""Pydantic schemas for requests, responses and oracle output.

Wire names are camelCase (``clarifyingAnswers``, ``optionAnalyses``) to match
the web client; Python code uses the snake_case attribute names.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

MAX_QUESTION_LENGTH = 2000
MAX_OPTION_LENGTH = 500
MAX_OPTIONS = 10


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Core value types
# ---------------------------------------------------------------------------


class ClarifyingAnswer(CamelModel):
    question: str
    answer: str


class OptionWeight(CamelModel):
    option: str
    weight: float = Field(..., ge=0)


class BiasType(str, Enum):
    EMOTIONAL = "emotional"
    CONTRADICTION = "contradiction"
    BOTH = "both"
    NONE = "none"


class BiasReport(CamelModel):
    """Heuristic bias flags derived from a decision's answers and weights.

    Computed fresh on every call, never persisted.
    """

    bias_detected: bool
    bias_type: BiasType
    emotional_score: int = Field(..., ge=0)
    message: str = ""


# ---------------------------------------------------------------------------
# Oracle output
# ---------------------------------------------------------------------------


class ClarifyingQuestion(CamelModel):
    question: str = Field(..., min_length=1)
    default_answer: str = ""

    @field_validator("default_answer", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or ""


class OptionAnalysis(CamelModel):
    option: str = Field(..., min_length=1)
    analysis: str = ""
    weight: float = Field(..., ge=0)
    best_case: str = ""
    worst_case: str = ""


class DecisionAnalysis(CamelModel):
    """Structured analysis returned by the reasoning oracle."""

    analysis: str
    option_analyses: list[OptionAnalysis] = Field(..., min_length=1)
    key_factors: list[str] = Field(default_factory=list)
    recommendation: str

    @property
    def option_weights(self) -> list[OptionWeight]:
        return [
            OptionWeight(option=oa.option, weight=oa.weight)
            for oa in self.option_analyses
        ]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class DecisionInput(CamelModel):
    """Question plus at least two distinct options."""

    question: str = Field(..., min_length=1, max_length=MAX_QUESTION_LENGTH)
    options: list[str] = Field(..., min_length=2, max_length=MAX_OPTIONS)

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Question must not be blank")
        return v.strip()

    @field_validator("options")
    @classmethod
    def options_distinct(cls, v: list[str]) -> list[str]:
        cleaned = [opt.strip() for opt in v]
        if any(not opt for opt in cleaned):
            raise ValueError("Options must not be blank")
        if any(len(opt) > MAX_OPTION_LENGTH for opt in cleaned):
            raise ValueError(f"Options must be at most {MAX_OPTION_LENGTH} characters")
        if len({opt.lower() for opt in cleaned}) != len(cleaned):
            raise ValueError("Options must be distinct")
        return cleaned


class ClarifyRequest(DecisionInput):
    pass


class DecideRequest(DecisionInput):
    clarifying_answers: Optional[list[ClarifyingAnswer]] = None
    initial_choice: Optional[str] = None

    @model_validator(mode="after")
    def initial_choice_blank_to_none(self):
        if self.initial_choice is not None and not self.initial_choice.strip():
            self.initial_choice = None
        return self


class FinalChoiceUpdate(CamelModel):
    final_choice: str = Field(..., min_length=1, max_length=MAX_OPTION_LENGTH)


class BulkDeleteRequest(CamelModel):
    ids: list[str] = Field(..., min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ClarifyResponse(CamelModel):
    questions: list[ClarifyingQuestion]


class DecisionResult(CamelModel):
    id: str
    analysis: str
    option_analyses: list[OptionAnalysis]
    key_factors: list[str]
    result: str
    recommendation: str
    bias: BiasReport


class DecisionSummary(CamelModel):
    """A stored decision as shown in the history view."""

    id: str
    question: str
    options: list[str]
    result: str
    initial_choice: Optional[str] = None
    final_choice: Optional[str] = None
    analysis: str = ""
    explanation: str = ""
    weights: list[OptionWeight] = Field(default_factory=list)
    clarifying_answers: Optional[list[ClarifyingAnswer]] = None
    created_at: datetime


class DeleteResult(CamelModel):
    deleted: int
