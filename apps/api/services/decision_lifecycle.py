"""Decision lifecycle state machine.

A decision moves strictly forward through

    CREATED -> INITIAL_CHOICE_SET -> CLARIFYING_ANSWERED -> ANALYZED
            -> FLIPPED -> FINALIZED

entering each state exactly once. Nothing is persisted before FLIPPED;
the flip creates the stored record and finalizing updates it, one store
write each. FINALIZED is optional: a flipped decision may stay open.
Starting over always produces a new draft, never a reused identifier.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from pydantic import ValidationError

from models.schemas import (
    BiasReport,
    ClarifyingAnswer,
    DecisionAnalysis,
    DecisionInput,
    OptionWeight,
)
from services.bias_detector import CONTRADICTION_GAP, EMOTIONAL_THRESHOLD, detect_bias
from services.context_formatter import format_decision_context
from services.decision_store import DecisionRecord, DecisionStore, encode_json
from services.history_matcher import DECISIONS_LIMIT, find_relevant_decisions
from services.oracle import DecisionOracle, OracleFormatError
from services.weighted_selector import RandomSource, select
from utils.logging import get_logger, set_request_context

logger = get_logger(__name__)

WEIGHT_SUM_TOLERANCE = 0.5


class DecisionState(str, Enum):
    CREATED = "created"
    INITIAL_CHOICE_SET = "initial_choice_set"
    CLARIFYING_ANSWERED = "clarifying_answered"
    ANALYZED = "analyzed"
    FLIPPED = "flipped"
    FINALIZED = "finalized"


_STATE_ORDER = list(DecisionState)


class InvalidDecisionInput(ValueError):
    """Raised for a question or choice the user must correct."""


class InvalidTransitionError(Exception):
    """Raised when a transition is attempted out of order or repeated."""

    def __init__(self, current: DecisionState, target: DecisionState):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move decision from {current.value} to {target.value}"
        )


@dataclass
class FlipOutcome:
    decision: DecisionRecord
    bias: BiasReport


def _normalize(label: str) -> str:
    return label.strip().lower()


class DecisionLifecycle:
    """One decision's progress from draft to (optional) final choice.

    Collaborators are passed in explicitly: the store at construction, the
    oracle and random source on the transitions that need them.
    """

    def __init__(
        self,
        store: DecisionStore,
        user_id: str,
        question: str,
        options: list[str],
        state: DecisionState = DecisionState.CREATED,
        record: Optional[DecisionRecord] = None,
    ):
        self.store = store
        self.user_id = user_id
        self.question = question
        self.options = options
        self.state = state
        self.record = record

        self.initial_choice: Optional[str] = record.initial_choice if record else None
        self.answers: Optional[list[ClarifyingAnswer]] = None
        self.analysis: Optional[DecisionAnalysis] = None
        self.option_weights: list[OptionWeight] = []

    @classmethod
    def start(
        cls,
        store: DecisionStore,
        user_id: str,
        question: str,
        options: Sequence[str],
    ) -> "DecisionLifecycle":
        """Validate the input and open a draft in CREATED.

        Raises:
            InvalidDecisionInput: Blank question, fewer than two options,
                or duplicate/blank options
        """
        try:
            validated = DecisionInput(question=question, options=list(options))
        except ValidationError as e:
            message = "; ".join(err["msg"] for err in e.errors())
            raise InvalidDecisionInput(message) from e
        return cls(store, user_id, validated.question, validated.options)

    @classmethod
    def resume(cls, store: DecisionStore, record: DecisionRecord) -> "DecisionLifecycle":
        """Reattach to a persisted decision, at FLIPPED or FINALIZED.

        Raises:
            MalformedRecordError: The stored options or weights are corrupt
        """
        state = DecisionState.FINALIZED if record.final_choice else DecisionState.FLIPPED
        lifecycle = cls(
            store,
            record.user_id,
            record.question,
            record.option_list(),
            state=state,
            record=record,
        )
        lifecycle.option_weights = record.weight_list()
        lifecycle.answers = record.answer_list() or None
        return lifecycle

    @property
    def decision_id(self) -> Optional[str]:
        return self.record.id if self.record else None

    def _advance(self, target: DecisionState) -> None:
        expected = _STATE_ORDER[_STATE_ORDER.index(target) - 1]
        if self.state != expected:
            raise InvalidTransitionError(self.state, target)
        self.state = target

    def _require(self, target: DecisionState) -> None:
        """Check a transition is allowed without taking it yet."""
        expected = _STATE_ORDER[_STATE_ORDER.index(target) - 1]
        if self.state != expected:
            raise InvalidTransitionError(self.state, target)

    def set_initial_choice(self, choice: Optional[str]) -> None:
        """Record the user's gut choice; None or blank means no choice."""
        self._advance(DecisionState.INITIAL_CHOICE_SET)
        self.initial_choice = choice.strip() if choice and choice.strip() else None

    def record_answers(self, answers: Optional[Sequence[ClarifyingAnswer]]) -> None:
        """Record clarifying answers; an empty list is stored as absent."""
        self._advance(DecisionState.CLARIFYING_ANSWERED)
        self.answers = list(answers) if answers else None

    async def analyze(
        self,
        oracle: DecisionOracle,
        history_limit: int = DECISIONS_LIMIT,
        weight_sum_tolerance: float = WEIGHT_SUM_TOLERANCE,
    ) -> DecisionAnalysis:
        """Consult the oracle with the user's related past decisions.

        Raises:
            InvalidTransitionError: Answers have not been recorded yet
            OracleFormatError: The oracle's output is unusable
        """
        self._require(DecisionState.ANALYZED)

        history = await find_relevant_decisions(
            self.store, self.user_id, self.question, self.options, limit=history_limit
        )
        decision_context = format_decision_context(history)
        if history:
            logger.debug(f"Including {len(history)} past decisions in analysis prompt")

        analysis = await oracle.analyze(
            self.question,
            self.options,
            answers=self.answers,
            decision_context=decision_context,
            user_id=self.user_id,
        )
        return self.apply_analysis(analysis, weight_sum_tolerance)

    def apply_analysis(
        self,
        analysis: DecisionAnalysis,
        weight_sum_tolerance: float = WEIGHT_SUM_TOLERANCE,
    ) -> DecisionAnalysis:
        """Check the oracle's weights against the options and enter ANALYZED.

        Every option must receive exactly one non-negative weight and the
        weights must total 100 within the tolerance. Labels are matched
        ignoring case and surrounding whitespace, then replaced by the
        option text as the user wrote it, in the user's option order.

        Returns:
            The analysis with canonical option labels

        Raises:
            OracleFormatError: Labels or weights do not fit the options
        """
        self._require(DecisionState.ANALYZED)

        canonical = {_normalize(option): option for option in self.options}
        by_label = {}
        for option_analysis in analysis.option_analyses:
            key = _normalize(option_analysis.option)
            if key not in canonical:
                raise self._format_error(f"Oracle weighted an unknown option: {option_analysis.option!r}")
            if key in by_label:
                raise self._format_error(f"Oracle weighted option twice: {option_analysis.option!r}")
            if option_analysis.weight < 0:
                raise self._format_error(f"Negative weight for {option_analysis.option!r}")
            by_label[key] = option_analysis.model_copy(update={"option": canonical[key]})

        missing = [option for key, option in canonical.items() if key not in by_label]
        if missing:
            raise self._format_error(f"Oracle left options unweighted: {missing}")

        option_analyses = [by_label[_normalize(option)] for option in self.options]
        total = sum(oa.weight for oa in option_analyses)
        if abs(total - 100) > weight_sum_tolerance:
            raise self._format_error(f"Oracle weights total {total}, expected 100")

        self._advance(DecisionState.ANALYZED)
        self.analysis = analysis.model_copy(update={"option_analyses": option_analyses})
        self.option_weights = self.analysis.option_weights
        return self.analysis

    def _format_error(self, message: str) -> OracleFormatError:
        logger.error(f"Rejected oracle analysis: {message}")
        return OracleFormatError(message)

    async def flip(
        self,
        random_source: Optional[RandomSource] = None,
        emotional_threshold: int = EMOTIONAL_THRESHOLD,
        contradiction_gap: float = CONTRADICTION_GAP,
    ) -> FlipOutcome:
        """Draw the result, score bias against the weights, and persist.

        Raises:
            InvalidTransitionError: The decision has not been analyzed
            StoreUnavailableError: The record could not be saved
        """
        self._require(DecisionState.FLIPPED)

        result = select(self.option_weights, random_source)
        bias = detect_bias(
            self.answers,
            self.initial_choice,
            self.option_weights,
            emotional_threshold=emotional_threshold,
            contradiction_gap=contradiction_gap,
        )

        draft = DecisionRecord(
            user_id=self.user_id,
            question=self.question,
            options=encode_json(self.options),
            clarifying_answers=(
                encode_json([qa.model_dump() for qa in self.answers])
                if self.answers
                else None
            ),
            weights=encode_json([ow.model_dump() for ow in self.option_weights]),
            analysis=self.analysis.analysis,
            explanation=self.analysis.recommendation,
            initial_choice=self.initial_choice,
            result=result,
        )
        self.record = await self.store.create(draft)
        self._advance(DecisionState.FLIPPED)
        set_request_context(decision_id=self.record.id)

        logger.info(
            f"Decision flipped to {result!r}",
            extra={"bias_type": bias.bias_type.value},
        )
        return FlipOutcome(decision=self.record, bias=bias)

    async def finalize(self, final_choice: str) -> DecisionRecord:
        """Record which option the user actually went with.

        Raises:
            InvalidTransitionError: Not flipped yet, or already finalized
            InvalidDecisionInput: final_choice is not one of the options
            DecisionFinalizedError: Another request finalized it first
        """
        self._require(DecisionState.FINALIZED)

        chosen = _normalize(final_choice or "")
        match = next((option for option in self.options if _normalize(option) == chosen), None)
        if match is None:
            raise InvalidDecisionInput(f"{final_choice!r} is not one of the options")

        self.record = await self.store.update(
            self.user_id, self.record.id, {"final_choice": match}
        )
        self._advance(DecisionState.FINALIZED)
        return self.record

    def start_over(self) -> "DecisionLifecycle":
        """A fresh draft for the same question and options, with no id."""
        return DecisionLifecycle(self.store, self.user_id, self.question, list(self.options))
