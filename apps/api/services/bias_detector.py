"""Heuristic bias flags for a decision.

Two independent triggers:
- emotional: affect words in the clarifying answers (score >= threshold)
- contradiction: the user's gut choice trails the oracle's top option by
  more than ``contradiction_gap`` weight points

This is a trigger, not a classifier. It has no I/O and no state.
"""

import re
from typing import Optional, Sequence

from models.schemas import BiasReport, BiasType, ClarifyingAnswer, OptionWeight

EMOTIONAL_THRESHOLD = 3
CONTRADICTION_GAP = 15.0

INFLECTION = r"(?:s|es|d|ed|ing|ly|ness)?"

# Stems take simple inflections only: "worry" covers worrying, "worri" covers
# worried and worries
EMOTIONAL_KEYWORDS = (
    "feel", "felt", "scared", "afraid", "fear", "worry", "worri",
    "anxiety", "excited", "love", "hate", "angry", "mad", "frustrated",
    "stressed", "happy", "sad", "upset", "nervous", "anxious", "terrified",
    "thrilled", "desperate", "hopeless", "overwhelmed", "panic", "dread",
    "heart", "gut", "instinct",
)

_KEYWORD_PATTERNS = tuple(
    re.compile(rf"\b{re.escape(keyword)}{INFLECTION}\b") for keyword in EMOTIONAL_KEYWORDS
)

BIAS_MESSAGES = {
    BiasType.BOTH: (
        "Your answers show strong emotional language, and your gut feeling "
        "contradicts the logical analysis. Consider whether emotions are "
        "influencing your decision."
    ),
    BiasType.EMOTIONAL: (
        "Your answers contain emotional language. Make sure you're considering "
        "the practical aspects alongside your feelings."
    ),
    BiasType.CONTRADICTION: (
        "Your initial choice differs significantly from the analytical "
        "recommendation. Your gut might be telling you something important, "
        "or it might be influenced by bias."
    ),
    BiasType.NONE: "",
}


def _normalize(label: str) -> str:
    return label.strip().lower()


def emotional_score(answers: Optional[Sequence[ClarifyingAnswer]]) -> int:
    """Count affect-word occurrences across all answer texts."""
    if not answers:
        return 0
    text = " ".join(qa.answer for qa in answers).lower()
    return sum(len(pattern.findall(text)) for pattern in _KEYWORD_PATTERNS)


def has_contradiction(
    initial_choice: Optional[str],
    option_weights: Sequence[OptionWeight],
    gap: float = CONTRADICTION_GAP,
) -> bool:
    """True when the gut choice trails a different top option by more than gap.

    An initial choice that is not among the weighted options cannot be
    scored and is never flagged.
    """
    if not initial_choice or not option_weights:
        return False

    top = option_weights[0]
    for candidate in option_weights[1:]:
        if candidate.weight > top.weight:
            top = candidate

    chosen = _normalize(initial_choice)
    if chosen == _normalize(top.option):
        return False

    initial = next((ow for ow in option_weights if _normalize(ow.option) == chosen), None)
    if initial is None:
        return False

    return top.weight - initial.weight > gap


def detect_bias(
    clarifying_answers: Optional[Sequence[ClarifyingAnswer]],
    initial_choice: Optional[str],
    option_weights: Sequence[OptionWeight],
    *,
    emotional_threshold: int = EMOTIONAL_THRESHOLD,
    contradiction_gap: float = CONTRADICTION_GAP,
) -> BiasReport:
    score = emotional_score(clarifying_answers)
    emotional = score >= emotional_threshold
    contradiction = has_contradiction(initial_choice, option_weights, contradiction_gap)

    if emotional and contradiction:
        bias_type = BiasType.BOTH
    elif emotional:
        bias_type = BiasType.EMOTIONAL
    elif contradiction:
        bias_type = BiasType.CONTRADICTION
    else:
        bias_type = BiasType.NONE

    return BiasReport(
        bias_detected=bias_type != BiasType.NONE,
        bias_type=bias_type,
        emotional_score=score,
        message=BIAS_MESSAGES[bias_type],
    )
