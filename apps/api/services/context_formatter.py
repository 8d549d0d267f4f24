"""Render matched history records as text blocks for oracle prompts.

An empty string means "omit this section"; callers must not add a header
of their own around it.
"""

from datetime import datetime
from typing import Iterable

from services.decision_store import DecisionRecord, MalformedRecordError
from utils.logging import get_logger

logger = get_logger(__name__)

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

ANSWERS_HEADER = "User's Previous Answers to Similar Questions:"
ANSWERS_INSTRUCTION = (
    "When generating questions, reference these previous answers where relevant "
    '(e.g., "Last time on [date] you mentioned X. Is that still the case?"). '
    "Check the timestamps to assess whether the information is still current, "
    "and include the previous answer as the default value in your response."
)

DECISIONS_HEADER = "User's Past Similar Decisions:"
DECISIONS_INSTRUCTION = (
    "Consider the dates of these decisions: recent choices say more about the "
    "user's current preferences than old ones."
)


def format_timestamp(value: datetime) -> str:
    """Format as e.g. "Feb 3, 2026 2:30 PM"."""
    hour = value.hour % 12 or 12
    am_pm = "PM" if value.hour >= 12 else "AM"
    return (
        f"{MONTHS[value.month - 1]} {value.day}, {value.year} "
        f"{hour}:{value.minute:02d} {am_pm}"
    )


def _answer_block(record: DecisionRecord) -> str | None:
    try:
        answers = record.answer_list()
    except MalformedRecordError as e:
        logger.warning(f"Skipping history record with malformed answers: {e}")
        return None
    if not answers:
        return None

    lines = [f'[{format_timestamp(record.created_at)}] "{record.question}":']
    lines.extend(f"  {qa.question}: {qa.answer}" for qa in answers)
    return "\n".join(lines)


def _decision_block(record: DecisionRecord) -> str | None:
    if not record.final_choice:
        return None
    return f"[{format_timestamp(record.created_at)}] {record.question} → {record.final_choice}"


def _render(header: str, blocks: list[str], instruction: str) -> str:
    if not blocks:
        return ""
    return f"{header}\n" + "\n\n".join(blocks) + f"\n\n{instruction}"


def format_answer_context(records: Iterable[DecisionRecord]) -> str:
    """Previous clarifying answers, one timestamped block per decision."""
    blocks = [block for block in map(_answer_block, records) if block]
    return _render(ANSWERS_HEADER, blocks, ANSWERS_INSTRUCTION)


def format_decision_context(records: Iterable[DecisionRecord]) -> str:
    """Previous final choices rendered as "question → choice"."""
    blocks = [block for block in map(_decision_block, records) if block]
    return _render(DECISIONS_HEADER, blocks, DECISIONS_INSTRUCTION)
