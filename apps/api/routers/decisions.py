"""Decision endpoints with user isolation.

Every read and write goes through the DecisionStore scoped to the caller's
user_id, so a user can only ever see or change their own decisions.
Oracle, transition and storage errors propagate to the handlers registered
in main.py; only route-specific mappings are handled here.
"""

import random

from fastapi import APIRouter, Depends, HTTPException

from config import get_settings
from db.postgres import get_session_maker
from models.schemas import (
    BulkDeleteRequest,
    ClarifyRequest,
    ClarifyResponse,
    DecideRequest,
    DecisionResult,
    DecisionSummary,
    DeleteResult,
    FinalChoiceUpdate,
)
from routers.auth import require_auth
from services.context_formatter import format_answer_context
from services.decision_lifecycle import (
    DecisionLifecycle,
    InvalidDecisionInput,
    InvalidTransitionError,
)
from services.decision_store import (
    DecisionFinalizedError,
    DecisionNotFoundError,
    DecisionStore,
    MalformedRecordError,
    SqlDecisionStore,
)
from services.history_matcher import find_relevant_answers
from services.llm import get_llm_client
from services.oracle import DecisionOracle
from services.weighted_selector import RandomSource
from utils.logging import get_logger, set_request_context

logger = get_logger(__name__)

router = APIRouter()


def get_decision_store() -> DecisionStore:
    return SqlDecisionStore(get_session_maker())


def get_oracle() -> DecisionOracle:
    return DecisionOracle(get_llm_client())


def get_random_source() -> RandomSource:
    # One generator per request; concurrent flips never share state
    return random.Random()


@router.post("/clarify", response_model=ClarifyResponse)
async def clarify(
    request: ClarifyRequest,
    user_id: str = Depends(require_auth),
    store: DecisionStore = Depends(get_decision_store),
    oracle: DecisionOracle = Depends(get_oracle),
):
    """Generate clarifying questions, pre-filled from the user's past answers."""
    settings = get_settings()
    history = await find_relevant_answers(
        store,
        user_id,
        request.question,
        request.options,
        limit=settings.history_answers_limit,
    )
    questions = await oracle.generate_questions(
        request.question,
        request.options,
        answer_context=format_answer_context(history),
        user_id=user_id,
    )
    return ClarifyResponse(questions=questions)


@router.post("", response_model=DecisionResult)
async def decide(
    request: DecideRequest,
    user_id: str = Depends(require_auth),
    store: DecisionStore = Depends(get_decision_store),
    oracle: DecisionOracle = Depends(get_oracle),
    random_source: RandomSource = Depends(get_random_source),
):
    """Analyze the options, flip the weighted coin and save the decision."""
    settings = get_settings()

    lifecycle = DecisionLifecycle.start(store, user_id, request.question, request.options)
    lifecycle.set_initial_choice(request.initial_choice)
    lifecycle.record_answers(request.clarifying_answers)

    analysis = await lifecycle.analyze(
        oracle,
        history_limit=settings.history_decisions_limit,
        weight_sum_tolerance=settings.weight_sum_tolerance,
    )
    outcome = await lifecycle.flip(
        random_source,
        emotional_threshold=settings.bias_emotional_threshold,
        contradiction_gap=settings.bias_contradiction_gap,
    )

    return DecisionResult(
        id=outcome.decision.id,
        analysis=analysis.analysis,
        option_analyses=analysis.option_analyses,
        key_factors=analysis.key_factors,
        result=outcome.decision.result,
        recommendation=analysis.recommendation,
        bias=outcome.bias,
    )


@router.get("", response_model=list[DecisionSummary])
async def list_decisions(
    user_id: str = Depends(require_auth),
    store: DecisionStore = Depends(get_decision_store),
):
    """The user's decision history, newest first."""
    records = await store.list_for_user(user_id)
    return [record.to_summary() for record in records]


@router.get("/{decision_id}", response_model=DecisionSummary)
async def get_decision(
    decision_id: str,
    user_id: str = Depends(require_auth),
    store: DecisionStore = Depends(get_decision_store),
):
    record = await store.get(user_id, decision_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Decision not found")
    return record.to_summary()


@router.post("/{decision_id}/final-choice", response_model=DecisionSummary)
async def set_final_choice(
    decision_id: str,
    update: FinalChoiceUpdate,
    user_id: str = Depends(require_auth),
    store: DecisionStore = Depends(get_decision_store),
):
    """Record the option the user actually went with. Allowed once."""
    set_request_context(decision_id=decision_id)
    record = await store.get(user_id, decision_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Decision not found")

    try:
        lifecycle = DecisionLifecycle.resume(store, record)
    except MalformedRecordError as e:
        logger.error(f"Cannot finalize decision with corrupt options: {e}")
        raise HTTPException(status_code=500, detail="Stored decision is unreadable")

    try:
        finalized = await lifecycle.finalize(update.final_choice)
    except InvalidDecisionInput as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (InvalidTransitionError, DecisionFinalizedError):
        raise HTTPException(status_code=409, detail="Final choice already recorded")
    except DecisionNotFoundError:
        raise HTTPException(status_code=404, detail="Decision not found")

    logger.info(f"Final choice recorded: {finalized.final_choice!r}")
    return finalized.to_summary()


@router.delete("/{decision_id}", response_model=DeleteResult)
async def delete_decision(
    decision_id: str,
    user_id: str = Depends(require_auth),
    store: DecisionStore = Depends(get_decision_store),
):
    deleted = await store.delete(user_id, [decision_id])
    if deleted == 0:
        raise HTTPException(status_code=404, detail="Decision not found")
    return DeleteResult(deleted=deleted)


@router.post("/bulk-delete", response_model=DeleteResult)
async def bulk_delete_decisions(
    request: BulkDeleteRequest,
    user_id: str = Depends(require_auth),
    store: DecisionStore = Depends(get_decision_store),
):
    """Delete several of the user's decisions; unknown or foreign ids are ignored."""
    deleted = await store.delete(user_id, request.ids)
    logger.info(f"Bulk-deleted {deleted} of {len(request.ids)} decisions")
    return DeleteResult(deleted=deleted)
