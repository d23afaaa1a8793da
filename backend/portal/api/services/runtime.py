from __future__ import annotations

import logging
from typing import Callable, Mapping

from fastapi import HTTPException

from portal.auth import ROLE_APPLICANT, ROLE_REVIEWER, STAFF_ROLES
from portal.config import settings
from portal.db import get_proposal, get_user, list_users, save_evaluation_result
from portal.embeddings import EmbeddingProviderError, EmbeddingService
from portal.evaluator import EvaluationParseError, EvaluationRuntimeError
from portal.notifications import EmailNotifier
from portal.pipeline import ProposalEvaluationPipeline
from portal.workflow import (
    InvalidTransitionError,
    ProposalStatus,
    after_evaluation,
    begin_submission,
    is_editable,
)

logger = logging.getLogger("portal.api")

EmbeddingServiceGetter = Callable[[], EmbeddingService]
EvaluationPipelineGetter = Callable[[], ProposalEvaluationPipeline]
NotifierGetter = Callable[[], EmailNotifier]

PIPELINE_ERRORS = (EmbeddingProviderError, EvaluationRuntimeError, EvaluationParseError)


def require_proposal(proposal_id: str) -> dict[str, object]:
    proposal = get_proposal(proposal_id)
    if proposal is None:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return proposal


def is_owner(user: Mapping[str, object], proposal: Mapping[str, object]) -> bool:
    return str(proposal.get("applicant_id")) == str(user.get("id"))


def require_visible_proposal(proposal_id: str, user: Mapping[str, object]) -> dict[str, object]:
    proposal = require_proposal(proposal_id)
    if is_owner(user, proposal):
        return proposal
    if str(user.get("role")) in STAFF_ROLES and proposal.get("status") != ProposalStatus.DRAFT.value:
        return proposal
    # Hide existence from users who may not see it.
    raise HTTPException(status_code=404, detail="Proposal not found")


def require_owned_proposal(proposal_id: str, user: Mapping[str, object]) -> dict[str, object]:
    proposal = require_proposal(proposal_id)
    if str(user.get("role")) != ROLE_APPLICANT or not is_owner(user, proposal):
        raise HTTPException(status_code=403, detail="Only the owning applicant can modify this proposal.")
    return proposal


def require_editable(proposal: Mapping[str, object]) -> None:
    if not is_editable(str(proposal.get("status"))):
        raise HTTPException(
            status_code=409,
            detail=f"Proposal cannot be edited while in status '{proposal.get('status')}'.",
        )


def conflict_from_transition(exc: InvalidTransitionError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


def submit_proposal(
    proposal: dict[str, object],
    *,
    pipeline: ProposalEvaluationPipeline,
    notifier: EmailNotifier,
) -> dict[str, object]:
    proposal_id = str(proposal["id"])
    try:
        begin_submission(str(proposal.get("status")))
    except InvalidTransitionError as exc:
        raise conflict_from_transition(exc) from exc

    try:
        outcome = pipeline.run(proposal)
    except PIPELINE_ERRORS as exc:
        raise HTTPException(
            status_code=502,
            detail={"message": "Automated evaluation failed; proposal status is unchanged.", "error": str(exc)},
        ) from exc

    next_status = after_evaluation(outcome.score, threshold=settings.auto_reject_threshold)
    updated = save_evaluation_result(
        proposal_id,
        status=next_status.value,
        ai_evaluation=outcome.evaluation,
        ai_score=outcome.score,
        ai_summary=outcome.summary,
        ai_recommendations=outcome.recommendations,
        novelty_check=outcome.novelty.to_dict(),
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Proposal not found")

    logger.info(
        "proposal_submitted",
        extra={
            "event": "proposal_submitted",
            "proposal_id": proposal_id,
            "status": next_status.value,
            "score": outcome.score,
        },
    )
    notify_submission(updated, notifier=notifier)
    return updated


def notify_submission(proposal: Mapping[str, object], *, notifier: EmailNotifier) -> None:
    applicant = get_user(str(proposal.get("applicant_id")))
    if applicant is not None:
        notifier.send_submission_confirmation(str(applicant["email"]), proposal)
        if proposal.get("status") == ProposalStatus.REJECTED.value:
            notifier.send_auto_rejection(str(applicant["email"]), proposal)

    if proposal.get("status") == ProposalStatus.UNDER_REVIEW.value:
        for reviewer in list_users(roles=(ROLE_REVIEWER,)):
            notifier.send_new_proposal_for_review(str(reviewer["email"]), proposal)
