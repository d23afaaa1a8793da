from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from portal.api.contracts import ProposalUpdateRequest, ReviewRequest
from portal.api.services.runtime import (
    EvaluationPipelineGetter,
    NotifierGetter,
    conflict_from_transition,
    require_editable,
    require_owned_proposal,
    require_visible_proposal,
    submit_proposal,
)
from portal.auth import ROLE_APPLICANT, STAFF_ROLES, require_authenticated_user, require_roles
from portal.config import settings
from portal.db import (
    create_proposal,
    delete_proposal,
    list_evaluation_runs,
    record_review_decision,
    search_proposals,
    update_proposal_content,
)
from portal.workflow import InvalidTransitionError, ProposalStatus, apply_review_decision

logger = logging.getLogger("portal.api")

_STATUS_PATTERN = "^(" + "|".join(item.value for item in ProposalStatus) + ")$"


def build_proposals_router(
    *,
    get_evaluation_pipeline: EvaluationPipelineGetter,
    get_notifier: NotifierGetter,
) -> APIRouter:
    router = APIRouter()

    @router.post("/proposals", status_code=status.HTTP_201_CREATED)
    def create_proposal_endpoint(
        user: dict[str, object] = Depends(require_roles(ROLE_APPLICANT)),
    ) -> dict[str, object]:
        proposal = create_proposal(str(user["id"]))
        logger.info("proposal_created", extra={"event": "proposal_created", "proposal_id": proposal["id"]})
        return proposal

    @router.get("/proposals/search")
    def search_proposals_endpoint(
        q: str | None = Query(default=None, max_length=200),
        status_filter: str | None = Query(default=None, alias="status", pattern=_STATUS_PATTERN),
        user: dict[str, object] = Depends(require_authenticated_user),
    ) -> list[dict[str, object]]:
        if user["role"] == ROLE_APPLICANT:
            return search_proposals(applicant_id=str(user["id"]), status=status_filter, query=q)
        return search_proposals(status=status_filter, query=q, exclude_drafts=True)

    @router.get("/proposals/{proposal_id}")
    def get_proposal_endpoint(
        proposal_id: str,
        user: dict[str, object] = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        return require_visible_proposal(proposal_id, user)

    @router.put("/proposals/{proposal_id}")
    def update_proposal_endpoint(
        proposal_id: str,
        payload: ProposalUpdateRequest,
        user: dict[str, object] = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        proposal = require_owned_proposal(proposal_id, user)
        require_editable(proposal)

        changes = payload.model_dump(mode="json", exclude_unset=True, exclude={"submit_for_review"})
        updated = update_proposal_content(proposal_id, changes) if changes else proposal
        if updated is None:
            raise HTTPException(status_code=404, detail="Proposal not found")
        if not payload.submit_for_review:
            return updated
        return submit_proposal(updated, pipeline=get_evaluation_pipeline(), notifier=get_notifier())

    @router.post("/proposals/{proposal_id}/submit")
    def submit_proposal_endpoint(
        proposal_id: str,
        user: dict[str, object] = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        proposal = require_owned_proposal(proposal_id, user)
        return submit_proposal(proposal, pipeline=get_evaluation_pipeline(), notifier=get_notifier())

    @router.post("/proposals/{proposal_id}/review")
    def review_proposal_endpoint(
        proposal_id: str,
        payload: ReviewRequest,
        user: dict[str, object] = Depends(require_roles(*STAFF_ROLES)),
    ) -> dict[str, object]:
        proposal = require_visible_proposal(proposal_id, user)
        if proposal["status"] != ProposalStatus.UNDER_REVIEW.value:
            raise HTTPException(
                status_code=409,
                detail=f"Only proposals under review can receive a decision (current: '{proposal['status']}').",
            )
        try:
            outcome = apply_review_decision(
                str(proposal["status"]),
                payload.decision,
                resubmission_count=int(proposal["resubmission_count"]),
                max_revision_requests=settings.max_revision_requests,
            )
        except InvalidTransitionError as exc:
            raise conflict_from_transition(exc) from exc

        updated = record_review_decision(
            proposal_id,
            reviewer_id=str(user["id"]),
            reviewer_name=str(user["name"]),
            decision=payload.decision.value,
            comment=payload.comment.strip(),
            status=outcome.status.value,
            resubmission_count=outcome.resubmission_count,
        )
        if updated is None:
            raise HTTPException(status_code=404, detail="Proposal not found")
        logger.info(
            "proposal_reviewed",
            extra={
                "event": "proposal_reviewed",
                "proposal_id": proposal_id,
                "decision": payload.decision.value,
                "status": outcome.status.value,
                "resubmission_count": outcome.resubmission_count,
            },
        )
        return updated

    @router.delete("/proposals/{proposal_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_proposal_endpoint(
        proposal_id: str,
        user: dict[str, object] = Depends(require_authenticated_user),
    ) -> Response:
        proposal = require_owned_proposal(proposal_id, user)
        if proposal["status"] != ProposalStatus.DRAFT.value:
            raise HTTPException(status_code=409, detail="Only draft proposals can be deleted.")
        delete_proposal(proposal_id)
        logger.info("proposal_deleted", extra={"event": "proposal_deleted", "proposal_id": proposal_id})
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/proposals/{proposal_id}/evaluations")
    def list_evaluations_endpoint(
        proposal_id: str,
        user: dict[str, object] = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        require_visible_proposal(proposal_id, user)
        return {"proposal_id": proposal_id, "runs": list_evaluation_runs(proposal_id)}

    return router
