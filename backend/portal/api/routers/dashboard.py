from __future__ import annotations

from fastapi import APIRouter, Depends

from portal.auth import ROLE_APPLICANT, require_authenticated_user
from portal.db import count_proposals_by_status, count_proposals_reviewed_by, search_proposals
from portal.insights import compute_insights
from portal.scoring import percent
from portal.workflow import ProposalStatus


def build_dashboard_router() -> APIRouter:
    router = APIRouter()

    @router.get("/dashboard/stats")
    def dashboard_stats(user: dict[str, object] = Depends(require_authenticated_user)) -> dict[str, object]:
        if user["role"] == ROLE_APPLICANT:
            counts = count_proposals_by_status(applicant_id=str(user["id"]))
            approved = counts.get(ProposalStatus.APPROVED.value, 0)
            decided = approved + counts.get(ProposalStatus.REJECTED.value, 0)
            return {
                "total_proposals": sum(counts.values()),
                "approval_rate": percent(approved, decided),
                "under_review": counts.get(ProposalStatus.UNDER_REVIEW.value, 0),
                "needs_revision": counts.get(ProposalStatus.REVISION_REQUESTED.value, 0),
            }

        counts = count_proposals_by_status()
        return {
            "proposals_for_review": counts.get(ProposalStatus.UNDER_REVIEW.value, 0),
            "proposals_reviewed_by_me": count_proposals_reviewed_by(str(user["id"])),
            "total_approved": counts.get(ProposalStatus.APPROVED.value, 0),
            "total_rejected": counts.get(ProposalStatus.REJECTED.value, 0),
        }

    @router.get("/insights")
    def insights(_: dict[str, object] = Depends(require_authenticated_user)) -> dict[str, object]:
        return compute_insights(search_proposals(exclude_drafts=True))

    return router
