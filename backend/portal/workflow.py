from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProposalStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    REVISION_REQUESTED = "revision_requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    TERMINATED = "terminated"


class ReviewDecision(str, Enum):
    APPROVED = "Approved"
    REJECTED = "Rejected"
    REVISION_REQUESTED = "Revision Requested"


ALLOWED_TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.SUBMITTED}),
    ProposalStatus.REVISION_REQUESTED: frozenset({ProposalStatus.SUBMITTED}),
    ProposalStatus.SUBMITTED: frozenset({ProposalStatus.UNDER_REVIEW, ProposalStatus.REJECTED}),
    ProposalStatus.UNDER_REVIEW: frozenset(
        {
            ProposalStatus.APPROVED,
            ProposalStatus.REJECTED,
            ProposalStatus.REVISION_REQUESTED,
            ProposalStatus.TERMINATED,
        }
    ),
    ProposalStatus.APPROVED: frozenset(),
    ProposalStatus.REJECTED: frozenset(),
    ProposalStatus.TERMINATED: frozenset(),
}

EDITABLE_STATUSES = frozenset({ProposalStatus.DRAFT, ProposalStatus.REVISION_REQUESTED})
TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)

DEFAULT_AUTO_REJECT_THRESHOLD = 65


class InvalidTransitionError(ValueError):
    """Raised when a proposal status change is not an allowed edge."""


@dataclass(frozen=True)
class ReviewOutcome:
    status: ProposalStatus
    resubmission_count: int


def transition(current: ProposalStatus | str, target: ProposalStatus | str) -> ProposalStatus:
    source = ProposalStatus(current)
    destination = ProposalStatus(target)
    if destination not in ALLOWED_TRANSITIONS[source]:
        raise InvalidTransitionError(f"Cannot move proposal from '{source.value}' to '{destination.value}'.")
    return destination


def is_editable(status: ProposalStatus | str) -> bool:
    return ProposalStatus(status) in EDITABLE_STATUSES


def begin_submission(current: ProposalStatus | str) -> ProposalStatus:
    return transition(current, ProposalStatus.SUBMITTED)


def after_evaluation(score: int, *, threshold: int = DEFAULT_AUTO_REJECT_THRESHOLD) -> ProposalStatus:
    target = ProposalStatus.REJECTED if score < threshold else ProposalStatus.UNDER_REVIEW
    return transition(ProposalStatus.SUBMITTED, target)


def apply_review_decision(
    current: ProposalStatus | str,
    decision: ReviewDecision | str,
    *,
    resubmission_count: int,
    max_revision_requests: int,
) -> ReviewOutcome:
    """Map a reviewer decision onto the next status.

    Each revision request bumps ``resubmission_count`` by one. Once the count
    has reached ``max_revision_requests``, a further revision request
    terminates the proposal and leaves the count unchanged.
    """
    verdict = ReviewDecision(decision)
    if verdict is ReviewDecision.APPROVED:
        return ReviewOutcome(transition(current, ProposalStatus.APPROVED), resubmission_count)
    if verdict is ReviewDecision.REJECTED:
        return ReviewOutcome(transition(current, ProposalStatus.REJECTED), resubmission_count)

    if resubmission_count + 1 > max_revision_requests:
        return ReviewOutcome(transition(current, ProposalStatus.TERMINATED), resubmission_count)
    return ReviewOutcome(transition(current, ProposalStatus.REVISION_REQUESTED), resubmission_count + 1)
