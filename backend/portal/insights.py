from __future__ import annotations

from typing import Iterable, Mapping

from portal.prompts import checklist_item_titles
from portal.scoring import iter_checklist, percent
from portal.workflow import ProposalStatus

OUTCOME_GROUPS: tuple[tuple[str, ProposalStatus], ...] = (
    ("Approved", ProposalStatus.APPROVED),
    ("Rejected", ProposalStatus.REJECTED),
    ("Under Review", ProposalStatus.UNDER_REVIEW),
)


def _item_rates(proposals: Iterable[Mapping[str, object]]) -> dict[tuple[str, str], tuple[int, int]]:
    rates: dict[tuple[str, str], tuple[int, int]] = {}
    for proposal in proposals:
        evaluation = proposal.get("ai_evaluation")
        if not isinstance(evaluation, Mapping):
            continue
        for entry in iter_checklist(evaluation):
            covered, total = rates.get((entry.category, entry.item), (0, 0))
            rates[(entry.category, entry.item)] = (covered + int(entry.covered), total + 1)
    return rates


def average_scores(proposals: list[Mapping[str, object]]) -> list[dict[str, object]]:
    results: list[dict[str, object]] = []
    for label, status in OUTCOME_GROUPS:
        scores = [
            int(proposal["ai_score"])
            for proposal in proposals
            if proposal.get("status") == status.value and proposal.get("ai_score") is not None
        ]
        average = round(sum(scores) / len(scores)) if scores else 0
        results.append({"name": label, "avg_score": average, "proposals": len(scores)})
    return results


def compute_insights(proposals: list[Mapping[str, object]], *, limit: int = 3) -> dict[str, object]:
    """Aggregate anonymised checklist outcomes across evaluated proposals.

    Hallmarks are the items most often covered by approved proposals; pitfalls
    are the items most often missed by rejected ones.
    """
    titles = checklist_item_titles()

    approved = [p for p in proposals if p.get("status") == ProposalStatus.APPROVED.value]
    hallmark_rates = sorted(
        ((percent(covered, total), key) for key, (covered, total) in _item_rates(approved).items() if covered),
        key=lambda item: (-item[0], item[1]),
    )
    hallmarks = [
        f"{titles.get(key, key[1])} (covered by {rate}% of approved proposals)"
        for rate, key in hallmark_rates[:limit]
    ]

    rejected = [p for p in proposals if p.get("status") == ProposalStatus.REJECTED.value]
    pitfall_rates = sorted(
        (
            (percent(total - covered, total), key)
            for key, (covered, total) in _item_rates(rejected).items()
            if total - covered
        ),
        key=lambda item: (-item[0], item[1]),
    )
    pitfalls = [
        f"{titles.get(key, key[1])} (missed by {rate}% of rejected proposals)"
        for rate, key in pitfall_rates[:limit]
    ]

    return {
        "average_scores": average_scores(proposals),
        "hallmarks": hallmarks,
        "pitfalls": pitfalls,
    }
