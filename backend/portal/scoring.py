from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator, Mapping


@dataclass(frozen=True)
class ChecklistEntry:
    category: str
    item: str
    covered: bool
    justification: str


@dataclass(frozen=True)
class ChecklistSummary:
    total: int
    covered: int
    missed: list[ChecklistEntry] = field(default_factory=list)


def iter_checklist(evaluation: Mapping[str, object]) -> Iterator[ChecklistEntry]:
    for category_key, category in evaluation.items():
        if not isinstance(category, Mapping):
            continue
        for item_key, item in category.items():
            covered = isinstance(item, Mapping) and item.get("covered") is True
            justification = ""
            if isinstance(item, Mapping):
                justification = str(item.get("justification") or "").strip()
            yield ChecklistEntry(
                category=str(category_key),
                item=str(item_key),
                covered=covered,
                justification=justification,
            )


def percent(covered: int, total: int) -> int:
    if total <= 0:
        return 0
    # Half-up rounding; round() would send 12.5 to 12.
    return int(math.floor(100 * covered / total + 0.5))


def compute_score(evaluation: Mapping[str, object]) -> int:
    entries = list(iter_checklist(evaluation))
    return percent(sum(1 for entry in entries if entry.covered), len(entries))


def summarize_checklist(evaluation: Mapping[str, object]) -> ChecklistSummary:
    entries = list(iter_checklist(evaluation))
    return ChecklistSummary(
        total=len(entries),
        covered=sum(1 for entry in entries if entry.covered),
        missed=[entry for entry in entries if not entry.covered],
    )
