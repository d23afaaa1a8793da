from __future__ import annotations

import heapq
import logging
import sqlite3
from dataclasses import asdict, dataclass
from typing import Callable

from portal.db import list_past_projects
from portal.embeddings import cosine_similarity


logger = logging.getLogger("portal.novelty")

DEFAULT_SIMILARITY_THRESHOLD = 0.9
NO_MATCH_TITLE = "No similar past projects found in the database."

PastProjectLoader = Callable[[], list[dict[str, object]]]


@dataclass(frozen=True)
class NoveltyResult:
    is_potentially_novel: bool
    most_similar_project_title: str
    similarity_score: float

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def no_match_result() -> NoveltyResult:
    return NoveltyResult(
        is_potentially_novel=True,
        most_similar_project_title=NO_MATCH_TITLE,
        similarity_score=0,
    )


def vector_index_score(a: list[float], b: list[float]) -> float:
    # Cosine mapped onto [0, 1], the scale vector-index engines report.
    return (1.0 + cosine_similarity(a, b)) / 2.0


def classify_similarity(
    title: str,
    score: float,
    *,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> NoveltyResult:
    return NoveltyResult(
        is_potentially_novel=score < threshold,
        most_similar_project_title=title,
        similarity_score=round(score, 4),
    )


def find_most_similar(
    query_vector: list[float],
    *,
    candidate_pool: int,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    load_candidates: PastProjectLoader = list_past_projects,
) -> NoveltyResult:
    """Return the single closest past project to ``query_vector``.

    Every stored project is scored; ``candidate_pool`` only caps how many of
    the best-scoring ones are kept as the shortlist the top match is taken
    from. A corpus that cannot be read is treated like an empty one: the
    failure is logged and the proposal is reported as potentially novel with
    no comparison available.
    """
    if candidate_pool < 1 or not query_vector:
        return no_match_result()

    try:
        candidates = load_candidates()
    except sqlite3.Error as exc:
        logger.warning(
            "novelty_search_failed",
            extra={"event": "novelty_search_failed", "error": str(exc)},
        )
        return no_match_result()

    scored: list[tuple[float, str]] = []
    skipped = 0
    for candidate in candidates:
        embedding = candidate.get("summary_embedding")
        if not isinstance(embedding, list) or len(embedding) != len(query_vector):
            skipped += 1
            continue
        scored.append((vector_index_score(query_vector, embedding), str(candidate.get("title") or "")))

    if skipped:
        logger.warning(
            "novelty_candidates_skipped",
            extra={
                "event": "novelty_candidates_skipped",
                "query_dim": len(query_vector),
                "skipped": skipped,
                "total": len(candidates),
            },
        )

    shortlist = heapq.nlargest(candidate_pool, scored, key=lambda item: item[0])
    if not shortlist:
        return no_match_result()
    best_score, best_title = shortlist[0]
    return classify_similarity(best_title, best_score, threshold=threshold)
