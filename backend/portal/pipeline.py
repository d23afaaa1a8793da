from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Mapping, Protocol

from portal.config import Settings
from portal.db import create_evaluation_run, list_past_projects
from portal.embeddings import EmbeddingService, build_summary_text
from portal.novelty import NoveltyResult, PastProjectLoader, find_most_similar
from portal.prompts import build_evaluation_prompt, checklist_item_titles
from portal.scoring import compute_score, summarize_checklist

logger = logging.getLogger("portal.pipeline")


class EvaluationClient(Protocol):
    def evaluate(self, prompt: str) -> dict[str, object]: ...


@dataclass(frozen=True)
class EvaluationOutcome:
    evaluation: dict[str, object]
    score: int
    novelty: NoveltyResult
    summary: str
    recommendations: list[str] = field(default_factory=list)
    duration_ms: float = 0.0


def build_summary(evaluation: Mapping[str, object], score: int, novelty: NoveltyResult) -> tuple[str, list[str]]:
    checklist = summarize_checklist(evaluation)
    summary = f"{checklist.covered} of {checklist.total} checklist items covered ({score}%)."
    if novelty.similarity_score:
        verdict = "potentially novel" if novelty.is_potentially_novel else "not novel"
        summary += (
            f" Closest past project: '{novelty.most_similar_project_title}' "
            f"(similarity {novelty.similarity_score:.4f}, {verdict})."
        )
    else:
        summary += " No comparable past project was found."

    titles = checklist_item_titles()
    recommendations: list[str] = []
    for entry in checklist.missed:
        title = titles.get((entry.category, entry.item), entry.item)
        recommendations.append(f"{title}: {entry.justification}" if entry.justification else title)
    return summary, recommendations


class ProposalEvaluationPipeline:
    """Embed, search, prompt, call the model, parse and score one proposal.

    Runs are sequential and unguarded: two concurrent runs on the same
    proposal both complete and the last write wins. Every run, successful or
    not, is appended to the evaluation run log before returning or raising.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        embedding_service: EmbeddingService,
        evaluation_client: EvaluationClient,
        load_candidates: PastProjectLoader = list_past_projects,
    ) -> None:
        self._settings = settings
        self._embedding_service = embedding_service
        self._evaluation_client = evaluation_client
        self._load_candidates = load_candidates

    def run(self, proposal: Mapping[str, object]) -> EvaluationOutcome:
        proposal_id = str(proposal.get("id") or "")
        started = time.perf_counter()
        try:
            outcome = self._evaluate(proposal)
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.error(
                "proposal_evaluation_failed",
                extra={
                    "event": "proposal_evaluation_failed",
                    "proposal_id": proposal_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "duration_ms": duration_ms,
                },
            )
            if proposal_id:
                try:
                    create_evaluation_run(proposal_id, status="failed", duration_ms=duration_ms, error=str(exc))
                except sqlite3.Error as audit_exc:
                    logger.error(
                        "evaluation_run_record_failed",
                        extra={
                            "event": "evaluation_run_record_failed",
                            "proposal_id": proposal_id,
                            "error_type": type(audit_exc).__name__,
                            "error": str(audit_exc),
                        },
                    )
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        if proposal_id:
            create_evaluation_run(proposal_id, status="succeeded", duration_ms=duration_ms, score=outcome.score)
        logger.info(
            "proposal_evaluation_completed",
            extra={
                "event": "proposal_evaluation_completed",
                "proposal_id": proposal_id,
                "score": outcome.score,
                "is_potentially_novel": outcome.novelty.is_potentially_novel,
                "duration_ms": duration_ms,
            },
        )
        return EvaluationOutcome(
            evaluation=outcome.evaluation,
            score=outcome.score,
            novelty=outcome.novelty,
            summary=outcome.summary,
            recommendations=outcome.recommendations,
            duration_ms=duration_ms,
        )

    def _evaluate(self, proposal: Mapping[str, object]) -> EvaluationOutcome:
        embedding = self._embedding_service.embed(build_summary_text(proposal), self._settings.embedding_dim)
        novelty = find_most_similar(
            embedding.vector,
            candidate_pool=self._settings.novelty_candidate_pool,
            threshold=self._settings.novelty_similarity_threshold,
            load_candidates=self._load_candidates,
        )
        prompt = build_evaluation_prompt(proposal, novelty)
        evaluation = self._evaluation_client.evaluate(prompt)
        score = compute_score(evaluation)
        summary, recommendations = build_summary(evaluation, score, novelty)
        return EvaluationOutcome(
            evaluation=evaluation,
            score=score,
            novelty=novelty,
            summary=summary,
            recommendations=recommendations,
        )
