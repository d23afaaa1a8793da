#!/usr/bin/env python3
"""Re-run the automated evaluation over stored proposals without changing their status."""
from __future__ import annotations

import argparse
import logging

from portal.api.services.runtime import PIPELINE_ERRORS
from portal.config import settings
from portal.db import init_db, save_evaluation_result, search_proposals
from portal.embeddings import EmbeddingService
from portal.evaluator import BedrockEvaluationClient
from portal.observability import configure_logging
from portal.pipeline import ProposalEvaluationPipeline

logger = logging.getLogger("portal.scripts.evaluate_all")


def evaluate_all(pipeline: ProposalEvaluationPipeline, *, status: str | None = None) -> tuple[int, int]:
    succeeded = 0
    failed = 0
    for proposal in search_proposals(status=status):
        try:
            outcome = pipeline.run(proposal)
            save_evaluation_result(
                str(proposal["id"]),
                status=str(proposal["status"]),
                ai_evaluation=outcome.evaluation,
                ai_score=outcome.score,
                ai_summary=outcome.summary,
                ai_recommendations=outcome.recommendations,
                novelty_check=outcome.novelty.to_dict(),
                mark_submitted=False,
            )
        except PIPELINE_ERRORS:
            # Already logged and recorded as a failed run by the pipeline.
            failed += 1
            continue
        except Exception:
            logger.exception(
                "proposal_reevaluation_failed",
                extra={"event": "proposal_reevaluation_failed", "proposal_id": str(proposal["id"])},
            )
            failed += 1
            continue

        succeeded += 1
        print(f"-> {proposal['project_title'] or proposal['id']}: score {outcome.score}")
    return succeeded, failed


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--status", default=None, help="Only evaluate proposals in this status.")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    init_db()
    pipeline = ProposalEvaluationPipeline(
        settings=settings,
        embedding_service=EmbeddingService.from_settings(settings),
        evaluation_client=BedrockEvaluationClient(settings=settings),
    )
    succeeded, failed = evaluate_all(pipeline, status=args.status)
    print(f"Evaluated {succeeded} proposals; {failed} failed.")
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
