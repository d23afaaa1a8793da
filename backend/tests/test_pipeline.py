from __future__ import annotations

from pathlib import Path

import pytest

from portal.config import settings
from portal.db import (
    create_past_project,
    create_proposal,
    create_user,
    init_db,
    list_evaluation_runs,
    update_proposal_content,
)
from portal.embeddings import EmbeddingProviderError, EmbeddingService, build_summary_text, embed_text
from portal.evaluator import EvaluationParseError
from portal.pipeline import ProposalEvaluationPipeline
from portal.prompts import EVALUATION_CHECKLIST


def _evaluation(covered_count: int) -> dict[str, object]:
    evaluation: dict[str, object] = {}
    index = 0
    for category in EVALUATION_CHECKLIST:
        items: dict[str, object] = {}
        for item in category.items:
            covered = index < covered_count
            items[item.key] = {
                "covered": covered,
                "justification": "Addressed." if covered else f"{item.key} is missing.",
            }
            index += 1
        evaluation[category.key] = items
    return evaluation


class FakeEvaluationClient:
    def __init__(self, evaluation: dict[str, object]) -> None:
        self.evaluation = evaluation
        self.prompts: list[str] = []

    def evaluate(self, prompt: str) -> dict[str, object]:
        self.prompts.append(prompt)
        return self.evaluation


class BrokenEvaluationClient:
    def evaluate(self, prompt: str) -> dict[str, object]:
        raise EvaluationParseError("Failed to parse model response as JSON.")


class BrokenEmbeddingService:
    def embed(self, text: str, dim: int):
        raise EmbeddingProviderError("Bedrock embedding failed: AccessDenied")


@pytest.fixture()
def database(tmp_path: Path):
    original = settings.database_url
    settings.database_url = f"sqlite:///{tmp_path}/pipeline.db"
    init_db()
    yield
    settings.database_url = original


def _stored_proposal() -> dict[str, object]:
    applicant = create_user(name="Asha Rao", email="asha@example.org", password_hash="x.y", role="applicant")
    proposal = create_proposal(str(applicant["id"]))
    updated = update_proposal_content(
        str(proposal["id"]),
        {
            "project_title": "Dry Beneficiation of High Ash Coal",
            "objectives": "Reduce ash content without water.",
            "rd_components": "Air fluidised separation.",
        },
    )
    assert updated is not None
    return updated


def _pipeline(client, embedding_service=None) -> ProposalEvaluationPipeline:
    return ProposalEvaluationPipeline(
        settings=settings,
        embedding_service=embedding_service
        or EmbeddingService(mode="hash", aws_region="us-east-1", bedrock_model_id="unused"),
        evaluation_client=client,
    )


def test_pipeline_scores_and_records_successful_run(database: None) -> None:
    proposal = _stored_proposal()
    client = FakeEvaluationClient(_evaluation(12))

    outcome = _pipeline(client).run(proposal)

    assert outcome.score == 71
    assert outcome.novelty.is_potentially_novel is True
    assert outcome.summary.startswith("12 of 17 checklist items covered (71%).")
    assert len(outcome.recommendations) == 5
    assert "novelty_check_result" in client.prompts[0]

    runs = list_evaluation_runs(str(proposal["id"]))
    assert len(runs) == 1
    assert runs[0]["status"] == "succeeded"
    assert runs[0]["score"] == 71


def test_pipeline_uses_past_project_corpus_for_novelty(database: None) -> None:
    proposal = _stored_proposal()
    create_past_project(
        title="Dry Beneficiation of High Ash Indian Thermal Coal",
        summary="Same work.",
        embedding=embed_text(build_summary_text(proposal), settings.embedding_dim),
        embedding_provider="hash",
    )

    outcome = _pipeline(FakeEvaluationClient(_evaluation(17))).run(proposal)

    assert outcome.score == 100
    assert outcome.novelty.is_potentially_novel is False
    assert outcome.novelty.most_similar_project_title == "Dry Beneficiation of High Ash Indian Thermal Coal"
    assert outcome.recommendations == []
    assert "Closest past project" in outcome.summary


def test_pipeline_records_failed_run_and_reraises_parse_errors(database: None) -> None:
    proposal = _stored_proposal()

    with pytest.raises(EvaluationParseError):
        _pipeline(BrokenEvaluationClient()).run(proposal)

    runs = list_evaluation_runs(str(proposal["id"]))
    assert [run["status"] for run in runs] == ["failed"]
    assert runs[0]["error"] == "Failed to parse model response as JSON."
    assert runs[0]["score"] is None


def test_pipeline_aborts_when_embedding_fails(database: None) -> None:
    proposal = _stored_proposal()
    client = FakeEvaluationClient(_evaluation(17))

    with pytest.raises(EmbeddingProviderError):
        _pipeline(client, embedding_service=BrokenEmbeddingService()).run(proposal)

    assert client.prompts == []
    assert list_evaluation_runs(str(proposal["id"]))[0]["status"] == "failed"


def test_pipeline_reraises_original_error_when_failed_run_cannot_be_recorded(
    database: None, caplog: pytest.LogCaptureFixture
) -> None:
    proposal = {**_stored_proposal(), "id": "no-such-proposal"}

    with pytest.raises(EvaluationParseError, match="Failed to parse"):
        _pipeline(BrokenEvaluationClient()).run(proposal)

    assert list_evaluation_runs("no-such-proposal") == []
    assert "evaluation_run_record_failed" in [record.getMessage() for record in caplog.records]
