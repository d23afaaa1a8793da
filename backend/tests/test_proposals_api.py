from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import portal.main as main_module
from portal.config import settings
from portal.db import create_user, list_past_projects
from portal.embeddings import EmbeddingService
from portal.evaluator import EvaluationRuntimeError
from portal.passwords import hash_password
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


class ScriptedEvaluationClient:
    """Returns queued evaluations in order; an exception in the queue is raised."""

    def __init__(self, *responses: object) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    def evaluate(self, prompt: str) -> dict[str, object]:
        self.prompts.append(prompt)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response  # type: ignore[return-value]


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_submission_confirmation(self, email: str, proposal) -> bool:
        self.sent.append(("submission_confirmation", email))
        return True

    def send_new_proposal_for_review(self, email: str, proposal) -> bool:
        self.sent.append(("new_proposal_for_review", email))
        return True

    def send_auto_rejection(self, email: str, proposal) -> bool:
        self.sent.append(("auto_rejection", email))
        return True


@pytest.fixture()
def restore_settings():
    original = {
        "database_url": settings.database_url,
        "auth_secret_key": settings.auth_secret_key,
        "embedding_mode": settings.embedding_mode,
        "auto_reject_threshold": settings.auto_reject_threshold,
        "max_revision_requests": settings.max_revision_requests,
    }
    yield
    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, restore_settings: None):
    settings.database_url = f"sqlite:///{tmp_path}/portal.db"
    settings.auth_secret_key = "test-secret"
    settings.embedding_mode = "hash"
    settings.auto_reject_threshold = 65
    settings.max_revision_requests = 2

    evaluation_client = ScriptedEvaluationClient()
    notifier = RecordingNotifier()
    pipeline = ProposalEvaluationPipeline(
        settings=settings,
        embedding_service=EmbeddingService(mode="hash", aws_region="us-east-1", bedrock_model_id="unused"),
        evaluation_client=evaluation_client,
    )
    monkeypatch.setattr(main_module, "get_evaluation_pipeline", lambda: pipeline)
    monkeypatch.setattr(main_module, "get_notifier", lambda: notifier)

    with TestClient(main_module.create_app()) as client:
        client.evaluation_client = evaluation_client  # type: ignore[attr-defined]
        client.notifier = notifier  # type: ignore[attr-defined]
        yield client


def _headers(client: TestClient, email: str, password: str) -> dict[str, str]:
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _applicant(client: TestClient, email: str = "asha@example.org") -> dict[str, str]:
    response = client.post(
        "/auth/register",
        json={"name": "Asha Rao", "email": email, "password": "applicant-pass"},
    )
    assert response.status_code == 201
    return _headers(client, email, "applicant-pass")


def _reviewer(client: TestClient, email: str = "ravi@example.org") -> dict[str, str]:
    create_user(name="Ravi Kumar", email=email, password_hash=hash_password("reviewer-pass"), role="reviewer")
    return _headers(client, email, "reviewer-pass")


def _draft(client: TestClient, headers: dict[str, str], title: str = "Dry Beneficiation of High Ash Coal") -> str:
    created = client.post("/proposals", headers=headers)
    assert created.status_code == 201
    proposal_id = created.json()["id"]
    updated = client.put(
        f"/proposals/{proposal_id}",
        json={
            "project_title": title,
            "objectives": "Reduce ash content by 10% in 24 months.",
            "rd_components": "Air dense medium fluidised bed.",
            "timeline": [{"activity": "Pilot", "start_date": "2026-01-01", "end_date": "2026-06-30"}],
            "budget": {"capital": {"equipment": 250000}, "contingency": 10000},
            "investigator_cv": {"past_experience": "12 years in coal preparation."},
        },
        headers=headers,
    )
    assert updated.status_code == 200
    return proposal_id


def test_new_proposal_starts_as_editable_draft(client: TestClient) -> None:
    headers = _applicant(client)
    proposal_id = _draft(client, headers)

    proposal = client.get(f"/proposals/{proposal_id}", headers=headers).json()

    assert proposal["status"] == "draft"
    assert proposal["resubmission_count"] == 0
    assert proposal["review_history"] == []
    assert proposal["ai_score"] is None
    assert proposal["budget"]["capital"]["equipment"] == 250000
    assert proposal["timeline"][0]["activity"] == "Pilot"


def test_reviewers_cannot_create_proposals(client: TestClient) -> None:
    response = client.post("/proposals", headers=_reviewer(client))
    assert response.status_code == 403


def test_submission_above_threshold_moves_to_under_review(client: TestClient) -> None:
    headers = _applicant(client)
    _reviewer(client)
    proposal_id = _draft(client, headers)
    client.evaluation_client.responses.append(_evaluation(14))

    response = client.post(f"/proposals/{proposal_id}/submit", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "under_review"
    assert body["ai_score"] == 82
    assert body["submitted_at"] is not None
    assert body["novelty_check"]["is_potentially_novel"] is True
    assert len(body["ai_recommendations"]) == 3
    assert body["ai_summary"].startswith("14 of 17 checklist items covered (82%).")
    assert client.notifier.sent == [
        ("submission_confirmation", "asha@example.org"),
        ("new_proposal_for_review", "ravi@example.org"),
    ]


def test_submission_below_threshold_is_auto_rejected(client: TestClient) -> None:
    headers = _applicant(client)
    proposal_id = _draft(client, headers)
    client.evaluation_client.responses.append(_evaluation(10))

    response = client.put(f"/proposals/{proposal_id}", json={"submit_for_review": True}, headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["ai_score"] == 59
    assert ("auto_rejection", "asha@example.org") in client.notifier.sent

    edit = client.put(f"/proposals/{proposal_id}", json={"objectives": "Try again"}, headers=headers)
    resubmit = client.post(f"/proposals/{proposal_id}/submit", headers=headers)
    assert edit.status_code == 409
    assert resubmit.status_code == 409


def test_score_exactly_at_threshold_is_not_rejected(client: TestClient) -> None:
    headers = _applicant(client)
    proposal_id = _draft(client, headers)
    # 11 of 17 is 64.7%, which rounds to 65.
    client.evaluation_client.responses.append(_evaluation(11))

    response = client.post(f"/proposals/{proposal_id}/submit", headers=headers)

    assert response.json()["ai_score"] == 65
    assert response.json()["status"] == "under_review"


def test_evaluation_failure_returns_502_and_keeps_status(client: TestClient) -> None:
    headers = _applicant(client)
    proposal_id = _draft(client, headers)
    client.evaluation_client.responses.append(EvaluationRuntimeError("Bedrock invocation failed"))

    response = client.post(f"/proposals/{proposal_id}/submit", headers=headers)

    assert response.status_code == 502
    assert response.json()["detail"]["message"] == "Automated evaluation failed; proposal status is unchanged."
    proposal = client.get(f"/proposals/{proposal_id}", headers=headers).json()
    assert proposal["status"] == "draft"
    assert proposal["ai_score"] is None
    assert client.notifier.sent == []

    runs = client.get(f"/proposals/{proposal_id}/evaluations", headers=headers).json()["runs"]
    assert [run["status"] for run in runs] == ["failed"]


def test_reviewer_approval_is_terminal(client: TestClient) -> None:
    applicant = _applicant(client)
    reviewer = _reviewer(client)
    proposal_id = _draft(client, applicant)
    client.evaluation_client.responses.append(_evaluation(17))
    client.post(f"/proposals/{proposal_id}/submit", headers=applicant)

    approved = client.post(
        f"/proposals/{proposal_id}/review",
        json={"decision": "Approved", "comment": "Strong methodology and clear budget."},
        headers=reviewer,
    )
    again = client.post(
        f"/proposals/{proposal_id}/review",
        json={"decision": "Rejected", "comment": "Changing my mind about this."},
        headers=reviewer,
    )

    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    history = approved.json()["review_history"]
    assert len(history) == 1
    assert history[0]["reviewer_name"] == "Ravi Kumar"
    assert history[0]["decision"] == "Approved"
    assert again.status_code == 409


def test_revision_cycle_increments_count_and_terminates_after_cap(client: TestClient) -> None:
    applicant = _applicant(client)
    reviewer = _reviewer(client)
    proposal_id = _draft(client, applicant)
    client.evaluation_client.responses.extend([_evaluation(15), _evaluation(15), _evaluation(15)])
    revision = {"decision": "Revision Requested", "comment": "Please expand the literature survey."}

    client.post(f"/proposals/{proposal_id}/submit", headers=applicant)
    first = client.post(f"/proposals/{proposal_id}/review", json=revision, headers=reviewer).json()
    assert (first["status"], first["resubmission_count"]) == ("revision_requested", 1)

    edited = client.put(
        f"/proposals/{proposal_id}",
        json={"literature_survey": "Expanded survey.", "submit_for_review": True},
        headers=applicant,
    ).json()
    assert edited["status"] == "under_review"
    assert edited["literature_survey"] == "Expanded survey."

    second = client.post(f"/proposals/{proposal_id}/review", json=revision, headers=reviewer).json()
    assert (second["status"], second["resubmission_count"]) == ("revision_requested", 2)

    client.post(f"/proposals/{proposal_id}/submit", headers=applicant)
    third = client.post(f"/proposals/{proposal_id}/review", json=revision, headers=reviewer).json()
    assert (third["status"], third["resubmission_count"]) == ("terminated", 2)
    assert [item["decision"] for item in third["review_history"]] == ["Revision Requested"] * 3

    runs = client.get(f"/proposals/{proposal_id}/evaluations", headers=reviewer).json()["runs"]
    assert len(runs) == 3


def test_review_requires_staff_role_and_meaningful_comment(client: TestClient) -> None:
    applicant = _applicant(client)
    reviewer = _reviewer(client)
    proposal_id = _draft(client, applicant)
    client.evaluation_client.responses.append(_evaluation(17))
    client.post(f"/proposals/{proposal_id}/submit", headers=applicant)

    by_applicant = client.post(
        f"/proposals/{proposal_id}/review",
        json={"decision": "Approved", "comment": "Approving my own work."},
        headers=applicant,
    )
    short_comment = client.post(
        f"/proposals/{proposal_id}/review",
        json={"decision": "Approved", "comment": "ok"},
        headers=reviewer,
    )

    assert by_applicant.status_code == 403
    assert short_comment.status_code == 422


def test_review_of_draft_is_hidden_from_reviewers(client: TestClient) -> None:
    applicant = _applicant(client)
    reviewer = _reviewer(client)
    proposal_id = _draft(client, applicant)

    assert client.get(f"/proposals/{proposal_id}", headers=reviewer).status_code == 404
    response = client.post(
        f"/proposals/{proposal_id}/review",
        json={"decision": "Approved", "comment": "Looks fine to me overall."},
        headers=reviewer,
    )
    assert response.status_code == 404


def test_applicants_only_see_their_own_proposals(client: TestClient) -> None:
    owner = _applicant(client)
    other = _applicant(client, email="other@example.org")
    proposal_id = _draft(client, owner)

    assert client.get(f"/proposals/{proposal_id}", headers=other).status_code == 404
    assert client.put(f"/proposals/{proposal_id}", json={"objectives": "x"}, headers=other).status_code == 403
    assert client.get("/proposals/search", headers=other).json() == []


def test_search_filters_by_text_and_status(client: TestClient) -> None:
    headers = _applicant(client)
    reviewer = _reviewer(client)
    coal = _draft(client, headers, title="Dry Beneficiation of High Ash Coal")
    _draft(client, headers, title="Methane Drainage in Gassy Seams")
    client.evaluation_client.responses.append(_evaluation(17))
    client.post(f"/proposals/{coal}/submit", headers=headers)

    by_text = client.get("/proposals/search", params={"q": "methane"}, headers=headers).json()
    by_status = client.get("/proposals/search", params={"status": "under_review"}, headers=headers).json()
    staff_view = client.get("/proposals/search", headers=reviewer).json()
    bad_status = client.get("/proposals/search", params={"status": "pending"}, headers=headers)

    assert [item["project_title"] for item in by_text] == ["Methane Drainage in Gassy Seams"]
    assert [item["id"] for item in by_status] == [coal]
    assert [item["id"] for item in staff_view] == [coal]
    assert bad_status.status_code == 422


def test_search_treats_wildcard_characters_literally(client: TestClient) -> None:
    headers = _applicant(client)
    _draft(client, headers, title="Dry Beneficiation of High Ash Coal")
    _draft(client, headers, title="Methane Drainage in Gassy Seams")

    def search(text: str) -> list[dict[str, object]]:
        response = client.get("/proposals/search", params={"q": text}, headers=headers)
        assert response.status_code == 200
        return response.json()

    assert search("_") == []
    assert search("ash_content") == []
    assert search("100%") == []
    assert len(search("10%")) == 2


def test_only_drafts_can_be_deleted(client: TestClient) -> None:
    headers = _applicant(client)
    draft_id = _draft(client, headers)
    submitted_id = _draft(client, headers, title="Submitted")
    client.evaluation_client.responses.append(_evaluation(17))
    client.post(f"/proposals/{submitted_id}/submit", headers=headers)

    assert client.delete(f"/proposals/{draft_id}", headers=headers).status_code == 204
    assert client.get(f"/proposals/{draft_id}", headers=headers).status_code == 404
    assert client.delete(f"/proposals/{submitted_id}", headers=headers).status_code == 409


def test_dashboard_stats_for_applicant_and_reviewer(client: TestClient) -> None:
    applicant = _applicant(client)
    reviewer = _reviewer(client)
    approved_id = _draft(client, applicant, title="Approved one")
    rejected_id = _draft(client, applicant, title="Rejected one")
    _draft(client, applicant, title="Still drafting")
    client.evaluation_client.responses.extend([_evaluation(17), _evaluation(3)])
    client.post(f"/proposals/{approved_id}/submit", headers=applicant)
    client.post(f"/proposals/{rejected_id}/submit", headers=applicant)
    client.post(
        f"/proposals/{approved_id}/review",
        json={"decision": "Approved", "comment": "Excellent and well justified."},
        headers=reviewer,
    )

    applicant_stats = client.get("/dashboard/stats", headers=applicant).json()
    reviewer_stats = client.get("/dashboard/stats", headers=reviewer).json()

    assert applicant_stats == {
        "total_proposals": 3,
        "approval_rate": 50,
        "under_review": 0,
        "needs_revision": 0,
    }
    assert reviewer_stats == {
        "proposals_for_review": 0,
        "proposals_reviewed_by_me": 1,
        "total_approved": 1,
        "total_rejected": 1,
    }

    insights = client.get("/insights", headers=reviewer).json()
    averages = {item["name"]: item for item in insights["average_scores"]}
    assert averages["Approved"]["avg_score"] == 100
    assert averages["Rejected"]["avg_score"] == 18
    assert insights["hallmarks"]
    assert insights["pitfalls"]


def test_ready_reports_database_and_embedding_mode(client: TestClient) -> None:
    response = client.get("/ready")

    assert response.status_code == 200
    checks = response.json()["checks"]
    assert checks["db"]["ok"] is True
    assert checks["db"]["past_projects"] == len(list_past_projects())
    assert checks["embedding"]["mode"] == settings.embedding_mode
