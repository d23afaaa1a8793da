from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Iterator, Mapping
from uuid import uuid4

from portal.config import settings


PROPOSAL_TEXT_FIELDS = (
    "project_title",
    "definition_of_issue",
    "objectives",
    "justification",
    "work_plan",
    "methodology",
    "organization_of_work",
    "benefit_to_industry",
    "literature_survey",
    "rd_components",
)
PROPOSAL_JSON_FIELDS = (
    "timeline",
    "budget",
    "investigator_cv",
)
_PROPOSAL_RESULT_JSON_FIELDS = (
    "ai_evaluation",
    "ai_recommendations",
    "novelty_check",
)
_JSON_DEFAULTS: dict[str, str] = {
    "timeline": "[]",
    "budget": "{}",
    "investigator_cv": "{}",
}


class UserAlreadyExistsError(ValueError):
    """Raised when a user with the same email is already registered."""


def _database_path() -> Path:
    prefix = "sqlite:///"
    if not settings.database_url.startswith(prefix):
        raise RuntimeError("Only sqlite:/// DATABASE_URL is supported.")
    return Path(settings.database_url[len(prefix) :])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db() -> None:
    db_path = _database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    text_columns = ",\n".join(f"                {name} TEXT NOT NULL DEFAULT ''" for name in PROPOSAL_TEXT_FIELDS)
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(
            f"""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS proposals (
                id TEXT PRIMARY KEY,
                applicant_id TEXT NOT NULL,
                status TEXT NOT NULL,
                resubmission_count INTEGER NOT NULL DEFAULT 0,
{text_columns},
                timeline_json TEXT NOT NULL DEFAULT '[]',
                budget_json TEXT NOT NULL DEFAULT '{{}}',
                investigator_cv_json TEXT NOT NULL DEFAULT '{{}}',
                ai_evaluation_json TEXT,
                ai_score INTEGER,
                ai_summary TEXT,
                ai_recommendations_json TEXT,
                novelty_check_json TEXT,
                submitted_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(applicant_id) REFERENCES users(id)
            );

            CREATE INDEX IF NOT EXISTS idx_proposals_applicant ON proposals(applicant_id, updated_at DESC);
            CREATE INDEX IF NOT EXISTS idx_proposals_status ON proposals(status, updated_at DESC);

            CREATE TABLE IF NOT EXISTS proposal_reviews (
                id TEXT PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                reviewer_id TEXT NOT NULL,
                reviewer_name TEXT NOT NULL,
                decision TEXT NOT NULL,
                comment TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                FOREIGN KEY(proposal_id) REFERENCES proposals(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_reviews_proposal ON proposal_reviews(proposal_id, timestamp ASC);
            CREATE INDEX IF NOT EXISTS idx_reviews_reviewer ON proposal_reviews(reviewer_id);

            CREATE TABLE IF NOT EXISTS past_projects (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                summary TEXT NOT NULL,
                summary_embedding_json TEXT NOT NULL,
                embedding_provider TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS evaluation_runs (
                id TEXT PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                status TEXT NOT NULL,
                score INTEGER,
                error TEXT,
                duration_ms REAL NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(proposal_id) REFERENCES proposals(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_evaluation_runs_proposal
                ON evaluation_runs(proposal_id, created_at DESC);
            """
        )


@contextmanager
def get_conn() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_database_path())
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
        conn.commit()
    finally:
        conn.close()


def _load_json(raw: object, default: object) -> object:
    if raw is None or raw == "":
        return default
    return json.loads(str(raw))


# Users


def _serialize_user(row: Mapping[str, object], *, include_password_hash: bool = False) -> dict[str, object]:
    user = {
        "id": row["id"],
        "name": row["name"],
        "email": row["email"],
        "role": row["role"],
        "created_at": row["created_at"],
    }
    if include_password_hash:
        user["password_hash"] = row["password_hash"]
    return user


def create_user(name: str, email: str, password_hash: str, role: str) -> dict[str, object]:
    user = {
        "id": str(uuid4()),
        "name": name,
        "email": email.strip().lower(),
        "password_hash": password_hash,
        "role": role,
        "created_at": _utc_now_iso(),
    }
    try:
        with get_conn() as conn:
            conn.execute(
                """
                INSERT INTO users (id, name, email, password_hash, role, created_at)
                VALUES (:id, :name, :email, :password_hash, :role, :created_at)
                """,
                user,
            )
    except sqlite3.IntegrityError as exc:
        raise UserAlreadyExistsError(f"User with email '{user['email']}' already exists.") from exc
    return _serialize_user(user)


def get_user(user_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    return _serialize_user(row)


def get_user_by_email(email: str, *, include_password_hash: bool = False) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM users WHERE email = ?", (email.strip().lower(),)).fetchone()
    if row is None:
        return None
    return _serialize_user(row, include_password_hash=include_password_hash)


def list_users(roles: tuple[str, ...] | None = None) -> list[dict[str, object]]:
    query = "SELECT * FROM users"
    params: list[object] = []
    if roles:
        query += f" WHERE role IN ({', '.join('?' for _ in roles)})"
        params.extend(roles)
    query += " ORDER BY created_at DESC"
    with get_conn() as conn:
        rows = conn.execute(query, tuple(params)).fetchall()
    return [_serialize_user(row) for row in rows]


# Proposals


def _serialize_proposal(row: Mapping[str, object], reviews: list[dict[str, object]]) -> dict[str, object]:
    proposal: dict[str, object] = {
        "id": row["id"],
        "applicant_id": row["applicant_id"],
        "status": row["status"],
        "resubmission_count": int(row["resubmission_count"]),
    }
    for name in PROPOSAL_TEXT_FIELDS:
        proposal[name] = row[name]
    for name in PROPOSAL_JSON_FIELDS:
        proposal[name] = _load_json(row[f"{name}_json"], json.loads(_JSON_DEFAULTS[name]))
    proposal["ai_evaluation"] = _load_json(row["ai_evaluation_json"], None)
    proposal["ai_score"] = row["ai_score"]
    proposal["ai_summary"] = row["ai_summary"]
    proposal["ai_recommendations"] = _load_json(row["ai_recommendations_json"], [])
    proposal["novelty_check"] = _load_json(row["novelty_check_json"], None)
    proposal["review_history"] = reviews
    proposal["submitted_at"] = row["submitted_at"]
    proposal["created_at"] = row["created_at"]
    proposal["updated_at"] = row["updated_at"]
    return proposal


def _reviews_for(conn: sqlite3.Connection, proposal_ids: list[str]) -> dict[str, list[dict[str, object]]]:
    grouped: dict[str, list[dict[str, object]]] = {proposal_id: [] for proposal_id in proposal_ids}
    if not proposal_ids:
        return grouped
    rows = conn.execute(
        f"""
        SELECT proposal_id, reviewer_id, reviewer_name, decision, comment, timestamp
        FROM proposal_reviews
        WHERE proposal_id IN ({', '.join('?' for _ in proposal_ids)})
        ORDER BY timestamp ASC, rowid ASC
        """,
        tuple(proposal_ids),
    ).fetchall()
    for row in rows:
        item = dict(row)
        grouped[str(item.pop("proposal_id"))].append(item)
    return grouped


def create_proposal(applicant_id: str) -> dict[str, object]:
    now = _utc_now_iso()
    proposal_id = str(uuid4())
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO proposals (id, applicant_id, status, resubmission_count, created_at, updated_at)
            VALUES (?, ?, 'draft', 0, ?, ?)
            """,
            (proposal_id, applicant_id, now, now),
        )
    proposal = get_proposal(proposal_id)
    assert proposal is not None
    return proposal


def get_proposal(proposal_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM proposals WHERE id = ?", (proposal_id,)).fetchone()
        if row is None:
            return None
        reviews = _reviews_for(conn, [proposal_id])[proposal_id]
    return _serialize_proposal(row, reviews)


def update_proposal_content(proposal_id: str, fields: Mapping[str, object]) -> dict[str, object] | None:
    assignments: list[str] = []
    params: dict[str, object] = {"id": proposal_id, "updated_at": _utc_now_iso()}
    for name, value in fields.items():
        if name in PROPOSAL_TEXT_FIELDS:
            assignments.append(f"{name} = :{name}")
            params[name] = "" if value is None else str(value)
        elif name in PROPOSAL_JSON_FIELDS:
            assignments.append(f"{name}_json = :{name}")
            params[name] = json.dumps(value if value is not None else json.loads(_JSON_DEFAULTS[name]))
    assignments.append("updated_at = :updated_at")
    with get_conn() as conn:
        conn.execute(f"UPDATE proposals SET {', '.join(assignments)} WHERE id = :id", params)
    return get_proposal(proposal_id)


def save_evaluation_result(
    proposal_id: str,
    *,
    status: str,
    ai_evaluation: dict[str, object],
    ai_score: int,
    ai_summary: str,
    ai_recommendations: list[str],
    novelty_check: dict[str, object],
    mark_submitted: bool = True,
) -> dict[str, object] | None:
    now = _utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            UPDATE proposals
            SET status = ?,
                ai_evaluation_json = ?,
                ai_score = ?,
                ai_summary = ?,
                ai_recommendations_json = ?,
                novelty_check_json = ?,
                submitted_at = CASE WHEN ? THEN ? ELSE submitted_at END,
                updated_at = ?
            WHERE id = ?
            """,
            (
                status,
                json.dumps(ai_evaluation),
                ai_score,
                ai_summary,
                json.dumps(ai_recommendations),
                json.dumps(novelty_check),
                1 if mark_submitted else 0,
                now,
                now,
                proposal_id,
            ),
        )
    return get_proposal(proposal_id)


def record_review_decision(
    proposal_id: str,
    *,
    reviewer_id: str,
    reviewer_name: str,
    decision: str,
    comment: str,
    status: str,
    resubmission_count: int,
) -> dict[str, object] | None:
    now = _utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO proposal_reviews (id, proposal_id, reviewer_id, reviewer_name, decision, comment, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (str(uuid4()), proposal_id, reviewer_id, reviewer_name, decision, comment, now),
        )
        conn.execute(
            "UPDATE proposals SET status = ?, resubmission_count = ?, updated_at = ? WHERE id = ?",
            (status, resubmission_count, now, proposal_id),
        )
    return get_proposal(proposal_id)


def search_proposals(
    *,
    applicant_id: str | None = None,
    status: str | None = None,
    query: str | None = None,
    exclude_drafts: bool = False,
) -> list[dict[str, object]]:
    sql = "SELECT * FROM proposals WHERE 1 = 1"
    params: list[object] = []
    if applicant_id is not None:
        sql += " AND applicant_id = ?"
        params.append(applicant_id)
    if status:
        sql += " AND status = ?"
        params.append(status)
    if exclude_drafts:
        sql += " AND status <> 'draft'"
    if query and query.strip():
        escaped = query.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        sql += " AND (LOWER(project_title) LIKE ? ESCAPE '\\' OR LOWER(objectives) LIKE ? ESCAPE '\\')"
        params.extend([pattern, pattern])
    sql += " ORDER BY updated_at DESC"
    with get_conn() as conn:
        rows = conn.execute(sql, tuple(params)).fetchall()
        reviews = _reviews_for(conn, [str(row["id"]) for row in rows])
    return [_serialize_proposal(row, reviews[str(row["id"])]) for row in rows]


def delete_proposal(proposal_id: str) -> bool:
    with get_conn() as conn:
        cursor = conn.execute("DELETE FROM proposals WHERE id = ?", (proposal_id,))
    return bool(cursor.rowcount)


def count_proposals_by_status(applicant_id: str | None = None) -> dict[str, int]:
    sql = "SELECT status, COUNT(*) AS total FROM proposals"
    params: tuple[object, ...] = ()
    if applicant_id is not None:
        sql += " WHERE applicant_id = ?"
        params = (applicant_id,)
    sql += " GROUP BY status"
    with get_conn() as conn:
        rows = conn.execute(sql, params).fetchall()
    return {str(row["status"]): int(row["total"]) for row in rows}


def count_proposals_reviewed_by(reviewer_id: str) -> int:
    with get_conn() as conn:
        row = conn.execute(
            "SELECT COUNT(DISTINCT proposal_id) AS total FROM proposal_reviews WHERE reviewer_id = ?",
            (reviewer_id,),
        ).fetchone()
    return int(row["total"]) if row is not None else 0


# Past projects


def create_past_project(
    title: str,
    summary: str,
    embedding: list[float],
    embedding_provider: str,
) -> dict[str, object]:
    project = {
        "id": str(uuid4()),
        "title": title,
        "summary": summary,
        "summary_embedding_json": json.dumps(embedding),
        "embedding_provider": embedding_provider,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO past_projects (id, title, summary, summary_embedding_json, embedding_provider, created_at)
            VALUES (:id, :title, :summary, :summary_embedding_json, :embedding_provider, :created_at)
            """,
            project,
        )
    return {
        "id": project["id"],
        "title": title,
        "summary": summary,
        "embedding_provider": embedding_provider,
        "created_at": project["created_at"],
    }


def delete_past_projects() -> int:
    with get_conn() as conn:
        cursor = conn.execute("DELETE FROM past_projects")
    return int(cursor.rowcount if cursor.rowcount is not None else 0)


def list_past_projects() -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, title, summary, summary_embedding_json, embedding_provider, created_at
            FROM past_projects
            ORDER BY created_at ASC
            """
        ).fetchall()

    parsed: list[dict[str, object]] = []
    for row in rows:
        item = dict(row)
        item["summary_embedding"] = json.loads(item.pop("summary_embedding_json"))
        parsed.append(item)
    return parsed


# Evaluation runs


def create_evaluation_run(
    proposal_id: str,
    *,
    status: str,
    duration_ms: float,
    score: int | None = None,
    error: str | None = None,
) -> dict[str, object]:
    run = {
        "id": str(uuid4()),
        "proposal_id": proposal_id,
        "status": status,
        "score": score,
        "error": error,
        "duration_ms": duration_ms,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO evaluation_runs (id, proposal_id, status, score, error, duration_ms, created_at)
            VALUES (:id, :proposal_id, :status, :score, :error, :duration_ms, :created_at)
            """,
            run,
        )
    return run


def list_evaluation_runs(proposal_id: str) -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, proposal_id, status, score, error, duration_ms, created_at
            FROM evaluation_runs
            WHERE proposal_id = ?
            ORDER BY created_at DESC, rowid DESC
            """,
            (proposal_id,),
        ).fetchall()
    return [dict(row) for row in rows]
