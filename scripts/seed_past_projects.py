#!/usr/bin/env python3
"""Rebuild the past-project corpus used by the novelty check."""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from portal.config import settings
from portal.db import create_past_project, delete_past_projects, init_db
from portal.embeddings import EmbeddingService
from portal.observability import configure_logging

logger = logging.getLogger("portal.scripts.seed")

SAMPLE_PAST_PROJECTS = (
    {
        "title": "Liquidation of standing pillars at W-4 Panel in Jhanjra ECL",
        "summary": (
            "A project focused on the safe and efficient extraction of coal from standing pillars "
            "in underground mines."
        ),
    },
    {
        "title": "Resource survey characterisation and blending of low volatile coking coal",
        "summary": (
            "An investigation into the properties of low volatile coking coal to optimize its use "
            "in steel manufacturing."
        ),
    },
    {
        "title": "Dry Beneficiation of High Ash Indian Thermal Coal",
        "summary": (
            "A study on using air-fluidization techniques to reduce the ash content in high-ash "
            "thermal coal without using water."
        ),
    },
)


def load_projects(path: Path | None) -> list[dict[str, str]]:
    if path is None:
        return [dict(item) for item in SAMPLE_PAST_PROJECTS]

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"{path}: expected a JSON array of {{title, summary}} objects")
    projects: list[dict[str, str]] = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict) or not item.get("title") or not item.get("summary"):
            raise ValueError(f"{path}: entry {index} must include non-empty 'title' and 'summary'")
        projects.append({"title": str(item["title"]), "summary": str(item["summary"])})
    return projects


def seed(projects: list[dict[str, str]], embedding_service: EmbeddingService) -> int:
    removed = delete_past_projects()
    logger.info("past_projects_cleared", extra={"event": "past_projects_cleared", "removed": removed})

    for project in projects:
        result = embedding_service.embed(project["summary"], settings.embedding_dim)
        create_past_project(
            title=project["title"],
            summary=project["summary"],
            embedding=result.vector,
            embedding_provider=result.provider,
        )
        logger.info(
            "past_project_seeded",
            extra={"event": "past_project_seeded", "title": project["title"], "provider": result.provider},
        )
    return len(projects)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--file", type=Path, default=None, help="JSON array of {title, summary} objects.")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    init_db()
    embedding_service = EmbeddingService.from_settings(settings)
    count = seed(load_projects(args.file), embedding_service)
    print(f"Seeded {count} past projects.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
