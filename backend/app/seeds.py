"""Seed workflow templates into the database.

Loads hybridflow/templates/*.json; workflows whose id already exists are
left untouched.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import hybridflow
from app.database import get_session_ctx
from app.repositories.workflow import WorkflowRepository

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(hybridflow.__file__).resolve().parent / "templates"


def load_templates(templates_dir: Path = TEMPLATES_DIR) -> List[Dict[str, Any]]:
    """Read every template JSON file, sorted by file name."""
    templates = []
    for path in sorted(templates_dir.glob("*.json")):
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        data.setdefault("id", path.stem)
        templates.append(data)
    return templates


async def seed_templates(session=None) -> int:
    """Insert missing templates. Returns the number of workflows created."""
    if session is None:
        async with get_session_ctx() as own_session:
            return await seed_templates(own_session)

    repo = WorkflowRepository(session)
    created = 0
    for template in load_templates():
        graph = {"nodes": template.get("nodes", []), "edges": template.get("edges", [])}
        inserted = await repo.create_if_missing(
            workflow_id=template["id"],
            name=template.get("name") or template["id"],
            graph_definition=graph,
            description=template.get("description"),
        )
        if inserted:
            created += 1
            logger.info(f"Seeded workflow template {template['id']}")
    await session.commit()
    return created
