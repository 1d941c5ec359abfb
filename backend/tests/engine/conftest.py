"""Fixtures for engine tests: in-memory store, engine, graph builders."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

import hybridflow
import hybridflow.nodes  # noqa: F401
from hybridflow.engine.executor import ExecutionEngine
from hybridflow.engine.graph import WorkflowDefinition
from hybridflow.engine.state import NodeExecutionResult
from hybridflow.engine.store import ExecutionLockManager, InMemoryExecutionStore
from hybridflow.nodes.registry import (
    BaseNodeImpl,
    RetryPolicy,
    register_node_type,
    unregister_node_type,
)

TEMPLATES_DIR = Path(hybridflow.__file__).resolve().parent / "templates"


def _make_graph(
    nodes: List[Dict[str, Any]],
    edges: Optional[List[Dict[str, Any]]] = None,
    workflow_id: str = "wf",
) -> WorkflowDefinition:
    """Build a WorkflowDefinition from stored-graph style dicts."""
    return WorkflowDefinition.from_dict(
        {"name": workflow_id, "nodes": nodes, "edges": edges or []},
        workflow_id=workflow_id,
    )


def _chain(*node_ids: str) -> List[Dict[str, Any]]:
    """Unconditional edges linking node ids in order."""
    return [
        {"id": f"e-{a}-{b}", "source": a, "target": b}
        for a, b in zip(node_ids, node_ids[1:])
    ]


@pytest.fixture
def make_graph():
    return _make_graph


@pytest.fixture
def chain():
    return _chain


@pytest.fixture
def ppc_graph() -> WorkflowDefinition:
    with (TEMPLATES_DIR / "ppc_landing.json").open(encoding="utf-8") as f:
        data = json.load(f)
    return WorkflowDefinition.from_dict(data, workflow_id=data["id"])


@pytest.fixture
def store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def lock_manager() -> ExecutionLockManager:
    return ExecutionLockManager()


@pytest.fixture
def engine(store, lock_manager) -> ExecutionEngine:
    return ExecutionEngine(store, lock_manager=lock_manager)


@pytest.fixture
def flaky_node():
    """Registers `test-flaky`: fails `config.failures` times, then succeeds.

    Yields the per-node call counter.
    """
    calls: Dict[str, int] = {}

    @register_node_type(
        node_type="test-flaky",
        display_name="Flaky",
        description="Fails a configured number of times",
        category="test",
        input_schema={"type": "object"},
        output_schema={"type": "object"},
        retry=RetryPolicy(max_attempts=1, backoff_seconds=0),
    )
    class FlakyNode(BaseNodeImpl):
        async def execute(self, inputs, context):
            calls[self.node_id] = calls.get(self.node_id, 0) + 1
            if calls[self.node_id] <= int(self.config.get("failures", 0)):
                return NodeExecutionResult.failed(f"boom {calls[self.node_id]}")
            return {"ok": True, "attempt": context.attempt_number, **inputs}

    yield calls
    unregister_node_type("test-flaky")


@pytest.fixture
def raising_node():
    """Registers `test-raise`, an executor that always raises."""

    @register_node_type(
        node_type="test-raise",
        display_name="Raise",
        description="Always raises",
        category="test",
        input_schema={"type": "object"},
        output_schema={"type": "object"},
    )
    class RaisingNode(BaseNodeImpl):
        async def execute(self, inputs, context):
            raise RuntimeError("executor exploded")

    yield
    unregister_node_type("test-raise")
