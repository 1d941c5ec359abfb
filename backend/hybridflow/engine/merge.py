"""Merge/Join Coordinator

Gates fan-in nodes until their predecessor branches have reported, then
combines branch outputs with one of three strategies:

- append: concatenate outputs in predecessor declaration order
- combine-by-position: zip outputs index-wise, truncated to the shortest
- combine-by-fields: group items across branches by the value at mergeKey

Tallies live in ExecutionState.merge_tallies so they persist with the
execution; recording an outcome is idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Hashable, List, Mapping, Optional

from .conditions import MISSING, resolve_key_path
from .state import ExecutionState

if TYPE_CHECKING:
    from .graph import WorkflowDefinition

logger = logging.getLogger(__name__)

MERGE_NODE_TYPE = "merge"

APPEND = "append"
COMBINE_BY_POSITION = "combine-by-position"
COMBINE_BY_FIELDS = "combine-by-fields"
MERGE_MODES = (APPEND, COMBINE_BY_POSITION, COMBINE_BY_FIELDS)

# Branch outcomes recorded in a tally
COMPLETED = "completed"
FAILED = "failed"
SKIPPED = "skipped"
_OUTCOMES = (COMPLETED, FAILED, SKIPPED)


class MergeConfigError(ValueError):
    """Raised for an unusable merge configuration."""
    pass


@dataclass
class MergeConfig:
    """Merge node configuration.

    Attributes:
        mode: append | combine-by-position | combine-by-fields
        merge_key: Join key, required for combine-by-fields
        continue_on_partial_failure: Fire once every branch is terminal
        items_path: Optional key path selecting the list inside each output
    """

    mode: str = APPEND
    merge_key: Optional[str] = None
    continue_on_partial_failure: bool = False
    items_path: Optional[str] = None

    def __post_init__(self):
        if self.mode not in MERGE_MODES:
            raise MergeConfigError(f"Unknown merge mode '{self.mode}', expected one of {MERGE_MODES}")
        if self.mode == COMBINE_BY_FIELDS and not self.merge_key:
            raise MergeConfigError("combine-by-fields requires mergeKey")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "MergeConfig":
        config = config or {}
        return cls(
            mode=config.get("mode") or APPEND,
            merge_key=config.get("mergeKey"),
            continue_on_partial_failure=bool(config.get("continueOnPartialFailure", False)),
            items_path=config.get("itemsPath"),
        )

    @classmethod
    def tolerant(cls, config: Mapping[str, Any]) -> bool:
        """Read continueOnPartialFailure without validating the rest of the config."""
        return bool((config or {}).get("continueOnPartialFailure", False))


def _items(output: Any, items_path: Optional[str] = None) -> List[Any]:
    if items_path:
        output = resolve_key_path(output, items_path)
        if output is MISSING:
            return []
    if isinstance(output, list):
        return list(output)
    if output is None:
        return []
    return [output]


def _group_key(value: Any) -> Hashable:
    if isinstance(value, Hashable):
        return value
    return repr(value)


def combine(config: MergeConfig, outputs: List[Any]) -> List[Any]:
    """Combine ordered branch outputs according to config.mode."""
    branches = [_items(output, config.items_path) for output in outputs]

    if config.mode == APPEND:
        merged: List[Any] = []
        for items in branches:
            merged.extend(items)
        return merged

    if config.mode == COMBINE_BY_POSITION:
        if not branches:
            return []
        return [list(row) for row in zip(*branches)]

    groups: Dict[Hashable, Dict[str, Any]] = {}
    for items in branches:
        for item in items:
            if not isinstance(item, Mapping) or config.merge_key not in item:
                continue
            key = _group_key(item[config.merge_key])
            groups.setdefault(key, {}).update(item)
    return list(groups.values())


class MergeVerdict(str, Enum):
    WAIT = "wait"
    READY = "ready"
    FAIL = "fail"
    BYPASS = "bypass"  # every branch is on a dead path


@dataclass
class MergeDecision:
    verdict: MergeVerdict
    error: Optional[str] = None


class MergeCoordinator:
    """Tracks predecessor branches of merge nodes for one execution state."""

    def record(self, state: ExecutionState, merge_id: str, predecessor_id: str, outcome: str) -> bool:
        """Record a branch outcome. Returns True if the tally changed.

        A completed branch is never downgraded to skipped; re-recording the
        same outcome is a no-op.
        """
        if outcome not in _OUTCOMES:
            raise ValueError(f"unknown merge outcome '{outcome}'")
        tally = state.merge_tallies.setdefault(merge_id, {o: [] for o in _OUTCOMES})
        for name in _OUTCOMES:
            tally.setdefault(name, [])

        if predecessor_id in tally[outcome]:
            return False
        if outcome == SKIPPED and predecessor_id in tally[COMPLETED]:
            return False

        for name in _OUTCOMES:
            if predecessor_id in tally[name]:
                tally[name].remove(predecessor_id)
        tally[outcome].append(predecessor_id)
        logger.debug(f"Merge {merge_id}: branch {predecessor_id} -> {outcome}")
        return True

    def forget(self, state: ExecutionState, merge_id: str, predecessor_id: str) -> None:
        """Drop a branch from the tally so it can report again."""
        for reported in state.merge_tallies.get(merge_id, {}).values():
            if predecessor_id in reported:
                reported.remove(predecessor_id)

    def tally(self, state: ExecutionState, merge_id: str) -> Dict[str, List[str]]:
        tally = state.merge_tallies.get(merge_id, {})
        return {name: list(tally.get(name, [])) for name in _OUTCOMES}

    def evaluate(self, graph: "WorkflowDefinition", merge_id: str, state: ExecutionState) -> MergeDecision:
        """Decide whether a merge node may fire."""
        predecessors = graph.predecessors(merge_id)
        tally = self.tally(state, merge_id)
        tolerant = MergeConfig.tolerant(graph.get_node(merge_id).config)

        if tally[FAILED] and not tolerant:
            return MergeDecision(
                MergeVerdict.FAIL,
                f"{len(tally[FAILED])} upstream node(s) failed: {', '.join(tally[FAILED])}",
            )

        reported = set(tally[COMPLETED]) | set(tally[FAILED]) | set(tally[SKIPPED])
        if any(pred not in reported for pred in predecessors):
            return MergeDecision(MergeVerdict.WAIT)

        if not tally[COMPLETED] and not tally[FAILED]:
            return MergeDecision(MergeVerdict.BYPASS)
        return MergeDecision(MergeVerdict.READY)

    def build_input(self, graph: "WorkflowDefinition", merge_id: str, state: ExecutionState) -> Dict[str, Any]:
        """Input handed to a ready merge node.

        Returns:
            {"branches": {predecessor_id: output} in declaration order,
             "skipped": predecessor ids excluded from the combine,
             "failed": the subset of skipped branches that failed}
        """
        tally = self.tally(state, merge_id)
        completed = set(tally[COMPLETED])
        predecessors = graph.predecessors(merge_id)
        branches = {
            pred: state.step_results.get(pred)
            for pred in predecessors
            if pred in completed
        }
        skipped = [pred for pred in predecessors if pred not in completed]
        failed = [pred for pred in predecessors if pred in tally[FAILED]]
        return {"branches": branches, "skipped": skipped, "failed": failed}
