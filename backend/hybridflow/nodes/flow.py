"""Flow Control Node Types

start, condition, switch, filter, merge, wait and human-approval. These shape the
walk of the graph rather than doing business work: condition and switch emit
the decision values the Router matches edge labels against, merge combines
fan-in branches, and wait / human-approval park the execution until an
external resume.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from ..engine.conditions import MISSING, OPERATOR_ALIASES, OPERATORS, Condition, evaluate, resolve_key_path
from ..engine.merge import MergeConfig, MergeConfigError, combine
from ..engine.state import NodeExecutionResult
from .registry import BaseNodeImpl, NodeContext, register_node_type

logger = logging.getLogger(__name__)

_WAIT_UNITS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}


@register_node_type(
    node_type="start",
    display_name="Start",
    description="Entry point; passes the execution input downstream",
    category="flow",
    input_schema={"type": "object", "properties": {}},
    output_schema={
        "type": "object",
        "properties": {"started": {"type": "boolean"}},
    },
    icon="play",
    color="#4CAF50",
)
class StartNode(BaseNodeImpl):
    """Entry node."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> Dict[str, Any]:
        logger.info(f"StartNode {self.node_id}: Executing")
        return {"started": True, **inputs}


def _condition_from(config: Dict[str, Any]):
    nested = config.get("condition")
    if isinstance(nested, dict):
        return Condition.from_config(nested)
    return Condition.from_config(config)


@register_node_type(
    node_type="condition",
    display_name="Condition",
    description="Evaluates a condition and routes on true / false",
    category="flow",
    input_schema={
        "type": "object",
        "properties": {
            "key": {"type": "string"},
            "operator": {
                "type": "string",
                "enum": list(OPERATORS) + list(OPERATOR_ALIASES),
            },
            "value": {},
        },
    },
    output_schema={
        "type": "object",
        "properties": {
            "_conditionResult": {"type": "boolean"},
            "_conditionKey": {"type": "string"},
            "_conditionValue": {},
        },
    },
    icon="git-branch",
    color="#FF9800",
)
class ConditionNode(BaseNodeImpl):
    """Routes the workflow on a single Condition."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        logger.info(f"ConditionNode {self.node_id}: Executing")

        condition = _condition_from(self.config)
        if condition is None:
            return NodeExecutionResult.failed("No condition specified")

        result = condition.evaluate(inputs)
        logger.info(
            f"ConditionNode {self.node_id}: {condition.key_path} {condition.operator} "
            f"{condition.value!r} -> {result}"
        )
        return NodeExecutionResult.success({
            **inputs,
            "_conditionResult": result,
            "_conditionKey": condition.key_path,
            "_conditionValue": condition.resolve(inputs),
        })

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        if _condition_from(self.config) is None:
            errors.append({"field": "key", "error": "No condition specified"})
        return errors


@register_node_type(
    node_type="switch",
    display_name="Switch",
    description="Routes to the first rule whose condition matches",
    category="flow",
    input_schema={
        "type": "object",
        "properties": {
            "rules": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "route": {"type": "string"},
                        "keyPath": {"type": "string"},
                        "operator": {"type": "string"},
                        "value": {},
                    },
                },
            },
            "fallback": {"type": "string"},
        },
        "required": ["rules"],
    },
    output_schema={
        "type": "object",
        "properties": {"_route": {"type": "string"}},
    },
    icon="shuffle",
    color="#FF9800",
)
class SwitchNode(BaseNodeImpl):
    """Multi-way branch: emits `_route` for the first matching rule."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        logger.info(f"SwitchNode {self.node_id}: Executing")

        rules = self.config.get("rules") or []
        if not isinstance(rules, list):
            return NodeExecutionResult.failed("rules must be a list")

        for idx, rule in enumerate(rules):
            condition = Condition.from_config(rule)
            if condition is None:
                return NodeExecutionResult.failed(f"rule {idx} has no condition")
            if condition.evaluate(inputs):
                route = str(rule.get("route", idx))
                logger.info(f"SwitchNode {self.node_id}: matched rule {idx} -> {route}")
                return NodeExecutionResult.success({**inputs, "_route": route})

        fallback = self.config.get("fallback")
        logger.info(f"SwitchNode {self.node_id}: no rule matched, fallback={fallback}")
        return NodeExecutionResult.success({**inputs, "_route": fallback})


_FILTER_OPERATORS = ("equals", "contains", "exists")


@register_node_type(
    node_type="filter",
    display_name="Filter",
    description="Checks one field of the input (or of config.data) and reports a match",
    category="flow",
    input_schema={
        "type": "object",
        "properties": {
            "field": {"type": "string"},
            "operator": {"type": "string", "enum": list(_FILTER_OPERATORS)},
            "value": {},
            "data": {"type": "object"},
        },
        "required": ["field"],
    },
    output_schema={
        "type": "object",
        "properties": {
            "match": {"type": "boolean"},
            "field": {"type": "string"},
            "operator": {"type": "string"},
            "fieldValue": {},
            "expectedValue": {},
        },
    },
    icon="filter",
    color="#FF9800",
)
class FilterNode(BaseNodeImpl):
    """Single-field match. `match` doubles as `_conditionResult`, so
    edges labeled true / false can gate on it; unlabeled edges always fire.
    """

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        field = self.config.get("field")
        if not isinstance(field, str) or not field.strip():
            return NodeExecutionResult.failed("Invalid input: field is required")
        operator = self.config.get("operator") or "equals"
        if operator not in _FILTER_OPERATORS:
            return NodeExecutionResult.failed(f"Unknown operator: {operator}")

        data = self.config.get("data")
        if not isinstance(data, dict):
            data = inputs
        expected = self.config.get("value")
        found = resolve_key_path(data, field)

        if operator == "exists":
            match = found is not MISSING and found is not None
        elif operator == "contains":
            match = evaluate(data, field, "contains", expected)
        else:
            match = evaluate(data, field, "==", expected)

        logger.info(f"FilterNode {self.node_id}: {field} {operator} {expected!r} -> {match}")
        return NodeExecutionResult.success({
            **inputs,
            "match": match,
            "field": field,
            "operator": operator,
            "fieldValue": None if found is MISSING else found,
            "expectedValue": expected,
            "_conditionResult": match,
        })

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        operator = self.config.get("operator") or "equals"
        if operator not in _FILTER_OPERATORS:
            errors.append({"field": "operator", "error": f"must be one of {', '.join(_FILTER_OPERATORS)}"})
        return errors


@register_node_type(
    node_type="merge",
    display_name="Merge",
    description="Waits for upstream branches and combines their outputs",
    category="flow",
    input_schema={
        "type": "object",
        "properties": {
            "mode": {
                "type": "string",
                "enum": ["append", "combine-by-position", "combine-by-fields"],
            },
            "mergeKey": {"type": "string"},
            "continueOnPartialFailure": {"type": "boolean"},
            "itemsPath": {"type": "string"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {
            "merged": {"type": "array"},
            "sources": {"type": "array"},
            "mode": {"type": "string"},
            "skipped": {"type": "array"},
        },
    },
    icon="git-merge",
    color="#9C27B0",
)
class MergeNode(BaseNodeImpl):
    """Fan-in node; its input is built by the MergeCoordinator."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        logger.info(f"MergeNode {self.node_id}: Executing")

        failed = list(inputs.get("failed") or [])
        if failed and not MergeConfig.tolerant(self.config):
            return NodeExecutionResult.failed(
                f"{len(failed)} upstream node(s) failed: {', '.join(failed)}"
            )

        try:
            config = MergeConfig.from_config(self.config)
        except MergeConfigError as e:
            return NodeExecutionResult.failed(str(e))

        branches = inputs.get("branches") or {}
        merged = combine(config, list(branches.values()))
        logger.info(
            f"MergeNode {self.node_id}: {config.mode} over {len(branches)} branch(es) "
            f"-> {len(merged)} item(s)"
        )
        return NodeExecutionResult.success({
            "merged": merged,
            "sources": list(branches.keys()),
            "mode": config.mode,
            "skipped": list(inputs.get("skipped") or []),
        })

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        try:
            MergeConfig.from_config(self.config)
        except MergeConfigError as e:
            errors.append({"field": "mode", "error": str(e)})
        return errors


@register_node_type(
    node_type="wait",
    display_name="Wait",
    description="Pauses the execution for a fixed amount of time",
    category="flow",
    input_schema={
        "type": "object",
        "properties": {
            "amount": {"type": "number"},
            "unit": {"type": "string", "enum": list(_WAIT_UNITS)},
        },
        "required": ["amount"],
    },
    output_schema={
        "type": "object",
        "properties": {
            "resumeAfter": {"type": "object"},
            "resumeAt": {"type": "string"},
        },
    },
    icon="clock",
    color="#607D8B",
)
class WaitNode(BaseNodeImpl):
    """Suspends; the engine schedules the step for `resumeAt`."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        amount = self.config.get("amount", 1)
        unit = self.config.get("unit", "hours")
        if unit not in _WAIT_UNITS:
            return NodeExecutionResult.failed(f"Unknown wait unit: {unit}")
        try:
            seconds = float(amount) * _WAIT_UNITS[unit]
        except (TypeError, ValueError):
            return NodeExecutionResult.failed(f"Invalid wait amount: {amount!r}")
        if seconds < 0:
            return NodeExecutionResult.failed("Wait amount cannot be negative")

        resume_at = datetime.now(timezone.utc) + timedelta(seconds=seconds)
        logger.info(f"WaitNode {self.node_id}: suspending until {resume_at.isoformat()}")
        return NodeExecutionResult.suspended({
            **inputs,
            "resumeAfter": {"amount": amount, "unit": unit},
            "resumeAt": resume_at.isoformat(),
        })


@register_node_type(
    node_type="human-approval",
    display_name="Human Approval",
    description="Pauses until a person approves or rejects",
    category="flow",
    input_schema={
        "type": "object",
        "properties": {
            "prompt": {"type": "string"},
            "channel": {"type": "string"},
            "timeoutSeconds": {"type": "number"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {
            "approved": {"type": "boolean"},
            "approvalTaskId": {"type": "string"},
            "resumeToken": {"type": "string"},
        },
    },
    icon="user-check",
    color="#795548",
)
class HumanApprovalNode(BaseNodeImpl):
    """Suspends with an approval task; resumed with the decision."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        task_id = f"approval-{uuid.uuid4().hex[:12]}"
        logger.info(f"HumanApprovalNode {self.node_id}: awaiting approval {task_id}")
        return NodeExecutionResult.suspended({
            "approved": False,
            "approvalTaskId": task_id,
            "resumeToken": f"{context.execution_id}:{self.node_id}",
            "channel": self.config.get("channel", "email"),
            "prompt": self.config.get("prompt", "Approval required"),
            "timeoutSeconds": self.config.get("timeoutSeconds"),
            "requestedAt": datetime.now(timezone.utc).isoformat(),
            "workflowId": context.workflow_id,
            "executionId": context.execution_id,
            "nodeId": self.node_id,
        })
