"""Execution State Machine

Drives executions of a WorkflowDefinition through the advance cycle:

1. take the eligible nodes (`readyNodes`, initially the entry nodes); each
   was given a pending step when it became eligible
2. remote nodes: suspend the pending step, mark active, stop walking there
3. server nodes: run the wave concurrently, fold results in declaration
   order (completed/failed bookkeeping, Router for the next eligible nodes)
4. repeat until nothing server-runnable is left, then settle the status:
   failed > waiting (remote active) > suspended (server parked) > completed

The engine holds no state between calls. Each operation loads the execution
from the ExecutionStore under a per-execution lock, mutates it, and saves
it with an optimistic version check.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from ..nodes import NodeContext, execute_node, retry_policy_for
from ..remote.protocol import EngineResponse, NextStep
from ..settings import ENGINE_MAX_NODE_RUNS_PER_CYCLE
from .errors import (
    ExecutionNotFoundError,
    MaxNodeRunsExceeded,
    ProtocolError,
    StateConflictError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from .graph import WorkflowDefinition, validate_workflow
from .merge import FAILED as MERGE_FAILED
from .merge import MERGE_NODE_TYPE
from .router import Router
from .state import (
    RESUMABLE_EXECUTION_STATUSES,
    ExecutionRecord,
    ExecutionStatus,
    NodeExecutionResult,
    ResultStatus,
    StepRecord,
    StepStatus,
    _parse_dt,
    _utcnow,
)
from .store import ExecutionLockManager, ExecutionStore, default_lock_manager
from .templating import render_config

logger = logging.getLogger(__name__)


class ResumeScheduler(Protocol):
    """Arranges for resume_due to be called once a wait step is due."""

    async def schedule_resume(self, execution_id: str, node_id: str, resume_at: datetime) -> None:
        ...


@dataclass
class _Cycle:
    """Per-cycle counters."""
    limit: int
    runs: int = 0
    scheduled: List[Tuple[str, datetime]] = field(default_factory=list)


class ExecutionEngine:
    """Execution state machine over an ExecutionStore.

    Args:
        store: Persistence for workflows and executions
        lock_manager: Per-execution locks (process-wide default when omitted)
        scheduler: Optional timed-resume scheduler for wait nodes
        router: Router instance (a fresh one when omitted)
        max_node_runs: Runaway guard for a single advance cycle
    """

    def __init__(
        self,
        store: ExecutionStore,
        lock_manager: Optional[ExecutionLockManager] = None,
        scheduler: Optional[ResumeScheduler] = None,
        router: Optional[Router] = None,
        max_node_runs: int = ENGINE_MAX_NODE_RUNS_PER_CYCLE,
    ):
        self.store = store
        self.locks = lock_manager or default_lock_manager
        self.scheduler = scheduler
        self.router = router or Router()
        self.max_node_runs = max_node_runs

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def execute_workflow(self, workflow_id: str, input_data: Optional[Dict[str, Any]] = None) -> EngineResponse:
        """Create an execution and run its first advance cycle."""
        record = await self.create_execution(workflow_id, input_data)
        return await self.advance(record.id)

    async def create_execution(self, workflow_id: str, input_data: Optional[Dict[str, Any]] = None) -> ExecutionRecord:
        """Validate the workflow and persist a pending execution.

        Raises:
            WorkflowNotFoundError: Unknown workflow id
            WorkflowValidationError: Structural errors (no entry node, cycles)
        """
        graph = await self._load_graph(workflow_id)

        result = validate_workflow(graph)
        for warning in result.warnings:
            logger.warning(f"Workflow {workflow_id}: {warning.code}: {warning.message}")
        if not result.valid:
            messages = "; ".join(e.message for e in result.errors)
            raise WorkflowValidationError(f"Workflow {workflow_id} is invalid: {messages}", result)

        record = ExecutionRecord(workflow_id=workflow_id, input=dict(input_data or {}))
        for node in graph.entry_nodes():
            self._queue(graph, record, node.id, dict(record.input))

        record = await self.store.create_execution(record)
        logger.info(f"Execution {record.id}: created for workflow {workflow_id}")
        return record

    async def advance(self, execution_id: str) -> EngineResponse:
        """Run one advance cycle for an execution.

        Terminal executions and executions with nothing eligible are
        returned unchanged.
        """
        async with self.locks.hold(execution_id):
            record = await self._load(execution_id)
            graph = await self._load_graph(record.workflow_id)
            if record.is_terminal or (record.status != ExecutionStatus.PENDING and not record.state.ready_nodes):
                return self._response(graph, record)
            await self._run_cycle(graph, record)
            return self._response(graph, record)

    async def resume_execution(
        self,
        execution_id: str,
        node_id: str,
        data: Any = None,
        error: Optional[str] = None,
    ) -> EngineResponse:
        """Deliver the result of a suspended node and continue the walk.

        Raises:
            ExecutionNotFoundError: Unknown execution id
            StateConflictError: Execution not waiting/suspended, or the node
                is not awaiting a result
            ProtocolError: node_id does not exist in the workflow
        """
        async with self.locks.hold(execution_id):
            record = await self._load(execution_id)
            graph = await self._load_graph(record.workflow_id)

            if record.status not in RESUMABLE_EXECUTION_STATUSES:
                raise StateConflictError(
                    f"Execution {execution_id} is {record.status.value}, not awaiting input"
                )
            if not graph.has_node(node_id):
                raise ProtocolError(f"Unknown node id: {node_id}")
            step = record.latest_step(node_id)
            if node_id not in record.state.active_nodes or step is None or step.status != StepStatus.SUSPENDED:
                raise StateConflictError(f"Node {node_id} is not awaiting a result")

            if error:
                logger.info(f"Execution {execution_id}: node {node_id} resumed with error: {error}")
                result = NodeExecutionResult.failed(error)
            else:
                output = data if isinstance(data, dict) else ({} if data is None else {"value": data})
                result = NodeExecutionResult.success({**(step.output or {}), **output})
                logger.info(f"Execution {execution_id}: node {node_id} resumed")

            record.status = ExecutionStatus.RUNNING
            cycle = _Cycle(limit=self.max_node_runs)
            self._fold(graph, record, step, result, cycle)
            await self._run_cycle(graph, record, cycle)
            return self._response(graph, record)

    async def get_execution_status(self, execution_id: str) -> Dict[str, Any]:
        """Status snapshot of an execution."""
        record = await self._load(execution_id)
        graph = await self.store.get_workflow(record.workflow_id)
        return record.snapshot(total_nodes=len(graph.nodes) if graph else None)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        records, total = await self.store.list_executions(
            workflow_id=workflow_id, status=status, page=page, page_size=page_size
        )
        return {
            "items": [r.snapshot() for r in records],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    async def cancel_execution(self, execution_id: str) -> Dict[str, Any]:
        """Cancel an execution cooperatively.

        A running cycle is not interrupted mid-node: it stops before its next
        wave. Pending and suspended steps are marked skipped.

        Raises:
            StateConflictError: If the execution is already terminal
        """
        if self.locks.is_locked(execution_id):
            logger.info(f"Execution {execution_id}: cancel requested while a cycle is running")
            self.locks.request_cancel(execution_id)

        try:
            async with self.locks.hold(execution_id):
                record = await self._load(execution_id)
                if record.status == ExecutionStatus.CANCELLED and self.locks.cancel_requested(execution_id):
                    return record.snapshot()
                if record.is_terminal:
                    raise StateConflictError(
                        f"Execution {execution_id} is already {record.status.value}"
                    )
                self._apply_cancel(record)
                await self.store.save_execution(record)
                return record.snapshot()
        finally:
            self.locks.clear_cancel(execution_id)

    async def retry_execution(self, execution_id: str) -> EngineResponse:
        """Re-schedule the nodes that failed fatally and run a cycle.

        Each retried node gets a new step with the next attempt number.

        Raises:
            StateConflictError: If the execution is not failed
        """
        async with self.locks.hold(execution_id):
            record = await self._load(execution_id)
            graph = await self._load_graph(record.workflow_id)
            if record.status != ExecutionStatus.FAILED:
                raise StateConflictError(
                    f"Execution {execution_id} is {record.status.value}; only failed executions can be retried"
                )

            to_schedule = self._retry_targets(graph, record)
            if not to_schedule:
                raise StateConflictError(f"Execution {execution_id} has no failed node to retry")

            state = record.state
            for node_id in to_schedule:
                reopened = self.router.reopen(graph, node_id, state)
                if reopened:
                    logger.info(f"Execution {execution_id}: {reopened} no longer bypassed behind {node_id}")
                self._queue(graph, record, node_id, state.node_inputs.get(node_id, {}))

            logger.info(f"Execution {execution_id}: retrying {to_schedule}")
            record.status = ExecutionStatus.RUNNING
            record.last_error = None
            record.finished_at = None
            await self._run_cycle(graph, record)
            return self._response(graph, record)

    async def resume_due(self, execution_id: str, now: Optional[datetime] = None) -> EngineResponse:
        """Resume wait steps whose scheduledFor has passed."""
        now = now or _utcnow()
        async with self.locks.hold(execution_id):
            record = await self._load(execution_id)
            graph = await self._load_graph(record.workflow_id)
            if record.status not in RESUMABLE_EXECUTION_STATUSES:
                return self._response(graph, record)

            due = []
            for node_id in list(record.state.active_nodes):
                step = record.latest_step(node_id)
                if step and step.status == StepStatus.SUSPENDED and step.scheduled_for and step.scheduled_for <= now:
                    due.append(step)
            if not due:
                return self._response(graph, record)

            record.status = ExecutionStatus.RUNNING
            cycle = _Cycle(limit=self.max_node_runs)
            for step in sorted(due, key=lambda s: graph.position(s.node_id)):
                logger.info(f"Execution {execution_id}: wait node {step.node_id} is due")
                output = {**(step.output or {}), "resumedAt": now.isoformat()}
                self._fold(graph, record, step, NodeExecutionResult.success(output), cycle)
            await self._run_cycle(graph, record, cycle)
            return self._response(graph, record)

    # ------------------------------------------------------------------
    # Advance cycle
    # ------------------------------------------------------------------

    async def _run_cycle(self, graph: WorkflowDefinition, record: ExecutionRecord, cycle: Optional[_Cycle] = None) -> None:
        cycle = cycle or _Cycle(limit=self.max_node_runs)
        state = record.state
        if record.status != ExecutionStatus.FAILED:
            record.status = ExecutionStatus.RUNNING

        while record.status == ExecutionStatus.RUNNING:
            if self.locks.cancel_requested(record.id):
                self._apply_cancel(record)
                break

            ready = graph.sort_by_position(state.take_ready())
            if not ready:
                break

            server_nodes = []
            for node_id in ready:
                if graph.get_node(node_id).is_remote:
                    self._hand_off(graph, record, node_id)
                else:
                    server_nodes.append(node_id)

            if server_nodes:
                if cycle.runs + len(server_nodes) > cycle.limit:
                    err = MaxNodeRunsExceeded(record.id, cycle.runs + len(server_nodes), cycle.limit)
                    logger.error(str(err))
                    self._fail(record, str(err))
                    break

                cycle.runs += len(server_nodes)
                outcomes = await asyncio.gather(
                    *(self._run_server_node(graph, record, node_id, cycle) for node_id in server_nodes)
                )
                for step, result in outcomes:
                    self._fold(graph, record, step, result, cycle)

            await self.store.save_execution(record)

        if record.status == ExecutionStatus.RUNNING:
            self._settle_status(graph, record)
        await self.store.save_execution(record)

        for node_id, resume_at in cycle.scheduled:
            await self._schedule_resume(record.id, node_id, resume_at)

    async def _run_server_node(
        self,
        graph: WorkflowDefinition,
        record: ExecutionRecord,
        node_id: str,
        cycle: _Cycle,
    ) -> Tuple[StepRecord, NodeExecutionResult]:
        """Run one server node, applying its retry policy.

        Failed attempts are recorded as failed steps; the last attempt is
        returned still running, for the fold.
        """
        node = graph.get_node(node_id)
        state = record.state
        inputs = state.node_inputs.get(node_id, {})
        policy = retry_policy_for(node.type, node.config)

        attempt = 0
        while True:
            attempt += 1
            step = self._claim_step(graph, record, node_id)
            step.transition(StepStatus.RUNNING)

            config = render_config(node.config, state.step_results, inputs)
            context = NodeContext(
                workflow_id=record.workflow_id,
                execution_id=record.id,
                node_id=node_id,
                attempt_number=step.attempt_number,
                results=dict(state.step_results),
                execution_input=record.input,
            )
            result = await execute_node(node.id, node.type, config, inputs, context)

            if result.status != ResultStatus.FAILED or attempt >= policy.max_attempts:
                return step, result
            if cycle.runs >= cycle.limit:
                logger.warning(f"Node {node_id}: retry budget exhausted by cycle limit")
                return step, result

            step.transition(StepStatus.FAILED, output=result.output or None, error=result.error)
            cycle.runs += 1
            delay = policy.delay_for(attempt + 1)
            logger.warning(
                f"Node {node_id} attempt {step.attempt_number} failed: {result.error}; "
                f"retrying in {delay:.2f}s ({attempt}/{policy.max_attempts})"
            )
            if delay > 0:
                await asyncio.sleep(delay)

    def _queue(self, graph: WorkflowDefinition, record: ExecutionRecord, node_id: str, inputs: Dict[str, Any]) -> None:
        """Mark node_id eligible and give it a pending step."""
        record.state.mark_ready(node_id, inputs)
        step = record.latest_step(node_id)
        if step is not None and step.status == StepStatus.PENDING:
            step.input = inputs
            return
        record.steps.append(StepRecord(
            execution_id=record.id,
            node_id=node_id,
            node_type=graph.get_node(node_id).type,
            input=inputs,
            attempt_number=record.next_attempt_number(node_id),
        ))

    def _claim_step(self, graph: WorkflowDefinition, record: ExecutionRecord, node_id: str) -> StepRecord:
        """The node's pending step; a new one for a retry attempt."""
        inputs = record.state.node_inputs.get(node_id, {})
        step = record.latest_step(node_id)
        if step is None or step.status != StepStatus.PENDING:
            step = StepRecord(
                execution_id=record.id,
                node_id=node_id,
                node_type=graph.get_node(node_id).type,
                attempt_number=record.next_attempt_number(node_id),
            )
            record.steps.append(step)
        step.input = inputs
        step.started_at = _utcnow()
        return step

    def _hand_off(self, graph: WorkflowDefinition, record: ExecutionRecord, node_id: str) -> None:
        step = self._claim_step(graph, record, node_id)
        step.transition(StepStatus.SUSPENDED)
        record.state.mark_active(node_id)
        logger.info(f"Execution {record.id}: handing off remote node {node_id} ({step.node_type})")

    def _fold(
        self,
        graph: WorkflowDefinition,
        record: ExecutionRecord,
        step: StepRecord,
        result: NodeExecutionResult,
        cycle: _Cycle,
    ) -> None:
        """Apply a node result to the step, the state and the Router."""
        state = record.state
        node_id = step.node_id

        if result.status == ResultStatus.SUSPENDED:
            raw = result.output.get("resumeAt")
            try:
                resume_at = _parse_dt(raw)
            except (TypeError, ValueError):
                result = NodeExecutionResult.failed(f"invalid resumeAt: {raw!r}", result.output)
            else:
                step.transition(StepStatus.SUSPENDED, output=result.output)
                state.mark_active(node_id)
                if resume_at is not None:
                    if resume_at.tzinfo is None:
                        resume_at = resume_at.replace(tzinfo=timezone.utc)
                    step.scheduled_for = resume_at
                    cycle.scheduled.append((node_id, resume_at))
                logger.info(f"Execution {record.id}: node {node_id} suspended")
                return

        if result.status == ResultStatus.FAILED:
            step.transition(StepStatus.FAILED, output=result.output or None, error=result.error)
            state.mark_failed(node_id, result.output)
            logger.warning(f"Execution {record.id}: node {node_id} failed: {result.error}")
            if not self.router.failure_is_handled(graph, node_id):
                self._fail(record, f"Node {node_id} failed: {result.error}")
                return
        else:
            step.transition(result.step_status, output=result.output)
            state.mark_completed(node_id, result.output)
            logger.info(f"Execution {record.id}: node {node_id} {step.status.value}")

        for target in self.router.next_eligible(graph, node_id, result, state):
            self._queue(graph, record, target.id, self.router.input_for(graph, target.id, state, record.input))

    def _retry_targets(self, graph: WorkflowDefinition, record: ExecutionRecord) -> List[str]:
        """Nodes to re-run for retry_execution.

        A merge node that failed because of failed branches is retried by
        re-running those branches; the merge fires again once they report.
        """
        state = record.state
        fatal = [nid for nid in state.failed_nodes if not self.router.failure_is_handled(graph, nid)]
        targets: List[str] = []
        for node_id in fatal:
            state.clear_failure(node_id)
            if graph.get_node(node_id).type == MERGE_NODE_TYPE:
                failed_branches = self.router.merge.tally(state, node_id)[MERGE_FAILED]
                if failed_branches:
                    for pred in failed_branches:
                        state.clear_failure(pred)
                        if pred not in targets:
                            targets.append(pred)
                    continue
            if node_id not in targets:
                targets.append(node_id)
        return graph.sort_by_position(targets)

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def _settle_status(self, graph: WorkflowDefinition, record: ExecutionRecord) -> None:
        active = record.state.active_nodes
        if any(graph.get_node(nid).is_remote for nid in active):
            record.status = ExecutionStatus.WAITING
        elif active:
            record.status = ExecutionStatus.SUSPENDED
        else:
            record.status = ExecutionStatus.COMPLETED
            record.finished_at = _utcnow()
        logger.info(f"Execution {record.id}: cycle ended {record.status.value}")

    def _fail(self, record: ExecutionRecord, error: str) -> None:
        record.status = ExecutionStatus.FAILED
        record.last_error = error
        record.finished_at = _utcnow()
        logger.error(f"Execution {record.id}: failed: {error}")

    def _apply_cancel(self, record: ExecutionRecord) -> None:
        for step in record.steps:
            if not step.is_terminal:
                step.transition(StepStatus.SKIPPED, error="Execution cancelled")
        record.state.active_nodes = []
        record.state.ready_nodes = []
        record.status = ExecutionStatus.CANCELLED
        record.finished_at = _utcnow()
        logger.info(f"Execution {record.id}: cancelled")

    async def _schedule_resume(self, execution_id: str, node_id: str, resume_at: datetime) -> None:
        if self.scheduler is None:
            logger.info(
                f"Execution {execution_id}: node {node_id} due at {resume_at.isoformat()} "
                f"(no scheduler, resume_due must be called)"
            )
            return
        try:
            await self.scheduler.schedule_resume(execution_id, node_id, resume_at)
        except Exception as e:
            logger.error(f"Execution {execution_id}: failed to schedule resume of {node_id}: {e}")

    # ------------------------------------------------------------------
    # Loading and responses
    # ------------------------------------------------------------------

    async def _load(self, execution_id: str) -> ExecutionRecord:
        record = await self.store.load_execution(execution_id)
        if record is None:
            raise ExecutionNotFoundError(execution_id)
        return record

    async def _load_graph(self, workflow_id: str) -> WorkflowDefinition:
        graph = await self.store.get_workflow(workflow_id)
        if graph is None:
            raise WorkflowNotFoundError(workflow_id)
        return graph

    def _descriptor(self, graph: WorkflowDefinition, record: ExecutionRecord, node_id: str) -> NextStep:
        node = graph.get_node(node_id)
        inputs = record.state.node_inputs.get(node_id, {})
        step = record.latest_step(node_id)
        return NextStep(
            node_id=node_id,
            type=node.type,
            input=inputs,
            config=render_config(node.config, record.state.step_results, inputs),
            attempt_number=step.attempt_number if step else 1,
        )

    def _response(self, graph: WorkflowDefinition, record: ExecutionRecord) -> EngineResponse:
        response = EngineResponse(execution_id=record.id, status=record.status.value)
        status = record.status

        if status == ExecutionStatus.WAITING:
            remote = [
                self._descriptor(graph, record, nid)
                for nid in graph.sort_by_position(record.state.active_nodes)
                if graph.get_node(nid).is_remote
            ]
            response.next_step = remote[0]
            response.pending_steps = remote[1:]
            response.message = f"Waiting for remote node {remote[0].node_id}"
        elif status == ExecutionStatus.SUSPENDED:
            parked = graph.sort_by_position(record.state.active_nodes)
            response.message = f"Suspended at node(s) {', '.join(parked)}"
        elif status == ExecutionStatus.COMPLETED:
            response.results = dict(record.state.step_results)
            response.message = "Execution completed"
        elif status == ExecutionStatus.FAILED:
            response.error = record.last_error
        elif status == ExecutionStatus.CANCELLED:
            response.message = "Execution cancelled"
        return response
