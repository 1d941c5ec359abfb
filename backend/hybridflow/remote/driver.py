"""Remote Driver

Client-side loop of the handoff protocol. Starts an execution, and while the
engine answers `waiting`, runs the handed-off node with a locally registered
handler and resumes the execution with the handler's output.

The driver owns a single in-flight PendingLocalStep and resolves it by a
direct call; there is no event bus between the loop and its handlers.

Usage:
    python -m hybridflow.remote.driver ppc-landing --input '{"query": {"utm_source": "ppc"}}'
"""

from __future__ import annotations

import argparse
import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from ..config import HYBRIDFLOW_API_URL
from ..settings import DRIVER_HTTP_TIMEOUT
from .protocol import EngineResponse, NextStep

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any], NextStep], Union[Any, Awaitable[Any]]]


class RemoteHandlerNotRegistered(Exception):
    """Raised when the engine hands off a node type with no local handler."""

    def __init__(self, node_type: str, node_id: str):
        self.node_type = node_type
        self.node_id = node_id
        super().__init__(f"No remote handler registered for node type '{node_type}' (node {node_id})")


class RemoteEngineError(Exception):
    """Non-2xx answer from the engine."""

    def __init__(self, status_code: int, error: str):
        self.status_code = status_code
        self.error = error
        super().__init__(f"Engine returned {status_code}: {error}")


@dataclass
class PendingLocalStep:
    """The one node currently handed off to this driver."""
    execution_id: str
    step: NextStep


class RemoteDriver:
    """Runs workflows against a hybridflow API, executing remote nodes locally.

    Args:
        base_url: Engine base URL
        client: Optional httpx.AsyncClient (e.g. over ASGITransport in tests);
            the driver closes only clients it created
        timeout: Request timeout when the driver creates its own client
        api_prefix: Route prefix of the engine API
    """

    def __init__(
        self,
        base_url: str = HYBRIDFLOW_API_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DRIVER_HTTP_TIMEOUT,
        api_prefix: str = "/api/v2",
    ):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._handlers: Dict[str, Handler] = {}
        self.pending: Optional[PendingLocalStep] = None

    async def __aenter__(self) -> "RemoteDriver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def register_handler(self, node_type: str, handler: Optional[Handler] = None):
        """Register a local handler for a remote node type.

        Usable directly or as a decorator:

            @driver.register_handler("banner-form")
            async def show_banner(input, step):
                return {"email": "..."}
        """
        if handler is None:
            def decorator(fn: Handler) -> Handler:
                self._handlers[node_type] = fn
                return fn
            return decorator

        self._handlers[node_type] = handler
        return handler

    def has_handler(self, node_type: str) -> bool:
        return node_type in self._handlers

    # ------------------------------------------------------------------
    # Engine calls
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}{path}"

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = await self._client.request(method, self._url(path), json=payload)
        if resp.is_error:
            try:
                error = resp.json().get("error") or resp.text
            except ValueError:
                error = resp.text
            raise RemoteEngineError(resp.status_code, error)
        return resp.json()

    async def start(self, workflow_id: str, input_data: Optional[Dict[str, Any]] = None) -> EngineResponse:
        data = await self._request("POST", f"/workflows/{workflow_id}/execute", {"input": input_data or {}})
        response = EngineResponse.model_validate(data)
        logger.info(f"Started execution {response.execution_id} of {workflow_id}: {response.status}")
        return response

    async def resume(
        self,
        execution_id: str,
        node_id: str,
        data: Any = None,
        error: Optional[str] = None,
    ) -> EngineResponse:
        payload: Dict[str, Any] = {"nodeId": node_id, "data": data if data is not None else {}}
        if error:
            payload["error"] = error
        body = await self._request("POST", f"/executions/{execution_id}/resume", payload)
        return EngineResponse.model_validate(body)

    async def get_status(self, execution_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/executions/{execution_id}")

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self, workflow_id: str, input_data: Optional[Dict[str, Any]] = None) -> EngineResponse:
        """Start an execution and drive it until it stops waiting."""
        return await self.drive(await self.start(workflow_id, input_data))

    async def drive(self, response: EngineResponse) -> EngineResponse:
        """Drive an execution from an engine response until it stops waiting.

        Returns the final response (completed, failed, or suspended on a
        server-side node).

        Raises:
            RemoteHandlerNotRegistered: A handed-off type has no handler
        """
        while response.is_waiting:
            self.pending = PendingLocalStep(response.execution_id, response.next_step)
            response = await self._resolve_pending()
        self.pending = None
        logger.info(f"Execution {response.execution_id} finished driving: {response.status}")
        return response

    async def _resolve_pending(self) -> EngineResponse:
        pending = self.pending
        step = pending.step
        handler = self._handlers.get(step.type)
        if handler is None:
            raise RemoteHandlerNotRegistered(step.type, step.node_id)

        logger.info(f"Execution {pending.execution_id}: running {step.type} node {step.node_id} locally")
        try:
            output = handler(step.input, step)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            logger.error(f"Handler for {step.type} node {step.node_id} failed: {e}")
            return await self.resume(pending.execution_id, step.node_id, error=str(e) or e.__class__.__name__)

        return await self.resume(pending.execution_id, step.node_id, data=output)


def _terminal_banner_form(input_data: Dict[str, Any], step: NextStep) -> Dict[str, Any]:
    print(step.config.get("headline") or "Sign up")
    email = input("email: ").strip()
    name = input("name: ").strip()
    return {"email": email, "name": name}


def _terminal_window_alert(input_data: Dict[str, Any], step: NextStep) -> Dict[str, Any]:
    print(f"[alert] {step.config.get('message', '')}")
    return {"displayed": True}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive a hybridflow workflow from the terminal")
    parser.add_argument("workflow_id", help="Workflow to execute")
    parser.add_argument("--base-url", default=HYBRIDFLOW_API_URL, help=f"Engine URL (default: {HYBRIDFLOW_API_URL})")
    parser.add_argument("--input", default="{}", help="Execution input as JSON")
    return parser.parse_args()


async def main() -> None:
    from ..logging_config import get_driver_logger

    get_driver_logger()
    args = parse_args()
    async with RemoteDriver(base_url=args.base_url) as driver:
        driver.register_handler("banner-form", _terminal_banner_form)
        driver.register_handler("window-alert", _terminal_window_alert)
        response = await driver.run(args.workflow_id, json.loads(args.input))
    print(json.dumps(response.to_wire(), indent=2, default=str))


if __name__ == "__main__":
    asyncio.run(main())
