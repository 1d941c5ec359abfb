"""Business Action Node Types

analytics, discount, email, fetch, console-log and extract-query-params. All
run on the server. Email and analytics simulate their providers; fetch makes
a real HTTP call through a shared pooled httpx client.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlsplit

import httpx

from ..engine.state import NodeExecutionResult
from ..settings import (
    DISCOUNT_CODE_TTL_DAYS,
    EMAIL_DEFAULT_PROVIDER,
    EMAIL_SEND_DELAY,
    FETCH_HTTP_MAX_CONNECTIONS,
    FETCH_HTTP_MAX_KEEPALIVE,
    FETCH_HTTP_TIMEOUT,
)
from .registry import BaseNodeImpl, NodeContext, RetryPolicy, register_node_type

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@register_node_type(
    node_type="analytics",
    display_name="Analytics Event",
    description="Records an analytics event",
    category="business",
    input_schema={
        "type": "object",
        "properties": {
            "eventName": {"type": "string"},
            "properties": {"type": "object"},
        },
        "required": ["eventName"],
    },
    output_schema={
        "type": "object",
        "properties": {
            "eventName": {"type": "string"},
            "timestamp": {"type": "string"},
            "success": {"type": "boolean"},
        },
    },
    icon="bar-chart",
    color="#2196F3",
)
class AnalyticsNode(BaseNodeImpl):
    """Tracks an event; the event sink is the engine log."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> Dict[str, Any]:
        event_name = self.config.get("eventName") or "event"
        properties = self.config.get("properties") or {}
        logger.info(f"AnalyticsNode {self.node_id}: tracking '{event_name}' {properties}")
        return {
            "eventName": event_name,
            "properties": properties,
            "timestamp": _now_iso(),
            "success": True,
        }


@register_node_type(
    node_type="discount",
    display_name="Discount Code",
    description="Generates a unique discount code",
    category="business",
    input_schema={
        "type": "object",
        "properties": {
            "percentage": {"type": "number"},
            "prefix": {"type": "string"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {
            "code": {"type": "string"},
            "percentage": {"type": "number"},
            "expiresAt": {"type": "string"},
        },
    },
    icon="tag",
    color="#E91E63",
)
class DiscountNode(BaseNodeImpl):
    """Generates `{prefix}{percentage}-{6 random chars}` codes."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        percentage = self.config.get("percentage", 10)
        prefix = self.config.get("prefix") or "WELCOME"
        if not isinstance(percentage, (int, float)) or isinstance(percentage, bool) or not 0 < percentage <= 100:
            return NodeExecutionResult.failed(f"Invalid discount percentage: {percentage!r}")

        suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
        code = f"{prefix}{percentage}-{suffix}"
        expires_at = datetime.now(timezone.utc) + timedelta(days=DISCOUNT_CODE_TTL_DAYS)

        logger.info(f"DiscountNode {self.node_id}: generated {code}")
        return NodeExecutionResult.success({
            "code": code,
            "percentage": percentage,
            "expiresAt": expires_at.isoformat(),
        })


@register_node_type(
    node_type="email",
    display_name="Send Email",
    description="Sends a templated email through a provider",
    category="business",
    input_schema={
        "type": "object",
        "properties": {
            "provider": {"type": "string"},
            "templateId": {"type": "string"},
            "to": {"type": "string"},
            "variables": {"type": "object"},
        },
        "required": ["templateId"],
    },
    output_schema={
        "type": "object",
        "properties": {
            "emailSent": {"type": "boolean"},
            "provider": {"type": "string"},
            "sentAt": {"type": "string"},
            "recipient": {"type": "string"},
        },
    },
    retry=RetryPolicy(max_attempts=3, backoff_seconds=1.0),
    icon="mail",
    color="#00BCD4",
)
class EmailNode(BaseNodeImpl):
    """Simulated provider send.

    The recipient is taken from the input (`to`, then `email`), then from
    the node config. Without a recipient nothing is sent and the node still
    succeeds with `reason: "no_email"`.
    """

    def _recipient(self, inputs: Dict[str, Any]) -> Optional[str]:
        for candidate in (inputs.get("to"), inputs.get("email"), self.config.get("to")):
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
        return None

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        provider = self.config.get("provider") or EMAIL_DEFAULT_PROVIDER
        template_id = self.config.get("templateId")
        recipient = self._recipient(inputs)

        if not recipient:
            logger.warning(f"EmailNode {self.node_id}: no recipient, skipping send")
            return NodeExecutionResult.success({"emailSent": False, "reason": "no_email"})

        if "@" not in recipient:
            return NodeExecutionResult.failed(f"Invalid email address: {recipient}")

        if EMAIL_SEND_DELAY > 0:
            await asyncio.sleep(EMAIL_SEND_DELAY)

        logger.info(
            f"EmailNode {self.node_id}: sent '{template_id}' via {provider} to {recipient} "
            f"(attempt {context.attempt_number})"
        )
        return NodeExecutionResult.success({
            "emailSent": True,
            "provider": provider,
            "templateId": template_id,
            "sentAt": _now_iso(),
            "recipient": recipient,
            "variables": self.config.get("variables") or {},
        })


# Shared httpx client with connection pooling for fetch nodes
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared httpx client."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=FETCH_HTTP_TIMEOUT,
            limits=httpx.Limits(
                max_connections=FETCH_HTTP_MAX_CONNECTIONS,
                max_keepalive_connections=FETCH_HTTP_MAX_KEEPALIVE,
            ),
        )
    return _http_client


def set_http_client(client: Optional[httpx.AsyncClient]) -> None:
    """Replace the shared client (tests install one over httpx.MockTransport)."""
    global _http_client
    _http_client = client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


@register_node_type(
    node_type="fetch",
    display_name="HTTP Fetch",
    description="Calls an HTTP endpoint and returns the response",
    category="integration",
    input_schema={
        "type": "object",
        "properties": {
            "url": {"type": "string", "format": "uri"},
            "method": {"type": "string", "enum": list(_HTTP_METHODS)},
            "headers": {"type": "object"},
            "body": {},
        },
        "required": ["url"],
    },
    output_schema={
        "type": "object",
        "properties": {
            "status": {"type": "number"},
            "statusText": {"type": "string"},
            "headers": {"type": "object"},
            "data": {},
        },
    },
    icon="globe",
    color="#FF9800",
)
class FetchNode(BaseNodeImpl):
    """Node that makes HTTP requests."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        url = self.config.get("url", "")
        method = str(self.config.get("method", "GET")).upper()
        headers = self.config.get("headers") or {}
        body = self.config.get("body")

        if not url:
            return NodeExecutionResult.failed("url is required")
        if method not in _HTTP_METHODS:
            return NodeExecutionResult.failed(f"Unsupported HTTP method: {method}")

        logger.info(f"FetchNode {self.node_id}: {method} {url}")
        request_kwargs: Dict[str, Any] = {"headers": headers}
        if body is not None and method not in ("GET", "HEAD"):
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            else:
                request_kwargs["content"] = str(body)

        try:
            resp = await get_http_client().request(method, url, **request_kwargs)
        except httpx.TimeoutException:
            return NodeExecutionResult.failed(f"Request to {url} timed out")
        except httpx.HTTPError as e:
            return NodeExecutionResult.failed(f"Request to {url} failed: {e}")

        try:
            data: Any = resp.json()
        except ValueError:
            data = resp.text

        output = {
            "status": resp.status_code,
            "statusText": resp.reason_phrase,
            "headers": dict(resp.headers),
            "data": data,
        }
        if resp.is_error and not self.config.get("allowErrorStatus", False):
            return NodeExecutionResult.failed(f"HTTP {resp.status_code} from {url}", output)
        return NodeExecutionResult.success(output)

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        url = self.config.get("url", "")
        if url and "{{" not in url and not (url.startswith("http://") or url.startswith("https://")):
            errors.append({"field": "url", "error": "must be an http(s) URL"})
        method = str(self.config.get("method", "GET")).upper()
        if method not in _HTTP_METHODS:
            errors.append({"field": "method", "error": f"must be one of {', '.join(_HTTP_METHODS)}"})
        return errors


@register_node_type(
    node_type="console-log",
    display_name="Console Log",
    description="Logs a message and passes its input through",
    category="utility",
    input_schema={
        "type": "object",
        "properties": {
            "message": {"type": "string"},
            "level": {"type": "string", "enum": ["debug", "info", "warning", "error"]},
        },
    },
    output_schema={"type": "object", "properties": {"logged": {"type": "string"}}},
    icon="terminal",
    color="#9E9E9E",
)
class ConsoleLogNode(BaseNodeImpl):

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> Dict[str, Any]:
        message = self.config.get("message")
        if message is None:
            message = str(inputs)
        level = getattr(logging, str(self.config.get("level", "info")).upper(), logging.INFO)
        logger.log(level, f"ConsoleLogNode {self.node_id}: {message}")
        return {**inputs, "logged": str(message)}


@register_node_type(
    node_type="extract-query-params",
    display_name="Extract Query Params",
    description="Parses the query string of a URL into a flat mapping",
    category="data",
    input_schema={
        "type": "object",
        "properties": {"url": {"type": "string"}},
    },
    output_schema={
        "type": "object",
        "properties": {
            "params": {"type": "object"},
            "paramCount": {"type": "integer"},
        },
    },
    icon="link",
    color="#607D8B",
)
class ExtractQueryParamsNode(BaseNodeImpl):
    """Reads `url` from its input, falling back to config.url.

    Params are also spread into the output, so a downstream condition can
    test `utm_source` directly. Repeated keys keep the last value.
    """

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        url = inputs.get("url") or self.config.get("url")
        if not isinstance(url, str) or not url.strip():
            return NodeExecutionResult.failed("Invalid input: url is required")

        parts = urlsplit(url.strip())
        if not parts.scheme or not parts.netloc:
            return NodeExecutionResult.failed(f"Invalid URL: {url}")

        params = dict(parse_qsl(parts.query, keep_blank_values=True))
        logger.info(f"ExtractQueryParamsNode {self.node_id}: {len(params)} param(s) from {parts.netloc}")
        return NodeExecutionResult.success({**params, "params": params, "paramCount": len(params)})
