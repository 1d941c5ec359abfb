"""Remote UI Node Types

Node types that run in a remote executor (typically the visitor's browser).
The engine never invokes these classes while walking a graph: it hands the
node off and waits for a resume. `execute` only guards against a graph that
forces one of these types onto the server.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..engine.state import NodeExecutionResult
from .registry import BaseNodeImpl, NodeContext, register_node_type

logger = logging.getLogger(__name__)


class RemoteOnlyNode(BaseNodeImpl):
    """Base for node types with no server implementation."""

    async def execute(self, inputs: Dict[str, Any], context: NodeContext) -> NodeExecutionResult:
        logger.error(f"{type(self).__name__} {self.node_id}: remote node dispatched on the server")
        return NodeExecutionResult.failed(
            f"Node type '{self.node_type}' runs in a remote executor and cannot run on the server"
        )


@register_node_type(
    node_type="banner-form",
    display_name="Banner Form",
    description="Shows a lead-capture banner and returns the submitted fields",
    category="ui",
    environment="remote",
    input_schema={
        "type": "object",
        "properties": {
            "headline": {"type": "string"},
            "cta": {"type": "string"},
            "fields": {"type": "array", "items": {"type": "string"}},
        },
    },
    output_schema={
        "type": "object",
        "properties": {
            "email": {"type": "string"},
            "name": {"type": "string"},
        },
    },
    icon="layout",
    color="#3F51B5",
)
class BannerFormNode(RemoteOnlyNode):
    pass


@register_node_type(
    node_type="window-alert",
    display_name="Window Alert",
    description="Shows a message to the visitor",
    category="ui",
    environment="remote",
    input_schema={
        "type": "object",
        "properties": {"message": {"type": "string"}},
        "required": ["message"],
    },
    output_schema={
        "type": "object",
        "properties": {"displayed": {"type": "boolean"}},
    },
    icon="message-square",
    color="#3F51B5",
)
class WindowAlertNode(RemoteOnlyNode):
    pass
