"""Node type catalogue endpoint."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from hybridflow.nodes import list_node_types, list_node_types_by_category

from ..models.schemas import NodeTypesResponse

router = APIRouter(prefix="/api/v2/node-types", tags=["nodes"])


@router.get("", response_model=NodeTypesResponse)
async def get_node_types(
    category: Optional[str] = Query(None, description="Filter by category"),
):
    """List registered node types with their environment and retry policy."""
    definitions = list_node_types_by_category(category) if category else list_node_types()
    return NodeTypesResponse(
        items=[d.to_dict() for d in definitions],
        total=len(definitions),
    )
