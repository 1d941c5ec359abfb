"""Pydantic request/response models for the hybridflow API.

Handoff wire types (ExecuteRequest, ResumeRequest, EngineResponse) live in
hybridflow.remote.protocol, shared with the remote driver.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WorkflowResponse(BaseModel):
    """Stored workflow in API response."""
    id: str
    name: str
    description: Optional[str] = None
    graph_definition: Dict[str, Any]
    created_at: str
    updated_at: str


class PagedWorkflowsResponse(BaseModel):
    """Paginated workflow list response."""
    items: List[WorkflowResponse]
    page: int
    page_size: int
    total: int


class PagedExecutionsResponse(BaseModel):
    """Paginated execution list response; items are status snapshots."""
    items: List[Dict[str, Any]]
    page: int
    page_size: int
    total: int


class NodeTypesResponse(BaseModel):
    """Registered node types (NodeDefinition.to_dict)."""
    items: List[Dict[str, Any]]
    total: int = Field(..., ge=0)
