"""Handoff protocol wire types.

JSON on the wire is camelCase; Python attributes are snake_case.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class NextStep(WireModel):
    """A node the caller must execute locally."""
    node_id: str
    type: str
    input: Dict[str, Any] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)
    attempt_number: int = 1


class EngineResponse(WireModel):
    """Result of start / resume / retry.

    `waiting` carries nextStep; `completed` carries results; `failed`
    carries error.
    """
    execution_id: str
    status: str
    next_step: Optional[NextStep] = None
    pending_steps: List[NextStep] = Field(default_factory=list)
    results: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_waiting(self) -> bool:
        return self.status == "waiting" and self.next_step is not None


class ResumeRequest(WireModel):
    """Body of a resume call: the output (or failure) of one handed-off node."""
    node_id: str = Field(..., min_length=1)
    data: Any = Field(default_factory=dict)
    error: Optional[str] = None


class ExecuteRequest(WireModel):
    """Body of an execute call."""
    input: Dict[str, Any] = Field(default_factory=dict)
