"""Handoff protocol and the remote driver loop."""

from .protocol import EngineResponse, ExecuteRequest, NextStep, ResumeRequest

__all__ = ["EngineResponse", "ExecuteRequest", "NextStep", "ResumeRequest"]
