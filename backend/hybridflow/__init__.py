"""hybridflow: workflow execution engine with server/remote handoff.

Subpackages:
- engine: Graph model, conditions, routing, merge coordination, state machine
- nodes: Node type registry and built-in node implementations
- remote: Handoff wire protocol and the remote driver loop
- temporal: Temporal workflow/activity definitions and worker
"""
