"""Input templating for node configuration.

Node configs may reference earlier results with `{{nodeId.path}}`
placeholders ("Your code is: {{5.code}}"), or the node's own input with
`{{input.path}}`. A string that is exactly one placeholder resolves to the
raw value; placeholders embedded in text are stringified. Unresolvable
placeholders become empty strings.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

from .conditions import MISSING, resolve_key_path

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def _lookup(path: str, results: Mapping[str, Any], inputs: Optional[Mapping[str, Any]]) -> Any:
    head, _, rest = path.partition(".")
    if head == "input" and inputs is not None:
        return resolve_key_path(inputs, rest) if rest else inputs
    if head in results:
        return resolve_key_path(results[head], rest) if rest else results[head]
    # Bare key: look in the node's own input
    if inputs is not None:
        return resolve_key_path(inputs, path)
    return MISSING


def render(value: Any, results: Mapping[str, Any], inputs: Optional[Mapping[str, Any]] = None) -> Any:
    """Resolve placeholders in a config value (recursing into dicts and lists)."""
    if isinstance(value, str):
        whole = _PLACEHOLDER.fullmatch(value.strip())
        if whole:
            resolved = _lookup(whole.group(1), results, inputs)
            return None if resolved is MISSING else resolved

        def _sub(match: "re.Match[str]") -> str:
            resolved = _lookup(match.group(1), results, inputs)
            if resolved is MISSING or resolved is None:
                return ""
            return str(resolved)

        return _PLACEHOLDER.sub(_sub, value)
    if isinstance(value, dict):
        return {k: render(v, results, inputs) for k, v in value.items()}
    if isinstance(value, list):
        return [render(v, results, inputs) for v in value]
    return value


def render_config(
    config: Dict[str, Any],
    results: Mapping[str, Any],
    inputs: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Return a copy of a node config with all placeholders resolved."""
    return render(config or {}, results, inputs)
