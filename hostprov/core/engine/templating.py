"""
Placeholder rendering for action and probe parameters.

``{name}`` is replaced for known names only. Simple string
replacement with no Jinja and no escaping, so shell braces such as
``awk '{print $4}'`` pass through untouched.
"""

from __future__ import annotations

import re
from typing import Any

_PLACEHOLDER_RE = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def render(template: str, values: dict[str, str]) -> str:
    """Substitute ``{key}`` placeholders with values in one pass.

    Substituted text is never scanned again, so a value that itself
    contains ``{other}`` is inserted verbatim.
    """
    return _PLACEHOLDER_RE.sub(
        lambda m: str(values[m[1]]) if m[1] in values else m[0], template
    )


def render_params(params: Any, values: dict[str, str]) -> Any:
    """Render every string inside a params structure (dicts, lists)."""
    if isinstance(params, str):
        return render(params, values)
    if isinstance(params, dict):
        return {k: render_params(v, values) for k, v in params.items()}
    if isinstance(params, (list, tuple)):
        return [render_params(v, values) for v in params]
    return params


def placeholders(params: Any) -> set[str]:
    """Every ``{name}`` token appearing in a params structure."""
    if isinstance(params, str):
        return set(_PLACEHOLDER_RE.findall(params))
    if isinstance(params, dict):
        return set().union(*(placeholders(v) for v in params.values())) if params else set()
    if isinstance(params, (list, tuple)):
        return set().union(*(placeholders(v) for v in params)) if params else set()
    return set()
