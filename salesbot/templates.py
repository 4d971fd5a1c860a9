# salesbot/templates.py
"""
Template Renderer
-----------------
Fills {{name}} placeholders in script messages with run variables.
Unknown or empty variables render as an empty string.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

_PLACEHOLDER = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")
_WHITESPACE = re.compile(r"\s+")


def _lookup(vars: Optional[Mapping[str, Any]], key: str) -> str:
    if not vars:
        return ""
    value = vars.get(key)
    return "" if value is None else str(value)


def render_template(template: Any, vars: Optional[Mapping[str, Any]] = None) -> str:
    """Render one message template against the run variables."""
    text = _PLACEHOLDER.sub(lambda m: _lookup(vars, m.group(1)), str(template or ""))
    return _WHITESPACE.sub(" ", text).strip()


__all__ = ["render_template"]
