"""Placeholder substitution for task input templates."""

from __future__ import annotations

import re
from collections.abc import Mapping

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def render_template(template: str, variables: Mapping[str, str]) -> str:
    """Replace `{{name}}` placeholders; unknown names are left verbatim."""

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return str(variables[name])

    return _PLACEHOLDER.sub(_substitute, template)


def unresolved_placeholders(rendered: str) -> list[str]:
    """Names of placeholders still present after rendering, in order of appearance."""

    seen: list[str] = []
    for match in _PLACEHOLDER.finditer(rendered):
        name = match.group(1)
        if name not in seen:
            seen.append(name)
    return seen
