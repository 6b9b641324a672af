"""Ant-style URL pattern matching for policy routes.

Supported syntax:
- ``?`` matches exactly one character within a path segment
- ``*`` matches zero or more characters within a path segment
- ``**`` matches zero or more whole path segments
- ``{name}`` matches one non-empty path segment
- ``{name:regex}`` matches ``regex`` within a path segment

Patterns are compiled once and memoised; matching is a single
``re.fullmatch`` against the request path.
"""

from __future__ import annotations

import re
from functools import lru_cache

_TOKEN = re.compile(r"(\{[^}]+\}|\*|\?)")


def _translate_segment(segment: str) -> str:
    parts: list[str] = []
    for token in _TOKEN.split(segment):
        if not token:
            continue
        if token == "*":
            parts.append("[^/]*")
        elif token == "?":
            parts.append("[^/]")
        elif token.startswith("{") and token.endswith("}"):
            _, _, constraint = token[1:-1].partition(":")
            parts.append(f"(?:{constraint})" if constraint else "[^/]+")
        else:
            parts.append(re.escape(token))
    return "".join(parts)


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile an Ant-style pattern into an anchored regular expression.

    Args:
        pattern: Route pattern from the policy file (e.g. ``/api/**``).

    Returns:
        Compiled regex to be used with ``fullmatch``.

    Raises:
        re.error: If a ``{name:regex}`` constraint is not a valid regex.
    """

    regex: list[str] = []
    for index, segment in enumerate(pattern.split("/")):
        if segment == "**":
            # Absorbs the separator so "/api/**" also matches "/api".
            regex.append("(?:/[^/]*)*" if index else "(?:[^/]*(?:/[^/]*)*)?")
            continue
        prefix = "/" if index else ""
        regex.append(prefix + _translate_segment(segment))
    return re.compile("".join(regex))


def match_path(pattern: str, path: str) -> bool:
    """Return True if ``path`` matches the Ant-style ``pattern``."""

    return compile_pattern(pattern).fullmatch(path) is not None
