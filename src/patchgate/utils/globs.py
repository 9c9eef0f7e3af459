"""
patchgate — path glob matching

File: src/patchgate/utils/globs.py
Last updated: 2026-10-18

Purpose
- Match workspace-relative POSIX paths against a small, explicit glob grammar.

Functional requirements
- ``*`` matches within one path segment.
- ``**/`` matches zero or more leading directories; any other ``**`` matches across segments.
- A pattern ending in ``/**`` also matches the bare prefix (``docs/**`` matches ``docs``).
- Every other character is literal.

Non-functional requirements
- Compiled patterns are memoized per matcher instance, never process-wide.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

__all__ = ["GlobMatcher", "glob_to_regex"]


def glob_to_regex(pattern: str) -> str:
    """Translate ``pattern`` into an anchored regular expression source string."""

    parts: list[str] = ["^"]
    index = 0
    length = len(pattern)
    while index < length:
        character = pattern[index]
        if character == "*":
            if index + 1 < length and pattern[index + 1] == "*":
                if index + 2 < length and pattern[index + 2] == "/":
                    parts.append("(?:.*/)?")
                    index += 3
                else:
                    parts.append(".*")
                    index += 2
                continue
            parts.append("[^/]*")
            index += 1
            continue
        parts.append(re.escape(character))
        index += 1
    parts.append("$")
    return "".join(parts)


class GlobMatcher:
    """Glob matcher owning its own compiled-pattern memo."""

    def __init__(self) -> None:
        self._compiled: dict[str, re.Pattern[str]] = {}

    def compile(self, pattern: str) -> re.Pattern[str]:
        compiled = self._compiled.get(pattern)
        if compiled is None:
            compiled = re.compile(glob_to_regex(pattern), re.DOTALL)
            self._compiled[pattern] = compiled
        return compiled

    def matches(self, path: str, pattern: str) -> bool:
        if self.compile(pattern).match(path) is not None:
            return True
        return pattern.endswith("/**") and path == pattern[:-3]

    def matches_any(self, path: str, patterns: Iterable[str]) -> bool:
        return any(self.matches(path, pattern) for pattern in patterns)

    def collect_matches(self, paths: Iterable[str], patterns: Iterable[str]) -> list[str]:
        """Return the sorted, de-duplicated subset of ``paths`` matching any pattern."""

        pattern_list = list(patterns)
        return sorted({path for path in paths if self.matches_any(path, pattern_list)})
