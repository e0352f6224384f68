"""
Request path patterns used by ``matches`` conditions.

Segments are split on '/'. Pattern segments:
- literal: matches the same text exactly
- ``{name}``: matches one all-digit segment (a numeric ID)
- ``*``: only as the last segment, matches zero or more remaining segments
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

_NUMERIC_SEGMENT = re.compile(r"[0-9]+")
_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

NUMERIC = "{}"
WILDCARD = "*"


def _split(path: str) -> List[str]:
    # "/" -> [""], "/a/b" -> ["a", "b"]
    return path.split("/")[1:]


@dataclass(frozen=True)
class PathPattern:
    """Compiled path pattern."""
    source: str
    segments: Tuple[str, ...]

    @classmethod
    def parse(cls, source: str) -> "PathPattern":
        """Compile ``source``. Raises ``ValueError`` describing the problem."""
        if not source.startswith("/"):
            raise ValueError(f"path pattern {source!r} must start with '/'")

        parts = _split(source)
        segments: List[str] = []
        for index, part in enumerate(parts):
            if part == WILDCARD:
                if index != len(parts) - 1:
                    raise ValueError(f"'*' must be the last segment in {source!r}")
                segments.append(WILDCARD)
            elif _PLACEHOLDER.fullmatch(part):
                segments.append(NUMERIC)
            elif any(ch in part for ch in "{}*"):
                raise ValueError(f"malformed segment {part!r} in {source!r}")
            else:
                segments.append(part)
        return cls(source=source, segments=tuple(segments))

    def matches(self, path: str) -> bool:
        target = _split(path)
        for index, segment in enumerate(self.segments):
            if segment == WILDCARD:
                return True
            if index >= len(target):
                return False
            if segment == NUMERIC:
                if not _NUMERIC_SEGMENT.fullmatch(target[index]):
                    return False
            elif segment != target[index]:
                return False
        return len(target) == len(self.segments)

    def __str__(self) -> str:
        return self.source
