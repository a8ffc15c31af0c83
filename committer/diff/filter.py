"""
Unified diff splitting and noise filtering.

Lock files, minified bundles, source maps, build output and platform cache
files are stripped from the staged diff before it reaches the prompt. Only
their paths survive so they can be reported in verbose mode.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
from loguru import logger

from ..config.patterns import EXCLUDED_FROM_DIFF


DIFF_HEADER = "diff --git "

_HEADER_RE = re.compile(r'^diff --git ', re.MULTILINE)
_QUOTED_HEADER_RE = re.compile(r'^"a/((?:[^"\\]|\\.)*)" "b/((?:[^"\\]|\\.)*)"$')
_LOOSE_HEADER_RE = re.compile(r'^"?a/(.+?)"? "?b/(.+?)"?$')


class FilterError(ValueError):
    """Raised when a diff header cannot be parsed."""


class HunkStatus(str, Enum):
    """Change status of a single file block."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class DiffHunk:
    """One file's block of a unified diff, header included."""

    path: str
    status: HunkStatus
    body: str


@dataclass(frozen=True)
class FilteredDiff:
    """Diff with excluded files removed."""

    included: Tuple[DiffHunk, ...] = ()
    excluded_paths: FrozenSet[str] = frozenset()
    char_count: int = 0

    @property
    def text(self) -> str:
        """Concatenated bodies of all included hunks."""
        return "".join(hunk.body for hunk in self.included)

    @property
    def paths(self) -> List[str]:
        """Paths of included hunks, preamble excluded."""
        return [hunk.path for hunk in self.included if hunk.path]

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def _unquote(path: str) -> str:
    """Undo git's C-style quoting (octal escapes are UTF-8 bytes)."""
    raw = path.encode("ascii", "backslashreplace").decode("unicode_escape")
    return raw.encode("latin-1", "replace").decode("utf-8", "replace")


def parse_header_path(header_line: str) -> str:
    """Extract the destination path from a ``diff --git`` header line."""
    if not header_line.startswith(DIFF_HEADER):
        raise FilterError(f"Not a diff header: {header_line[:80]!r}")

    rest = header_line[len(DIFF_HEADER):].rstrip("\r\n")

    # Unchanged path: "a/<p> b/<p>". Both halves must agree, which also holds
    # when the path itself contains " b/".
    if rest.startswith("a/") and (len(rest) - 5) % 2 == 0:
        half = (len(rest) - 5) // 2
        left, sep, right = rest[2:2 + half], rest[2 + half:5 + half], rest[5 + half:]
        if sep == " b/" and left == right and left:
            return left

    quoted = _QUOTED_HEADER_RE.match(rest)
    if quoted:
        return _unquote(quoted.group(2))

    loose = _LOOSE_HEADER_RE.match(rest)
    if loose and loose.group(2):
        return loose.group(2)

    raise FilterError(f"Cannot parse path from header: {header_line[:80]!r}")


def _detect_status(body: str) -> HunkStatus:
    """Derive the change status from extended header lines."""
    for line in body.splitlines():
        if line.startswith("@@"):
            break
        if line.startswith("new file mode"):
            return HunkStatus.ADDED
        if line.startswith("deleted file mode"):
            return HunkStatus.DELETED
        if line.startswith("rename from") or line.startswith("rename to"):
            return HunkStatus.RENAMED
    return HunkStatus.MODIFIED


def split_hunks(raw_diff: str) -> List[str]:
    """Split raw diff text into per-file blocks, each starting at its header.

    Text before the first header is returned as its own leading block.
    Concatenating the result reproduces the input exactly.
    """
    if not raw_diff:
        return []

    starts = [m.start() for m in _HEADER_RE.finditer(raw_diff)]
    if not starts:
        return [raw_diff]

    blocks = []
    if starts[0] > 0:
        blocks.append(raw_diff[:starts[0]])
    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(raw_diff)
        blocks.append(raw_diff[start:end])
    return blocks


class DiffFilter:
    """Strip noise files from a raw unified diff."""

    def __init__(
        self,
        patterns: Optional[Mapping[str, Iterable[str]]] = None,
        extra_patterns: Optional[Iterable[str]] = None,
    ):
        table: Dict[str, FrozenSet[str]] = {
            category: frozenset(values)
            for category, values in (patterns if patterns is not None else EXCLUDED_FROM_DIFF).items()
        }
        extra = frozenset(p for p in (extra_patterns or ()) if p)
        if extra:
            table["custom"] = table.get("custom", frozenset()) | extra
        self.patterns = table

    @staticmethod
    def _matches(path: str, pattern: str) -> bool:
        if pattern.endswith("/"):
            directory = pattern.rstrip("/")
            return path.startswith(f"{directory}/") or f"/{directory}/" in path
        if pattern.startswith("."):
            return path.endswith(pattern)
        return path == pattern or path.endswith(f"/{pattern}")

    def exclusion_category(self, path: str) -> Optional[str]:
        """Return the category that excludes ``path``, or None if it is kept."""
        if not path:
            return None
        for category in sorted(self.patterns):
            if any(self._matches(path, pattern) for pattern in self.patterns[category]):
                return category
        return None

    def is_excluded(self, path: str) -> bool:
        return self.exclusion_category(path) is not None

    def parse(self, raw_diff: str) -> List[DiffHunk]:
        """Parse raw diff text into hunks without filtering."""
        hunks = []
        for block in split_hunks(raw_diff):
            if not block.startswith(DIFF_HEADER):
                # Preamble before the first header
                if block.strip():
                    hunks.append(DiffHunk(path="", status=HunkStatus.MODIFIED, body=block))
                continue

            header_line = block.split("\n", 1)[0]
            try:
                path = parse_header_path(header_line)
            except FilterError as e:
                logger.debug(f"Keeping hunk with unparseable header: {e}")
                path = ""

            hunks.append(DiffHunk(path=path, status=_detect_status(block), body=block))
        return hunks

    def filter(self, raw_diff: str) -> FilteredDiff:
        """Split ``raw_diff`` and drop hunks whose paths are excluded."""
        included: List[DiffHunk] = []
        excluded: Dict[str, str] = {}

        for hunk in self.parse(raw_diff):
            category = self.exclusion_category(hunk.path)
            if category:
                excluded[hunk.path] = category
                continue
            included.append(hunk)

        excluded_paths = frozenset(excluded)
        for path, category in sorted(excluded.items()):
            logger.debug(f"Excluded from diff ({category}): {path}")

        return FilteredDiff(
            included=tuple(included),
            excluded_paths=excluded_paths,
            char_count=sum(len(hunk.body) for hunk in included),
        )
