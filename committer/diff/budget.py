"""
Character budget for diffs sent to the model.
"""

from dataclasses import dataclass
from typing import List, Tuple
from loguru import logger

from .filter import DiffHunk, FilteredDiff


# Leaves room for the prompt and the response in typical context windows.
MAX_DIFF_CHARS = 300_000

# Smallest budget that still fits a truncation marker.
MIN_DIFF_CHARS = 200


@dataclass(frozen=True)
class BudgetedDiff:
    """Diff text guaranteed to fit the character budget."""

    text: str
    truncated: bool = False
    included_files: int = 0
    omitted_paths: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def truncation_marker(included: int, total: int) -> str:
    """Marker line appended when whole files had to be dropped."""
    omitted = total - included
    return (
        f"[... diff truncated: showing {included}/{total} files, "
        f"{omitted} omitted to fit context limit ...]\n"
    )


class DiffBudgeter:
    """Bound a filtered diff to ``max_chars`` without splitting any hunk."""

    def __init__(self, max_chars: int = MAX_DIFF_CHARS):
        if max_chars < MIN_DIFF_CHARS:
            raise ValueError(f"max_chars must be at least {MIN_DIFF_CHARS}")
        self.max_chars = max_chars

    def apply(self, filtered: FilteredDiff) -> BudgetedDiff:
        hunks = list(filtered.included)
        text = filtered.text

        if len(text) <= self.max_chars:
            return BudgetedDiff(text=text, truncated=False, included_files=len(hunks))

        kept = self._fit(hunks)
        body = "".join(hunk.body for hunk in kept)
        marker = truncation_marker(len(kept), len(hunks))
        if body:
            marker = "\n" + marker
        omitted = tuple(hunk.path for hunk in hunks[len(kept):] if hunk.path)

        logger.info(
            f"Diff truncated: showing {len(kept)}/{len(hunks)} files "
            f"({len(text):,} chars, limit {self.max_chars:,})"
        )
        return BudgetedDiff(
            text=body + marker,
            truncated=True,
            included_files=len(kept),
            omitted_paths=omitted,
        )

    def _fit(self, hunks: List[DiffHunk]) -> List[DiffHunk]:
        """Longest prefix of ``hunks`` that fits together with its marker."""
        kept: List[DiffHunk] = []
        size = 0
        for hunk in hunks:
            candidate = size + len(hunk.body)
            reserve = 1 + len(truncation_marker(len(kept) + 1, len(hunks)))
            if candidate + reserve > self.max_chars:
                break
            kept.append(hunk)
            size = candidate
        return kept
