"""
Branch alignment analysis: does the staged work belong on the current branch,
and if not, what should the new branch be called.
"""

import json
import os
import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple
from loguru import logger

from ..ai_backends.base import ApiError
from ..config.patterns import PROTECTED_BRANCHES
from ..diff.budget import BudgetedDiff
from ..diff.filter import DiffFilter, DiffHunk
from ..utils.prompts import PromptBuilder


class BranchAnalysisError(Exception):
    """No slug could be derived from the diff."""


class Confidence(str, Enum):
    HIGH = "high"
    LOW = "low"


BRANCH_TYPES = frozenset({
    "feat", "fix", "refactor", "docs", "test", "chore", "perf", "build", "ci", "style",
})

SLUG_RE = re.compile(r'^[a-z0-9]+(-[a-z0-9]+)*$')

FILLER_WORDS: FrozenSet[str] = frozenset({
    "add", "update", "fix", "remove", "delete", "change", "modify", "implement",
    "create", "make", "set", "get", "use", "handle", "support", "enable",
    "disable", "allow", "improve", "enhance", "the", "a", "an", "to", "for",
    "of", "in", "on", "with", "and", "or",
})

# Directory and file-name parts that say nothing about the feature
PATH_NOISE: FrozenSet[str] = frozenset({
    "src", "lib", "libs", "pkg", "internal", "cmd", "app", "apps", "packages",
    "index", "mod", "main", "init", "__init__", "setup", "github", "workflows",
})

LANGUAGE_KEYWORDS: FrozenSet[str] = frozenset({
    "def", "class", "return", "import", "from", "self", "none", "true", "false",
    "async", "await", "pass", "raise", "try", "except", "finally", "lambda",
    "yield", "while", "elif", "else", "if", "not", "is", "as", "assert",
    "fn", "let", "mut", "pub", "impl", "struct", "enum", "trait", "crate",
    "match", "mod", "ok", "err", "some", "unwrap", "string", "str", "vec",
    "const", "var", "function", "export", "default", "new", "this", "null",
    "undefined", "typeof", "interface", "type", "extends", "implements",
    "public", "private", "protected", "static", "void", "int", "bool",
    "package", "func", "go", "defer", "nil", "println", "print", "console",
    "log", "require", "module", "exports", "then", "catch",
})

STOP_WORDS: FrozenSet[str] = FILLER_WORDS | PATH_NOISE | LANGUAGE_KEYWORDS

MAX_SLUG_TOKENS = 3
PATH_WEIGHT = 5
ADDITION_CAP = 3

_IDENTIFIER_RE = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')
_WORD_RE = re.compile(r'[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+')
_CONVENTIONAL_SUBJECT_RE = re.compile(r'^([a-z]+)(?:\(([^)]+)\))?!?:\s*(.+)$')
_DOC_SUFFIXES = (".md", ".rst", ".txt", ".adoc")


@dataclass(frozen=True)
class BranchAnalysis:
    """Recommendation for where the staged changes should be committed."""

    suggested_slug: str
    confidence: Confidence
    reason: str
    current_branch_is_protected: bool
    matches_current_branch: bool = False
    branch_type: str = "feat"

    @property
    def suggested_branch(self) -> str:
        return f"{self.branch_type}/{self.suggested_slug}"

    @property
    def should_switch(self) -> bool:
        return self.current_branch_is_protected or not self.matches_current_branch


@dataclass(frozen=True)
class _ModelVerdict:
    matches: Optional[bool]
    branch_type: str
    slug: str
    reason: str


def split_words(text: str) -> List[str]:
    """Split an identifier or path segment on separators and camelCase."""
    words = []
    for part in re.split(r'[^A-Za-z0-9]+', text):
        words.extend(w.lower() for w in _WORD_RE.findall(part))
    return words


def normalize_slug(text: str) -> str:
    """Lowercase kebab-case form of ``text``; empty when nothing usable is left."""
    slug = re.sub(r'[^a-z0-9]+', '-', text.lower())
    return slug.strip('-')


def slugify(text: str, max_words: int = 3) -> str:
    """Slug from free text, skipping filler words when anything else remains."""
    words = text.split()
    kept = [w for w in words if w.lower() not in FILLER_WORDS][:max_words]
    if not kept:
        kept = words[:max_words]
    return normalize_slug(" ".join(kept))


def branch_from_message(message: str) -> str:
    """Branch name ``type/scope-desc`` derived from a commit subject line."""
    lines = message.strip().splitlines()
    first_line = lines[0].strip() if lines else ""

    match = _CONVENTIONAL_SUBJECT_RE.match(first_line)
    if match:
        commit_type, scope, description = match.groups()
        desc_slug = slugify(description, 3) or "changes"
        if scope:
            return f"{commit_type}/{normalize_slug(scope)}-{desc_slug}"
        return f"{commit_type}/{desc_slug}"

    return f"feat/{slugify(first_line, 3) or 'changes'}"


def unique_name(name: str, taken: Callable[[str], bool]) -> str:
    """``name``, or ``name-2``, ``name-3``, ... for the first one not taken."""
    if not taken(name):
        return name
    suffix = 2
    while taken(f"{name}-{suffix}"):
        suffix += 1
    return f"{name}-{suffix}"


def is_protected(branch: str, protected: Iterable[str] = PROTECTED_BRANCHES) -> bool:
    return branch.strip() in set(protected)


def _strip_fences(text: str) -> str:
    text = text.strip()
    text = re.sub(r'^```[A-Za-z]*\s*', '', text)
    text = re.sub(r'\s*```$', '', text)
    return text.strip()


def parse_model_reply(text: str) -> Optional[_ModelVerdict]:
    """Parse the classifier reply: a JSON object, or a bare branch/slug line."""
    text = _strip_fences(text)
    if not text:
        return None

    start = text.find("{")
    if start != -1:
        try:
            data, _ = json.JSONDecoder().raw_decode(text[start:])
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            slug_source = data.get("slug") or data.get("suggested_branch") or ""
            branch_type = str(data.get("type") or "")
            if isinstance(slug_source, str) and "/" in slug_source:
                prefix, slug_source = slug_source.split("/", 1)
                branch_type = branch_type or prefix
            matches = data.get("matches")
            return _ModelVerdict(
                matches=matches if isinstance(matches, bool) else None,
                branch_type=branch_type.strip().lower(),
                slug=normalize_slug(str(slug_source)),
                reason=str(data.get("reason") or "").strip(),
            )

    # Bare "type/slug" or "slug" line
    line = text.splitlines()[0].strip().strip('"\'`')
    if not line or " " in line.strip():
        return None
    branch_type, _, slug = line.rpartition("/")
    return _ModelVerdict(
        matches=None,
        branch_type=branch_type.lower(),
        slug=normalize_slug(slug),
        reason="",
    )


class BranchAnalyzer:
    """Suggest a branch slug for a diff and compare it with the current branch."""

    def __init__(
        self,
        client=None,
        prompt_builder: Optional[PromptBuilder] = None,
        protected: Iterable[str] = PROTECTED_BRANCHES,
    ):
        self.client = client
        self.prompt_builder = prompt_builder
        self.protected = frozenset(protected)

    async def analyze(
        self,
        diff: BudgetedDiff,
        current_branch: str,
        files: Optional[str] = None,
        recent_commits: Optional[Sequence[str]] = None,
        existing_branches: Iterable[str] = (),
    ) -> BranchAnalysis:
        """Classify ``diff`` against ``current_branch``.

        The model is asked first. Any failure there (API error, unusable
        reply, invalid slug) falls through to the token heuristic, which only
        fails when the diff has no usable tokens at all.
        """
        protected = is_protected(current_branch, self.protected)
        hunks = DiffFilter(patterns={}).parse(diff.text)
        # Files dropped by the budget still name the change
        omitted = tuple(diff.omitted_paths)

        verdict = await self._ask_model(diff, current_branch, files, recent_commits)
        if verdict is not None:
            matches = bool(verdict.matches) and not protected
            if verdict.matches is None:
                matches = not protected and self._slug_matches_branch(verdict.slug, current_branch)
            branch_type = (
                verdict.branch_type if verdict.branch_type in BRANCH_TYPES
                else self._guess_type(hunks, omitted)
            )
            slug = self._dedupe(verdict.slug, branch_type, existing_branches)
            logger.debug(f"Model branch classification: {branch_type}/{slug} (matches={matches})")
            return BranchAnalysis(
                suggested_slug=slug,
                confidence=Confidence.HIGH,
                reason=verdict.reason or "Classified by model",
                current_branch_is_protected=protected,
                matches_current_branch=matches,
                branch_type=branch_type,
            )

        slug = self.fallback_slug(hunks, omitted)
        branch_type = self._guess_type(hunks, omitted)
        matches = not protected and self._slug_matches_branch(slug, current_branch)
        slug = self._dedupe(slug, branch_type, existing_branches)

        if protected:
            reason = f"'{current_branch}' is a protected branch"
        elif matches:
            reason = f"Changes relate to '{current_branch}'"
        else:
            reason = f"Changes do not mention '{current_branch}'"
        logger.debug(f"Fallback branch slug: {branch_type}/{slug} ({reason})")

        return BranchAnalysis(
            suggested_slug=slug,
            confidence=Confidence.LOW,
            reason=reason,
            current_branch_is_protected=protected,
            matches_current_branch=matches,
            branch_type=branch_type,
        )

    async def _ask_model(
        self,
        diff: BudgetedDiff,
        current_branch: str,
        files: Optional[str],
        recent_commits: Optional[Sequence[str]],
    ) -> Optional[_ModelVerdict]:
        if self.client is None or self.prompt_builder is None:
            return None

        request = self.prompt_builder.build_branch_request(
            diff, current_branch, files=files, recent_commits=recent_commits
        )
        try:
            result = await self.client.generate(request)
        except ApiError as e:
            logger.warning(f"Branch classification failed, using heuristic: {e}")
            return None

        verdict = parse_model_reply(result.text)
        if verdict is None or not SLUG_RE.match(verdict.slug):
            logger.debug(f"Unusable branch classification reply: {result.text[:200]!r}")
            return None
        return verdict

    def fallback_slug(self, hunks: Sequence[DiffHunk], omitted_paths: Sequence[str] = ()) -> str:
        """Deterministic slug from path and added-line tokens.

        ``omitted_paths`` are files left out of the diff text; they count as
        paths but contribute no added lines.
        """
        path_counts, addition_counts, order = self._collect_tokens(hunks, omitted_paths)

        candidates = [t for t in order if t not in STOP_WORDS]
        if not candidates:
            # Stop-list removed everything; use raw path tokens instead
            candidates = [t for t in order if t in path_counts]
        if not candidates:
            raise BranchAnalysisError("No identifiers found in the diff to name a branch")

        position = {token: i for i, token in enumerate(order)}
        ranked = sorted(
            candidates,
            key=lambda t: (
                -(path_counts[t] * PATH_WEIGHT + min(addition_counts[t], ADDITION_CAP)),
                position[t],
            ),
        )
        return "-".join(ranked[:MAX_SLUG_TOKENS])

    @staticmethod
    def _collect_tokens(
        hunks: Sequence[DiffHunk], omitted_paths: Sequence[str] = ()
    ) -> Tuple[Counter, Counter, List[str]]:
        path_counts: Counter = Counter()
        addition_counts: Counter = Counter()
        order: Dict[str, None] = {}

        for path in [h.path for h in hunks] + list(omitted_paths):
            if not path:
                continue
            directory, filename = os.path.split(path)
            stem = os.path.splitext(filename)[0] or filename
            words = [
                w for segment in directory.split("/") + [stem]
                for w in split_words(segment) if len(w) > 1 and not w.isdigit()
            ]
            for word in words:
                order.setdefault(word, None)
            path_counts.update(set(words))

        for hunk in hunks:
            for line in hunk.body.splitlines():
                if not line.startswith("+") or line.startswith("+++"):
                    continue
                for identifier in _IDENTIFIER_RE.findall(line[1:]):
                    for word in split_words(identifier):
                        if len(word) > 2 and not word.isdigit():
                            addition_counts[word] += 1
                            order.setdefault(word, None)

        return path_counts, addition_counts, list(order)

    @staticmethod
    def _guess_type(hunks: Sequence[DiffHunk], omitted_paths: Sequence[str] = ()) -> str:
        paths = [h.path for h in hunks if h.path] + [p for p in omitted_paths if p]
        if not paths:
            return "feat"
        if all(p.endswith(_DOC_SUFFIXES) or p.startswith("docs/") for p in paths):
            return "docs"
        if all("test" in split_words(p) or "tests" in split_words(p) for p in paths):
            return "test"
        return "feat"

    @staticmethod
    def _slug_matches_branch(slug: str, current_branch: str) -> bool:
        branch_words = set(split_words(current_branch)) - STOP_WORDS
        return any(token in branch_words for token in slug.split("-"))

    @staticmethod
    def _dedupe(slug: str, branch_type: str, existing_branches: Iterable[str]) -> str:
        existing = set(existing_branches)
        unique = unique_name(slug, lambda candidate: candidate in existing or f"{branch_type}/{candidate}" in existing)
        if unique != slug:
            logger.debug(f"Branch slug '{slug}' already exists, using '{unique}'")
        return unique
