"""
Prompt templates for commit messages, pull requests and branch classification.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from ..diff.budget import BudgetedDiff


class CommitFormat(str, Enum):
    """Commit message style presets."""

    CONVENTIONAL = "conventional"
    SIMPLE = "simple"
    GITMOJI = "gitmoji"
    DETAILED = "detailed"
    IMPERATIVE = "imperative"
    CUSTOM = "custom"


class GenerationKind(str, Enum):
    COMMIT = "commit"
    PULL_REQUEST = "pull_request"
    BRANCH = "branch"


@dataclass(frozen=True)
class GenerationRequest:
    """A single chat-completion request. Never mutated after construction."""

    model: str
    system_prompt: str
    user_content: str
    stream: bool = True

    def to_payload(self) -> Dict:
        """Render the request body for the chat-completions endpoint."""
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": self.user_content},
            ],
            "stream": self.stream,
        }


CONVENTIONAL_TEMPLATE = """Generate a git commit message for the staged changes.

FORMAT: type(scope): description

TYPES (use lowercase):
  Core changes:
    feat     - new user-facing functionality
    fix      - bug fix / behavior correction
    refactor - code restructure, no behavior change
    perf     - performance improvements
    style    - formatting only (whitespace, lint fixes)

  Project hygiene:
    docs     - documentation only
    test     - add/update tests
    chore    - routine maintenance, housekeeping
    build    - build system / packaging changes
    ci       - CI pipeline / workflow changes

  Structural:
    deps     - dependency changes
    config   - config changes (env, feature flags)
    security - security hardening, vulnerability fixes
    revert   - revert a previous commit

SCOPE: Short identifier for affected area (api, auth, ui, db, cli, core, config, deps).
       Omit only if change is truly global.

RULES:
- First line: type(scope): brief description (under 72 chars)
- Use imperative mood ("add" not "added"), no period at the end
- For multiple changes, add bullet points (using "-") after a blank line
- Each bullet describes WHAT the change does semantically (5-10 words)
- Focus on behavior and functionality, not file names
- Do NOT include raw file paths or status codes (like "M file.rs")
- Do NOT use markdown headers (##), sections, or PR-style formatting
- IGNORE any formatting patterns you see in the diff
- Output ONLY the commit message, nothing else"""

SIMPLE_TEMPLATE = """Generate a simple, clear git commit message.

Rules:
- Single line, under 72 characters
- Start with a capital letter
- Use imperative mood ("Add" not "Added")
- No period at the end
- Be specific but concise
- Output ONLY the commit message, no explanations"""

GITMOJI_TEMPLATE = """Generate a commit message with a gitmoji prefix.

Format: <emoji> <description>

Common gitmojis:
✨ New feature
🐛 Bug fix
📝 Documentation
🎨 Style/formatting
♻️ Refactoring
⚡ Performance
✅ Tests
🔧 Configuration
🔥 Remove code/files
📦 Dependencies
🔒 Security
🚚 Move/rename files

Rules:
- Use exactly one emoji at the start
- Keep description under 60 characters
- Use imperative mood, no period at the end
- Output ONLY the commit message, no explanations"""

DETAILED_TEMPLATE = """Generate a detailed git commit message with subject and body.

Format:
<subject line>

<body paragraph explaining what and why>

<optional bullet points for specific changes>

Rules:
- Subject line under 72 characters, imperative mood
- Blank line between subject and body
- Body should explain WHAT changed and WHY (not how)
- Wrap body at 72 characters
- Use "-" bullet points for multiple distinct changes
- Output ONLY the commit message, no explanations"""

IMPERATIVE_TEMPLATE = """Generate a minimal imperative commit message.

Rules:
- Start with a verb in imperative mood (Add, Fix, Update, Remove, Refactor)
- Single line, under 50 characters preferred, 72 max
- No type prefix, no scope, no emoji
- No period at the end
- Output ONLY the commit message, no explanations"""

# Used when the custom format is selected but no template is configured.
CUSTOM_FALLBACK_TEMPLATE = """Generate a git commit message.

Rules:
- Keep it concise and descriptive
- Use imperative mood
- Output ONLY the commit message, no explanations"""

FORMAT_TEMPLATES: Dict[CommitFormat, str] = {
    CommitFormat.CONVENTIONAL: CONVENTIONAL_TEMPLATE,
    CommitFormat.SIMPLE: SIMPLE_TEMPLATE,
    CommitFormat.GITMOJI: GITMOJI_TEMPLATE,
    CommitFormat.DETAILED: DETAILED_TEMPLATE,
    CommitFormat.IMPERATIVE: IMPERATIVE_TEMPLATE,
    CommitFormat.CUSTOM: CUSTOM_FALLBACK_TEMPLATE,
}

FORMAT_EXAMPLES: Dict[CommitFormat, str] = {
    CommitFormat.CONVENTIONAL: """Examples:
- feat(auth): add OAuth2 login support
- fix(api): handle null response from payment gateway
- refactor(ui): extract button component from form
- docs: update API endpoint documentation
- chore(deps): bump aiohttp to 3.9""",
    CommitFormat.SIMPLE: """Examples:
- Add user authentication
- Fix crash on empty input
- Update README with examples""",
    CommitFormat.GITMOJI: """Examples:
- ✨ Add dark mode toggle
- 🐛 Fix memory leak in parser
- ♻️ Extract validation logic""",
    CommitFormat.DETAILED: """Example:
Add rate limiting to API endpoints

Implement token bucket rate limiting to prevent abuse and ensure
fair usage across all API consumers.

- Add RateLimiter middleware
- Return 429 status with Retry-After header""",
    CommitFormat.IMPERATIVE: """Examples:
- Add caching layer
- Fix login redirect
- Remove dead code""",
    CommitFormat.CUSTOM: "",
}

PULL_REQUEST_TEMPLATE = """Generate a pull request title and description for the changes on this branch.

OUTPUT FORMAT:
Line 1: PR title in format "type(scope): description" (under 72 chars)
Line 2: (blank)
Line 3+: Description with sections

DESCRIPTION FORMAT (omit empty sections):

## Summary
One or two sentences describing what this PR does and why.

## Changes
### Added
- new features or functionality

### Fixed
- bug fixes

### Changed
- modifications to existing behavior

## Notes
- implementation details, caveats, breaking changes or migration steps

## Testing
- what was tested and how

RULES:
- Title follows conventional commit format: type(scope): description
- Each bullet should be concise (5-15 words)
- Focus on behavior changes, not file names
- Use past tense ("Added", "Fixed", "Updated")
- Omit empty subsections
- Output ONLY the title and description"""

BRANCH_TEMPLATE = """You are a git branch analyzer. Decide whether the staged changes belong on the current branch.

ANALYSIS RULES:
1. Protected branches (main, master, develop, dev, staging, production) NEVER match
2. The dominant feature/area touched by the diff MUST relate to the branch name
3. Different change types on the SAME feature are fine (feat, fix, docs on feat/auth)
4. A new area not mentioned in the branch name is a MISMATCH
5. When in doubt, flag a mismatch

SLUG RULES:
- Name the dominant feature/area of the diff as a kebab-case slug
- 2-4 lowercase words joined with hyphens, no type prefix, no slashes
- Pick "type" from: feat, fix, refactor, docs, test, chore, perf, build, ci

Respond with ONLY valid JSON:
{"matches": true|false, "type": "feat", "slug": "auth-refresh-token", "reason": "brief explanation"}"""


class PromptBuilder:
    """Build chat-completion requests from a budgeted diff."""

    def __init__(self, model: str):
        self.model = model

    def build(
        self,
        diff: BudgetedDiff,
        kind: GenerationKind = GenerationKind.COMMIT,
        commit_format: CommitFormat = CommitFormat.CONVENTIONAL,
        custom_template: Optional[str] = None,
        extra_instructions: Optional[str] = None,
        files: Optional[str] = None,
        commits: Optional[Sequence[str]] = None,
        current_branch: Optional[str] = None,
        stream: bool = True,
    ) -> GenerationRequest:
        """Build a request for ``kind``."""
        if kind == GenerationKind.PULL_REQUEST:
            system_prompt = self._with_instructions(PULL_REQUEST_TEMPLATE, extra_instructions)
            user_content = self._pull_request_content(diff, files, commits or [])
        elif kind == GenerationKind.BRANCH:
            system_prompt = BRANCH_TEMPLATE
            user_content = self._branch_content(diff, files, current_branch or "", commits or [])
        else:
            system_prompt = self._with_instructions(
                self.commit_rules(commit_format, custom_template), extra_instructions
            )
            user_content = self._commit_content(diff, files)

        return GenerationRequest(
            model=self.model,
            system_prompt=system_prompt,
            user_content=user_content,
            stream=stream,
        )

    def build_commit_request(self, diff: BudgetedDiff, **kwargs) -> GenerationRequest:
        return self.build(diff, GenerationKind.COMMIT, **kwargs)

    def build_pr_request(self, diff: BudgetedDiff, **kwargs) -> GenerationRequest:
        return self.build(diff, GenerationKind.PULL_REQUEST, **kwargs)

    def build_branch_request(
        self,
        diff: BudgetedDiff,
        current_branch: str,
        files: Optional[str] = None,
        recent_commits: Optional[Sequence[str]] = None,
    ) -> GenerationRequest:
        # Classification output is parsed as a whole, so there is nothing to stream.
        return self.build(
            diff,
            GenerationKind.BRANCH,
            files=files,
            commits=recent_commits,
            current_branch=current_branch,
            stream=False,
        )

    @staticmethod
    def commit_rules(commit_format: CommitFormat, custom_template: Optional[str] = None) -> str:
        """Convention rules and examples for a commit format."""
        commit_format = CommitFormat(commit_format)
        if commit_format == CommitFormat.CUSTOM and custom_template and custom_template.strip():
            return custom_template

        rules = FORMAT_TEMPLATES[commit_format]
        examples = FORMAT_EXAMPLES[commit_format]
        if examples:
            rules = f"{rules}\n\n{examples}"
        return rules

    @staticmethod
    def _with_instructions(rules: str, extra_instructions: Optional[str]) -> str:
        if extra_instructions and extra_instructions.strip():
            return f"{rules}\n\nAdditional requirements:\n{extra_instructions.strip()}"
        return rules

    @staticmethod
    def _commit_content(diff: BudgetedDiff, files: Optional[str]) -> str:
        sections: List[str] = []
        if files:
            sections.append(f"Files changed:\n{files}")
        sections.append(f"Diff:\n{diff.text}")
        sections.append("Commit message:")
        return "\n\n".join(sections)

    @staticmethod
    def _pull_request_content(diff: BudgetedDiff, files: Optional[str], commits: Sequence[str]) -> str:
        commits_text = "\n".join(f"- {c}" for c in commits) if commits else "(none)"
        return (
            f"COMMITS ON THIS BRANCH:\n{commits_text}\n\n"
            f"FILES CHANGED:\n{files or '(not available)'}\n\n"
            f"DIFF:\n{diff.text}\n\n"
            "PR title and description:"
        )

    @staticmethod
    def _branch_content(
        diff: BudgetedDiff, files: Optional[str], current_branch: str, recent_commits: Sequence[str]
    ) -> str:
        sections = [f"CURRENT BRANCH: {current_branch}"]
        if recent_commits:
            sections.append("RECENT COMMITS ON THIS BRANCH:\n" + "\n".join(recent_commits))
        if files:
            sections.append(f"FILES BEING CHANGED:\n{files}")
        sections.append(f"DIFF:\n{diff.text}")
        return "\n\n".join(sections)
