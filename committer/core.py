"""
Core Committer engine that orchestrates all components.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Sequence, Union
from loguru import logger

from .ai_backends.base import GenerationResult
from .ai_backends.openrouter import DeltaCallback, StreamingClient
from .branch.analyzer import BranchAnalysis, BranchAnalyzer, branch_from_message, is_protected, unique_name
from .config.settings import Settings
from .diff.budget import BudgetedDiff, DiffBudgeter
from .diff.filter import DiffFilter, FilteredDiff
from .git_ops.github import GitHubCLI
from .git_ops.repository import GitRepository
from .ui.console import CommitterConsole
from .utils.message_extractor import MessageExtractionError, message_extractor
from .utils.prompts import CommitFormat, PromptBuilder


class CommitterError(Exception):
    """Custom exception for Committer operations."""
    pass


@dataclass(frozen=True)
class PreparedDiff:
    """A raw diff after filtering and budgeting."""

    filtered: FilteredDiff
    budgeted: BudgetedDiff

    @property
    def excluded_paths(self) -> FrozenSet[str]:
        return self.filtered.excluded_paths

    @property
    def is_empty(self) -> bool:
        return self.budgeted.is_empty


@dataclass
class CommitMessage:
    """Cleaned commit message plus the raw model output."""

    text: str
    raw: str
    partial: bool = False
    reason: Optional[str] = None


@dataclass
class PullRequestContent:
    title: str
    body: str
    raw: str
    partial: bool = False
    reason: Optional[str] = None


class Committer:
    """Core Committer application engine."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[StreamingClient] = None,
        repo_path: Optional[Path] = None,
        git_repo: Optional[GitRepository] = None,
        console: Optional[CommitterConsole] = None,
    ):
        """Initialize Committer with settings; git and console are created on first use."""
        self.settings = settings or Settings()
        self.client = client or StreamingClient(
            api_key=self.settings.get_api_key(),
            api_url=self.settings.ai.api_url,
            timeout=self.settings.ai.timeout,
        )
        self.repo_path = repo_path
        self._git_repo = git_repo
        self._console = console

        self.diff_filter = DiffFilter(extra_patterns=self.settings.diff.extra_excludes)
        self.budgeter = DiffBudgeter(self.settings.diff.max_chars)
        self.prompt_builder = PromptBuilder(self.settings.ai.model)
        self.branch_analyzer = BranchAnalyzer(self.client, self.prompt_builder)

        logger.debug(f"Committer initialized (model: {self.settings.ai.model})")

    @property
    def git_repo(self) -> GitRepository:
        if self._git_repo is None:
            self._git_repo = GitRepository(self.repo_path)
        return self._git_repo

    @property
    def console(self) -> CommitterConsole:
        if self._console is None:
            self._console = CommitterConsole(self.settings)
        return self._console

    # Pipeline

    def prepare_diff(self, raw_diff: str) -> PreparedDiff:
        """Filter noise out of ``raw_diff`` and bound it to the character budget."""
        filtered = self.diff_filter.filter(raw_diff)
        budgeted = self.budgeter.apply(filtered)

        if filtered.excluded_paths:
            logger.info(f"Excluded {len(filtered.excluded_paths)} files from diff")
        if budgeted.truncated:
            logger.info(f"Omitted {len(budgeted.omitted_paths)} files to fit the size limit")
        return PreparedDiff(filtered=filtered, budgeted=budgeted)

    def _ensure_prepared(self, diff: Union[str, PreparedDiff]) -> PreparedDiff:
        prepared = self.prepare_diff(diff) if isinstance(diff, str) else diff
        if prepared.is_empty:
            raise CommitterError("Nothing left to describe: every changed file is excluded from the diff")
        return prepared

    async def generate_commit_message(
        self,
        diff: Union[str, PreparedDiff],
        files: Optional[str] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> CommitMessage:
        """Generate and clean a commit message for ``diff``.

        Raises CommitterError when the diff or the generated message is empty;
        ApiError propagates unchanged.
        """
        prepared = self._ensure_prepared(diff)
        commit_settings = self.settings.commit
        request = self.prompt_builder.build_commit_request(
            prepared.budgeted,
            commit_format=commit_settings.format,
            custom_template=commit_settings.custom_template,
            extra_instructions=commit_settings.extra_instructions,
            files=files,
        )

        result = await self.client.generate(request, on_delta=on_delta)
        self._log_result(result)

        text = message_extractor.clean_commit_message(result.text)
        if not text:
            raise CommitterError("Empty commit message generated")
        if commit_settings.format == CommitFormat.CONVENTIONAL and not message_extractor.is_conventional(text):
            logger.warning(f"Generated subject is not a conventional commit: {text.splitlines()[0]}")

        return CommitMessage(text=text, raw=result.text, partial=result.is_partial, reason=result.reason)

    async def generate_pr_content(
        self,
        diff: Union[str, PreparedDiff],
        files: Optional[str] = None,
        commits: Optional[Sequence[str]] = None,
        on_delta: Optional[DeltaCallback] = None,
    ) -> PullRequestContent:
        """Generate a pull request title and body for a branch diff."""
        prepared = self._ensure_prepared(diff)
        request = self.prompt_builder.build_pr_request(
            prepared.budgeted,
            extra_instructions=self.settings.commit.extra_instructions,
            files=files,
            commits=list(commits or []),
        )

        result = await self.client.generate(request, on_delta=on_delta)
        self._log_result(result)

        try:
            title, body = message_extractor.split_pr_content(result.text)
        except MessageExtractionError as e:
            raise CommitterError(f"Could not read pull request content: {e}")

        return PullRequestContent(
            title=title, body=body, raw=result.text, partial=result.is_partial, reason=result.reason
        )

    async def analyze_branch(
        self,
        diff: Union[BudgetedDiff, PreparedDiff],
        current_branch: str,
        files: Optional[str] = None,
        recent_commits: Optional[Sequence[str]] = None,
        existing_branches: Iterable[str] = (),
    ) -> BranchAnalysis:
        budgeted = diff.budgeted if isinstance(diff, PreparedDiff) else diff
        return await self.branch_analyzer.analyze(
            budgeted,
            current_branch,
            files=files,
            recent_commits=recent_commits,
            existing_branches=existing_branches,
        )

    @staticmethod
    def _log_result(result: GenerationResult) -> None:
        mode = "streamed" if result.streamed else "non-streaming"
        logger.debug(f"Generation {result.outcome.value} ({mode}, {len(result.text)} chars)")
        if result.is_partial:
            logger.warning(f"Partial generation: {result.reason}")

    # Workflows

    async def run_commit(
        self,
        dry_run: bool = False,
        yes: bool = False,
        stage_all: bool = False,
        branch_check: bool = False,
        auto_branch: bool = False,
    ) -> Optional[str]:
        """Generate a message for the staged changes and commit it.

        Returns the commit hash, or None when nothing was committed.
        """
        verbose = self.settings.ui.verbose
        repo = self.git_repo

        if stage_all:
            repo.stage_all()

        if not repo.has_staged_changes():
            if repo.uncommitted_changes().is_clean:
                self.console.print_info("Nothing to commit")
                return None
            raise CommitterError("No staged changes. Use 'git add' or --all")

        raw_diff = repo.staged_diff()
        prepared = self.prepare_diff(raw_diff)
        files = repo.staged_files_summary(self.diff_filter)
        if verbose:
            self.console.show_diff_summary(prepared.budgeted, prepared.excluded_paths)

        message = await self._stream_commit_message(prepared, files)

        branch_handled = False
        if branch_check or auto_branch:
            branch_handled = await self._check_branch(prepared, files, auto=auto_branch or yes)

        if dry_run:
            self.console.print_info("Dry run, nothing committed")
            return None

        if yes or self.settings.commit.auto_commit:
            return self._commit(message.text)

        text = message.text
        show_branch_option = not branch_handled
        while True:
            action, text = self.console.prompt_commit(text, show_branch_option)
            if action == "commit":
                return self._commit(text)
            if action == "cancel":
                self.console.print_info("Commit cancelled")
                return None
            if action == "retry":
                self.console.print_info("Regenerating...")
                text = (await self._stream_commit_message(prepared, files)).text
                continue

            branch_created = self._offer_branch_from_message(text)
            if branch_created and self.settings.commit.commit_after_branch:
                return self._commit(text)
            self.console.show_commit_message_preview(text)
            show_branch_option = False

    async def _stream_commit_message(self, prepared: PreparedDiff, files: str) -> CommitMessage:
        with self.console.stream_display("Generating commit message") as display:
            message = await self.generate_commit_message(prepared, files, on_delta=display)

        if message.partial:
            self.console.show_partial_notice(message.reason)
        if message.text != message.raw.strip():
            self.console.show_commit_message_preview(message.text)
        return message

    async def _check_branch(self, prepared: PreparedDiff, files: str, auto: bool) -> bool:
        """Suggest a new branch when the changes do not belong here. True when handled."""
        repo = self.git_repo
        current_branch = repo.current_branch

        with self.console.show_progress_spinner("Analyzing branch alignment"):
            analysis = await self.analyze_branch(
                prepared,
                current_branch,
                files=files,
                recent_commits=repo.recent_commits(5),
                existing_branches=repo.branch_names(),
            )

        if self.settings.ui.verbose:
            self.console.print_info(f"Branch analysis ({analysis.confidence.value}): {analysis.reason}")
        if not analysis.should_switch:
            return False

        suggested = analysis.suggested_branch
        if auto:
            repo.create_and_switch_branch(suggested)
            self.console.print_success(f"Branch '{current_branch}' → '{suggested}' ({analysis.reason})")
            return True

        self.console.show_branch_mismatch(current_branch, suggested, analysis.reason)
        name = self.console.prompt_branch_action(suggested)
        if name:
            repo.create_and_switch_branch(name)
            self.console.print_success(f"Switched to branch '{name}'")
        else:
            self.console.print_info(f"Continuing on '{current_branch}'")
        return True

    def _offer_branch_from_message(self, message: str) -> bool:
        """Suggest a branch named after the commit subject. True when one was created."""
        repo = self.git_repo
        existing = set(repo.branch_names())
        suggested = unique_name(branch_from_message(message), existing.__contains__)
        self.console.print_info(f"Suggested branch: {suggested}")

        name = self.console.prompt_branch_action(suggested)
        if not name:
            self.console.print_info(f"Continuing on '{repo.current_branch}'")
            return False
        repo.create_and_switch_branch(name)
        self.console.print_success(f"Switched to branch '{name}'")
        return True

    def _commit(self, message: str) -> str:
        with self.console.show_progress_spinner("Creating commit"):
            commit_hash = self.git_repo.commit(message)
        self.console.print_success(f"Committed {commit_hash[:8]}")
        return commit_hash

    async def run_pr(
        self,
        dry_run: bool = False,
        yes: bool = False,
        draft: bool = False,
        base: Optional[str] = None,
        github: Optional[GitHubCLI] = None,
    ) -> Optional[str]:
        """Generate pull request content for the current branch and open it with gh.

        Returns the PR URL, or None when nothing was created.
        """
        github = github or GitHubCLI()
        await github.check_installed()

        repo = self.git_repo
        current_branch = repo.current_branch
        if is_protected(current_branch) and not repo.has_remote("upstream"):
            raise CommitterError(
                f"Cannot create PR from protected branch '{current_branch}'. "
                "Create a feature branch first: git checkout -b feat/your-feature"
            )

        base_branch = base or repo.default_base_branch(hint=await github.default_branch())
        logger.info(f"Base branch: {base_branch}, current branch: {current_branch}")

        if not await self._handle_uncommitted_changes(yes):
            self.console.print_info("Cancelled")
            return None

        commits: List[str] = repo.branch_commits(base_branch)
        if not commits:
            raise CommitterError(
                f"No commits found between '{base_branch}' and '{current_branch}'. "
                "Make some commits first, or check your base branch"
            )
        logger.info(f"Found {len(commits)} commits on branch")

        raw_diff = repo.branch_diff(base_branch)
        if not raw_diff.strip():
            raise CommitterError(f"No changes found between '{base_branch}' and '{current_branch}'")

        prepared = self.prepare_diff(raw_diff)
        files = repo.branch_files_summary(base_branch, self.diff_filter)
        if self.settings.ui.verbose:
            self.console.show_diff_summary(prepared.budgeted, prepared.excluded_paths)

        with self.console.stream_display("Generating PR content") as display:
            content = await self.generate_pr_content(prepared, files, commits, on_delta=display)
        if content.partial:
            self.console.show_partial_notice(content.reason)

        if dry_run:
            self.console.print_info("Dry run complete (PR not created)")
            return None

        title, body = content.title, content.body
        if not yes:
            answer = self.console.prompt_pr(title, body)
            if answer is None:
                self.console.print_info("Cancelled")
                return None
            title, body = answer

        with self.console.show_progress_spinner(f"Pushing {current_branch}"):
            repo.push(branch=current_branch)

        target = base_branch[len("origin/"):] if base_branch.startswith("origin/") else base_branch
        url = await github.create_pr(title, body, draft=draft, base=target)
        self.console.print_success(f"PR created: {url}")
        return url

    async def _handle_uncommitted_changes(self, yes: bool) -> bool:
        """Offer to commit pending changes first. False means quit."""
        repo = self.git_repo
        changes = repo.uncommitted_changes()
        if changes.is_clean:
            return True
        if yes:
            self.console.print_warning("Uncommitted changes won't be included in this PR")
            return True

        action = self.console.prompt_uncommitted_changes(changes)
        if action == "quit":
            return False
        if action == "skip":
            self.console.print_info("Skipping uncommitted changes")
            return True

        repo.stage_all()
        raw_diff = repo.staged_diff()
        if not raw_diff.strip():
            self.console.print_info("No changes to commit")
            return True

        prepared = self.prepare_diff(raw_diff)
        files = repo.staged_files_summary(self.diff_filter)
        text = (await self._stream_commit_message(prepared, files)).text
        while True:
            action, text = self.console.prompt_commit(text, show_branch_option=False)
            if action != "retry":
                break
            text = (await self._stream_commit_message(prepared, files)).text

        if action == "commit":
            self._commit(text)
        else:
            self.console.print_info("Commit cancelled, continuing with PR")
        return True
