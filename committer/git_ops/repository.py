"""
Git repository operations used by the commit and pull-request workflows.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from git import Repo, InvalidGitRepositoryError, NoSuchPathError, GitCommandError
from loguru import logger

from ..diff.filter import DiffFilter


EXCLUDED_ANNOTATION = "[excluded from diff]"


@dataclass
class UncommittedChanges:
    """Working tree state as reported by ``git status --porcelain``."""

    staged: List[str] = field(default_factory=list)
    unstaged: List[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.staged and not self.unstaged


class GitRepository:
    """Thin GitPython wrapper; every failure surfaces as GitRepositoryError."""

    def __init__(self, repo_path: Optional[Path] = None):
        """Initialize Git repository."""
        self.repo_path = repo_path or Path.cwd()
        self.repo: Optional[Repo] = None
        self._initialize_repo()

    def _initialize_repo(self) -> None:
        """Initialize the Git repository object."""
        try:
            self.repo = Repo(self.repo_path, search_parent_directories=True)
            logger.debug(f"Initialized Git repository at {self.repo.working_dir}")
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitRepositoryError(f"Not a Git repository: {self.repo_path}")

    def _git(self, command: str, *args: str) -> str:
        """Run ``git <command> <args>`` and return stdout."""
        try:
            return getattr(self.repo.git, command)(*args)
        except GitCommandError as e:
            stderr = (e.stderr or "").strip()
            raise GitRepositoryError(f"git {command.replace('_', '-')} failed: {stderr or e}")

    @property
    def current_branch(self) -> str:
        """Current branch name ("HEAD" when detached)."""
        try:
            return self._git("rev_parse", "--abbrev-ref", "HEAD").strip()
        except GitRepositoryError:
            # No commits yet; HEAD still names the unborn branch
            return self._git("symbolic_ref", "--short", "HEAD").strip()

    def branch_names(self) -> List[str]:
        """Local branch names."""
        return [head.name for head in self.repo.heads]

    def staged_diff(self) -> str:
        """Unified diff of the index against HEAD."""
        return self._git("diff", "--staged")

    def branch_diff(self, base: str) -> str:
        """Unified diff of HEAD against its merge base with ``base``."""
        return self._git("diff", f"{base}...HEAD")

    def staged_files_summary(self, diff_filter: Optional[DiffFilter] = None) -> str:
        """``--name-status`` listing of staged files, noting the ones left out of the diff."""
        output = self._git("diff", "--staged", "--name-status")
        return self._annotate(output, diff_filter)

    def branch_files_summary(self, base: str, diff_filter: Optional[DiffFilter] = None) -> str:
        output = self._git("diff", "--name-status", f"{base}...HEAD")
        return self._annotate(output, diff_filter)

    @staticmethod
    def _annotate(name_status: str, diff_filter: Optional[DiffFilter]) -> str:
        diff_filter = diff_filter or DiffFilter()
        lines = []
        excluded = 0
        for line in name_status.splitlines():
            parts = line.split("\t")
            if len(parts) >= 2 and diff_filter.is_excluded(parts[-1]):
                excluded += 1
                line = f"{line} {EXCLUDED_ANNOTATION}"
            lines.append(line)
        logger.debug(f"Changed files: {len(lines)} total, {excluded} excluded from diff")
        return "\n".join(lines)

    def has_staged_changes(self) -> bool:
        return bool(self._git("diff", "--staged", "--name-only").strip())

    def uncommitted_changes(self) -> UncommittedChanges:
        """Staged and unstaged/untracked entries from ``git status --porcelain``."""
        changes = UncommittedChanges()
        for line in self._git("status", "--porcelain").splitlines():
            if len(line) < 4:
                continue
            index_status, worktree_status, path = line[0], line[1], line[3:]
            if index_status not in (" ", "?"):
                changes.staged.append(f"{index_status} {path}")
            if worktree_status != " ":
                changes.unstaged.append(f"{worktree_status} {path}")
        return changes

    def stage_all(self) -> None:
        """Stage all changes, including untracked files."""
        self._git("add", "--all")
        logger.info("Staged all changes")

    def commit(self, message: str) -> str:
        """Create a commit with the given message and return its hash."""
        # Through the git CLI so that commit hooks run
        self._git("commit", "-m", message)
        sha = self.repo.head.commit.hexsha
        logger.info(f"Created commit {sha[:8]}: {message.splitlines()[0] if message else ''}")
        return sha

    def create_and_switch_branch(self, branch_name: str) -> None:
        """Create a new branch at HEAD and switch to it, keeping staged changes."""
        self._git("checkout", "-b", branch_name)
        logger.info(f"Created and switched to branch '{branch_name}'")

    def recent_commits(self, count: int = 5) -> List[str]:
        """Subjects of the most recent commits on the current branch."""
        try:
            output = self._git("log", f"-{count}", "--format=%s")
        except GitRepositoryError as e:
            # Fresh repository without commits
            logger.debug(f"No recent commits: {e}")
            return []
        return [line for line in output.splitlines() if line.strip()]

    def branch_commits(self, base: str) -> List[str]:
        """Subjects of commits on HEAD that are not on ``base``."""
        output = self._git("log", f"{base}..HEAD", "--format=%s")
        return [line for line in output.splitlines() if line.strip()]

    def has_remote(self, name: str) -> bool:
        return any(remote.name == name for remote in self.repo.remotes)

    def has_merge_base(self, branch: str) -> bool:
        try:
            self._git("merge_base", branch, "HEAD")
            return True
        except GitRepositoryError:
            return False

    def _origin_default_branch(self) -> Optional[str]:
        """Default branch of origin, from the cached ref or by asking the remote."""
        try:
            ref = self._git("symbolic_ref", "refs/remotes/origin/HEAD").strip()
            if ref.startswith("refs/remotes/origin/"):
                return ref[len("refs/remotes/origin/"):]
        except GitRepositoryError as e:
            logger.debug(f"No cached origin HEAD: {e}")

        try:
            for line in self._git("ls_remote", "--symref", "origin", "HEAD").splitlines():
                if line.startswith("ref: refs/heads/") and line.endswith("HEAD"):
                    return line[len("ref: refs/heads/"):].split("\t")[0]
        except GitRepositoryError as e:
            logger.debug(f"Could not query origin for its default branch: {e}")
        return None

    def default_base_branch(self, hint: Optional[str] = None) -> str:
        """Branch a pull request should target.

        ``hint`` (e.g. the default branch reported by GitHub) is tried first,
        then origin's default branch, then common names. A candidate is only
        accepted when it shares history with HEAD, locally or as ``origin/<name>``.
        """
        candidates: List[str] = []
        for name in (hint, self._origin_default_branch()):
            if name:
                candidates.extend([name, f"origin/{name}"])
        for name in ("main", "master", "mainline", "develop"):
            candidates.extend([f"origin/{name}", name])

        for candidate in candidates:
            if self.has_merge_base(candidate):
                logger.debug(f"Base branch: {candidate}")
                return candidate

        raise GitRepositoryError(
            "Could not determine the base branch. Use --base <branch> to specify it."
        )

    def push(self, remote: str = "origin", branch: Optional[str] = None) -> None:
        """Push ``branch`` and set its upstream."""
        branch = branch or self.current_branch
        self._git("push", "--set-upstream", remote, branch)
        logger.info(f"Pushed to {remote}/{branch}")


class GitRepositoryError(Exception):
    """Custom exception for Git repository operations."""
    pass
