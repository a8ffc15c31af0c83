"""
GitHub CLI (gh) integration for opening pull requests.
"""

import asyncio
import shutil
import subprocess
from typing import List, Optional, Tuple
from loguru import logger


GH_INSTALL_HINT = "Install it from https://cli.github.com/ and run: gh auth login"


class GitHubCliError(Exception):
    """The gh command is missing or failed."""
    pass


class GitHubCLI:
    """Async wrapper around the ``gh`` executable."""

    def __init__(self, executable: str = "gh"):
        self.executable = executable

    async def _run(self, *args: str) -> Tuple[int, str, str]:
        cmd = [self.executable, *args]
        logger.debug(f"Running: {' '.join(cmd[:3])}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError:
            raise GitHubCliError(f"GitHub CLI (gh) is not installed. {GH_INSTALL_HINT}")

        stdout, stderr = await process.communicate()
        return process.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

    async def check_installed(self) -> None:
        """Raise GitHubCliError unless ``gh --version`` succeeds."""
        if shutil.which(self.executable) is None:
            raise GitHubCliError(f"GitHub CLI (gh) is not installed. {GH_INSTALL_HINT}")
        returncode, _, stderr = await self._run("--version")
        if returncode != 0:
            raise GitHubCliError(f"GitHub CLI (gh) is not working: {stderr.strip()}")

    async def default_branch(self) -> Optional[str]:
        """Repository default branch according to GitHub, if gh can tell."""
        returncode, stdout, stderr = await self._run(
            "repo", "view", "--json", "defaultBranchRef", "-q", ".defaultBranchRef.name"
        )
        if returncode != 0:
            logger.debug(f"gh repo view failed: {stderr.strip()}")
            return None
        return stdout.strip() or None

    async def create_pr(self, title: str, body: str, draft: bool = False, base: Optional[str] = None) -> str:
        """Open a pull request for the current branch and return its URL."""
        args: List[str] = ["pr", "create", "--title", title, "--body", body]
        if base:
            args.extend(["--base", base])
        if draft:
            args.append("--draft")

        returncode, stdout, stderr = await self._run(*args)
        if returncode != 0:
            if "auth" in stderr.lower():
                raise GitHubCliError(f"GitHub authentication failed. Run: gh auth login\n{stderr.strip()}")
            raise GitHubCliError(f"Failed to create PR: {stderr.strip()}")

        url = stdout.strip()
        logger.info(f"Created pull request {url}")
        return url
