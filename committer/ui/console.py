"""
Rich console interface: progress, streamed output, previews and prompts.
"""

import re
from typing import Iterable, List, Optional, Tuple
import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.theme import Theme

from ..config.settings import Settings
from ..diff.budget import BudgetedDiff
from ..git_ops.repository import UncommittedChanges
from ..utils.prompts import FORMAT_EXAMPLES, CommitFormat


BRANCH_NAME_RE = re.compile(r'^[\w.-]+(/[\w.-]+)*$')


class StreamDisplay:
    """Spinner that gives way to streamed text once the first delta arrives."""

    def __init__(self, console: Console, description: str):
        self.console = console
        self.description = description
        self._status = None
        self.received = 0

    def __enter__(self) -> "StreamDisplay":
        self._status = self.console.status(f"[blue]{self.description}...[/blue]", spinner="dots")
        self._status.start()
        return self

    def __call__(self, text: str) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None
        self.received += len(text)
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None
        if self.received:
            self.console.print()


class CommitterConsole:
    """Console interface for the commit and pull-request workflows."""

    def __init__(self, settings: Settings, console: Optional[Console] = None):
        """Initialize console with settings."""
        self.settings = settings
        self._setup_styles()
        self.console = console or Console(
            color_system="auto" if settings.ui.use_colors else None,
            theme=self.theme,
        )

    def _setup_styles(self) -> None:
        """Setup custom styles for consistent theming."""
        self.styles = {
            "title": "bold blue",
            "success": "bold green",
            "warning": "bold yellow",
            "error": "bold red",
            "info": "blue",
            "muted": "dim",
            "commit_type": "bold magenta",
            "branch": "cyan",
        }
        self.theme = Theme(self.styles)

    def print_success(self, message: str) -> None:
        """Print success message."""
        self.console.print(f"[success]✓ {message}[/success]")

    def print_warning(self, message: str) -> None:
        """Print warning message."""
        self.console.print(f"[warning]⚠ {message}[/warning]")

    def print_error(self, message: str) -> None:
        """Print error message."""
        self.console.print(f"[error]✗ {message}[/error]")

    def print_info(self, message: str) -> None:
        """Print info message."""
        self.console.print(f"[info]ℹ {message}[/info]")

    def show_progress_spinner(self, description: str):
        """Create a progress spinner context manager."""
        return self.console.status(f"[blue]{description}...[/blue]", spinner="dots")

    def stream_display(self, description: str) -> StreamDisplay:
        """Spinner plus incremental output; use the returned object as ``on_delta``."""
        return StreamDisplay(self.console, description)

    def show_diff_summary(self, budgeted: BudgetedDiff, excluded_paths: Iterable[str]) -> None:
        """Verbose summary of what is sent to the model."""
        excluded = sorted(excluded_paths)
        self.console.print(
            f"[muted]Diff: {len(budgeted.text):,} chars, {budgeted.included_files} files"
            f"{', truncated' if budgeted.truncated else ''}[/muted]"
        )
        for path in excluded:
            self.console.print(f"[muted]  excluded: {escape(path)}[/muted]")
        for path in budgeted.omitted_paths:
            self.console.print(f"[muted]  omitted (size limit): {escape(path)}[/muted]")

    def show_partial_notice(self, reason: Optional[str]) -> None:
        self.print_warning(f"Response was cut off ({reason or 'stream interrupted'}); review it before committing")

    def show_commit_message_preview(self, message: str) -> None:
        """Show commit message preview."""
        subject, _, rest = message.partition("\n")
        if ':' in subject:
            prefix, description = subject.split(':', 1)
            formatted = f"[commit_type]{escape(prefix.strip())}[/commit_type]: {escape(description.strip())}"
        else:
            formatted = escape(subject)
        if rest:
            formatted += "\n" + escape(rest)

        self.console.print(Panel(formatted, title="Commit Message", box=box.ROUNDED, style="green"))

    def show_pr_preview(self, title: str, body: str) -> None:
        self.console.print(Panel(
            f"[bold]{escape(title)}[/bold]\n\n{escape(body)}",
            title="Pull Request",
            box=box.ROUNDED,
            style="green",
        ))

    def show_branch_mismatch(self, current: str, suggested: str, reason: str) -> None:
        self.console.print()
        self.print_warning("Branch mismatch detected")
        self.console.print(f"  Current:   [branch]{current}[/branch]")
        self.console.print(f"  Suggested: [branch]{suggested}[/branch]")
        if reason:
            self.console.print(f"  Reason:    {escape(reason)}")
        self.console.print()

    def _ask(self, prompt: str, choices: List[str], default: str) -> str:
        return Prompt.ask(prompt, choices=choices, default=default, console=self.console).lower()

    def edit_text(self, text: str, extension: str = ".txt") -> str:
        """Open ``text`` in $EDITOR; unchanged when the editor is closed without saving."""
        edited = typer.edit(text, extension=extension)
        return edited.strip() if edited is not None else text

    def prompt_commit(self, message: str, show_branch_option: bool = True) -> Tuple[str, str]:
        """Ask to commit, cancel, regenerate, edit or branch first.

        Returns ``(action, message)`` where action is "commit", "cancel",
        "retry" or "branch". An edit that leaves the message empty cancels.
        """
        choices = ["y", "n", "r", "e", "b"] if show_branch_option else ["y", "n", "r", "e"]
        while True:
            answer = self._ask("Commit?", choices, "y")
            if answer == "y":
                return "commit", message
            if answer == "n":
                return "cancel", message
            if answer == "r":
                return "retry", message
            if answer == "b":
                return "branch", message
            message = self.edit_text(message)
            if not message:
                return "cancel", message
            self.show_commit_message_preview(message)

    def prompt_branch_action(self, suggested: str) -> Optional[str]:
        """Ask whether to create ``suggested``. Returns the branch name, or None to stay."""
        while True:
            answer = self._ask("Create branch?", ["y", "n", "e"], "y")
            if answer == "y":
                return suggested
            if answer == "n":
                return None
            edited = self.edit_branch_name(suggested)
            if edited:
                suggested = edited
                self.console.print(f"  Branch: [branch]{suggested}[/branch]")

    def edit_branch_name(self, suggested_name: str) -> Optional[str]:
        """Edit branch name with validation using Rich input."""
        while True:
            branch_name = Prompt.ask("Branch name", default=suggested_name, console=self.console).strip()
            if not branch_name:
                return None
            if ' ' in branch_name:
                self.print_error("Branch name cannot contain spaces. Use hyphens instead.")
                continue
            if len(branch_name) > 100 or not BRANCH_NAME_RE.match(branch_name):
                self.print_error("Invalid branch name. Use letters, numbers, '-', '_', '.' and '/'.")
                continue
            return branch_name

    def prompt_pr(self, title: str, body: str) -> Optional[Tuple[str, str]]:
        """Ask to create, cancel or edit the pull request. None means cancel."""
        while True:
            answer = self._ask("Create PR?", ["y", "n", "e"], "y")
            if answer == "y":
                return title, body
            if answer == "n":
                return None
            edited = self.edit_text(f"{title}\n\n{body}", extension=".md")
            new_title, _, new_body = edited.partition("\n")
            title, body = new_title.strip() or title, new_body.strip()
            self.show_pr_preview(title, body)

    def prompt_uncommitted_changes(self, changes: UncommittedChanges) -> str:
        """Returns "commit", "skip" or "quit"."""
        self.console.print()
        self.print_warning("Uncommitted changes won't be included in this PR")
        for label, entries in (("Staged", changes.staged), ("Unstaged", changes.unstaged)):
            if entries:
                self.console.print(f"\n[bold]{label}:[/bold]")
                for entry in entries:
                    self.console.print(f"  {entry}", markup=False)
        self.console.print()

        answer = self._ask("[c]ommit first, [s]kip or [q]uit", ["c", "s", "q"], "s")
        return {"c": "commit", "s": "skip", "q": "quit"}[answer]

    def show_configuration(self, settings: Settings, api_key_source: str) -> None:
        """Display the effective configuration."""
        table = Table(title="Committer Configuration", box=box.ROUNDED)
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        table.add_row("config file", str(settings.config_path))
        table.add_row("ai.model", settings.ai.model)
        table.add_row("ai.api_url", settings.ai.api_url)
        table.add_row("ai.api_key", api_key_source)
        table.add_row("ai.timeout", f"{settings.ai.timeout}s")
        table.add_row("commit.format", settings.commit.format.value)
        table.add_row("commit.auto_commit", str(settings.commit.auto_commit).lower())
        table.add_row("commit.commit_after_branch", str(settings.commit.commit_after_branch).lower())
        table.add_row("commit.extra_instructions", settings.commit.extra_instructions or "-")
        table.add_row("diff.max_chars", f"{settings.diff.max_chars:,}")
        table.add_row("diff.extra_excludes", ", ".join(settings.diff.extra_excludes) or "-")
        table.add_row("ui.verbose", str(settings.ui.verbose).lower())
        table.add_row("ui.log_level", settings.ui.log_level)

        self.console.print(table)

    def show_formats(self, current: CommitFormat) -> None:
        """List commit formats with their examples."""
        table = Table(title="Commit Formats", box=box.ROUNDED)
        table.add_column("Format", style="cyan")
        table.add_column("Example")

        for commit_format in CommitFormat:
            # First example line, after the "Examples:" header
            lines = FORMAT_EXAMPLES[commit_format].splitlines()
            sample = lines[1] if len(lines) > 1 else "(uses commit.custom_template)"
            if sample.startswith("- "):
                sample = sample[2:]
            name = f"{commit_format.value} *" if commit_format == current else commit_format.value
            table.add_row(name, sample)

        self.console.print(table)
