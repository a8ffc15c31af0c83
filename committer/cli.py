"""
Command line interface using Typer with Rich integration.
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Optional
import typer
from rich.console import Console
from loguru import logger

from .ai_backends.base import ApiError
from .branch.analyzer import BranchAnalysisError
from .config.settings import API_KEY_ENV, Settings
from .core import Committer, CommitterError
from .git_ops.github import GitHubCliError
from .git_ops.repository import GitRepositoryError
from .ui.console import CommitterConsole
from .utils.prompts import CommitFormat


# Create Typer app
app = typer.Typer(
    name="committer",
    help="AI-generated commit messages, branch names and pull requests",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=False  # Allow default command
)

# Global console for error handling
console = Console()

# Errors that are reported as a one-line message
EXPECTED_ERRORS = (CommitterError, ApiError, GitRepositoryError, GitHubCliError, BranchAnalysisError)


def setup_logging(log_level: str = "WARNING", log_file: Optional[Path] = None):
    """Setup logging configuration."""
    logger.remove()  # Remove default handler

    # Console logging with colors
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=True
    )

    # File logging
    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"File logging disabled: {e}")
            return
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="1 MB",
            retention="7 days"
        )


def _load_settings(
    model: Optional[str] = None,
    verbose: bool = False,
    debug: bool = False,
) -> Settings:
    """Load settings, apply per-run overrides and configure logging."""
    settings = Settings()
    if model:
        settings.ai.model = model
    if verbose or debug:
        settings.ui.verbose = True

    # Debug overrides verbose
    if debug:
        log_level = "DEBUG"
    elif verbose:
        log_level = "INFO"
    else:
        log_level = settings.ui.log_level
    setup_logging(log_level, settings.log_file)
    return settings


def _run(coro) -> None:
    """Run a workflow coroutine, mapping failures to exit codes."""
    try:
        asyncio.run(coro)
    except EXPECTED_ERRORS as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(130)
    except Exception as e:
        logger.exception("Unexpected error occurred")
        console.print(f"[red]Unexpected error:[/red] {e}")
        raise typer.Exit(1)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False, "--yes", "-y",
        help="Commit without asking for confirmation"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n",
        help="Generate the message without committing"
    ),
    stage_all: bool = typer.Option(
        False, "--all", "-a",
        help="Stage all changes before generating"
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m",
        help="Model to use for this run"
    ),
    commit_format: Optional[CommitFormat] = typer.Option(
        None, "--format", "-f",
        help="Commit message format for this run"
    ),
    instructions: Optional[str] = typer.Option(
        None, "--instructions", "-i",
        help="Extra instructions for the model"
    ),
    branch: bool = typer.Option(
        False, "--branch", "-b",
        help="Check whether the changes belong on the current branch"
    ),
    auto_branch: bool = typer.Option(
        False, "--auto-branch", "-B",
        help="Switch to the suggested branch without asking"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Show diff statistics and informational logging"
    ),
    debug: bool = typer.Option(
        False, "--debug", "-d",
        help="Enable debug logging (includes verbose)"
    ),
    version: bool = typer.Option(
        False, "--version",
        help="Show version information"
    )
):
    """
    Generate a commit message for the staged changes.

    [bold blue]Examples:[/bold blue]

    [green]committer[/green]                      # Generate, review and commit
    [green]committer --all[/green]                # Stage everything first
    [green]committer --dry-run[/green]            # Preview only
    [green]committer --yes --branch[/green]       # Commit, moving to a new branch if needed
    [green]committer pr[/green]                   # Open a pull request for this branch
    [green]committer config --show[/green]        # Show configuration
    """
    if version:
        from . import __version__
        console.print(f"[bold blue]Committer[/bold blue] version [green]{__version__}[/green]")
        return

    # If no subcommand was called, run the default commit workflow
    if ctx.invoked_subcommand is None:
        _run(_run_commit(
            yes, dry_run, stage_all, model, commit_format, instructions,
            branch, auto_branch, verbose, debug,
        ))


@app.command()
def pr(
    yes: bool = typer.Option(
        False, "--yes", "-y",
        help="Create the PR without asking for confirmation"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n",
        help="Generate the PR content without creating it"
    ),
    draft: bool = typer.Option(
        False, "--draft", "-D",
        help="Create the PR as a draft"
    ),
    base: Optional[str] = typer.Option(
        None, "--base",
        help="Base branch (detected when omitted)"
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m",
        help="Model to use for this run"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Show diff statistics and informational logging"
    ),
    debug: bool = typer.Option(
        False, "--debug", "-d",
        help="Enable debug logging (includes verbose)"
    ),
):
    """
    Generate a pull request for the current branch and open it with gh.

    [bold blue]Examples:[/bold blue]

    [green]committer pr[/green]                   # Review, then create
    [green]committer pr --draft --yes[/green]     # Create a draft without asking
    [green]committer pr --base develop[/green]    # Target a specific base branch
    """
    _run(_run_pr(yes, dry_run, draft, base, model, verbose, debug))


@app.command()
def config(
    show: bool = typer.Option(
        False, "--show", "-s",
        help="Show current configuration"
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m",
        help="Set the default model"
    ),
    commit_format: Optional[CommitFormat] = typer.Option(
        None, "--format", "-f",
        help="Set the commit message format"
    ),
    auto_commit: Optional[bool] = typer.Option(
        None, "--auto-commit/--no-auto-commit",
        help="Commit without confirmation by default"
    ),
    commit_after_branch: Optional[bool] = typer.Option(
        None, "--commit-after-branch/--no-commit-after-branch",
        help="Commit straight away after creating a suggested branch"
    ),
    verbose: Optional[bool] = typer.Option(
        None, "--verbose/--no-verbose",
        help="Show diff statistics by default"
    ),
    api_key: Optional[str] = typer.Option(
        None, "--api-key",
        help="Store an OpenRouter API key in the config file"
    ),
    instructions: Optional[str] = typer.Option(
        None, "--instructions", "-i",
        help="Set extra instructions for every prompt (empty string clears)"
    ),
    save: bool = typer.Option(
        False, "--save",
        help="Save configuration to file"
    )
):
    """
    Manage Committer configuration.

    [bold blue]Examples:[/bold blue]

    [green]committer config --show[/green]                              # Show current config
    [green]committer config --model openai/gpt-4o-mini --save[/green]   # Change the default model
    [green]committer config --format gitmoji --save[/green]             # Change the commit format
    """
    try:
        settings = Settings()

        # Show current configuration
        if show:
            CommitterConsole(settings).show_configuration(settings, _api_key_source(settings))
            return

        # Update settings
        changes = []

        if model:
            settings.ai.model = model
            changes.append(f"model: {model}")

        if commit_format is not None:
            settings.commit.format = commit_format
            changes.append(f"format: {commit_format.value}")

        if auto_commit is not None:
            settings.commit.auto_commit = auto_commit
            changes.append(f"auto_commit: {str(auto_commit).lower()}")

        if commit_after_branch is not None:
            settings.commit.commit_after_branch = commit_after_branch
            changes.append(f"commit_after_branch: {str(commit_after_branch).lower()}")

        if verbose is not None:
            settings.ui.verbose = verbose
            changes.append(f"verbose: {str(verbose).lower()}")

        if api_key is not None:
            settings.ai.api_key = api_key or None
            changes.append("api_key: " + ("set" if api_key else "cleared"))

        if instructions is not None:
            settings.commit.extra_instructions = instructions or None
            changes.append("instructions: " + ("set" if instructions else "cleared"))

        for change in changes:
            console.print(f"[green]Set[/green] {change}")

        # Save if requested
        if save and changes:
            config_path = settings.save_to_file()
            console.print(f"[green]Configuration saved to:[/green] {config_path}")
        elif changes:
            console.print("[yellow]Use --save to persist these changes[/yellow]")
        else:
            console.print("[yellow]No configuration changes made[/yellow]")
            console.print("Use [green]--show[/green] to see current configuration")

    except (OSError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def formats():
    """List the available commit message formats."""
    settings = Settings()
    CommitterConsole(settings).show_formats(settings.commit.format)


def _api_key_source(settings: Settings) -> str:
    if os.getenv(API_KEY_ENV):
        return f"set (from {API_KEY_ENV})"
    if settings.ai.api_key:
        return "set (from config file)"
    return "not set"


async def _run_commit(
    yes: bool,
    dry_run: bool,
    stage_all: bool,
    model: Optional[str],
    commit_format: Optional[CommitFormat],
    instructions: Optional[str],
    branch: bool,
    auto_branch: bool,
    verbose: bool,
    debug: bool,
):
    """Run the commit workflow."""
    settings = _load_settings(model, verbose, debug)
    if commit_format is not None:
        settings.commit.format = commit_format
    if instructions:
        settings.commit.extra_instructions = instructions

    committer = Committer(settings)
    await committer.run_commit(
        dry_run=dry_run,
        yes=yes,
        stage_all=stage_all,
        branch_check=branch,
        auto_branch=auto_branch,
    )


async def _run_pr(
    yes: bool,
    dry_run: bool,
    draft: bool,
    base: Optional[str],
    model: Optional[str],
    verbose: bool,
    debug: bool,
):
    """Run the pull request workflow."""
    settings = _load_settings(model, verbose, debug)
    committer = Committer(settings)
    await committer.run_pr(dry_run=dry_run, yes=yes, draft=draft, base=base)


def main():
    """Main entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
