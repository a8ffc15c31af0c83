"""Tests for committer.core module."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from committer.ai_backends.base import ApiError, ApiErrorKind, GenerationOutcome, GenerationResult
from committer.config.settings import Settings
from committer.core import Committer, CommitterError
from committer.git_ops.repository import UncommittedChanges


BRANCH_REPLY = '{"matches": false, "type": "feat", "slug": "payments-refunds", "reason": "new area"}'


def _client(*texts, outcome=GenerationOutcome.COMPLETE):
    """Client whose streamed replies are ``texts`` in order and whose classifier reply is BRANCH_REPLY."""
    replies = iter(texts)

    async def generate(request, on_delta=None):
        if not request.stream:
            return GenerationResult(text=BRANCH_REPLY, streamed=False)
        text = next(replies)
        if on_delta:
            on_delta(text)
        reason = "connection lost" if outcome == GenerationOutcome.PARTIAL else None
        return GenerationResult(text=text, outcome=outcome, reason=reason)

    client = MagicMock()
    client.generate = AsyncMock(side_effect=generate)
    return client


@pytest.fixture
def settings(isolated_config):
    return Settings(ai={"model": "test/model"})


@pytest.fixture
def repo(app_hunk):
    repo = MagicMock()
    repo.current_branch = "feat/app"
    repo.staged_diff.return_value = app_hunk
    repo.has_staged_changes.return_value = True
    repo.staged_files_summary.return_value = "M\tsrc/app.rs"
    repo.branch_files_summary.return_value = "M\tsrc/app.rs"
    repo.branch_names.return_value = ["main", "feat/app"]
    repo.recent_commits.return_value = ["feat(app): scaffold"]
    repo.uncommitted_changes.return_value = UncommittedChanges()
    repo.commit.return_value = "0123456789abcdef"
    repo.has_remote.return_value = False
    return repo


@pytest.fixture
def console():
    return MagicMock()


def _committer(settings, client, repo, console):
    return Committer(settings=settings, client=client, git_repo=repo, console=console)


class TestGeneration:
    """Tests for message and PR generation."""

    @pytest.mark.asyncio
    async def test_commit_message_cleaned(self, settings, app_hunk):
        """Test that the generated message is cleaned."""
        client = _client("```\nfeat(app): add values\n```")
        received = []

        message = await Committer(settings, client).generate_commit_message(app_hunk, "M\tsrc/app.rs", received.append)

        assert message.text == "feat(app): add values"
        assert message.raw == "```\nfeat(app): add values\n```"
        assert not message.partial
        assert received == ["```\nfeat(app): add values\n```"]

        request = client.generate.call_args.args[0]
        assert request.model == "test/model"
        assert request.stream is True
        assert app_hunk in request.user_content

    @pytest.mark.asyncio
    async def test_settings_flow_into_prompt(self, isolated_config, app_hunk):
        """Test that format and instructions reach the prompt."""
        settings = Settings(commit={"format": "custom", "custom_template": "TEMPLATE", "extra_instructions": "Be brief"})
        client = _client("Add values")

        await Committer(settings, client).generate_commit_message(app_hunk)

        request = client.generate.call_args.args[0]
        assert request.system_prompt == "TEMPLATE\n\nAdditional requirements:\nBe brief"

    @pytest.mark.asyncio
    async def test_excluded_only_diff(self, settings, lockfile_hunk):
        """Test that a diff with nothing left raises before calling the model."""
        client = _client("unused")

        with pytest.raises(CommitterError):
            await Committer(settings, client).generate_commit_message(lockfile_hunk)

        client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_message(self, settings, app_hunk):
        """Test that a message that cleans to nothing raises."""
        with pytest.raises(CommitterError):
            await Committer(settings, _client("<think>hmm</think>")).generate_commit_message(app_hunk)

    @pytest.mark.asyncio
    async def test_partial_is_reported(self, settings, app_hunk):
        """Test that partial generations are passed on as data."""
        client = _client("feat(app): add", outcome=GenerationOutcome.PARTIAL)

        message = await Committer(settings, client).generate_commit_message(app_hunk)

        assert message.partial
        assert message.reason == "connection lost"

    @pytest.mark.asyncio
    async def test_api_error_propagates(self, settings, app_hunk):
        """Test that ApiError is not wrapped."""
        client = MagicMock()
        client.generate = AsyncMock(side_effect=ApiError(ApiErrorKind.AUTH, "bad key", status=401))

        with pytest.raises(ApiError):
            await Committer(settings, client).generate_commit_message(app_hunk)

    @pytest.mark.asyncio
    async def test_pr_content(self, settings, app_hunk):
        """Test splitting PR output into title and body."""
        client = _client("# feat(app): add values\n\n## Summary\nAdds values.")

        content = await Committer(settings, client).generate_pr_content(app_hunk, commits=["feat: a"])

        assert content.title == "feat(app): add values"
        assert content.body == "## Summary\nAdds values."
        assert "- feat: a" in client.generate.call_args.args[0].user_content

    @pytest.mark.asyncio
    async def test_pr_content_without_title(self, settings, app_hunk):
        """Test that an empty PR reply raises CommitterError."""
        with pytest.raises(CommitterError):
            await Committer(settings, _client("   \n")).generate_pr_content(app_hunk)

    def test_prepare_diff(self, settings, app_hunk, lockfile_hunk):
        """Test filtering and budgeting together."""
        prepared = Committer(settings, _client()).prepare_diff(lockfile_hunk + app_hunk)

        assert prepared.excluded_paths == {"package-lock.json"}
        assert prepared.budgeted.text == app_hunk

    def test_extra_excludes_from_settings(self, isolated_config, app_hunk):
        """Test that configured exclusions apply."""
        settings = Settings(diff={"extra_excludes": ["src/"]})
        prepared = Committer(settings, _client()).prepare_diff(app_hunk)

        assert prepared.is_empty
        assert prepared.excluded_paths == {"src/app.rs"}


class TestRunCommit:
    """Tests for the commit workflow."""

    @pytest.mark.asyncio
    async def test_yes_commits(self, settings, repo, console):
        """Test committing without a prompt."""
        committer = _committer(settings, _client("feat(app): add values"), repo, console)

        sha = await committer.run_commit(yes=True)

        assert sha == "0123456789abcdef"
        repo.commit.assert_called_once_with("feat(app): add values")
        console.prompt_commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_auto_commit_setting(self, isolated_config, repo, console):
        """Test that commit.auto_commit skips the prompt."""
        settings = Settings(commit={"auto_commit": True})
        await _committer(settings, _client("fix: a"), repo, console).run_commit()

        repo.commit.assert_called_once_with("fix: a")

    @pytest.mark.asyncio
    async def test_stage_all(self, settings, repo, console):
        """Test that --all stages before reading the diff."""
        await _committer(settings, _client("fix: a"), repo, console).run_commit(yes=True, stage_all=True)

        repo.stage_all.assert_called_once()

    @pytest.mark.asyncio
    async def test_nothing_to_commit(self, settings, repo, console):
        """Test a clean working tree."""
        repo.has_staged_changes.return_value = False
        client = _client()

        assert await _committer(settings, client, repo, console).run_commit() is None

        console.print_info.assert_called_with("Nothing to commit")
        client.generate.assert_not_called()
        repo.staged_diff.assert_not_called()

    @pytest.mark.asyncio
    async def test_unstaged_changes_only(self, settings, repo, console):
        """Test a dirty tree with nothing staged."""
        repo.has_staged_changes.return_value = False
        repo.uncommitted_changes.return_value = UncommittedChanges(unstaged=["M src/app.rs"])

        with pytest.raises(CommitterError, match="No staged changes"):
            await _committer(settings, _client(), repo, console).run_commit()

    @pytest.mark.asyncio
    async def test_dry_run(self, settings, repo, console):
        """Test that dry runs never commit."""
        await _committer(settings, _client("feat: x"), repo, console).run_commit(dry_run=True, yes=True)

        repo.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel(self, settings, repo, console):
        """Test declining the commit."""
        console.prompt_commit.return_value = ("cancel", "feat: x")

        assert await _committer(settings, _client("feat: x"), repo, console).run_commit() is None
        repo.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_retry_then_commit_edited(self, settings, repo, console):
        """Test regenerating and then committing an edited message."""
        console.prompt_commit.side_effect = [("retry", "feat: first"), ("commit", "feat: edited")]
        client = _client("feat: first", "feat: second")

        await _committer(settings, client, repo, console).run_commit()

        assert client.generate.await_count == 2
        assert console.prompt_commit.call_args_list[1].args[0] == "feat: second"
        repo.commit.assert_called_once_with("feat: edited")

    @pytest.mark.asyncio
    async def test_branch_from_message(self, settings, repo, console):
        """Test the 'b' action creating a branch named after the message."""
        repo.branch_names.return_value = ["main", "feat/app-values"]
        console.prompt_commit.side_effect = [
            ("branch", "feat(app): add values"),
            ("commit", "feat(app): add values"),
        ]
        console.prompt_branch_action.side_effect = lambda suggested: suggested

        await _committer(settings, _client("feat(app): add values"), repo, console).run_commit()

        repo.create_and_switch_branch.assert_called_once_with("feat/app-values-2")
        assert console.prompt_commit.call_args_list[1].args[1] is False
        repo.commit.assert_called_once_with("feat(app): add values")

    @pytest.mark.asyncio
    async def test_commit_after_branch(self, isolated_config, repo, console):
        """Test committing straight after the branch is created."""
        settings = Settings(commit={"commit_after_branch": True})
        console.prompt_commit.return_value = ("branch", "fix(app): guard input")
        console.prompt_branch_action.side_effect = lambda suggested: suggested

        await _committer(settings, _client("fix(app): guard input"), repo, console).run_commit()

        repo.create_and_switch_branch.assert_called_once_with("fix/app-guard-input")
        assert console.prompt_commit.call_count == 1
        repo.commit.assert_called_once_with("fix(app): guard input")

    @pytest.mark.asyncio
    async def test_auto_branch_on_protected(self, settings, repo, console, payments_diff):
        """Test switching branches before committing on main."""
        repo.current_branch = "main"
        repo.staged_diff.return_value = payments_diff

        await _committer(settings, _client("feat(payments): add refunds"), repo, console).run_commit(
            yes=True, auto_branch=True
        )

        names = [c[0] for c in repo.method_calls]
        assert names.index("create_and_switch_branch") < names.index("commit")
        repo.create_and_switch_branch.assert_called_once_with("feat/payments-refunds")

    @pytest.mark.asyncio
    async def test_branch_check_declined(self, settings, repo, console, payments_diff):
        """Test staying on the current branch after a mismatch."""
        repo.staged_diff.return_value = payments_diff
        console.prompt_branch_action.return_value = None
        console.prompt_commit.return_value = ("commit", "feat(payments): add refunds")

        await _committer(settings, _client("feat(payments): add refunds"), repo, console).run_commit(
            branch_check=True
        )

        console.show_branch_mismatch.assert_called_once()
        repo.create_and_switch_branch.assert_not_called()
        # Branch was already discussed, so the 'b' option is hidden
        assert console.prompt_commit.call_args.args[1] is False
        repo.commit.assert_called_once()


class TestRunPr:
    """Tests for the pull request workflow."""

    @pytest.fixture
    def github(self):
        github = MagicMock()
        github.check_installed = AsyncMock()
        github.default_branch = AsyncMock(return_value="main")
        github.create_pr = AsyncMock(return_value="https://github.com/o/r/pull/7")
        return github

    @pytest.fixture
    def pr_repo(self, repo, app_hunk):
        repo.default_base_branch.return_value = "origin/main"
        repo.branch_commits.return_value = ["feat(app): add values"]
        repo.branch_diff.return_value = app_hunk
        return repo

    @pytest.mark.asyncio
    async def test_creates_pr(self, settings, pr_repo, console, github):
        """Test the full non-interactive flow."""
        client = _client("feat(app): add values\n\n## Summary\nAdds values.")

        url = await _committer(settings, client, pr_repo, console).run_pr(yes=True, draft=True, github=github)

        assert url == "https://github.com/o/r/pull/7"
        pr_repo.default_base_branch.assert_called_once_with(hint="main")
        pr_repo.push.assert_called_once_with(branch="feat/app")
        github.create_pr.assert_awaited_once_with(
            "feat(app): add values", "## Summary\nAdds values.", draft=True, base="main"
        )

    @pytest.mark.asyncio
    async def test_explicit_base(self, settings, pr_repo, console, github):
        """Test that --base skips detection."""
        client = _client("feat: x\n\nbody")

        await _committer(settings, client, pr_repo, console).run_pr(yes=True, base="develop", github=github)

        pr_repo.default_base_branch.assert_not_called()
        pr_repo.branch_diff.assert_called_once_with("develop")
        assert github.create_pr.call_args.kwargs["base"] == "develop"

    @pytest.mark.asyncio
    async def test_protected_branch_refused(self, settings, pr_repo, console, github):
        """Test that PRs from main need an upstream remote."""
        pr_repo.current_branch = "main"

        with pytest.raises(CommitterError, match="protected branch"):
            await _committer(settings, _client(), pr_repo, console).run_pr(github=github)

    @pytest.mark.asyncio
    async def test_protected_branch_with_upstream(self, settings, pr_repo, console, github):
        """Test that a fork workflow may open a PR from main."""
        pr_repo.current_branch = "main"
        pr_repo.has_remote.return_value = True

        await _committer(settings, _client("feat: x"), pr_repo, console).run_pr(yes=True, github=github)

        github.create_pr.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_commits(self, settings, pr_repo, console, github):
        """Test a branch without commits ahead of the base."""
        pr_repo.branch_commits.return_value = []

        with pytest.raises(CommitterError, match="No commits"):
            await _committer(settings, _client(), pr_repo, console).run_pr(yes=True, github=github)

    @pytest.mark.asyncio
    async def test_dry_run(self, settings, pr_repo, console, github):
        """Test that dry runs neither push nor create."""
        await _committer(settings, _client("feat: x\n\nbody"), pr_repo, console).run_pr(dry_run=True, github=github)

        pr_repo.push.assert_not_called()
        github.create_pr.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_at_prompt(self, settings, pr_repo, console, github):
        """Test declining the PR."""
        console.prompt_pr.return_value = None

        assert await _committer(settings, _client("feat: x\n\nbody"), pr_repo, console).run_pr(github=github) is None
        pr_repo.push.assert_not_called()

    @pytest.mark.asyncio
    async def test_uncommitted_quit(self, settings, pr_repo, console, github):
        """Test quitting when there are uncommitted changes."""
        pr_repo.uncommitted_changes.return_value = UncommittedChanges(unstaged=["M README.md"])
        console.prompt_uncommitted_changes.return_value = "quit"
        client = _client()

        assert await _committer(settings, client, pr_repo, console).run_pr(github=github) is None
        client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_uncommitted_commit_first(self, settings, pr_repo, console, github):
        """Test committing pending changes before generating the PR."""
        pr_repo.uncommitted_changes.return_value = UncommittedChanges(unstaged=["M src/app.rs"])
        console.prompt_uncommitted_changes.return_value = "commit"
        console.prompt_commit.return_value = ("commit", "fix(app): tidy")
        console.prompt_pr.side_effect = lambda title, body: (title, body)
        client = _client("fix(app): tidy", "feat(app): add values\n\nbody")

        await _committer(settings, client, pr_repo, console).run_pr(github=github)

        pr_repo.stage_all.assert_called_once()
        pr_repo.commit.assert_called_once_with("fix(app): tidy")
        github.create_pr.assert_awaited_once()
