"""Tests for committer.branch.analyzer module."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from committer.ai_backends.base import ApiError, ApiErrorKind, GenerationResult
from committer.branch.analyzer import (
    BranchAnalysisError,
    BranchAnalyzer,
    Confidence,
    branch_from_message,
    is_protected,
    normalize_slug,
    parse_model_reply,
    slugify,
    split_words,
    unique_name,
)
from committer.diff.budget import BudgetedDiff, DiffBudgeter
from committer.diff.filter import DiffFilter
from committer.utils.prompts import PromptBuilder


def _client(reply=None, error=None):
    client = MagicMock()
    client.generate = AsyncMock()
    if error is not None:
        client.generate.side_effect = error
    else:
        client.generate.return_value = GenerationResult(text=reply, streamed=False)
    return client


class TestHelpers:
    """Tests for the slug helpers."""

    def test_split_words(self):
        """Test splitting on separators and camelCase."""
        assert split_words("HTTPServerConfig_v2-beta") == ["http", "server", "config", "v", "2", "beta"]

    def test_normalize_slug(self):
        """Test kebab-case normalisation."""
        assert normalize_slug("  Payment Retry__Logic! ") == "payment-retry-logic"
        assert normalize_slug("!!!") == ""

    def test_slugify_skips_filler(self):
        """Test that filler words are dropped when something else remains."""
        assert slugify("add support for the OAuth login flow") == "oauth-login-flow"

    def test_slugify_only_filler(self):
        """Test that filler words are kept when nothing else is left."""
        assert slugify("add the") == "add-the"

    @pytest.mark.parametrize("message,expected", [
        ("feat(auth): add login with OAuth", "feat/auth-login-oauth"),
        ("fix: handle empty diff\n\nLonger body here", "fix/empty-diff"),
        ("refactor(Core API)!: split the client module", "refactor/core-api-split-client-module"),
        ("Update readme badges", "feat/readme-badges"),
        ("", "feat/changes"),
    ])
    def test_branch_from_message(self, message, expected):
        """Test branch names derived from commit subjects."""
        assert branch_from_message(message) == expected

    def test_unique_name(self):
        """Test numeric suffixes for taken names."""
        taken = {"feat/auth", "feat/auth-2"}
        assert unique_name("feat/auth", taken.__contains__) == "feat/auth-3"
        assert unique_name("feat/billing", taken.__contains__) == "feat/billing"

    @pytest.mark.parametrize("branch", ["main", "master", "develop", "dev", "staging", "production"])
    def test_protected(self, branch):
        """Test the protected branch names."""
        assert is_protected(branch)

    def test_not_protected(self):
        """Test a feature branch."""
        assert not is_protected("feat/main-menu")


class TestParseModelReply:
    """Tests for parse_model_reply function."""

    def test_json(self):
        """Test the documented JSON reply."""
        verdict = parse_model_reply('{"matches": false, "type": "fix", "slug": "Payment Retry", "reason": "new area"}')

        assert verdict.matches is False
        assert verdict.branch_type == "fix"
        assert verdict.slug == "payment-retry"
        assert verdict.reason == "new area"

    def test_fenced_json(self):
        """Test JSON wrapped in a code fence."""
        reply = '```json\n{"matches": true, "type": "feat", "slug": "auth-refresh"}\n```'
        verdict = parse_model_reply(reply)

        assert verdict.matches is True
        assert verdict.slug == "auth-refresh"

    def test_suggested_branch_with_prefix(self):
        """Test a slug that carries its own type prefix."""
        verdict = parse_model_reply('{"suggested_branch": "docs/api-guide"}')

        assert verdict.branch_type == "docs"
        assert verdict.slug == "api-guide"
        assert verdict.matches is None

    def test_bare_line(self):
        """Test a bare type/slug line."""
        verdict = parse_model_reply("fix/payment-retry")

        assert verdict.branch_type == "fix"
        assert verdict.slug == "payment-retry"

    @pytest.mark.parametrize("reply", ["", "I think this belongs on a new branch."])
    def test_unusable(self, reply):
        """Test replies that cannot be parsed."""
        assert parse_model_reply(reply) is None


class TestFallback:
    """Tests for the deterministic fallback."""

    @pytest.mark.asyncio
    async def test_auth_paths(self, auth_diff):
        """Test that auth changes produce an auth slug without model access."""
        analysis = await BranchAnalyzer().analyze(BudgetedDiff(text=auth_diff), "feat/other")

        assert "auth" in analysis.suggested_slug.split("-")
        assert analysis.confidence == Confidence.LOW
        assert not analysis.matches_current_branch
        assert analysis.should_switch
        assert analysis.reason == "Changes do not mention 'feat/other'"

    @pytest.mark.asyncio
    async def test_protected_branch(self, payments_diff):
        """Test payments changes on main."""
        analysis = await BranchAnalyzer().analyze(BudgetedDiff(text=payments_diff), "main")

        assert analysis.current_branch_is_protected
        assert "payments" in analysis.suggested_slug
        assert analysis.should_switch
        assert analysis.reason == "'main' is a protected branch"

    @pytest.mark.asyncio
    async def test_matching_branch(self, auth_diff):
        """Test that a branch named after the area matches."""
        analysis = await BranchAnalyzer().analyze(BudgetedDiff(text=auth_diff), "feat/auth-refresh")

        assert analysis.matches_current_branch
        assert not analysis.should_switch

    @pytest.mark.asyncio
    async def test_docs_type(self, hunk):
        """Test that documentation-only changes get the docs type."""
        diff = hunk("docs/install.md", ["Run the installer"]) + hunk("README.md", ["Badges"])
        analysis = await BranchAnalyzer().analyze(BudgetedDiff(text=diff), "main")

        assert analysis.branch_type == "docs"
        assert analysis.suggested_branch.startswith("docs/")

    def test_ranking(self, hunk):
        """Test that path tokens outrank tokens only seen in added lines."""
        diff = hunk("billing/invoice.py", ["total = compute_total(items)"] * 5)
        slug = BranchAnalyzer().fallback_slug(DiffFilter(patterns={}).parse(diff))

        assert slug == "billing-invoice-total"

    def test_stop_words_only(self):
        """Test that raw path tokens are used when the stop-list removes everything."""
        diff = "diff --git a/src/main.rs b/src/main.rs\nindex 1..2 100644\n"
        slug = BranchAnalyzer().fallback_slug(DiffFilter(patterns={}).parse(diff))

        assert slug == "src-main"

    @pytest.mark.asyncio
    async def test_no_tokens(self):
        """Test that a diff without any identifiers raises."""
        with pytest.raises(BranchAnalysisError):
            await BranchAnalyzer().analyze(BudgetedDiff(text="just some text\n"), "feat/x")

    @pytest.mark.asyncio
    async def test_oversized_single_file(self, hunk):
        """Test that a file dropped by the budget still names the branch."""
        diff = hunk("payments/processor.js", ["const amountInCents = convert(total);"] * 10_000)
        budgeted = DiffBudgeter().apply(DiffFilter().filter(diff))
        assert budgeted.truncated
        assert budgeted.omitted_paths == ("payments/processor.js",)

        analysis = await BranchAnalyzer().analyze(budgeted, "main")

        assert "payments" in analysis.suggested_slug.split("-")
        assert analysis.confidence == Confidence.LOW
        assert analysis.should_switch

    @pytest.mark.asyncio
    async def test_collision_suffix(self, payments_diff):
        """Test that existing branch names get a numeric suffix."""
        first = await BranchAnalyzer().analyze(BudgetedDiff(text=payments_diff), "main")
        taken = [first.suggested_branch]

        second = await BranchAnalyzer().analyze(
            BudgetedDiff(text=payments_diff), "main", existing_branches=taken
        )

        assert second.suggested_slug == f"{first.suggested_slug}-2"


class TestModelPath:
    """Tests for model-assisted classification."""

    @pytest.mark.asyncio
    async def test_model_verdict(self, payments_diff):
        """Test that a valid model reply gives high confidence."""
        client = _client('{"matches": false, "type": "fix", "slug": "Payment Retry", "reason": "new area"}')
        analyzer = BranchAnalyzer(client, PromptBuilder("test/model"))

        analysis = await analyzer.analyze(BudgetedDiff(text=payments_diff), "feat/search")

        assert analysis.confidence == Confidence.HIGH
        assert analysis.suggested_branch == "fix/payment-retry"
        assert analysis.reason == "new area"
        assert analysis.should_switch

        request = client.generate.call_args.args[0]
        assert request.stream is False
        assert "CURRENT BRANCH: feat/search" in request.user_content

    @pytest.mark.asyncio
    async def test_protected_never_matches(self, payments_diff):
        """Test that a model 'match' on a protected branch is overridden."""
        client = _client('{"matches": true, "type": "feat", "slug": "payments"}')
        analysis = await BranchAnalyzer(client, PromptBuilder("m")).analyze(
            BudgetedDiff(text=payments_diff), "main"
        )

        assert analysis.confidence == Confidence.HIGH
        assert not analysis.matches_current_branch
        assert analysis.should_switch

    @pytest.mark.asyncio
    async def test_unknown_type_is_guessed(self, payments_diff):
        """Test that an unknown branch type falls back to the guessed one."""
        client = _client('{"matches": false, "type": "wip", "slug": "payments-refunds"}')
        analysis = await BranchAnalyzer(client, PromptBuilder("m")).analyze(
            BudgetedDiff(text=payments_diff), "feat/search"
        )

        assert analysis.suggested_branch == "feat/payments-refunds"

    @pytest.mark.asyncio
    async def test_collision_with_model_slug(self, payments_diff):
        """Test suffixing of a model slug that already exists."""
        client = _client('{"matches": false, "type": "fix", "slug": "payment-retry"}')
        analysis = await BranchAnalyzer(client, PromptBuilder("m")).analyze(
            BudgetedDiff(text=payments_diff),
            "main",
            existing_branches=["fix/payment-retry", "fix/payment-retry-2"],
        )

        assert analysis.suggested_branch == "fix/payment-retry-3"

    @pytest.mark.asyncio
    async def test_api_error_falls_back(self, auth_diff):
        """Test that an API failure uses the heuristic."""
        client = _client(error=ApiError(ApiErrorKind.RATE_LIMIT, "slow down", status=429))
        analysis = await BranchAnalyzer(client, PromptBuilder("m")).analyze(
            BudgetedDiff(text=auth_diff), "main"
        )

        assert analysis.confidence == Confidence.LOW
        assert "auth" in analysis.suggested_slug.split("-")

    @pytest.mark.asyncio
    async def test_unusable_reply_falls_back(self, auth_diff):
        """Test that prose instead of JSON uses the heuristic."""
        client = _client("These changes look fine on this branch.")
        analysis = await BranchAnalyzer(client, PromptBuilder("m")).analyze(
            BudgetedDiff(text=auth_diff), "feat/auth"
        )

        assert analysis.confidence == Confidence.LOW
        assert analysis.matches_current_branch
