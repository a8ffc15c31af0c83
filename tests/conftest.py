"""Shared test fixtures and configuration."""

import tempfile
from pathlib import Path

import pytest
from loguru import logger


def make_hunk(path: str, added_lines, new_file: bool = False) -> str:
    """Build one well-formed ``diff --git`` block for ``path``."""
    lines = [f"diff --git a/{path} b/{path}"]
    if new_file:
        lines.append("new file mode 100644")
        lines.append("index 0000000..1111111")
        lines.append("--- /dev/null")
    else:
        lines.append("index 1111111..2222222 100644")
        lines.append(f"--- a/{path}")
    lines.append(f"+++ b/{path}")
    lines.append(f"@@ -0,0 +1,{len(added_lines)} @@")
    lines.extend(f"+{line}" for line in added_lines)
    return "\n".join(lines) + "\n"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def isolated_config(temp_dir, monkeypatch):
    """Point config and cache lookups at a temporary directory."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(temp_dir / "cache"))
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.delenv("COMMITTER_MODEL", raising=False)
    monkeypatch.chdir(temp_dir)
    return temp_dir


@pytest.fixture
def app_hunk():
    """Ten added lines in src/app.rs."""
    return make_hunk("src/app.rs", [f"let value_{i} = compute({i});" for i in range(10)])


@pytest.fixture
def lockfile_hunk():
    """Two hundred added lines in package-lock.json."""
    return make_hunk("package-lock.json", [f'"dep-{i}": "1.0.{i}",' for i in range(200)])


@pytest.fixture
def auth_diff():
    """Changes confined to src/auth."""
    return (
        make_hunk("src/auth/login.rs", ["fn login(user: &User) -> Session {", "    Session::new(user)", "}"])
        + make_hunk("src/auth/session.rs", ["pub struct Session {", "    token: Token,", "}"], new_file=True)
    )


@pytest.fixture
def payments_diff():
    """Changes confined to payments/."""
    return (
        make_hunk("payments/gateway.py", ["def charge(amount):", "    return gateway.charge(amount)"])
        + make_hunk("payments/refunds.py", ["def refund(charge_id):", "    return gateway.refund(charge_id)"])
    )


@pytest.fixture
def hunk():
    """Factory for single-file diff blocks."""
    return make_hunk


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during the test."""
    messages = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{message}")
    yield messages
    logger.remove(handler_id)
