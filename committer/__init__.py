"""
Committer - AI-generated commit messages, branch names and pull requests.

Staged changes are filtered, bounded and sent to an OpenRouter model; the
streamed reply becomes a conventional commit message or a pull request.
"""

__version__ = "0.1.0"

from committer.core import Committer, CommitterError
from committer.config.settings import Settings

__all__ = ["Committer", "CommitterError", "Settings"]
