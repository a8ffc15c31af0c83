"""
Shared types for the completion backend: results, stream events and errors.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from loguru import logger


class GenerationOutcome(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"


@dataclass
class GenerationResult:
    """Generated text plus how it was obtained."""

    text: str
    outcome: GenerationOutcome = GenerationOutcome.COMPLETE
    model: Optional[str] = None
    streamed: bool = True
    reason: Optional[str] = None
    response_time: Optional[float] = None

    @property
    def is_partial(self) -> bool:
        return self.outcome == GenerationOutcome.PARTIAL


@dataclass(frozen=True)
class Delta:
    """Incremental piece of generated text."""

    text: str


@dataclass(frozen=True)
class Done:
    """Successful end of the stream."""


@dataclass(frozen=True)
class StreamError:
    """The stream failed; no further events follow."""

    reason: str


StreamEvent = Union[Delta, Done, StreamError]


class ApiErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    MALFORMED = "malformed"


class ApiError(Exception):
    """Completion request failed after the streaming and fallback attempts."""

    def __init__(self, kind: ApiErrorKind, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        if self.status:
            return f"{base} (HTTP {self.status})"
        return base

    @classmethod
    def from_status(cls, status: int, body: str = "") -> "ApiError":
        """Classify a non-2xx HTTP response."""
        detail = body.strip()[:300] or "no response body"
        if status in (401, 403):
            kind = ApiErrorKind.AUTH
            message = f"Authentication failed: {detail}"
        elif status == 429:
            kind = ApiErrorKind.RATE_LIMIT
            message = f"Rate limit exceeded: {detail}"
        else:
            kind = ApiErrorKind.NETWORK
            message = f"API request failed: {detail}"
        logger.debug(f"Classified HTTP {status} as {kind.value}")
        return cls(kind, message, status=status)
