"""
Cleanup of model output into commit messages and pull-request content.
"""

import re
from typing import Tuple
from loguru import logger


class MessageExtractionError(ValueError):
    """Model output could not be turned into the requested content."""


class MessageExtractor:
    """Clean commit messages and PR text returned by the model."""

    # Conventional commit types
    COMMIT_TYPES = [
        "feat", "fix", "docs", "style", "refactor", "test", "chore",
        "build", "ci", "perf", "revert", "deps", "config", "security",
    ]

    # Lines the model sometimes puts before the actual message
    PREAMBLE_PREFIXES = (
        "commit message:",
        "here is the commit message:",
        "here's the commit message:",
        "suggested commit message:",
    )

    def __init__(self):
        self._compile_patterns()

    def _compile_patterns(self) -> None:
        """Compile regex patterns for efficient matching."""
        types_pattern = "|".join(self.COMMIT_TYPES)

        self.conventional_pattern = re.compile(
            rf'^({types_pattern})(\([^)]+\))?!?: \S.*$'
        )
        self.think_pattern = re.compile(r'<think(?:ing)?>.*?</think(?:ing)?>', re.DOTALL | re.IGNORECASE)
        self.fence_pattern = re.compile(r'^```[\w-]*\s*$', re.MULTILINE)
        self.bullet_pattern = re.compile(r'^([ \t]*)[*•][ \t]+', re.MULTILINE)
        self.blank_lines_pattern = re.compile(r'\n\s*\n(\s*\n)+')

    def _strip_noise(self, text: str) -> str:
        """Remove reasoning blocks and code fences."""
        text = self.think_pattern.sub('', text)
        # Closing tag without an opener: everything before it is reasoning
        text = re.sub(r'^.*?</think(?:ing)?>', '', text, flags=re.DOTALL | re.IGNORECASE)
        text = self.fence_pattern.sub('', text)
        return text.strip()

    def clean_commit_message(self, raw_response: str) -> str:
        """Normalise a generated commit message. Returns "" when nothing is left."""
        logger.debug(f"Cleaning commit message from {len(raw_response)} char response")

        text = self._strip_noise(raw_response)

        lines = text.split('\n')
        while lines and lines[0].strip().lower() in self.PREAMBLE_PREFIXES:
            lines.pop(0)
        if lines:
            first = lines[0].strip()
            for prefix in self.PREAMBLE_PREFIXES:
                if first.lower().startswith(prefix):
                    first = first[len(prefix):].strip()
                    break
            lines[0] = first
        text = '\n'.join(lines).strip()

        # Quotes or backticks around the whole message
        if len(text) > 1 and text[0] == text[-1] and text[0] in '"\'`' and text[0] not in text[1:-1]:
            text = text[1:-1].strip()

        text = self.bullet_pattern.sub(r'\1- ', text)
        text = self.blank_lines_pattern.sub('\n\n', text)
        text = '\n'.join(line.rstrip() for line in text.split('\n'))

        cleaned = text.strip()
        if not cleaned:
            logger.warning("Empty commit message after cleaning")
        return cleaned

    def split_pr_content(self, raw_response: str) -> Tuple[str, str]:
        """Split PR output into ``(title, body)``.

        The first non-empty line is the title; everything after it is the body.
        """
        text = self._strip_noise(raw_response)
        lines = text.split('\n')

        index = 0
        while index < len(lines) and not lines[index].strip():
            index += 1
        if index == len(lines):
            raise MessageExtractionError("Pull request content is empty")

        title = lines[index].strip()
        title = re.sub(r'^#+\s*', '', title)
        title = re.sub(r'^(?:pr\s+)?title:\s*', '', title, flags=re.IGNORECASE)
        title = title.strip().strip('"\'`').strip()
        if not title:
            raise MessageExtractionError("Pull request title is empty")

        body = '\n'.join(lines[index + 1:]).strip()
        body = self.blank_lines_pattern.sub('\n\n', body)
        logger.debug(f"PR title: {title} (body: {len(body)} chars)")
        return title, body

    def is_conventional(self, message: str) -> bool:
        """True when the subject line follows ``type(scope)!: description``."""
        lines = message.strip().split('\n')
        return bool(lines and self.conventional_pattern.match(lines[0].strip()))


# Create global instance
message_extractor = MessageExtractor()
