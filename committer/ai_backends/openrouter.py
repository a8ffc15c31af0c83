"""
OpenRouter chat-completions client with streaming and a single non-streaming fallback.
"""

import asyncio
import contextlib
import json
import time
from dataclasses import replace
from typing import AsyncIterable, AsyncIterator, Callable, List, Optional, Union
import aiohttp
from loguru import logger

from .base import (
    ApiError,
    ApiErrorKind,
    Delta,
    Done,
    GenerationOutcome,
    GenerationResult,
    StreamError,
    StreamEvent,
)
from .sse import decode_line, parse_completion_body
from ..utils.prompts import GenerationRequest


OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"

DeltaCallback = Callable[[str], None]


class StreamUnavailable(Exception):
    """The streaming attempt produced no text; the caller should fall back."""

    def __init__(self, reason: str, error: Optional[ApiError] = None):
        super().__init__(reason)
        self.error = error


class StreamingClient:
    """Chat-completions client for OpenRouter-compatible endpoints."""

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = OPENROUTER_API_URL,
        timeout: int = 120,
        session: Optional[aiohttp.ClientSession] = None,
        app_title: str = "Committer",
        referer: str = "https://github.com/committer-cli/committer",
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.app_title = app_title
        self.referer = referer
        self._session = session

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": self.app_title,
            "HTTP-Referer": self.referer,
        }

    @contextlib.asynccontextmanager
    async def _open_session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    def _log_request(self, request: GenerationRequest) -> None:
        logger.debug(f"Completion request to {self.api_url}")
        logger.debug(f"Model: {request.model}")
        logger.debug(f"Prompt length: {len(request.system_prompt) + len(request.user_content)} characters")
        logger.debug(f"Streaming: {request.stream}")

    async def generate(
        self,
        request: GenerationRequest,
        on_delta: Optional[DeltaCallback] = None,
    ) -> GenerationResult:
        """Run ``request`` and return the generated text.

        When streaming, each delta is passed to ``on_delta`` as it arrives. If
        the stream cannot be opened or yields no text, the same request is
        sent once more with ``stream=False``. A stream that breaks after
        delivering text returns a PARTIAL result instead.

        Raises:
            ApiError: authentication, rate limit, network or malformed body.
        """
        if not self.api_key:
            raise ApiError(ApiErrorKind.AUTH, "No API key configured")

        self._log_request(request)
        start_time = time.time()

        async with self._open_session() as session:
            if request.stream:
                try:
                    result = await self._stream(session, request, on_delta)
                except StreamUnavailable as e:
                    detail = f"{e}, {e.error.kind.value}: {e.error}" if e.error is not None else str(e)
                    logger.warning(f"Streaming failed ({detail}), retrying without streaming")
                else:
                    result.response_time = time.time() - start_time
                    return result

            result = await self._complete(session, replace(request, stream=False))
            if on_delta and result.text:
                on_delta(result.text)

        result.response_time = time.time() - start_time
        logger.debug(f"Response length: {len(result.text)} characters in {result.response_time:.2f}s")
        return result

    async def _stream(
        self,
        session: aiohttp.ClientSession,
        request: GenerationRequest,
        on_delta: Optional[DeltaCallback],
    ) -> GenerationResult:
        """Single streaming attempt. Raises StreamUnavailable when it yields no text."""
        try:
            response = await session.post(
                self.api_url,
                json=request.to_payload(),
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(
                    total=None, sock_connect=self.timeout, sock_read=self.timeout
                ),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StreamUnavailable(f"could not open stream: {e}")

        async with response:
            if not 200 <= response.status < 300:
                body = await response.text(errors="replace")
                raise StreamUnavailable(
                    f"HTTP {response.status} before any data",
                    ApiError.from_status(response.status, body),
                )

            if response.content_type == "application/json":
                # Endpoint ignored the stream flag and sent the whole completion
                body = await response.text(errors="replace")
                try:
                    text = parse_completion_body(body)
                except ValueError as e:
                    raise StreamUnavailable(f"unreadable JSON body: {e}")
                if not text.strip():
                    raise StreamUnavailable("empty completion body")
                if on_delta:
                    on_delta(text)
                return GenerationResult(text=text, model=request.model, streamed=False)

            return await self.consume(response.content, on_delta, model=request.model)

    async def consume(
        self,
        lines: AsyncIterable[Union[bytes, str]],
        on_delta: Optional[DeltaCallback] = None,
        model: Optional[str] = None,
    ) -> GenerationResult:
        """Accumulate a stream of SSE lines into a result.

        A pump task decodes lines onto a queue; this coroutine drains it,
        appending deltas in arrival order and forwarding each to ``on_delta``.
        Leading whitespace-only deltas are held back until real text arrives,
        so a blank stream that falls back shows nothing twice.
        """
        queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        pump = asyncio.create_task(self._pump(lines, queue))
        buffer: List[str] = []
        forwarding = False

        try:
            while True:
                event = await queue.get()
                if isinstance(event, Delta):
                    buffer.append(event.text)
                    if forwarding:
                        on_delta(event.text)
                    elif on_delta and event.text.strip():
                        forwarding = True
                        on_delta("".join(buffer))
                elif isinstance(event, Done):
                    break
                else:
                    if "".join(buffer).strip():
                        logger.warning(f"Stream aborted after {len(buffer)} chunks: {event.reason}")
                        return GenerationResult(
                            text="".join(buffer),
                            outcome=GenerationOutcome.PARTIAL,
                            model=model,
                            streamed=True,
                            reason=event.reason,
                        )
                    raise StreamUnavailable(f"stream aborted: {event.reason}")
        finally:
            if not pump.done():
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump

        text = "".join(buffer)
        if not text.strip():
            raise StreamUnavailable("stream finished without content")

        logger.debug(f"Stream complete: {len(buffer)} chunks, {len(text)} characters")
        return GenerationResult(text=text, model=model, streamed=True)

    @staticmethod
    async def _pump(lines: AsyncIterable[Union[bytes, str]], queue: "asyncio.Queue[StreamEvent]") -> None:
        """Decode lines onto ``queue``. Always ends with Done or StreamError."""
        try:
            async for raw in lines:
                event = decode_line(raw)
                if event is None:
                    continue
                await queue.put(event)
                if not isinstance(event, Delta):
                    return
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug(f"Stream transport failed: {e!r}")
            await queue.put(StreamError(f"connection lost: {e or type(e).__name__}"))
            return

        # End of body without [DONE]
        await queue.put(Done())

    async def _complete(self, session: aiohttp.ClientSession, request: GenerationRequest) -> GenerationResult:
        """Non-streaming request; the last attempt before surfacing an error."""
        try:
            async with session.post(
                self.api_url,
                json=request.to_payload(),
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                body = await response.text(errors="replace")
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Completion request failed: {e!r}")
            raise ApiError(ApiErrorKind.NETWORK, f"Network error: {e or type(e).__name__}") from e

        if not 200 <= status < 300:
            raise ApiError.from_status(status, body)

        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise ApiError(ApiErrorKind.MALFORMED, f"Malformed completion response: {e}", status=status) from e

        # OpenRouter reports some upstream failures as 200 with an error object
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict) and isinstance(error.get("code"), int):
            raise ApiError.from_status(error["code"], str(error.get("message", "")))

        try:
            text = parse_completion_body(data)
        except ValueError as e:
            raise ApiError(ApiErrorKind.MALFORMED, f"Malformed completion response: {e}", status=status) from e

        return GenerationResult(text=text, model=request.model, streamed=False)
