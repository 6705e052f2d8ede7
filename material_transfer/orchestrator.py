"""Bounded retry loop around a ``ModelClient``.

Recitation rejections retry immediately with a request mutated by the
``RetryPolicy``; transport failures wait a fixed backoff and resend the same
request. Callers only ever see the final response or a terminal error.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from material_transfer.client import ImagePart, ModelClient, ModelRequest, ModelResponse, extract_image, extract_text
from material_transfer.errors import GenerationCancelled, RecitationRejected, TransportError
from material_transfer.retry import RetryPolicy

logger = logging.getLogger("material_transfer.orchestrator")

Sleep = Callable[[float], Awaitable[None]]


class AttemptState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"
    FAILED = "failed"


@dataclass
class GenerationAttempt:
    index: int
    prompt: str
    image_count: int
    state: AttemptState = AttemptState.IDLE


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    attempt: int
    max_attempts: int
    state: AttemptState
    message: str = ""


class ProgressChannel:
    """Queue of progress events written by the orchestrator.

    Events for an attempt are emitted before that attempt is sent. ``close()``
    ends async iteration.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    def drain(self) -> list[ProgressEvent]:
        """Pop every queued event without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is self._CLOSED:
                continue
            events.append(item)
        return events

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class GenerationOrchestrator:
    """Runs one logical model operation to a final outcome."""

    def __init__(
        self,
        client: ModelClient,
        progress: Optional[ProgressChannel] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.progress = progress
        self._sleep = sleep

    def _report(self, stage: str, attempt: GenerationAttempt, policy: RetryPolicy, message: str = "") -> None:
        if self.progress is None:
            return
        self.progress.emit(ProgressEvent(stage, attempt.index, policy.max_attempts, attempt.state, message))

    @staticmethod
    def _check_cancelled(cancel: Optional[asyncio.Event], stage: str) -> None:
        if cancel is not None and cancel.is_set():
            raise GenerationCancelled(f"{stage} cancelled")

    async def _backoff(self, delay: float, cancel: Optional[asyncio.Event], stage: str) -> None:
        if cancel is None:
            await self._sleep(delay)
            return
        waiter = asyncio.ensure_future(cancel.wait())
        sleeper = asyncio.ensure_future(self._sleep(delay))
        try:
            await asyncio.wait({waiter, sleeper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (waiter, sleeper):
                if not task.done():
                    task.cancel()
        self._check_cancelled(cancel, stage)

    async def run(
        self,
        request: ModelRequest,
        policy: RetryPolicy,
        stage: str = "generation",
        cancel: Optional[asyncio.Event] = None,
    ) -> ModelResponse:
        """Send ``request`` until it succeeds or the policy's budget runs out.

        Raises:
            RecitationRejected: every attempt was refused for similarity.
            TransportError: the last attempt failed at the transport level.
            GenerationCancelled: ``cancel`` was set before an attempt or during backoff.
        """
        response, _ = await self._execute(request, policy, stage, cancel)
        return response

    async def generate_text(
        self,
        request: ModelRequest,
        policy: RetryPolicy,
        stage: str = "analysis",
        cancel: Optional[asyncio.Event] = None,
    ) -> tuple[str, str]:
        """Text of the final response and the prompt that produced it."""
        response, sent = await self._execute(request, policy, stage, cancel)
        return extract_text(response), sent.prompt

    async def generate_image(
        self,
        request: ModelRequest,
        policy: RetryPolicy,
        stage: str = "generation",
        cancel: Optional[asyncio.Event] = None,
    ) -> tuple[ImagePart, str]:
        """Image of the final response and the prompt that produced it."""
        response, sent = await self._execute(request, policy, stage, cancel)
        return extract_image(response), sent.prompt

    async def _execute(
        self,
        request: ModelRequest,
        policy: RetryPolicy,
        stage: str,
        cancel: Optional[asyncio.Event],
    ) -> tuple[ModelResponse, ModelRequest]:
        current = policy.prepare(request)
        last_transport: Optional[TransportError] = None
        state = AttemptState.IDLE

        for index in range(1, policy.max_attempts + 1):
            self._check_cancelled(cancel, stage)
            attempt = GenerationAttempt(index, current.prompt, len(current.images), AttemptState.SENDING)
            self._report(stage, attempt, policy, f"Attempt {index}/{policy.max_attempts}")
            logger.debug("%s attempt %d/%d", stage, index, policy.max_attempts)

            try:
                response = await self.client.generate(current)
            except TransportError as exc:
                attempt.state = state = AttemptState.TRANSPORT_ERROR
                last_transport = exc
                logger.warning("%s attempt %d failed: %s", stage, index, exc)
                if index < policy.max_attempts:
                    self._report(stage, attempt, policy, f"Retrying in {policy.transport_backoff:g}s")
                    await self._backoff(policy.transport_backoff, cancel, stage)
                continue

            if response.is_recitation:
                attempt.state = state = AttemptState.REJECTED
                logger.warning("%s attempt %d rejected for recitation", stage, index)
                if index < policy.max_attempts:
                    self._report(stage, attempt, policy, "Content too similar, retrying with a modified request")
                    # Policies may re-crop and re-encode images.
                    current = await asyncio.to_thread(policy.on_rejected, index, current)
                continue

            attempt.state = AttemptState.SUCCEEDED
            self._report(stage, attempt, policy)
            logger.info("%s succeeded on attempt %d", stage, index)
            return response, current

        failed = GenerationAttempt(policy.max_attempts, current.prompt, len(current.images), AttemptState.FAILED)
        self._report(stage, failed, policy, "Attempt budget exhausted")
        if state is AttemptState.TRANSPORT_ERROR and last_transport is not None:
            raise TransportError(
                f"{stage} failed after {policy.max_attempts} attempts: {last_transport}",
                attempts=policy.max_attempts,
            ) from last_transport
        raise RecitationRejected(attempts=policy.max_attempts)


__all__ = [
    "AttemptState",
    "GenerationAttempt",
    "ProgressEvent",
    "ProgressChannel",
    "GenerationOrchestrator",
]
