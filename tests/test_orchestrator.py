"""Tests for the generation retry loop."""

import asyncio
import threading

import pytest

from conftest import FakeSleep, StubModelClient, image_response, recitation_response, text_response
from material_transfer.client import ModelRequest, ModelResponse, ResponseKind
from material_transfer.errors import (
    ConfigurationError,
    GenerationCancelled,
    NoContentReturned,
    RecitationRejected,
    TransportError,
)
from material_transfer.orchestrator import AttemptState, GenerationOrchestrator, ProgressChannel
from material_transfer.retry import PromptSaltPolicy


def _request(expect: ResponseKind = ResponseKind.IMAGE) -> ModelRequest:
    return ModelRequest("model", "Make something", expect=expect)


class TestRecitationRetries:
    """Tests for recitation handling."""

    def test_succeeds_on_third_attempt(self):
        """Test two rejections followed by success within a budget of five."""
        success = image_response()
        client = StubModelClient([recitation_response(), recitation_response(), success])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())

        async def run_test():
            response = await orchestrator.run(_request(), PromptSaltPolicy(5))
            assert response is success

        asyncio.run(run_test())
        assert client.calls == 3
        assert client.prompts[2] != client.prompts[0]

    def test_exhaustion_raises_with_attempt_count(self):
        """Test that a model that always rejects gets exactly five calls."""
        client = StubModelClient([recitation_response()])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())

        async def run_test():
            with pytest.raises(RecitationRejected) as excinfo:
                await orchestrator.run(_request(), PromptSaltPolicy(5))
            assert excinfo.value.attempts == 5

        asyncio.run(run_test())
        assert client.calls == 5

    def test_recitation_retries_without_backoff(self):
        sleep = FakeSleep()
        client = StubModelClient([recitation_response(), image_response()])
        orchestrator = GenerationOrchestrator(client, sleep=sleep)
        asyncio.run(orchestrator.run(_request(), PromptSaltPolicy(3)))
        assert sleep.delays == []

    def test_every_prompt_carries_nonce(self):
        client = StubModelClient([recitation_response(), image_response()])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())
        asyncio.run(orchestrator.run(_request(), PromptSaltPolicy(3)))
        assert all("[Session: " in prompt for prompt in client.prompts)


class TestTransportRetries:
    """Tests for transport failure handling."""

    def test_backoff_then_success(self):
        sleep = FakeSleep()
        client = StubModelClient([TransportError("boom"), image_response()])
        orchestrator = GenerationOrchestrator(client, sleep=sleep)
        asyncio.run(orchestrator.run(_request(), PromptSaltPolicy(3, transport_backoff=1.0)))
        assert sleep.delays == [1.0]
        assert client.calls == 2
        # Transport retries resend the same request.
        assert client.prompts[0] == client.prompts[1]

    def test_transport_exhaustion(self):
        sleep = FakeSleep()
        client = StubModelClient([TransportError("down")])
        orchestrator = GenerationOrchestrator(client, sleep=sleep)

        async def run_test():
            with pytest.raises(TransportError) as excinfo:
                await orchestrator.run(_request(), PromptSaltPolicy(3))
            assert excinfo.value.attempts == 3

        asyncio.run(run_test())
        assert client.calls == 3
        # No wait after the final attempt.
        assert len(sleep.delays) == 2

    def test_last_outcome_decides_error(self):
        client = StubModelClient([TransportError("down"), recitation_response()])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())
        with pytest.raises(RecitationRejected):
            asyncio.run(orchestrator.run(_request(), PromptSaltPolicy(2)))

    def test_configuration_error_not_retried(self):
        client = StubModelClient([ConfigurationError("no key")])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())
        with pytest.raises(ConfigurationError):
            asyncio.run(orchestrator.run(_request(), PromptSaltPolicy(5)))
        assert client.calls == 1


class TestValidation:
    """Tests for response validation."""

    def test_missing_image_not_retried(self):
        client = StubModelClient([ModelResponse(finish_reason="STOP", text="sorry")])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())
        with pytest.raises(NoContentReturned):
            asyncio.run(orchestrator.generate_image(_request(), PromptSaltPolicy(5)))
        assert client.calls == 1

    def test_missing_text_not_retried(self):
        client = StubModelClient([ModelResponse(finish_reason="STOP")])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())
        with pytest.raises(NoContentReturned):
            asyncio.run(orchestrator.generate_text(_request(ResponseKind.TEXT), PromptSaltPolicy(5)))
        assert client.calls == 1

    def test_generate_text_returns_prompt_sent(self):
        client = StubModelClient([recitation_response(), text_response("Oak wood")])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())
        text, prompt = asyncio.run(orchestrator.generate_text(_request(ResponseKind.TEXT), PromptSaltPolicy(5)))
        assert text == "Oak wood"
        assert prompt == client.prompts[-1]


class TestProgress:
    """Tests for progress reporting."""

    def test_events_precede_attempts(self):
        async def run_test():
            progress = ProgressChannel()
            client = StubModelClient([recitation_response(), image_response()])
            orchestrator = GenerationOrchestrator(client, progress=progress, sleep=FakeSleep())
            await orchestrator.run(_request(), PromptSaltPolicy(5), stage="texture")
            return progress.drain()

        events = asyncio.run(run_test())
        sending = [event for event in events if event.state is AttemptState.SENDING]
        assert [event.attempt for event in sending] == [1, 2]
        assert events[-1].state is AttemptState.SUCCEEDED
        assert all(event.stage == "texture" for event in events)
        assert any(event.state is AttemptState.REJECTED for event in events)

    def test_failed_event_on_exhaustion(self):
        async def run_test():
            progress = ProgressChannel()
            orchestrator = GenerationOrchestrator(
                StubModelClient([recitation_response()]), progress=progress, sleep=FakeSleep()
            )
            with pytest.raises(RecitationRejected):
                await orchestrator.run(_request(), PromptSaltPolicy(2))
            return progress.drain()

        events = asyncio.run(run_test())
        assert events[-1].state is AttemptState.FAILED

    def test_async_iteration_stops_on_close(self):
        async def run_test():
            progress = ProgressChannel()
            received = []

            async def consume():
                async for event in progress:
                    received.append(event)

            consumer = asyncio.create_task(consume())
            orchestrator = GenerationOrchestrator(
                StubModelClient([image_response()]), progress=progress, sleep=FakeSleep()
            )
            await orchestrator.run(_request(), PromptSaltPolicy(1))
            progress.close()
            await asyncio.wait_for(consumer, timeout=1)
            return received

        received = asyncio.run(run_test())
        assert [event.state for event in received] == [AttemptState.SENDING, AttemptState.SUCCEEDED]


class TestCancellation:
    """Tests for cancelling a run."""

    def test_cancel_before_first_attempt(self):
        client = StubModelClient([image_response()])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())

        async def run_test():
            cancel = asyncio.Event()
            cancel.set()
            with pytest.raises(GenerationCancelled):
                await orchestrator.run(_request(), PromptSaltPolicy(3), cancel=cancel)

        asyncio.run(run_test())
        assert client.calls == 0

    def test_cancel_during_backoff(self):
        client = StubModelClient([TransportError("down"), image_response()])

        async def run_test():
            cancel = asyncio.Event()

            async def slow_sleep(delay):
                cancel.set()
                await asyncio.sleep(10)

            orchestrator = GenerationOrchestrator(client, sleep=slow_sleep)
            with pytest.raises(GenerationCancelled):
                await asyncio.wait_for(
                    orchestrator.run(_request(), PromptSaltPolicy(3), cancel=cancel), timeout=2
                )

        asyncio.run(run_test())
        assert client.calls == 1


class _ThreadRecordingPolicy(PromptSaltPolicy):
    def __init__(self, max_attempts: int):
        super().__init__(max_attempts)
        self.threads = []

    def on_rejected(self, attempt, request):
        self.threads.append(threading.get_ident())
        return super().on_rejected(attempt, request)


class TestRequestMutation:
    def test_rejection_handled_off_event_loop(self):
        """Test that request mutation (re-crops, re-encodes) runs in a worker thread."""
        policy = _ThreadRecordingPolicy(3)
        client = StubModelClient([recitation_response(), image_response()])
        orchestrator = GenerationOrchestrator(client, sleep=FakeSleep())

        async def run_test():
            await orchestrator.run(_request(), policy)
            return threading.get_ident()

        loop_thread = asyncio.run(run_test())
        assert len(policy.threads) == 1
        assert policy.threads[0] != loop_thread
        assert client.calls == 2
