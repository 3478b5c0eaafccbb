"""
Unit and end-to-end tests for the chat request pipeline.
"""

import json

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gateway.app.adapters.claude_client import ClaudeClient
from service_gateway.app.adapters.together_client import TogetherClient
from service_gateway.app.domain.chat_handler import ChatGatewayHandler, validate_chat_payload
from service_gateway.app.domain.provider_router import ProviderRouter
from service_gateway.app.prompts.reprompt import COMPLETENESS_INSTRUCTION
from shared.errors import DeadlineExceeded, UpstreamAuthError, UpstreamServerError, ValidationError
from shared.retry import RetryOrchestrator, RetryPolicy

TOGETHER_URL = "https://together.test/v1/chat/completions"
CLAUDE_URL = "https://claude.test/v1/messages"

PRIMARY = RetryPolicy(max_attempts=3, base_delay_ms=1000, backoff_factor=2.0, jitter_ms=500)
REPROMPT = RetryPolicy(max_attempts=2, base_delay_ms=500, backoff_factor=2.0, jitter_ms=250)

READING_PROMPT = (
    "Generate a concise Vedic astrological reading for Priya born on 1990-05-15 "
    "at 10:30 Indian Standard Time (IST) in Mumbai, India.\n\n"
    "Planet Positions:\nSun: Taurus at 0.4°\nMoon: Cancer at 5.2°\n\n"
    "## Birth Data\n## Key Strengths\n## Potential Challenges\n"
)

FULL_READING = "\n".join(
    f"## {title}\n" + ("A detailed and balanced paragraph about this part of the chart. " * 8)
    for title in ("Birth Data", "Key Strengths", "Potential Challenges")
)


def completion(content, finish_reason="stop", completion_tokens=400):
    return {
        "id": "tg-1",
        "model": "m",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 50, "completion_tokens": completion_tokens, "total_tokens": 50 + completion_tokens},
    }


class FakeTime:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class Upstream:
    """Scripted provider responses; exceptions are raised from the transport."""

    def __init__(self, together=None, claude=None):
        self.scripts = {TOGETHER_URL: list(together or []), CLAUDE_URL: list(claude or [])}
        self.requests = {TOGETHER_URL: [], CLAUDE_URL: []}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests[url].append(json.loads(request.content))
        step = self.scripts[url].pop(0)
        if isinstance(step, Exception):
            raise step
        if isinstance(step, httpx.Response):
            return step
        return httpx.Response(200, json=step)

    @property
    def calls(self) -> int:
        return len(self.requests[TOGETHER_URL]) + len(self.requests[CLAUDE_URL])


def make_handler(upstream, fake_time, deadline_seconds=55.0, claude_key=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    router = ProviderRouter(
        TogetherClient("tk-test", TOGETHER_URL, client),
        ClaudeClient(claude_key, CLAUDE_URL, client),
        RetryOrchestrator(sleep=fake_time.sleep),
    )
    return ChatGatewayHandler(
        router,
        PRIMARY,
        REPROMPT,
        deadline_seconds=deadline_seconds,
        clock=fake_time.clock,
        wall_clock=lambda: 1_700_000_000.0,
    )


class TestValidation:
    """Test cases for request validation."""

    @pytest.mark.parametrize("payload", [
        None,
        [],
        "hello",
        {},
        {"model": "", "messages": [{"role": "user", "content": "hi"}]},
        {"model": "m"},
        {"model": "m", "messages": []},
        {"model": "m", "messages": "hi"},
        {"model": "m", "messages": [{"role": "wizard", "content": "hi"}]},
        {"model": "m", "messages": [{"role": "user"}]},
    ])
    def test_invalid_payloads_rejected(self, payload):
        """Test malformed requests raise a 400 ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            validate_chat_payload(payload)
        assert exc_info.value.status_code == 400

    def test_unknown_fields_ignored(self):
        """Test extra fields are tolerated."""
        request = validate_chat_payload({
            "model": "m",
            "messages": [{"role": "user", "content": "hi", "name": "x"}],
            "stream": False,
        })

        assert request.messages[0].content == "hi"

    @pytest.mark.asyncio
    async def test_invalid_request_makes_no_network_call(self):
        """Test validation failures never reach a provider."""
        upstream = Upstream()
        handler = make_handler(upstream, FakeTime())

        with pytest.raises(ValidationError):
            await handler.handle({"messages": [{"role": "user", "content": "hi"}]})

        assert upstream.calls == 0


class TestChatGatewayHandler:
    """End-to-end scenarios through the handler with a scripted provider."""

    @pytest.fixture
    def fake_time(self):
        return FakeTime()

    @pytest.mark.asyncio
    async def test_complete_answer_returned_unmodified(self, fake_time):
        """Test a stop/400-token answer is returned as-is with no retry."""
        content = "Aries is the first sign of the zodiac, ruled by Mars."
        upstream = Upstream(together=[completion(content)])
        handler = make_handler(upstream, fake_time)

        response = await handler.handle({"model": "m", "messages": [{"role": "user", "content": "Tell me about Aries"}]})

        body = response.model_dump()
        assert body["object"] == "chat.completion"
        assert body["choices"][0]["message"] == {"role": "assistant", "content": content}
        assert body["choices"][0]["finish_reason"] == "stop"
        assert body["usage"] == {"prompt_tokens": 50, "completion_tokens": 400, "total_tokens": 450}
        assert body["created"] == 1_700_000_000
        assert upstream.calls == 1
        assert fake_time.sleeps == []

    @pytest.mark.asyncio
    async def test_two_timeouts_then_success(self, fake_time):
        """Test backoff of about 1s then 2s before the third attempt succeeds."""
        upstream = Upstream(together=[
            httpx.ReadTimeout("timed out"),
            httpx.ReadTimeout("timed out"),
            completion("Aries is bold and direct."),
        ])
        handler = make_handler(upstream, fake_time)

        response = await handler.handle({"model": "m", "messages": [{"role": "user", "content": "Tell me about Aries"}]})

        assert response.choices[0].message.content == "Aries is bold and direct."
        first, second = fake_time.sleeps
        assert 1.0 <= first <= 1.5
        assert 2.0 <= second <= 2.5
        assert 3.0 <= fake_time.now <= 4.0

    @pytest.mark.asyncio
    async def test_truncated_reading_is_reprompted(self, fake_time):
        """Test a short reading triggers one reprompt built from birth details."""
        upstream = Upstream(together=[
            completion("## Birth Data\nPriya, Taurus Sun.", completion_tokens=40),
            completion(FULL_READING, completion_tokens=900),
        ])
        handler = make_handler(upstream, fake_time)

        response = await handler.handle({"model": "m", "messages": [{"role": "user", "content": READING_PROMPT}]})

        assert response.choices[0].message.content == FULL_READING
        first_request, reprompt = upstream.requests[TOGETHER_URL]

        sent_prompt = first_request["messages"][0]["content"]
        assert "5.2°" not in sent_prompt
        assert "Moon: Cancer" in sent_prompt

        assert reprompt["messages"][0] == {"role": "system", "content": COMPLETENESS_INSTRUCTION}
        assert "Priya born on 1990-05-15 at 10:30 in Mumbai, India" in reprompt["messages"][1]["content"]
        assert reprompt["max_tokens"] == 10000

    @pytest.mark.asyncio
    async def test_shorter_reprompt_keeps_first_answer(self, fake_time):
        """Test the longer of the two completions is returned."""
        first = "## Birth Data\nPriya was born in Mumbai under a Taurus Sun and a Cancer Moon."
        upstream = Upstream(together=[
            completion(first, completion_tokens=40),
            completion("Short.", completion_tokens=5),
        ])
        handler = make_handler(upstream, fake_time)

        response = await handler.handle({"model": "m", "messages": [{"role": "user", "content": READING_PROMPT}]})

        assert response.choices[0].message.content == first

    @pytest.mark.asyncio
    async def test_failed_reprompt_returns_first_answer(self, fake_time):
        """Test a failing reprompt does not fail the request."""
        first = "## Birth Data\nPriya, Taurus Sun."
        upstream = Upstream(together=[
            completion(first, completion_tokens=40),
            httpx.Response(500),
            httpx.Response(500),
        ])
        handler = make_handler(upstream, fake_time)

        response = await handler.handle({"model": "m", "messages": [{"role": "user", "content": READING_PROMPT}]})

        assert response.choices[0].message.content == first
        assert len(fake_time.sleeps) == 1

    @pytest.mark.asyncio
    async def test_length_cutoff_on_general_request_is_reprompted(self, fake_time):
        """Test finish_reason length triggers a reprompt for any request."""
        upstream = Upstream(together=[
            completion("Aries is", finish_reason="length", completion_tokens=3),
            completion("Aries is the first sign of the zodiac."),
        ])
        handler = make_handler(upstream, fake_time)

        response = await handler.handle({"model": "m", "messages": [{"role": "user", "content": "Tell me about Aries"}]})

        assert response.choices[0].message.content == "Aries is the first sign of the zodiac."
        reprompt = upstream.requests[TOGETHER_URL][1]
        assert reprompt["messages"][-1]["content"] == "Tell me about Aries"

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_hard(self, fake_time):
        """Test the last upstream error surfaces when no fallback is configured."""
        upstream = Upstream(together=[httpx.Response(503) for _ in range(3)])
        handler = make_handler(upstream, fake_time)

        with pytest.raises(UpstreamServerError):
            await handler.handle({"model": "m", "messages": [{"role": "user", "content": "hi"}]})

    @pytest.mark.asyncio
    async def test_deadline_stops_retries(self, fake_time):
        """Test a short request budget fails fast instead of sleeping past it."""
        upstream = Upstream(together=[httpx.ReadTimeout("timed out") for _ in range(3)])
        handler = make_handler(upstream, fake_time, deadline_seconds=2.0)

        with pytest.raises(DeadlineExceeded):
            await handler.handle({"model": "m", "messages": [{"role": "user", "content": "hi"}]})

        assert fake_time.now <= 2.0

    @pytest.mark.asyncio
    async def test_no_fallback_flag(self, fake_time):
        """Test allow_fallback=False keeps the request on the primary."""
        upstream = Upstream(together=[httpx.Response(401)], claude=[{"content": [{"type": "text", "text": "x"}]}])
        handler = make_handler(upstream, fake_time, claude_key="sk-ant-test")

        with pytest.raises(UpstreamAuthError):
            await handler.handle(
                {"model": "m", "messages": [{"role": "user", "content": "hi"}]},
                allow_fallback=False,
            )

        assert upstream.requests[CLAUDE_URL] == []
