"""
Primary/fallback routing across chat completion providers.
"""

from typing import Any, Callable, Dict, Optional

from shared.errors import AuthConfigError, DeadlineExceeded, GatewayError, UpstreamMalformedResponse, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import Deadline, RetryOrchestrator, RetryPolicy

from ..adapters.provider_base import CompletionProviderClient
from .models import ChatRequest, CompletionResult, Usage

CLAUDE_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize_openai(raw: Dict[str, Any]) -> CompletionResult:
    choice = raw["choices"][0]
    if "message" in choice:
        content = choice["message"]["content"] or ""
    else:
        content = choice["text"] or ""
    if not isinstance(content, str):
        raise TypeError("content is not a string")
    usage = raw.get("usage") or {}
    return CompletionResult(
        content=content,
        finish_reason=choice.get("finish_reason") or "stop",
        usage=Usage(
            prompt_tokens=_int(usage.get("prompt_tokens")),
            completion_tokens=_int(usage.get("completion_tokens")),
        ),
        id=raw.get("id"),
        model=raw.get("model"),
    )


def normalize_claude(raw: Dict[str, Any]) -> CompletionResult:
    blocks = raw["content"]
    if not isinstance(blocks, list):
        raise TypeError("content is not a list")
    content = "".join(
        block.get("text", "") for block in blocks
        if isinstance(block, dict) and block.get("type", "text") == "text"
    )
    stop_reason = raw.get("stop_reason") or "end_turn"
    usage = raw.get("usage") or {}
    return CompletionResult(
        content=content,
        finish_reason=CLAUDE_STOP_REASONS.get(stop_reason, stop_reason),
        usage=Usage(
            prompt_tokens=_int(usage.get("input_tokens")),
            completion_tokens=_int(usage.get("output_tokens")),
        ),
        id=raw.get("id"),
        model=raw.get("model"),
    )


NORMALIZERS: Dict[str, Callable[[Dict[str, Any]], CompletionResult]] = {
    "together": normalize_openai,
    "openai": normalize_openai,
    "claude": normalize_claude,
}


class ProviderRouter:
    """Sends a chat request to the primary provider, falling back when it fails for good."""

    def __init__(self,
                 primary: CompletionProviderClient,
                 fallback: Optional[CompletionProviderClient],
                 orchestrator: RetryOrchestrator,
                 upstream_timeout: float = 15.0,
                 metrics: Optional[MetricsCollector] = None):
        self.primary = primary
        self.fallback = fallback
        self.orchestrator = orchestrator
        self.upstream_timeout = upstream_timeout
        self.logger = get_logger("gateway.provider_router")
        self._metrics = metrics

    @property
    def available(self) -> bool:
        return self.primary.configured or bool(self.fallback and self.fallback.configured)

    @staticmethod
    def normalize(raw: Dict[str, Any], provider_kind: str) -> CompletionResult:
        """Reshape a raw provider body into a CompletionResult."""
        try:
            normalizer = NORMALIZERS[provider_kind]
        except KeyError:
            raise ValueError(f"Unknown provider kind: {provider_kind}")
        try:
            result = normalizer(raw)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise UpstreamMalformedResponse(
                provider_kind,
                "Response is missing completion content",
                details={"error": repr(exc)},
            ) from exc
        return CompletionResult(
            content=result.content,
            finish_reason=result.finish_reason,
            usage=result.usage,
            id=result.id,
            model=result.model,
            provider=provider_kind,
        )

    async def complete(self,
                       request: ChatRequest,
                       policy: RetryPolicy,
                       deadline: Optional[Deadline] = None,
                       allow_fallback: bool = True) -> CompletionResult:
        fallback = self.fallback if self.fallback is not None and self.fallback.configured else None

        if not self.primary.configured:
            if fallback is None:
                raise AuthConfigError("No completion provider API key is configured")
            self.logger.info("Primary provider not configured, using fallback", provider=fallback.kind)
            return await self._run(fallback, request, policy, deadline)

        try:
            return await self._run(self.primary, request, policy, deadline)
        except (ValidationError, DeadlineExceeded):
            raise
        except GatewayError as primary_error:
            if fallback is None or not allow_fallback:
                raise

            self.logger.warning(
                "Primary provider failed, trying fallback",
                primary=self.primary.kind,
                fallback=fallback.kind,
                error_code=primary_error.code,
                error=primary_error.message,
            )
            try:
                result = await self._run(fallback, request, policy, deadline)
            except GatewayError as fallback_error:
                self._record_fallback("failure")
                self.logger.error(
                    "Fallback provider failed",
                    fallback=fallback.kind,
                    error_code=fallback_error.code,
                    error=fallback_error.message,
                )
                raise primary_error
            self._record_fallback("success")
            return result

    async def _run(self,
                   client: CompletionProviderClient,
                   request: ChatRequest,
                   policy: RetryPolicy,
                   deadline: Optional[Deadline]) -> CompletionResult:

        async def attempt() -> CompletionResult:
            timeout = self.upstream_timeout
            if deadline is not None:
                timeout = min(timeout, deadline.remaining())
                if timeout <= 0:
                    raise DeadlineExceeded(details={"provider": client.kind})
            try:
                raw = await client.send(request, timeout)
                result = self.normalize(raw, client.kind)
            except GatewayError as exc:
                self._record_upstream(client.kind, exc.code.lower())
                raise
            self._record_upstream(client.kind, "success")
            return result

        return await self.orchestrator.execute(
            attempt,
            policy,
            deadline=deadline,
            label=f"{client.kind}_completion",
        )

    def _record_upstream(self, provider: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.increment_counter("upstream_requests_total", provider=provider, outcome=outcome)

    def _record_fallback(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.increment_counter("provider_fallbacks_total", outcome=outcome)
