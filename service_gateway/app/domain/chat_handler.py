"""
Chat completion request handling.

``ChatGatewayHandler`` drives one request through validation, prompt
normalization, the primary completion call and, when the completion looks cut
short, a single reprompt. Every state change is logged; the request id comes
from the logging context set by the HTTP middleware.
"""

import time
import uuid
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from shared.errors import GatewayError, InternalError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import Deadline, RetryPolicy

from ..prompts.normalizer import PromptNormalizer
from ..prompts.reprompt import RepromptBuilder, RequestKind, classify, requested_sections
from .models import ChatCompletionResponse, ChatRequest, CompletionResult, Message
from .provider_router import ProviderRouter
from .truncation import TruncationDetector


class HandlerState(str, Enum):
    VALIDATING = "validating"
    NORMALIZING = "normalizing"
    ATTEMPTING_PRIMARY = "attempting_primary"
    TRUNCATED_RETRY = "truncated_retry"
    SUCCESS = "success"
    HARD_FAILURE = "hard_failure"


def validate_chat_payload(payload: Any) -> ChatRequest:
    """Turn a decoded JSON body into a ChatRequest or raise ValidationError (400)."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    model = payload.get("model")
    if not isinstance(model, str) or not model.strip():
        raise ValidationError('The "model" parameter is required', details={"field": "model"})

    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages:
        raise ValidationError(
            'The "messages" parameter must be a non-empty array',
            details={"field": "messages"},
        )

    try:
        return ChatRequest.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid chat request",
            details={
                "errors": [
                    {"loc": [str(part) for part in error["loc"]], "msg": error["msg"]}
                    for error in exc.errors()
                ]
            },
        ) from exc


class ChatGatewayHandler:
    """Request pipeline for POST /chat."""

    def __init__(self,
                 router: ProviderRouter,
                 primary_policy: RetryPolicy,
                 reprompt_policy: RetryPolicy,
                 *,
                 normalizer: Optional[PromptNormalizer] = None,
                 detector: Optional[TruncationDetector] = None,
                 reprompt_builder: Optional[RepromptBuilder] = None,
                 deadline_seconds: float = 55.0,
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time,
                 metrics: Optional[MetricsCollector] = None):
        self.router = router
        self.primary_policy = primary_policy
        self.reprompt_policy = reprompt_policy
        self.normalizer = normalizer or PromptNormalizer()
        self.detector = detector or TruncationDetector()
        self.reprompt_builder = reprompt_builder or RepromptBuilder()
        self.deadline_seconds = deadline_seconds
        self.logger = get_logger("gateway.chat_handler")
        self._clock = clock
        self._wall_clock = wall_clock
        self._metrics = metrics

    def _transition(self, current: HandlerState, state: HandlerState, **fields) -> HandlerState:
        self.logger.info("Chat handler transition", from_state=current.value, to_state=state.value, **fields)
        return state

    def validate(self, payload: Any) -> ChatRequest:
        return validate_chat_payload(payload)

    def normalize_request(self, request: ChatRequest) -> ChatRequest:
        messages = [
            Message(role=m.role, content=self.normalizer.normalize(m.content))
            for m in request.messages
        ]
        return request.model_copy(update={"messages": messages})

    async def handle(self, payload: Any, allow_fallback: bool = True) -> ChatCompletionResponse:
        state = HandlerState.VALIDATING
        try:
            request = self.validate(payload)
            deadline = Deadline(self.deadline_seconds, clock=self._clock)

            kind = classify(request)
            state = self._transition(state, HandlerState.NORMALIZING, request_kind=kind.value)
            if kind.expects_long_form:
                request = self.normalize_request(request)

            state = self._transition(state, HandlerState.ATTEMPTING_PRIMARY, model=request.model)
            result = await self.router.complete(
                request,
                self.primary_policy,
                deadline=deadline,
                allow_fallback=allow_fallback,
            )

            sections = requested_sections(request.user_text())
            reasons = self.detector.reasons(result, sections, expect_long_form=kind.expects_long_form)
            if reasons:
                state = self._transition(state, HandlerState.TRUNCATED_RETRY, reasons=reasons)
                result = await self._reprompt(kind, request, result, deadline, allow_fallback)

            self._transition(
                state,
                HandlerState.SUCCESS,
                provider=result.provider,
                finish_reason=result.finish_reason,
                completion_tokens=result.usage.completion_tokens,
            )
            return ChatCompletionResponse.from_result(
                result,
                request_model=request.model,
                created=int(self._wall_clock()),
                fallback_id=f"chatcmpl-{uuid.uuid4().hex}",
            )

        except GatewayError as exc:
            self._transition(state, HandlerState.HARD_FAILURE, error_code=exc.code, error=exc.message)
            raise
        except Exception as exc:
            self._transition(state, HandlerState.HARD_FAILURE, error_code="INTERNAL_ERROR", error=str(exc))
            self.logger.error("Unexpected chat handler failure", exc_info=True)
            raise InternalError() from exc

    async def _reprompt(self,
                        kind: RequestKind,
                        request: ChatRequest,
                        first: CompletionResult,
                        deadline: Deadline,
                        allow_fallback: bool) -> CompletionResult:
        """Issue one reprompt and keep whichever completion is longer."""
        if deadline.expired():
            self.logger.warning("No time left for reprompt, returning first completion")
            self._record_reprompt(kind, "skipped")
            return first

        follow_up = self.reprompt_builder.build(kind, request)
        try:
            second = await self.router.complete(
                follow_up,
                self.reprompt_policy,
                deadline=deadline,
                allow_fallback=allow_fallback,
            )
        except GatewayError as exc:
            self.logger.warning(
                "Reprompt failed, returning first completion",
                error_code=exc.code,
                error=exc.message,
            )
            self._record_reprompt(kind, "failed")
            return first

        if len(second.content.strip()) > len(first.content.strip()):
            self.logger.info(
                "Reprompt produced a longer completion",
                first_chars=len(first.content),
                second_chars=len(second.content),
            )
            self._record_reprompt(kind, "improved")
            return second

        self._record_reprompt(kind, "kept_original")
        return first

    def _record_reprompt(self, kind: RequestKind, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.increment_counter("truncation_reprompts_total", request_kind=kind.value, outcome=outcome)
