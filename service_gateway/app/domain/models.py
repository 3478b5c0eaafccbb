"""
Request, response and internal result types for the completion gateway.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """One chat message."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Inbound chat completion request (OpenAI-compatible subset)."""

    model_config = ConfigDict(extra="ignore")

    model: str = Field(min_length=1)
    messages: List[Message] = Field(min_length=1)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, gt=0)

    def user_text(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == "user")


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class CompletionResult:
    """Provider-independent completion."""

    content: str
    finish_reason: str
    usage: Usage = field(default_factory=Usage)
    id: Optional[str] = None
    model: Optional[str] = None
    provider: Optional[str] = None


class ChoiceMessage(BaseModel):
    role: str = "assistant"
    content: str


class Choice(BaseModel):
    index: int = 0
    message: ChoiceMessage
    finish_reason: str


class UsageBody(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatCompletionResponse(BaseModel):
    """OpenAI-compatible response, whichever provider served it."""

    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: UsageBody

    @classmethod
    def from_result(cls, result: CompletionResult, *, request_model: str, created: int,
                    fallback_id: str) -> "ChatCompletionResponse":
        return cls(
            id=result.id or fallback_id,
            created=created,
            model=result.model or request_model,
            choices=[
                Choice(
                    message=ChoiceMessage(content=result.content),
                    finish_reason=result.finish_reason,
                )
            ],
            usage=UsageBody(
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            ),
        )


class ChatHealthResponse(BaseModel):
    status: str = "ok"
    api_key_available: bool
    timestamp: str
