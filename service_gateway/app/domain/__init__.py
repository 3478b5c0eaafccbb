"""
Domain layer for the completion gateway.

Request/response models, truncation heuristics, provider routing and the chat
request pipeline.
"""

from .models import ChatCompletionResponse, ChatRequest, CompletionResult, Message, Usage
from .truncation import TruncationDetector, TruncationThresholds

__all__ = [
    "ChatCompletionResponse",
    "ChatRequest",
    "CompletionResult",
    "Message",
    "TruncationDetector",
    "TruncationThresholds",
    "Usage",
]
