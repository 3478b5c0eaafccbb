"""
Together AI chat completions client (primary provider).
"""

from typing import Any, Dict

from ..domain.models import ChatRequest
from .provider_base import CompletionProviderClient


class TogetherClient(CompletionProviderClient):
    """OpenAI-compatible chat completions on Together AI."""

    kind = "together"

    def __init__(self, api_key, api_url, http_client, max_tokens_ceiling: int = 10000,
                 default_model: str = "mistralai/Mixtral-8x7B-Instruct-v0.1"):
        super().__init__(api_key, api_url, http_client, max_tokens_ceiling)
        self.default_model = default_model

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        return {
            "model": request.model or self.default_model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "temperature": self.effective_temperature(request),
            "max_tokens": self.effective_max_tokens(request),
        }
