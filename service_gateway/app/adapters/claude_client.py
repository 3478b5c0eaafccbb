"""
Anthropic Messages API client (fallback provider).
"""

from typing import Any, Dict, List

from shared.errors import AuthConfigError
from shared.logging import mask_secret

from ..domain.models import ChatRequest
from .provider_base import CompletionProviderClient

KEY_PREFIX = "sk-ant-"


class ClaudeClient(CompletionProviderClient):
    """Maps the chat request onto the Anthropic Messages schema.

    System messages move to the top-level ``system`` field and consecutive
    messages of the same role are merged, since the Messages API expects
    alternating user/assistant turns starting with the user.
    """

    kind = "claude"

    def __init__(self, api_key, api_url, http_client, max_tokens_ceiling: int = 4096,
                 model: str = "claude-3-5-sonnet-20241022", api_version: str = "2023-06-01"):
        super().__init__(api_key, api_url, http_client, max_tokens_ceiling)
        self.model = model
        self.api_version = api_version

    def validate_key(self) -> None:
        if not self.api_key.startswith(KEY_PREFIX):
            raise AuthConfigError(
                f"Claude API key must start with {KEY_PREFIX}",
                details={"api_key": mask_secret(self.api_key)},
            )

    def headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        system_parts = [m.content for m in request.messages if m.role == "system"]

        turns: List[Dict[str, str]] = []
        for message in request.messages:
            if message.role == "system":
                continue
            if turns and turns[-1]["role"] == message.role:
                turns[-1]["content"] += "\n\n" + message.content
            else:
                turns.append({"role": message.role, "content": message.content})

        if not turns or turns[0]["role"] != "user":
            turns.insert(0, {"role": "user", "content": "Continue."})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": turns,
            "max_tokens": self.effective_max_tokens(request),
            # Messages API accepts 0..1
            "temperature": min(self.effective_temperature(request), 1.0),
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        return payload
