"""
Common HTTP plumbing for chat completion providers.
"""

from typing import Any, Dict, Optional

import httpx

from shared.errors import (
    AuthConfigError,
    UpstreamAuthError,
    UpstreamMalformedResponse,
    UpstreamRequestError,
    UpstreamServerError,
    UpstreamTimeout,
)
from shared.logging import get_logger, mask_secret

from ..domain.models import ChatRequest

DEFAULT_TEMPERATURE = 0.7
RESPONSE_LOG_LIMIT = 500


class CompletionProviderClient:
    """Base class for a chat completion provider.

    Subclasses describe the wire format (``build_payload``, ``headers``); this
    class owns the POST and the mapping of HTTP failures onto gateway errors.
    Responses are returned as raw JSON; reshaping happens in the router.
    """

    kind = "provider"

    def __init__(self,
                 api_key: Optional[str],
                 api_url: str,
                 http_client: httpx.AsyncClient,
                 max_tokens_ceiling: int):
        self.api_key = api_key
        self.api_url = api_url
        self.max_tokens_ceiling = max_tokens_ceiling
        self.logger = get_logger(f"gateway.provider.{self.kind}")
        self._client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def validate_key(self) -> None:
        """Raise AuthConfigError for a key the provider would reject outright."""

    def effective_max_tokens(self, request: ChatRequest) -> int:
        if request.max_tokens is None:
            return self.max_tokens_ceiling
        return min(request.max_tokens, self.max_tokens_ceiling)

    @staticmethod
    def effective_temperature(request: ChatRequest) -> float:
        return DEFAULT_TEMPERATURE if request.temperature is None else request.temperature

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        raise NotImplementedError

    async def send(self, request: ChatRequest, timeout: float) -> Dict[str, Any]:
        """POST one completion request and return the decoded JSON body."""
        if not self.configured:
            raise AuthConfigError(f"{self.kind} API key is not configured")
        self.validate_key()

        payload = self.build_payload(request)
        self.logger.info(
            "Sending completion request",
            url=self.api_url,
            model=payload.get("model"),
            max_tokens=payload.get("max_tokens"),
            message_count=len(payload.get("messages", [])),
            api_key=mask_secret(self.api_key),
            timeout=round(timeout, 3),
        )

        try:
            response = await self._client.post(
                self.api_url,
                json=payload,
                headers=self.headers(),
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            self.logger.warning("Completion request timed out", timeout=round(timeout, 3))
            raise UpstreamTimeout(self.kind, details={"timeout_seconds": round(timeout, 3)}) from exc
        except httpx.HTTPError as exc:
            self.logger.error("Completion request failed", error=str(exc))
            raise UpstreamServerError(self.kind, "Provider unreachable", details={"error": str(exc)}) from exc

        if response.status_code != 200:
            raise self._status_error(response)

        try:
            body = response.json()
        except ValueError as exc:
            self.logger.error("Completion response is not JSON", response=response.text[:RESPONSE_LOG_LIMIT])
            raise UpstreamMalformedResponse(self.kind, "Response body is not JSON") from exc

        if not isinstance(body, dict):
            raise UpstreamMalformedResponse(self.kind, "Response body is not an object")
        return body

    def _status_error(self, response: httpx.Response) -> Exception:
        status = response.status_code
        text = response.text[:RESPONSE_LOG_LIMIT]
        details = {"status_code": status, "body": text}
        self.logger.error("Completion request rejected", status_code=status, response=text)

        if status in (401, 403):
            return UpstreamAuthError(self.kind, details={"status_code": status})
        if status == 429 or status >= 500:
            return UpstreamServerError(self.kind, f"Unexpected status {status}", details=details)
        return UpstreamRequestError(self.kind, f"Unexpected status {status}", details=details)
