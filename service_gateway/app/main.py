"""
Completion gateway service for Astro Insights.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from fastapi import Header, Query, Request, Response

from shared.base_service import BaseService
from shared.config import GatewayConfig
from shared.errors import ValidationError
from shared.retry import RetryOrchestrator, RetryPolicy

from .adapters.claude_client import ClaudeClient
from .adapters.geocode_client import GeocodeClient
from .adapters.prokerala_client import ProkeralaClient
from .adapters.together_client import TogetherClient
from .auth.token_cache import TokenCache
from .domain.chat_handler import ChatGatewayHandler
from .domain.models import ChatHealthResponse
from .domain.provider_router import ProviderRouter
from .domain.truncation import TruncationDetector, TruncationThresholds
from .ratelimit.fixed_window import FixedWindowRateLimiter

TRUTHY = {"1", "true", "yes", "on"}


def _truthy(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() in TRUTHY


class GatewayService(BaseService):
    """Completion gateway and astrology data proxy."""

    def __init__(self,
                 config: Optional[GatewayConfig] = None,
                 http_client: Optional[httpx.AsyncClient] = None,
                 sleep=None):
        super().__init__("gateway", config)
        cfg = self.config

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=cfg.upstream_timeout_seconds)

        self.primary_policy = RetryPolicy(
            max_attempts=cfg.retry_max_attempts,
            base_delay_ms=cfg.retry_base_delay_ms,
            backoff_factor=cfg.retry_backoff_factor,
            jitter_ms=cfg.retry_jitter_ms,
        )
        self.reprompt_policy = RetryPolicy(
            max_attempts=cfg.reprompt_max_attempts,
            base_delay_ms=cfg.reprompt_base_delay_ms,
            backoff_factor=cfg.reprompt_backoff_factor,
            jitter_ms=cfg.reprompt_jitter_ms,
        )
        self.orchestrator = RetryOrchestrator(
            "completion",
            sleep=sleep or asyncio.sleep,
            on_retry=self._record_retry,
        )

        self.together_client = TogetherClient(
            cfg.together_api_key,
            cfg.together_api_url,
            self.http_client,
            max_tokens_ceiling=cfg.together_max_tokens,
            default_model=cfg.together_default_model,
        )
        self.claude_client = ClaudeClient(
            cfg.claude_api_key,
            cfg.claude_api_url,
            self.http_client,
            max_tokens_ceiling=cfg.claude_max_tokens,
            model=cfg.claude_model,
            api_version=cfg.claude_api_version,
        )
        self.provider_router = ProviderRouter(
            self.together_client,
            self.claude_client,
            self.orchestrator,
            upstream_timeout=cfg.upstream_timeout_seconds,
            metrics=self.metrics,
        )
        self.chat_handler = ChatGatewayHandler(
            self.provider_router,
            self.primary_policy,
            self.reprompt_policy,
            detector=TruncationDetector(TruncationThresholds.from_config(cfg)),
            deadline_seconds=cfg.request_deadline_seconds,
            metrics=self.metrics,
        )

        self.token_cache = TokenCache(
            cfg.prokerala_client_id,
            cfg.prokerala_client_secret,
            cfg.prokerala_token_url,
            self.http_client,
            safety_margin_ms=cfg.token_safety_margin_ms,
            metrics=self.metrics,
        )
        self.rate_limiter = FixedWindowRateLimiter(
            limit=cfg.rate_limit_count,
            window_size_ms=cfg.rate_limit_window_ms,
            metrics=self.metrics,
        )
        self.prokerala_client = ProkeralaClient(
            cfg.prokerala_api_url,
            self.token_cache,
            self.rate_limiter,
            self.http_client,
            timeout=cfg.upstream_timeout_seconds,
        )
        self.geocode_client = GeocodeClient(
            cfg.geocode_url,
            self.http_client,
            user_agent=cfg.geocode_user_agent,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self._owns_client:
                await self.http_client.aclose()

        self._setup_chat_routes()
        self._setup_astrology_routes()

        self.app.state.gateway_service = self

    def _record_retry(self, operation: str, attempt: int, exc: BaseException) -> None:
        self.metrics.increment_counter("upstream_retries_total", operation=operation)

    def _dependency_status(self) -> Dict[str, Any]:
        return {
            "together_configured": self.together_client.configured,
            "claude_configured": self.claude_client.configured,
            "prokerala": self.token_cache.status(),
            "rate_limit": self.rate_limiter.status(),
        }

    def _set_rate_limit_headers(self, response: Response) -> None:
        """Propagate rate limiting metadata via standard headers."""
        status = self.rate_limiter.status()
        response.headers["X-RateLimit-Limit"] = str(status["limit"])
        response.headers["X-RateLimit-Remaining"] = str(status["remaining"])
        response.headers["X-RateLimit-Reset"] = str(status["reset_in_seconds"])

    def _setup_chat_routes(self):
        """Set up chat completion routes."""

        @self.app.post("/chat")
        async def chat(
            request: Request,
            test_mode: bool = Query(False),
            x_no_fallback: Optional[str] = Header(None),
        ):
            """Proxy a chat completion to the configured providers."""
            try:
                payload = await request.json()
            except ValueError as exc:
                raise ValidationError("Request body must be valid JSON") from exc

            if test_mode:
                chat_request = self.chat_handler.validate(payload)
                return {
                    "status": "ok",
                    "message": "Test mode: request validated, no upstream call made",
                    "request_received": {
                        "model": chat_request.model,
                        "message_count": len(chat_request.messages),
                    },
                }

            completion = await self.chat_handler.handle(payload, allow_fallback=not _truthy(x_no_fallback))
            return completion.model_dump()

        @self.app.get("/chat")
        async def chat_health(request: Request):
            """``GET /chat?health`` reports whether a completion key is configured."""
            if "health" not in request.query_params:
                raise ValidationError("Use POST /chat for completions or GET /chat?health for status")
            return ChatHealthResponse(
                api_key_available=self.provider_router.available,
                timestamp=datetime.now(timezone.utc).isoformat(),
            ).model_dump()

    def _setup_astrology_routes(self):
        """Set up astrology data and geocoding routes."""

        @self.app.get("/astrology/{endpoint}")
        async def astrology_data(endpoint: str, request: Request, response: Response):
            """Fetch planet positions, kundli or a chart from the data provider."""
            query = dict(request.query_params)
            if not query.get("coordinates") and query.get("place"):
                query["coordinates"] = await self.geocode_client.resolve(query["place"])

            data = await self.prokerala_client.get(endpoint, query)
            self._set_rate_limit_headers(response)
            return {"success": True, "data": data}

        @self.app.get("/geocode")
        async def geocode(q: str = Query("")):
            """Search place names."""
            return await self.geocode_client.search(q)


def create_app(config: Optional[GatewayConfig] = None,
               http_client: Optional[httpx.AsyncClient] = None,
               sleep=None):
    """Create FastAPI application."""
    service = GatewayService(config=config, http_client=http_client, sleep=sleep)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
