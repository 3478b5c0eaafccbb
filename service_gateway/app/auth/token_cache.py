"""
OAuth client-credentials token cache for the astrology data provider.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from shared.errors import AuthConfigError, UpstreamAuthError, UpstreamServerError, UpstreamTimeout, UpstreamMalformedResponse
from shared.logging import get_logger, mask_secret
from shared.metrics import MetricsCollector

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class CachedToken:
    """Bearer token plus absolute expiry in epoch milliseconds."""

    value: str
    expires_at_epoch_ms: int

    def is_valid(self, now_ms: int, safety_margin_ms: int) -> bool:
        return now_ms < self.expires_at_epoch_ms - safety_margin_ms


class TokenCache:
    """Single cached token with single-flight refresh."""

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        token_url: str,
        http_client: httpx.AsyncClient,
        *,
        safety_margin_ms: int = 600_000,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.safety_margin_ms = safety_margin_ms
        self.timeout = timeout
        self.logger = get_logger("gateway.auth.token_cache")

        self._client = http_client
        self._clock = clock
        self._metrics = metrics
        self._token: Optional[CachedToken] = None
        self._inflight: Optional[asyncio.Task] = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def validate_credentials(self) -> None:
        """Raise AuthConfigError if credentials are absent or not UUID-shaped."""
        if not self.client_id or not self.client_secret:
            raise AuthConfigError(
                "Data provider credentials are not configured",
                details={
                    "client_id_present": bool(self.client_id),
                    "client_secret_present": bool(self.client_secret),
                },
            )
        if not UUID_PATTERN.match(self.client_id):
            raise AuthConfigError(
                "Data provider client id must be a UUID (xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx)",
                details={"client_id": mask_secret(self.client_id)},
            )

    async def get_token(self) -> str:
        """Return a valid bearer token, refreshing it at most once concurrently."""
        token = self._token
        if token is not None and token.is_valid(self._now_ms(), self.safety_margin_ms):
            return token.value

        self.validate_credentials()

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._refresh())
            self._inflight.add_done_callback(self._clear_inflight)

        # shield: a cancelled waiter must not cancel the refresh shared by others
        refreshed = await asyncio.shield(self._inflight)
        return refreshed.value

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # mark retrieved so a failure nobody awaited is not reported as unhandled
            task.exception()

    def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes."""
        self._token = None

    def status(self) -> Dict[str, Any]:
        token = self._token
        return {
            "configured": self.configured,
            "cached": token is not None,
            "valid": token is not None and token.is_valid(self._now_ms(), self.safety_margin_ms),
            "expires_at_epoch_ms": token.expires_at_epoch_ms if token else None,
        }

    async def _refresh(self) -> CachedToken:
        self.logger.info("Requesting data provider token", client_id=mask_secret(self.client_id))
        try:
            response = await self._client.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            self._record("timeout")
            raise UpstreamTimeout("prokerala_auth", details={"error": str(exc)}) from exc
        except httpx.HTTPError as exc:
            self._record("error")
            raise UpstreamServerError("prokerala_auth", "Token endpoint unreachable", details={"error": str(exc)}) from exc

        if response.status_code in (400, 401, 403):
            self._record("rejected")
            self.logger.error(
                "Data provider rejected credentials",
                status_code=response.status_code,
                response=response.text[:500],
            )
            raise UpstreamAuthError(
                "prokerala_auth",
                details={"status_code": response.status_code},
            )

        if response.status_code != 200:
            self._record("error")
            self.logger.error(
                "Token request failed",
                status_code=response.status_code,
                response=response.text[:500],
            )
            raise UpstreamServerError(
                "prokerala_auth",
                f"Unexpected status {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            payload = response.json()
            access_token = payload["access_token"]
            expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (ValueError, KeyError, TypeError) as exc:
            self._record("malformed")
            raise UpstreamMalformedResponse("prokerala_auth", "Token response missing access_token") from exc

        if not isinstance(access_token, str) or not access_token:
            self._record("malformed")
            raise UpstreamMalformedResponse("prokerala_auth", "Token response missing access_token")

        token = CachedToken(
            value=access_token,
            expires_at_epoch_ms=self._now_ms() + expires_in * 1000,
        )
        self._token = token
        self._record("success")
        self.logger.info("Data provider token refreshed", expires_in=expires_in)
        return token

    def _record(self, status: str) -> None:
        if self._metrics is not None:
            self._metrics.increment_counter("token_refresh_total", status=status)
