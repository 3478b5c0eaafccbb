"""
Prokerala astrology data API client.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx

from shared.errors import (
    NotFoundError,
    UpstreamAuthError,
    UpstreamMalformedResponse,
    UpstreamRequestError,
    UpstreamServerError,
    UpstreamTimeout,
    ValidationError,
)
from shared.logging import get_logger
from shared.retry import RetryPolicy, retry_on_exception

from ..auth.token_cache import TokenCache
from ..ratelimit.fixed_window import FixedWindowRateLimiter

SERVICE = "prokerala"

ENDPOINTS = ("planet-position", "kundli", "chart")

VALID_CHART_TYPES = (
    "rasi", "navamsa", "lagna", "trimsamsa", "drekkana", "chaturthamsa",
    "dasamsa", "ashtamsa", "dwadasamsa", "shodasamsa", "hora",
    "akshavedamsa", "shashtyamsa", "panchamsa", "khavedamsa",
    "saptavimsamsa", "shashtamsa", "chaturvimsamsa", "saptamsa",
    "vimsamsa", "upagraha", "bhava", "sun", "moon",
)

IST_OFFSET = "+05:30"

_DATETIME_CORE = re.compile(r"^(\d{4}-\d{2}-\d{2})T(\d{2}:\d{2})(:\d{2})?")
_COORDINATES = re.compile(r"^\s*-?\d{1,2}(?:\.\d+)?\s*,\s*-?\d{1,3}(?:\.\d+)?\s*$")
_NAME_FRAGMENT = re.compile(r"""['"]?name['"]?\s*:\s*['"]?([A-Za-z_-]+)""")

DATA_RETRY_POLICY = RetryPolicy(max_attempts=2, base_delay_ms=500, backoff_factor=2.0, jitter_ms=250)


def normalize_datetime(raw: str) -> str:
    """Coerce a caller datetime into ``YYYY-MM-DDTHH:MM:SS+05:30``."""
    if not raw or not raw.strip():
        raise ValidationError("Missing required parameter: datetime", details={"field": "datetime"})

    value = unquote(raw).replace("+", " ").strip()
    if "T" not in value:
        value = value.replace(" ", "T", 1)

    match = _DATETIME_CORE.match(value)
    if not match:
        raise ValidationError(
            "Datetime must be in format: YYYY-MM-DDTHH:MM:SS",
            details={"field": "datetime", "provided": raw},
        )
    date_part, hour_minute, seconds = match.groups()
    return f"{date_part}T{hour_minute}{seconds or ':00'}{IST_OFFSET}"


def _chart_type_from_json(raw: str) -> Optional[str]:
    if "{" not in raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if isinstance(parsed, dict) and parsed.get("name"):
        return str(parsed["name"])
    return None


def _chart_type_from_fragment(raw: str) -> Optional[str]:
    match = _NAME_FRAGMENT.search(raw)
    return match.group(1) if match else None


def _chart_type_plain(raw: str) -> Optional[str]:
    value = raw.strip().strip("\"'")
    return value or None


CHART_TYPE_PARSERS: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ("json_object", _chart_type_from_json),
    ("name_fragment", _chart_type_from_fragment),
    ("plain", _chart_type_plain),
]


def parse_chart_type(raw: Optional[str]) -> str:
    """Accept ``rasi``, ``{"name": "rasi"}`` or ``name: rasi`` and return ``rasi``."""
    if not raw:
        raise ValidationError(
            "chart_type is required for chart endpoint. Valid values include: rasi, navamsa, lagna",
            details={"field": "chart_type"},
        )

    for _, parser in CHART_TYPE_PARSERS:
        parsed = parser(raw)
        if parsed:
            chart_type = parsed.lower()
            break
    else:
        chart_type = ""

    if chart_type not in VALID_CHART_TYPES:
        raise ValidationError(
            "Invalid chart_type value",
            details={
                "field": "chart_type",
                "provided": raw,
                "processed": chart_type,
                "allowed": list(VALID_CHART_TYPES),
            },
        )
    return chart_type


def validate_coordinates(raw: Optional[str]) -> str:
    if not raw or not _COORDINATES.match(raw):
        raise ValidationError(
            "coordinates must be 'latitude,longitude'",
            details={"field": "coordinates", "provided": raw},
        )
    return raw.replace(" ", "")


def build_params(endpoint: str, query: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and shape query parameters for one data endpoint."""
    if endpoint not in ENDPOINTS:
        raise NotFoundError(
            f"Unknown astrology endpoint: {endpoint}",
            details={"allowed": list(ENDPOINTS)},
        )

    params: Dict[str, Any] = {
        "datetime": normalize_datetime(query.get("datetime") or ""),
        "coordinates": validate_coordinates(query.get("coordinates")),
        "ayanamsa": query.get("ayanamsa") or 1,
    }

    if endpoint == "chart":
        params["chart_type"] = parse_chart_type(query.get("chart_type"))
        if not query.get("chart_style"):
            raise ValidationError(
                'chart_style is required for chart endpoint. Example: "north-indian"',
                details={"field": "chart_style"},
            )
        params["chart_style"] = query["chart_style"]
        params["format"] = query.get("format") or "svg"

    return params


class ProkeralaClient:
    """Rate-limited, token-authenticated client for the astrology data API."""

    def __init__(self,
                 api_url: str,
                 token_cache: TokenCache,
                 rate_limiter: FixedWindowRateLimiter,
                 http_client: httpx.AsyncClient,
                 timeout: float = 15.0):
        self.api_url = api_url.rstrip("/")
        self.token_cache = token_cache
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self.logger = get_logger("gateway.prokerala_client")
        self._client = http_client

    async def get(self, endpoint: str, query: Dict[str, Any]) -> Any:
        """Fetch one data endpoint; callers get the provider payload as-is."""
        params = build_params(endpoint, query)
        return await self._fetch(endpoint, params)

    @retry_on_exception(policy=DATA_RETRY_POLICY)
    async def _fetch(self, endpoint: str, params: Dict[str, Any]) -> Any:
        response = await self._send(endpoint, params)

        if response.status_code == 401:
            self.logger.warning("Data provider token rejected, refreshing", endpoint=endpoint)
            self.token_cache.invalidate()
            response = await self._send(endpoint, params)

        return self._decode(endpoint, response)

    async def _send(self, endpoint: str, params: Dict[str, Any]) -> httpx.Response:
        # one slot per outbound call, retries and token re-sends included
        self.rate_limiter.acquire()
        token = await self.token_cache.get_token()
        url = f"{self.api_url}/{endpoint}"
        self.logger.info("Data provider request", endpoint=endpoint, params=params)
        try:
            return await self._client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(SERVICE, details={"endpoint": endpoint}) from exc
        except httpx.HTTPError as exc:
            raise UpstreamServerError(SERVICE, "Data provider unreachable", details={"error": str(exc)}) from exc

    def _decode(self, endpoint: str, response: httpx.Response) -> Any:
        status = response.status_code
        if status == 200:
            content_type = response.headers.get("content-type", "")
            if "json" not in content_type:
                return response.text
            try:
                return response.json()
            except ValueError as exc:
                raise UpstreamMalformedResponse(SERVICE, "Data provider returned invalid JSON") from exc

        body = response.text[:500]
        self.logger.error("Data provider request failed", endpoint=endpoint, status_code=status, response=body)
        details = {"endpoint": endpoint, "status_code": status, "body": body}

        if status in (401, 403):
            raise UpstreamAuthError(SERVICE, details={"endpoint": endpoint, "status_code": status})
        if status == 429 or status >= 500:
            raise UpstreamServerError(SERVICE, f"Unexpected status {status}", details=details)
        raise UpstreamRequestError(SERVICE, f"Unexpected status {status}", details=details)
