"""Shared HTTP plumbing for external service clients.

Transient transport failures are retried in place with tenacity; whatever
survives is mapped onto the pipeline error taxonomy so the worker runtime
can decide between requeue and terminal failure.
"""
import logging
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from clipforge.errors import (
    AuthorizationError,
    ErrorCode,
    RateLimitError,
    RetryableError,
    UnrecoverableError,
)

logger = logging.getLogger(__name__)

# Retry configuration for transient transport errors
RETRY_DECORATOR = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


def extract_error_detail(response: httpx.Response) -> str:
    """Extract concise error detail from a provider response."""
    try:
        payload = response.json()
    except ValueError:
        text = (response.text or "").strip()
        return text[:300] or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        error = payload.get("error")
        # OpenAI / Google API style: {"error": {"message": ...}}
        if isinstance(error, dict):
            message = error.get("message") or error.get("status")
            if message:
                return str(message)
        # OAuth style: {"error": "invalid_grant", "error_description": ...}
        parts = []
        if error:
            parts.append(str(error))
        if payload.get("error_description"):
            parts.append(str(payload["error_description"]))
        if parts:
            return ": ".join(parts)

    return f"HTTP {response.status_code}"


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds from a Retry-After header (delta or HTTP date)."""
    value = response.headers.get("Retry-After") or response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def raise_for_response(response: httpx.Response, service: str) -> None:
    """Map a non-success response onto the error taxonomy."""
    status = response.status_code
    if 200 <= status < 300:
        return

    detail = extract_error_detail(response)
    message = f"{service} returned HTTP {status}: {detail}"

    if status == 429:
        raise RateLimitError(message, retry_after=parse_retry_after(response))
    if status in (401, 403):
        raise AuthorizationError(message)
    if status == 408 or status >= 500:
        raise RetryableError(ErrorCode.UPSTREAM_UNAVAILABLE, message)
    raise UnrecoverableError(ErrorCode.UPSTREAM_REJECTED, message)


class ServiceClient:
    """Base for JSON/multipart API clients.

    A fresh ``httpx.AsyncClient`` is opened per request.
    """

    service_name = "service"

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @RETRY_DECORATOR
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request and raise pipeline errors for failures."""
        url = path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = await self._send(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning(f"{self.service_name} request timed out: {method} {url}")
            raise RetryableError(
                ErrorCode.UPSTREAM_UNAVAILABLE, f"{self.service_name} request timed out"
            ) from exc
        except httpx.RequestError as exc:
            logger.warning(f"{self.service_name} network error: {type(exc).__name__}")
            raise RetryableError(
                ErrorCode.UPSTREAM_UNAVAILABLE, f"Unable to reach {self.service_name}: {exc}"
            ) from exc

        raise_for_response(response, self.service_name)
        return response

    async def request_json(self, method: str, path: str, **kwargs) -> dict:
        response = await self.request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise RetryableError(
                ErrorCode.UPSTREAM_BAD_RESPONSE, f"{self.service_name} returned invalid JSON"
            ) from exc
