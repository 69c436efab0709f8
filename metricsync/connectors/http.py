"""MetricSync — Provider HTTP Client.

Shared async client for provider APIs: auth headers, retry with exponential
backoff on 429/5xx and transport errors, cursor pagination.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from metricsync.config import settings
from metricsync.core.errors import ProviderAPIError
from metricsync.core.logging import get_logger

logger = get_logger("connectors.http")

RETRY_BASE_DELAY = 1  # seconds


class ProviderClient:
    """Async HTTP client bound to one provider base URL."""

    def __init__(
        self,
        base_url: str,
        headers: Dict[str, str] | None = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        retry_base_delay: float = RETRY_BASE_DELAY,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.max_retries = max_retries or settings.http_max_retries
        self.timeout = timeout or settings.http_timeout_seconds
        self.retry_base_delay = retry_base_delay
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    # ── Core Request Method ──

    async def request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make a request with retry + rate-limit handling."""
        client = await self._get_client()
        url = self._url(path)

        for attempt in range(1, self.max_retries + 1):
            wait = self.retry_base_delay * (2 ** (attempt - 1))
            try:
                resp = await client.request(
                    method, url, params=params, json=json, headers=self.headers
                )

                # Rate limited
                if resp.status_code == 429 and attempt < self.max_retries:
                    logger.warning(
                        f"Rate limited (429). Retrying in {wait}s (attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(wait)
                    continue

                resp.raise_for_status()
                return resp.json()

            except httpx.HTTPStatusError as e:
                if attempt < self.max_retries and e.response.status_code >= 500:
                    logger.warning(
                        f"Server error {e.response.status_code}. Retrying in {wait}s"
                    )
                    await asyncio.sleep(wait)
                    continue
                raise ProviderAPIError(
                    _error_message(e.response), e.response.status_code
                ) from e

            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    logger.warning(f"Request error: {e}. Retrying in {wait}s")
                    await asyncio.sleep(wait)
                    continue
                raise ProviderAPIError(
                    f"Connection failed after {self.max_retries} retries: {e}"
                ) from e

            except ValueError as e:
                raise ProviderAPIError(f"Provider returned a non-JSON body: {e}") from e

        raise ProviderAPIError("Max retries exhausted")

    async def get(self, path: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Dict[str, Any] | None = None) -> Dict[str, Any]:
        return await self.request("POST", path, json=json)


def _error_message(response: httpx.Response) -> str:
    """Pull a readable message out of a provider error body."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("type") or f"HTTP {response.status_code}"
    if isinstance(error, str):
        return error
    if isinstance(body, dict) and body.get("message"):
        return body["message"]
    return f"HTTP {response.status_code}"
