"""MetricSync — Abstract Provider Adapter."""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from metricsync.connectors.http import ProviderClient
from metricsync.core.errors import ParseError, ProviderAPIError, ValidationError
from metricsync.core.logging import get_logger
from metricsync.core.metric_registry import ProviderType
from metricsync.models.integration_models import IntegrationResult

logger = get_logger("connectors.base")


def parse_credential_payload(credentials: str) -> Dict[str, Any]:
    """Decode the decrypted credential blob.

    Blobs are JSON objects. A bare non-JSON string is treated as an API key,
    which is how single-secret providers were historically stored.
    """
    if credentials is None or not str(credentials).strip():
        raise ValidationError("Credentials are required")
    try:
        payload = json.loads(credentials)
    except json.JSONDecodeError:
        return {"apiKey": credentials.strip()}
    if not isinstance(payload, dict):
        raise ValidationError("Credential payload must be a JSON object")
    return payload


class ProviderAdapter(ABC):
    """Turns one provider's data into canonical metrics.

    Subclasses implement ``fetch`` (may raise) and ``check_connection``;
    the public ``sync`` / ``test_connection`` wrap them so provider failures
    come back as values rather than exceptions.
    """

    provider: ProviderType

    def __init__(
        self,
        credentials: str,
        user_id: str,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not user_id:
            raise ValidationError("user_id is required")
        self.user_id = user_id
        self.payload = parse_credential_payload(credentials)
        self._http_client = client
        self.validate()

    def validate(self) -> None:
        """Raise ValidationError for missing credential fields. No network."""
        return None

    def credential(self, *keys: str, default: Any = None) -> Any:
        """First present value among alternative credential field names."""
        for key in keys:
            value = self.payload.get(key)
            if value not in (None, ""):
                return value
        return default

    def require(self, *keys: str) -> Any:
        value = self.credential(*keys)
        if value is None:
            raise ValidationError(
                f"{self.provider.value} credentials are missing '{keys[0]}'"
            )
        return value

    @abstractmethod
    async def fetch(self) -> IntegrationResult:
        """Pull data from the provider and build the result."""
        ...

    @abstractmethod
    async def check_connection(self) -> None:
        """Raise if the provider cannot be reached or rejects the credentials."""
        ...

    async def close(self) -> None:
        return None

    async def sync(self) -> IntegrationResult:
        try:
            result = await self.fetch()
        except (ProviderAPIError, ParseError) as e:
            logger.error(
                f"{self.provider.value} sync failed: {e}",
                extra={"provider": self.provider.value, "user_id": self.user_id},
            )
            return IntegrationResult.failed(str(e))
        logger.info(
            f"{self.provider.value} sync returned {result.metrics_synced} metrics, "
            f"{len(result.historical_data)} historical points",
            extra={"provider": self.provider.value, "user_id": self.user_id},
        )
        return result

    async def test_connection(self) -> bool:
        try:
            await self.check_connection()
            return True
        except (ProviderAPIError, ParseError) as e:
            logger.warning(
                f"{self.provider.value} connection test failed: {e}",
                extra={"provider": self.provider.value, "user_id": self.user_id},
            )
            return False


class HTTPProviderAdapter(ProviderAdapter):
    """Adapter that talks to a JSON HTTP API through a ProviderClient."""

    def base_url(self) -> str:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        return {}

    @property
    def api(self) -> ProviderClient:
        if getattr(self, "_api", None) is None:
            self._api = ProviderClient(
                self.base_url(), headers=self.headers(), client=self._http_client
            )
        return self._api

    async def close(self) -> None:
        if getattr(self, "_api", None) is not None:
            await self._api.close()
