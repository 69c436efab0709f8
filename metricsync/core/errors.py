"""MetricSync — Error Taxonomy.

Every failure the ingestion engine can surface derives from MetricSyncError,
so callers can catch the whole family or one category.
"""


class MetricSyncError(Exception):
    """Base class for all engine errors."""


class ValidationError(MetricSyncError):
    """Missing or malformed input, raised before any network call."""


class ProviderNotFoundError(MetricSyncError):
    """No provider configuration exists for the requested id."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"Data source not found: {provider_id}")


class UnsupportedProviderError(MetricSyncError):
    """The provider tag has no registered adapter."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported data source: {provider}")


class ProviderConnectionError(MetricSyncError):
    """The adapter could not authenticate with or reach its provider."""


class ProviderAPIError(MetricSyncError):
    """Raised when a provider API returns an error."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class ParseError(MetricSyncError):
    """Tabular input could not be interpreted."""


class PersistenceError(MetricSyncError):
    """A durable write failed."""


class VaultError(MetricSyncError):
    """The credential vault is misconfigured or could not encrypt."""


class DecryptionError(VaultError):
    """Ciphertext failed its integrity check or could not be decoded."""
