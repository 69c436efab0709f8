import asyncio
import inspect
import json
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from metricsync.core.vault import CredentialVault  # noqa: E402
from metricsync.storage.backends import MemoryStorage  # noqa: E402
from metricsync.storage.metric_store import MetricStore  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            # funcargs also carries fixtures pulled in by other fixtures
            kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def vault() -> CredentialVault:
    # Low iteration count keeps key derivation fast in tests
    return CredentialVault(secret="test-secret", iterations=1000)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage) -> MetricStore:
    return MetricStore(storage, flush_interval=0, read_repair_delay=0)


def sealed(vault: CredentialVault, payload: dict):
    """Encrypted credential blob for a payload dict."""
    return vault.encrypt(json.dumps(payload))
