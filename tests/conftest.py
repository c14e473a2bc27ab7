import pytest
import pytest_asyncio

from contentsync.updates.config import EngineConfig
from contentsync.updates.host import InMemoryContentHost
from contentsync.updates.manager import ContentUpdateManager


@pytest.fixture
def host() -> InMemoryContentHost:
    """A fresh in-memory content host (20px rows, 400px window)."""
    return InMemoryContentHost()


@pytest.fixture
def config() -> EngineConfig:
    """Engine settings with a short throttle window so tests stay fast."""
    return EngineConfig(default_throttle_interval=0.1)


@pytest_asyncio.fixture
async def engine(host, config):
    """A new engine per test, shut down afterwards."""
    manager = ContentUpdateManager(host, config)
    yield manager
    await manager.shutdown()
