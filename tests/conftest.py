"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio

from review_monitor.models.config import MonitorConfig
from review_monitor.monitoring.logger import StructuredLogger
from review_monitor.storage.database import Database
from review_monitor.storage.repository import StoreRepository


@pytest.fixture
def sample_config(tmp_path):
    """Configuration with short intervals and a temporary SQLite store."""
    return MonitorConfig(
        apify_token="test-token",
        apify_base_url="http://apify.test",
        classifier_webhook_url="http://classifier.test/webhook",
        poll_interval=0.01,
        poll_max_attempts=50,
        poll_max_duration=10.0,
        provider_base_delay=0.01,
        classifier_base_delay=0.01,
        scan_batch_delay=0.0,
        scan_timeout=5.0,
        queue_tick_interval=0.01,
        queue_poll_interval=0.01,
        queue_item_timeout=10.0,
        queue_completed_retention=0.05,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'monitor.db'}",
        output_directory=str(tmp_path / "out"),
        log_level="WARNING",
    )


@pytest.fixture
def logger():
    return StructuredLogger(name="review_monitor.tests", level="WARNING")


@pytest_asyncio.fixture
async def database(sample_config):
    # A file-backed database: every aiosqlite connection to ":memory:" is a new empty store
    db = Database(sample_config.async_database_url)
    await db.init()
    yield db
    await db.dispose()


@pytest.fixture
def repository(database):
    return StoreRepository(database)
