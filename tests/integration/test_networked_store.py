"""
Integration Tests for NetworkedStore
====================================

Purpose
-------
Test the networked backend against real PostgreSQL and MySQL servers
started with testcontainers. Container tests are skipped when Docker is
not available; configuration and outage tests always run.

Testing Strategy
----------------
- One container per engine per session
- Unique table name per test instead of truncation
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio
from testcontainers.mysql import MySqlContainer
from testcontainers.postgres import PostgresContainer

from smptweaks.core.logging.logger import get_logger
from smptweaks.progression.manager import ProgressionManager
from smptweaks.progression.record import ProgressionRecord, TimestampField
from smptweaks.progression.store.networked import NetworkedStore, split_host_port
from smptweaks.progression.timestamps import EPOCH

logger = get_logger(__name__)

# ============================================================================
# TESTCONTAINERS FIXTURES
# ============================================================================

_CONTAINERS = {
    "postgresql": (lambda: PostgresContainer(image="postgres:17-alpine"), 5432),
    "mysql": (lambda: MySqlContainer(image="mysql:8.0"), 3306),
}


def start_container(driver: str, factory: Callable[[], Any]) -> Any:
    """Build and start a testcontainer, skipping the test when Docker is unusable."""
    logger.info("Starting %s testcontainer...", driver)
    try:
        # the constructor already talks to the Docker daemon
        container = factory()
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker unavailable for {driver} testcontainer: {exc}")
    return container


@pytest.fixture(scope="session", params=sorted(_CONTAINERS))
def database_server(request) -> Generator[dict, None, None]:
    """
    Start a database testcontainer for each supported driver.

    Scope: session (container persists across all tests)
    """
    driver = request.param
    factory, internal_port = _CONTAINERS[driver]
    container = start_container(driver, factory)

    yield {
        "driver": driver,
        "host": container.get_container_host_ip(),
        "port": int(container.get_exposed_port(internal_port)),
        "database": container.dbname,
        "username": container.username,
        "password": container.password,
    }

    logger.info("Stopping %s testcontainer...", driver)
    container.stop()


@pytest_asyncio.fixture
async def networked_store(database_server, metrics) -> AsyncGenerator[NetworkedStore, None]:
    """Connected NetworkedStore on a fresh table."""
    store = NetworkedStore(
        **database_server,
        table_name=f"smptweaks_player_{uuid.uuid4().hex[:10]}",
        pool_size=4,
        connect_timeout=10,
        metrics=metrics,
    )
    await store.connect()
    await store.ensure_schema()

    yield store

    await store.close()


# ============================================================================
# CONFIGURATION & OUTAGES (no Docker)
# ============================================================================


@pytest.mark.integration
class TestConfiguration:
    """Test URL building and unreachable servers."""

    @pytest.mark.parametrize(
        "host,port,expected",
        [
            ("db.internal", None, ("db.internal", None)),
            ("db.internal:3307", None, ("db.internal", 3307)),
            ("db.internal:3307", 3308, ("db.internal", 3308)),
            ("::1", None, ("::1", None)),
        ],
    )
    def test_split_host_port(self, host, port, expected):
        assert split_host_port(host, port) == expected

    def test_url(self):
        """Test the SQLAlchemy URL per driver."""
        # Act
        store = NetworkedStore(driver="mysql", host="db:3307", database="mc", username="u", password="p")

        # Assert
        assert store.url.drivername == "mysql+aiomysql"
        assert (store.url.host, store.url.port, store.url.database) == ("db", 3307, "mc")
        assert store.url.password == "p"

    def test_missing_docker_skips(self):
        """Test a container that cannot even be constructed skips instead of erroring."""

        def no_docker():
            raise FileNotFoundError("docker socket not found")

        with pytest.raises(pytest.skip.Exception, match="Docker unavailable for mysql"):
            start_container("mysql", no_docker)

    def test_unknown_driver(self):
        with pytest.raises(ValueError):
            NetworkedStore(driver="oracle")

    async def test_unreachable_server_degrades_manager(self):
        """Test a closed port leaves the manager degraded instead of raising."""
        # Arrange
        store = NetworkedStore(driver="postgresql", host="127.0.0.1", port=1, connect_timeout=2)
        manager = ProgressionManager(store)

        # Act
        started = await manager.start()

        # Assert
        assert started is False
        assert manager.degraded_reason == "store unreachable"
        assert (await manager.load(uuid.uuid4())).value is None
        await manager.stop()


# ============================================================================
# REAL SERVERS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
@pytest.mark.slow
class TestNetworkedStore:
    """Test the backend against real servers."""

    async def test_schema(self, networked_store):
        assert await networked_store.is_reachable() is True
        assert await networked_store.is_schema_valid() is True

    async def test_round_trip_and_update_in_place(self, networked_store, player_id):
        """Test insert, fetch and in-place update."""
        # Arrange
        record = ProgressionRecord(player_id=player_id, display_name="Alex", level=1, total_xp=0)

        # Act
        inserted = await networked_store.upsert(record)
        record.level, record.total_xp = 2, 150
        updated = await networked_store.upsert(record)
        loaded = await networked_store.fetch(player_id)

        # Assert
        assert inserted is True
        assert updated is False
        assert (loaded.level, loaded.total_xp) == (2, 150)
        assert await networked_store.fetch(uuid.uuid4()) is None

    async def test_concurrent_upserts_leave_one_row(self, networked_store, player_id):
        """Test concurrent writers for one key never duplicate the row."""
        # Arrange
        records = [
            ProgressionRecord(player_id=player_id, display_name=f"Alex{i}", total_xp=i)
            for i in range(10)
        ]

        # Act
        await asyncio.gather(*(networked_store.upsert(r) for r in records))

        # Assert
        assert await networked_store.exists(player_id)
        loaded = await networked_store.fetch(player_id)
        assert loaded.display_name in {r.display_name for r in records}

    async def test_timestamps(self, networked_store, record_factory):
        """Test timestamps are stored at second precision and default to epoch."""
        # Arrange
        record = record_factory()
        await networked_store.upsert(record)
        stamp = datetime(2024, 5, 1, 12, 30, 15, 400000)

        # Act
        before = await networked_store.read_timestamp(record.player_id, TimestampField.LAST_REWARD_CLAIMED)
        await networked_store.write_timestamp(record.player_id, TimestampField.LAST_REWARD_CLAIMED, stamp)
        after = await networked_store.read_timestamp(record.player_id, TimestampField.LAST_REWARD_CLAIMED)

        # Assert
        assert before == EPOCH
        assert after == datetime(2024, 5, 1, 12, 30, 15)
        loaded = await networked_store.fetch(record.player_id)
        assert loaded.last_reward_claimed_at == after
        assert loaded.last_special_drop_at is None
