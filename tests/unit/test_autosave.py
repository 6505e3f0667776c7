"""
Unit Tests for AutosaveTask
===========================

Test Coverage
-------------
- Single flush ticks (normal, degraded, unexpected failure)
- The periodic loop and its stop event
- Interval validation and settings
"""

import asyncio

import pytest
import pytest_asyncio

from smptweaks.progression.autosave import AutosaveConfig, AutosaveTask
from smptweaks.progression.manager import ProgressionManager


@pytest_asyncio.fixture
async def manager(memory_backend, metrics):
    manager = ProgressionManager(memory_backend, metrics=metrics)
    await manager.start()
    return manager


@pytest.mark.unit
class TestTick:
    """Test one autosave pass."""

    async def test_tick_flushes_active_records(self, manager, memory_backend, metrics, player_id):
        """Test a tick persists every connected player."""
        # Arrange
        await manager.join(player_id, "Alex")
        manager.award_xp(player_id, 30)
        autosave = AutosaveTask(manager, interval_seconds=60)

        # Act
        flushed = await autosave.tick_once()

        # Assert
        assert flushed == 1
        assert memory_backend.rows[player_id].total_xp == 30
        assert autosave.runs == 1
        assert metrics.autosave_runs == 1
        assert metrics.autosave_records_flushed == 1

    async def test_tick_skipped_when_degraded(self, memory_backend, player_id):
        """Test nothing is attempted while persistence is degraded."""
        # Arrange
        manager = ProgressionManager(memory_backend)
        await manager.join(player_id, "Alex")
        autosave = AutosaveTask(manager, interval_seconds=60)

        # Act
        flushed = await autosave.tick_once()

        # Assert
        assert flushed == 0
        assert autosave.runs == 0
        assert "upsert" not in memory_backend.calls

    async def test_tick_survives_unexpected_error(self, manager, mocker):
        """Test an unexpected flush error does not stop the loop."""
        # Arrange
        mocker.patch.object(manager, "flush_active", side_effect=RuntimeError("boom"))
        autosave = AutosaveTask(manager, interval_seconds=60)

        # Act & Assert
        assert await autosave.tick_once() == 0


@pytest.mark.unit
class TestLoop:
    """Test the periodic loop."""

    async def test_runs_until_stopped(self, manager, player_id):
        """Test the loop ticks on its interval and exits on the stop event."""
        # Arrange
        await manager.join(player_id, "Alex")
        autosave = AutosaveTask(manager, interval_seconds=0.02)
        stop_event = asyncio.Event()

        # Act
        task = asyncio.create_task(autosave.run_forever(stop_event=stop_event))
        await asyncio.sleep(0.15)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        # Assert
        assert autosave.runs >= 2
        assert task.done()

    async def test_stop_before_first_interval(self, manager):
        """Test setting the stop event ends the loop without a tick."""
        # Arrange
        autosave = AutosaveTask(manager, interval_seconds=60)
        stop_event = asyncio.Event()
        stop_event.set()

        # Act
        await asyncio.wait_for(autosave.run_forever(stop_event=stop_event), timeout=1)

        # Assert
        assert autosave.runs == 0


@pytest.mark.unit
class TestAutosaveConfig:
    """Test interval settings."""

    @pytest.mark.parametrize("interval", [0, -5])
    def test_non_positive_interval_rejected(self, interval):
        with pytest.raises(ValueError):
            AutosaveConfig(interval_seconds=interval)

    def test_from_config(self, config_factory):
        config = config_factory({"server_levels": {"autosave_interval_seconds": 45}})
        assert AutosaveConfig.from_config(config).interval_seconds == 45
