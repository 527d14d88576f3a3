"""Tests for BatchService wiring."""

import asyncio
from unittest.mock import AsyncMock

from privbatch.config import CoordinatorConfig, Settings
from privbatch.coordinator import ReadinessCoordinator
from privbatch.hashing import get_pool_id
from privbatch.messages import readiness_message
from privbatch.service import BatchService


def build_service(scheduler, clock):
    settings = Settings()
    coordinator = ReadinessCoordinator(
        CoordinatorConfig(quorum=2, min_total_commitments=2), scheduler=scheduler, clock=clock
    )
    for agent_id in ("A", "B"):
        coordinator.register_agent(agent_id)
    service = BatchService(AsyncMock(), settings, coordinator=coordinator)
    service.engine.execute_batch = AsyncMock()
    return service


class TestBatchService:
    async def test_batch_ready_executes_monitored_pool(self, scheduler, clock, pool_key, make_signal) -> None:
        service = build_service(scheduler, clock)
        pool_id = service.register_pool(pool_key)
        assert pool_id == get_pool_id(pool_key)

        service.handle_message(readiness_message(make_signal("A", pool_id=pool_id)))
        service.handle_message(readiness_message(make_signal("B", pool_id=pool_id)))
        for _ in range(3):
            await asyncio.sleep(0)

        service.engine.execute_batch.assert_awaited_once_with(pool_id, pool_key)

    async def test_unmonitored_pool_is_ignored(self, scheduler, clock, make_signal) -> None:
        service = build_service(scheduler, clock)

        service.coordinator.signal_ready(make_signal("A", pool_id="0xunknown"))
        service.coordinator.signal_ready(make_signal("B", pool_id="0xunknown"))
        for _ in range(3):
            await asyncio.sleep(0)

        service.engine.execute_batch.assert_not_awaited()

    async def test_start_and_stop(self, scheduler, clock) -> None:
        service = build_service(scheduler, clock)
        service.engine.check_all_pools = AsyncMock(return_value=[])

        service.start()
        assert service.engine.is_running

        await service.stop()
        assert not service.engine.is_running
        assert len(service.coordinator.dispatcher) == 0

    async def test_stop_waits_for_started_execution(self, scheduler, clock, pool_key, make_signal) -> None:
        service = build_service(scheduler, clock)
        pool_id = service.register_pool(pool_key)
        finished = []

        async def slow_execute(pool_id, pool_key):
            for _ in range(3):
                await asyncio.sleep(0)
            finished.append(pool_id)

        service.engine.execute_batch = AsyncMock(side_effect=slow_execute)

        service.handle_message(readiness_message(make_signal("A", pool_id=pool_id)))
        service.handle_message(readiness_message(make_signal("B", pool_id=pool_id)))
        await service.stop()

        assert finished == [pool_id]
        assert not service.coordinator.dispatcher.pending
