"""Tests for BatchExecutionEngine execution, retry classification and polling."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from privbatch.batching import BatchExecutionEngine
from privbatch.config import ExecutorConfig
from privbatch.errors import ContractRejectedError, RejectionReason, TransientSettlementError
from privbatch.models import BatchExecutionResult, TransactionResult, ZKProof
from privbatch.reveals import RevealStore

POOL = "0xpool"

PROOF = ZKProof(a=(1, 2), b=((3, 4), (5, 6)), c=(7, 8), public_signals=(9,))


@pytest.fixture
def client() -> AsyncMock:
    mock = AsyncMock()
    mock.submit_reveal.return_value = TransactionResult(tx_hash="0xreveal")
    mock.submit_reveal_for_zk.return_value = TransactionResult(tx_hash="0xreveal")
    mock.reveal_and_batch_execute.return_value = TransactionResult(tx_hash="0xbatch", gas_used=450000)
    mock.reveal_and_batch_execute_with_proofs.return_value = TransactionResult(tx_hash="0xzkbatch", gas_used=900000)
    mock.checker.return_value = (True, "0x")
    mock.get_pending_commitment_count.return_value = 2
    mock.get_min_commitments.return_value = 2
    return mock


@pytest.fixture
def store(client, clock, fake_sleep) -> RevealStore:
    return RevealStore(client, submission_delay=2.0, clock=clock, sleep=fake_sleep)


@pytest.fixture
def engine(client, store, clock, fake_sleep) -> BatchExecutionEngine:
    config = ExecutorConfig(
        max_retries=3,
        retry_base_delay_seconds=5.0,
        post_reveal_delay_seconds=10.0,
        use_proofs=False
    )
    return BatchExecutionEngine(client, store, config, clock=clock, sleep=fake_sleep)


@pytest.fixture
def two_reveals(store, pool_key, make_commitment):
    hashes = []
    for nonce in (1, 2):
        commitment_hash, intent = make_commitment(nonce=nonce)
        store.add_reveal(commitment_hash, intent, pool_key, POOL)
        hashes.append(commitment_hash)
    return hashes


class TestExecuteBatch:
    async def test_success_clears_reveals_and_proofs(self, engine, client, store, pool_key, two_reveals) -> None:
        for commitment_hash in two_reveals:
            engine.store_proof(commitment_hash, PROOF)

        result = await engine.execute_batch(POOL, pool_key, with_proofs=True)

        assert result.success
        assert result.tx_hash == "0xzkbatch"
        assert result.batch_size == 2
        assert result.cost == 900000
        client.reveal_and_batch_execute_with_proofs.assert_awaited_once_with(pool_key, two_reveals, [PROOF, PROOF])
        for commitment_hash in two_reveals:
            assert commitment_hash not in store
            assert engine.get_proof(commitment_hash) is None
        assert engine.get_execution_history() == [result]

    async def test_standard_path_waits_for_settle(self, engine, client, pool_key, two_reveals, fake_sleep) -> None:
        result = await engine.execute_batch(POOL, pool_key)

        assert result.success
        assert fake_sleep.delays == [2.0, 10.0]
        client.reveal_and_batch_execute.assert_awaited_once_with(pool_key, two_reveals)

    async def test_no_submitted_reveals(self, engine, client, pool_key) -> None:
        result = await engine.execute_batch(POOL, pool_key)

        assert not result.success
        assert result.error == "No submitted reveals for this pool"
        client.reveal_and_batch_execute.assert_not_awaited()
        assert len(engine.get_execution_history()) == 1

    async def test_missing_proof_aborts(self, engine, client, store, pool_key, two_reveals) -> None:
        engine.store_proof(two_reveals[0], PROOF)

        result = await engine.execute_batch(POOL, pool_key, with_proofs=True)

        assert not result.success
        assert result.error.startswith("Missing ZK proof for commitment")
        client.reveal_and_batch_execute_with_proofs.assert_not_awaited()
        assert all(h in store for h in two_reveals)

    async def test_permanent_error_single_attempt(self, engine, client, store, pool_key, two_reveals, fake_sleep) -> None:
        client.reveal_and_batch_execute.side_effect = ContractRejectedError(
            RejectionReason.INSUFFICIENT_COMMITMENTS, label="revealAndBatchExecute"
        )

        result = await engine.execute_batch(POOL, pool_key)

        assert not result.success
        assert "InsufficientCommitments" in result.error
        assert client.reveal_and_batch_execute.await_count == 1
        assert fake_sleep.delays == [2.0, 10.0]
        assert all(h in store for h in two_reveals)

    async def test_transient_error_exhausts_retries(self, engine, client, store, pool_key, two_reveals, fake_sleep) -> None:
        client.reveal_and_batch_execute.side_effect = TransientSettlementError("receipt timeout")

        result = await engine.execute_batch(POOL, pool_key)

        assert not result.success
        assert "receipt timeout" in result.error
        assert client.reveal_and_batch_execute.await_count == 4
        retry_delays = fake_sleep.delays[2:]
        assert retry_delays == [5.0, 10.0, 15.0]
        assert all(h in store for h in two_reveals)

    async def test_non_permanent_rejection_is_retried(self, engine, client, pool_key, two_reveals) -> None:
        client.reveal_and_batch_execute.side_effect = [
            ContractRejectedError(RejectionReason.SLIPPAGE_EXCEEDED_FOR_USER),
            TransactionResult(tx_hash="0xbatch", gas_used=1),
        ]

        result = await engine.execute_batch(POOL, pool_key)

        assert result.success
        assert client.reveal_and_batch_execute.await_count == 2

    async def test_concurrent_execution_for_same_pool_rejected(self, client, store, pool_key, two_reveals) -> None:
        gate = asyncio.Event()

        async def gated_sleep(delay: float) -> None:
            await gate.wait()

        store.sleep = gated_sleep
        engine = BatchExecutionEngine(client, store, ExecutorConfig(use_proofs=False), sleep=gated_sleep)

        first = asyncio.create_task(engine.execute_batch(POOL, pool_key))
        await asyncio.sleep(0)

        second = await engine.execute_batch(POOL, pool_key)
        assert not second.success
        assert "already in progress" in second.error
        assert engine.get_execution_history() == []

        gate.set()
        result = await first
        assert result.success
        assert len(engine.get_execution_history()) == 1


class TestReadiness:
    async def test_readiness_combines_chain_and_local_state(self, engine, client, store, two_reveals) -> None:
        store.get(two_reveals[0]).submitted_on_chain = True

        readiness = await engine.check_batch_readiness(POOL)

        assert readiness.can_exec
        assert readiness.pending_on_chain == 2
        assert readiness.reveals_ready == 1
        assert not readiness.meets_minimum

    async def test_min_commitments_falls_back_to_default(self, engine, client, store, two_reveals) -> None:
        client.get_min_commitments.side_effect = ConnectionError("rpc down")
        for commitment_hash in two_reveals:
            store.get(commitment_hash).submitted_on_chain = True

        readiness = await engine.check_batch_readiness(POOL)
        assert readiness.meets_minimum

    async def test_check_all_pools_skips_failures(self, engine, client, pool_key) -> None:
        async def checker(pool_id):
            if pool_id == "0xbroken":
                raise ConnectionError("rpc down")
            return True, "0x"

        client.checker.side_effect = checker
        engine.add_pool(pool_key, POOL)
        engine.add_pool(pool_key, "0xbroken")

        results = await engine.check_all_pools()
        assert [r.pool_id for r in results] == [POOL]


class TestPolling:
    async def test_start_is_idempotent_and_stop_cancels_wait(self, client, store, pool_key) -> None:
        never = asyncio.Event()

        async def idle_sleep(delay: float) -> None:
            await never.wait()

        client.checker.return_value = (False, "0x")
        engine = BatchExecutionEngine(client, store, ExecutorConfig(), sleep=idle_sleep)
        engine.add_pool(pool_key, POOL)

        engine.start_polling(interval=30.0)
        task = engine._task
        engine.start_polling(interval=30.0)
        assert engine._task is task
        assert engine.is_running

        for _ in range(10):
            await asyncio.sleep(0)
        client.checker.assert_awaited_once_with(POOL)

        await engine.stop_polling()
        assert not engine.is_running
        assert task.done()

    async def test_poll_executes_ready_pool(self, client, store, pool_key, make_commitment, clock) -> None:
        never = asyncio.Event()
        delays = []

        async def sleep(delay: float) -> None:
            delays.append(delay)
            if delay == 30.0:
                await never.wait()

        commitment_hash, intent = make_commitment()
        store.add_reveal(commitment_hash, intent, pool_key, POOL)
        store.get(commitment_hash).submitted_on_chain = True
        client.get_min_commitments.return_value = 1

        engine = BatchExecutionEngine(
            client, store, ExecutorConfig(use_proofs=False, post_reveal_delay_seconds=1.0), sleep=sleep
        )
        engine.add_pool(pool_key, POOL)
        engine.start_polling(interval=30.0)

        for _ in range(20):
            await asyncio.sleep(0)
            if engine.get_execution_history():
                break

        await engine.stop_polling()
        history = engine.get_execution_history()
        assert len(history) == 1
        assert history[0].success
        client.reveal_and_batch_execute.assert_awaited_once_with(pool_key, [commitment_hash])


class TestStats:
    def test_stats_count_only_successful_swaps_and_cost(self, engine) -> None:
        engine.execution_history.extend([
            BatchExecutionResult(pool_id=POOL, success=True, batch_size=3, cost=100),
            BatchExecutionResult(pool_id=POOL, success=True, batch_size=2, cost=50),
            BatchExecutionResult(pool_id=POOL, success=False, batch_size=4, error="boom"),
        ])

        stats = engine.get_stats()
        assert stats.total_batches == 3
        assert stats.successful_batches == 2
        assert stats.failed_batches == 1
        assert stats.total_swaps == 5
        assert stats.total_cost == 150

    def test_history_is_a_copy(self, engine) -> None:
        engine.get_execution_history().append("x")
        assert engine.get_execution_history() == []
