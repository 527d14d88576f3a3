"""
Batch Execution Engine
Submits pending reveals, executes batches with retry classification and
reconciles local reveal and proof state afterwards
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set

from .config import ExecutorConfig
from .errors import is_permanent
from .hook_client import SettlementClient
from .models import (
    BatchExecutionResult, BatchReadiness, ExecutionStats, PoolKey, TransactionResult, ZKProof
)
from .reveals import RevealStore

logger = logging.getLogger(__name__)


class BatchExecutionEngine:
    """
    Executes batches for monitored pools

    Features:
    - Readiness checks combining on-chain state and local reveals
    - Standard and proof-based batch execution
    - Linear-backoff retry that never retries permanent contract rejections
    - Automated polling
    - Execution history and stats
    """

    def __init__(
        self,
        client: SettlementClient,
        reveal_store: RevealStore,
        config: Optional[ExecutorConfig] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.client = client
        self.reveal_store = reveal_store
        self.config = config or ExecutorConfig()
        self.clock = clock
        self.sleep = sleep

        self.monitored_pools: Dict[str, PoolKey] = {}
        self.proofs: Dict[str, ZKProof] = {}  # commitment_hash -> proof
        self.execution_history: List[BatchExecutionResult] = []
        self._in_flight: Set[str] = set()

        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._sleeping = False

    # Pool management

    def add_pool(self, pool_key: PoolKey, pool_id: str):
        self.monitored_pools[pool_id] = pool_key
        logger.info(f"Monitoring pool {pool_id[:10]}...")

    def remove_pool(self, pool_id: str):
        self.monitored_pools.pop(pool_id, None)

    # Proof cache

    def store_proof(self, commitment_hash: str, proof: ZKProof):
        self.proofs[commitment_hash] = proof

    def get_proof(self, commitment_hash: str) -> Optional[ZKProof]:
        return self.proofs.get(commitment_hash)

    # Readiness

    async def check_batch_readiness(self, pool_id: str) -> BatchReadiness:
        """
        Combine the contract's view of a pool with the local reveal store

        Args:
            pool_id: Pool to check

        Returns:
            BatchReadiness; meets_minimum compares submitted local reveals
            with MIN_COMMITMENTS (or the configured default if it cannot be read)
        """
        (can_exec, _payload), pending_on_chain = await asyncio.gather(
            self.client.checker(pool_id),
            self.client.get_pending_commitment_count(pool_id)
        )

        reveals_ready = len(self.reveal_store.get_submitted_hashes_for_pool(pool_id))

        min_commitments = self.config.default_min_commitments
        try:
            min_commitments = await self.client.get_min_commitments()
        except Exception as e:
            logger.debug(f"MIN_COMMITMENTS unavailable, using {min_commitments}: {e}")

        return BatchReadiness(
            pool_id=pool_id,
            can_exec=can_exec,
            pending_on_chain=pending_on_chain,
            reveals_ready=reveals_ready,
            meets_minimum=reveals_ready >= min_commitments
        )

    async def check_all_pools(self) -> List[BatchReadiness]:
        """Check every monitored pool; pools whose check fails are skipped"""
        results = []
        for pool_id in list(self.monitored_pools):
            try:
                results.append(await self.check_batch_readiness(pool_id))
            except Exception as e:
                logger.error(f"Error checking pool {pool_id[:10]}...: {e}")
        return results

    # Execution

    async def execute_batch(
        self,
        pool_id: str,
        pool_key: PoolKey,
        with_proofs: Optional[bool] = None
    ) -> BatchExecutionResult:
        """
        Submit pending reveals, then execute the pool's batch

        Only one execution per pool runs at a time; a concurrent call
        returns a failed result without touching state or history.

        Args:
            pool_id: Pool to execute
            pool_key: Key of the same pool
            with_proofs: Attach cached proofs (defaults to config.use_proofs)

        Returns:
            The BatchExecutionResult appended to history
        """
        if with_proofs is None:
            with_proofs = self.config.use_proofs

        if pool_id in self._in_flight:
            logger.warning(f"Batch for pool {pool_id[:10]}... already in progress")
            return BatchExecutionResult(
                pool_id=pool_id,
                success=False,
                error="Batch execution already in progress for this pool",
                executed_at=self.clock()
            )

        self._in_flight.add(pool_id)
        try:
            return await self._execute_batch(pool_id, pool_key, with_proofs)
        finally:
            self._in_flight.discard(pool_id)

    async def _execute_batch(self, pool_id: str, pool_key: PoolKey, with_proofs: bool) -> BatchExecutionResult:
        try:
            reveal_results = await self.reveal_store.submit_all_reveals()
            failed_reveals = [r for r in reveal_results if not r.success]
            if failed_reveals:
                logger.warning(f"{len(failed_reveals)} reveals failed to submit")

            logger.info(f"Waiting {self.config.post_reveal_delay_seconds}s for RPC sync...")
            await self.sleep(self.config.post_reveal_delay_seconds)

            submitted_hashes = self.reveal_store.get_submitted_hashes_for_pool(pool_id)
            if not submitted_hashes:
                return self._record_failure(pool_id, 0, "No submitted reveals for this pool")

            if with_proofs:
                proofs = []
                for commitment_hash in submitted_hashes:
                    proof = self.proofs.get(commitment_hash)
                    if proof is None:
                        return self._record_failure(
                            pool_id,
                            len(submitted_hashes),
                            f"Missing ZK proof for commitment {commitment_hash[:10]}..."
                        )
                    proofs.append(proof)

                tx_result = await self._execute_with_retry(
                    lambda: self.client.reveal_and_batch_execute_with_proofs(pool_key, submitted_hashes, proofs),
                    "revealAndBatchExecuteWithProofs"
                )
            else:
                tx_result = await self._execute_with_retry(
                    lambda: self.client.reveal_and_batch_execute(pool_key, submitted_hashes),
                    "revealAndBatchExecute"
                )

            self.reveal_store.clear_executed_reveals(submitted_hashes)
            for commitment_hash in submitted_hashes:
                self.proofs.pop(commitment_hash, None)

            result = BatchExecutionResult(
                pool_id=pool_id,
                success=True,
                tx_hash=tx_result.tx_hash,
                batch_size=len(submitted_hashes),
                cost=tx_result.gas_used,
                executed_at=self.clock()
            )
            self.execution_history.append(result)
            logger.info(f"Batch executed: {len(submitted_hashes)} swaps, tx={tx_result.tx_hash}")
            return result

        except Exception as e:
            logger.error(f"Batch execution failed for pool {pool_id[:10]}...: {e}", exc_info=True)
            return self._record_failure(pool_id, 0, str(e) or type(e).__name__)

    async def _execute_with_retry(
        self,
        operation: Callable[[], Awaitable[TransactionResult]],
        label: str
    ) -> TransactionResult:
        """
        Run a settlement call, retrying transient failures

        Permanent rejections are raised on the first attempt. Transient ones
        are retried up to max_retries times, waiting base * attempt between tries.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.config.max_retries + 1):
            try:
                return await operation()
            except Exception as e:
                last_error = e

                if is_permanent(e):
                    logger.error(f"{label}: permanent failure, not retrying: {e}")
                    raise

                if attempt < self.config.max_retries:
                    delay = self.config.retry_base_delay_seconds * (attempt + 1)
                    logger.warning(
                        f"{label}: attempt {attempt + 1}/{self.config.max_retries + 1} failed, "
                        f"retrying in {delay}s: {e}"
                    )
                    await self.sleep(delay)

        raise last_error

    def _record_failure(self, pool_id: str, batch_size: int, error: str) -> BatchExecutionResult:
        result = BatchExecutionResult(
            pool_id=pool_id,
            success=False,
            batch_size=batch_size,
            error=error,
            executed_at=self.clock()
        )
        self.execution_history.append(result)
        return result

    # Automated polling

    def start_polling(self, interval: Optional[float] = None, with_proofs: Optional[bool] = None):
        """Start polling monitored pools; a no-op if already running"""
        if self.running:
            logger.warning("Already polling")
            return

        interval = interval if interval is not None else self.config.poll_interval_seconds
        with_proofs = with_proofs if with_proofs is not None else self.config.use_proofs

        self.running = True
        self._task = asyncio.create_task(self._poll_loop(interval, with_proofs))
        logger.info(f"Started polling every {interval}s (proofs={with_proofs})")

    async def stop_polling(self):
        """
        Stop polling

        The loop is cancelled only while it waits between cycles. An
        execution already in flight completes before the loop exits.
        """
        if not self.running and self._task is None:
            return

        self.running = False
        task = self._task
        self._task = None

        if task is not None:
            if self._sleeping:
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info("Polling stopped")

    @property
    def is_running(self) -> bool:
        return self.running

    async def _poll_loop(self, interval: float, with_proofs: bool):
        while self.running:
            try:
                await self._poll_and_execute(with_proofs)
            except Exception as e:
                logger.error(f"Error in polling loop: {e}", exc_info=True)

            if not self.running:
                break

            self._sleeping = True
            try:
                await self.sleep(interval)
            except asyncio.CancelledError:
                break
            finally:
                self._sleeping = False

    async def _poll_and_execute(self, with_proofs: bool):
        readiness = await self.check_all_pools()

        for pool in readiness:
            if not self.running:
                return
            if not (pool.can_exec and pool.meets_minimum):
                continue

            pool_key = self.monitored_pools.get(pool.pool_id)
            if pool_key is None:
                continue

            logger.info(f"Pool {pool.pool_id[:10]}... ready: {pool.reveals_ready} reveals, executing...")
            await self.execute_batch(pool.pool_id, pool_key, with_proofs)

    # Metrics

    def get_execution_history(self) -> List[BatchExecutionResult]:
        return list(self.execution_history)

    def get_stats(self) -> ExecutionStats:
        """Aggregate counts; swaps and cost only count successful batches"""
        successful = [r for r in self.execution_history if r.success]
        return ExecutionStats(
            total_batches=len(self.execution_history),
            successful_batches=len(successful),
            failed_batches=len(self.execution_history) - len(successful),
            total_swaps=sum(r.batch_size for r in successful),
            total_cost=sum(r.cost or 0 for r in successful)
        )
