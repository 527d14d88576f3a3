"""
Batch Service
Wires readiness coordination, reveal submission and batch execution together
"""
import asyncio
import logging
from typing import Optional
from dotenv import load_dotenv

from .batching import BatchExecutionEngine
from .config import Settings
from .coordinator import ReadinessCoordinator
from .hashing import get_pool_id
from .hook_client import PrivBatchHookClient, SettlementClient
from .messages import AgentMessage
from .models import BatchExecutionResult, BatchParameters, PoolKey
from .reveals import RevealStore

logger = logging.getLogger(__name__)


class BatchService:
    """
    One process's batch pipeline

    The coordinator's batch-ready event triggers execution of the pool's
    batch; polling covers batches the contract reports ready on its own.
    """

    def __init__(
        self,
        client: SettlementClient,
        settings: Optional[Settings] = None,
        coordinator: Optional[ReadinessCoordinator] = None,
        reveal_store: Optional[RevealStore] = None,
        engine: Optional[BatchExecutionEngine] = None
    ):
        self.settings = settings or Settings()
        self.client = client

        self.coordinator = coordinator or ReadinessCoordinator(self.settings.coordinator)
        self.reveal_store = reveal_store or RevealStore(
            client, submission_delay=self.settings.reveals.submission_delay_seconds
        )
        self.engine = engine or BatchExecutionEngine(client, self.reveal_store, self.settings.executor)

        self._unsubscribe = self.coordinator.on_batch_ready(self._on_batch_ready)

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[SettlementClient] = None) -> "BatchService":
        """Build the service, connecting a hook client from settings unless one is given"""
        return cls(client or PrivBatchHookClient.from_config(settings.hook_client), settings)

    def register_pool(self, pool_key: PoolKey) -> str:
        """Monitor a pool; returns its pool id"""
        pool_id = get_pool_id(pool_key)
        self.engine.add_pool(pool_key, pool_id)
        return pool_id

    def handle_message(self, message: AgentMessage):
        """Bus subscriber entry point"""
        self.coordinator.handle_message(message)

    async def _on_batch_ready(self, pool_id: str, params: BatchParameters) -> Optional[BatchExecutionResult]:
        pool_key = self.engine.monitored_pools.get(pool_id)
        if pool_key is None:
            logger.warning(f"Batch ready for unmonitored pool {pool_id[:10]}..., ignoring")
            return None

        logger.info(
            f"Executing batch for pool {pool_id[:10]}... "
            f"(agents={params.participating_agents}, commitments={params.total_commitments})"
        )
        return await self.engine.execute_batch(pool_id, pool_key)

    def start(self):
        self.engine.start_polling()
        logger.info("Batch service started")

    async def stop(self):
        """Stop polling and let batch executions already started by the coordinator finish"""
        await self.engine.stop_polling()
        self._unsubscribe()
        await self.coordinator.wait_for_listeners()
        self.coordinator.destroy()
        logger.info("Batch service stopped")


async def main():
    """Main application entry point"""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info("Starting PrivBatch batch service...")
    settings = Settings.from_env(load_env_file=False)

    if not settings.hook_client.hook_address:
        logger.error("PRIVBATCH_HOOK_ADDRESS environment variable not set!")
        return
    if not settings.hook_client.private_key:
        logger.error("PRIVBATCH_PRIVATE_KEY environment variable not set!")
        return

    service = BatchService.from_settings(settings)
    service.start()

    try:
        logger.info("Batch service is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutting down batch service...")
    finally:
        await service.stop()


def run():
    """Console script entry point"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
