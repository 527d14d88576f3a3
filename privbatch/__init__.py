"""
PrivBatch Batch Coordination Module
Off-chain readiness coordination, reveal submission and batch execution
for commit-reveal batch swaps
"""
from .models import (
    ZERO_ADDRESS,
    ConflictStrategy,
    PoolKey,
    SwapIntent,
    CommitmentData,
    ReadinessSignal,
    BatchParameters,
    PoolStateSnapshot,
    RevealRecord,
    RevealValidation,
    RevealSubmissionResult,
    ZKProof,
    TransactionResult,
    BatchReadiness,
    BatchExecutionResult,
    ExecutionStats
)
from .errors import (
    RejectionReason,
    SettlementError,
    ContractRejectedError,
    UnknownRejectionError,
    TransientSettlementError,
    TransactionRevertedError,
    MissingSignerError,
    is_permanent
)
from .config import CoordinatorConfig, RevealConfig, ExecutorConfig, HookClientConfig, Settings
from .hashing import compute_commitment_hash, get_pool_id
from .scheduler import TimerScheduler, AsyncioTimerScheduler
from .dispatch import FanOutDispatcher, DispatchReport
from .messages import MessageTopic, AgentMessage, readiness_message, signal_from_message
from .coordinator import ReadinessCoordinator, resolve_conflict
from .reveals import RevealStore
from .batching import BatchExecutionEngine
from .hook_client import SettlementClient, PrivBatchHookClient
from .service import BatchService

__all__ = [
    "ZERO_ADDRESS",
    "ConflictStrategy",
    "PoolKey",
    "SwapIntent",
    "CommitmentData",
    "ReadinessSignal",
    "BatchParameters",
    "PoolStateSnapshot",
    "RevealRecord",
    "RevealValidation",
    "RevealSubmissionResult",
    "ZKProof",
    "TransactionResult",
    "BatchReadiness",
    "BatchExecutionResult",
    "ExecutionStats",
    "RejectionReason",
    "SettlementError",
    "ContractRejectedError",
    "UnknownRejectionError",
    "TransientSettlementError",
    "TransactionRevertedError",
    "MissingSignerError",
    "is_permanent",
    "CoordinatorConfig",
    "RevealConfig",
    "ExecutorConfig",
    "HookClientConfig",
    "Settings",
    "compute_commitment_hash",
    "get_pool_id",
    "TimerScheduler",
    "AsyncioTimerScheduler",
    "FanOutDispatcher",
    "DispatchReport",
    "MessageTopic",
    "AgentMessage",
    "readiness_message",
    "signal_from_message",
    "ReadinessCoordinator",
    "resolve_conflict",
    "RevealStore",
    "BatchExecutionEngine",
    "SettlementClient",
    "PrivBatchHookClient",
    "BatchService"
]
