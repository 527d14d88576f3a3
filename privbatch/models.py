"""
Data models for PrivBatch batch coordination
Trade intents, readiness signals, reveal records and execution results
"""
import time
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple
from pydantic import BaseModel, Field


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ConflictStrategy(str, Enum):
    """How conflicting numeric preferences are combined"""
    MEDIAN = "median"
    MEAN = "mean"
    MIN = "min"
    MAX = "max"


class PoolKey(BaseModel):
    """Uniswap v4 style pool key"""
    currency0: str
    currency1: str
    fee: int  # e.g. 3000 for 0.3%
    tick_spacing: int
    hooks: str  # Hook contract address

    def to_tuple(self) -> Tuple[str, str, int, int, str]:
        return (self.currency0, self.currency1, self.fee, self.tick_spacing, self.hooks)


class SwapIntent(BaseModel):
    """Trade parameters hidden behind a commitment until reveal"""
    user: str
    token_in: str
    token_out: str
    amount_in: int
    min_amount_out: int
    recipient: str
    nonce: int
    deadline: int  # Unix timestamp (seconds)

    def to_tuple(self) -> Tuple[str, str, str, int, int, str, int, int]:
        return (
            self.user,
            self.token_in,
            self.token_out,
            self.amount_in,
            self.min_amount_out,
            self.recipient,
            self.nonce,
            self.deadline,
        )


class CommitmentData(BaseModel):
    """Commitment as an agent keeps it off-chain"""
    commitment_hash: str
    swap_intent: SwapIntent
    pool_id: str
    submitted_at: float = Field(default_factory=time.time)
    revealed: bool = False


class ReadinessSignal(BaseModel):
    """An agent's "ready for the next batch" signal for one pool"""
    agent_id: str
    pool_id: str
    ready: bool = True
    pending_commitments: int = Field(default=0, ge=0)
    preferred_slippage_bps: Optional[int] = Field(default=None, ge=0)
    preferred_deadline_extension: Optional[int] = Field(default=None, ge=0)
    timestamp: float = Field(default_factory=time.time)


class BatchParameters(BaseModel):
    """Parameters resolved from all ready agents when a batch fires"""
    slippage_bps: int
    deadline_extension: int
    participating_agents: List[str] = Field(default_factory=list)
    total_commitments: int = 0


class PoolStateSnapshot(BaseModel):
    """Read-only view of a pool's coordination state"""
    pool_id: str
    ready_agents: List[str] = Field(default_factory=list)
    total_ready: int = 0
    quorum_met: bool = False
    countdown_active: bool = False
    countdown_remaining: float = 0.0  # seconds
    total_pending_commitments: int = 0
    last_batch_at: float = 0.0


class RevealRecord(BaseModel):
    """A disclosed intent waiting to be submitted and executed"""
    commitment_hash: str
    intent: SwapIntent
    pool_key: PoolKey
    pool_id: str
    proof_required: bool = False
    submitted_on_chain: bool = False
    submitted_at: Optional[float] = None


class RevealValidation(BaseModel):
    """Outcome of validating a reveal against its commitment"""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class RevealSubmissionResult(BaseModel):
    """Per-record outcome of a reveal submission"""
    commitment_hash: str
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class ZKProof(BaseModel):
    """Groth16 proof attached to a proof-based commitment"""
    a: Tuple[int, int]
    b: Tuple[Tuple[int, int], Tuple[int, int]]
    c: Tuple[int, int]
    public_signals: Tuple[int]


class TransactionResult(BaseModel):
    """Mined transaction as returned by the settlement client"""
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: int = 0
    success: bool = True


class BatchReadiness(BaseModel):
    """Combined on-chain and local readiness of a pool"""
    pool_id: str
    can_exec: bool
    pending_on_chain: int
    reveals_ready: int
    meets_minimum: bool


class BatchExecutionResult(BaseModel):
    """History record, one per execution attempt"""
    pool_id: str
    success: bool
    tx_hash: Optional[str] = None
    batch_size: int = 0
    cost: Optional[int] = None  # gas used
    error: Optional[str] = None
    executed_at: float = Field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return self.model_dump()


class ExecutionStats(BaseModel):
    """Aggregates over the execution history"""
    total_batches: int = 0
    successful_batches: int = 0
    failed_batches: int = 0
    total_swaps: int = 0
    total_cost: int = 0
