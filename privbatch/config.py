"""
Configuration for the batch coordination pipeline
Defaults are documented on each field; Settings.from_env() reads PRIVBATCH_* variables
"""
import os
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .models import ConflictStrategy

ENV_PREFIX = "PRIVBATCH_"


class CoordinatorConfig(BaseModel):
    """Readiness coordination settings"""
    quorum: int = Field(default=2, ge=1)  # Minimum ready agents
    min_total_commitments: int = Field(default=2, ge=0)  # Matches on-chain MIN_COMMITMENTS
    countdown_seconds: float = Field(default=30.0, ge=0)
    stale_signal_seconds: float = Field(default=120.0, gt=0)
    conflict_strategy: ConflictStrategy = ConflictStrategy.MEDIAN
    default_slippage_bps: int = Field(default=50, ge=0)
    default_deadline_extension: int = Field(default=300, ge=0)  # seconds


class RevealConfig(BaseModel):
    """Reveal submission settings"""
    submission_delay_seconds: float = Field(default=2.0, ge=0)  # Spacing between reveal txs


class ExecutorConfig(BaseModel):
    """Batch execution settings"""
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    post_reveal_delay_seconds: float = Field(default=10.0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=5.0, ge=0)  # Grows linearly per attempt
    default_min_commitments: int = Field(default=2, ge=0)  # Used when MIN_COMMITMENTS cannot be read
    use_proofs: bool = True


class HookClientConfig(BaseModel):
    """Settlement contract connection"""
    rpc_url: str = "http://127.0.0.1:8545"
    hook_address: Optional[str] = None
    private_key: Optional[str] = None
    receipt_timeout_seconds: float = Field(default=180.0, gt=0)
    gas_buffer_percent: int = Field(default=30, ge=0)
    max_retries: int = Field(default=3, ge=0)  # Resends on nonce/fee races
    retry_delay_seconds: float = Field(default=2.0, ge=0)  # Grows linearly per attempt


class Settings(BaseModel):
    """All settings for one process"""
    coordinator: CoordinatorConfig = Field(default_factory=CoordinatorConfig)
    reveals: RevealConfig = Field(default_factory=RevealConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    hook_client: HookClientConfig = Field(default_factory=HookClientConfig)

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "Settings":
        """
        Build settings from environment variables

        Unset variables keep their defaults. Values are validated by pydantic,
        so a malformed variable raises pydantic.ValidationError.
        """
        if load_env_file:
            load_dotenv()

        def env(name: str) -> Optional[str]:
            value = os.getenv(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        def section(mapping: dict) -> dict:
            return {field: env(var) for field, var in mapping.items() if env(var) is not None}

        return cls(
            coordinator=CoordinatorConfig(**section({
                "quorum": "QUORUM",
                "min_total_commitments": "MIN_TOTAL_COMMITMENTS",
                "countdown_seconds": "COUNTDOWN_SECONDS",
                "stale_signal_seconds": "STALE_SIGNAL_SECONDS",
                "conflict_strategy": "CONFLICT_STRATEGY",
                "default_slippage_bps": "DEFAULT_SLIPPAGE_BPS",
                "default_deadline_extension": "DEFAULT_DEADLINE_EXTENSION",
            })),
            reveals=RevealConfig(**section({
                "submission_delay_seconds": "SUBMISSION_DELAY_SECONDS",
            })),
            executor=ExecutorConfig(**section({
                "poll_interval_seconds": "POLL_INTERVAL_SECONDS",
                "post_reveal_delay_seconds": "POST_REVEAL_DELAY_SECONDS",
                "max_retries": "MAX_RETRIES",
                "retry_base_delay_seconds": "RETRY_BASE_DELAY_SECONDS",
                "default_min_commitments": "DEFAULT_MIN_COMMITMENTS",
                "use_proofs": "USE_PROOFS",
            })),
            hook_client=HookClientConfig(**section({
                "rpc_url": "RPC_URL",
                "hook_address": "HOOK_ADDRESS",
                "private_key": "PRIVATE_KEY",
                "receipt_timeout_seconds": "RECEIPT_TIMEOUT_SECONDS",
                "gas_buffer_percent": "GAS_BUFFER_PERCENT",
                "max_retries": "TX_MAX_RETRIES",
                "retry_delay_seconds": "TX_RETRY_DELAY_SECONDS",
            })),
        )
