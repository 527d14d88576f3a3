"""
PrivBatch Hook Client
Handles interactions with the batch hook contract: commitments, reveals,
batch execution and readiness queries
"""
import asyncio
import logging
import re
from typing import (
    Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable
)

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware

from .config import HookClientConfig
from .errors import (
    ContractRejectedError, MissingSignerError, SettlementError, TransactionRevertedError,
    TransientSettlementError, UnknownRejectionError, decode_selector
)
from .gas_utils import apply_gas_recommendation, get_gas_recommendation, to_gwei_string
from .hashing import compute_commitment_hash, get_pool_id
from .models import PoolKey, SwapIntent, TransactionResult, ZKProof

logger = logging.getLogger(__name__)

# Node messages for nonce and fee races between transactions from one account
RETRYABLE_MESSAGES = (
    "REPLACEMENT_UNDERPRICED",
    "replacement fee too low",
    "replacement transaction underpriced",
    "nonce has already been used",
    "nonce too low",
    "NONCE_EXPIRED",
)

_REVERT_DATA_PATTERN = re.compile(r"data=[\"'](0x[a-fA-F0-9]+)[\"']|'data': '(0x[a-fA-F0-9]+)'")


@runtime_checkable
class SettlementClient(Protocol):
    """Operations the pipeline consumes from the settlement backend"""

    async def submit_commitment(self, pool_key: PoolKey, commitment_hash: str) -> TransactionResult:
        ...

    async def submit_commitment_with_proof(
        self, pool_key: PoolKey, commitment_hash: str, proof: ZKProof
    ) -> TransactionResult:
        ...

    async def submit_reveal(self, pool_key: PoolKey, intent: SwapIntent) -> TransactionResult:
        ...

    async def submit_reveal_for_zk(
        self, pool_key: PoolKey, commitment_hash: str, intent: SwapIntent
    ) -> TransactionResult:
        ...

    async def reveal_and_batch_execute(
        self, pool_key: PoolKey, commitment_hashes: Sequence[str]
    ) -> TransactionResult:
        ...

    async def reveal_and_batch_execute_with_proofs(
        self, pool_key: PoolKey, commitment_hashes: Sequence[str], proofs: Sequence[ZKProof]
    ) -> TransactionResult:
        ...

    async def checker(self, pool_id: str) -> Tuple[bool, str]:
        ...

    async def get_pending_commitment_count(self, pool_id: str) -> int:
        ...

    async def get_min_commitments(self) -> int:
        ...


POOL_KEY_COMPONENTS = [
    {"internalType": "Currency", "name": "currency0", "type": "address"},
    {"internalType": "Currency", "name": "currency1", "type": "address"},
    {"internalType": "uint24", "name": "fee", "type": "uint24"},
    {"internalType": "int24", "name": "tickSpacing", "type": "int24"},
    {"internalType": "contract IHooks", "name": "hooks", "type": "address"}
]

SWAP_INTENT_COMPONENTS = [
    {"internalType": "address", "name": "user", "type": "address"},
    {"internalType": "address", "name": "tokenIn", "type": "address"},
    {"internalType": "address", "name": "tokenOut", "type": "address"},
    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
    {"internalType": "uint256", "name": "minAmountOut", "type": "uint256"},
    {"internalType": "address", "name": "recipient", "type": "address"},
    {"internalType": "uint256", "name": "nonce", "type": "uint256"},
    {"internalType": "uint256", "name": "deadline", "type": "uint256"}
]

_KEY_INPUT = {"components": POOL_KEY_COMPONENTS, "internalType": "struct PoolKey", "name": "key", "type": "tuple"}
_INTENT_INPUT = {
    "components": SWAP_INTENT_COMPONENTS,
    "internalType": "struct SwapIntent",
    "name": "intent",
    "type": "tuple"
}
_HASH_INPUT = {"internalType": "bytes32", "name": "commitmentHash", "type": "bytes32"}
_PROOF_INPUTS = [
    {"internalType": "uint256[2]", "name": "a", "type": "uint256[2]"},
    {"internalType": "uint256[2][2]", "name": "b", "type": "uint256[2][2]"},
    {"internalType": "uint256[2]", "name": "c", "type": "uint256[2]"},
    {"internalType": "uint256[1]", "name": "publicSignals", "type": "uint256[1]"}
]


def load_hook_abi() -> List[Dict]:
    """Batch hook contract ABI (functions used off-chain only)"""
    return [
        {
            "inputs": [_KEY_INPUT, _HASH_INPUT],
            "name": "submitCommitment",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [_KEY_INPUT, _HASH_INPUT] + _PROOF_INPUTS,
            "name": "submitCommitmentWithProof",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [_KEY_INPUT, _INTENT_INPUT],
            "name": "submitReveal",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [_KEY_INPUT, _HASH_INPUT, _INTENT_INPUT],
            "name": "submitRevealForZK",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [
                _KEY_INPUT,
                {"internalType": "bytes32[]", "name": "commitmentHashes", "type": "bytes32[]"}
            ],
            "name": "revealAndBatchExecute",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [
                _KEY_INPUT,
                {"internalType": "bytes32[]", "name": "commitmentHashes", "type": "bytes32[]"},
                {"internalType": "uint256[2][]", "name": "proofsA", "type": "uint256[2][]"},
                {"internalType": "uint256[2][2][]", "name": "proofsB", "type": "uint256[2][2][]"},
                {"internalType": "uint256[2][]", "name": "proofsC", "type": "uint256[2][]"},
                {"internalType": "uint256[1][]", "name": "publicSignalsArray", "type": "uint256[1][]"}
            ],
            "name": "revealAndBatchExecuteWithProofs",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "PoolId", "name": "poolId", "type": "bytes32"}],
            "name": "checker",
            "outputs": [
                {"internalType": "bool", "name": "canExec", "type": "bool"},
                {"internalType": "bytes", "name": "execPayload", "type": "bytes"}
            ],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "PoolId", "name": "poolId", "type": "bytes32"}],
            "name": "getPendingCommitmentCount",
            "outputs": [{"internalType": "uint256", "name": "count", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
            "name": "verifiedCommitments",
            "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [],
            "name": "MIN_COMMITMENTS",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        },
        {
            "inputs": [],
            "name": "BATCH_INTERVAL",
            "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
            "stateMutability": "view",
            "type": "function"
        }
    ]


def _to_bytes32(value: str) -> bytes:
    return Web3.to_bytes(hexstr=value)


def _pool_key_arg(pool_key: PoolKey) -> Tuple[str, str, int, int, str]:
    return (
        Web3.to_checksum_address(pool_key.currency0),
        Web3.to_checksum_address(pool_key.currency1),
        pool_key.fee,
        pool_key.tick_spacing,
        Web3.to_checksum_address(pool_key.hooks),
    )


def _intent_arg(intent: SwapIntent) -> Tuple[str, str, str, int, int, str, int, int]:
    return (
        Web3.to_checksum_address(intent.user),
        Web3.to_checksum_address(intent.token_in),
        Web3.to_checksum_address(intent.token_out),
        intent.amount_in,
        intent.min_amount_out,
        Web3.to_checksum_address(intent.recipient),
        intent.nonce,
        intent.deadline,
    )


def _revert_data(error: BaseException) -> Optional[str]:
    """Extract 0x-prefixed revert data from a web3 error, if any"""
    data = error.data if isinstance(error, ContractLogicError) else None
    if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
        return data
    match = _REVERT_DATA_PATTERN.search(str(error))
    if match:
        return match.group(1) or match.group(2)
    return None


def is_nonce_race(error: BaseException) -> bool:
    """Whether a send failed on a nonce or replacement-fee race, and resending can succeed"""
    if isinstance(error, SettlementError) or _revert_data(error):
        return False
    message = str(error)
    return any(m in message for m in RETRYABLE_MESSAGES)


def translate_error(error: BaseException, label: str) -> SettlementError:
    """
    Map a web3/transport failure onto the settlement error hierarchy

    Args:
        error: Exception raised while sending or waiting for a transaction
        label: Operation name, used as the message prefix

    Returns:
        ContractRejectedError for known custom errors, UnknownRejectionError
        for undecodable selectors, TransientSettlementError otherwise
    """
    if isinstance(error, SettlementError):
        return error

    data = _revert_data(error)
    if data:
        reason = decode_selector(data)
        if reason is not None:
            return ContractRejectedError(reason, label=label, selector=data[:10].lower())
        return UnknownRejectionError(data[:10].lower(), label=label)

    if isinstance(error, TimeExhausted):
        return TransientSettlementError(f"receipt timeout: {error}", label=label)

    message = str(error)
    if is_nonce_race(error):
        return TransientSettlementError(f"nonce/fee conflict: {message[:100]}", label=label)

    return TransientSettlementError(message or type(error).__name__, label=label)


class PrivBatchHookClient:
    """
    Settlement client for the batch hook contract

    Features:
    - Commitment and reveal submission (standard and proof-based)
    - Batch execution with or without proofs
    - Readiness and threshold queries
    - Custom error decoding into ContractRejectedError
    """

    def __init__(
        self,
        rpc_url: str,
        hook_address: str,
        private_key: Optional[str] = None,
        receipt_timeout: float = 180.0,
        gas_buffer_percent: int = 30,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        w3: Optional[AsyncWeb3] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        # Add POA middleware for Cronos-style chains
        self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self.hook_address = hook_address
        self.receipt_timeout = receipt_timeout
        self.gas_buffer_percent = gas_buffer_percent
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.account = None

        if private_key:
            self.account = Account.from_key(private_key)
            self.w3.eth.default_account = self.account.address

        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(hook_address),
            abi=load_hook_abi()
        )

    @classmethod
    def from_config(cls, config: HookClientConfig) -> "PrivBatchHookClient":
        if not config.hook_address:
            raise ValueError("hook_address is required")
        return cls(
            rpc_url=config.rpc_url,
            hook_address=config.hook_address,
            private_key=config.private_key,
            receipt_timeout=config.receipt_timeout_seconds,
            gas_buffer_percent=config.gas_buffer_percent,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay_seconds
        )

    # Commitments

    async def submit_commitment(self, pool_key: PoolKey, commitment_hash: str) -> TransactionResult:
        """Submit a keccak256 commitment"""
        fn = self.contract.functions.submitCommitment(_pool_key_arg(pool_key), _to_bytes32(commitment_hash))
        return await self._send_transaction(fn, "submitCommitment")

    async def submit_commitment_with_proof(
        self, pool_key: PoolKey, commitment_hash: str, proof: ZKProof
    ) -> TransactionResult:
        """Submit a commitment together with its Groth16 proof"""
        fn = self.contract.functions.submitCommitmentWithProof(
            _pool_key_arg(pool_key),
            _to_bytes32(commitment_hash),
            list(proof.a),
            [list(row) for row in proof.b],
            list(proof.c),
            list(proof.public_signals)
        )
        return await self._send_transaction(fn, "submitCommitmentWithProof")

    # Reveals

    async def submit_reveal(self, pool_key: PoolKey, intent: SwapIntent) -> TransactionResult:
        """Reveal a keccak256-committed intent; the contract recomputes the hash"""
        fn = self.contract.functions.submitReveal(_pool_key_arg(pool_key), _intent_arg(intent))
        return await self._send_transaction(fn, "submitReveal")

    async def submit_reveal_for_zk(
        self, pool_key: PoolKey, commitment_hash: str, intent: SwapIntent
    ) -> TransactionResult:
        """Reveal an intent committed under a proof"""
        fn = self.contract.functions.submitRevealForZK(
            _pool_key_arg(pool_key), _to_bytes32(commitment_hash), _intent_arg(intent)
        )
        return await self._send_transaction(fn, "submitRevealForZK")

    # Batch execution

    async def reveal_and_batch_execute(
        self, pool_key: PoolKey, commitment_hashes: Sequence[str]
    ) -> TransactionResult:
        fn = self.contract.functions.revealAndBatchExecute(
            _pool_key_arg(pool_key), [_to_bytes32(h) for h in commitment_hashes]
        )
        return await self._send_transaction(fn, "revealAndBatchExecute")

    async def reveal_and_batch_execute_with_proofs(
        self, pool_key: PoolKey, commitment_hashes: Sequence[str], proofs: Sequence[ZKProof]
    ) -> TransactionResult:
        """
        Execute a batch, attaching one proof per commitment

        Raises:
            ValueError: if hash and proof counts differ
        """
        if len(commitment_hashes) != len(proofs):
            raise ValueError(
                f"Mismatched lengths: {len(commitment_hashes)} hashes vs {len(proofs)} proofs"
            )

        fn = self.contract.functions.revealAndBatchExecuteWithProofs(
            _pool_key_arg(pool_key),
            [_to_bytes32(h) for h in commitment_hashes],
            [list(p.a) for p in proofs],
            [[list(row) for row in p.b] for p in proofs],
            [list(p.c) for p in proofs],
            [list(p.public_signals) for p in proofs]
        )
        return await self._send_transaction(fn, "revealAndBatchExecuteWithProofs")

    # Queries

    async def checker(self, pool_id: str) -> Tuple[bool, str]:
        """Whether the contract considers the pool's batch executable"""
        can_exec, payload = await self.contract.functions.checker(_to_bytes32(pool_id)).call()
        return bool(can_exec), Web3.to_hex(payload)

    async def get_pending_commitment_count(self, pool_id: str) -> int:
        return int(await self.contract.functions.getPendingCommitmentCount(_to_bytes32(pool_id)).call())

    async def is_commitment_verified(self, commitment_hash: str) -> bool:
        return bool(await self.contract.functions.verifiedCommitments(_to_bytes32(commitment_hash)).call())

    async def get_min_commitments(self) -> int:
        return int(await self.contract.functions.MIN_COMMITMENTS().call())

    async def get_batch_interval(self) -> int:
        """Minimum seconds between batches for one pool"""
        return int(await self.contract.functions.BATCH_INTERVAL().call())

    # Utilities

    def compute_commitment_hash(self, intent: SwapIntent) -> str:
        return compute_commitment_hash(intent)

    def get_pool_id(self, pool_key: PoolKey) -> str:
        return get_pool_id(pool_key)

    def decode_error(self, data: str) -> str:
        """Human-readable name of a revert selector"""
        reason = decode_selector(data)
        if reason is None:
            return f"Unknown error: {data[:10]}"
        return reason.value

    # Internal

    async def _send_transaction(self, fn: Any, label: str) -> TransactionResult:
        """
        Estimate, sign, send and wait for a contract call

        Nonce and fee races are resent with a fresh nonce up to max_retries
        times, waiting retry_delay * attempt between tries.

        Raises:
            MissingSignerError: if the client was built without a private key
            SettlementError: every other failure, translated by translate_error()
        """
        if self.account is None:
            raise MissingSignerError(label)

        for attempt in range(self.max_retries + 1):
            try:
                tx_hash, receipt = await self._sign_and_send(fn, label)
                break
            except Exception as e:
                if attempt < self.max_retries and is_nonce_race(e):
                    delay = self.retry_delay * (attempt + 1)
                    logger.warning(
                        f"{label}: retryable error (attempt {attempt + 1}/{self.max_retries}), "
                        f"retrying in {delay}s: {str(e)[:100]}"
                    )
                    await self.sleep(delay)
                    continue
                raise translate_error(e, label) from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        if receipt['status'] != 1:
            raise TransactionRevertedError(tx_hash_hex, label=label)

        logger.info(f"{label}: confirmed in block {receipt['blockNumber']} ({tx_hash_hex[:10]}...)")

        return TransactionResult(
            tx_hash=tx_hash_hex,
            block_number=receipt['blockNumber'],
            gas_used=receipt['gasUsed'],
            success=True
        )

    async def _sign_and_send(self, fn: Any, label: str) -> Tuple[bytes, Dict[str, Any]]:
        gas_estimate = await fn.estimate_gas({'from': self.account.address})
        gas_limit = gas_estimate * (100 + self.gas_buffer_percent) // 100

        tx_params = {
            'from': self.account.address,
            'gas': gas_limit,
            'nonce': await self.w3.eth.get_transaction_count(self.account.address, 'pending')
        }
        recommendation = await get_gas_recommendation(self.w3)
        apply_gas_recommendation(tx_params, recommendation)
        logger.debug(
            f"{label}: gas={gas_limit} maxFee={to_gwei_string(recommendation['maxFeePerGas'])} gwei "
            f"({recommendation['source']})"
        )

        tx = await fn.build_transaction(tx_params)
        signed_tx = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        return tx_hash, receipt
