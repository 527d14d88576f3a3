"""
Commitment and pool id hashing
Must match the hook contract's keccak256(abi.encode(...)) exactly
"""
from eth_abi import encode
from eth_utils import keccak

from .models import PoolKey, SwapIntent

INTENT_ABI_TYPES = [
    "address",  # user
    "address",  # tokenIn
    "address",  # tokenOut
    "uint256",  # amountIn
    "uint256",  # minAmountOut
    "address",  # recipient
    "uint256",  # nonce
    "uint256",  # deadline
]

POOL_KEY_ABI_TYPES = ["address", "address", "uint24", "int24", "address"]


def _keccak_hex(data: bytes) -> str:
    return "0x" + keccak(data).hex()


def compute_commitment_hash(intent: SwapIntent) -> str:
    """
    Compute the keccak256 commitment hash of a swap intent (non-proof path)

    Args:
        intent: Swap intent to hash

    Returns:
        0x-prefixed lowercase hex digest
    """
    encoded = encode(INTENT_ABI_TYPES, list(intent.to_tuple()))
    return _keccak_hex(encoded)


def get_pool_id(pool_key: PoolKey) -> str:
    """Pool id as computed on-chain by PoolIdLibrary.toId()"""
    encoded = encode(POOL_KEY_ABI_TYPES, list(pool_key.to_tuple()))
    return _keccak_hex(encoded)


def same_hash(left: str, right: str) -> bool:
    """Case-insensitive comparison of two hex digests"""
    return left.lower() == right.lower()
