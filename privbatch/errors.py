"""
Settlement error types
Every failure raised by a settlement client is a SettlementError subclass,
so retry classification is a match over a closed set of types and reasons.
"""
from enum import Enum
from typing import Optional


class RejectionReason(str, Enum):
    """Known custom errors of the batch hook contract"""
    INVALID_COMMITMENT = "InvalidCommitment"
    SLIPPAGE_EXCEEDED_FOR_USER = "SlippageExceededForUser"
    CURRENCY_NOT_SETTLED = "CurrencyNotSettled"
    DEADLINE_EXPIRED = "DeadlineExpired"
    INVALID_NONCE = "InvalidNonce"
    INSUFFICIENT_COMMITMENTS = "InsufficientCommitments"
    BATCH_CONDITIONS_NOT_MET = "BatchConditionsNotMet"
    SWAP_EXECUTION_FAILED = "SwapExecutionFailed"


# 4-byte selectors of the contract's custom errors
ERROR_SELECTORS = {
    "0xc06789fa": RejectionReason.INVALID_COMMITMENT,
    "0x56a270ff": RejectionReason.SLIPPAGE_EXCEEDED_FOR_USER,
    "0x5212cba1": RejectionReason.CURRENCY_NOT_SETTLED,
    "0x1ab7da6b": RejectionReason.DEADLINE_EXPIRED,
    "0x756688fe": RejectionReason.INVALID_NONCE,
    "0xfc4f2304": RejectionReason.INSUFFICIENT_COMMITMENTS,
    "0x75c1bb14": RejectionReason.BATCH_CONDITIONS_NOT_MET,
    "0xe1cd5509": RejectionReason.SWAP_EXECUTION_FAILED,
}

# Resubmitting the same inputs reproduces these rejections
PERMANENT_REJECTIONS = frozenset({
    RejectionReason.INVALID_COMMITMENT,
    RejectionReason.INSUFFICIENT_COMMITMENTS,
    RejectionReason.BATCH_CONDITIONS_NOT_MET,
    RejectionReason.DEADLINE_EXPIRED,
})


class SettlementError(Exception):
    """Base error for all settlement-client failures."""


class ContractRejectedError(SettlementError):
    """The contract reverted with a known custom error."""

    def __init__(self, reason: RejectionReason, label: str = "", selector: Optional[str] = None) -> None:
        self.reason = reason
        self.label = label
        self.selector = selector
        msg = f"Contract reverted with {reason.value}"
        if selector:
            msg += f" ({selector})"
        if label:
            msg = f"{label}: {msg}"
        super().__init__(msg)

    @property
    def permanent(self) -> bool:
        return self.reason in PERMANENT_REJECTIONS


class UnknownRejectionError(SettlementError):
    """The contract reverted with a selector we cannot decode."""

    def __init__(self, selector: str, label: str = "") -> None:
        self.selector = selector
        self.label = label
        super().__init__(f"{label + ': ' if label else ''}Unknown error: {selector}")


class TransientSettlementError(SettlementError):
    """Transport, timeout or nonce/fee race; worth retrying."""

    def __init__(self, detail: str = "", label: str = "") -> None:
        self.detail = detail
        self.label = label
        super().__init__(f"{label + ': ' if label else ''}{detail or 'transient failure'}")


class TransactionRevertedError(TransientSettlementError):
    """Transaction was mined with a failed status and no decodable reason."""

    def __init__(self, tx_hash: str, label: str = "") -> None:
        self.tx_hash = tx_hash
        super().__init__(f"transaction {tx_hash} reverted", label=label)


class MissingSignerError(SettlementError):
    """The client has no private key, so it cannot send transactions."""

    def __init__(self, label: str = "") -> None:
        self.label = label
        super().__init__(f"{label + ': ' if label else ''}private key required to send transactions")


def decode_selector(data: str) -> Optional[RejectionReason]:
    """Map revert data (selector plus optional arguments) to a known reason"""
    if not data:
        return None
    return ERROR_SELECTORS.get(data[:10].lower())


def is_permanent(error: BaseException) -> bool:
    """
    Classify an error for retry purposes.

    A ContractRejectedError whose reason is in PERMANENT_REJECTIONS and a
    MissingSignerError are permanent; anything else is treated as transient.
    """
    if isinstance(error, ContractRejectedError):
        return error.permanent
    return isinstance(error, MissingSignerError)
