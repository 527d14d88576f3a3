"""
Reveal Store
Holds disclosed intents, validates them against their commitments and
submits them to the settlement client one at a time
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from eth_abi.exceptions import EncodingError
from eth_utils import is_address

from .hashing import compute_commitment_hash, same_hash
from .hook_client import SettlementClient
from .models import (
    ZERO_ADDRESS, CommitmentData, PoolKey, RevealRecord, RevealSubmissionResult,
    RevealValidation, SwapIntent
)

logger = logging.getLogger(__name__)


def _is_zero_address(address: Optional[str]) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


class RevealStore:
    """
    Off-chain store of reveals keyed by commitment hash

    Submission is strictly sequential with a fixed delay between records:
    the settlement client signs from a single account, and concurrent
    submissions would race on nonces. The store never retries; a failed
    submission is reported and the record stays pending.
    """

    def __init__(
        self,
        client: SettlementClient,
        submission_delay: float = 2.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.client = client
        self.submission_delay = submission_delay
        self.clock = clock
        self.sleep = sleep
        self._reveals: Dict[str, RevealRecord] = {}  # commitment_hash -> record

    # Collection

    def add_reveal(
        self,
        commitment_hash: str,
        intent: SwapIntent,
        pool_key: PoolKey,
        pool_id: str,
        proof_required: bool = False
    ) -> bool:
        """
        Store a reveal. A hash that is already present is left untouched.

        Returns:
            True if the reveal was added
        """
        if commitment_hash in self._reveals:
            logger.warning(f"Reveal for {commitment_hash[:10]}... already exists")
            return False

        self._reveals[commitment_hash] = RevealRecord(
            commitment_hash=commitment_hash,
            intent=intent,
            pool_key=pool_key,
            pool_id=pool_id,
            proof_required=proof_required
        )
        return True

    def collect_from_commitments(
        self,
        commitments: Iterable[CommitmentData],
        pool_key: PoolKey,
        proof_required: bool = False
    ) -> int:
        """Add reveals for every commitment not already marked revealed; returns how many were added"""
        added = 0
        for commitment in commitments:
            if commitment.revealed:
                continue
            if self.add_reveal(
                commitment.commitment_hash,
                commitment.swap_intent,
                pool_key,
                commitment.pool_id,
                proof_required
            ):
                added += 1
        return added

    # Validation

    def validate_reveal(self, record: RevealRecord) -> RevealValidation:
        """
        Validate a reveal against its commitment

        Every check runs; all failures are reported together.
        """
        errors: List[str] = []
        intent = record.intent

        now = int(self.clock())
        if intent.deadline < now:
            errors.append(f"Deadline expired: {intent.deadline} < {now}")

        if intent.amount_in <= 0:
            errors.append("amount_in must be positive")
        if intent.min_amount_out < 0:
            errors.append("min_amount_out cannot be negative")

        for field_name in ("user", "token_in", "token_out", "recipient"):
            address = getattr(intent, field_name)
            if _is_zero_address(address) or not is_address(address):
                errors.append(f"Invalid {field_name} address")

        # Proof-based commitments are bound by the proof, not by keccak
        if not record.proof_required:
            try:
                computed = compute_commitment_hash(intent)
            except (EncodingError, TypeError, ValueError) as e:
                errors.append(f"Hash could not be computed: {e}")
            else:
                if not same_hash(computed, record.commitment_hash):
                    errors.append(
                        f"Hash mismatch: computed={computed[:10]}... vs stored={record.commitment_hash[:10]}..."
                    )

        return RevealValidation(is_valid=not errors, errors=errors)

    def validate_all(self) -> Dict[str, RevealValidation]:
        return {h: self.validate_reveal(r) for h, r in self._reveals.items()}

    # Submission

    async def submit_all_reveals(self) -> List[RevealSubmissionResult]:
        """
        Submit every unsubmitted reveal, one after another

        A failing record does not stop the remaining ones.

        Returns:
            One result per attempted record, in submission order
        """
        results: List[RevealSubmissionResult] = []
        reveals = self.get_pending_unsubmitted()

        if not reveals:
            logger.info("No pending reveals to submit")
            return results

        logger.info(f"Submitting {len(reveals)} reveals...")

        for i, record in enumerate(reveals):
            results.append(await self._submit_single_reveal(record))

            if i < len(reveals) - 1:
                await self.sleep(self.submission_delay)

        success_count = sum(1 for r in results if r.success)
        logger.info(f"Submitted {success_count}/{len(reveals)} reveals successfully")

        return results

    async def _submit_single_reveal(self, record: RevealRecord) -> RevealSubmissionResult:
        try:
            validation = self.validate_reveal(record)
            if not validation.is_valid:
                logger.warning(
                    f"Reveal {record.commitment_hash[:10]}... failed validation: {', '.join(validation.errors)}"
                )
                return RevealSubmissionResult(
                    commitment_hash=record.commitment_hash,
                    success=False,
                    error=f"Validation failed: {', '.join(validation.errors)}"
                )

            if record.proof_required:
                tx = await self.client.submit_reveal_for_zk(
                    record.pool_key, record.commitment_hash, record.intent
                )
            else:
                tx = await self.client.submit_reveal(record.pool_key, record.intent)
        except Exception as e:
            logger.error(f"Failed to submit reveal {record.commitment_hash[:10]}...: {e}")
            return RevealSubmissionResult(
                commitment_hash=record.commitment_hash,
                success=False,
                error=str(e) or type(e).__name__
            )

        record.submitted_on_chain = True
        record.submitted_at = self.clock()
        logger.info(f"Reveal {record.commitment_hash[:10]}... submitted: {tx.tx_hash}")

        return RevealSubmissionResult(
            commitment_hash=record.commitment_hash,
            success=True,
            tx_hash=tx.tx_hash
        )

    # Queries

    def get(self, commitment_hash: str) -> Optional[RevealRecord]:
        return self._reveals.get(commitment_hash)

    def get_pending_unsubmitted(self) -> List[RevealRecord]:
        """Reveals not yet submitted on-chain"""
        return [r for r in self._reveals.values() if not r.submitted_on_chain]

    def get_submitted_reveals(self) -> List[RevealRecord]:
        """Reveals submitted on-chain, eligible for batch execution"""
        return [r for r in self._reveals.values() if r.submitted_on_chain]

    def get_reveals_for_pool(self, pool_id: str) -> List[RevealRecord]:
        return [r for r in self._reveals.values() if r.pool_id == pool_id]

    def get_submitted_commitment_hashes(self) -> List[str]:
        return [r.commitment_hash for r in self.get_submitted_reveals()]

    def get_submitted_hashes_for_pool(self, pool_id: str) -> List[str]:
        return [r.commitment_hash for r in self.get_reveals_for_pool(pool_id) if r.submitted_on_chain]

    @property
    def pending_count(self) -> int:
        return len(self.get_pending_unsubmitted())

    @property
    def submitted_count(self) -> int:
        return len(self.get_submitted_reveals())

    def __len__(self) -> int:
        return len(self._reveals)

    def __contains__(self, commitment_hash: str) -> bool:
        return commitment_hash in self._reveals

    # Lifecycle

    def clear_executed_reveals(self, commitment_hashes: Iterable[str]):
        """Drop reveals included in a confirmed batch"""
        for commitment_hash in commitment_hashes:
            self._reveals.pop(commitment_hash, None)

    def clear_pool(self, pool_id: str):
        for commitment_hash in [h for h, r in self._reveals.items() if r.pool_id == pool_id]:
            del self._reveals[commitment_hash]

    def clear_all(self):
        self._reveals.clear()
