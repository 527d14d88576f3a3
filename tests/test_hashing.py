"""Tests for commitment hash and pool id derivation."""

from eth_abi import encode
from eth_utils import keccak

from privbatch.hashing import INTENT_ABI_TYPES, compute_commitment_hash, get_pool_id, same_hash


class TestCommitmentHash:
    def test_matches_abi_encoded_keccak(self, make_intent) -> None:
        intent = make_intent()
        expected = "0x" + keccak(encode(INTENT_ABI_TYPES, list(intent.to_tuple()))).hex()

        assert compute_commitment_hash(intent) == expected

    def test_format_and_determinism(self, make_intent) -> None:
        digest = compute_commitment_hash(make_intent())

        assert digest.startswith("0x")
        assert len(digest) == 66
        assert digest == compute_commitment_hash(make_intent())

    def test_any_field_changes_the_hash(self, make_intent) -> None:
        base = compute_commitment_hash(make_intent())

        assert compute_commitment_hash(make_intent(nonce=2)) != base
        assert compute_commitment_hash(make_intent(min_amount_out=1)) != base

    def test_same_hash_ignores_case(self, make_intent) -> None:
        digest = compute_commitment_hash(make_intent())
        assert same_hash(digest, "0x" + digest[2:].upper())


class TestPoolId:
    def test_pool_id_depends_on_fee(self, pool_key) -> None:
        other = pool_key.model_copy(update={"fee": 500})

        assert len(get_pool_id(pool_key)) == 66
        assert get_pool_id(pool_key) != get_pool_id(other)
