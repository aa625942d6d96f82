"""
Permit tests.

Signed escrow authorizations: verification, nonce consumption and replay,
and plan creation through permits instead of approvals.
"""

import pytest

from nftvest.core.crypto_utils import ZERO_ADDRESS, deterministic_keypair_from_seed
from nftvest.core.vesting.permits import Permit, permit_digest, sign_permit
from nftvest.core.vesting_exceptions import (
    CollectionError,
    DuplicateTokenIdError,
    InsufficientApprovalError,
    InvalidSignatureError,
    InvalidTokenSelectionError,
    PermitExpiredError,
)

T0 = 1_700_000_000
DAY = 86_400


@pytest.fixture
def make_permit(engine, collection, issuer_keys):
    """Sign a permit for the current nonce of a token."""

    def _make(token_id, deadline=T0 + DAY, keys=None, signed_token_id=None, domain=None):
        private_key, public_key = keys or issuer_keys
        signature = sign_permit(
            private_key,
            engine.address,
            collection.address,
            token_id if signed_token_id is None else signed_token_id,
            engine.permits.nonce_of(collection.address, token_id),
            deadline,
            domain=domain or engine.permits.domain,
        )
        return Permit(
            token_id=token_id,
            deadline=deadline,
            signature=signature,
            use_permit=True,
            signer_public_key=public_key,
        )

    return _make


def _reason(exc_info):
    return exc_info.value.details["reason"]


class TestPermitDigest:
    def test_deterministic(self):
        args = ("0x" + "a" * 40, "0x" + "b" * 40, 1, 0, T0)
        assert permit_digest(*args, domain="d") == permit_digest(*args, domain="d")

    def test_binds_every_field(self):
        base = permit_digest("0x" + "a" * 40, "0x" + "b" * 40, 1, 0, T0, domain="d")
        assert base != permit_digest("0x" + "a" * 40, "0x" + "b" * 40, 1, 1, T0, domain="d")
        assert base != permit_digest("0x" + "a" * 40, "0x" + "b" * 40, 2, 0, T0, domain="d")
        assert base != permit_digest("0x" + "a" * 40, "0x" + "b" * 40, 1, 0, T0 + 1, domain="d")
        assert base != permit_digest("0x" + "c" * 40, "0x" + "b" * 40, 1, 0, T0, domain="d")
        assert base != permit_digest("0x" + "a" * 40, "0x" + "b" * 40, 1, 0, T0, domain="e")

    def test_address_case_ignored(self):
        lower = permit_digest("0x" + "a" * 40, "0x" + "b" * 40, 1, 0, T0, domain="d")
        upper = permit_digest("0x" + "A" * 40, "0x" + "B" * 40, 1, 0, T0, domain="d")
        assert lower == upper


class TestPermitVerify:
    def test_valid_permit(self, engine, collection, issuer, make_permit):
        assert engine.permits.verify(collection, make_permit(1), T0) == issuer

    def test_deadline_is_inclusive(self, engine, collection, make_permit):
        engine.permits.verify(collection, make_permit(1, deadline=T0), T0)

    def test_expired(self, engine, collection, make_permit):
        with pytest.raises(PermitExpiredError):
            engine.permits.verify(collection, make_permit(1, deadline=T0 - 1), T0)

    def test_wrong_signer(self, engine, collection, make_permit):
        other_keys = deterministic_keypair_from_seed(b"not-the-owner")
        with pytest.raises(InvalidSignatureError) as exc_info:
            engine.permits.verify(collection, make_permit(1, keys=other_keys), T0)
        assert _reason(exc_info) == "signer_not_owner"

    def test_signature_for_other_token(self, engine, collection, make_permit):
        with pytest.raises(InvalidSignatureError) as exc_info:
            engine.permits.verify(collection, make_permit(1, signed_token_id=2), T0)
        assert _reason(exc_info) == "bad_signature"

    def test_wrong_domain(self, engine, collection, make_permit):
        with pytest.raises(InvalidSignatureError) as exc_info:
            engine.permits.verify(collection, make_permit(1, domain="nftvest-permit-elsewhere"), T0)
        assert _reason(exc_info) == "bad_signature"

    def test_missing_signature(self, engine, collection, issuer_keys):
        permit = Permit(token_id=1, deadline=T0 + DAY, use_permit=True, signer_public_key=issuer_keys[1])
        with pytest.raises(InvalidSignatureError) as exc_info:
            engine.permits.verify(collection, permit, T0)
        assert _reason(exc_info) == "missing_signature"

    def test_malformed_public_key(self, engine, collection, make_permit):
        permit = make_permit(1)
        bad = Permit(permit.token_id, permit.deadline, permit.signature, True, "zz-not-hex")
        with pytest.raises(InvalidSignatureError) as exc_info:
            engine.permits.verify(collection, bad, T0)
        assert _reason(exc_info) == "malformed_public_key"

    def test_corrupted_signature(self, engine, collection, make_permit):
        permit = make_permit(1)
        bad = Permit(permit.token_id, permit.deadline, "00" * 64, True, permit.signer_public_key)
        with pytest.raises(InvalidSignatureError):
            engine.permits.verify(collection, bad, T0)


class TestPermitApply:
    def test_apply_approves_engine_and_consumes_nonce(self, engine, collection, make_permit):
        permit = make_permit(1)
        engine.permits.apply(collection, permit, T0)
        assert collection.get_approved(1) == engine.address
        assert engine.permits.nonce_of(collection.address, 1) == 1

    def test_replay_rejected(self, engine, collection, make_permit):
        permit = make_permit(1)
        engine.permits.apply(collection, permit, T0)
        with pytest.raises(InvalidSignatureError):
            engine.permits.apply(collection, permit, T0)
        assert engine.permits.nonce_of(collection.address, 1) == 1

    def test_restore_nonce(self, engine, collection, issuer, make_permit):
        permit = make_permit(1)
        engine.permits.apply(collection, permit, T0)
        engine.permits.restore_nonce(collection.address, 1)
        assert engine.permits.nonce_of(collection.address, 1) == 0
        assert engine.permits.verify(collection, permit, T0) == issuer

    def test_restore_nonce_never_negative(self, engine, collection):
        engine.permits.restore_nonce(collection.address, 5)
        assert engine.permits.nonce_of(collection.address, 5) == 0


class TestCreateWithPermits:
    def test_create_without_prior_approval(self, engine, collection, issuer, beneficiary, make_permit):
        permits = [make_permit(1), make_permit(2)]
        plan_id = engine.create_linear_plan(issuer, beneficiary, collection.address, 4, [1, 2], permits=permits)

        assert collection.tokens_of_owner(engine.address) == [1, 2]
        assert collection.get_approved(1) == ZERO_ADDRESS
        assert engine.permits.nonce_of(collection.address, 1) == 1
        assert engine.get_plan(plan_id).total_count == 2

    def test_mixed_permit_and_approval(self, engine, collection, issuer, beneficiary, make_permit):
        collection.approve(issuer, engine.address, 2)
        engine.create_linear_plan(issuer, beneficiary, collection.address, 4, [1, 2], permits=[make_permit(1)])
        assert collection.owner_of(2) == engine.address

    def test_expired_permit_blocks_create(self, engine, collection, issuer, beneficiary, make_permit):
        with pytest.raises(PermitExpiredError):
            engine.create_linear_plan(
                issuer, beneficiary, collection.address, 4, [1], permits=[make_permit(1, deadline=T0 - 1)]
            )
        assert collection.owner_of(1) == issuer
        assert engine.permits.nonce_of(collection.address, 1) == 0

    def test_disabled_permit_is_ignored(self, engine, collection, issuer, beneficiary, make_permit):
        permit = make_permit(1)
        disabled = Permit(permit.token_id, permit.deadline, permit.signature, False, permit.signer_public_key)
        with pytest.raises(InsufficientApprovalError):
            engine.create_linear_plan(issuer, beneficiary, collection.address, 4, [1], permits=[disabled])

    def test_permit_for_foreign_token(self, engine, collection, issuer, beneficiary, make_permit):
        collection.approve(issuer, engine.address, 1)
        with pytest.raises(InvalidTokenSelectionError):
            engine.create_linear_plan(issuer, beneficiary, collection.address, 4, [1], permits=[make_permit(3)])

    def test_two_permits_for_one_token(self, engine, collection, issuer, beneficiary, make_permit):
        with pytest.raises(DuplicateTokenIdError):
            engine.create_linear_plan(
                issuer, beneficiary, collection.address, 4, [1], permits=[make_permit(1), make_permit(1)]
            )

    def test_rollback_restores_nonces(self, engine, collection, issuer, beneficiary, make_permit, monkeypatch):
        permits = [make_permit(1), make_permit(2)]
        original = collection.transfer_from

        def flaky(caller, from_addr, to_addr, token_id):
            if token_id == 2 and to_addr == engine.address:
                raise CollectionError("transfer refused")
            return original(caller, from_addr, to_addr, token_id)

        monkeypatch.setattr(collection, "transfer_from", flaky)
        with pytest.raises(CollectionError):
            engine.create_linear_plan(issuer, beneficiary, collection.address, 4, [1, 2], permits=permits)

        assert collection.owner_of(1) == issuer
        assert engine.permits.nonce_of(collection.address, 1) == 0
        assert engine.permits.nonce_of(collection.address, 2) == 0
        assert engine.registry.all_plan_ids() == []
