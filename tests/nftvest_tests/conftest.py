"""
Shared fixtures for the vesting engine tests.

The engine runs on a FakeClock so every test pins time explicitly. The
issuer's address is derived from a deterministic secp256k1 key so permit
tests can sign for it.
"""

from __future__ import annotations

import pytest

from nftvest.core.contracts.erc721 import ERC721Collection
from nftvest.core.crypto_utils import (
    address_from_label,
    address_from_public_key,
    deterministic_keypair_from_seed,
)
from nftvest.core.vesting.engine import VestingEngine

T0 = 1_700_000_000
DAY = 86_400


class FakeClock:
    """Callable time provider that only moves when told to."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now

    def set(self, timestamp: int) -> int:
        self.now = timestamp
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer_keys():
    """(private_hex, public_hex) for the issuer."""
    return deterministic_keypair_from_seed(b"nftvest-test-issuer")


@pytest.fixture
def issuer(issuer_keys):
    return address_from_public_key(issuer_keys[1])


@pytest.fixture
def beneficiary():
    return address_from_label("beneficiary")


@pytest.fixture
def outsider():
    return address_from_label("outsider")


@pytest.fixture
def minter():
    return address_from_label("minter")


@pytest.fixture
def engine(clock):
    return VestingEngine(name="test-engine", time_provider=clock, permit_domain="nftvest-permit-test")


@pytest.fixture
def collection(engine, issuer, minter):
    """Registered collection with tokens 1..20 owned by the issuer, no approvals."""
    nft = ERC721Collection(name="Genesis", symbol="GEN", base_uri="ipfs://genesis/", owner=minter)
    for token_id in range(1, 21):
        nft.mint(minter, issuer, token_id)
    engine.register_collection(nft)
    return nft


@pytest.fixture
def approved_collection(collection, engine, issuer):
    """Same collection with a blanket approval for the engine."""
    collection.set_approval_for_all(issuer, engine.address, True)
    return collection


@pytest.fixture
def make_linear_plan(engine, approved_collection, issuer, beneficiary):
    """Factory creating a linear plan at the current clock time."""

    def _make(token_ids=(1, 2, 3, 4, 5), template_id=4, **overrides):
        return engine.create_linear_plan(
            issuer=overrides.get("issuer", issuer),
            beneficiary=overrides.get("beneficiary", beneficiary),
            source_collection=overrides.get("source_collection", approved_collection.address),
            template_id=template_id,
            token_ids=list(token_ids),
        )

    return _make


@pytest.fixture
def make_tranche_plan(engine, approved_collection, issuer, beneficiary):
    """Factory creating a tranche plan with offsets relative to T0."""

    def _make(token_ids=(1, 2, 3), tranches=((30 * DAY, 1), (60 * DAY, 3))):
        schedule = [{"timestamp": T0 + offset, "count": count} for offset, count in tranches]
        return engine.create_tranche_plan(
            issuer=issuer,
            beneficiary=beneficiary,
            source_collection=approved_collection.address,
            token_ids=list(token_ids),
            tranche_schedule=schedule,
        )

    return _make
