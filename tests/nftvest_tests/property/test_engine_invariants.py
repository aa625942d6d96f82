"""
Property-based tests for engine accounting invariants.

Random sequences of time advances, claims and revocations are replayed
against a fresh engine; after every step the plan counters and the escrow
held on the source collection must agree.
"""

import pytest
from hypothesis import given, settings, strategies as st

from nftvest.core.contracts.erc721 import ERC721Collection
from nftvest.core.crypto_utils import address_from_label
from nftvest.core.vesting.engine import VestingEngine
from nftvest.core.vesting_exceptions import NothingToClaimError, AlreadyRevokedError

pytestmark = pytest.mark.property

T0 = 1_700_000_000
DAY = 86_400

ISSUER = address_from_label("prop-issuer")
BENEFICIARY = address_from_label("prop-beneficiary")
MINTER = address_from_label("prop-minter")

steps = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=120 * DAY),
        st.sampled_from(["claim", "claim", "claim", "revoke", "read"]),
    ),
    min_size=1,
    max_size=15,
)


class _Clock:
    def __init__(self):
        self.now = T0

    def __call__(self):
        return self.now


def _setup(token_count, template_id=None, tranches=None):
    clock = _Clock()
    engine = VestingEngine(name="prop-engine", time_provider=clock, permit_domain="prop")
    nft = ERC721Collection(name="Prop", symbol="PRP", owner=MINTER)
    for token_id in range(1, token_count + 1):
        nft.mint(MINTER, ISSUER, token_id)
    nft.set_approval_for_all(ISSUER, engine.address, True)
    engine.register_collection(nft)
    token_ids = list(range(1, token_count + 1))
    if tranches is None:
        plan_id = engine.create_linear_plan(ISSUER, BENEFICIARY, nft.address, template_id, token_ids)
    else:
        plan_id = engine.create_tranche_plan(ISSUER, BENEFICIARY, nft.address, token_ids, tranches)
    return clock, engine, nft, plan_id


def _check_invariants(engine, nft, plan_id):
    plan = engine.get_plan(plan_id)
    held = {token_id for token_id in nft.tokens_of_owner(engine.address)}
    assert plan.claimed_count <= plan.total_count
    assert plan.escrowed_token_ids == held
    assert len(plan.escrowed_token_ids) >= plan.ceiling - plan.claimed_count
    if plan.revoked:
        assert plan.claimed_count <= plan.vested_cap_on_revoke
        assert len(plan.escrowed_token_ids) == plan.vested_cap_on_revoke - plan.claimed_count
    else:
        assert len(plan.escrowed_token_ids) == plan.total_count - plan.claimed_count
    assert nft.balance_of(BENEFICIARY) == plan.claimed_count


def _replay(clock, engine, nft, plan_id, actions):
    for advance, action in actions:
        clock.now += advance
        before = engine.claimable_count(plan_id)
        assert engine.claimable_count(plan_id) == before
        if action == "claim":
            try:
                claimed = engine.claim(plan_id, BENEFICIARY)
            except NothingToClaimError:
                assert before == 0
            else:
                assert len(claimed) == before
                assert engine.claimable_count(plan_id) == 0
        elif action == "revoke":
            try:
                engine.revoke(plan_id, ISSUER)
            except AlreadyRevokedError:
                pass
        _check_invariants(engine, nft, plan_id)


class TestEngineInvariants:
    @given(
        template_id=st.sampled_from([1, 2, 3, 4]),
        token_count=st.integers(min_value=1, max_value=25),
        actions=steps,
    )
    @settings(max_examples=60, deadline=None)
    def test_linear_plan_sequences(self, template_id, token_count, actions):
        clock, engine, nft, plan_id = _setup(token_count, template_id=template_id)
        _replay(clock, engine, nft, plan_id, actions)

    @given(
        counts=st.lists(st.integers(min_value=0, max_value=4), min_size=1, max_size=5),
        actions=steps,
    )
    @settings(max_examples=60, deadline=None)
    def test_tranche_plan_sequences(self, counts, actions):
        cumulative, total = [], 0
        for index, inc in enumerate(counts):
            total += inc
            cumulative.append({"timestamp": T0 + (index + 1) * 30 * DAY, "count": total})
        token_count = max(total, 1)
        clock, engine, nft, plan_id = _setup(token_count, tranches=cumulative)
        _replay(clock, engine, nft, plan_id, actions)

    @given(offset=st.integers(min_value=0, max_value=800 * DAY), token_count=st.integers(min_value=1, max_value=25))
    @settings(max_examples=60, deadline=None)
    def test_revoke_splits_escrow_exactly(self, offset, token_count):
        clock, engine, nft, plan_id = _setup(token_count, template_id=3)
        clock.now += offset
        vested = engine.unlocked_count(plan_id, clock.now)
        returned = engine.revoke(plan_id, ISSUER)

        plan = engine.get_plan(plan_id)
        assert plan.vested_cap_on_revoke == vested
        assert len(returned) == token_count - vested
        assert sorted(returned) == returned
        assert all(token_id > max(plan.escrowed_token_ids, default=0) for token_id in returned)
        _check_invariants(engine, nft, plan_id)
