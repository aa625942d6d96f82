"""
Plan registry.

Owns every Plan, the global escrow index and plan id assignment. All
mutations of plan state and of escrowed custody go through this class:

- `create` is globally serialized so a token id can enter exactly one
  plan's escrow.
- Mutations of an existing plan run under that plan's lock.
- Every mutating method validates everything it can before the first state
  change and rolls back custody moves if a later step fails.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

from ..contracts.erc721 import ERC721Collection
from ..contracts.position_token import PositionTokenIssuer
from ..crypto_utils import is_valid_address, normalize_address
from ..vesting_exceptions import (
    ClaimExceedsCapError,
    CollectionError,
    CollectionNotFoundError,
    DuplicateTokenIdError,
    EscrowInvariantError,
    IncorrectOwnerError,
    InsufficientApprovalError,
    InvalidBeneficiaryError,
    InvalidTokenSelectionError,
    NoTokensProvidedError,
    PlanNotFoundError,
    UnauthorizedError,
)
from .permits import Permit, PermitHandler
from .plan import Plan, Schedule
from .schedules import LinearTemplate

logger = logging.getLogger(__name__)


@dataclass
class PlanParams:
    """Validated-on-create input for a new plan."""

    issuer: str
    beneficiary: str
    source_collection: str
    token_ids: Sequence[int]
    schedule: Schedule
    start_time: int
    permits: Sequence[Permit] = field(default_factory=tuple)

    @property
    def is_linear(self) -> bool:
        return isinstance(self.schedule, LinearTemplate)


def require_token_ids(token_ids: Iterable[object]) -> list[int]:
    """
    Normalize a token id list, rejecting empty lists and non-integer ids.

    Raises:
        NoTokensProvidedError: If the list is empty
        InvalidTokenSelectionError: If an id is not a non-negative integer
    """
    ids = list(token_ids or [])
    if not ids:
        raise NoTokensProvidedError("At least one token id is required")
    for token_id in ids:
        if isinstance(token_id, bool) or not isinstance(token_id, int) or token_id < 0:
            raise InvalidTokenSelectionError(
                f"Token ids must be non-negative integers, got {token_id!r}",
                details={"token_id": repr(token_id)},
            )
    return ids


class PlanRegistry:
    """Holds plans and escrow custody for the vesting engine."""

    def __init__(
        self,
        engine_address: str,
        position_tokens: PositionTokenIssuer,
        permit_handler: PermitHandler,
    ) -> None:
        self.engine_address = normalize_address(engine_address)
        self.position_tokens = position_tokens
        self.permit_handler = permit_handler

        self.collections: dict[str, ERC721Collection] = {}
        self.plans: dict[int, Plan] = {}
        # (collection address, token id) -> plan id
        self.escrow_index: dict[tuple[str, int], int] = {}
        self._next_plan_id = 1

        self._lock = threading.RLock()
        self._plan_locks: dict[int, threading.RLock] = {}

    # ==================== Collections ====================

    def register_collection(self, collection: ERC721Collection) -> None:
        with self._lock:
            self.collections[collection.address] = collection
        logger.info(
            "Collection registered",
            extra={"event": "vesting.collection_registered", "collection": collection.address[:10]},
        )

    def get_collection(self, address: str) -> ERC721Collection:
        if not address or not isinstance(address, str):
            raise CollectionNotFoundError("Source collection is required")
        collection = self.collections.get(normalize_address(address))
        if collection is None:
            raise CollectionNotFoundError(
                f"Unknown source collection {address}",
                details={"collection": address},
            )
        return collection

    # ==================== Locking ====================

    @contextmanager
    def plan_lock(self, plan_id: int) -> Iterator[Plan]:
        """Serialize all work on one plan and yield the live record."""
        with self._lock:
            lock = self._plan_locks.get(plan_id)
        if lock is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found", details={"plan_id": plan_id})
        with lock:
            yield self.plans[plan_id]

    # ==================== Create ====================

    def create(self, params: PlanParams) -> Plan:
        """
        Validate, escrow and store a new plan, then mint its position token.

        Returns:
            Snapshot of the stored plan

        Raises:
            InvalidBeneficiaryError, CollectionNotFoundError,
            NoTokensProvidedError, DuplicateTokenIdError, IncorrectOwnerError,
            InsufficientApprovalError, PermitExpiredError,
            InvalidSignatureError, UnauthorizedError: All raised before any
            state change
        """
        if not is_valid_address(params.beneficiary) or normalize_address(params.beneficiary) == self.engine_address:
            raise InvalidBeneficiaryError(
                f"Invalid beneficiary {params.beneficiary!r}",
                details={"beneficiary": str(params.beneficiary)},
            )
        if not is_valid_address(params.issuer):
            raise UnauthorizedError(
                f"Invalid issuer {params.issuer!r}",
                details={"issuer": str(params.issuer)},
            )
        beneficiary = normalize_address(params.beneficiary)
        issuer = normalize_address(params.issuer)
        collection = self.get_collection(params.source_collection)
        token_ids = require_token_ids(params.token_ids)

        with self._lock:
            permits = self._validate_escrow(collection, issuer, token_ids, params.permits, params.start_time)
            self._escrow(collection, issuer, token_ids, permits, params.start_time)

            plan_id = self._next_plan_id
            plan = Plan(
                plan_id=plan_id,
                source_collection=collection.address,
                beneficiary=beneficiary,
                issuer=issuer,
                start_time=params.start_time,
                total_count=len(token_ids),
                is_linear=params.is_linear,
                schedule=params.schedule,
                escrowed_token_ids=set(token_ids),
            )
            try:
                self.position_tokens.mint(beneficiary, plan_id)
            except Exception:
                self._return_escrow(collection, issuer, token_ids, permits)
                raise

            self._next_plan_id += 1
            self.plans[plan_id] = plan
            self._plan_locks[plan_id] = threading.RLock()
            for token_id in token_ids:
                self.escrow_index[(collection.address, token_id)] = plan_id

        logger.info(
            "Vesting plan created",
            extra={
                "event": "vesting.plan_created",
                "plan_id": plan_id,
                "collection": collection.address[:10],
                "issuer": issuer[:10],
                "beneficiary": beneficiary[:10],
                "total_count": plan.total_count,
                "linear": plan.is_linear,
            },
        )
        return plan.snapshot()

    def _validate_escrow(
        self,
        collection: ERC721Collection,
        issuer: str,
        token_ids: list[int],
        permits: Sequence[Permit],
        now: int,
    ) -> dict[int, Permit]:
        seen: set[int] = set()
        for token_id in token_ids:
            if token_id in seen:
                raise DuplicateTokenIdError(
                    f"Token {token_id} listed more than once",
                    details={"token_id": token_id},
                )
            seen.add(token_id)
            holder = self.escrow_index.get((collection.address, token_id))
            if holder is not None:
                raise DuplicateTokenIdError(
                    f"Token {token_id} is already escrowed by plan {holder}",
                    details={"token_id": token_id, "plan_id": holder},
                )

        active_permits: dict[int, Permit] = {}
        for permit in permits:
            if not permit.use_permit:
                continue
            if permit.token_id not in seen:
                raise InvalidTokenSelectionError(
                    f"Permit references token {permit.token_id} which is not part of the plan",
                    details={"token_id": permit.token_id},
                )
            if permit.token_id in active_permits:
                raise DuplicateTokenIdError(
                    f"More than one permit for token {permit.token_id}",
                    details={"token_id": permit.token_id},
                )
            active_permits[permit.token_id] = permit

        for token_id in token_ids:
            try:
                owner = collection.owner_of(token_id)
            except CollectionError as exc:
                raise IncorrectOwnerError(
                    f"Token {token_id} does not exist in {collection.address}",
                    details={"token_id": token_id},
                ) from exc
            if owner != issuer:
                raise IncorrectOwnerError(
                    f"Token {token_id} is not owned by the issuer",
                    details={"token_id": token_id, "owner": owner[:10], "issuer": issuer[:10]},
                )

            permit = active_permits.get(token_id)
            if permit is not None:
                self.permit_handler.verify(collection, permit, now)
            elif not collection.is_approved_or_owner(self.engine_address, token_id):
                raise InsufficientApprovalError(
                    f"Engine is not approved to escrow token {token_id}",
                    details={"token_id": token_id, "collection": collection.address},
                )
        return active_permits

    def _escrow(
        self,
        collection: ERC721Collection,
        issuer: str,
        token_ids: list[int],
        permits: dict[int, Permit],
        now: int,
    ) -> None:
        moved: list[int] = []
        applied: list[int] = []
        try:
            for token_id in token_ids:
                permit = permits.get(token_id)
                if permit is not None:
                    self.permit_handler.apply(collection, permit, now)
                    applied.append(token_id)
                collection.transfer_from(self.engine_address, issuer, self.engine_address, token_id)
                moved.append(token_id)
        except Exception:
            self._return_escrow(collection, issuer, moved, {})
            for token_id in applied:
                self.permit_handler.restore_nonce(collection.address, token_id)
            raise

    def _return_escrow(
        self,
        collection: ERC721Collection,
        issuer: str,
        token_ids: Iterable[int],
        permits: dict[int, Permit],
    ) -> None:
        for token_id in token_ids:
            try:
                collection.transfer_from(self.engine_address, self.engine_address, issuer, token_id)
            except CollectionError as exc:
                logger.critical(
                    "Escrow rollback failed",
                    extra={"event": "vesting.rollback_failed", "token_id": token_id, "error": str(exc)},
                )
                raise EscrowInvariantError(
                    f"Could not return token {token_id} during rollback",
                    details={"token_id": token_id},
                ) from exc
        for token_id in permits:
            self.permit_handler.restore_nonce(collection.address, token_id)

    # ==================== Reads ====================

    def get(self, plan_id: int) -> Plan:
        """Read-only snapshot of a plan."""
        with self.plan_lock(plan_id) as plan:
            return plan.snapshot()

    def exists(self, plan_id: int) -> bool:
        with self._lock:
            return plan_id in self.plans

    def plan_for_token(self, collection_address: str, token_id: int) -> int | None:
        with self._lock:
            return self.escrow_index.get((normalize_address(collection_address), token_id))

    def all_plan_ids(self) -> list[int]:
        with self._lock:
            return sorted(self.plans)

    # ==================== Custody Moves ====================

    def record_claim(self, plan_id: int, token_ids: Sequence[int], to: str, now: int) -> None:
        """
        Pay out escrowed tokens to `to` and count them as claimed.

        The cap check and every custody precondition run before the first
        transfer, so either all tokens move and the counter advances, or
        nothing changes.

        Raises:
            ClaimExceedsCapError: If claimed_count would pass the effective cap
            EscrowInvariantError: If a token is not held in this plan's escrow
        """
        with self.plan_lock(plan_id) as plan:
            cap = plan.effective_vested(now)
            new_count = plan.claimed_count + len(token_ids)
            if new_count > cap or new_count > plan.total_count:
                logger.critical(
                    "Claim would exceed cap",
                    extra={
                        "event": "vesting.invariant_violation",
                        "plan_id": plan_id,
                        "claimed": plan.claimed_count,
                        "requested": len(token_ids),
                        "cap": cap,
                    },
                )
                raise ClaimExceedsCapError(
                    f"Plan {plan_id}: claim of {len(token_ids)} exceeds cap {cap}",
                    details={"plan_id": plan_id, "claimed": plan.claimed_count, "cap": cap},
                )
            self._pay_out(plan, token_ids, to)
            plan.claimed_count = new_count

    def release(self, plan_id: int, token_ids: Sequence[int], to: str) -> None:
        """Return escrowed tokens to `to` without counting them as claimed."""
        with self.plan_lock(plan_id) as plan:
            remaining = len(plan.escrowed_token_ids) - len(token_ids)
            if remaining < plan.ceiling - plan.claimed_count:
                raise EscrowInvariantError(
                    f"Plan {plan_id}: releasing {len(token_ids)} would leave too few tokens for claims",
                    details={"plan_id": plan_id},
                )
            self._pay_out(plan, token_ids, to)

    def apply_revocation(self, plan_id: int, cap: int, now: int, token_ids: Sequence[int], to: str) -> None:
        """
        Freeze a plan at `cap` and hand `token_ids` back to `to`.

        The revocation fields are restored if the payout fails.
        """
        with self.plan_lock(plan_id) as plan:
            if cap < plan.claimed_count or cap > plan.total_count:
                raise EscrowInvariantError(
                    f"Plan {plan_id}: revocation cap {cap} out of range",
                    details={"plan_id": plan_id, "cap": cap, "claimed": plan.claimed_count},
                )
            plan.revoked = True
            plan.revoke_time = now
            plan.vested_cap_on_revoke = cap
            try:
                if token_ids:
                    self.release(plan_id, token_ids, to)
            except Exception:
                plan.revoked = False
                plan.revoke_time = 0
                plan.vested_cap_on_revoke = 0
                raise

    def _pay_out(self, plan: Plan, token_ids: Sequence[int], to: str) -> None:
        collection = self.collections[plan.source_collection]
        if len(set(token_ids)) != len(token_ids):
            raise EscrowInvariantError(f"Plan {plan.plan_id}: duplicate ids in payout")
        for token_id in token_ids:
            if token_id not in plan.escrowed_token_ids:
                raise EscrowInvariantError(
                    f"Plan {plan.plan_id}: token {token_id} is not in escrow",
                    details={"plan_id": plan.plan_id, "token_id": token_id},
                )
            if collection.owner_of(token_id) != self.engine_address:
                raise EscrowInvariantError(
                    f"Plan {plan.plan_id}: engine does not hold token {token_id}",
                    details={"plan_id": plan.plan_id, "token_id": token_id},
                )
        if not is_valid_address(to) or normalize_address(to) == self.engine_address:
            raise InvalidBeneficiaryError(f"Invalid recipient {to!r}", details={"to": str(to)})

        recipient = normalize_address(to)
        moved = 0
        with self._lock:
            try:
                for token_id in token_ids:
                    collection.transfer_from(self.engine_address, self.engine_address, recipient, token_id)
                    plan.escrowed_token_ids.discard(token_id)
                    self.escrow_index.pop((collection.address, token_id), None)
                    moved += 1
            except CollectionError as exc:
                if not moved:
                    raise
                logger.critical(
                    "Payout interrupted after partial transfer",
                    extra={"event": "vesting.partial_payout", "plan_id": plan.plan_id, "moved": moved},
                )
                raise EscrowInvariantError(
                    f"Plan {plan.plan_id}: payout stopped after {moved} of {len(token_ids)} transfers",
                    details={"plan_id": plan.plan_id, "moved": moved},
                ) from exc
