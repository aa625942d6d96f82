"""
Vesting engine.

Single entry point for plan creation, claims, revocation and position
discovery. The engine wires the registry, claim processor, revocation
manager, permit handler and position token issuer together, owns the clock
and keeps an append-only event log for replay verification.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from ..config import Config
from ..contracts.erc721 import ERC721Collection
from ..contracts.position_token import PositionTokenIssuer
from ..crypto_utils import address_from_label, normalize_address
from .claims import ClaimProcessor
from .permits import Permit, PermitHandler
from .plan import Plan
from .registry import PlanParams, PlanRegistry, require_token_ids
from .revocation import RevocationManager
from .schedules import LinearTemplate, TrancheSchedule, get_linear_template, list_linear_templates

logger = logging.getLogger(__name__)


@dataclass
class VestingEvent:
    """Engine-level event (PlanCreated, Claimed, Revoked)."""

    event_type: str
    plan_id: int
    actor: str
    token_ids: list[int]
    timestamp: int
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "planId": self.plan_id,
            "actor": self.actor,
            "tokenIds": list(self.token_ids),
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }


class VestingEngine:
    """
    NFT vesting accounting engine.

    Escrowed tokens are held by the engine's own address on each registered
    collection. Time comes from `time_provider` so tests and replays can pin
    the clock.
    """

    def __init__(
        self,
        name: str = Config.ENGINE_NAME,
        time_provider: Callable[[], int] | None = None,
        permit_domain: str = Config.PERMIT_DOMAIN,
    ) -> None:
        self.name = name
        self.address = address_from_label(f"engine:{name}")
        self._time_provider = time_provider or (lambda: int(time.time()))

        self.position_tokens = PositionTokenIssuer()
        self.permits = PermitHandler(self.address, permit_domain)
        self.registry = PlanRegistry(self.address, self.position_tokens, self.permits)
        self.claims = ClaimProcessor(self.registry)
        self.revocations = RevocationManager(self.registry)
        self.position_tokens.bind_descriptor(self._describe_position)

        self.events: list[VestingEvent] = []
        self._events_lock = threading.Lock()
        logger.info(
            "VestingEngine initialized",
            extra={
                "event": "vesting.engine_init",
                "engine": self.address[:10],
                "deterministic_clock": bool(time_provider),
            },
        )

    def _current_time(self) -> int:
        timestamp = self._time_provider()
        try:
            return int(timestamp)
        except (TypeError, ValueError) as exc:
            raise ValueError("time_provider must return an integer timestamp") from exc

    def current_time(self) -> int:
        """Engine clock reading."""
        return self._current_time()

    def _emit(self, event_type: str, plan_id: int, actor: str, token_ids: Iterable[int], timestamp: int, **data: Any) -> None:
        event = VestingEvent(
            event_type=event_type,
            plan_id=plan_id,
            actor=normalize_address(actor),
            token_ids=list(token_ids),
            timestamp=timestamp,
            data=data,
        )
        with self._events_lock:
            self.events.append(event)

    # ==================== Collections ====================

    def register_collection(self, collection: ERC721Collection) -> None:
        self.registry.register_collection(collection)

    # ==================== Plan Creation ====================

    def create_linear_plan(
        self,
        issuer: str,
        beneficiary: str,
        source_collection: str,
        template_id: int,
        token_ids: Sequence[int],
        permits: Sequence[Permit] = (),
    ) -> int:
        """
        Escrow `token_ids` under a catalogue linear template.

        Returns:
            The new plan id (also the position token id)
        """
        template = get_linear_template(template_id)
        return self._create(issuer, beneficiary, source_collection, token_ids, template, permits)

    def create_tranche_plan(
        self,
        issuer: str,
        beneficiary: str,
        source_collection: str,
        token_ids: Sequence[int],
        tranche_schedule: Iterable[Any],
        permits: Sequence[Permit] = (),
    ) -> int:
        """
        Escrow `token_ids` under an explicit tranche schedule.

        `tranche_schedule` entries carry absolute timestamps and cumulative
        counts. A final count below the number of tokens is accepted but the
        plan can then never fully vest.
        """
        ids = require_token_ids(token_ids)
        schedule = TrancheSchedule.build(tranche_schedule, len(ids))
        if schedule.final_count < len(ids):
            logger.warning(
                "Tranche schedule never fully vests",
                extra={
                    "event": "vesting.partial_schedule",
                    "final_count": schedule.final_count,
                    "total_count": len(ids),
                },
            )
        return self._create(issuer, beneficiary, source_collection, ids, schedule, permits)

    def _create(
        self,
        issuer: str,
        beneficiary: str,
        source_collection: str,
        token_ids: Sequence[int],
        schedule: LinearTemplate | TrancheSchedule,
        permits: Sequence[Permit],
    ) -> int:
        now = self._current_time()
        plan = self.registry.create(
            PlanParams(
                issuer=issuer,
                beneficiary=beneficiary,
                source_collection=source_collection,
                token_ids=token_ids,
                schedule=schedule,
                start_time=now,
                permits=tuple(permits),
            )
        )
        self._emit(
            "PlanCreated",
            plan.plan_id,
            plan.issuer,
            sorted(plan.escrowed_token_ids),
            now,
            beneficiary=plan.beneficiary,
            collection=plan.source_collection,
            is_linear=plan.is_linear,
        )
        return plan.plan_id

    # ==================== Claims & Revocation ====================

    def claim(
        self,
        plan_id: int,
        caller: str,
        to: str | None = None,
        token_ids: Sequence[int] | None = None,
    ) -> list[int]:
        """Transfer all currently claimable units to `to` (default: beneficiary)."""
        now = self._current_time()
        claimed = self.claims.claim(plan_id, caller, now, requested_token_ids=token_ids, to=to)
        self._emit("Claimed", plan_id, caller, claimed, now, to=normalize_address(to or caller))
        return claimed

    def revoke(self, plan_id: int, caller: str) -> list[int]:
        """Freeze the plan at its vested count and return the rest to the issuer."""
        now = self._current_time()
        returned = self.revocations.revoke(plan_id, caller, now)
        plan = self.registry.get(plan_id)
        self._emit("Revoked", plan_id, caller, returned, now, cap=plan.vested_cap_on_revoke)
        return returned

    # ==================== Views ====================

    def get_plan(self, plan_id: int) -> Plan:
        return self.registry.get(plan_id)

    def claimable_count(self, plan_id: int) -> int:
        return self.claims.claimable_count(plan_id, self._current_time())

    def unlocked_count(self, plan_id: int, timestamp: int) -> int:
        """Vested count at `timestamp`, capped if the plan was revoked."""
        with self.registry.plan_lock(plan_id) as plan:
            return plan.effective_vested(timestamp)

    def balance_of(self, owner: str) -> int:
        return self.position_tokens.balance_of(owner)

    def token_of_owner_by_index(self, owner: str, index: int) -> int:
        return self.position_tokens.token_of_owner_by_index(owner, index)

    def plans_of(self, owner: str) -> list[Plan]:
        return [self.registry.get(plan_id) for plan_id in self.position_tokens.tokens_of_owner(owner)]

    def metadata_uri(self, plan_id: int) -> str:
        self.registry.get(plan_id)
        return self.position_tokens.metadata_uri(plan_id)

    def linear_templates(self) -> list[LinearTemplate]:
        return list_linear_templates()

    def _describe_position(self, plan_id: int) -> dict[str, Any]:
        plan = self.registry.get(plan_id)
        data = plan.to_dict()
        data["claimable"] = plan.claimable(self._current_time())
        return data
