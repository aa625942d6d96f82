"""Vesting plan record and lifecycle status."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .schedules import LinearTemplate, TrancheSchedule

Schedule = Union[LinearTemplate, TrancheSchedule]


class PlanStatus(Enum):
    """Derived lifecycle state of a plan."""

    ACTIVE = "active"
    COMPLETED = "completed"
    REVOKED = "revoked"
    REVOKED_COMPLETED = "revoked_completed"


@dataclass
class Plan:
    """
    One vesting position.

    Core fields are fixed at creation. Only `claimed_count`, the escrow set
    and the one-shot revocation fields change afterwards, and only through
    the PlanRegistry.
    """

    plan_id: int
    source_collection: str
    beneficiary: str
    issuer: str
    start_time: int
    total_count: int
    is_linear: bool
    schedule: Schedule
    claimed_count: int = 0
    revoked: bool = False
    revoke_time: int = 0
    vested_cap_on_revoke: int = 0
    escrowed_token_ids: set[int] = field(default_factory=set)

    def vested_count(self, now: int) -> int:
        """Raw schedule output, ignoring revocation."""
        return self.schedule.vested_count(self.start_time, self.total_count, now)

    def effective_vested(self, now: int) -> int:
        """Vested count with the revocation cap applied."""
        vested = self.vested_count(now)
        if self.revoked:
            return min(self.vested_cap_on_revoke, vested)
        return vested

    def claimable(self, now: int) -> int:
        return max(0, self.effective_vested(now) - self.claimed_count)

    @property
    def ceiling(self) -> int:
        """Most units this plan can ever pay out to the beneficiary."""
        return self.vested_cap_on_revoke if self.revoked else self.total_count

    @property
    def status(self) -> PlanStatus:
        if self.revoked:
            if self.claimed_count >= self.vested_cap_on_revoke:
                return PlanStatus.REVOKED_COMPLETED
            return PlanStatus.REVOKED
        if self.claimed_count >= self.total_count:
            return PlanStatus.COMPLETED
        return PlanStatus.ACTIVE

    @property
    def template_id(self) -> int | None:
        if isinstance(self.schedule, LinearTemplate):
            return self.schedule.template_id
        return None

    def snapshot(self) -> "Plan":
        """Detached copy safe to hand to callers."""
        return dataclasses.replace(self, escrowed_token_ids=set(self.escrowed_token_ids))

    def to_dict(self) -> dict[str, Any]:
        """ABI-shaped view of the plan plus schedule details."""
        data: dict[str, Any] = {
            "id": self.plan_id,
            "sourceCollection": self.source_collection,
            "beneficiary": self.beneficiary,
            "issuer": self.issuer,
            "startTime": self.start_time,
            "totalCount": self.total_count,
            "claimedCount": self.claimed_count,
            "isLinear": self.is_linear,
            "revoked": self.revoked,
            "revokeTime": self.revoke_time,
            "vestedCapOnRevoke": self.vested_cap_on_revoke,
            "status": self.status.value,
            "escrowedTokenIds": sorted(self.escrowed_token_ids),
        }
        if isinstance(self.schedule, LinearTemplate):
            data["templateId"] = self.schedule.template_id
        else:
            data["trancheSchedule"] = self.schedule.to_list()
        return data
