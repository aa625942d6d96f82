"""Beneficiary claims against a vesting plan."""

from __future__ import annotations

import logging
from typing import Sequence

from ..crypto_utils import is_valid_address, normalize_address
from ..vesting_exceptions import (
    AlreadyRevokedAndCapReachedError,
    InvalidTokenSelectionError,
    NothingToClaimError,
    UnauthorizedError,
)
from .plan import Plan
from .registry import PlanRegistry

logger = logging.getLogger(__name__)


def select_tokens(plan: Plan, count: int) -> list[int]:
    """Pick the `count` lowest escrowed token ids."""
    return sorted(plan.escrowed_token_ids)[:count]


class ClaimProcessor:
    """Computes claimable amounts and pays vested units to the beneficiary."""

    def __init__(self, registry: PlanRegistry) -> None:
        self.registry = registry

    def claimable_count(self, plan_id: int, now: int) -> int:
        with self.registry.plan_lock(plan_id) as plan:
            return plan.claimable(now)

    def claim(
        self,
        plan_id: int,
        caller: str,
        now: int,
        requested_token_ids: Sequence[int] | None = None,
        to: str | None = None,
    ) -> list[int]:
        """
        Release every currently claimable unit of a plan.

        Args:
            plan_id: Plan to claim from
            caller: Must be the plan's beneficiary
            now: Claim timestamp
            requested_token_ids: Optional explicit selection, at most the
                claimable count; defaults to the lowest escrowed ids
            to: Recipient, defaults to the beneficiary

        Returns:
            The token ids transferred, ascending

        Raises:
            UnauthorizedError: If caller is not the beneficiary
            AlreadyRevokedAndCapReachedError: If a revoked plan has paid out its cap
            NothingToClaimError: If nothing is claimable yet
            InvalidTokenSelectionError: If the requested ids are not claimable
        """
        with self.registry.plan_lock(plan_id) as plan:
            if not is_valid_address(caller) or normalize_address(caller) != plan.beneficiary:
                raise UnauthorizedError(
                    "Only the beneficiary can claim",
                    details={"plan_id": plan_id, "caller": str(caller)[:10]},
                )
            if plan.revoked and plan.claimed_count >= plan.vested_cap_on_revoke:
                raise AlreadyRevokedAndCapReachedError(
                    f"Plan {plan_id} is revoked and its cap has been claimed",
                    details={"plan_id": plan_id, "cap": plan.vested_cap_on_revoke},
                )

            claimable = plan.claimable(now)
            if claimable <= 0:
                raise NothingToClaimError(
                    f"Nothing to claim on plan {plan_id}",
                    details={"plan_id": plan_id, "claimed": plan.claimed_count},
                )

            if requested_token_ids is None:
                token_ids = select_tokens(plan, claimable)
            else:
                token_ids = self._check_selection(plan, requested_token_ids, claimable)

            recipient = to if to is not None else plan.beneficiary
            self.registry.record_claim(plan_id, token_ids, recipient, now)

        logger.info(
            "Vested tokens claimed",
            extra={
                "event": "vesting.claimed",
                "plan_id": plan_id,
                "count": len(token_ids),
                "to": normalize_address(recipient)[:10],
            },
        )
        return token_ids

    @staticmethod
    def _check_selection(plan: Plan, requested: Sequence[int], claimable: int) -> list[int]:
        token_ids = list(requested)
        if not token_ids:
            raise InvalidTokenSelectionError("Requested token list is empty", details={"plan_id": plan.plan_id})
        if len(set(token_ids)) != len(token_ids):
            raise InvalidTokenSelectionError("Requested token ids contain duplicates", details={"plan_id": plan.plan_id})
        if len(token_ids) > claimable:
            raise InvalidTokenSelectionError(
                f"Requested {len(token_ids)} tokens but only {claimable} are claimable",
                details={"plan_id": plan.plan_id, "requested": len(token_ids), "claimable": claimable},
            )
        missing = [token_id for token_id in token_ids if token_id not in plan.escrowed_token_ids]
        if missing:
            raise InvalidTokenSelectionError(
                f"Tokens {missing} are not escrowed by plan {plan.plan_id}",
                details={"plan_id": plan.plan_id, "token_ids": missing},
            )
        return sorted(token_ids)
