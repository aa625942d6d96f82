"""Issuer revocation of vesting plans."""

from __future__ import annotations

import logging

from ..crypto_utils import is_valid_address, normalize_address
from ..vesting_exceptions import AlreadyRevokedError, UnauthorizedError
from .registry import PlanRegistry

logger = logging.getLogger(__name__)


class RevocationManager:
    """Freezes a plan at its current vested count and returns the rest."""

    def __init__(self, registry: PlanRegistry) -> None:
        self.registry = registry

    def revoke(self, plan_id: int, caller: str, now: int) -> list[int]:
        """
        Revoke a plan. One-shot and irreversible.

        The vested count at `now` becomes an absolute ceiling for future
        claims. The `total - cap` highest escrowed ids go back to the issuer,
        so ids still owed to the beneficiary stay the lowest ones.

        Returns:
            Token ids returned to the issuer, ascending

        Raises:
            UnauthorizedError: If caller is not the issuer
            AlreadyRevokedError: If the plan was revoked before
        """
        with self.registry.plan_lock(plan_id) as plan:
            if not is_valid_address(caller) or normalize_address(caller) != plan.issuer:
                raise UnauthorizedError(
                    "Only the issuer can revoke",
                    details={"plan_id": plan_id, "caller": str(caller)[:10]},
                )
            if plan.revoked:
                raise AlreadyRevokedError(
                    f"Plan {plan_id} is already revoked",
                    details={"plan_id": plan_id, "revoke_time": plan.revoke_time},
                )

            cap = max(plan.vested_count(now), plan.claimed_count)
            unvested = plan.total_count - cap
            returned = sorted(plan.escrowed_token_ids)[-unvested:] if unvested > 0 else []
            self.registry.apply_revocation(plan_id, cap, now, returned, plan.issuer)

        logger.info(
            "Vesting plan revoked",
            extra={
                "event": "vesting.revoked",
                "plan_id": plan_id,
                "cap": cap,
                "returned": len(returned),
            },
        )
        return returned
