"""
NFT vesting engine.

Plans escrow a fixed set of token ids and release them over time. Use
`VestingEngine` as the entry point; the other classes are its collaborators.
"""

from .claims import ClaimProcessor
from .engine import VestingEngine, VestingEvent
from .permits import Permit, PermitHandler, permit_digest, sign_permit
from .plan import Plan, PlanStatus
from .registry import PlanParams, PlanRegistry
from .revocation import RevocationManager
from .schedules import (
    LinearTemplate,
    Tranche,
    TrancheSchedule,
    get_linear_template,
    linear_vested_count,
    list_linear_templates,
    tranche_vested_count,
)

__all__ = [
    "ClaimProcessor",
    "LinearTemplate",
    "Permit",
    "PermitHandler",
    "Plan",
    "PlanParams",
    "PlanRegistry",
    "PlanStatus",
    "RevocationManager",
    "Tranche",
    "TrancheSchedule",
    "VestingEngine",
    "VestingEvent",
    "get_linear_template",
    "linear_vested_count",
    "list_linear_templates",
    "permit_digest",
    "sign_permit",
    "tranche_vested_count",
]
