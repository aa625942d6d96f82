"""
Vesting API Blueprint

Handles plan creation, claims, revocation, plan reads, position discovery and
the template catalogue. Caller identity is taken from the request body;
authenticating it is the deployment's concern.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Tuple

from flask import Blueprint, request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from nftvest.core.api_blueprints.base import (
    error_response,
    get_engine,
    get_json_object,
    handle_exception,
    handle_vesting_error,
    success_response,
)
from nftvest.core.input_validation_schemas import (
    ClaimInput,
    LinearPlanInput,
    RevokeInput,
    TranchePlanInput,
)
from nftvest.core.vesting_exceptions import VestingError

logger = logging.getLogger(__name__)

vesting_bp = Blueprint("vesting", __name__, url_prefix="/vesting")


def _parse(model: type[BaseModel], context_str: str) -> Tuple[Any, Tuple[Any, int] | None]:
    payload = get_json_object()
    if payload is None:
        return None, error_response(
            "Request body must be a JSON object",
            status=400,
            code="invalid_payload",
            context={"context": context_str},
        )
    try:
        return model.model_validate(payload), None
    except PydanticValidationError as exc:
        logger.warning(
            "PydanticValidationError in %s",
            context_str,
            extra={
                "event": "api.invalid_payload",
                "error_type": "PydanticValidationError",
                "error_count": exc.error_count(),
                "function": context_str,
            },
        )
        return None, error_response(
            "Invalid request payload",
            status=400,
            code="invalid_payload",
            context={"context": context_str},
        )


def _run(context_str: str, action: Callable[[], Tuple[Any, int]]) -> Tuple[Any, int]:
    try:
        return action()
    except VestingError as exc:
        return handle_vesting_error(exc, context_str)
    except Exception as exc:  # pylint: disable=broad-except
        return handle_exception(exc, context_str)


@vesting_bp.route("/plans/linear", methods=["POST"])
def create_linear_plan() -> Tuple[Dict[str, Any], int]:
    """Create a plan on a catalogue linear template."""
    model, error = _parse(LinearPlanInput, "create_linear_plan")
    if error:
        return error

    def action() -> Tuple[Any, int]:
        engine = get_engine()
        plan_id = engine.create_linear_plan(
            issuer=model.issuer,
            beneficiary=model.beneficiary,
            source_collection=model.source_collection,
            template_id=model.template_id,
            token_ids=model.token_ids,
            permits=[permit.to_permit() for permit in model.permits],
        )
        return success_response({"planId": plan_id, "plan": engine.get_plan(plan_id).to_dict()}, status=201)

    return _run("create_linear_plan", action)


@vesting_bp.route("/plans/tranche", methods=["POST"])
def create_tranche_plan() -> Tuple[Dict[str, Any], int]:
    """Create a plan on an explicit tranche schedule."""
    model, error = _parse(TranchePlanInput, "create_tranche_plan")
    if error:
        return error

    def action() -> Tuple[Any, int]:
        engine = get_engine()
        plan_id = engine.create_tranche_plan(
            issuer=model.issuer,
            beneficiary=model.beneficiary,
            source_collection=model.source_collection,
            token_ids=model.token_ids,
            tranche_schedule=[{"timestamp": t.timestamp, "count": t.count} for t in model.tranche_schedule],
            permits=[permit.to_permit() for permit in model.permits],
        )
        return success_response({"planId": plan_id, "plan": engine.get_plan(plan_id).to_dict()}, status=201)

    return _run("create_tranche_plan", action)


@vesting_bp.route("/plans/<int:plan_id>/claim", methods=["POST"])
def claim(plan_id: int) -> Tuple[Dict[str, Any], int]:
    """Claim every currently claimable unit."""
    model, error = _parse(ClaimInput, "claim")
    if error:
        return error

    def action() -> Tuple[Any, int]:
        engine = get_engine()
        token_ids = engine.claim(plan_id, model.caller, to=model.to, token_ids=model.token_ids)
        return success_response({"planId": plan_id, "tokenIds": token_ids})

    return _run("claim", action)


@vesting_bp.route("/plans/<int:plan_id>/revoke", methods=["POST"])
def revoke(plan_id: int) -> Tuple[Dict[str, Any], int]:
    """Revoke a plan and return unvested units to the issuer."""
    model, error = _parse(RevokeInput, "revoke")
    if error:
        return error

    def action() -> Tuple[Any, int]:
        engine = get_engine()
        returned = engine.revoke(plan_id, model.caller)
        plan = engine.get_plan(plan_id)
        return success_response(
            {"planId": plan_id, "returnedTokenIds": returned, "vestedCapOnRevoke": plan.vested_cap_on_revoke}
        )

    return _run("revoke", action)


@vesting_bp.route("/plans/<int:plan_id>", methods=["GET"])
def get_plan(plan_id: int) -> Tuple[Dict[str, Any], int]:
    return _run("get_plan", lambda: success_response({"plan": get_engine().get_plan(plan_id).to_dict()}))


@vesting_bp.route("/plans/<int:plan_id>/claimable", methods=["GET"])
def claimable_count(plan_id: int) -> Tuple[Dict[str, Any], int]:
    return _run(
        "claimable_count",
        lambda: success_response({"planId": plan_id, "claimable": get_engine().claimable_count(plan_id)}),
    )


@vesting_bp.route("/plans/<int:plan_id>/unlocked", methods=["GET"])
def unlocked_count(plan_id: int) -> Tuple[Dict[str, Any], int]:
    """Vested count at ?timestamp= (defaults to now)."""
    timestamp = request.args.get("timestamp", type=int)
    if "timestamp" in request.args and timestamp is None:
        return error_response("timestamp must be an integer", status=400, code="invalid_timestamp")

    def action() -> Tuple[Any, int]:
        engine = get_engine()
        at = timestamp if timestamp is not None else engine.current_time()
        return success_response({"planId": plan_id, "timestamp": at, "unlocked": engine.unlocked_count(plan_id, at)})

    return _run("unlocked_count", action)


@vesting_bp.route("/positions/<owner>", methods=["GET"])
def positions(owner: str) -> Tuple[Dict[str, Any], int]:
    """Position balance and plans owned by an address."""

    def action() -> Tuple[Any, int]:
        engine = get_engine()
        plans = engine.plans_of(owner)
        return success_response(
            {
                "owner": owner,
                "balance": engine.balance_of(owner),
                "planIds": [plan.plan_id for plan in plans],
                "plans": [plan.to_dict() for plan in plans],
            }
        )

    return _run("positions", action)


@vesting_bp.route("/positions/<owner>/<int:index>", methods=["GET"])
def position_by_index(owner: str, index: int) -> Tuple[Dict[str, Any], int]:
    return _run(
        "position_by_index",
        lambda: success_response(
            {"owner": owner, "index": index, "planId": get_engine().token_of_owner_by_index(owner, index)}
        ),
    )


@vesting_bp.route("/plans/<int:plan_id>/metadata", methods=["GET"])
def metadata(plan_id: int) -> Tuple[Dict[str, Any], int]:
    return _run("metadata", lambda: success_response({"planId": plan_id, "uri": get_engine().metadata_uri(plan_id)}))


@vesting_bp.route("/templates", methods=["GET"])
def templates() -> Tuple[Dict[str, Any], int]:
    """Linear template catalogue."""
    return success_response({"templates": [template.to_dict() for template in get_engine().linear_templates()]})
