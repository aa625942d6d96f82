"""
Base utilities for API Blueprints

Provides common dependencies and helper functions shared across blueprints.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from flask import g, jsonify, request

from nftvest.core.vesting_exceptions import (
    AuthorizationError,
    CollectionError,
    InvariantViolationError,
    PlanNotFoundError,
    PositionTokenError,
    StateConflictError,
    ValidationError,
    VestingError,
    get_error_context,
)

if TYPE_CHECKING:
    from nftvest.core.vesting.engine import VestingEngine

logger = logging.getLogger(__name__)


def get_api_context() -> Dict[str, Any]:
    """Get the API context containing the engine.

    The context is stored in Flask's g object during request setup.
    """
    return g.get("api_context", {})


def get_engine() -> "VestingEngine":
    """Get the vesting engine instance from context."""
    ctx = get_api_context()
    return ctx.get("engine")


def success_response(payload: Dict[str, Any], status: int = 200) -> Tuple[Any, int]:
    """Return a success payload with consistent structure."""
    body = {"success": True, **payload}
    return jsonify(body), status


def error_response(
    message: str,
    status: int = 400,
    code: str = "bad_request",
    context: Optional[Dict[str, Any]] = None,
    event_type: str = "api.error",
) -> Tuple[Any, int]:
    """Return an error response and log it."""
    level = logging.ERROR if status >= 500 else logging.WARNING
    logger.log(
        level,
        "API error: %s",
        message,
        extra={"event": event_type, "code": code, "status": status, "path": request.path, **(context or {})},
    )
    return jsonify({"success": False, "error": message, "code": code}), status


def status_for_error(error: VestingError) -> int:
    """Map an engine error category to an HTTP status."""
    if isinstance(error, (PlanNotFoundError, PositionTokenError)):
        return 404
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AuthorizationError):
        return 403
    if isinstance(error, InvariantViolationError):
        return 500
    if isinstance(error, (StateConflictError, CollectionError)):
        return 409
    return 500


def handle_vesting_error(error: VestingError, context_str: str) -> Tuple[Any, int]:
    """Translate an engine error into the standard error body."""
    status = status_for_error(error)
    context = get_error_context(error)
    context.pop("details", None)
    message = error.message if status < 500 else "Internal server error"
    return error_response(
        message,
        status=status,
        code=error.code,
        context={"context": context_str, "error_type": context["error_type"]},
        event_type="api.vesting_error",
    )


def handle_exception(error: Exception, context_str: str) -> Tuple[Any, int]:
    """Route unexpected exceptions with sanitized output."""
    logger.exception(
        "Unhandled exception in %s",
        context_str,
        extra={"event": "api.exception", "context": context_str, "error_type": type(error).__name__},
    )
    return error_response(
        "Internal server error",
        status=500,
        code="internal_error",
        context={"context": context_str},
        event_type="api.exception",
    )


def get_json_object() -> Optional[Dict[str, Any]]:
    """Return the request body when it is a JSON object, else None."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return None
