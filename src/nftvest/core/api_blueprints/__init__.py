"""
nftvest API Blueprints

Flask Blueprints exposing the vesting engine over HTTP.

Usage:
    from nftvest.core.api_blueprints import register_blueprints
    register_blueprints(app, engine)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import Flask, g

from nftvest.core.api_blueprints.vesting_bp import vesting_bp

if TYPE_CHECKING:
    from nftvest.core.vesting.engine import VestingEngine

__all__ = [
    "vesting_bp",
    "register_blueprints",
    "ALL_BLUEPRINTS",
]

logger = logging.getLogger(__name__)

ALL_BLUEPRINTS = [
    vesting_bp,
]


def register_blueprints(app: Flask, engine: "VestingEngine") -> None:
    """
    Register all API blueprints with the Flask app.

    Installs a before_request handler that puts the engine into Flask's g
    object, then registers each blueprint (they carry their own url_prefix).
    """
    api_context = {"engine": engine}

    @app.before_request
    def inject_api_context() -> None:
        g.api_context = api_context

    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)
    logger.debug("Registered %d blueprints", len(ALL_BLUEPRINTS))
