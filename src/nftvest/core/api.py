"""
HTTP application for the vesting engine.

`create_app` builds a Flask app around one engine instance. The app is a thin
transport: it validates request bodies, calls the engine and maps engine
errors to status codes. It never retries.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

from flask import Flask

from nftvest.core import config
from nftvest.core.api_blueprints import register_blueprints
from nftvest.core.api_blueprints.base import error_response, success_response
from nftvest.core.logging_config import setup_engine_logging
from nftvest.core.vesting.engine import VestingEngine

logger = logging.getLogger(__name__)


def create_app(engine: VestingEngine | None = None) -> Flask:
    """
    Build the API application.

    Args:
        engine: Engine to serve; a fresh one on the configured name if omitted
    """
    engine = engine or VestingEngine()
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.API_MAX_JSON_BYTES
    app.extensions["nftvest_engine"] = engine

    register_blueprints(app, engine)

    @app.route("/health", methods=["GET"])
    def health() -> Tuple[Dict[str, Any], int]:
        return success_response(
            {
                "status": "ok",
                "network": config.Config.NETWORK_TYPE.value,
                "engine": engine.address,
                "plans": engine.position_tokens.total_supply(),
            }
        )

    @app.errorhandler(404)
    def not_found(_error: Exception) -> Tuple[Any, int]:
        return error_response("Not found", status=404, code="not_found")

    @app.errorhandler(405)
    def method_not_allowed(_error: Exception) -> Tuple[Any, int]:
        return error_response("Method not allowed", status=405, code="method_not_allowed")

    @app.errorhandler(413)
    def payload_too_large(_error: Exception) -> Tuple[Any, int]:
        return error_response("Request body too large", status=413, code="payload_too_large")

    logger.info(
        "API application created",
        extra={"event": "api.created", "engine": engine.address[:10]},
    )
    return app


def run(host: str = config.API_HOST, port: int = config.API_PORT) -> None:  # pragma: no cover
    setup_engine_logging(
        environment=config.Config.NETWORK_TYPE.value,
        log_file=config.LOG_FILE,
        level=config.LOG_LEVEL,
    )
    app = create_app()
    app.run(host=host, port=port)
