"""
nftvest Configuration

Supports testnet and mainnet deployments with values read from environment
variables at import time. The linear template catalogue is engine-owned
configuration and is never supplied by callers.
"""

from __future__ import annotations

import logging
import os
from enum import Enum

from nftvest.core.crypto_utils import ZERO_ADDRESS

logger = logging.getLogger(__name__)


class NetworkType(Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _get_int(env_var: str, default: int) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from exc


def _get_float(env_var: str, default: float) -> float:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be a number, got {raw!r}") from exc


# Get network type from environment variable
NETWORK = os.getenv("NFTVEST_NETWORK", "testnet")  # Default to testnet for safety

LOG_LEVEL = os.getenv("NFTVEST_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("NFTVEST_LOG_FILE", "").strip() or None

ENGINE_NAME = os.getenv("NFTVEST_ENGINE_NAME", "nftvest-engine")

API_HOST = os.getenv("NFTVEST_API_HOST", "127.0.0.1")
API_PORT = _get_int("NFTVEST_API_PORT", 8645)
API_MAX_JSON_BYTES = _get_int("NFTVEST_API_MAX_JSON_BYTES", 1048576)

CLIENT_NODE_URL = os.getenv("NFTVEST_NODE_URL", f"http://{API_HOST}:{API_PORT}")
CLIENT_TIMEOUT = _get_float("NFTVEST_CLIENT_TIMEOUT", 30.0)
CLIENT_MAX_RETRIES = _get_int("NFTVEST_CLIENT_MAX_RETRIES", 3)
CLIENT_BACKOFF = _get_float("NFTVEST_CLIENT_BACKOFF", 0.5)

PERMIT_DOMAIN = "nftvest-permit"

SECONDS_PER_DAY = 24 * 60 * 60

# Linear templates: id -> (cliff, duration, slice_period), all in seconds
LINEAR_TEMPLATES = {
    1: (90 * SECONDS_PER_DAY, 365 * SECONDS_PER_DAY, SECONDS_PER_DAY),  # 3 month cliff, 12 month duration
    2: (0, 180 * SECONDS_PER_DAY, 7 * SECONDS_PER_DAY),  # 6 month duration, weekly release
    3: (30 * SECONDS_PER_DAY, 2 * 365 * SECONDS_PER_DAY, SECONDS_PER_DAY),  # 1 month cliff, 24 months
    4: (0, 365 * SECONDS_PER_DAY, 0),  # 1 year continuous
}

LINEAR_TEMPLATE_NAMES = {
    1: "3 Month Cliff, 12 Month Duration",
    2: "6 Month Duration, Weekly Release",
    3: "1 Month Cliff, 24 Month Duration",
    4: "1 Year Continuous",
}

if CLIENT_MAX_RETRIES < 0:
    raise ConfigurationError("NFTVEST_CLIENT_MAX_RETRIES cannot be negative")
if not 0 < API_PORT < 65536:
    raise ConfigurationError(f"NFTVEST_API_PORT out of range: {API_PORT}")


class TestnetConfig:
    """Testnet Configuration (for local testing before mainnet)"""

    NETWORK_TYPE = NetworkType.TESTNET
    ENGINE_NAME = f"{ENGINE_NAME}-testnet"
    LOG_LEVEL = LOG_LEVEL
    LOG_FILE = LOG_FILE
    API_HOST = API_HOST
    API_PORT = API_PORT
    API_MAX_JSON_BYTES = API_MAX_JSON_BYTES
    LINEAR_TEMPLATES = LINEAR_TEMPLATES
    PERMIT_DOMAIN = f"{PERMIT_DOMAIN}-testnet"


class MainnetConfig:
    """Mainnet Configuration (production deployment)"""

    NETWORK_TYPE = NetworkType.MAINNET
    ENGINE_NAME = ENGINE_NAME
    LOG_LEVEL = LOG_LEVEL
    LOG_FILE = LOG_FILE
    API_HOST = API_HOST
    API_PORT = API_PORT
    API_MAX_JSON_BYTES = API_MAX_JSON_BYTES
    LINEAR_TEMPLATES = LINEAR_TEMPLATES
    PERMIT_DOMAIN = PERMIT_DOMAIN


def get_config() -> type:
    """Return the configuration class for the selected network."""
    network = NETWORK.lower()
    if network == NetworkType.MAINNET.value:
        return MainnetConfig
    if network == NetworkType.TESTNET.value:
        return TestnetConfig
    raise ConfigurationError(f"Unknown NFTVEST_NETWORK: {NETWORK}")


# Export the active configuration
Config = get_config()

logger.debug(
    "Configuration loaded",
    extra={"event": "config.loaded", "network": Config.NETWORK_TYPE.value},
)

# Export config
__all__ = [
    "Config",
    "ConfigurationError",
    "NetworkType",
    "TestnetConfig",
    "MainnetConfig",
    "LINEAR_TEMPLATES",
    "LINEAR_TEMPLATE_NAMES",
    "PERMIT_DOMAIN",
    "ZERO_ADDRESS",
    "CLIENT_NODE_URL",
    "CLIENT_TIMEOUT",
    "CLIENT_MAX_RETRIES",
    "CLIENT_BACKOFF",
]
