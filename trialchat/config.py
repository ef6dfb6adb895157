"""
Configuration module for the trial matching chat backend.
"""
import os
from dotenv import load_dotenv
from httpx import Timeout
from loguru import logger

# Load environment variables from .env file
load_dotenv()

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
LOG_JSON = os.getenv("LOG_JSON", "false").lower() == "true"

# Backend selection
BACKEND_MODE_LOCAL = "local"
BACKEND_MODE_REMOTE = "remote"
DEFAULT_BACKEND_MODE = os.getenv("DEFAULT_BACKEND_MODE", BACKEND_MODE_LOCAL).strip().lower()
if DEFAULT_BACKEND_MODE not in (BACKEND_MODE_LOCAL, BACKEND_MODE_REMOTE):
    logger.warning(f"Unknown DEFAULT_BACKEND_MODE={DEFAULT_BACKEND_MODE!r}, falling back to local")
    DEFAULT_BACKEND_MODE = BACKEND_MODE_LOCAL

# Remote matching service
REMOTE_BACKEND_URL = os.getenv("REMOTE_BACKEND_URL", "http://localhost:8080").strip().rstrip("/")
REMOTE_BACKEND_API_KEY = os.getenv("REMOTE_BACKEND_API_KEY", "").strip() or None
REMOTE_CONNECT_TIMEOUT_S = float(os.getenv("REMOTE_CONNECT_TIMEOUT_S", "10"))
REMOTE_HEALTH_TIMEOUT_S = float(os.getenv("REMOTE_HEALTH_TIMEOUT_S", "5"))

# Liveness of an open stream. The check interval must stay below the timeout.
HEARTBEAT_TIMEOUT_S = float(os.getenv("HEARTBEAT_TIMEOUT_S", "45"))
HEARTBEAT_CHECK_INTERVAL_S = float(os.getenv("HEARTBEAT_CHECK_INTERVAL_S", "5"))
if HEARTBEAT_CHECK_INTERVAL_S >= HEARTBEAT_TIMEOUT_S:
    logger.warning(
        f"HEARTBEAT_CHECK_INTERVAL_S ({HEARTBEAT_CHECK_INTERVAL_S}) >= HEARTBEAT_TIMEOUT_S "
        f"({HEARTBEAT_TIMEOUT_S}); clamping interval to timeout/4"
    )
    HEARTBEAT_CHECK_INTERVAL_S = HEARTBEAT_TIMEOUT_S / 4

# Streaming reads never time out on their own; the heartbeat monitor owns staleness.
REMOTE_STREAM_TIMEOUT = Timeout(None, connect=REMOTE_CONNECT_TIMEOUT_S)
REMOTE_HEALTH_TIMEOUT = Timeout(REMOTE_HEALTH_TIMEOUT_S)

# Matching defaults
DEFAULT_MAX_RESULTS = int(os.getenv("DEFAULT_MAX_RESULTS", "5"))
MOCK_STEP_DELAY_S = float(os.getenv("MOCK_STEP_DELAY_S", "0"))

logger.info(f"Backend mode resolved to: {DEFAULT_BACKEND_MODE} (remote={REMOTE_BACKEND_URL})")


def get_streaming_config():
    """Get current streaming/liveness configuration."""
    return {
        "heartbeat_timeout_s": HEARTBEAT_TIMEOUT_S,
        "heartbeat_check_interval_s": HEARTBEAT_CHECK_INTERVAL_S,
        "remote_connect_timeout_s": REMOTE_CONNECT_TIMEOUT_S,
        "remote_health_timeout_s": REMOTE_HEALTH_TIMEOUT_S,
    }


def get_feature_flags():
    """Get current feature flag configuration."""
    return {
        "default_backend_mode": DEFAULT_BACKEND_MODE,
        "remote_configured": bool(REMOTE_BACKEND_URL),
        "remote_api_key_set": REMOTE_BACKEND_API_KEY is not None,
        "default_max_results": DEFAULT_MAX_RESULTS,
        "mock_step_delay_s": MOCK_STEP_DELAY_S,
        "log_json": LOG_JSON,
    }
