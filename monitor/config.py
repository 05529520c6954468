"""
Configuration for the Fire-Safety Monitor

SAFETY NOTE: Gas thresholds are imported from common/constants.py
and cannot be overridden via environment variables.
"""
import os
import sys

# Add parent to path for common imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
from common.constants import (
    GAS_WARNING_THRESHOLD, GAS_DANGER_THRESHOLD,
    DEFAULT_RETRY_INTERVAL_S, DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_TELEMETRY_URL, DEFAULT_COMMAND_API_URL, DEFAULT_COMMAND_TIMEOUT_S
)

# ============================================================================
# ENDPOINTS - VERIFY FOR YOUR DEPLOYMENT
# ============================================================================
TELEMETRY_WS_URL = os.getenv('TELEMETRY_WS_URL', DEFAULT_TELEMETRY_URL)
COMMAND_API_URL = os.getenv('COMMAND_API_URL', DEFAULT_COMMAND_API_URL)
COMMAND_TIMEOUT = float(os.getenv('COMMAND_TIMEOUT_S', str(DEFAULT_COMMAND_TIMEOUT_S)))

# Reconnect Configuration
RETRY_INTERVAL = float(os.getenv('RETRY_INTERVAL_S', str(DEFAULT_RETRY_INTERVAL_S)))
MAX_RECONNECT_ATTEMPTS = int(os.getenv('MAX_RECONNECT_ATTEMPTS', str(DEFAULT_MAX_RECONNECT_ATTEMPTS)))

# Safety Configuration - IMMUTABLE (from common/constants.py)
GAS_WARNING_LEVEL = GAS_WARNING_THRESHOLD  # 300 - DO NOT CHANGE
GAS_DANGER_LEVEL = GAS_DANGER_THRESHOLD    # 600 - DO NOT CHANGE

# Status logging
STATUS_LOG_INTERVAL = float(os.getenv('STATUS_LOG_INTERVAL_S', '10.0'))

# Logging Configuration
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FILE = os.getenv('LOG_FILE') or None
