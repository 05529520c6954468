"""
Status Monitor for the Fire-Safety Monitor

Logs safety-relevant transitions and periodic status.

SAFETY:
- Emergency start/clear is logged on the edge, not on every frame
- Retry exhaustion is logged once until the connection recovers
"""

import json
import logging
import time
from typing import Any, Dict

from common.connection_manager import ConnectionState

from .safety_engine import DerivedSafetyState

logger = logging.getLogger(__name__)


class StatusMonitor:
    """
    Tracks emergency/exhaustion edges and rate-limits status logging.
    """

    def __init__(self, status_interval: float = 10.0):
        """
        Initialize status monitor.

        Args:
            status_interval: Status logging interval in seconds
        """
        self.status_interval = status_interval

        self.last_status_log = 0.0
        self.emergency_active = False
        self.exhausted_reported = False

        logger.info(f"StatusMonitor initialized (status_interval={status_interval}s)")

    def check_safety(self, derived: DerivedSafetyState) -> bool:
        """
        Log emergency transitions.

        Returns:
            True if the emergency flag changed
        """
        if derived.emergency == self.emergency_active:
            return False

        self.emergency_active = derived.emergency
        if derived.emergency:
            logger.critical(f"EMERGENCY DETECTED: {', '.join(derived.emergency_reasons)} "
                            f"(gas={derived.gas_classification.value})")
        else:
            logger.warning("Emergency cleared")
        return True

    def check_connection(self, state: ConnectionState, attempt_count: int, max_attempts: int):
        """Log retry exhaustion once per episode."""
        if state == ConnectionState.EXHAUSTED:
            if not self.exhausted_reported:
                logger.error(f"Connection lost after {attempt_count}/{max_attempts} attempts, "
                             f"real-time data unavailable - manual reconnect required")
                self.exhausted_reported = True
        elif state == ConnectionState.CONNECTED:
            self.exhausted_reported = False

    def log_status(self, status: Dict[str, Any], force: bool = False):
        """
        Log periodic status for monitoring.

        Args:
            status: Status dictionary (must be JSON-serialisable)
            force: Log even if the interval has not elapsed
        """
        now = time.time()
        if force or now - self.last_status_log > self.status_interval:
            logger.info(json.dumps({"event": "status", **status}))
            self.last_status_log = now
