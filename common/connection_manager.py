"""
Connection Management Utilities

Provides the connection primitives shared by the monitor:
- ConnectionState: lifecycle states of the telemetry channel
- RetryPolicy: fixed-interval retry with a hard attempt cap

Once the cap is reached no further automatic attempt is made; the channel
stays EXHAUSTED until an operator reconnects manually.
"""

import logging
from enum import Enum

from .constants import DEFAULT_RETRY_INTERVAL_S, DEFAULT_MAX_RECONNECT_ATTEMPTS

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Telemetry channel states."""
    DISCONNECTED = "disconnected"  # Idle or intentionally torn down
    CONNECTING = "connecting"      # Transport opening
    CONNECTED = "connected"        # Transport open, frames flowing
    RECONNECTING = "reconnecting"  # Waiting for the retry timer
    EXHAUSTED = "exhausted"        # Retries used up, operator action required


class RetryPolicy:
    """
    Bounded fixed-interval retry bookkeeping.

    The attempt counter is only ever advanced by record_attempt(), which
    increments synchronously and returns the new count, so the caller
    decides between "retry" and "give up" on the value it just wrote.
    """

    def __init__(self, interval: float = DEFAULT_RETRY_INTERVAL_S,
                 max_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS):
        """
        Initialize retry policy.

        Args:
            interval: Delay in seconds between attempts
            max_attempts: Number of automatic attempts before giving up

        Raises:
            ValueError: If interval is negative or max_attempts < 1
        """
        if interval < 0:
            raise ValueError(f"Retry interval must be >= 0, got {interval}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self.interval = interval
        self.max_attempts = max_attempts
        self.attempt_count = 0

    def can_retry(self) -> bool:
        """True while another automatic attempt may be scheduled."""
        return self.attempt_count < self.max_attempts

    def is_exhausted(self) -> bool:
        """True once the attempt cap has been reached."""
        return self.attempt_count >= self.max_attempts

    def record_attempt(self) -> int:
        """
        Count one automatic retry.

        Returns:
            The new attempt count
        """
        self.attempt_count += 1
        if self.is_exhausted():
            logger.warning(f"Retry limit reached ({self.attempt_count}/{self.max_attempts})")
        return self.attempt_count

    def reset(self):
        """Reset the counter (call on successful connection or operator reset)."""
        self.attempt_count = 0
