"""
Command Service Client

HTTP client for the actuator and mode control endpoints:
- POST {base}/control/ventilador  {"state": "ON"|"OFF"}
- POST {base}/control/aspersor    {"state": "ON"|"OFF"}
- POST {base}/control/modo        {"mode": "MANUAL"|"AUTOMATICO"}

Commands are single request/response calls: never queued, never retried.
Failures raise CommandError for the caller to surface to the operator.
"""

import logging
from typing import Any, Dict, Optional

import requests

from common.constants import (
    DEVICES, STATE_ON, STATE_OFF, MODE_MANUAL, MODE_AUTOMATIC,
    DEFAULT_COMMAND_API_URL, DEFAULT_COMMAND_TIMEOUT_S
)

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Command Service request failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CommandClient:
    """Request/response client for the Command Service."""

    def __init__(self, base_url: str = DEFAULT_COMMAND_API_URL,
                 timeout: float = DEFAULT_COMMAND_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        """
        Initialize command client.

        Args:
            base_url: Command Service base URL (e.g. http://localhost:4000/api)
            timeout: Per-request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

        self.commands_sent = 0
        self.commands_failed = 0

        logger.info(f"CommandClient initialized (url={self.base_url})")

    def set_device_state(self, device: str, state: str) -> Dict[str, Any]:
        """
        Switch an actuator on or off.

        Args:
            device: 'ventilador' or 'aspersor'
            state: 'ON' or 'OFF'

        Returns:
            Response body from the Command Service

        Raises:
            ValueError: If device or state is not recognised
            CommandError: If the request fails
        """
        if device not in DEVICES:
            raise ValueError(f"Unknown device: {device!r}")
        if state not in (STATE_ON, STATE_OFF):
            raise ValueError(f"Invalid device state: {state!r}")

        logger.info(f"Device command: {device} -> {state}")
        return self._post(f"control/{device}", {'state': state}, f"Failed to control {device}")

    def set_control_mode(self, mode: str) -> Dict[str, Any]:
        """
        Switch the installation between manual and automatic control.

        Args:
            mode: 'MANUAL' or 'AUTOMATICO'

        Raises:
            ValueError: If mode is not recognised
            CommandError: If the request fails
        """
        if mode not in (MODE_MANUAL, MODE_AUTOMATIC):
            raise ValueError(f"Invalid control mode: {mode!r}")

        logger.info(f"Mode command: {mode}")
        return self._post("control/modo", {'mode': mode}, "Failed to set control mode")

    def _post(self, path: str, body: Dict[str, Any], failure_message: str) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            self.commands_failed += 1
            logger.error(f"{failure_message}: {e}")
            raise CommandError(f"{failure_message}: {e}") from e

        if not response.ok:
            self.commands_failed += 1
            logger.error(f"{failure_message}: HTTP {response.status_code}")
            raise CommandError(failure_message, status_code=response.status_code)

        self.commands_sent += 1
        try:
            return response.json()
        except ValueError:
            # Accepted but no JSON body
            return {}

    def close(self):
        self.session.close()

    def get_stats(self) -> dict:
        return {
            'commands_sent': self.commands_sent,
            'commands_failed': self.commands_failed
        }
