"""
Monitor Coordinator

Main orchestrator for the fire-safety monitoring front end.

Data flow:
  telemetry endpoint -> ConnectionManager (decode, lifecycle)
                     -> SafetyStateEngine (fold, classify)
                     -> status view / StatusMonitor / consumer

SAFETY:
- Device commands are refused unless the installation is in MANUAL mode
  and the telemetry channel is connected
- Mode changes are refused while disconnected
- Only one command is in flight at a time
- Command failures propagate to the caller and are never retried

Usage (package-relative imports, so run as a module or via the console script):
    python -m monitor.core.monitor_coordinator --url ws://127.0.0.1:4000/ws/sensors
    fire-monitor --api-url http://127.0.0.1:4001/api --log-level DEBUG
"""

import argparse
import asyncio
import functools
import logging
import signal
import sys
import os
from typing import Any, Callable, Dict, Optional

# Add parent to path for common imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../..'))

from monitor import config
from monitor.command_client import CommandClient

from common.connection_manager import ConnectionState
from common.logging_config import setup_logging
from common.telemetry_codec import TelemetryDecodeError

from .connection_manager import ConnectionManager
from .safety_engine import SafetyStateEngine
from .status_monitor import StatusMonitor

logger = logging.getLogger(__name__)


class CommandRejectedError(Exception):
    """Command not permitted in the current mode/connection state"""
    pass


class FireSafetyMonitor:
    """
    Wires the telemetry connection, the safety engine and the Command Service.
    """

    def __init__(
        self,
        telemetry_url: Optional[str] = None,
        command_api_url: Optional[str] = None,
        retry_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        command_timeout: Optional[float] = None,
        status_interval: Optional[float] = None,
        transport_factory: Optional[Callable[[str], Any]] = None,
        scheduler: Optional[Callable] = None,
        command_client: Optional[CommandClient] = None
    ):
        """
        Initialize all monitor components. Unset arguments fall back to config.
        """
        self.connection = ConnectionManager(
            url=telemetry_url or config.TELEMETRY_WS_URL,
            retry_interval=config.RETRY_INTERVAL if retry_interval is None else retry_interval,
            max_attempts=config.MAX_RECONNECT_ATTEMPTS if max_attempts is None else max_attempts,
            transport_factory=transport_factory,
            scheduler=scheduler,
            on_connect=self._on_connect,
            on_disconnect=self._on_disconnect,
            on_message=self._on_telemetry_received,
            on_error=self._on_connection_error,
            on_state_change=self._on_state_change
        )

        self.engine = SafetyStateEngine(get_connection_state=lambda: self.connection.state)

        self.commands = command_client or CommandClient(
            base_url=command_api_url or config.COMMAND_API_URL,
            timeout=config.COMMAND_TIMEOUT if command_timeout is None else command_timeout
        )

        self.status_monitor = StatusMonitor(
            status_interval=config.STATUS_LOG_INTERVAL if status_interval is None else status_interval
        )

        self.busy = False
        self.last_error: Optional[str] = None
        self.running = False
        self._stop_event = asyncio.Event()

        logger.info("FireSafetyMonitor initialized")

    # ------------------------------------------------------------------
    # Connection callbacks
    # ------------------------------------------------------------------

    def _on_connect(self):
        self.last_error = None

    def _on_disconnect(self):
        logger.debug(f"Telemetry disconnected (state={self.connection.state.value})")

    def _on_connection_error(self, error: BaseException):
        self.last_error = str(error) or type(error).__name__

    def _on_state_change(self, state: ConnectionState, attempt_count: int):
        self.status_monitor.check_connection(state, attempt_count, self.connection.max_attempts)

    def _on_telemetry_received(self, record: Dict[str, Any]):
        """Fold a decoded telemetry record into the safety engine."""
        try:
            derived = self.engine.update(record)
        except TelemetryDecodeError as e:
            logger.error(f"Malformed telemetry record dropped: {e}")
            return

        self.status_monitor.check_safety(derived)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def set_device_state(self, device: str, state: str) -> Dict[str, Any]:
        """
        Switch an actuator through the Command Service.

        Raises:
            CommandRejectedError: If not in MANUAL mode, not connected, or busy
            CommandError: If the Command Service request fails
        """
        if not self.engine.can_issue_device_command():
            mode = self.engine.snapshot.control_mode
            raise CommandRejectedError(
                f"Device command refused (mode={mode.value if mode else 'unknown'}, "
                f"connection={self.connection.state.value})"
            )
        return await self._run_command(self.commands.set_device_state, device, state)

    async def set_control_mode(self, mode: str) -> Dict[str, Any]:
        """
        Change the control mode through the Command Service.

        Raises:
            CommandRejectedError: If not connected or busy
            CommandError: If the Command Service request fails
        """
        if not self.engine.can_change_mode():
            raise CommandRejectedError(
                f"Mode change refused (connection={self.connection.state.value})"
            )
        return await self._run_command(self.commands.set_control_mode, mode)

    async def _run_command(self, func: Callable, *args) -> Dict[str, Any]:
        """Run a blocking Command Service call off the event loop."""
        if self.busy:
            raise CommandRejectedError("Another command is in progress")

        self.busy = True
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, functools.partial(func, *args))
        finally:
            self.busy = False

    def manual_reconnect(self):
        """Operator retry after the connection has been lost."""
        self.connection.manual_reconnect()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start the monitor (must be called from the event loop)."""
        self.running = True
        self._stop_event.clear()
        self.connection.connect()
        logger.info("FireSafetyMonitor started")

    def stop(self):
        """Stop the monitor."""
        if not self.running:
            return
        logger.info("Stopping FireSafetyMonitor...")
        self.running = False
        self._stop_event.set()
        self.connection.disconnect()
        self.commands.close()
        logger.info("FireSafetyMonitor stopped")

    async def run(self):
        """Start and log status periodically until stop() is called."""
        self.start()
        while self.running:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                pass

            if self.running:
                self.status_monitor.log_status(self.get_status())

    def get_status(self) -> Dict[str, Any]:
        """Get the consumer-facing status view (JSON-serialisable)."""
        state = self.connection.state
        attempts = self.connection.attempt_count
        max_attempts = self.connection.max_attempts
        exhausted = state == ConnectionState.EXHAUSTED

        return {
            'connection': {
                'state': state.value,
                'connected': state == ConnectionState.CONNECTED,
                'reconnecting': state == ConnectionState.RECONNECTING or (
                    state == ConnectionState.CONNECTING and attempts > 0),
                'exhausted': exhausted,
                'manual_retry_available': exhausted,
                'attempt_count': attempts,
                'max_attempts': max_attempts,
                'attempts': f"{attempts}/{max_attempts}",
                'last_error': self.last_error
            },
            'telemetry': self.engine.snapshot.to_dict(),
            'safety': self.engine.derived.to_dict(),
            'controls': {
                'can_issue_device_command': self.engine.can_issue_device_command(),
                'can_change_mode': self.engine.can_change_mode(),
                'busy': self.busy
            },
            'stats': {
                'connection': self.connection.get_stats(),
                'engine': self.engine.get_stats(),
                'commands': self.commands.get_stats()
            }
        }


async def _run_until_signalled(monitor: FireSafetyMonitor):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, monitor.stop)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(monitor.stop))

    await monitor.run()


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Fire-safety telemetry monitor')
    parser.add_argument('--url', default=config.TELEMETRY_WS_URL,
                        help='Telemetry WebSocket endpoint')
    parser.add_argument('--api-url', default=config.COMMAND_API_URL,
                        help='Command Service base URL')
    parser.add_argument('--retry-interval', type=float, default=config.RETRY_INTERVAL,
                        help='Seconds between reconnect attempts')
    parser.add_argument('--max-attempts', type=int, default=config.MAX_RECONNECT_ATTEMPTS,
                        help='Reconnect attempts before giving up')
    parser.add_argument('--log-level', default=config.LOG_LEVEL)
    parser.add_argument('--log-file', default=config.LOG_FILE)
    args = parser.parse_args(argv)

    setup_logging("fire_monitor", level=args.log_level, log_file=args.log_file)

    logger.info("=" * 60)
    logger.info("FIRE-SAFETY MONITOR STARTING")
    logger.info("=" * 60)

    monitor = FireSafetyMonitor(
        telemetry_url=args.url,
        command_api_url=args.api_url,
        retry_interval=args.retry_interval,
        max_attempts=args.max_attempts
    )

    try:
        asyncio.run(_run_until_signalled(monitor))
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        monitor.stop()
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
