"""
Telemetry Connection Manager

Owns the lifecycle of the single telemetry channel:

    DISCONNECTED --connect()--> CONNECTING --open--> CONNECTED
    CONNECTED/CONNECTING --close--> RECONNECTING (attempts left) | EXHAUSTED
    RECONNECTING --timer--> attempt += 1 --> CONNECTING | EXHAUSTED
    EXHAUSTED --manual_reconnect()--> CONNECTING (attempts reset)
    any --disconnect()--> DISCONNECTED (attempts reset)

SAFETY:
- Retries are capped; EXHAUSTED is terminal until an operator reconnects
- Only one transport and one retry timer exist at a time
- Events from a superseded transport are ignored
- Malformed frames are dropped and counted, never treated as a disconnect
- Connection failures never raise past this class; they surface as state
  changes and on_error notifications
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from common.connection_manager import ConnectionState, RetryPolicy
from common.constants import DEFAULT_RETRY_INTERVAL_S, DEFAULT_MAX_RECONNECT_ATTEMPTS
from common.telemetry_codec import CodecError, decode_frame, encode_message

from .websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


def _loop_call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    """Default scheduler: a cancellable timer on the running event loop."""
    return asyncio.get_running_loop().call_later(delay, callback)


class ConnectionManager:
    """
    Resilient telemetry connection with bounded fixed-interval retry.

    All methods and transport callbacks run on one event loop; nothing here
    blocks. The retry delay is a scheduler handle that is cancelled before
    any new transport or timer is created.
    """

    def __init__(
        self,
        url: str,
        retry_interval: float = DEFAULT_RETRY_INTERVAL_S,
        max_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        transport_factory: Optional[Callable[[str], Any]] = None,
        scheduler: Optional[Callable[[float, Callable[[], None]], Any]] = None,
        on_connect: Optional[Callable[[], None]] = None,
        on_disconnect: Optional[Callable[[], None]] = None,
        on_message: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_state_change: Optional[Callable[[ConnectionState, int], None]] = None
    ):
        """
        Initialize connection manager.

        Args:
            url: Telemetry endpoint address
            retry_interval: Seconds between automatic reconnect attempts
            max_attempts: Automatic attempts before entering EXHAUSTED
            transport_factory: Builds a transport for a URL (default WebSocketTransport)
            scheduler: call_later(delay, callback) returning a handle with cancel()
            on_connect: Called when the transport opens
            on_disconnect: Called whenever a transport closes
            on_message: Called with each decoded telemetry record
            on_error: Called with the cause of a transport failure
            on_state_change: Called with (state, attempt_count) on every transition
        """
        self.url = url
        self.retry = RetryPolicy(interval=retry_interval, max_attempts=max_attempts)
        self.transport_factory = transport_factory or WebSocketTransport
        self._scheduler = scheduler or _loop_call_later
        # Default transport and scheduler both live on the running event loop
        self._needs_event_loop = transport_factory is None or scheduler is None

        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.on_message = on_message
        self.on_error = on_error
        self.on_state_change = on_state_change

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Any] = None
        self._retry_handle: Optional[Any] = None

        # Statistics
        self.connect_attempts = 0
        self.frames_received = 0
        self.frames_sent = 0
        self.frames_dropped = 0
        self.decode_errors = 0

        logger.info(f"ConnectionManager initialized for {url} "
                    f"(retry_interval={retry_interval}s, max_attempts={max_attempts})")

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt_count(self) -> int:
        return self.retry.attempt_count

    @property
    def max_attempts(self) -> int:
        return self.retry.max_attempts

    @property
    def retry_interval(self) -> float:
        return self.retry.interval

    def is_connected(self) -> bool:
        """Check if the telemetry channel is open"""
        return self._state == ConnectionState.CONNECTED

    def is_exhausted(self) -> bool:
        """Check if automatic retries have stopped"""
        return self._state == ConnectionState.EXHAUSTED

    def has_pending_retry(self) -> bool:
        return self._retry_handle is not None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def connect(self):
        """
        Begin or resume connection attempts.

        No-op while a transport is already open or opening.

        Raises:
            RuntimeError: If the default transport or scheduler is in use and
                no event loop is running (state is left unchanged)
        """
        if self._transport is not None:
            logger.debug("connect() ignored: transport already active")
            return

        if self._needs_event_loop:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                raise RuntimeError("ConnectionManager.connect() must be called "
                                   "from a running asyncio event loop") from None

        self._cancel_retry()
        self._set_state(ConnectionState.CONNECTING)
        self.connect_attempts += 1
        logger.info(f"Connecting to telemetry endpoint {self.url} "
                    f"(attempt {self.retry.attempt_count}/{self.retry.max_attempts})")

        try:
            transport = self.transport_factory(self.url)
            self._transport = transport
            transport.start(
                on_open=lambda: self._on_transport_open(transport),
                on_message=lambda raw: self._on_transport_message(transport, raw),
                on_close=lambda: self._on_transport_close(transport),
                on_error=lambda error: self._on_transport_error(transport, error)
            )
        except Exception as e:
            # Transport could not even be created: same outcome as a failed open
            logger.error(f"Failed to create telemetry transport: {e}")
            self._transport = None
            self._notify(self.on_error, e)
            self._after_close()

    def disconnect(self):
        """
        Tear down intentionally.

        Cancels any pending retry, closes the transport and resets all
        retry bookkeeping. Safe to call from any state, any number of times.
        """
        self._cancel_retry()
        self._close_transport()
        self.retry.reset()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Telemetry connection disconnected")

    def manual_reconnect(self):
        """
        Operator-triggered reset and retry.

        Clears the attempt counter, cancels any pending retry, forces the
        current transport closed and connects immediately.
        """
        logger.info(f"Manual reconnect requested (state={self._state.value}, "
                    f"attempts={self.retry.attempt_count})")
        self.retry.reset()
        self._cancel_retry()
        self._close_transport()
        self.connect()

    def send(self, payload: Any) -> bool:
        """
        Send a message if connected; drop it otherwise (no queueing).

        Args:
            payload: JSON-serialisable message

        Returns:
            True if handed to the transport, False if dropped
        """
        if self._state != ConnectionState.CONNECTED or self._transport is None:
            self.frames_dropped += 1
            logger.debug(f"Not connected, dropping outbound message (state={self._state.value})")
            return False

        try:
            text = encode_message(payload)
        except CodecError as e:
            logger.error(f"Outbound message not sent: {e}")
            self.frames_dropped += 1
            return False

        if self._transport.send(text):
            self.frames_sent += 1
            return True

        self.frames_dropped += 1
        return False

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _on_transport_open(self, transport):
        if transport is not self._transport:
            logger.debug("Ignoring open from superseded transport")
            return

        self.retry.reset()
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Telemetry connected: {self.url}")
        self._notify(self.on_connect)

    def _on_transport_message(self, transport, raw):
        if transport is not self._transport:
            return

        try:
            record = decode_frame(raw)
        except CodecError as e:
            self.decode_errors += 1
            logger.error(f"Telemetry decode error, frame dropped: {e}")
            return

        self.frames_received += 1
        self._notify(self.on_message, record)

    def _on_transport_error(self, transport, error: BaseException):
        if transport is not self._transport:
            return

        logger.error(f"Telemetry transport error: {error}")
        self._notify(self.on_error, error)

    def _on_transport_close(self, transport):
        if transport is not self._transport:
            logger.debug("Ignoring close from superseded transport")
            return

        self._transport = None
        if self._state == ConnectionState.CONNECTED:
            logger.warning("Telemetry connection lost")
        self._after_close()

    def _after_close(self):
        """Decide between retrying and giving up after a close."""
        if self.retry.can_retry():
            self._set_state(ConnectionState.RECONNECTING)
            self._schedule_retry()
        else:
            self._set_state(ConnectionState.EXHAUSTED)
            logger.error(f"Telemetry retries exhausted ({self.retry.attempt_count}/"
                         f"{self.retry.max_attempts}), manual reconnect required")

        self._notify(self.on_disconnect)

    # ------------------------------------------------------------------
    # Retry timer
    # ------------------------------------------------------------------

    def _schedule_retry(self):
        self._cancel_retry()
        logger.warning(f"Reconnecting in {self.retry.interval}s "
                       f"({self.retry.attempt_count}/{self.retry.max_attempts} attempts used)")
        self._retry_handle = self._scheduler(self.retry.interval, self._on_retry_timer)

    def _on_retry_timer(self):
        self._retry_handle = None
        if self._state != ConnectionState.RECONNECTING:
            return

        # Counted before the next attempt starts
        self.retry.record_attempt()
        if self.retry.is_exhausted():
            self._set_state(ConnectionState.EXHAUSTED)
            logger.error(f"Telemetry retries exhausted ({self.retry.attempt_count}/"
                         f"{self.retry.max_attempts}), manual reconnect required")
            return

        self.connect()

    def _cancel_retry(self):
        handle = self._retry_handle
        self._retry_handle = None
        if handle is not None:
            handle.cancel()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _close_transport(self):
        """Close and forget the current transport, if any."""
        transport = self._transport
        if transport is None:
            return

        # Forget first so its close event is treated as stale
        self._transport = None
        try:
            transport.close()
        except Exception as e:
            logger.error(f"Error closing telemetry transport: {e}")

        self._notify(self.on_disconnect)

    def _set_state(self, new_state: ConnectionState):
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            logger.info(f"Connection state: {old_state.value} -> {new_state.value} "
                        f"(attempts={self.retry.attempt_count}/{self.retry.max_attempts})")
            self._notify(self.on_state_change, new_state, self.retry.attempt_count)

    def _notify(self, callback: Optional[Callable], *args):
        """Invoke a consumer callback; its errors never reach the state machine."""
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Connection callback error: {e}")

    def get_stats(self) -> dict:
        """Get connection statistics"""
        return {
            'state': self._state.value,
            'attempt_count': self.retry.attempt_count,
            'max_attempts': self.retry.max_attempts,
            'connect_attempts': self.connect_attempts,
            'frames_received': self.frames_received,
            'frames_sent': self.frames_sent,
            'frames_dropped': self.frames_dropped,
            'decode_errors': self.decode_errors
        }
