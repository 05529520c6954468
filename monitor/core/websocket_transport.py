"""
WebSocket Transport Module

asyncio transport for the telemetry channel, built on the websockets client.

Each transport instance is one connection attempt: start() opens it in a
background task, and the task always ends with exactly one on_close call,
whether the open failed, the peer closed, or close() cancelled it.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """
    Single-use WebSocket connection to the telemetry endpoint.

    Must be started from inside a running asyncio event loop.
    """

    def __init__(self, url: str, open_timeout: Optional[float] = 10.0):
        """
        Initialize transport.

        Args:
            url: WebSocket endpoint (ws:// or wss://)
            open_timeout: Handshake timeout in seconds (None = library default)
        """
        self.url = url
        self.open_timeout = open_timeout
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._send_tasks: Set[asyncio.Task] = set()

    def start(
        self,
        on_open: Callable[[], None],
        on_message: Callable[[Any], None],
        on_close: Callable[[], None],
        on_error: Callable[[BaseException], None]
    ):
        """
        Begin opening the connection.

        Args:
            on_open: Called once the handshake completes
            on_message: Called with each frame payload, in arrival order
            on_close: Called exactly once when the transport is finished
            on_error: Called when opening or reading fails
        """
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(on_open, on_message, on_close, on_error))

    async def _run(self, on_open, on_message, on_close, on_error):
        """Connection task: open, pump frames, report close."""
        try:
            async with websockets.connect(self.url, open_timeout=self.open_timeout) as ws:
                self._ws = ws
                logger.debug(f"WebSocket open: {self.url}")
                on_open()

                async for message in ws:
                    on_message(message)

        except ConnectionClosed as e:
            logger.info(f"WebSocket closed by peer: {e}")
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"WebSocket error ({self.url}): {e}")
            on_error(e)
        except Exception as e:
            # e.g. ValueError/InvalidURI for a malformed endpoint address
            logger.error(f"WebSocket failure ({self.url}): {type(e).__name__}: {e}")
            on_error(e)
        finally:
            self._ws = None
            on_close()

    def send(self, text: str) -> bool:
        """
        Queue a text frame for sending.

        Returns:
            True if the frame was handed to an open socket
        """
        if self._ws is None:
            return False

        task = asyncio.ensure_future(self._send(self._ws, text))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)
        return True

    async def _send(self, ws, text: str):
        try:
            await ws.send(text)
        except ConnectionClosed as e:
            logger.debug(f"Send dropped, connection closed: {e}")

    def close(self):
        """Close the connection, stop the reader task and drop pending sends."""
        for task in list(self._send_tasks):
            task.cancel()
        self._send_tasks.clear()

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def is_open(self) -> bool:
        return self._ws is not None
