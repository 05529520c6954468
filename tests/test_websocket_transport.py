"""
Integration tests for the WebSocket transport.

Runs the real ConnectionManager + WebSocketTransport against a local
websockets server on an ephemeral port.

Usage:
    pytest tests/test_websocket_transport.py -v
"""

import asyncio
import json
import os
import socket
import sys
import unittest

import websockets

# Add parent to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.connection_manager import ConnectionState
from monitor.core.connection_manager import ConnectionManager
from monitor.core.websocket_transport import WebSocketTransport

FRAMES = [
    json.dumps({"gas": 120, "flama": False, "estadoVent": "OFF", "estadoAsp": "OFF", "modo": "MANUAL"}),
    "{not json",
    json.dumps({"gas": 650, "flama": True, "estadoVent": "ON", "estadoAsp": "ON", "modo": "AUTOMATICO"}),
]


def free_port() -> int:
    """Find a port with nothing listening on it"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


async def wait_for(predicate, timeout: float = 5.0):
    """Poll until predicate() is true or fail after timeout"""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class TestWebSocketTransport(unittest.TestCase):
    """Real socket round trips"""

    def test_receive_frames_and_reconnect(self):
        """Frames arrive in order, malformed ones dropped; server close triggers retry"""
        asyncio.run(self._receive_frames_and_reconnect())

    async def _receive_frames_and_reconnect(self):
        received = []
        client_messages = []
        connections = []

        async def handler(websocket, path=None):
            connections.append(websocket)
            for frame in FRAMES:
                await websocket.send(frame)
            try:
                client_messages.append(await asyncio.wait_for(websocket.recv(), timeout=2.0))
            except (asyncio.TimeoutError, websockets.exceptions.ConnectionClosed):
                pass
            await websocket.close()

        server = await websockets.serve(handler, '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]

        manager = ConnectionManager(f"ws://127.0.0.1:{port}", retry_interval=0.05,
                                    max_attempts=3, on_message=received.append)
        try:
            manager.connect()
            await wait_for(lambda: len(received) == 2)

            self.assertEqual([r["gas"] for r in received], [120, 650])
            self.assertEqual(manager.get_stats()['decode_errors'], 1)
            self.assertTrue(manager.is_connected())

            self.assertTrue(manager.send({"hello": "endpoint"}))
            await wait_for(lambda: len(client_messages) == 1)
            self.assertEqual(json.loads(client_messages[0]), {"hello": "endpoint"})

            # Server closes; manager retries after the interval and reconnects
            await wait_for(lambda: len(connections) >= 2)
            self.assertEqual(manager.get_stats()['connect_attempts'], 2)
        finally:
            manager.disconnect()
            server.close()
            await server.wait_closed()

        self.assertEqual(manager.state, ConnectionState.DISCONNECTED)

    def test_unreachable_endpoint_exhausts(self):
        """Refused connections are retried up to the cap, then stop"""
        asyncio.run(self._unreachable_endpoint_exhausts())

    async def _unreachable_endpoint_exhausts(self):
        errors = []
        states = []
        manager = ConnectionManager(f"ws://127.0.0.1:{free_port()}", retry_interval=0.02,
                                    max_attempts=3, on_error=errors.append,
                                    on_state_change=lambda s, n: states.append(s))
        try:
            manager.connect()
            await wait_for(manager.is_exhausted)

            self.assertEqual(manager.attempt_count, 3)
            self.assertEqual(manager.get_stats()['connect_attempts'], 3)
            self.assertEqual(len(errors), 3)
            self.assertEqual(states.count(ConnectionState.RECONNECTING), 3)

            # Nothing further is attempted
            await asyncio.sleep(0.1)
            self.assertEqual(manager.get_stats()['connect_attempts'], 3)
        finally:
            manager.disconnect()

    def test_malformed_address_reports_error(self):
        """An address the client cannot parse is an open failure, reported per attempt"""
        asyncio.run(self._malformed_address_reports_error())

    async def _malformed_address_reports_error(self):
        errors = []
        unhandled = []
        asyncio.get_running_loop().set_exception_handler(
            lambda loop, context: unhandled.append(context))

        manager = ConnectionManager("ws://[::1", retry_interval=0.01, max_attempts=2,
                                    on_error=errors.append)
        try:
            manager.connect()
            await wait_for(manager.is_exhausted)
            await asyncio.sleep(0.05)
        finally:
            manager.disconnect()

        self.assertEqual(len(errors), 2)
        self.assertEqual(manager.get_stats()['connect_attempts'], 2)
        self.assertEqual(unhandled, [])

    def test_disconnect_closes_server_side(self):
        """disconnect() on a live connection closes the socket at the peer"""
        asyncio.run(self._disconnect_closes_server_side())

    async def _disconnect_closes_server_side(self):
        opened = asyncio.Event()
        closed = asyncio.Event()

        async def handler(websocket, path=None):
            opened.set()
            try:
                async for _ in websocket:
                    pass
            except websockets.exceptions.ConnectionClosed:
                pass
            finally:
                closed.set()

        server = await websockets.serve(handler, '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]
        manager = ConnectionManager(f"ws://127.0.0.1:{port}", retry_interval=0.05, max_attempts=3)
        try:
            manager.connect()
            await asyncio.wait_for(opened.wait(), timeout=5.0)
            await wait_for(manager.is_connected)

            manager.disconnect()
            self.assertFalse(manager.send({"late": True}))

            await asyncio.wait_for(closed.wait(), timeout=5.0)
            await asyncio.sleep(0.15)
            self.assertEqual(manager.state, ConnectionState.DISCONNECTED)
            self.assertEqual(manager.get_stats()['connect_attempts'], 1)
        finally:
            server.close()
            await server.wait_closed()

    def test_close_cancels_pending_sends(self):
        asyncio.run(self._close_cancels_pending_sends())

    async def _close_cancels_pending_sends(self):
        transport = WebSocketTransport("ws://127.0.0.1:1")

        async def never_finishes(ws, text):
            await asyncio.Event().wait()

        transport._ws = object()
        transport._send = never_finishes
        self.assertTrue(transport.send("frame"))
        pending = list(transport._send_tasks)
        await asyncio.sleep(0)

        transport.close()
        await asyncio.gather(*pending, return_exceptions=True)

        self.assertEqual(transport._send_tasks, set())
        self.assertTrue(all(task.cancelled() for task in pending))

    def test_disconnect_while_reconnecting(self):
        """A disconnect during the retry delay prevents the next attempt"""
        asyncio.run(self._disconnect_while_reconnecting())

    async def _disconnect_while_reconnecting(self):
        manager = ConnectionManager(f"ws://127.0.0.1:{free_port()}", retry_interval=0.1,
                                    max_attempts=5)
        manager.connect()
        await wait_for(lambda: manager.state == ConnectionState.RECONNECTING)

        manager.disconnect()
        await asyncio.sleep(0.3)

        self.assertEqual(manager.state, ConnectionState.DISCONNECTED)
        self.assertEqual(manager.get_stats()['connect_attempts'], 1)


if __name__ == '__main__':
    unittest.main()
