#!/usr/bin/env python3
"""
Simulated fire-safety installation.

Serves both sides the monitor talks to, on localhost:
- Telemetry WebSocket (ws://127.0.0.1:4000/ws/sensors) streaming one frame
  per interval to every connected client
- Command Service REST API (http://127.0.0.1:4001/api/control/...)

Usage:
    python scripts/sim_endpoint.py
    python scripts/sim_endpoint.py --interval 0.5 --malformed-every 10
    python scripts/sim_endpoint.py --drop-after 20    # exercise reconnects

Point the monitor at it with:
    COMMAND_API_URL=http://127.0.0.1:4001/api python -m monitor.core.monitor_coordinator
"""

import argparse
import asyncio
import json
import logging
import os
import random
import sys
import threading
from typing import Any, Dict, Optional, Set

import websockets
from flask import Flask, jsonify, request

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
from common.constants import (
    DEVICE_FAN, DEVICE_SPRINKLER, DEVICES, STATE_ON, STATE_OFF,
    MODE_MANUAL, MODE_AUTOMATIC, GAS_WARNING_THRESHOLD,
    FIELD_GAS, FIELD_FLAME, FIELD_FAN_STATE, FIELD_SPRINKLER_STATE, FIELD_MODE
)
from common.logging_config import setup_logging

logger = logging.getLogger(__name__)


class SimulatedInstallation:
    """
    Sensor and actuator state of a fake installation.

    Thread-safe: the Flask thread writes actuator/mode state while the
    asyncio thread reads frames.
    """

    def __init__(self, seed: Optional[int] = None, flame_probability: float = 0.02):
        self.lock = threading.Lock()
        self.rng = random.Random(seed)
        self.flame_probability = flame_probability

        self.gas = 120.0
        self.flame = False
        self.fan = STATE_OFF
        self.sprinkler = STATE_OFF
        self.mode = MODE_MANUAL

    def step(self):
        """Advance the simulation by one tick."""
        with self.lock:
            drift = self.rng.uniform(-40.0, 45.0)
            if self.fan == STATE_ON:
                drift -= 60.0
            self.gas = max(0.0, min(1000.0, self.gas + drift))

            if self.flame:
                if self.sprinkler == STATE_ON and self.rng.random() < 0.5:
                    self.flame = False
            else:
                self.flame = self.rng.random() < self.flame_probability

            if self.mode == MODE_AUTOMATIC:
                self.fan = STATE_ON if self.gas >= GAS_WARNING_THRESHOLD else STATE_OFF
                self.sprinkler = STATE_ON if self.flame else STATE_OFF

    def to_frame(self) -> Dict[str, Any]:
        """Current state in telemetry wire format."""
        with self.lock:
            return {
                FIELD_GAS: int(self.gas),
                FIELD_FLAME: self.flame,
                FIELD_FAN_STATE: self.fan,
                FIELD_SPRINKLER_STATE: self.sprinkler,
                FIELD_MODE: self.mode
            }

    def set_device(self, device: str, state: str) -> Dict[str, str]:
        if device not in DEVICES:
            raise ValueError(f"Unknown device: {device}")
        if state not in (STATE_ON, STATE_OFF):
            raise ValueError(f"Invalid state: {state}")

        with self.lock:
            if device == DEVICE_FAN:
                self.fan = state
            else:
                self.sprinkler = state
        logger.info(f"Device {device} -> {state}")
        return {device: state}

    def set_mode(self, mode: str) -> Dict[str, str]:
        if mode not in (MODE_MANUAL, MODE_AUTOMATIC):
            raise ValueError(f"Invalid mode: {mode}")

        with self.lock:
            self.mode = mode
        logger.info(f"Mode -> {mode}")
        return {'modo': mode}


def create_app(installation: SimulatedInstallation) -> Flask:
    """Command Service REST API over the simulated installation."""
    app = Flask(__name__)

    @app.route('/api/control/modo', methods=['POST'])
    def control_mode():
        body = request.get_json(silent=True) or {}
        try:
            return jsonify(installation.set_mode(body.get('mode')))
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

    @app.route('/api/control/<device>', methods=['POST'])
    def control_device(device):
        body = request.get_json(silent=True) or {}
        try:
            return jsonify(installation.set_device(device, body.get('state')))
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

    return app


class TelemetryStreamServer:
    """
    WebSocket server broadcasting simulated telemetry to all clients.
    """

    def __init__(self, installation: SimulatedInstallation, host: str = "127.0.0.1",
                 port: int = 4000, interval: float = 1.0,
                 malformed_every: int = 0, drop_after: int = 0):
        """
        Args:
            installation: Simulation state
            host: Bind address
            port: WebSocket port
            interval: Seconds between frames
            malformed_every: Send a non-JSON frame every N frames (0 = never)
            drop_after: Close all clients after N frames (0 = never)
        """
        self.installation = installation
        self.host = host
        self.port = port
        self.interval = interval
        self.malformed_every = malformed_every
        self.drop_after = drop_after

        self.clients: Set[Any] = set()
        self.frames_sent = 0

    async def handle_client(self, websocket, path: Optional[str] = None):
        """Register a client and hold it until it disconnects."""
        client_addr = websocket.remote_address
        logger.info(f"WebSocket client connected: {client_addr}")
        self.clients.add(websocket)

        try:
            await websocket.send(json.dumps(self.installation.to_frame()))
            async for message in websocket:
                logger.debug(f"Client message ignored: {message!r}")
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)
            logger.info(f"WebSocket client disconnected: {client_addr}")

    async def broadcast(self, message: str):
        disconnected = set()
        for client in list(self.clients):
            try:
                await client.send(message)
            except websockets.exceptions.ConnectionClosed:
                disconnected.add(client)
        self.clients -= disconnected

    async def run(self):
        async with websockets.serve(self.handle_client, self.host, self.port):
            logger.info(f"Telemetry stream on ws://{self.host}:{self.port}/ws/sensors")
            while True:
                await asyncio.sleep(self.interval)
                self.installation.step()
                self.frames_sent += 1

                if self.malformed_every and self.frames_sent % self.malformed_every == 0:
                    await self.broadcast("{not json")
                else:
                    await self.broadcast(json.dumps(self.installation.to_frame()))

                if self.drop_after and self.frames_sent % self.drop_after == 0:
                    logger.warning(f"Dropping {len(self.clients)} client(s)")
                    await asyncio.gather(*[c.close() for c in list(self.clients)],
                                         return_exceptions=True)


def main():
    parser = argparse.ArgumentParser(
        description='Simulated fire-safety installation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--ws-port', type=int, default=4000)
    parser.add_argument('--api-port', type=int, default=4001)
    parser.add_argument('--interval', type=float, default=1.0, help='Seconds between frames')
    parser.add_argument('--malformed-every', type=int, default=0)
    parser.add_argument('--drop-after', type=int, default=0)
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--verbose', '-v', action='store_true')
    args = parser.parse_args()

    setup_logging("sim_endpoint", level='DEBUG' if args.verbose else 'INFO')

    installation = SimulatedInstallation(seed=args.seed)

    app = create_app(installation)
    api_thread = threading.Thread(
        target=app.run,
        kwargs={'host': '127.0.0.1', 'port': args.api_port, 'use_reloader': False},
        daemon=True
    )
    api_thread.start()
    logger.info(f"Command Service on http://127.0.0.1:{args.api_port}/api")

    server = TelemetryStreamServer(
        installation,
        port=args.ws_port,
        interval=args.interval,
        malformed_every=args.malformed_every,
        drop_after=args.drop_after
    )

    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        pass

    logger.info("Simulation stopped")
    return 0


if __name__ == '__main__':
    sys.exit(main())
