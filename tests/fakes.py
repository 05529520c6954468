"""
Test doubles for the telemetry connection.

FakeScheduler replaces the event loop timer so retry timing is driven by
advance(); FakeTransport lets a test play the endpoint's open/message/
close/error events by hand.
"""

from typing import List, Optional


class FakeTimerHandle:
    """Cancellable timer entry (cancel is idempotent, like asyncio's)"""

    def __init__(self, when: float, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock implementing call_later(delay, callback)"""

    def __init__(self):
        self.now = 0.0
        self.handles: List[FakeTimerHandle] = []

    def __call__(self, delay: float, callback) -> FakeTimerHandle:
        handle = FakeTimerHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    def pending(self) -> List[FakeTimerHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, seconds: float):
        """Move the clock forward, firing due timers in order."""
        target = self.now + seconds
        while True:
            due = sorted((h for h in self.pending() if h.when <= target), key=lambda h: h.when)
            if not due:
                break
            handle = due[0]
            self.now = handle.when
            handle.fired = True
            handle.callback()
        self.now = target


class FakeTransport:
    """Transport whose events are triggered by the test"""

    def __init__(self, url: str):
        self.url = url
        self.started = False
        self.closed = False
        self.sent: List[str] = []
        self._on_open = None
        self._on_message = None
        self._on_close = None
        self._on_error = None

    def start(self, on_open, on_message, on_close, on_error):
        self.started = True
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error

    # Endpoint-side events
    def open(self):
        self._on_open()

    def receive(self, raw):
        self._on_message(raw)

    def drop(self):
        self._on_close()

    def fail(self, error: Optional[BaseException] = None):
        """Open failure: error notification followed by close."""
        self._on_error(error or ConnectionRefusedError("connection refused"))
        self._on_close()

    # Manager-side calls
    def send(self, text: str) -> bool:
        if self.closed:
            return False
        self.sent.append(text)
        return True

    def close(self):
        self.closed = True


class FakeTransportFactory:
    """Records every transport the manager creates"""

    def __init__(self):
        self.transports: List[FakeTransport] = []

    def __call__(self, url: str) -> FakeTransport:
        transport = FakeTransport(url)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]

    @property
    def count(self) -> int:
        return len(self.transports)
