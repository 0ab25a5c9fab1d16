import asyncio
import logging
import pytest
from orderbook_sim.config import load_config


class FakeTransport:
    """
    Scripted stand-in for WebSocketTransport. Tests push frames/closes/errors
    into it and inspect what the supervisor sent.
    """
    def __init__(self, url, hang=False, open_error=None):
        self.url = url
        self.hang = hang
        self.open_error = open_error
        self.sent = []
        self.close_code = None
        self.client_close_code = None
        self._open = False
        self._events = asyncio.Queue()

    async def open(self):
        if self.hang:
            await asyncio.Event().wait()
        if self.open_error is not None:
            raise self.open_error
        self._open = True

    @property
    def closed(self):
        return not self._open

    async def send_str(self, data):
        self.sent.append(data)

    async def send_json(self, data):
        self.sent.append(data)

    def feed(self, frame):
        self._events.put_nowait(("frame", frame))

    def remote_close(self, code):
        self._events.put_nowait(("close", code))

    def fail(self, exc):
        self._events.put_nowait(("error", exc))

    async def frames(self):
        while True:
            kind, value = await self._events.get()
            if kind == "frame":
                yield value
            elif kind == "close":
                self.close_code = value
                self._open = False
                return
            else:
                raise value

    async def close(self, code=1000):
        self._open = False
        self.client_close_code = code


class TransportRecorder:
    """transport_factory that remembers every transport it built."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.built = []
        self.fail_with = None

    def __call__(self, url):
        if self.fail_with is not None:
            raise self.fail_with
        transport = FakeTransport(url, **self.kwargs)
        self.built.append(transport)
        return transport

    @property
    def last(self):
        return self.built[-1]


async def settle(seconds=0.0):
    """Lets scheduled tasks run (optionally after a real sleep)."""
    await asyncio.sleep(seconds)
    for _ in range(10):
        await asyncio.sleep(0)


def make_config(**feeds):
    overrides = {
        "feeds": {
            "connect_timeout_s": 0.05,
            "reconnect_delay_s": 0.05,
            "heartbeat_interval_s": 30,
            "synthetic_refresh_s": 0.05,
        },
        "simulation": {"max_delay_ms": 0},
    }
    overrides["feeds"].update(feeds)
    return load_config(path=None, overrides=overrides)


@pytest.fixture
def logger():
    return logging.getLogger("OrderbookSimTest")
