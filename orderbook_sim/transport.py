# orderbook_sim/transport.py
import aiohttp
from typing import AsyncIterator, Optional, Union
from yarl import URL

ABNORMAL_CLOSURE = 1006


class TransportError(Exception):
    """Raised when the websocket reports an error frame."""


class WebSocketTransport:
    """
    Thin wrapper around an aiohttp websocket so the supervisor can be
    driven by any object with the same shape (open/frames/send/close).
    """
    def __init__(self, url: str, session: aiohttp.ClientSession):
        parsed = URL(url)
        if parsed.scheme not in ("ws", "wss") or not parsed.host:
            raise ValueError(f"Not a websocket endpoint: {url}")
        self.url = url
        self._session = session
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def open(self):
        # Protocol pings are answered by aiohttp; venue keep-alives come from the adapter
        self._ws = await self._session.ws_connect(self.url, autoping=True)

    @property
    def closed(self) -> bool:
        return self._ws is None or self._ws.closed

    @property
    def close_code(self) -> Optional[int]:
        if self._ws is None:
            return None
        return self._ws.close_code

    async def send_str(self, data: str):
        await self._ws.send_str(data)

    async def send_json(self, data: dict):
        await self._ws.send_json(data)

    async def frames(self) -> AsyncIterator[Union[str, bytes]]:
        """
        Yields text/binary payloads until the socket closes.
        Raises TransportError on an error frame.
        """
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.BINARY:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(str(self._ws.exception() or "websocket error"))

    async def close(self, code: int = 1000):
        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=code)


def aiohttp_transport_factory(session: aiohttp.ClientSession):
    def factory(url: str) -> WebSocketTransport:
        return WebSocketTransport(url, session)
    return factory
