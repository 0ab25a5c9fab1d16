# orderbook_sim/supervisor.py
import asyncio
import aiohttp
import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from .models import ConnectionStatus, Orderbook, Venue
from .store import OrderbookStore
from .synthetic import SyntheticBookGenerator
from .transport import ABNORMAL_CLOSURE, aiohttp_transport_factory
from .venues import VenueAdapter, get_adapter

NORMAL_CLOSE_CODES = (1000, 1001)

Key = Tuple[Venue, str]

_ALLOWED = {
    ConnectionStatus.DISCONNECTED: {ConnectionStatus.CONNECTING},
    ConnectionStatus.CONNECTING: {ConnectionStatus.CONNECTED, ConnectionStatus.ERROR,
                                  ConnectionStatus.DISCONNECTED},
    ConnectionStatus.CONNECTED: {ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR},
    ConnectionStatus.ERROR: {ConnectionStatus.CONNECTING, ConnectionStatus.DISCONNECTED},
}


class InvalidTransition(RuntimeError):
    pass


class Connection:
    """
    One (venue, symbol) feed. Owns its transport and every timer/task
    attached to it; `status` only changes through the mark_* methods.
    """
    def __init__(self, venue: Venue, symbol: str, adapter: VenueAdapter):
        self.venue = venue
        self.symbol = symbol
        self.adapter = adapter
        self.native_symbol = adapter.translate_symbol(symbol)
        self.status = ConnectionStatus.DISCONNECTED
        self.transport = None
        self.stream_task: Optional[asyncio.Task] = None
        self.heartbeat_task: Optional[asyncio.Task] = None
        self.synthetic_task: Optional[asyncio.Task] = None
        self.reconnect_handle: Optional[asyncio.TimerHandle] = None
        self.synthetic = False
        self.attempts = 0
        self.torn_down = False

    @property
    def key(self) -> Key:
        return (self.venue, self.symbol)

    def __repr__(self):
        return f"<Connection {self.venue.value}:{self.native_symbol} {self.status.value}>"

    def _transition(self, new: ConnectionStatus):
        if new not in _ALLOWED[self.status]:
            raise InvalidTransition(f"{self.venue.value}: {self.status.value} -> {new.value}")
        self.status = new

    def mark_connecting(self):
        self._transition(ConnectionStatus.CONNECTING)

    def mark_connected(self, synthetic: bool = False):
        self._transition(ConnectionStatus.CONNECTED)
        self.synthetic = synthetic

    def mark_disconnected(self):
        self._transition(ConnectionStatus.DISCONNECTED)

    def mark_error(self):
        self._transition(ConnectionStatus.ERROR)


class ConnectionRegistry:
    """Live connections keyed by (venue, symbol)."""

    def __init__(self):
        self._connections: Dict[Key, Connection] = {}

    def add(self, conn: Connection):
        if conn.key in self._connections:
            raise KeyError(f"Connection already registered for {conn.key}")
        self._connections[conn.key] = conn

    def get(self, key: Key) -> Optional[Connection]:
        return self._connections.get(key)

    def remove(self, key: Key) -> Optional[Connection]:
        return self._connections.pop(key, None)

    def for_venue(self, venue: Venue) -> List[Connection]:
        return [c for c in self._connections.values() if c.venue == venue]

    def __contains__(self, key) -> bool:
        return key in self._connections

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)


class FeedSupervisor:
    """
    Runs one connection per active venue for the selected symbol:
    connect -> subscribe -> stream -> (timeout | error | close) -> reconnect.
    Unreachable venues are backfilled with synthetic books.
    Nothing raises out of here; failures end up in `connection_status` and `error`.
    """
    def __init__(self, config: dict, logger: logging.Logger,
                 store: Optional[OrderbookStore] = None,
                 generator: Optional[SyntheticBookGenerator] = None,
                 transport_factory: Optional[Callable] = None):
        self.cfg = config['feeds']
        self.logger = logger
        self.store = store or OrderbookStore(logger=logger)
        self.generator = generator or SyntheticBookGenerator()
        self.registry = ConnectionRegistry()
        self.offline = bool(self.cfg.get('offline', False))
        self.connect_timeout = self.cfg['connect_timeout_s']
        self.reconnect_delay = self.cfg['reconnect_delay_s']
        self.heartbeat_interval = self.cfg['heartbeat_interval_s']
        self.synthetic_refresh = self.cfg['synthetic_refresh_s']
        self.max_levels = self.cfg.get('max_levels', 25)

        self.symbol: Optional[str] = None
        self.venues: List[Venue] = []
        self.error: Optional[str] = None

        self._transport_factory = transport_factory
        self._session: Optional[aiohttp.ClientSession] = None

    # --- downstream surface ---

    @property
    def orderbooks(self) -> Dict[Venue, Optional[Orderbook]]:
        return self.store.snapshot()

    @property
    def connection_status(self) -> Dict[Venue, ConnectionStatus]:
        status = {v: ConnectionStatus.DISCONNECTED for v in Venue}
        for conn in self.registry:
            if conn.symbol == self.symbol:
                status[conn.venue] = conn.status
        return status

    # --- lifecycle ---

    async def start(self, venues: Iterable[Venue], symbol: str):
        self.symbol = symbol
        mode = "OFFLINE (synthetic)" if self.offline else "LIVE"
        self.logger.info(f"⚡ STARTING {mode} FEEDS FOR {symbol}")
        for venue in venues:
            await self.activate(venue)

    async def set_symbol(self, symbol: str):
        """Tears down every feed for the old symbol, then reconnects on the new one."""
        if symbol == self.symbol:
            return
        venues = list(self.venues)
        for conn in self.registry:
            await self._teardown(conn)
        self.symbol = symbol
        self.venues = []
        for venue in venues:
            await self.activate(venue)

    async def activate(self, venue: Venue) -> Connection:
        if self.symbol is None:
            raise RuntimeError("No symbol selected; call start() first")
        existing = self.registry.get((venue, self.symbol))
        if existing is not None:
            await self._teardown(existing)

        conn = Connection(venue, self.symbol, get_adapter(venue, self.max_levels))
        self.registry.add(conn)
        self.store.claim(venue, conn)
        if venue not in self.venues:
            self.venues.append(venue)

        if self.offline:
            self._run_offline(conn)
        else:
            conn.stream_task = asyncio.ensure_future(self._run(conn))
        return conn

    async def deactivate(self, venue: Venue):
        for conn in self.registry.for_venue(venue):
            await self._teardown(conn)
        if venue in self.venues:
            self.venues.remove(venue)

    async def shutdown(self):
        for conn in self.registry:
            await self._teardown(conn)
        if self._session is not None:
            await self._session.close()
            self._session = None
            # Factory was bound to the session we just closed
            self._transport_factory = None

    # --- connection task ---

    def _factory(self) -> Callable:
        if self._transport_factory is None:
            self._session = aiohttp.ClientSession()
            self._transport_factory = aiohttp_transport_factory(self._session)
        return self._transport_factory

    async def _run(self, conn: Connection):
        conn.mark_connecting()
        url = conn.adapter.endpoint()
        try:
            transport = self._factory()(url)
        except Exception as e:
            self._fail_fast(conn, e)
            return
        conn.transport = transport

        try:
            await asyncio.wait_for(transport.open(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self._fall_back_to_synthetic(conn)
            return
        except Exception as e:
            await self._on_transport_error(conn, e)
            return

        await self._on_open(conn)
        try:
            async for frame in transport.frames():
                self._on_message(conn, frame)
        except Exception as e:
            await self._on_transport_error(conn, e)
            return
        self._on_close(conn, transport.close_code)

    def _fail_fast(self, conn: Connection, exc: Exception):
        self.logger.error(f"❌ {conn.venue.value} | Failed to create connection: {exc}")
        conn.mark_error()
        self.error = f"Failed to connect to {conn.venue.value}: {exc}"
        self._publish_synthetic(conn)

    async def _fall_back_to_synthetic(self, conn: Connection):
        self.logger.warning(
            f"{conn.venue.value} connection timeout after {self.connect_timeout}s, falling back to synthetic data")
        transport, conn.transport = conn.transport, None
        await self._close_quietly(conn, transport)
        conn.mark_connected(synthetic=True)
        self._start_synthetic_feed(conn)

    async def _on_open(self, conn: Connection):
        conn.mark_connected()
        self.error = None
        self.logger.info(f"✅ {conn.venue.value} | WebSocket connected")
        try:
            await conn.transport.send_json(conn.adapter.subscribe_message(conn.native_symbol))
            self.logger.info(f"📡 {conn.venue.value} | Subscribed to {conn.native_symbol}")
        except Exception as e:
            self.logger.error(f"{conn.venue.value} | Subscribe failed: {e}")
        conn.heartbeat_task = asyncio.ensure_future(self._heartbeat_loop(conn, conn.transport))

    def _on_message(self, conn: Connection, frame):
        result = conn.adapter.parse(frame)
        if isinstance(result, Orderbook):
            self.store.publish(conn.venue, result, conn)
        elif result is not None:
            self.logger.debug(f"{conn.venue.value} | {result.kind} {result.detail}")

    def _on_close(self, conn: Connection, code: Optional[int]):
        self._cancel(conn.heartbeat_task)
        conn.heartbeat_task = None
        code = ABNORMAL_CLOSURE if code is None else code
        self.logger.info(f"🔌 {conn.venue.value} | WebSocket closed (code {code})")
        if code in NORMAL_CLOSE_CODES:
            conn.mark_disconnected()
            return
        conn.mark_error()
        self.error = f"{conn.venue.value} closed unexpectedly (code {code})"
        self._schedule_reconnect(conn)

    async def _on_transport_error(self, conn: Connection, exc: Exception):
        self.logger.error(f"❌ {conn.venue.value} | WebSocket error: {exc}")
        self._cancel(conn.heartbeat_task)
        conn.heartbeat_task = None
        transport, conn.transport = conn.transport, None
        await self._close_quietly(conn, transport, code=ABNORMAL_CLOSURE)
        conn.mark_error()
        self.error = f"{conn.venue.value} connection failed: {exc}"
        self._schedule_reconnect(conn)

    # --- timers ---

    def _schedule_reconnect(self, conn: Connection):
        if conn.torn_down or conn.reconnect_handle is not None:
            return
        self.logger.info(f"🔄 {conn.venue.value} | Reconnecting in {self.reconnect_delay}s")
        loop = asyncio.get_running_loop()
        conn.reconnect_handle = loop.call_later(self.reconnect_delay, self._reconnect, conn)

    def _reconnect(self, conn: Connection):
        conn.reconnect_handle = None
        if conn.torn_down or self.registry.get(conn.key) is not conn:
            return
        conn.attempts += 1
        conn.stream_task = asyncio.ensure_future(self._run(conn))

    async def _heartbeat_loop(self, conn: Connection, transport):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                sent = await conn.adapter.heartbeat(transport)
            except Exception as e:
                self.logger.error(f"{conn.venue.value} | Heartbeat failed: {e}")
                return
            if not sent:
                return

    def _run_offline(self, conn: Connection):
        conn.mark_connecting()
        conn.mark_connected(synthetic=True)
        self._start_synthetic_feed(conn)

    def _start_synthetic_feed(self, conn: Connection):
        self._publish_synthetic(conn)
        conn.synthetic_task = asyncio.ensure_future(self._synthetic_loop(conn))

    async def _synthetic_loop(self, conn: Connection):
        while True:
            await asyncio.sleep(self.synthetic_refresh)
            self._publish_synthetic(conn)

    def _publish_synthetic(self, conn: Connection):
        book = self.generator.for_venue_and_symbol(conn.venue, conn.symbol)
        self.store.publish(conn.venue, book, conn)

    # --- teardown ---

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]):
        if task is not None and not task.done():
            task.cancel()

    async def _close_quietly(self, conn: Connection, transport, code: int = 1000):
        if transport is None or transport.closed:
            return
        try:
            await transport.close(code=code)
        except Exception as e:
            self.logger.debug(f"{conn.venue.value} | Error while closing transport: {e}")

    async def _teardown(self, conn: Connection):
        """
        Releases everything owned by `conn`. Safe to call in any state and
        more than once. All cancellation happens before the first await.
        """
        conn.torn_down = True
        if conn.reconnect_handle is not None:
            conn.reconnect_handle.cancel()
            conn.reconnect_handle = None

        current = asyncio.current_task()
        tasks = [t for t in (conn.heartbeat_task, conn.synthetic_task, conn.stream_task)
                 if t is not None and t is not current]
        for task in tasks:
            self._cancel(task)
        conn.heartbeat_task = conn.synthetic_task = conn.stream_task = None

        transport, conn.transport = conn.transport, None
        if self.registry.get(conn.key) is conn:
            self.registry.remove(conn.key)
        if self.store.owner(conn.venue) is conn:
            self.store.clear(conn.venue)
            self.store.release(conn.venue, conn)
        if conn.status is not ConnectionStatus.DISCONNECTED:
            conn.mark_disconnected()

        await self._close_quietly(conn, transport)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
