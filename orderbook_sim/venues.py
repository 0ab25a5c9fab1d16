import itertools
import json
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Union
from .models import Acknowledgement, Orderbook, Venue, now_ms

MAX_LEVELS = 25
HEARTBEAT_INTERVAL = 30  # seconds

logger = logging.getLogger("OrderbookSim")

ParseResult = Union[Orderbook, Acknowledgement, None]


def _as_float(value: Any) -> Optional[float]:
    """String-or-number to float. Returns None for anything unusable."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_number(value: Any) -> Optional[float]:
    """Strict variant for venues that already send numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return _as_float(value)


def normalize_levels(raw_levels: Iterable[Any], descending: bool, coerce=_as_float,
                     depth: int = MAX_LEVELS) -> tuple:
    """
    Turns raw [price, size, ...] rows into sorted, de-duplicated (price, size) tuples.
    Rows with non-positive or unparseable price/size are dropped.
    """
    book: Dict[float, float] = {}
    for row in raw_levels:
        if not isinstance(row, (list, tuple)) or len(row) < 2:
            continue
        price, size = coerce(row[0]), coerce(row[1])
        if price is None or size is None or price <= 0 or size <= 0:
            continue
        book[price] = size
    ordered = sorted(book.items(), key=lambda lvl: lvl[0], reverse=descending)
    return tuple(ordered[:depth])


class VenueAdapter:
    """
    Per-exchange wire knowledge: where to connect, how to subscribe,
    how to keep the socket alive and how to read book frames.
    """
    venue: Venue
    url: str = ""
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    coerce = staticmethod(_as_float)

    def __init__(self, depth: int = MAX_LEVELS):
        self.depth = depth

    def endpoint(self) -> str:
        return self.url

    def translate_symbol(self, symbol: str) -> str:
        raise NotImplementedError

    def subscribe_message(self, native_symbol: str) -> dict:
        raise NotImplementedError

    def heartbeat_payload(self) -> Union[str, dict]:
        raise NotImplementedError

    async def heartbeat(self, transport) -> bool:
        """
        Sends one keep-alive. Returns False (and sends nothing) once the
        transport is no longer open so the caller can stop its timer.
        """
        if transport is None or transport.closed:
            return False
        payload = self.heartbeat_payload()
        if isinstance(payload, str):
            await transport.send_str(payload)
        else:
            await transport.send_json(payload)
        return True

    def parse(self, raw: Any) -> ParseResult:
        """
        Never raises. Returns an Orderbook for book frames, an Acknowledgement
        for control frames and None for anything else.
        """
        if not isinstance(raw, str):
            logger.debug(f"{self.venue.value}: non-text frame dropped")
            return None
        if raw.strip() == "pong":
            return Acknowledgement(self.venue, "pong")
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug(f"{self.venue.value}: unparseable frame dropped: {raw[:80]}")
            return None
        if not isinstance(data, dict):
            return None
        try:
            ack = self._acknowledgement(data)
            if ack is not None:
                return ack
            return self._book(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.debug(f"{self.venue.value}: malformed book frame dropped: {e}")
            return None

    def _acknowledgement(self, data: dict) -> Optional[Acknowledgement]:
        raise NotImplementedError

    def _book(self, data: dict) -> Optional[Orderbook]:
        raise NotImplementedError

    def _build(self, raw_bids, raw_asks) -> Optional[Orderbook]:
        if raw_bids is None or raw_asks is None:
            return None
        return Orderbook(
            bids=normalize_levels(raw_bids, descending=True, coerce=self.coerce, depth=self.depth),
            asks=normalize_levels(raw_asks, descending=False, coerce=self.coerce, depth=self.depth),
            timestamp=now_ms(),
        )


class OkxAdapter(VenueAdapter):
    venue = Venue.OKX
    url = "wss://ws.okx.com:8443/ws/v5/public"

    def translate_symbol(self, symbol: str) -> str:
        # OKX Format: BTC-USDT
        return symbol.replace("USD", "USDT", 1) if not symbol.endswith("USDT") else symbol

    def subscribe_message(self, native_symbol: str) -> dict:
        return {"op": "subscribe", "args": [{"channel": "books", "instId": native_symbol}]}

    def heartbeat_payload(self) -> str:
        return "ping"

    def _acknowledgement(self, data: dict) -> Optional[Acknowledgement]:
        if data.get("event") == "subscribe":
            return Acknowledgement(self.venue, "subscribed", json.dumps(data.get("arg", {})))
        if data.get("event") == "error":
            logger.warning(f"OKX rejected request: {data.get('msg')}")
        return None

    def _book(self, data: dict) -> Optional[Orderbook]:
        rows = data.get("data")
        if not isinstance(rows, list) or not rows:
            return None
        payload = rows[0]
        return self._build(payload.get("bids"), payload.get("asks"))


class BybitAdapter(VenueAdapter):
    venue = Venue.BYBIT
    url = "wss://stream.bybit.com/v5/public/spot"

    def translate_symbol(self, symbol: str) -> str:
        # Bybit Format: BTCUSDT
        compact = symbol.replace("-", "")
        return compact.replace("USD", "USDT", 1) if not compact.endswith("USDT") else compact

    def subscribe_message(self, native_symbol: str) -> dict:
        return {"op": "subscribe", "args": [f"orderbook.1.{native_symbol}"]}

    def heartbeat_payload(self) -> dict:
        return {"op": "ping"}

    def _acknowledgement(self, data: dict) -> Optional[Acknowledgement]:
        if data.get("ret_msg") == "pong" or data.get("op") == "pong":
            return Acknowledgement(self.venue, "pong")
        if data.get("success") and data.get("op") == "subscribe":
            return Acknowledgement(self.venue, "subscribed", str(data.get("req_id", "")))
        return None

    def _book(self, data: dict) -> Optional[Orderbook]:
        topic = data.get("topic")
        if not isinstance(topic, str) or "orderbook" not in topic:
            return None
        payload = data.get("data")
        if not isinstance(payload, dict):
            return None
        return self._build(payload.get("b"), payload.get("a"))


class DeribitAdapter(VenueAdapter):
    venue = Venue.DERIBIT
    url = "wss://www.deribit.com/ws/api/v2"
    coerce = staticmethod(_as_number)

    def __init__(self, depth: int = MAX_LEVELS):
        super().__init__(depth)
        self._request_ids = itertools.count(now_ms())

    def translate_symbol(self, symbol: str) -> str:
        base = symbol.split("-")[0]
        return f"{base}-PERPETUAL"

    def subscribe_message(self, native_symbol: str) -> dict:
        return {
            "jsonrpc": "2.0",
            "method": "public/subscribe",
            "id": next(self._request_ids),
            "params": {"channels": [f"book.{native_symbol}.100ms"]},
        }

    def heartbeat_payload(self) -> dict:
        return {"jsonrpc": "2.0", "method": "public/ping", "id": next(self._request_ids)}

    def _acknowledgement(self, data: dict) -> Optional[Acknowledgement]:
        if "result" not in data:
            return None
        result = data["result"]
        if result == "pong":
            return Acknowledgement(self.venue, "pong")
        if result == "ok" or isinstance(result, list):
            return Acknowledgement(self.venue, "subscribed", str(data.get("id", "")))
        return None

    def _book(self, data: dict) -> Optional[Orderbook]:
        params = data.get("params")
        if not isinstance(params, dict) or not isinstance(params.get("data"), dict):
            return None
        payload = params["data"]
        return self._build(self._levels(payload.get("bids")), self._levels(payload.get("asks")))

    @staticmethod
    def _levels(rows) -> Optional[List[Any]]:
        # Raw book channel rows are [action, price, amount]; grouped ones are [price, amount]
        if rows is None:
            return None
        levels = []
        for row in rows:
            if isinstance(row, (list, tuple)) and len(row) == 3 and isinstance(row[0], str):
                if row[0] == "delete":
                    continue
                row = row[1:]
            levels.append(row)
        return levels


ADAPTERS = {
    Venue.OKX: OkxAdapter,
    Venue.BYBIT: BybitAdapter,
    Venue.DERIBIT: DeribitAdapter,
}


def get_adapter(venue: Venue, depth: int = MAX_LEVELS) -> VenueAdapter:
    return ADAPTERS[venue](depth)
