# orderbook_sim/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple
import time

Level = Tuple[float, float]

SUPPORTED_SYMBOLS = ["BTC-USD", "ETH-USD", "BTC-USDT", "ETH-USDT"]


def now_ms() -> int:
    return int(time.time() * 1000)


class Venue(Enum):
    """
    Exchanges the viewer can stream from.
    """
    OKX = "OKX"
    BYBIT = "Bybit"
    DERIBIT = "Deribit"

    @classmethod
    def parse(cls, name: str) -> "Venue":
        for venue in cls:
            if venue.value.lower() == str(name).lower():
                return venue
        raise ValueError(f"Unknown venue: {name}")


class ConnectionStatus(Enum):
    """
    Lifecycle states of a single (venue, symbol) connection.
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"


class OrderSide(Enum):
    BUY = "buy"
    SELL = "sell"


# Timing label -> nominal artificial delay (ms)
TIMING_DELAYS_MS = {
    "immediate": 0,
    "5s": 5000,
    "10s": 10000,
    "30s": 30000,
}


@dataclass(frozen=True, slots=True)
class Orderbook:
    """
    Immutable normalized book snapshot.
    Bids are sorted best (highest) first, asks best (lowest) first.
    """
    bids: Tuple[Level, ...]
    asks: Tuple[Level, ...]
    timestamp: int  # ms since epoch

    @property
    def best_bid(self) -> float:
        return self.bids[0][0] if self.bids else 0.0

    @property
    def best_ask(self) -> float:
        return self.asks[0][0] if self.asks else 0.0

    @property
    def spread(self) -> float:
        """Raw spread. Zero or negative means a crossed/stale book."""
        if not self.bids or not self.asks:
            return 0.0
        return self.best_ask - self.best_bid

    @property
    def age(self) -> float:
        """Returns the age of the snapshot in seconds."""
        return time.time() - self.timestamp / 1000


@dataclass(frozen=True, slots=True)
class Acknowledgement:
    """
    Control frame recognised by an adapter (pong, subscription confirmation).
    Carries no market data.
    """
    venue: Venue
    kind: str  # "pong" | "subscribed"
    detail: str = ""


@dataclass(frozen=True, slots=True)
class SimulatedOrder:
    """
    A hypothetical order. Never sent anywhere; superseded on each simulation.
    """
    id: str
    venue: Venue
    symbol: str
    type: OrderType
    side: OrderSide
    price: float  # 0 for market orders
    quantity: float
    timing: str
    timestamp: int


@dataclass(slots=True)
class OrderMetrics:
    fill_percentage: float
    market_impact: float  # percent
    slippage: float  # absolute price units
    estimated_fill_time: str
    warnings: List[str] = field(default_factory=list)
