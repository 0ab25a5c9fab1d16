# orderbook_sim/synthetic.py
import random
from typing import Optional
from .models import Orderbook, Venue, now_ms

LEVELS = 25
DEFAULT_REFERENCE_PRICE = 50000.0
JITTER_USD = 50.0

# Per-venue price skew
VENUE_BIAS = {
    Venue.OKX: 1.0,
    Venue.BYBIT: 1.001,
    Venue.DERIBIT: 0.999,
}

REFERENCE_PRICES = {
    "BTC-USD": 43000.0,
    "ETH-USD": 2500.0,
    "BTC-USDT": 43000.0,
    "ETH-USDT": 2500.0,
    "BTCUSDT": 43000.0,
    "ETHUSDT": 2500.0,
    "BTC-PERPETUAL": 43000.0,
    "ETH-PERPETUAL": 2500.0,
}


class SyntheticBookGenerator:
    """
    Produces plausible random books. Used when a venue is unreachable
    and as the whole data source in offline mode.
    """
    def __init__(self, rng: Optional[random.Random] = None, levels: int = LEVELS):
        self.rng = rng or random.Random()
        self.levels = levels

    def generate(self, reference_price: float, bias: float = 1.0) -> Orderbook:
        center = reference_price * bias
        bids = self._side(center, -1)
        asks = self._side(center, +1)
        return Orderbook(bids=bids, asks=asks, timestamp=now_ms())

    def _side(self, center: float, direction: int) -> tuple:
        levels = {}
        for i in range(self.levels):
            offset = (i + 1) * (2.0 + self.rng.random() * 5.0)
            price = center + direction * offset
            if price <= 0:
                continue
            levels[price] = 0.1 + self.rng.random() * 3.0
        # Per-level random step: raw offsets are not monotonic
        return tuple(sorted(levels.items(), key=lambda lvl: lvl[0], reverse=direction < 0))

    def for_venue_and_symbol(self, venue: Venue, symbol: str) -> Orderbook:
        base = REFERENCE_PRICES.get(symbol, DEFAULT_REFERENCE_PRICE)
        jitter = (self.rng.random() - 0.5) * 2 * JITTER_USD
        return self.generate(base + jitter, VENUE_BIAS.get(venue, 1.0))
