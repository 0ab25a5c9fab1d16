# orderbook_sim/analytics.py
from dataclasses import dataclass
from typing import List, Optional, Tuple
from .models import OrderSide, Orderbook, SimulatedOrder

PRESSURE_DEPTH = 10


@dataclass(slots=True)
class BookStats:
    best_bid: float
    best_ask: float
    mid_price: float
    spread: float  # clamped at 0
    spread_pct: float
    bid_pressure: float  # share of top-10 volume resting on the bid, in %
    ask_pressure: float
    imbalance: float  # bid_pressure - 50
    is_crossed: bool


def book_stats(book: Optional[Orderbook], depth: int = PRESSURE_DEPTH) -> Optional[BookStats]:
    """
    Headline numbers for one venue. Returns None when either side is empty.
    A crossed or locked book reports zero spread and is_crossed=True.
    """
    if book is None or not book.bids or not book.asks:
        return None

    best_bid, best_ask = book.best_bid, book.best_ask
    raw_spread = best_ask - best_bid
    mid = (best_bid + best_ask) / 2
    spread = max(0.0, raw_spread)

    bid_volume = sum(size for _, size in book.bids[:depth])
    ask_volume = sum(size for _, size in book.asks[:depth])
    total = bid_volume + ask_volume
    bid_pressure = (bid_volume / total) * 100 if total > 0 else 50.0

    return BookStats(
        best_bid=best_bid,
        best_ask=best_ask,
        mid_price=mid,
        spread=spread,
        spread_pct=(spread / mid) * 100 if spread > 0 else 0.0,
        bid_pressure=bid_pressure,
        ask_pressure=100 - bid_pressure,
        imbalance=bid_pressure - 50,
        is_crossed=raw_spread <= 0,
    )


def cumulative_depth(book: Orderbook) -> Tuple[List[Tuple[float, float]], List[Tuple[float, float]]]:
    """Running size totals walking away from the touch on each side."""
    def walk(levels):
        total, out = 0.0, []
        for price, size in levels:
            total += size
            out.append((price, total))
        return out
    return walk(book.bids), walk(book.asks)


def order_position(book: Orderbook, order: SimulatedOrder) -> int:
    """
    Index of the level the simulated limit order would sit at.
    Equal to the side's length when it would rest behind every level.
    """
    if order.side is OrderSide.BUY:
        for i, (price, _) in enumerate(book.bids):
            if order.price >= price:
                return i
        return len(book.bids)
    for i, (price, _) in enumerate(book.asks):
        if order.price <= price:
            return i
    return len(book.asks)


def is_stale(book: Optional[Orderbook], max_age_seconds: float) -> bool:
    """Old or crossed data should not be trusted for display decisions."""
    if book is None:
        return True
    if book.age > max_age_seconds:
        return True
    return bool(book.bids and book.asks and book.spread <= 0)
