# orderbook_sim/estimator.py
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from .models import (
    OrderMetrics, OrderSide, OrderType, Orderbook, SimulatedOrder, Venue,
    TIMING_DELAYS_MS, now_ms,
)

TIMING_MULTIPLIERS = {
    "immediate": 1.2,
    "5s": 1.0,
    "10s": 0.9,
    "30s": 0.8,
}

IMPACT_PER_UNIT = 0.01
MIN_FILL_PCT = 20.0
FALLBACK_COMPARISON_PRICE = 50000.0
COMPARISON_QUANTITY = 0.1


class InvalidOrderRequest(ValueError):
    pass


def build_order(request: Mapping[str, Any]) -> SimulatedOrder:
    """
    Validates a raw order request (as typed into a form) and stamps it
    with an id and creation time.
    """
    try:
        venue = request["venue"] if isinstance(request["venue"], Venue) else Venue.parse(request["venue"])
        order_type = OrderType(request.get("type", "limit"))
        side = OrderSide(request.get("side", "buy"))
    except (KeyError, ValueError) as e:
        raise InvalidOrderRequest(f"Invalid order request: {e}") from e

    symbol = request.get("symbol")
    if not symbol:
        raise InvalidOrderRequest("Symbol is required")

    timing = request.get("timing", "immediate")
    if timing not in TIMING_DELAYS_MS:
        raise InvalidOrderRequest(f"Unknown timing: {timing}")

    try:
        quantity = float(request.get("quantity"))
    except (TypeError, ValueError):
        raise InvalidOrderRequest("Quantity must be a number") from None
    if not quantity > 0:
        raise InvalidOrderRequest("Quantity must be greater than zero")

    price = 0.0
    if order_type is OrderType.LIMIT:
        try:
            price = float(request.get("price"))
        except (TypeError, ValueError):
            raise InvalidOrderRequest("Limit orders need a price") from None
        if not price > 0:
            raise InvalidOrderRequest("Limit price must be greater than zero")

    ts = now_ms()
    return SimulatedOrder(
        id=f"sim-{ts}-{uuid.uuid4().hex[:6]}",
        venue=venue,
        symbol=symbol,
        type=order_type,
        side=side,
        price=price,
        quantity=quantity,
        timing=timing,
        timestamp=ts,
    )


def calculate_order_metrics(order: SimulatedOrder) -> OrderMetrics:
    """
    Fill probability, impact and slippage for a hypothetical order.
    Deliberately book-independent: only quantity, price and timing matter.
    """
    base_impact = order.quantity * IMPACT_PER_UNIT
    multiplier = TIMING_MULTIPLIERS.get(order.timing, 1.0)

    market_impact = base_impact * multiplier
    fill_percentage = max(MIN_FILL_PCT, 100 - market_impact * 10)
    slippage = market_impact * order.price * 0.1

    if order.timing == "immediate":
        fill_time = "<1s"
    else:
        fill_time = order.timing.replace("s", "", 1) + "s"

    warnings = []
    if market_impact > 1.5:
        warnings.append("High market impact detected")
    if slippage > order.price * 0.005:
        warnings.append("Significant slippage expected")
    if fill_percentage < 70:
        warnings.append("Low fill probability")
    if order.timing != "immediate" and market_impact > 1.0:
        warnings.append("Consider immediate execution to reduce impact")

    return OrderMetrics(
        fill_percentage=fill_percentage,
        market_impact=market_impact,
        slippage=slippage,
        estimated_fill_time=fill_time,
        warnings=warnings,
    )


def timing_score(metrics: OrderMetrics) -> float:
    return metrics.fill_percentage - metrics.market_impact - metrics.slippage / 10


@dataclass(slots=True)
class TimingComparison:
    results: Dict[str, OrderMetrics]
    best_timing: Optional[str]


class OrderSimulator:
    """
    Dry-run order desk: nothing is ever sent to a venue.
    Keeps the metrics of the most recent simulation for the dashboard.
    """
    def __init__(self, config: dict, logger: logging.Logger, audit_logger=None):
        self.max_delay_ms = config['simulation']['max_delay_ms']
        self.logger = logger
        self.audit_logger = audit_logger
        self.order_metrics: Optional[OrderMetrics] = None
        self.last_order: Optional[SimulatedOrder] = None
        self.error: Optional[str] = None

    def delay_for(self, timing: str) -> float:
        """Artificial wait in seconds, capped for the demo."""
        nominal = TIMING_DELAYS_MS.get(timing, 0)
        return min(nominal, self.max_delay_ms) / 1000

    async def simulate_order(self, request: Mapping[str, Any]) -> Optional[SimulatedOrder]:
        """
        Returns the simulated order, or None when the request is rejected.
        A rejection leaves the previous metrics in place and sets `error`.
        """
        try:
            order = build_order(request)
        except InvalidOrderRequest as e:
            self.logger.warning(f"Rejected simulated order: {e}")
            self.error = str(e)
            return None
        metrics = await self._run(order)
        self.logger.info(
            f"🔵 DRY RUN: {order.side.value.upper()} {order.quantity} {order.symbol} @ {order.venue.value} "
            f"| fill {metrics.fill_percentage:.1f}% impact {metrics.market_impact:.3f}%")
        if self.audit_logger is not None:
            await self.audit_logger.log_row(self._audit_row(order, metrics))
        self.order_metrics = metrics
        self.last_order = order
        self.error = None
        return order

    async def _run(self, order: SimulatedOrder) -> OrderMetrics:
        delay = self.delay_for(order.timing)
        if delay > 0:
            await asyncio.sleep(delay)
        return calculate_order_metrics(order)

    async def compare_timings(self, request: Mapping[str, Any],
                              timings: List[str] = None) -> Optional[TimingComparison]:
        """
        Runs the same order under each timing scenario concurrently and
        picks the one with the best fill/impact/slippage trade-off.
        Comparison runs are not audited. Returns None for an invalid request.
        """
        timings = timings or list(TIMING_DELAYS_MS)
        try:
            orders = [build_order({**request, "timing": t}) for t in timings]
        except InvalidOrderRequest as e:
            self.logger.warning(f"Rejected timing comparison: {e}")
            self.error = str(e)
            return None

        metrics = await asyncio.gather(*(self._run(o) for o in orders))
        results = dict(zip(timings, metrics))
        best = max(results, key=lambda t: timing_score(results[t])) if results else None
        self.logger.debug(f"Timing comparison for {request.get('symbol')}: best {best}")
        return TimingComparison(results=results, best_timing=best)

    @staticmethod
    def comparison_request(venue: Venue, symbol: str, book: Optional[Orderbook]) -> dict:
        """Limit buy of a small clip at the current best ask."""
        price = book.best_ask if book is not None and book.asks else FALLBACK_COMPARISON_PRICE
        return {
            "venue": venue,
            "symbol": symbol,
            "type": "limit",
            "side": "buy",
            "price": price,
            "quantity": COMPARISON_QUANTITY,
        }

    @staticmethod
    def _audit_row(order: SimulatedOrder, metrics: OrderMetrics) -> list:
        return [
            datetime.now(timezone.utc).isoformat(), order.id, order.venue.value, order.symbol,
            order.type.value, order.side.value, order.price, order.quantity, order.timing,
            round(metrics.fill_percentage, 4), round(metrics.market_impact, 6),
            round(metrics.slippage, 6), "; ".join(metrics.warnings),
        ]
