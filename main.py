import asyncio
import sys
import questionary
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

from orderbook_sim.analytics import book_stats, cumulative_depth, is_stale, order_position
from orderbook_sim.config import load_config
from orderbook_sim.estimator import OrderSimulator
from orderbook_sim.logger import setup_console_logger, AsyncAuditLogger
from orderbook_sim.models import ConnectionStatus, OrderType, Venue, TIMING_DELAYS_MS
from orderbook_sim.supervisor import FeedSupervisor

DEPTH_ROWS = 5

STATUS_STYLE = {
    ConnectionStatus.CONNECTED: "green",
    ConnectionStatus.CONNECTING: "yellow",
    ConnectionStatus.DISCONNECTED: "dim",
    ConnectionStatus.ERROR: "red",
}

# --- UI HELPER FUNCTIONS ---

def startup_selection(config):
    """Interactive CLI to pick the symbol, venues and an optional order to simulate."""
    print("\n📊 MULTI-VENUE ORDERBOOK VIEWER \n")
    symbol = questionary.select("Select Symbol:", choices=config['supported_symbols']).ask()
    if not symbol:
        print("No symbol selected. Exiting.")
        sys.exit()

    venues = questionary.checkbox("Select Venues to Stream:", choices=config['venues']).ask()
    if not venues:
        print("No venues selected. Exiting.")
        sys.exit()

    offline = questionary.confirm("Run offline (synthetic books only)?",
                                  default=config['feeds']['offline']).ask()

    order = None
    if questionary.confirm("Simulate an order?", default=True).ask():
        order_type = questionary.select("Order type:", choices=["limit", "market"]).ask()
        order = {
            "venue": questionary.select("Venue:", choices=venues).ask(),
            "symbol": symbol,
            "type": order_type,
            "side": questionary.select("Side:", choices=["buy", "sell"]).ask(),
            "quantity": questionary.text("Quantity:", default="1").ask(),
            "timing": questionary.select("Timing:", choices=list(TIMING_DELAYS_MS)).ask(),
        }
        if order_type == "limit":
            order["price"] = questionary.text("Limit price:").ask()
    return symbol, [Venue.parse(v) for v in venues], offline, order


def generate_dashboard(supervisor, simulator, comparison, stale_after):
    """
    Rich layout: per-venue top of book, cumulative depth, last error and
    the simulated order with its queue position.
    """
    books = supervisor.orderbooks
    statuses = supervisor.connection_status

    # 1. Venue Table
    venue_table = Table(title=f"📡 Live Books · {supervisor.symbol}")
    venue_table.add_column("Venue", style="magenta")
    venue_table.add_column("Status")
    venue_table.add_column("Bid", justify="right", style="green")
    venue_table.add_column("Ask", justify="right", style="red")
    venue_table.add_column("Spread", justify="right")
    venue_table.add_column("Imbalance", justify="right")

    for venue in supervisor.venues:
        status = statuses[venue]
        book = books.get(venue)
        stats = book_stats(book)
        status_cell = f"[{STATUS_STYLE[status]}]{status.value}[/]"
        if stats is None:
            venue_table.add_row(venue.value, status_cell, "-", "-", "-", "-")
            continue
        dim = "[dim]" if is_stale(book, stale_after) else ""
        venue_table.add_row(
            venue.value, status_cell,
            f"{dim}{stats.best_bid:,.2f}", f"{dim}{stats.best_ask:,.2f}",
            f"{stats.spread:,.2f} ({stats.spread_pct:.3f}%)",
            f"{stats.imbalance:+.1f}",
        )

    # 2. Simulation Panel
    metrics = simulator.order_metrics
    order = simulator.last_order
    if metrics is None or order is None:
        sim_body = "[dim]No simulated order[/dim]"
    else:
        lines = [
            f"{order.side.value.upper()} {order.quantity} {order.symbol} @ {order.venue.value} ({order.type.value}, {order.timing})",
            f"Fill: {metrics.fill_percentage:.1f}%   Impact: {metrics.market_impact:.3f}%",
            f"Slippage: {metrics.slippage:,.4f}   ETA: {metrics.estimated_fill_time}",
        ]
        book = books.get(order.venue)
        if order.type is OrderType.LIMIT and book is not None:
            lines.append(f"Rests at level {order_position(book, order) + 1} of the {order.side.value} side")
        lines += [f"[yellow]⚠ {w}[/yellow]" for w in metrics.warnings]
        sim_body = "\n".join(lines)

    # 3. Cumulative depth for the simulated venue (or the first one streamed)
    depth_venue = order.venue if order is not None else (supervisor.venues[0] if supervisor.venues else None)
    depth_book = books.get(depth_venue) if depth_venue is not None else None
    depth_table = Table(title=f"📚 Depth · {depth_venue.value if depth_venue else '-'}")
    depth_table.add_column("Bid", justify="right", style="green")
    depth_table.add_column("Cum. Size", justify="right")
    depth_table.add_column("Ask", justify="right", style="red")
    depth_table.add_column("Cum. Size", justify="right")
    if depth_book is not None:
        bid_depth, ask_depth = cumulative_depth(depth_book)
        for i in range(min(DEPTH_ROWS, max(len(bid_depth), len(ask_depth)))):
            bid = bid_depth[i] if i < len(bid_depth) else None
            ask = ask_depth[i] if i < len(ask_depth) else None
            depth_table.add_row(
                f"{bid[0]:,.2f}" if bid else "", f"{bid[1]:,.4f}" if bid else "",
                f"{ask[0]:,.2f}" if ask else "", f"{ask[1]:,.4f}" if ask else "",
            )

    timing_table = Table(title="⏱ Timing Comparison")
    timing_table.add_column("Timing")
    timing_table.add_column("Fill %", justify="right")
    timing_table.add_column("Impact %", justify="right")
    timing_table.add_column("Slippage", justify="right")
    if comparison is not None:
        for timing, m in comparison.results.items():
            label = f"[bold green]{timing} ★[/]" if timing == comparison.best_timing else timing
            timing_table.add_row(label, f"{m.fill_percentage:.1f}", f"{m.market_impact:.3f}", f"{m.slippage:,.2f}")

    # Layout Construction
    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="bottom")
    )
    layout["top"].split_row(
        Layout(name="books"),
        Layout(name="sim"),
    )
    layout["books"].split_column(
        Layout(Panel(venue_table)),
        Layout(Panel(depth_table)),
    )
    layout["sim"].split_column(
        Layout(Panel(sim_body, title="🧪 Simulated Order")),
        Layout(Panel(timing_table)),
    )

    error = simulator.error or supervisor.error
    footer_text = f"[bold red]{error}[/bold red]" if error else "[bold]All feeds nominal[/bold]"
    layout["bottom"].update(Panel(footer_text, style="white on blue"))
    layout["bottom"].size = 3
    return layout

# --- MAIN CONTROLLER ---

class OrderbookViewer:
    def __init__(self, config, symbol, venues, offline, order_request=None):
        self.config = config
        self.config['feeds']['offline'] = offline
        self.symbol = symbol
        self.venues = venues
        self.order_request = order_request
        self.comparison = None

        self.logger = setup_console_logger("OrderbookSim", self.config['ui']['log_level'])
        self.audit_log = AsyncAuditLogger(self.config['audit']['simulation_log'])
        self.supervisor = FeedSupervisor(self.config, self.logger)
        self.simulator = OrderSimulator(self.config, self.logger, self.audit_log)

    async def _simulate(self):
        # Give the feeds a moment so the comparison prices off a real touch
        await asyncio.sleep(1)
        if self.order_request:
            placed = await self.simulator.simulate_order(self.order_request)
            if placed is None:
                return
            venue = placed.venue
        else:
            venue = self.venues[0]
        request = OrderSimulator.comparison_request(venue, self.symbol, self.supervisor.orderbooks.get(venue))
        self.comparison = await self.simulator.compare_timings(request)

    async def run(self):
        sim_task = None
        try:
            await self.audit_log.start()
            await self.supervisor.start(self.venues, self.symbol)
            sim_task = asyncio.create_task(self._simulate())

            refresh = self.config['ui']['refresh_per_second']
            stale_after = self.config['ui']['stale_after_s']
            console = Console()
            with Live(console=console, refresh_per_second=refresh) as live:
                while True:
                    live.update(generate_dashboard(self.supervisor, self.simulator, self.comparison, stale_after))
                    await asyncio.sleep(1 / refresh)
        finally:
            print("Shutting down feeds...")
            if sim_task is not None:
                sim_task.cancel()
            await self.supervisor.shutdown()
            await self.audit_log.stop()

if __name__ == "__main__":
    conf = load_config("config.yaml")
    try:
        sel_symbol, sel_venues, sel_offline, sel_order = startup_selection(conf)
        viewer = OrderbookViewer(conf, sel_symbol, sel_venues, sel_offline, sel_order)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(viewer.run())
    except KeyboardInterrupt:
        print("\n🛑 Viewer Stopped by User.")
        sys.exit()
