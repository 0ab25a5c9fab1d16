import asyncio
import json
from orderbook_sim.models import Acknowledgement, Orderbook, Venue
from orderbook_sim.venues import (
    BybitAdapter, DeribitAdapter, OkxAdapter, get_adapter, normalize_levels,
)
from conftest import FakeTransport


def assert_book_invariants(book: Orderbook):
    bid_prices = [p for p, _ in book.bids]
    ask_prices = [p for p, _ in book.asks]
    assert all(a > b for a, b in zip(bid_prices, bid_prices[1:]))
    assert all(a < b for a, b in zip(ask_prices, ask_prices[1:]))
    assert all(p > 0 and s > 0 for p, s in book.bids + book.asks)
    assert len(book.bids) <= 25 and len(book.asks) <= 25


def test_translate_symbol_per_venue():
    assert OkxAdapter().translate_symbol("BTC-USD") == "BTC-USDT"
    assert BybitAdapter().translate_symbol("BTC-USD") == "BTCUSDT"
    assert DeribitAdapter().translate_symbol("BTC-USD") == "BTC-PERPETUAL"


def test_translate_symbol_already_tether_quoted():
    assert OkxAdapter().translate_symbol("ETH-USDT") == "ETH-USDT"
    assert BybitAdapter().translate_symbol("ETH-USDT") == "ETHUSDT"
    assert DeribitAdapter().translate_symbol("ETH-USDT") == "ETH-PERPETUAL"


def test_endpoints():
    assert get_adapter(Venue.OKX).endpoint() == "wss://ws.okx.com:8443/ws/v5/public"
    assert get_adapter(Venue.BYBIT).endpoint() == "wss://stream.bybit.com/v5/public/spot"
    assert get_adapter(Venue.DERIBIT).endpoint() == "wss://www.deribit.com/ws/api/v2"


def test_subscribe_messages():
    assert OkxAdapter().subscribe_message("BTC-USDT") == {
        "op": "subscribe", "args": [{"channel": "books", "instId": "BTC-USDT"}]}
    assert BybitAdapter().subscribe_message("BTCUSDT") == {
        "op": "subscribe", "args": ["orderbook.1.BTCUSDT"]}
    msg = DeribitAdapter().subscribe_message("BTC-PERPETUAL")
    assert msg["method"] == "public/subscribe"
    assert msg["params"] == {"channels": ["book.BTC-PERPETUAL.100ms"]}
    assert msg["jsonrpc"] == "2.0"


def test_heartbeat_payloads_sent_while_open():
    async def scenario():
        okx, bybit, deribit = FakeTransport("a"), FakeTransport("b"), FakeTransport("c")
        for t in (okx, bybit, deribit):
            await t.open()
        adapter = DeribitAdapter()
        await OkxAdapter().heartbeat(okx)
        await BybitAdapter().heartbeat(bybit)
        await adapter.heartbeat(deribit)
        await adapter.heartbeat(deribit)
        return okx.sent, bybit.sent, deribit.sent

    okx_sent, bybit_sent, deribit_sent = asyncio.run(scenario())
    assert okx_sent == ["ping"]
    assert bybit_sent == [{"op": "ping"}]
    assert [m["method"] for m in deribit_sent] == ["public/ping", "public/ping"]
    assert deribit_sent[0]["id"] != deribit_sent[1]["id"]


def test_heartbeat_is_noop_on_closed_transport():
    async def scenario():
        transport = FakeTransport("x")  # never opened
        sent = await BybitAdapter().heartbeat(transport)
        return sent, transport.sent

    sent, frames = asyncio.run(scenario())
    assert sent is False
    assert frames == []


def test_okx_book_frame():
    frame = json.dumps({
        "arg": {"channel": "books", "instId": "BTC-USDT"},
        "action": "snapshot",
        "data": [{
            "bids": [["41006.3", "0.3", "0", "2"], ["41007.0", "1.1", "0", "1"], ["41000", "0", "0", "0"]],
            "asks": [["41010.5", "0.6", "0", "1"], ["41008.8", "2", "0", "3"]],
            "ts": "1700000000000",
        }],
    })
    book = OkxAdapter().parse(frame)
    assert isinstance(book, Orderbook)
    assert book.bids == ((41007.0, 1.1), (41006.3, 0.3))
    assert book.asks == ((41008.8, 2.0), (41010.5, 0.6))
    assert book.timestamp > 0
    assert_book_invariants(book)


def test_okx_acknowledgements():
    adapter = OkxAdapter()
    assert adapter.parse("pong") == Acknowledgement(Venue.OKX, "pong")
    ack = adapter.parse(json.dumps({"event": "subscribe", "arg": {"channel": "books", "instId": "BTC-USDT"}}))
    assert isinstance(ack, Acknowledgement)
    assert ack.kind == "subscribed"
    assert adapter.parse(json.dumps({"event": "error", "code": "60012", "msg": "Invalid request"})) is None


def test_bybit_book_frame_and_acks():
    adapter = BybitAdapter()
    frame = json.dumps({
        "topic": "orderbook.1.BTCUSDT",
        "type": "snapshot",
        "ts": 1700000000000,
        "data": {"s": "BTCUSDT", "b": [["43000.1", "0.5"]], "a": [["43000.9", "0.25"]], "u": 1},
    })
    book = adapter.parse(frame)
    assert book.bids == ((43000.1, 0.5),)
    assert book.asks == ((43000.9, 0.25),)

    sub = adapter.parse(json.dumps({"success": True, "ret_msg": "", "op": "subscribe", "conn_id": "x"}))
    assert sub.kind == "subscribed"
    pong = adapter.parse(json.dumps({"success": True, "ret_msg": "pong", "op": "ping"}))
    assert pong.kind == "pong"


def test_deribit_numeric_levels_and_raw_channel_rows():
    adapter = DeribitAdapter()
    grouped = json.dumps({
        "jsonrpc": "2.0", "method": "subscription",
        "params": {"channel": "book.BTC-PERPETUAL.100ms",
                   "data": {"bids": [[42999.5, 1200.0], [43000.0, 10.0]], "asks": [[43001.0, 50.0]]}},
    })
    book = adapter.parse(grouped)
    assert book.bids == ((43000.0, 10.0), (42999.5, 1200.0))
    assert book.asks == ((43001.0, 50.0),)

    raw_rows = json.dumps({
        "params": {"data": {
            "bids": [["new", 43000.0, 5.0], ["delete", 42990.0, 0.0]],
            "asks": [["change", 43002.5, 7.0]],
        }},
    })
    book = adapter.parse(raw_rows)
    assert book.bids == ((43000.0, 5.0),)
    assert book.asks == ((43002.5, 7.0),)


def test_deribit_rejects_string_levels():
    frame = json.dumps({"params": {"data": {"bids": [["43000", "1"]], "asks": [[43001.0, 1.0]]}}})
    book = DeribitAdapter().parse(frame)
    assert book.bids == ()
    assert book.asks == ((43001.0, 1.0),)


def test_deribit_acknowledgements():
    adapter = DeribitAdapter()
    assert adapter.parse(json.dumps({"jsonrpc": "2.0", "id": 1, "result": "ok"})).kind == "subscribed"
    assert adapter.parse(json.dumps({"id": 2, "result": ["book.BTC-PERPETUAL.100ms"]})).kind == "subscribed"
    assert adapter.parse(json.dumps({"id": 3, "result": "pong"})).kind == "pong"


def test_malformed_frames_return_none():
    for adapter in (OkxAdapter(), BybitAdapter(), DeribitAdapter()):
        assert adapter.parse("{not json") is None
        assert adapter.parse(b"\x00\x01") is None
        assert adapter.parse("[1, 2, 3]") is None
        assert adapter.parse(json.dumps({"data": "nope", "topic": 5, "params": []})) is None
    assert OkxAdapter().parse(json.dumps({"data": [{"bids": 5, "asks": None}]})) is None
    assert BybitAdapter().parse(json.dumps({"topic": "orderbook.1.X", "data": {"b": [["1", "1"]]}})) is None


def test_truncates_to_top_25_levels():
    bids = [[str(1000 - i), "1"] for i in range(40)]
    asks = [[str(1001 + i), "1"] for i in range(40)]
    frame = json.dumps({"data": [{"bids": bids, "asks": asks}]})
    book = OkxAdapter().parse(frame)
    assert len(book.bids) == 25 and len(book.asks) == 25
    assert book.bids[0] == (1000.0, 1.0)
    assert book.asks[0] == (1001.0, 1.0)
    assert_book_invariants(book)


def test_normalize_levels_drops_bad_rows():
    rows = [["10", "1"], ["-1", "2"], ["11", "-3"], ["nan", "1"], ["abc", "1"], ["12"], None, ["10", "4"]]
    assert normalize_levels(rows, descending=True) == ((10.0, 4.0),)
