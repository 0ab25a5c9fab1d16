import random
import pytest
from orderbook_sim.models import Venue
from orderbook_sim.synthetic import SyntheticBookGenerator, VENUE_BIAS
from test_venues import assert_book_invariants


@pytest.mark.parametrize("seed", range(20))
def test_generated_books_hold_invariants(seed):
    gen = SyntheticBookGenerator(random.Random(seed))
    book = gen.generate(43000.0)
    assert len(book.bids) == 25 and len(book.asks) == 25
    assert_book_invariants(book)
    assert book.best_bid < 43000.0 < book.best_ask


def test_levels_stay_within_offset_bounds():
    gen = SyntheticBookGenerator(random.Random(7))
    book = gen.generate(10000.0)
    # level i sits between 2*(i+1) and 7*(i+1) away from the centre
    assert 10000.0 - 7 * 25 <= book.bids[-1][0]
    assert book.asks[-1][0] <= 10000.0 + 7 * 25
    assert all(0.1 <= size < 3.1 for _, size in book.bids + book.asks)
    assert book.best_ask - book.best_bid >= 4.0


def test_bias_shifts_the_centre():
    gen = SyntheticBookGenerator(random.Random(1))
    book = gen.generate(10000.0, bias=1.001)
    mid = (book.best_bid + book.best_ask) / 2
    assert 10010.0 - 7 < mid < 10010.0 + 7


def test_for_venue_and_symbol_uses_reference_table():
    gen = SyntheticBookGenerator(random.Random(3))
    for venue in Venue:
        book = gen.for_venue_and_symbol(venue, "ETH-USD")
        mid = (book.best_bid + book.best_ask) / 2
        centre = 2500.0 * VENUE_BIAS[venue]
        assert abs(mid - centre) < 50 * VENUE_BIAS[venue] + 7
        assert_book_invariants(book)


def test_unknown_symbol_falls_back_to_50000():
    gen = SyntheticBookGenerator(random.Random(5))
    book = gen.for_venue_and_symbol(Venue.OKX, "DOGE-USD")
    mid = (book.best_bid + book.best_ask) / 2
    assert 50000 - 60 < mid < 50000 + 60


def test_tiny_reference_price_never_produces_non_positive_levels():
    gen = SyntheticBookGenerator(random.Random(11))
    book = gen.generate(20.0)
    assert_book_invariants(book)
    assert len(book.bids) < 25
