# orderbook_sim/store.py
import logging
from typing import Dict, Hashable, Optional
from .models import Orderbook, Venue


class OrderbookStore:
    """
    Latest book per venue. Each venue has at most one writer (the live
    connection that claimed it); everybody else may only read.
    Snapshots are replaced wholesale, no history is kept.
    """
    def __init__(self, venues=tuple(Venue), logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("OrderbookSim")
        self._books: Dict[Venue, Optional[Orderbook]] = {v: None for v in venues}
        self._owners: Dict[Venue, Hashable] = {}

    def claim(self, venue: Venue, owner: Hashable):
        """Hands write access for `venue` to `owner`, revoking any previous writer."""
        self._owners[venue] = owner

    def release(self, venue: Venue, owner: Hashable):
        if self._owners.get(venue) is owner:
            del self._owners[venue]

    def owner(self, venue: Venue) -> Optional[Hashable]:
        return self._owners.get(venue)

    def publish(self, venue: Venue, book: Orderbook, owner: Hashable) -> bool:
        """
        Replaces the snapshot for `venue`. Writes from anything but the
        current owner are dropped (stale connection still draining).
        """
        if self._owners.get(venue) is not owner:
            self.logger.debug(f"Dropped write to {venue.value} from non-owner {owner!r}")
            return False
        self._books[venue] = book
        return True

    def clear(self, venue: Venue):
        self._books[venue] = None

    def get(self, venue: Venue) -> Optional[Orderbook]:
        return self._books.get(venue)

    def snapshot(self) -> Dict[Venue, Optional[Orderbook]]:
        return dict(self._books)
