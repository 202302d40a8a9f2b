"""
In-memory order store.

Orders live in a plain dict guarded by striped locks: the stripe for an
order is chosen by CRC32 of its id, so unrelated orders rarely contend and
every read-validate-mutate on one order runs under a single lock.
Not durable; the store is a working set, not a source of truth.
"""
import logging
import threading
import zlib
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from models import Order

logger = logging.getLogger(__name__)


class OrderStore:
    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks = [threading.RLock() for _ in range(stripes)]
        self._orders: Dict[str, Order] = {}
        # Guards dict structure (insert / iterate), never held while a stripe lock is acquired
        self._index_lock = threading.Lock()

    @property
    def stripe_count(self) -> int:
        return len(self._locks)

    def stripe_for(self, order_id: str) -> int:
        return zlib.crc32(order_id.encode("utf-8")) % len(self._locks)

    @contextmanager
    def locked(self, order_id: str) -> Iterator[None]:
        """Hold the stripe lock for order_id (re-entrant)."""
        lock = self._locks[self.stripe_for(order_id)]
        with lock:
            yield

    def get(self, order_id: str) -> Optional[Order]:
        with self._index_lock:
            return self._orders.get(order_id)

    def contains(self, order_id: str) -> bool:
        with self._index_lock:
            return order_id in self._orders

    def insert(self, order: Order) -> bool:
        """Add a new order. Returns False when the id already exists."""
        with self._index_lock:
            if order.order_id in self._orders:
                return False
            self._orders[order.order_id] = order
        logger.debug(f"Stored order {order.order_id}")
        return True

    def put(self, order: Order) -> None:
        with self._index_lock:
            self._orders[order.order_id] = order

    def all(self) -> List[Order]:
        with self._index_lock:
            return list(self._orders.values())

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._orders)
