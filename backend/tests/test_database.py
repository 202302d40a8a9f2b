"""
Tests for the striped-lock in-memory order store.
"""
import sys
import threading
from pathlib import Path

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from database import OrderStore


class TestOrderStore:
    def test_insert_rejects_duplicates(self, make_order):
        store = OrderStore()
        assert store.insert(make_order())
        assert not store.insert(make_order())
        assert len(store) == 1

    def test_put_replaces(self, make_order):
        store = OrderStore()
        store.insert(make_order())
        store.put(make_order(amount="99.00"))
        assert str(store.get("ORD-1001").total_amount) == "99.00"
        assert store.contains("ORD-1001")
        assert store.get("ORD-404") is None

    def test_stripe_is_stable(self):
        store = OrderStore(stripes=8)
        assert store.stripe_count == 8
        assert store.stripe_for("ORD-1") == store.stripe_for("ORD-1")
        assert 0 <= store.stripe_for("ORD-1") < 8

    def test_invalid_stripe_count(self):
        with pytest.raises(ValueError):
            OrderStore(stripes=0)

    def test_lock_is_reentrant(self):
        store = OrderStore()
        with store.locked("ORD-1"):
            with store.locked("ORD-1"):
                pass

    def test_lock_excludes_other_threads(self):
        store = OrderStore(stripes=1)
        entered = threading.Event()
        release = threading.Event()
        acquired = []

        def holder():
            with store.locked("ORD-1"):
                entered.set()
                release.wait(5)

        def contender():
            with store.locked("ORD-2"):
                acquired.append(True)

        t1 = threading.Thread(target=holder)
        t1.start()
        entered.wait(5)
        t2 = threading.Thread(target=contender)
        t2.start()
        t2.join(0.2)
        assert acquired == []
        release.set()
        t1.join()
        t2.join()
        assert acquired == [True]
