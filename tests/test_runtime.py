import re
import threading

from kcr.runtime import WorkQueue, utc_now


def test_utc_now_is_rfc3339():
    assert re.match(r"^\d{4}-\d\d-\d\dT\d\d:\d\d:\d\dZ$", utc_now())


def test_duplicate_keys_are_collapsed():
    q = WorkQueue()
    q.add("a")
    q.add("b")
    q.add("a")

    assert len(q) == 2
    assert q.get(timeout=0.1) == "a"
    assert q.get(timeout=0.1) == "b"
    assert q.get(timeout=0.01) is None


def test_key_in_flight_is_not_handed_out_twice():
    q = WorkQueue()
    q.add("a")
    assert q.get(timeout=0.1) == "a"

    q.add("a")
    assert q.get(timeout=0.01) is None
    assert q.processing() == ["a"]

    q.done("a")
    assert q.get(timeout=0.1) == "a"
    q.done("a")
    assert q.get(timeout=0.01) is None


def test_shutdown_wakes_blocked_getters():
    q = WorkQueue()
    results = []
    t = threading.Thread(target=lambda: results.append(q.get()))
    t.start()

    q.shutdown()
    t.join(2)

    assert not t.is_alive()
    assert results == [None]
    q.add("late")
    assert len(q) == 0
