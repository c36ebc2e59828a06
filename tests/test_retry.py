import threading

import pytest

from kcr.conditions import SERVICE, ChannelStatus
from kcr.errors import Cancelled, ConflictError, TransientStoreError
from kcr.retry import check_cancelled, retry_on_conflict, update_channel_status


def test_returns_first_successful_attempt():
    seen = []

    def attempt(n):
        seen.append(n)
        if n < 2:
            raise ConflictError("stale")
        return "ok"

    assert retry_on_conflict(attempt, 5) == "ok"
    assert seen == [0, 1, 2]


def test_reraises_last_conflict_after_max_attempts():
    calls = []

    def attempt(n):
        calls.append(n)
        raise ConflictError(f"stale {n}")

    with pytest.raises(ConflictError, match="stale 2"):
        retry_on_conflict(attempt, 3)
    assert calls == [0, 1, 2]


def test_other_errors_are_not_retried():
    calls = []

    def attempt(n):
        calls.append(n)
        raise TransientStoreError("boom")

    with pytest.raises(TransientStoreError):
        retry_on_conflict(attempt, 3)
    assert calls == [0]


def test_cancel_is_checked_before_each_attempt():
    cancel = threading.Event()

    def attempt(n):
        cancel.set()
        raise ConflictError("stale")

    with pytest.raises(Cancelled):
        retry_on_conflict(attempt, 3, cancel=cancel)


def test_check_cancelled():
    check_cancelled(None)
    check_cancelled(threading.Event())
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(Cancelled):
        check_cancelled(cancel)


def _mark_service(status: ChannelStatus) -> ChannelStatus:
    return status.with_conditions(status.conditions.mark_true(SERVICE))


def test_update_channel_status_writes_once_then_noops(store, make_channel):
    channel = store.put_channel(make_channel())

    stored, written = update_channel_status(store, channel, _mark_service, 3)
    assert written
    assert stored.status.conditions.get(SERVICE).is_true
    assert stored.resource_version != channel.resource_version

    again, written = update_channel_status(store, stored, _mark_service, 3)
    assert not written
    assert again.resource_version == stored.resource_version
    assert store.count("update") == 1


def test_update_channel_status_reloads_after_conflict(store, make_channel):
    channel = store.put_channel(make_channel())
    store.touch_channel("ns1", "chan-a")

    stored, written = update_channel_status(store, channel, _mark_service, 3)

    assert written
    assert store.count("get", "channel") == 1
    assert store.count("update") == 2
    assert store.get_channel("ns1", "chan-a").resource_version == stored.resource_version
