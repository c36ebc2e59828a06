from __future__ import annotations

import logging
import threading
import time
from typing import Callable, TypeVar

from .conditions import ChannelStatus
from .errors import Cancelled, ConflictError
from .models import Channel
from .store import ObjectStore

LOG = logging.getLogger(__name__)

T = TypeVar("T")


def check_cancelled(cancel: threading.Event | None) -> None:
    """Raise Cancelled if the caller gave up. Called before each store call, never mid-computation."""
    if cancel is not None and cancel.is_set():
        raise Cancelled("reconciliation cancelled")


def retry_on_conflict(
    attempt: Callable[[int], T],
    max_attempts: int,
    cancel: threading.Event | None = None,
    backoff_s: float = 0.0,
) -> T:
    """Run ``attempt(n)`` for n = 0, 1, ... until it does not raise ConflictError.

    ``attempt`` is expected to reload whatever it writes when n > 0; this loop
    only decides whether to try again. The last ConflictError is re-raised once
    ``max_attempts`` are used up.
    """
    max_attempts = max(1, int(max_attempts))
    last: ConflictError | None = None
    for n in range(max_attempts):
        if n > 0 and backoff_s > 0:
            if cancel is not None:
                cancel.wait(backoff_s)  # wakes up early when cancelled
            else:
                time.sleep(backoff_s)
        check_cancelled(cancel)
        try:
            return attempt(n)
        except ConflictError as e:
            LOG.debug("conflict on attempt %d/%d: %s", n + 1, max_attempts, e)
            last = e
    assert last is not None
    raise last


def update_channel_status(
    store: ObjectStore,
    channel: Channel,
    mutate: Callable[[ChannelStatus], ChannelStatus],
    max_attempts: int,
    cancel: threading.Event | None = None,
    backoff_s: float = 0.0,
) -> tuple[Channel, bool]:
    """Apply ``mutate`` to a channel's status and persist it, reloading on conflict.

    The first attempt works on ``channel`` as given; every later attempt fetches
    a fresh copy and recomputes the mutation against it. No write is issued when
    the mutation leaves the status unchanged.

    Returns (channel as stored, whether a write happened).
    """
    current = channel

    def attempt(n: int) -> tuple[Channel, bool]:
        nonlocal current
        if n > 0:
            current = store.get_channel(channel.namespace, channel.name)
            check_cancelled(cancel)
        desired = mutate(current.status)
        if desired == current.status:
            LOG.debug("status of kafkachannel %s already current", current.key)
            return current, False
        updated = current.copy()
        updated.status = desired
        stored = store.update_channel_status(updated)
        LOG.info("updated status of kafkachannel %s", current.key)
        return stored, True

    return retry_on_conflict(attempt, max_attempts, cancel=cancel, backoff_s=backoff_s)
