from __future__ import annotations

import logging
import threading

from .conditions import DISPATCHER, SERVICE, ChannelStatus, ConditionSet
from .errors import AggregateError, ReconcilerError
from .models import ResourceHealth
from .naming import KAFKA_SECRET_LABEL
from .retry import check_cancelled, update_channel_status
from .settings import Settings, settings as default_settings
from .store import ObjectStore

LOG = logging.getLogger(__name__)


def apply_health(status: ChannelStatus, service: ResourceHealth, deployment: ResourceHealth) -> ChannelStatus:
    """Set the Service and Dispatcher leaves from the given health.

    No I/O; changed conditions get a fresh transition time.
    """
    conditions: ConditionSet = status.conditions
    if service.valid:
        conditions = conditions.mark_true(SERVICE)
    else:
        conditions = conditions.mark_false(SERVICE, service.reason, service.message)
    if deployment.valid:
        conditions = conditions.mark_true(DISPATCHER)
    else:
        conditions = conditions.mark_false(DISPATCHER, deployment.reason, deployment.message)
    return status.with_conditions(conditions)


class StatusAggregator:
    """Fans a secret's health out to the status of every channel that uses the secret."""

    def __init__(self, store: ObjectStore, settings: Settings = default_settings):
        self.store = store
        self.settings = settings

    def propagate(
        self,
        secret_name: str,
        service: ResourceHealth,
        deployment: ResourceHealth,
        cancel: threading.Event | None = None,
    ) -> int:
        """Update every channel labelled with ``secret_name``; return how many were written.

        Each channel is handled on its own: a channel that keeps conflicting or
        fails does not stop the rest. AggregateError is raised once the whole list
        has been attempted; successful writes stay in place.
        """
        check_cancelled(cancel)
        channels = self.store.list_channels({KAFKA_SECRET_LABEL: secret_name})
        LOG.debug("secret %s is used by %d kafkachannel(s)", secret_name, len(channels))

        def mutate(status: ChannelStatus) -> ChannelStatus:
            return apply_health(status, service, deployment)

        written = 0
        failures: list[Exception] = []
        for channel in channels:
            try:
                _, changed = update_channel_status(
                    self.store,
                    channel,
                    mutate,
                    self.settings.status_update_attempts,
                    cancel=cancel,
                    backoff_s=self.settings.status_retry_backoff_s,
                )
            except ReconcilerError as e:
                LOG.error("failed to update status of kafkachannel %s for secret %s: %s", channel.key, secret_name, e)
                failures.append(e)
                continue
            if changed:
                written += 1

        if failures:
            raise AggregateError(
                f"failed to update status of {len(failures)} of {len(channels)} kafkachannel(s) for secret {secret_name}",
                failures,
            )
        LOG.info("propagated secret %s status to %d kafkachannel(s), %d written", secret_name, len(channels), written)
        return written
