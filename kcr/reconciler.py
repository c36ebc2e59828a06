from __future__ import annotations

import logging
import threading
from typing import Callable

from kubernetes import client

from . import builder, db, naming
from .builder import DesiredState
from .conditions import DISPATCHER, SERVICE, ConditionSet, Reason, dispatcher_condition_from
from .errors import AggregateError, ConfigurationError, NotFoundError, ReconcilerError
from .models import Channel
from .resolver import SecretResolver
from .retry import check_cancelled
from .settings import Settings, settings as default_settings
from .store import ObjectStore

LOG = logging.getLogger(__name__)

Recorder = Callable[[str, str, str, str], None]  # (subject, severity, reason, message)


def _mark_failed(channel: Channel, ctype: str, reason: Reason, message: str, error: ReconcilerError) -> ConditionSet:
    """Misconfiguration is a definite failure; anything else leaves the leaf Unknown."""
    if isinstance(error, ConfigurationError):
        return channel.status.conditions.mark_false(ctype, reason, message)
    return channel.status.conditions.mark_unknown(ctype, reason, message)


class _DesiredStateOnce:
    """Builds the channel's desired state on first use and remembers the outcome.

    Both creates need the full desired state, so an unbound secret stops every
    create in the pass, and a pass that only verifies never resolves the secret.
    """

    def __init__(self, reconciler: "DispatcherReconciler", channel: Channel, cancel: threading.Event | None):
        self._reconciler = reconciler
        self._channel = channel
        self._cancel = cancel
        self._state: DesiredState | None = None
        self._error: ReconcilerError | None = None

    def get(self) -> DesiredState:
        if self._state is None and self._error is None:
            check_cancelled(self._cancel)
            try:
                secret = self._reconciler.resolver.secret_name(naming.topic_name(self._channel))
                self._state = builder.build(self._channel, self._reconciler.settings, secret)
            except ReconcilerError as e:
                self._error = e
        if self._error is not None:
            raise self._error
        assert self._state is not None
        return self._state


class DispatcherReconciler:
    """Converges a channel's dispatcher Service and Deployment, and reports them in its status.

    ``reconcile`` only mutates ``channel.status`` in memory; persisting it is the
    caller's job (see ``retry.update_channel_status``). Existing objects are
    verified, never updated.
    """

    def __init__(
        self,
        store: ObjectStore,
        resolver: SecretResolver,
        settings: Settings = default_settings,
        recorder: Recorder = db.record_event,
    ):
        self.store = store
        self.resolver = resolver
        self.settings = settings
        self.recorder = recorder

    def reconcile(self, channel: Channel, cancel: threading.Event | None = None) -> None:
        desired = _DesiredStateOnce(self, channel, cancel)
        errors: list[Exception] = []

        # Service and Deployment are independent: a failure in one never skips the other.
        try:
            self._reconcile_service(channel, desired, cancel)
        except ReconcilerError as e:
            self.recorder(
                channel.key,
                db.WARNING,
                Reason.DISPATCHER_SERVICE_RECONCILIATION_FAILED.value,
                f"Failed To Reconcile Dispatcher Service: {e}",
            )
            errors.append(e)
        else:
            LOG.info("reconciled dispatcher service for kafkachannel %s", channel.key)

        try:
            self._reconcile_deployment(channel, desired, cancel)
        except ReconcilerError as e:
            self.recorder(
                channel.key,
                db.WARNING,
                Reason.DISPATCHER_DEPLOYMENT_RECONCILIATION_FAILED.value,
                f"Failed To Reconcile Dispatcher Deployment: {e}",
            )
            errors.append(e)
        else:
            LOG.info("reconciled dispatcher deployment for kafkachannel %s", channel.key)

        if errors:
            raise AggregateError(f"failed to reconcile dispatcher resources for {channel.key}", errors)

    # -- Service (metrics only)

    def _reconcile_service(self, channel: Channel, desired: _DesiredStateOnce, cancel: threading.Event | None) -> None:
        name = naming.dispatcher_name(channel)
        reason = Reason.DISPATCHER_SERVICE_RECONCILIATION_FAILED
        check_cancelled(cancel)
        try:
            self.store.get_service(self.settings.system_namespace, name)
        except NotFoundError:
            LOG.info("dispatcher service %s not found, creating", name)
        except ReconcilerError as e:
            # ambiguous read: never create
            channel.status = channel.status.with_conditions(
                channel.status.conditions.mark_unknown(SERVICE, reason, f"Failed To Get Dispatcher Service: {e}")
            )
            raise
        else:
            channel.status = channel.status.with_conditions(channel.status.conditions.mark_true(SERVICE))
            return

        try:
            service = desired.get().service
        except ReconcilerError as e:
            channel.status = channel.status.with_conditions(
                _mark_failed(channel, SERVICE, reason, f"Failed To Generate Dispatcher Service: {e}", e)
            )
            raise

        check_cancelled(cancel)
        try:
            self.store.create_service(service)
        except ReconcilerError as e:
            channel.status = channel.status.with_conditions(
                channel.status.conditions.mark_false(SERVICE, reason, f"Failed To Create Dispatcher Service: {e}")
            )
            raise
        channel.status = channel.status.with_conditions(channel.status.conditions.mark_true(SERVICE))
        self.recorder(
            channel.key, db.NORMAL, Reason.DISPATCHER_SERVICE_CREATED.value, f"Created Dispatcher Service {name}"
        )

    # -- Deployment

    def _reconcile_deployment(
        self, channel: Channel, desired: _DesiredStateOnce, cancel: threading.Event | None
    ) -> None:
        name = naming.dispatcher_name(channel)
        reason = Reason.DISPATCHER_DEPLOYMENT_RECONCILIATION_FAILED
        check_cancelled(cancel)
        try:
            deployment = self.store.get_deployment(self.settings.system_namespace, name)
        except NotFoundError:
            LOG.info("dispatcher deployment %s not found, creating", name)
        except ReconcilerError as e:
            channel.status = channel.status.with_conditions(
                channel.status.conditions.mark_unknown(
                    DISPATCHER, reason, f"Failed To Get Dispatcher Deployment: {e}"
                )
            )
            raise
        else:
            self._propagate_health(channel, deployment)
            return

        try:
            new = desired.get().deployment
        except ReconcilerError as e:
            channel.status = channel.status.with_conditions(
                _mark_failed(channel, DISPATCHER, reason, f"Failed To Generate Dispatcher Deployment: {e}", e)
            )
            raise

        check_cancelled(cancel)
        try:
            created = self.store.create_deployment(new)
        except ReconcilerError as e:
            channel.status = channel.status.with_conditions(
                channel.status.conditions.mark_false(
                    DISPATCHER, reason, f"Failed To Create Dispatcher Deployment: {e}"
                )
            )
            raise
        self.recorder(
            channel.key, db.NORMAL, Reason.DISPATCHER_DEPLOYMENT_CREATED.value, f"Created Dispatcher Deployment {name}"
        )
        self._propagate_health(channel, created)

    def _propagate_health(self, channel: Channel, deployment: client.V1Deployment) -> None:
        desired_replicas = deployment.spec.replicas if deployment.spec is not None else None
        cond = dispatcher_condition_from(deployment.status, desired_replicas)
        channel.status = channel.status.with_conditions(channel.status.conditions.set(cond))
