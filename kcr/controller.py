from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Hashable

from . import db, naming
from .aggregator import StatusAggregator
from .conditions import ChannelStatus, Reason, dispatcher_condition_from
from .errors import AggregateError, Cancelled, NotFoundError, ReconcilerError
from .models import ResourceHealth
from .reconciler import DispatcherReconciler, Recorder
from .retry import check_cancelled, update_channel_status
from .runtime import WorkQueue
from .settings import Settings, settings as default_settings
from .store import ObjectStore

LOG = logging.getLogger(__name__)


class Controller:
    """Feeds channel and secret work items to a pool of workers.

    The queue guarantees a key is never processed by two workers at once, so a
    channel pass needs no locking of its own. Channels are resynced every
    ``resync_interval_s`` (level-triggered); secrets are queued when they appear
    or disappear, or on request.
    """

    def __init__(
        self,
        store: ObjectStore,
        engine: DispatcherReconciler,
        aggregator: StatusAggregator,
        settings: Settings = default_settings,
        recorder: Recorder = db.record_event,
    ):
        self.store = store
        self.engine = engine
        self.aggregator = aggregator
        self.settings = settings
        self.recorder = recorder
        self.queue = WorkQueue()
        self._stop = Event()
        self._threads: list[Thread] = []
        self._known_secrets: set[str] | None = None

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        if self._stop.is_set():
            # restarted after stop(): the old queue is shut down for good
            self._stop = Event()
            self.queue = WorkQueue()
        self._threads = [Thread(target=self._resync_loop, name="kcr-resync", daemon=True)]
        for i in range(max(1, self.settings.workers)):
            self._threads.append(Thread(target=self._worker, name=f"kcr-worker-{i}", daemon=True))
        for t in self._threads:
            t.start()
        LOG.info("controller started with %d worker(s)", len(self._threads) - 1)

    def stop(self, timeout: float = 5.0) -> None:
        # The stop event doubles as the cancellation signal of in-flight passes.
        self._stop.set()
        self.queue.shutdown()
        for t in self._threads:
            t.join(timeout)
        LOG.info("controller stopped")

    def enqueue_channel(self, namespace: str, name: str) -> None:
        self.queue.add(("channel", namespace, name))

    def enqueue_secret(self, name: str) -> None:
        self.queue.add(("secret", name))

    # -- triggers

    def resync(self) -> None:
        try:
            channels = self.store.list_channels()
        except ReconcilerError as e:
            LOG.error("resync: failed to list kafkachannels: %s", e)
        else:
            for channel in channels:
                self.enqueue_channel(channel.namespace, channel.name)

        try:
            secrets = set(
                self.store.list_secrets(self.settings.system_namespace, {naming.KAFKA_SECRET_MARKER_LABEL: "true"})
            )
        except ReconcilerError as e:
            LOG.error("resync: failed to list kafka secrets: %s", e)
            return
        changed = secrets if self._known_secrets is None else secrets ^ self._known_secrets
        self._known_secrets = secrets
        for name in sorted(changed):
            self.enqueue_secret(name)

    def _resync_loop(self) -> None:
        while not self._stop.is_set():
            self.resync()
            self._stop.wait(max(1, self.settings.resync_interval_s))

    def _worker(self) -> None:
        while not self._stop.is_set():
            key = self.queue.get(timeout=1.0)
            if key is None:
                continue
            try:
                self.process(key, self._stop)
            except Cancelled:
                LOG.info("work item %s cancelled", key)
            except ReconcilerError as e:
                LOG.warning("work item %s failed: %s", key, e)
            except Exception:
                LOG.exception("work item %s failed unexpectedly", key)
            finally:
                self.queue.done(key)

    def process(self, key: Hashable, cancel: Event | None = None) -> None:
        kind, *ident = key  # type: ignore[misc]
        if kind == "channel":
            self.process_channel(ident[0], ident[1], cancel)
        elif kind == "secret":
            self.process_secret(ident[0], cancel)
        else:
            raise ValueError(f"unknown work item {key!r}")

    # -- channel pass

    def process_channel(self, namespace: str, name: str, cancel: Event | None = None) -> ChannelStatus | None:
        """Reconcile one channel and persist its leaf conditions. Returns the stored status."""
        check_cancelled(cancel)
        try:
            channel = self.store.get_channel(namespace, name)
        except NotFoundError:
            LOG.info("kafkachannel %s/%s is gone, nothing to do", namespace, name)
            return None

        working = channel.copy()
        engine_error: AggregateError | None = None
        try:
            self.engine.reconcile(working, cancel)
        except AggregateError as e:
            engine_error = e
        computed = working.status

        try:
            stored, written = update_channel_status(
                self.store,
                channel,
                lambda status: status.with_leaves_from(computed),
                self.settings.status_update_attempts,
                cancel=cancel,
                backoff_s=self.settings.status_retry_backoff_s,
            )
        except ReconcilerError as e:
            self.recorder(
                channel.key,
                db.WARNING,
                Reason.CHANNEL_STATUS_UPDATE_FAILED.value,
                f"Failed To Update KafkaChannel Status: {e}",
            )
            raise

        if engine_error is not None:
            raise engine_error
        LOG.debug("kafkachannel %s reconciled (status written: %s)", channel.key, written)
        return stored.status

    # -- secret pass

    def probe_receiver(self, secret_name: str, cancel: Event | None = None) -> tuple[ResourceHealth, ResourceHealth]:
        """Health of the receiver Service/Deployment that serves channels using ``secret_name``."""
        name = naming.receiver_dns_safe_name(secret_name)
        namespace = self.settings.system_namespace

        check_cancelled(cancel)
        try:
            self.store.get_service(namespace, name)
            service = ResourceHealth(True)
        except NotFoundError:
            service = ResourceHealth(
                False, Reason.CHANNEL_SERVICE_RECONCILIATION_FAILED.value, f"Receiver Service {name} Not Found"
            )
        except ReconcilerError as e:
            service = ResourceHealth(
                False, Reason.CHANNEL_SERVICE_RECONCILIATION_FAILED.value, f"Failed To Get Receiver Service: {e}"
            )

        check_cancelled(cancel)
        try:
            found = self.store.get_deployment(namespace, name)
        except NotFoundError:
            deployment = ResourceHealth(
                False, Reason.CHANNEL_DEPLOYMENT_RECONCILIATION_FAILED.value, f"Receiver Deployment {name} Not Found"
            )
        except ReconcilerError as e:
            deployment = ResourceHealth(
                False,
                Reason.CHANNEL_DEPLOYMENT_RECONCILIATION_FAILED.value,
                f"Failed To Get Receiver Deployment: {e}",
            )
        else:
            cond = dispatcher_condition_from(found.status, found.spec.replicas if found.spec else None)
            deployment = ResourceHealth(cond.is_true, cond.reason, cond.message)

        return service, deployment

    def process_secret(self, secret_name: str, cancel: Event | None = None) -> int:
        service, deployment = self.probe_receiver(secret_name, cancel)
        return self.aggregator.propagate(secret_name, service, deployment, cancel)
