import os as _os
import sys

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from kcr import db  # noqa: E402
from kcr.conditions import ChannelStatus  # noqa: E402
from kcr.models import Channel  # noqa: E402
from kcr.reconciler import DispatcherReconciler  # noqa: E402
from kcr.resolver import StaticSecretResolver  # noqa: E402
from kcr.settings import Settings  # noqa: E402
from kcr.store import MemoryStore  # noqa: E402


class EventSink:
    """Collects (subject, severity, reason, message) instead of writing to sqlite."""

    def __init__(self):
        self.events = []

    def __call__(self, subject, severity, reason, message):
        self.events.append((subject, severity, reason, message))

    def reasons(self, severity=None):
        return [r for _, s, r, _ in self.events if severity is None or s == severity]


@pytest.fixture
def cfg(tmp_path):
    return Settings(
        system_namespace="knative-eventing",
        dispatcher_image="example.com/eventing-kafka/dispatcher:v1",
        dispatcher_replicas=2,
        metrics_port=8081,
        metrics_domain="eventing-kafka",
        health_port=8082,
        status_update_attempts=3,
        status_retry_backoff_ms=0,
        workers=1,
        resync_interval_s=1,
        db_path=str(tmp_path / "events.db"),
    )


@pytest.fixture
def event_db(cfg, monkeypatch):
    monkeypatch.setattr(db, "settings", cfg)
    db.init_db()
    return cfg.db_path


@pytest.fixture
def events():
    return EventSink()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def resolver():
    return StaticSecretResolver({"ns1.chan-a": "kafka-secret-ns1-chan-a"})


@pytest.fixture
def engine(store, resolver, cfg, events):
    return DispatcherReconciler(store, resolver, cfg, events)


@pytest.fixture
def make_channel():
    def _make(namespace="ns1", name="chan-a", labels=None, status=None):
        return Channel(
            namespace=namespace,
            name=name,
            labels=dict(labels or {}),
            status=ChannelStatus.from_dict(status),
            raw={
                "apiVersion": "messaging.knative.dev/v1beta1",
                "kind": "KafkaChannel",
                "metadata": {"namespace": namespace, "name": name},
                "spec": {"numPartitions": 1, "replicationFactor": 1},
            },
        )

    return _make
