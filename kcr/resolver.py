from __future__ import annotations

import logging
from typing import Mapping, Protocol

from .naming import KAFKA_SECRET_MARKER_LABEL
from .store import ObjectStore

LOG = logging.getLogger(__name__)


class SecretResolver(Protocol):
    def secret_name(self, topic: str) -> str:
        """Name of the kafka secret bound to ``topic``, or "" when unbound."""


class StaticSecretResolver:
    def __init__(self, bindings: Mapping[str, str] | None = None):
        self.bindings = dict(bindings or {})

    def secret_name(self, topic: str) -> str:
        return self.bindings.get(topic, "")


class LabelSecretResolver:
    """Binds every topic to the kafka secret found in the system namespace.

    Secrets are marked with ``eventing-kafka.knative.dev/kafka-secret=true``; when
    several exist the first by name wins so the choice is stable across passes.
    Store errors propagate: a failed list is not the same as "unbound".
    """

    def __init__(self, store: ObjectStore, namespace: str):
        self.store = store
        self.namespace = namespace

    def secret_name(self, topic: str) -> str:
        names = self.store.list_secrets(self.namespace, {KAFKA_SECRET_MARKER_LABEL: "true"})
        if not names:
            LOG.warning("no kafka secret in %s for topic %s", self.namespace, topic)
            return ""
        return names[0]
