from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from typing import Any, Callable, Mapping

from kubernetes import client

from .errors import ConflictError, NotFoundError
from .models import Channel
from .naming import matches


class ObjectStore(ABC):
    """get/list/create/update per kind. Each call is atomic on its own; nothing spans objects.

    Implementations raise NotFoundError, ConflictError or TransientStoreError only.
    """

    @abstractmethod
    def get_service(self, namespace: str, name: str) -> client.V1Service: ...

    @abstractmethod
    def create_service(self, service: client.V1Service) -> client.V1Service: ...

    @abstractmethod
    def get_deployment(self, namespace: str, name: str) -> client.V1Deployment: ...

    @abstractmethod
    def create_deployment(self, deployment: client.V1Deployment) -> client.V1Deployment: ...

    @abstractmethod
    def get_channel(self, namespace: str, name: str) -> Channel: ...

    @abstractmethod
    def list_channels(self, selector: Mapping[str, str] | None = None) -> list[Channel]:
        """Channels in every namespace whose labels match ``selector``."""

    @abstractmethod
    def update_channel_status(self, channel: Channel) -> Channel:
        """Write ``channel.status``; ConflictError if ``channel.resource_version`` is stale."""

    @abstractmethod
    def list_secrets(self, namespace: str, selector: Mapping[str, str] | None = None) -> list[str]:
        """Names of the matching secrets, sorted."""


class MemoryStore(ObjectStore):
    """In-process store with resource versions, a call journal and fault injection."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._objects: dict[str, dict[tuple[str, str], Any]] = defaultdict(dict)
        self._rv = 0
        self._faults: dict[tuple[str, str], deque[Exception]] = defaultdict(deque)
        self.calls: list[tuple[str, str, str]] = []  # (verb, kind, "ns/name")

    # -- test/local helpers

    def fail_next(self, verb: str, kind: str, exc: Exception, times: int = 1) -> None:
        with self.lock:
            for _ in range(times):
                self._faults[(verb, kind)].append(exc)

    def count(self, verb: str, kind: str | None = None) -> int:
        with self.lock:
            return sum(1 for v, k, _ in self.calls if v == verb and (kind is None or k == kind))

    def put_channel(self, channel: Channel) -> Channel:
        with self.lock:
            stored = channel.copy()
            stored.resource_version = self._next_rv()
            self._objects["channel"][(stored.namespace, stored.name)] = stored
            return stored.copy()

    def touch_channel(self, namespace: str, name: str, mutate: Callable[[Channel], None] | None = None) -> Channel:
        """Simulate another writer: bump the resource version (optionally changing the object)."""
        with self.lock:
            stored = self._objects["channel"][(namespace, name)]
            if mutate is not None:
                mutate(stored)
            stored.resource_version = self._next_rv()
            return stored.copy()

    def put_secret(self, namespace: str, name: str, labels: Mapping[str, str] | None = None, data: Mapping[str, str] | None = None) -> None:
        with self.lock:
            self._objects["secret"][(namespace, name)] = {"labels": dict(labels or {}), "data": dict(data or {})}

    def set_deployment_status(self, namespace: str, name: str, status: client.V1DeploymentStatus) -> None:
        with self.lock:
            self._objects["deployment"][(namespace, name)].status = copy.deepcopy(status)

    # -- ObjectStore

    def get_service(self, namespace: str, name: str) -> client.V1Service:
        return self._get("service", namespace, name)

    def create_service(self, service: client.V1Service) -> client.V1Service:
        return self._create("service", service)

    def get_deployment(self, namespace: str, name: str) -> client.V1Deployment:
        return self._get("deployment", namespace, name)

    def create_deployment(self, deployment: client.V1Deployment) -> client.V1Deployment:
        return self._create("deployment", deployment)

    def get_channel(self, namespace: str, name: str) -> Channel:
        return self._get("channel", namespace, name)

    def list_channels(self, selector: Mapping[str, str] | None = None) -> list[Channel]:
        with self.lock:
            self._enter("list", "channel", "*")
            out = [c.copy() for c in self._objects["channel"].values() if matches(c.labels, selector or {})]
        return sorted(out, key=lambda c: (c.namespace, c.name))

    def update_channel_status(self, channel: Channel) -> Channel:
        with self.lock:
            key = (channel.namespace, channel.name)
            self._enter("update", "channel", f"{channel.namespace}/{channel.name}")
            stored = self._objects["channel"].get(key)
            if stored is None:
                raise NotFoundError(f"kafkachannel {channel.namespace}/{channel.name} not found")
            if channel.resource_version != stored.resource_version:
                raise ConflictError(
                    f"kafkachannel {channel.namespace}/{channel.name} was modified "
                    f"(have {channel.resource_version}, stored {stored.resource_version})"
                )
            stored.status = channel.status
            stored.resource_version = self._next_rv()
            return stored.copy()

    def list_secrets(self, namespace: str, selector: Mapping[str, str] | None = None) -> list[str]:
        with self.lock:
            self._enter("list", "secret", f"{namespace}/*")
            return sorted(
                name
                for (ns, name), s in self._objects["secret"].items()
                if ns == namespace and matches(s["labels"], selector or {})
            )

    # -- internals

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def _enter(self, verb: str, kind: str, ref: str) -> None:
        # caller holds the lock
        self.calls.append((verb, kind, ref))
        faults = self._faults.get((verb, kind))
        if faults:
            raise faults.popleft()

    def _get(self, kind: str, namespace: str, name: str) -> Any:
        with self.lock:
            self._enter("get", kind, f"{namespace}/{name}")
            obj = self._objects[kind].get((namespace, name))
            if obj is None:
                raise NotFoundError(f"{kind} {namespace}/{name} not found")
            return obj.copy() if isinstance(obj, Channel) else copy.deepcopy(obj)

    def _create(self, kind: str, obj: Any) -> Any:
        namespace, name = obj.metadata.namespace, obj.metadata.name
        with self.lock:
            self._enter("create", kind, f"{namespace}/{name}")
            if (namespace, name) in self._objects[kind]:
                raise ConflictError(f"{kind} {namespace}/{name} already exists")
            stored = copy.deepcopy(obj)
            stored.metadata.resource_version = self._next_rv()
            self._objects[kind][(namespace, name)] = stored
            return copy.deepcopy(stored)
