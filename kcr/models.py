from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from .conditions import ChannelStatus


CHANNEL_GROUP = "messaging.knative.dev"
CHANNEL_VERSION = "v1beta1"
CHANNEL_PLURAL = "kafkachannels"
CHANNEL_KIND = "KafkaChannel"


@dataclass
class Channel:
    """A KafkaChannel as this controller sees it: identity, labels and status.

    ``raw`` keeps the full custom object so that status writes send back the
    spec and metadata exactly as they were read.
    """

    namespace: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    resource_version: str | None = None
    status: ChannelStatus = field(default_factory=ChannelStatus)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "Channel":
        meta = obj.get("metadata") or {}
        return cls(
            namespace=meta.get("namespace", ""),
            name=meta.get("name", ""),
            labels=dict(meta.get("labels") or {}),
            resource_version=meta.get("resourceVersion"),
            status=ChannelStatus.from_dict(obj.get("status")),
            raw=copy.deepcopy(obj),
        )

    def to_dict(self) -> dict[str, Any]:
        obj = copy.deepcopy(self.raw)
        obj.setdefault("apiVersion", f"{CHANNEL_GROUP}/{CHANNEL_VERSION}")
        obj.setdefault("kind", CHANNEL_KIND)
        meta = obj.setdefault("metadata", {})
        meta["namespace"] = self.namespace
        meta["name"] = self.name
        if self.labels:
            meta["labels"] = dict(self.labels)
        if self.resource_version is not None:
            meta["resourceVersion"] = self.resource_version
        obj["status"] = self.status.to_dict()
        return obj

    def copy(self) -> "Channel":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class ResourceHealth:
    """Validity of one of a channel's backing resources, as seen from a secret."""

    valid: bool
    reason: str = ""
    message: str = ""
