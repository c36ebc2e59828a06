from __future__ import annotations

import hashlib
import re
from typing import Mapping, Protocol


DNS_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")

# name + namespace share this many chars; hash and suffix use the rest of the 63.
_SAFE_PREFIX_LEN = 40
_HASH_LEN = 8

# Labels on dispatcher objects (and the label a channel uses to name its secret)
APP_LABEL = "app"
DISPATCHER_LABEL = "kafkachannel-dispatcher"
CHANNEL_NAME_LABEL = "kafkachannel-name"
CHANNEL_NAMESPACE_LABEL = "kafkachannel-namespace"
K8S_APP_LABEL = "k8s-app"
K8S_APP_DISPATCHER_VALUE = "eventing-kafka-channels"
KAFKA_SECRET_LABEL = "kafkasecret"
KAFKA_SECRET_MARKER_LABEL = "eventing-kafka.knative.dev/kafka-secret"

# Kafka secret data keys
SECRET_KEY_BROKERS = "brokers"
SECRET_KEY_USERNAME = "username"
SECRET_KEY_PASSWORD = "password"

# Dispatcher container env
ENV_SYSTEM_NAMESPACE = "SYSTEM_NAMESPACE"
ENV_POD_NAME = "POD_NAME"
ENV_CONTAINER_NAME = "CONTAINER_NAME"
ENV_LOGGING_CONFIG_NAME = "CONFIG_LOGGING_NAME"
ENV_METRICS_PORT = "METRICS_PORT"
ENV_METRICS_DOMAIN = "METRICS_DOMAIN"
ENV_HEALTH_PORT = "HEALTH_PORT"
ENV_CHANNEL_KEY = "CHANNEL_KEY"
ENV_SERVICE_NAME = "SERVICE_NAME"
ENV_KAFKA_TOPIC = "KAFKA_TOPIC"
ENV_KAFKA_BROKERS = "KAFKA_BROKERS"
ENV_KAFKA_USERNAME = "KAFKA_USERNAME"
ENV_KAFKA_PASSWORD = "KAFKA_PASSWORD"

DISPATCHER_CONTAINER_NAME = "dispatcher"
METRICS_PORT_NAME = "metrics"


class ChannelRef(Protocol):
    namespace: str
    name: str


def _short_hash(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:_HASH_LEN]


def dns_safe_name(prefix: str, identity: str, suffix: str) -> str:
    """Return '<prefix>-<hash(identity)>-<suffix>', bounded to a DNS-1123 label.

    The prefix is only there for humans and may be truncated; the hash covers the
    full identity so truncation never makes two identities collide.
    """
    safe = re.sub(r"[^a-z0-9\-]", "-", prefix.lower())[:_SAFE_PREFIX_LEN].strip("-")
    name = f"{safe}-{_short_hash(identity)}-{suffix}" if safe else f"{_short_hash(identity)}-{suffix}"
    if not DNS_LABEL_RE.match(name):
        raise ValueError(f"derived name '{name}' is not a valid DNS label")
    return name


def dispatcher_dns_safe_name(namespace: str, name: str) -> str:
    return dns_safe_name(f"{name}-{namespace}", f"{namespace}/{name}", "dispatcher")


def receiver_dns_safe_name(secret_name: str) -> str:
    return dns_safe_name(secret_name, secret_name, "receiver")


def dispatcher_name(channel: ChannelRef) -> str:
    return dispatcher_dns_safe_name(channel.namespace, channel.name)


def topic_name(channel: ChannelRef) -> str:
    return f"{channel.namespace}.{channel.name}"


def channel_key(channel: ChannelRef) -> str:
    return f"{channel.namespace}/{channel.name}"


def selector_string(selector: Mapping[str, str]) -> str:
    """Render an equality label selector the way the API server expects it."""
    return ",".join(f"{k}={v}" for k, v in sorted(selector.items()))


def matches(labels: Mapping[str, str] | None, selector: Mapping[str, str]) -> bool:
    labels = labels or {}
    return all(labels.get(k) == v for k, v in selector.items())
