"""Desired state of a channel's dispatcher.

Pure functions: the same channel, settings and secret name always give equal
objects, so the reconciler can rebuild them on any pass without side effects.
"""

from __future__ import annotations

from dataclasses import dataclass

from kubernetes import client

from . import naming
from .errors import ConfigurationError
from .naming import ChannelRef
from .settings import Settings


LIVENESS_PATH = "/healthz"
READINESS_PATH = "/healthy"
LIVENESS_DELAY_S = 10
LIVENESS_PERIOD_S = 5
READINESS_DELAY_S = 10
READINESS_PERIOD_S = 5


@dataclass(frozen=True)
class DesiredState:
    deployment: client.V1Deployment
    service: client.V1Service


def _owner_labels(channel: ChannelRef) -> dict[str, str]:
    # owning channel as labels; no owner references across namespaces
    return {
        naming.DISPATCHER_LABEL: "true",
        naming.CHANNEL_NAME_LABEL: channel.name,
        naming.CHANNEL_NAMESPACE_LABEL: channel.namespace,
    }


def build_service(channel: ChannelRef, settings: Settings) -> client.V1Service:
    name = naming.dispatcher_name(channel)
    labels = _owner_labels(channel)
    labels[naming.K8S_APP_LABEL] = naming.K8S_APP_DISPATCHER_VALUE
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(name=name, namespace=settings.system_namespace, labels=labels),
        spec=client.V1ServiceSpec(
            ports=[
                client.V1ServicePort(
                    name=naming.METRICS_PORT_NAME,
                    port=settings.metrics_port,
                    target_port=settings.metrics_port,
                )
            ],
            selector={naming.APP_LABEL: name},
        ),
    )


def _secret_env(env_name: str, secret_name: str, key: str) -> client.V1EnvVar:
    return client.V1EnvVar(
        name=env_name,
        value_from=client.V1EnvVarSource(
            secret_key_ref=client.V1SecretKeySelector(name=secret_name, key=key),
        ),
    )


def dispatcher_env(channel: ChannelRef, settings: Settings, secret_name: str) -> list[client.V1EnvVar]:
    """Dispatcher container env: 10 fixed variables followed by 3 read from the kafka secret."""
    topic = naming.topic_name(channel)
    if not secret_name:
        raise ConfigurationError(f"invalid kafka secret for topic '{topic}'")

    return [
        client.V1EnvVar(name=naming.ENV_SYSTEM_NAMESPACE, value=settings.system_namespace),
        client.V1EnvVar(
            name=naming.ENV_POD_NAME,
            value_from=client.V1EnvVarSource(field_ref=client.V1ObjectFieldSelector(field_path="metadata.name")),
        ),
        client.V1EnvVar(name=naming.ENV_CONTAINER_NAME, value=naming.DISPATCHER_CONTAINER_NAME),
        client.V1EnvVar(name=naming.ENV_LOGGING_CONFIG_NAME, value=settings.logging_config_name),
        client.V1EnvVar(name=naming.ENV_METRICS_PORT, value=str(settings.metrics_port)),
        client.V1EnvVar(name=naming.ENV_METRICS_DOMAIN, value=settings.metrics_domain),
        client.V1EnvVar(name=naming.ENV_HEALTH_PORT, value=str(settings.health_port)),
        client.V1EnvVar(name=naming.ENV_CHANNEL_KEY, value=naming.channel_key(channel)),
        client.V1EnvVar(name=naming.ENV_SERVICE_NAME, value=naming.dispatcher_name(channel)),
        client.V1EnvVar(name=naming.ENV_KAFKA_TOPIC, value=topic),
        _secret_env(naming.ENV_KAFKA_BROKERS, secret_name, naming.SECRET_KEY_BROKERS),
        _secret_env(naming.ENV_KAFKA_USERNAME, secret_name, naming.SECRET_KEY_USERNAME),
        _secret_env(naming.ENV_KAFKA_PASSWORD, secret_name, naming.SECRET_KEY_PASSWORD),
    ]


def _probe(path: str, port: int, delay_s: int, period_s: int) -> client.V1Probe:
    return client.V1Probe(
        http_get=client.V1HTTPGetAction(path=path, port=port),
        initial_delay_seconds=delay_s,
        period_seconds=period_s,
    )


def build_deployment(channel: ChannelRef, settings: Settings, secret_name: str) -> client.V1Deployment:
    name = naming.dispatcher_name(channel)
    env = dispatcher_env(channel, settings, secret_name)

    labels = _owner_labels(channel)
    labels[naming.APP_LABEL] = name

    container = client.V1Container(
        name=name,
        image=settings.dispatcher_image,
        image_pull_policy="IfNotPresent",
        env=env,
        liveness_probe=_probe(LIVENESS_PATH, settings.health_port, LIVENESS_DELAY_S, LIVENESS_PERIOD_S),
        readiness_probe=_probe(READINESS_PATH, settings.health_port, READINESS_DELAY_S, READINESS_PERIOD_S),
        resources=client.V1ResourceRequirements(
            limits={"cpu": settings.dispatcher_cpu_limit, "memory": settings.dispatcher_memory_limit},
            requests={"cpu": settings.dispatcher_cpu_request, "memory": settings.dispatcher_memory_request},
        ),
    )

    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(name=name, namespace=settings.system_namespace, labels=labels),
        spec=client.V1DeploymentSpec(
            replicas=settings.dispatcher_replicas,
            selector=client.V1LabelSelector(match_labels={naming.APP_LABEL: name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels={naming.APP_LABEL: name}),
                spec=client.V1PodSpec(service_account_name=settings.service_account, containers=[container]),
            ),
        ),
    )


def build(channel: ChannelRef, settings: Settings, secret_name: str) -> DesiredState:
    """Build both dispatcher objects, or raise ConfigurationError and build neither."""
    deployment = build_deployment(channel, settings, secret_name)
    return DesiredState(deployment=deployment, service=build_service(channel, settings))
