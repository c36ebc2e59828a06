from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, TypeVar

import urllib3
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from .errors import ConflictError, NotFoundError, TransientStoreError
from .models import CHANNEL_GROUP, CHANNEL_PLURAL, CHANNEL_VERSION, Channel
from .naming import selector_string
from .settings import Settings, settings as default_settings
from .store import ObjectStore

LOG = logging.getLogger(__name__)

T = TypeVar("T")

_config_lock = threading.Lock()
_config_loaded = False


def load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    global _config_loaded
    with _config_lock:
        if _config_loaded:
            return
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()
        _config_loaded = True


def translate(exc: Exception, what: str) -> Exception:
    """Map a client failure onto the reconciler's error taxonomy."""
    if isinstance(exc, ApiException):
        if exc.status == 404:
            return NotFoundError(f"{what} not found")
        if exc.status == 409:
            return ConflictError(f"{what}: {exc.reason}")
        return TransientStoreError(f"{what}: HTTP {exc.status} {exc.reason}")
    return TransientStoreError(f"{what}: {type(exc).__name__}: {exc}")


class KubeStore(ObjectStore):
    def __init__(
        self,
        settings: Settings = default_settings,
        api_client: client.ApiClient | None = None,
    ):
        if api_client is None:
            load_kube_config()
        self.settings = settings
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)

    def _call(self, what: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        kwargs.setdefault("_request_timeout", self.settings.api_timeout_s)
        try:
            return fn(*args, **kwargs)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            err = translate(e, what)
            if not isinstance(err, NotFoundError):
                LOG.debug("%s failed: %s", what, err)
            raise err from e

    def get_service(self, namespace: str, name: str) -> client.V1Service:
        return self._call(f"service {namespace}/{name}", self.core.read_namespaced_service, name, namespace)

    def create_service(self, service: client.V1Service) -> client.V1Service:
        ns = service.metadata.namespace
        return self._call(
            f"create service {ns}/{service.metadata.name}", self.core.create_namespaced_service, ns, service
        )

    def get_deployment(self, namespace: str, name: str) -> client.V1Deployment:
        return self._call(f"deployment {namespace}/{name}", self.apps.read_namespaced_deployment, name, namespace)

    def create_deployment(self, deployment: client.V1Deployment) -> client.V1Deployment:
        ns = deployment.metadata.namespace
        return self._call(
            f"create deployment {ns}/{deployment.metadata.name}",
            self.apps.create_namespaced_deployment,
            ns,
            deployment,
        )

    def get_channel(self, namespace: str, name: str) -> Channel:
        obj = self._call(
            f"kafkachannel {namespace}/{name}",
            self.custom.get_namespaced_custom_object,
            CHANNEL_GROUP,
            CHANNEL_VERSION,
            namespace,
            CHANNEL_PLURAL,
            name,
        )
        return Channel.from_dict(obj)

    def list_channels(self, selector: Mapping[str, str] | None = None) -> list[Channel]:
        kwargs: dict[str, Any] = {}
        if selector:
            kwargs["label_selector"] = selector_string(selector)
        obj = self._call(
            "list kafkachannels",
            self.custom.list_cluster_custom_object,
            CHANNEL_GROUP,
            CHANNEL_VERSION,
            CHANNEL_PLURAL,
            **kwargs,
        )
        return [Channel.from_dict(item) for item in obj.get("items", [])]

    def update_channel_status(self, channel: Channel) -> Channel:
        # resourceVersion in the body makes the API server reject stale writes with 409
        obj = self._call(
            f"update kafkachannel status {channel.key}",
            self.custom.replace_namespaced_custom_object_status,
            CHANNEL_GROUP,
            CHANNEL_VERSION,
            channel.namespace,
            CHANNEL_PLURAL,
            channel.name,
            channel.to_dict(),
        )
        return Channel.from_dict(obj)

    def list_secrets(self, namespace: str, selector: Mapping[str, str] | None = None) -> list[str]:
        kwargs: dict[str, Any] = {}
        if selector:
            kwargs["label_selector"] = selector_string(selector)
        secrets = self._call(f"list secrets in {namespace}", self.core.list_namespaced_secret, namespace, **kwargs)
        return sorted(s.metadata.name for s in secrets.items)
