from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Where the dispatcher Deployments/Services live
    system_namespace: str = os.getenv("KCR_SYSTEM_NAMESPACE", "knative-eventing")
    service_account: str = os.getenv("KCR_SERVICE_ACCOUNT", "eventing-kafka-channel-controller")

    # Dispatcher sizing
    dispatcher_image: str = os.getenv("KCR_DISPATCHER_IMAGE", "")
    dispatcher_replicas: int = _env_int("KCR_DISPATCHER_REPLICAS", 1)
    dispatcher_cpu_request: str = os.getenv("KCR_DISPATCHER_CPU_REQUEST", "100m")
    dispatcher_cpu_limit: str = os.getenv("KCR_DISPATCHER_CPU_LIMIT", "500m")
    dispatcher_memory_request: str = os.getenv("KCR_DISPATCHER_MEMORY_REQUEST", "50Mi")
    dispatcher_memory_limit: str = os.getenv("KCR_DISPATCHER_MEMORY_LIMIT", "128Mi")

    # Observability ports handed to the dispatcher
    metrics_port: int = _env_int("KCR_METRICS_PORT", 8081)
    metrics_domain: str = os.getenv("KCR_METRICS_DOMAIN", "eventing-kafka")
    health_port: int = _env_int("KCR_HEALTH_PORT", 8082)
    logging_config_name: str = os.getenv("KCR_LOGGING_CONFIG_NAME", "config-logging")

    # Status writes race the primary channel controller
    status_update_attempts: int = _env_int("KCR_STATUS_UPDATE_ATTEMPTS", 5)
    status_retry_backoff_ms: int = _env_int("KCR_STATUS_RETRY_BACKOFF_MS", 10)

    # Controller loop
    store: str = os.getenv("KCR_STORE", "kube")  # kube|memory
    api_timeout_s: int = _env_int("KCR_API_TIMEOUT_S", 10)
    resync_interval_s: int = _env_int("KCR_RESYNC_INTERVAL_S", 30)
    workers: int = _env_int("KCR_WORKERS", 4)
    start_controller: bool = _env_bool("KCR_START_CONTROLLER", True)

    # Event log / process
    db_path: str = os.getenv("KCR_DB_PATH", "kcr.db")
    log_level: str = os.getenv("KCR_LOG_LEVEL", "INFO")

    @property
    def status_retry_backoff_s(self) -> float:
        return max(0, self.status_retry_backoff_ms) / 1000.0


settings = Settings()
