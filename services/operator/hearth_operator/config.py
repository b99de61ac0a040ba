"""Configuration management for the Hearth operator."""

from functools import lru_cache
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_ACCOUNT_NAMESPACE_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "hearth-operator"
    version: str = "0.1.0"
    log_level: str = "INFO"
    metrics_port: int = 9090

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file (in-cluster config when unset)",
    )
    kube_context: Optional[str] = None
    watch_namespace: Optional[str] = Field(
        default=None,
        description="Namespace to watch (all namespaces when unset)",
    )
    crd_group: str = "hearth.dev"
    crd_version: str = "v1"
    crd_plural: str = "serverworkloads"
    watch_timeout_seconds: int = 300

    # Reconciliation Settings
    worker_count: int = 4
    resync_interval_seconds: int = 300
    requeue_transitioning_seconds: float = 5.0
    requeue_stable_seconds: float = 60.0
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0
    error_threshold: int = Field(
        default=5,
        description="Consecutive transient failures before phase Error is set",
    )
    shutdown_grace_seconds: float = 30.0

    # Game Server Settings
    game_port: int = 25565
    control_port: int = 25575
    operator_pod_labels: dict[str, str] = Field(
        default_factory=lambda: {"app.kubernetes.io/name": "hearth-operator"},
        description="Labels of operator pods allowed to reach the control port",
    )
    operator_namespace: Optional[str] = Field(
        default=None,
        validate_default=True,
        description="Namespace of the operator pods (the pod's own namespace when unset)",
    )

    # RCON Settings
    rcon_host_template: str = Field(
        default="{name}-0.{name}-control.{namespace}.svc.cluster.local",
        description="Control endpoint host, formatted with name and namespace",
    )
    rcon_connect_timeout_seconds: float = 5.0
    rcon_command_timeout_seconds: float = 10.0

    # Kafka Settings
    kafka_bootstrap_servers: str = "localhost:9094"
    kafka_topic_prefix: str = ""
    kafka_publish_timeout_seconds: float = 5.0
    kafka_connect_attempts: int = 3
    kafka_reconnect_interval_seconds: float = 30.0
    kafka_topic_partitions: int = 1
    kafka_topic_replication_factor: int = 1
    event_retention_hours: int = 24
    event_retention_max_messages: int = 100000
    event_average_size_bytes: int = 1024

    @field_validator("operator_namespace", mode="before")
    @classmethod
    def default_operator_namespace(cls, v: Any) -> Any:
        """Fall back to the namespace of the service account the pod runs as."""
        if v:
            return v
        try:
            with open(SERVICE_ACCOUNT_NAMESPACE_PATH, "r") as f:
                return f.read().strip() or None
        except FileNotFoundError:
            return None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
