"""
Desired child objects of a ServerWorkload.

Every builder is a pure function of the workload and the operator options, so
that the same inputs always produce the same object and the same spec hash.
"""

import base64
import hashlib
import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Optional

from kubernetes.client import (
    ApiClient,
    V1ConfigMap,
    V1ConfigMapVolumeSource,
    V1Container,
    V1ContainerPort,
    V1EnvVar,
    V1EnvVarSource,
    V1LabelSelector,
    V1NetworkPolicy,
    V1NetworkPolicyIngressRule,
    V1NetworkPolicyPeer,
    V1NetworkPolicyPort,
    V1NetworkPolicySpec,
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PersistentVolumeClaimVolumeSource,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Probe,
    V1ResourceRequirements,
    V1Secret,
    V1SecretKeySelector,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1StatefulSet,
    V1StatefulSetSpec,
    V1TCPSocketAction,
    V1Volume,
    V1VolumeMount,
    V1VolumeResourceRequirements,
)

from .models import ServerWorkload

LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_NAME = "app.kubernetes.io/name"
LABEL_WORKLOAD = "hearth.dev/workload"
LABEL_SERVER_ID = "hearth.dev/server-id"
LABEL_TENANT_ID = "hearth.dev/tenant-id"
ANNOTATION_SPEC_HASH = "hearth.dev/spec-hash"
ANNOTATION_CONFIG_HASH = "hearth.dev/config-hash"

MANAGED_BY = "hearth-operator"
APP_NAME = "game-server"

RCON_PASSWORD_KEY = "password"

DEFAULT_PROPERTIES: dict[str, Any] = {
    "max-players": 20,
    "gamemode": "survival",
    "difficulty": "normal",
    "level-name": "world",
    "motd": "A Minecraft Server powered by Kubernetes",
    "online-mode": True,
    "pvp": True,
    "white-list": False,
    "enable-command-block": True,
    "spawn-protection": 16,
    "view-distance": 10,
    "op-permission-level": 4,
    "player-idle-timeout": 0,
}


@dataclass
class BuildOptions:
    """Operator-wide settings that shape every child object."""

    game_port: int = 25565
    control_port: int = 25575
    operator_pod_labels: dict[str, str] = field(
        default_factory=lambda: {LABEL_NAME: MANAGED_BY}
    )
    operator_namespace: Optional[str] = None


@dataclass
class DesiredChild:
    """A child object the reconciler should ensure exists."""

    kind: str
    name: str
    body: Any
    create_only: bool = False

    @property
    def spec_hash(self) -> str:
        return self.body.metadata.annotations[ANNOTATION_SPEC_HASH]


def serialize(obj: Any) -> Any:
    """Convert a kubernetes model to its JSON-ready camelCase form."""
    return ApiClient().sanitize_for_serialization(obj)


def compute_spec_hash(body: Any) -> str:
    """
    Hash the desired state of an object.

    Labels are included so identity changes register as drift; every other
    metadata field is server-managed and ignored.
    """
    data = serialize(body)
    metadata = data.pop("metadata", {}) or {}
    data["labels"] = metadata.get("labels", {})
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


def _stamp(body: Any) -> Any:
    body.metadata.annotations = dict(body.metadata.annotations or {})
    body.metadata.annotations[ANNOTATION_SPEC_HASH] = compute_spec_hash(body)
    return body


def selector_labels(workload: ServerWorkload) -> dict[str, str]:
    """Labels selecting the pods of a workload."""
    return {LABEL_NAME: APP_NAME, LABEL_WORKLOAD: workload.name}


def child_labels(workload: ServerWorkload) -> dict[str, str]:
    """Labels carried by every child of a workload."""
    return {
        **selector_labels(workload),
        LABEL_MANAGED_BY: MANAGED_BY,
        LABEL_SERVER_ID: workload.spec.server_id,
        LABEL_TENANT_ID: workload.spec.tenant_id,
    }


def _metadata(workload: ServerWorkload, name: str) -> V1ObjectMeta:
    return V1ObjectMeta(
        name=name,
        namespace=workload.namespace,
        labels=child_labels(workload),
        owner_references=[workload.owner_reference()],
    )


def config_map_name(workload: ServerWorkload) -> str:
    return f"{workload.name}-config"


def control_service_name(workload: ServerWorkload) -> str:
    return f"{workload.name}-control"


def data_claim_name(workload: ServerWorkload) -> str:
    return f"{workload.name}-data"


def rcon_secret_name(workload: ServerWorkload) -> str:
    return f"{workload.name}-rcon"


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def server_properties(workload: ServerWorkload, options: BuildOptions) -> dict[str, str]:
    """
    Merge the configured game properties over the defaults.

    Ports and remote-console enablement are owned by the operator and always
    override user configuration.
    """
    properties = {**DEFAULT_PROPERTIES, **workload.spec.config}
    properties.update(
        {
            "server-port": options.game_port,
            "enable-rcon": True,
            "rcon.port": options.control_port,
        }
    )
    return {key: _format_value(value) for key, value in properties.items()}


def render_server_properties(workload: ServerWorkload, options: BuildOptions) -> str:
    """Render ``server.properties`` file contents."""
    lines = ["# Generated by hearth-operator"]
    for key, value in sorted(server_properties(workload, options).items()):
        lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"


def configured_max_players(workload: ServerWorkload) -> int:
    """Max players from configuration, falling back to the default."""
    value = workload.spec.config.get("max-players", DEFAULT_PROPERTIES["max-players"])
    try:
        return int(value)
    except (TypeError, ValueError):
        return DEFAULT_PROPERTIES["max-players"]


def build_config_map(workload: ServerWorkload, options: BuildOptions) -> V1ConfigMap:
    """Build the configuration artifact."""
    plugins = [plugin.model_dump(mode="json", by_alias=True) for plugin in workload.spec.plugins]
    return _stamp(
        V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=_metadata(workload, config_map_name(workload)),
            data={
                "server.properties": render_server_properties(workload, options),
                "eula.txt": "eula=true\n",
                "plugins.json": json.dumps(plugins, sort_keys=True),
            },
        )
    )


def build_data_claim(workload: ServerWorkload) -> V1PersistentVolumeClaim:
    """Build the persistent volume claim holding world data."""
    return _stamp(
        V1PersistentVolumeClaim(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=_metadata(workload, data_claim_name(workload)),
            spec=V1PersistentVolumeClaimSpec(
                access_modes=["ReadWriteOnce"],
                storage_class_name=workload.spec.storage_class,
                resources=V1VolumeResourceRequirements(
                    requests={"storage": workload.spec.resources.storage}
                ),
            ),
        )
    )


def generate_password() -> str:
    return secrets.token_urlsafe(24)


def build_rcon_secret(workload: ServerWorkload, password: str) -> V1Secret:
    """Build the per-instance remote-console credential."""
    encoded = base64.b64encode(password.encode("utf-8")).decode("ascii")
    return _stamp(
        V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=_metadata(workload, rcon_secret_name(workload)),
            type="Opaque",
            data={RCON_PASSWORD_KEY: encoded},
        )
    )


def decode_rcon_password(secret: V1Secret) -> Optional[str]:
    """Read the password back out of an observed Secret."""
    encoded = (secret.data or {}).get(RCON_PASSWORD_KEY)
    if not encoded:
        return None
    return base64.b64decode(encoded).decode("utf-8")


def build_game_service(workload: ServerWorkload, options: BuildOptions) -> V1Service:
    """Build the external network endpoint. Only the game port is exposed."""
    return _stamp(
        V1Service(
            api_version="v1",
            kind="Service",
            metadata=_metadata(workload, workload.name),
            spec=V1ServiceSpec(
                type="LoadBalancer",
                selector=selector_labels(workload),
                ports=[
                    V1ServicePort(
                        name="game",
                        port=options.game_port,
                        target_port=options.game_port,
                        protocol="TCP",
                    )
                ],
            ),
        )
    )


def build_control_service(workload: ServerWorkload, options: BuildOptions) -> V1Service:
    """Build the headless in-cluster service for the control port."""
    return _stamp(
        V1Service(
            api_version="v1",
            kind="Service",
            metadata=_metadata(workload, control_service_name(workload)),
            spec=V1ServiceSpec(
                cluster_ip="None",
                selector=selector_labels(workload),
                ports=[
                    V1ServicePort(
                        name="rcon",
                        port=options.control_port,
                        target_port=options.control_port,
                        protocol="TCP",
                    )
                ],
            ),
        )
    )


def build_network_policy(workload: ServerWorkload, options: BuildOptions) -> V1NetworkPolicy:
    """
    Build the policy isolating the control port.

    The game port accepts traffic from anywhere; the control port only from
    operator pods.
    """
    operator_peer = V1NetworkPolicyPeer(
        pod_selector=V1LabelSelector(match_labels=dict(options.operator_pod_labels))
    )
    if options.operator_namespace:
        operator_peer.namespace_selector = V1LabelSelector(
            match_labels={"kubernetes.io/metadata.name": options.operator_namespace}
        )

    return _stamp(
        V1NetworkPolicy(
            api_version="networking.k8s.io/v1",
            kind="NetworkPolicy",
            metadata=_metadata(workload, control_service_name(workload)),
            spec=V1NetworkPolicySpec(
                pod_selector=V1LabelSelector(match_labels=selector_labels(workload)),
                policy_types=["Ingress"],
                ingress=[
                    V1NetworkPolicyIngressRule(
                        ports=[V1NetworkPolicyPort(port=options.game_port, protocol="TCP")],
                    ),
                    V1NetworkPolicyIngressRule(
                        _from=[operator_peer],
                        ports=[V1NetworkPolicyPort(port=options.control_port, protocol="TCP")],
                    ),
                ],
            ),
        )
    )


def _env(workload: ServerWorkload, options: BuildOptions) -> list[V1EnvVar]:
    spec = workload.spec
    env = [
        V1EnvVar(name="EULA", value="TRUE"),
        V1EnvVar(name="VERSION", value=spec.version),
        V1EnvVar(name="MAX_PLAYERS", value=str(configured_max_players(workload))),
        V1EnvVar(name="ENABLE_RCON", value="true"),
        V1EnvVar(name="RCON_PORT", value=str(options.control_port)),
        V1EnvVar(
            name="RCON_PASSWORD",
            value_from=V1EnvVarSource(
                secret_key_ref=V1SecretKeySelector(
                    name=rcon_secret_name(workload), key=RCON_PASSWORD_KEY
                )
            ),
        ),
    ]
    if spec.resources.memory:
        env.append(V1EnvVar(name="MEMORY", value=spec.resources.memory))
    return env


def build_stateful_set(
    workload: ServerWorkload,
    options: BuildOptions,
    config_hash: str = "",
) -> V1StatefulSet:
    """
    Build the workload unit.

    Args:
        workload: Owning workload
        options: Operator build options
        config_hash: Spec hash of the ConfigMap; a change rolls the pod

    Returns:
        StatefulSet with replicas 0 when stopped, else 1
    """
    spec = workload.spec
    labels = child_labels(workload)
    probe_action = V1TCPSocketAction(port=options.game_port)

    container = V1Container(
        name="server",
        image=spec.image,
        ports=[
            V1ContainerPort(name="game", container_port=options.game_port, protocol="TCP"),
            V1ContainerPort(name="rcon", container_port=options.control_port, protocol="TCP"),
        ],
        env=_env(workload, options),
        resources=V1ResourceRequirements(
            requests={"cpu": spec.resources.cpu_request, "memory": spec.resources.memory_request},
            limits={"cpu": spec.resources.cpu_limit, "memory": spec.resources.memory_limit},
        ),
        volume_mounts=[
            V1VolumeMount(name="data", mount_path="/data"),
            V1VolumeMount(name="config", mount_path="/config", read_only=True),
        ],
        liveness_probe=V1Probe(
            tcp_socket=probe_action,
            initial_delay_seconds=120,
            period_seconds=30,
            timeout_seconds=5,
            failure_threshold=3,
        ),
        readiness_probe=V1Probe(
            tcp_socket=probe_action,
            initial_delay_seconds=60,
            period_seconds=10,
            timeout_seconds=5,
            failure_threshold=6,
        ),
    )

    pod_spec = V1PodSpec(
        containers=[container],
        restart_policy="Always",
        volumes=[
            V1Volume(
                name="data",
                persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
                    claim_name=data_claim_name(workload)
                ),
            ),
            V1Volume(
                name="config",
                config_map=V1ConfigMapVolumeSource(name=config_map_name(workload)),
            ),
        ],
    )

    return _stamp(
        V1StatefulSet(
            api_version="apps/v1",
            kind="StatefulSet",
            metadata=_metadata(workload, workload.name),
            spec=V1StatefulSetSpec(
                replicas=spec.desired_replicas,
                service_name=control_service_name(workload),
                selector=V1LabelSelector(match_labels=selector_labels(workload)),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(
                        labels=labels,
                        annotations={ANNOTATION_CONFIG_HASH: config_hash},
                    ),
                    spec=pod_spec,
                ),
            ),
        )
    )


def build_children(
    workload: ServerWorkload,
    options: BuildOptions,
    rcon_password: Optional[str] = None,
) -> list[DesiredChild]:
    """
    Build every desired child of a workload, in creation order.

    Args:
        workload: Owning workload
        options: Operator build options
        rcon_password: Password for a new Secret (generated when omitted)

    Returns:
        Desired children; the StatefulSet comes last so its dependencies exist
    """
    config_map = build_config_map(workload, options)
    return [
        DesiredChild(
            "Secret",
            rcon_secret_name(workload),
            build_rcon_secret(workload, rcon_password or generate_password()),
            create_only=True,
        ),
        DesiredChild("ConfigMap", config_map_name(workload), config_map),
        DesiredChild(
            "PersistentVolumeClaim",
            data_claim_name(workload),
            build_data_claim(workload),
            create_only=True,
        ),
        DesiredChild(
            "Service", control_service_name(workload), build_control_service(workload, options)
        ),
        DesiredChild("Service", workload.name, build_game_service(workload, options)),
        DesiredChild(
            "NetworkPolicy",
            control_service_name(workload),
            build_network_policy(workload, options),
        ),
        DesiredChild(
            "StatefulSet",
            workload.name,
            build_stateful_set(
                workload,
                options,
                config_hash=config_map.metadata.annotations[ANNOTATION_SPEC_HASH],
            ),
        ),
    ]
