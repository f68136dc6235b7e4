"""Configuration for the local Argo lab environment."""

from __future__ import annotations

import dataclasses
import enum
from pathlib import Path

# Readiness deadlines (seconds)
_NODE_READY_TIMEOUT = 300
_DEPLOYMENT_READY_TIMEOUT = 600
_INGRESS_READY_TIMEOUT = 300
_POLL_INTERVAL = 2.0

INGRESS_NGINX_KIND_MANIFEST = (
    "https://raw.githubusercontent.com/kubernetes/ingress-nginx/"
    "controller-v1.11.2/deploy/static/provider/kind/deploy.yaml"
)


class BackendKind(enum.StrEnum):
    """Cluster backend variants."""

    KIND = "kind"
    MINIKUBE = "minikube"


class NodeRole(enum.StrEnum):
    """Roles a kind node can take."""

    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


@dataclasses.dataclass(frozen=True, slots=True)
class HostPortMapping:
    """A container port published on the host loopback interface."""

    container_port: int
    host_port: int
    protocol: str = "TCP"


@dataclasses.dataclass(frozen=True, slots=True)
class KindNode:
    """A single node in a kind cluster config.

    Attributes:
        role: Node role within the cluster.
        port_mappings: Host port mappings published by this node's container.

    """

    role: NodeRole
    port_mappings: tuple[HostPortMapping, ...] = ()


def _default_kind_nodes() -> tuple[KindNode, ...]:
    published = (30080, 30443, 32746, 80, 443)
    control_plane = KindNode(
        role=NodeRole.CONTROL_PLANE,
        port_mappings=tuple(HostPortMapping(port, port) for port in published),
    )
    return (control_plane, KindNode(NodeRole.WORKER), KindNode(NodeRole.WORKER))


@dataclasses.dataclass(frozen=True, slots=True)
class KindTopology:
    """Static node layout for a kind cluster.

    The control-plane publishes the fixed NodePort numbers and the ingress
    HTTP/HTTPS ports so exposed applications are reachable on localhost.
    """

    nodes: tuple[KindNode, ...] = dataclasses.field(default_factory=_default_kind_nodes)
    wait_seconds: int = _NODE_READY_TIMEOUT


@dataclasses.dataclass(frozen=True, slots=True)
class MinikubeTopology:
    """Resource requests for a minikube cluster.

    Attributes:
        nodes: Number of nodes to start.
        cpus: CPUs allocated per node.
        memory_mb: Memory allocated per node in megabytes.
        disk_size: Disk size per node, e.g. ``"20g"``.
        driver: minikube driver (docker, kvm2, hyperkit, ...).

    """

    nodes: int = 2
    cpus: int = 2
    memory_mb: int = 4096
    disk_size: str = "20g"
    driver: str = "docker"


Topology = KindTopology | MinikubeTopology


@dataclasses.dataclass(frozen=True, slots=True)
class Config:
    """Configuration for one named lab environment.

    Attributes:
        cluster_name: Environment name; also the kind cluster name or the
            minikube profile.
        backend: Which backend hosts the cluster.
        kubeconfig_dir: Directory holding one kubeconfig file per environment.
        argocd_version: Argo CD manifest revision (branch or tag).
        workflows_version: Argo Workflows release tag.
        node_timeout: Seconds to wait for every node to become Ready.
        deployment_timeout: Seconds to wait for each critical deployment.
        ingress_timeout: Seconds to wait for the ingress controller.
        poll_interval: Seconds between readiness polls.

    """

    cluster_name: str = "argocd-lab"
    backend: BackendKind = BackendKind.KIND
    kubeconfig_dir: Path = dataclasses.field(
        default_factory=lambda: Path.home() / ".kube" / "argo-lab"
    )
    argocd_version: str = "stable"
    workflows_version: str = "v3.7.0"
    node_timeout: float = _NODE_READY_TIMEOUT
    deployment_timeout: float = _DEPLOYMENT_READY_TIMEOUT
    ingress_timeout: float = _INGRESS_READY_TIMEOUT
    poll_interval: float = _POLL_INTERVAL
    kind_topology: KindTopology = dataclasses.field(default_factory=KindTopology)
    minikube_topology: MinikubeTopology = dataclasses.field(
        default_factory=MinikubeTopology
    )
    ingress_nginx_manifest: str = INGRESS_NGINX_KIND_MANIFEST

    @property
    def topology(self) -> Topology:
        """Return the topology for the selected backend."""
        if self.backend is BackendKind.KIND:
            return self.kind_topology
        return self.minikube_topology
