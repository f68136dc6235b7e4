"""kind cluster lifecycle operations.

This module wraps the kind CLI to create, delete and inspect a single named
cluster whose node layout comes from a static ``KindTopology``. The cluster
config is rendered with ruamel.yaml and passed to ``kind create cluster`` on
stdin.

Public API
----------
- ``KindBackend``: ``Backend`` implementation for kind.
- ``render_cluster_config``: Build the kind ``Cluster`` config document.
- ``validate_topology``: Reject inconsistent node layouts.
- ``node_names`` and ``ingress_node``: Predict kind's node container names.

Examples
--------
Create a cluster if it is absent:

    backend = KindBackend()
    if not backend.exists("argocd-lab"):
        backend.create("argocd-lab", KindTopology())

Notes
-----
Ingress on kind uses the ingress-nginx ``provider/kind`` manifest, which
schedules onto nodes labelled ``ingress-ready=true`` and binds host ports
80/443 on them. Only the node named by ``ingress_node`` publishes those
ports to the host, so the controller is pinned to it by hostname.

"""

from __future__ import annotations

import io
import subprocess
import typing as typ

from ruamel.yaml import YAML

from argo_lab.backend import Absent, AlreadyExists, ClusterHandle, kubeconfig_path
from argo_lab.config import (
    INGRESS_NGINX_KIND_MANIFEST,
    BackendKind,
    KindTopology,
    NodeRole,
)
from argo_lab.exposure import (
    INGRESS_CONTROLLER_DEPLOYMENT,
    INGRESS_CONTROLLER_NAMESPACE,
    INGRESS_READY_LABEL,
)
from argo_lab.k8s import apply_manifest_url, patch_resource
from argo_lab.logging import get_logger, log_info
from argo_lab.validation import (
    BackendUnavailableError,
    NotFoundError,
    TopologyInvalidError,
    ensure_valid_port,
    require_daemon,
    require_exe,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from argo_lab.backend import ClusterPresence
    from argo_lab.config import Topology

logger = get_logger(__name__)

# Default timeout for short kind subprocess operations (seconds)
_KIND_SUBPROCESS_TIMEOUT = 60
_KIND_DELETE_TIMEOUT = 180
# Extra time beyond kind's own --wait for image pulls and container start
_KIND_CREATE_GRACE = 300
_HTTP_PORT = 80


def validate_topology(topology: KindTopology) -> None:
    """Validate a kind node layout.

    Raises
    ------
    TopologyInvalidError
        If there is no control-plane node, a role is unknown, or host ports
        are out of range or published twice.

    """
    if not any(node.role is NodeRole.CONTROL_PLANE for node in topology.nodes):
        msg = "kind topology needs at least one control-plane node"
        raise TopologyInvalidError(msg)
    seen: set[int] = set()
    for node in topology.nodes:
        if not isinstance(node.role, NodeRole):
            msg = f"unknown kind node role: {node.role!r}"
            raise TopologyInvalidError(msg)
        for mapping in node.port_mappings:
            ensure_valid_port(mapping.host_port, what="host port")
            ensure_valid_port(mapping.container_port, what="container port")
            if mapping.host_port in seen:
                msg = f"host port {mapping.host_port} is published more than once"
                raise TopologyInvalidError(msg)
            seen.add(mapping.host_port)
    if topology.wait_seconds <= 0:
        msg = f"wait_seconds must be positive, got {topology.wait_seconds}"
        raise TopologyInvalidError(msg)


def render_cluster_config(topology: KindTopology) -> str:
    """Render the kind ``Cluster`` config YAML for a topology."""
    nodes = []
    for node in topology.nodes:
        entry: dict[str, object] = {"role": str(node.role)}
        if node.port_mappings:
            entry["extraPortMappings"] = [
                {
                    "containerPort": mapping.container_port,
                    "hostPort": mapping.host_port,
                    "listenAddress": "127.0.0.1",
                    "protocol": mapping.protocol,
                }
                for mapping in node.port_mappings
            ]
        nodes.append(entry)
    config = {
        "kind": "Cluster",
        "apiVersion": "kind.x-k8s.io/v1alpha4",
        "nodes": nodes,
    }
    yaml_serializer = YAML(typ="safe")
    yaml_serializer.default_flow_style = False
    yaml_serializer.indent(mapping=2, sequence=4, offset=2)
    with io.StringIO() as stream:
        yaml_serializer.dump(config, stream)
        return stream.getvalue()


def node_names(name: str, topology: KindTopology) -> tuple[str, ...]:
    """Return the container names kind gives each node, in topology order.

    kind numbers nodes per role from the second one onwards:
    ``<name>-control-plane``, ``<name>-control-plane2``, ``<name>-worker``,
    ``<name>-worker2`` and so on.
    """
    counts: dict[NodeRole, int] = {}
    names = []
    for node in topology.nodes:
        counts[node.role] = counts.get(node.role, 0) + 1
        suffix = str(counts[node.role]) if counts[node.role] > 1 else ""
        names.append(f"{name}-{node.role}{suffix}")
    return tuple(names)


def ingress_node(name: str, topology: KindTopology) -> str:
    """Return the node that publishes container port 80 on the host.

    Falls back to the first control-plane node when no node maps port 80.
    """
    names = node_names(name, topology)
    for node_name, node in zip(names, topology.nodes, strict=True):
        if any(m.container_port == _HTTP_PORT for m in node.port_mappings):
            return node_name
    return next(
        node_name
        for node_name, node in zip(names, topology.nodes, strict=True)
        if node.role is NodeRole.CONTROL_PLANE
    )


def _run_kind_lines(args: list[str]) -> list[str]:
    """Run a kind query and return its non-empty stdout lines."""
    try:
        result = subprocess.run(  # noqa: S603
            # kind is expected on PATH; shell=False mitigates injection
            ["kind", *args],  # noqa: S607
            check=True,
            capture_output=True,
            text=True,
            timeout=_KIND_SUBPROCESS_TIMEOUT,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        msg = f"kind {' '.join(args)} failed: {e}"
        raise BackendUnavailableError(msg) from e
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


class KindBackend:
    """Backend driver for kind clusters."""

    kind = BackendKind.KIND

    def __init__(
        self,
        ingress_manifest: str = INGRESS_NGINX_KIND_MANIFEST,
        topology: KindTopology | None = None,
    ) -> None:
        """Record the ingress-nginx manifest and the node layout it runs on."""
        self.ingress_manifest = ingress_manifest
        self.topology = topology or KindTopology()

    def check_prerequisites(self) -> None:
        """Verify kind, kubectl and a running Docker daemon.

        Raises
        ------
        ExecutableNotFoundError
            If kind, kubectl or docker is missing.
        BackendUnavailableError
            If the Docker daemon does not respond.

        """
        for exe in ("kind", "kubectl", "docker"):
            require_exe(exe)
        require_daemon("docker", timeout=_KIND_SUBPROCESS_TIMEOUT)

    def _handle(self, name: str) -> ClusterHandle:
        return ClusterHandle(name=name, kind=self.kind, context=f"kind-{name}")

    def list_clusters(self) -> list[str]:
        """Return the names of all kind clusters."""
        return _run_kind_lines(["get", "clusters"])

    def exists(self, name: str) -> bool:
        """Check if a kind cluster already exists."""
        return name in self.list_clusters()

    def probe(self, name: str) -> ClusterPresence:
        """Report whether the cluster exists as a tagged result."""
        if self.exists(name):
            return AlreadyExists(self._handle(name))
        return Absent()

    def create(self, name: str, topology: Topology) -> ClusterHandle:
        """Create a kind cluster from a static topology.

        Parameters
        ----------
        name : str
            Name for the new cluster.
        topology : KindTopology
            Node layout and port mappings.

        Raises
        ------
        TopologyInvalidError
            If the topology is not a valid ``KindTopology``.
        BackendUnavailableError
            If cluster creation fails or times out.

        """
        if not isinstance(topology, KindTopology):
            msg = f"kind backend needs a KindTopology, got {type(topology).__name__}"
            raise TopologyInvalidError(msg)
        validate_topology(topology)

        log_info(logger, "Creating kind cluster '%s'...", name)
        timeout = topology.wait_seconds + _KIND_CREATE_GRACE
        try:
            subprocess.run(  # noqa: S603
                [  # noqa: S607
                    "kind",
                    "create",
                    "cluster",
                    "--name",
                    name,
                    "--config",
                    "-",
                    "--wait",
                    f"{topology.wait_seconds}s",
                ],
                input=render_cluster_config(topology),
                text=True,
                check=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            msg = f"kind cluster creation timed out after {timeout} seconds"
            raise BackendUnavailableError(msg) from e
        except subprocess.CalledProcessError as e:
            msg = f"kind cluster creation failed for '{name}': {e}"
            raise BackendUnavailableError(msg) from e
        return self._handle(name)

    def destroy(self, name: str) -> None:
        """Delete a kind cluster.

        Raises
        ------
        NotFoundError
            If no cluster with this name exists.
        BackendUnavailableError
            If deletion fails or times out.

        """
        if not self.exists(name):
            msg = f"kind cluster '{name}' does not exist"
            raise NotFoundError(msg)
        log_info(logger, "Deleting kind cluster '%s'...", name)
        try:
            subprocess.run(  # noqa: S603
                ["kind", "delete", "cluster", "--name", name],  # noqa: S607
                check=True,
                timeout=_KIND_DELETE_TIMEOUT,
            )
        except subprocess.TimeoutExpired as e:
            msg = f"kind cluster deletion timed out after {_KIND_DELETE_TIMEOUT} seconds"
            raise BackendUnavailableError(msg) from e
        except subprocess.CalledProcessError as e:
            msg = f"kind cluster deletion failed for '{name}': {e}"
            raise BackendUnavailableError(msg) from e

    def list_nodes(self, name: str) -> tuple[str, ...]:
        """Return the node container names of a kind cluster."""
        return tuple(_run_kind_lines(["get", "nodes", "--name", name]))

    def write_kubeconfig(self, handle: ClusterHandle, kubeconfig_dir: Path) -> Path:
        """Export the cluster's kubeconfig to a dedicated file.

        Raises
        ------
        BackendUnavailableError
            If the export fails or the file was not created.

        """
        path = kubeconfig_path(kubeconfig_dir, handle.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            subprocess.run(  # noqa: S603
                [  # noqa: S607
                    "kind",
                    "export",
                    "kubeconfig",
                    "--name",
                    handle.name,
                    "--kubeconfig",
                    str(path),
                ],
                capture_output=True,
                text=True,
                check=True,
                timeout=_KIND_SUBPROCESS_TIMEOUT,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            msg = f"kind kubeconfig export failed for '{handle.name}': {e}"
            raise BackendUnavailableError(msg) from e
        if not path.exists():
            msg = f"Kubeconfig file was not created at {path}"
            raise BackendUnavailableError(msg)
        return path

    def node_address(self, name: str) -> str:
        """kind publishes node ports on the host loopback interface."""
        return "localhost"

    def prepare_ingress(self, handle: ClusterHandle, env: dict[str, str]) -> None:
        """Apply the ingress-nginx manifest and pin the controller.

        Every node is later labelled ``ingress-ready``, but only one node
        publishes ports 80/443 on the host, so the controller is pinned to
        that node by hostname.
        """
        log_info(logger, "Installing ingress-nginx for kind cluster '%s'...", handle.name)
        apply_manifest_url(self.ingress_manifest, env)
        node = ingress_node(handle.name, self.topology)
        log_info(logger, "Pinning ingress controller to node '%s'", node)
        patch_resource(
            "deployment",
            INGRESS_CONTROLLER_DEPLOYMENT,
            INGRESS_CONTROLLER_NAMESPACE,
            {
                "spec": {
                    "template": {
                        "spec": {
                            "nodeSelector": {
                                INGRESS_READY_LABEL: "true",
                                "kubernetes.io/hostname": node,
                            }
                        }
                    }
                }
            },
            env,
            patch_type="strategic",
        )
