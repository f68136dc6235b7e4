"""Backend driver protocol and factory.

A backend creates, destroys and inspects exactly one named cluster. The two
variants (kind and minikube) are interchangeable behind ``Backend``; the
orchestrator selects one through ``BackendKind`` and never branches on
cluster or profile names.

``probe`` reports presence as a tagged result so callers decide between
reusing and recreating an existing cluster instead of having destruction
hard-coded into ``create``:

    presence = backend.probe("argocd-lab")
    if isinstance(presence, AlreadyExists):
        handle = presence.handle

"""

from __future__ import annotations

import dataclasses
import os
import typing as typ

from argo_lab.config import BackendKind

if typ.TYPE_CHECKING:
    from pathlib import Path

    from argo_lab.config import Config, Topology


@dataclasses.dataclass(frozen=True, slots=True)
class ClusterHandle:
    """Reference to a live cluster.

    Attributes:
        name: Cluster name (kind) or profile (minikube).
        kind: Backend variant hosting the cluster.
        context: kubeconfig context name for the cluster.

    """

    name: str
    kind: BackendKind
    context: str


@dataclasses.dataclass(frozen=True, slots=True)
class AlreadyExists:
    """A cluster with the probed name is live."""

    handle: ClusterHandle


@dataclasses.dataclass(frozen=True, slots=True)
class Absent:
    """No cluster with the probed name exists."""


ClusterPresence = AlreadyExists | Absent


class Backend(typ.Protocol):
    """Capability over one backend variant."""

    kind: BackendKind

    def check_prerequisites(self) -> None:
        """Raise if the backend tooling is unusable."""
        ...

    def create(self, name: str, topology: Topology) -> ClusterHandle:
        """Create a cluster and return once the backend reports it created."""
        ...

    def destroy(self, name: str) -> None:
        """Delete a cluster; raise ``NotFoundError`` if it does not exist."""
        ...

    def exists(self, name: str) -> bool:
        """Return True if a cluster with this name exists."""
        ...

    def probe(self, name: str) -> ClusterPresence:
        """Return ``AlreadyExists(handle)`` or ``Absent()``."""
        ...

    def list_nodes(self, name: str) -> tuple[str, ...]:
        """Return node names in backend order."""
        ...

    def write_kubeconfig(self, handle: ClusterHandle, kubeconfig_dir: Path) -> Path:
        """Write a dedicated kubeconfig for the cluster and return its path."""
        ...

    def node_address(self, name: str) -> str:
        """Return the host address where NodePorts are reachable."""
        ...

    def prepare_ingress(self, handle: ClusterHandle, env: dict[str, str]) -> None:
        """Install the ingress controller in the backend-specific way."""
        ...


def kubeconfig_path(kubeconfig_dir: Path, name: str) -> Path:
    """Return the kubeconfig file path used for an environment."""
    return kubeconfig_dir / f"{name}.yaml"


def kubeconfig_env(
    backend: Backend, handle: ClusterHandle, kubeconfig_dir: Path
) -> dict[str, str]:
    """Return environment dict with KUBECONFIG set for the cluster.

    Creates a copy of the current environment with KUBECONFIG pointing to
    the cluster's dedicated kubeconfig file.
    """
    kubeconfig = backend.write_kubeconfig(handle, kubeconfig_dir)
    env = dict(os.environ)
    env["KUBECONFIG"] = str(kubeconfig)
    return env


def make_backend(cfg: Config) -> Backend:
    """Return the backend driver selected by ``cfg.backend``."""
    if cfg.backend is BackendKind.KIND:
        from argo_lab.kind import KindBackend

        return KindBackend(
            ingress_manifest=cfg.ingress_nginx_manifest, topology=cfg.kind_topology
        )

    from argo_lab.minikube import MinikubeBackend

    return MinikubeBackend(driver=cfg.minikube_topology.driver)
