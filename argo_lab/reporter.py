"""Read-only reporting on a running lab environment.

``snapshot`` collects node readiness, pod health per application namespace,
the Argo CD ``Application`` objects and the Argo CD admin credential.
Nothing here mutates the cluster. A missing admin secret is reported as
``CredentialAbsent`` rather than raised.
"""

from __future__ import annotations

import dataclasses
import subprocess
import typing as typ

from argo_lab.applications import ARGOCD, ARGOCD_ADMIN_SECRET, ARGOCD_ADMIN_USER
from argo_lab.k8s import (
    get_nodes,
    get_pods,
    list_object_names,
    read_secret_field,
    secret_exists,
)
from argo_lab.logging import get_logger, log_debug
from argo_lab.validation import ClusterUnreachableError, SecretDecodeError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from argo_lab.applications import Application

logger = get_logger(__name__)

ARGOCD_APPLICATION_RESOURCE = "applications.argoproj.io"


@dataclasses.dataclass(frozen=True, slots=True)
class NodeStatus:
    """Name and readiness of one cluster node."""

    name: str
    ready: bool


@dataclasses.dataclass(frozen=True, slots=True)
class PodHealth:
    """Pod counts for one namespace; ``unhealthy`` lists offending pod names."""

    namespace: str
    total: int
    unhealthy: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class AdminCredential:
    """Argo CD initial admin login."""

    username: str
    password: str = dataclasses.field(repr=False)


@dataclasses.dataclass(frozen=True, slots=True)
class CredentialAbsent:
    """The admin credential could not be read."""

    reason: str


Credential = AdminCredential | CredentialAbsent


@dataclasses.dataclass(frozen=True, slots=True)
class EnvironmentSnapshot:
    """Point-in-time view of an environment."""

    nodes: tuple[NodeStatus, ...]
    pods: tuple[PodHealth, ...]
    argocd_applications: tuple[str, ...]
    credential: Credential

    @property
    def unhealthy_pods(self) -> int:
        """Return the number of unhealthy pods across all namespaces."""
        return sum(len(health.unhealthy) for health in self.pods)


def node_statuses(env: dict[str, str]) -> tuple[NodeStatus, ...]:
    """Return readiness for every registered node; empty if unreadable."""
    nodes = get_nodes(env) or []
    return tuple(NodeStatus(name=node.metadata.name, ready=node.ready) for node in nodes)


def pod_health(namespace: str, env: dict[str, str]) -> PodHealth:
    """Summarize pod health in ``namespace``."""
    pods = get_pods(namespace, env) or []
    return PodHealth(
        namespace=namespace,
        total=len(pods),
        unhealthy=tuple(pod.metadata.name for pod in pods if not pod.healthy),
    )


def read_admin_credential(env: dict[str, str]) -> Credential:
    """Read the Argo CD initial admin password.

    Returns:
        ``AdminCredential`` when the secret holds a decodable password,
        otherwise ``CredentialAbsent`` with the reason.

    """
    try:
        present = secret_exists(ARGOCD_ADMIN_SECRET, ARGOCD.namespace, env)
    except ClusterUnreachableError as e:
        log_debug(logger, "Checking %s failed: %s", ARGOCD_ADMIN_SECRET, e)
        return CredentialAbsent(reason=f"secret '{ARGOCD_ADMIN_SECRET}' is unreadable")
    if not present:
        return CredentialAbsent(
            reason=f"secret '{ARGOCD_ADMIN_SECRET}' not found in '{ARGOCD.namespace}'"
        )
    try:
        password = read_secret_field(ARGOCD_ADMIN_SECRET, "password", ARGOCD.namespace, env)
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        log_debug(logger, "Reading %s failed: %s", ARGOCD_ADMIN_SECRET, e)
        return CredentialAbsent(reason=f"secret '{ARGOCD_ADMIN_SECRET}' is unreadable")
    except (ValueError, SecretDecodeError) as e:
        return CredentialAbsent(reason=str(e))
    return AdminCredential(username=ARGOCD_ADMIN_USER, password=password)


def snapshot(
    env: dict[str, str], applications: cabc.Iterable[Application]
) -> EnvironmentSnapshot:
    """Collect a read-only snapshot of the environment.

    Parameters
    ----------
    env : dict[str, str]
        Environment dict with KUBECONFIG set.
    applications : Iterable[Application]
        Applications whose namespaces are inspected for pod health.

    Returns
    -------
    EnvironmentSnapshot
        Nodes, per-namespace pod health, Argo CD applications and the admin
        credential.

    """
    namespaces = list(dict.fromkeys(app.namespace for app in applications))
    argocd_apps: tuple[str, ...] = ()
    if ARGOCD.namespace in namespaces:
        argocd_apps = tuple(
            list_object_names(ARGOCD_APPLICATION_RESOURCE, ARGOCD.namespace, env)
        )
    return EnvironmentSnapshot(
        nodes=node_statuses(env),
        pods=tuple(pod_health(namespace, env) for namespace in namespaces),
        argocd_applications=argocd_apps,
        credential=read_admin_credential(env),
    )


# =============================================================================
# Rendering
# =============================================================================


def access_urls(
    address: str, applications: cabc.Iterable[Application], *, ingress: bool = False
) -> list[tuple[str, str]]:
    """Return ``(title, url)`` pairs for reaching each application UI."""
    urls = []
    for app in applications:
        if ingress:
            # the controller terminates plain HTTP on port 80 for every host
            urls.append((app.title, f"http://{app.ingress_host_for(address)}/"))
        else:
            scheme = "https" if app.ingress_backend_protocol == "HTTPS" else "http"
            node_port = app.node_ports[0].node_port
            urls.append((app.title, f"{scheme}://{address}:{node_port}/"))
    return urls


def render_snapshot(
    report: EnvironmentSnapshot,
    address: str,
    applications: cabc.Iterable[Application] = (),
) -> str:
    """Format a snapshot for the terminal."""
    lines = ["Nodes:"]
    lines.extend(
        f"  {node.name:<40} {'Ready' if node.ready else 'NotReady'}"
        for node in report.nodes
    )
    if not report.nodes:
        lines.append("  (none)")

    lines.append("")
    lines.append("Pods:")
    for health in report.pods:
        lines.append(
            f"  {health.namespace:<20} {health.total - len(health.unhealthy)}"
            f"/{health.total} healthy"
        )
        lines.extend(f"    unhealthy: {name}" for name in health.unhealthy)

    if report.argocd_applications:
        lines.append("")
        lines.append("Argo CD applications:")
        lines.extend(f"  {name}" for name in report.argocd_applications)

    lines.append("")
    credential = report.credential
    if isinstance(credential, AdminCredential):
        lines.append(f"Argo CD login: {credential.username} / {credential.password}")
    else:
        lines.append(f"Argo CD login: unavailable ({credential.reason})")

    urls = access_urls(address, applications)
    if urls:
        lines.append("")
        lines.append("Access:")
        lines.extend(f"  {title:<16} {url}" for title, url in urls)
    return "\n".join(lines)
