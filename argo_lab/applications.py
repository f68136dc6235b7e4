"""Catalogue of the applications argo-lab installs.

Each ``Application`` names its namespace, where its manifests come from,
the deployments that gate readiness (in the order they are awaited) and how
its UI service is exposed.
"""

from __future__ import annotations

import dataclasses

_LOOPBACK_ADDRESSES = frozenset({"localhost", "127.0.0.1"})


@dataclasses.dataclass(frozen=True, slots=True)
class ManifestSource:
    """Where an application's manifest set comes from.

    Exactly one of ``url_template`` and ``inline`` is set. ``url_template``
    contains a ``{version}`` placeholder selecting the manifest revision.
    """

    url_template: str | None = None
    inline: str | None = None

    def __post_init__(self) -> None:
        """Reject sources that set both or neither form."""
        if (self.url_template is None) == (self.inline is None):
            msg = "ManifestSource needs exactly one of url_template or inline"
            raise ValueError(msg)

    def url_for(self, version: str) -> str | None:
        """Return the manifest URL for ``version``, or None for inline sources."""
        if self.url_template is None:
            return None
        return self.url_template.format(version=version)


@dataclasses.dataclass(frozen=True, slots=True)
class PortMapping:
    """A service port with its fixed NodePort number."""

    name: str | None
    port: int
    target_port: int
    node_port: int


@dataclasses.dataclass(frozen=True, slots=True)
class Application:
    """A named install unit.

    Attributes:
        name: Short identifier used on the command line.
        title: Human-readable name for operator output.
        namespace: Namespace the manifests are applied into.
        manifest: Manifest source; ``default_version`` selects the revision.
        default_version: Revision applied when none is requested.
        critical_deployments: Deployments that must each become available,
            awaited in this order.
        service: Service fronting the application UI.
        node_ports: Fixed ports used in NodePort mode.
        ingress_host: Hostname routed to ``service`` in Ingress mode when
            the ingress controller listens on the host loopback interface.
        ingress_port: Service port targeted by the ingress rule.
        ingress_backend_protocol: Upstream protocol annotation for ingress,
            or None for plain HTTP.

    """

    name: str
    title: str
    namespace: str
    manifest: ManifestSource
    default_version: str
    critical_deployments: tuple[str, ...]
    service: str
    node_ports: tuple[PortMapping, ...]
    ingress_host: str
    ingress_port: int
    ingress_backend_protocol: str | None = None

    def ingress_host_for(self, address: str) -> str:
        """Return the ingress hostname that resolves to ``address``.

        ``ingress_host`` is a localtest.me name, which resolves to the
        loopback interface. Any other address is reached through a nip.io
        name carrying the same first label.
        """
        if address in _LOOPBACK_ADDRESSES:
            return self.ingress_host
        label = self.ingress_host.split(".", 1)[0]
        return f"{label}.{address}.nip.io"


ARGOCD = Application(
    name="argocd",
    title="Argo CD",
    namespace="argocd",
    manifest=ManifestSource(
        url_template=(
            "https://raw.githubusercontent.com/argoproj/argo-cd/"
            "{version}/manifests/install.yaml"
        )
    ),
    default_version="stable",
    critical_deployments=("argocd-server", "argocd-repo-server", "argocd-dex-server"),
    service="argocd-server",
    node_ports=(
        PortMapping(name="http", port=80, target_port=8080, node_port=30080),
        PortMapping(name="https", port=443, target_port=8080, node_port=30443),
    ),
    ingress_host="argocd.localtest.me",
    ingress_port=80,
)

ARGO_WORKFLOWS = Application(
    name="workflows",
    title="Argo Workflows",
    namespace="argo",
    manifest=ManifestSource(
        url_template=(
            "https://github.com/argoproj/argo-workflows/releases/download/"
            "{version}/install.yaml"
        )
    ),
    default_version="v3.7.0",
    critical_deployments=("argo-server",),
    service="argo-server",
    node_ports=(
        PortMapping(name="web", port=2746, target_port=2746, node_port=32746),
    ),
    ingress_host="workflows.localtest.me",
    ingress_port=2746,
    ingress_backend_protocol="HTTPS",
)

APPLICATIONS: dict[str, Application] = {
    app.name: app for app in (ARGOCD, ARGO_WORKFLOWS)
}

ARGOCD_ADMIN_SECRET = "argocd-initial-admin-secret"  # noqa: S105
ARGOCD_ADMIN_USER = "admin"


def get_application(name: str) -> Application:
    """Look up a known application by name.

    Raises:
        KeyError: If the application is unknown.

    """
    try:
        return APPLICATIONS[name]
    except KeyError:
        known = ", ".join(sorted(APPLICATIONS))
        msg = f"unknown application {name!r}; expected one of: {known}"
        raise KeyError(msg) from None
