"""Network exposure for installed applications.

Two mutually exclusive strategies route external traffic to an
application's UI service:

- NodePort: the service is patched to ``type: NodePort`` with fixed,
  pre-registered node port numbers, so URLs stay stable across re-runs.
- Ingress: an ingress controller is installed once per cluster, every node
  is labelled ``ingress-ready=true``, target services are switched back to
  ClusterIP, and host-routing rules are submitted as one server-side apply.

Every step overwrites rather than appends, so repeating any of them leaves
the cluster unchanged.

Examples
--------
Expose Argo CD on its fixed node ports:

    set_node_port(ARGOCD, env)

Route both applications through one ingress submission:

    apply_ingress_rules([ingress_rule_for(ARGOCD), ingress_rule_for(ARGO_WORKFLOWS)], env)

"""

from __future__ import annotations

import dataclasses
import enum
import io
import typing as typ

from ruamel.yaml import YAML

from argo_lab.k8s import apply_manifest, get_service, label_node, patch_resource
from argo_lab.logging import get_logger, log_info
from argo_lab.readiness import wait_for_deployment_available
from argo_lab.validation import ServiceNotFoundError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from argo_lab.applications import Application
    from argo_lab.backend import Backend, ClusterHandle
    from argo_lab.readiness import Clock, Satisfied

logger = get_logger(__name__)

INGRESS_READY_LABEL = "ingress-ready"
INGRESS_CLASS = "nginx"
INGRESS_CONTROLLER_NAMESPACE = "ingress-nginx"
INGRESS_CONTROLLER_DEPLOYMENT = "ingress-nginx-controller"
_BACKEND_PROTOCOL_ANNOTATION = "nginx.ingress.kubernetes.io/backend-protocol"


class ExposureMode(enum.StrEnum):
    """How an application's service is reached from outside the cluster."""

    NODE_PORT = "node-port"
    INGRESS = "ingress"


@dataclasses.dataclass(frozen=True, slots=True)
class HostRule:
    """Route requests for ``host`` to ``service:port``."""

    host: str
    service: str
    port: int
    backend_protocol: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class ExposureRule:
    """Exposure settings for one application."""

    application: Application
    mode: ExposureMode
    host_rules: tuple[HostRule, ...] = ()


def ingress_rule_for(app: Application, address: str = "localhost") -> ExposureRule:
    """Return the ingress exposure for an application reached at ``address``."""
    return ExposureRule(
        application=app,
        mode=ExposureMode.INGRESS,
        host_rules=(
            HostRule(
                host=app.ingress_host_for(address),
                service=app.service,
                port=app.ingress_port,
                backend_protocol=app.ingress_backend_protocol,
            ),
        ),
    )


def _require_service(name: str, namespace: str, env: dict[str, str]) -> None:
    if get_service(name, namespace, env) is None:
        raise ServiceNotFoundError(name, namespace)


# =============================================================================
# NodePort / ClusterIP
# =============================================================================


def node_port_patch(app: Application) -> dict[str, object]:
    """Build the merge patch that sets the service type and fixed node ports.

    A merge patch replaces the whole port list, so the result does not
    depend on what the list held before.
    """
    return {
        "spec": {
            "type": "NodePort",
            "ports": [
                _port_entry(mapping.name, mapping.port, mapping.target_port)
                | {"nodePort": mapping.node_port}
                for mapping in app.node_ports
            ],
        }
    }


def cluster_ip_patch(app: Application) -> dict[str, object]:
    """Build the merge patch that returns the service to ClusterIP."""
    return {
        "spec": {
            "type": "ClusterIP",
            "ports": [
                _port_entry(mapping.name, mapping.port, mapping.target_port)
                for mapping in app.node_ports
            ],
        }
    }


def _port_entry(name: str | None, port: int, target_port: int) -> dict[str, object]:
    entry: dict[str, object] = {"port": port, "targetPort": target_port}
    if name is not None:
        entry["name"] = name
    return entry


def set_node_port(app: Application, env: dict[str, str]) -> tuple[int, ...]:
    """Expose an application's service on its fixed node ports.

    Returns:
        The node port numbers now assigned, in declaration order.

    Raises:
        ServiceNotFoundError: If the service does not exist.
        PatchError: If the patch is rejected.

    """
    _require_service(app.service, app.namespace, env)
    log_info(logger, "Exposing %s/%s as NodePort...", app.namespace, app.service)
    patch_resource(
        "service",
        app.service,
        app.namespace,
        node_port_patch(app),
        env,
        patch_type="merge",
    )
    return tuple(mapping.node_port for mapping in app.node_ports)


def set_cluster_ip(app: Application, env: dict[str, str]) -> None:
    """Switch an application's service to ClusterIP.

    Raises:
        ServiceNotFoundError: If the service does not exist.
        PatchError: If the patch is rejected.

    """
    _require_service(app.service, app.namespace, env)
    log_info(logger, "Switching %s/%s to ClusterIP...", app.namespace, app.service)
    patch_resource(
        "service",
        app.service,
        app.namespace,
        cluster_ip_patch(app),
        env,
        patch_type="merge",
    )


# =============================================================================
# Ingress
# =============================================================================


def install_ingress_controller(
    backend: Backend, handle: ClusterHandle, env: dict[str, str]
) -> None:
    """Submit the ingress controller the way the backend variant requires.

    Returns once the controller is submitted. Controller pods may only
    schedule after nodes are labelled, so waiting is a separate step
    (``wait_for_ingress_controller``).
    """
    backend.prepare_ingress(handle, env)


def label_nodes_ingress_ready(
    nodes: cabc.Iterable[str], env: dict[str, str]
) -> tuple[str, ...]:
    """Label every node ``ingress-ready=true``.

    Labels are overwritten, so relabelling is a no-op per node.

    Returns:
        The labelled node names, in the order given.

    """
    labelled = []
    for node in nodes:
        label_node(node, INGRESS_READY_LABEL, "true", env)
        labelled.append(node)
    log_info(logger, "Labelled %d node(s) %s=true", len(labelled), INGRESS_READY_LABEL)
    return tuple(labelled)


def wait_for_ingress_controller(
    env: dict[str, str],
    timeout: float = 300,
    *,
    interval: float = 2.0,
    clock: Clock | None = None,
) -> Satisfied:
    """Wait for the ingress-nginx controller deployment to become available."""
    return wait_for_deployment_available(
        INGRESS_CONTROLLER_DEPLOYMENT,
        INGRESS_CONTROLLER_NAMESPACE,
        env,
        timeout,
        interval=interval,
        clock=clock,
    )


def _ingress_object(rule: ExposureRule) -> dict[str, object]:
    app = rule.application
    annotations = {
        _BACKEND_PROTOCOL_ANNOTATION: host_rule.backend_protocol
        for host_rule in rule.host_rules
        if host_rule.backend_protocol
    }
    metadata: dict[str, object] = {
        "name": f"{app.name}-ingress",
        "namespace": app.namespace,
        "labels": {
            "app.kubernetes.io/managed-by": "argo-lab",
            "app.kubernetes.io/part-of": app.name,
        },
    }
    if annotations:
        metadata["annotations"] = annotations
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": metadata,
        "spec": {
            "ingressClassName": INGRESS_CLASS,
            "rules": [
                {
                    "host": host_rule.host,
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "pathType": "Prefix",
                                "backend": {
                                    "service": {
                                        "name": host_rule.service,
                                        "port": {"number": host_rule.port},
                                    }
                                },
                            }
                        ]
                    },
                }
                for host_rule in rule.host_rules
            ],
        },
    }


def render_ingress_manifest(rules: cabc.Sequence[ExposureRule]) -> str:
    """Render ingress rules as one ``List`` document.

    Rendering is deterministic: identical rules always produce identical
    text, so resubmission is a server-side no-op.
    """
    manifest = {
        "apiVersion": "v1",
        "kind": "List",
        "items": [_ingress_object(rule) for rule in rules],
    }
    yaml_serializer = YAML(typ="safe")
    yaml_serializer.default_flow_style = False
    yaml_serializer.indent(mapping=2, sequence=4, offset=2)
    with io.StringIO() as stream:
        yaml_serializer.dump(manifest, stream)
        return stream.getvalue()


def apply_ingress_rules(rules: cabc.Sequence[ExposureRule], env: dict[str, str]) -> None:
    """Submit host-routing rules for one or more applications in one batch.

    Raises:
        ValueError: If a rule is not in ingress mode or has no host rules.
        ServiceNotFoundError: If a backend service does not exist.
        ManifestApplyError: If the submission is rejected.

    """
    for rule in rules:
        if rule.mode is not ExposureMode.INGRESS or not rule.host_rules:
            msg = f"{rule.application.name}: expected ingress rule with host rules"
            raise ValueError(msg)
        for host_rule in rule.host_rules:
            _require_service(host_rule.service, rule.application.namespace, env)

    log_info(logger, "Applying %d ingress rule(s)...", len(rules))
    apply_manifest(render_ingress_manifest(rules), env, server_side=True)
