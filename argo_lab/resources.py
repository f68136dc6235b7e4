"""Typed views of the Kubernetes objects argo-lab reads.

Only the fields the orchestrator inspects are modelled; msgspec ignores the
rest of each kubectl JSON document.
"""

from __future__ import annotations

import typing as typ

import msgspec

_T = typ.TypeVar("_T")


class ObjectMeta(msgspec.Struct, kw_only=True):
    """Object metadata."""

    name: str
    namespace: str | None = None
    labels: dict[str, str] = msgspec.field(default_factory=dict)
    generation: int = 0


class Condition(msgspec.Struct, kw_only=True):
    """A status condition such as ``Ready`` or ``Available``."""

    type: str
    status: str

    @property
    def is_true(self) -> bool:
        """Return True when the condition status is ``"True"``."""
        return self.status == "True"


def _condition_true(conditions: list[Condition], kind: str) -> bool:
    return any(c.type == kind and c.is_true for c in conditions)


class NodeConditions(msgspec.Struct, kw_only=True):
    conditions: list[Condition] = msgspec.field(default_factory=list)


class Node(msgspec.Struct, kw_only=True):
    """A cluster node."""

    metadata: ObjectMeta
    status: NodeConditions = msgspec.field(default_factory=NodeConditions)

    @property
    def ready(self) -> bool:
        """Return True when the node reports ``Ready=True``."""
        return _condition_true(self.status.conditions, "Ready")


class Container(msgspec.Struct, kw_only=True):
    name: str
    args: list[str] | None = None


class PodSpec(msgspec.Struct, kw_only=True):
    containers: list[Container] = msgspec.field(default_factory=list)


class PodTemplate(msgspec.Struct, kw_only=True):
    spec: PodSpec = msgspec.field(default_factory=PodSpec)


class DeploymentSpec(msgspec.Struct, kw_only=True):
    replicas: int = 1
    template: PodTemplate = msgspec.field(default_factory=PodTemplate)


class DeploymentStatus(msgspec.Struct, kw_only=True, rename="camel"):
    conditions: list[Condition] = msgspec.field(default_factory=list)
    observed_generation: int = 0
    replicas: int = 0
    updated_replicas: int = 0
    available_replicas: int = 0


class Deployment(msgspec.Struct, kw_only=True):
    """A Deployment with its pod template and status conditions."""

    metadata: ObjectMeta
    spec: DeploymentSpec = msgspec.field(default_factory=DeploymentSpec)
    status: DeploymentStatus = msgspec.field(default_factory=DeploymentStatus)

    @property
    def available(self) -> bool:
        """Return True when the deployment reports ``Available=True``."""
        return _condition_true(self.status.conditions, "Available")

    @property
    def rolled_out(self) -> bool:
        """Return True once the latest revision is fully rolled out.

        Mirrors ``kubectl rollout status``: the controller has observed the
        current generation, every desired replica runs the new template, no
        old replicas remain and all updated replicas are available.
        ``Available`` alone stays True throughout a rolling update.
        """
        status = self.status
        desired = self.spec.replicas
        return (
            status.observed_generation >= self.metadata.generation
            and status.updated_replicas >= desired
            and status.replicas <= status.updated_replicas
            and status.available_replicas >= status.updated_replicas
        )

    def container_args(self, index: int = 0) -> list[str] | None:
        """Return the argument list of the container at ``index``."""
        containers = self.spec.template.spec.containers
        if index >= len(containers):
            return None
        return containers[index].args


class ContainerStatus(msgspec.Struct, kw_only=True):
    name: str
    ready: bool = False


class PodStatus(msgspec.Struct, kw_only=True, rename="camel"):
    phase: str = "Unknown"
    container_statuses: list[ContainerStatus] = msgspec.field(default_factory=list)


class Pod(msgspec.Struct, kw_only=True):
    """A pod with its phase and container readiness."""

    metadata: ObjectMeta
    status: PodStatus = msgspec.field(default_factory=PodStatus)

    @property
    def healthy(self) -> bool:
        """Return True for completed pods and running pods with ready containers."""
        if self.status.phase == "Succeeded":
            return True
        if self.status.phase != "Running":
            return False
        statuses = self.status.container_statuses
        return bool(statuses) and all(s.ready for s in statuses)


class ServicePort(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    port: int
    name: str | None = None
    target_port: int | str | None = None
    node_port: int | None = None
    protocol: str | None = None


class ServiceSpec(msgspec.Struct, kw_only=True):
    type: str = "ClusterIP"
    ports: list[ServicePort] = msgspec.field(default_factory=list)


class Service(msgspec.Struct, kw_only=True):
    """A Service with its type and ports."""

    metadata: ObjectMeta
    spec: ServiceSpec = msgspec.field(default_factory=ServiceSpec)


class NamedObject(msgspec.Struct, kw_only=True):
    """Any object where only the name matters."""

    metadata: ObjectMeta


class ObjectList(msgspec.Struct, typ.Generic[_T], kw_only=True):
    """A ``kind: List`` document as returned by ``kubectl get -o json``."""

    items: list[_T] = msgspec.field(default_factory=list)


def decode(payload: str | bytes, kind: type[_T]) -> _T:
    """Decode a kubectl JSON document into ``kind``.

    Raises:
        msgspec.DecodeError: If the payload does not match the model.

    """
    return msgspec.json.decode(payload, type=kind)
