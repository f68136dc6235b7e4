"""High-level orchestration for CLI commands.

Each operation takes an explicit ``Environment`` value carrying the config,
backend driver, cluster handle and kubeconfig environment, so no module
holds a "current cluster". Operations after cluster creation are each
idempotent and safe to re-run after a partial failure.
"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from argo_lab.applications import APPLICATIONS, ARGO_WORKFLOWS, ARGOCD
from argo_lab.backend import AlreadyExists, kubeconfig_env, kubeconfig_path, make_backend
from argo_lab.exposure import (
    ExposureMode,
    apply_ingress_rules,
    ingress_rule_for,
    install_ingress_controller,
    label_nodes_ingress_ready,
    set_cluster_ip,
    set_node_port,
    wait_for_ingress_controller,
)
from argo_lab.installer import install_application
from argo_lab.k8s import get_service
from argo_lab.logging import get_logger, log_debug, log_info, log_warning
from argo_lab.readiness import nodes_ready, wait_for_nodes_ready
from argo_lab.reporter import access_urls, render_snapshot, snapshot
from argo_lab.validation import (
    ClusterExistsError,
    EnvironmentNotReadyError,
    NotFoundError,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from argo_lab.applications import Application
    from argo_lab.backend import Backend, ClusterHandle
    from argo_lab.config import Config
    from argo_lab.installer import InstallResult
    from argo_lab.readiness import Clock
    from argo_lab.reporter import EnvironmentSnapshot

logger = get_logger(__name__)


class EnvironmentState(enum.StrEnum):
    """Lifecycle state of a lab environment."""

    ABSENT = "absent"
    CREATING = "creating"
    READY = "ready"
    INSTALLING = "installing"
    DELETING = "deleting"


class ConflictPolicy(enum.StrEnum):
    """What ``create_environment`` does when the cluster already exists."""

    RECREATE = "recreate"
    REUSE = "reuse"
    ABORT = "abort"


@dataclasses.dataclass(frozen=True, slots=True)
class Environment:
    """A named lab environment and everything needed to operate on it.

    Attributes:
        config: Configuration the environment was opened with.
        backend: Driver for the backend hosting the cluster.
        handle: Live cluster handle, or None while the cluster is absent.
        kube_env: Process environment with KUBECONFIG pointing at the
            environment's dedicated kubeconfig file.
        state: Lifecycle state.
        clock: Time source for readiness waits.

    """

    config: Config
    backend: Backend
    handle: ClusterHandle | None = None
    kube_env: dict[str, str] = dataclasses.field(default_factory=dict)
    state: EnvironmentState = EnvironmentState.ABSENT
    clock: Clock | None = None

    @property
    def name(self) -> str:
        """Return the environment name."""
        return self.config.cluster_name

    def require_attached(self) -> ClusterHandle:
        """Return the cluster handle once a kubeconfig has been written.

        Unlike ``require_ready`` this accepts an environment whose nodes are
        not all Ready, so degraded clusters can still be inspected.

        Raises:
            EnvironmentNotReadyError: If no live cluster is attached.

        """
        if self.handle is None or "KUBECONFIG" not in self.kube_env:
            msg = f"Environment '{self.name}' is not attached to a cluster"
            raise EnvironmentNotReadyError(msg)
        return self.handle

    def require_ready(self) -> ClusterHandle:
        """Return the cluster handle, or raise if the environment is not READY.

        Raises:
            EnvironmentNotReadyError: If node readiness has not been confirmed.

        """
        if self.state is not EnvironmentState.READY or self.handle is None:
            msg = f"Environment '{self.name}' is {self.state}, expected ready"
            raise EnvironmentNotReadyError(msg)
        return self.handle


# =============================================================================
# Lifecycle
# =============================================================================


def _transition(environment: Environment, state: EnvironmentState) -> Environment:
    log_debug(
        logger,
        "Environment '%s': %s -> %s",
        environment.name,
        environment.state,
        state,
    )
    return dataclasses.replace(environment, state=state)


def _await_ready(environment: Environment) -> Environment:
    """Write the kubeconfig and wait for every backend node to be Ready."""
    handle = typ.cast("ClusterHandle", environment.handle)
    backend = environment.backend
    cfg = environment.config
    env = kubeconfig_env(backend, handle, cfg.kubeconfig_dir)
    nodes = backend.list_nodes(handle.name)
    wait_for_nodes_ready(
        nodes,
        env,
        cfg.node_timeout,
        interval=cfg.poll_interval,
        clock=environment.clock,
    )
    return _transition(
        dataclasses.replace(environment, kube_env=env), EnvironmentState.READY
    )


def create_environment(
    cfg: Config,
    *,
    policy: ConflictPolicy = ConflictPolicy.ABORT,
    backend: Backend | None = None,
    clock: Clock | None = None,
) -> Environment:
    """Create (or reuse) the cluster and wait until every node is Ready.

    Args:
        cfg: Environment configuration.
        policy: What to do if a cluster with this name already exists.
        backend: Backend driver; defaults to the one ``cfg.backend`` selects.
        clock: Time source for readiness waits.

    Returns:
        The environment in state READY.

    Raises:
        ClusterExistsError: If the cluster exists and ``policy`` is ABORT.
        BackendUnavailableError: If the backend cannot be used.
        ReadinessTimeoutError: If nodes do not become Ready in time.

    """
    backend = backend or make_backend(cfg)
    backend.check_prerequisites()
    environment = Environment(config=cfg, backend=backend, clock=clock)

    presence = backend.probe(cfg.cluster_name)
    if isinstance(presence, AlreadyExists):
        if policy is ConflictPolicy.ABORT:
            raise ClusterExistsError(cfg.cluster_name)
        if policy is ConflictPolicy.REUSE:
            log_info(logger, "Cluster '%s' already exists, reusing...", cfg.cluster_name)
            return _await_ready(dataclasses.replace(environment, handle=presence.handle))
        log_warning(
            logger,
            "Cluster '%s' already exists; destroying it and all of its state",
            cfg.cluster_name,
        )
        backend.destroy(cfg.cluster_name)

    environment = _transition(environment, EnvironmentState.CREATING)
    handle = backend.create(cfg.cluster_name, cfg.topology)
    return _await_ready(dataclasses.replace(environment, handle=handle))


def _existing(cfg: Config, backend: Backend, clock: Clock | None) -> Environment:
    presence = backend.probe(cfg.cluster_name)
    if not isinstance(presence, AlreadyExists):
        msg = f"Cluster '{cfg.cluster_name}' does not exist. Run 'argo-lab create' first."
        raise NotFoundError(msg)
    return Environment(config=cfg, backend=backend, handle=presence.handle, clock=clock)


def open_environment(
    cfg: Config, *, backend: Backend | None = None, clock: Clock | None = None
) -> Environment:
    """Attach to an existing environment and confirm its nodes are Ready.

    Raises:
        NotFoundError: If no cluster with the configured name exists.

    """
    return _await_ready(_existing(cfg, backend or make_backend(cfg), clock))


def attach_environment(
    cfg: Config, *, backend: Backend | None = None, clock: Clock | None = None
) -> Environment:
    """Attach to an existing environment without waiting on its nodes.

    The kubeconfig is written and node readiness is checked once. The
    environment is READY if every node is Ready; otherwise it stays
    CREATING, which read-only operations accept and mutating ones refuse.

    Raises:
        NotFoundError: If no cluster with the configured name exists.

    """
    backend = backend or make_backend(cfg)
    environment = _existing(cfg, backend, clock)
    handle = typ.cast("ClusterHandle", environment.handle)
    env = kubeconfig_env(backend, handle, cfg.kubeconfig_dir)
    attached = dataclasses.replace(
        environment, kube_env=env, state=EnvironmentState.CREATING
    )
    if nodes_ready(backend.list_nodes(handle.name), env):
        return _transition(attached, EnvironmentState.READY)
    log_warning(logger, "Not every node of '%s' is Ready", cfg.cluster_name)
    return attached


def teardown_environment(
    cfg: Config, *, backend: Backend | None = None
) -> Environment:
    """Delete the cluster and its kubeconfig file.

    Returns:
        The environment in state ABSENT, whether or not a cluster existed.

    """
    backend = backend or make_backend(cfg)
    presence = backend.probe(cfg.cluster_name)
    if not isinstance(presence, AlreadyExists):
        print(f"Cluster '{cfg.cluster_name}' does not exist.")
        return Environment(config=cfg, backend=backend)

    deleting = Environment(
        config=cfg,
        backend=backend,
        handle=presence.handle,
        state=EnvironmentState.DELETING,
    )
    print(f"Deleting cluster '{cfg.cluster_name}'...")
    backend.destroy(cfg.cluster_name)
    kubeconfig_path(cfg.kubeconfig_dir, cfg.cluster_name).unlink(missing_ok=True)
    print("Cluster deleted successfully.")
    return _transition(
        dataclasses.replace(deleting, handle=None, kube_env={}), EnvironmentState.ABSENT
    )


# =============================================================================
# Applications
# =============================================================================


def _version_for(cfg: Config, app: Application) -> str:
    versions = {
        ARGOCD.name: cfg.argocd_version,
        ARGO_WORKFLOWS.name: cfg.workflows_version,
    }
    return versions.get(app.name, app.default_version)


def install(
    environment: Environment, app: Application, *, version: str | None = None
) -> tuple[Environment, InstallResult]:
    """Install an application into a READY environment.

    The environment is INSTALLING while manifests are applied and returns
    to READY once the critical deployments are available.

    Returns:
        The environment back in state READY, and the install result.

    Raises:
        EnvironmentNotReadyError: If the environment is not READY.

    """
    environment.require_ready()
    installing = _transition(environment, EnvironmentState.INSTALLING)
    cfg = installing.config
    result = install_application(
        app,
        installing.kube_env,
        version=version or _version_for(cfg, app),
        timeout=cfg.deployment_timeout,
        interval=cfg.poll_interval,
        clock=installing.clock,
    )
    return _transition(installing, EnvironmentState.READY), result


def installed_applications(environment: Environment) -> list[Application]:
    """Return known applications whose UI service exists, in catalogue order."""
    return [
        app
        for app in APPLICATIONS.values()
        if get_service(app.service, app.namespace, environment.kube_env) is not None
    ]


def _require_installed(environment: Environment) -> list[Application]:
    apps = installed_applications(environment)
    if not apps:
        msg = f"No applications are installed in '{environment.name}'"
        raise EnvironmentNotReadyError(msg)
    return apps


# =============================================================================
# Exposure
# =============================================================================


def expose_node_port(
    environment: Environment, apps: cabc.Sequence[Application] | None = None
) -> dict[str, tuple[int, ...]]:
    """Expose applications on their fixed node ports.

    Args:
        environment: READY environment.
        apps: Applications to expose; defaults to every installed one.

    Returns:
        Node ports assigned per application name.

    """
    environment.require_ready()
    apps = list(apps) if apps is not None else _require_installed(environment)
    return {app.name: set_node_port(app, environment.kube_env) for app in apps}


def expose_ingress(
    environment: Environment, apps: cabc.Sequence[Application] | None = None
) -> tuple[str, ...]:
    """Route applications through the ingress controller.

    Steps run in order: submit the controller, label every node the backend
    reports, wait for the controller, switch services to ClusterIP, then
    submit all host rules in one batch.

    Returns:
        The nodes labelled ``ingress-ready=true``.

    """
    handle = environment.require_ready()
    apps = list(apps) if apps is not None else _require_installed(environment)
    cfg = environment.config
    env = environment.kube_env

    install_ingress_controller(environment.backend, handle, env)
    labelled = label_nodes_ingress_ready(environment.backend.list_nodes(handle.name), env)
    wait_for_ingress_controller(
        env, cfg.ingress_timeout, interval=cfg.poll_interval, clock=environment.clock
    )
    address = environment.backend.node_address(handle.name)
    for app in apps:
        set_cluster_ip(app, env)
    apply_ingress_rules([ingress_rule_for(app, address) for app in apps], env)
    return labelled


def expose(
    environment: Environment, mode: ExposureMode
) -> dict[str, tuple[int, ...]] | tuple[str, ...]:
    """Expose every installed application using ``mode``."""
    if mode is ExposureMode.NODE_PORT:
        return expose_node_port(environment)
    return expose_ingress(environment)


# =============================================================================
# Reporting
# =============================================================================


def environment_snapshot(environment: Environment) -> EnvironmentSnapshot:
    """Collect a read-only snapshot; node readiness is reported, not required."""
    environment.require_attached()
    return snapshot(environment.kube_env, APPLICATIONS.values())


def show_environment_status(environment: Environment) -> EnvironmentSnapshot:
    """Print the environment snapshot with access URLs."""
    handle = environment.require_attached()
    report = environment_snapshot(environment)
    address = environment.backend.node_address(handle.name)
    print(f"Status for cluster: {environment.name} ({handle.kind})")
    print(f"Kubeconfig: {environment.kube_env.get('KUBECONFIG', '')}")
    print()
    print(render_snapshot(report, address, installed_applications(environment)))
    return report


def print_access_banner(
    environment: Environment,
    apps: cabc.Iterable[Application],
    *,
    mode: ExposureMode = ExposureMode.NODE_PORT,
) -> None:
    """Print the success banner with access URLs and follow-up commands."""
    handle = environment.require_ready()
    address = environment.backend.node_address(handle.name)
    urls = access_urls(address, apps, ingress=mode is ExposureMode.INGRESS)
    print()
    print("=" * 60)
    print(f"Environment '{environment.name}' ready!")
    for title, url in urls:
        print(f"  {title}: {url}")
    print(f"  KUBECONFIG={environment.kube_env.get('KUBECONFIG', '')}")
    print()
    print("Commands:")
    print("  Status:  argo-lab status")
    print("  Destroy: argo-lab destroy")
    print("=" * 60)
