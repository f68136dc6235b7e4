"""Command-line interface for the local Argo lab.

Usage:
    argo-lab create [--force | --reuse]   # Create the cluster
    argo-lab install-argocd               # Install Argo CD
    argo-lab install-workflows            # Install Argo Workflows
    argo-lab expose --mode ingress        # Expose installed applications
    argo-lab status                       # Show environment status
    argo-lab destroy                      # Delete the cluster

Run one command at a time per environment; concurrent invocations against
the same cluster are not supported.

Environment variables:
    ARGO_LAB_CLUSTER           - Environment name (default: argocd-lab)
    ARGO_LAB_BACKEND           - kind or minikube (default: kind)
    ARGO_LAB_KUBECONFIG_DIR    - Directory for per-environment kubeconfigs
    ARGO_LAB_ARGOCD_VERSION    - Argo CD manifest revision (default: stable)
    ARGO_LAB_WORKFLOWS_VERSION - Argo Workflows release (default: v3.7.0)
    ARGO_LAB_LOG_LEVEL         - Log level (default: INFO)
"""

from __future__ import annotations

import dataclasses
import sys
import typing as typ
from pathlib import Path

from cyclopts import App, Parameter

from argo_lab.applications import ARGO_WORKFLOWS, ARGOCD
from argo_lab.config import BackendKind, Config
from argo_lab.exposure import ExposureMode
from argo_lab.logging import configure_logging, get_logger, log_error, log_warning
from argo_lab.orchestration import (
    ConflictPolicy,
    attach_environment,
    create_environment,
    expose,
    install,
    installed_applications,
    open_environment,
    print_access_banner,
    show_environment_status,
    teardown_environment,
)
from argo_lab.validation import ArgoLabError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from argo_lab.applications import Application

app = App(
    name="argo-lab",
    help="Local Kubernetes lab for Argo CD and Argo Workflows",
    version="0.1.0",
)

logger = get_logger(__name__)

ClusterName = typ.Annotated[str, Parameter(env_var="ARGO_LAB_CLUSTER")]
BackendOption = typ.Annotated[BackendKind, Parameter(env_var="ARGO_LAB_BACKEND")]
KubeconfigDir = typ.Annotated[
    Path | None, Parameter(env_var="ARGO_LAB_KUBECONFIG_DIR")
]
LogLevelOption = typ.Annotated[str, Parameter(env_var="ARGO_LAB_LOG_LEVEL")]

_DEFAULT_CLUSTER = "argocd-lab"


def _config(
    cluster_name: str,
    backend: BackendKind,
    kubeconfig_dir: Path | None,
    **overrides: str,
) -> Config:
    cfg = Config(cluster_name=cluster_name, backend=backend, **overrides)
    if kubeconfig_dir is not None:
        cfg = dataclasses.replace(cfg, kubeconfig_dir=kubeconfig_dir)
    return cfg


def _setup_logging(log_level: str) -> None:
    normalized, invalid = configure_logging(log_level, force=True)
    if invalid and log_level:
        log_warning(logger, "Unknown log level %r; using %s", log_level, normalized)


def _run(log_level: str, action: cabc.Callable[[], int]) -> int:
    """Run a command body, reporting package errors as exit code 1."""
    _setup_logging(log_level)
    try:
        return action()
    except ArgoLabError as e:
        log_error(logger, "%s", e)
        return 1


def _install(cfg: Config, application: Application) -> int:
    environment, result = install(open_environment(cfg), application)
    if result.changes:
        print(f"Applied post-install changes: {', '.join(result.changes)}")
    print_access_banner(environment, installed_applications(environment))
    return 0


@app.command
def create(
    *,
    cluster_name: ClusterName = _DEFAULT_CLUSTER,
    backend: BackendOption = BackendKind.KIND,
    kubeconfig_dir: KubeconfigDir = None,
    force: bool = False,
    reuse: bool = False,
    log_level: LogLevelOption = "INFO",
) -> int:
    """Create the lab cluster and wait for every node to be Ready.

    If a cluster with the same name already exists, the command fails
    without touching it. It does not destroy and recreate the cluster
    unless ``--force`` is given, which loses all of its state. Pass
    ``--reuse`` to keep the existing cluster instead.

    Args:
        cluster_name: Environment name (kind cluster or minikube profile).
        backend: Cluster backend.
        kubeconfig_dir: Directory for the environment's kubeconfig file.
        force: Destroy and recreate an existing cluster.
        reuse: Keep an existing cluster.
        log_level: Log level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """

    def action() -> int:
        if force and reuse:
            msg = "--force and --reuse are mutually exclusive"
            raise ArgoLabError(msg)
        policy = ConflictPolicy.ABORT
        if force:
            policy = ConflictPolicy.RECREATE
        elif reuse:
            policy = ConflictPolicy.REUSE
        cfg = _config(cluster_name, backend, kubeconfig_dir)
        environment = create_environment(cfg, policy=policy)
        print_access_banner(environment, ())
        return 0

    return _run(log_level, action)


@app.command(name="install-argocd")
def install_argocd(
    *,
    cluster_name: ClusterName = _DEFAULT_CLUSTER,
    backend: BackendOption = BackendKind.KIND,
    kubeconfig_dir: KubeconfigDir = None,
    version: typ.Annotated[str, Parameter(env_var="ARGO_LAB_ARGOCD_VERSION")] = "stable",
    log_level: LogLevelOption = "INFO",
) -> int:
    """Install Argo CD into the lab cluster.

    Args:
        cluster_name: Environment name.
        backend: Cluster backend.
        kubeconfig_dir: Directory for the environment's kubeconfig file.
        version: Argo CD manifest revision (branch or tag).
        log_level: Log level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    return _run(
        log_level,
        lambda: _install(
            _config(cluster_name, backend, kubeconfig_dir, argocd_version=version),
            ARGOCD,
        ),
    )


@app.command(name="install-workflows")
def install_workflows(
    *,
    cluster_name: ClusterName = _DEFAULT_CLUSTER,
    backend: BackendOption = BackendKind.KIND,
    kubeconfig_dir: KubeconfigDir = None,
    version: typ.Annotated[
        str, Parameter(env_var="ARGO_LAB_WORKFLOWS_VERSION")
    ] = "v3.7.0",
    log_level: LogLevelOption = "INFO",
) -> int:
    """Install Argo Workflows into the lab cluster.

    Args:
        cluster_name: Environment name.
        backend: Cluster backend.
        kubeconfig_dir: Directory for the environment's kubeconfig file.
        version: Argo Workflows release tag.
        log_level: Log level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    return _run(
        log_level,
        lambda: _install(
            _config(cluster_name, backend, kubeconfig_dir, workflows_version=version),
            ARGO_WORKFLOWS,
        ),
    )


@app.command(name="expose")
def expose_apps(
    *,
    mode: ExposureMode = ExposureMode.NODE_PORT,
    cluster_name: ClusterName = _DEFAULT_CLUSTER,
    backend: BackendOption = BackendKind.KIND,
    kubeconfig_dir: KubeconfigDir = None,
    log_level: LogLevelOption = "INFO",
) -> int:
    """Expose every installed application via NodePort or Ingress.

    Args:
        mode: Exposure strategy.
        cluster_name: Environment name.
        backend: Cluster backend.
        kubeconfig_dir: Directory for the environment's kubeconfig file.
        log_level: Log level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """

    def action() -> int:
        environment = open_environment(_config(cluster_name, backend, kubeconfig_dir))
        expose(environment, mode)
        print_access_banner(environment, installed_applications(environment), mode=mode)
        return 0

    return _run(log_level, action)


@app.command
def status(
    *,
    cluster_name: ClusterName = _DEFAULT_CLUSTER,
    backend: BackendOption = BackendKind.KIND,
    kubeconfig_dir: KubeconfigDir = None,
    log_level: LogLevelOption = "INFO",
) -> int:
    """Show nodes, pod health, Argo CD applications and access details.

    Does not wait for nodes to become Ready; NotReady nodes are listed as
    such.

    Args:
        cluster_name: Environment name.
        backend: Cluster backend.
        kubeconfig_dir: Directory for the environment's kubeconfig file.
        log_level: Log level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """

    def action() -> int:
        cfg = _config(cluster_name, backend, kubeconfig_dir)
        environment = attach_environment(cfg)
        show_environment_status(environment)
        return 0

    return _run(log_level, action)


@app.command
def destroy(
    *,
    cluster_name: ClusterName = _DEFAULT_CLUSTER,
    backend: BackendOption = BackendKind.KIND,
    kubeconfig_dir: KubeconfigDir = None,
    log_level: LogLevelOption = "INFO",
) -> int:
    """Delete the lab cluster.

    This operation is destructive and cannot be undone.

    Args:
        cluster_name: Environment name.
        backend: Cluster backend.
        kubeconfig_dir: Directory for the environment's kubeconfig file.
        log_level: Log level.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """

    def action() -> int:
        teardown_environment(_config(cluster_name, backend, kubeconfig_dir))
        return 0

    return _run(log_level, action)


def main() -> int:
    """Entry point for the CLI."""
    return app()


if __name__ == "__main__":
    sys.exit(main())
