"""Idempotent application installation.

Installing an application runs four steps, each safe to repeat:

1. create-or-reuse the target namespace;
2. apply the full manifest set in one submission;
3. wait for each critical deployment, in declared order;
4. run the application's one-time post-install actions, each guarded by a
   check of the current cluster state.

A failing step raises immediately. Already-applied objects are left in
place; manifests are declarative, so re-running ``install_application`` is
the recovery path.
"""

from __future__ import annotations

import dataclasses
import typing as typ

from argo_lab.applications import ARGO_WORKFLOWS, ARGOCD
from argo_lab.k8s import (
    apply_manifest,
    apply_manifest_url,
    create_rolebinding,
    ensure_namespace,
    get_deployment,
    patch_resource,
    rolebinding_exists,
    rollout_restart,
)
from argo_lab.logging import get_logger, log_info
from argo_lab.readiness import wait_for_deployments, wait_for_rollout
from argo_lab.validation import PatchError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from argo_lab.applications import Application
    from argo_lab.readiness import Clock

logger = get_logger(__name__)

ARGOCD_INSECURE_FLAG = "--insecure"
WORKFLOWS_SERVER_ARGS = ("server", "--auth-mode=server")
WORKFLOWS_ADMIN_BINDING = "argo-default-admin"


@dataclasses.dataclass(frozen=True, slots=True)
class WaitSettings:
    """Deadline, poll interval and clock for post-install readiness waits."""

    timeout: float
    interval: float
    clock: Clock | None

    def rollout(self, name: str, namespace: str, env: dict[str, str]) -> None:
        """Wait for a patched deployment to finish rolling out."""
        wait_for_rollout(
            name,
            namespace,
            env,
            self.timeout,
            interval=self.interval,
            clock=self.clock,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class InstallResult:
    """Outcome of one install run.

    Attributes:
        application: Name of the installed application.
        version: Manifest revision applied.
        namespace_created: True if the namespace did not exist before.
        changes: Post-install actions that changed the cluster on this run.
            Empty when every action was already in effect.

    """

    application: str
    version: str
    namespace_created: bool
    changes: tuple[str, ...] = ()


def _container_args(name: str, namespace: str, env: dict[str, str]) -> list[str] | None:
    deployment = get_deployment(name, namespace, env)
    if deployment is None:
        msg = f"deployment/{name} not found in '{namespace}'"
        raise PatchError(msg)
    return deployment.container_args(0)


def ensure_argocd_insecure(
    env: dict[str, str], waits: WaitSettings, *, app: Application = ARGOCD
) -> bool:
    """Run the Argo CD server as a plaintext listener.

    Appends ``--insecure`` to the server container's arguments only when it
    is not already present, then restarts the deployment and waits for the
    rollout to complete.

    Returns:
        True if the flag was appended, False if it was already set.

    """
    server = app.critical_deployments[0]
    args = _container_args(server, app.namespace, env)
    if args is not None and ARGOCD_INSECURE_FLAG in args:
        log_info(logger, "%s already runs with %s", server, ARGOCD_INSECURE_FLAG)
        return False

    if args is None:
        op = {
            "op": "add",
            "path": "/spec/template/spec/containers/0/args",
            "value": [ARGOCD_INSECURE_FLAG],
        }
    else:
        op = {
            "op": "add",
            "path": "/spec/template/spec/containers/0/args/-",
            "value": ARGOCD_INSECURE_FLAG,
        }
    log_info(logger, "Switching %s to %s mode...", server, ARGOCD_INSECURE_FLAG)
    patch_resource("deployment", server, app.namespace, [op], env, patch_type="json")
    rollout_restart(server, app.namespace, env)
    waits.rollout(server, app.namespace, env)
    return True


def ensure_workflows_auth_mode(
    env: dict[str, str], waits: WaitSettings, *, app: Application = ARGO_WORKFLOWS
) -> bool:
    """Replace the Argo Workflows server arguments to use server auth mode.

    Returns:
        True if the arguments were replaced, False if they already matched.

    """
    server = app.critical_deployments[0]
    args = _container_args(server, app.namespace, env)
    if args is not None and tuple(args) == WORKFLOWS_SERVER_ARGS:
        log_info(logger, "%s already uses server auth mode", server)
        return False

    log_info(logger, "Setting %s authentication mode to 'server'...", server)
    patch_resource(
        "deployment",
        server,
        app.namespace,
        [
            {
                "op": "replace",
                "path": "/spec/template/spec/containers/0/args",
                "value": list(WORKFLOWS_SERVER_ARGS),
            }
        ],
        env,
        patch_type="json",
    )
    waits.rollout(server, app.namespace, env)
    return True


def ensure_workflows_admin_binding(
    env: dict[str, str], *, app: Application = ARGO_WORKFLOWS
) -> bool:
    """Grant the namespace's default service account the ``admin`` role.

    The binding is created at most once; an existing binding of the same
    name is left untouched.

    Returns:
        True if the binding was created, False if it already existed.

    """
    if rolebinding_exists(WORKFLOWS_ADMIN_BINDING, app.namespace, env):
        log_info(logger, "RoleBinding '%s' already exists", WORKFLOWS_ADMIN_BINDING)
        return False

    log_info(logger, "Creating RoleBinding '%s'...", WORKFLOWS_ADMIN_BINDING)
    create_rolebinding(
        WORKFLOWS_ADMIN_BINDING,
        app.namespace,
        clusterrole="admin",
        serviceaccount=f"{app.namespace}:default",
        env=env,
    )
    return True


def _argocd_post_install(env: dict[str, str], waits: WaitSettings) -> list[str]:
    return ["insecure-flag"] if ensure_argocd_insecure(env, waits) else []


def _workflows_post_install(env: dict[str, str], waits: WaitSettings) -> list[str]:
    changes = []
    if ensure_workflows_auth_mode(env, waits):
        changes.append("auth-mode")
    if ensure_workflows_admin_binding(env):
        changes.append("admin-rolebinding")
    return changes


_POST_INSTALL: dict[str, cabc.Callable[[dict[str, str], WaitSettings], list[str]]] = {
    ARGOCD.name: _argocd_post_install,
    ARGO_WORKFLOWS.name: _workflows_post_install,
}


def install_application(  # noqa: PLR0913
    app: Application,
    env: dict[str, str],
    *,
    version: str | None = None,
    timeout: float = 600,
    interval: float = 2.0,
    clock: Clock | None = None,
) -> InstallResult:
    """Install ``app`` into the cluster targeted by ``env``.

    Parameters
    ----------
    app : Application
        Application to install.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.
    version : str, optional
        Manifest revision; defaults to ``app.default_version``.
    timeout : float, default 600
        Deadline per critical deployment, in seconds.
    interval : float, default 2.0
        Seconds between readiness polls.
    clock : Clock, optional
        Time source for readiness waits.

    Returns
    -------
    InstallResult
        What was applied and which post-install actions changed state.

    Raises
    ------
    NamespaceCreateError
        If the namespace cannot be created.
    ManifestApplyError
        If the manifest submission is rejected.
    ReadinessTimeoutError
        If a critical deployment does not become available in time.
    PatchError
        If a post-install action is rejected.

    """
    version = version or app.default_version
    waits = WaitSettings(timeout=timeout, interval=interval, clock=clock)

    log_info(logger, "Installing %s %s into '%s'...", app.title, version, app.namespace)
    created = ensure_namespace(app.namespace, env)

    url = app.manifest.url_for(version)
    if url is not None:
        apply_manifest_url(url, env, namespace=app.namespace)
    else:
        apply_manifest(
            typ.cast("str", app.manifest.inline),
            env,
            namespace=app.namespace,
            server_side=True,
        )

    wait_for_deployments(
        app.critical_deployments,
        app.namespace,
        env,
        timeout,
        interval=interval,
        clock=clock,
    )

    post_install = _POST_INSTALL.get(app.name)
    changes = post_install(env, waits) if post_install is not None else []
    log_info(logger, "%s installed successfully", app.title)
    return InstallResult(
        application=app.name,
        version=version,
        namespace_created=created,
        changes=tuple(changes),
    )
