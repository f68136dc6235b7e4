"""Kubernetes namespace and resource operations.

This module wraps every kubectl call the orchestrator makes: namespaces,
manifest submission, object reads, patches, labels, role bindings and
secrets. All functions require an environment dictionary with KUBECONFIG set
to target the correct cluster.

Reads return ``None`` when kubectl fails so readiness predicates can treat a
transient error as "not yet". Mutations raise the matching ``ArgoLabError``
subclass with the kubectl failure chained.

Examples
--------
Ensure a namespace exists before applying manifests:

    env = kubeconfig_env(backend, handle, cfg.kubeconfig_dir)
    ensure_namespace("argocd", env)

Read the Argo CD admin password:

    password = read_secret_field(
        "argocd-initial-admin-secret", "password", "argocd", env
    )

"""

from __future__ import annotations

import json
import re
import subprocess
import typing as typ

import msgspec

from argo_lab.logging import get_logger, log_debug
from argo_lab.resources import (
    Deployment,
    NamedObject,
    Node,
    ObjectList,
    Pod,
    Service,
    decode,
)
from argo_lab.validation import (
    ClusterUnreachableError,
    ManifestApplyError,
    NamespaceCreateError,
    PatchError,
    b64decode_k8s_secret_field,
)

logger = get_logger(__name__)

_T = typ.TypeVar("_T")

# Kubernetes secret keys must contain only alphanumeric, dot, underscore, or hyphen
_SECRET_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

_KUBECTL_TIMEOUT = 30
_APPLY_TIMEOUT = 180

FIELD_MANAGER = "argo-lab"


def _kubectl_get_json(args: list[str], env: dict[str, str]) -> str | None:
    """Run ``kubectl get ... -o json`` and return stdout, or None on failure."""
    try:
        result = subprocess.run(  # noqa: S603
            # kubectl is expected on PATH; shell=False mitigates injection
            ["kubectl", "get", *args, "-o", "json"],  # noqa: S607
            capture_output=True,
            text=True,
            check=True,
            env=env,
            timeout=_KUBECTL_TIMEOUT,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        log_debug(logger, "kubectl get %s failed: %s", " ".join(args), e)
        return None
    return result.stdout


def _get_typed(args: list[str], env: dict[str, str], kind: type[_T]) -> _T | None:
    payload = _kubectl_get_json(args, env)
    if payload is None:
        return None
    try:
        return decode(payload, kind)
    except msgspec.DecodeError as e:
        log_debug(logger, "Unexpected kubectl output for %s: %s", " ".join(args), e)
        return None


def _object_exists(args: list[str], env: dict[str, str]) -> bool:
    """Return True if ``kubectl get`` finds the object.

    Raises
    ------
    ClusterUnreachableError
        If kubectl cannot be started or does not answer in time, so an
        unreachable cluster is not mistaken for a missing object.

    """
    target = " ".join(args)
    try:
        # S603/S607: kubectl via PATH is standard; names come from Config or constants
        result = subprocess.run(  # noqa: S603
            ["kubectl", "get", *args],  # noqa: S607
            capture_output=True,
            env=env,
            timeout=_KUBECTL_TIMEOUT,
        )
    except subprocess.TimeoutExpired as e:
        msg = f"kubectl get {target} timed out after {_KUBECTL_TIMEOUT} seconds"
        raise ClusterUnreachableError(msg) from e
    except OSError as e:
        msg = f"kubectl get {target} could not be run: {e}"
        raise ClusterUnreachableError(msg) from e
    return result.returncode == 0


# =============================================================================
# Namespaces
# =============================================================================


def namespace_exists(namespace: str, env: dict[str, str]) -> bool:
    """Check if a Kubernetes namespace exists.

    Parameters
    ----------
    namespace : str
        Name of the namespace to check.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.

    Returns
    -------
    bool
        True if the namespace exists, False otherwise.

    Raises
    ------
    ClusterUnreachableError
        If kubectl cannot reach the cluster.

    """
    return _object_exists(["namespace", namespace], env)


def create_namespace(namespace: str, env: dict[str, str]) -> None:
    """Create a Kubernetes namespace idempotently.

    Uses dry-run + apply pattern for idempotent upsert behaviour.

    Raises
    ------
    NamespaceCreateError
        If kubectl rejects either step.

    """
    try:
        # S603/S607: kubectl via PATH is standard; namespace validated by k8s API
        result = subprocess.run(  # noqa: S603
            [  # noqa: S607
                "kubectl",
                "create",
                "namespace",
                namespace,
                "--dry-run=client",
                "-o",
                "yaml",
            ],
            capture_output=True,
            text=True,
            check=True,
            env=env,
            timeout=_KUBECTL_TIMEOUT,
        )
        subprocess.run(
            ["kubectl", "apply", "-f", "-"],  # noqa: S607
            input=result.stdout,
            text=True,
            check=True,
            env=env,
            timeout=_KUBECTL_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        msg = f"Failed to create namespace '{namespace}': {e}"
        raise NamespaceCreateError(msg) from e


def ensure_namespace(namespace: str, env: dict[str, str]) -> bool:
    """Ensure a Kubernetes namespace exists, creating if necessary.

    Returns
    -------
    bool
        True if the namespace was created, False if it already existed.

    """
    if namespace_exists(namespace, env):
        return False
    create_namespace(namespace, env)
    return True


# =============================================================================
# Manifests
# =============================================================================


def apply_manifest(
    manifest: str,
    env: dict[str, str],
    *,
    namespace: str | None = None,
    server_side: bool = False,
) -> None:
    """Apply a YAML or JSON manifest to the cluster via kubectl.

    Parameters
    ----------
    manifest : str
        Manifest document passed on stdin.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.
    namespace : str, optional
        Default namespace for objects that do not set one.
    server_side : bool, default False
        Use server-side apply with the argo-lab field manager, so resubmitting
        identical content leaves the objects untouched.

    Raises
    ------
    ManifestApplyError
        If kubectl exits non-zero.

    """
    _apply(["-f", "-"], env, namespace=namespace, server_side=server_side, stdin=manifest)


def apply_manifest_url(
    url: str, env: dict[str, str], *, namespace: str | None = None
) -> None:
    """Apply a remote manifest set in one server-side submission.

    Large CRDs in upstream install bundles exceed the client-side
    last-applied annotation limit, so server-side apply is used with
    ``--force-conflicts`` to take ownership of fields on re-apply.

    Raises
    ------
    ManifestApplyError
        If kubectl exits non-zero.

    """
    _apply(["-f", url], env, namespace=namespace, server_side=True, force_conflicts=True)


def _apply(  # noqa: PLR0913
    source: list[str],
    env: dict[str, str],
    *,
    namespace: str | None,
    server_side: bool,
    force_conflicts: bool = False,
    stdin: str | None = None,
) -> None:
    cmd = ["kubectl", "apply"]
    if server_side:
        cmd += ["--server-side", f"--field-manager={FIELD_MANAGER}"]
    if force_conflicts:
        cmd.append("--force-conflicts")
    if namespace is not None:
        cmd.append(f"--namespace={namespace}")
    cmd += source
    try:
        # S603: kubectl via PATH is standard; manifest generated internally
        subprocess.run(  # noqa: S603
            cmd,
            input=stdin,
            text=True,
            check=True,
            env=env,
            timeout=_APPLY_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        target = source[-1] if source[-1] != "-" else "inline manifest"
        msg = f"Failed to apply {target}: {e}"
        raise ManifestApplyError(msg) from e


# =============================================================================
# Reads
# =============================================================================


def get_nodes(env: dict[str, str]) -> list[Node] | None:
    """Return all cluster nodes, or None if kubectl failed."""
    nodes = _get_typed(["nodes"], env, ObjectList[Node])
    return None if nodes is None else nodes.items


def get_deployment(name: str, namespace: str, env: dict[str, str]) -> Deployment | None:
    """Return a deployment, or None if it is missing or unreadable."""
    return _get_typed(["deployment", name, f"--namespace={namespace}"], env, Deployment)


def get_service(name: str, namespace: str, env: dict[str, str]) -> Service | None:
    """Return a service, or None if it is missing or unreadable."""
    return _get_typed(["service", name, f"--namespace={namespace}"], env, Service)


def get_pods(namespace: str, env: dict[str, str]) -> list[Pod] | None:
    """Return the pods in a namespace, or None if kubectl failed."""
    pods = _get_typed(["pods", f"--namespace={namespace}"], env, ObjectList[Pod])
    return None if pods is None else pods.items


def list_object_names(resource: str, namespace: str, env: dict[str, str]) -> list[str]:
    """Return the names of all ``resource`` objects in a namespace.

    An unknown resource type (for example a CRD that is not installed yet)
    yields an empty list.
    """
    objects = _get_typed(
        [resource, f"--namespace={namespace}"], env, ObjectList[NamedObject]
    )
    if objects is None:
        return []
    return [item.metadata.name for item in objects.items]


# =============================================================================
# Mutations
# =============================================================================


def _mutate(cmd: list[str], env: dict[str, str], failure: str) -> None:
    try:
        # S603: kubectl via PATH is standard; args from constants and Config
        subprocess.run(  # noqa: S603
            cmd,
            check=True,
            capture_output=True,
            text=True,
            env=env,
            timeout=_KUBECTL_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        stderr = getattr(e, "stderr", None) or ""
        msg = f"{failure}: {stderr.strip() or e}"
        raise PatchError(msg) from e


def patch_resource(  # noqa: PLR0913
    resource: str,
    name: str,
    namespace: str,
    patch: object,
    env: dict[str, str],
    *,
    patch_type: typ.Literal["json", "merge", "strategic"] = "strategic",
) -> None:
    """Patch a namespaced object.

    Parameters
    ----------
    resource : str
        Resource type, e.g. ``"deployment"`` or ``"service"``.
    name : str
        Object name.
    namespace : str
        Namespace containing the object.
    patch : object
        Patch document; serialised to compact JSON.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.
    patch_type : {"json", "merge", "strategic"}
        kubectl patch type.

    Raises
    ------
    PatchError
        If kubectl rejects the patch.

    """
    _mutate(
        [
            "kubectl",
            "patch",
            resource,
            name,
            f"--namespace={namespace}",
            f"--type={patch_type}",
            "-p",
            json.dumps(patch, separators=(",", ":")),
        ],
        env,
        f"Failed to patch {resource}/{name} in '{namespace}'",
    )


def rollout_restart(deployment: str, namespace: str, env: dict[str, str]) -> None:
    """Trigger a rolling restart of a deployment."""
    _mutate(
        [
            "kubectl",
            "rollout",
            "restart",
            f"deployment/{deployment}",
            f"--namespace={namespace}",
        ],
        env,
        f"Failed to restart deployment/{deployment} in '{namespace}'",
    )


def label_node(node: str, key: str, value: str, env: dict[str, str]) -> None:
    """Set a label on a node, overwriting any previous value."""
    _mutate(
        ["kubectl", "label", "node", node, f"{key}={value}", "--overwrite"],
        env,
        f"Failed to label node '{node}'",
    )


def rolebinding_exists(name: str, namespace: str, env: dict[str, str]) -> bool:
    """Check whether a role binding exists."""
    return _object_exists(["rolebinding", name, f"--namespace={namespace}"], env)


def create_rolebinding(
    name: str,
    namespace: str,
    *,
    clusterrole: str,
    serviceaccount: str,
    env: dict[str, str],
) -> None:
    """Create a role binding granting a cluster role to a service account.

    Creating a binding that already exists is an error; callers check with
    ``rolebinding_exists`` first.
    """
    _mutate(
        [
            "kubectl",
            "create",
            "rolebinding",
            name,
            f"--clusterrole={clusterrole}",
            f"--serviceaccount={serviceaccount}",
            f"--namespace={namespace}",
        ],
        env,
        f"Failed to create rolebinding '{name}' in '{namespace}'",
    )


# =============================================================================
# Secrets
# =============================================================================


def secret_exists(secret_name: str, namespace: str, env: dict[str, str]) -> bool:
    """Check whether a secret exists."""
    return _object_exists(["secret", secret_name, f"--namespace={namespace}"], env)


def read_secret_field(
    secret_name: str, field: str, namespace: str, env: dict[str, str]
) -> str:
    """Read and decode a field from a Kubernetes secret.

    Retrieves the specified field from a secret and decodes it from base64.
    Handles dotted field names (e.g., "ca.crt") correctly via quoted jsonpath.

    Parameters
    ----------
    secret_name : str
        Name of the Kubernetes secret.
    field : str
        Name of the field within the secret's data section.
    namespace : str
        Kubernetes namespace containing the secret.
    env : dict[str, str]
        Environment dict with KUBECONFIG set.

    Returns
    -------
    str
        The decoded UTF-8 string value of the secret field.

    Raises
    ------
    ValueError
        If field is empty, contains invalid characters, or the secret field
        value is empty or missing.
    subprocess.CalledProcessError
        If the secret cannot be read.

    """
    if not field:
        msg = "field cannot be empty"
        raise ValueError(msg)
    if not _SECRET_KEY_PATTERN.match(field):
        msg = (
            f"field '{field}' contains invalid characters; "
            "only alphanumeric, dot, underscore, and hyphen are allowed"
        )
        raise ValueError(msg)

    # Quote the field name to support dotted keys like "ca.crt"
    jsonpath = f"jsonpath={{.data['{field}']}}"

    # S603/S607: kubectl via PATH is standard; args from Config or hardcoded
    result = subprocess.run(  # noqa: S603
        [  # noqa: S607
            "kubectl",
            "get",
            "secret",
            secret_name,
            f"--namespace={namespace}",
            "-o",
            jsonpath,
        ],
        capture_output=True,
        text=True,
        check=True,
        env=env,
        timeout=_KUBECTL_TIMEOUT,
    )

    output = result.stdout.strip()
    if not output:
        msg = (
            f"Secret '{secret_name}' field '{field}' is empty or missing "
            f"in namespace '{namespace}'"
        )
        raise ValueError(msg)

    return b64decode_k8s_secret_field(output)
