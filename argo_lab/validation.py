"""Error hierarchy and validation helpers for argo-lab.

Every failure the orchestrator can surface derives from ``ArgoLabError`` so
the CLI can report a human-readable cause and exit non-zero. Subprocess
failures are wrapped in the module that issued the command; nothing here is
retried.

Custom Exceptions
-----------------
- ``ArgoLabError``: Base exception for all package errors
- ``ExecutableNotFoundError``: A required CLI tool is missing from PATH
- ``BackendUnavailableError``: The cluster backend cannot be reached or used
- ``ClusterUnreachableError``: kubectl could not be run against the cluster
- ``TopologyInvalidError``: A cluster topology fails validation
- ``ClusterExistsError``: Creation was refused because the cluster exists
- ``NotFoundError``: The named environment does not exist
- ``EnvironmentNotReadyError``: An operation ran before the cluster was ready
- ``NamespaceCreateError``: A namespace could not be created
- ``ManifestApplyError``: A manifest submission was rejected
- ``ReadinessTimeoutError``: A readiness condition missed its deadline
- ``PatchError``: A patch, label, restart or binding was rejected
- ``ServiceNotFoundError``: An exposure target service does not exist
- ``SecretDecodeError``: A secret field could not be decoded

Examples
--------
Verify required executables before proceeding:

    require_exe("kind")
    require_exe("kubectl")

Decode a secret value retrieved from Kubernetes:

    password = b64decode_k8s_secret_field("aHVudGVyMg==")

"""

from __future__ import annotations

import base64
import shutil
import subprocess

_MIN_PORT = 1
_MAX_PORT = 65535


class ArgoLabError(Exception):
    """Base exception for all argo_lab package errors."""


class ExecutableNotFoundError(ArgoLabError):
    """Required CLI tool is not installed."""


class BackendUnavailableError(ArgoLabError):
    """The cluster backend could not be used."""


class ClusterUnreachableError(ArgoLabError):
    """kubectl could not be started or did not answer in time."""


class TopologyInvalidError(ArgoLabError):
    """A cluster topology specification is invalid."""


class ClusterExistsError(ArgoLabError):
    """A cluster with the requested name already exists."""

    def __init__(self, name: str) -> None:
        """Record the conflicting cluster name."""
        self.name = name
        super().__init__(
            f"Cluster '{name}' already exists. Re-run with --force to destroy "
            f"and recreate it (all state is lost), or --reuse to keep it."
        )


class NotFoundError(ArgoLabError):
    """The named environment does not exist."""


class EnvironmentNotReadyError(ArgoLabError):
    """An operation required a ready environment."""


class NamespaceCreateError(ArgoLabError):
    """A namespace could not be created."""


class ManifestApplyError(ArgoLabError):
    """A manifest could not be applied to the cluster."""


class ReadinessTimeoutError(ArgoLabError):
    """A readiness condition was not met before its deadline."""

    def __init__(self, description: str, timeout: float) -> None:
        """Record what was awaited and for how long."""
        self.description = description
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for {description}")


class PatchError(ArgoLabError):
    """A patch, label, restart or role binding was rejected by the cluster."""


class ServiceNotFoundError(ArgoLabError):
    """A service targeted for exposure does not exist."""

    def __init__(self, service: str, namespace: str) -> None:
        """Record the missing service."""
        self.service = service
        self.namespace = namespace
        super().__init__(f"Service '{service}' not found in namespace '{namespace}'")


class SecretDecodeError(ArgoLabError):
    """Failed to decode a Kubernetes secret field."""


def require_exe(name: str) -> None:
    """Verify a CLI tool is available in PATH.

    Parameters
    ----------
    name : str
        Name of the executable to check for.

    Raises
    ------
    ExecutableNotFoundError
        If the executable is not found in PATH.

    """
    if shutil.which(name) is None:
        msg = f"Required executable '{name}' not found in PATH"
        raise ExecutableNotFoundError(msg)


def require_daemon(runtime: str, *, timeout: float = 60) -> None:
    """Verify a container runtime daemon answers ``<runtime> info``.

    Raises
    ------
    BackendUnavailableError
        If the command fails, cannot be started, or does not finish within
        ``timeout`` seconds.

    """
    try:
        # S603: runtime is a fixed driver name, never user-supplied shell text
        result = subprocess.run(  # noqa: S603
            [runtime, "info"],
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        msg = f"'{runtime} info' did not respond within {timeout:g} seconds"
        raise BackendUnavailableError(msg) from e
    except OSError as e:
        msg = f"'{runtime} info' could not be run: {e}"
        raise BackendUnavailableError(msg) from e
    if result.returncode != 0:
        title = "Docker" if runtime == "docker" else runtime.capitalize()
        msg = f"{title} is not running. Start the {runtime} daemon and retry."
        raise BackendUnavailableError(msg)


def ensure_valid_port(port: int, *, what: str = "port") -> None:
    """Validate a TCP port number.

    Raises
    ------
    TopologyInvalidError
        If the port is outside 1-65535.

    """
    if not _MIN_PORT <= port <= _MAX_PORT:
        msg = f"{what} must be between {_MIN_PORT} and {_MAX_PORT}, got {port}"
        raise TopologyInvalidError(msg)


def b64decode_k8s_secret_field(b64_text: str) -> str:
    """Decode a base64-encoded Kubernetes secret value.

    Parameters
    ----------
    b64_text : str
        Base64-encoded string from a Kubernetes secret.

    Returns
    -------
    str
        The decoded UTF-8 string.

    Raises
    ------
    SecretDecodeError
        If the input is not valid base64 or cannot be decoded as UTF-8 text.

    """
    try:
        return base64.b64decode(b64_text, validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        msg = f"Failed to decode secret field: {e}"
        raise SecretDecodeError(msg) from e
