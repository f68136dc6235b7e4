"""minikube cluster lifecycle operations.

A minikube environment is a named profile with a node count and per-node
resource requests. Profiles are discovered through ``minikube profile list
-o json``; the kubeconfig context for a profile is written into the
environment's dedicated kubeconfig file with ``minikube update-context``.
Ingress is provided by minikube's ``ingress`` addon.
"""

from __future__ import annotations

import json
import os
import re
import subprocess
import typing as typ

from argo_lab.backend import Absent, AlreadyExists, ClusterHandle, kubeconfig_path
from argo_lab.config import BackendKind, MinikubeTopology
from argo_lab.logging import get_logger, log_info
from argo_lab.validation import (
    BackendUnavailableError,
    NotFoundError,
    TopologyInvalidError,
    require_daemon,
    require_exe,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from argo_lab.backend import ClusterPresence
    from argo_lab.config import Topology

logger = get_logger(__name__)

_MINIKUBE_SUBPROCESS_TIMEOUT = 60
_MINIKUBE_START_TIMEOUT = 900
_MINIKUBE_DELETE_TIMEOUT = 300

_MIN_CPUS = 2
_MIN_MEMORY_MB = 1800
_DISK_SIZE_PATTERN = re.compile(r"^[1-9][0-9]*[mg]$")
_CONTAINER_DRIVERS = frozenset({"docker", "podman"})


def validate_topology(topology: MinikubeTopology) -> None:
    """Validate minikube resource requests.

    Raises:
        TopologyInvalidError: If any request is below minikube's minimums or
            the disk size is malformed.

    """
    if topology.nodes < 1:
        msg = f"nodes must be >= 1, got {topology.nodes}"
        raise TopologyInvalidError(msg)
    if topology.cpus < _MIN_CPUS:
        msg = f"cpus must be >= {_MIN_CPUS}, got {topology.cpus}"
        raise TopologyInvalidError(msg)
    if topology.memory_mb < _MIN_MEMORY_MB:
        msg = f"memory_mb must be >= {_MIN_MEMORY_MB}, got {topology.memory_mb}"
        raise TopologyInvalidError(msg)
    if not _DISK_SIZE_PATTERN.match(topology.disk_size):
        msg = f"disk_size must look like '20g' or '20000m', got {topology.disk_size!r}"
        raise TopologyInvalidError(msg)
    if not topology.driver:
        msg = "driver cannot be empty"
        raise TopologyInvalidError(msg)


def _run_minikube(
    args: list[str],
    *,
    timeout: float = _MINIKUBE_SUBPROCESS_TIMEOUT,
    env: dict[str, str] | None = None,
) -> str:
    """Run a minikube command and return stdout.

    Raises:
        BackendUnavailableError: If the command fails or times out.

    """
    try:
        result = subprocess.run(  # noqa: S603
            # minikube is expected on PATH; shell=False mitigates injection
            ["minikube", *args],  # noqa: S607
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired as e:
        msg = f"minikube {' '.join(args)} timed out after {timeout} seconds"
        raise BackendUnavailableError(msg) from e
    except (OSError, subprocess.CalledProcessError) as e:
        stderr = getattr(e, "stderr", None) or ""
        msg = f"minikube {' '.join(args)} failed: {stderr.strip() or e}"
        raise BackendUnavailableError(msg) from e
    return result.stdout


def _profile_names(payload: str) -> list[str]:
    """Extract profile names from ``minikube profile list -o json`` output."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, dict):
        return []
    names: list[str] = []
    for section in ("valid", "invalid"):
        for profile in data.get(section) or []:
            name = profile.get("Name") if isinstance(profile, dict) else None
            if name:
                names.append(name)
    return names


class MinikubeBackend:
    """Backend driver for minikube profiles."""

    kind = BackendKind.MINIKUBE

    def __init__(self, driver: str | None = None) -> None:
        """Optionally pin the driver checked by ``check_prerequisites``."""
        self.driver = driver

    def check_prerequisites(self) -> None:
        """Verify minikube, kubectl and, for container drivers, a running daemon.

        Raises
        ------
        ExecutableNotFoundError
            If a required tool is missing.
        BackendUnavailableError
            If the docker or podman daemon does not respond.

        """
        for exe in ("minikube", "kubectl"):
            require_exe(exe)
        runtime = self.driver or "docker"
        if runtime in _CONTAINER_DRIVERS:
            require_exe(runtime)
            require_daemon(runtime, timeout=_MINIKUBE_SUBPROCESS_TIMEOUT)

    def _handle(self, name: str) -> ClusterHandle:
        return ClusterHandle(name=name, kind=self.kind, context=name)

    def list_profiles(self) -> list[str]:
        """Return the names of all minikube profiles.

        minikube exits non-zero when no profile exists yet, which is reported
        as an empty list.
        """
        try:
            result = subprocess.run(
                ["minikube", "profile", "list", "-o", "json"],  # noqa: S607
                capture_output=True,
                text=True,
                timeout=_MINIKUBE_SUBPROCESS_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            msg = f"minikube profile list failed: {e}"
            raise BackendUnavailableError(msg) from e
        return _profile_names(result.stdout)

    def exists(self, name: str) -> bool:
        """Check if a minikube profile already exists."""
        return name in self.list_profiles()

    def probe(self, name: str) -> ClusterPresence:
        """Report whether the profile exists as a tagged result."""
        if self.exists(name):
            return AlreadyExists(self._handle(name))
        return Absent()

    def create(self, name: str, topology: Topology) -> ClusterHandle:
        """Start a minikube profile with the requested resources.

        Raises:
            TopologyInvalidError: If the topology is not a valid
                ``MinikubeTopology``.
            BackendUnavailableError: If ``minikube start`` fails.

        """
        if not isinstance(topology, MinikubeTopology):
            msg = (
                "minikube backend needs a MinikubeTopology, "
                f"got {type(topology).__name__}"
            )
            raise TopologyInvalidError(msg)
        validate_topology(topology)

        log_info(
            logger,
            "Starting minikube profile '%s' (%d node(s), %d CPUs, %d MB)...",
            name,
            topology.nodes,
            topology.cpus,
            topology.memory_mb,
        )
        _run_minikube(
            [
                "start",
                "-p",
                name,
                "--nodes",
                str(topology.nodes),
                "--cpus",
                str(topology.cpus),
                "--memory",
                str(topology.memory_mb),
                "--disk-size",
                topology.disk_size,
                "--driver",
                topology.driver,
            ],
            timeout=_MINIKUBE_START_TIMEOUT,
        )
        return self._handle(name)

    def destroy(self, name: str) -> None:
        """Delete a minikube profile.

        Raises:
            NotFoundError: If no profile with this name exists.

        """
        if not self.exists(name):
            msg = f"minikube profile '{name}' does not exist"
            raise NotFoundError(msg)
        log_info(logger, "Deleting minikube profile '%s'...", name)
        _run_minikube(["delete", "-p", name], timeout=_MINIKUBE_DELETE_TIMEOUT)

    def list_nodes(self, name: str) -> tuple[str, ...]:
        """Return node names; ``minikube node list`` prints ``name<TAB>ip``."""
        output = _run_minikube(["node", "list", "-p", name])
        return tuple(
            line.split()[0] for line in output.splitlines() if line.strip()
        )

    def write_kubeconfig(self, handle: ClusterHandle, kubeconfig_dir: Path) -> Path:
        """Write the profile's context into the environment's kubeconfig."""
        path = kubeconfig_path(kubeconfig_dir, handle.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        env = dict(os.environ)
        env["KUBECONFIG"] = str(path)
        _run_minikube(["update-context", "-p", handle.name], env=env)
        if not path.exists():
            msg = f"Kubeconfig file was not created at {path}"
            raise BackendUnavailableError(msg)
        return path

    def node_address(self, name: str) -> str:
        """Return the minikube node IP where NodePorts are reachable."""
        return _run_minikube(["ip", "-p", name]).strip()

    def prepare_ingress(self, handle: ClusterHandle, env: dict[str, str]) -> None:
        """Enable minikube's ingress addon."""
        log_info(logger, "Enabling ingress addon for minikube profile '%s'...", handle.name)
        _run_minikube(["addons", "enable", "ingress", "-p", handle.name], env=env)
