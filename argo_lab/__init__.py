"""Local Kubernetes lab for Argo CD and Argo Workflows.

This package provisions a kind or minikube cluster, installs Argo CD and
Argo Workflows onto it, and exposes them through NodePort or Ingress. The
primary entrypoints are:

- create_environment: Create (or reuse) a cluster and wait for its nodes
- open_environment: Attach to an existing cluster
- install: Install an application into a ready environment
- expose: Expose installed applications via NodePort or Ingress
- environment_snapshot: Read nodes, pod health and the admin credential
- teardown_environment: Delete the cluster

For lower-level operations, import directly from submodules:

- argo_lab.kind / argo_lab.minikube: backend drivers
- argo_lab.k8s: kubectl wrappers
- argo_lab.readiness: bounded polling
- argo_lab.installer: application install steps
- argo_lab.exposure: NodePort and Ingress exposure
- argo_lab.reporter: environment snapshots

"""

from __future__ import annotations

from argo_lab.applications import ARGO_WORKFLOWS, ARGOCD, Application
from argo_lab.config import BackendKind, Config
from argo_lab.exposure import ExposureMode
from argo_lab.orchestration import (
    ConflictPolicy,
    Environment,
    EnvironmentState,
    create_environment,
    environment_snapshot,
    expose,
    install,
    open_environment,
    teardown_environment,
)
from argo_lab.validation import (
    ArgoLabError,
    ClusterExistsError,
    NotFoundError,
    ReadinessTimeoutError,
)

# Helpers remain importable via their submodules (e.g., argo_lab.k8s.get_nodes)
__all__ = [
    "ARGOCD",
    "ARGO_WORKFLOWS",
    "Application",
    "ArgoLabError",
    "BackendKind",
    "ClusterExistsError",
    "Config",
    "ConflictPolicy",
    "Environment",
    "EnvironmentState",
    "ExposureMode",
    "NotFoundError",
    "ReadinessTimeoutError",
    "create_environment",
    "environment_snapshot",
    "expose",
    "install",
    "open_environment",
    "teardown_environment",
]
