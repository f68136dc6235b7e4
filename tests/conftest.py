"""Shared fixtures for argo-lab tests.

The cmd-mox plugin is registered globally via pyproject.toml.
"""

from __future__ import annotations

import dataclasses
import os
import typing as typ

import pytest

from argo_lab.config import Config
from tests.fake_cluster import FakeCluster

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def test_env(tmp_path: Path) -> dict[str, str]:
    """Create a test environment with a temporary KUBECONFIG path.

    Returns a copy of the current environment with KUBECONFIG pointing to
    a temporary file, allowing cmd-mox shims to work properly during testing.
    """
    env = dict(os.environ)
    env["KUBECONFIG"] = str(tmp_path / "kubeconfig-test.yaml")
    return env


@dataclasses.dataclass(slots=True)
class FakeClock:
    """Deterministic ``Clock``: ``sleep`` advances ``now`` instantly."""

    now: float = 0.0
    sleeps: list[float] = dataclasses.field(default_factory=list)

    def monotonic(self) -> float:
        """Return the simulated time."""
        return self.now

    def sleep(self, seconds: float) -> None:
        """Advance the simulated time."""
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def fake_cluster(monkeypatch: pytest.MonkeyPatch) -> FakeCluster:
    """Replace ``subprocess.run`` and ``shutil.which`` with a fake cluster."""
    cluster = FakeCluster()
    monkeypatch.setattr("subprocess.run", cluster)
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")
    return cluster


@pytest.fixture
def lab_config(tmp_path: Path) -> Config:
    """Config with a temporary kubeconfig directory and short poll interval."""
    return Config(
        cluster_name="argocd-lab",
        kubeconfig_dir=tmp_path / "kube",
        poll_interval=0.5,
    )
