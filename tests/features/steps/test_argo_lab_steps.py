"""Behavioural coverage for the argo-lab environment lifecycle."""

from __future__ import annotations

import io
import typing as typ
from contextlib import redirect_stdout

import pytest
from pytest_bdd import given, parsers, scenario, then, when

from argo_lab.applications import ARGOCD
from argo_lab.cli import app

if typ.TYPE_CHECKING:
    from pathlib import Path

    from tests.fake_cluster import FakeCluster


class ArgoLabContext(typ.TypedDict, total=False):
    """Shared mutable scenario state."""

    stdout: str
    exit_code: int


# Scenario wrappers
@scenario("../argo_lab.feature", "Create a lab and install Argo CD")
def test_create_lab_and_install_argocd() -> None:
    """Wrap the pytest-bdd scenario for a fresh lab with Argo CD."""


@scenario("../argo_lab.feature", "Existing cluster is not destroyed without --force")
def test_existing_cluster_not_destroyed() -> None:
    """Wrap the pytest-bdd scenario for the default conflict policy."""


@scenario("../argo_lab.feature", "Expose both applications through ingress")
def test_expose_through_ingress() -> None:
    """Wrap the pytest-bdd scenario for ingress exposure."""


@scenario("../argo_lab.feature", "Destroy the lab")
def test_destroy_lab() -> None:
    """Wrap the pytest-bdd scenario for teardown."""


@pytest.fixture
def argo_lab_context() -> ArgoLabContext:
    """Provide shared context for the BDD steps."""
    return {"stdout": "", "exit_code": -1}


# Background step
@given("the CLI tools docker, kind and kubectl are available")
def given_tools_available(fake_cluster: FakeCluster) -> None:
    """The fake cluster stands in for every CLI tool."""


# Given steps
@given(parsers.parse("no kind cluster named {cluster_name} exists"))
def given_no_cluster_exists(fake_cluster: FakeCluster, cluster_name: str) -> None:
    """Ensure the named cluster is absent."""
    assert cluster_name not in fake_cluster.clusters


@given(parsers.parse("a kind cluster named {cluster_name} exists"))
def given_cluster_exists(fake_cluster: FakeCluster, cluster_name: str) -> None:
    """Register a running cluster with the fake."""
    fake_cluster.add_kind_cluster(cluster_name)


def _run_command(ctx: ArgoLabContext, tmp_path: Path, args: list[str]) -> None:
    """Execute a CLI command and capture its output and exit code."""
    captured = io.StringIO()
    with redirect_stdout(captured):
        try:
            exit_code = app([*args, f"--kubeconfig-dir={tmp_path / 'kube'}"])
            ctx["exit_code"] = exit_code if exit_code is not None else 0
        except SystemExit as e:
            ctx["exit_code"] = e.code if isinstance(e.code, int) else 1

    ctx["stdout"] = ctx.get("stdout", "") + captured.getvalue()


# When steps
@when(parsers.re(r"I run argo-lab (?P<command>[a-z-]+)"))
def when_run_command(
    argo_lab_context: ArgoLabContext, tmp_path: Path, command: str
) -> None:
    """Execute a single argo-lab subcommand."""
    _run_command(argo_lab_context, tmp_path, [command])


@when(parsers.parse("I run argo-lab expose with mode {mode}"))
def when_run_expose(argo_lab_context: ArgoLabContext, tmp_path: Path, mode: str) -> None:
    """Execute the expose command with an explicit mode."""
    _run_command(argo_lab_context, tmp_path, ["expose", f"--mode={mode}"])


# Then steps
@then(parsers.parse("the exit code is {code:d}"))
def then_exit_code(argo_lab_context: ArgoLabContext, code: int) -> None:
    """Verify the exit code matches expected."""
    assert argo_lab_context["exit_code"] == code, f"Expected exit code {code}"


@then("the Argo CD deployments became available in order")
def then_deployments_in_order(fake_cluster: FakeCluster) -> None:
    """Critical deployments were checked in their declared order."""
    checked = [
        call[3]
        for call in fake_cluster.commands("kubectl", "get", "deployment")
        if call[3] in ARGOCD.critical_deployments
    ]
    assert tuple(dict.fromkeys(checked)) == ARGOCD.critical_deployments


@then(parsers.parse("the environment reports {count:d} unhealthy pods"))
def then_unhealthy_pods(
    argo_lab_context: ArgoLabContext, tmp_path: Path, count: int
) -> None:
    """Status output shows the expected number of unhealthy pods."""
    argo_lab_context["stdout"] = ""
    _run_command(argo_lab_context, tmp_path, ["status"])
    assert argo_lab_context["exit_code"] == 0
    assert argo_lab_context["stdout"].count("unhealthy:") == count


@then("the existing cluster is not deleted")
def then_cluster_not_deleted(fake_cluster: FakeCluster) -> None:
    """Verify that kind delete cluster was not called."""
    assert not fake_cluster.commands("kind", "delete"), "Expected no kind delete"


@then("every node is labelled ingress-ready")
def then_nodes_labelled(fake_cluster: FakeCluster) -> None:
    """All cluster nodes carry ingress-ready=true."""
    assert fake_cluster.node_labels
    assert all(
        labels.get("ingress-ready") == "true"
        for labels in fake_cluster.node_labels.values()
    )


@then("the ingress URLs are printed to stdout")
def then_ingress_urls_printed(argo_lab_context: ArgoLabContext) -> None:
    """Host-based URLs for both applications appear in stdout."""
    stdout = argo_lab_context["stdout"]
    assert "http://argocd.localtest.me/" in stdout
    assert "http://workflows.localtest.me/" in stdout


@then("the kind cluster is deleted")
def then_cluster_deleted(fake_cluster: FakeCluster) -> None:
    """Verify the kind cluster was deleted."""
    assert fake_cluster.commands("kind", "delete", "cluster"), "Expected kind delete"
    assert fake_cluster.clusters == {}
