"""Tests for NodePort and Ingress exposure."""

from __future__ import annotations

import io
import typing as typ

import pytest
from ruamel.yaml import YAML

from argo_lab.applications import ARGO_WORKFLOWS, ARGOCD
from argo_lab.backend import ClusterHandle
from argo_lab.config import BackendKind
from argo_lab.exposure import (
    ExposureMode,
    ExposureRule,
    apply_ingress_rules,
    ingress_rule_for,
    install_ingress_controller,
    label_nodes_ingress_ready,
    render_ingress_manifest,
    set_cluster_ip,
    set_node_port,
    wait_for_ingress_controller,
)
from argo_lab.installer import install_application
from argo_lab.kind import KindBackend
from argo_lab.validation import ReadinessTimeoutError, ServiceNotFoundError

if typ.TYPE_CHECKING:
    from tests.conftest import FakeClock
    from tests.fake_cluster import FakeCluster


@pytest.fixture
def installed(
    fake_cluster: FakeCluster, test_env: dict[str, str], clock: FakeClock
) -> FakeCluster:
    """A kind cluster with both applications installed."""
    fake_cluster.add_kind_cluster("argocd-lab")
    install_application(ARGOCD, test_env, clock=clock)
    install_application(ARGO_WORKFLOWS, test_env, clock=clock)
    return fake_cluster


class TestNodePort:
    """Tests for fixed NodePort exposure."""

    def test_fixed_ports(self, installed: FakeCluster, test_env: dict[str, str]) -> None:
        """Argo CD gets 30080/30443 and Argo Workflows 32746, every time."""
        assert set_node_port(ARGOCD, test_env) == (30080, 30443)
        assert set_node_port(ARGO_WORKFLOWS, test_env) == (32746,)
        assert set_node_port(ARGOCD, test_env) == (30080, 30443)

        service = installed.services[("argocd", "argocd-server")]
        assert service["type"] == "NodePort"
        assert [p["nodePort"] for p in service["ports"]] == [30080, 30443]
        assert [p["targetPort"] for p in service["ports"]] == [8080, 8080]

    def test_cluster_ip_drops_node_ports(
        self, installed: FakeCluster, test_env: dict[str, str]
    ) -> None:
        """Switching back to ClusterIP removes the node port fields."""
        set_node_port(ARGO_WORKFLOWS, test_env)
        set_cluster_ip(ARGO_WORKFLOWS, test_env)

        service = installed.services[("argo", "argo-server")]
        assert service["type"] == "ClusterIP"
        assert service["ports"] == [{"port": 2746, "targetPort": 2746, "name": "web"}]

    def test_missing_service(
        self, fake_cluster: FakeCluster, test_env: dict[str, str]
    ) -> None:
        """Exposing an uninstalled application raises ServiceNotFoundError."""
        fake_cluster.add_kind_cluster("argocd-lab")

        with pytest.raises(ServiceNotFoundError, match="argocd-server"):
            set_node_port(ARGOCD, test_env)
        assert not fake_cluster.commands("kubectl", "patch")


class TestIngress:
    """Tests for ingress labeling, controller wait and rules."""

    def test_labeling_twice_reports_same_nodes(
        self, installed: FakeCluster, test_env: dict[str, str]
    ) -> None:
        """Relabelling is a no-op and reports the same node set."""
        nodes = tuple(installed.clusters["argocd-lab"])

        first = label_nodes_ingress_ready(nodes, test_env)
        second = label_nodes_ingress_ready(nodes, test_env)

        assert first == second == nodes
        assert all(
            labels == {"ingress-ready": "true"} for labels in installed.node_labels.values()
        )

    def test_controller_waits_for_labels(
        self, installed: FakeCluster, test_env: dict[str, str], clock: FakeClock
    ) -> None:
        """The kind controller only becomes available on a labelled node."""
        handle = ClusterHandle("argocd-lab", BackendKind.KIND, "kind-argocd-lab")
        install_ingress_controller(KindBackend(), handle, test_env)

        with pytest.raises(ReadinessTimeoutError, match="ingress-nginx-controller"):
            wait_for_ingress_controller(test_env, 4, interval=2, clock=clock)

        label_nodes_ingress_ready(installed.clusters["argocd-lab"], test_env)
        wait_for_ingress_controller(test_env, 4, interval=2, clock=clock)

    def test_render_is_deterministic_list(self) -> None:
        """Rules render to one List with an Ingress per application."""
        rules = [ingress_rule_for(ARGOCD), ingress_rule_for(ARGO_WORKFLOWS)]

        text = render_ingress_manifest(rules)
        document = YAML(typ="safe").load(io.StringIO(text))

        assert text == render_ingress_manifest(rules)
        assert document["kind"] == "List"
        argocd, workflows = document["items"]
        assert argocd["metadata"]["name"] == "argocd-ingress"
        assert argocd["metadata"]["namespace"] == "argocd"
        assert argocd["spec"]["ingressClassName"] == "nginx"
        rule = argocd["spec"]["rules"][0]
        assert rule["host"] == "argocd.localtest.me"
        assert rule["http"]["paths"][0]["backend"]["service"] == {
            "name": "argocd-server",
            "port": {"number": 80},
        }
        assert "annotations" not in argocd["metadata"]
        assert workflows["metadata"]["annotations"] == {
            "nginx.ingress.kubernetes.io/backend-protocol": "HTTPS"
        }

    def test_resubmission_creates_no_duplicates(
        self, installed: FakeCluster, test_env: dict[str, str]
    ) -> None:
        """Applying the same rules twice leaves one ingress per application."""
        rules = [ingress_rule_for(ARGOCD), ingress_rule_for(ARGO_WORKFLOWS)]

        apply_ingress_rules(rules, test_env)
        apply_ingress_rules(rules, test_env)

        assert sorted(installed.ingresses) == [
            ("argo", "workflows-ingress"),
            ("argocd", "argocd-ingress"),
        ]
        submitted = [
            stdin for stdin in installed.inputs if stdin and "kind: Ingress" in stdin
        ]
        assert len(submitted) == 2
        assert submitted[0] == submitted[1]

    def test_rules_require_existing_services(
        self, fake_cluster: FakeCluster, test_env: dict[str, str]
    ) -> None:
        """Nothing is submitted if a backend service is missing."""
        fake_cluster.add_kind_cluster("argocd-lab")

        with pytest.raises(ServiceNotFoundError):
            apply_ingress_rules([ingress_rule_for(ARGOCD)], test_env)
        assert not fake_cluster.commands("kubectl", "apply")

    def test_rejects_node_port_rules(self, test_env: dict[str, str]) -> None:
        """Only ingress-mode rules with host rules are accepted."""
        rule = ExposureRule(application=ARGOCD, mode=ExposureMode.NODE_PORT)

        with pytest.raises(ValueError, match="expected ingress rule"):
            apply_ingress_rules([rule], test_env)
