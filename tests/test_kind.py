"""Unit tests for the kind backend driver."""

from __future__ import annotations

import io
import typing as typ

import pytest
from ruamel.yaml import YAML

from argo_lab.backend import Absent, AlreadyExists, ClusterHandle
from argo_lab.config import (
    BackendKind,
    HostPortMapping,
    KindNode,
    KindTopology,
    MinikubeTopology,
    NodeRole,
)
from argo_lab.kind import (
    KindBackend,
    ingress_node,
    node_names,
    render_cluster_config,
    validate_topology,
)
from argo_lab.validation import (
    BackendUnavailableError,
    ExecutableNotFoundError,
    NotFoundError,
    TopologyInvalidError,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from cmd_mox import CmdMox

    from tests.fake_cluster import FakeCluster


class TestRenderClusterConfig:
    """Tests for the kind Cluster config document."""

    def test_default_topology(self) -> None:
        """Default layout has a control-plane with published ports and 2 workers."""
        config = YAML(typ="safe").load(io.StringIO(render_cluster_config(KindTopology())))

        assert config["kind"] == "Cluster"
        assert config["apiVersion"] == "kind.x-k8s.io/v1alpha4"
        roles = [node["role"] for node in config["nodes"]]
        assert roles == ["control-plane", "worker", "worker"]
        host_ports = [m["hostPort"] for m in config["nodes"][0]["extraPortMappings"]]
        assert host_ports == [30080, 30443, 32746, 80, 443]
        assert all(
            m["listenAddress"] == "127.0.0.1"
            for m in config["nodes"][0]["extraPortMappings"]
        )
        assert "extraPortMappings" not in config["nodes"][1]

    def test_rendering_is_deterministic(self) -> None:
        """The same topology always renders identical text."""
        assert render_cluster_config(KindTopology()) == render_cluster_config(
            KindTopology()
        )


class TestValidateTopology:
    """Tests for kind topology validation."""

    def test_default_is_valid(self) -> None:
        """The default topology passes validation."""
        validate_topology(KindTopology())

    def test_requires_control_plane(self) -> None:
        """A worker-only layout is rejected."""
        topology = KindTopology(nodes=(KindNode(NodeRole.WORKER),))
        with pytest.raises(TopologyInvalidError, match="control-plane"):
            validate_topology(topology)

    def test_rejects_duplicate_host_ports(self) -> None:
        """The same host port cannot be published twice."""
        mapping = HostPortMapping(30080, 30080)
        topology = KindTopology(
            nodes=(
                KindNode(NodeRole.CONTROL_PLANE, (mapping,)),
                KindNode(NodeRole.WORKER, (mapping,)),
            )
        )
        with pytest.raises(TopologyInvalidError, match="more than once"):
            validate_topology(topology)

    def test_rejects_out_of_range_port(self) -> None:
        """Host ports must be valid TCP ports."""
        topology = KindTopology(
            nodes=(KindNode(NodeRole.CONTROL_PLANE, (HostPortMapping(80, 70000),)),)
        )
        with pytest.raises(TopologyInvalidError, match="host port"):
            validate_topology(topology)

    def test_create_rejects_minikube_topology(self) -> None:
        """create() refuses a topology for the other backend before running kind."""
        with pytest.raises(TopologyInvalidError, match="KindTopology"):
            KindBackend().create("argocd-lab", MinikubeTopology())


class TestKindPresence:
    """Tests for exists/probe using cmd-mox."""

    def test_probe_reports_existing_cluster(self, cmd_mox: CmdMox) -> None:
        """probe returns AlreadyExists with the kind context name."""
        cmd_mox.mock("kind").with_args("get", "clusters").returns(
            exit_code=0, stdout="argocd-lab\nother\n"
        )

        presence = KindBackend().probe("argocd-lab")

        assert presence == AlreadyExists(
            ClusterHandle("argocd-lab", BackendKind.KIND, "kind-argocd-lab")
        )

    def test_probe_reports_absent(self, cmd_mox: CmdMox) -> None:
        """probe returns Absent when only other clusters exist."""
        cmd_mox.mock("kind").with_args("get", "clusters").returns(
            exit_code=0, stdout="other\n"
        )

        assert KindBackend().probe("argocd-lab") == Absent()

    def test_list_failure_raises(self, cmd_mox: CmdMox) -> None:
        """A failing kind query surfaces as BackendUnavailableError."""
        cmd_mox.mock("kind").with_args("get", "clusters").returns(
            exit_code=1, stderr="Cannot connect to the Docker daemon"
        )

        with pytest.raises(BackendUnavailableError):
            KindBackend().exists("argocd-lab")


class TestKindLifecycle:
    """Tests for create/destroy/list_nodes using cmd-mox."""

    def test_create_invokes_kind_with_config_on_stdin(self, cmd_mox: CmdMox) -> None:
        """create runs kind create cluster with --config - and --wait."""
        cmd_mox.mock("kind").with_args(
            "create",
            "cluster",
            "--name",
            "argocd-lab",
            "--config",
            "-",
            "--wait",
            "300s",
        ).returns(exit_code=0)

        handle = KindBackend().create("argocd-lab", KindTopology())

        assert handle == ClusterHandle("argocd-lab", BackendKind.KIND, "kind-argocd-lab")

    def test_create_failure_raises(self, cmd_mox: CmdMox) -> None:
        """A failing kind create surfaces as BackendUnavailableError."""
        cmd_mox.mock("kind").with_args(
            "create",
            "cluster",
            "--name",
            "argocd-lab",
            "--config",
            "-",
            "--wait",
            "300s",
        ).returns(exit_code=1, stderr="boom")

        with pytest.raises(BackendUnavailableError, match="argocd-lab"):
            KindBackend().create("argocd-lab", KindTopology())

    def test_destroy_missing_cluster_raises(self, cmd_mox: CmdMox) -> None:
        """destroy refuses to delete a cluster that does not exist."""
        cmd_mox.mock("kind").with_args("get", "clusters").returns(
            exit_code=0, stdout=""
        )

        with pytest.raises(NotFoundError, match="argocd-lab"):
            KindBackend().destroy("argocd-lab")

    def test_list_nodes_preserves_order(self, cmd_mox: CmdMox) -> None:
        """Node names are returned in the order kind reports them."""
        cmd_mox.mock("kind").with_args("get", "nodes", "--name", "argocd-lab").returns(
            exit_code=0,
            stdout="argocd-lab-control-plane\nargocd-lab-worker\nargocd-lab-worker2\n",
        )

        assert KindBackend().list_nodes("argocd-lab") == (
            "argocd-lab-control-plane",
            "argocd-lab-worker",
            "argocd-lab-worker2",
        )


class TestKindEnvironment:
    """Tests that need files written or several commands: use the fake cluster."""

    def test_write_kubeconfig_creates_file(
        self, fake_cluster: FakeCluster, tmp_path: Path
    ) -> None:
        """write_kubeconfig exports into <dir>/<name>.yaml."""
        fake_cluster.add_kind_cluster("argocd-lab")
        backend = KindBackend()
        handle = ClusterHandle("argocd-lab", BackendKind.KIND, "kind-argocd-lab")

        path = backend.write_kubeconfig(handle, tmp_path / "kube")

        assert path == tmp_path / "kube" / "argocd-lab.yaml"
        assert path.read_text() == "current-context: kind-argocd-lab\n"

    def test_check_prerequisites_passes(self, fake_cluster: FakeCluster) -> None:
        """All tools present and docker info succeeding passes."""
        KindBackend().check_prerequisites()

        assert fake_cluster.commands("docker", "info")

    def test_check_prerequisites_docker_down(self, fake_cluster: FakeCluster) -> None:
        """A non-responsive Docker daemon is reported as unavailable."""
        fake_cluster.fail[("docker", "info")] = "Cannot connect to the Docker daemon"

        with pytest.raises(BackendUnavailableError, match="Docker is not running"):
            KindBackend().check_prerequisites()

    def test_destroy_existing_cluster(self, fake_cluster: FakeCluster) -> None:
        """destroy checks for the cluster, then deletes it by name."""
        fake_cluster.add_kind_cluster("argocd-lab")

        KindBackend().destroy("argocd-lab")

        assert fake_cluster.commands("kind", "get", "clusters")
        assert fake_cluster.commands("kind", "delete") == [
            ("kind", "delete", "cluster", "--name", "argocd-lab")
        ]
        assert fake_cluster.clusters == {}

    def test_check_prerequisites_docker_hangs(self, fake_cluster: FakeCluster) -> None:
        """A docker info that never returns is reported as unavailable."""
        fake_cluster.hang.add(("docker", "info"))

        with pytest.raises(BackendUnavailableError, match="did not respond"):
            KindBackend().check_prerequisites()

    def test_check_prerequisites_missing_tool(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A missing kind binary raises ExecutableNotFoundError."""
        monkeypatch.setattr(
            "shutil.which", lambda name: None if name == "kind" else f"/usr/bin/{name}"
        )

        with pytest.raises(ExecutableNotFoundError, match="kind"):
            KindBackend().check_prerequisites()

    def test_prepare_ingress_applies_kind_manifest(
        self, fake_cluster: FakeCluster, test_env: dict[str, str]
    ) -> None:
        """prepare_ingress submits the ingress-nginx kind provider manifest."""
        fake_cluster.add_kind_cluster("argocd-lab")
        backend = KindBackend(ingress_manifest="https://example.test/ingress-nginx.yaml")
        handle = ClusterHandle("argocd-lab", BackendKind.KIND, "kind-argocd-lab")

        backend.prepare_ingress(handle, test_env)

        assert fake_cluster.commands("kubectl", "apply")[-1] == (
            "kubectl",
            "apply",
            "--server-side",
            "--field-manager=argo-lab",
            "--force-conflicts",
            "-f",
            "https://example.test/ingress-nginx.yaml",
        )
        assert ("ingress-nginx", "ingress-nginx-controller") in fake_cluster.deployments

    def test_prepare_ingress_pins_controller_to_published_node(
        self, fake_cluster: FakeCluster, test_env: dict[str, str]
    ) -> None:
        """The controller may only run on the node that maps host ports 80/443."""
        fake_cluster.add_kind_cluster("argocd-lab")
        handle = ClusterHandle("argocd-lab", BackendKind.KIND, "kind-argocd-lab")

        KindBackend().prepare_ingress(handle, test_env)

        key = ("ingress-nginx", "ingress-nginx-controller")
        controller = fake_cluster.deployments[key]
        assert controller.node_selector == {
            "ingress-ready": "true",
            "kubernetes.io/hostname": "argocd-lab-control-plane",
        }
        (patch,) = fake_cluster.commands("kubectl", "patch")
        assert "--type=strategic" in patch


class TestNodeNames:
    """Tests for kind node naming and the ingress node."""

    def test_names_follow_kind_numbering(self) -> None:
        """Each role is numbered from its second node onwards."""
        topology = KindTopology(
            nodes=(
                KindNode(NodeRole.CONTROL_PLANE),
                KindNode(NodeRole.CONTROL_PLANE),
                KindNode(NodeRole.WORKER),
                KindNode(NodeRole.WORKER),
            )
        )

        assert node_names("lab", topology) == (
            "lab-control-plane",
            "lab-control-plane2",
            "lab-worker",
            "lab-worker2",
        )

    def test_ingress_node_is_default_control_plane(self) -> None:
        """The default topology publishes port 80 on the control-plane."""
        assert ingress_node("argocd-lab", KindTopology()) == "argocd-lab-control-plane"

    def test_ingress_node_follows_port_mapping(self) -> None:
        """A worker that publishes port 80 hosts the controller."""
        topology = KindTopology(
            nodes=(
                KindNode(NodeRole.CONTROL_PLANE),
                KindNode(NodeRole.WORKER),
                KindNode(NodeRole.WORKER, (HostPortMapping(80, 8080),)),
            )
        )

        assert ingress_node("lab", topology) == "lab-worker2"
