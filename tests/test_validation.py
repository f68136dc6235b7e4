"""Unit tests for argo_lab validation helpers and error hierarchy."""

from __future__ import annotations

import pytest

from argo_lab.validation import (
    ArgoLabError,
    ClusterExistsError,
    ExecutableNotFoundError,
    ReadinessTimeoutError,
    SecretDecodeError,
    ServiceNotFoundError,
    TopologyInvalidError,
    b64decode_k8s_secret_field,
    ensure_valid_port,
    require_exe,
)


class TestRequireExe:
    """Tests for require_exe."""

    def test_passes_when_found(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should not raise when the executable is on PATH."""
        monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")
        require_exe("kind")

    def test_raises_when_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should raise ExecutableNotFoundError naming the tool."""
        monkeypatch.setattr("shutil.which", lambda _name: None)
        with pytest.raises(ExecutableNotFoundError, match="'minikube' not found"):
            require_exe("minikube")


class TestEnsureValidPort:
    """Tests for ensure_valid_port."""

    @pytest.mark.parametrize("port", [1, 80, 30080, 65535])
    def test_accepts_valid_ports(self, port: int) -> None:
        """Ports within 1-65535 are accepted."""
        ensure_valid_port(port)

    @pytest.mark.parametrize("port", [0, -1, 65536])
    def test_rejects_out_of_range(self, port: int) -> None:
        """Ports outside 1-65535 raise TopologyInvalidError."""
        with pytest.raises(TopologyInvalidError, match="host port"):
            ensure_valid_port(port, what="host port")


class TestB64Decode:
    """Tests for b64decode_k8s_secret_field."""

    def test_decodes_valid_value(self) -> None:
        """Should decode standard base64 text."""
        assert b64decode_k8s_secret_field("aHVudGVyMg==") == "hunter2"

    @pytest.mark.parametrize("value", ["not base64!", "//79"])
    def test_rejects_invalid_input(self, value: str) -> None:
        """Malformed base64 or non-UTF-8 payloads raise SecretDecodeError."""
        with pytest.raises(SecretDecodeError):
            b64decode_k8s_secret_field(value)


class TestErrorMessages:
    """Error types carry actionable messages."""

    def test_cluster_exists_suggests_flags(self) -> None:
        """ClusterExistsError points at --force and --reuse."""
        err = ClusterExistsError("argocd-lab")
        assert err.name == "argocd-lab"
        assert "--force" in str(err)
        assert "--reuse" in str(err)

    def test_readiness_timeout_message(self) -> None:
        """ReadinessTimeoutError names the condition and deadline."""
        err = ReadinessTimeoutError("deployment/argo-server", 600)
        assert str(err) == "Timed out after 600s waiting for deployment/argo-server"

    def test_service_not_found_message(self) -> None:
        """ServiceNotFoundError names service and namespace."""
        err = ServiceNotFoundError("argocd-server", "argocd")
        assert "argocd-server" in str(err)
        assert "argocd" in str(err)

    @pytest.mark.parametrize(
        "error",
        [
            ClusterExistsError("x"),
            ReadinessTimeoutError("x", 1),
            ServiceNotFoundError("x", "y"),
            TopologyInvalidError("x"),
        ],
    )
    def test_all_errors_share_base(self, error: Exception) -> None:
        """Every package error derives from ArgoLabError."""
        assert isinstance(error, ArgoLabError)
