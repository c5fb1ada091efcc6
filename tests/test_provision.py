"""Unit tests for cluster provisioning and the Cluster handle."""

from __future__ import annotations

import threading
import typing as typ

import pytest
from kubernetes import client as k8s_client
from ruamel.yaml import YAML

from kindbox.config import Config
from kindbox.errors import (
    CredentialError,
    ProvisionError,
    ProvisionTimeoutError,
    PublishError,
    TeardownError,
)
from kindbox.provision import kind_config_document, new_cluster

if typ.TYPE_CHECKING:
    from pathlib import Path

    from conftest import FakeProvider, FakeRuntime


class TestKindConfigDocument:
    """Tests for the generated kind configuration."""

    def test_mirrors_registry_and_lists_nodes(self) -> None:
        """Should declare the containerd mirror and one node per role."""
        document = kind_config_document("demo-registry:5000", workers=2)
        data = YAML(typ="safe").load(document)

        assert data["kind"] == "Cluster"
        assert [node["role"] for node in data["nodes"]] == [
            "control-plane",
            "worker",
            "worker",
        ]
        patch = data["containerdConfigPatches"][0]
        assert 'mirrors."demo-registry:5000"' in patch
        assert 'endpoint = ["http://demo-registry:5000"]' in patch

    def test_control_plane_only(self) -> None:
        """Should allow a single-node cluster."""
        data = YAML(typ="safe").load(kind_config_document("r:5000", workers=0))

        assert data["nodes"] == [{"role": "control-plane"}]

    def test_rejects_negative_workers(self) -> None:
        """Should refuse a negative worker count."""
        with pytest.raises(ValueError, match="workers"):
            kind_config_document("r:5000", workers=-1)


class TestNewCluster:
    """Tests for new_cluster."""

    def test_creates_missing_cluster(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should create the cluster with a mirror for its registry."""
        cluster = new_cluster(
            "demo", 120, runtime=fake_runtime, provider=fake_provider
        )

        assert fake_provider.operations() == [
            "list_clusters",
            "create_cluster",
            "get_kubeconfig",
        ]
        assert fake_provider.calls[1] == ("create_cluster", ("demo", 120))
        assert "demo-registry:5000" in fake_provider.config_documents[0]
        assert "create_container" in fake_runtime.operations()
        assert cluster.name == "demo"
        assert isinstance(cluster.api_client, k8s_client.ApiClient)

    def test_reuses_existing_cluster(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should create zero clusters when the name already exists."""
        fake_provider.clusters.append("demo")

        new_cluster("demo", runtime=fake_runtime, provider=fake_provider)

        assert "create_cluster" not in fake_provider.operations()

    def test_reuse_recreates_missing_registry(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should reconcile the registry even when the cluster is reused."""
        fake_provider.clusters.append("demo")

        new_cluster("demo", runtime=fake_runtime, provider=fake_provider)

        assert fake_runtime.args_for("create_container")[0][0] == "demo-registry"

    def test_zero_timeout_uses_configured_default(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should fall back to the configured readiness timeout."""
        cfg = Config(ready_timeout_s=45.0, workers=3)

        new_cluster(
            "demo", 0, config=cfg, runtime=fake_runtime, provider=fake_provider
        )

        assert fake_provider.calls[1] == ("create_cluster", ("demo", 45.0))
        assert fake_provider.config_documents[0].count("role: worker") == 3

    def test_config_file_removed_after_create(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should delete the scratch config once kind has used it."""
        new_cluster("demo", runtime=fake_runtime, provider=fake_provider)

        config_path = fake_provider.config_paths[0]
        assert config_path.suffix == ".yaml"
        assert not config_path.exists()

    def test_config_file_removed_after_failure(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should delete the scratch config when creation fails."""
        fake_provider.failures["create_cluster"] = ProvisionTimeoutError.after(
            "demo", 1
        )

        with pytest.raises(ProvisionTimeoutError):
            new_cluster("demo", 1, runtime=fake_runtime, provider=fake_provider)

        assert not fake_provider.config_paths[0].exists()
        assert fake_runtime.calls == []

    def test_list_failure_propagates(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should surface a listing failure without touching the runtime."""
        fake_provider.failures["list_clusters"] = ProvisionError("kind is broken")

        with pytest.raises(ProvisionError, match="kind is broken"):
            new_cluster("demo", runtime=fake_runtime, provider=fake_provider)

        assert fake_runtime.calls == []

    def test_malformed_kubeconfig_is_credential_error(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should raise CredentialError for an unusable kubeconfig."""
        fake_provider.kubeconfig = "apiVersion: v1\n"

        with pytest.raises(CredentialError):
            new_cluster("demo", runtime=fake_runtime, provider=fake_provider)

    def test_cancelled_before_create(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should stop before creating a cluster once cancelled."""
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ProvisionError, match="cancelled"):
            new_cluster(
                "demo", runtime=fake_runtime, provider=fake_provider, cancel=cancel
            )

        assert fake_provider.operations() == ["list_clusters"]
        assert fake_runtime.calls == []

    def test_cancel_reaches_registry_wait(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should pass the cancel event down to the registry readiness wait."""
        cancel = threading.Event()

        new_cluster("demo", runtime=fake_runtime, provider=fake_provider, cancel=cancel)

        assert fake_runtime.wait_cancels == [cancel]


class TestClusterHandle:
    """Tests for the Cluster returned by new_cluster."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("demo", "demo-registry:5000/svc:latest"),
            ("my-test-cluster", "my-test-cluster-registry:5000/svc:latest"),
        ],
    )
    def test_image_name(
        self,
        fake_runtime: FakeRuntime,
        fake_provider: FakeProvider,
        name: str,
        expected: str,
    ) -> None:
        """Should address images through the in-network registry."""
        cluster = new_cluster(name, runtime=fake_runtime, provider=fake_provider)

        assert cluster.image_name("svc:latest") == expected
        assert cluster.registry_name() == expected.split("/", 1)[0]

    def test_build_and_push_returns_cluster_reference(
        self,
        fake_runtime: FakeRuntime,
        fake_provider: FakeProvider,
        build_dir: Path,
    ) -> None:
        """Should push via localhost and return the in-cluster reference."""
        cluster = new_cluster("demo", runtime=fake_runtime, provider=fake_provider)
        fake_runtime.calls.clear()

        ref = cluster.build_and_push_image("svc:1", build_dir)

        assert ref == "demo-registry:5000/svc:1"
        assert fake_runtime.args_for("push_image") == [("localhost:5000/svc:1",)]

    def test_build_and_push_uses_configured_host_port(
        self,
        fake_runtime: FakeRuntime,
        fake_provider: FakeProvider,
        build_dir: Path,
    ) -> None:
        """Should tag for the registry's published host port."""
        cluster = new_cluster(
            "demo",
            config=Config(registry_host_port=5055),
            runtime=fake_runtime,
            provider=fake_provider,
        )

        cluster.build_and_push_image("svc:1", build_dir)

        assert fake_runtime.args_for("push_image") == [("localhost:5055/svc:1",)]

    def test_build_failure_is_publish_error(
        self,
        fake_runtime: FakeRuntime,
        fake_provider: FakeProvider,
        tmp_path: Path,
    ) -> None:
        """Should raise PublishError for an unusable directory."""
        cluster = new_cluster("demo", runtime=fake_runtime, provider=fake_provider)

        with pytest.raises(PublishError):
            cluster.build_and_push_image("svc:1", tmp_path / "missing")

    def test_delete_twice(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should tear down the cluster and tolerate a second call."""
        cluster = new_cluster("demo", runtime=fake_runtime, provider=fake_provider)

        cluster.delete()
        cluster.delete()

        assert fake_provider.clusters == []
        assert fake_runtime.containers == {}

    def test_delete_reports_failures(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should raise TeardownError when the cluster cannot be deleted."""
        cluster = new_cluster("demo", runtime=fake_runtime, provider=fake_provider)
        fake_provider.failures["delete_cluster"] = ProvisionError("busy")

        with pytest.raises(TeardownError, match="busy"):
            cluster.delete()

    def test_core_v1_shares_client(
        self, fake_runtime: FakeRuntime, fake_provider: FakeProvider
    ) -> None:
        """Should bind the CoreV1 API to the cluster's client."""
        cluster = new_cluster("demo", runtime=fake_runtime, provider=fake_provider)

        assert cluster.core_v1.api_client is cluster.api_client
