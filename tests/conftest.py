"""Shared fixtures for kindbox tests.

The cmd-mox plugin is registered globally via pyproject.toml.
"""

from __future__ import annotations

import dataclasses
import typing as typ

import pytest

from kindbox import cli, provision

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import threading
    from pathlib import Path

    from kindbox.errors import KindboxError
    from kindbox.runtime import PortMapping, RegistryCredentials

KUBECONFIG = """\
apiVersion: v1
kind: Config
clusters:
- name: kind-demo
  cluster:
    server: https://127.0.0.1:6443
    insecure-skip-tls-verify: true
contexts:
- name: kind-demo
  context:
    cluster: kind-demo
    user: kind-demo
current-context: kind-demo
users:
- name: kind-demo
  user:
    token: test-token
"""


class FakeRuntime:
    """In-memory container runtime that records every call.

    Set ``failures[operation]`` to make that operation raise after it has
    been recorded.
    """

    def __init__(self) -> None:
        """Start with no containers and no recorded calls."""
        self.calls: list[tuple[str, tuple[object, ...]]] = []
        self.failures: dict[str, KindboxError] = {}
        self.containers: dict[str, str] = {}
        self.networks: dict[str, list[str]] = {}
        self.contexts: list[bytes] = []
        self.wait_cancels: list[threading.Event | None] = []

    def _record(self, operation: str, *args: object) -> None:
        self.calls.append((operation, args))
        if (error := self.failures.get(operation)) is not None:
            raise error

    def operations(self) -> list[str]:
        """Return the recorded operation names in call order."""
        return [operation for operation, _ in self.calls]

    def args_for(self, operation: str) -> list[tuple[object, ...]]:
        """Return the arguments of every call to ``operation``."""
        return [args for name, args in self.calls if name == operation]

    def pull_image(self, ref: str) -> None:
        self._record("pull_image", ref)

    def ensure_image(self, ref: str) -> None:
        self._record("ensure_image", ref)

    def build_image(self, tag: str, context: typ.Any) -> None:  # noqa: ANN401
        self._record("build_image", tag)
        self.contexts.append(context.read())

    def push_image(
        self, ref: str, credentials: RegistryCredentials | None = None
    ) -> None:
        self._record("push_image", ref)

    def delete_image(self, ref: str, *, force: bool = True) -> None:
        self._record("delete_image", ref, force)

    def create_container(
        self, name: str, image: str, port_mappings: cabc.Sequence[PortMapping] = ()
    ) -> str:
        self._record("create_container", name, image, tuple(port_mappings))
        container_id = f"id-{name}"
        self.containers[name] = container_id
        return container_id

    def start_container(self, container_id: str) -> None:
        self._record("start_container", container_id)

    def wait_healthy(
        self,
        container_id: str,
        timeout: float | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        self.wait_cancels.append(cancel)
        self._record("wait_healthy", container_id, timeout)

    def container_networks(self, container_name: str) -> list[str]:
        self._record("container_networks", container_name)
        return list(self.networks.get(container_name, ["kind"]))

    def connect_network(self, container: str, network: str) -> None:
        self._record("connect_network", container, network)

    def container_exists(self, name: str) -> bool:
        self._record("container_exists", name)
        return name in self.containers

    def remove_container(self, container: str, *, force: bool = True) -> None:
        self._record("remove_container", container, force)
        self.containers = {
            name: cid
            for name, cid in self.containers.items()
            if container not in {name, cid}
        }


class FakeProvider:
    """In-memory provisioning engine that records every call."""

    def __init__(self, clusters: cabc.Iterable[str] = ()) -> None:
        """Start with ``clusters`` already present."""
        self.clusters = list(clusters)
        self.calls: list[tuple[str, tuple[object, ...]]] = []
        self.failures: dict[str, KindboxError] = {}
        self.kubeconfig = KUBECONFIG
        self.config_paths: list[Path] = []
        self.config_documents: list[str] = []

    def _record(self, operation: str, *args: object) -> None:
        self.calls.append((operation, args))
        if (error := self.failures.get(operation)) is not None:
            raise error

    def operations(self) -> list[str]:
        """Return the recorded operation names in call order."""
        return [operation for operation, _ in self.calls]

    def list_clusters(self) -> list[str]:
        self._record("list_clusters")
        return list(self.clusters)

    def create_cluster(
        self, name: str, config_path: Path, ready_timeout: float
    ) -> None:
        self.config_paths.append(config_path)
        self.config_documents.append(config_path.read_text(encoding="utf-8"))
        self._record("create_cluster", name, ready_timeout)
        self.clusters.append(name)

    def get_kubeconfig(self, name: str) -> str:
        self._record("get_kubeconfig", name)
        return self.kubeconfig

    def delete_cluster(self, name: str) -> None:
        self._record("delete_cluster", name)
        if name in self.clusters:
            self.clusters.remove(name)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    """Provide a fresh in-memory container runtime."""
    return FakeRuntime()


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Provide a fresh in-memory provisioning engine with no clusters."""
    return FakeProvider()


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    """Create a small build context with a Dockerfile and a nested file."""
    root = tmp_path / "svc"
    (root / "sub").mkdir(parents=True)
    (root / "Dockerfile").write_text("FROM scratch\nCOPY a.txt /\n", encoding="utf-8")
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    (root / "sub" / "b.txt").write_text("beta", encoding="utf-8")
    return root


@pytest.fixture
def kubeconfig_document() -> str:
    """Provide a kubeconfig using token auth against a loopback server."""
    return KUBECONFIG


@dataclasses.dataclass(slots=True)
class CliResult:
    """Outcome of one CLI invocation."""

    exit_code: int
    stdout: str
    stderr: str


CliRunner: typ.TypeAlias = "cabc.Callable[[list[str]], CliResult]"

_KINDBOX_ENV = (
    "KINDBOX_CLUSTER_NAME",
    "KINDBOX_READY_TIMEOUT",
    "KINDBOX_WORKERS",
    "KINDBOX_REGISTRY_IMAGE",
    "KINDBOX_REGISTRY_HOST_PORT",
    "KINDBOX_REGISTRY_READY_TIMEOUT",
    "KINDBOX_KIND_EXECUTABLE",
    "KINDBOX_LOG_LEVEL",
)


@pytest.fixture
def run_cli(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    fake_runtime: FakeRuntime,
    fake_provider: FakeProvider,
) -> CliRunner:
    """Run the kindbox CLI against the in-memory runtime and provider."""
    for name in _KINDBOX_ENV:
        monkeypatch.delenv(name, raising=False)
    for module in (cli, provision):
        monkeypatch.setattr(module, "DockerRuntime", lambda *_a, **_k: fake_runtime)
        monkeypatch.setattr(module, "KindProvider", lambda *_a, **_k: fake_provider)
    monkeypatch.setattr(cli, "configure_logging", lambda _level: ("INFO", False))

    def run(args: list[str]) -> CliResult:
        try:
            exit_code = cli.app(args)
        except SystemExit as e:
            exit_code = e.code if isinstance(e.code, int) else 1
        captured = capsys.readouterr()
        return CliResult(
            exit_code=exit_code if exit_code is not None else 0,
            stdout=captured.out,
            stderr=captured.err,
        )

    return run
