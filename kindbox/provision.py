"""Provision kind clusters together with their registries.

:func:`new_cluster` is the main entry point. It reuses a cluster that
already exists under the requested name and otherwise creates one whose
containerd mirrors the cluster's registry address. In both cases it then
reconciles the registry container, so a registry removed behind kindbox's
back is recreated on the next call.
"""

from __future__ import annotations

import contextlib
import functools
import os
import tempfile
import typing as typ
from pathlib import Path

from kindbox.cluster import Cluster
from kindbox.config import Config
from kindbox.errors import ProvisionError
from kindbox.k8s import build_api_client
from kindbox.kind import KindProvider
from kindbox.lifecycle import teardown_cluster
from kindbox.logging import get_logger, log_debug, log_info
from kindbox.registry import ensure_registry, registry_address
from kindbox.runtime import DockerRuntime

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import threading

    from kindbox.kind import ProvisioningEngine
    from kindbox.runtime import ContainerRuntime

logger = get_logger(__name__)


def kind_config_document(registry: str, workers: int = 1) -> str:
    """Return a kind cluster configuration mirroring ``registry``.

    Args:
        registry: In-network registry address, ``<cluster>-registry:5000``.
        workers: Number of worker nodes next to the control plane.

    Returns:
        YAML document for ``kind create cluster --config``.

    """
    if workers < 0:
        msg = f"workers must be >= 0, got {workers}"
        raise ValueError(msg)
    worker_nodes = "".join("- role: worker\n" for _ in range(workers))
    return f"""\
kind: Cluster
apiVersion: kind.x-k8s.io/v1alpha4
containerdConfigPatches:
- |-
  [plugins."io.containerd.grpc.v1.cri".registry.mirrors."{registry}"]
    endpoint = ["http://{registry}"]
nodes:
- role: control-plane
{worker_nodes}"""


@contextlib.contextmanager
def _kind_config_file(document: str) -> cabc.Iterator[Path]:
    """Write ``document`` to a scratch file removed when the block exits."""
    fd, raw_path = tempfile.mkstemp(prefix="kind-config-", suffix=".yaml")
    path = Path(raw_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(document)
        yield path
    finally:
        path.unlink(missing_ok=True)
        log_debug(logger, "Removed kind config %s", path)


def _create_cluster(
    provider: ProvisioningEngine, name: str, ready_timeout: float, cfg: Config
) -> None:
    document = kind_config_document(registry_address(name), cfg.workers)
    with _kind_config_file(document) as config_path:
        provider.create_cluster(name, config_path, ready_timeout)


def _check_cancelled(cancel: threading.Event | None, name: str) -> None:
    if cancel is not None and cancel.is_set():
        msg = f"provisioning of cluster '{name}' cancelled"
        raise ProvisionError(msg)


def new_cluster(
    name: str,
    ready_timeout: float | None = None,
    *,
    config: Config | None = None,
    runtime: ContainerRuntime | None = None,
    provider: ProvisioningEngine | None = None,
    cancel: threading.Event | None = None,
) -> Cluster:
    """Create or reuse the kind cluster ``name`` and its registry.

    Parameters
    ----------
    name : str
        Cluster name.
    ready_timeout : float | None, optional
        Seconds to wait for a new cluster to become ready. Zero or None
        falls back to ``config.ready_timeout_s``.
    config : Config | None, optional
        Settings; defaults to ``Config()``.
    runtime : ContainerRuntime | None, optional
        Container runtime; defaults to a lazily connected ``DockerRuntime``.
    provider : ProvisioningEngine | None, optional
        Provisioning engine; defaults to ``KindProvider``.
    cancel : threading.Event | None, optional
        When set, stops provisioning between steps and interrupts the
        registry readiness wait.

    Returns
    -------
    Cluster
        Handle carrying the credentials, an API client and the teardown.

    Raises
    ------
    ProvisionTimeoutError
        If a new cluster is not ready within ``ready_timeout``.
    ProvisionError
        If listing or creating clusters fails.
    CredentialError
        If the kubeconfig is missing or unusable.
    ImageOperationError, ContainerOperationError, NetworkDiscoveryError
        If the registry cannot be set up.

    """
    cfg = config or Config()
    rt = runtime or DockerRuntime()
    engine = provider or KindProvider(cfg.kind_executable)
    timeout = ready_timeout or cfg.ready_timeout_s

    if name in engine.list_clusters():
        log_info(logger, "Cluster %s already exists, reusing", name)
    else:
        _check_cancelled(cancel, name)
        _create_cluster(engine, name, timeout, cfg)
    kubeconfig = engine.get_kubeconfig(name)

    _check_cancelled(cancel, name)
    ensure_registry(rt, name, cfg, cancel=cancel)

    api_client = build_api_client(name, kubeconfig)

    return Cluster(
        name=name,
        kubeconfig=kubeconfig,
        api_client=api_client,
        runtime=rt,
        teardown=functools.partial(teardown_cluster, rt, engine, name),
        config=cfg,
    )
