"""Command-line interface for kindbox clusters.

Usage:
    kindbox up                          # Create or reuse cluster and registry
    kindbox push svc:latest ./svc       # Build ./svc and publish it in-cluster
    kindbox kubeconfig                  # Print the cluster kubeconfig
    kindbox down                        # Remove registry and delete cluster

Environment variables:
    KINDBOX_CLUSTER_NAME   - Cluster name (default: kindbox)
    KINDBOX_READY_TIMEOUT  - Seconds to wait for a new cluster (default: 300)
    KINDBOX_LOG_LEVEL      - Log level (default: INFO)
    See kindbox.config.Config.from_env for the full list.
"""

from __future__ import annotations

import sys
import typing as typ
from pathlib import Path

from cyclopts import App, Parameter

from kindbox.config import Config
from kindbox.errors import KindboxError
from kindbox.kind import KindProvider
from kindbox.lifecycle import teardown_cluster
from kindbox.logging import configure_logging, get_logger, log_warning
from kindbox.provision import new_cluster
from kindbox.runtime import DockerRuntime

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

app = App(
    name="kindbox",
    help="Ephemeral kind clusters with a local image registry",
    version="0.1.0",
)


def _guarded(action: cabc.Callable[[], int]) -> int:
    """Run ``action`` and turn kindbox errors into exit code 1."""
    try:
        return action()
    except KindboxError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _load_config() -> Config:
    cfg = Config.from_env()
    level, invalid = configure_logging(cfg.log_level)
    if invalid:
        log_warning(
            logger,
            "Invalid KINDBOX_LOG_LEVEL %r, falling back to %s",
            cfg.log_level,
            level,
        )
    return cfg


@app.command
def up(
    *,
    cluster_name: typ.Annotated[
        str | None, Parameter(env_var="KINDBOX_CLUSTER_NAME")
    ] = None,
    ready_timeout: typ.Annotated[
        float | None, Parameter(env_var="KINDBOX_READY_TIMEOUT")
    ] = None,
    kubeconfig_out: Path | None = None,
) -> int:
    """Create or reuse the cluster and make sure its registry is running.

    Args:
        cluster_name: Name of the kind cluster.
        ready_timeout: Seconds to wait for a new cluster to become ready.
        kubeconfig_out: Optional file to write the cluster kubeconfig to.

    Returns:
        Exit code (0 for success, 1 for failure).

    """

    def action() -> int:
        cfg = _load_config()
        name = cluster_name or cfg.cluster_name
        cluster = new_cluster(name, ready_timeout, config=cfg)
        if kubeconfig_out is not None:
            kubeconfig_out.write_text(cluster.kubeconfig, encoding="utf-8")
            print(f"Kubeconfig written to {kubeconfig_out}")
        print(f"Cluster '{name}' ready; registry at {cluster.registry_name()}")
        return 0

    return _guarded(action)


@app.command
def push(
    image: str,
    directory: Path,
    *,
    cluster_name: typ.Annotated[
        str | None, Parameter(env_var="KINDBOX_CLUSTER_NAME")
    ] = None,
    ready_timeout: typ.Annotated[
        float | None, Parameter(env_var="KINDBOX_READY_TIMEOUT")
    ] = None,
) -> int:
    """Build DIRECTORY as IMAGE and publish it to the cluster registry.

    Creates the cluster first when it does not exist yet.

    Args:
        image: Image name and tag, e.g. ``svc:latest``.
        directory: Build context containing a Dockerfile.
        cluster_name: Name of the kind cluster.
        ready_timeout: Seconds to wait for a new cluster to become ready.

    Returns:
        Exit code (0 for success, 1 for failure).

    """

    def action() -> int:
        cfg = _load_config()
        name = cluster_name or cfg.cluster_name
        cluster = new_cluster(name, ready_timeout, config=cfg)
        print(cluster.build_and_push_image(image, directory))
        return 0

    return _guarded(action)


@app.command
def kubeconfig(
    *,
    cluster_name: typ.Annotated[
        str | None, Parameter(env_var="KINDBOX_CLUSTER_NAME")
    ] = None,
) -> int:
    """Print the kubeconfig of an existing cluster.

    Args:
        cluster_name: Name of the kind cluster.

    Returns:
        Exit code (0 for success, 1 if the cluster does not exist).

    """

    def action() -> int:
        cfg = _load_config()
        name = cluster_name or cfg.cluster_name
        provider = KindProvider(cfg.kind_executable)
        if name not in provider.list_clusters():
            print(f"Cluster '{name}' does not exist.")
            return 1
        print(provider.get_kubeconfig(name), end="")
        return 0

    return _guarded(action)


@app.command
def down(
    *,
    cluster_name: typ.Annotated[
        str | None, Parameter(env_var="KINDBOX_CLUSTER_NAME")
    ] = None,
) -> int:
    """Remove the registry container and delete the cluster.

    Args:
        cluster_name: Name of the kind cluster.

    Returns:
        Exit code (0 for success, 1 when any teardown step failed).

    """

    def action() -> int:
        cfg = _load_config()
        name = cluster_name or cfg.cluster_name
        print(f"Deleting cluster '{name}'...")
        teardown_cluster(DockerRuntime(), KindProvider(cfg.kind_executable), name)
        print("Cluster deleted successfully.")
        return 0

    return _guarded(action)


def main() -> int:
    """Entry point for the CLI."""
    return app()


if __name__ == "__main__":
    sys.exit(main())
