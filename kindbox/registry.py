"""Per-cluster registry container management.

Each cluster gets one registry container whose identity is derived from the
cluster name alone: the container is ``<cluster>-registry`` and cluster
nodes reach it at ``<cluster>-registry:5000`` on the cluster's network.
Nothing about the registry is stored; every caller recomputes the names.

:func:`ensure_registry` is idempotent. An existing container with the
derived name counts as present, and nothing beyond its existence is
checked. A new container is created, attached to the cluster network and
only then started, so it comes up already reachable from the nodes.
"""

from __future__ import annotations

import typing as typ

from kindbox.config import REGISTRY_PORT, Config
from kindbox.errors import KindboxError, NetworkDiscoveryError
from kindbox.kind import control_plane_node
from kindbox.logging import get_logger, log_info, log_warning
from kindbox.runtime import PortMapping

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import threading

    from kindbox.runtime import ContainerRuntime

logger = get_logger(__name__)

# Network kind attaches every cluster's nodes to.
KIND_NETWORK = "kind"


def registry_container_name(cluster_name: str) -> str:
    """Return the registry container name for ``cluster_name``."""
    return f"{cluster_name}-registry"


def registry_address(cluster_name: str) -> str:
    """Return the in-network registry address for ``cluster_name``."""
    return f"{registry_container_name(cluster_name)}:{REGISTRY_PORT}"


def select_cluster_network(cluster_name: str, networks: cabc.Sequence[str]) -> str:
    """Pick the network the registry joins from a node's networks.

    The runtime reports networks in no guaranteed order, so the choice is
    made explicit: a network named after the cluster wins, then kind's
    shared ``kind`` network, then the alphabetically first name.

    Raises
    ------
    NetworkDiscoveryError
        If ``networks`` is empty.

    """
    if not networks:
        raise NetworkDiscoveryError(control_plane_node(cluster_name))
    for preferred in (cluster_name, KIND_NETWORK):
        if preferred in networks:
            return preferred
    choice = sorted(networks)[0]
    if len(networks) > 1:
        log_warning(
            logger,
            "Node %s is on networks %s; attaching registry to %s",
            control_plane_node(cluster_name),
            ", ".join(sorted(networks)),
            choice,
        )
    return choice


def ensure_registry(
    runtime: ContainerRuntime,
    cluster_name: str,
    config: Config | None = None,
    *,
    cancel: threading.Event | None = None,
) -> None:
    """Ensure the registry container for ``cluster_name`` exists and runs.

    Steps, in order: ensure the registry image is present; return if the
    container already exists; create it; discover the control-plane node's
    network; attach the container; start it; wait until it is ready. A
    container that fails any step after creation is removed again, so the
    next call starts from scratch. ``cancel`` interrupts the readiness wait.

    Raises
    ------
    ImageOperationError
        If the registry image cannot be pulled.
    ContainerOperationError
        If creating, attaching, starting, or waiting on the container fails.
    NetworkDiscoveryError
        If the control-plane node is on no network.

    """
    cfg = config or Config()
    name = registry_container_name(cluster_name)

    runtime.ensure_image(cfg.registry_image)

    if runtime.container_exists(name):
        log_info(logger, "Registry container %s already exists", name)
        return

    port = PortMapping(
        protocol="tcp", host=cfg.registry_host_port, container=REGISTRY_PORT
    )
    container_id = runtime.create_container(name, cfg.registry_image, [port])

    try:
        networks = runtime.container_networks(control_plane_node(cluster_name))
        network = select_cluster_network(cluster_name, networks)
        runtime.connect_network(container_id, network)
        runtime.start_container(container_id)
        runtime.wait_healthy(container_id, cfg.registry_ready_timeout_s, cancel=cancel)
    except KindboxError:
        # A leftover container would satisfy the existence check next time.
        _discard_container(runtime, container_id)
        raise

    log_info(logger, "Registry %s running on network %s", name, network)


def _discard_container(runtime: ContainerRuntime, container_id: str) -> None:
    try:
        runtime.remove_container(container_id, force=True)
    except KindboxError as exc:
        log_warning(
            logger,
            "Could not remove partially created registry %s: %s",
            container_id,
            exc,
        )
