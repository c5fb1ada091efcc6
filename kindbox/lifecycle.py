"""Cluster teardown.

Teardown removes the registry container and deletes the cluster. Both
steps always run; their failures are collected into one
:class:`~kindbox.errors.TeardownError` instead of the first one hiding the
second. A registry container that is already gone counts as removed, and
kind treats deleting a missing cluster as success, so repeating a teardown
is harmless.
"""

from __future__ import annotations

import typing as typ

from kindbox.errors import KindboxError, TeardownError
from kindbox.logging import get_logger, log_info, log_warning
from kindbox.registry import registry_container_name

if typ.TYPE_CHECKING:
    from kindbox.kind import ProvisioningEngine
    from kindbox.runtime import ContainerRuntime

logger = get_logger(__name__)


def _remove_registry(runtime: ContainerRuntime, cluster_name: str) -> None:
    name = registry_container_name(cluster_name)
    if not runtime.container_exists(name):
        log_info(logger, "Registry container %s already removed", name)
        return
    runtime.remove_container(name, force=True)


def teardown_cluster(
    runtime: ContainerRuntime,
    provider: ProvisioningEngine,
    cluster_name: str,
) -> None:
    """Remove the registry and delete the cluster named ``cluster_name``.

    Raises
    ------
    TeardownError
        If either step failed. ``errors`` holds the registry failure first
        and the cluster failure second, whichever of them occurred.

    """
    errors: list[KindboxError] = []

    try:
        _remove_registry(runtime, cluster_name)
    except KindboxError as exc:
        log_warning(logger, "Failed to remove registry container: %s", exc)
        errors.append(exc)

    try:
        provider.delete_cluster(cluster_name)
    except KindboxError as exc:
        log_warning(logger, "Failed to delete cluster %s: %s", cluster_name, exc)
        errors.append(exc)

    TeardownError(cluster_name, errors).raise_if_failed()
    log_info(logger, "Cluster %s torn down", cluster_name)
