"""Handle for a provisioned cluster and its registry."""

from __future__ import annotations

import dataclasses
import typing as typ

from kubernetes import client as k8s_client

from kindbox.config import Config
from kindbox.publisher import publish_image
from kindbox.registry import registry_address

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import os
    import threading

    from kindbox.runtime import ContainerRuntime


@dataclasses.dataclass(frozen=True, slots=True)
class Cluster:
    """A local kind cluster with a registry its nodes can pull from.

    Attributes
    ----------
    name
        Cluster name, unique on the host.
    kubeconfig
        Kubeconfig document for the cluster.
    api_client
        Kubernetes API client bound to ``kubeconfig``.
    runtime
        Container runtime used to publish images.
    teardown
        Removes the registry and deletes the cluster; bound to ``name``.
    config
        Settings the cluster was provisioned with.

    """

    name: str
    kubeconfig: str
    api_client: k8s_client.ApiClient
    runtime: ContainerRuntime = dataclasses.field(repr=False)
    teardown: cabc.Callable[[], None] = dataclasses.field(repr=False)
    config: Config = dataclasses.field(default_factory=Config)

    @property
    def core_v1(self) -> k8s_client.CoreV1Api:
        """Return a CoreV1 API bound to this cluster."""
        return k8s_client.CoreV1Api(self.api_client)

    def registry_name(self) -> str:
        """Return the in-cluster address of the registry."""
        return registry_address(self.name)

    def image_name(self, image: str) -> str:
        """Return the reference pods use to pull ``image`` from the registry."""
        return f"{self.registry_name()}/{image}"

    def build_and_push_image(
        self,
        image_name: str,
        local_directory: str | os.PathLike[str],
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        """Build ``local_directory`` and publish it to the cluster registry.

        Returns the in-cluster image reference, ``image_name(image_name)``.

        Raises
        ------
        PublishError
            Naming the build, push or delete phase that failed.

        """
        publish_image(
            self.runtime,
            image_name,
            local_directory,
            cancel=cancel,
            host_port=self.config.registry_host_port,
        )
        return self.image_name(image_name)

    def delete(self) -> None:
        """Remove the registry container and delete the cluster.

        Safe to call more than once.

        Raises
        ------
        TeardownError
            Carrying every step that failed.

        """
        self.teardown()
