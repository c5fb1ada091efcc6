"""Ephemeral kind clusters with a registry for locally built images.

kindbox provisions a local multi-node kind cluster, runs a registry
container on the cluster's network, and publishes images built from local
directories into that registry so workloads can use them straight away.

- new_cluster: Create or reuse a cluster and its registry
- Cluster: Handle with credentials, an API client, publishing and teardown

For lower-level operations, import directly from submodules:

- kindbox.runtime: Docker runtime adapter
- kindbox.kind: kind provisioning engine
- kindbox.registry: Registry container reconciliation
- kindbox.build_context: Streaming tar build contexts
- kindbox.publisher: Build, push and clean up images
- kindbox.lifecycle: Aggregated teardown

"""

from __future__ import annotations

from kindbox.cluster import Cluster
from kindbox.config import Config
from kindbox.errors import (
    BuildContextError,
    ContainerOperationError,
    ContainerReadyTimeoutError,
    CredentialError,
    ImageOperationError,
    KindboxError,
    NetworkDiscoveryError,
    OperationTimeoutError,
    ProvisionError,
    ProvisionTimeoutError,
    PublishError,
    RuntimeUnavailableError,
    TeardownError,
)
from kindbox.provision import new_cluster

__all__ = [
    "BuildContextError",
    "Cluster",
    "Config",
    "ContainerOperationError",
    "ContainerReadyTimeoutError",
    "CredentialError",
    "ImageOperationError",
    "KindboxError",
    "NetworkDiscoveryError",
    "OperationTimeoutError",
    "ProvisionError",
    "ProvisionTimeoutError",
    "PublishError",
    "RuntimeUnavailableError",
    "TeardownError",
    "new_cluster",
]
