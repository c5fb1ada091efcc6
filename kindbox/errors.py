"""Exceptions raised by kindbox operations.

Every failure surfaced by the public API derives from :class:`KindboxError`,
so callers have a single catch point. Messages always name the operation
and the target (image reference, container, cluster) that failed; the
underlying runtime or subprocess exception is chained as ``__cause__``.
"""

from __future__ import annotations

import enum
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc


class KindboxError(Exception):
    """Base class for all kindbox errors."""


class ConfigError(KindboxError):
    """Raised when configuration values are invalid."""

    @classmethod
    def invalid_value(cls, name: str, value: str, constraint: str) -> ConfigError:
        """Create error for an environment value that fails validation."""
        return cls(f"Invalid {name} '{value}'. {constraint}")


class ExecutableNotFoundError(KindboxError):
    """Required CLI tool is not installed."""

    def __init__(self, name: str) -> None:
        """Initialise with the missing executable name."""
        self.name = name
        super().__init__(f"Required executable '{name}' not found in PATH")


class RuntimeUnavailableError(KindboxError):
    """Raised when the container runtime client cannot be constructed."""


class ImageOperationError(KindboxError):
    """Raised when an image pull, build, push, or delete fails.

    Attributes
    ----------
    operation
        Name of the failing image operation.
    ref
        Image reference the operation targeted.

    """

    def __init__(self, operation: str, ref: str, detail: str) -> None:
        """Initialise with the failing operation, image reference and detail."""
        self.operation = operation
        self.ref = ref
        super().__init__(f"failed to {operation} image {ref}: {detail}")


class ContainerOperationError(KindboxError):
    """Raised when a container or network operation fails.

    Attributes
    ----------
    operation
        Name of the failing container operation.
    target
        Container name or ID the operation targeted.

    """

    def __init__(self, operation: str, target: str, detail: str) -> None:
        """Initialise with the failing operation, target and detail."""
        self.operation = operation
        self.target = target
        super().__init__(f"failed to {operation} container {target}: {detail}")


class OperationTimeoutError(KindboxError):
    """Classification base for operations that exceeded their time bound."""


class ContainerReadyTimeoutError(ContainerOperationError, OperationTimeoutError):
    """Raised when a container does not become ready within its timeout."""

    @classmethod
    def after(cls, target: str, timeout: float) -> ContainerReadyTimeoutError:
        """Create error for a readiness wait that expired."""
        return cls("wait for", target, f"not ready after {timeout:g} seconds")


class ProvisionError(KindboxError):
    """Raised when the provisioning engine fails to create or delete a cluster."""

    @classmethod
    def command_failed(cls, action: str, name: str, detail: str) -> ProvisionError:
        """Create error for a failed provisioning command."""
        return cls(f"kind {action} failed for cluster '{name}': {detail}")


class ProvisionTimeoutError(ProvisionError, OperationTimeoutError):
    """Raised when cluster creation does not report readiness in time."""

    @classmethod
    def after(cls, name: str, timeout: float) -> ProvisionTimeoutError:
        """Create error for a cluster creation that exceeded its timeout."""
        return cls(f"cluster '{name}' was not ready after {timeout:g} seconds")


class CredentialError(KindboxError):
    """Raised when cluster credentials are missing, malformed, or unusable."""

    @classmethod
    def empty(cls, name: str) -> CredentialError:
        """Create error for an empty kubeconfig document."""
        return cls(f"kind returned an empty kubeconfig for cluster '{name}'")

    @classmethod
    def malformed(cls, name: str, detail: str) -> CredentialError:
        """Create error for a kubeconfig that cannot be parsed or used."""
        return cls(f"invalid kubeconfig for cluster '{name}': {detail}")


class NetworkDiscoveryError(KindboxError):
    """Raised when no network is found on the cluster's control-plane node."""

    def __init__(self, node: str) -> None:
        """Initialise with the node container that has no networks."""
        self.node = node
        super().__init__(f"no networks found on cluster node {node}")


class BuildContextError(KindboxError):
    """Raised to the consumer when the build context walk fails mid-stream."""


class PublishPhase(enum.StrEnum):
    """Steps of the image publish pipeline."""

    BUILD = "build"
    PUSH = "push"
    DELETE = "delete"


class PublishError(KindboxError):
    """Raised when a phase of the image publish pipeline fails.

    Attributes
    ----------
    phase
        The pipeline step that failed.
    image
        Registry-facing image tag being published.

    """

    def __init__(self, phase: PublishPhase, image: str, cause: BaseException) -> None:
        """Initialise with the failing phase, image tag and underlying error."""
        self.phase = phase
        self.image = image
        super().__init__(f"publish of {image} failed during {phase}: {cause}")


class TeardownError(KindboxError):
    """Aggregate of the independent failures seen while tearing down a cluster.

    Holds zero or more component errors in the order the teardown steps ran.
    The rendered message joins every component message so none is lost.
    """

    def __init__(self, cluster_name: str, errors: cabc.Iterable[BaseException]) -> None:
        """Initialise with the cluster name and the collected errors."""
        self.cluster_name = cluster_name
        self.errors: tuple[BaseException, ...] = tuple(errors)
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.errors:
            return f"teardown of cluster '{self.cluster_name}' succeeded"
        details = "; ".join(str(err) for err in self.errors)
        return f"teardown of cluster '{self.cluster_name}' failed: {details}"

    @property
    def failed(self) -> bool:
        """Return True when at least one teardown step failed."""
        return bool(self.errors)

    def raise_if_failed(self) -> None:
        """Raise this error when any component failure was collected."""
        if self.failed:
            raise self


__all__ = [
    "BuildContextError",
    "ConfigError",
    "ContainerOperationError",
    "ContainerReadyTimeoutError",
    "CredentialError",
    "ExecutableNotFoundError",
    "ImageOperationError",
    "KindboxError",
    "NetworkDiscoveryError",
    "OperationTimeoutError",
    "ProvisionError",
    "ProvisionTimeoutError",
    "PublishError",
    "PublishPhase",
    "RuntimeUnavailableError",
    "TeardownError",
]
