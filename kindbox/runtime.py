"""Container runtime adapter backed by the Docker SDK.

This module is a thin facade over the Docker daemon API. Each method wraps
exactly one runtime operation and converts SDK failures into
:class:`ImageOperationError` or :class:`ContainerOperationError` naming the
operation and its target. Higher layers depend on the
:class:`ContainerRuntime` protocol, so tests can substitute an in-memory
fake.

The Docker client is built lazily on first use and then shared by every
call. Construction happens under a lock: concurrent first callers converge
on the same client, or on the same :class:`RuntimeUnavailableError` when the
daemon cannot be reached.

Public API
----------
- ``ContainerRuntime``: protocol consumed by the registry, publisher and
  lifecycle code.
- ``DockerRuntime``: the Docker implementation.
- ``PortMapping``: one published container port.
- ``RegistryCredentials``: credentials sent with pushes.
- ``normalize_timeout``: apply the default to zero or missing timeouts.

"""

from __future__ import annotations

import base64
import dataclasses
import json
import threading
import time
import typing as typ

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag

from kindbox.errors import (
    BuildContextError,
    ContainerOperationError,
    ContainerReadyTimeoutError,
    ImageOperationError,
    RuntimeUnavailableError,
)
from kindbox.logging import get_logger, log_debug, log_info

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

# Wait timeout applied when a caller passes zero or None (seconds).
DEFAULT_WAIT_TIMEOUT_S = 60.0
_DEFAULT_POLL_INTERVAL_S = 0.5
_DEFAULT_HOST_IP = "0.0.0.0"  # noqa: S104 - published like `docker run -p`

ClientFactory: typ.TypeAlias = "cabc.Callable[[], docker.DockerClient]"


def normalize_timeout(timeout: float | None) -> float:
    """Return ``timeout``, or the one-minute default when it is zero or None."""
    if not timeout:
        return DEFAULT_WAIT_TIMEOUT_S
    return timeout


@dataclasses.dataclass(frozen=True, slots=True)
class PortMapping:
    """A single published port.

    Attributes:
        protocol: Transport protocol, ``tcp`` or ``udp``.
        host: Port on the host.
        container: Port inside the container.

    """

    protocol: str
    host: int
    container: int

    @property
    def container_key(self) -> str:
        """Return the Docker port key, e.g. ``5000/tcp``."""
        return f"{self.container}/{self.protocol}"


@dataclasses.dataclass(frozen=True, slots=True)
class RegistryCredentials:
    """Username and password sent with an image push.

    The defaults are an explicit empty credential set, which a local
    registry without authentication accepts.
    """

    username: str = ""
    password: str = ""

    def as_auth_config(self) -> dict[str, str]:
        """Return the credentials in the Docker SDK auth_config shape."""
        return {"username": self.username, "password": self.password}

    def encode(self) -> str:
        """Return the base64 JSON form used by the X-Registry-Auth header."""
        payload = json.dumps(self.as_auth_config()).encode("utf-8")
        return base64.b64encode(payload).decode("ascii")


class ContainerRuntime(typ.Protocol):
    """Container runtime operations consumed by kindbox."""

    def pull_image(self, ref: str) -> None: ...

    def ensure_image(self, ref: str) -> None: ...

    def build_image(self, tag: str, context: typ.Any) -> None: ...  # noqa: ANN401

    def push_image(
        self, ref: str, credentials: RegistryCredentials | None = None
    ) -> None: ...

    def delete_image(self, ref: str, *, force: bool = True) -> None: ...

    def create_container(
        self, name: str, image: str, port_mappings: cabc.Sequence[PortMapping] = ()
    ) -> str: ...

    def start_container(self, container_id: str) -> None: ...

    def wait_healthy(
        self,
        container_id: str,
        timeout: float | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None: ...

    def container_networks(self, container_name: str) -> list[str]: ...

    def connect_network(self, container: str, network: str) -> None: ...

    def container_exists(self, name: str) -> bool: ...

    def remove_container(self, container: str, *, force: bool = True) -> None: ...


def _progress_error(entry: object) -> str | None:
    """Return the error message carried by a build or push progress entry."""
    if not isinstance(entry, dict):
        return None
    if error := entry.get("error"):
        return str(error)
    detail = entry.get("errorDetail")
    if isinstance(detail, dict) and detail.get("message"):
        return str(detail["message"])
    return None


class DockerRuntime:
    """Docker implementation of :class:`ContainerRuntime`.

    Parameters
    ----------
    client_factory
        Callable that builds the Docker client. Defaults to
        ``docker.from_env`` so ``DOCKER_HOST`` and friends are honoured.
    clock, sleep
        Time sources used by :meth:`wait_healthy`.

    """

    def __init__(
        self,
        client_factory: ClientFactory = docker.from_env,
        *,
        clock: cabc.Callable[[], float] = time.monotonic,
        sleep: cabc.Callable[[float], None] = time.sleep,
        poll_interval: float = _DEFAULT_POLL_INTERVAL_S,
    ) -> None:
        """Store the factory; the client itself is built on first use."""
        self._client_factory = client_factory
        self._clock = clock
        self._sleep = sleep
        self._poll_interval = poll_interval
        self._lock = threading.Lock()
        self._client: docker.DockerClient | None = None
        self._client_error: RuntimeUnavailableError | None = None

    @property
    def client(self) -> docker.DockerClient:
        """Return the shared Docker client, constructing it exactly once.

        Raises
        ------
        RuntimeUnavailableError
            If the client could not be constructed. The same error is
            raised to every later caller.

        """
        if self._client is None and self._client_error is None:
            with self._lock:
                if self._client is None and self._client_error is None:
                    self._construct_client()
        if self._client_error is not None:
            raise self._client_error
        return typ.cast("docker.DockerClient", self._client)

    def _construct_client(self) -> None:
        try:
            client = self._client_factory()
        except DockerException as exc:
            error = RuntimeUnavailableError(f"failed to create docker client: {exc}")
            error.__cause__ = exc
            self._client_error = error
            return
        log_debug(logger, "Docker client constructed")
        self._client = client

    # Images

    def image_exists(self, ref: str) -> bool:
        """Report whether ``ref`` is present in the local image store."""
        try:
            self.client.images.get(ref)
        except ImageNotFound:
            return False
        except APIError as exc:
            raise ImageOperationError("inspect", ref, str(exc)) from exc
        return True

    def pull_image(self, ref: str) -> None:
        """Pull ``ref`` from its remote registry."""
        repository, tag = parse_repository_tag(ref)
        log_info(logger, "Pulling image %s", ref)
        try:
            self.client.images.pull(repository, tag=tag or "latest")
        except APIError as exc:
            raise ImageOperationError("pull", ref, str(exc)) from exc

    def ensure_image(self, ref: str) -> None:
        """Pull ``ref`` unless it is already present locally."""
        if self.image_exists(ref):
            log_debug(logger, "Image %s already present", ref)
            return
        self.pull_image(ref)

    def build_image(self, tag: str, context: typ.Any) -> None:  # noqa: ANN401
        """Build an image tagged ``tag`` from a tar build context stream.

        The Dockerfile is expected at the root of the context. The build
        output is consumed in full; an error entry in it fails the build.
        A :class:`~kindbox.errors.BuildContextError` raised by the stream
        is chained so the caller sees why the context was cut short.
        """
        log_info(logger, "Building image %s", tag)
        try:
            output = self.client.api.build(
                fileobj=context,
                custom_context=True,
                tag=tag,
                dockerfile="Dockerfile",
                rm=True,
                quiet=True,
                decode=True,
            )
            for entry in output:
                if message := _progress_error(entry):
                    raise ImageOperationError("build", tag, message)
        except (BuildContextError, DockerException) as exc:
            raise ImageOperationError("build", tag, str(exc)) from exc

    def push_image(
        self, ref: str, credentials: RegistryCredentials | None = None
    ) -> None:
        """Push ``ref`` to the registry named in its repository."""
        creds = credentials or RegistryCredentials()
        repository, tag = parse_repository_tag(ref)
        log_info(logger, "Pushing image %s", ref)
        try:
            output = self.client.images.push(
                repository,
                tag=tag or "latest",
                stream=True,
                decode=True,
                auth_config=creds.as_auth_config(),
            )
            for entry in output:
                if message := _progress_error(entry):
                    raise ImageOperationError("push", ref, message)
        except DockerException as exc:
            raise ImageOperationError("push", ref, str(exc)) from exc

    def delete_image(self, ref: str, *, force: bool = True) -> None:
        """Remove ``ref`` from the local image store."""
        try:
            self.client.images.remove(image=ref, force=force)
        except APIError as exc:
            raise ImageOperationError("delete", ref, str(exc)) from exc
        log_debug(logger, "Deleted local image %s", ref)

    # Containers

    def create_container(
        self,
        name: str,
        image: str,
        port_mappings: cabc.Sequence[PortMapping] = (),
    ) -> str:
        """Create (without starting) a container and return its ID."""
        ports = {
            mapping.container_key: (_DEFAULT_HOST_IP, mapping.host)
            for mapping in port_mappings
        }
        try:
            container = self.client.containers.create(
                image,
                name=name,
                ports=ports or None,
                detach=True,
            )
        except APIError as exc:
            raise ContainerOperationError("create", name, str(exc)) from exc
        log_info(logger, "Created container %s (%s)", name, container.id)
        return container.id

    def start_container(self, container_id: str) -> None:
        """Start a previously created container."""
        try:
            self.client.api.start(container_id)
        except APIError as exc:
            raise ContainerOperationError("start", container_id, str(exc)) from exc

    def _inspect_state(self, container_id: str) -> dict[str, typ.Any]:
        try:
            attrs = self.client.api.inspect_container(container_id)
        except APIError as exc:
            raise ContainerOperationError("inspect", container_id, str(exc)) from exc
        return attrs.get("State") or {}

    def wait_healthy(
        self,
        container_id: str,
        timeout: float | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        """Block until the container is healthy or ``timeout`` elapses.

        A zero or missing timeout means one minute. Containers without a
        health check count as ready once they are running. Setting
        ``cancel`` stops the wait before the next poll.

        Raises
        ------
        ContainerReadyTimeoutError
            If the container is not ready within the timeout.
        ContainerOperationError
            If the container exits while waiting, cannot be inspected, or
            the wait is cancelled.

        """
        limit = normalize_timeout(timeout)
        deadline = self._clock() + limit
        while True:
            if cancel is not None and cancel.is_set():
                raise ContainerOperationError("wait for", container_id, "cancelled")
            state = self._inspect_state(container_id)
            health = (state.get("Health") or {}).get("Status")
            if health == "healthy" or (health is None and state.get("Running")):
                return
            if state.get("Status") in {"exited", "dead"}:
                detail = f"exited with code {state.get('ExitCode')}"
                raise ContainerOperationError("wait for", container_id, detail)
            if self._clock() >= deadline:
                raise ContainerReadyTimeoutError.after(container_id, limit)
            self._sleep(self._poll_interval)

    def container_networks(self, container_name: str) -> list[str]:
        """Return the names of the networks ``container_name`` is attached to."""
        try:
            container = self.client.containers.get(container_name)
        except APIError as exc:
            raise ContainerOperationError("inspect", container_name, str(exc)) from exc
        networks = container.attrs.get("NetworkSettings", {}).get("Networks") or {}
        return list(networks)

    def connect_network(self, container: str, network: str) -> None:
        """Attach ``container`` to ``network``."""
        try:
            self.client.networks.get(network).connect(container)
        except APIError as exc:
            detail = f"cannot attach to network {network}: {exc}"
            raise ContainerOperationError("connect", container, detail) from exc

    def container_exists(self, name: str) -> bool:
        """Report whether a container named ``name`` exists.

        "Not found" is the only inspection failure treated as an answer;
        every other error is raised.
        """
        try:
            self.client.containers.get(name)
        except NotFound:
            return False
        except APIError as exc:
            raise ContainerOperationError("inspect", name, str(exc)) from exc
        return True

    def remove_container(self, container: str, *, force: bool = True) -> None:
        """Remove ``container``, killing it first when ``force`` is set."""
        try:
            self.client.api.remove_container(container, force=force)
        except APIError as exc:
            raise ContainerOperationError("remove", container, str(exc)) from exc
        log_info(logger, "Removed container %s", container)


__all__ = [
    "DEFAULT_WAIT_TIMEOUT_S",
    "ContainerRuntime",
    "DockerRuntime",
    "PortMapping",
    "RegistryCredentials",
    "normalize_timeout",
]
