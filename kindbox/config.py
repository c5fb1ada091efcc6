"""Configuration for kindbox clusters and their registries."""

from __future__ import annotations

import dataclasses
import os

from kindbox.errors import ConfigError

# Default configuration values - single source of truth
_DEFAULT_CLUSTER_NAME = "kindbox"
_DEFAULT_READY_TIMEOUT_S = 300.0
_DEFAULT_WORKERS = 1
_DEFAULT_REGISTRY_IMAGE = "registry:2"
_DEFAULT_REGISTRY_HOST_PORT = 5000
_DEFAULT_REGISTRY_READY_TIMEOUT_S = 60.0
_DEFAULT_KIND_EXECUTABLE = "kind"
_DEFAULT_LOG_LEVEL = "INFO"

# Registry port inside the container and on the cluster network.
REGISTRY_PORT = 5000

_MIN_PORT = 1
_MAX_PORT = 65535


@dataclasses.dataclass(frozen=True, slots=True)
class Config:
    """Settings shared by provisioning, registry and publish operations.

    Attributes
    ----------
    cluster_name
        Default cluster name used by the CLI.
    ready_timeout_s
        Seconds to wait for a freshly created cluster to report readiness.
    workers
        Number of worker nodes next to the control plane.
    registry_image
        Image the per-cluster registry container runs.
    registry_host_port
        Host port published for the registry so the local daemon can push
        to ``localhost:<port>``.
    registry_ready_timeout_s
        Seconds to wait for a newly started registry container.
    kind_executable
        Name or path of the kind binary.
    log_level
        Log level applied by the CLI.

    """

    cluster_name: str = _DEFAULT_CLUSTER_NAME
    ready_timeout_s: float = _DEFAULT_READY_TIMEOUT_S
    workers: int = _DEFAULT_WORKERS
    registry_image: str = _DEFAULT_REGISTRY_IMAGE
    registry_host_port: int = _DEFAULT_REGISTRY_HOST_PORT
    registry_ready_timeout_s: float = _DEFAULT_REGISTRY_READY_TIMEOUT_S
    kind_executable: str = _DEFAULT_KIND_EXECUTABLE
    log_level: str = _DEFAULT_LOG_LEVEL

    @staticmethod
    def _parse_timeout(name: str, default: float) -> float:
        raw = os.environ.get(name)
        if raw is None:
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            raise ConfigError.invalid_value(
                name, raw, "Must be a number of seconds"
            ) from exc
        if value < 0:
            raise ConfigError.invalid_value(name, raw, "Must not be negative")
        return value

    @staticmethod
    def _parse_int(name: str, default: int, *, minimum: int, maximum: int) -> int:
        raw = os.environ.get(name)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError.invalid_value(name, raw, "Must be an integer") from exc
        if not minimum <= value <= maximum:
            raise ConfigError.invalid_value(
                name, raw, f"Must be between {minimum} and {maximum}"
            )
        return value

    @classmethod
    def from_env(cls) -> Config:
        """Build configuration from ``KINDBOX_*`` environment variables.

        Reads ``KINDBOX_CLUSTER_NAME``, ``KINDBOX_READY_TIMEOUT``,
        ``KINDBOX_WORKERS``, ``KINDBOX_REGISTRY_IMAGE``,
        ``KINDBOX_REGISTRY_HOST_PORT``, ``KINDBOX_REGISTRY_READY_TIMEOUT``,
        ``KINDBOX_KIND_EXECUTABLE`` and ``KINDBOX_LOG_LEVEL``. Unset
        variables keep their defaults.

        Raises
        ------
        ConfigError
            If a numeric variable cannot be parsed or is out of range.

        """
        return cls(
            cluster_name=os.environ.get("KINDBOX_CLUSTER_NAME", _DEFAULT_CLUSTER_NAME),
            ready_timeout_s=cls._parse_timeout(
                "KINDBOX_READY_TIMEOUT", _DEFAULT_READY_TIMEOUT_S
            ),
            workers=cls._parse_int(
                "KINDBOX_WORKERS", _DEFAULT_WORKERS, minimum=0, maximum=16
            ),
            registry_image=os.environ.get(
                "KINDBOX_REGISTRY_IMAGE", _DEFAULT_REGISTRY_IMAGE
            ),
            registry_host_port=cls._parse_int(
                "KINDBOX_REGISTRY_HOST_PORT",
                _DEFAULT_REGISTRY_HOST_PORT,
                minimum=_MIN_PORT,
                maximum=_MAX_PORT,
            ),
            registry_ready_timeout_s=cls._parse_timeout(
                "KINDBOX_REGISTRY_READY_TIMEOUT", _DEFAULT_REGISTRY_READY_TIMEOUT_S
            ),
            kind_executable=os.environ.get(
                "KINDBOX_KIND_EXECUTABLE", _DEFAULT_KIND_EXECUTABLE
            ),
            log_level=os.environ.get("KINDBOX_LOG_LEVEL", _DEFAULT_LOG_LEVEL),
        )
