"""kind cluster lifecycle operations.

This module wraps the kind CLI to list, create, and delete clusters and to
fetch their kubeconfig documents. Every call runs ``kind`` with
``subprocess.run`` (shell=False) and an explicit timeout; failures are
raised as :class:`~kindbox.errors.ProvisionError` subclasses or
:class:`~kindbox.errors.CredentialError`.

Examples
--------
Create a cluster from a config file unless it already exists:

    provider = KindProvider()
    if "demo" not in provider.list_clusters():
        provider.create_cluster("demo", Path("kind-config.yaml"), ready_timeout=300)

Fetch credentials for an existing cluster:

    kubeconfig = provider.get_kubeconfig("demo")

"""

from __future__ import annotations

import dataclasses
import shutil
import subprocess
import typing as typ

from kindbox.errors import (
    CredentialError,
    ExecutableNotFoundError,
    ProvisionError,
    ProvisionTimeoutError,
)
from kindbox.logging import get_logger, log_info

if typ.TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

# Default timeout for short kind subprocess operations (seconds)
_KIND_SUBPROCESS_TIMEOUT = 60
# Extra time allowed beyond --wait for node image pulls and teardown on failure
_CREATE_GRACE_S = 120
_DELETE_TIMEOUT = 120
# Warning kind prints, with exit status 0, when --wait expires
_WAIT_EXPIRED = "timed out waiting for ready"


def control_plane_node(cluster_name: str) -> str:
    """Return the container name of the cluster's control-plane node."""
    return f"{cluster_name}-control-plane"


class ProvisioningEngine(typ.Protocol):
    """Cluster provisioning operations consumed by kindbox."""

    def list_clusters(self) -> list[str]: ...

    def create_cluster(
        self, name: str, config_path: Path, ready_timeout: float
    ) -> None: ...

    def get_kubeconfig(self, name: str) -> str: ...

    def delete_cluster(self, name: str) -> None: ...


def _stderr_detail(exc: subprocess.CalledProcessError) -> str:
    stderr = exc.stderr
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    return (stderr or "").strip() or str(exc)


@dataclasses.dataclass(frozen=True, slots=True)
class KindProvider:
    """kind-backed :class:`ProvisioningEngine`.

    Attributes:
        executable: Name or path of the kind binary.

    """

    executable: str = "kind"

    def _require_executable(self) -> None:
        if shutil.which(self.executable) is None:
            raise ExecutableNotFoundError(self.executable)

    def _run(
        self, args: list[str], *, timeout: float
    ) -> subprocess.CompletedProcess[str]:
        self._require_executable()
        return subprocess.run(  # noqa: S603
            # kind is expected on PATH; shell=False mitigates injection
            [self.executable, *args],
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )

    def list_clusters(self) -> list[str]:
        """Return the names of existing kind clusters.

        Raises
        ------
        ProvisionError
            If kind fails or does not answer in time.

        """
        try:
            result = self._run(["get", "clusters"], timeout=_KIND_SUBPROCESS_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            msg = (
                "kind get clusters timed out after "
                f"{_KIND_SUBPROCESS_TIMEOUT} seconds"
            )
            raise ProvisionError(msg) from e
        except subprocess.CalledProcessError as e:
            msg = f"kind get clusters failed: {_stderr_detail(e)}"
            raise ProvisionError(msg) from e
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def create_cluster(
        self, name: str, config_path: Path, ready_timeout: float
    ) -> None:
        """Create cluster ``name`` and wait until its nodes are ready.

        Parameters
        ----------
        name : str
            Name for the new cluster.
        config_path : Path
            kind cluster configuration file.
        ready_timeout : float
            Seconds kind waits for the control plane to become ready.

        Raises
        ------
        ProvisionTimeoutError
            If creation does not finish within the readiness window.
        ProvisionError
            If kind reports a failure.

        """
        wait = max(1, int(ready_timeout))
        log_info(logger, "Creating kind cluster %s (wait %ds)", name, wait)
        try:
            result = self._run(
                [
                    "create",
                    "cluster",
                    "--name",
                    name,
                    "--config",
                    str(config_path),
                    "--wait",
                    f"{wait}s",
                ],
                timeout=wait + _CREATE_GRACE_S,
            )
        except subprocess.TimeoutExpired as e:
            raise ProvisionTimeoutError.after(name, ready_timeout) from e
        except subprocess.CalledProcessError as e:
            detail = _stderr_detail(e)
            raise ProvisionError.command_failed("create cluster", name, detail) from e

        if _WAIT_EXPIRED in (result.stderr or "").lower():
            raise ProvisionTimeoutError.after(name, ready_timeout)

    def get_kubeconfig(self, name: str) -> str:
        """Return the kubeconfig document for cluster ``name``.

        Raises
        ------
        CredentialError
            If kind fails to produce a kubeconfig or returns an empty one.

        """
        try:
            result = self._run(
                ["get", "kubeconfig", "--name", name],
                timeout=_KIND_SUBPROCESS_TIMEOUT,
            )
        except subprocess.TimeoutExpired as e:
            msg = f"kind get kubeconfig timed out for cluster '{name}'"
            raise CredentialError(msg) from e
        except subprocess.CalledProcessError as e:
            detail = _stderr_detail(e)
            msg = f"kind get kubeconfig failed for cluster '{name}': {detail}"
            raise CredentialError(msg) from e

        if not result.stdout.strip():
            raise CredentialError.empty(name)
        return result.stdout

    def delete_cluster(self, name: str) -> None:
        """Delete cluster ``name``.

        Raises
        ------
        ProvisionError
            If deletion fails or times out.

        """
        log_info(logger, "Deleting kind cluster %s", name)
        try:
            self._run(
                ["delete", "cluster", "--name", name],
                timeout=_DELETE_TIMEOUT,
            )
        except subprocess.TimeoutExpired as e:
            msg = f"kind cluster deletion timed out after {_DELETE_TIMEOUT} seconds"
            raise ProvisionError(msg) from e
        except subprocess.CalledProcessError as e:
            detail = _stderr_detail(e)
            raise ProvisionError.command_failed("delete cluster", name, detail) from e
