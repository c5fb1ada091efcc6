"""Publish locally built images into a cluster's registry.

The pipeline builds an image from a streamed directory, tags it for the
registry's host-facing address (``localhost:5000`` by default), pushes it, and removes
the local copy so repeated publishes do not pile up images on the host.
Pods pull the same image through the in-network address
``<cluster>-registry:5000``.
"""

from __future__ import annotations

import typing as typ

from kindbox.build_context import stream_tar
from kindbox.config import REGISTRY_PORT
from kindbox.errors import KindboxError, PublishError, PublishPhase
from kindbox.logging import get_logger, log_info, log_warning

if typ.TYPE_CHECKING:
    import os
    import threading

    from kindbox.runtime import ContainerRuntime

logger = get_logger(__name__)


def local_image_tag(image_name: str, host_port: int = REGISTRY_PORT) -> str:
    """Return the host-facing registry tag for ``image_name``."""
    return f"localhost:{host_port}/{image_name}"


def publish_image(
    runtime: ContainerRuntime,
    image_name: str,
    context_dir: str | os.PathLike[str],
    *,
    cancel: threading.Event | None = None,
    host_port: int = REGISTRY_PORT,
) -> str:
    """Build ``context_dir`` as ``image_name`` and push it to the registry.

    Parameters
    ----------
    runtime : ContainerRuntime
        Runtime used for the build, push and delete.
    image_name : str
        Repository and tag, e.g. ``svc:latest``.
    context_dir : str | os.PathLike[str]
        Directory holding the Dockerfile and its build inputs.
    cancel : threading.Event | None, optional
        Stops streaming the build context when set.
    host_port : int, optional
        Host port the registry is published on.

    Returns
    -------
    str
        The registry tag that was pushed.

    Raises
    ------
    PublishError
        Naming the phase that failed. Build and push failures stop the
        pipeline. A delete failure is raised too, although the image is
        already available in the registry at that point.

    """
    tag = local_image_tag(image_name, host_port)

    try:
        with stream_tar(context_dir, cancel=cancel) as context:
            runtime.build_image(tag, context)
    except KindboxError as exc:
        raise PublishError(PublishPhase.BUILD, tag, exc) from exc

    try:
        runtime.push_image(tag)
    except KindboxError as exc:
        raise PublishError(PublishPhase.PUSH, tag, exc) from exc

    try:
        runtime.delete_image(tag, force=True)
    except KindboxError as exc:
        log_warning(
            logger,
            "Image %s was pushed but its local copy could not be removed",
            tag,
        )
        raise PublishError(PublishPhase.DELETE, tag, exc) from exc

    log_info(logger, "Published %s", tag)
    return tag
