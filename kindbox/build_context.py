"""Streaming tar build contexts.

:func:`stream_tar` turns a directory tree into a lazily produced tar byte
stream suitable as the request body of an image build. A producer thread
walks the tree and writes the archive into a bounded queue of chunks; the
consumer drains the queue through iteration or ``read``. The bounded queue
is the only shared state between the two sides and provides backpressure:
when the consumer stops reading, the producer blocks and the walk stalls.

A failure during the walk (permission error, vanished file, short read) is
delivered to the consumer as a terminal :class:`BuildContextError`, so a
truncated archive is never mistaken for a complete one.

Examples
--------
Feed a directory to a build call:

    with stream_tar("./my-service") as context:
        runtime.build_image("localhost:5000/my-service:latest", context)

"""

from __future__ import annotations

import dataclasses
import os
import queue
import stat
import tarfile
import threading
import typing as typ
from pathlib import Path

from kindbox.errors import BuildContextError
from kindbox.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

# Number of archive chunks buffered between producer and consumer.
_QUEUE_DEPTH = 8
# Interval at which blocked queue operations re-check for cancellation.
_POLL_INTERVAL_S = 0.1
# Upper bound on waiting for the producer thread after close().
_JOIN_TIMEOUT_S = 5.0


class _Cancelled(Exception):
    """Internal signal that the consumer abandoned the stream."""


@dataclasses.dataclass(frozen=True, slots=True)
class _Failure:
    """Terminal queue item carrying the producer's exception."""

    error: BaseException


_EOF = object()

_StopCheck: typ.TypeAlias = "cabc.Callable[[], bool]"


def _offer(chunks: queue.Queue[object], item: object, stopped: _StopCheck) -> None:
    """Put ``item`` on the queue, giving up once the stream is stopped."""
    while True:
        if stopped():
            raise _Cancelled
        try:
            chunks.put(item, timeout=_POLL_INTERVAL_S)
        except queue.Full:
            continue
        return


class _QueueWriter:
    """Write-only file object that forwards archive bytes into the queue."""

    def __init__(self, chunks: queue.Queue[object], stopped: _StopCheck) -> None:
        self._chunks = chunks
        self._stopped = stopped

    def write(self, data: bytes) -> int:
        if data:
            _offer(self._chunks, bytes(data), self._stopped)
        return len(data)


def _raise_walk_error(err: OSError) -> None:
    raise err


def _iter_regular_files(root: Path) -> cabc.Iterator[tuple[Path, str]]:
    """Yield regular files under ``root`` with their tree-relative names."""
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames.sort()
        for filename in sorted(filenames):
            path = Path(dirpath, filename)
            if not stat.S_ISREG(path.lstat().st_mode):
                log_debug(logger, "Skipping non-regular file %s", path)
                continue
            yield path, path.relative_to(root).as_posix()


def _add_file(archive: tarfile.TarFile, path: Path, arcname: str) -> None:
    info = archive.gettarinfo(str(path), arcname=arcname)
    with path.open("rb") as handle:
        archive.addfile(info, handle)


def _produce(root: Path, chunks: queue.Queue[object], stopped: _StopCheck) -> None:
    """Write the archive for ``root`` into ``chunks`` and a terminal marker."""
    try:
        with tarfile.open(fileobj=_QueueWriter(chunks, stopped), mode="w|") as archive:
            for path, arcname in _iter_regular_files(root):
                if stopped():
                    raise _Cancelled
                _add_file(archive, path, arcname)
    except _Cancelled:
        log_debug(logger, "Build context stream for %s cancelled", root)
        return
    except Exception as exc:  # noqa: BLE001 - forwarded to the consumer
        try:
            _offer(chunks, _Failure(exc), stopped)
        except _Cancelled:
            return
        return

    try:
        _offer(chunks, _EOF, stopped)
    except _Cancelled:
        return


class BuildContext:
    """Lazy, single-pass tar stream of a directory tree.

    The producer thread starts on the first read. The stream can be
    consumed either by iterating over byte chunks or through ``read``; it
    cannot be restarted once exhausted. Closing the stream (or leaving its
    ``with`` block) stops the producer and releases its open file handle.
    """

    def __init__(
        self,
        root: Path,
        *,
        cancel: threading.Event | None = None,
        queue_depth: int = _QUEUE_DEPTH,
    ) -> None:
        """Prepare a stream for ``root``; nothing is read until consumed.

        Parameters
        ----------
        root : Path
            Directory whose contents form the archive.
        cancel : threading.Event | None, optional
            External cancellation signal. Once set, the walk stops and the
            consumer receives a :class:`BuildContextError`.
        queue_depth : int, optional
            Number of chunks buffered between producer and consumer.

        """
        self.root = root
        self._cancel = cancel
        self._closed = threading.Event()
        self._chunks: queue.Queue[object] = queue.Queue(maxsize=queue_depth)
        self._producer = threading.Thread(
            target=_produce,
            args=(root, self._chunks, self._stopped),
            name=f"build-context:{root}",
            daemon=True,
        )
        self._started = False
        self._finished = False
        self._pending = b""

    def _stopped(self) -> bool:
        return self._closed.is_set() or (
            self._cancel is not None and self._cancel.is_set()
        )

    def _start(self) -> None:
        if not self._started:
            self._started = True
            self._producer.start()

    def _take(self) -> object:
        while True:
            if self._cancel is not None and self._cancel.is_set():
                self.close()
                msg = f"build context stream for {self.root} was cancelled"
                raise BuildContextError(msg)
            try:
                return self._chunks.get(timeout=_POLL_INTERVAL_S)
            except queue.Empty:
                if self._producer.is_alive():
                    continue
            try:
                return self._chunks.get_nowait()
            except queue.Empty:
                msg = f"build context producer for {self.root} stopped unexpectedly"
                raise BuildContextError(msg) from None

    def _next_chunk(self) -> bytes | None:
        if self._finished or self._closed.is_set():
            return None
        self._start()
        item = self._take()
        if item is _EOF:
            self._finished = True
            return None
        if isinstance(item, _Failure):
            self._finished = True
            msg = f"failed to stream build context {self.root}: {item.error}"
            raise BuildContextError(msg) from item.error
        return typ.cast("bytes", item)

    def __iter__(self) -> cabc.Iterator[bytes]:
        """Yield archive chunks until the stream ends."""
        if self._pending:
            pending, self._pending = self._pending, b""
            yield pending
        while (chunk := self._next_chunk()) is not None:
            yield chunk

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes; ``-1`` reads the remaining stream."""
        parts = [self._pending]
        length = len(self._pending)
        while size < 0 or length < size:
            chunk = self._next_chunk()
            if chunk is None:
                break
            parts.append(chunk)
            length += len(chunk)
        data = b"".join(parts)
        if size < 0:
            self._pending = b""
            return data
        self._pending = data[size:]
        return data[:size]

    def close(self) -> None:
        """Stop the producer and discard any buffered chunks."""
        self._closed.set()
        while True:
            try:
                self._chunks.get_nowait()
            except queue.Empty:
                break
        self._pending = b""
        if self._started and self._producer is not threading.current_thread():
            self._producer.join(timeout=_JOIN_TIMEOUT_S)

    @property
    def closed(self) -> bool:
        """Return True once the stream has been closed."""
        return self._closed.is_set()

    def __enter__(self) -> typ.Self:
        """Return the stream for use in a ``with`` block."""
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Close the stream on leaving the ``with`` block."""
        self.close()


def stream_tar(
    root_dir: str | os.PathLike[str],
    *,
    cancel: threading.Event | None = None,
) -> BuildContext:
    """Return a lazy tar stream of the regular files under ``root_dir``.

    Entry names are relative to ``root_dir`` and use ``/`` separators, so
    the archive is rooted at the tree's contents. Directories are not
    emitted as entries; symlinks and other non-regular files are skipped.

    Raises
    ------
    BuildContextError
        If ``root_dir`` does not exist or is not a directory.

    """
    root = Path(root_dir)
    if not root.is_dir():
        msg = f"build context must be an existing directory: {root}"
        raise BuildContextError(msg)
    return BuildContext(root, cancel=cancel)
