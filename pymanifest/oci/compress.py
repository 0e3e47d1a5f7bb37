"""Streaming gzip compression of layer content

The compressor runs in a background thread and hands compressed chunks to the
reading side through a bounded queue, a slow reader blocks the writer.
"""
import gzip
import io
import logging
import queue
import threading
import zlib
from typing import BinaryIO, Final

from pymanifest.oci.descriptor import MEDIA_TYPE_LAYER, MEDIA_TYPE_UNCOMPRESSED_LAYER
from pymanifest.oci.errors import (
    FailureKind,
    ManifestError,
    ReadFailure,
    UnsupportedEncoding,
)

logger = logging.getLogger(__name__)

COMPRESSION_BUFFER_SIZE: Final = 32768
PIPE_CAPACITY: Final = 8
COMPRESS_LEVEL: Final = 6

_EOF = object()


class PipeClosed(OSError):
    """Raised on the writing side once the reader is gone."""


class PipeReader(io.RawIOBase):
    """Read end of an in-memory pipe carrying byte chunks."""

    def __init__(self, capacity: int = PIPE_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity should be at least 1")
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._pending = memoryview(b"")
        self._finished = False
        self._error: ManifestError | None = None
        self._reader_closed = threading.Event()

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed pipe")
        while not self._pending:
            if self._error is not None:
                raise self._error
            if self._finished:
                return 0
            item = self._queue.get()
            if item is _EOF:
                self._finished = True
            elif isinstance(item, ManifestError):
                self._error = item
            else:
                self._pending = memoryview(item)
        n = min(len(buffer), len(self._pending))
        buffer[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self):
        if not self.closed:
            self._reader_closed.set()
            self._drain()
        super().close()

    def _drain(self):
        # Make room for a writer blocked on a full queue
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    # Writer side, only called from the producer thread

    def _put(self, item):
        if self._reader_closed.is_set():
            raise PipeClosed("read end of the pipe is closed")
        self._queue.put(item)

    def _close_writer(self, error: ManifestError | None = None):
        if not self._reader_closed.is_set():
            self._queue.put(_EOF if error is None else error)


class _ChunkWriter:
    """Buffers compressed output into chunks of `size` bytes for the pipe."""

    def __init__(self, pipe: PipeReader, size: int = COMPRESSION_BUFFER_SIZE):
        self._pipe = pipe
        self._size = size
        self._buffer = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self._buffer += data
        while len(self._buffer) >= self._size:
            self._pipe._put(bytes(self._buffer[: self._size]))
            del self._buffer[: self._size]
        return len(data)

    def flush(self):
        if self._buffer:
            self._pipe._put(bytes(self._buffer))
            self._buffer.clear()


def _produce(source: BinaryIO, pipe: PipeReader, done: threading.Event):
    error = None
    try:
        writer = _ChunkWriter(pipe)
        with gzip.GzipFile(
            filename="", mode="wb", fileobj=writer, compresslevel=COMPRESS_LEVEL, mtime=0
        ) as compressor:
            while chunk := source.read(COMPRESSION_BUFFER_SIZE):
                compressor.write(chunk)
        writer.flush()
    except PipeClosed:
        logger.debug("Compression stopped, reader closed the pipe")
    except ManifestError as e:
        error = e
    except (OSError, zlib.error) as e:
        error = ReadFailure.from_error(e)
    except Exception as e:
        error = ReadFailure.from_error(e, kind=FailureKind.FATAL)
    finally:
        try:
            pipe._close_writer(error)
        finally:
            done.set()


def compress(
    source: BinaryIO, capacity: int = PIPE_CAPACITY
) -> tuple[PipeReader, threading.Event]:
    """Return a stream of the gzip compressed `source` and a completion event

    The caller has to wait for the event before releasing `source`.
    """
    pipe = PipeReader(capacity)
    done = threading.Event()
    thread = threading.Thread(
        target=_produce, args=(source, pipe, done), name="layer-compressor", daemon=True
    )
    thread.start()
    return pipe, done


def open_layer_stream(
    media_type: str, source: BinaryIO
) -> tuple[BinaryIO, threading.Event | None]:
    """Return the compressed form of a layer stream

    Compressed layers are passed through as is, no completion event is returned.
    """
    if media_type == MEDIA_TYPE_UNCOMPRESSED_LAYER:
        return compress(source)
    if media_type == MEDIA_TYPE_LAYER:
        return source, None
    raise UnsupportedEncoding(f"unsupported layer media type {media_type}")
