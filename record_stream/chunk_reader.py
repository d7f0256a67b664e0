"""Fixed-size chunk pulls from a byte source."""
import logging
from typing import Any, Tuple

from record_stream.errors import ReadError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2048


def _checked(data: Any, requested: int) -> bytes:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ReadError(f"byte source returned {type(data).__name__}, expected bytes")
    if len(data) > requested:
        raise ReadError(f"byte source returned {len(data)} bytes for a {requested} byte read")
    return bytes(data)


class ChunkReader:
    """Pull up to ``chunk_size`` bytes per call from a blocking byte source.

    Sources exposing ``readinto`` are read into one reused buffer; anything
    else only needs ``read(n)``. A ``None`` result (non-blocking source with
    no data yet) is a zero-length chunk, not end of stream.
    """

    def __init__(self, source, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.source = source
        self.chunk_size = chunk_size
        self.bytes_read = 0
        self.reads = 0
        self._readinto = getattr(source, 'readinto', None)
        self._view = memoryview(bytearray(chunk_size)) if self._readinto else None

    def next(self) -> Tuple[bytes, bool]:
        """Return ``(chunk, is_end)``."""
        try:
            if self._readinto is not None:
                count = self._readinto(self._view)
                if count is None:
                    return b'', False
                if not isinstance(count, int) or count < 0 or count > self.chunk_size:
                    raise ReadError(f"byte source reported invalid read count {count!r}")
                data = bytes(self._view[:count])
            else:
                data = self.source.read(self.chunk_size)
                if data is None:
                    return b'', False
                data = _checked(data, self.chunk_size)
        except OSError as e:
            logger.error(f"read failed after {self.bytes_read} bytes: {e}")
            raise ReadError(f"read failed: {e}") from e
        self.reads += 1
        self.bytes_read += len(data)
        return data, not data


class AsyncChunkReader:
    """``ChunkReader`` counterpart for sources with ``async read(n)``."""

    def __init__(self, source, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.source = source
        self.chunk_size = chunk_size
        self.bytes_read = 0
        self.reads = 0

    async def next(self) -> Tuple[bytes, bool]:
        try:
            data = await self.source.read(self.chunk_size)
        except OSError as e:
            logger.error(f"async read failed after {self.bytes_read} bytes: {e}")
            raise ReadError(f"read failed: {e}") from e
        if data is None:
            return b'', False
        data = _checked(data, self.chunk_size)
        self.reads += 1
        self.bytes_read += len(data)
        return data, not data
