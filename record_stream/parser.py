"""Constant-memory streaming parser for one large array of JSON records."""
import enum
import json
import logging
import time
from collections import deque
from concurrent import futures
from contextlib import closing
from typing import Any, AsyncIterator, Callable, Iterator, List, Optional, Tuple, Union

import ijson
from ijson.common import ObjectBuilder

from record_stream.buffer import AccumulationBuffer, RecordLayout
from record_stream.chunk_reader import DEFAULT_CHUNK_SIZE, AsyncChunkReader, ChunkReader
from record_stream.config import STRATEGIES, StreamSettings
from record_stream.decoders import as_decoder
from record_stream.errors import (DecodeError, ParseCancelledError, ParseError, ReadError,
                                  SegmentError)

logger = logging.getLogger(__name__)

# Upper bound on how long a blocked decode wait goes without checking for cancellation.
POLL_INTERVAL = 0.05


class ParserState(enum.Enum):
    IDLE = 'idle'
    READING = 'reading'
    SEGMENTING = 'segmenting'
    DECODING = 'decoding'
    FINISHING = 'finishing'
    DONE = 'done'
    STOPPED = 'stopped'
    FAILED = 'failed'


class StreamingRecordParser:
    """Drive read -> append -> segment -> decode until the source is exhausted.

    One parser runs one parse at a time; use separate instances for parallel
    runs. Two strategies are available:

    ``marker``
        Chunked reads into an ``AccumulationBuffer`` split on ``},{``. Fast,
        but only valid for flat records (see ``record_stream.buffer``).
    ``tokenized``
        Records are tokenized by ``ijson``; safe for any legal content.

    With ``workers > 1`` (or an ``executor``) decoding is offloaded to a pool
    with at most ``max_in_flight`` pending decodes; results are handed out in
    record order. ``timeout`` and ``cancel_event`` are checked between reads
    and between decodes; a read that blocks is not interrupted.
    """

    def __init__(self, decoder=None, chunk_size: int = DEFAULT_CHUNK_SIZE, *,
                 array_field: Optional[str] = 'items', strategy: str = 'marker',
                 workers: int = 1, max_in_flight: Optional[int] = None,
                 executor: Optional[futures.Executor] = None,
                 timeout: Optional[float] = None, cancel_event=None):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if strategy not in STRATEGIES:
            raise ValueError(f"strategy must be one of {STRATEGIES}, got {strategy!r}")
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.decoder = as_decoder(decoder)
        self.chunk_size = chunk_size
        self.layout = RecordLayout(array_field)
        self.strategy = strategy
        self.workers = workers
        self.max_in_flight = max_in_flight or 4 * workers
        self.executor = executor
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.state = ParserState.IDLE
        self.buffer: Optional[AccumulationBuffer] = None
        self._reset()

    @classmethod
    def from_settings(cls, settings: StreamSettings, decoder=None, **overrides) -> 'StreamingRecordParser':
        options = dict(chunk_size=settings.chunk_size, array_field=settings.array_field,
                       strategy=settings.strategy, workers=settings.workers,
                       max_in_flight=settings.max_in_flight, timeout=settings.timeout)
        options.update(overrides)
        return cls(decoder, **options)

    def _reset(self):
        self.segmented = 0
        self.records = 0
        self.bytes_read = 0
        self.peak_buffer_size = 0
        self._deadline = None

    def detect_layout(self, path) -> str:
        """Return 'array', 'object', or 'unknown' from the first non-space byte."""
        try:
            with open(path, 'rb') as f:
                while True:
                    ch = f.read(1)
                    if not ch:
                        return 'unknown'
                    if not ch.isspace():
                        if ch == b'[':
                            return 'array'
                        if ch == b'{':
                            return 'object'
                        return 'unknown'
        except OSError as e:
            logger.error(f"detect layout failed: {e}")
            return 'unknown'

    # -- sync entry points -------------------------------------------------

    def iter_file(self, path) -> Iterator[Any]:
        """Yield decoded records from ``path`` without loading the file."""
        with open(path, 'rb') as f:
            yield from self.iter_records(f)

    def iter_records(self, source) -> Iterator[Any]:
        """Yield decoded records from a byte source, in file order."""
        self._begin()
        try:
            if self.strategy == 'tokenized':
                pending = self._tokenized_records(source)
                decode = self.decoder.decode_value
            else:
                pending = self._segmented_records(source)
                decode = self.decoder.decode
            if self.workers > 1 or self.executor is not None:
                decoded = self._decode_pooled(pending, decode)
            else:
                decoded = self._decode_inline(pending, decode)
            yield from decoded
        except ParseError as e:
            self._fail(e)
            raise
        except GeneratorExit:
            self._stopped()
            raise
        finally:
            self._release()
        self._done()

    def parse(self, source, sink: Optional[Callable[[Any], None]] = None) -> Union[List[Any], int]:
        """Collect every record, or hand each one to ``sink`` and return the count.

        On failure the error propagates and nothing collected so far is
        returned.
        """
        values = []
        try:
            with closing(self.iter_records(source)) as records:
                for value in records:
                    if sink is None:
                        values.append(value)
                    else:
                        sink(value)
        except Exception:
            self.state = ParserState.FAILED
            raise
        return values if sink is None else self.records

    # -- async entry point -------------------------------------------------

    async def aiter_records(self, source) -> AsyncIterator[Any]:
        """Async variant for sources with ``async read(n)``; decodes inline."""
        self._begin()
        try:
            if self.strategy == 'tokenized':
                async for obj in self._atokenized_records(source):
                    yield obj
            else:
                reader = AsyncChunkReader(source, self.chunk_size)
                buffer = self.buffer = AccumulationBuffer(self.layout)
                while True:
                    self._check_cancel()
                    self.state = ParserState.READING
                    chunk, is_end = await reader.next()
                    self.bytes_read = reader.bytes_read
                    if is_end:
                        break
                    for index, raw in self._segment(buffer, chunk):
                        yield self._decode_one(self.decoder.decode, index, raw)
                for index, raw in self._flush(buffer):
                    yield self._decode_one(self.decoder.decode, index, raw)
        except ParseError as e:
            self._fail(e)
            raise
        except GeneratorExit:
            self._stopped()
            raise
        finally:
            self._release()
        self._done()

    # -- record producers ----------------------------------------------------

    def _segmented_records(self, source) -> Iterator[Tuple[int, bytes]]:
        reader = ChunkReader(source, self.chunk_size)
        buffer = self.buffer = AccumulationBuffer(self.layout)
        while True:
            self._check_cancel()
            self.state = ParserState.READING
            chunk, is_end = reader.next()
            self.bytes_read = reader.bytes_read
            if is_end:
                break
            yield from self._segment(buffer, chunk)
        yield from self._flush(buffer)

    def _segment(self, buffer: AccumulationBuffer, chunk: bytes) -> List[Tuple[int, bytes]]:
        self.state = ParserState.SEGMENTING
        buffer.append(chunk)
        self.peak_buffer_size = buffer.peak_size
        extracted = []
        for raw in buffer.extract_complete():
            self.segmented += 1
            extracted.append((self.segmented, raw))
        return extracted

    def _flush(self, buffer: AccumulationBuffer) -> List[Tuple[int, bytes]]:
        self.state = ParserState.FINISHING
        final = buffer.finish()
        if final is None:
            return []
        self.segmented += 1
        return [(self.segmented, final)]

    def _tokenized_records(self, source) -> Iterator[Tuple[int, Any]]:
        self.state = ParserState.READING
        events = _RecordEvents(self.layout)
        try:
            for prefix, event, value in ijson.parse(source, buf_size=self.chunk_size, use_float=True):
                complete, obj = events.feed(prefix, event, value, self.segmented)
                if not complete:
                    continue
                self.segmented += 1
                yield self.segmented, obj
                self._check_cancel()
                self.state = ParserState.READING
        except ijson.JSONError as e:
            raise SegmentError(f"tokenizer rejected input: {e}", record_index=self.segmented) from e
        except OSError as e:
            raise ReadError(f"read failed: {e}", record_index=self.segmented) from e
        events.finish(self.segmented)

    async def _atokenized_records(self, source) -> AsyncIterator[Any]:
        self.state = ParserState.READING
        events = _RecordEvents(self.layout)
        try:
            async for prefix, event, value in ijson.parse(source, buf_size=self.chunk_size,
                                                          use_float=True):
                complete, obj = events.feed(prefix, event, value, self.segmented)
                if not complete:
                    continue
                self.segmented += 1
                yield self._decode_one(self.decoder.decode_value, self.segmented, obj)
                self._check_cancel()
                self.state = ParserState.READING
        except ijson.JSONError as e:
            raise SegmentError(f"tokenizer rejected input: {e}", record_index=self.segmented) from e
        except OSError as e:
            raise ReadError(f"read failed: {e}", record_index=self.segmented) from e
        events.finish(self.segmented)

    # -- decoding ------------------------------------------------------------

    def _decode_inline(self, pending, decode) -> Iterator[Any]:
        for index, item in pending:
            self._check_cancel()
            yield self._decode_one(decode, index, item)

    def _decode_one(self, decode, index: int, item) -> Any:
        self.state = ParserState.DECODING
        try:
            value = decode(item)
        except Exception as e:
            raise DecodeError(index, f"{type(e).__name__}: {e}", raw=_raw_bytes(item)) from e
        self.records += 1
        return value

    def _decode_pooled(self, pending, decode) -> Iterator[Any]:
        executor = self.executor
        owned = executor is None
        if owned:
            executor = futures.ThreadPoolExecutor(max_workers=self.workers,
                                                  thread_name_prefix='record-decode')
        in_flight = deque()
        try:
            try:
                for index, item in pending:
                    self._check_cancel()
                    in_flight.append((index, item, executor.submit(decode, item)))
                    while len(in_flight) >= self.max_in_flight:
                        yield self._collect(*in_flight.popleft())
            except (ReadError, SegmentError):
                # An earlier record's decode failure takes precedence.
                while in_flight:
                    yield self._collect(*in_flight.popleft())
                raise
            while in_flight:
                yield self._collect(*in_flight.popleft())
        finally:
            for _, _, future in in_flight:
                future.cancel()
            if owned:
                executor.shutdown(wait=False, cancel_futures=True)

    def _collect(self, index: int, item, future: futures.Future) -> Any:
        self.state = ParserState.DECODING
        while not future.done():
            self._check_cancel()
            futures.wait([future], timeout=self._poll_interval())
        try:
            value = future.result()
        except Exception as e:
            raise DecodeError(index, f"{type(e).__name__}: {e}", raw=_raw_bytes(item)) from e
        self.records += 1
        return value

    # -- run lifecycle -------------------------------------------------------

    def _begin(self):
        self._reset()
        if self.timeout is not None:
            self._deadline = time.monotonic() + self.timeout
        self.state = ParserState.READING
        logger.debug(f"parse started: strategy={self.strategy} chunk_size={self.chunk_size} "
                     f"layout={self.layout!r} workers={self.workers}")

    def _check_cancel(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ParseCancelledError('cancelled', record_index=self.segmented)
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise ParseCancelledError('timeout', record_index=self.segmented)

    def _poll_interval(self) -> Optional[float]:
        if self._deadline is None and self.cancel_event is None:
            return None
        if self._deadline is None:
            return POLL_INTERVAL
        return max(0.0, min(POLL_INTERVAL, self._deadline - time.monotonic()))

    def _fail(self, error: ParseError):
        if not error.record_index:
            error.record_index = self.segmented
        self.state = ParserState.FAILED
        logger.error(f"parse failed after {self.records} records, {self.bytes_read} bytes: {error}")

    def _release(self):
        if self.buffer is not None:
            self.peak_buffer_size = self.buffer.peak_size
            self.buffer.clear()
            self.buffer = None

    def _done(self):
        self.state = ParserState.DONE
        logger.info("parsed %s records (%s bytes, peak buffer %s bytes)",
                    self.records, self.bytes_read, self.peak_buffer_size)

    def _stopped(self):
        self.state = ParserState.STOPPED
        logger.debug("consumer stopped after %s records", self.records)


class _RecordEvents:
    """Assemble records from ``ijson.parse`` events and police the wrapper.

    Only the configured record array may sit at the top level (inside the
    single wrapper field when there is one), matching what the marker
    strategy accepts.
    """

    def __init__(self, layout: RecordLayout):
        self.field = layout.array_field
        self.array_prefix = layout.array_field or ''
        self.item_prefix = layout.items_pointer
        self.opened = False
        self._builder = None
        self._depth = 0

    def feed(self, prefix: str, event: str, value, index: int) -> Tuple[bool, Any]:
        """Return ``(True, record)`` when a record completes, else ``(False, None)``."""
        if self._builder is not None:
            self._builder.event(event, value)
            if event in ('start_map', 'start_array'):
                self._depth += 1
            elif event in ('end_map', 'end_array'):
                self._depth -= 1
                if not self._depth:
                    record, self._builder = self._builder.value, None
                    return True, record
            return False, None
        if self.opened and prefix == self.item_prefix:
            if event in ('start_map', 'start_array'):
                self._builder = ObjectBuilder()
                self._builder.event(event, value)
                self._depth = 1
                return False, None
            return True, value
        if prefix == self.array_prefix:
            if event == 'start_array' and not self.opened:
                self.opened = True
                return False, None
            if event == 'end_array' and self.opened:
                return False, None
        if self.field is not None and prefix == '':
            if event == 'map_key' and value == self.field and not self.opened:
                return False, None
            if event in ('start_map', 'end_map'):
                return False, None
            if event == 'map_key':
                raise SegmentError(f"unexpected wrapper field {value!r}", record_index=index)
        raise SegmentError(f"unexpected wrapper around record array: {event} at {prefix!r}",
                           record_index=index)

    def finish(self, index: int):
        if not self.opened:
            raise SegmentError("stream ended before the record array opened", record_index=index)


def _raw_bytes(item) -> Optional[bytes]:
    if isinstance(item, (bytes, bytearray)):
        return bytes(item)
    try:
        return json.dumps(item).encode('utf-8')
    except (TypeError, ValueError):
        return None


def iter_records(source, decoder=None, chunk_size: int = DEFAULT_CHUNK_SIZE, **options) -> Iterator[Any]:
    """Stream decoded records from ``source``; see ``StreamingRecordParser``."""
    return StreamingRecordParser(decoder, chunk_size, **options).iter_records(source)


def parse_records(source, decoder=None, chunk_size: int = DEFAULT_CHUNK_SIZE, *,
                  sink: Optional[Callable[[Any], None]] = None, **options) -> Union[List[Any], int]:
    """Parse every record in ``source``.

    Returns the ordered list of decoded values, or, when ``sink`` is given,
    calls it once per record in order and returns the record count. Raises a
    ``ParseError`` subclass on the first failure.
    """
    return StreamingRecordParser(decoder, chunk_size, **options).parse(source, sink=sink)
