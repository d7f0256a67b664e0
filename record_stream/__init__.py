"""Bounded-memory streaming parser for large homogeneous JSON record arrays."""
from record_stream.buffer import AccumulationBuffer, RecordLayout
from record_stream.chunk_reader import DEFAULT_CHUNK_SIZE, AsyncChunkReader, ChunkReader
from record_stream.config import StreamSettings
from record_stream.decoders import JSONRecordDecoder, ModelRecordDecoder, as_decoder
from record_stream.errors import (DecodeError, ParseCancelledError, ParseError, ReadError,
                                  SegmentError)
from record_stream.parser import ParserState, StreamingRecordParser, iter_records, parse_records

__all__ = [
    'AccumulationBuffer', 'RecordLayout', 'DEFAULT_CHUNK_SIZE', 'AsyncChunkReader',
    'ChunkReader', 'StreamSettings', 'JSONRecordDecoder', 'ModelRecordDecoder', 'as_decoder',
    'DecodeError', 'ParseCancelledError', 'ParseError', 'ReadError', 'SegmentError',
    'ParserState', 'StreamingRecordParser', 'iter_records', 'parse_records',
]
