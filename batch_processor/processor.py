#!/usr/bin/env python3
"""Process gigantic JSON record files with constant RAM."""

import argparse
import dataclasses
import importlib
import logging
import os
import pathlib
import statistics
import sys
import time
from typing import Any, List, Optional

from record_stream import (DecodeError, ParseError, StreamingRecordParser, StreamSettings)
from record_stream.chunk_reader import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)

MAX_CHUNK = 1024 * 1024
SAMPLE_RECORDS = 1000
PROGRESS_EVERY = 100000


def chunk_for_sizes(sizes: List[int]) -> int:
    """Chunk size in bytes for a sample of raw record sizes (2048 - 1 MiB)."""
    if not sizes:
        return DEFAULT_CHUNK_SIZE
    typical = statistics.mean(sizes) + statistics.pstdev(sizes)
    return int(max(DEFAULT_CHUNK_SIZE, min(MAX_CHUNK, 16 * typical)))


def resolve_field(path: pathlib.Path, array_field: Optional[str]) -> Optional[str]:
    """A file starting with '[' is a bare array whatever the configured field."""
    if StreamingRecordParser().detect_layout(path) == 'array':
        return None
    return array_field


def recommend_chunk(path: pathlib.Path, array_field: Optional[str] = 'items') -> int:
    """Sample up to SAMPLE_RECORDS raw record sizes and size the chunk to fit ~16 records."""
    sampler = StreamingRecordParser(len, array_field=resolve_field(path, array_field))
    sizes = []
    try:
        with open(path, 'rb') as f:
            for i, size in enumerate(sampler.iter_records(f)):
                if i >= SAMPLE_RECORDS:
                    break
                sizes.append(size)
    except ParseError as e:
        logger.warning("chunk sampling stopped early: %s", e)
    return chunk_for_sizes(sizes)


def load_model(target: str) -> Any:
    """Resolve ``package.module:Name`` to the record type to validate against."""
    module_name, _, attr = target.partition(':')
    if not attr:
        raise ValueError(f"model must look like 'package.module:Name', got {target!r}")
    return getattr(importlib.import_module(module_name), attr)


def process(path: pathlib.Path, chunk_size: int, settings: Optional[StreamSettings] = None,
            decoder=None) -> int:
    start = time.time()
    settings = settings or StreamSettings.from_env()
    parser = StreamingRecordParser.from_settings(settings, decoder, chunk_size=chunk_size,
                                                 array_field=resolve_field(path, settings.array_field))
    logger.info("Processing %s (chunk %s bytes, strategy %s, %s decode worker(s))",
                path, chunk_size, settings.strategy, settings.workers)

    recs = 0
    for _ in parser.iter_file(path):
        recs += 1
        if recs % PROGRESS_EVERY == 0:
            logger.info("%s records | %s bytes read | buffer peak %s bytes",
                        recs, parser.bytes_read, parser.peak_buffer_size)
    logger.info("Done %s records in %.2fs", recs, time.time() - start)
    return recs


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Stream the records of a huge {\"items\": [...]} JSON file.")
    ap.add_argument("file", type=pathlib.Path)
    ap.add_argument("--chunk-size", type=int, help="read size in bytes (default: JSON_CHUNK_SIZE or sampled)")
    ap.add_argument("--field", help="name of the array field holding the records (default: items)")
    ap.add_argument("--bare-array", action="store_true", help="records sit in a top-level array")
    ap.add_argument("--workers", type=int, help="decode worker threads")
    ap.add_argument("--max-in-flight", type=int, help="cap on pending decodes when workers > 1")
    ap.add_argument("--strategy", choices=["marker", "tokenized"],
                    help="marker: split on '},{' (records must not contain it); "
                         "tokenized: ijson tokenizer, safe for any content")
    ap.add_argument("--timeout", type=float, help="abort the run after this many seconds")
    ap.add_argument("--model", help="validate records against package.module:Model")
    return ap


def cli(argv: Optional[List[str]] = None) -> int:
    ap = build_arg_parser()
    args = ap.parse_args(argv)
    try:
        if args.chunk_size is not None and args.chunk_size < 1:
            raise ValueError(f"--chunk-size must be >= 1, got {args.chunk_size}")
        settings = StreamSettings.from_env()
        overrides = {name: value for name, value in (
            ("array_field", args.field), ("workers", args.workers),
            ("max_in_flight", args.max_in_flight), ("strategy", args.strategy),
            ("timeout", args.timeout)) if value is not None}
        if args.bare_array:
            overrides["array_field"] = None
        if "workers" in overrides and "max_in_flight" not in overrides:
            overrides["max_in_flight"] = 0
        settings = dataclasses.replace(settings, **overrides)
        decoder = load_model(args.model) if args.model else None
    except (ValueError, ImportError, AttributeError) as e:
        ap.error(str(e))

    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        if args.chunk_size:
            chunk = args.chunk_size
        elif os.environ.get("JSON_CHUNK_SIZE"):
            chunk = settings.chunk_size
        else:
            chunk = recommend_chunk(args.file, settings.array_field)
        process(args.file, chunk, settings, decoder)
    except DecodeError as e:
        logger.error("record %s is malformed: %s | %s", e.index, e.detail, e.snippet())
        return 1
    except ParseError as e:
        logger.error("parse failed: %s", e)
        return 1
    except OSError as e:
        logger.error("cannot read %s: %s", args.file, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(cli())
