#!/usr/bin/env python3
"""Shared pytest fixtures for the json-lite record streaming test suite."""

import pytest
import io
import pathlib
import sys
from typing import Any, Dict, List
from unittest.mock import patch

# Add parent directory to path for imports
sys.path.insert(0, str(pathlib.Path(__file__).parent.parent))

# Import test data generator
from tests.fixtures.generate_test_data import (
    generate_flat_json,
    generate_corrupted_json,
    generate_malformed_record_json,
    generate_unicode_json,
    generate_streaming_json,
    make_record,
    write_items_file,
)
from tests.fixtures.records import Item, items_bytes


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def sample_records() -> List[Dict[str, Any]]:
    """Fifty uniform records."""
    return [make_record(i) for i in range(50)]


@pytest.fixture
def sample_payload(sample_records) -> bytes:
    return items_bytes(sample_records)


@pytest.fixture
def sample_source(sample_payload) -> io.BytesIO:
    return io.BytesIO(sample_payload)


# ============================================================================
# File Fixtures
# ============================================================================

@pytest.fixture
def small_items_file(tmp_path) -> pathlib.Path:
    """Compact items file with 100 records."""
    json_file = tmp_path / "small.json"
    generate_streaming_json(100, str(json_file))
    return json_file


@pytest.fixture
def medium_items_file(tmp_path) -> pathlib.Path:
    """Pretty-separated items file (~2MB, 2000 records)."""
    json_file = tmp_path / "medium.json"
    generate_flat_json(2, 2000, str(json_file))
    return json_file


@pytest.fixture
def bare_array_file(tmp_path) -> pathlib.Path:
    json_file = tmp_path / "bare.json"
    write_items_file((make_record(i) for i in range(20)), str(json_file), field=None)
    return json_file


@pytest.fixture
def truncated_items_file(tmp_path) -> pathlib.Path:
    json_file = tmp_path / "truncated.json"
    generate_corrupted_json(50, 2000, str(json_file))
    return json_file


@pytest.fixture
def malformed_items_file(tmp_path) -> pathlib.Path:
    """Record 7 of 20 carries a string timestamp."""
    json_file = tmp_path / "malformed.json"
    generate_malformed_record_json(20, 7, str(json_file))
    return json_file


@pytest.fixture
def unicode_items_file(tmp_path) -> pathlib.Path:
    json_file = tmp_path / "unicode.json"
    generate_unicode_json(100, str(json_file))
    return json_file


# ============================================================================
# Parser Fixtures
# ============================================================================

@pytest.fixture
def streaming_parser():
    """Create a StreamingRecordParser instance with dict output."""
    from record_stream import StreamingRecordParser
    return StreamingRecordParser()


@pytest.fixture
def item_parser():
    """Create a StreamingRecordParser validating against Item."""
    from record_stream import StreamingRecordParser
    return StreamingRecordParser(Item)


# ============================================================================
# FastAPI Test Client
# ============================================================================

@pytest.fixture
def fastapi_client():
    """Create a FastAPI test client for the upload service."""
    from fastapi.testclient import TestClient
    from upload_service.app.main import app

    return TestClient(app)


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture
def clean_environment(monkeypatch):
    """Ensure a clean environment for tests."""
    env_vars_to_remove = ['JSON_CHUNK_SIZE', 'JSON_ARRAY_FIELD', 'JSON_DECODE_WORKERS',
                          'JSON_MAX_IN_FLIGHT', 'JSON_PARSE_TIMEOUT', 'JSON_STRATEGY', 'DEBUG']
    for var in env_vars_to_remove:
        monkeypatch.delenv(var, raising=False)

    yield monkeypatch


@pytest.fixture
def mock_logger():
    """Patch the parser module logger."""
    with patch('record_stream.parser.logger') as mock_logger:
        yield mock_logger


# ============================================================================
# Async Fixtures
# ============================================================================

@pytest.fixture
def anyio_backend():
    return 'asyncio'


# ============================================================================
# Performance Testing Fixtures
# ============================================================================

@pytest.fixture
def memory_profiler():
    """Setup memory profiling for tests."""
    try:
        from memory_profiler import memory_usage
    except ImportError:
        pytest.skip("memory_profiler not installed")

    def profile_memory(func, *args, **kwargs):
        """Profile memory usage (MiB) of a function."""
        mem_usage = memory_usage((func, args, kwargs), interval=0.05)
        return {
            "min": min(mem_usage),
            "max": max(mem_usage),
            "avg": sum(mem_usage) / len(mem_usage)
        }

    return profile_memory


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line("markers", "benchmark: marks benchmark tests")
