#!/usr/bin/env python3
"""Tests for environment-driven StreamSettings."""

import dataclasses

import pytest

from record_stream import StreamingRecordParser, StreamSettings


class TestStreamSettings:

    def test_defaults(self, clean_environment):
        settings = StreamSettings.from_env()
        assert settings.chunk_size == 2048
        assert settings.array_field == "items"
        assert settings.workers == 1
        assert settings.max_in_flight == 4
        assert settings.timeout is None
        assert settings.strategy == "marker"
        assert settings.debug is False

    def test_reads_environment(self, clean_environment):
        clean_environment.setenv("JSON_CHUNK_SIZE", "65536")
        clean_environment.setenv("JSON_ARRAY_FIELD", "rows")
        clean_environment.setenv("JSON_DECODE_WORKERS", "3")
        clean_environment.setenv("JSON_PARSE_TIMEOUT", "2.5")
        clean_environment.setenv("JSON_STRATEGY", "tokenized")
        clean_environment.setenv("DEBUG", "true")

        settings = StreamSettings.from_env()

        assert settings.chunk_size == 65536
        assert settings.array_field == "rows"
        assert settings.workers == 3
        assert settings.max_in_flight == 12
        assert settings.timeout == 2.5
        assert settings.strategy == "tokenized"
        assert settings.debug is True

    def test_explicit_mapping(self):
        settings = StreamSettings.from_env({"JSON_MAX_IN_FLIGHT": "7", "JSON_ARRAY_FIELD": ""})
        assert settings.max_in_flight == 7
        assert settings.array_field is None

    @pytest.mark.parametrize("env", [
        {"JSON_CHUNK_SIZE": "abc"},
        {"JSON_CHUNK_SIZE": "0"},
        {"JSON_DECODE_WORKERS": "0"},
        {"JSON_PARSE_TIMEOUT": "soon"},
        {"JSON_STRATEGY": "regex"},
    ])
    def test_invalid_values(self, env):
        with pytest.raises(ValueError):
            StreamSettings.from_env(env)

    @pytest.mark.parametrize("options", [
        {"workers": 0},
        {"max_in_flight": -1},
        {"chunk_size": 0},
        {"timeout": 0},
    ])
    def test_replace_validates(self, options):
        with pytest.raises(ValueError):
            dataclasses.replace(StreamSettings(), **options)

    def test_parser_from_settings(self):
        settings = StreamSettings(chunk_size=99, array_field=None, workers=2, strategy="tokenized")
        parser = StreamingRecordParser.from_settings(settings, chunk_size=10)

        assert parser.chunk_size == 10
        assert parser.layout.array_field is None
        assert parser.workers == 2
        assert parser.max_in_flight == 8
        assert parser.strategy == "tokenized"
