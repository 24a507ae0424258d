"""
Unit Tests for Settings and Logging Setup
"""

import json
import logging
from pathlib import Path

import pytest

from asr.config import configure_logging, get_settings
from asr.core.exceptions import ConfigurationError


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for name in ("ASR_BATCH_SIZE", "ASR_TITLE_SIMILARITY", "ASR_FULLTEXT_GATE_BLOCKING"):
            monkeypatch.delenv(name, raising=False)
        settings = get_settings()
        assert settings.pipeline.batch_size == 5
        assert settings.pipeline.fulltext_gate_blocking is True
        assert settings.dedupe.title_similarity == 0.85
        assert settings.llm.screening_temperature == 0.1
        assert settings.llm.adjudication_temperature == 0.0

    def test_singleton(self):
        assert get_settings() is get_settings()

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ASR_BATCH_SIZE", "12")
        monkeypatch.setenv("ASR_FULLTEXT_GATE_BLOCKING", "false")
        monkeypatch.setenv("ASR_SEED", "7")
        settings = get_settings()
        assert settings.pipeline.batch_size == 12
        assert settings.pipeline.fulltext_gate_blocking is False
        assert settings.llm.seed == 7

    def test_paths_resolved(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("ASR_PDFS_DIR", str(tmp_path / "a" / ".." / "pdfs"))
        assert get_settings().pipeline.pdfs_dir == (tmp_path / "pdfs").resolve()

    @pytest.mark.parametrize(
        "name, value",
        [
            ("ASR_TITLE_SIMILARITY", "0"),
            ("ASR_TITLE_SIMILARITY", "1.5"),
            ("ASR_BATCH_SIZE", "0"),
            ("ASR_BATCH_DELAY_SECONDS", "-1"),
            ("ASR_LLM_PROVIDER", "mystery"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigurationError) as exc_info:
            get_settings()
        assert exc_info.value.details["errors"]


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_text_format(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        monkeypatch.setenv("LOG_FORMAT", "text")
        configure_logging()
        logger = logging.getLogger("asr")
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1

    def test_json_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        configure_logging()
        handler = logging.getLogger("asr").handlers[0]
        record = logging.LogRecord("asr.test", logging.INFO, __file__, 1, "hello %s", ("x",), None)
        payload = json.loads(handler.format(record))
        assert payload["message"] == "hello x"
        assert payload["logger"] == "asr.test"

    def test_reconfigure_replaces_handler(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger("asr").handlers) == 1
