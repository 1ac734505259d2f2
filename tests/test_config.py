"""Tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from statechart_backend.config import DEFAULT_KROKI_URL, Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.kroki_url == DEFAULT_KROKI_URL
        assert settings.port == 8000
        assert settings.autosave is True

    def test_reads_prefixed_variables(self):
        settings = Settings.from_env({
            "STATECHART_WORKSPACE": "/tmp/ws.json",
            "STATECHART_PORT": "9000",
            "STATECHART_AUTOSAVE": "false",
            "STATECHART_KROKI_URL": "",
        })
        assert settings.workspace == Path("/tmp/ws.json")
        assert settings.port == 9000
        assert settings.autosave is False
        assert settings.kroki_url == DEFAULT_KROKI_URL

    def test_rejects_bad_port(self):
        with pytest.raises(ValidationError):
            Settings.from_env({"STATECHART_PORT": "70000"})
