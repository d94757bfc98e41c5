import logging
import os

import pytest
from pydantic import ValidationError

from toolstream.config import Settings
from toolstream.log import configure_logging


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run with no toolstream variables set and no ``.env`` in the cwd."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    for name in list(os.environ):
        if name.upper().startswith("TOOLSTREAM_"):
            monkeypatch.delenv(name)
    return monkeypatch


class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings()
        assert settings.model == "gpt-4o-mini"
        assert settings.api_key is None
        assert settings.mcp_servers == []
        assert settings.mcp_transport == "sse"
        assert settings.reasoning_open == "<think>"
        assert settings.max_turns is None

    def test_reads_environment(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        clean_env.setenv("TOOLSTREAM_MODEL", "qwen3")
        clean_env.setenv("TOOLSTREAM_BASE_URL", "http://localhost:8001/v1")
        clean_env.setenv("TOOLSTREAM_MCP_SERVERS", "http://a/sse, http://b/sse,")
        clean_env.setenv("TOOLSTREAM_MCP_TRANSPORT", "streamable-http")
        clean_env.setenv("TOOLSTREAM_MAX_TURNS", "4")

        settings = Settings()

        assert settings.api_key.get_secret_value() == "sk-test"
        assert settings.model == "qwen3"
        assert settings.base_url == "http://localhost:8001/v1"
        assert settings.mcp_servers == ["http://a/sse", "http://b/sse"]
        assert settings.mcp_transport == "streamable-http"
        assert settings.max_turns == 4

    def test_prefixed_api_key_wins(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-openai")
        clean_env.setenv("TOOLSTREAM_API_KEY", "sk-toolstream")
        assert Settings().api_key.get_secret_value() == "sk-toolstream"

    def test_reads_dotenv_file(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("TOOLSTREAM_DB_PATH=history.db\n")
        assert Settings().db_path == "history.db"

    def test_keyword_arguments(self, clean_env):
        settings = Settings(api_key="sk-direct", mcp_servers=["http://x/sse"])
        assert settings.api_key.get_secret_value() == "sk-direct"
        assert settings.mcp_servers == ["http://x/sse"]

    def test_api_key_hidden_in_repr(self, clean_env):
        assert "sk-secret" not in repr(Settings(api_key="sk-secret"))

    def test_invalid_transport(self, clean_env):
        clean_env.setenv("TOOLSTREAM_MCP_TRANSPORT", "carrier-pigeon")
        with pytest.raises(ValidationError):
            Settings()

    def test_max_turns_must_be_positive(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(max_turns=0)


class TestConfigureLogging:
    def test_sets_level_and_quiets_http_loggers(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("DEBUG")
            assert root.level == logging.DEBUG
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_log_file(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        log_file = tmp_path / "toolstream.log"
        try:
            configure_logging("INFO", log_file=str(log_file))
            logging.getLogger("toolstream.test").info("hello")
            for handler in root.handlers:
                handler.flush()
            assert "toolstream.test:INFO:hello" in log_file.read_text()
        finally:
            for handler in root.handlers:
                if handler not in saved_handlers:
                    handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
