# proxy/test_config.py
import pytest
from pydantic import ValidationError

from config import Settings

_ENV_VARS = ("LLM_SERVER_URL", "PORT", "HOST", "LOG_LEVEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class TestSettings:
    def test_defaults(self):
        cfg = Settings(_env_file=None)
        assert cfg.llm_server_url == "http://localhost:8000"
        assert cfg.host == "0.0.0.0"
        assert cfg.port == 3000
        assert cfg.log_level == "INFO"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("LLM_SERVER_URL", "http://gpu-box:9000")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("HOST", "127.0.0.1")
        cfg = Settings(_env_file=None)
        assert cfg.llm_server_url == "http://gpu-box:9000"
        assert cfg.port == 8080
        assert cfg.host == "127.0.0.1"

    def test_invalid_port_rejected(self, monkeypatch):
        monkeypatch.setenv("PORT", "not-a-port")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("LLM_SERVER_URL=http://from-dotenv:8001\nPORT=4000\n")
        cfg = Settings(_env_file=env_file)
        assert cfg.llm_server_url == "http://from-dotenv:8001"
        assert cfg.port == 4000

    def test_environment_beats_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("PORT=4000\n")
        monkeypatch.setenv("PORT", "5000")
        assert Settings(_env_file=env_file).port == 5000
