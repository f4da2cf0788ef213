"""Tests for configuration loading."""

import json
import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from collegebot import config as config_module
from collegebot.config import DEFAULT_STEP_LIMIT, Config

ENV_VARS = [
    "COLLEGEBOT_API_URL", "COLLEGEBOT_API_KEY", "COLLEGEBOT_MODEL", "COLLEGEBOT_MAX_TOKENS",
    "COLLEGEBOT_TEMPERATURE", "COLLEGEBOT_STEP_LIMIT", "COLLEGEBOT_EARLY_EXIT",
    "COLLEGEBOT_REQUEST_TIMEOUT", "COLLEGEBOT_WORKSPACE",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(config_module, "get_global_config_path", lambda: home / ".collegebot.json")
    monkeypatch.chdir(tmp_path)
    return home


def test_defaults():
    config = Config()
    assert config.step_limit == DEFAULT_STEP_LIMIT == 150
    assert config.early_exit is True


def test_from_env(clean_env, monkeypatch, tmp_path):
    monkeypatch.setenv("COLLEGEBOT_API_URL", "https://llm.example/v1")
    monkeypatch.setenv("COLLEGEBOT_API_KEY", "k")
    monkeypatch.setenv("COLLEGEBOT_STEP_LIMIT", "12")
    monkeypatch.setenv("COLLEGEBOT_EARLY_EXIT", "false")
    config = Config.from_env(tmp_path / "missing.env")
    assert config.api_url == "https://llm.example/v1"
    assert config.step_limit == 12
    assert config.early_exit is False
    assert config.validate()


def test_from_dotenv_file(clean_env, tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("COLLEGEBOT_API_URL=https://dot.env/v1\nCOLLEGEBOT_API_KEY=secret\nCOLLEGEBOT_MODEL=m1\n")
    try:
        config = Config.from_env(env_file)
    finally:
        # load_dotenv writes straight into os.environ
        for name in ENV_VARS:
            os.environ.pop(name, None)
    assert config.api_url == "https://dot.env/v1"
    assert config.model == "m1"


def test_json_layers(clean_env, tmp_path):
    (clean_env / ".collegebot.json").write_text(json.dumps({"api_url": "https://global", "api_key": "g", "step_limit": 40}))
    ws = tmp_path / "ws"
    (ws / ".collegebot").mkdir(parents=True)
    (ws / ".collegebot" / "config.json").write_text(json.dumps({"step_limit": 7, "early_exit": "no"}))

    config = Config.from_json(ws)
    assert config.api_url == "https://global"
    assert config.step_limit == 7
    assert config.early_exit is False
    assert config.workspace_path == ws


def test_env_without_endpoint_falls_back_to_json(clean_env, tmp_path):
    (clean_env / ".collegebot.json").write_text(json.dumps({"api_url": "https://json", "api_key": "j"}))
    config = Config.from_env(tmp_path / "missing.env")
    assert config.api_url == "https://json"


def test_invalid_json_ignored(clean_env):
    (clean_env / ".collegebot.json").write_text("{not json")
    assert Config.from_json().api_url == ""


class TestValidate:

    def test_missing_endpoint(self):
        with pytest.raises(ValueError, match="API URL"):
            Config().validate()

    def test_missing_key(self):
        with pytest.raises(ValueError, match="API key"):
            Config(api_url="https://x").validate()

    def test_endpoint_optional(self):
        assert Config().validate(require_endpoint=False)

    def test_negative_step_limit(self):
        with pytest.raises(ValueError):
            Config(step_limit=-1).validate(require_endpoint=False)
