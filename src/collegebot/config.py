"""Configuration management for the orchestration engine."""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

DEFAULT_STEP_LIMIT = 150


def get_global_config_path() -> Path:
    """Get path to global config: ~/.collegebot.json"""
    return Path.home() / ".collegebot.json"


def get_workspace_config_path(workspace: Optional[Path] = None) -> Path:
    """Get path to workspace config: workspace/.collegebot/config.json"""
    ws = workspace or Path.cwd()
    return ws / ".collegebot" / "config.json"


def load_json_config(path: Path) -> dict:
    """Load config from JSON file if it exists."""
    if path.exists():
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, IOError):
            pass
    return {}


def _as_bool(value, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Configuration for a conversation run and its model endpoint."""

    api_url: str = ""
    api_key: str = ""
    model: str = "gpt-4o-mini"
    max_tokens: int = 4096
    temperature: float = 0.0
    step_limit: int = DEFAULT_STEP_LIMIT
    early_exit: bool = True
    request_timeout: float = 600.0
    workspace_path: Path = field(default_factory=lambda: Path.cwd())

    @classmethod
    def from_json(cls, workspace: Optional[Path] = None) -> "Config":
        """Load configuration from JSON files.

        Priority (later overrides earlier):
        1. ~/.collegebot.json (global)
        2. workspace/.collegebot/config.json (workspace-specific)
        """
        config_data = {}
        config_data.update(load_json_config(get_global_config_path()))
        config_data.update(load_json_config(get_workspace_config_path(workspace)))

        return cls(
            api_url=config_data.get("api_url", ""),
            api_key=config_data.get("api_key", ""),
            model=config_data.get("model", "gpt-4o-mini"),
            max_tokens=int(config_data.get("max_tokens", 4096)),
            temperature=float(config_data.get("temperature", 0.0)),
            step_limit=int(config_data.get("step_limit", DEFAULT_STEP_LIMIT)),
            early_exit=_as_bool(config_data.get("early_exit"), True),
            request_timeout=float(config_data.get("request_timeout", 600.0)),
            workspace_path=workspace or Path.cwd(),
        )

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "Config":
        """Load configuration from environment variables, falling back to JSON."""
        if env_path and env_path.exists():
            load_dotenv(env_path)
        else:
            load_dotenv()

        api_url = os.getenv("COLLEGEBOT_API_URL", "")
        api_key = os.getenv("COLLEGEBOT_API_KEY", "")

        # Endpoint not configured through the environment: use JSON files
        if not api_url or not api_key:
            return cls.from_json()

        return cls(
            api_url=api_url,
            api_key=api_key,
            model=os.getenv("COLLEGEBOT_MODEL", "gpt-4o-mini"),
            max_tokens=int(os.getenv("COLLEGEBOT_MAX_TOKENS", "4096")),
            temperature=float(os.getenv("COLLEGEBOT_TEMPERATURE", "0.0")),
            step_limit=int(os.getenv("COLLEGEBOT_STEP_LIMIT", str(DEFAULT_STEP_LIMIT))),
            early_exit=_as_bool(os.getenv("COLLEGEBOT_EARLY_EXIT"), True),
            request_timeout=float(os.getenv("COLLEGEBOT_REQUEST_TIMEOUT", "600")),
            workspace_path=Path(os.getenv("COLLEGEBOT_WORKSPACE", str(Path.cwd()))),
        )

    def validate(self, require_endpoint: bool = True) -> bool:
        """Validate the configuration."""
        if self.step_limit < 0:
            raise ValueError("step_limit must be zero or greater.")
        if require_endpoint:
            if not self.api_url:
                raise ValueError("API URL is required. Set COLLEGEBOT_API_URL or api_url in ~/.collegebot.json.")
            if not self.api_key:
                raise ValueError("API key is required. Set COLLEGEBOT_API_KEY or api_key in ~/.collegebot.json.")
        return True
