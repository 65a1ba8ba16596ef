"""Configuration loading utilities for StoryLoom.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable STORYLOOM_CONFIG
3. Fallback to "config/default.yaml"

It also supports optional overrides from environment variables with prefix
``STORYLOOM__`` (e.g., STORYLOOM__MODEL__API_KEY=sk-...).

The raw dictionary is turned into a :class:`Settings` object once at startup
and handed to the client, scheduler and session constructors.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "STORYLOOM__"
DEFAULT_CONFIG_PATH = "config/default.yaml"

# Leaves that must never be coerced to numbers/bools.
_STRING_LEAVES = {"api_key", "api_url", "model_name", "data_dir", "language", "dir", "level"}


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix STORYLOOM__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., STORYLOOM__MODEL__API_KEY -> cfg["model"]["api_key"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        leaf = parts[-1]
        if leaf in _STRING_LEAVES:
            sub[leaf] = value
        elif value.lower() in {"true", "false"}:
            sub[leaf] = value.lower() == "true"
        else:
            try:
                if "." in value:
                    sub[leaf] = float(value)
                else:
                    sub[leaf] = int(value)
            except ValueError:
                sub[leaf] = value
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``STORYLOOM_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Parsed configuration dictionary with environment overrides applied.
    """
    if path is None:
        path = os.environ.get("STORYLOOM_CONFIG", DEFAULT_CONFIG_PATH)

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides({})

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigurationError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(cfg)


def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    sub = cfg.get(name) if isinstance(cfg, dict) else None
    return sub if isinstance(sub, dict) else {}


def _origins(value: Any) -> List[str]:
    # A single env override arrives as "http://a.test,http://b.test".
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in value or [] if str(v).strip()] or ["*"]


# Fields the user may change at runtime; persisted between runs.
USER_FIELDS: Dict[str, Callable[[Any], Any]] = {
    "api_url": str,
    "api_key": str,
    "model_name": str,
    "temperature": float,
    "max_tokens": int,
    "max_history_turns": int,
}


@dataclass
class Settings:
    """Everything the core needs, built once and passed by reference."""

    api_url: str = "https://api.deepseek.com/v1"
    api_key: str = ""
    model_name: str = "deepseek-chat"
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_s: float = 120.0
    data_dir: str = "saves"
    max_history_turns: int = 10
    fold_keep_count: int = 4
    language: str = "Simplified Chinese"
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_model_configured(self) -> bool:
        return bool(self.api_key.strip()) and bool(self.api_url.strip())

    def redacted(self) -> Dict[str, Any]:
        out = asdict(self)
        if out.get("api_key"):
            out["api_key"] = out["api_key"][:3] + "***"
        return out

    def user_settings(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in USER_FIELDS}

    def update(self, values: Mapping[str, Any]) -> None:
        """Apply user changes in place. Nothing changes if any value is invalid."""
        unknown = sorted(set(values) - set(USER_FIELDS))
        if unknown:
            raise ConfigurationError(f"Unknown setting(s): {', '.join(unknown)}")
        try:
            converted = {name: USER_FIELDS[name](value) for name, value in values.items()}
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid setting value: {e}") from e
        if converted.get("max_tokens", 1) < 1:
            raise ConfigurationError("max_tokens must be at least 1")
        if converted.get("max_history_turns", 0) < 0:
            raise ConfigurationError("max_history_turns must not be negative")
        if not 0.0 <= converted.get("temperature", 0.0) <= 2.0:
            raise ConfigurationError("temperature must be between 0 and 2")
        for name, value in converted.items():
            setattr(self, name, value)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "Settings":
        """Build settings from a :func:`load_config` dictionary."""
        model = _section(cfg, "model")
        memory = _section(cfg, "memory")
        story = _section(cfg, "story")
        log = _section(cfg, "logging")
        server = _section(cfg, "server")
        d = cls()
        try:
            return cls(
                api_url=str(model.get("api_url") or d.api_url),
                api_key=str(model.get("api_key") or ""),
                model_name=str(model.get("model_name") or d.model_name),
                temperature=float(model.get("temperature", d.temperature)),
                max_tokens=int(model.get("max_tokens", d.max_tokens)),
                timeout_s=float(model.get("timeout_s", d.timeout_s)),
                data_dir=str(memory.get("data_dir") or d.data_dir),
                max_history_turns=int(memory.get("max_history_turns", d.max_history_turns)),
                fold_keep_count=int(memory.get("fold_keep_count", d.fold_keep_count)),
                language=str(story.get("language") or d.language),
                log_level=str(log.get("level") or d.log_level).upper(),
                log_dir=log.get("dir") or None,
                cors_origins=_origins(server.get("cors_origins")),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e


def load_settings(path: str | None = None) -> Settings:
    """Shortcut: :func:`load_config` followed by :meth:`Settings.from_config`."""
    return Settings.from_config(load_config(path))
