"""Environment-driven settings shared by the CLI, sync client and server."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_HOME = Path.home() / ".goalpost"
DEFAULT_NAMESPACE = "default"
DEFAULT_SERVER_PORT = 8124
DEFAULT_REMOTE_URL = f"http://127.0.0.1:{DEFAULT_SERVER_PORT}"
DEFAULT_DEBOUNCE_SECONDS = 1.0
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_SUMMARY_MODEL = "claude-sonnet-4-20250514"
STORE_FILENAME = "remote.db"
CACHE_FILENAME = "cache.json"


@dataclass(frozen=True)
class Settings:
    home: Path
    namespace: str
    remote_url: str
    debounce_seconds: float
    timeout_seconds: float
    store_path: Path
    anthropic_api_key: Optional[str]
    summary_model: str

    @property
    def cache_path(self) -> Path:
        return self.home / CACHE_FILENAME


def _float_var(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from ``env`` (defaults to ``os.environ``)."""
    env = os.environ if env is None else env
    home = Path(env.get("GOALPOST_HOME") or DEFAULT_HOME).expanduser()
    store_raw = env.get("GOALPOST_STORE_PATH")
    return Settings(
        home=home,
        namespace=env.get("GOALPOST_NAMESPACE") or DEFAULT_NAMESPACE,
        remote_url=(env.get("GOALPOST_REMOTE_URL") or DEFAULT_REMOTE_URL).rstrip("/"),
        debounce_seconds=_float_var(env, "GOALPOST_DEBOUNCE_SECONDS", DEFAULT_DEBOUNCE_SECONDS),
        timeout_seconds=_float_var(env, "GOALPOST_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
        store_path=Path(store_raw).expanduser() if store_raw else home / STORE_FILENAME,
        anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
        summary_model=env.get("GOALPOST_SUMMARY_MODEL") or DEFAULT_SUMMARY_MODEL,
    )
