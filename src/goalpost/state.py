"""Local persistent cache and runtime-directory helpers.

The cache is a flat key/value map serialized to one JSON file. Every
``set``/``delete`` rewrites the file before returning, so a crash never loses
a mutation that already returned.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .log import get_logger

SERVER_LOG_FILENAME = "server.log"
SERVER_INFO_FILENAME = "server_info.json"
SERVER_EVENTS_FILENAME = "server-events.jsonl"

logger = get_logger(__name__)


class LocalCache:
    """Browser-storage-like key/value map backed by a JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable cache file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._write()

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._write()

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))

    def __contains__(self, key: str) -> bool:
        return key in self._data


def runtime_dir(home: Path) -> Path:
    home.mkdir(parents=True, exist_ok=True)
    return home


def server_log_path(home: Path) -> Path:
    return runtime_dir(home) / SERVER_LOG_FILENAME


def server_events_path(home: Path) -> Path:
    """JSON-lines log written by the server's own logger."""
    return runtime_dir(home) / SERVER_EVENTS_FILENAME


def read_server_info(home: Path) -> Optional[Dict[str, Any]]:
    path = runtime_dir(home) / SERVER_INFO_FILENAME
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return None


def write_server_info(home: Path, info: Dict[str, Any]) -> None:
    path = runtime_dir(home) / SERVER_INFO_FILENAME
    path.write_text(json.dumps(info, indent=2), encoding="utf-8")


def clear_server_info(home: Path) -> None:
    path = runtime_dir(home) / SERVER_INFO_FILENAME
    if path.exists():
        path.unlink()
