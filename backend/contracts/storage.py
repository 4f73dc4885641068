from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .. import DATA_DIR
from .errors import PersistenceError

logger = logging.getLogger(__name__)


APP_DATA_KEY = "appData"
CURRENT_USER_KEY = "currentUser"


def _dumps(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


class MemoryStore:
    """Key-value store kept in a dict; values still round-trip through JSON."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._values.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._values[key] = _dumps(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to serialise {key}: {e}", key=key) from e

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileStore:
    """One UTF-8 JSON file per key under ``root``.

    Writes go to a temporary file and are moved into place, so a failed write
    leaves the previous value intact.
    """

    def __init__(self, root: Path | str = DATA_DIR) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def path_for(self, key: str) -> Path:
        safe_key = key.replace("/", "-").replace("\\", "-")
        return self.root / f"{safe_key}.json"

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if missing or unreadable.

        An unreadable file is moved aside (``<key>.<epoch>.corrupt``) so the
        next write does not destroy it.
        """
        path = self.path_for(key)
        with self._lock:
            if not path.is_file():
                return None
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Failed to load %s from %s: %s", key, path, e)
                try:
                    aside = path.with_name(f"{path.stem}.{int(time.time())}.corrupt")
                    path.rename(aside)
                    logger.warning("Moved unreadable %s to %s", key, aside)
                except OSError:
                    logger.exception("Could not move unreadable %s aside", path)
                return None

    def set(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        try:
            payload = _dumps(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to serialise {key}: {e}", key=key) from e

        tmp = path.with_name(f".{path.name}.tmp")
        with self._lock:
            try:
                tmp.write_text(payload, encoding="utf-8")
                os.replace(tmp, path)
            except OSError as e:
                try:
                    tmp.unlink()
                except OSError:
                    pass
                raise PersistenceError(f"Failed to write {key} to {path}: {e}", key=key) from e

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise PersistenceError(f"Failed to delete {key}: {e}", key=key) from e


__all__ = [
    "APP_DATA_KEY",
    "CURRENT_USER_KEY",
    "DATA_DIR",
    "JsonFileStore",
    "MemoryStore",
]
