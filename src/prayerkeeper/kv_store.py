from __future__ import annotations

from contextlib import contextmanager
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Protocol, Union


StoreValue = Union[str, int, float, bool, List[str]]


class StoreError(RuntimeError):
    """Raised when the persistent store cannot be read or written."""


class KeyValueStore(Protocol):
    def save(self, key: str, value: StoreValue) -> None:
        ...

    def get_str(self, key: str) -> Optional[str]:
        ...

    def get_int(self, key: str) -> Optional[int]:
        ...

    def get_float(self, key: str) -> Optional[float]:
        ...

    def get_bool(self, key: str) -> Optional[bool]:
        ...

    def get_str_list(self, key: str) -> Optional[List[str]]:
        ...

    def remove(self, key: str) -> None:
        ...

    def list_keys(self, prefix: str = "") -> List[str]:
        ...


class JsonFileStore:
    """Key-value store persisted as a single JSON object on disk.

    The file is re-read on every operation so values written by another
    process (the foreground app) are picked up by the next job run.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._closed = False
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, key: str, value: StoreValue) -> None:
        _check_value(key, value)
        with self._lock:
            data = self._read_all()
            data[key] = list(value) if isinstance(value, list) else value
            self._write_all(data)

    def get_str(self, key: str) -> Optional[str]:
        value = self._get(key)
        return value if isinstance(value, str) else None

    def get_int(self, key: str) -> Optional[int]:
        value = self._get(key)
        # bool is an int subclass; keep the tags distinct.
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value

    def get_float(self, key: str) -> Optional[float]:
        value = self._get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def get_bool(self, key: str) -> Optional[bool]:
        value = self._get(key)
        return value if isinstance(value, bool) else None

    def get_str_list(self, key: str) -> Optional[List[str]]:
        value = self._get(key)
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            return None
        return list(value)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key not in data:
                return
            del data[key]
            self._write_all(data)

    def list_keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            data = self._read_all()
        return sorted(key for key in data if key.startswith(prefix))

    def close(self) -> None:
        self._closed = True

    def _get(self, key: str) -> Any:
        with self._lock:
            return self._read_all().get(key)

    def _read_all(self) -> Dict[str, Any]:
        if self._closed:
            raise StoreError(f"Store is closed: {self._path}")
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StoreError(f"Store read failed for {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"Store file {self._path} is not a JSON object")
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        tmp_path = self._path.with_suffix(".tmp")
        payload = json.dumps(data, indent=2, sort_keys=True)
        try:
            # Rename over the old file so a crash never leaves half a document.
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            self._logger.error("Store write failed for %s: %s", self._path, exc)
            raise StoreError(f"Store write failed for {self._path}: {exc}") from exc


@contextmanager
def open_store(path: Path) -> Iterator[JsonFileStore]:
    store = JsonFileStore(path)
    try:
        yield store
    finally:
        store.close()


def _check_value(key: str, value: Any) -> None:
    if isinstance(value, (str, int, float, bool)):
        return
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return
    raise TypeError(f"Unsupported store value for {key}: {type(value).__name__}")
