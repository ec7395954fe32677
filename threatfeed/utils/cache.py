import base64
import json
import os
import hashlib
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class MemoryCache:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._items: Dict[str, Tuple[float, bytes]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires_at, data = item
            if self.clock() >= expires_at:
                del self._items[key]
                return None
            return data

    def put(self, key: str, data: bytes, ttl_seconds: float) -> None:
        with self._lock:
            self._items[key] = (self.clock() + ttl_seconds, data)


class FileCache:
    """One JSON file per key under ``root``, named by the sha256 of the key."""

    def __init__(self, root: str = ".cache", clock: Callable[[], float] = time.time):
        self.root = root
        self.clock = clock
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        h = hashlib.sha256(key.encode()).hexdigest()
        return os.path.join(self.root, f"{h}.json")

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                entry = json.load(f)
            if self.clock() >= entry["expires_at"]:
                os.remove(path)
                return None
            # binascii.Error is a ValueError
            return base64.b64decode(entry["data"], validate=True)
        except (ValueError, KeyError, TypeError, OSError) as e:
            logger.warning(f"Discarding unreadable cache file {path}: {e}")
            try:
                os.remove(path)
            except OSError:
                pass
            return None

    def put(self, key: str, data: bytes, ttl_seconds: float) -> None:
        path = self._path(key)
        entry = {
            "key": key,
            "expires_at": self.clock() + ttl_seconds,
            "data": base64.b64encode(data).decode("ascii"),
        }
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(entry, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
