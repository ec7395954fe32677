import json
import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError

from .schemas import Snapshot

logger = logging.getLogger(__name__)


class SnapshotCache:
    """
    TTL-keyed snapshot storage on top of a key-value collaborator.

    The collaborator only has to provide ``get(key) -> bytes | None`` and
    ``put(key, bytes, ttl_seconds)``. Expiry is enforced here as well, so a
    backend that ignores the TTL still behaves correctly: an expired entry is
    reported as a miss.
    """

    def __init__(self, backend, clock: Callable[[], float] = time.time):
        self.backend = backend
        self.clock = clock

    def get(self, key: str) -> Optional[Snapshot]:
        raw = self.backend.get(key)
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
            if self.clock() >= envelope["expires_at"]:
                return None
            return Snapshot.model_validate(envelope["snapshot"])
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None

    def put(self, key: str, snapshot: Snapshot, ttl: float) -> None:
        envelope = {
            "expires_at": self.clock() + ttl,
            "snapshot": snapshot.model_dump(mode="json"),
        }
        self.backend.put(key, json.dumps(envelope).encode("utf-8"), ttl)
