"""At-most-one workflow per entity."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ProcessingGuard:
    """Atomic claim set keyed by entity id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claimed: set[str] = set()

    def try_claim(self, entity_id: str) -> bool:
        """Claim ``entity_id``; False if someone already holds it."""

        with self._lock:
            if entity_id in self._claimed:
                return False
            self._claimed.add(entity_id)
            return True

    def release(self, entity_id: str) -> None:
        """Release ``entity_id``. Releasing an unclaimed id is a no-op."""

        with self._lock:
            self._claimed.discard(entity_id)

    def is_claimed(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._claimed

    @contextmanager
    def claimed(self, entity_id: str) -> Iterator[bool]:
        """Yield whether the claim was obtained; release on exit only if it was."""

        acquired = self.try_claim(entity_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(entity_id)
