"""Per-invocation fan-out state."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

I = TypeVar("I")  # noqa: E741


@dataclass(slots=True)
class Slot(Generic[I]):
    """One fan-out unit. Written only by the task that owns it."""

    index: int
    input: I
    result: str = ""
    error: BaseException | None = None
    entity_id: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.result)

    @property
    def materialized(self) -> bool:
        return self.ok and bool(self.entity_id)


class WorkflowRun(Generic[I]):
    """Fixed set of slots for one stage, filled concurrently and read afterwards."""

    def __init__(self, inputs: list[I], *, name: str = "stage") -> None:
        self.name = name
        self._slots: tuple[Slot[I], ...] = tuple(Slot(index=i, input=v) for i, v in enumerate(inputs))
        self._lock = threading.Lock()
        self._successes = 0

    def __len__(self) -> int:
        return len(self._slots)

    def __getitem__(self, index: int) -> Slot[I]:
        return self._slots[index]

    @property
    def slots(self) -> tuple[Slot[I], ...]:
        return self._slots

    @property
    def success_count(self) -> int:
        with self._lock:
            return self._successes

    def successful(self) -> list[Slot[I]]:
        return [s for s in self._slots if s.ok]

    def materialized(self) -> list[Slot[I]]:
        return [s for s in self._slots if s.materialized]

    def fan_out(
        self,
        task: Callable[[Slot[I]], str | None],
        *,
        only: Callable[[Slot[I]], bool] | None = None,
    ) -> int:
        """Run ``task`` once per selected slot, concurrently, and wait for all of them.

        A task returns the slot result (or None to leave it empty); any exception is
        stored on its slot. One failure never cancels the siblings.

        Returns:
            Number of slots that ended with a non-empty result and no error.
        """

        selected = [s for s in self._slots if only is None or only(s)]
        if not selected:
            return 0

        def _run(slot: Slot[I]) -> None:
            was_ok = slot.ok
            try:
                value = task(slot)
            except Exception as e:
                slot.error = e
                logger.warning(
                    "Fan-out task failed",
                    extra={"stage": self.name, "slot": slot.index, "error": str(e)},
                )
                return
            if value is not None:
                slot.result = value
            if slot.ok and not was_ok:
                with self._lock:
                    self._successes += 1

        with ThreadPoolExecutor(
            max_workers=len(selected), thread_name_prefix=f"fanout-{self.name}"
        ) as pool:
            # Executor shutdown waits for every task; exceptions are captured in _run.
            list(pool.map(_run, selected))

        return sum(1 for s in selected if s.ok)
