from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from ..programs import ProgramDefinition


class ExecutionSlots:
    """Per-program limits on simultaneous child processes.

    Programs with `max_concurrent == 0` are unbounded and never block.

    Example:
        ```python
        slots = ExecutionSlots()
        with slots.hold(DEFAULT_REGISTRY.get("blender")):
            ...
        ```
    """

    def __init__(self) -> None:
        """Initialize an empty, thread-safe slot table.

        Example:
            ```python
            slots = ExecutionSlots()
            ```
        """
        self._lock = threading.Lock()
        self._by_program: dict[str, threading.BoundedSemaphore] = {}

    def _semaphore(self, program: ProgramDefinition) -> threading.BoundedSemaphore | None:
        """Return (creating once) the semaphore for a bounded program.

        Example:
            ```python
            sem = slots._semaphore(prog)
            ```
        """
        if program.max_concurrent <= 0:
            return None
        with self._lock:
            sem = self._by_program.get(program.id)
            if sem is None:
                sem = threading.BoundedSemaphore(program.max_concurrent)
                self._by_program[program.id] = sem
            return sem

    @contextmanager
    def hold(self, program: ProgramDefinition) -> Iterator[None]:
        """Block until a slot is free for `program`, then hold it for the block.

        Example:
            ```python
            with slots.hold(prog):
                outcome = run_process(...)
            ```
        """
        sem = self._semaphore(program)
        if sem is None:
            yield
            return
        sem.acquire()
        try:
            yield
        finally:
            sem.release()
