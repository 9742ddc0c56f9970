from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import AsyncIterator


@dataclass(slots=True)
class AdmissionPermit:
    """One granted slot; releasing it twice is a no-op."""

    number: int
    released: bool = field(default=False)


class AdmissionController:
    """Bound the number of executions running at once.

    Waiters are admitted in the order the underlying semaphore wakes them;
    acquisition never fails, it only waits.

    Example:
        ```python
        admission = AdmissionController(capacity=100)
        async with admission.slot():
            ...
        ```
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_use = 0
        self._peak = 0
        self._admitted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def peak(self) -> int:
        """Highest number of simultaneously held slots observed so far."""
        return self._peak

    @property
    def admitted(self) -> int:
        """Total number of slots ever granted."""
        return self._admitted

    async def acquire(self) -> AdmissionPermit:
        """Wait until a slot is free and return its permit.

        Example:
            ```python
            permit = await admission.acquire()
            try:
                ...
            finally:
                admission.release(permit)
            ```
        """
        await self._semaphore.acquire()
        self._in_use += 1
        self._admitted += 1
        self._peak = max(self._peak, self._in_use)
        return AdmissionPermit(number=self._admitted)

    def release(self, permit: AdmissionPermit) -> None:
        """Return a permit's slot to the pool.

        Example:
            ```python
            admission.release(permit)
            ```
        """
        if permit.released:
            return
        permit.released = True
        self._in_use -= 1
        self._semaphore.release()

    @contextlib.asynccontextmanager
    async def slot(self) -> AsyncIterator[AdmissionPermit]:
        """Hold one slot for the duration of an `async with` block.

        The slot is released on every exit path, including exceptions and
        task cancellation.

        Example:
            ```python
            async with admission.slot():
                outcome = await loop.run_in_executor(pool, pipeline)
            ```
        """
        permit = await self.acquire()
        try:
            yield permit
        finally:
            self.release(permit)
