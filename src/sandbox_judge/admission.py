"""Capacity admission for concurrent judging.

Sandbox capacity is the one resource shared across submissions. Every
submission holds one reservation for its whole judging run (its test cases
run sequentially, so at most one live environment per reservation).

Two admission gates (both must pass):
1. Slots         - at most max_concurrent submissions in flight
2. Memory budget - sum of reserved memory limits <= host_total * (1 - reserve_ratio)

Waiters block on an asyncio.Condition and fail closed with CapacityError
after the admission timeout; the runtime is never oversubscribed.

Host memory detection: manual override > psutil total. If the psutil probe
fails, the memory gate degrades to unlimited and only the slot gate applies.
"""

from __future__ import annotations

import asyncio
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final, Literal
from uuid import uuid4

import psutil

from sandbox_judge._logging import get_logger
from sandbox_judge.constants import DEFAULT_HOST_MEMORY_RESERVE_RATIO
from sandbox_judge.exceptions import CapacityError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

CapacitySource = Literal["manual", "psutil", "none", "unknown"]

_UNLIMITED: Final[float] = float("inf")
_MB: Final[int] = 1024 * 1024


@dataclass(frozen=True)
class Reservation:
    """Capacity held by one submission."""

    submission_id: str
    memory_mb: float
    reservation_id: str = field(default_factory=lambda: uuid4().hex)


@dataclass
class CapacitySnapshot:
    """Point-in-time view of admission state."""

    max_slots: int
    memory_budget_mb: float
    allocated_slots: int = 0
    allocated_memory_mb: float = 0.0
    capacity_source: CapacitySource = "unknown"

    available_slots: int = field(init=False)
    available_memory_mb: float = field(init=False)

    def __post_init__(self) -> None:
        self.available_slots = max(0, self.max_slots - self.allocated_slots)
        self.available_memory_mb = max(0.0, self.memory_budget_mb - self.allocated_memory_mb)


class AdmissionController:
    """Bounded pool of sandbox capacity, replacing a bare asyncio.Semaphore.

    Created by the caller and passed into the Judge, so limits are
    configurable and testable in isolation.
    """

    def __init__(
        self,
        max_concurrent: int,
        host_memory_mb: float | None = None,
        host_memory_reserve_ratio: float = DEFAULT_HOST_MEMORY_RESERVE_RATIO,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max_slots = max_concurrent
        self._host_memory_reserve_ratio = host_memory_reserve_ratio
        self._host_memory_mb: float = host_memory_mb if host_memory_mb is not None else 0.0
        self._memory_budget_mb: float = _UNLIMITED
        self._capacity_source: CapacitySource = "unknown"

        # Protected by _condition's lock
        self._allocated_slots = 0
        self._allocated_memory_mb = 0.0
        self._reservations: dict[str, Reservation] = {}

        self._condition = asyncio.Condition()
        self._started = False
        self._start_lock = asyncio.Lock()

        if host_memory_mb is not None:
            self._capacity_source = "manual"
            self._compute_budget()
            self._started = True

    async def start(self) -> None:
        """Probe host memory and compute the memory budget.

        Idempotent. Degrades to an unlimited memory budget if psutil fails.
        """
        async with self._start_lock:
            if self._started:
                return
            try:
                vmem = await asyncio.to_thread(psutil.virtual_memory)
                self._host_memory_mb = vmem.total / _MB
                self._capacity_source = "psutil"
                self._compute_budget()
                logger.info(
                    "Host memory detected",
                    extra={
                        "host_memory_mb": round(self._host_memory_mb),
                        "memory_budget_mb": round(self._memory_budget_mb),
                        "max_slots": self._max_slots,
                    },
                )
            except (OSError, AttributeError):
                logger.warning("Host memory probe failed, memory gate disabled (slot gate only)")
                self._memory_budget_mb = _UNLIMITED
                self._capacity_source = "none"
            self._started = True

    def _compute_budget(self) -> None:
        self._memory_budget_mb = max(0.0, self._host_memory_mb * (1.0 - self._host_memory_reserve_ratio))

    def _can_admit(self, memory_mb: float) -> bool:
        if self._allocated_slots >= self._max_slots:
            return False
        return self._allocated_memory_mb + memory_mb <= self._memory_budget_mb

    async def acquire(self, submission_id: str, memory_bytes: int, timeout: float) -> Reservation:
        """Reserve capacity for one submission, blocking while the pool is full.

        Raises:
            CapacityError: Not admitted within timeout, or the request is larger
                than the whole memory budget
        """
        memory_mb = memory_bytes / _MB
        if memory_mb > self._memory_budget_mb:
            raise CapacityError(
                f"Submission {submission_id} requests {round(memory_mb)}MB, "
                f"more than the whole budget of {round(self._memory_budget_mb)}MB",
                context={"submission_id": submission_id, "requested_memory_mb": round(memory_mb)},
            )

        reservation = Reservation(submission_id=submission_id, memory_mb=memory_mb)
        try:
            async with asyncio.timeout(timeout):
                async with self._condition:
                    await self._condition.wait_for(lambda: self._can_admit(memory_mb))
                    self._allocated_slots += 1
                    self._allocated_memory_mb += memory_mb
                    self._reservations[reservation.reservation_id] = reservation
                    logger.debug(
                        "Capacity reserved",
                        extra={
                            "submission_id": submission_id,
                            "reservation_id": reservation.reservation_id,
                            "reserved_memory_mb": round(memory_mb),
                            "slots": self._allocated_slots,
                        },
                    )
                    return reservation
        except TimeoutError:
            budget = "unlimited" if math.isinf(self._memory_budget_mb) else str(round(self._memory_budget_mb))
            raise CapacityError(
                f"Admission timeout after {timeout}s for submission {submission_id}. "
                f"{self._allocated_slots}/{self._max_slots} slots in use, "
                f"{round(self._allocated_memory_mb)}/{budget}MB memory reserved.",
                context={
                    "submission_id": submission_id,
                    "requested_memory_mb": round(memory_mb),
                    "slots": self._allocated_slots,
                    "max_slots": self._max_slots,
                    "allocated_memory_mb": round(self._allocated_memory_mb),
                    "memory_budget_mb": budget,
                },
            ) from None

    async def release(self, reservation: Reservation) -> None:
        """Return a reservation's capacity and wake waiters. Idempotent."""
        async with self._condition:
            if reservation.reservation_id not in self._reservations:
                logger.debug(
                    "Reservation already released (idempotent)",
                    extra={"submission_id": reservation.submission_id, "reservation_id": reservation.reservation_id},
                )
                return

            del self._reservations[reservation.reservation_id]
            self._allocated_slots -= 1
            self._allocated_memory_mb -= reservation.memory_mb
            # Snap to zero when empty (prevents float drift)
            if self._allocated_slots == 0:
                self._allocated_memory_mb = 0.0

            logger.debug(
                "Capacity released",
                extra={
                    "submission_id": reservation.submission_id,
                    "reservation_id": reservation.reservation_id,
                    "slots": self._allocated_slots,
                },
            )
            self._condition.notify_all()

    @asynccontextmanager
    async def reserve(self, submission_id: str, memory_bytes: int, timeout: float) -> AsyncIterator[Reservation]:
        """acquire() on enter, release() on every exit path."""
        reservation = await self.acquire(submission_id, memory_bytes, timeout)
        try:
            yield reservation
        finally:
            await self.release(reservation)

    def snapshot(self) -> CapacitySnapshot:
        """Point-in-time snapshot of admission state.

        SYNC-ONLY: atomicity relies on asyncio single-thread scheduling.
        """
        return CapacitySnapshot(
            max_slots=self._max_slots,
            memory_budget_mb=self._memory_budget_mb,
            allocated_slots=self._allocated_slots,
            allocated_memory_mb=self._allocated_memory_mb,
            capacity_source=self._capacity_source,
        )
