"""Client-side ceiling on upstream calls per billing period."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Optional

from .quote_client import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_CEILING = 1800


class BudgetExhausted(ProviderError):
    """No budget left for another upstream call."""


class Reservation:
    """Slots set aside for one strategy; each upstream call charges one."""

    def __init__(self, budget: RateBudget, slots: int) -> None:
        self._budget = budget
        self.slots = slots
        self.charged = 0
        self.released = False

    @property
    def unspent(self) -> int:
        return 0 if self.released else self.slots - self.charged

    def charge(self) -> None:
        """Count one call against the budget immediately before dispatch."""
        self._budget._charge(self)

    def release(self) -> int:
        return self._budget._release(self)

    def __enter__(self) -> Reservation:
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class RateBudget:
    """
    Monotonic call counter with a fixed ceiling.

    ``used + reserved`` never exceeds ``ceiling``; ``used`` only grows until
    :meth:`start_new_period` is called.
    """

    def __init__(self, ceiling: int = DEFAULT_CEILING) -> None:
        if ceiling <= 0:
            raise ValueError("ceiling must be greater than 0")
        self.ceiling = ceiling
        self.used = 0
        self.reserved = 0
        self.period_started_at = dt.datetime.now(dt.timezone.utc)
        self._lock = threading.Lock()

    @property
    def remaining(self) -> int:
        with self._lock:
            return self.ceiling - self.used - self.reserved

    def admit(self, cost: int = 1) -> bool:
        """Check and count *cost* calls as one atomic step."""
        if cost <= 0:
            raise ValueError("cost must be positive")
        with self._lock:
            if self.used + self.reserved + cost > self.ceiling:
                logger.warning(
                    "Rate budget refused %d call(s): %d/%d used, %d reserved",
                    cost,
                    self.used,
                    self.ceiling,
                    self.reserved,
                )
                return False
            self.used += cost
            return True

    def reserve(self, cost: int) -> Optional[Reservation]:
        """Set aside *cost* calls, or return ``None`` if they don't fit."""
        if cost < 0:
            raise ValueError("cost must be non-negative")
        with self._lock:
            if self.used + self.reserved + cost > self.ceiling:
                logger.warning(
                    "Rate budget cannot reserve %d call(s): %d/%d used, %d reserved",
                    cost,
                    self.used,
                    self.ceiling,
                    self.reserved,
                )
                return None
            self.reserved += cost
            return Reservation(self, cost)

    def empty_reservation(self) -> Reservation:
        """A reservation with no slots; only cache hits can be served."""
        return Reservation(self, 0)

    def _charge(self, reservation: Reservation) -> None:
        with self._lock:
            if reservation.released or reservation.charged >= reservation.slots:
                raise BudgetExhausted(
                    f"reservation of {reservation.slots} call(s) is spent"
                )
            reservation.charged += 1
            self.reserved -= 1
            self.used += 1

    def _release(self, reservation: Reservation) -> int:
        with self._lock:
            if reservation.released:
                return 0
            unspent = reservation.slots - reservation.charged
            self.reserved -= unspent
            reservation.released = True
            return unspent

    def start_new_period(self) -> None:
        """Reset the counter at the start of a billing period."""
        with self._lock:
            logger.info(
                "New billing period: resetting rate budget (%d/%d used)",
                self.used,
                self.ceiling,
            )
            self.used = 0
            self.period_started_at = dt.datetime.now(dt.timezone.utc)

    def stats(self) -> dict:
        with self._lock:
            return {
                "used": self.used,
                "reserved": self.reserved,
                "remaining": self.ceiling - self.used - self.reserved,
                "ceiling": self.ceiling,
                "periodStartedAt": self.period_started_at.isoformat(),
            }


__all__ = ["BudgetExhausted", "RateBudget", "Reservation"]
