"""
Daily budget guardrail.

The ledger is an explicit state object handed to the router, not a module
global. All mutation goes through ``reserve`` and ``release``, each a
single critical section, so spent never exceeds the cap whatever the
interleaving of concurrent requests.

Enforcement Order for a paid call:
1. Roll over to zero if the local day (America/Sao_Paulo) changed
2. Refuse if spent + cost would exceed the cap
3. Otherwise add the cost and warn once when the alert threshold is crossed
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Callable, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

LOCAL_TZ = ZoneInfo("America/Sao_Paulo")
DEFAULT_DAILY_BUDGET_BRL = Decimal("100.00")
DEFAULT_ALERT_THRESHOLD_PCT = 80


@dataclass(frozen=True)
class BudgetState:
    """Point-in-time view of the ledger."""
    day: date
    spent_brl: Decimal
    cap_brl: Decimal

    @property
    def remaining_brl(self) -> Decimal:
        return max(self.cap_brl - self.spent_brl, Decimal("0"))

    @property
    def used_pct(self) -> float:
        return float(self.spent_brl / self.cap_brl * 100)


@dataclass(frozen=True)
class Reservation:
    """Budget held for one paid call, charged to the local day it was made on."""
    day: date
    amount: Decimal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BudgetLedger:
    """Daily BRL spend with atomic reserve/release.

    When a ``LedgerRepository`` is attached, the current day's spend is
    restored from it and every reservation is checked against it too, so
    processes sharing one database share one cap.
    """

    def __init__(
        self,
        cap_brl: Decimal = DEFAULT_DAILY_BUDGET_BRL,
        alert_threshold_pct: float = DEFAULT_ALERT_THRESHOLD_PCT,
        repository=None,
        clock: Callable[[], datetime] = _utcnow
    ):
        """Initialize the ledger.

        Args:
            cap_brl: Daily cap in BRL (required > 0)
            alert_threshold_pct: Percentage of the cap that triggers a warning
            repository: Optional LedgerRepository for durable spend
            clock: Returns the current aware datetime

        Raises:
            ValueError: If cap or threshold are out of range
        """
        cap = Decimal(str(cap_brl))
        if cap <= 0:
            raise ValueError("daily budget must be > 0")
        if not 0 < alert_threshold_pct <= 100:
            raise ValueError("alert_threshold_pct must be within (0, 100]")

        self.cap_brl = cap
        self.alert_threshold_pct = alert_threshold_pct
        self.repository = repository
        self._clock = clock
        self._lock = Lock()
        self._day: Optional[date] = None
        self._spent = Decimal("0")
        self._alerted = False

    def reserve(self, amount: Decimal) -> Optional[Reservation]:
        """Add ``amount`` to today's spend if it fits under the cap.

        Args:
            amount: Estimated cost of the call in BRL

        Returns:
            The Reservation to pass back to ``release``; None if the cap
            would be exceeded
        """
        amount = Decimal(str(amount))
        if amount < 0:
            raise ValueError("reservation amount cannot be negative")

        with self._lock:
            self._roll_over()
            if self._spent + amount > self.cap_brl:
                logger.warning(
                    "Budget refused R$ %s: spent R$ %s of R$ %s",
                    amount, self._spent, self.cap_brl
                )
                return None

            if self.repository is not None:
                spent = self.repository.try_spend(self._day, amount, self.cap_brl)
                if spent is None:
                    logger.warning("Budget refused R$ %s by shared ledger", amount)
                    return None
                self._spent = spent
            else:
                self._spent += amount

            self._check_alert()
            return Reservation(day=self._day, amount=amount)

    def release(self, amount: Decimal, day: Optional[date] = None) -> None:
        """Give back budget that was reserved but not spent.

        Args:
            amount: Amount to return in BRL
            day: Local day the reservation was charged to; defaults to today.
                Budget reserved on an earlier day never credits the current one.
        """
        amount = Decimal(str(amount))
        with self._lock:
            self._roll_over()
            target = self._day if day is None else day
            if self.repository is not None:
                spent = self.repository.release(target, amount)
                if target == self._day:
                    self._spent = spent
            elif target == self._day:
                self._spent = max(self._spent - amount, Decimal("0"))
            else:
                logger.debug("Dropped release of R$ %s charged to %s", amount, target)

    def snapshot(self) -> BudgetState:
        with self._lock:
            self._roll_over()
            return BudgetState(day=self._day, spent_brl=self._spent, cap_brl=self.cap_brl)

    def _today(self) -> date:
        return self._clock().astimezone(LOCAL_TZ).date()

    def _roll_over(self) -> None:
        today = self._today()
        if today == self._day:
            return
        if self._day is not None:
            logger.info("Budget day rolled over from %s to %s", self._day, today)
        self._day = today
        self._spent = Decimal("0")
        self._alerted = False
        if self.repository is not None:
            stored = self.repository.load(today)
            if stored is not None:
                self._spent = stored.spent_brl

    def _check_alert(self) -> None:
        if self._alerted:
            return
        used_pct = self._spent / self.cap_brl * 100
        if used_pct >= Decimal(str(self.alert_threshold_pct)):
            self._alerted = True
            logger.warning(
                "Daily AI budget at %.1f%% (R$ %s of R$ %s)",
                used_pct, self._spent, self.cap_brl
            )
