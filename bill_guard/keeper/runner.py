"""
Keeper sweep and its background service.

``KeeperRunner.run_once()`` is a stateless sweep: it walks every active
cycle, pays each unpaid bill due on the current UTC day through the admin
payment path, and reports what happened. Re-running it on the same day pays
nothing further, since paid occurrences are skipped.

Each bill is paid independently. A bill that was paid or whose cycle ended
between listing and paying counts as skipped; any other failure is logged
and counted, and the sweep moves on. Failed bills are retried on the next
scheduled sweep.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from bill_guard.config.loader import KeeperConfig
from bill_guard.core.errors import BillAlreadyPaidError, CycleNotActiveError
from bill_guard.core.recurrence import day_index
from bill_guard.engine import BillingEngine
from bill_guard.keeper.schedule import CronSpec, next_fire_time, parse_cron
from bill_guard.logging_config import LogContext, get_logger
from bill_guard.storage.models import Bill

logger = get_logger("keeper.runner")

SECONDS_PER_HOUR = 3600


@dataclass(frozen=True)
class KeeperReport:
    """Counts for one sweep.

    Every payment attempt is counted in ``processed`` and in exactly one of
    ``paid``, ``failed`` or ``skipped``.
    """
    run_id: str
    processed: int = 0
    paid: int = 0
    failed: int = 0
    skipped: int = 0


class KeeperRunner:
    """Finds due bills across all cycles and pays them as admin."""

    def __init__(self, engine: BillingEngine, config: Optional[KeeperConfig] = None):
        self.engine = engine
        self.config = config or KeeperConfig()

    @property
    def admin(self) -> str:
        return self.engine.settings.admin

    def _is_due(self, bill: Bill, today: int) -> bool:
        if bill.is_paid:
            return False
        due_day = day_index(bill.due_date)
        if self.config.catch_up_past_due:
            return due_day <= today
        return due_day == today

    def _active_cycle_bills(self) -> List[Bill]:
        bills = []
        for cycle_id in self.engine.get_all_cycles(self.admin):
            cycle = self.engine.get_cycle(cycle_id)
            if not cycle.is_active:
                continue
            bills.extend(self.engine.list_cycle_bills(cycle_id))
        return bills

    def run_once(self) -> KeeperReport:
        """Pay every bill due today and return the sweep's counts."""
        run_id = uuid4().hex[:12]
        today = day_index(self.engine.context.now())
        processed = paid = failed = skipped = 0

        with LogContext.bind(run_id=run_id, actor=self.admin):
            logger.info("keeper_run_started", extra={"day_index": today})

            for bill in self._active_cycle_bills():
                if not self._is_due(bill, today):
                    continue

                with LogContext.bind(cycle_id=bill.cycle_id, bill_id=bill.id):
                    # Past-due occurrences are paid one after another when catching up
                    while True:
                        processed += 1
                        try:
                            result = self.engine.admin_pay_bill(bill.id, self.admin)
                        except (BillAlreadyPaidError, CycleNotActiveError) as e:
                            skipped += 1
                            logger.info("keeper_bill_skipped", extra={"reason": e.code})
                            break
                        except Exception:
                            failed += 1
                            logger.exception("keeper_bill_failed")
                            break

                        paid += 1
                        if (
                            not self.config.catch_up_past_due
                            or result.is_terminal
                            or day_index(result.next_due_date) > today
                        ):
                            break

            report = KeeperReport(
                run_id=run_id,
                processed=processed,
                paid=paid,
                failed=failed,
                skipped=skipped
            )
            logger.info(
                "keeper_run_finished",
                extra={"processed": processed, "paid": paid, "failed": failed, "skipped": skipped}
            )
        return report

    def bills_due_soon(self, hours_ahead: Optional[int] = None) -> List[Bill]:
        """Unpaid bills in active cycles due between now and the notice window."""
        hours = self.config.notice_window_hours if hours_ahead is None else hours_ahead
        now = self.engine.context.now()
        horizon = now + hours * SECONDS_PER_HOUR

        due = [
            bill for bill in self._active_cycle_bills()
            if not bill.is_paid and now <= bill.due_date <= horizon
        ]
        return sorted(due, key=lambda bill: (bill.due_date, bill.id))


class KeeperService:
    """Runs keeper sweeps on a cron schedule in a background thread."""

    def __init__(
        self,
        runner: KeeperRunner,
        schedule: Optional[str] = None,
        poll_interval_seconds: float = 30.0
    ):
        self.runner = runner
        self.spec: CronSpec = parse_cron(schedule or runner.config.schedule)
        self._clock = runner.engine.context.clock
        self._poll_interval = poll_interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.next_run_at: datetime = next_fire_time(self.spec, self._clock.now())
        self.last_report: Optional[KeeperReport] = None

    def run_pending(self, now: Optional[datetime] = None) -> Optional[KeeperReport]:
        """Run a sweep if the next scheduled time has been reached.

        Returns the sweep's report, or None when nothing was due.
        """
        now = now or self._clock.now()
        if now < self.next_run_at:
            return None

        self.next_run_at = next_fire_time(self.spec, now)
        self.last_report = self.runner.run_once()
        return self.last_report

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="bill-guard-keeper", daemon=True)
        self._thread.start()
        logger.info("keeper_service_started", extra={"next_run_at": self.next_run_at.isoformat()})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for a sweep in progress to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("keeper_service_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_pending()
            except Exception:
                logger.exception("keeper_service_tick_failed")
            self._stop_event.wait(timeout=self._poll_interval)
