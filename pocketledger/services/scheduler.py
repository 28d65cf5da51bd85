"""Background scheduler for the month-end savings sweep.

The scheduler polls once a day rather than scheduling the sweep for an exact
instant, so a restart simply resumes polling. A month-end missed while the
process was down is not made up later.
"""
import calendar
import logging
import threading
from datetime import date

from pocketledger.config import (
    DATE_FORMAT_STORAGE,
    LAST_SWEEP_SETTING,
    SCHEDULER_INTERVAL_SECONDS,
    SCHEDULER_SHUTDOWN_TIMEOUT,
)

logger = logging.getLogger(__name__)


def last_day_of_month(day):
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def is_last_day_of_month(day):
    return day == last_day_of_month(day)


def seconds_until_month_end(day, interval=SCHEDULER_INTERVAL_SECONDS):
    """Initial delay: whole days from ``day`` to its month's last day."""
    return (last_day_of_month(day) - day).days * interval


class SavingsScheduler:
    """Runs SavingsService.monthly_sweep on the last day of every month.

    Attributes:
        savings_service: SavingsService whose sweep is triggered.
        interval: Seconds between polls (one day by default).
        today: Callable returning the current date; replaceable in tests.
    """

    def __init__(self, savings_service, interval=SCHEDULER_INTERVAL_SECONDS, today=date.today):
        self.savings_service = savings_service
        self.interval = interval
        self.today = today
        self.last_report = None
        self._stop = threading.Event()
        self._thread = None

    @property
    def db(self):
        return self.savings_service.db

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="savings-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Savings scheduler started")

    def _run(self):
        delay = seconds_until_month_end(self.today(), self.interval)
        logger.debug("First savings check in %s seconds", delay)
        while not self._stop.wait(delay):
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduled savings check failed")
            delay = self.interval

    def tick(self):
        """One poll: sweep if today is the month's last day and not yet swept.

        Returns:
            The SweepReport when a sweep ran, otherwise None.
        """
        today = self.today()
        if not is_last_day_of_month(today):
            return None

        today_str = today.strftime(DATE_FORMAT_STORAGE)
        if self.db.get_setting(LAST_SWEEP_SETTING) == today_str:
            logger.debug("Savings already swept on %s", today_str)
            return None

        report = self.savings_service.monthly_sweep(should_stop=self._stop.is_set)
        if not report.interrupted:
            self.db.set_setting(LAST_SWEEP_SETTING, today_str)
        self.last_report = report
        return report

    def shutdown(self, timeout=SCHEDULER_SHUTDOWN_TIMEOUT):
        """Stop polling and wait (bounded) for an in-flight sweep.

        A sweep in progress finishes or rolls back its current account and
        then stops. If it has not stopped within ``timeout`` the daemon thread
        is abandoned.

        Returns:
            True if the scheduler thread has stopped.
        """
        self._stop.set()
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Savings scheduler did not stop within %.1fs; abandoning it", timeout)
            return False
        self._thread = None
        logger.info("Savings scheduler stopped")
        return True
