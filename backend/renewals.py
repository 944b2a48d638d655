"""Scheduler integration for the daily membership renewal sweep."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from threading import Event, Lock, Thread
from typing import Dict, Optional

from backend.app.memberships import RenewalSweepSummary
from backend.app.services.memberships import get_membership_components

logger = logging.getLogger(__name__)

_scheduler_lock = Lock()
_worker: Optional["_RenewalWorker"] = None

_RENEWAL_METRICS: Dict[str, object] = {
    "processed": 0,
    "reminders_sent": 0,
    "auto_renewed": 0,
    "expired": 0,
    "failures": 0,
    "last_run_at": None,
    "last_success_at": None,
    "last_error": None,
}
_metrics_lock = Lock()


def _record_run_start(started_at: datetime) -> None:
    with _metrics_lock:
        _RENEWAL_METRICS["last_run_at"] = started_at


def _record_run_success(completed_at: datetime, summary: RenewalSweepSummary) -> None:
    with _metrics_lock:
        metrics = _RENEWAL_METRICS
        metrics["processed"] = int(metrics.get("processed", 0)) + summary.processed
        metrics["reminders_sent"] = int(metrics.get("reminders_sent", 0)) + summary.reminders_sent
        metrics["auto_renewed"] = int(metrics.get("auto_renewed", 0)) + summary.auto_renewed
        metrics["expired"] = int(metrics.get("expired", 0)) + summary.expired
        metrics["failures"] = int(metrics.get("failures", 0)) + len(summary.errors)
        metrics["last_success_at"] = completed_at
        metrics["last_error"] = None


def _record_run_failure(failed_at: datetime, error: Exception) -> None:
    with _metrics_lock:
        metrics = _RENEWAL_METRICS
        metrics["failures"] = int(metrics.get("failures", 0)) + 1
        metrics["last_error"] = f"{type(error).__name__}: {error}"


def sweep_memberships(*, now: datetime) -> RenewalSweepSummary:
    return get_membership_components().sweeper.sweep_all(now)


def run_renewal_job(*, now: Optional[datetime] = None) -> RenewalSweepSummary:
    current_time = now or datetime.now(timezone.utc)
    if current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)

    _record_run_start(current_time)
    try:
        summary = sweep_memberships(now=current_time)
    except Exception as exc:
        _record_run_failure(current_time, exc)
        logger.exception("Membership renewal job failed")
        raise
    else:
        _record_run_success(current_time, summary)
        logger.info(
            "Membership renewal job completed",
            extra={
                "processed": summary.processed,
                "reminders_sent": summary.reminders_sent,
                "auto_renewed": summary.auto_renewed,
                "expired": summary.expired,
                "errors": len(summary.errors),
            },
        )
        return summary


class _RenewalWorker(Thread):
    def __init__(self, *, initial_delay: float, interval: float):
        super().__init__(daemon=True)
        self._initial_delay = max(0.0, initial_delay)
        self._interval = max(1.0, interval)
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                run_renewal_job()
            except Exception:
                # Logged and counted inside run_renewal_job; keep the daily schedule.
                pass
            if self._stop_event.wait(self._interval):
                break


def _seconds_until(hour: int, minute: int = 0, *, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return max((target - now).total_seconds(), 0.0)


def start_renewal_scheduler(*, hour: Optional[int] = None) -> None:
    global _worker

    with _scheduler_lock:
        if _worker is not None:
            return
        run_hour = get_membership_components().config.renewal_hour if hour is None else hour
        delay = _seconds_until(run_hour)
        _worker = _RenewalWorker(initial_delay=delay, interval=24 * 60 * 60)
        _worker.start()
        logger.info(
            "Membership renewal scheduler started",
            extra={"initial_delay_seconds": round(delay, 2), "run_hour_utc": run_hour},
        )


def shutdown_renewal_scheduler() -> None:
    global _worker

    with _scheduler_lock:
        worker = _worker
        if worker is None:
            return
        worker.stop()
        worker.join(timeout=1.0)
        _worker = None
        logger.info("Membership renewal scheduler stopped")


def get_renewal_metrics() -> Dict[str, object]:
    with _metrics_lock:
        value = dict(_RENEWAL_METRICS)
    return {
        **value,
        "last_run_at": value["last_run_at"].isoformat() if value.get("last_run_at") else None,
        "last_success_at": value["last_success_at"].isoformat() if value.get("last_success_at") else None,
    }


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        _RENEWAL_METRICS.update(
            {
                "processed": 0,
                "reminders_sent": 0,
                "auto_renewed": 0,
                "expired": 0,
                "failures": 0,
                "last_run_at": None,
                "last_success_at": None,
                "last_error": None,
            }
        )
