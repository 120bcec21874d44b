"""
Work Intake Workflow Engine
Scheduler Service.

Interval scheduler for the engine's periodic sweeps, run on one daemon
thread inside the Flask process. Deployments that already have cron call
``flask workflow run-job NAME`` instead and never start the thread.

    register_job     decorator; job functions take ``(app, cancel_event=None)``
    run_job          executes one job in its own app context and records the run
    due_jobs         enabled jobs whose interval has elapsed
    start / stop     background loop; the stop event is handed to running
                     sweeps as their cancel signal
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

from workintake.models import db
from workintake.models.scheduling import DEFAULT_INTERVAL_MINUTES, ScheduledJob
from workintake.utils.helpers import utcnow

logger = logging.getLogger(__name__)

# job name -> config key holding its interval in minutes
_INTERVAL_CONFIG_KEYS = {
    "auto_transition_sweep": "WORKFLOW_AUTO_TRANSITION_INTERVAL_MINUTES",
    "sla_escalation_scan": "WORKFLOW_SLA_SCAN_INTERVAL_MINUTES",
}

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Add the decorated function to the job registry under ``name``."""
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _interval_for(job_name: str, config) -> int:
    key = _INTERVAL_CONFIG_KEYS.get(job_name)
    return int(config.get(key, DEFAULT_INTERVAL_MINUTES)) if key else DEFAULT_INTERVAL_MINUTES


def _summary_line(fn: Callable, job_name: str) -> str:
    doc = (fn.__doc__ or "").strip()
    return doc.splitlines()[0] if doc else f"Scheduled job: {job_name}"


def _job_record(job_name: str) -> ScheduledJob | None:
    return ScheduledJob.query.filter_by(job_name=job_name).first()


class SchedulerService:
    """Class-level scheduler bound to one Flask app by ``init_app``."""

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event = threading.Event()

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler bound with %d registered job(s)", len(_job_registry))

    # ── Records ───────────────────────────────────────────────────────────

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Insert a ScheduledJob row for every registered job that lacks one."""
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                if _job_record(name) is not None:
                    continue
                job = ScheduledJob(
                    job_name=name,
                    description=_summary_line(fn, name),
                    schedule_type="interval",
                    schedule_config={"minutes": _interval_for(name, cls._app.config)},
                    status="active",
                    is_enabled=True,
                )
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Registered %d scheduled job record(s)", len(created))
        return created

    @classmethod
    def list_jobs(cls) -> list[dict]:
        return [
            {"job_name": name, "registered": True,
             "db_record": record.to_dict() if (record := _job_record(name)) else None}
            for name in _job_registry
        ]

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        record = _job_record(job_name)
        return record.to_dict() if record else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Pause or resume a job; None when no record exists."""
        record = _job_record(job_name)
        if record is None:
            return None
        record.is_enabled = enabled
        record.status = "active" if enabled else "paused"
        db.session.commit()
        logger.info("Job %s %s", job_name, record.status, extra={"job_name": job_name})
        return record.to_dict()

    @classmethod
    def due_jobs(cls) -> list[str]:
        now = utcnow()
        return [
            name for name in _job_registry
            if (record := _job_record(name)) is not None and record.is_due(now)
        ]

    # ── Execution ─────────────────────────────────────────────────────────

    @classmethod
    def run_job(cls, job_name: str, cancel_event: threading.Event | None = None) -> dict:
        """
        Run one registered job and store the outcome on its ScheduledJob row.

        A failing job is logged and reported as ``status="failed"``; it never
        raises. Unknown names report ``status="error"``.
        """
        fn = _job_registry.get(job_name)
        if fn is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        started = time.monotonic()
        result, error, status = None, None, "success"
        try:
            with cls._app.app_context():
                result = fn(cls._app, cancel_event=cancel_event)
        except Exception as exc:
            status, error = "failed", str(exc)
            logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
        duration_ms = int((time.monotonic() - started) * 1000)

        cls._store_run(job_name, status=status, duration_ms=duration_ms,
                       result=result if isinstance(result, dict) else {"output": str(result)},
                       error=error)
        logger.info("Job %s finished: %s", job_name, status,
                    extra={"job_name": job_name, "duration_ms": duration_ms})
        return {"job_name": job_name, "status": status, "duration_ms": duration_ms,
                "result": result, "error": error}

    @classmethod
    def _store_run(cls, job_name: str, **outcome) -> None:
        try:
            with cls._app.app_context():
                record = _job_record(job_name)
                if record is not None:
                    record.record_run(**outcome)
                    db.session.commit()
        except Exception:
            logger.exception("Could not record run of %s", job_name, extra={"job_name": job_name})

    # ── Background loop ───────────────────────────────────────────────────

    @classmethod
    def start(cls, tick_seconds: float | None = None) -> bool:
        """Start the loop thread; False when already running or not bound to an app."""
        if not cls._app or cls.is_running():
            return False
        if tick_seconds is None:
            tick_seconds = float(cls._app.config.get("WORKFLOW_SCHEDULER_TICK_SECONDS", 30))
        cls.ensure_jobs_registered()
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(tick_seconds, cls._stop_event),
            name="workflow-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler started (tick=%ss)", tick_seconds)
        return True

    @classmethod
    def stop(cls, timeout: float = 10.0) -> None:
        cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
            cls._thread = None
        logger.info("Scheduler stopped")

    @classmethod
    def is_running(cls) -> bool:
        return cls._thread is not None and cls._thread.is_alive()

    @classmethod
    def _loop(cls, tick_seconds: float, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                with cls._app.app_context():
                    names = cls.due_jobs()
            except Exception:
                logger.exception("Scheduler could not read job records")
                names = []
            for name in names:
                if stop_event.is_set():
                    break
                cls.run_job(name, cancel_event=stop_event)
            stop_event.wait(tick_seconds)
