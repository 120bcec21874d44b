"""
Work Intake Workflow Engine
Scheduling model.

Models:
    - ScheduledJob: one row per registered sweep; holds its interval, the
      enabled flag and the outcome of the most recent run
"""

from datetime import timedelta

from workintake.models import db
from workintake.utils.helpers import as_utc, utcnow

DEFAULT_INTERVAL_MINUTES = 60


class ScheduledJob(db.Model):
    """Persisted schedule and run history for a registered sweep."""

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Registry key: auto_transition_sweep, sla_escalation_scan")
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="interval", comment="interval only")
    schedule_config = db.Column(db.JSON, default=dict, comment='{"minutes": N}')
    status = db.Column(db.String(20), default="active", comment="active, paused")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True, comment="Sweep summary dict")
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def interval_minutes(self) -> int:
        return int((self.schedule_config or {}).get("minutes", DEFAULT_INTERVAL_MINUTES))

    def next_run_at(self):
        """None when the job has never run (due immediately)."""
        last = as_utc(self.last_run_at)
        return last + timedelta(minutes=self.interval_minutes) if last else None

    def is_due(self, now) -> bool:
        if not self.is_enabled:
            return False
        next_run = self.next_run_at()
        return next_run is None or now >= next_run

    def record_run(self, *, status, duration_ms, result=None, error=None, now=None):
        self.last_run_at = now or utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = error

    def to_dict(self):
        next_run = self.next_run_at()
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "interval_minutes": self.interval_minutes,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": next_run.isoformat() if next_run else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} every {self.interval_minutes}m [{self.status}]>"
