"""
Work Intake Workflow Engine
Scheduled Jobs.

The engine's two independent periodic sweeps, registered with the scheduler.

Jobs:
    - auto_transition_sweep: advances work items whose auto-transition delay elapsed
    - sla_escalation_scan: emits deduplicated SLA escalations
"""

from __future__ import annotations

import logging
from typing import Any

from workintake.services.scheduler_service import register_job
from workintake.services.workflow_engine import get_engine

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Auto-transition sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("auto_transition_sweep")
def run_auto_transitions(app, cancel_event=None) -> dict[str, Any]:
    """Advance work items whose auto-transition delay has elapsed."""
    return get_engine().process_auto_transitions(cancel_event=cancel_event)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: SLA escalation scan
# ═══════════════════════════════════════════════════════════════════════════

@register_job("sla_escalation_scan")
def run_sla_escalations(app, cancel_event=None) -> dict[str, Any]:
    """Escalate at-risk and violated SLAs to submitters and managers."""
    summary = get_engine().process_sla_notifications()
    if summary.get("failed"):
        logger.warning("SLA escalation scan had %d failure(s)", summary["failed"],
                       extra={"job_name": "sla_escalation_scan"})
    return summary
