"""
Flask CLI commands for the workflow engine.

Usage:
    flask workflow process-auto-transitions [--scope ID]
    flask workflow process-sla-notifications [--scope ID]
    flask workflow validate-config [--scope ID]
    flask workflow run-job auto_transition_sweep
    flask workflow list-jobs
"""

import json

import click
from flask.cli import AppGroup

from workintake.services.scheduler_service import SchedulerService
from workintake.services.workflow_engine import get_engine

workflow_cli = AppGroup("workflow", help="Workflow engine sweeps and configuration checks.")


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


@workflow_cli.command("process-auto-transitions")
@click.option("--scope", "scope_id", type=int, default=None, help="Limit the sweep to one scope.")
def process_auto_transitions_cmd(scope_id):
    """Advance work items whose auto-transition delay has elapsed."""
    _echo_json(get_engine().process_auto_transitions(scope_id=scope_id))


@workflow_cli.command("process-sla-notifications")
@click.option("--scope", "scope_id", type=int, default=None, help="Limit the scan to one scope.")
def process_sla_notifications_cmd(scope_id):
    """Emit escalations for at-risk and violated SLAs."""
    _echo_json(get_engine().process_sla_notifications(scope_id=scope_id))


@workflow_cli.command("validate-config")
@click.option("--scope", "scope_id", type=int, default=None, help="Scope to validate (global when omitted).")
def validate_config_cmd(scope_id):
    """Report orphaned references and unreachable stages; exit 1 on errors."""
    report = get_engine().validate_workflow_configuration(scope_id)
    _echo_json(report.to_dict())
    if not report.is_valid:
        raise SystemExit(1)


@workflow_cli.command("run-job")
@click.argument("job_name")
def run_job_cmd(job_name):
    """Run one registered job now and record the run."""
    SchedulerService.ensure_jobs_registered()
    outcome = SchedulerService.run_job(job_name)
    _echo_json(outcome)
    if outcome["status"] != "success":
        raise SystemExit(1)


@workflow_cli.command("list-jobs")
def list_jobs_cmd():
    """Show registered jobs and their last run."""
    SchedulerService.ensure_jobs_registered()
    _echo_json(SchedulerService.list_jobs())


def init_cli(app) -> None:
    app.cli.add_command(workflow_cli)
