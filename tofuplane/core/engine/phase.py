"""
Status and phase rules shared by the controllers.

Everything here is a pure function of its arguments so the decisions
can be tested without a store.
"""

from __future__ import annotations

from datetime import datetime

from tofuplane.core.models.execution import (
    FAILED,
    PENDING,
    RUNNING,
    SUCCEEDED,
    TERMINAL_PHASES,
    Execution,
)
from tofuplane.core.models.job import Job
from tofuplane.core.models.meta import Condition
from tofuplane.core.models.stack import DriftDetectionSpec

READY_CONDITION = "Ready"

_SUMMARIES = {
    SUCCEEDED: "{action} completed successfully",
    FAILED: "{action} failed",
    RUNNING: "{action} is running",
    PENDING: "{action} pending",
}


def derive_phase(
    failed: int,
    succeeded: int,
    active: int,
    terminating: int | None = None,
    uncounted_terminated: bool = False,
) -> str:
    """Phase from Job counters, checked as Failed > Succeeded > Running > Pending.

    ``terminating`` counts as a running signal whenever it is reported
    at all, even as zero.
    """
    if failed > 0:
        return FAILED
    if succeeded > 0:
        return SUCCEEDED
    if active > 0 or terminating is not None or uncounted_terminated:
        return RUNNING
    return PENDING


def job_phase(job: Job) -> str:
    status = job.status
    return derive_phase(
        failed=status.failed,
        succeeded=status.succeeded,
        active=status.active,
        terminating=status.terminating,
        uncounted_terminated=status.uncounted_terminated_pods is not None,
    )


def summary_for(phase: str, action: str = "plan") -> str:
    """Human-readable one-liner, e.g. "Plan completed successfully"."""
    template = _SUMMARIES.get(phase, _SUMMARIES[PENDING])
    return template.format(action=(action or "plan").capitalize())


def is_terminal(phase: str | None) -> bool:
    return phase in TERMINAL_PHASES


def ready_condition(phase: str, message: str, generation: int) -> Condition:
    """The ``Ready`` condition for an execution in ``phase``."""
    if phase == SUCCEEDED:
        status = "True"
    elif phase == FAILED:
        status = "False"
    else:
        status = "Unknown"
    return Condition(
        type=READY_CONDITION,
        status=status,
        reason=phase,
        message=message,
        observed_generation=generation,
    )


# ── Re-trigger decisions ─────────────────────────────────────────


def needs_new_execution(
    has_current: bool,
    current_phase: str | None,
    stamped_generation: str | None,
    generation: int,
) -> bool:
    """Whether an owner needs a new Execution.

    True when there is no current Execution, or when the current one
    is terminal and was stamped with a different generation than the
    owner's live one. A running Execution is never superseded.
    """
    if not has_current:
        return True
    return stamped_generation != str(generation) and is_terminal(current_phase)


def last_activity(execution: Execution) -> datetime | None:
    """When an execution last made progress: finish time, else creation."""
    return (
        execution.status.execution_summary.finished_at
        or execution.metadata.creation_timestamp
    )


def drift_remaining(
    drift: DriftDetectionSpec | None,
    current_phase: str | None,
    last_run: datetime | None,
    now: datetime,
) -> float | None:
    """Seconds until the next drift check is due.

    Returns None when drift detection does not apply (disabled, no
    interval, or the current execution is still in flight), and 0.0
    when a check is due now.
    """
    if drift is None or not drift.active:
        return None
    if not is_terminal(current_phase) or last_run is None:
        return None
    elapsed = (now - last_run).total_seconds()
    return max(0.0, drift.interval_seconds - elapsed)
