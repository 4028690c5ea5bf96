#!/usr/bin/env python3
# CUI // SP-CTI
"""Remediation schema models: plans, items, timelines, executions."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple

from atoengine.compat.datetime_utils import format_duration, hours, to_iso
from atoengine.resilience.errors import ExecutionFailure
from atoengine.schemas.compliance import Severity


@dataclass(frozen=True)
class RemediationStep:
    order: int
    description: str
    command: Optional[str] = None
    automation_script: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "description": self.description,
            "command": self.command,
            "automationScript": self.automation_script,
        }


@dataclass(frozen=True)
class RemediationItem:
    """Planned remediation for one finding."""

    finding_id: str
    control_id: str
    resource_id: str
    severity: Severity
    estimated_effort: timedelta
    automation_available: bool
    steps: Tuple[RemediationStep, ...] = ()
    validation_steps: Tuple[str, ...] = ()
    dependencies: Tuple[str, ...] = ()
    title: str = ""

    @property
    def priority(self) -> str:
        return self.severity.value

    def to_dict(self) -> dict:
        return {
            "findingId": self.finding_id,
            "title": self.title,
            "controlId": self.control_id,
            "resourceId": self.resource_id,
            "priority": self.priority,
            "severity": self.severity.value,
            "estimatedEffort": format_duration(self.estimated_effort),
            "estimatedEffortHours": hours(self.estimated_effort),
            "automationAvailable": self.automation_available,
            "steps": [s.to_dict() for s in self.steps],
            "validationSteps": list(self.validation_steps),
            "dependencies": list(self.dependencies),
        }


@dataclass(frozen=True)
class Milestone:
    date: datetime
    description: str
    deliverables: Tuple[str, ...] = ()
    severity: Optional[Severity] = None

    def to_dict(self) -> dict:
        return {
            "date": to_iso(self.date),
            "description": self.description,
            "deliverables": list(self.deliverables),
        }


@dataclass(frozen=True)
class RemediationTimeline:
    start_date: datetime
    end_date: datetime
    milestones: Tuple[Milestone, ...] = ()

    def milestone_for(self, severity: Severity) -> Optional[Milestone]:
        bucket = severity.bucket
        for milestone in self.milestones:
            if milestone.severity is bucket:
                return milestone
        return None

    def to_dict(self) -> dict:
        return {
            "startDate": to_iso(self.start_date),
            "endDate": to_iso(self.end_date),
            "milestones": [m.to_dict() for m in self.milestones],
        }


@dataclass(frozen=True)
class RemediationPlan:
    plan_id: str
    subscription_id: str
    created_at: datetime
    total_findings: int
    remediation_items: Tuple[RemediationItem, ...]
    estimated_effort: timedelta
    priority: str
    projected_risk_reduction: float
    timeline: Optional[RemediationTimeline] = None
    executive_summary: str = ""

    @property
    def automated_items(self) -> int:
        return sum(1 for i in self.remediation_items if i.automation_available)

    def item_for(self, finding_id: str) -> Optional[RemediationItem]:
        for item in self.remediation_items:
            if item.finding_id == finding_id:
                return item
        return None

    def to_dict(self) -> dict:
        return {
            "planId": self.plan_id,
            "subscriptionId": self.subscription_id,
            "createdAt": to_iso(self.created_at),
            "totalFindings": self.total_findings,
            "remediationItems": [i.to_dict() for i in self.remediation_items],
            "estimatedEffort": format_duration(self.estimated_effort),
            "estimatedEffortHours": hours(self.estimated_effort),
            "priority": self.priority,
            "projectedRiskReduction": self.projected_risk_reduction,
            "timeline": self.timeline.to_dict() if self.timeline else None,
            "executiveSummary": self.executive_summary,
        }


class ExecutionMode(Enum):
    DRY_RUN = "DryRun"
    LIVE = "Live"


class ExecutionStatus(Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ROLLED_BACK = "RolledBack"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.SUCCEEDED,
            ExecutionStatus.FAILED,
            ExecutionStatus.ROLLED_BACK,
        )


@dataclass(frozen=True)
class RemediationExecution:
    """Snapshot of one execution attempt.

    The executor replaces the registry entry on every transition, so a
    snapshot handed to a caller never changes underneath it.
    """

    execution_id: str
    finding_id: str
    subscription_id: str
    resource_id: str
    mode: ExecutionMode
    status: ExecutionStatus
    started_at: datetime
    executed_by: str = "system"
    requires_approval: bool = False
    approved_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    changes_applied: Tuple[str, ...] = ()
    backup_id: Optional[str] = None
    error_message: Optional[str] = None
    failure: Optional[ExecutionFailure] = None
    message: str = ""
    control_id: str = ""
    auto_rollback_on_failure: bool = False

    @property
    def duration(self) -> Optional[timedelta]:
        if self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    @property
    def is_dry_run(self) -> bool:
        return self.mode is ExecutionMode.DRY_RUN

    def to_dict(self) -> dict:
        return {
            "executionId": self.execution_id,
            "findingId": self.finding_id,
            "subscriptionId": self.subscription_id,
            "resourceId": self.resource_id,
            "controlId": self.control_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "requiresApproval": self.requires_approval,
            "approvedBy": self.approved_by,
            "executedBy": self.executed_by,
            "startedAt": to_iso(self.started_at),
            "completedAt": to_iso(self.completed_at),
            "duration": format_duration(self.duration),
            "changesApplied": list(self.changes_applied),
            "backupId": self.backup_id,
            "errorMessage": self.error_message,
            "message": self.message,
        }


@dataclass(frozen=True)
class ValidationCheck:
    description: str
    passed: bool
    detail: str = ""

    def to_dict(self) -> dict:
        return {"description": self.description, "passed": self.passed, "detail": self.detail}


@dataclass(frozen=True)
class RemediationValidation:
    execution_id: str
    is_valid: bool
    checks: Tuple[ValidationCheck, ...]
    validated_at: datetime

    def to_dict(self) -> dict:
        return {
            "executionId": self.execution_id,
            "isValid": self.is_valid,
            "checks": [c.to_dict() for c in self.checks],
            "validatedAt": to_iso(self.validated_at),
        }


@dataclass(frozen=True)
class RemediationProgress:
    subscription_id: Optional[str]
    total_executions: int = 0
    pending: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    rolled_back: int = 0
    average_duration: timedelta = field(default_factory=timedelta)
    auto_remediations_executed: int = 0
    since: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        finished = self.succeeded + self.failed + self.rolled_back
        if finished == 0:
            return 0.0
        return round(100.0 * self.succeeded / finished, 2)

    def to_dict(self) -> dict:
        return {
            "subscriptionId": self.subscription_id,
            "since": to_iso(self.since),
            "totalExecutions": self.total_executions,
            "pending": self.pending,
            "running": self.running,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "rolledBack": self.rolled_back,
            "successRate": self.success_rate,
            "averageDuration": format_duration(self.average_duration),
            "autoRemediationsExecuted": self.auto_remediations_executed,
        }


@dataclass(frozen=True)
class SkippedRemediation:
    finding_id: str
    reason: str

    def to_dict(self) -> dict:
        return {"findingId": self.finding_id, "reason": self.reason}


@dataclass(frozen=True)
class BatchRemediationResult:
    batch_id: str
    subscription_id: str
    started_at: datetime
    completed_at: datetime
    executions: Tuple[RemediationExecution, ...] = ()
    skipped: Tuple[SkippedRemediation, ...] = ()

    def _count(self, status: ExecutionStatus) -> int:
        return sum(1 for e in self.executions if e.status is status)

    @property
    def succeeded(self) -> int:
        return self._count(ExecutionStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(ExecutionStatus.FAILED)

    @property
    def pending(self) -> int:
        return self._count(ExecutionStatus.PENDING)

    @property
    def summary(self) -> str:
        return (
            f"Batch remediation processed {len(self.executions) + len(self.skipped)} findings: "
            f"{self.succeeded} succeeded, {self.failed} failed, {self.pending} awaiting "
            f"approval, {len(self.skipped)} skipped."
        )

    def to_dict(self) -> dict:
        return {
            "batchId": self.batch_id,
            "subscriptionId": self.subscription_id,
            "startedAt": to_iso(self.started_at),
            "completedAt": to_iso(self.completed_at),
            "duration": format_duration(self.completed_at - self.started_at),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "pending": self.pending,
            "executions": [e.to_dict() for e in self.executions],
            "skipped": [s.to_dict() for s in self.skipped],
            "summary": self.summary,
        }
