#!/usr/bin/env python3
# CUI // SP-CTI
"""Remediation Executor -- safe, single-attempt remediation of findings.

State machine:

    Pending -> Running -> Succeeded | Failed
    Succeeded (Live, with backup) -> RolledBack   (explicit rollback only)

Every transition replaces the frozen RemediationExecution snapshot in a
lock-guarded registry. Pending -> Running is claimed under the lock, so two
callers can never start the same execution. Live runs snapshot the resource
before the first mutation; the first failing step aborts the rest and the
execution records which backup to use for a manual rollback.

Usage:
    executor = RemediationExecutor(InMemoryMutationApi(), config)
    execution = executor.submit(finding, subscription_guid,
                                RemediationOptions(dry_run=False))
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from atoengine.audit.audit_logger import safe_log_event
from atoengine.compat.datetime_utils import ensure_utc, utc_now
from atoengine.compliance.subscription_resolver import require_guid
from atoengine.config.engine_config import EngineConfig
from atoengine.config.options import RemediationOptions
from atoengine.remediation.mutation_api import CloudMutationApi
from atoengine.remediation.step_catalog import StepCatalog
from atoengine.resilience.correlation import get_correlation_id, set_correlation_id
from atoengine.resilience.errors import (
    AtoEngineError,
    ExecutionFailure,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from atoengine.resilience.result import Err, Ok, Result
from atoengine.schemas.compliance import Finding
from atoengine.schemas.remediation import (
    BatchRemediationResult,
    ExecutionMode,
    ExecutionStatus,
    RemediationExecution,
    RemediationProgress,
    RemediationStep,
    RemediationValidation,
    SkippedRemediation,
    ValidationCheck,
)

logger = logging.getLogger("atoengine.remediation.executor")

DRY_RUN_PREFIX = "DRY RUN: would "
PROGRESS_WINDOW = timedelta(days=30)


@dataclass
class _Record:
    execution: RemediationExecution
    finding: Finding
    steps: Tuple[RemediationStep, ...]


def _dry_run_change(step: RemediationStep) -> str:
    text = step.description
    return DRY_RUN_PREFIX + (text[:1].lower() + text[1:] if text else text)


class RemediationExecutor:
    """Runs remediations and owns the execution registry."""

    def __init__(
        self,
        mutation_api: CloudMutationApi,
        config: Optional[EngineConfig] = None,
        step_catalog: Optional[StepCatalog] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._api = mutation_api
        self._config = config or EngineConfig()
        self._steps = step_catalog or StepCatalog.from_file()
        self._clock = clock
        self._records: Dict[str, _Record] = {}
        self._rolling_back = set()
        self._lock = threading.Lock()

    def default_options(self) -> RemediationOptions:
        return RemediationOptions(
            require_approval=self._config.require_approval,
            auto_rollback_on_failure=self._config.auto_rollback_on_failure,
        )

    # ------------------------------------------------------------------
    # Submission / approval
    # ------------------------------------------------------------------
    def submit(self, finding: Finding, subscription_id: str,
               options: Optional[RemediationOptions] = None) -> RemediationExecution:
        """Create an execution and run it unless approval is required."""
        if not finding.is_auto_remediable:
            raise ValidationError(
                f"Finding '{finding.id}' is not auto-remediable",
                hint="Follow the finding's remediation guidance for manual remediation",
            )
        subscription_id = require_guid(subscription_id)
        options = options or self.default_options()

        execution = RemediationExecution(
            execution_id=str(uuid.uuid4()),
            finding_id=finding.id,
            subscription_id=subscription_id,
            resource_id=finding.resource_id,
            control_id=finding.affected_controls[0],
            mode=ExecutionMode.DRY_RUN if options.dry_run else ExecutionMode.LIVE,
            status=ExecutionStatus.PENDING,
            started_at=self._clock(),
            executed_by=options.executed_by,
            requires_approval=options.require_approval,
            auto_rollback_on_failure=options.auto_rollback_on_failure,
            message="Awaiting approval" if options.require_approval else "",
        )
        with self._lock:
            self._records[execution.execution_id] = _Record(
                execution, finding, self._steps.steps_for(finding),
            )
        logger.info("Remediation %s submitted for %s (%s)",
                    execution.execution_id, finding.id, execution.mode.value)
        self._audit("remediation_submitted", execution,
                    f"Remediation submitted for finding {finding.id}")

        if options.require_approval:
            return execution
        return self.run(execution.execution_id)

    def approve(self, execution_id: str, approver: str) -> RemediationExecution:
        if not approver:
            raise ValidationError("Approver is required")
        with self._lock:
            record = self._require(execution_id)
            current = record.execution
            if not current.requires_approval or current.approved_by is not None \
                    or current.status is not ExecutionStatus.PENDING:
                raise InvalidTransitionError(
                    f"Execution {execution_id} is not awaiting approval "
                    f"(status {current.status.value})",
                    current_status=current.status.value, requested="approve",
                )
            record.execution = replace(current, approved_by=approver)
        logger.info("Remediation %s approved by %s", execution_id, approver)
        self._audit("remediation_approved", record.execution,
                    f"Remediation approved by {approver}", actor=approver)
        return self.run(execution_id)

    def run(self, execution_id: str) -> RemediationExecution:
        """Run a Pending execution once. Any other state is rejected."""
        record = self._claim(execution_id)
        if record.execution.is_dry_run:
            return self._run_dry(record)
        return self._run_live(record)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------
    def _require(self, execution_id: str) -> _Record:
        record = self._records.get(execution_id)
        if record is None:
            raise NotFoundError("Execution", execution_id)
        return record

    def _claim(self, execution_id: str) -> _Record:
        with self._lock:
            record = self._require(execution_id)
            current = record.execution
            if current.status is not ExecutionStatus.PENDING:
                raise InvalidTransitionError(
                    f"Execution {execution_id} is {current.status.value}; "
                    "submit a new remediation to retry",
                    current_status=current.status.value, requested="run",
                )
            if current.requires_approval and current.approved_by is None:
                raise InvalidTransitionError(
                    f"Execution {execution_id} is awaiting approval",
                    current_status=current.status.value, requested="run",
                )
            record.execution = replace(current, status=ExecutionStatus.RUNNING,
                                       message="Running")
        return record

    def _finish(self, record: _Record, **changes) -> RemediationExecution:
        with self._lock:
            if record.execution.status.is_terminal:
                raise InvalidTransitionError(
                    f"Execution {record.execution.execution_id} already finished",
                    current_status=record.execution.status.value,
                )
            completed = max(self._clock(), record.execution.started_at)
            record.execution = replace(record.execution, completed_at=completed, **changes)
            return record.execution

    def _run_dry(self, record: _Record) -> RemediationExecution:
        changes = tuple(_dry_run_change(s) for s in record.steps)
        target = record.finding.resource_name or record.finding.resource_id
        execution = self._finish(
            record,
            status=ExecutionStatus.SUCCEEDED,
            changes_applied=changes,
            message=f"DRY RUN: Would apply {len(changes)} changes to {target}",
        )
        logger.info("Dry run %s: %d changes planned", execution.execution_id, len(changes))
        self._audit("remediation_succeeded", execution, execution.message)
        return execution

    def _run_live(self, record: _Record) -> RemediationExecution:
        execution = record.execution
        resource_id = execution.resource_id
        try:
            backup_id = self._api.snapshot(resource_id)
        except Exception as exc:
            logger.error("Snapshot of %s failed, no changes applied: %s", resource_id, exc)
            failure = ExecutionFailure(0, "Capture backup snapshot", str(exc))
            failed = self._finish(
                record,
                status=ExecutionStatus.FAILED,
                failure=failure,
                error_message=failure.to_message(),
                message="Remediation aborted before any change: backup snapshot failed",
            )
            self._audit("remediation_failed", failed, failed.error_message)
            return failed

        with self._lock:
            record.execution = replace(record.execution, backup_id=backup_id)
        logger.info("Created backup %s for resource %s", backup_id, resource_id)

        applied: List[str] = []
        for step in record.steps:
            change = {
                "description": step.description,
                "command": step.command,
                "script": step.automation_script,
            }
            try:
                applied.append(self._api.apply_change(resource_id, change))
            except Exception as exc:
                return self._fail_step(record, step, exc, applied, backup_id)

        target = record.finding.resource_name or resource_id
        execution = self._finish(
            record,
            status=ExecutionStatus.SUCCEEDED,
            changes_applied=tuple(applied),
            message=f"Successfully applied {len(applied)} changes to {target}",
        )
        logger.info("Remediation %s succeeded (%d changes)", execution.execution_id, len(applied))
        self._audit("remediation_succeeded", execution, execution.message)
        return execution

    def _fail_step(self, record, step, exc, applied, backup_id) -> RemediationExecution:
        failure = ExecutionFailure(step.order, step.description, str(exc))
        logger.error("Remediation %s step %d failed: %s",
                     record.execution.execution_id, step.order, exc)
        message = f"Remediation failed at step {step.order}; remaining steps skipped"
        if record.execution.auto_rollback_on_failure:
            try:
                self._api.restore(backup_id)
                message += f". Resource restored from backup {backup_id}"
                logger.info("Auto-rollback of %s from %s completed",
                            record.execution.execution_id, backup_id)
            except Exception as restore_exc:
                message += f". Automatic restore from {backup_id} failed: {restore_exc}"
                logger.error("Auto-rollback from %s failed: %s", backup_id, restore_exc)
        execution = self._finish(
            record,
            status=ExecutionStatus.FAILED,
            changes_applied=tuple(applied),
            failure=failure,
            error_message=failure.to_message(backup_id),
            message=message,
        )
        self._audit("remediation_failed", execution, execution.error_message)
        return execution

    def rollback(self, execution_id: str) -> RemediationExecution:
        """Restore a succeeded live execution from its backup."""
        with self._lock:
            record = self._require(execution_id)
            current = record.execution
            if current.status is not ExecutionStatus.SUCCEEDED or current.is_dry_run \
                    or not current.backup_id or execution_id in self._rolling_back:
                raise InvalidTransitionError(
                    f"Execution {execution_id} cannot be rolled back "
                    f"(status {current.status.value}, mode {current.mode.value})",
                    current_status=current.status.value, requested="rollback",
                )
            self._rolling_back.add(execution_id)
        try:
            self._api.restore(current.backup_id)
            with self._lock:
                record.execution = replace(
                    record.execution,
                    status=ExecutionStatus.ROLLED_BACK,
                    message=f"Rolled back from backup {current.backup_id}",
                )
                rolled = record.execution
        finally:
            with self._lock:
                self._rolling_back.discard(execution_id)
        logger.info("Remediation %s rolled back from %s", execution_id, current.backup_id)
        self._audit("remediation_rolled_back", rolled, rolled.message)
        return rolled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_execution(self, execution_id: str) -> Result:
        with self._lock:
            record = self._records.get(execution_id)
        if record is None:
            return Err(NotFoundError("Execution", execution_id))
        return Ok(record.execution)

    def validate(self, execution_id: str) -> RemediationValidation:
        with self._lock:
            record = self._require(execution_id)
            execution = record.execution
            steps = record.steps
        checks = [
            ValidationCheck(
                "Verify remediation completed successfully",
                execution.status is ExecutionStatus.SUCCEEDED,
                f"Status {execution.status.value}",
            ),
            ValidationCheck(
                "Verify all remediation steps were executed",
                bool(steps) and len(execution.changes_applied) == len(steps),
                f"{len(execution.changes_applied)} of {len(steps)} steps",
            ),
        ]
        if execution.is_dry_run:
            checks.append(ValidationCheck("Backup captured before changes", True,
                                          "Not required for dry run"))
        else:
            checks.append(ValidationCheck(
                "Backup captured before changes", execution.backup_id is not None,
                execution.backup_id or "No backup",
            ))
        return RemediationValidation(
            execution_id=execution_id,
            is_valid=all(c.passed for c in checks),
            checks=tuple(checks),
            validated_at=self._clock(),
        )

    def _executions(self) -> List[RemediationExecution]:
        with self._lock:
            return [r.execution for r in self._records.values()]

    def get_progress(self, subscription_id: Optional[str] = None,
                     since: Optional[datetime] = None) -> RemediationProgress:
        since = ensure_utc(since) if since else self._clock() - PROGRESS_WINDOW
        if subscription_id:
            subscription_id = require_guid(subscription_id)
        executions = [
            e for e in self._executions()
            if e.started_at >= since
            and (subscription_id is None or e.subscription_id == subscription_id)
        ]
        counts = {status: 0 for status in ExecutionStatus}
        for e in executions:
            counts[e.status] += 1
        durations = [e.duration for e in executions if e.duration is not None]
        average = sum(durations, timedelta()) / len(durations) if durations else timedelta()
        return RemediationProgress(
            subscription_id=subscription_id,
            since=since,
            total_executions=len(executions),
            pending=counts[ExecutionStatus.PENDING],
            running=counts[ExecutionStatus.RUNNING],
            succeeded=counts[ExecutionStatus.SUCCEEDED],
            failed=counts[ExecutionStatus.FAILED],
            rolled_back=counts[ExecutionStatus.ROLLED_BACK],
            average_duration=average,
            auto_remediations_executed=sum(
                1 for e in executions
                if e.status is ExecutionStatus.SUCCEEDED and not e.requires_approval
            ),
        )

    def get_history(self, subscription_id: str, start: datetime,
                    end: datetime) -> List[RemediationExecution]:
        subscription_id = require_guid(subscription_id)
        start, end = ensure_utc(start), ensure_utc(end)
        if end < start:
            raise ValidationError("History end date precedes start date")
        return sorted(
            (e for e in self._executions()
             if e.subscription_id == subscription_id and start <= e.started_at <= end),
            key=lambda e: e.started_at,
        )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------
    def execute_batch(self, findings: List[Finding], subscription_id: str,
                      options: Optional[RemediationOptions] = None) -> BatchRemediationResult:
        """Submit every auto-remediable finding; one resource at a time."""
        subscription_id = require_guid(subscription_id)
        options = options or self.default_options()
        started = self._clock()

        skipped: List[SkippedRemediation] = []
        by_resource: Dict[str, List[Finding]] = {}
        order: List[str] = []
        for finding in findings:
            if not finding.is_auto_remediable:
                skipped.append(SkippedRemediation(
                    finding.id, "Manual remediation required - finding is not auto-remediable",
                ))
                continue
            by_resource.setdefault(finding.resource_id.lower(), []).append(finding)
            order.append(finding.id)

        results: Dict[str, RemediationExecution] = {}
        correlation_id = get_correlation_id()

        def run_resource(group: List[Finding]):
            set_correlation_id(correlation_id)
            for item in group:
                try:
                    results[item.id] = self.submit(item, subscription_id, options)
                except AtoEngineError as exc:
                    logger.warning("Batch remediation of %s rejected: %s", item.id, exc)
                    skipped.append(SkippedRemediation(item.id, exc.message))

        if by_resource:
            workers = max(1, min(self._config.max_workers, len(by_resource)))
            with ThreadPoolExecutor(max_workers=workers,
                                    thread_name_prefix="ato-remediate") as pool:
                for future in [pool.submit(run_resource, g) for g in by_resource.values()]:
                    future.result()

        result = BatchRemediationResult(
            batch_id=str(uuid.uuid4()),
            subscription_id=subscription_id,
            started_at=started,
            completed_at=max(self._clock(), started),
            executions=tuple(results[fid] for fid in order if fid in results),
            skipped=tuple(skipped),
        )
        logger.info("Batch %s: %s", result.batch_id, result.summary)
        return result

    def _audit(self, event_type: str, execution: RemediationExecution, action: str,
               actor: Optional[str] = None):
        safe_log_event(
            event_type=event_type,
            actor=actor or execution.executed_by,
            action=action,
            subscription_id=execution.subscription_id,
            entity_id=execution.execution_id,
            details={
                "findingId": execution.finding_id,
                "mode": execution.mode.value,
                "status": execution.status.value,
                "backupId": execution.backup_id,
            },
            db_path=self._config.db_path,
        )
