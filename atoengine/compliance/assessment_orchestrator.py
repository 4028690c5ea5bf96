#!/usr/bin/env python3
# CUI // SP-CTI
"""Assessment Orchestrator -- concurrent per-family compliance scans.

Each control family is scanned independently in a bounded ThreadPoolExecutor:
scanner -> classifier -> ControlFamilyResult. Results are merged into one
immutable Assessment only after every family has completed. Cancellation or
timeout raises instead of returning a partial assessment, and nothing is
stored or cached in that case.

Progress updates (one per completed family) go to a ``queue.Queue`` via
``put_nowait`` or to a callable. A full queue drops the update; a failing
callback is logged. Neither can stall the scan.

Usage:
    orchestrator = AssessmentOrchestrator(scanner, classifier, config)
    assessment = orchestrator.run_assessment(subscription_guid, progress=q)
"""

import logging
import queue
import re
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from atoengine.audit.audit_logger import safe_log_event
from atoengine.compat.datetime_utils import utc_now
from atoengine.compliance.control_catalog import ControlCatalog, get_default_catalog
from atoengine.compliance.finding_classifier import FindingClassifier
from atoengine.compliance.risk_analyzer import assessment_summary, build_risk_profile
from atoengine.compliance.scanner import ResourceScanner
from atoengine.compliance.subscription_resolver import require_guid
from atoengine.config.engine_config import EngineConfig
from atoengine.resilience.correlation import get_correlation_id, set_correlation_id
from atoengine.resilience.errors import (
    AssessmentCancelledError,
    AtoEngineError,
    UpstreamUnavailableError,
    ValidationError,
)
from atoengine.schemas.compliance import (
    Assessment,
    AssessmentProgress,
    ControlFamilyResult,
    Finding,
)

logger = logging.getLogger("atoengine.compliance.assessment_orchestrator")

# Seconds between cancellation/timeout checks while families are in flight.
POLL_INTERVAL = 0.05

_ENHANCEMENT_RE = re.compile(r"\(\d+\)$")


def base_control(control_id: str) -> str:
    """``AC-2(7)`` -> ``AC-2``."""
    return _ENHANCEMENT_RE.sub("", control_id)


class AssessmentOrchestrator:
    """Runs assessments and keeps the latest one per subscription."""

    def __init__(
        self,
        scanner: ResourceScanner,
        classifier: FindingClassifier,
        config: Optional[EngineConfig] = None,
        catalog: Optional[ControlCatalog] = None,
        store=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._scanner = scanner
        self._classifier = classifier
        self._config = config or EngineConfig()
        self._catalog = catalog or get_default_catalog()
        self._store = store
        self._clock = clock
        self._latest: Dict[str, Assessment] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run_assessment(
        self,
        subscription_id: str,
        resource_group: Optional[str] = None,
        progress=None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Assessment:
        subscription_id = require_guid(subscription_id)
        families = list(self._config.control_families)
        timeout = timeout if timeout is not None else self._config.assessment_timeout_seconds
        if timeout <= 0:
            raise ValidationError("Assessment timeout must be positive")
        cancel_event = cancel_event or threading.Event()

        assessment_id = str(uuid.uuid4())
        start_time = self._clock()
        deadline = time.monotonic() + timeout
        logger.info("Assessment %s started for %s (%d families, rg=%s)",
                    assessment_id, subscription_id, len(families), resource_group or "-")

        results = self._scan_all(
            assessment_id, subscription_id, resource_group, families,
            progress, cancel_event, deadline, timeout,
        )

        assessment = Assessment(
            assessment_id=assessment_id,
            subscription_id=subscription_id,
            resource_group=resource_group,
            start_time=start_time,
            end_time=max(self._clock(), start_time),
            control_family_results=self._merge(families, results),
        )
        profile = build_risk_profile(assessment)
        assessment = assessment.with_summary(
            assessment_summary(assessment, profile.risk_level), profile,
        )

        if self._store is not None:
            self._store.save(assessment)
        with self._lock:
            self._latest[subscription_id] = assessment

        logger.info("Assessment %s completed: %.2f%% (%s), %d findings",
                    assessment_id, assessment.overall_compliance_score,
                    assessment.grade, assessment.total_findings)
        safe_log_event(
            event_type="assessment_completed",
            actor="atoengine",
            action=f"Assessment {assessment_id} completed with "
                   f"{assessment.overall_compliance_score:.1f}% compliance",
            subscription_id=subscription_id,
            entity_id=assessment_id,
            details={
                "score": assessment.overall_compliance_score,
                "findings": assessment.total_findings,
                "critical": assessment.critical_findings,
            },
            db_path=self._audit_db_path(),
        )
        return assessment

    def latest(self, subscription_id: str) -> Optional[Assessment]:
        """Latest completed assessment (cache first, then the store)."""
        subscription_id = require_guid(subscription_id)
        with self._lock:
            cached = self._latest.get(subscription_id)
        if cached is not None:
            return cached
        if self._store is None:
            return None
        stored = self._store.latest(subscription_id)
        if stored is not None:
            with self._lock:
                self._latest.setdefault(subscription_id, stored)
        return stored

    # ------------------------------------------------------------------
    # Scan fan-out
    # ------------------------------------------------------------------
    def _scan_all(self, assessment_id, subscription_id, resource_group, families,
                  progress, cancel_event, deadline, timeout) -> Dict[str, ControlFamilyResult]:
        results: Dict[str, ControlFamilyResult] = {}
        workers = max(1, min(self._config.max_workers, len(families)))
        correlation_id = get_correlation_id()
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ato-scan")
        try:
            pending = {
                executor.submit(
                    self._scan_family, subscription_id, family, resource_group,
                    cancel_event, correlation_id,
                ): family
                for family in families
            }
            while pending:
                if cancel_event.is_set():
                    self._abort(pending)
                    logger.warning("Assessment %s cancelled after %d/%d families",
                                   assessment_id, len(results), len(families))
                    safe_log_event(
                        event_type="assessment_cancelled", actor="atoengine",
                        action=f"Assessment {assessment_id} cancelled",
                        subscription_id=subscription_id, entity_id=assessment_id,
                        db_path=self._audit_db_path(),
                    )
                    raise AssessmentCancelledError(
                        f"Assessment {assessment_id} was cancelled",
                        completed_families=sorted(results),
                    )
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._abort(pending)
                    logger.error("Assessment %s timed out after %.0fs", assessment_id, timeout)
                    raise UpstreamUnavailableError(
                        f"Assessment timed out after {timeout:.0f}s "
                        f"({len(results)}/{len(families)} families completed). Retry later.",
                        service="scanner",
                    )
                done, _ = wait(
                    list(pending), timeout=min(POLL_INTERVAL, remaining),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    family = pending.pop(future)
                    try:
                        result = future.result()
                    except AssessmentCancelledError:
                        # Worker noticed the event first; the loop raises.
                        continue
                    except AtoEngineError:
                        self._abort(pending)
                        raise
                    results[family] = result
                    self._emit(progress, AssessmentProgress(
                        assessment_id=assessment_id,
                        control_family=family,
                        completed_families=len(results),
                        total_families=len(families),
                        findings_in_family=len(result.findings),
                        family_score=result.compliance_score,
                        timestamp=self._clock(),
                    ))
            if cancel_event.is_set():
                raise AssessmentCancelledError(
                    f"Assessment {assessment_id} was cancelled",
                    completed_families=sorted(results),
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    @staticmethod
    def _abort(pending):
        for future in pending:
            future.cancel()

    def _scan_family(self, subscription_id, family, resource_group, cancel_event,
                     correlation_id) -> ControlFamilyResult:
        set_correlation_id(correlation_id)
        if cancel_event.is_set():
            raise AssessmentCancelledError(f"Scan of {family} cancelled")
        try:
            feed = self._scanner.scan_family(subscription_id, family, resource_group)
        except AtoEngineError:
            raise
        except Exception as exc:
            logger.error("Scanner failed for family %s: %s", family, exc)
            raise UpstreamUnavailableError(
                f"Scanner failed for control family {family}: {exc}", service="scanner",
            ) from exc

        findings: List[Finding] = []
        seen = set()
        skipped = 0
        for raw in feed.observations:
            try:
                finding = self._classifier.classify(raw)
            except ValidationError as exc:
                skipped += 1
                logger.warning("Unclassifiable observation %s on %s skipped: %s",
                               raw.rule_id, raw.resource_id, exc)
                continue
            if finding.id not in seen:
                seen.add(finding.id)
                findings.append(finding)

        evaluated = feed.controls_evaluated
        if evaluated is None:
            evaluated = self._catalog.controls_for(family)
        evaluated_set = {base_control(c.upper()) for c in evaluated}
        failed = {
            base_control(c)
            for f in findings for c in f.affected_controls
            if base_control(c) in evaluated_set
        }
        logger.debug("Family %s: %d controls, %d failed, %d findings (%d skipped)",
                     family, len(evaluated_set), len(failed), len(findings), skipped)
        return ControlFamilyResult(
            control_family=family,
            family_name=self._catalog.family_name(family),
            total_controls=len(evaluated_set),
            passed_controls=len(evaluated_set) - len(failed),
            findings=tuple(findings),
        )

    @staticmethod
    def _merge(families, results) -> Dict[str, ControlFamilyResult]:
        """Order by configured family list; a finding reported by two family
        scans stays with the first family."""
        merged: Dict[str, ControlFamilyResult] = {}
        seen = set()
        for family in families:
            result = results[family]
            unique: Tuple[Finding, ...] = tuple(
                f for f in result.findings if f.id not in seen
            )
            seen.update(f.id for f in unique)
            if len(unique) != len(result.findings):
                result = ControlFamilyResult(
                    control_family=result.control_family,
                    family_name=result.family_name,
                    total_controls=result.total_controls,
                    passed_controls=result.passed_controls,
                    findings=unique,
                )
            merged[family] = result
        return merged

    @staticmethod
    def _emit(progress, update: AssessmentProgress):
        if progress is None:
            return
        if hasattr(progress, "put_nowait"):
            try:
                progress.put_nowait(update)
            except queue.Full:
                logger.debug("Progress queue full, dropped update for %s",
                             update.control_family)
            return
        try:
            progress(update)
        except Exception as exc:
            logger.warning("Progress callback failed for %s: %s", update.control_family, exc)

    def _audit_db_path(self):
        return getattr(self._store, "db_path", None)
