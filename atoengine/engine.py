#!/usr/bin/env python3
# CUI // SP-CTI
"""ComplianceEngine -- one object wiring every engine component.

The REST blueprint and the CLI talk only to this facade. Every public method
accepts a subscription GUID or friendly name and resolves it first. Option
arguments may be typed option structs or plain dicts (parsed with the
configured unknown-key policy).

Usage:
    engine = ComplianceEngine(load_engine_config(), scanner=FileResourceScanner(path))
    assessment = engine.run_assessment("production")
    plan = engine.generate_plan("production")
"""

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Iterable, List, Optional

import requests

from atoengine.audit.audit_logger import safe_log_event
from atoengine.compliance.assessment_orchestrator import AssessmentOrchestrator
from atoengine.compliance.control_catalog import ControlCatalog, get_default_catalog
from atoengine.compliance.finding_classifier import FindingClassifier
from atoengine.compliance.risk_analyzer import assess_risk, build_timeline
from atoengine.compliance.scanner import ResourceScanner
from atoengine.compliance.subscription_resolver import SubscriptionResolver
from atoengine.config.engine_config import EngineConfig
from atoengine.config.options import HardeningOptions, PlanOptions, RemediationOptions
from atoengine.db.assessment_store import AssessmentStore
from atoengine.evidence.collector import EvidenceCollector, EvidenceSource, FindingsEvidenceSource
from atoengine.evidence.packager import export_package
from atoengine.evidence.poam_generator import generate_poam
from atoengine.remediation.executor import RemediationExecutor
from atoengine.remediation.hardening import hardening_plan
from atoengine.remediation.mutation_api import CloudMutationApi, InMemoryMutationApi
from atoengine.remediation.planner import RemediationPlanner
from atoengine.remediation.step_catalog import StepCatalog
from atoengine.resilience.errors import ConfigurationError, NotFoundError
from atoengine.resilience.result import Err, Ok, Result
from atoengine.schemas.compliance import Assessment, Finding
from atoengine.schemas.evidence import EvidencePackage, ExportArtifact, PoamDocument
from atoengine.schemas.remediation import (
    BatchRemediationResult,
    RemediationExecution,
    RemediationPlan,
    RemediationProgress,
    RemediationValidation,
)
from atoengine.schemas.risk import ComplianceTimeline, RiskAssessment

logger = logging.getLogger("atoengine.engine")


class ComplianceEngine:
    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        scanner: Optional[ResourceScanner] = None,
        mutation_api: Optional[CloudMutationApi] = None,
        evidence_source: Optional[EvidenceSource] = None,
        store: Optional[AssessmentStore] = None,
        catalog: Optional[ControlCatalog] = None,
        classifier: Optional[FindingClassifier] = None,
        step_catalog: Optional[StepCatalog] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or EngineConfig()
        self.catalog = catalog or get_default_catalog()
        self.store = store or AssessmentStore(self.config.db_path)
        self.resolver = SubscriptionResolver.from_config(self.config, session=session)
        self.scanner = scanner
        steps = step_catalog or StepCatalog.from_file()

        self.orchestrator = AssessmentOrchestrator(
            scanner=scanner,
            classifier=classifier or FindingClassifier.from_catalog(),
            config=self.config,
            catalog=self.catalog,
            store=self.store,
        )
        self.planner = RemediationPlanner(self.config, steps)
        self.executor = RemediationExecutor(
            mutation_api or InMemoryMutationApi(), self.config, steps,
        )
        self.collector = EvidenceCollector(
            evidence_source or FindingsEvidenceSource(self.orchestrator.latest, self.catalog),
            catalog=self.catalog,
            config=self.config,
        )

    def close(self):
        self.store.close()

    # ------------------------------------------------------------------
    # Assessment
    # ------------------------------------------------------------------
    def resolve_subscription(self, value: Optional[str]) -> str:
        return self.resolver.resolve(value)

    def run_assessment(self, subscription: str, resource_group: Optional[str] = None,
                       progress=None, cancel_event=None, timeout: Optional[float] = None) -> Assessment:
        if self.scanner is None:
            raise ConfigurationError("No resource scanner configured", config_key="scanner")
        subscription_id = self.resolve_subscription(subscription)
        return self.orchestrator.run_assessment(
            subscription_id, resource_group=resource_group, progress=progress,
            cancel_event=cancel_event, timeout=timeout,
        )

    def get_latest_assessment(self, subscription: str) -> Result:
        subscription_id = self.resolve_subscription(subscription)
        assessment = self.orchestrator.latest(subscription_id)
        if assessment is None:
            return Err(NotFoundError(
                "Assessment", subscription_id,
                f"No assessment found for subscription {subscription_id}. "
                "Run an assessment first.",
            ))
        return Ok(assessment)

    def _require_latest(self, subscription: str) -> Assessment:
        return self.get_latest_assessment(subscription).unwrap()

    def get_finding(self, subscription: str, finding_id: str) -> Result:
        latest = self.get_latest_assessment(subscription)
        if latest.is_err:
            return latest
        return latest.value.find_finding(finding_id)

    # ------------------------------------------------------------------
    # Remediation
    # ------------------------------------------------------------------
    def _remediation_options(self, options) -> RemediationOptions:
        if isinstance(options, RemediationOptions):
            return options
        return RemediationOptions.from_dict(
            options, self.config.unknown_keys, defaults=self.executor.default_options(),
        )

    def generate_plan(self, subscription: str, options=None,
                      findings: Optional[Iterable[Finding]] = None) -> RemediationPlan:
        if not isinstance(options, PlanOptions):
            options = PlanOptions.from_dict(options, self.config.unknown_keys)
        if options.control_family:
            options = replace(
                options, control_family=self.catalog.require_family(options.control_family),
            )
        assessment = None
        if findings is None:
            assessment = self._require_latest(subscription)
            findings = assessment.all_findings()
        subscription_id = assessment.subscription_id if assessment \
            else self.resolve_subscription(subscription)
        return self.planner.build_plan(findings, subscription_id, options=options)

    def execute_remediation(self, subscription: str, finding_id: str,
                            options=None) -> RemediationExecution:
        assessment = self._require_latest(subscription)
        finding = assessment.find_finding(finding_id).unwrap()
        return self.executor.submit(
            finding, assessment.subscription_id, self._remediation_options(options),
        )

    def execute_batch(self, subscription: str, finding_ids: Optional[List[str]] = None,
                      options=None) -> BatchRemediationResult:
        assessment = self._require_latest(subscription)
        if finding_ids is None:
            findings = assessment.all_findings()
        else:
            findings = [assessment.find_finding(fid).unwrap() for fid in finding_ids]
        return self.executor.execute_batch(
            findings, assessment.subscription_id, self._remediation_options(options),
        )

    def approve_remediation(self, execution_id: str, approver: str) -> RemediationExecution:
        return self.executor.approve(execution_id, approver)

    def rollback_remediation(self, execution_id: str) -> RemediationExecution:
        return self.executor.rollback(execution_id)

    def validate_remediation(self, execution_id: str) -> RemediationValidation:
        return self.executor.validate(execution_id)

    def get_execution(self, execution_id: str) -> Result:
        return self.executor.get_execution(execution_id)

    def get_remediation_progress(self, subscription: Optional[str] = None,
                                 since: Optional[datetime] = None) -> RemediationProgress:
        subscription_id = self.resolve_subscription(subscription) if subscription else None
        return self.executor.get_progress(subscription_id, since)

    def get_remediation_history(self, subscription: str, start: datetime,
                                end: datetime) -> List[RemediationExecution]:
        return self.executor.get_history(self.resolve_subscription(subscription), start, end)

    def hardening_plan(self, subscription: str, options=None) -> dict:
        if not isinstance(options, HardeningOptions):
            options = HardeningOptions.from_dict(options, self.config.unknown_keys)
        assessment = self._require_latest(subscription)
        return hardening_plan(assessment, assessment.overall_compliance_score, options)

    # ------------------------------------------------------------------
    # Evidence / POA&M
    # ------------------------------------------------------------------
    def collect_evidence(self, subscription: str, control_family: str,
                         collected_by: str = "system") -> EvidencePackage:
        return self.collector.collect(
            self.resolve_subscription(subscription), control_family, collected_by,
        )

    def get_evidence_package(self, package_id: str) -> Result:
        return self.collector.get_package(package_id)

    def export_evidence(self, package_id: str, fmt: str) -> ExportArtifact:
        package = self.collector.get_package(package_id).unwrap()
        artifact = export_package(
            package, fmt,
            family_name=self.catalog.family_name(package.control_family),
            schema_version=self.config.emass_schema_version,
            valid_threshold=self.config.emass_valid_threshold,
        )
        safe_log_event(
            event_type="evidence_exported",
            actor=package.collected_by,
            action=f"Evidence package {package_id} exported as {fmt}",
            subscription_id=package.subscription_id,
            entity_id=package_id,
            details={"format": fmt, "fileName": artifact.file_name},
            db_path=self.config.db_path,
        )
        return artifact

    def generate_poam(self, subscription: str,
                      control_family: Optional[str] = None) -> PoamDocument:
        assessment = self._require_latest(subscription)
        if control_family:
            control_family = self.catalog.require_family(control_family)
        findings = assessment.all_findings()
        plan = self.planner.build_plan(findings, assessment.subscription_id)
        return generate_poam(
            findings, plan, assessment.subscription_id,
            control_family=control_family, config=self.config,
        )

    # ------------------------------------------------------------------
    # Risk / timeline
    # ------------------------------------------------------------------
    def assess_risk(self, subscription: str) -> RiskAssessment:
        assessment = self._require_latest(subscription)
        previous = self.store.latest(assessment.subscription_id, before=assessment.end_time)
        return assess_risk(assessment, previous)

    def compliance_timeline(self, subscription: str, start: date, end: date) -> ComplianceTimeline:
        return build_timeline(self.resolve_subscription(subscription), start, end, self.store)
