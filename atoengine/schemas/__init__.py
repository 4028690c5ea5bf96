# CUI // SP-CTI
"""ATO Engine data model.

Usage:
    from atoengine.schemas import Finding, Assessment, RemediationPlan
"""

from atoengine.schemas.compliance import (  # noqa: F401
    Assessment,
    AssessmentProgress,
    AssessmentView,
    ControlFamilyResult,
    Finding,
    RiskProfile,
    SEVERITIES_DESC,
    Severity,
    control_family_of,
)
from atoengine.schemas.evidence import (  # noqa: F401
    EvidenceItem,
    EvidencePackage,
    ExportArtifact,
    PoamDocument,
    PoamItem,
    PoamRemediation,
)
from atoengine.schemas.remediation import (  # noqa: F401
    BatchRemediationResult,
    ExecutionMode,
    ExecutionStatus,
    Milestone,
    RemediationExecution,
    RemediationItem,
    RemediationPlan,
    RemediationProgress,
    RemediationStep,
    RemediationTimeline,
    RemediationValidation,
    SkippedRemediation,
    ValidationCheck,
)
from atoengine.schemas.risk import (  # noqa: F401
    CategoryRisk,
    ComplianceDataPoint,
    ComplianceTimeline,
    ComplianceTrends,
    RiskAssessment,
    RiskMitigation,
)
