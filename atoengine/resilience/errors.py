#!/usr/bin/env python3
# CUI // SP-CTI
"""ATO Engine Resilience — Structured Exception Hierarchy.

Every error raised by the engine derives from AtoEngineError so callers can
categorize failures without string matching:

    AtoEngineError
    ├── AtoEnginePermanentError      (never retried automatically)
    │   ├── ValidationError          (bad input; carries a hint/valid values)
    │   │   └── InvalidTransitionError
    │   ├── NotFoundError
    │   ├── SerializationError
    │   └── ConfigurationError
    ├── AtoEngineTransientError      (caller should retry)
    │   └── UpstreamUnavailableError
    │       └── ServiceUnavailableError   (circuit breaker open)
    └── AssessmentCancelledError

Remediation step failures are NOT exceptions: they are recorded on the
RemediationExecution (see ExecutionFailure) and read back by the caller.

Usage:
    from atoengine.resilience.errors import ValidationError

    raise ValidationError("Unknown control family 'ZZ'",
                          valid_values=["AC", "AU"])
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence


class AtoEngineError(Exception):
    """Base exception for all ATO Engine errors.

    Attributes:
        service: Name of the component or upstream that caused the error.
        retryable: Whether the caller should retry the operation.
    """

    def __init__(self, message: str, service: str = "", retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.service = service
        self.retryable = retryable

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }

    @property
    def code(self) -> str:
        return "ERROR"


class AtoEngineTransientError(AtoEngineError):
    """Transient error — the operation may succeed on retry."""

    def __init__(self, message: str, service: str = "", retryable: bool = True):
        super().__init__(message, service=service, retryable=retryable)


class AtoEnginePermanentError(AtoEngineError):
    """Permanent error — retrying will not help."""

    def __init__(self, message: str, service: str = "", retryable: bool = False):
        super().__init__(message, service=service, retryable=retryable)


class ValidationError(AtoEnginePermanentError):
    """Caller-facing input error (bad subscription, unknown family, ...).

    Attributes:
        hint: Free-form correction hint shown to the caller.
        valid_values: Bounded list of accepted values, when one exists.
    """

    def __init__(
        self,
        message: str,
        hint: str = "",
        valid_values: Optional[Iterable[str]] = None,
        service: str = "",
    ):
        super().__init__(message, service=service)
        self.hint = hint
        self.valid_values = list(valid_values) if valid_values is not None else []

    @property
    def code(self) -> str:
        return "VALIDATION_ERROR"

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.hint:
            data["hint"] = self.hint
        if self.valid_values:
            data["validValues"] = self.valid_values
        return data


class InvalidTransitionError(ValidationError):
    """A remediation execution was asked to make a forbidden state change."""

    def __init__(self, message: str, current_status: str = "", requested: str = ""):
        super().__init__(message, service="remediation")
        self.current_status = current_status
        self.requested = requested

    @property
    def code(self) -> str:
        return "INVALID_TRANSITION"


class NotFoundError(AtoEnginePermanentError):
    """Finding, execution, plan, package or assessment id not found."""

    def __init__(self, entity: str, entity_id: str, message: str = ""):
        super().__init__(message or f"{entity} '{entity_id}' not found.")
        self.entity = entity
        self.entity_id = entity_id

    @property
    def code(self) -> str:
        return "NOT_FOUND"


class SerializationError(AtoEnginePermanentError):
    """Evidence data cannot be exported without loss (eMASS, CSV)."""

    def __init__(self, message: str, evidence_id: str = ""):
        super().__init__(message, service="evidence")
        self.evidence_id = evidence_id

    @property
    def code(self) -> str:
        return "SERIALIZATION_ERROR"


class ConfigurationError(AtoEnginePermanentError):
    """Configuration error — missing or invalid configuration."""

    def __init__(self, message: str, config_key: str = ""):
        super().__init__(message, service="config", retryable=False)
        self.config_key = config_key

    @property
    def code(self) -> str:
        return "CONFIGURATION_ERROR"


class UpstreamUnavailableError(AtoEngineTransientError):
    """Scanner or cloud API timed out or failed; the caller should retry."""

    @property
    def code(self) -> str:
        return "UPSTREAM_UNAVAILABLE"


class ServiceUnavailableError(UpstreamUnavailableError):
    """Service unavailable — circuit breaker is OPEN."""

    def __init__(self, message: str, service: str = ""):
        super().__init__(
            message or f"Service '{service}' is unavailable (circuit breaker open)",
            service=service,
            retryable=True,
        )

    @property
    def code(self) -> str:
        return "SERVICE_UNAVAILABLE"


class AssessmentCancelledError(AtoEngineError):
    """An assessment scan was cancelled before every family completed."""

    def __init__(self, message: str, completed_families: Sequence[str] = ()):
        super().__init__(message, service="assessment", retryable=True)
        self.completed_families = list(completed_families)

    @property
    def code(self) -> str:
        return "CANCELLED"


@dataclass(frozen=True)
class ExecutionFailure:
    """A remediation step failure captured on an execution record."""

    step_order: int
    description: str
    error: str

    def to_message(self, backup_id: Optional[str] = None) -> str:
        msg = f"Step {self.step_order} ({self.description}) failed: {self.error}"
        if backup_id:
            msg += f". Use backup {backup_id} for manual rollback."
        return msg
