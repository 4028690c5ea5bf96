#!/usr/bin/env python3
# CUI // SP-CTI
"""ATO Engine Resilience Package — Errors, Result, Retry, Circuit Breaker,
Correlation.

Building blocks shared by the assessment, remediation and
evidence components.
"""

from atoengine.resilience.circuit_breaker import (  # noqa: F401
    CircuitState,
    InMemoryCircuitBreaker,
    circuit_breaker,
    get_all_breakers,
    get_circuit_breaker,
    reset_all,
)
from atoengine.resilience.correlation import (  # noqa: F401
    CorrelationLogFilter,
    get_correlation_id,
    register_correlation_middleware,
    set_correlation_id,
)
from atoengine.resilience.errors import (  # noqa: F401
    AssessmentCancelledError,
    AtoEngineError,
    AtoEnginePermanentError,
    AtoEngineTransientError,
    ConfigurationError,
    ExecutionFailure,
    InvalidTransitionError,
    NotFoundError,
    SerializationError,
    ServiceUnavailableError,
    UpstreamUnavailableError,
    ValidationError,
)
from atoengine.resilience.result import Err, Ok, Result  # noqa: F401
from atoengine.resilience.retry import backoff_delay, retry  # noqa: F401
