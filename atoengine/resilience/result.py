# CUI // SP-CTI
"""Typed lookup results.

Lookups that can legitimately miss (finding by id, execution by id, evidence
package by id) return ``Ok`` or ``Err`` instead of raising, so callers branch
on the value rather than on stack unwinding:

    result = assessment.find_finding(finding_id)
    if result.is_err:
        return _error_response(result.error)
    finding = result.value
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from atoengine.resilience.errors import AtoEngineError

T = TypeVar("T")
E = TypeVar("E", bound=AtoEngineError)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    is_ok = True
    is_err = False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    is_ok = False
    is_err = True

    def unwrap(self):
        """Raise the carried error (for callers that do want an exception)."""
        raise self.error


Result = Union[Ok[T], Err[E]]
