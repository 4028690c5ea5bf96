#!/usr/bin/env python3
# CUI // SP-CTI
"""Compliance scoring: family score, overall score, grade and status.

Thresholds are fixed contract values:

    grade   >=95 A+  >=90 A  >=85 A-  >=80 B+  >=75 B  >=70 B-
            >=65 C+  >=60 C  >=55 C-  >=50 D   else F
    status  >=90 Compliant  >=70 Partially Compliant  else Non-Compliant
"""

from typing import Iterable

from atoengine.resilience.errors import ValidationError

GRADE_THRESHOLDS = (
    (95.0, "A+"),
    (90.0, "A"),
    (85.0, "A-"),
    (80.0, "B+"),
    (75.0, "B"),
    (70.0, "B-"),
    (65.0, "C+"),
    (60.0, "C"),
    (55.0, "C-"),
    (50.0, "D"),
)

STATUS_COMPLIANT = "Compliant"
STATUS_PARTIAL = "Partially Compliant"
STATUS_NON_COMPLIANT = "Non-Compliant"


def _check_score(score: float) -> float:
    if score is None or not 0.0 <= float(score) <= 100.0:
        raise ValidationError(f"Score {score} is outside [0, 100]")
    return float(score)


def score_family(total: int, passed: int) -> float:
    """100 * passed / total; 100 when no controls were evaluated."""
    if total < 0 or passed < 0:
        raise ValidationError(
            f"Control counts must be non-negative (total={total}, passed={passed})"
        )
    if passed > total:
        raise ValidationError(
            f"Passed controls ({passed}) exceed total controls ({total})"
        )
    if total == 0:
        return 100.0
    return 100.0 * passed / total


def score_overall(family_scores: Iterable[float]) -> float:
    """Unweighted mean of family scores, rounded to 2 decimals."""
    scores = [_check_score(s) for s in family_scores]
    if not scores:
        return 100.0
    return round(sum(scores) / len(scores), 2)


def display_score(score: float) -> float:
    return round(_check_score(score), 1)


def grade_for_score(score: float) -> str:
    score = _check_score(score)
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def status_for_score(score: float) -> str:
    score = _check_score(score)
    if score >= 90.0:
        return STATUS_COMPLIANT
    if score >= 70.0:
        return STATUS_PARTIAL
    return STATUS_NON_COMPLIANT
