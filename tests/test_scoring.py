#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for atoengine.compliance.scoring -- family/overall score, grade, status."""

import pytest

from atoengine.compliance.scoring import (
    display_score,
    grade_for_score,
    score_family,
    score_overall,
    status_for_score,
)
from atoengine.resilience.errors import ValidationError


class TestScoreFamily:
    def test_ratio(self):
        assert score_family(16, 14) == 87.5

    def test_no_controls_is_fully_compliant(self):
        assert score_family(0, 0) == 100.0

    def test_all_failed(self):
        assert score_family(5, 0) == 0.0

    def test_passed_exceeds_total_rejected(self):
        with pytest.raises(ValidationError):
            score_family(3, 4)

    @pytest.mark.parametrize("total,passed", [(-1, 0), (2, -1)])
    def test_negative_counts_rejected(self, total, passed):
        with pytest.raises(ValidationError):
            score_family(total, passed)


class TestScoreOverall:
    def test_unweighted_mean_rounded(self):
        assert score_overall([87.5, 40.0, 100.0]) == 75.83

    def test_empty_is_100(self):
        assert score_overall([]) == 100.0

    def test_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            score_overall([50.0, 100.5])


class TestGrade:
    @pytest.mark.parametrize("score,grade", [
        (100.0, "A+"), (95.0, "A+"), (94.99, "A"), (90.0, "A"),
        (89.99, "A-"), (85.0, "A-"), (80.0, "B+"), (75.0, "B"),
        (74.99, "B-"), (70.0, "B-"), (65.0, "C+"), (60.0, "C"),
        (55.0, "C-"), (54.99, "D"), (50.01, "D"), (50.0, "D"), (49.99, "F"),
        (0.0, "F"),
    ])
    def test_boundaries(self, score, grade):
        assert grade_for_score(score) == grade

    def test_rejects_out_of_range(self):
        with pytest.raises(ValidationError):
            grade_for_score(-0.1)


class TestStatus:
    @pytest.mark.parametrize("score,status", [
        (100.0, "Compliant"),
        (95.0, "Compliant"),
        (94.99, "Compliant"),
        (90.0, "Compliant"),
        (89.99, "Partially Compliant"),
        (85.0, "Partially Compliant"),
        (70.0, "Partially Compliant"),
        (69.99, "Non-Compliant"),
        (50.01, "Non-Compliant"),
        (50.0, "Non-Compliant"),
        (49.99, "Non-Compliant"),
        (0.0, "Non-Compliant"),
    ])
    def test_boundaries(self, score, status):
        assert status_for_score(score) == status


def test_display_score_rounds_to_one_decimal():
    assert display_score(75.8333) == 75.8


def test_family_score_monotonic_in_passed():
    for total in (1, 7, 16):
        scores = [score_family(total, passed) for passed in range(total + 1)]
        assert scores == sorted(scores)
        assert all(0.0 <= s <= 100.0 for s in scores)


def test_two_family_example():
    overall = score_overall([score_family(10, 7), score_family(5, 5)])
    assert overall == 85.0
    assert grade_for_score(overall) == "A-"
    assert status_for_score(overall) == "Partially Compliant"
