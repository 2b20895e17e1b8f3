"""
Compatibility Scorer

Turns rule-engine results into a 0-100 compatibility score.
"""

import math
from typing import List

from .constants import (
    BASE_COMPATIBILITY_SCORE,
    MAX_GWA_BONUS,
    GWA_BONUS_PER_POINT,
    INCOME_BONUS_TIERS,
    PROFILE_COMPLETED_BONUS,
)
from .contracts import StudentProfile, EligibilityCriteria, EligibilityCheckResult
from .rules import conditional_weight


def gwa_margin_bonus(student: StudentProfile, criteria: EligibilityCriteria) -> float:
    """Up to 15 points for beating the GWA cap (10 points per full grade point)."""
    if criteria.max_gwa is None or student.gwa is None:
        return 0.0
    margin = criteria.max_gwa - student.gwa
    if margin <= 0:
        return 0.0
    return min(margin * GWA_BONUS_PER_POINT, MAX_GWA_BONUS)


def income_need_bonus(student: StudentProfile, criteria: EligibilityCriteria) -> float:
    cap = criteria.max_annual_family_income
    if not cap or student.annual_family_income is None:
        return 0.0
    ratio = student.annual_family_income / cap
    for upper, bonus in INCOME_BONUS_TIERS:
        if ratio < upper:
            return bonus
    return 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_compatibility_score(
    student: StudentProfile,
    criteria: EligibilityCriteria,
    hard_results: List[EligibilityCheckResult],
    conditional_results: List[EligibilityCheckResult],
) -> int:
    """
    Compose the compatibility score.

    Args:
        student: Canonical student profile
        criteria: Scholarship criteria the results were computed against
        hard_results: Output of evaluate_hard
        conditional_results: Output of evaluate_conditional

    Returns:
        0 when any hard check failed, otherwise an integer in 1..100
    """
    if any(not r.passed for r in hard_results):
        return 0

    score = BASE_COMPATIBILITY_SCORE
    for result in conditional_results:
        if not result.passed:
            score -= conditional_weight(result.criterion) * 100

    score += gwa_margin_bonus(student, criteria)
    score += income_need_bonus(student, criteria)
    if student.profile_completed:
        score += PROFILE_COMPLETED_BONUS

    score = max(0.0, min(100.0, score))
    # An eligible student never reports 0, which is reserved for ineligible
    return max(1, _round_half_up(score))
