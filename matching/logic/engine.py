"""
Matching Engine

Main orchestrator for the deterministic rule layer: normalize the student,
run hard and conditional checks, then score. This is the primary entry
point for scholarship matching.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Union

from .adapter import normalize_student, normalize_scholarship
from .constants import HIGH_COMPATIBILITY_THRESHOLD
from .contracts import StudentProfile, Scholarship, MatchResult
from .rules import evaluate_hard, evaluate_conditional
from .scorer import calculate_compatibility_score

logger = logging.getLogger(__name__)

StudentInput = Union[StudentProfile, Dict[str, Any]]
ScholarshipInput = Union[Scholarship, Dict[str, Any]]


def _ranking_key(result: MatchResult):
    # eligible first, higher score first, then name and id for a stable order
    return (not result.is_eligible, -result.compatibility_score, result.scholarship_name.lower(), result.scholarship_id)


class MatchingEngine:
    """
    Rule-based matcher.

    Pipeline flow:
    1. Normalization - Resolve the raw student record into a StudentProfile
    2. Hard checks - Any failure makes the student ineligible
    3. Conditional checks - Failures reduce the score
    4. Scoring - Compose the 0-100 compatibility score
    """

    def __init__(self):
        self.version = "1.0.0"

    def match(self, student: StudentInput, scholarship: ScholarshipInput) -> MatchResult:
        """
        Evaluate one student against one scholarship.

        Args:
            student: Raw student record or canonical profile
            scholarship: Raw scholarship record or Scholarship

        Returns:
            MatchResult with hard checks followed by conditional checks
        """
        profile = normalize_student(student)
        scholarship = normalize_scholarship(scholarship)
        criteria = scholarship.criteria

        hard = evaluate_hard(profile, criteria)
        conditional = evaluate_conditional(profile, criteria)
        eligible = all(r.passed for r in hard)
        score = calculate_compatibility_score(profile, criteria, hard, conditional)

        return MatchResult(
            scholarship_id=scholarship.id,
            scholarship_name=scholarship.name,
            is_eligible=eligible,
            compatibility_score=score,
            eligibility_details=hard + conditional,
        )

    def match_all(
        self,
        student: StudentInput,
        scholarships: Iterable[ScholarshipInput],
    ) -> List[MatchResult]:
        """
        Evaluate a student against many scholarships.

        Inactive scholarships are skipped. Results are ordered eligible
        first, then by descending score; ties break on name, then id.
        """
        start_time = time.perf_counter()
        profile = normalize_student(student)

        results = []
        for raw in scholarships:
            scholarship = normalize_scholarship(raw)
            if not scholarship.is_active:
                continue
            results.append(self.match(profile, scholarship))

        results.sort(key=_ranking_key)
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Matched student {profile.student_id or '<anonymous>'} against "
            f"{len(results)} scholarships ({sum(r.is_eligible for r in results)} eligible) in {elapsed_ms:.1f}ms"
        )
        return results


def high_compatibility(results: List[MatchResult], threshold: int = HIGH_COMPATIBILITY_THRESHOLD) -> List[MatchResult]:
    """Eligible results scoring at least `threshold`."""
    return [r for r in results if r.is_eligible and r.compatibility_score >= threshold]


_default_engine = MatchingEngine()


def match_student_to_scholarships(
    student: StudentInput,
    scholarships: Iterable[ScholarshipInput],
) -> List[MatchResult]:
    """Convenience wrapper around MatchingEngine.match_all."""
    return _default_engine.match_all(student, scholarships)
