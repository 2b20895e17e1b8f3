"""
Eligibility Rules

Hard checks (any failure makes the student ineligible) and conditional
checks (failures cost points) evaluated in a fixed order. A check only
appears in the result when the scholarship actually declares that
criterion; undeclared criteria pass silently.
"""

from typing import Callable, List, Optional, Tuple

from .constants import CONDITIONAL_WEIGHTS, Importance
from .contracts import StudentProfile, EligibilityCriteria, EligibilityCheckResult


Check = Callable[[StudentProfile, EligibilityCriteria], Optional[EligibilityCheckResult]]

NOT_SPECIFIED = "Not specified"
FILIPINO_CITIZENSHIP = {"filipino", "filipino citizen", "philippines", "ph", "phl"}


def _fmt_peso(amount: Optional[float]) -> str:
    return NOT_SPECIFIED if amount is None else f"₱{amount:,.0f}"


def _fmt_gwa(gwa: Optional[float]) -> str:
    return NOT_SPECIFIED if gwa is None else f"{gwa:.2f}"


def _overlaps(value: Optional[str], allowed: List[str]) -> bool:
    """Case-insensitive substring match in either direction."""
    if not value:
        return False
    needle = value.lower()
    return any(needle in a.lower() or a.lower() in needle for a in allowed)


def _equals_any(value: Optional[str], allowed: List[str]) -> bool:
    if not value:
        return False
    return value.lower() in {a.lower() for a in allowed}


def _result(criterion: str, passed: bool, student_value: str, required_value: str,
            importance: Importance = Importance.REQUIRED) -> EligibilityCheckResult:
    return EligibilityCheckResult(
        criterion=criterion,
        passed=passed,
        student_value=student_value,
        required_value=required_value,
        importance=importance,
    )


# =============================================================================
# HARD CHECKS
# =============================================================================

def check_gwa(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if criteria.max_gwa is None:
        return None
    passed = student.gwa is not None and student.gwa <= criteria.max_gwa
    return _result(
        "Minimum GWA Requirement", passed,
        _fmt_gwa(student.gwa), f"{criteria.max_gwa:.2f} or better",
    )


def check_year_level(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.required_year_levels:
        return None
    passed = student.year_level in criteria.required_year_levels
    return _result(
        "Year Level Requirement", passed,
        student.year_level or NOT_SPECIFIED, ", ".join(criteria.required_year_levels),
    )


def check_college(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.eligible_colleges:
        return None
    return _result(
        "Eligible College", _equals_any(student.college, criteria.eligible_colleges),
        student.college or NOT_SPECIFIED, ", ".join(criteria.eligible_colleges),
    )


def check_course(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.eligible_courses:
        return None
    return _result(
        "Eligible Course", _overlaps(student.course, criteria.eligible_courses),
        student.course or NOT_SPECIFIED, ", ".join(criteria.eligible_courses),
    )


def check_major(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.eligible_majors:
        return None
    return _result(
        "Eligible Major/Specialization", _overlaps(student.major, criteria.eligible_majors),
        student.major or NOT_SPECIFIED, ", ".join(criteria.eligible_majors),
    )


def check_income(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    cap = criteria.max_annual_family_income
    if cap is None:
        return None
    income = student.annual_family_income
    passed = income is not None and income <= cap
    return _result(
        "Maximum Annual Family Income", passed,
        _fmt_peso(income), f"{_fmt_peso(cap)} or below",
    )


def check_st_bracket(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.eligible_st_brackets:
        return None
    passed = student.st_bracket in criteria.eligible_st_brackets
    return _result(
        "Required ST Bracket", passed,
        student.st_bracket or NOT_SPECIFIED, ", ".join(criteria.eligible_st_brackets),
    )


def check_province(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.eligible_provinces:
        return None
    return _result(
        "Eligible Province", _overlaps(student.province, criteria.eligible_provinces),
        student.province or NOT_SPECIFIED, ", ".join(criteria.eligible_provinces),
    )


def check_units(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    minimum = criteria.min_units_enrolled
    if minimum is None:
        return None
    units = student.units_enrolled
    passed = units is not None and units >= minimum
    return _result(
        "Minimum Units Enrolled", passed,
        NOT_SPECIFIED if units is None else f"{units:g} units", f"{minimum:g} units or more",
    )


def check_citizenship(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.is_filipino_only:
        return None
    # Unknown citizenship is assumed Filipino; student records rarely carry it.
    if student.citizenship is None:
        return _result("Filipino Citizenship", True, "Not specified (assumed Filipino)", "Filipino citizen")
    passed = student.citizenship.lower() in FILIPINO_CITIZENSHIP
    return _result("Filipino Citizenship", passed, student.citizenship, "Filipino citizen")


def check_thesis(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.requires_approved_thesis:
        return None
    passed = student.has_approved_thesis is True
    return _result(
        "Approved Thesis", passed,
        "Approved" if passed else "Not approved", "Approved thesis outline",
    )


HARD_CHECKS: List[Check] = [
    check_gwa,
    check_year_level,
    check_college,
    check_course,
    check_major,
    check_income,
    check_st_bracket,
    check_province,
    check_units,
    check_citizenship,
    check_thesis,
]


# =============================================================================
# CONDITIONAL CHECKS
# =============================================================================

def _preferred(criterion: str, has_flag: Optional[bool], present: str, absent: str) -> EligibilityCheckResult:
    # An unrecorded flag counts as "does not have"
    passed = not has_flag
    return _result(criterion, passed, present if has_flag else absent, absent, Importance.PREFERRED)


def check_no_existing_scholarship(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.must_not_have_other_scholarship:
        return None
    return _preferred(
        "No Existing Scholarship", student.has_existing_scholarship,
        "Has existing scholarship", "No existing scholarship",
    )


def check_no_thesis_grant(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.must_not_have_thesis_grant:
        return None
    return _preferred(
        "No Existing Thesis Grant", student.has_thesis_grant,
        "Has existing thesis grant", "No existing thesis grant",
    )


def check_no_disciplinary_action(student: StudentProfile, criteria: EligibilityCriteria) -> Optional[EligibilityCheckResult]:
    if not criteria.must_not_have_disciplinary_action:
        return None
    return _preferred(
        "No Disciplinary Action", student.has_disciplinary_action,
        "Has disciplinary record", "No disciplinary record",
    )


CONDITIONAL_CHECKS: List[Check] = [
    check_no_existing_scholarship,
    check_no_thesis_grant,
    check_no_disciplinary_action,
]


def conditional_weight(criterion: str) -> float:
    return CONDITIONAL_WEIGHTS.get(criterion, 0.0)


# =============================================================================
# EVALUATION
# =============================================================================

def _run(checks: List[Check], student: StudentProfile, criteria: EligibilityCriteria) -> List[EligibilityCheckResult]:
    results = []
    for check in checks:
        result = check(student, criteria)
        if result is not None:
            results.append(result)
    return results


def evaluate_hard(student: StudentProfile, criteria: EligibilityCriteria) -> List[EligibilityCheckResult]:
    """Run the hard checks in order. The student is eligible iff all pass."""
    return _run(HARD_CHECKS, student, criteria)


def evaluate_conditional(student: StudentProfile, criteria: EligibilityCriteria) -> List[EligibilityCheckResult]:
    return _run(CONDITIONAL_CHECKS, student, criteria)


def count_satisfied(student: StudentProfile, criteria: EligibilityCriteria) -> Tuple[int, int]:
    """(satisfied, declared) over every criterion the scholarship declares."""
    results = evaluate_hard(student, criteria) + evaluate_conditional(student, criteria)
    return sum(1 for r in results if r.passed), len(results)
