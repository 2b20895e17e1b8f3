"""
Feature Extraction

Builds the model's fixed-order feature vector from a canonical student
profile and (optionally) the scholarship's criteria.
"""

from typing import Dict, List, Mapping, Optional

from .constants import FEATURE_NAMES, FEATURE_DEFAULTS
from .contracts import StudentProfile, EligibilityCriteria, HistoricalApplication
from . import normalizers
from .rules import check_college, check_course, count_satisfied


# Fields that make up a complete profile
PROFILE_CORE_FIELDS = [
    "gwa",
    "year_level",
    "college",
    "course",
    "annual_family_income",
    "household_size",
    "st_bracket",
    "province",
    "units_enrolled",
    "units_passed",
]


def profile_completeness(student: StudentProfile) -> float:
    if student.profile_completed:
        return 1.0
    present = sum(1 for name in PROFILE_CORE_FIELDS if getattr(student, name) is not None)
    return present / len(PROFILE_CORE_FIELDS)


def _match_feature(student_value: Optional[str], result) -> float:
    """1/0 for a declared criterion the student can be judged on, else neutral."""
    if result is None or not student_value:
        return 0.5
    return 1.0 if result.passed else 0.0


def extract_features(
    student: StudentProfile,
    criteria: Optional[EligibilityCriteria] = None,
) -> Dict[str, float]:
    """
    Compute every feature in FEATURE_NAMES.

    Args:
        student: Canonical student profile
        criteria: Scholarship criteria; None evaluates the profile on its own

    Returns:
        Mapping of feature name -> value in [0, 1]
    """
    criteria = criteria or EligibilityCriteria()
    matched, declared = count_satisfied(student, criteria)

    return {
        "gwa_score": normalizers.normalize_gwa(student.gwa),
        "year_level": normalizers.normalize_year_level(student.year_level),
        "financial_need": normalizers.normalize_income(
            student.annual_family_income, criteria.max_annual_family_income
        ),
        "st_bracket": normalizers.normalize_st_bracket(student.st_bracket),
        "household_size": normalizers.normalize_household_size(student.household_size),
        "units_completed": normalizers.normalize_units_completed(student.units_passed, student.year_level),
        "college_match": _match_feature(student.college, check_college(student, criteria)),
        "course_match": _match_feature(student.course, check_course(student, criteria)),
        "profile_completeness": profile_completeness(student),
        "eligibility_ratio": normalizers.eligibility_ratio(matched, declared),
    }


def to_array(features: Mapping[str, float], feature_names: Optional[List[str]] = None) -> List[float]:
    """Order features by name list, filling gaps with each feature's default."""
    names = feature_names or FEATURE_NAMES
    return [float(features.get(name, FEATURE_DEFAULTS.get(name, 0.0))) for name in names]


def application_snapshot(
    student: StudentProfile,
    criteria: Optional[EligibilityCriteria],
    status: str,
    application_id: Optional[str] = None,
    scholarship_id: Optional[str] = None,
) -> HistoricalApplication:
    """Freeze a decided application's features for later training."""
    return HistoricalApplication(
        application_id=application_id,
        scholarship_id=scholarship_id,
        features=extract_features(student, criteria),
        status=status,
    )
