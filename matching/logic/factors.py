"""
Factor Explanations

Human-readable labels and sentences for the model's features, used by the
prediction service to explain what pushed a probability up or down.
"""

from typing import Dict, Tuple

from .contracts import StudentProfile, EligibilityCriteria

# feature -> (label, category)
FACTOR_LABELS: Dict[str, Tuple[str, str]] = {
    "gwa_score": ("Academic Performance (GWA)", "academic"),
    "year_level": ("Year Level", "academic"),
    "financial_need": ("Financial Need", "financial"),
    "st_bracket": ("ST Bracket", "financial"),
    "household_size": ("Household Size", "financial"),
    "units_completed": ("Academic Progress", "academic"),
    "college_match": ("College Match", "eligibility"),
    "course_match": ("Course Match", "eligibility"),
    "profile_completeness": ("Profile Completeness", "application"),
    "eligibility_ratio": ("Eligibility Criteria Met", "eligibility"),
}


def factor_label(feature: str) -> Tuple[str, str]:
    return FACTOR_LABELS.get(feature, (feature.replace("_", " ").title(), "other"))


def describe_factor(
    feature: str,
    value: float,
    favorable: bool,
    student: StudentProfile,
    criteria: EligibilityCriteria,
) -> str:
    """One sentence explaining a factor for this student."""
    if feature == "gwa_score":
        if student.gwa is None:
            return "GWA not provided; assumed average standing"
        cap = f" against a {criteria.max_gwa:.2f} requirement" if criteria.max_gwa is not None else ""
        return f"GWA of {student.gwa:.2f}{cap} is {'a strength' if favorable else 'below what past approvals show'}"
    if feature == "year_level":
        return f"Classified as {student.year_level or 'unknown year level'}"
    if feature == "financial_need":
        if student.annual_family_income is None:
            return "Family income not provided"
        return f"Annual family income of ₱{student.annual_family_income:,.0f} indicates {_level(value)} financial need"
    if feature == "st_bracket":
        return f"ST bracket {student.st_bracket}" if student.st_bracket else "ST bracket not provided"
    if feature == "household_size":
        return f"Household of {student.household_size}" if student.household_size else "Household size not provided"
    if feature == "units_completed":
        if student.units_passed is None:
            return "Units passed not provided"
        return f"{student.units_passed:g} units passed shows {_level(value)} progress for the year level"
    if feature == "college_match":
        return _match_sentence(value, "College", student.college)
    if feature == "course_match":
        return _match_sentence(value, "Course", student.course)
    if feature == "profile_completeness":
        return "Profile is complete" if value >= 1.0 else f"Profile is {value:.0%} complete"
    if feature == "eligibility_ratio":
        return f"Meets {value:.0%} of the declared eligibility criteria"
    return f"{factor_label(feature)[0]}: {value:.2f}"


def _level(value: float) -> str:
    if value >= 0.7:
        return "high"
    if value >= 0.4:
        return "moderate"
    return "low"


def _match_sentence(value: float, what: str, student_value) -> str:
    if value == 0.5:
        return f"{what} not evaluated for this scholarship"
    if value >= 1.0:
        return f"{what} {student_value} is eligible"
    return f"{what} {student_value or 'not provided'} is not among the eligible ones"
