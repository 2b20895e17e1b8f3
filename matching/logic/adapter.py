"""
Profile and Criteria Adapter

Turns raw student and scholarship records (nested or flat, camelCase or
snake_case, with the synonymous field names used across the registrar,
the application forms and older imports) into the canonical contracts the
rule engine and the model consume.

This is a pure TRANSFORM layer:
- NO scoring logic
- NO persistence
- student normalization never raises; unusable values become None
- only invalid scholarship criteria raise ValidationFailure
"""

import math
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from .constants import (
    YEAR_LEVEL_MAP,
    YEAR_LEVEL_ALIASES,
    ST_BRACKET_MAP,
    ST_BRACKET_ALIASES,
    GWA_BEST,
    GWA_WORST,
)
from .contracts import StudentProfile, EligibilityCriteria, Scholarship
from .errors import ValidationFailure


KeyPath = Tuple[str, ...]

# Canonical student field -> candidate key paths, first match wins
STUDENT_FIELD_SYNONYMS: Dict[str, List[KeyPath]] = {
    "student_id": [("studentId",), ("student_id",), ("id",), ("_id",)],
    "gwa": [("gwa",), ("GWA",), ("generalWeightedAverage",)],
    "year_level": [("classification",), ("yearLevel",), ("year_level",)],
    "college": [("college",)],
    "course": [("course",), ("program",), ("degreeProgram",)],
    "major": [("major",), ("specialization",)],
    "units_enrolled": [("unitsEnrolled",), ("units_enrolled",)],
    "units_passed": [("unitsPassed",), ("units_passed",), ("totalUnitsPassed",)],
    "has_approved_thesis": [
        ("hasApprovedThesisOutline",), ("hasApprovedThesis",), ("has_approved_thesis",),
    ],
    "annual_family_income": [
        ("annualFamilyIncome",), ("familyAnnualIncome",),
        ("annual_family_income",), ("family_annual_income",),
    ],
    "household_size": [("householdSize",), ("household_size",), ("familySize",), ("family_size",)],
    "st_bracket": [("stBracket",), ("st_bracket",), ("STBracket",)],
    "province": [
        ("provinceOfOrigin",), ("province_of_origin",), ("province",),
        ("homeAddress", "province"), ("home_address", "province"), ("hometown",),
    ],
    "citizenship": [("citizenship",), ("nationality",)],
    "has_existing_scholarship": [
        ("hasExistingScholarship",), ("hasOtherScholarship",),
        ("isScholarshipRecipient",), ("has_existing_scholarship",),
    ],
    "has_thesis_grant": [("hasThesisGrant",), ("hasExistingThesisGrant",), ("has_thesis_grant",)],
    "has_disciplinary_action": [("hasDisciplinaryAction",), ("has_disciplinary_action",)],
    "profile_completed": [("profileCompleted",), ("profile_completed",)],
}

NESTED_PROFILE_KEYS = ("studentProfile", "student_profile", "profile")

CRITERIA_FIELD_SYNONYMS: Dict[str, List[str]] = {
    "max_gwa": ["maxGWA", "max_gwa", "minGWA", "min_gwa", "minimumGWA", "gwaRequirement"],
    "required_year_levels": [
        "requiredYearLevels", "required_year_levels", "eligibleClassifications",
        "eligible_classifications", "yearLevels",
    ],
    "eligible_colleges": ["eligibleColleges", "eligible_colleges"],
    "eligible_courses": ["eligibleCourses", "eligible_courses"],
    "eligible_majors": ["eligibleMajors", "eligible_majors", "eligibleSpecializations"],
    "max_annual_family_income": [
        "maxAnnualFamilyIncome", "max_annual_family_income", "maxFamilyIncome",
    ],
    "eligible_st_brackets": [
        "requiredSTBrackets", "eligibleSTBrackets", "eligible_st_brackets",
        "required_st_brackets", "stBrackets",
    ],
    "eligible_provinces": ["eligibleProvinces", "eligible_provinces"],
    "min_units_enrolled": ["minUnitsEnrolled", "min_units_enrolled", "minimumUnits"],
    "is_filipino_only": ["isFilipinoOnly", "filipinoOnly", "is_filipino_only"],
    "requires_approved_thesis": [
        "requiresApprovedThesis", "requiresApprovedThesisOutline",
        "requireThesisApproval", "requires_approved_thesis",
    ],
    "must_not_have_other_scholarship": [
        "mustNotHaveOtherScholarship", "noExistingScholarship", "must_not_have_other_scholarship",
    ],
    "must_not_have_thesis_grant": [
        "mustNotHaveThesisGrant", "noExistingThesisGrant", "must_not_have_thesis_grant",
    ],
    "must_not_have_disciplinary_action": [
        "mustNotHaveDisciplinaryAction", "noDisciplinaryAction", "must_not_have_disciplinary_action",
    ],
}

NESTED_CRITERIA_KEYS = ("eligibilityCriteria", "eligibility_criteria", "criteria")

_NUMERIC_NOISE = re.compile(r"[,\s]|php|₱", re.IGNORECASE)
_TRUE_WORDS = {"true", "yes", "y", "1"}
_FALSE_WORDS = {"false", "no", "n", "0"}


# =============================================================================
# VALUE COERCION
# =============================================================================

def _safe_get(data: Optional[Dict], *keys, default=None):
    """Safely traverse nested dicts."""
    if data is None:
        return default
    result = data
    for key in keys:
        if isinstance(result, dict):
            result = result.get(key)
        else:
            return default
        if result is None:
            return default
    return result


def _first_present(data: Dict, *keys):
    """First value under `keys` that is neither None nor an empty string."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    """Parse numbers, including strings like '₱ 120,000'. Returns None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = _NUMERIC_NOISE.sub("", value)
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def _to_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        text = " ".join(value.split())
        return text or None
    return None


def canonical_year_level(value: Any) -> Optional[str]:
    """
    Map a classification to its canonical name.

    Accepts canonical names in any case, ordinals ("2nd year") and plain
    numbers (3). Unrecognized text is kept as given so equality checks
    against equally unusual criteria still work.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            return None
        value = str(int(value))
    text = _to_text(value)
    if text is None:
        return None
    key = text.lower()
    for canonical in YEAR_LEVEL_MAP:
        if canonical.lower() == key:
            return canonical
    return YEAR_LEVEL_ALIASES.get(key, text)


def canonical_st_bracket(value: Any) -> Optional[str]:
    """Map a bracket code or full bracket name to its code (FDS, FD, PD80 ... ND)."""
    text = _to_text(value)
    if text is None:
        return None
    code = text.replace(" ", "").upper()
    if code in ST_BRACKET_MAP:
        return code
    return ST_BRACKET_ALIASES.get(text.lower(), text)


# =============================================================================
# STUDENT PROFILE
# =============================================================================

def _profile_layers(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Nested profile first, then the top-level record."""
    layers = []
    for key in NESTED_PROFILE_KEYS:
        nested = raw.get(key)
        if isinstance(nested, dict):
            layers.append(nested)
    layers.append(raw)
    return layers


def _lookup(layers: List[Dict[str, Any]], paths: Iterable[KeyPath]) -> Any:
    for layer in layers:
        for path in paths:
            value = _safe_get(layer, *path)
            if value is not None and value != "":
                return value
    return None


def normalize_student(raw: Union[Dict[str, Any], StudentProfile, None]) -> StudentProfile:
    """
    Build the canonical StudentProfile from any supported student record.

    Total: never raises. Values that are missing, unparseable, non-finite or
    outside their domain (GWA outside 1..5, negative income or units) are
    left as None so downstream rules can treat them as missing.

    Args:
        raw: Student document, flat or with a nested studentProfile

    Returns:
        StudentProfile
    """
    if isinstance(raw, StudentProfile):
        return raw
    if not isinstance(raw, dict):
        return StudentProfile()

    layers = _profile_layers(raw)
    get = lambda field: _lookup(layers, STUDENT_FIELD_SYNONYMS[field])

    gwa = _to_float(get("gwa"))
    if gwa is not None and not GWA_BEST <= gwa <= GWA_WORST:
        gwa = None

    income = _to_float(get("annual_family_income"))
    if income is not None and income < 0:
        income = None

    household = _to_float(get("household_size"))
    household_size = int(round(household)) if household is not None and household >= 1 else None

    units_enrolled = _to_float(get("units_enrolled"))
    if units_enrolled is not None and units_enrolled < 0:
        units_enrolled = None
    units_passed = _to_float(get("units_passed"))
    if units_passed is not None and units_passed < 0:
        units_passed = None

    # Top-level id wins over a nested profile's own id
    student_id = _to_text(_lookup([raw], STUDENT_FIELD_SYNONYMS["student_id"]))

    return StudentProfile(
        student_id=student_id,
        gwa=gwa,
        year_level=canonical_year_level(get("year_level")),
        college=_to_text(get("college")),
        course=_to_text(get("course")),
        major=_to_text(get("major")),
        units_enrolled=units_enrolled,
        units_passed=units_passed,
        has_approved_thesis=_to_bool(get("has_approved_thesis")),
        annual_family_income=income,
        household_size=household_size,
        st_bracket=canonical_st_bracket(get("st_bracket")),
        province=_to_text(get("province")),
        citizenship=_to_text(get("citizenship")),
        has_existing_scholarship=_to_bool(get("has_existing_scholarship")),
        has_thesis_grant=_to_bool(get("has_thesis_grant")),
        has_disciplinary_action=_to_bool(get("has_disciplinary_action")),
        profile_completed=bool(_to_bool(get("profile_completed"))),
    )


# =============================================================================
# SCHOLARSHIP CRITERIA
# =============================================================================

def _criteria_source(raw: Dict[str, Any]) -> Dict[str, Any]:
    for key in NESTED_CRITERIA_KEYS:
        nested = raw.get(key)
        if isinstance(nested, dict):
            return nested
    return raw


def _criteria_value(source: Dict[str, Any], field: str) -> Any:
    for key in CRITERIA_FIELD_SYNONYMS[field]:
        value = source.get(key)
        if value is not None and value != "":
            return value
    return None


def _criteria_number(source: Dict[str, Any], field: str) -> Optional[float]:
    value = _criteria_value(source, field)
    if value is None:
        return None
    number = _to_float(value)
    if number is None:
        raise ValidationFailure(f"{field} must be a number, got {value!r}")
    return number


def _criteria_list(source: Dict[str, Any], field: str) -> List[str]:
    value = _criteria_value(source, field)
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValidationFailure(f"{field} must be a list, got {type(value).__name__}")
    items = [_to_text(item) for item in value]
    return [item for item in items if item]


def _criteria_flag(source: Dict[str, Any], field: str) -> bool:
    value = _criteria_value(source, field)
    if value is None:
        return False
    flag = _to_bool(value)
    if flag is None:
        raise ValidationFailure(f"{field} must be a boolean, got {value!r}")
    return flag


def normalize_criteria(raw: Union[Dict[str, Any], EligibilityCriteria, None]) -> EligibilityCriteria:
    """
    Build EligibilityCriteria from a scholarship record or its criteria block.

    minGWA is read as the GWA cap: lower GWA is better, so the "minimum"
    grade a scholarship asks for is the highest number it accepts.

    Raises:
        ValidationFailure: when a criterion is present but malformed or out of range
    """
    if isinstance(raw, EligibilityCriteria):
        return raw
    if raw is None:
        return EligibilityCriteria()
    if not isinstance(raw, dict):
        raise ValidationFailure(f"eligibility criteria must be an object, got {type(raw).__name__}")

    source = _criteria_source(raw)
    try:
        return EligibilityCriteria(
            max_gwa=_criteria_number(source, "max_gwa"),
            required_year_levels=[
                canonical_year_level(v) for v in _criteria_list(source, "required_year_levels")
            ],
            eligible_colleges=_criteria_list(source, "eligible_colleges"),
            eligible_courses=_criteria_list(source, "eligible_courses"),
            eligible_majors=_criteria_list(source, "eligible_majors"),
            max_annual_family_income=_criteria_number(source, "max_annual_family_income"),
            eligible_st_brackets=[
                canonical_st_bracket(v) for v in _criteria_list(source, "eligible_st_brackets")
            ],
            eligible_provinces=_criteria_list(source, "eligible_provinces"),
            min_units_enrolled=_criteria_number(source, "min_units_enrolled"),
            is_filipino_only=_criteria_flag(source, "is_filipino_only"),
            requires_approved_thesis=_criteria_flag(source, "requires_approved_thesis"),
            must_not_have_other_scholarship=_criteria_flag(source, "must_not_have_other_scholarship"),
            must_not_have_thesis_grant=_criteria_flag(source, "must_not_have_thesis_grant"),
            must_not_have_disciplinary_action=_criteria_flag(source, "must_not_have_disciplinary_action"),
        )
    except ValidationError as e:
        raise ValidationFailure(f"invalid eligibility criteria: {e.errors()[0]['msg']}") from e


def normalize_scholarship(raw: Union[Dict[str, Any], Scholarship]) -> Scholarship:
    """
    Build a Scholarship from a scholarship document.

    Raises:
        ValidationFailure: when the record has no id or invalid criteria
    """
    if isinstance(raw, Scholarship):
        return raw
    if not isinstance(raw, dict):
        raise ValidationFailure(f"scholarship must be an object, got {type(raw).__name__}")

    scholarship_id = _to_text(_first_present(raw, "id", "_id", "scholarshipId"))
    if not scholarship_id:
        raise ValidationFailure("scholarship record has no id")

    is_active = _to_bool(raw.get("isActive", raw.get("is_active")))
    status = (_to_text(raw.get("status")) or "").lower()
    if is_active is None:
        is_active = status not in ("closed", "archived", "inactive")

    return Scholarship(
        id=scholarship_id,
        name=_to_text(_first_present(raw, "name", "title")) or scholarship_id,
        is_active=is_active,
        criteria=normalize_criteria(raw),
    )
