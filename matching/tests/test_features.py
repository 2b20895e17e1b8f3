"""
Tests for feature normalization and extraction.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import pytest

from matching.logic import (
    FEATURE_NAMES,
    EligibilityCriteria,
    StudentProfile,
    extract_features,
    to_array,
    normalize_student,
)
from matching.logic.constants import FEATURE_DEFAULTS, Confidence
from matching.logic.normalizers import (
    normalize_gwa,
    normalize_year_level,
    normalize_income,
    normalize_st_bracket,
    normalize_household_size,
    normalize_units_completed,
    eligibility_ratio,
    sigmoid,
    bounded_probability,
    confidence_for,
    match_level_for,
)


def test_gwa_normalization():
    assert normalize_gwa(1.0) == 1.0
    assert normalize_gwa(3.0) == 0.5
    assert normalize_gwa(5.0) == 0.0
    assert normalize_gwa(None) == 0.5


def test_year_level_normalization():
    assert normalize_year_level("Freshman") == 0.2
    assert normalize_year_level("Senior") == 0.8
    assert normalize_year_level("Graduate") == 1.0
    assert normalize_year_level("Fifth Year Extended") == 0.5
    assert normalize_year_level(None) == 0.5


def test_income_uses_scholarship_cap_then_fallback():
    assert normalize_income(100000, 200000) == pytest.approx(0.5)
    assert normalize_income(100000) == pytest.approx(0.8)
    assert normalize_income(250000, 200000) == 0.0
    assert normalize_income(200000, 200000) == 0.0
    assert normalize_income(None, 200000) == 0.5


def test_st_bracket_normalization():
    assert normalize_st_bracket("FDS") == 1.0
    assert normalize_st_bracket("PD40") == 0.4
    assert normalize_st_bracket("ND") == 0.1
    assert normalize_st_bracket("XYZ") == 0.5
    assert normalize_st_bracket(None) == 0.5


def test_household_and_units():
    assert normalize_household_size(5) == 0.5
    assert normalize_household_size(14) == 1.0
    assert normalize_household_size(None) == 0.3
    assert normalize_units_completed(63, "Sophomore") == pytest.approx(0.75)
    assert normalize_units_completed(500, "Junior") == 1.0
    assert normalize_units_completed(None, "Junior") == 0.5
    assert normalize_units_completed(30, None) == 0.5


def test_eligibility_ratio_default_without_criteria():
    assert eligibility_ratio(0, 0) == 0.5
    assert eligibility_ratio(3, 4) == 0.75


def test_sigmoid_is_increasing():
    points = [-10, -2, -0.5, 0, 0.5, 2, 10]
    values = [sigmoid(z) for z in points]
    assert values == sorted(values)
    assert len(set(values)) == len(values)
    assert sigmoid(0) == 0.5


def test_sigmoid_survives_extreme_inputs():
    assert sigmoid(1e9) == 1.0
    assert sigmoid(-1e9) == pytest.approx(0.0, abs=1e-200)


def test_bounded_probability_stays_in_window():
    previous = 0.0
    for z in range(-1000, 1001, 25):
        p = bounded_probability(z)
        assert 0.05 <= p <= 0.95
        assert p >= previous
        previous = p


def test_confidence_buckets():
    assert confidence_for(0.55) == Confidence.LOW
    assert confidence_for(0.35) == Confidence.MEDIUM
    assert confidence_for(0.75) == Confidence.MODERATE
    assert confidence_for(0.95) == Confidence.HIGH
    assert confidence_for(0.05) == Confidence.HIGH


def test_match_levels():
    assert match_level_for(0.80) == "Strong Match"
    assert match_level_for(0.60) == "Good Match"
    assert match_level_for(0.50) == "Moderate Match"
    assert match_level_for(0.10) == "Weak Match"


def test_extract_features_covers_every_feature_in_range():
    profile = normalize_student({
        "gwa": 1.5,
        "classification": "Junior",
        "college": "CAS",
        "course": "BS Biology",
        "annualFamilyIncome": 150000,
        "stBracket": "PD80",
        "householdSize": 5,
        "unitsPassed": 100,
    })
    criteria = EligibilityCriteria(
        max_gwa=2.0,
        eligible_colleges=["CAS"],
        eligible_courses=["Chemistry"],
        max_annual_family_income=300000,
    )
    features = extract_features(profile, criteria)

    assert list(features) == FEATURE_NAMES
    assert all(0.0 <= v <= 1.0 for v in features.values())
    assert features["college_match"] == 1.0
    assert features["course_match"] == 0.0
    assert features["financial_need"] == pytest.approx(0.5)
    # GWA, college and income pass; course fails
    assert features["eligibility_ratio"] == pytest.approx(0.75)


def test_extract_features_for_empty_profile_uses_defaults():
    features = extract_features(StudentProfile())
    for name in FEATURE_NAMES:
        if name != "profile_completeness":
            assert features[name] == FEATURE_DEFAULTS[name]
    assert features["profile_completeness"] == 0.0


def test_to_array_is_ordered_and_fills_gaps():
    array = to_array({"eligibility_ratio": 1.0, "gwa_score": 0.9})
    assert len(array) == len(FEATURE_NAMES)
    assert array[0] == 0.9
    assert array[-1] == 1.0
    assert array[1] == FEATURE_DEFAULTS["year_level"]
