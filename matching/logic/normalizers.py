"""
Feature Normalizers

Maps raw profile values onto [0, 1] and holds the numeric helpers shared by
the trainer and the prediction service (sigmoid, probability window,
confidence buckets). All functions are pure and total: unknown input yields
the feature's documented default.
"""

import math
from typing import Optional

from .constants import (
    YEAR_LEVEL_MAP,
    ST_BRACKET_MAP,
    EXPECTED_UNITS_BY_YEAR_LEVEL,
    FEATURE_DEFAULTS,
    DEFAULT_INCOME_THRESHOLD,
    MAX_HOUSEHOLD_SIZE,
    GWA_BEST,
    GWA_WORST,
    Z_CLIP,
    PROBABILITY_FLOOR,
    PROBABILITY_CEILING,
    CONFIDENCE_BREAKPOINTS,
    MATCH_LEVELS,
    Confidence,
)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# =============================================================================
# PER-FEATURE FORMULAS
# =============================================================================

def normalize_gwa(gwa: Optional[float]) -> float:
    """1.0 -> 1.0, 3.0 -> 0.5, 5.0 -> 0.0 (lower GWA is better)."""
    if gwa is None:
        return FEATURE_DEFAULTS["gwa_score"]
    return clamp((GWA_WORST - gwa) / (GWA_WORST - GWA_BEST))


def normalize_year_level(year_level: Optional[str]) -> float:
    if year_level is None:
        return FEATURE_DEFAULTS["year_level"]
    return YEAR_LEVEL_MAP.get(year_level, FEATURE_DEFAULTS["year_level"])


def normalize_income(income: Optional[float], threshold: Optional[float] = None) -> float:
    """
    Financial need: 1 - income / threshold.

    The threshold is the scholarship's income cap when it has one, else the
    general cap. Income at or above the threshold means no need (0.0).
    """
    if income is None:
        return FEATURE_DEFAULTS["financial_need"]
    if not threshold or threshold <= 0:
        threshold = DEFAULT_INCOME_THRESHOLD
    if income >= threshold:
        return 0.0
    return clamp(1.0 - income / threshold)


def normalize_st_bracket(st_bracket: Optional[str]) -> float:
    if st_bracket is None:
        return FEATURE_DEFAULTS["st_bracket"]
    return ST_BRACKET_MAP.get(st_bracket, FEATURE_DEFAULTS["st_bracket"])


def normalize_household_size(size: Optional[int]) -> float:
    if size is None or size <= 0:
        return FEATURE_DEFAULTS["household_size"]
    return clamp(size / MAX_HOUSEHOLD_SIZE)


def normalize_units_completed(units_passed: Optional[float], year_level: Optional[str]) -> float:
    """Units passed relative to what the student's year level should have completed."""
    expected = EXPECTED_UNITS_BY_YEAR_LEVEL.get(year_level) if year_level else None
    if units_passed is None or not expected:
        return FEATURE_DEFAULTS["units_completed"]
    return clamp(units_passed / expected)


def eligibility_ratio(matched: int, total: int) -> float:
    if total <= 0:
        return FEATURE_DEFAULTS["eligibility_ratio"]
    return clamp(matched / total)


# =============================================================================
# MODEL HELPERS
# =============================================================================

def sigmoid(z: float) -> float:
    """Logistic function with z clipped to +/-500 so exp() cannot overflow."""
    z = clamp(z, -Z_CLIP, Z_CLIP)
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


def bounded_probability(
    z: float,
    floor: float = PROBABILITY_FLOOR,
    ceiling: float = PROBABILITY_CEILING,
) -> float:
    """Sigmoid of z, kept inside the reported probability window."""
    return clamp(sigmoid(z), floor, ceiling)


def confidence_for(probability: float) -> Confidence:
    """Bucket the distance from 0.5: <.10 low, <.20 medium, <.30 moderate, else high."""
    distance = abs(probability - 0.5)
    for upper, bucket in CONFIDENCE_BREAKPOINTS:
        if distance < upper:
            return bucket
    return Confidence.HIGH


def match_level_for(probability: float) -> str:
    for lower, label in MATCH_LEVELS:
        if probability >= lower:
            return label
    return MATCH_LEVELS[-1][1]
