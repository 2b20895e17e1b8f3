"""
Matching Engine Constants

Defines the ordinal maps, feature order, rule weights, training defaults and
probability thresholds shared by the rule engine and the prediction model.
"""

from enum import Enum
from typing import Dict, List, Tuple

# =============================================================================
# ORDINAL MAPS
# =============================================================================

# Year level classification -> normalized seniority
YEAR_LEVEL_MAP: Dict[str, float] = {
    "Incoming Freshman": 0.1,
    "Freshman": 0.2,
    "Sophomore": 0.4,
    "Junior": 0.6,
    "Senior": 0.8,
    "Graduate": 1.0,
}

# Synonyms accepted for year levels (lowercased, whitespace collapsed)
YEAR_LEVEL_ALIASES: Dict[str, str] = {
    "incoming freshman": "Incoming Freshman",
    "incoming": "Incoming Freshman",
    "freshman": "Freshman",
    "first year": "Freshman",
    "1st year": "Freshman",
    "1": "Freshman",
    "sophomore": "Sophomore",
    "second year": "Sophomore",
    "2nd year": "Sophomore",
    "2": "Sophomore",
    "junior": "Junior",
    "third year": "Junior",
    "3rd year": "Junior",
    "3": "Junior",
    "senior": "Senior",
    "fourth year": "Senior",
    "4th year": "Senior",
    "4": "Senior",
    "fifth year": "Senior",
    "5th year": "Senior",
    "graduate": "Graduate",
    "graduate student": "Graduate",
    "masters": "Graduate",
    "phd": "Graduate",
}

# Cumulative units a student is expected to have passed at each level
EXPECTED_UNITS_BY_YEAR_LEVEL: Dict[str, float] = {
    "Incoming Freshman": 21.0,
    "Freshman": 42.0,
    "Sophomore": 84.0,
    "Junior": 126.0,
    "Senior": 168.0,
    "Graduate": 24.0,
}

# DOST/UPLB socialized tuition brackets -> normalized financial need
ST_BRACKET_MAP: Dict[str, float] = {
    "FDS": 1.0,   # Full Discount with Stipend
    "FD": 0.85,   # Full Discount
    "PD80": 0.7,
    "PD60": 0.55,
    "PD40": 0.4,
    "PD20": 0.25,
    "ND": 0.1,    # No Discount
}

ST_BRACKET_ALIASES: Dict[str, str] = {
    "full discount with stipend": "FDS",
    "full discount": "FD",
    "80% partial discount": "PD80",
    "partial discount 80": "PD80",
    "60% partial discount": "PD60",
    "partial discount 60": "PD60",
    "40% partial discount": "PD40",
    "partial discount 40": "PD40",
    "20% partial discount": "PD20",
    "partial discount 20": "PD20",
    "no discount": "ND",
}

# =============================================================================
# FEATURES
# =============================================================================

# Fixed order of the model's feature vector
FEATURE_NAMES: List[str] = [
    "gwa_score",
    "year_level",
    "financial_need",
    "st_bracket",
    "household_size",
    "units_completed",
    "college_match",
    "course_match",
    "profile_completeness",
    "eligibility_ratio",
]

# Neutral value used when the underlying data is unknown
FEATURE_DEFAULTS: Dict[str, float] = {
    "gwa_score": 0.5,
    "year_level": 0.5,
    "financial_need": 0.5,
    "st_bracket": 0.5,
    "household_size": 0.3,
    "units_completed": 0.5,
    "college_match": 0.5,
    "course_match": 0.5,
    "profile_completeness": 0.5,
    "eligibility_ratio": 0.5,
}

DEFAULT_INCOME_THRESHOLD = 500_000.0
MAX_HOUSEHOLD_SIZE = 10.0
GWA_BEST = 1.0
GWA_WORST = 5.0

# =============================================================================
# RULE ENGINE
# =============================================================================

# Conditional requirement -> penalty weight (x100 points when failed)
CONDITIONAL_WEIGHTS: Dict[str, float] = {
    "No Existing Scholarship": 0.15,
    "No Existing Thesis Grant": 0.15,
    "No Disciplinary Action": 0.20,
}

BASE_COMPATIBILITY_SCORE = 100.0
MAX_GWA_BONUS = 15.0
GWA_BONUS_PER_POINT = 10.0

# (income/cap ratio upper bound, bonus) checked in order
INCOME_BONUS_TIERS: List[Tuple[float, float]] = [
    (0.5, 10.0),
    (0.75, 5.0),
]
PROFILE_COMPLETED_BONUS = 5.0

HIGH_COMPATIBILITY_THRESHOLD = 75


class Importance(str, Enum):
    """How a failed eligibility check affects the match."""
    REQUIRED = "required"
    PREFERRED = "preferred"


# =============================================================================
# MODEL DEFAULTS
# =============================================================================

# Built-in weights used when no trained model exists
DEFAULT_WEIGHTS: Dict[str, float] = {
    "gwa_score": 1.5,
    "year_level": 0.8,
    "financial_need": 1.0,
    "st_bracket": 0.8,
    "household_size": 0.3,
    "units_completed": 0.4,
    "college_match": 1.0,
    "course_match": 0.8,
    "profile_completeness": 1.2,
    "eligibility_ratio": 2.0,
}
DEFAULT_INTERCEPT = -4.5

# Initial weights for gradient descent = scale * DEFAULT_WEIGHTS
WEIGHT_INIT_SCALE = 0.1

DEFAULT_LEARNING_RATE = 0.1
DEFAULT_L2 = 0.01
DEFAULT_MAX_ITERATIONS = 1000
DEFAULT_CONVERGENCE_THRESHOLD = 1e-4
LOSS_EPSILON = 1e-15
Z_CLIP = 500.0

MIN_TRAINING_SAMPLES = 10

GLOBAL_SCOPE = "global"
SCHOLARSHIP_SCOPE_PREFIX = "scholarship:"

# =============================================================================
# PREDICTION
# =============================================================================

PROBABILITY_FLOOR = 0.05
PROBABILITY_CEILING = 0.95
DECISION_THRESHOLD = 0.5
MODEL_CACHE_TTL_SECONDS = 300.0


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    MODERATE = "moderate"
    HIGH = "high"


# (distance from 0.5 upper bound, bucket) checked in order
CONFIDENCE_BREAKPOINTS: List[Tuple[float, Confidence]] = [
    (0.10, Confidence.LOW),
    (0.20, Confidence.MEDIUM),
    (0.30, Confidence.MODERATE),
]


class PredictedOutcome(str, Enum):
    LIKELY_APPROVED = "likely_approved"
    NEEDS_IMPROVEMENT = "needs_improvement"


# (probability lower bound, label) checked in order
MATCH_LEVELS: List[Tuple[float, str]] = [
    (0.75, "Strong Match"),
    (0.60, "Good Match"),
    (0.45, "Moderate Match"),
    (0.0, "Weak Match"),
]

PREDICTION_DISCLAIMER = (
    "This is an estimate based on historical application outcomes and "
    "does not guarantee approval."
)

# =============================================================================
# AUTO TRAINING
# =============================================================================

GLOBAL_RETRAIN_INTERVAL = 10
MAX_TRAINING_LOG_ENTRIES = 100
DEFAULT_TRAINING_LOG_LIMIT = 50
TRAINING_DECISION_STATUSES = ("approved", "rejected")


class TriggerType(str, Enum):
    MANUAL = "manual"
    AUTO_STATUS_CHANGE = "auto_status_change"
    AUTO_GLOBAL_REFRESH = "auto_global_refresh"


class TrainingEventType(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"
