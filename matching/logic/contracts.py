"""
Data Contracts for the Scholarship Matching Engine

Defines the Pydantic models exchanged between the profile normalizer, the
rule engine, the trainer and the prediction service. Student profiles and
trained models are immutable once built.
"""

import math
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import (
    Importance,
    Confidence,
    PredictedOutcome,
    TriggerType,
    TrainingEventType,
    FEATURE_DEFAULTS,
    FEATURE_NAMES,
    DEFAULT_LEARNING_RATE,
    DEFAULT_L2,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_CONVERGENCE_THRESHOLD,
    MIN_TRAINING_SAMPLES,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# INPUT CONTRACTS
# =============================================================================

class StudentProfile(BaseModel):
    """
    Canonical student profile produced by the profile normalizer.
    A value of None means the source record did not provide it.
    """
    student_id: Optional[str] = None

    # Academic standing
    gwa: Optional[float] = None  # 1.0 (best) .. 5.0
    year_level: Optional[str] = None  # canonical classification
    college: Optional[str] = None
    course: Optional[str] = None
    major: Optional[str] = None
    units_enrolled: Optional[float] = None
    units_passed: Optional[float] = None
    has_approved_thesis: Optional[bool] = None

    # Financial / demographic
    annual_family_income: Optional[float] = None
    household_size: Optional[int] = None
    st_bracket: Optional[str] = None  # FDS/FD/PD80/PD60/PD40/PD20/ND
    province: Optional[str] = None
    citizenship: Optional[str] = None

    # Standing
    has_existing_scholarship: Optional[bool] = None
    has_thesis_grant: Optional[bool] = None
    has_disciplinary_action: Optional[bool] = None
    profile_completed: bool = False

    model_config = ConfigDict(frozen=True)


class EligibilityCriteria(BaseModel):
    """Scholarship eligibility rules. An empty/None field means unrestricted."""
    max_gwa: Optional[float] = Field(default=None, ge=1.0, le=5.0)
    required_year_levels: List[str] = Field(default_factory=list)
    eligible_colleges: List[str] = Field(default_factory=list)
    eligible_courses: List[str] = Field(default_factory=list)
    eligible_majors: List[str] = Field(default_factory=list)
    max_annual_family_income: Optional[float] = Field(default=None, ge=0.0)
    eligible_st_brackets: List[str] = Field(default_factory=list)
    eligible_provinces: List[str] = Field(default_factory=list)
    min_units_enrolled: Optional[float] = Field(default=None, ge=0.0)
    is_filipino_only: bool = False
    requires_approved_thesis: bool = False
    must_not_have_other_scholarship: bool = False
    must_not_have_thesis_grant: bool = False
    must_not_have_disciplinary_action: bool = False

    model_config = ConfigDict(frozen=True)


class Scholarship(BaseModel):
    id: str
    name: str
    is_active: bool = True
    criteria: EligibilityCriteria = Field(default_factory=EligibilityCriteria)

    model_config = ConfigDict(frozen=True)


class HistoricalApplication(BaseModel):
    """A decided application: a feature snapshot plus its outcome."""
    application_id: Optional[str] = None
    scholarship_id: Optional[str] = None
    features: Dict[str, float] = Field(default_factory=dict)
    status: str  # approved / rejected

    @field_validator("features")
    @classmethod
    def _finite_unit_features(cls, features: Dict[str, float]) -> Dict[str, float]:
        # Non-finite values fall back to the feature default; the rest are clamped to [0, 1]
        return {
            name: min(1.0, max(0.0, value))
            for name, value in features.items()
            if math.isfinite(value)
        }

    @property
    def label(self) -> int:
        return 1 if self.status == "approved" else 0

    def feature_value(self, name: str) -> float:
        return float(self.features.get(name, FEATURE_DEFAULTS[name]))


class TrainingConfig(BaseModel):
    learning_rate: float = Field(default=DEFAULT_LEARNING_RATE, gt=0.0)
    l2: float = Field(default=DEFAULT_L2, ge=0.0)
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    convergence_threshold: float = Field(default=DEFAULT_CONVERGENCE_THRESHOLD, gt=0.0)
    min_samples: int = Field(default=MIN_TRAINING_SAMPLES, ge=1)

    model_config = ConfigDict(frozen=True)


# =============================================================================
# RULE ENGINE OUTPUT
# =============================================================================

class EligibilityCheckResult(BaseModel):
    """Outcome of one hard or conditional check."""
    criterion: str
    passed: bool
    student_value: str
    required_value: str
    importance: Importance = Importance.REQUIRED

    model_config = ConfigDict(use_enum_values=True, frozen=True)


class MatchResult(BaseModel):
    """
    Rule-engine verdict for one student/scholarship pair.
    compatibility_score is 0 exactly when the student is not eligible.
    """
    scholarship_id: str
    scholarship_name: str
    is_eligible: bool
    compatibility_score: int = Field(ge=0, le=100)
    eligibility_details: List[EligibilityCheckResult] = Field(default_factory=list)

    @property
    def failed_checks(self) -> List[EligibilityCheckResult]:
        return [d for d in self.eligibility_details if not d.passed]


# =============================================================================
# MODEL CONTRACTS
# =============================================================================

class ConfusionMatrix(BaseModel):
    tp: int = 0
    tn: int = 0
    fp: int = 0
    fn: int = 0


class ModelMetrics(BaseModel):
    accuracy: float = Field(ge=0.0, le=1.0)
    precision: float = Field(ge=0.0, le=1.0)
    recall: float = Field(ge=0.0, le=1.0)
    f1_score: float = Field(ge=0.0, le=1.0)
    confusion_matrix: ConfusionMatrix = Field(default_factory=ConfusionMatrix)


class TrainedModel(BaseModel):
    """
    A persisted logistic-regression model. Retraining produces a new
    version; an existing version is never edited except to deactivate it.
    """
    id: Optional[str] = None
    scope: str
    version: int = 1
    weights: Dict[str, float]
    bias: float
    trained: bool = True
    training_date: datetime = Field(default_factory=utcnow)
    training_size: int = 0
    iterations: int = 0
    converged: bool = False
    final_loss: Optional[float] = None
    metrics: Optional[ModelMetrics] = None
    feature_importance: Dict[str, float] = Field(default_factory=dict)
    trigger_type: TriggerType = TriggerType.MANUAL
    triggered_by: Optional[str] = None
    trigger_application_id: Optional[str] = None
    is_active: bool = True

    model_config = ConfigDict(use_enum_values=True)

    @property
    def feature_names(self) -> List[str]:
        return [name for name in FEATURE_NAMES if name in self.weights]


class ModelCacheEntry(BaseModel):
    """Resolved weights for a scope. `source` tells which scope supplied them."""
    weights: Dict[str, float]
    bias: float
    expires_at: float
    source: str  # scholarship / global / default
    source_scope: Optional[str] = None
    model_id: Optional[str] = None
    model_version: Optional[int] = None

    model_config = ConfigDict(frozen=True, protected_namespaces=())


class TrainingResult(BaseModel):
    success: bool
    scope: str
    message: str
    samples_available: int = 0
    samples_required: int = 0
    skipped: bool = False
    model: Optional[TrainedModel] = None
    elapsed_ms: float = 0.0


class TrainingStats(BaseModel):
    """Decided-application and model counts across all scopes."""
    total_applications: int
    approved_count: int
    rejected_count: int
    total_models: int
    active_models: int
    scholarships_with_data: int
    scholarships_with_enough_data: int
    min_samples_required: int
    scholarship_breakdown: Dict[str, int] = Field(default_factory=dict)  # most decisions first


# =============================================================================
# PREDICTION OUTPUT
# =============================================================================

class PredictionFactor(BaseModel):
    """One feature's share of the logit, with a human-readable explanation."""
    feature: str
    label: str
    category: str
    value: float
    weight: float
    contribution: float
    normalized_contribution: float = Field(ge=-1.0, le=1.0)
    percentage: float = Field(ge=0.0, le=100.0)
    favorable: bool
    description: str


class Prediction(BaseModel):
    probability: float = Field(ge=0.0, le=1.0)
    percentage: int = Field(ge=0, le=100)
    predicted_outcome: PredictedOutcome
    confidence: Confidence
    match_level: str
    recommendation: str
    z_score: float
    intercept: float
    factors: List[PredictionFactor] = Field(default_factory=list)
    model_source: str
    model_id: Optional[str] = None
    model_version: Optional[int] = None
    disclaimer: str
    generated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(use_enum_values=True, protected_namespaces=())


# =============================================================================
# AUTO TRAINING
# =============================================================================

class TrainingEvent(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    type: TrainingEventType
    scope: str
    scholarship_id: Optional[str] = None
    application_id: Optional[str] = None
    trigger_type: Optional[TriggerType] = None
    reason: Optional[str] = None
    model_id: Optional[str] = None
    accuracy: Optional[float] = None
    elapsed_ms: Optional[float] = None
    error: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True, protected_namespaces=())


class TrainingStatus(BaseModel):
    enabled: bool
    config: Dict[str, Any]
    global_decision_counter: int
    decisions_until_global_retrain: int
    active_locks: List[str]
    today: Dict[str, int]
    last_event: Optional[TrainingEvent] = None
