"""
Matching Logic Module

Provides the deterministic scholarship eligibility engine and the
logistic-regression approval model (training, prediction, auto-training).
"""

from .contracts import (
    StudentProfile,
    EligibilityCriteria,
    Scholarship,
    EligibilityCheckResult,
    MatchResult,
    HistoricalApplication,
    TrainingConfig,
    TrainedModel,
    ModelMetrics,
    TrainingResult,
    Prediction,
    PredictionFactor,
    TrainingEvent,
    TrainingStatus,
    TrainingStats,
)
from .adapter import normalize_student, normalize_criteria, normalize_scholarship
from .features import extract_features, to_array, application_snapshot
from .engine import MatchingEngine, match_student_to_scholarships, high_compatibility
from .trainer import ModelTrainer
from .prediction import PredictionService
from .auto_training import AutoTrainingService
from .model_cache import ModelCache
from .model_store import (
    InMemoryModelStore,
    InMemoryApplicationSource,
    SqlModelStore,
    SqlApplicationSource,
    scholarship_scope,
)
from .errors import ValidationFailure, PersistenceFailure, ModelNotFound
from .constants import FEATURE_NAMES, GLOBAL_SCOPE, TriggerType

__all__ = [
    # Engines and services
    "MatchingEngine",
    "match_student_to_scholarships",
    "high_compatibility",
    "ModelTrainer",
    "PredictionService",
    "AutoTrainingService",
    "ModelCache",

    # Persistence
    "InMemoryModelStore",
    "InMemoryApplicationSource",
    "SqlModelStore",
    "SqlApplicationSource",
    "scholarship_scope",

    # Normalization
    "normalize_student",
    "normalize_criteria",
    "normalize_scholarship",
    "extract_features",
    "to_array",
    "application_snapshot",

    # Contracts
    "StudentProfile",
    "EligibilityCriteria",
    "Scholarship",
    "EligibilityCheckResult",
    "MatchResult",
    "HistoricalApplication",
    "TrainingConfig",
    "TrainedModel",
    "ModelMetrics",
    "TrainingResult",
    "Prediction",
    "PredictionFactor",
    "TrainingEvent",
    "TrainingStatus",
    "TrainingStats",

    # Errors
    "ValidationFailure",
    "PersistenceFailure",
    "ModelNotFound",

    # Constants
    "FEATURE_NAMES",
    "GLOBAL_SCOPE",
    "TriggerType",
]
