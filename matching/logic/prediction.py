"""
Approval Prediction

Scores a student/scholarship pair with the trained logistic-regression
model and explains the result factor by factor.

Weights are resolved per scholarship: its own active model, else the
global model, else the built-in defaults. Resolved weights are cached per
scope for a short TTL.
"""

import logging
import math
from typing import List, Optional, Tuple

from .adapter import normalize_student, normalize_scholarship
from .constants import (
    FEATURE_NAMES,
    DEFAULT_WEIGHTS,
    DEFAULT_INTERCEPT,
    GLOBAL_SCOPE,
    PROBABILITY_FLOOR,
    PROBABILITY_CEILING,
    DECISION_THRESHOLD,
    PREDICTION_DISCLAIMER,
    PredictedOutcome,
)
from .contracts import (
    StudentProfile,
    EligibilityCriteria,
    ModelCacheEntry,
    Prediction,
    PredictionFactor,
    TrainedModel,
)
from .engine import StudentInput, ScholarshipInput
from .errors import PersistenceFailure
from .factors import factor_label, describe_factor
from .features import extract_features
from .model_cache import ModelCache
from .model_store import ModelStore, scholarship_scope
from .normalizers import bounded_probability, confidence_for, match_level_for

logger = logging.getLogger(__name__)

SOURCE_SCHOLARSHIP = "scholarship"
SOURCE_GLOBAL = "global"
SOURCE_DEFAULT = "default"


def _entry_from_model(model: TrainedModel, source: str, expires_at: float) -> ModelCacheEntry:
    return ModelCacheEntry(
        weights=dict(model.weights),
        bias=model.bias,
        expires_at=expires_at,
        source=source,
        source_scope=model.scope,
        model_id=model.id,
        model_version=model.version,
    )


def _default_entry(expires_at: float) -> ModelCacheEntry:
    # Defaults stand in for a missing global model, so a new global model replaces them
    return ModelCacheEntry(
        weights=dict(DEFAULT_WEIGHTS),
        bias=DEFAULT_INTERCEPT,
        expires_at=expires_at,
        source=SOURCE_DEFAULT,
        source_scope=GLOBAL_SCOPE,
    )


def _usable(model: Optional[TrainedModel]) -> bool:
    if model is None or not model.trained or not model.weights:
        return False
    if not all(math.isfinite(w) for w in model.weights.values()) or not math.isfinite(model.bias):
        logger.warning(f"⚠️ Ignoring model {model.id} for {model.scope}: non-finite parameters")
        return False
    return True


class PredictionService:
    def __init__(
        self,
        store: ModelStore,
        cache: Optional[ModelCache] = None,
        probability_floor: float = PROBABILITY_FLOOR,
        probability_ceiling: float = PROBABILITY_CEILING,
    ):
        self.store = store
        self.cache = cache or ModelCache()
        self.probability_floor = probability_floor
        self.probability_ceiling = probability_ceiling

    # -------------------------------------------------------------------------
    # Weight resolution
    # -------------------------------------------------------------------------

    def resolve_weights(self, scholarship_id: Optional[str] = None) -> ModelCacheEntry:
        """
        Weights to use for a scholarship (or the global scope when None).

        Store failures fall back to the built-in defaults and are not cached.
        Weights loaded while the scope (or the global scope) was invalidated
        are returned but not cached.
        """
        key = scholarship_scope(scholarship_id) if scholarship_id else GLOBAL_SCOPE
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        generation = self.cache.generation(key, GLOBAL_SCOPE)
        expires_at = self.cache.expiry()
        try:
            entry = None
            if scholarship_id:
                model = self.store.find_active_model(key)
                if _usable(model):
                    entry = _entry_from_model(model, SOURCE_SCHOLARSHIP, expires_at)
            if entry is None:
                model = self.store.find_active_model(GLOBAL_SCOPE)
                if _usable(model):
                    entry = _entry_from_model(model, SOURCE_GLOBAL, expires_at)
            if entry is None:
                entry = _default_entry(expires_at)
        except PersistenceFailure as e:
            logger.warning(f"⚠️ Model store unavailable for {key}, using default weights: {e}")
            return _default_entry(expires_at)

        self.cache.put(key, entry, expected=generation)
        return entry

    def warm_up(self) -> ModelCacheEntry:
        """Load the global weights into the cache (called at startup)."""
        entry = self.resolve_weights(None)
        logger.info(f"🔥 Prediction weights ready (source={entry.source}, version={entry.model_version})")
        return entry

    # -------------------------------------------------------------------------
    # Prediction
    # -------------------------------------------------------------------------

    def predict(self, student: StudentInput, scholarship: ScholarshipInput) -> Prediction:
        """
        Predict approval probability with a factor breakdown.

        Args:
            student: Raw student record or canonical profile
            scholarship: Raw scholarship record or Scholarship

        Returns:
            Prediction whose probability lies inside the configured window
        """
        profile = normalize_student(student)
        scholarship = normalize_scholarship(scholarship)
        entry = self.resolve_weights(scholarship.id)

        features = extract_features(profile, scholarship.criteria)
        contributions = [
            (name, features[name], entry.weights.get(name, 0.0))
            for name in FEATURE_NAMES
        ]
        z = entry.bias + sum(value * weight for _, value, weight in contributions)
        probability = bounded_probability(z, self.probability_floor, self.probability_ceiling)

        outcome = (
            PredictedOutcome.LIKELY_APPROVED
            if probability >= DECISION_THRESHOLD
            else PredictedOutcome.NEEDS_IMPROVEMENT
        )
        factors = self._build_factors(contributions, profile, scholarship.criteria)

        return Prediction(
            probability=probability,
            percentage=int(math.floor(probability * 100 + 0.5)),
            predicted_outcome=outcome,
            confidence=confidence_for(probability),
            match_level=match_level_for(probability),
            recommendation=_recommendation(outcome, factors),
            z_score=z,
            intercept=entry.bias,
            factors=factors,
            model_source=entry.source,
            model_id=entry.model_id,
            model_version=entry.model_version,
            disclaimer=PREDICTION_DISCLAIMER,
        )

    def _build_factors(
        self,
        contributions: List[Tuple[str, float, float]],
        student: StudentProfile,
        criteria: EligibilityCriteria,
    ) -> List[PredictionFactor]:
        total = sum(abs(value * weight) for _, value, weight in contributions)
        factors = []
        for name, value, weight in contributions:
            contribution = value * weight
            share = contribution / total if total else 0.0
            label, category = factor_label(name)
            favorable = contribution > 0
            factors.append(PredictionFactor(
                feature=name,
                label=label,
                category=category,
                value=value,
                weight=weight,
                contribution=contribution,
                normalized_contribution=share,
                percentage=round(abs(share) * 100, 1),
                favorable=favorable,
                description=describe_factor(name, value, favorable, student, criteria),
            ))
        # sorted() is stable, so equal contributions keep FEATURE_NAMES order
        return sorted(factors, key=lambda f: -abs(f.contribution))


def _recommendation(outcome: PredictedOutcome, factors: List[PredictionFactor]) -> str:
    if outcome == PredictedOutcome.LIKELY_APPROVED:
        return "Strong candidate. Submit a complete application before the deadline."
    weakest = [f for f in factors if not f.favorable]
    if weakest:
        return f"Improve your {weakest[0].label.lower()} to strengthen this application."
    return "Complete your profile to give the model more to work with."
