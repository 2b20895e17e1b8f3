"""
Model Trainer

Fits the approval model (logistic regression, full-batch gradient descent
with L2 regularization) on decided applications, stores a new model
version and invalidates the cached weights for that scope.
"""

import logging
import threading
import time
from collections import Counter
from typing import Dict, List, NamedTuple, Optional, Sequence

import numpy as np
from sklearn.metrics import accuracy_score, confusion_matrix, f1_score, precision_score, recall_score

from .constants import (
    FEATURE_NAMES,
    DEFAULT_WEIGHTS,
    DEFAULT_INTERCEPT,
    WEIGHT_INIT_SCALE,
    LOSS_EPSILON,
    Z_CLIP,
    DECISION_THRESHOLD,
    GLOBAL_SCOPE,
    TriggerType,
)
from .contracts import (
    TrainingConfig,
    TrainingResult,
    TrainingStats,
    TrainedModel,
    ModelMetrics,
    ConfusionMatrix,
    HistoricalApplication,
)
from .errors import PersistenceFailure
from .model_cache import ModelCache
from .model_store import ModelStore, ApplicationSource, scholarship_scope

logger = logging.getLogger(__name__)


# =============================================================================
# FITTING
# =============================================================================

class FitResult(NamedTuple):
    weights: np.ndarray
    bias: float
    iterations: int
    converged: bool
    loss_history: List[float]


def _probabilities(X: np.ndarray, weights: np.ndarray, bias: float) -> np.ndarray:
    z = np.clip(X @ weights + bias, -Z_CLIP, Z_CLIP)
    return 1.0 / (1.0 + np.exp(-z))


def binary_cross_entropy(y: np.ndarray, p: np.ndarray) -> float:
    p = np.clip(p, LOSS_EPSILON, 1.0 - LOSS_EPSILON)
    return float(-np.mean(y * np.log(p) + (1.0 - y) * np.log(1.0 - p)))


def fit_logistic_regression(
    X: np.ndarray,
    y: np.ndarray,
    config: TrainingConfig,
    initial_weights: Optional[np.ndarray] = None,
    initial_bias: float = 0.0,
) -> FitResult:
    """
    Full-batch gradient descent on mean binary cross-entropy.

    Stops early once the loss changes by less than
    config.convergence_threshold between iterations.

    Args:
        X: (n_samples, n_features) feature matrix
        y: (n_samples,) labels in {0, 1}
        config: learning rate, L2 strength, iteration cap, threshold
        initial_weights: starting weights, zeros when omitted
        initial_bias: starting bias

    Returns:
        FitResult with final parameters and the loss after every step
        (loss_history[0] is the loss of the starting parameters)
    """
    n_samples, n_features = X.shape
    weights = np.zeros(n_features) if initial_weights is None else np.array(initial_weights, dtype=float)
    bias = float(initial_bias)

    previous = binary_cross_entropy(y, _probabilities(X, weights, bias))
    history = [previous]
    converged = False
    iterations = 0

    for iterations in range(1, config.max_iterations + 1):
        error = _probabilities(X, weights, bias) - y
        grad_w = X.T @ error / n_samples + config.l2 * weights
        grad_b = float(np.mean(error))
        weights = weights - config.learning_rate * grad_w
        bias = bias - config.learning_rate * grad_b

        loss = binary_cross_entropy(y, _probabilities(X, weights, bias))
        history.append(loss)
        if abs(loss - previous) < config.convergence_threshold:
            converged = True
            break
        previous = loss

    return FitResult(weights, bias, iterations, converged, history)


def compute_metrics(y_true: np.ndarray, probabilities: np.ndarray) -> ModelMetrics:
    """In-sample classification metrics at the 0.5 decision threshold."""
    y_pred = (probabilities >= DECISION_THRESHOLD).astype(int)
    y_true = y_true.astype(int)
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    return ModelMetrics(
        accuracy=float(accuracy_score(y_true, y_pred)),
        precision=float(precision_score(y_true, y_pred, zero_division=0)),
        recall=float(recall_score(y_true, y_pred, zero_division=0)),
        f1_score=float(f1_score(y_true, y_pred, zero_division=0)),
        confusion_matrix=ConfusionMatrix(tp=int(tp), tn=int(tn), fp=int(fp), fn=int(fn)),
    )


def feature_importance(weights: Dict[str, float]) -> Dict[str, float]:
    """Share of total absolute weight held by each feature."""
    total = sum(abs(w) for w in weights.values())
    if total == 0:
        return {name: 0.0 for name in weights}
    return {name: abs(w) / total for name, w in weights.items()}


def build_matrix(samples: Sequence[HistoricalApplication]):
    X = np.array([[s.feature_value(name) for name in FEATURE_NAMES] for s in samples], dtype=float)
    y = np.array([s.label for s in samples], dtype=float)
    return X, y


# =============================================================================
# SCOPE LOCKS
# =============================================================================

class ScopeLocks:
    """One non-blocking lock per training scope."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def try_acquire(self, scope: str) -> bool:
        with self._guard:
            lock = self._locks.setdefault(scope, threading.Lock())
        return lock.acquire(blocking=False)

    def release(self, scope: str) -> None:
        with self._guard:
            lock = self._locks[scope]
        lock.release()

    def active(self) -> List[str]:
        with self._guard:
            return sorted(scope for scope, lock in self._locks.items() if lock.locked())


# =============================================================================
# TRAINER
# =============================================================================

class ModelTrainer:
    """
    Trains and stores approval models per scope.

    Training for a scope holds that scope's lock for the whole
    fit-save-invalidate sequence; a second request for a busy scope is
    skipped rather than queued.
    """

    def __init__(
        self,
        store: ModelStore,
        applications: ApplicationSource,
        cache: Optional[ModelCache] = None,
        config: Optional[TrainingConfig] = None,
        locks: Optional[ScopeLocks] = None,
    ):
        self.store = store
        self.applications = applications
        self.cache = cache
        self.config = config or TrainingConfig()
        self.locks = locks or ScopeLocks()

    def train_model(
        self,
        scope: str = GLOBAL_SCOPE,
        samples: Optional[Sequence[HistoricalApplication]] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
        triggered_by: Optional[str] = None,
        trigger_application_id: Optional[str] = None,
    ) -> TrainingResult:
        """
        Train a new model version for `scope`.

        Args:
            scope: "global" or "scholarship:<id>"
            samples: Labeled applications; loaded from the application source when None
            trigger_type: What started this run (stored on the model)
            triggered_by: Actor id, if any
            trigger_application_id: Application whose decision triggered this run

        Returns:
            TrainingResult. success=False without a model when data is
            insufficient, the scope is busy (skipped=True) or storage fails.
        """
        if not self.locks.try_acquire(scope):
            logger.info(f"⏭️ Training for {scope} already in progress, skipping")
            return TrainingResult(
                success=False,
                scope=scope,
                skipped=True,
                message="Training already in progress for this scope",
                samples_required=self.config.min_samples,
            )
        try:
            return self._train_locked(scope, samples, trigger_type, triggered_by, trigger_application_id)
        finally:
            self.locks.release(scope)

    def train_scholarship(self, scholarship_id: str, **kwargs) -> TrainingResult:
        return self.train_model(scholarship_scope(scholarship_id), **kwargs)

    def train_all(self, scholarship_ids: Optional[Sequence[str]] = None, **kwargs) -> List[TrainingResult]:
        """
        Train every scholarship's model in turn.

        Args:
            scholarship_ids: Scholarships to train; every scholarship with a
                decided application when None
            **kwargs: Passed to train_model (trigger_type, triggered_by)

        Returns:
            One TrainingResult per scholarship, in input order
        """
        if scholarship_ids is None:
            scholarship_ids = sorted(self._decisions_by_scholarship())
        results = [self.train_scholarship(sid, **kwargs) for sid in scholarship_ids]
        trained = sum(1 for r in results if r.success)
        logger.info(f"📚 Trained {trained} of {len(results)} scholarship models")
        return results

    # -------------------------------------------------------------------------
    # Model management
    # -------------------------------------------------------------------------

    def list_models(self, scope: Optional[str] = None) -> List[TrainedModel]:
        return self.store.list_models(scope)

    def activate(self, model_id: str) -> TrainedModel:
        """
        Make a stored model version its scope's active model.

        Raises:
            ModelNotFound: when no model has this id
        """
        model = self.store.activate(model_id)
        if self.cache is not None:
            self.cache.invalidate(model.scope)
        logger.info(f"🔁 Activated {model.scope} v{model.version} ({model.id})")
        return model

    def training_stats(self) -> TrainingStats:
        applications = self.applications.labeled_applications(GLOBAL_SCOPE)
        per_scholarship = self._decisions_by_scholarship(applications)
        models = self.store.list_models()
        approved = sum(1 for a in applications if a.label == 1)
        return TrainingStats(
            total_applications=len(applications),
            approved_count=approved,
            rejected_count=len(applications) - approved,
            total_models=len(models),
            active_models=sum(1 for m in models if m.is_active),
            scholarships_with_data=len(per_scholarship),
            scholarships_with_enough_data=sum(
                1 for count in per_scholarship.values() if count >= self.config.min_samples
            ),
            min_samples_required=self.config.min_samples,
            scholarship_breakdown=dict(per_scholarship.most_common()),
        )

    def _decisions_by_scholarship(
        self, applications: Optional[Sequence[HistoricalApplication]] = None,
    ) -> Counter:
        if applications is None:
            applications = self.applications.labeled_applications(GLOBAL_SCOPE)
        return Counter(a.scholarship_id for a in applications if a.scholarship_id)

    def _train_locked(
        self,
        scope: str,
        samples: Optional[Sequence[HistoricalApplication]],
        trigger_type: TriggerType,
        triggered_by: Optional[str],
        trigger_application_id: Optional[str],
    ) -> TrainingResult:
        start_time = time.perf_counter()
        required = self.config.min_samples

        try:
            if samples is None:
                samples = self.applications.labeled_applications(scope)
        except PersistenceFailure as e:
            logger.error(f"❌ Could not load training data for {scope}: {e}")
            return TrainingResult(success=False, scope=scope, message=str(e), samples_required=required)

        available = len(samples)
        if available < required:
            logger.info(f"⚠️ Not enough decided applications for {scope}: {available}/{required}")
            return TrainingResult(
                success=False,
                scope=scope,
                message=f"Insufficient training data: {available} of {required} required samples",
                samples_available=available,
                samples_required=required,
            )

        logger.info(f"🎓 Training {scope} on {available} samples ({TriggerType(trigger_type).value})")
        X, y = build_matrix(samples)
        fit = fit_logistic_regression(
            X,
            y,
            self.config,
            initial_weights=np.array([DEFAULT_WEIGHTS[name] for name in FEATURE_NAMES]) * WEIGHT_INIT_SCALE,
            initial_bias=DEFAULT_INTERCEPT * WEIGHT_INIT_SCALE,
        )
        if not (np.all(np.isfinite(fit.weights)) and np.isfinite(fit.bias)):
            logger.error(f"❌ Training {scope} diverged to non-finite parameters, keeping the active model")
            return TrainingResult(
                success=False,
                scope=scope,
                message="Training diverged: weights are not finite",
                samples_available=available,
                samples_required=required,
            )

        metrics = compute_metrics(y, _probabilities(X, fit.weights, fit.bias))
        weights = {name: float(w) for name, w in zip(FEATURE_NAMES, fit.weights)}

        model = TrainedModel(
            scope=scope,
            weights=weights,
            bias=float(fit.bias),
            training_size=available,
            iterations=fit.iterations,
            converged=fit.converged,
            final_loss=fit.loss_history[-1],
            metrics=metrics,
            feature_importance=feature_importance(weights),
            trigger_type=trigger_type,
            triggered_by=triggered_by,
            trigger_application_id=trigger_application_id,
        )

        try:
            saved = self.store.save(model)
        except PersistenceFailure as e:
            logger.error(f"❌ Could not save model for {scope}: {e}")
            return TrainingResult(
                success=False, scope=scope, message=str(e),
                samples_available=available, samples_required=required,
            )

        if self.cache is not None:
            self.cache.invalidate(scope)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"✅ Trained {scope} v{saved.version}: accuracy={metrics.accuracy:.3f} "
            f"iterations={fit.iterations} converged={fit.converged} ({elapsed_ms:.0f}ms)"
        )
        return TrainingResult(
            success=True,
            scope=scope,
            message=f"Model trained on {available} samples",
            samples_available=available,
            samples_required=required,
            model=saved,
            elapsed_ms=elapsed_ms,
        )
