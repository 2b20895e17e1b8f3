"""
Tests for model fitting, the sample gate, versioning and lock handling.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import numpy as np
import pytest

from matching.logic import (
    FEATURE_NAMES,
    GLOBAL_SCOPE,
    HistoricalApplication,
    InMemoryApplicationSource,
    InMemoryModelStore,
    ModelCache,
    ModelNotFound,
    ModelTrainer,
    PersistenceFailure,
    TrainingConfig,
    scholarship_scope,
)
from matching.logic.contracts import ModelCacheEntry
from matching.logic import trainer as trainer_module
from matching.logic.trainer import (
    FitResult,
    build_matrix,
    compute_metrics,
    feature_importance,
    fit_logistic_regression,
)


def separable_samples(n_per_class=20, scholarship_id="s1", seed=0):
    """Approved rows have high feature values, rejected rows low ones."""
    rng = np.random.default_rng(seed)
    samples = []
    for i in range(n_per_class):
        high = rng.uniform(0.7, 1.0, len(FEATURE_NAMES))
        low = rng.uniform(0.0, 0.3, len(FEATURE_NAMES))
        samples.append(HistoricalApplication(
            application_id=f"a{i}", scholarship_id=scholarship_id,
            features=dict(zip(FEATURE_NAMES, high)), status="approved",
        ))
        samples.append(HistoricalApplication(
            application_id=f"r{i}", scholarship_id=scholarship_id,
            features=dict(zip(FEATURE_NAMES, low)), status="rejected",
        ))
    return samples


class FailingStore(InMemoryModelStore):
    def save(self, model):
        raise PersistenceFailure("database is down")


@pytest.fixture
def store():
    return InMemoryModelStore()


@pytest.fixture
def cache():
    return ModelCache(ttl_seconds=300)


def test_gradient_descent_converges_on_separable_data():
    X, y = build_matrix(separable_samples())
    config = TrainingConfig(l2=0.0, max_iterations=5000)

    fit = fit_logistic_regression(X, y, config, initial_weights=np.full(X.shape[1], 0.1), initial_bias=-0.1)

    assert fit.converged is True
    assert fit.iterations <= config.max_iterations
    deltas = np.diff(fit.loss_history)
    assert np.all(deltas <= 1e-12)
    assert fit.loss_history[-1] < fit.loss_history[0]

    metrics = compute_metrics(y, 1 / (1 + np.exp(-(X @ fit.weights + fit.bias))))
    assert metrics.accuracy == 1.0


def test_fit_stops_at_iteration_cap():
    X, y = build_matrix(separable_samples())
    fit = fit_logistic_regression(X, y, TrainingConfig(max_iterations=3, convergence_threshold=1e-12))
    assert fit.iterations == 3
    assert fit.converged is False
    assert len(fit.loss_history) == 4


def test_compute_metrics_counts_confusion_matrix():
    y = np.array([1, 1, 0, 0, 1])
    p = np.array([0.9, 0.2, 0.1, 0.7, 0.6])
    metrics = compute_metrics(y, p)

    cm = metrics.confusion_matrix
    assert (cm.tp, cm.fn, cm.tn, cm.fp) == (2, 1, 1, 1)
    assert metrics.accuracy == pytest.approx(0.6)
    assert metrics.precision == pytest.approx(2 / 3)
    assert metrics.recall == pytest.approx(2 / 3)


def test_compute_metrics_without_positive_predictions():
    metrics = compute_metrics(np.array([1, 0]), np.array([0.1, 0.2]))
    assert metrics.precision == 0.0
    assert metrics.f1_score == 0.0


def test_feature_importance_sums_to_one():
    importance = feature_importance({"a": 2.0, "b": -1.0, "c": 1.0})
    assert importance == {"a": 0.5, "b": 0.25, "c": 0.25}
    assert feature_importance({"a": 0.0}) == {"a": 0.0}


def test_insufficient_samples_leave_active_model_untouched(store):
    trainer = ModelTrainer(store, InMemoryApplicationSource(), config=TrainingConfig(min_samples=10))
    samples = separable_samples(n_per_class=5)[:9]

    result = trainer.train_model(GLOBAL_SCOPE, samples=samples)

    assert result.success is False
    assert result.samples_available == 9
    assert result.samples_required == 10
    assert result.model is None
    assert store.find_active_model(GLOBAL_SCOPE) is None


def test_training_loads_samples_for_scholarship_scope(store, cache):
    applications = InMemoryApplicationSource(
        separable_samples(scholarship_id="s1") + separable_samples(n_per_class=3, scholarship_id="s2")
    )
    trainer = ModelTrainer(store, applications, cache=cache)

    result = trainer.train_scholarship("s1")
    assert result.success is True
    assert result.model.scope == scholarship_scope("s1")
    assert result.model.training_size == 40
    assert set(result.model.weights) == set(FEATURE_NAMES)
    assert result.model.metrics.accuracy == 1.0

    small = trainer.train_scholarship("s2")
    assert small.success is False
    assert small.samples_available == 6


def test_retraining_creates_new_version_and_invalidates_cache(store, cache):
    trainer = ModelTrainer(store, InMemoryApplicationSource(separable_samples()), cache=cache)
    cache.put(GLOBAL_SCOPE, ModelCacheEntry(
        weights={}, bias=0.0, expires_at=cache.expiry(), source="default", source_scope=GLOBAL_SCOPE,
    ))

    first = trainer.train_model(GLOBAL_SCOPE, triggered_by="admin-1")
    assert cache.get(GLOBAL_SCOPE) is None

    second = trainer.train_model(GLOBAL_SCOPE)
    history = store.history(GLOBAL_SCOPE)

    assert (first.model.version, second.model.version) == (1, 2)
    assert first.model.triggered_by == "admin-1"
    assert [m.is_active for m in history] == [False, True]
    assert history[0].weights == first.model.weights
    assert store.find_active_model(GLOBAL_SCOPE).id == second.model.id


def test_store_failure_returns_failed_result(cache):
    trainer = ModelTrainer(FailingStore(), InMemoryApplicationSource(separable_samples()), cache=cache)
    result = trainer.train_model(GLOBAL_SCOPE)
    assert result.success is False
    assert "database is down" in result.message


def test_busy_scope_is_skipped(store):
    trainer = ModelTrainer(store, InMemoryApplicationSource(separable_samples()))
    assert trainer.locks.try_acquire(GLOBAL_SCOPE)
    try:
        result = trainer.train_model(GLOBAL_SCOPE)
        assert trainer.locks.active() == [GLOBAL_SCOPE]
    finally:
        trainer.locks.release(GLOBAL_SCOPE)

    assert result.success is False
    assert result.skipped is True
    assert store.find_active_model(GLOBAL_SCOPE) is None
    assert trainer.locks.active() == []


def test_insufficient_samples_keep_existing_model_and_cache(store, cache):
    trainer = ModelTrainer(store, InMemoryApplicationSource(separable_samples()), cache=cache)
    active = trainer.train_model(GLOBAL_SCOPE).model
    entry = ModelCacheEntry(
        weights=active.weights, bias=active.bias, expires_at=cache.expiry(), source="global",
        source_scope=GLOBAL_SCOPE, model_id=active.id, model_version=active.version,
    )
    cache.put(GLOBAL_SCOPE, entry)

    result = trainer.train_model(GLOBAL_SCOPE, samples=separable_samples(n_per_class=5)[:9])

    assert result.success is False
    current = store.find_active_model(GLOBAL_SCOPE)
    assert (current.id, current.version) == (active.id, active.version)
    assert cache.get(GLOBAL_SCOPE) == entry


def test_non_finite_snapshot_values_fall_back_to_defaults():
    sample = HistoricalApplication(status="approved", features={
        "gwa_score": float("nan"),
        "year_level": float("inf"),
        "financial_need": 1.7,
        "st_bracket": -0.2,
    })
    assert sample.feature_value("gwa_score") == 0.5
    assert sample.feature_value("year_level") == 0.5
    assert sample.feature_value("financial_need") == 1.0
    assert sample.feature_value("st_bracket") == 0.0


def test_one_non_finite_snapshot_does_not_poison_training(store):
    samples = separable_samples(n_per_class=6)[:11] + [
        HistoricalApplication(application_id="bad", status="approved", features={"gwa_score": float("nan")}),
    ]
    result = ModelTrainer(store, InMemoryApplicationSource()).train_model(GLOBAL_SCOPE, samples=samples)

    assert result.success is True
    assert np.isfinite(result.model.bias)
    assert all(np.isfinite(w) for w in result.model.weights.values())


def test_diverged_fit_is_not_saved(store, monkeypatch):
    def diverged(X, y, config, initial_weights=None, initial_bias=0.0):
        return FitResult(np.full(X.shape[1], np.nan), float("nan"), 1, False, [float("nan")])

    monkeypatch.setattr(trainer_module, "fit_logistic_regression", diverged)
    result = ModelTrainer(store, InMemoryApplicationSource(separable_samples())).train_model(GLOBAL_SCOPE)

    assert result.success is False
    assert "not finite" in result.message
    assert store.find_active_model(GLOBAL_SCOPE) is None


def test_train_all_trains_each_scholarship(store):
    applications = InMemoryApplicationSource(
        separable_samples(scholarship_id="s1") + separable_samples(n_per_class=2, scholarship_id="s2")
    )
    trainer = ModelTrainer(store, applications)

    results = trainer.train_all()
    assert [(r.scope, r.success) for r in results] == [("scholarship:s1", True), ("scholarship:s2", False)]
    assert results[1].samples_available == 4

    explicit = trainer.train_all(["s2"])
    assert [r.scope for r in explicit] == ["scholarship:s2"]


def test_list_and_reactivate_model_versions(store, cache):
    trainer = ModelTrainer(store, InMemoryApplicationSource(separable_samples()), cache=cache)
    first = trainer.train_model(GLOBAL_SCOPE).model
    trainer.train_model(GLOBAL_SCOPE)
    trainer.train_scholarship("s1")

    assert [m.version for m in trainer.list_models(GLOBAL_SCOPE)] == [2, 1]
    assert [m.scope for m in trainer.list_models()] == ["global", "global", "scholarship:s1"]

    cache.put(GLOBAL_SCOPE, ModelCacheEntry(
        weights={}, bias=0.0, expires_at=cache.expiry(), source="global", source_scope=GLOBAL_SCOPE,
    ))
    activated = trainer.activate(first.id)

    assert activated.is_active is True
    assert store.find_active_model(GLOBAL_SCOPE).id == first.id
    assert [m.is_active for m in trainer.list_models(GLOBAL_SCOPE)] == [False, True]
    assert cache.get(GLOBAL_SCOPE) is None
    assert store.find_active_model(scholarship_scope("s1")) is not None

    with pytest.raises(ModelNotFound):
        trainer.activate("missing")


def test_training_stats_counts_decisions_and_models(store):
    applications = InMemoryApplicationSource(
        separable_samples(scholarship_id="s1")
        + separable_samples(n_per_class=2, scholarship_id="s2")
        + [HistoricalApplication(application_id="p1", scholarship_id="s2", status="pending")]
    )
    trainer = ModelTrainer(store, applications)
    trainer.train_scholarship("s1")

    stats = trainer.training_stats()

    assert stats.total_applications == 44
    assert (stats.approved_count, stats.rejected_count) == (22, 22)
    assert (stats.total_models, stats.active_models) == (1, 1)
    assert stats.scholarships_with_data == 2
    assert stats.scholarships_with_enough_data == 1
    assert stats.min_samples_required == 10
    assert list(stats.scholarship_breakdown.items()) == [("s1", 40), ("s2", 4)]
