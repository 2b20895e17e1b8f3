"""
Tests for the SQLAlchemy-backed model store and application source.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import init_db, session_scope_for
from matching.logic import (
    FEATURE_NAMES,
    GLOBAL_SCOPE,
    HistoricalApplication,
    ModelNotFound,
    ModelTrainer,
    PersistenceFailure,
    PredictionService,
    SqlApplicationSource,
    SqlModelStore,
    TrainedModel,
    TrainingConfig,
    scholarship_scope,
)
from matching.logic.contracts import ModelMetrics

from test_trainer import separable_samples


@pytest.fixture
def session_scope():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield session_scope_for(sessionmaker(bind=engine, autoflush=False, future=True))
    engine.dispose()


def test_save_and_load_round_trip(session_scope):
    store = SqlModelStore(session_scope)
    model = TrainedModel(
        scope=GLOBAL_SCOPE,
        weights={name: 0.5 for name in FEATURE_NAMES},
        bias=-1.25,
        training_size=40,
        metrics=ModelMetrics(accuracy=0.9, precision=0.8, recall=0.7, f1_score=0.75),
        trigger_type="auto_global_refresh",
    )
    saved = store.save(model)
    loaded = store.find_active_model(GLOBAL_SCOPE)

    assert saved.version == 1
    assert loaded.id == saved.id
    assert loaded.weights == model.weights
    assert loaded.bias == -1.25
    assert loaded.metrics.accuracy == 0.9
    assert loaded.trigger_type == "auto_global_refresh"


def test_new_version_supersedes_previous(session_scope):
    store = SqlModelStore(session_scope)
    first = store.save(TrainedModel(scope=GLOBAL_SCOPE, weights={"gwa_score": 1.0}, bias=0.0))
    second = store.save(TrainedModel(scope=GLOBAL_SCOPE, weights={"gwa_score": 2.0}, bias=0.0))
    other = store.save(TrainedModel(scope=scholarship_scope("s1"), weights={"gwa_score": 3.0}, bias=0.0))

    assert (first.version, second.version, other.version) == (1, 2, 1)
    assert store.find_active_model(GLOBAL_SCOPE).id == second.id
    assert store.find_active_model(scholarship_scope("s1")).id == other.id
    assert store.find_active_model(scholarship_scope("missing")) is None


def test_application_source_filters_by_scope_and_status(session_scope):
    source = SqlApplicationSource(session_scope)
    source.record(HistoricalApplication(application_id="a1", scholarship_id="s1", features={"gwa_score": 0.9}, status="approved"))
    source.record(HistoricalApplication(application_id="a2", scholarship_id="s2", features={}, status="rejected"))
    source.record(HistoricalApplication(application_id="a3", scholarship_id="s1", features={}, status="pending"))
    # Re-recording replaces the earlier decision
    source.record(HistoricalApplication(application_id="a1", scholarship_id="s1", features={"gwa_score": 0.9}, status="rejected"))

    s1 = source.labeled_applications(scholarship_scope("s1"))
    everything = source.labeled_applications(GLOBAL_SCOPE)

    assert [(a.application_id, a.status) for a in s1] == [("a1", "rejected")]
    assert sorted(a.application_id for a in everything) == ["a1", "a2"]


def test_trainer_and_prediction_over_sql(session_scope):
    store = SqlModelStore(session_scope)
    applications = SqlApplicationSource(session_scope)
    for sample in separable_samples():
        applications.record(sample)

    result = ModelTrainer(store, applications, config=TrainingConfig()).train_model(GLOBAL_SCOPE)
    prediction = PredictionService(store).predict({"gwa": 1.2}, {"id": "s9", "name": "Any"})

    assert result.success is True
    assert prediction.model_source == "global"
    assert prediction.model_version == 1


def test_database_errors_become_persistence_failures():
    engine = create_engine("sqlite://", poolclass=StaticPool)  # no tables created
    store = SqlModelStore(session_scope_for(sessionmaker(bind=engine)))

    with pytest.raises(PersistenceFailure):
        store.find_active_model(GLOBAL_SCOPE)

    # prediction degrades to the built-in weights
    prediction = PredictionService(store).predict({}, {"id": "s1", "name": "Any"})
    assert prediction.model_source == "default"


def test_list_and_activate_versions(session_scope):
    store = SqlModelStore(session_scope)
    first = store.save(TrainedModel(scope=GLOBAL_SCOPE, weights={"gwa_score": 1.0}, bias=0.0))
    store.save(TrainedModel(scope=GLOBAL_SCOPE, weights={"gwa_score": 2.0}, bias=0.0))
    other = store.save(TrainedModel(scope=scholarship_scope("s1"), weights={"gwa_score": 3.0}, bias=0.0))

    assert [m.version for m in store.list_models(GLOBAL_SCOPE)] == [2, 1]
    assert len(store.list_models()) == 3

    activated = store.activate(first.id)

    assert activated.id == first.id
    assert activated.is_active is True
    assert store.find_active_model(GLOBAL_SCOPE).version == 1
    assert [m.is_active for m in store.list_models(GLOBAL_SCOPE)] == [False, True]
    assert store.find_active_model(scholarship_scope("s1")).id == other.id

    with pytest.raises(ModelNotFound):
        store.activate("missing")
