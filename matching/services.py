"""
Service wiring for the matching API.

One MatchingServices instance lives on app.state.matching for the lifetime
of the process: it is built (and the global weights loaded into the cache)
at startup, training replaces cached weights, predictions read them, and
the background training pool is shut down with the app.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from matching.config import Settings
from matching.logic import (
    MatchingEngine,
    ModelCache,
    ModelTrainer,
    PredictionService,
    AutoTrainingService,
    InMemoryModelStore,
    InMemoryApplicationSource,
    SqlModelStore,
    SqlApplicationSource,
)
from matching.logic.model_store import ModelStore, ApplicationSource, SessionScope

logger = logging.getLogger(__name__)


@dataclass
class MatchingServices:
    settings: Settings
    engine: MatchingEngine
    cache: ModelCache
    store: ModelStore
    applications: ApplicationSource
    trainer: ModelTrainer
    prediction: PredictionService
    auto_training: AutoTrainingService

    def start(self) -> None:
        self.prediction.warm_up()

    def stop(self) -> None:
        self.auto_training.shutdown(wait=False)


def build_services(
    settings: Settings,
    session_scope: Optional[SessionScope] = None,
) -> MatchingServices:
    """
    Wire the matching services.

    Args:
        settings: Runtime settings
        session_scope: get_db-style session factory; in-memory stores are used when None
    """
    if session_scope is not None:
        store: ModelStore = SqlModelStore(session_scope)
        applications: ApplicationSource = SqlApplicationSource(session_scope)
    else:
        store = InMemoryModelStore()
        applications = InMemoryApplicationSource()

    cache = ModelCache(ttl_seconds=settings.cache_ttl_seconds)
    trainer = ModelTrainer(store, applications, cache=cache, config=settings.training)
    prediction = PredictionService(
        store,
        cache=cache,
        probability_floor=settings.probability_floor,
        probability_ceiling=settings.probability_ceiling,
    )
    auto_training = AutoTrainingService(
        trainer,
        global_retrain_interval=settings.global_retrain_interval,
        max_workers=settings.auto_training_workers,
    )
    logger.info(f"Matching services ready (store={type(store).__name__})")
    return MatchingServices(
        settings=settings,
        engine=MatchingEngine(),
        cache=cache,
        store=store,
        applications=applications,
        trainer=trainer,
        prediction=prediction,
        auto_training=auto_training,
    )


def get_services(request: Request) -> MatchingServices:
    return request.app.state.matching
