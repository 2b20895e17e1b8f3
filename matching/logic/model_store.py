"""
Model Store and Application Source

Persistence boundary for trained models and decided applications. Two
implementations of each: SQLAlchemy-backed for the service and in-memory
for tests and local runs.

Saving a model never edits an existing version: the scope's current active
model is deactivated and a new row with the next version is written.
"""

import logging
import threading
import uuid
from typing import Callable, ContextManager, Dict, List, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .constants import SCHOLARSHIP_SCOPE_PREFIX, TRAINING_DECISION_STATUSES
from .contracts import TrainedModel, HistoricalApplication, ModelMetrics, utcnow
from .errors import PersistenceFailure, ModelNotFound

logger = logging.getLogger(__name__)

SessionScope = Callable[[], ContextManager[Session]]


def scholarship_scope(scholarship_id: str) -> str:
    return f"{SCHOLARSHIP_SCOPE_PREFIX}{scholarship_id}"


def scope_scholarship_id(scope: str) -> Optional[str]:
    """The scholarship id of a scholarship scope, None for the global scope."""
    if scope.startswith(SCHOLARSHIP_SCOPE_PREFIX):
        return scope[len(SCHOLARSHIP_SCOPE_PREFIX):]
    return None


def _new_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# INTERFACES
# =============================================================================

class ModelStore(Protocol):
    def find_active_model(self, scope: str) -> Optional[TrainedModel]:
        ...

    def save(self, model: TrainedModel) -> TrainedModel:
        """Persist as the scope's new active version and return it with id/version set."""
        ...

    def list_models(self, scope: Optional[str] = None) -> List[TrainedModel]:
        """Stored versions, newest first within each scope; every scope when None."""
        ...

    def activate(self, model_id: str) -> TrainedModel:
        """Make a stored version its scope's only active model (raises ModelNotFound)."""
        ...


class ApplicationSource(Protocol):
    def labeled_applications(self, scope: str) -> List[HistoricalApplication]:
        ...

    def record(self, application: HistoricalApplication, decided_by: Optional[str] = None) -> None:
        ...


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryModelStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._models: Dict[str, List[TrainedModel]] = {}

    def find_active_model(self, scope: str) -> Optional[TrainedModel]:
        with self._lock:
            for model in reversed(self._models.get(scope, [])):
                if model.is_active:
                    return model
        return None

    def save(self, model: TrainedModel) -> TrainedModel:
        with self._lock:
            versions = self._models.setdefault(model.scope, [])
            versions[:] = [m.model_copy(update={"is_active": False}) for m in versions]
            saved = model.model_copy(update={
                "id": _new_id(),
                "version": len(versions) + 1,
                "is_active": True,
            })
            versions.append(saved)
            return saved

    def history(self, scope: str) -> List[TrainedModel]:
        with self._lock:
            return list(self._models.get(scope, []))

    def list_models(self, scope: Optional[str] = None) -> List[TrainedModel]:
        with self._lock:
            scopes = [scope] if scope is not None else sorted(self._models)
            return [m for s in scopes for m in reversed(self._models.get(s, []))]

    def activate(self, model_id: str) -> TrainedModel:
        with self._lock:
            for versions in self._models.values():
                if any(m.id == model_id for m in versions):
                    versions[:] = [m.model_copy(update={"is_active": m.id == model_id}) for m in versions]
                    return next(m for m in versions if m.id == model_id)
        raise ModelNotFound(f"no model with id {model_id}")


class InMemoryApplicationSource:
    def __init__(self, applications: Optional[List[HistoricalApplication]] = None):
        self._lock = threading.Lock()
        self._applications: List[HistoricalApplication] = list(applications or [])

    def labeled_applications(self, scope: str) -> List[HistoricalApplication]:
        scholarship_id = scope_scholarship_id(scope)
        with self._lock:
            return [
                a for a in self._applications
                if a.status in TRAINING_DECISION_STATUSES
                and (scholarship_id is None or a.scholarship_id == scholarship_id)
            ]

    def record(self, application: HistoricalApplication, decided_by: Optional[str] = None) -> None:
        with self._lock:
            if application.application_id is not None:
                self._applications = [
                    a for a in self._applications if a.application_id != application.application_id
                ]
            self._applications.append(application)


# =============================================================================
# SQLALCHEMY
# =============================================================================

def _record_to_model(record) -> TrainedModel:
    return TrainedModel(
        id=record.id,
        scope=record.scope,
        version=record.version,
        weights=dict(record.weights or {}),
        bias=record.bias,
        trained=bool(record.trained),
        training_date=record.training_date,
        training_size=record.training_size or 0,
        iterations=record.iterations or 0,
        converged=bool(record.converged),
        final_loss=record.final_loss,
        metrics=ModelMetrics(**record.metrics) if record.metrics else None,
        feature_importance=dict(record.feature_importance or {}),
        trigger_type=record.trigger_type or "manual",
        triggered_by=record.triggered_by,
        trigger_application_id=record.trigger_application_id,
        is_active=bool(record.is_active),
    )


class SqlModelStore:
    """
    TrainedModelRecord-backed store.

    Args:
        session_scope: get_db-style context manager factory (commit on exit)
    """

    def __init__(self, session_scope: SessionScope):
        self.session_scope = session_scope

    def find_active_model(self, scope: str) -> Optional[TrainedModel]:
        from models.models import TrainedModelRecord

        try:
            with self.session_scope() as db:
                record = db.execute(
                    select(TrainedModelRecord)
                    .where(TrainedModelRecord.scope == scope, TrainedModelRecord.is_active.is_(True))
                    .order_by(TrainedModelRecord.version.desc())
                    .limit(1)
                ).scalar_one_or_none()
                return _record_to_model(record) if record else None
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not load active model for {scope}: {e}") from e

    def save(self, model: TrainedModel) -> TrainedModel:
        from models.models import TrainedModelRecord

        try:
            with self.session_scope() as db:
                latest = db.execute(
                    select(func.max(TrainedModelRecord.version)).where(TrainedModelRecord.scope == model.scope)
                ).scalar()
                saved = model.model_copy(update={
                    "id": _new_id(),
                    "version": (latest or 0) + 1,
                    "is_active": True,
                })
                db.execute(
                    update(TrainedModelRecord)
                    .where(TrainedModelRecord.scope == model.scope, TrainedModelRecord.is_active.is_(True))
                    .values(is_active=False)
                )
                db.add(TrainedModelRecord(
                    id=saved.id,
                    scope=saved.scope,
                    version=saved.version,
                    weights=saved.weights,
                    bias=saved.bias,
                    trained=saved.trained,
                    training_date=saved.training_date,
                    training_size=saved.training_size,
                    iterations=saved.iterations,
                    converged=saved.converged,
                    final_loss=saved.final_loss,
                    metrics=saved.metrics.model_dump() if saved.metrics else None,
                    feature_importance=saved.feature_importance,
                    trigger_type=saved.trigger_type,
                    triggered_by=saved.triggered_by,
                    trigger_application_id=saved.trigger_application_id,
                    is_active=True,
                ))
            logger.info(f"💾 Saved model {saved.scope} v{saved.version} ({saved.id})")
            return saved
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not save model for {model.scope}: {e}") from e

    def list_models(self, scope: Optional[str] = None) -> List[TrainedModel]:
        from models.models import TrainedModelRecord

        query = select(TrainedModelRecord).order_by(TrainedModelRecord.scope, TrainedModelRecord.version.desc())
        if scope is not None:
            query = query.where(TrainedModelRecord.scope == scope)
        try:
            with self.session_scope() as db:
                return [_record_to_model(r) for r in db.execute(query).scalars()]
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not list models: {e}") from e

    def activate(self, model_id: str) -> TrainedModel:
        from models.models import TrainedModelRecord

        try:
            with self.session_scope() as db:
                record = db.get(TrainedModelRecord, model_id)
                if record is None:
                    raise ModelNotFound(f"no model with id {model_id}")
                db.execute(
                    update(TrainedModelRecord)
                    .where(TrainedModelRecord.scope == record.scope, TrainedModelRecord.id != model_id)
                    .values(is_active=False)
                )
                record.is_active = True
                db.flush()
                model = _record_to_model(record)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not activate model {model_id}: {e}") from e
        logger.info(f"💾 Activated model {model.scope} v{model.version} ({model.id})")
        return model


class SqlApplicationSource:
    """ApplicationRecord-backed source of decided applications."""

    def __init__(self, session_scope: SessionScope):
        self.session_scope = session_scope

    def labeled_applications(self, scope: str) -> List[HistoricalApplication]:
        from models.models import ApplicationRecord

        query = select(ApplicationRecord).where(ApplicationRecord.status.in_(TRAINING_DECISION_STATUSES))
        scholarship_id = scope_scholarship_id(scope)
        if scholarship_id is not None:
            query = query.where(ApplicationRecord.scholarship_id == scholarship_id)
        try:
            with self.session_scope() as db:
                return [
                    HistoricalApplication(
                        application_id=r.id,
                        scholarship_id=r.scholarship_id,
                        features=dict(r.features or {}),
                        status=r.status,
                    )
                    for r in db.execute(query).scalars()
                ]
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not load applications for {scope}: {e}") from e

    def record(self, application: HistoricalApplication, decided_by: Optional[str] = None) -> None:
        from models.models import ApplicationRecord

        try:
            with self.session_scope() as db:
                db.merge(ApplicationRecord(
                    id=application.application_id or _new_id(),
                    scholarship_id=application.scholarship_id,
                    features=application.features,
                    status=application.status,
                    decided_by=decided_by,
                    decided_at=utcnow(),
                ))
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"could not record application {application.application_id}: {e}") from e
