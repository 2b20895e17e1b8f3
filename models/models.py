from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, UniqueConstraint

from db import Base


class TrainedModelRecord(Base):
    """One version of a logistic-regression model for a scope (global or one scholarship)."""
    __tablename__ = "trained_models"
    __table_args__ = (
        UniqueConstraint("scope", "version", name="uq_trained_models_scope_version"),
        {"extend_existing": True},
    )

    id = Column(String, primary_key=True)
    scope = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    weights = Column(JSON, nullable=False)
    bias = Column(Float, nullable=False)
    trained = Column(Boolean, default=True)
    training_date = Column(DateTime(timezone=True))
    training_size = Column(Integer, default=0)
    iterations = Column(Integer, default=0)
    converged = Column(Boolean, default=False)
    final_loss = Column(Float)
    metrics = Column(JSON)
    feature_importance = Column(JSON)
    trigger_type = Column(String, default="manual")
    triggered_by = Column(String)
    trigger_application_id = Column(String)
    is_active = Column(Boolean, default=True, index=True)


class ApplicationRecord(Base):
    """Decided application with the feature snapshot taken at decision time."""
    __tablename__ = "application_outcomes"
    __table_args__ = {"extend_existing": True}

    id = Column(String, primary_key=True)
    scholarship_id = Column(String, index=True)
    features = Column(JSON, nullable=False)
    status = Column(String, nullable=False, index=True)
    decided_by = Column(String)
    decided_at = Column(DateTime(timezone=True))
