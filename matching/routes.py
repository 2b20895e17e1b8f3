"""
Matching API Routes

Exposes the scholarship matching engine and the approval model via REST API.
"""

import logging
from typing import Optional, List, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .logic import (
    MatchResult,
    ValidationFailure,
    PersistenceFailure,
    ModelNotFound,
    TriggerType,
    GLOBAL_SCOPE,
    high_compatibility,
    normalize_student,
    normalize_scholarship,
    application_snapshot,
    scholarship_scope,
)
from .logic.constants import DEFAULT_TRAINING_LOG_LIMIT, MAX_TRAINING_LOG_ENTRIES
from .services import MatchingServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matching", tags=["matching"])


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class MatchRequest(BaseModel):
    """Request body for matching a student against scholarships."""
    student: Dict[str, Any] = Field(
        ...,
        description="Student record (flat or with a nested studentProfile)",
        examples=[{
            "studentId": "2021-00001",
            "studentProfile": {
                "gwa": 1.75,
                "classification": "Junior",
                "college": "College of Engineering and Agro-Industrial Technology",
                "course": "BS Civil Engineering",
                "annualFamilyIncome": 180000,
                "stBracket": "PD80",
                "profileCompleted": True,
            },
        }],
    )
    scholarships: List[Dict[str, Any]] = Field(..., description="Scholarship records with eligibilityCriteria")
    include_prediction: bool = Field(default=False, description="Attach approval predictions to eligible results")
    high_compatibility_only: bool = Field(default=False, description="Only return eligible results scoring 75+")


class PredictRequest(BaseModel):
    student: Dict[str, Any]
    scholarship: Dict[str, Any]


class TrainRequest(BaseModel):
    scholarship_id: Optional[str] = Field(default=None, description="Train this scholarship's model; global when omitted")
    triggered_by: Optional[str] = None


class TrainAllRequest(BaseModel):
    scholarship_ids: Optional[List[str]] = Field(
        default=None, description="Scholarships to train; every scholarship with decided applications when omitted"
    )
    triggered_by: Optional[str] = None


class DecisionRequest(BaseModel):
    """An application decision; approved/rejected decisions schedule retraining."""
    application_id: str
    scholarship_id: str
    status: str
    actor_id: Optional[str] = None
    student: Optional[Dict[str, Any]] = Field(
        default=None, description="Applicant record; stored as the training snapshot when given"
    )
    scholarship: Optional[Dict[str, Any]] = Field(
        default=None, description="Scholarship record the snapshot's criteria features are computed against"
    )


def _serialize_match(result: MatchResult) -> Dict[str, Any]:
    return {
        "scholarship_id": result.scholarship_id,
        "scholarship_name": result.scholarship_name,
        "is_eligible": result.is_eligible,
        "compatibility_score": result.compatibility_score,
        "eligibility_details": [d.model_dump() for d in result.eligibility_details],
        "failed_checks": [d.criterion for d in result.failed_checks],
    }


def _error_response(e: Exception) -> JSONResponse:
    logger.exception("Matching request failed")
    return JSONResponse(status_code=500, content={"error": str(e)})


# =============================================================================
# MATCHING
# =============================================================================

@router.post("/match", summary="Match a student against scholarships")
def match_scholarships(request: MatchRequest, services: MatchingServices = Depends(get_services)):
    """
    Run the eligibility rules against every active scholarship.

    **Response:**
    - Results ordered eligible first, then by compatibility score
    - Per-check details (criterion, student value, required value)
    - Approval prediction per eligible result (if requested)
    """
    try:
        try:
            scholarships = {s.id: s for s in (normalize_scholarship(raw) for raw in request.scholarships)}
        except ValidationFailure as e:
            raise HTTPException(status_code=400, detail=f"Invalid scholarship: {e}")

        profile = normalize_student(request.student)
        results = services.engine.match_all(profile, scholarships.values())
        if request.high_compatibility_only:
            results = high_compatibility(results)

        payload = []
        for result in results:
            item = _serialize_match(result)
            if request.include_prediction and result.is_eligible:
                prediction = services.prediction.predict(profile, scholarships[result.scholarship_id])
                item["prediction"] = prediction.model_dump(mode="json")
            payload.append(item)

        return {
            "student_id": profile.student_id,
            "results": payload,
            "count": len(payload),
            "eligible_count": sum(1 for r in results if r.is_eligible),
        }
    except HTTPException:
        raise
    except Exception as e:
        return _error_response(e)


@router.post("/predict", summary="Predict approval probability")
def predict_approval(request: PredictRequest, services: MatchingServices = Depends(get_services)):
    try:
        try:
            scholarship = normalize_scholarship(request.scholarship)
        except ValidationFailure as e:
            raise HTTPException(status_code=400, detail=f"Invalid scholarship: {e}")
        prediction = services.prediction.predict(request.student, scholarship)
        return prediction.model_dump(mode="json")
    except HTTPException:
        raise
    except Exception as e:
        return _error_response(e)


# =============================================================================
# TRAINING
# =============================================================================

@router.post("/train", summary="Train a model now")
def train_model(request: TrainRequest, services: MatchingServices = Depends(get_services)):
    """Synchronous training run for one scholarship or the global model."""
    scope = scholarship_scope(request.scholarship_id) if request.scholarship_id else GLOBAL_SCOPE
    try:
        result = services.auto_training.train_now(scope, triggered_by=request.triggered_by)
        return result.model_dump(mode="json")
    except Exception as e:
        return _error_response(e)


@router.post("/train-all", summary="Train every scholarship's model")
def train_all_models(request: TrainAllRequest, services: MatchingServices = Depends(get_services)):
    try:
        results = services.trainer.train_all(
            request.scholarship_ids, trigger_type=TriggerType.MANUAL, triggered_by=request.triggered_by,
        )
        successful = sum(1 for r in results if r.success)
        return {
            "results": [r.model_dump(mode="json") for r in results],
            "summary": {
                "successful": successful,
                "failed": len(results) - successful,
                "total": len(results),
            },
        }
    except Exception as e:
        return _error_response(e)


@router.get("/models", summary="List stored model versions")
def list_models(
    scope: Optional[str] = Query(None, description='"global" or "scholarship:<id>"; every scope when omitted'),
    services: MatchingServices = Depends(get_services),
):
    try:
        models = services.trainer.list_models(scope)
        return {"models": [m.model_dump(mode="json") for m in models], "count": len(models)}
    except Exception as e:
        return _error_response(e)


@router.get("/models/scholarship/{scholarship_id}", summary="List a scholarship's model versions")
def list_scholarship_models(scholarship_id: str, services: MatchingServices = Depends(get_services)):
    return list_models(scholarship_scope(scholarship_id), services)


@router.post("/models/{model_id}/activate", summary="Re-activate a stored model version")
def activate_model(model_id: str, services: MatchingServices = Depends(get_services)):
    try:
        return services.trainer.activate(model_id).model_dump(mode="json")
    except ModelNotFound:
        raise HTTPException(status_code=404, detail=f"Model {model_id} not found")
    except Exception as e:
        return _error_response(e)


@router.get("/training/stats", summary="Training data and model counts")
def training_stats(services: MatchingServices = Depends(get_services)):
    try:
        return services.trainer.training_stats().model_dump(mode="json")
    except Exception as e:
        return _error_response(e)


@router.post("/decisions", status_code=202, summary="Report an application decision")
def report_decision(request: DecisionRequest, services: MatchingServices = Depends(get_services)):
    """
    Record the decision's training snapshot (when a student record is
    given) and schedule background retraining. Returns immediately.
    """
    status = request.status.strip().lower()
    if request.student is not None and status in ("approved", "rejected"):
        try:
            criteria = normalize_scholarship(request.scholarship).criteria if request.scholarship else None
        except ValidationFailure as e:
            raise HTTPException(status_code=400, detail=f"Invalid scholarship: {e}")
        snapshot = application_snapshot(
            normalize_student(request.student),
            criteria,
            status,
            application_id=request.application_id,
            scholarship_id=request.scholarship_id,
        )
        try:
            services.applications.record(snapshot, decided_by=request.actor_id)
        except PersistenceFailure as e:
            logger.error(f"Could not record decision {request.application_id}: {e}")
            raise HTTPException(status_code=503, detail="Could not record decision")

    future = services.auto_training.on_decision(
        request.application_id, request.scholarship_id, status, request.actor_id
    )
    return {"accepted": True, "training_scheduled": future is not None}


@router.get("/training/status", summary="Auto-training status")
def training_status(services: MatchingServices = Depends(get_services)):
    return services.auto_training.get_status().model_dump(mode="json")


@router.get("/training/log", summary="Recent training events")
def training_log(
    limit: int = Query(DEFAULT_TRAINING_LOG_LIMIT, ge=1, le=MAX_TRAINING_LOG_ENTRIES),
    services: MatchingServices = Depends(get_services),
):
    events = services.auto_training.get_log(limit)
    return {"events": [e.model_dump(mode="json") for e in events], "count": len(events)}


# =============================================================================
# HEALTH CHECK
# =============================================================================

@router.get("/health", summary="Matching engine health check")
def health_check(services: MatchingServices = Depends(get_services)):
    """Check if the matching engine is operational."""
    entry = services.prediction.resolve_weights(None)
    return {
        "status": "ok",
        "engine": "matching",
        "version": services.engine.version,
        "model_source": entry.source,
        "model_version": entry.model_version,
    }
