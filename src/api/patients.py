"""
Patient API endpoints: record management, face identification and identity verification.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from src.middleware import get_correlation_id
from src.models.api_models import (
    ERROR_RESPONSES,
    ErrorResponse,
    FaceEmbeddingRequest,
    FaceVerificationResponse,
    PatientCreateRequest,
    PatientFaceMatchResponse,
    PatientResponse,
    PatientUpdateRequest
)
from src.models.internal_models import IdentityRecord
from src.observability import (
    trace_function,
    record_match_metrics,
    record_verification_metrics
)
from src.services.match_service import (
    InvalidInputError,
    MatchService,
    NoReferenceEmbeddingError,
    PatientNotFoundError,
    get_match_service
)
from src.utils.embedding_codec import EmbeddingFormatError, encode_embedding, parse_embedding_text

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/patients", tags=["patients"], responses=ERROR_RESPONSES)


def api_error(status_code: int, error_type: str, message: str, correlation_id: str) -> HTTPException:
    """Create standardized error exception."""
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(
            error=error_type,
            message=message,
            correlation_id=correlation_id,
            timestamp=datetime.utcnow()
        ).model_dump(mode="json")
    )


def _normalize_embedding(raw: Optional[str], correlation_id: str) -> Optional[str]:
    """Validate a client-supplied embedding and return its stored text form."""
    if raw is None or not raw.strip():
        return None
    try:
        return encode_embedding(parse_embedding_text(raw))
    except EmbeddingFormatError as e:
        raise api_error(status.HTTP_400_BAD_REQUEST, "InvalidInput", str(e), correlation_id)


@router.get("", response_model=List[PatientResponse])
async def list_patients(service: MatchService = Depends(get_match_service)) -> List[PatientResponse]:
    """List all patient records."""
    records = await service.db.patients.list_all()
    return [PatientResponse.from_record(record) for record in records]


@router.get("/health", response_model=Dict[str, Any])
async def patients_health_check(service: MatchService = Depends(get_match_service)) -> Dict[str, Any]:
    """
    Health check endpoint specific to the patient store.

    Returns:
        Dict with service health status and component checks
    """
    try:
        db_healthy = await service.db.health_check()

        return {
            "status": "healthy" if db_healthy else "unhealthy",
            "timestamp": datetime.utcnow().isoformat(),
            "components": {
                "database": {
                    "status": "healthy" if db_healthy else "unhealthy",
                    "details": "Patient store connectivity check"
                },
                "matching": {
                    "status": "healthy",
                    "details": {"face_match_threshold": service.threshold}
                }
            }
        }

    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "timestamp": datetime.utcnow().isoformat(),
            "error": str(e)
        }


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: int,
    http_request: Request,
    service: MatchService = Depends(get_match_service)
) -> PatientResponse:
    """Get one patient record."""
    record = await service.db.patients.get_by_id(patient_id)
    if record is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "NotFound", "Patient not found",
                        get_correlation_id(http_request))
    return PatientResponse.from_record(record)


@router.post("", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    request: PatientCreateRequest,
    http_request: Request,
    response: Response,
    service: MatchService = Depends(get_match_service)
) -> PatientResponse:
    """
    Create a patient record.

    A supplied face embedding must be a non-empty JSON array of numbers.
    """
    correlation_id = get_correlation_id(http_request)
    embedding = _normalize_embedding(request.faceEmbedding, correlation_id)

    created = await service.db.patients.create(
        IdentityRecord(name=request.name, face_embedding=embedding)
    )

    logger.info(
        "Patient created",
        patient_id=created.id,
        has_embedding=created.has_embedding,
        correlation_id=correlation_id
    )

    response.headers["Location"] = f"{router.prefix}/{created.id}"
    return PatientResponse.from_record(created)


@router.put("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def update_patient(
    patient_id: int,
    request: PatientUpdateRequest,
    http_request: Request,
    service: MatchService = Depends(get_match_service)
) -> Response:
    """Replace a patient record."""
    correlation_id = get_correlation_id(http_request)

    if request.id != patient_id:
        raise api_error(status.HTTP_400_BAD_REQUEST, "InvalidInput",
                        "Patient ID in body does not match the URL", correlation_id)

    embedding = _normalize_embedding(request.faceEmbedding, correlation_id)

    updated = await service.db.patients.update(
        IdentityRecord(id=patient_id, name=request.name, face_embedding=embedding)
    )
    if updated is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "NotFound", "Patient not found", correlation_id)

    logger.info("Patient updated", patient_id=patient_id, correlation_id=correlation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{patient_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_patient(
    patient_id: int,
    http_request: Request,
    service: MatchService = Depends(get_match_service)
) -> Response:
    """Delete a patient record."""
    correlation_id = get_correlation_id(http_request)

    if not await service.db.patients.delete(patient_id):
        raise api_error(status.HTTP_404_NOT_FOUND, "NotFound", "Patient not found", correlation_id)

    logger.info("Patient deleted", patient_id=patient_id, correlation_id=correlation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/find-by-face", response_model=PatientFaceMatchResponse)
@trace_function("find_by_face_endpoint")
async def find_patient_by_face(
    request: FaceEmbeddingRequest,
    http_request: Request,
    service: MatchService = Depends(get_match_service)
) -> PatientFaceMatchResponse:
    """
    Identify the enrolled patient whose face embedding best matches the request.

    Args:
        request: Captured face embedding and optional threshold override
        http_request: HTTP request for correlation ID extraction

    Returns:
        PatientFaceMatchResponse with the best match, or isMatch=false

    Raises:
        HTTPException: 400 for a missing or malformed embedding, 500 otherwise
    """
    correlation_id = get_correlation_id(http_request)
    start_time = time.time()

    logger.info(
        "Find-by-face request received",
        dimension=len(request.faceEmbedding or []),
        threshold=request.threshold,
        correlation_id=correlation_id
    )

    try:
        result = await service.find_best_match(request.faceEmbedding, threshold=request.threshold)

    except InvalidInputError as e:
        logger.warning("Find-by-face rejected", error=str(e), correlation_id=correlation_id)
        raise api_error(status.HTTP_400_BAD_REQUEST, "InvalidInput", str(e), correlation_id)

    except Exception as e:
        logger.error(
            "Unexpected find-by-face error",
            error=str(e),
            error_type=type(e).__name__,
            correlation_id=correlation_id
        )
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "InternalServerError",
                        "Error processing face recognition", correlation_id)

    record_match_metrics(
        matched=result.is_match,
        processing_time=time.time() - start_time,
        similarity_score=result.similarity if result.is_match else None,
        candidates_evaluated=result.candidates_evaluated
    )

    logger.info(
        "Find-by-face completed",
        matched=result.is_match,
        patient_id=result.patient.id if result.patient else None,
        similarity=result.similarity,
        candidates_evaluated=result.candidates_evaluated,
        correlation_id=correlation_id
    )

    return PatientFaceMatchResponse(
        patient=PatientResponse.from_record(result.patient) if result.patient else None,
        similarity=result.similarity,
        isMatch=result.is_match,
        message=result.message
    )


@router.post("/{patient_id}/verify-identity", response_model=FaceVerificationResponse)
@trace_function("verify_identity_endpoint")
async def verify_patient_identity(
    patient_id: int,
    request: FaceEmbeddingRequest,
    http_request: Request,
    service: MatchService = Depends(get_match_service)
) -> FaceVerificationResponse:
    """
    Verify that a captured face embedding belongs to the claimed patient.

    Args:
        patient_id: Claimed patient ID
        request: Captured face embedding and optional threshold override
        http_request: HTTP request for correlation ID extraction

    Returns:
        FaceVerificationResponse with decision, similarity and threshold used

    Raises:
        HTTPException: 404 unknown patient, 400 missing reference or invalid input
    """
    correlation_id = get_correlation_id(http_request)
    start_time = time.time()

    logger.info(
        "Verification request received",
        patient_id=patient_id,
        dimension=len(request.faceEmbedding or []),
        threshold=request.threshold,
        correlation_id=correlation_id
    )

    try:
        result = await service.verify(patient_id, request.faceEmbedding, threshold=request.threshold)

    except (PatientNotFoundError, NoReferenceEmbeddingError, InvalidInputError) as e:
        if isinstance(e, PatientNotFoundError):
            status_code, error_type = status.HTTP_404_NOT_FOUND, "NotFound"
        elif isinstance(e, NoReferenceEmbeddingError):
            status_code, error_type = status.HTTP_400_BAD_REQUEST, "NoReferenceEmbedding"
        else:
            status_code, error_type = status.HTTP_400_BAD_REQUEST, "InvalidInput"

        record_verification_metrics(
            verified=False,
            processing_time=time.time() - start_time,
            similarity_score=None,
            outcome=error_type
        )
        logger.warning(
            "Verification rejected",
            patient_id=patient_id,
            error=str(e),
            error_type=error_type,
            correlation_id=correlation_id
        )
        raise api_error(status_code, error_type, str(e), correlation_id)

    except Exception as e:
        logger.error(
            "Unexpected verification error",
            patient_id=patient_id,
            error=str(e),
            error_type=type(e).__name__,
            correlation_id=correlation_id
        )
        raise api_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "InternalServerError",
                        "Error during identity verification", correlation_id)

    record_verification_metrics(
        verified=result.is_verified,
        processing_time=time.time() - start_time,
        similarity_score=result.similarity,
        outcome="verified" if result.is_verified else "rejected"
    )

    logger.info(
        "Verification completed",
        patient_id=patient_id,
        verified=result.is_verified,
        similarity=result.similarity,
        threshold=result.threshold,
        correlation_id=correlation_id
    )

    return FaceVerificationResponse(
        patientId=result.patient_id,
        patientName=result.patient_name,
        isVerified=result.is_verified,
        similarity=result.similarity,
        threshold=result.threshold,
        message=result.message
    )
