"""Data models for the face match microservice."""

from .api_models import (
    PatientCreateRequest,
    PatientUpdateRequest,
    PatientResponse,
    FaceEmbeddingRequest,
    PatientFaceMatchResponse,
    FaceVerificationResponse,
    HealthResponse,
    ErrorResponse,
    HTTPErrorResponse,
    ERROR_RESPONSES
)
from .internal_models import (
    IdentityRecord,
    DecodedEmbedding,
    MatchResult,
    VerificationResult
)

__all__ = [
    "PatientCreateRequest",
    "PatientUpdateRequest",
    "PatientResponse",
    "FaceEmbeddingRequest",
    "PatientFaceMatchResponse",
    "FaceVerificationResponse",
    "HealthResponse",
    "ErrorResponse",
    "HTTPErrorResponse",
    "ERROR_RESPONSES",
    "IdentityRecord",
    "DecodedEmbedding",
    "MatchResult",
    "VerificationResult"
]
