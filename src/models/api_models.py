"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .internal_models import IdentityRecord


class PatientCreateRequest(BaseModel):
    """Request model for creating a patient record."""

    name: str = Field(..., min_length=1, max_length=200, description="Patient display name")
    faceEmbedding: Optional[str] = Field(
        None,
        description="Reference face embedding as a JSON array of numbers"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Jane Doe",
                "faceEmbedding": "[0.12, -0.33, 0.87]"
            }
        }
    )


class PatientUpdateRequest(PatientCreateRequest):
    """Request model for replacing a patient record."""

    id: int = Field(..., description="Patient ID, must match the path ID")


class PatientResponse(BaseModel):
    """Response model for a patient record."""

    id: int
    name: str
    faceEmbedding: Optional[str] = None

    @classmethod
    def from_record(cls, record: IdentityRecord) -> "PatientResponse":
        return cls(id=record.id, name=record.name, faceEmbedding=record.face_embedding)


class FaceEmbeddingRequest(BaseModel):
    """Request model carrying a freshly captured face embedding."""

    faceEmbedding: Optional[List[float]] = Field(
        None,
        description="Face embedding produced by the upstream face model"
    )
    threshold: Optional[float] = Field(
        None,
        ge=-1.0,
        le=1.0,
        description="Similarity threshold override; defaults to the configured threshold"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "faceEmbedding": [0.12, -0.33, 0.87],
                "threshold": 0.6
            }
        }
    )


class PatientFaceMatchResponse(BaseModel):
    """Response model for the find-by-face endpoint."""

    patient: Optional[PatientResponse] = Field(None, description="Best matching patient, if any")
    similarity: float = Field(..., description="Cosine similarity of the best match")
    isMatch: bool = Field(..., description="Whether a patient met the threshold")
    message: str = Field("", description="Human-readable match result message")


class FaceVerificationResponse(BaseModel):
    """Response model for the verify-identity endpoint."""

    patientId: int
    patientName: str
    isVerified: bool
    similarity: float
    threshold: float
    message: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "patientId": 1,
                "patientName": "Jane Doe",
                "isVerified": True,
                "similarity": 0.91,
                "threshold": 0.6,
                "message": "Identity verified successfully"
            }
        }
    )


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field("1.0.0", description="Service version")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    correlation_id: str = Field(..., description="Request correlation ID for tracing")
    timestamp: datetime = Field(..., description="Error timestamp")


class HTTPErrorResponse(BaseModel):
    """Error body as raised through HTTPException."""

    detail: ErrorResponse


# OpenAPI documentation for the error statuses the patient routes raise
ERROR_RESPONSES = {
    400: {"model": HTTPErrorResponse, "description": "Invalid input or missing reference embedding"},
    404: {"model": HTTPErrorResponse, "description": "Patient not found"},
    500: {"model": HTTPErrorResponse, "description": "Unexpected server error"},
}
