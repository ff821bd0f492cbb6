"""
Face matching service for patient identification and identity verification.

This module provides the core business logic for:
- Finding the enrolled patient whose stored face embedding best matches a
  newly captured embedding
- Verifying a newly captured embedding against one claimed patient

Candidates are scored in the order the record store enumerates them. The
running best is only replaced by a strictly greater score, so when two
patients tie on the top score the one enumerated first wins.
"""

import logging
from typing import Iterable, Optional, Sequence

import numpy as np

from src.clients.supabase_client import DatabaseManager
from src.models.internal_models import IdentityRecord, MatchResult, VerificationResult
from src.services.embedding_service import EmbeddingService, get_embedding_service
from src.utils.embedding_codec import decode_embedding
from src.config import settings

logger = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "No matching patient found"
MATCH_MESSAGE = "Matching patient found"


class MatchError(Exception):
    """Base exception for face matching errors."""
    pass


class InvalidInputError(MatchError):
    """Raised when the query embedding is missing, empty or incompatible."""
    pass


class PatientNotFoundError(MatchError):
    """Raised when the claimed patient does not exist."""
    pass


class NoReferenceEmbeddingError(MatchError):
    """Raised when the claimed patient has no usable stored embedding."""
    pass


def _validate_query(query: Optional[Sequence[float]], embedding_service: EmbeddingService,
                    message: str = "Face embedding data is required") -> np.ndarray:
    if query is None or len(query) == 0:
        raise InvalidInputError(message)
    if not embedding_service.validate_embedding(query):
        raise InvalidInputError("Face embedding must be a flat array of finite numbers")
    return np.asarray(query, dtype=np.float64)


def select_best_match(
    query: Optional[Sequence[float]],
    candidates: Iterable[IdentityRecord],
    threshold: float,
    embedding_service: Optional[EmbeddingService] = None
) -> MatchResult:
    """
    Select the candidate whose embedding is most similar to the query.

    Candidates without a decodable embedding, or whose embedding dimension
    differs from the query's, are skipped. Only scores at or above the
    threshold qualify; ties keep the earliest candidate.

    Args:
        query: Captured face embedding
        candidates: Patient records in store enumeration order
        threshold: Minimum similarity for a match

    Returns:
        MatchResult for the best qualifying candidate, or a no-match result

    Raises:
        InvalidInputError: If the query is absent or empty
    """
    embedding_service = embedding_service or get_embedding_service()
    query_vector = _validate_query(query, embedding_service)

    best_record: Optional[IdentityRecord] = None
    best_similarity: Optional[float] = None
    evaluated = 0

    for candidate in candidates:
        decoded = decode_embedding(candidate.face_embedding)
        if not decoded.ok:
            logger.debug(f"Skipping patient {candidate.id}: {decoded.reason}")
            continue

        if decoded.vector.shape != query_vector.shape:
            logger.debug(
                f"Skipping patient {candidate.id}: dimension {decoded.vector.shape[0]} "
                f"!= query dimension {query_vector.shape[0]}"
            )
            continue

        evaluated += 1
        similarity = embedding_service.compute_cosine_similarity(query_vector, decoded.vector)

        if similarity >= threshold and (best_similarity is None or similarity > best_similarity):
            best_record = candidate
            best_similarity = similarity

    if best_record is None:
        return MatchResult(
            patient=None,
            similarity=0.0,
            is_match=False,
            message=NO_MATCH_MESSAGE,
            candidates_evaluated=evaluated
        )

    return MatchResult(
        patient=best_record,
        similarity=best_similarity,
        is_match=True,
        message=MATCH_MESSAGE,
        candidates_evaluated=evaluated
    )


def evaluate_verification(
    record: IdentityRecord,
    query: Optional[Sequence[float]],
    threshold: float,
    embedding_service: Optional[EmbeddingService] = None
) -> VerificationResult:
    """
    Decide whether the query embedding matches a patient's stored embedding.

    Raises:
        NoReferenceEmbeddingError: If the record has no usable embedding
        InvalidInputError: If the query is empty or its dimension differs
    """
    embedding_service = embedding_service or get_embedding_service()

    decoded = decode_embedding(record.face_embedding)
    if not decoded.ok:
        logger.info(f"Patient {record.id} has no usable reference embedding: {decoded.reason}")
        raise NoReferenceEmbeddingError("Patient has no stored face embedding for verification")

    query_vector = _validate_query(query, embedding_service,
                                   message="Face embedding data is required for verification")

    if query_vector.shape != decoded.vector.shape:
        raise InvalidInputError(
            f"Face embedding dimension {query_vector.shape[0]} does not match "
            f"stored embedding dimension {decoded.vector.shape[0]}"
        )

    similarity = embedding_service.compute_cosine_similarity(query_vector, decoded.vector)
    is_verified = similarity >= threshold

    if is_verified:
        message = "Identity verified successfully"
    else:
        message = f"Identity verification failed: similarity {similarity:.3f} below threshold {threshold}"

    return VerificationResult(
        patient_id=record.id,
        patient_name=record.name,
        is_verified=is_verified,
        similarity=similarity,
        threshold=threshold,
        message=message
    )


class MatchService:
    """
    Face matching service over the patient record store.

    Read-only with respect to the store: neither operation mutates records.
    Store reads go through DatabaseManager.retry_operation; a failure that
    outlasts the retries propagates to the caller.
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None,
                 threshold: Optional[float] = None):
        """
        Initialize match service.

        Args:
            db_manager: Database manager instance. If None, creates a new one.
            threshold: Default similarity threshold. If None, uses settings.
        """
        self.db = db_manager or DatabaseManager()
        self.embedding_service = get_embedding_service()
        self.threshold = settings.face_match_threshold if threshold is None else threshold

        logger.info(f"Match service initialized with face match threshold: {self.threshold}")

    def _resolve_threshold(self, threshold: Optional[float]) -> float:
        return self.threshold if threshold is None else threshold

    async def find_best_match(self, query: Optional[Sequence[float]],
                              threshold: Optional[float] = None) -> MatchResult:
        """
        Find the enrolled patient that best matches a captured face embedding.

        Args:
            query: Captured face embedding
            threshold: Per-call threshold override

        Returns:
            MatchResult describing the best match or its absence

        Raises:
            InvalidInputError: If the query is absent or empty
        """
        threshold = self._resolve_threshold(threshold)

        # Reject bad queries before touching the store
        _validate_query(query, self.embedding_service)

        candidates = await self.db.retry_operation(self.db.patients.list_all_with_embedding)
        logger.info(f"Searching {len(candidates)} enrolled patients, threshold={threshold}")

        result = select_best_match(query, candidates, threshold, self.embedding_service)

        if result.is_match:
            logger.info(
                f"Best match patient {result.patient.id}: similarity={result.similarity:.4f} "
                f"({result.candidates_evaluated} candidates scored)"
            )
        else:
            logger.info(f"No patient met threshold {threshold} ({result.candidates_evaluated} candidates scored)")

        return result

    async def verify(self, patient_id: int, query: Optional[Sequence[float]],
                     threshold: Optional[float] = None) -> VerificationResult:
        """
        Verify a captured face embedding against a claimed patient.

        Args:
            patient_id: Claimed patient ID
            query: Captured face embedding
            threshold: Per-call threshold override

        Returns:
            VerificationResult carrying the decision, score and threshold

        Raises:
            PatientNotFoundError: If no patient has that ID
            NoReferenceEmbeddingError: If the patient has no usable embedding
            InvalidInputError: If the query is empty or its dimension differs
        """
        threshold = self._resolve_threshold(threshold)

        record = await self.db.retry_operation(lambda: self.db.patients.get_by_id(patient_id))
        if record is None:
            logger.warning(f"Patient {patient_id} not found for verification")
            raise PatientNotFoundError("Patient not found")

        result = evaluate_verification(record, query, threshold, self.embedding_service)

        logger.info(
            f"Face verification for patient {patient_id}: similarity={result.similarity:.4f}, "
            f"threshold={threshold}, verified={result.is_verified}"
        )
        return result


# Global service instance
_match_service: Optional[MatchService] = None


def get_match_service() -> MatchService:
    """
    Get the global match service instance.

    Returns:
        MatchService: The global match service instance
    """
    global _match_service
    if _match_service is None:
        _match_service = MatchService()
    return _match_service
