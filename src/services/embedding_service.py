"""
Embedding service for comparing face embeddings with cosine similarity.
"""

import logging
from typing import Optional, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)

Embedding = Union[np.ndarray, Sequence[float]]


class EmbeddingService:
    """Service for scoring face embeddings against each other."""

    def compute_cosine_similarity(self, embedding1: Embedding, embedding2: Embedding) -> float:
        """
        Compute cosine similarity between two embeddings.

        Embeddings of different length cannot be compared and score 0.0, as
        does any comparison involving a zero-norm embedding. The result is
        not clamped.

        Args:
            embedding1: First embedding vector
            embedding2: Second embedding vector

        Returns:
            float: Cosine similarity score between -1 and 1
        """
        a = np.asarray(embedding1, dtype=np.float64)
        b = np.asarray(embedding2, dtype=np.float64)

        if a.shape != b.shape:
            logger.debug(f"Embedding dimensions don't match: {a.shape} vs {b.shape}")
            return 0.0

        unit1 = self._to_unit(a)
        unit2 = self._to_unit(b)

        if unit1 is None or unit2 is None:
            return 0.0

        similarity = float(np.dot(unit1, unit2))
        logger.debug(f"Computed cosine similarity: {similarity}")
        return similarity

    @staticmethod
    def _to_unit(vector: np.ndarray) -> Optional[np.ndarray]:
        """Scale a vector to unit length, or None for a zero vector."""
        # Rescale by the largest component first so the norm neither
        # overflows nor underflows for extreme magnitudes
        scale = np.max(np.abs(vector)) if vector.size else 0.0
        if scale == 0:
            return None

        scaled = vector / scale
        return scaled / np.linalg.norm(scaled)

    def validate_embedding(self, embedding: Optional[Embedding]) -> bool:
        """
        Validate that an embedding is a non-empty, one-dimensional, finite vector.

        Args:
            embedding: Embedding vector to validate

        Returns:
            bool: True if embedding is valid, False otherwise
        """
        if embedding is None:
            return False

        try:
            vector = np.asarray(embedding, dtype=np.float64)
        except (TypeError, ValueError):
            return False

        if vector.ndim != 1 or vector.shape[0] == 0:
            return False

        return bool(np.isfinite(vector).all())


# Global instance for reuse across requests
_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service() -> EmbeddingService:
    """
    Get the global embedding service instance.

    Returns:
        EmbeddingService: The global embedding service instance
    """
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = EmbeddingService()
    return _embedding_service
