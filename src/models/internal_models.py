"""Internal data models for the face match microservice."""

from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class IdentityRecord:
    """Patient identity as held by the record store."""

    name: str
    face_embedding: Optional[str] = None  # JSON array text, e.g. "[0.12, -0.33]"
    id: Optional[int] = None  # Store-generated ID

    @property
    def has_embedding(self) -> bool:
        return bool(self.face_embedding and self.face_embedding.strip())


@dataclass(frozen=True)
class DecodedEmbedding:
    """Outcome of decoding a stored embedding: a vector, or a reason to skip it."""

    vector: Optional[np.ndarray] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.vector is not None

    @classmethod
    def skip(cls, reason: str) -> "DecodedEmbedding":
        return cls(vector=None, reason=reason)


@dataclass
class MatchResult:
    """Result of a best-match search over all enrolled patients."""

    patient: Optional[IdentityRecord]
    similarity: float
    is_match: bool
    message: str = ""
    candidates_evaluated: int = 0


@dataclass
class VerificationResult:
    """Result of verifying a face embedding against one claimed patient."""

    patient_id: int
    patient_name: str
    is_verified: bool
    similarity: float
    threshold: float
    message: str
