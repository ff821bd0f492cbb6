"""
Embedding serialization utilities for the patient record store.

Stored face embeddings are JSON arrays of decimal numbers, for example
``"[0.12, -0.33, 0.87]"``. This module provides functions for:
- Decoding stored embeddings into a tagged ok/skip outcome (read path)
- Strictly parsing client-supplied embeddings (write path)
- Encoding vectors back into their stored text form
"""

import json
import math
from numbers import Real
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from src.models.internal_models import DecodedEmbedding


class EmbeddingFormatError(ValueError):
    """Raised when a client-supplied embedding is not a valid numeric array."""
    pass


def _coerce_values(values: Any) -> Tuple[Optional[List[float]], Optional[str]]:
    """Return (floats, None) for a usable numeric array, else (None, reason)."""
    if not isinstance(values, (list, tuple)):
        return None, f"expected a JSON array, got {type(values).__name__}"

    if len(values) == 0:
        return None, "embedding array is empty"

    floats = []
    for index, value in enumerate(values):
        # bool is an int subclass; true/false are not embedding values
        if isinstance(value, bool) or not isinstance(value, Real):
            return None, f"element {index} is not a number"
        try:
            value = float(value)
        except OverflowError:
            # JSON integers are unbounded
            return None, f"element {index} is not finite"
        if not math.isfinite(value):
            return None, f"element {index} is not finite"
        floats.append(value)

    return floats, None


def decode_embedding(raw: Any) -> DecodedEmbedding:
    """
    Decode a stored embedding without raising.

    Args:
        raw: JSON array text, or an already-parsed list (jsonb columns)

    Returns:
        DecodedEmbedding holding the vector, or a skip reason
    """
    if raw is None:
        return DecodedEmbedding.skip("no embedding stored")

    if isinstance(raw, str):
        if not raw.strip():
            return DecodedEmbedding.skip("no embedding stored")
        try:
            raw = json.loads(raw)
        except ValueError as e:
            return DecodedEmbedding.skip(f"invalid JSON: {e}")

    values, reason = _coerce_values(raw)
    if values is None:
        return DecodedEmbedding.skip(reason)

    return DecodedEmbedding(vector=np.asarray(values, dtype=np.float64))


def parse_embedding_text(raw: str) -> List[float]:
    """
    Parse an embedding supplied by a client.

    Raises:
        EmbeddingFormatError: If the text is not a non-empty JSON array of numbers
    """
    try:
        parsed = json.loads(raw)
    except ValueError:
        raise EmbeddingFormatError("Face embedding must be a valid JSON array of numbers")

    values, reason = _coerce_values(parsed)
    if values is None:
        raise EmbeddingFormatError(f"Invalid face embedding format: {reason}")
    return values


def encode_embedding(values: Sequence[float]) -> str:
    """Serialize an embedding into its stored JSON array text."""
    return json.dumps([float(v) for v in values])
