# Utilities module

from .embedding_codec import (
    EmbeddingFormatError,
    decode_embedding,
    encode_embedding,
    parse_embedding_text,
)

__all__ = [
    "EmbeddingFormatError",
    "decode_embedding",
    "encode_embedding",
    "parse_embedding_text",
]
