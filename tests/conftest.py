"""
Shared fixtures for the face match microservice tests.
"""

import math

import pytest

from src.clients.patient_store import InMemoryPatientStore
from src.clients.supabase_client import DatabaseManager
from src.models.internal_models import IdentityRecord
from src.services.match_service import MatchService
from src.utils.embedding_codec import encode_embedding


def unit_vector_with_score(score: float) -> list:
    """2-D unit vector whose cosine similarity with [1, 0] is `score`."""
    return [score, math.sqrt(1.0 - score * score)]


@pytest.fixture
def query_embedding():
    """Captured embedding used as the query in most tests."""
    return [1.0, 0.0]


@pytest.fixture
def patient_records():
    """Patients with a mix of usable, missing and malformed embeddings."""
    return [
        IdentityRecord(id=1, name="Alice Adams", face_embedding=encode_embedding(unit_vector_with_score(0.7))),
        IdentityRecord(id=2, name="Bob Brown", face_embedding=None),
        IdentityRecord(id=3, name="Carol Clark", face_embedding="not-json"),
        IdentityRecord(id=4, name="Dan Davis", face_embedding=encode_embedding(unit_vector_with_score(0.92))),
        IdentityRecord(id=5, name="Eve Evans", face_embedding="[1.0, 0.0, 0.0]"),
    ]


@pytest.fixture
def patient_store(patient_records):
    """In-memory store seeded with the sample patients."""
    return InMemoryPatientStore(patient_records)


@pytest.fixture
def match_service(patient_store):
    """Match service over the seeded in-memory store."""
    return MatchService(db_manager=DatabaseManager(patients=patient_store, base_delay=0.0), threshold=0.6)
