"""Client modules for patient record storage."""

from src.clients.patient_store import (
    PatientStore,
    InMemoryPatientStore
)

from src.clients.supabase_client import (
    SupabaseClient,
    PatientRepository,
    DatabaseManager,
    create_patient_store
)

__all__ = [
    "PatientStore",
    "InMemoryPatientStore",
    "SupabaseClient",
    "PatientRepository",
    "DatabaseManager",
    "create_patient_store"
]
