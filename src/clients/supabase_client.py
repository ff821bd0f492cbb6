"""Supabase client for patient record storage."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from supabase import create_client, Client
from postgrest.exceptions import APIError

from ..config import settings
from ..models.internal_models import IdentityRecord
from .patient_store import InMemoryPatientStore, PatientStore

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Client for Supabase database operations."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        """Initialize Supabase client with configuration."""
        self._client: Optional[Client] = None
        self._url = url or settings.supabase_url
        self._key = key or settings.supabase_anon_key

    @property
    def client(self) -> Client:
        """Get or create Supabase client instance."""
        if self._client is None:
            self._client = create_client(self._url, self._key)
        return self._client


def _row_to_record(row: Dict[str, Any]) -> IdentityRecord:
    embedding = row.get("face_embedding")
    # jsonb columns come back already parsed; keep the stored text form
    if embedding is not None and not isinstance(embedding, str):
        embedding = json.dumps(embedding)

    return IdentityRecord(
        id=row["id"],
        name=row["name"],
        face_embedding=embedding
    )


class PatientRepository:
    """Repository for patient database operations."""

    def __init__(self, supabase_client: SupabaseClient, table: Optional[str] = None):
        """Initialize repository with Supabase client."""
        self.client = supabase_client
        self.table = table or settings.patients_table

    def _table(self):
        return self.client.client.table(self.table)

    async def list_all(self) -> List[IdentityRecord]:
        """Retrieve all patients ordered by ID."""
        try:
            result = self._table().select("*").order("id").execute()
            return [_row_to_record(row) for row in result.data]

        except APIError as e:
            logger.error(f"Database error listing patients: {e}")
            raise

    async def list_all_with_embedding(self) -> List[IdentityRecord]:
        """Retrieve patients that have a stored face embedding, ordered by ID."""
        try:
            result = (
                self._table()
                .select("*")
                .not_.is_("face_embedding", "null")
                .neq("face_embedding", "")
                .order("id")
                .execute()
            )
            return [_row_to_record(row) for row in result.data]

        except APIError as e:
            logger.error(f"Database error listing patients with embeddings: {e}")
            raise

    async def get_by_id(self, patient_id: int) -> Optional[IdentityRecord]:
        """Retrieve patient by ID."""
        try:
            result = self._table().select("*").eq("id", patient_id).execute()

            if not result.data:
                return None

            return _row_to_record(result.data[0])

        except APIError as e:
            logger.error(f"Database error retrieving patient {patient_id}: {e}")
            raise

    async def create(self, record: IdentityRecord) -> IdentityRecord:
        """Insert a new patient; the database assigns the ID."""
        try:
            result = self._table().insert({
                "name": record.name,
                "face_embedding": record.face_embedding
            }).execute()

            if not result.data:
                raise ValueError("Failed to create patient")

            created = _row_to_record(result.data[0])
            logger.info(f"Successfully created patient {created.id}")
            return created

        except APIError as e:
            logger.error(f"Database error creating patient: {e}")
            raise

    async def update(self, record: IdentityRecord) -> Optional[IdentityRecord]:
        """Replace an existing patient's fields."""
        try:
            result = self._table().update({
                "name": record.name,
                "face_embedding": record.face_embedding
            }).eq("id", record.id).execute()

            if not result.data:
                logger.warning(f"Patient {record.id} not found for update")
                return None

            logger.info(f"Successfully updated patient {record.id}")
            return _row_to_record(result.data[0])

        except APIError as e:
            logger.error(f"Database error updating patient {record.id}: {e}")
            raise

    async def delete(self, patient_id: int) -> bool:
        """Delete patient by ID."""
        try:
            result = self._table().delete().eq("id", patient_id).execute()

            success = len(result.data) > 0
            if success:
                logger.info(f"Successfully deleted patient {patient_id}")
            else:
                logger.warning(f"Patient {patient_id} not found for deletion")

            return success

        except APIError as e:
            logger.error(f"Database error deleting patient {patient_id}: {e}")
            raise

    async def health_check(self) -> bool:
        """Check if database connection is healthy."""
        try:
            self._table().select("id", count="exact").limit(0).execute()
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


def create_patient_store(backend: Optional[str] = None) -> PatientStore:
    """Build the patient store for the configured backend."""
    backend = backend or settings.record_store_backend
    if backend == "supabase":
        return PatientRepository(SupabaseClient())
    if backend == "memory":
        return InMemoryPatientStore()
    raise ValueError(f"Unknown record store backend: {backend}")


class DatabaseManager:
    """High-level database manager that owns the patient store."""

    def __init__(self, patients: Optional[PatientStore] = None,
                 max_retries: Optional[int] = None, base_delay: Optional[float] = None):
        """Initialize database manager with a patient store and retry policy."""
        self.patients = patients if patients is not None else create_patient_store()
        self.max_retries = settings.store_max_retries if max_retries is None else max_retries
        self.base_delay = settings.store_retry_base_delay if base_delay is None else base_delay

    async def health_check(self) -> bool:
        """Check overall database health."""
        return await self.patients.health_check()

    async def retry_operation(self, operation, max_retries: Optional[int] = None,
                              base_delay: Optional[float] = None):
        """Retry database operations with exponential backoff."""
        max_retries = self.max_retries if max_retries is None else max_retries
        base_delay = self.base_delay if base_delay is None else base_delay
        last_exception = None

        for attempt in range(max_retries):
            try:
                return await operation()
            except Exception as e:
                last_exception = e
                if attempt < max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(f"Database operation failed (attempt {attempt + 1}/{max_retries}), retrying in {delay}s: {e}")
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Database operation failed after {max_retries} attempts: {e}")

        raise last_exception
