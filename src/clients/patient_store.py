"""
Patient record store interface and in-memory implementation.

The matching service only depends on the ``PatientStore`` protocol, so it
runs equally against Supabase or the in-memory store used for local
development and tests.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Protocol, runtime_checkable

from src.models.internal_models import IdentityRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class PatientStore(Protocol):
    """Operations the service needs from a patient record store."""

    async def list_all(self) -> List[IdentityRecord]:
        ...

    async def list_all_with_embedding(self) -> List[IdentityRecord]:
        """Records with a non-empty embedding field, in ascending ID order."""
        ...

    async def get_by_id(self, patient_id: int) -> Optional[IdentityRecord]:
        ...

    async def create(self, record: IdentityRecord) -> IdentityRecord:
        ...

    async def update(self, record: IdentityRecord) -> Optional[IdentityRecord]:
        """Replace a record; None when no record has that ID."""
        ...

    async def delete(self, patient_id: int) -> bool:
        ...

    async def health_check(self) -> bool:
        ...


class InMemoryPatientStore:
    """Patient store kept in process memory."""

    def __init__(self, records: Optional[List[IdentityRecord]] = None):
        """
        Initialize the store, optionally seeded with records.

        Seed records without an ID are assigned the next free ID.
        """
        self._records: Dict[int, IdentityRecord] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

        for record in records or []:
            self._insert(record)

    def _insert(self, record: IdentityRecord) -> IdentityRecord:
        patient_id = record.id if record.id is not None else self._next_id
        if patient_id in self._records:
            raise ValueError(f"Patient {patient_id} already exists")

        stored = replace(record, id=patient_id)
        self._records[patient_id] = stored
        self._next_id = max(self._next_id, patient_id + 1)
        return replace(stored)

    async def list_all(self) -> List[IdentityRecord]:
        return [replace(self._records[key]) for key in sorted(self._records)]

    async def list_all_with_embedding(self) -> List[IdentityRecord]:
        return [record for record in await self.list_all() if record.has_embedding]

    async def get_by_id(self, patient_id: int) -> Optional[IdentityRecord]:
        record = self._records.get(patient_id)
        return replace(record) if record is not None else None

    async def create(self, record: IdentityRecord) -> IdentityRecord:
        async with self._lock:
            created = self._insert(replace(record, id=None))
        logger.info(f"Successfully created patient {created.id}")
        return created

    async def update(self, record: IdentityRecord) -> Optional[IdentityRecord]:
        async with self._lock:
            if record.id not in self._records:
                logger.warning(f"Patient {record.id} not found for update")
                return None
            self._records[record.id] = replace(record)
        logger.info(f"Successfully updated patient {record.id}")
        return replace(record)

    async def delete(self, patient_id: int) -> bool:
        async with self._lock:
            removed = self._records.pop(patient_id, None)

        if removed is None:
            logger.warning(f"Patient {patient_id} not found for deletion")
            return False

        logger.info(f"Successfully deleted patient {patient_id}")
        return True

    async def health_check(self) -> bool:
        return True
