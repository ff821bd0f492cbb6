"""
Tests for the face match service.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from src.clients.patient_store import InMemoryPatientStore
from src.clients.supabase_client import DatabaseManager
from src.models.internal_models import IdentityRecord
from src.services.match_service import (
    InvalidInputError,
    MatchError,
    MatchService,
    NoReferenceEmbeddingError,
    PatientNotFoundError,
    evaluate_verification,
    get_match_service,
    select_best_match,
)
from src.utils.embedding_codec import encode_embedding

from tests.conftest import unit_vector_with_score


def record_with_score(patient_id: int, score: float) -> IdentityRecord:
    """Patient whose embedding scores `score` against the query [1, 0]."""
    return IdentityRecord(
        id=patient_id,
        name=f"Patient {patient_id}",
        face_embedding=encode_embedding(unit_vector_with_score(score))
    )


class TestSelectBestMatch:
    """Tests for the best-match selection policy."""

    def test_empty_candidates(self, query_embedding):
        result = select_best_match(query_embedding, [], threshold=0.6)

        assert not result.is_match
        assert result.patient is None
        assert result.similarity == 0.0
        assert result.message == "No matching patient found"
        assert result.candidates_evaluated == 0

    @pytest.mark.parametrize("query", [None, []])
    def test_empty_query(self, query):
        with pytest.raises(InvalidInputError, match="Face embedding data is required"):
            select_best_match(query, [record_with_score(1, 0.9)], threshold=0.6)

    def test_non_finite_query(self):
        with pytest.raises(InvalidInputError):
            select_best_match([float("nan"), 1.0], [record_with_score(1, 0.9)], threshold=0.6)

    def test_highest_score_wins_regardless_of_position(self, query_embedding):
        a, b, c = record_with_score(1, 0.9), record_with_score(2, 0.9), record_with_score(3, 0.95)

        result = select_best_match(query_embedding, [a, b, c], threshold=0.6)

        assert result.is_match
        assert result.patient.id == 3
        assert result.similarity == pytest.approx(0.95)
        assert result.candidates_evaluated == 3

    def test_exact_tie_first_seen_wins(self, query_embedding):
        a, b = record_with_score(1, 0.9), record_with_score(2, 0.9)

        assert select_best_match(query_embedding, [a, b], threshold=0.6).patient.id == 1
        assert select_best_match(query_embedding, [b, a], threshold=0.6).patient.id == 2

    def test_all_below_threshold(self, query_embedding):
        candidates = [record_with_score(1, 0.5), record_with_score(2, 0.3)]

        result = select_best_match(query_embedding, candidates, threshold=0.6)

        assert not result.is_match
        assert result.patient is None
        assert result.similarity == 0.0
        assert result.candidates_evaluated == 2

    def test_score_equal_to_threshold_qualifies(self, query_embedding):
        candidate = IdentityRecord(id=1, name="Exact", face_embedding="[3, 4]")

        result = select_best_match(query_embedding, [candidate], threshold=0.6)

        assert result.is_match
        assert result.similarity == 0.6

    def test_negative_threshold_accepts_negative_scores(self, query_embedding):
        candidate = IdentityRecord(id=1, name="Opposite", face_embedding="[-1.0, 0.0]")

        result = select_best_match(query_embedding, [candidate], threshold=-1.0)

        assert result.is_match
        assert result.similarity == -1.0

    def test_malformed_and_mismatched_candidates_skipped(self, query_embedding, patient_records):
        """Bad stored data removes a candidate without aborting the search."""
        result = select_best_match(query_embedding, patient_records, threshold=0.6)

        assert result.is_match
        assert result.patient.id == 4
        assert result.similarity == pytest.approx(0.92)
        # Only Alice and Dan have decodable 2-D embeddings
        assert result.candidates_evaluated == 2

    def test_only_ineligible_candidates(self, query_embedding):
        candidates = [
            IdentityRecord(id=1, name="No embedding"),
            IdentityRecord(id=2, name="Garbage", face_embedding="[1, 2"),
            IdentityRecord(id=3, name="Wrong size", face_embedding="[1.0]"),
        ]

        result = select_best_match(query_embedding, candidates, threshold=0.6)

        assert not result.is_match
        assert result.candidates_evaluated == 0

    def test_zero_vector_candidate_scores_zero(self, query_embedding):
        candidate = IdentityRecord(id=1, name="Zero", face_embedding="[0.0, 0.0]")

        assert not select_best_match(query_embedding, [candidate], threshold=0.6).is_match
        assert select_best_match(query_embedding, [candidate], threshold=0.0).is_match

    def test_candidate_with_out_of_range_integer_skipped(self, query_embedding):
        """A stored integer beyond the float range skips that candidate only."""
        overflowing = IdentityRecord(id=1, name="Overflow", face_embedding="[1" + "0" * 400 + ", 0]")
        good = record_with_score(2, 0.8)

        result = select_best_match(query_embedding, [overflowing, good], threshold=0.6)

        assert result.patient is good
        assert result.candidates_evaluated == 1

    def test_extreme_magnitude_candidate(self, query_embedding):
        candidate = IdentityRecord(id=1, name="Huge", face_embedding="[1e200, 1e200]")

        result = select_best_match(query_embedding, [candidate], threshold=0.6)

        assert result.is_match
        assert result.similarity == pytest.approx(2 ** -0.5)


class TestEvaluateVerification:
    """Tests for the verification decision rule."""

    def test_verified_at_exact_threshold(self, query_embedding):
        record = IdentityRecord(id=7, name="Grace Green", face_embedding="[3, 4]")

        result = evaluate_verification(record, query_embedding, threshold=0.6)

        assert result.is_verified
        assert result.similarity == 0.6
        assert result.threshold == 0.6
        assert result.patient_id == 7
        assert result.patient_name == "Grace Green"
        assert result.message == "Identity verified successfully"

    def test_rejected_below_threshold(self, query_embedding):
        record = record_with_score(7, 0.5)

        result = evaluate_verification(record, query_embedding, threshold=0.6)

        assert not result.is_verified
        assert result.similarity == pytest.approx(0.5)
        assert result.threshold == 0.6
        assert "below threshold 0.6" in result.message

    @pytest.mark.parametrize("stored", [None, "", "[]", "oops"])
    def test_no_reference_embedding(self, query_embedding, stored):
        record = IdentityRecord(id=7, name="Grace Green", face_embedding=stored)

        with pytest.raises(NoReferenceEmbeddingError):
            evaluate_verification(record, query_embedding, threshold=0.6)

    def test_empty_query(self):
        record = record_with_score(7, 0.9)

        with pytest.raises(InvalidInputError, match="required for verification"):
            evaluate_verification(record, [], threshold=0.6)

    def test_dimension_mismatch(self):
        record = record_with_score(7, 0.9)

        with pytest.raises(InvalidInputError, match="does not match stored embedding dimension 2"):
            evaluate_verification(record, [1.0, 0.0, 0.0], threshold=0.6)


class TestMatchService:
    """Tests for MatchService workflows over a record store."""

    @pytest.mark.asyncio
    async def test_find_best_match(self, match_service, query_embedding):
        result = await match_service.find_best_match(query_embedding)

        assert result.is_match
        assert result.patient.id == 4
        assert result.patient.name == "Dan Davis"

    @pytest.mark.asyncio
    async def test_find_best_match_threshold_override(self, match_service, query_embedding):
        result = await match_service.find_best_match(query_embedding, threshold=0.95)

        assert not result.is_match
        assert result.similarity == 0.0

    @pytest.mark.asyncio
    async def test_find_best_match_empty_store(self, query_embedding):
        service = MatchService(db_manager=DatabaseManager(patients=InMemoryPatientStore()), threshold=0.6)

        result = await service.find_best_match(query_embedding)

        assert not result.is_match
        assert result.similarity == 0.0

    @pytest.mark.asyncio
    async def test_find_best_match_rejects_empty_query_before_store(self):
        store = Mock()
        store.list_all_with_embedding = AsyncMock(return_value=[])
        service = MatchService(db_manager=DatabaseManager(patients=store), threshold=0.6)

        with pytest.raises(InvalidInputError):
            await service.find_best_match([])

        store.list_all_with_embedding.assert_not_called()

    @pytest.mark.asyncio
    async def test_find_best_match_store_failure_propagates(self, query_embedding):
        store = Mock()
        store.list_all_with_embedding = AsyncMock(side_effect=ConnectionError("store unavailable"))
        service = MatchService(
            db_manager=DatabaseManager(patients=store, max_retries=3, base_delay=0.0),
            threshold=0.6
        )

        with pytest.raises(ConnectionError, match="store unavailable"):
            await service.find_best_match(query_embedding)

        assert store.list_all_with_embedding.await_count == 3

    @pytest.mark.asyncio
    async def test_find_best_match_retries_transient_store_failure(self, query_embedding):
        store = Mock()
        store.list_all_with_embedding = AsyncMock(
            side_effect=[ConnectionError("store unavailable"), [record_with_score(7, 0.9)]]
        )
        service = MatchService(db_manager=DatabaseManager(patients=store, base_delay=0.0), threshold=0.6)

        result = await service.find_best_match(query_embedding)

        assert result.is_match
        assert result.patient.id == 7
        assert store.list_all_with_embedding.await_count == 2

    @pytest.mark.asyncio
    async def test_verify_retries_transient_store_failure(self, query_embedding):
        store = Mock()
        store.get_by_id = AsyncMock(side_effect=[TimeoutError("slow"), record_with_score(7, 0.9)])
        service = MatchService(db_manager=DatabaseManager(patients=store, base_delay=0.0), threshold=0.6)

        result = await service.verify(7, query_embedding)

        assert result.is_verified
        assert store.get_by_id.await_count == 2
        store.get_by_id.assert_awaited_with(7)

    @pytest.mark.asyncio
    async def test_verify_success(self, match_service, query_embedding):
        result = await match_service.verify(4, query_embedding)

        assert result.is_verified
        assert result.patient_name == "Dan Davis"
        assert result.threshold == 0.6

    @pytest.mark.asyncio
    async def test_verify_unknown_patient_ignores_query(self, match_service):
        """NotFound is reported even when the query itself is invalid."""
        with pytest.raises(PatientNotFoundError, match="Patient not found"):
            await match_service.verify(999, [])

    @pytest.mark.asyncio
    async def test_verify_no_reference_embedding(self, match_service, query_embedding):
        with pytest.raises(NoReferenceEmbeddingError):
            await match_service.verify(2, query_embedding)

    @pytest.mark.asyncio
    async def test_verify_dimension_mismatch(self, match_service, query_embedding):
        with pytest.raises(InvalidInputError):
            await match_service.verify(5, query_embedding)

    @pytest.mark.asyncio
    async def test_verify_does_not_mutate_store(self, match_service, patient_store, query_embedding):
        before = await patient_store.list_all()

        await match_service.verify(1, query_embedding)
        await match_service.find_best_match(query_embedding)

        assert await patient_store.list_all() == before

    def test_errors_share_base_class(self):
        for error in (InvalidInputError, PatientNotFoundError, NoReferenceEmbeddingError):
            assert issubclass(error, MatchError)

    def test_default_threshold_from_settings(self, patient_store):
        service = MatchService(db_manager=DatabaseManager(patients=patient_store))
        assert service.threshold == 0.6

    def test_get_match_service_singleton(self, monkeypatch):
        monkeypatch.setattr("src.services.match_service._match_service", None)

        assert get_match_service() is get_match_service()
