"""
Tests for the Supabase patient repository.
"""

import pytest
from unittest.mock import Mock, patch

from postgrest.exceptions import APIError

from src.clients.supabase_client import PatientRepository, SupabaseClient
from src.models.internal_models import IdentityRecord


class TestSupabaseClient:
    """Test cases for SupabaseClient."""

    @patch("src.clients.supabase_client.create_client")
    def test_client_created_lazily_once(self, mock_create_client):
        client = SupabaseClient(url="https://example.supabase.co", key="anon-key")

        mock_create_client.assert_not_called()

        assert client.client is client.client
        mock_create_client.assert_called_once_with("https://example.supabase.co", "anon-key")


class TestPatientRepository:
    """Test cases for PatientRepository."""

    @pytest.fixture
    def table(self):
        """Mock PostgREST table query builder."""
        return Mock()

    @pytest.fixture
    def repository(self, table):
        supabase_client = Mock()
        supabase_client.client.table.return_value = table
        return PatientRepository(supabase_client, table="patients")

    @pytest.fixture
    def api_error(self):
        return APIError({"message": "relation does not exist", "code": "42P01", "hint": None, "details": None})

    @pytest.mark.asyncio
    async def test_list_all(self, repository, table):
        table.select.return_value.order.return_value.execute.return_value = Mock(data=[
            {"id": 1, "name": "Alice", "face_embedding": "[0.1, 0.2]"},
            {"id": 2, "name": "Bob", "face_embedding": None},
        ])

        records = await repository.list_all()

        assert records == [
            IdentityRecord(id=1, name="Alice", face_embedding="[0.1, 0.2]"),
            IdentityRecord(id=2, name="Bob", face_embedding=None),
        ]
        table.select.return_value.order.assert_called_once_with("id")

    @pytest.mark.asyncio
    async def test_list_all_with_embedding_filters_and_orders(self, repository, table):
        query = table.select.return_value
        query.not_.is_.return_value.neq.return_value.order.return_value.execute.return_value = Mock(data=[
            {"id": 3, "name": "Carol", "face_embedding": [0.5, -0.5]},
        ])

        records = await repository.list_all_with_embedding()

        query.not_.is_.assert_called_once_with("face_embedding", "null")
        query.not_.is_.return_value.neq.assert_called_once_with("face_embedding", "")
        query.not_.is_.return_value.neq.return_value.order.assert_called_once_with("id")
        # jsonb values are normalized to stored text
        assert records == [IdentityRecord(id=3, name="Carol", face_embedding="[0.5, -0.5]")]

    @pytest.mark.asyncio
    async def test_get_by_id(self, repository, table):
        table.select.return_value.eq.return_value.execute.return_value = Mock(data=[
            {"id": 7, "name": "Grace", "face_embedding": "[1.0]"},
        ])

        record = await repository.get_by_id(7)

        assert record == IdentityRecord(id=7, name="Grace", face_embedding="[1.0]")
        table.select.return_value.eq.assert_called_once_with("id", 7)

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, repository, table):
        table.select.return_value.eq.return_value.execute.return_value = Mock(data=[])

        assert await repository.get_by_id(7) is None

    @pytest.mark.asyncio
    async def test_get_by_id_database_error(self, repository, table, api_error):
        table.select.return_value.eq.return_value.execute.side_effect = api_error

        with pytest.raises(APIError):
            await repository.get_by_id(7)

    @pytest.mark.asyncio
    async def test_create(self, repository, table):
        table.insert.return_value.execute.return_value = Mock(data=[
            {"id": 12, "name": "New", "face_embedding": "[0.3]"},
        ])

        created = await repository.create(IdentityRecord(name="New", face_embedding="[0.3]"))

        assert created.id == 12
        table.insert.assert_called_once_with({"name": "New", "face_embedding": "[0.3]"})

    @pytest.mark.asyncio
    async def test_create_without_data(self, repository, table):
        table.insert.return_value.execute.return_value = Mock(data=[])

        with pytest.raises(ValueError, match="Failed to create patient"):
            await repository.create(IdentityRecord(name="New"))

    @pytest.mark.asyncio
    async def test_update(self, repository, table):
        table.update.return_value.eq.return_value.execute.return_value = Mock(data=[
            {"id": 4, "name": "Renamed", "face_embedding": None},
        ])

        updated = await repository.update(IdentityRecord(id=4, name="Renamed"))

        assert updated == IdentityRecord(id=4, name="Renamed", face_embedding=None)
        table.update.assert_called_once_with({"name": "Renamed", "face_embedding": None})
        table.update.return_value.eq.assert_called_once_with("id", 4)

    @pytest.mark.asyncio
    async def test_update_missing(self, repository, table):
        table.update.return_value.eq.return_value.execute.return_value = Mock(data=[])

        assert await repository.update(IdentityRecord(id=4, name="Ghost")) is None

    @pytest.mark.asyncio
    async def test_delete(self, repository, table):
        table.delete.return_value.eq.return_value.execute.return_value = Mock(data=[{"id": 4}])
        assert await repository.delete(4)

        table.delete.return_value.eq.return_value.execute.return_value = Mock(data=[])
        assert not await repository.delete(4)

    @pytest.mark.asyncio
    async def test_health_check(self, repository, table, api_error):
        assert await repository.health_check()

        table.select.return_value.limit.return_value.execute.side_effect = api_error
        assert not await repository.health_check()
