"""
Unit tests for the PostgreSQL note repository.
"""

from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import NotFoundError, StoreUnavailableError
from service_notes.app.notes.models import Note, NoteGrant, PermissionLevel
from service_notes.app.persistence.postgres import PostgreSQLNoteRepository


class TestPostgreSQLNoteRepository:
    """Test cases for PostgreSQLNoteRepository."""

    @pytest.fixture
    def conn(self):
        """Mock asyncpg connection."""
        return AsyncMock()

    @pytest.fixture
    def repository(self, conn):
        """Repository over a mock pool."""
        acquire = MagicMock()
        acquire.__aenter__ = AsyncMock(return_value=conn)
        acquire.__aexit__ = AsyncMock(return_value=False)

        pool = MagicMock()
        pool.acquire.return_value = acquire

        repository = PostgreSQLNoteRepository("postgresql://test")
        repository.pool = pool
        return repository

    @pytest.fixture
    def row(self):
        timestamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
        return {
            "id": 1,
            "title": "A",
            "content": '{"blocks": []}',
            "owner_id": 7,
            "created_by": "John Doe",
            "created_at": timestamp,
            "updated_at": timestamp,
        }

    @pytest.mark.asyncio
    async def test_find_note_decodes_json_content(self, repository, conn, row):
        conn.fetchrow.return_value = row

        note = await repository.find_note_by_id(1)

        assert note.title == "A"
        assert note.content == {"blocks": []}

    @pytest.mark.asyncio
    async def test_find_missing_note(self, repository, conn):
        conn.fetchrow.return_value = None

        assert await repository.find_note_by_id(99) is None

    @pytest.mark.asyncio
    async def test_save_new_note_inserts(self, repository, conn, row):
        conn.fetchrow.return_value = row

        saved = await repository.save_note(Note(title="A", content={"blocks": []}, owner_id=7))

        assert saved.id == 1
        sql = conn.fetchrow.call_args[0][0]
        assert "INSERT INTO notes" in sql

    @pytest.mark.asyncio
    async def test_update_missing_note_raises(self, repository, conn):
        conn.fetchrow.return_value = None

        with pytest.raises(NotFoundError):
            await repository.save_note(Note(id=5, title="A", owner_id=7))

    @pytest.mark.asyncio
    async def test_grants_skip_missing_notes(self, repository, conn, row):
        conn.fetch.return_value = [
            {**row, "grant_note_id": 1, "grant_user_id": 2, "permission": "READ"},
            {
                "grant_note_id": 3, "grant_user_id": 2, "permission": "EDIT",
                "id": None, "title": None, "content": None, "owner_id": None,
                "created_by": None, "created_at": None, "updated_at": None,
            },
        ]

        grants = await repository.find_grants_by_grantee(2, (PermissionLevel.READ, PermissionLevel.EDIT))

        assert [grant.note_id for grant in grants] == [1, 3]
        assert grants[0].note.title == "A"
        assert grants[1].note is None
        assert conn.fetch.call_args[0][2] == ["READ", "EDIT"]

    @pytest.mark.asyncio
    async def test_save_grant_upserts(self, repository, conn):
        grant = NoteGrant(note_id=1, user_id=2, permission=PermissionLevel.EDIT)

        assert await repository.save_grant(grant) == grant
        assert "ON CONFLICT" in conn.execute.call_args[0][0]

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_unavailable(self, repository, conn):
        conn.fetchrow.side_effect = ConnectionResetError("connection lost")

        with pytest.raises(StoreUnavailableError) as exc_info:
            await repository.find_user_by_email("john.doe@papertrail.dev")

        assert exc_info.value.details["operation"] == "find_user_by_email"

    @pytest.mark.asyncio
    async def test_not_started(self):
        repository = PostgreSQLNoteRepository("postgresql://test")

        with pytest.raises(StoreUnavailableError):
            await repository.find_notes_by_owner(1)
        assert await repository.health_check() is False
