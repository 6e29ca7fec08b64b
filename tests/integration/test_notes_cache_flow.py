"""
Integration tests for the notes cache flow.

Drives the full HTTP surface in-process over httpx against in-memory
PostgreSQL and Redis doubles, checking that every read after a mutation
reflects the database.
"""

import pytest
import httpx

from service_notes.app.cache.redis_store import RedisCacheStore
from service_notes.app.main import NotesService
from service_notes.app.notes.service import SHARED_LEVELS
from service_notes.tests.helpers import FakeRedis, InMemoryNoteRepository, TestDataFactory


class TestNotesCacheFlow:
    """Integration tests for cached note reads across mutations."""

    @pytest.fixture
    def users(self):
        return TestDataFactory.create_test_users()

    @pytest.fixture
    def fake_redis(self):
        return FakeRedis()

    @pytest.fixture
    def repository(self, users):
        return InMemoryNoteRepository(users)

    @pytest.fixture
    def service(self, repository, fake_redis):
        return NotesService(
            repository=repository,
            cache_store=RedisCacheStore("redis://localhost:6379/0", client=fake_redis),
        )

    @pytest.fixture
    def client_factory(self, service):
        """Build an AsyncClient bound to the service app."""
        def factory():
            return httpx.AsyncClient(
                transport=httpx.ASGITransport(app=service.app),
                base_url="http://notes.test",
            )
        return factory

    @pytest.fixture
    def headers(self, users):
        return [{"X-User-Email": user.email} for user in users]

    async def _titles(self, client, path, headers):
        response = await client.get(path, headers=headers)
        assert response.status_code == 200
        return [note["title"] for note in response.json()]

    @pytest.mark.asyncio
    async def test_create_update_share_scenario(self, client_factory, headers, users):
        """Owner creates, edits and shares; each view stays current."""
        async with client_factory() as client:
            response = await client.post("/notes/create", json={"title": "A", "content": {}}, headers=headers[0])
            assert response.status_code == 200
            note_id = response.json()["id"]

            assert await self._titles(client, "/notes/my", headers[0]) == ["A"]

            response = await client.put(f"/notes/{note_id}", json={"title": "B", "content": {}}, headers=headers[0])
            assert response.status_code == 200
            assert (await client.get(f"/notes/{note_id}", headers=headers[0])).json()["title"] == "B"
            assert await self._titles(client, "/notes/my", headers[0]) == ["B"]

            response = await client.post(
                f"/notes/{note_id}/share",
                params={"email": users[1].email, "permission": "READ"},
                headers=headers[0],
            )
            assert response.status_code == 200

            assert await self._titles(client, "/notes/shared", headers[1]) == ["B"]
            assert await self._titles(client, "/notes/shared", headers[2]) == []

    @pytest.mark.asyncio
    async def test_no_stale_reads_across_mutations(self, client_factory, headers, users, repository):
        """Cached views always match the database after each mutation."""
        async with client_factory() as client:
            async def assert_consistent():
                for index, user in enumerate(users):
                    owned = await self._titles(client, "/notes/my", headers[index])
                    expected = [n.title for n in await repository.find_notes_by_owner(user.id)]
                    assert owned == expected

                    shared = await self._titles(client, "/notes/shared", headers[index])
                    grants = await repository.find_grants_by_grantee(user.id, SHARED_LEVELS)
                    assert shared == [g.note.title for g in grants if g.note is not None]

            first = (await client.post("/notes/create", json={"title": "one", "content": {}}, headers=headers[0])).json()
            second = (await client.post("/notes/create", json={"title": "two", "content": {}}, headers=headers[0])).json()
            await assert_consistent()

            await client.post(
                f"/notes/{first['id']}/share",
                params={"email": users[1].email, "permission": "EDIT"},
                headers=headers[0],
            )
            await client.post(
                f"/notes/{second['id']}/share",
                params={"email": users[2].email, "permission": "READ"},
                headers=headers[0],
            )
            await assert_consistent()

            # Grantee edit must reach the owner's list and every grantee's shared list
            await client.put(f"/notes/{first['id']}", json={"title": "one-edited", "content": {}}, headers=headers[1])
            await assert_consistent()

            await client.post(
                f"/notes/{first['id']}/share",
                params={"email": users[1].email, "permission": "READ"},
                headers=headers[0],
            )
            await client.delete(f"/notes/{second['id']}/permissions/{users[2].id}", headers=headers[0])
            await assert_consistent()

            await client.delete(f"/notes/{first['id']}", headers=headers[0])
            await assert_consistent()
            assert (await client.get(f"/notes/{first['id']}", headers=headers[0])).status_code == 404

    @pytest.mark.asyncio
    async def test_repeat_reads_are_served_from_cache(self, client_factory, headers, repository):
        async with client_factory() as client:
            note = (await client.post("/notes/create", json={"title": "A", "content": {}}, headers=headers[0])).json()

            await client.get(f"/notes/{note['id']}", headers=headers[0])
            loads_before = repository.calls.count("find_note_by_id")
            await client.get(f"/notes/{note['id']}", headers=headers[0])

            assert repository.calls.count("find_note_by_id") == loads_before

    @pytest.mark.asyncio
    async def test_cache_outage_then_recovery(self, client_factory, headers, fake_redis):
        """Requests keep succeeding while Redis is down and stay correct afterwards."""
        async with client_factory() as client:
            note = (await client.post("/notes/create", json={"title": "A", "content": {}}, headers=headers[0])).json()
            assert await self._titles(client, "/notes/my", headers[0]) == ["A"]

            fake_redis.fail = True
            response = await client.post("/notes/create", json={"title": "B", "content": {}}, headers=headers[0])
            assert response.status_code == 200
            assert await self._titles(client, "/notes/my", headers[0]) == ["A", "B"]
            fake_redis.fail = False

            # The eviction was lost during the outage; clearing the namespace restores consistency
            assert (await client.delete("/admin/cache/userNotes")).status_code == 200
            assert await self._titles(client, "/notes/my", headers[0]) == ["A", "B"]
            assert (await client.get(f"/notes/{note['id']}", headers=headers[0])).status_code == 200

    @pytest.mark.asyncio
    async def test_metrics_reset_yields_empty_snapshot(self, client_factory, headers):
        async with client_factory() as client:
            await client.post("/notes/create", json={"title": "A", "content": {}}, headers=headers[0])
            await client.get("/notes/my", headers=headers[0])
            await client.get("/notes/my", headers=headers[0])

            metrics = (await client.get("/admin/cache/metrics")).json()
            counters = metrics["NoteService.get_user_notes"]
            assert counters["hits"] + counters["misses"] == 2

            await client.post("/admin/cache/metrics/reset")
            assert (await client.get("/admin/cache/metrics")).json() == {}
