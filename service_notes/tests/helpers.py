"""
Test helpers and in-memory doubles for Notes Service tests.
"""

import fnmatch
import itertools
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import redis.asyncio as redis

from shared.errors import NotFoundError, StoreUnavailableError
from service_notes.app.notes.models import Note, NoteGrant, PermissionLevel, User


@dataclass
class TestUser:
    """Test user data."""
    __test__ = False

    id: int
    name: str
    email: str

    def to_user(self) -> User:
        return User(id=self.id, name=self.name, email=self.email)


class TestDataFactory:
    """Factory for creating test data."""
    __test__ = False

    @staticmethod
    def create_test_users() -> List[User]:
        """Create test users."""
        return [
            TestUser(id=1, name="John Doe", email="john.doe@papertrail.dev").to_user(),
            TestUser(id=2, name="Jane Smith", email="jane.smith@papertrail.dev").to_user(),
            TestUser(id=3, name="Sam Lee", email="sam.lee@papertrail.dev").to_user(),
        ]

    @staticmethod
    def create_test_content() -> Dict[str, Any]:
        """Create a structured note body."""
        return {
            "blocks": [
                {"type": "heading", "text": "Quarterly review"},
                {"type": "list", "items": ["revenue", "hiring", {"nested": True}]},
            ],
            "tags": ["review", "q3"],
            "version": 2,
        }


class ManualClock:
    """Clock whose readings are scripted by the test."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryNoteRepository:
    """Dictionary-backed stand-in for PostgreSQLNoteRepository."""

    def __init__(self, users: Optional[Iterable[User]] = None):
        self.users: Dict[int, User] = {user.id: user for user in (users or [])}
        self.notes: Dict[int, Note] = {}
        self.grants: Dict[Tuple[int, int], NoteGrant] = {}
        self._ids = itertools.count(1)
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        if self.fail_with is not None:
            raise self.fail_with

    async def start(self):
        return None

    async def stop(self):
        return None

    async def find_note_by_id(self, note_id: int) -> Optional[Note]:
        self._check("find_note_by_id")
        note = self.notes.get(note_id)
        return note.model_copy(deep=True) if note else None

    async def find_notes_by_owner(self, owner_id: int) -> List[Note]:
        self._check("find_notes_by_owner")
        return [
            note.model_copy(deep=True)
            for note_id, note in sorted(self.notes.items())
            if note.owner_id == owner_id
        ]

    async def save_note(self, note: Note) -> Note:
        self._check("save_note")
        if note.id is None:
            stored = note.model_copy(update={"id": next(self._ids)}, deep=True)
        elif note.id in self.notes:
            stored = note.model_copy(deep=True)
        else:
            raise NotFoundError("Note not found", {"note_id": note.id})

        self.notes[stored.id] = stored
        return stored.model_copy(deep=True)

    async def delete_note(self, note: Note) -> None:
        self._check("delete_note")
        self.notes.pop(note.id, None)
        for key in [key for key in self.grants if key[0] == note.id]:
            del self.grants[key]

    async def find_grants_by_grantee(self, user_id: int, levels: Iterable[PermissionLevel]) -> List[NoteGrant]:
        self._check("find_grants_by_grantee")
        wanted = set(levels)
        grants = []
        for (note_id, grantee_id), grant in sorted(self.grants.items()):
            if grantee_id != user_id or grant.permission not in wanted:
                continue
            note = self.notes.get(note_id)
            grants.append(grant.model_copy(update={"note": note.model_copy(deep=True) if note else None}))
        return grants

    async def find_grant(self, note_id: int, user_id: int) -> Optional[NoteGrant]:
        self._check("find_grant")
        grant = self.grants.get((note_id, user_id))
        return grant.model_copy() if grant else None

    async def save_grant(self, grant: NoteGrant) -> NoteGrant:
        self._check("save_grant")
        stored = grant.model_copy(update={"note": None})
        self.grants[(grant.note_id, grant.user_id)] = stored
        return stored

    async def delete_grant(self, note_id: int, user_id: int) -> None:
        self._check("delete_grant")
        self.grants.pop((note_id, user_id), None)

    async def grant_exists(self, note_id: int, user_id: int, levels: Iterable[PermissionLevel]) -> bool:
        self._check("grant_exists")
        grant = self.grants.get((note_id, user_id))
        return grant is not None and grant.permission in set(levels)

    async def find_user_by_id(self, user_id: int) -> Optional[User]:
        self._check("find_user_by_id")
        return self.users.get(user_id)

    async def find_user_by_email(self, email: str) -> Optional[User]:
        self._check("find_user_by_email")
        return next((user for user in self.users.values() if user.email == email), None)

    async def health_check(self) -> bool:
        return self.fail_with is None


class FakeRedis:
    """Minimal in-memory redis.asyncio client: get/setex/delete/keys/ping.

    Set ``fail`` to make every command raise ``redis.ConnectionError``.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._data: Dict[str, Tuple[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = False
        self.commands: List[Tuple[str, Tuple[Any, ...]]] = []

    def _command(self, name: str, *args) -> None:
        self.commands.append((name, args))
        if self.fail:
            raise redis.ConnectionError("Connection refused")

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [key for key, (_, expires_at) in self._data.items() if expires_at <= now]:
            del self._data[key]

    async def get(self, key: str) -> Optional[str]:
        self._command("get", key)
        self._purge_expired()
        entry = self._data.get(key)
        return entry[0] if entry else None

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        self._command("setex", key, ttl, value)
        self._data[key] = (value, self._clock() + ttl)
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        self._command("delete", *keys)
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def keys(self, pattern: str = "*") -> List[str]:
        self._command("keys", pattern)
        self._purge_expired()
        return [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]

    async def ping(self) -> bool:
        self._command("ping")
        return True

    async def aclose(self) -> None:
        return None

    def command_names(self) -> List[str]:
        return [name for name, _ in self.commands]


def store_unavailable() -> StoreUnavailableError:
    """Error raised by a repository double to simulate a database outage."""
    return StoreUnavailableError("connection refused", {"operation": "test"})
