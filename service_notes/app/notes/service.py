"""
Cache-aside note service.

Reads go through Redis first and fall back to PostgreSQL; writes hit
PostgreSQL first and then refresh or evict exactly the cached views they make
stale:

=================  ==============  ====================  ==================
operation          ``note``        ``userNotes``         ``sharedNotes``
=================  ==============  ====================  ==================
create_note        -               evict owner           -
update_note        put note id     evict owner           evict namespace
delete_note        evict note id   evict owner           evict namespace
share_note         -               -                     evict grantee
revoke_permission  -               -                     evict namespace
=================  ==============  ====================  ==================

``sharedNotes`` is cleared wholesale where the affected grantees are not known
without another query. Cache failures never fail a request: reads fall back
to the database and failed evictions are logged, leaving entries to expire
via TTL.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

from shared.errors import CacheUnavailableError
from shared.logging import get_logger
from ..cache.keys import CacheNamespace
from ..cache.metrics import CacheMetricsEstimator, cache_evict, cacheable
from ..cache.redis_store import RedisCacheStore
from ..cache.serialization import CacheSerializer, SerializationError
from .models import Note, NoteGrant, PermissionLevel, User, utc_now

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..persistence.postgres import PostgreSQLNoteRepository
    from shared.metrics import MetricsCollector


DEFAULT_NOTE_TTL = 900
DEFAULT_USER_NOTES_TTL = 600
DEFAULT_SHARED_NOTES_TTL = 600

SHARED_LEVELS = (PermissionLevel.READ, PermissionLevel.EDIT)

_MISS = object()


class NoteService:
    """Notes CRUD with write-through invalidation of the three cached views."""

    def __init__(
        self,
        repository: "PostgreSQLNoteRepository",
        cache_store: RedisCacheStore,
        *,
        cache_metrics: Optional[CacheMetricsEstimator] = None,
        serializer: Optional[CacheSerializer] = None,
        metrics: Optional["MetricsCollector"] = None,
        note_ttl: int = DEFAULT_NOTE_TTL,
        user_notes_ttl: int = DEFAULT_USER_NOTES_TTL,
        shared_notes_ttl: int = DEFAULT_SHARED_NOTES_TTL,
    ):
        self.repository = repository
        self.cache_store = cache_store
        self.cache_metrics = cache_metrics
        self.serializer = serializer or CacheSerializer()
        self.metrics = metrics
        self.logger = get_logger("notes.service")
        self.ttls: Dict[CacheNamespace, int] = {
            CacheNamespace.NOTE: note_ttl,
            CacheNamespace.USER_NOTES: user_notes_ttl,
            CacheNamespace.SHARED_NOTES: shared_notes_ttl,
        }

    # Cached reads

    @cacheable("NoteService.get_note_by_id")
    async def get_note_by_id(self, note_id: int) -> Optional[Note]:
        """Single note, or None when it does not exist (absence is not cached)."""
        cached = await self._cache_get(CacheNamespace.NOTE, note_id)
        if cached is not _MISS:
            return cached

        note = await self.repository.find_note_by_id(note_id)
        if note is not None:
            await self._cache_put(CacheNamespace.NOTE, note_id, note)
        return note

    @cacheable("NoteService.get_user_notes")
    async def get_user_notes(self, owner_id: int) -> List[Note]:
        """Notes owned by a user; empty lists are cached too."""
        cached = await self._cache_get(CacheNamespace.USER_NOTES, owner_id)
        if cached is not _MISS:
            return cached

        notes = await self.repository.find_notes_by_owner(owner_id)
        await self._cache_put(CacheNamespace.USER_NOTES, owner_id, notes)
        return notes

    @cacheable("NoteService.get_shared_notes")
    async def get_shared_notes(self, grantee_id: int) -> List[Note]:
        """Distinct notes the user holds a READ or EDIT grant on."""
        cached = await self._cache_get(CacheNamespace.SHARED_NOTES, grantee_id)
        if cached is not _MISS:
            return cached

        grants = await self.repository.find_grants_by_grantee(grantee_id, SHARED_LEVELS)
        notes: List[Note] = []
        seen = set()
        for grant in grants:
            if grant.note is None or grant.note.id in seen:
                continue
            seen.add(grant.note.id)
            notes.append(grant.note)

        await self._cache_put(CacheNamespace.SHARED_NOTES, grantee_id, notes)
        return notes

    # Mutations

    @cache_evict("NoteService.create_note")
    async def create_note(self, title: str, content: Dict[str, Any], owner: User) -> Note:
        now = utc_now()
        note = Note(
            title=title,
            content=content,
            owner_id=owner.id,
            created_by=owner.name,
            created_at=now,
            updated_at=now,
        )
        saved = await self.repository.save_note(note)

        await self._evict(CacheNamespace.USER_NOTES, owner.id)
        return saved

    @cache_evict("NoteService.update_note")
    async def update_note(self, note_id: int, title: str, content: Dict[str, Any], existing_note: Note) -> Note:
        updated = existing_note.model_copy(update={
            "id": note_id,
            "title": title,
            "content": content,
            "updated_at": utc_now(),
        })
        saved = await self.repository.save_note(updated)

        # Refresh rather than evict so the next read is a hit
        await self._cache_put(CacheNamespace.NOTE, note_id, saved)
        await self._evict(CacheNamespace.USER_NOTES, existing_note.owner_id)
        await self._evict_all(CacheNamespace.SHARED_NOTES)
        return saved

    @cache_evict("NoteService.delete_note")
    async def delete_note(self, note_id: int, existing_note: Note) -> None:
        await self.repository.delete_note(existing_note)

        await self._evict(CacheNamespace.NOTE, note_id)
        await self._evict(CacheNamespace.USER_NOTES, existing_note.owner_id)
        await self._evict_all(CacheNamespace.SHARED_NOTES)

    @cache_evict("NoteService.share_note")
    async def share_note(self, note: Note, target_user: User, permission: PermissionLevel) -> NoteGrant:
        existing = await self.repository.find_grant(note.id, target_user.id)
        if existing is not None:
            grant = existing.model_copy(update={"permission": permission})
        else:
            grant = NoteGrant(note_id=note.id, user_id=target_user.id, permission=permission)
        saved = await self.repository.save_grant(grant)

        await self._evict(CacheNamespace.SHARED_NOTES, target_user.id)
        return saved

    @cache_evict("NoteService.revoke_permission")
    async def revoke_permission(self, note_id: int, user_id: int) -> None:
        await self.repository.delete_grant(note_id, user_id)

        await self._evict_all(CacheNamespace.SHARED_NOTES)

    # Permission checks (uncached)

    async def can_read_note(self, note: Note, user: User) -> bool:
        if note.owner_id == user.id:
            return True
        return await self.repository.grant_exists(note.id, user.id, SHARED_LEVELS)

    async def can_edit_note(self, note: Note, user: User) -> bool:
        if note.owner_id == user.id:
            return True
        return await self.repository.grant_exists(note.id, user.id, (PermissionLevel.EDIT,))

    # Cache helpers; failures are logged and absorbed

    async def _cache_get(self, namespace: CacheNamespace, key: Any) -> Any:
        try:
            raw = await self.cache_store.get(namespace, key)
        except CacheUnavailableError as e:
            self._cache_failure("get", namespace, key, e)
            return _MISS

        if raw is None:
            self.logger.debug("Cache miss", namespace=namespace.value, key=key)
            return _MISS

        try:
            value = self.serializer.loads(raw)
        except SerializationError as e:
            self._cache_failure("decode", namespace, key, e)
            return _MISS

        self.logger.debug("Cache hit", namespace=namespace.value, key=key)
        return value

    async def _cache_put(self, namespace: CacheNamespace, key: Any, value: Any) -> None:
        try:
            await self.cache_store.put(namespace, key, self.serializer.dumps(value), self.ttls[namespace])
        except (CacheUnavailableError, SerializationError) as e:
            self._cache_failure("put", namespace, key, e)

    async def _evict(self, namespace: CacheNamespace, key: Any) -> None:
        try:
            await self.cache_store.evict(namespace, key)
        except CacheUnavailableError as e:
            self._cache_failure("evict", namespace, key, e)

    async def _evict_all(self, namespace: CacheNamespace) -> None:
        try:
            removed = await self.cache_store.evict_all(namespace)
        except CacheUnavailableError as e:
            self._cache_failure("evict_all", namespace, "*", e)
            return
        self.logger.debug("Cache namespace evicted", namespace=namespace.value, keys_count=removed)

    def _cache_failure(self, action: str, namespace: CacheNamespace, key: Any, error: Exception) -> None:
        self.logger.warning(
            "Cache operation failed; continuing without cache",
            action=action,
            namespace=namespace.value,
            key=key,
            error=str(error),
        )
        if self.metrics is not None:
            self.metrics.increment_counter("cache_errors_total", namespace=namespace.value, action=action)
