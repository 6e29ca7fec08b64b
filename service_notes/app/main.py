"""
Notes service for the Paper Trail backend.
"""

from typing import Any, Dict, List, Optional

from fastapi import Depends, Header, Query

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.errors import AuthenticationError, NotFoundError, PermissionDeniedError, ValidationError
from shared.logging import set_user_context

from .cache.metrics import CacheMetricsEstimator
from .cache.monitoring import CacheMonitoringService
from .cache.redis_store import RedisCacheStore
from .notes.models import MessageResponse, Note, NoteGrant, NoteWriteRequest, PermissionLevel, User
from .notes.service import NoteService
from .persistence.postgres import PostgreSQLNoteRepository


class NotesService(BaseService):
    """Notes service implementation."""

    def __init__(
        self,
        repository: Optional[PostgreSQLNoteRepository] = None,
        cache_store: Optional[RedisCacheStore] = None,
    ):
        super().__init__("notes", 8020)

        self.repository = repository or PostgreSQLNoteRepository(self.config.postgres_dsn)
        self.cache_store = cache_store or RedisCacheStore(
            self.config.redis_url,
            operation_timeout=self.config.cache_operation_timeout_seconds,
            breaker=CircuitBreaker(
                failure_threshold=self.config.cache_breaker_failure_threshold,
                recovery_timeout=self.config.cache_breaker_recovery_seconds,
                name="redis_cache",
            ),
        )
        self.cache_metrics = CacheMetricsEstimator(
            self.config.cache_hit_threshold_ms,
            collector=self.metrics,
        )
        self.note_service = NoteService(
            self.repository,
            self.cache_store,
            cache_metrics=self.cache_metrics,
            metrics=self.metrics,
            note_ttl=self.config.note_cache_ttl_seconds,
            user_notes_ttl=self.config.user_notes_cache_ttl_seconds,
            shared_notes_ttl=self.config.shared_notes_cache_ttl_seconds,
        )
        self.cache_monitor = CacheMonitoringService(self.cache_store, self.cache_metrics, self.note_service)

        @self.app.on_event("startup")
        async def _startup():
            await self.repository.start()
            await self.cache_store.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.cache_store.stop()
            await self.repository.stop()

        self._setup_notes_routes()
        self._setup_cache_admin_routes()

    async def current_user(self, x_user_email: Optional[str] = Header(None)) -> User:
        """Resolve the caller from the identity header set by the gateway."""
        if not x_user_email:
            raise AuthenticationError("Missing X-User-Email header")

        user = await self.repository.find_user_by_email(x_user_email)
        if user is None:
            raise AuthenticationError("User not found", {"email": x_user_email})

        set_user_context(str(user.id))
        return user

    async def _load_note(self, note_id: int) -> Note:
        note = await self.repository.find_note_by_id(note_id)
        if note is None:
            raise NotFoundError("Note not found", {"note_id": note_id})
        return note

    async def _load_owned_note(self, note_id: int, user: User, action: str) -> Note:
        note = await self._load_note(note_id)
        if note.owner_id != user.id:
            raise PermissionDeniedError(f"Only owner can {action} the note", {"note_id": note_id})
        return note

    def _setup_notes_routes(self):
        """Set up note routes."""
        current_user = self.current_user

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "notes",
                "message": "Paper Trail - Notes Service",
                "version": "1.0.0",
                "capabilities": ["notes", "sharing", "caching", "cache_admin"]
            }

        @self.app.post("/notes/create", response_model=Note)
        async def create_note(request: NoteWriteRequest, user: User = Depends(current_user)):
            """Create a note owned by the caller."""
            return await self.note_service.create_note(request.title, request.content, user)

        @self.app.get("/notes/my", response_model=List[Note])
        async def get_my_notes(user: User = Depends(current_user)):
            """Notes owned by the caller."""
            return await self.note_service.get_user_notes(user.id)

        @self.app.get("/notes/shared", response_model=List[Note])
        async def get_shared_notes(user: User = Depends(current_user)):
            """Notes shared with the caller."""
            return await self.note_service.get_shared_notes(user.id)

        @self.app.get("/notes/{note_id}", response_model=Note)
        async def get_note(note_id: int, user: User = Depends(current_user)):
            """Single note, if the caller may read it."""
            note = await self.note_service.get_note_by_id(note_id)
            if note is None:
                raise NotFoundError("Note not found", {"note_id": note_id})

            if not await self.note_service.can_read_note(note, user):
                raise PermissionDeniedError("No permission to view this note", {"note_id": note_id})
            return note

        @self.app.put("/notes/{note_id}", response_model=Note)
        async def update_note(note_id: int, request: NoteWriteRequest, user: User = Depends(current_user)):
            """Update a note the caller owns or holds EDIT on."""
            note = await self._load_note(note_id)
            if not await self.note_service.can_edit_note(note, user):
                raise PermissionDeniedError("No permission to edit this note", {"note_id": note_id})

            return await self.note_service.update_note(note_id, request.title, request.content, note)

        @self.app.post("/notes/{note_id}/share", response_model=NoteGrant)
        async def share_note(
            note_id: int,
            email: str = Query(..., description="Email of the user to share with"),
            permission: PermissionLevel = Query(..., description="Grant level"),
            user: User = Depends(current_user),
        ):
            """Grant another user READ or EDIT on a note the caller owns."""
            note = await self._load_owned_note(note_id, user, "share")

            target = await self.repository.find_user_by_email(email)
            if target is None:
                raise NotFoundError("Target user not found", {"email": email})
            if target.id == user.id:
                raise ValidationError("Cannot share a note with its owner", {"note_id": note_id})

            return await self.note_service.share_note(note, target, permission)

        @self.app.delete("/notes/{note_id}/permissions/{user_id}", response_model=MessageResponse)
        async def revoke_permission(note_id: int, user_id: int, user: User = Depends(current_user)):
            """Remove a user's grant on a note the caller owns."""
            await self._load_owned_note(note_id, user, "revoke permissions on")
            await self.note_service.revoke_permission(note_id, user_id)
            return MessageResponse(message="Permission revoked successfully")

        @self.app.delete("/notes/{note_id}", response_model=MessageResponse)
        async def delete_note(note_id: int, user: User = Depends(current_user)):
            """Delete a note the caller owns."""
            note = await self._load_owned_note(note_id, user, "delete")
            await self.note_service.delete_note(note_id, note)
            return MessageResponse(message="Note deleted successfully")

    def _setup_cache_admin_routes(self):
        """Set up cache administration routes."""

        @self.app.get("/admin/cache/stats")
        async def get_cache_stats() -> Dict[str, Any]:
            """Key counts per cached view."""
            return await self.cache_monitor.get_cache_stats()

        @self.app.get("/admin/cache/metrics")
        async def get_cache_metrics() -> Dict[str, Any]:
            """Estimated hit rates and latencies per operation."""
            return self.cache_monitor.get_performance_metrics()

        @self.app.get("/admin/cache/dashboard")
        async def get_dashboard() -> Dict[str, Any]:
            """Combined stats and metrics."""
            return await self.cache_monitor.get_dashboard()

        @self.app.post("/admin/cache/metrics/reset", response_model=MessageResponse)
        async def reset_metrics():
            """Reset performance metrics."""
            self.cache_monitor.reset_metrics()
            return MessageResponse(message="Metrics reset successfully")

        @self.app.delete("/admin/cache/all")
        async def clear_all_caches():
            """Clear all cached views."""
            removed = await self.cache_monitor.clear_all_caches()
            return {"message": "All caches cleared successfully", "removed": removed}

        @self.app.delete("/admin/cache/{cache_name}")
        async def clear_cache(cache_name: str):
            """Clear one cached view."""
            removed = await self.cache_monitor.clear_cache(cache_name)
            return {"message": f"Cache '{cache_name}' cleared successfully", "removed": removed}

        @self.app.post("/admin/cache/warmup/{user_id}")
        async def warm_up_cache(user_id: int):
            """Pre-load a user's note lists."""
            return await self.cache_monitor.warm_up_user_cache(user_id)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check notes service dependencies."""
        return {
            "redis": "ok" if await self.cache_store.health_check() else "error",
            "postgres": "ok" if await self.repository.health_check() else "error",
        }


def create_app():
    """Create notes service application."""
    service = NotesService()
    return service.app


if __name__ == "__main__":
    service = NotesService()
    service.run()
