"""
PostgreSQL persistence layer for the Notes Service.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, List, Optional

import asyncpg

from shared.errors import NotFoundError, StoreUnavailableError
from shared.logging import get_logger
from ..notes.models import Note, NoteGrant, PermissionLevel, User


NOTE_COLUMNS = "n.id, n.title, n.content, n.owner_id, n.created_by, n.created_at, n.updated_at"


class PostgreSQLNoteRepository:
    """Notes, users and permission grants stored in PostgreSQL.

    Driver and connection failures are raised as ``StoreUnavailableError``;
    nothing is retried here.
    """

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("notes.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )
            await self._create_tables()
            self.logger.info("PostgreSQL persistence started")

        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StoreUnavailableError("PostgreSQL persistence failed to start", {"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        if self.pool is None:
            raise StoreUnavailableError("PostgreSQL persistence is not started", {"operation": operation})

        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self.logger.error("Database operation failed", operation=operation, error=str(e))
            raise StoreUnavailableError(str(e), {"operation": operation}) from e

    async def _create_tables(self):
        """Create database tables."""
        async with self._connection("create_tables") as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id BIGSERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    email VARCHAR(255) NOT NULL UNIQUE
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id BIGSERIAL PRIMARY KEY,
                    title VARCHAR(255) NOT NULL,
                    content JSONB NOT NULL DEFAULT '{}',
                    owner_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    created_by VARCHAR(255),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS note_permissions (
                    note_id BIGINT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
                    user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    permission VARCHAR(10) NOT NULL,
                    PRIMARY KEY (note_id, user_id)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_notes_owner ON notes(owner_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_note_permissions_user ON note_permissions(user_id);
            """)

    # Notes

    async def find_note_by_id(self, note_id: int) -> Optional[Note]:
        async with self._connection("find_note_by_id") as conn:
            row = await conn.fetchrow(f"SELECT {NOTE_COLUMNS} FROM notes n WHERE n.id = $1", note_id)
        return self._row_to_note(row) if row else None

    async def find_notes_by_owner(self, owner_id: int) -> List[Note]:
        async with self._connection("find_notes_by_owner") as conn:
            rows = await conn.fetch(
                f"SELECT {NOTE_COLUMNS} FROM notes n WHERE n.owner_id = $1 ORDER BY n.id",
                owner_id,
            )
        return [self._row_to_note(row) for row in rows]

    async def save_note(self, note: Note) -> Note:
        """Insert a new note or update an existing one; returns the stored row."""
        content = json.dumps(note.content)

        async with self._connection("save_note") as conn:
            if note.id is None:
                row = await conn.fetchrow("""
                    INSERT INTO notes (title, content, owner_id, created_by, created_at, updated_at)
                    VALUES ($1, $2::jsonb, $3, $4, $5, $6)
                    RETURNING id, title, content, owner_id, created_by, created_at, updated_at
                """, note.title, content, note.owner_id, note.created_by, note.created_at, note.updated_at)
            else:
                row = await conn.fetchrow("""
                    UPDATE notes SET title = $2, content = $3::jsonb, updated_at = $4
                    WHERE id = $1
                    RETURNING id, title, content, owner_id, created_by, created_at, updated_at
                """, note.id, note.title, content, note.updated_at)

        if row is None:
            raise NotFoundError("Note not found", {"note_id": note.id})

        self.logger.info("Note saved", note_id=row["id"], owner_id=row["owner_id"])
        return self._row_to_note(row)

    async def delete_note(self, note: Note) -> None:
        async with self._connection("delete_note") as conn:
            await conn.execute("DELETE FROM notes WHERE id = $1", note.id)
        self.logger.info("Note deleted", note_id=note.id)

    # Grants

    async def find_grants_by_grantee(self, user_id: int, levels: Iterable[PermissionLevel]) -> List[NoteGrant]:
        """Grants held by a user at any of ``levels``, with the granted note joined."""
        async with self._connection("find_grants_by_grantee") as conn:
            rows = await conn.fetch(f"""
                SELECT p.note_id AS grant_note_id, p.user_id AS grant_user_id, p.permission, {NOTE_COLUMNS}
                FROM note_permissions p
                LEFT JOIN notes n ON n.id = p.note_id
                WHERE p.user_id = $1 AND p.permission = ANY($2::varchar[])
                ORDER BY p.note_id
            """, user_id, [level.value for level in levels])

        return [
            NoteGrant(
                note_id=row["grant_note_id"],
                user_id=row["grant_user_id"],
                permission=PermissionLevel(row["permission"]),
                note=self._row_to_note(row) if row["id"] is not None else None,
            )
            for row in rows
        ]

    async def find_grant(self, note_id: int, user_id: int) -> Optional[NoteGrant]:
        async with self._connection("find_grant") as conn:
            row = await conn.fetchrow(
                "SELECT note_id, user_id, permission FROM note_permissions WHERE note_id = $1 AND user_id = $2",
                note_id, user_id,
            )
        if not row:
            return None
        return NoteGrant(note_id=row["note_id"], user_id=row["user_id"], permission=PermissionLevel(row["permission"]))

    async def save_grant(self, grant: NoteGrant) -> NoteGrant:
        """Create the grant, or change the level of an existing one."""
        async with self._connection("save_grant") as conn:
            await conn.execute("""
                INSERT INTO note_permissions (note_id, user_id, permission)
                VALUES ($1, $2, $3)
                ON CONFLICT (note_id, user_id) DO UPDATE SET permission = EXCLUDED.permission
            """, grant.note_id, grant.user_id, grant.permission.value)

        self.logger.info(
            "Grant saved",
            note_id=grant.note_id,
            user_id=grant.user_id,
            permission=grant.permission.value,
        )
        return grant

    async def delete_grant(self, note_id: int, user_id: int) -> None:
        async with self._connection("delete_grant") as conn:
            await conn.execute(
                "DELETE FROM note_permissions WHERE note_id = $1 AND user_id = $2",
                note_id, user_id,
            )
        self.logger.info("Grant deleted", note_id=note_id, user_id=user_id)

    async def grant_exists(self, note_id: int, user_id: int, levels: Iterable[PermissionLevel]) -> bool:
        async with self._connection("grant_exists") as conn:
            found = await conn.fetchval("""
                SELECT EXISTS (
                    SELECT 1 FROM note_permissions
                    WHERE note_id = $1 AND user_id = $2 AND permission = ANY($3::varchar[])
                )
            """, note_id, user_id, [level.value for level in levels])
        return bool(found)

    # Users

    async def find_user_by_id(self, user_id: int) -> Optional[User]:
        async with self._connection("find_user_by_id") as conn:
            row = await conn.fetchrow("SELECT id, name, email FROM users WHERE id = $1", user_id)
        return User(**dict(row)) if row else None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        async with self._connection("find_user_by_email") as conn:
            row = await conn.fetchrow("SELECT id, name, email FROM users WHERE email = $1", email)
        return User(**dict(row)) if row else None

    async def health_check(self) -> bool:
        """Check PostgreSQL health."""
        try:
            async with self._connection("health_check") as conn:
                await conn.fetchval("SELECT 1")
            return True
        except StoreUnavailableError:
            return False

    def _row_to_note(self, row: Any) -> Note:
        """Convert database row to Note."""
        content = row["content"]
        if isinstance(content, str):
            content = json.loads(content)

        return Note(
            id=row["id"],
            title=row["title"],
            content=content or {},
            owner_id=row["owner_id"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
