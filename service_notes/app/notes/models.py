"""
Note, user and permission models for the Notes Service.
"""

from typing import Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PermissionLevel(str, Enum):
    """Grant levels a non-owner can hold on a note."""
    READ = "READ"
    EDIT = "EDIT"


class User(BaseModel):
    """Registered user."""
    id: int
    name: str
    email: str


class Note(BaseModel):
    """Shared note document."""
    id: Optional[int] = None
    title: str
    content: Dict[str, Any] = Field(default_factory=dict, description="Open-ended structured payload")
    owner_id: int
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class NoteGrant(BaseModel):
    """Permission granted to a user on a note they do not own."""
    note_id: int
    user_id: int
    permission: PermissionLevel
    note: Optional[Note] = Field(None, description="Joined note row, when loaded")


class NoteWriteRequest(BaseModel):
    """Request model for note create/update."""
    title: str = Field(..., min_length=1, max_length=255, description="Note title")
    content: Dict[str, Any] = Field(default_factory=dict, description="Note body")


class MessageResponse(BaseModel):
    """Plain acknowledgement."""
    message: str
