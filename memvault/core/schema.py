"""
Entity models for every table the stores manage.

Ids and timestamps are minted when a model is constructed without them.
Range checks on importance and confidence live in the request models
(memvault.api.schemas), not here.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


ChatRole = Literal["user", "assistant", "system"]


class Project(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Memory(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    project_id: Optional[str] = None
    content: str
    metadata: Optional[Dict[str, Any]] = None
    importance: float = 5
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class KnowledgeBase(BaseModel):
    id: str = Field(default_factory=new_id)
    project_id: str
    name: str
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Fact(BaseModel):
    id: str = Field(default_factory=new_id)
    kb_id: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    confidence: float = 1
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ChatSession(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    project_id: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ChatMessage(BaseModel):
    """Append-only; there is no updated_at."""
    id: str = Field(default_factory=new_id)
    session_id: str
    role: ChatRole
    content: str
    metadata: Optional[Dict[str, Any]] = None
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=utc_now)


class MemoryWithScore(Memory):
    similarity_score: float


class FactWithScore(Fact):
    similarity_score: float


class ChatMessageWithScore(ChatMessage):
    similarity_score: float


class StoreStats(BaseModel):
    """Row counts per table, reported by IVectorStore.stats()."""
    model_config = ConfigDict(frozen=True)

    projects: int = 0
    memories: int = 0
    knowledge_bases: int = 0
    facts: int = 0
    chat_sessions: int = 0
    chat_messages: int = 0
