"""
Entity store interface and the in-memory similarity engine.

The store never computes embeddings; callers pass vectors in as data.
Ownership checks live in the service layer, so every lookup here is by id
or by a plain scope predicate.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from ..core.errors import DimensionMismatchError
from ..core.schema import (ChatMessage, ChatMessageWithScore, ChatRole, ChatSession, Fact, FactWithScore,
                           KnowledgeBase, Memory, MemoryWithScore, Project, StoreStats)
from ..util.logging import get_logger
from .similarity import k_nearest

logger = get_logger(__name__)

Scored = TypeVar("Scored")


def rank_by_similarity(entities: Sequence[Any], embedding: Optional[Sequence[float]], limit: int,
                       scored_class: Type[Scored]) -> List[Scored]:
    """
    Rank scoped entities against a query embedding.

    Entities without an embedding are skipped. With no query embedding every
    entity is returned as a perfect match (score 1.0), up to ``limit``.
    Equal scores keep the order of ``entities``.
    """
    if embedding is None:
        return [scored_class(**entity.model_dump(), similarity_score=1.0) for entity in entities[:max(limit, 0)]]

    candidates = [entity for entity in entities if entity.embedding is not None]
    ranked = k_nearest(embedding, [entity.embedding for entity in candidates], limit)
    return [scored_class(**candidates[index].model_dump(), similarity_score=score) for index, score in ranked]


class IVectorStore(ABC):
    """Abstract interface for the entity tables and their similarity search."""

    dimension: Optional[int] = None

    def check_embedding(self, embedding: Optional[Sequence[float]]) -> None:
        """Raise DimensionMismatchError when a vector does not fit this store."""
        if embedding is not None and self.dimension is not None and len(embedding) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(embedding))

    # Projects
    @abstractmethod
    def create_project(self, user_id: str, name: str, description: Optional[str] = None,
                       metadata: Optional[Dict[str, Any]] = None) -> Project:
        pass

    @abstractmethod
    def get_project(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    def get_user_projects(self, user_id: str) -> List[Project]:
        pass

    @abstractmethod
    def delete_project(self, project_id: str) -> bool:
        pass

    # Memories
    @abstractmethod
    def create_memory(self, user_id: str, content: str, project_id: Optional[str] = None,
                      metadata: Optional[Dict[str, Any]] = None, importance: float = 5,
                      embedding: Optional[List[float]] = None) -> Memory:
        pass

    @abstractmethod
    def get_memory(self, memory_id: str) -> Optional[Memory]:
        pass

    @abstractmethod
    def get_user_memories(self, user_id: str, project_id: Optional[str] = None,
                          limit: int = 100, offset: int = 0) -> List[Memory]:
        pass

    @abstractmethod
    def search_memories(self, user_id: str, embedding: Optional[List[float]],
                        project_id: Optional[str] = None, limit: int = 10) -> List[MemoryWithScore]:
        """Rank the user's embedded memories by cosine similarity to ``embedding``."""
        pass

    @abstractmethod
    def delete_memory(self, memory_id: str) -> bool:
        pass

    @abstractmethod
    def delete_user_memories(self, user_id: str, project_id: Optional[str] = None) -> int:
        """Delete the user's memories (optionally one project's) and return how many were removed."""
        pass

    # Knowledge bases
    @abstractmethod
    def create_knowledge_base(self, project_id: str, name: str, description: Optional[str] = None,
                              metadata: Optional[Dict[str, Any]] = None) -> KnowledgeBase:
        pass

    @abstractmethod
    def get_knowledge_base(self, kb_id: str) -> Optional[KnowledgeBase]:
        pass

    @abstractmethod
    def get_project_knowledge_bases(self, project_id: str) -> List[KnowledgeBase]:
        pass

    @abstractmethod
    def delete_knowledge_base(self, kb_id: str) -> bool:
        pass

    # Facts
    @abstractmethod
    def create_fact(self, kb_id: str, content: str, metadata: Optional[Dict[str, Any]] = None,
                    confidence: float = 1, embedding: Optional[List[float]] = None) -> Fact:
        pass

    @abstractmethod
    def get_fact(self, fact_id: str) -> Optional[Fact]:
        pass

    @abstractmethod
    def get_knowledge_base_facts(self, kb_id: str, limit: int = 100, offset: int = 0) -> List[Fact]:
        pass

    @abstractmethod
    def search_facts(self, kb_id: str, embedding: Optional[List[float]], limit: int = 10) -> List[FactWithScore]:
        pass

    @abstractmethod
    def delete_fact(self, fact_id: str) -> bool:
        pass

    @abstractmethod
    def delete_knowledge_base_facts(self, kb_id: str) -> int:
        pass

    # Chat sessions
    @abstractmethod
    def create_chat_session(self, user_id: str, project_id: str,
                            metadata: Optional[Dict[str, Any]] = None) -> ChatSession:
        pass

    @abstractmethod
    def get_chat_session(self, session_id: str) -> Optional[ChatSession]:
        pass

    @abstractmethod
    def get_user_chat_sessions(self, user_id: str, project_id: Optional[str] = None) -> List[ChatSession]:
        pass

    @abstractmethod
    def delete_chat_session(self, session_id: str) -> bool:
        pass

    # Chat messages
    @abstractmethod
    def create_chat_message(self, session_id: str, role: ChatRole, content: str,
                            metadata: Optional[Dict[str, Any]] = None,
                            embedding: Optional[List[float]] = None) -> ChatMessage:
        pass

    @abstractmethod
    def get_chat_message(self, message_id: str) -> Optional[ChatMessage]:
        pass

    @abstractmethod
    def get_chat_messages(self, session_id: str, limit: int = 100, offset: int = 0) -> List[ChatMessage]:
        """Messages of a session, oldest first."""
        pass

    @abstractmethod
    def search_chat_messages(self, session_id: str, embedding: Optional[List[float]],
                             limit: int = 10) -> List[ChatMessageWithScore]:
        pass

    @abstractmethod
    def delete_chat_message(self, message_id: str) -> bool:
        pass

    @abstractmethod
    def delete_chat_session_messages(self, session_id: str) -> int:
        pass

    @abstractmethod
    def stats(self) -> StoreStats:
        """Row count per table."""
        pass

    def close(self) -> None:
        """Release backend resources."""
        pass


class InMemoryVectorStore(IVectorStore):
    """In-process store: one insertion-ordered dict per table, linear similarity scan.

    Records are copied on the way in and on the way out, so callers never
    hold the stored instance.
    """

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = dimension
        self._projects: Dict[str, Project] = {}
        self._memories: Dict[str, Memory] = {}
        self._knowledge_bases: Dict[str, KnowledgeBase] = {}
        self._facts: Dict[str, Fact] = {}
        self._chat_sessions: Dict[str, ChatSession] = {}
        self._chat_messages: Dict[str, ChatMessage] = {}

    @staticmethod
    def _copy(record):
        return record.model_copy(deep=True) if record is not None else None

    def _insert(self, table: Dict[str, Any], name: str, record):
        table[record.id] = record.model_copy(deep=True)
        logger.log_store_operation(name, "create", record_id=record.id)
        return record

    @staticmethod
    def _delete(table: Dict[str, Any], name: str, record_id: str) -> bool:
        if table.pop(record_id, None) is None:
            return False
        logger.log_store_operation(name, "delete", record_id=record_id)
        return True

    @staticmethod
    def _delete_where(table: Dict[str, Any], name: str, predicate) -> int:
        matching_ids = [record_id for record_id, record in table.items() if predicate(record)]
        for record_id in matching_ids:
            del table[record_id]
        logger.log_store_operation(name, "delete_many", count=len(matching_ids))
        return len(matching_ids)

    # Projects
    def create_project(self, user_id, name, description=None, metadata=None) -> Project:
        project = Project(user_id=user_id, name=name, description=description, metadata=metadata)
        return self._insert(self._projects, "projects", project)

    def get_project(self, project_id):
        return self._copy(self._projects.get(project_id))

    def get_user_projects(self, user_id):
        return [self._copy(p) for p in self._projects.values() if p.user_id == user_id]

    def delete_project(self, project_id):
        return self._delete(self._projects, "projects", project_id)

    # Memories
    def create_memory(self, user_id, content, project_id=None, metadata=None, importance=5,
                      embedding=None) -> Memory:
        self.check_embedding(embedding)
        memory = Memory(user_id=user_id, project_id=project_id, content=content, metadata=metadata,
                        importance=importance, embedding=embedding)
        return self._insert(self._memories, "memories", memory)

    def get_memory(self, memory_id):
        return self._copy(self._memories.get(memory_id))

    def _scoped_memories(self, user_id, project_id) -> List[Memory]:
        return [m for m in self._memories.values()
                if m.user_id == user_id and (project_id is None or m.project_id == project_id)]

    def get_user_memories(self, user_id, project_id=None, limit=100, offset=0):
        return [self._copy(m) for m in self._scoped_memories(user_id, project_id)[offset:offset + limit]]

    def search_memories(self, user_id, embedding, project_id=None, limit=10):
        self.check_embedding(embedding)
        return rank_by_similarity(self._scoped_memories(user_id, project_id), embedding, limit, MemoryWithScore)

    def delete_memory(self, memory_id):
        return self._delete(self._memories, "memories", memory_id)

    def delete_user_memories(self, user_id, project_id=None):
        return self._delete_where(
            self._memories, "memories",
            lambda m: m.user_id == user_id and (project_id is None or m.project_id == project_id),
        )

    # Knowledge bases
    def create_knowledge_base(self, project_id, name, description=None, metadata=None) -> KnowledgeBase:
        kb = KnowledgeBase(project_id=project_id, name=name, description=description, metadata=metadata)
        return self._insert(self._knowledge_bases, "knowledge_bases", kb)

    def get_knowledge_base(self, kb_id):
        return self._copy(self._knowledge_bases.get(kb_id))

    def get_project_knowledge_bases(self, project_id):
        return [self._copy(kb) for kb in self._knowledge_bases.values() if kb.project_id == project_id]

    def delete_knowledge_base(self, kb_id):
        return self._delete(self._knowledge_bases, "knowledge_bases", kb_id)

    # Facts
    def create_fact(self, kb_id, content, metadata=None, confidence=1, embedding=None) -> Fact:
        self.check_embedding(embedding)
        fact = Fact(kb_id=kb_id, content=content, metadata=metadata, confidence=confidence, embedding=embedding)
        return self._insert(self._facts, "facts", fact)

    def get_fact(self, fact_id):
        return self._copy(self._facts.get(fact_id))

    def _scoped_facts(self, kb_id) -> List[Fact]:
        return [f for f in self._facts.values() if f.kb_id == kb_id]

    def get_knowledge_base_facts(self, kb_id, limit=100, offset=0):
        return [self._copy(f) for f in self._scoped_facts(kb_id)[offset:offset + limit]]

    def search_facts(self, kb_id, embedding, limit=10):
        self.check_embedding(embedding)
        return rank_by_similarity(self._scoped_facts(kb_id), embedding, limit, FactWithScore)

    def delete_fact(self, fact_id):
        return self._delete(self._facts, "facts", fact_id)

    def delete_knowledge_base_facts(self, kb_id):
        return self._delete_where(self._facts, "facts", lambda f: f.kb_id == kb_id)

    # Chat sessions
    def create_chat_session(self, user_id, project_id, metadata=None) -> ChatSession:
        session = ChatSession(user_id=user_id, project_id=project_id, metadata=metadata)
        return self._insert(self._chat_sessions, "chat_sessions", session)

    def get_chat_session(self, session_id):
        return self._copy(self._chat_sessions.get(session_id))

    def get_user_chat_sessions(self, user_id, project_id=None):
        return [self._copy(s) for s in self._chat_sessions.values()
                if s.user_id == user_id and (project_id is None or s.project_id == project_id)]

    def delete_chat_session(self, session_id):
        return self._delete(self._chat_sessions, "chat_sessions", session_id)

    # Chat messages
    def create_chat_message(self, session_id, role, content, metadata=None, embedding=None) -> ChatMessage:
        self.check_embedding(embedding)
        message = ChatMessage(session_id=session_id, role=role, content=content, metadata=metadata,
                              embedding=embedding)
        return self._insert(self._chat_messages, "chat_messages", message)

    def get_chat_message(self, message_id):
        return self._copy(self._chat_messages.get(message_id))

    def _scoped_messages(self, session_id) -> List[ChatMessage]:
        messages = [m for m in self._chat_messages.values() if m.session_id == session_id]
        return sorted(messages, key=lambda m: m.created_at)

    def get_chat_messages(self, session_id, limit=100, offset=0):
        return [self._copy(m) for m in self._scoped_messages(session_id)[offset:offset + limit]]

    def search_chat_messages(self, session_id, embedding, limit=10):
        self.check_embedding(embedding)
        return rank_by_similarity(self._scoped_messages(session_id), embedding, limit, ChatMessageWithScore)

    def delete_chat_message(self, message_id):
        return self._delete(self._chat_messages, "chat_messages", message_id)

    def delete_chat_session_messages(self, session_id):
        return self._delete_where(self._chat_messages, "chat_messages", lambda m: m.session_id == session_id)

    def stats(self) -> StoreStats:
        return StoreStats(
            projects=len(self._projects),
            memories=len(self._memories),
            knowledge_bases=len(self._knowledge_bases),
            facts=len(self._facts),
            chat_sessions=len(self._chat_sessions),
            chat_messages=len(self._chat_messages),
        )
