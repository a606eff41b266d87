"""
MemoryClient: the programmatic surface over memories, projects, knowledge
bases, facts and chat.

Facts and chat messages are embedded here before they reach the store.
Optional scope arguments (user_id, project_id, kb_id, session_id) turn a
lookup into an ownership check; a mismatch looks exactly like a miss.
"""

from typing import List, Optional

from ..agents.llm import get_llm
from ..core import config
from ..core.memory_service import MemoryService
from ..core.schema import (ChatMessage, ChatMessageWithScore, ChatSession, Fact, FactWithScore, KnowledgeBase,
                           Memory, MemoryWithScore, Project)
from ..util.logging import get_logger
from ..vector.registry import EmbeddingRegistry
from .schemas import (AddChatMessageRequest, AddFactRequest, AddFactsRequest, CreateChatSessionRequest,
                      CreateKnowledgeBaseRequest, CreateProjectRequest, HealthResponse, RememberRequest,
                      SearchChatMessagesRequest, SearchFactsRequest, SearchRequest)

logger = get_logger(__name__)

DEFAULT_CONFIDENCE = 1


def _owned(entity, field: str, owner: Optional[str]):
    """Return the entity when it exists and, if an owner is given, belongs to it."""
    if entity is None:
        return None
    if owner is not None and getattr(entity, field) != owner:
        return None
    return entity


class MemoryClient:
    """Facade over a MemoryService and the registry that owns its provider."""

    def __init__(self, service: MemoryService, registry: Optional[EmbeddingRegistry] = None):
        self.service = service
        self.registry = registry

    @property
    def store(self):
        return self.service.store

    @property
    def embeddings(self):
        return self.service.embeddings

    @classmethod
    async def from_config(cls) -> "MemoryClient":
        """Assemble store, registry, embedding provider and LLM from configuration."""
        issues = config.validate_config()
        for issue in issues:
            logger.warning(f"Configuration issue: {issue}")

        registry = EmbeddingRegistry()
        embeddings = await registry.create_with_fallback(config.get_embedding_config())
        store = config.get_vector_store(dimension=embeddings.dimension)

        service = MemoryService(
            store=store,
            embeddings=embeddings,
            llm=get_llm(),
            strip_pii_default=config.STRIP_PII_DEFAULT,
            filter_with_llm_default=config.FILTER_WITH_LLM_DEFAULT,
        )
        logger.log_operation("client.start", "success", details={
            "backend": config.DB_BACKEND,
            "embedding_provider": embeddings.provider_name,
            "dimension": embeddings.dimension,
        })
        return cls(service, registry)

    async def close(self) -> None:
        """Dispose owned providers and close the store."""
        if self.registry is not None:
            await self.registry.dispose_all()
        self.store.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def health(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            version=config.VERSION,
            embedding_provider=self.embeddings.provider_name,
            embedding_dimension=self.embeddings.dimension,
            memory_count=self.store.stats().memories,
        )

    # Memories

    async def remember(self, request: RememberRequest) -> Memory:
        return await self.service.remember(request)

    async def search(self, request: SearchRequest) -> List[MemoryWithScore]:
        return await self.service.search(request)

    def get_memory(self, user_id: str, memory_id: str) -> Optional[Memory]:
        return self.service.get_memory(user_id, memory_id)

    def list_memories(self, user_id: str, project_id: Optional[str] = None,
                      limit: int = 100, offset: int = 0) -> List[Memory]:
        return self.service.list_memories(user_id, project_id, limit, offset)

    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        return self.service.delete_memory(user_id, memory_id)

    def delete_user_memories(self, user_id: str, project_id: Optional[str] = None) -> int:
        return self.service.delete_user_memories(user_id, project_id)

    # Projects

    def create_project(self, request: CreateProjectRequest) -> Project:
        return self.store.create_project(user_id=request.user_id, name=request.name,
                                         description=request.description, metadata=request.metadata)

    def get_project(self, project_id: str, user_id: Optional[str] = None) -> Optional[Project]:
        return _owned(self.store.get_project(project_id), "user_id", user_id)

    def get_user_projects(self, user_id: str) -> List[Project]:
        return self.store.get_user_projects(user_id)

    def delete_project(self, project_id: str, user_id: Optional[str] = None) -> bool:
        if self.get_project(project_id, user_id) is None:
            return False
        return self.store.delete_project(project_id)

    # Knowledge bases

    def create_knowledge_base(self, request: CreateKnowledgeBaseRequest) -> KnowledgeBase:
        return self.store.create_knowledge_base(project_id=request.project_id, name=request.name,
                                                description=request.description, metadata=request.metadata)

    def get_knowledge_base(self, kb_id: str, project_id: Optional[str] = None) -> Optional[KnowledgeBase]:
        return _owned(self.store.get_knowledge_base(kb_id), "project_id", project_id)

    def get_project_knowledge_bases(self, project_id: str) -> List[KnowledgeBase]:
        return self.store.get_project_knowledge_bases(project_id)

    def delete_knowledge_base(self, kb_id: str, project_id: Optional[str] = None) -> bool:
        if self.get_knowledge_base(kb_id, project_id) is None:
            return False
        return self.store.delete_knowledge_base(kb_id)

    # Facts

    async def add_fact(self, request: AddFactRequest) -> Fact:
        result = await self.embeddings.embed(request.content)
        return self.store.create_fact(
            kb_id=request.kb_id,
            content=request.content,
            metadata=request.metadata,
            confidence=request.confidence if request.confidence is not None else DEFAULT_CONFIDENCE,
            embedding=result.embedding,
        )

    async def add_facts(self, request: AddFactsRequest) -> List[Fact]:
        """Embed all contents in one batch, then store them in input order."""
        batch = await self.embeddings.embed_batch(request.contents)
        confidence = request.confidence if request.confidence is not None else DEFAULT_CONFIDENCE
        return [
            self.store.create_fact(kb_id=request.kb_id, content=content, metadata=request.metadata,
                                   confidence=confidence, embedding=embedding)
            for content, embedding in zip(request.contents, batch.embeddings)
        ]

    def get_fact(self, fact_id: str, kb_id: Optional[str] = None) -> Optional[Fact]:
        return _owned(self.store.get_fact(fact_id), "kb_id", kb_id)

    def get_knowledge_base_facts(self, kb_id: str, limit: int = 100, offset: int = 0) -> List[Fact]:
        return self.store.get_knowledge_base_facts(kb_id, limit=limit, offset=offset)

    async def search_facts(self, request: SearchFactsRequest) -> List[FactWithScore]:
        """Rank a knowledge base's facts; without a query every fact scores 1."""
        embedding = None
        if request.query:
            embedding = (await self.embeddings.embed(request.query)).embedding
        return self.store.search_facts(request.kb_id, embedding, limit=request.limit)

    def delete_fact(self, fact_id: str, kb_id: Optional[str] = None) -> bool:
        if self.get_fact(fact_id, kb_id) is None:
            return False
        return self.store.delete_fact(fact_id)

    def delete_knowledge_base_facts(self, kb_id: str) -> int:
        return self.store.delete_knowledge_base_facts(kb_id)

    # Chat

    def create_chat_session(self, request: CreateChatSessionRequest) -> ChatSession:
        return self.store.create_chat_session(user_id=request.user_id, project_id=request.project_id,
                                              metadata=request.metadata)

    def get_chat_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[ChatSession]:
        return _owned(self.store.get_chat_session(session_id), "user_id", user_id)

    def get_user_chat_sessions(self, user_id: str, project_id: Optional[str] = None) -> List[ChatSession]:
        return self.store.get_user_chat_sessions(user_id, project_id=project_id)

    def delete_chat_session(self, session_id: str, user_id: Optional[str] = None) -> bool:
        if self.get_chat_session(session_id, user_id) is None:
            return False
        return self.store.delete_chat_session(session_id)

    async def add_chat_message(self, request: AddChatMessageRequest) -> ChatMessage:
        result = await self.embeddings.embed(request.content)
        return self.store.create_chat_message(
            session_id=request.session_id,
            role=request.role,
            content=request.content,
            metadata=request.metadata,
            embedding=result.embedding,
        )

    def get_chat_message(self, message_id: str, session_id: Optional[str] = None) -> Optional[ChatMessage]:
        return _owned(self.store.get_chat_message(message_id), "session_id", session_id)

    def get_chat_messages(self, session_id: str, limit: int = 100, offset: int = 0) -> List[ChatMessage]:
        return self.store.get_chat_messages(session_id, limit=limit, offset=offset)

    async def search_chat_messages(self, request: SearchChatMessagesRequest) -> List[ChatMessageWithScore]:
        query = await self.embeddings.embed(request.query)
        return self.store.search_chat_messages(request.session_id, query.embedding, limit=request.limit)

    def delete_chat_message(self, message_id: str, session_id: Optional[str] = None) -> bool:
        if self.get_chat_message(message_id, session_id) is None:
            return False
        return self.store.delete_chat_message(message_id)

    def delete_chat_session_messages(self, session_id: str) -> int:
        return self.store.delete_chat_session_messages(session_id)
