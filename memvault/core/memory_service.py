"""
Memory service: remember and search orchestration.

Owns no state of its own. The store, the embedding provider and the LLM
collaborator are passed in, and the policy defaults decide what happens
when a request leaves strip_pii / filter_with_llm unset.
"""

import time
from typing import List, Optional

from ..agents.llm import BaseLLM, MockLLM
from ..api.schemas import RememberRequest, SearchRequest
from ..util.logging import get_logger
from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import IVectorStore
from .schema import Memory, MemoryWithScore

logger = get_logger(__name__)

DEFAULT_IMPORTANCE = 5


class MemoryService:
    """
    Memory operations for one store and one embedding provider.

    Every memory operation takes the acting user id; a memory owned by
    someone else is reported exactly like a missing one.
    """

    def __init__(self, store: IVectorStore, embeddings: IEmbeddingProvider, llm: Optional[BaseLLM] = None,
                 strip_pii_default: bool = False, filter_with_llm_default: bool = False):
        self.store = store
        self.embeddings = embeddings
        self.llm = llm or MockLLM()
        self.strip_pii_default = strip_pii_default
        self.filter_with_llm_default = filter_with_llm_default

    async def remember(self, request: RememberRequest) -> Memory:
        """
        Store a memory with its embedding.

        The content is optionally PII-stripped first; the stored content is
        exactly the text that was embedded.
        """
        start_time = time.perf_counter()
        content = request.content

        strip_pii = request.strip_pii if request.strip_pii is not None else self.strip_pii_default
        if strip_pii:
            content = await self.llm.strip_pii(content)

        result = await self.embeddings.embed(content)

        memory = self.store.create_memory(
            user_id=request.user_id,
            project_id=request.project_id,
            content=content,
            metadata=request.metadata,
            importance=request.importance if request.importance is not None else DEFAULT_IMPORTANCE,
            embedding=result.embedding,
        )

        logger.log_operation("memory.remember", "success", (time.perf_counter() - start_time) * 1000,
                             {"memory_id": memory.id, "strip_pii": strip_pii})
        return memory

    async def search(self, request: SearchRequest) -> List[MemoryWithScore]:
        """Rank the user's memories against the query, optionally LLM-filtered."""
        start_time = time.perf_counter()

        query = await self.embeddings.embed(request.query)
        results = self.store.search_memories(
            user_id=request.user_id,
            embedding=query.embedding,
            project_id=request.project_id,
            limit=request.limit,
        )

        filter_with_llm = (request.filter_with_llm if request.filter_with_llm is not None
                           else self.filter_with_llm_default)
        if filter_with_llm:
            results = await self.llm.filter_results(request.query, results, request.additional_context)

        logger.log_operation("memory.search", "success", (time.perf_counter() - start_time) * 1000,
                             {"results": len(results), "filtered": filter_with_llm})
        return results

    def get_memory(self, user_id: str, memory_id: str) -> Optional[Memory]:
        memory = self.store.get_memory(memory_id)
        if memory is None or memory.user_id != user_id:
            return None
        return memory

    def delete_memory(self, user_id: str, memory_id: str) -> bool:
        if self.get_memory(user_id, memory_id) is None:
            return False
        return self.store.delete_memory(memory_id)

    def list_memories(self, user_id: str, project_id: Optional[str] = None,
                      limit: int = 100, offset: int = 0) -> List[Memory]:
        return self.store.get_user_memories(user_id, project_id=project_id, limit=limit, offset=offset)

    def delete_user_memories(self, user_id: str, project_id: Optional[str] = None) -> int:
        count = self.store.delete_user_memories(user_id, project_id=project_id)
        logger.log_operation("memory.delete_user_memories", "success", details={"count": count})
        return count
