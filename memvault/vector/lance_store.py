"""
LanceDB-backed entity store.

One LanceDB table per entity type, created from an explicit pyarrow schema.
Metadata is stored as a JSON string. Rows without an embedding carry a zero
vector and ``has_embedding = false`` so searches can exclude them.
"""

import json
import time
from typing import Any, Dict, List, Optional, Type

import lancedb
import pyarrow as pa

from ..core.schema import (ChatMessage, ChatMessageWithScore, ChatSession, Fact, FactWithScore, KnowledgeBase,
                           Memory, MemoryWithScore, Project, StoreStats, utc_now)
from ..util.logging import get_logger
from .index import IVectorStore

logger = get_logger(__name__)

BOOTSTRAP_ID = "__bootstrap__"

TABLE_MODELS = {
    "projects": Project,
    "memories": Memory,
    "knowledge_bases": KnowledgeBase,
    "facts": Fact,
    "chat_sessions": ChatSession,
    "chat_messages": ChatMessage,
}

# Tables whose rows carry an embedding column
VECTOR_TABLES = {"memories", "facts", "chat_messages"}


def quote(value: str) -> str:
    """Quote a string literal for a LanceDB filter clause."""
    return "'" + str(value).replace("'", "''") + "'"


def build_schema(table: str, dimension: int) -> pa.Schema:
    timestamp = pa.timestamp("us", tz="UTC")
    fields = {
        "projects": [
            pa.field("id", pa.string()),
            pa.field("user_id", pa.string()),
            pa.field("name", pa.string()),
            pa.field("description", pa.string()),
        ],
        "memories": [
            pa.field("id", pa.string()),
            pa.field("user_id", pa.string()),
            pa.field("project_id", pa.string()),
            pa.field("content", pa.string()),
            pa.field("importance", pa.float64()),
        ],
        "knowledge_bases": [
            pa.field("id", pa.string()),
            pa.field("project_id", pa.string()),
            pa.field("name", pa.string()),
            pa.field("description", pa.string()),
        ],
        "facts": [
            pa.field("id", pa.string()),
            pa.field("kb_id", pa.string()),
            pa.field("content", pa.string()),
            pa.field("confidence", pa.float64()),
        ],
        "chat_sessions": [
            pa.field("id", pa.string()),
            pa.field("user_id", pa.string()),
            pa.field("project_id", pa.string()),
        ],
        "chat_messages": [
            pa.field("id", pa.string()),
            pa.field("session_id", pa.string()),
            pa.field("role", pa.string()),
            pa.field("content", pa.string()),
        ],
    }[table]

    fields.append(pa.field("metadata", pa.string()))
    if table in VECTOR_TABLES:
        fields.append(pa.field("embedding", pa.list_(pa.float32(), dimension)))
        fields.append(pa.field("has_embedding", pa.bool_()))
    fields.append(pa.field("created_at", timestamp))
    if table != "chat_messages":
        fields.append(pa.field("updated_at", timestamp))
    return pa.schema(fields)


class LanceDBVectorStore(IVectorStore):
    """
    Entity store over a LanceDB database.

    The connection and each table handle are opened lazily on first use and
    then reused. A dropped connection is not retried; the error reaches the
    caller.
    """

    def __init__(self, uri: str, dimension: int = 384, api_key: Optional[str] = None):
        self.uri = uri
        self.dimension = dimension
        self.api_key = api_key
        self._db = None
        self._tables: Dict[str, Any] = {}

    @property
    def db(self):
        if self._db is None:
            if self.api_key:
                self._db = lancedb.connect(self.uri, api_key=self.api_key)
            else:
                self._db = lancedb.connect(self.uri)
        return self._db

    def _table(self, name: str):
        table = self._tables.get(name)
        if table is not None:
            return table

        if name in self.db.table_names():
            table = self.db.open_table(name)
        else:
            table = self._create_table(name)
        self._tables[name] = table
        return table

    def _create_table(self, name: str):
        schema = build_schema(name, self.dimension)
        try:
            table = self.db.create_table(name, schema=schema)
        except (TypeError, ValueError, NotImplementedError) as e:
            # Backends without empty-schema support get a throwaway row instead
            logger.warning(f"Schema creation rejected for table {name} ({e}); using bootstrap row")
            table = self.db.create_table(name, data=[self._bootstrap_row(schema)], schema=schema)
            table.delete(f"id = {quote(BOOTSTRAP_ID)}")

        logger.log_store_operation(name, "create_table")
        return table

    def _bootstrap_row(self, schema: pa.Schema) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        for schema_field in schema:
            if schema_field.name == "id":
                row["id"] = BOOTSTRAP_ID
            elif schema_field.name == "embedding":
                row["embedding"] = [0.0] * self.dimension
            elif schema_field.name == "has_embedding":
                row["has_embedding"] = False
            elif pa.types.is_timestamp(schema_field.type):
                row[schema_field.name] = utc_now()
            elif pa.types.is_floating(schema_field.type):
                row[schema_field.name] = 0.0
            else:
                row[schema_field.name] = ""
        return row

    # Row conversion

    def _to_row(self, table: str, entity) -> Dict[str, Any]:
        row = entity.model_dump()
        row["metadata"] = json.dumps(row["metadata"]) if row.get("metadata") is not None else None
        if table in VECTOR_TABLES:
            embedding = row.get("embedding")
            row["has_embedding"] = embedding is not None
            row["embedding"] = embedding if embedding is not None else [0.0] * self.dimension
        return row

    @staticmethod
    def _from_row(row: Dict[str, Any], model: Type, score: Optional[float] = None):
        data = dict(row)
        distance = data.pop("_distance", None)
        has_embedding = data.pop("has_embedding", None)

        if data.get("metadata"):
            data["metadata"] = json.loads(data["metadata"])
        else:
            data["metadata"] = None

        if "embedding" in data:
            data["embedding"] = [float(v) for v in data["embedding"]] if has_embedding else None

        if score is not None:
            data["similarity_score"] = score
        elif distance is not None:
            data["similarity_score"] = 1 - distance
        return model(**data)

    # Generic table operations

    def _insert(self, table: str, entity):
        start_time = time.perf_counter()
        self._table(table).add([self._to_row(table, entity)])
        logger.log_store_operation(table, "create", record_id=entity.id,
                                   duration_ms=(time.perf_counter() - start_time) * 1000)
        return entity

    def _select(self, table: str, where: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Rows matching ``where``. Without a limit every matching row is returned."""
        handle = self._table(table)
        if limit is None:
            limit = handle.count_rows(where)
        if limit <= 0:
            return []
        return handle.search().where(where).limit(limit).to_list()

    def _get(self, table: str, record_id: str):
        rows = self._select(table, f"id = {quote(record_id)}", limit=1)
        return self._from_row(rows[0], TABLE_MODELS[table]) if rows else None

    def _list(self, table: str, where: str, limit: int = None, offset: int = 0):
        # Lance queries have no offset; fetch limit + offset and slice
        fetch = None if limit is None else limit + offset
        rows = self._select(table, where, fetch)
        entities = [self._from_row(row, TABLE_MODELS[table]) for row in rows]
        return entities[offset:] if limit is None else entities[offset:offset + limit]

    def _delete(self, table: str, record_id: str) -> bool:
        if not self._select(table, f"id = {quote(record_id)}", limit=1):
            return False
        self._table(table).delete(f"id = {quote(record_id)}")
        logger.log_store_operation(table, "delete", record_id=record_id)
        return True

    def _delete_where(self, table: str, where: str) -> int:
        """Delete exactly the rows enumerated by ``where`` and return their count."""
        ids = [row["id"] for row in self._select(table, where)]
        if ids:
            self._table(table).delete(f"id IN ({', '.join(quote(record_id) for record_id in ids)})")
        logger.log_store_operation(table, "delete_many", count=len(ids))
        return len(ids)

    def _search(self, table: str, where: str, embedding: Optional[List[float]], limit: int, scored_class: Type):
        if embedding is None:
            rows = self._select(table, where, limit)
            return [self._from_row(row, scored_class, score=1.0) for row in rows]

        if limit <= 0:
            return []
        rows = (self._table(table)
                .search(embedding)
                .distance_type("cosine")
                .where(f"({where}) AND has_embedding = true", prefilter=True)
                .limit(limit)
                .to_list())
        return [self._from_row(row, scored_class) for row in rows]

    @staticmethod
    def _user_scope(user_id: str, project_id: Optional[str]) -> str:
        where = f"user_id = {quote(user_id)}"
        if project_id is not None:
            where += f" AND project_id = {quote(project_id)}"
        return where

    # Projects
    def create_project(self, user_id, name, description=None, metadata=None) -> Project:
        return self._insert("projects", Project(user_id=user_id, name=name, description=description,
                                                metadata=metadata))

    def get_project(self, project_id):
        return self._get("projects", project_id)

    def get_user_projects(self, user_id):
        return self._list("projects", f"user_id = {quote(user_id)}")

    def delete_project(self, project_id):
        return self._delete("projects", project_id)

    # Memories
    def create_memory(self, user_id, content, project_id=None, metadata=None, importance=5,
                      embedding=None) -> Memory:
        self.check_embedding(embedding)
        return self._insert("memories", Memory(user_id=user_id, project_id=project_id, content=content,
                                               metadata=metadata, importance=importance, embedding=embedding))

    def get_memory(self, memory_id):
        return self._get("memories", memory_id)

    def get_user_memories(self, user_id, project_id=None, limit=100, offset=0):
        return self._list("memories", self._user_scope(user_id, project_id), limit, offset)

    def search_memories(self, user_id, embedding, project_id=None, limit=10):
        self.check_embedding(embedding)
        return self._search("memories", self._user_scope(user_id, project_id), embedding, limit, MemoryWithScore)

    def delete_memory(self, memory_id):
        return self._delete("memories", memory_id)

    def delete_user_memories(self, user_id, project_id=None):
        return self._delete_where("memories", self._user_scope(user_id, project_id))

    # Knowledge bases
    def create_knowledge_base(self, project_id, name, description=None, metadata=None) -> KnowledgeBase:
        return self._insert("knowledge_bases", KnowledgeBase(project_id=project_id, name=name,
                                                             description=description, metadata=metadata))

    def get_knowledge_base(self, kb_id):
        return self._get("knowledge_bases", kb_id)

    def get_project_knowledge_bases(self, project_id):
        return self._list("knowledge_bases", f"project_id = {quote(project_id)}")

    def delete_knowledge_base(self, kb_id):
        return self._delete("knowledge_bases", kb_id)

    # Facts
    def create_fact(self, kb_id, content, metadata=None, confidence=1, embedding=None) -> Fact:
        self.check_embedding(embedding)
        return self._insert("facts", Fact(kb_id=kb_id, content=content, metadata=metadata,
                                          confidence=confidence, embedding=embedding))

    def get_fact(self, fact_id):
        return self._get("facts", fact_id)

    def get_knowledge_base_facts(self, kb_id, limit=100, offset=0):
        return self._list("facts", f"kb_id = {quote(kb_id)}", limit, offset)

    def search_facts(self, kb_id, embedding, limit=10):
        self.check_embedding(embedding)
        return self._search("facts", f"kb_id = {quote(kb_id)}", embedding, limit, FactWithScore)

    def delete_fact(self, fact_id):
        return self._delete("facts", fact_id)

    def delete_knowledge_base_facts(self, kb_id):
        return self._delete_where("facts", f"kb_id = {quote(kb_id)}")

    # Chat sessions
    def create_chat_session(self, user_id, project_id, metadata=None) -> ChatSession:
        return self._insert("chat_sessions", ChatSession(user_id=user_id, project_id=project_id,
                                                         metadata=metadata))

    def get_chat_session(self, session_id):
        return self._get("chat_sessions", session_id)

    def get_user_chat_sessions(self, user_id, project_id=None):
        return self._list("chat_sessions", self._user_scope(user_id, project_id))

    def delete_chat_session(self, session_id):
        return self._delete("chat_sessions", session_id)

    # Chat messages
    def create_chat_message(self, session_id, role, content, metadata=None, embedding=None) -> ChatMessage:
        self.check_embedding(embedding)
        return self._insert("chat_messages", ChatMessage(session_id=session_id, role=role, content=content,
                                                         metadata=metadata, embedding=embedding))

    def get_chat_message(self, message_id):
        return self._get("chat_messages", message_id)

    def get_chat_messages(self, session_id, limit=100, offset=0):
        messages = self._list("chat_messages", f"session_id = {quote(session_id)}")
        messages.sort(key=lambda m: m.created_at)
        return messages[offset:offset + limit]

    def search_chat_messages(self, session_id, embedding, limit=10):
        self.check_embedding(embedding)
        return self._search("chat_messages", f"session_id = {quote(session_id)}", embedding, limit,
                            ChatMessageWithScore)

    def delete_chat_message(self, message_id):
        return self._delete("chat_messages", message_id)

    def delete_chat_session_messages(self, session_id):
        return self._delete_where("chat_messages", f"session_id = {quote(session_id)}")

    def stats(self) -> StoreStats:
        return StoreStats(**{name: self._table(name).count_rows() for name in TABLE_MODELS})

    def close(self) -> None:
        self._tables.clear()
        self._db = None
