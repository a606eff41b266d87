"""
Request models: the validation boundary for memvault operations.

Ranges (importance 0-10, confidence 0-1, limit 1-100) and non-empty text
are enforced here; the stores accept whatever they are given.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.schema import ChatRole


def _not_blank(value: str, field_name: str) -> str:
    if not value.strip():
        raise ValueError(f'{field_name} cannot be empty')
    return value


class RememberRequest(BaseModel):
    user_id: str
    content: str
    project_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    importance: Optional[float] = Field(default=None, ge=0, le=10)
    strip_pii: Optional[bool] = None

    @field_validator('user_id')
    @classmethod
    def user_id_must_not_be_empty(cls, v):
        return _not_blank(v, 'user_id')

    @field_validator('content')
    @classmethod
    def content_must_not_be_empty(cls, v):
        return _not_blank(v, 'content')


class SearchRequest(BaseModel):
    user_id: str
    query: str
    project_id: Optional[str] = None
    limit: int = Field(default=10, ge=1, le=100)
    filter_with_llm: Optional[bool] = None
    additional_context: Optional[str] = None

    @field_validator('user_id')
    @classmethod
    def user_id_must_not_be_empty(cls, v):
        return _not_blank(v, 'user_id')

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        return _not_blank(v, 'query')


class CreateProjectRequest(BaseModel):
    user_id: str
    name: str
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        return _not_blank(v, 'name')


class CreateKnowledgeBaseRequest(BaseModel):
    project_id: str
    name: str
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        return _not_blank(v, 'name')


class AddFactRequest(BaseModel):
    kb_id: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)

    @field_validator('content')
    @classmethod
    def content_must_not_be_empty(cls, v):
        return _not_blank(v, 'content')


class AddFactsRequest(BaseModel):
    """Several facts for one knowledge base, embedded in a single batch."""
    kb_id: str
    contents: List[str] = Field(min_length=1)
    metadata: Optional[Dict[str, Any]] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)

    @field_validator('contents')
    @classmethod
    def contents_must_not_be_empty(cls, v):
        for content in v:
            _not_blank(content, 'contents')
        return v


class SearchFactsRequest(BaseModel):
    kb_id: str
    query: Optional[str] = None
    limit: int = Field(default=10, ge=1, le=100)


class CreateChatSessionRequest(BaseModel):
    user_id: str
    project_id: str
    metadata: Optional[Dict[str, Any]] = None


class AddChatMessageRequest(BaseModel):
    session_id: str
    role: ChatRole
    content: str
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('content')
    @classmethod
    def content_must_not_be_empty(cls, v):
        return _not_blank(v, 'content')


class SearchChatMessagesRequest(BaseModel):
    session_id: str
    query: str
    limit: int = Field(default=10, ge=1, le=100)

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        return _not_blank(v, 'query')


class HealthResponse(BaseModel):
    status: str
    version: str
    embedding_provider: str
    embedding_dimension: int
    memory_count: int
