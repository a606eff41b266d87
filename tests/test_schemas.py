"""
Tests for request validation.
"""

import pytest
from pydantic import ValidationError

from memvault.api.schemas import (AddChatMessageRequest, AddFactRequest, AddFactsRequest, CreateProjectRequest,
                                  RememberRequest, SearchFactsRequest, SearchRequest)


class TestRememberRequest:

    def test_defaults(self):
        request = RememberRequest(user_id="u1", content="hello")
        assert request.importance is None
        assert request.strip_pii is None
        assert request.project_id is None

    @pytest.mark.parametrize("importance", [-1, 10.5])
    def test_importance_range(self, importance):
        with pytest.raises(ValidationError):
            RememberRequest(user_id="u1", content="hello", importance=importance)

    def test_importance_bounds_inclusive(self):
        assert RememberRequest(user_id="u1", content="x", importance=0).importance == 0
        assert RememberRequest(user_id="u1", content="x", importance=10).importance == 10

    @pytest.mark.parametrize("field", ["user_id", "content"])
    def test_blank_text_rejected(self, field):
        values = {"user_id": "u1", "content": "hello", field: "   "}
        with pytest.raises(ValidationError, match="cannot be empty"):
            RememberRequest(**values)


class TestSearchRequest:

    def test_default_limit(self):
        assert SearchRequest(user_id="u1", query="q").limit == 10

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_range(self, limit):
        with pytest.raises(ValidationError):
            SearchRequest(user_id="u1", query="q", limit=limit)

    def test_blank_query_rejected(self):
        with pytest.raises(ValidationError):
            SearchRequest(user_id="u1", query="")


def test_fact_confidence_range():
    assert AddFactRequest(kb_id="kb", content="x", confidence=0.5).confidence == 0.5
    with pytest.raises(ValidationError):
        AddFactRequest(kb_id="kb", content="x", confidence=1.5)


def test_add_facts_requires_nonblank_contents():
    with pytest.raises(ValidationError):
        AddFactsRequest(kb_id="kb", contents=[])
    with pytest.raises(ValidationError):
        AddFactsRequest(kb_id="kb", contents=["ok", " "])


def test_search_facts_query_optional():
    assert SearchFactsRequest(kb_id="kb").query is None


def test_chat_role_restricted():
    assert AddChatMessageRequest(session_id="s", role="system", content="x").role == "system"
    with pytest.raises(ValidationError):
        AddChatMessageRequest(session_id="s", role="robot", content="x")


def test_project_name_required():
    with pytest.raises(ValidationError):
        CreateProjectRequest(user_id="u1", name="  ")
