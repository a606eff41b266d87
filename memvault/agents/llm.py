"""
Language model collaborators used by the memory service.

Two capabilities are consumed: stripping PII from text before it is
embedded, and filtering search results for relevance. Both degrade
gracefully; a filter that fails or answers with something unparseable
returns the results it was given.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import ollama
from openai import AsyncOpenAI

from ..core import config
from ..core.errors import ConfigurationError
from ..util.logging import get_logger

logger = get_logger(__name__)

PII_SYSTEM_PROMPT = (
    "You are a PII removal assistant. Remove any personally identifiable information from the text "
    "while preserving the general meaning and context. Replace PII with generic placeholders like "
    "[NAME], [EMAIL], [PHONE], etc."
)

FILTER_SYSTEM_PROMPT = (
    "You are a search result relevance filter. Given a query and search results, identify which results "
    "are actually relevant to the query. Return only the indices of relevant results as a JSON array."
)


def _content(result: Any) -> str:
    if isinstance(result, dict):
        return str(result.get("content", ""))
    return str(getattr(result, "content", ""))


def parse_indices(response: str, count: int) -> Optional[List[int]]:
    """Parse a JSON array of result indices. None when the response is not one."""
    try:
        indices = json.loads(response.strip())
    except (json.JSONDecodeError, AttributeError):
        return None
    if not isinstance(indices, list):
        return None
    return [i for i in indices if isinstance(i, int) and not isinstance(i, bool) and 0 <= i < count]


class BaseLLM(ABC):
    """Base class for the PII and relevance-filter collaborators."""

    name = "base"

    @abstractmethod
    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        pass

    async def strip_pii(self, text: str) -> str:
        return await self.complete(f"Remove PII from the following text:\n\n{text}", PII_SYSTEM_PROMPT)

    async def filter_results(self, query: str, results: List[Any], context: Optional[str] = None) -> List[Any]:
        """
        Keep the results the model judges relevant, in their original order.

        Args:
            query: The search query
            results: Ranked results, each with a ``content`` field
            context: Optional extra context for the model

        Returns:
            A subset of ``results``; the unfiltered list when the model call
            fails or its answer cannot be parsed
        """
        if not results:
            return []

        results_text = "\n\n".join(f"[{i}] {_content(r)}" for i, r in enumerate(results))
        prompt = f"Query: {query}\n\n"
        if context:
            prompt += f"Additional Context: {context}\n\n"
        prompt += (f"Search Results:\n{results_text}\n\n"
                   "Return the indices of relevant results as a JSON array (e.g., [0, 2, 3]):")

        try:
            response = await self.complete(prompt, FILTER_SYSTEM_PROMPT)
        except Exception as e:
            logger.log_operation("llm.filter", "degraded", details={"llm": self.name, "error": type(e).__name__})
            return results

        indices = parse_indices(response, len(results))
        if indices is None:
            logger.log_operation("llm.filter", "degraded", details={"llm": self.name, "error": "unparseable"})
            return results

        keep = set(indices)
        return [r for i, r in enumerate(results) if i in keep]


class MockLLM(BaseLLM):
    """Offline stand-in: regex PII stripping and keyword filtering."""

    name = "mock"

    NAME_PATTERN = re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b")
    EMAIL_PATTERN = re.compile(r"\b[\w.%+-]+@[\w.-]+\.[A-Za-z]{2,}\b")
    PHONE_PATTERN = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")
    SSN_PATTERN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        return f"Mock response to: {prompt}"

    async def strip_pii(self, text: str) -> str:
        text = self.NAME_PATTERN.sub("[NAME]", text)
        text = self.EMAIL_PATTERN.sub("[EMAIL]", text)
        text = self.PHONE_PATTERN.sub("[PHONE]", text)
        return self.SSN_PATTERN.sub("[SSN]", text)

    async def filter_results(self, query: str, results: List[Any], context: Optional[str] = None) -> List[Any]:
        query_words = query.lower().split()
        return [r for r in results if any(word in _content(r).lower() for word in query_words)]


class OllamaLLM(BaseLLM):
    """Collaborator backed by a local Ollama chat model."""

    name = "ollama"

    def __init__(self, model_name: Optional[str] = None, host: Optional[str] = None):
        self.model_name = model_name or config.OLLAMA_MODEL
        self.client = ollama.AsyncClient(host=host or config.OLLAMA_HOST)

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({'role': 'system', 'content': system})
        messages.append({'role': 'user', 'content': prompt})

        response = await self.client.chat(
            model=self.model_name,
            messages=messages,
            options={
                'temperature': 0.2,
                'top_p': 0.9
            }
        )
        return response['message']['content'] or ''


class OpenAILLM(BaseLLM):
    """Collaborator backed by OpenAI chat completions."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        api_key = api_key or config.OPENAI_API_KEY
        if not api_key:
            raise ConfigurationError("OpenAI API key required for LLM service")
        self.model_name = model_name or config.OPENAI_MODEL
        self.client = AsyncOpenAI(api_key=api_key)

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self.client.chat.completions.create(
            model=self.model_name,
            messages=messages,
            temperature=0.7,
            max_tokens=1000,
        )
        return response.choices[0].message.content or ""


def get_llm(provider: Optional[str] = None) -> BaseLLM:
    """Build the configured language model collaborator."""
    provider = provider or config.LLM_PROVIDER

    if provider == "openai":
        return OpenAILLM()
    elif provider == "ollama":
        return OllamaLLM()
    elif provider == "mock":
        return MockLLM()

    raise ConfigurationError(f"Unknown LLM_PROVIDER: {provider}. Supported: {config.VALID_LLM_PROVIDERS}")
