"""
Tests for the backend-specific providers with their clients mocked out.
"""

import asyncio
import sys
import types
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import numpy as np
import pytest

from memvault.core.errors import BatchEmbeddingError, ConfigurationError, ProviderUnavailableError
from memvault.vector.llama_embeddings import LlamaCppEmbeddingProvider, parse_embedding_output
from memvault.vector.ollama_embeddings import OllamaEmbeddingProvider
from memvault.vector.openai_embeddings import OpenAIEmbeddingProvider
from memvault.vector.registry import EmbeddingRegistry
from memvault.vector.sentence_embeddings import SentenceTransformerEmbeddingProvider
from memvault.vector.types import EmbeddingConfig, EmbeddingOptions


def _openai_response(vectors, tokens=7):
    response = MagicMock()
    response.data = [MagicMock(embedding=vector, index=i) for i, vector in enumerate(vectors)]
    response.usage = MagicMock(total_tokens=tokens)
    return response


class TestOpenAIProvider:

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            OpenAIEmbeddingProvider(EmbeddingOptions())

    def test_default_dimensions_by_model(self):
        small = OpenAIEmbeddingProvider(EmbeddingOptions(api_key="sk-test"))
        large = OpenAIEmbeddingProvider(EmbeddingOptions(api_key="sk-test", model="text-embedding-3-large"))
        custom = OpenAIEmbeddingProvider(EmbeddingOptions(api_key="sk-test", dimension=256))
        assert small.model_name == "text-embedding-3-small"
        assert small.dimension == 1536
        assert large.dimension == 3072
        assert custom.dimension == 256

    @pytest.mark.asyncio
    async def test_batch_is_one_request(self):
        with patch("memvault.vector.openai_embeddings.AsyncOpenAI") as client_class:
            client = client_class.return_value
            client.embeddings.create = AsyncMock(return_value=_openai_response([[0.1, 0.2], [0.3, 0.4]]))

            provider = OpenAIEmbeddingProvider(EmbeddingOptions(api_key="sk-test"))
            await provider.initialize()
            batch = await provider.embed_batch(["a", "b"])

        client.embeddings.create.assert_awaited_once()
        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["input"] == ["a", "b"]
        assert "dimensions" not in kwargs
        assert batch.embeddings == [[0.1, 0.2], [0.3, 0.4]]
        assert batch.total_tokens == 7

    @pytest.mark.asyncio
    async def test_batch_split_by_max_batch_size(self):
        with patch("memvault.vector.openai_embeddings.AsyncOpenAI") as client_class:
            client = client_class.return_value
            client.embeddings.create = AsyncMock(side_effect=lambda **kwargs: _openai_response(
                [[float(len(text)), 0.0] for text in kwargs["input"]], tokens=len(kwargs["input"]),
            ))

            provider = OpenAIEmbeddingProvider(EmbeddingOptions(api_key="sk-test", max_batch_size=2))
            await provider.initialize()
            batch = await provider.embed_batch(["a", "bb", "ccc", "dddd", "eeeee"])

        inputs = [call.kwargs["input"] for call in client.embeddings.create.call_args_list]
        assert inputs == [["a", "bb"], ["ccc", "dddd"], ["eeeee"]]
        assert [e[0] for e in batch.embeddings] == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert batch.total_tokens == 5

    @pytest.mark.asyncio
    async def test_dimensions_sent_when_not_native(self):
        with patch("memvault.vector.openai_embeddings.AsyncOpenAI") as client_class:
            client = client_class.return_value
            client.embeddings.create = AsyncMock(return_value=_openai_response([[0.5] * 4]))

            provider = OpenAIEmbeddingProvider(EmbeddingOptions(api_key="sk-test", dimension=4))
            await provider.initialize()
            result = await provider.embed("hello")

        assert client.embeddings.create.call_args.kwargs["dimensions"] == 4
        assert result.embedding == [0.5] * 4
        assert result.tokens == 7

    @pytest.mark.asyncio
    async def test_api_errors_become_provider_unavailable(self):
        import openai

        with patch("memvault.vector.openai_embeddings.AsyncOpenAI") as client_class:
            client = client_class.return_value
            client.embeddings.create = AsyncMock(side_effect=openai.APIConnectionError(request=MagicMock()))

            provider = OpenAIEmbeddingProvider(EmbeddingOptions(api_key="sk-test"))
            await provider.initialize()
            with pytest.raises(ProviderUnavailableError):
                await provider.embed("hello")


class TestSentenceTransformerProvider:

    @pytest.mark.asyncio
    async def test_model_loaded_on_initialize(self):
        model = MagicMock()
        model.get_sentence_embedding_dimension.return_value = 3
        model.encode.side_effect = lambda texts, convert_to_tensor=False: (
            np.ones((len(texts), 3)) if isinstance(texts, list) else np.ones(3)
        )
        fake_module = types.SimpleNamespace(SentenceTransformer=MagicMock(return_value=model))

        provider = SentenceTransformerEmbeddingProvider()
        with patch.dict(sys.modules, {"sentence_transformers": fake_module}):
            fake_module.SentenceTransformer.assert_not_called()
            await provider.initialize()

        fake_module.SentenceTransformer.assert_called_once_with("all-MiniLM-L6-v2", device=None)
        assert provider.dimension == 3

        single = await provider.embed("hi")
        batch = await provider.embed_batch(["a", "b"])
        assert single.embedding == [1.0, 1.0, 1.0]
        assert batch.embeddings == [[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]]

        await provider.dispose()
        assert provider._model is None


class TestOllamaProvider:

    @pytest.mark.asyncio
    async def test_initialize_detects_dimension_and_batches_natively(self):
        with patch("memvault.vector.ollama_embeddings.ollama.AsyncClient") as client_class:
            client = client_class.return_value
            client.embed = AsyncMock(side_effect=lambda model, input: {
                "embeddings": [[0.25] * 5 for _ in input]
            })

            provider = OllamaEmbeddingProvider(EmbeddingOptions(provider_options={"host": "http://ollama:11434"}))
            await provider.initialize()
            batch = await provider.embed_batch(["a", "b", "c"])

        client_class.assert_called_once_with(host="http://ollama:11434")
        assert provider.dimension == 5
        assert len(batch.embeddings) == 3
        # One sample embedding plus one batch request
        assert client.embed.await_count == 2
        assert client.embed.call_args.kwargs == {"model": "nomic-embed-text", "input": ["a", "b", "c"]}

    @pytest.mark.asyncio
    async def test_unreachable_daemon(self):
        with patch("memvault.vector.ollama_embeddings.ollama.AsyncClient") as client_class:
            client_class.return_value.embed = AsyncMock(side_effect=ConnectionError("refused"))

            provider = OllamaEmbeddingProvider()
            with pytest.raises(ProviderUnavailableError):
                await provider.initialize()
        assert not provider.is_ready()

    @pytest.mark.asyncio
    async def test_http_timeout_becomes_provider_unavailable(self):
        with patch("memvault.vector.ollama_embeddings.ollama.AsyncClient") as client_class:
            client_class.return_value.embed = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))

            provider = OllamaEmbeddingProvider(EmbeddingOptions(timeout=0.5))
            with pytest.raises(ProviderUnavailableError):
                await provider.initialize()

        client_class.assert_called_once_with(host=None, timeout=0.5)
        assert not provider.is_ready()

    @pytest.mark.asyncio
    async def test_registry_falls_back_when_daemon_times_out(self):
        registry = EmbeddingRegistry()
        with patch("memvault.vector.ollama_embeddings.ollama.AsyncClient") as client_class:
            client_class.return_value.embed = AsyncMock(side_effect=httpx.ConnectTimeout("timed out"))
            provider = await registry.create_with_fallback(
                EmbeddingConfig(provider="ollama", options=EmbeddingOptions(dimension=16, timeout=0.5))
            )

        assert provider.provider_name == "mock"
        assert provider.dimension == 16
        await registry.dispose_all()



def _fake_process(stdout=b"", stderr=b"", returncode=0):
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.returncode = returncode
    return process


class TestLlamaCppProvider:

    def test_parse_json_line(self):
        output = "loading model\n[0.1, 0.2, 0.3]\n"
        assert parse_embedding_output(output) == [0.1, 0.2, 0.3]

    def test_parse_whitespace_floats(self):
        assert parse_embedding_output("0.5 -0.5\n1.0", dimension=3) == [0.5, -0.5, 1.0]

    def test_parse_rejects_wrong_size(self):
        with pytest.raises(ValueError):
            parse_embedding_output("0.5 0.5", dimension=3)
        with pytest.raises(ValueError):
            parse_embedding_output("no numbers here")

    def test_nomic_default_dimension(self):
        assert LlamaCppEmbeddingProvider().dimension == 768

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        provider = LlamaCppEmbeddingProvider(
            EmbeddingOptions(provider_options={"llama_binary": str(tmp_path / "nope")})
        )
        with pytest.raises(ConfigurationError):
            await provider.initialize()

    @pytest.mark.asyncio
    async def test_binary_without_embedding_support(self, tmp_path):
        binary = tmp_path / "llama"
        binary.write_text("")
        provider = LlamaCppEmbeddingProvider(EmbeddingOptions(provider_options={"llama_binary": str(binary)}))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=_fake_process(b"usage: llama"))):
            with pytest.raises(ConfigurationError, match="--embedding"):
                await provider.initialize()

    @pytest.mark.asyncio
    async def test_embed_runs_binary_with_expected_args(self, tmp_path):
        binary = tmp_path / "llama"
        binary.write_text("")
        provider = LlamaCppEmbeddingProvider(EmbeddingOptions(
            model="model.gguf", dimension=3,
            provider_options={"llama_binary": str(binary), "threads": 2},
        ))

        spawn = AsyncMock(side_effect=[
            _fake_process(b"  --embedding  compute embeddings"),
            _fake_process(b"[1.0, 2.0, 3.0]\n"),
        ])
        with patch("asyncio.create_subprocess_exec", spawn):
            await provider.initialize()
            result = await provider.embed("hello")

        assert result.embedding == [1.0, 2.0, 3.0]
        args = spawn.call_args.args
        assert args == (str(binary), "-m", "model.gguf", "-p", "hello", "--embedding", "-t", "2",
                        "--no-display-prompt", "--log-disable")

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, tmp_path):
        binary = tmp_path / "llama"
        binary.write_text("")
        provider = LlamaCppEmbeddingProvider(EmbeddingOptions(dimension=3,
                                                              provider_options={"llama_binary": str(binary)}))
        spawn = AsyncMock(side_effect=[
            _fake_process(b"--embedding"),
            _fake_process(stderr=b"model not found", returncode=1),
        ])
        with patch("asyncio.create_subprocess_exec", spawn):
            await provider.initialize()
            with pytest.raises(ProviderUnavailableError, match="model not found"):
                await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_batch_uses_bounded_pool(self, tmp_path):
        binary = tmp_path / "llama"
        binary.write_text("")
        provider = LlamaCppEmbeddingProvider(EmbeddingOptions(
            dimension=2, max_concurrency=2, provider_options={"llama_binary": str(binary)},
        ))
        in_flight = 0
        peak = 0

        async def spawn(*args, **kwargs):
            nonlocal in_flight, peak
            if args[1] == "--help":
                return _fake_process(b"--embedding")
            text = args[4]
            process = MagicMock()
            process.returncode = 0

            async def communicate():
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.005)
                in_flight -= 1
                return (f"[{len(text)}, 0]".encode(), b"")

            process.communicate = communicate
            return process

        with patch("asyncio.create_subprocess_exec", side_effect=spawn):
            await provider.initialize()
            batch = await provider.embed_batch(["a", "bb", "ccc", "dddd", "eeeee"])

        assert batch.embeddings == [[1.0, 0.0], [2.0, 0.0], [3.0, 0.0], [4.0, 0.0], [5.0, 0.0]]
        assert peak <= 2

    @pytest.mark.asyncio
    async def test_timed_out_process_is_killed_and_reaped(self, tmp_path):
        binary = tmp_path / "llama"
        binary.write_text("")
        provider = LlamaCppEmbeddingProvider(EmbeddingOptions(
            dimension=2, timeout=0.01, provider_options={"llama_binary": str(binary)},
        ))

        hung = MagicMock()
        hung.returncode = None

        async def communicate():
            await asyncio.sleep(10)

        async def wait():
            hung.returncode = -9
            return -9

        hung.communicate = communicate
        hung.wait = AsyncMock(side_effect=wait)

        spawn = AsyncMock(side_effect=[_fake_process(b"--embedding"), hung])
        with patch("asyncio.create_subprocess_exec", spawn):
            await provider.initialize()
            with pytest.raises(BatchEmbeddingError) as exc_info:
                await provider.embed_batch(["hello"])

        assert isinstance(exc_info.value.failures[0], asyncio.TimeoutError)
        hung.kill.assert_called_once_with()
        hung.wait.assert_awaited_once()
        assert hung.returncode == -9
