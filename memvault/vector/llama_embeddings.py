"""
llama.cpp embedding provider.

Each text is embedded by one run of the llama.cpp embedding binary. There is
no native batching, so embed_batch goes through the bounded worker pool.
"""

import asyncio
import json
import os
import shutil
from typing import List, Optional

from ..core.errors import ConfigurationError, ProviderUnavailableError
from ..util.logging import get_logger
from .embeddings import IEmbeddingProvider
from .types import EmbeddingOptions, EmbeddingResult

logger = get_logger(__name__)


def parse_embedding_output(output: str, dimension: Optional[int] = None) -> List[float]:
    """
    Extract the embedding from llama.cpp stdout.

    A line holding a JSON array wins. Otherwise every float in the output is
    taken, which must then add up to ``dimension`` when one is given.
    """
    for line in output.strip().splitlines():
        line = line.strip()
        if line.startswith("[") and line.endswith("]"):
            return [float(value) for value in json.loads(line)]

    values = []
    for token in output.split():
        try:
            values.append(float(token))
        except ValueError:
            continue

    if not values or (dimension is not None and len(values) != dimension):
        raise ValueError("Failed to parse embedding output")
    return values


class LlamaCppEmbeddingProvider(IEmbeddingProvider):
    """Runs the llama.cpp binary as a subprocess per text."""

    provider_name = "llama"
    default_model = "./models/nomic-embed-text-v1.5.f16.gguf"

    def __init__(self, options: EmbeddingOptions = None):
        super().__init__(options)
        self.llama_binary = self.options.provider_options.get("llama_binary", "./llama-embedding")
        self.threads = self.options.provider_options.get("threads", 4)
        if not self.options.dimension and "nomic-embed" in self.model_name:
            self._dimension = 768

    async def _initialize(self) -> None:
        if not os.path.exists(self.llama_binary) and shutil.which(self.llama_binary) is None:
            raise ConfigurationError(f"llama.cpp binary not found: {self.llama_binary}")

        if not await self._supports_embeddings():
            raise ConfigurationError(f"{self.llama_binary} does not support --embedding")

    async def _supports_embeddings(self) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self.llama_binary, "--help",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError:
            return False
        stdout, _ = await process.communicate()
        return process.returncode == 0 and "--embedding" in stdout.decode(errors="replace")

    async def _embed(self, text: str) -> EmbeddingResult:
        args = [
            "-m", self.model_name,
            "-p", text,
            "--embedding",
            "-t", str(self.threads),
            "--no-display-prompt",
            "--log-disable",
        ]
        process = await asyncio.create_subprocess_exec(
            self.llama_binary, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # wait_for timeouts cancel us; do not leave the process running
            if process.returncode is None:
                process.kill()
                await asyncio.shield(process.wait())
            raise

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            logger.log_embedding_operation(self.provider_name, "subprocess", 1, status="error",
                                           details={"returncode": process.returncode})
            raise ProviderUnavailableError(f"llama.cpp exited with code {process.returncode}: {message}")

        try:
            embedding = parse_embedding_output(stdout.decode(errors="replace"), self.dimension)
        except ValueError as e:
            raise ProviderUnavailableError(f"Failed to parse llama.cpp embedding: {e}") from e

        return EmbeddingResult(embedding=embedding, model=self.model_name)
