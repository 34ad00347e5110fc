# Code Similarity Engine - Find and analyze duplicate code patterns
# Copyright (C) 2025  Jonathan Louis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Window embedder - converts normalized chunk text into vectors.

The core only depends on the EmbeddingProvider interface. LlamaEmbedder
runs a local GGUF model via llama-cpp-python for fully offline operation;
tests and other hosts inject their own provider.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence
import logging

import numpy as np

from .errors import EmbeddingError
from .model_manager import get_model_path

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


class EmbeddingProvider(ABC):
    """Maps a batch of texts to one fixed-length vector each."""

    # Vector width, when known before the first call
    dimension: Optional[int] = None

    @property
    def model_id(self) -> str:
        """Identifier recorded in the index; vectors of different models are never compared."""
        return type(self).__name__

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        """
        Embed a batch of normalized chunk strings.

        Must return exactly one vector per input text, in input order.
        """
        pass


def find_embedding_model(model_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find GGUF embedding model file.

    Args:
        model_path: Explicit path to model file

    Returns:
        Path to model file or None if not found
    """
    if model_path and Path(model_path).exists():
        return Path(model_path)

    return get_model_path()


class LlamaEmbedder(EmbeddingProvider):
    """
    Embedding provider backed by a GGUF model through llama-cpp-python.

    The model is loaded on first use. Vectors are L2-normalized.
    """

    def __init__(
        self,
        model_path: Optional[Path] = None,
        n_ctx: int = 512,
        n_threads: int = 4,
    ):
        self.model_file = find_embedding_model(model_path)
        if not self.model_file:
            raise FileNotFoundError(
                "No embedding model found. Download with:\n"
                "  wsim --download-models"
            )
        self.n_ctx = n_ctx
        self.n_threads = n_threads
        self._llm = None

    @property
    def model_id(self) -> str:
        """Identifier of the loaded model, e.g. "all-MiniLM-L6-v2-Q8_0"."""
        return self.model_file.stem

    @property
    def dimension(self) -> int:
        """Embedding width reported by the model."""
        return self.load().n_embd()

    def load(self):
        """Load the model now instead of on the first embed call."""
        if self._llm is None:
            try:
                from llama_cpp import Llama
            except ImportError:
                raise ImportError(
                    "llama-cpp-python not installed. Install with:\n"
                    "  pip install 'code-window-similarity[llm]'"
                )

            logger.info("Loading embedding model: %s", self.model_file.name)
            self._llm = Llama(
                model_path=str(self.model_file),
                embedding=True,      # Enable embedding extraction
                n_ctx=self.n_ctx,
                n_threads=self.n_threads,
                n_gpu_layers=-1,     # Use GPU if available (Metal on Mac)
                verbose=False,       # Suppress llama.cpp output
            )
        return self._llm

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        llm = self.load()
        vectors = []
        for text in texts:
            embedding = np.array(llm.embed(text), dtype=np.float32)

            # Pooled models return a flat vector; unpooled ones a row per token
            if embedding.ndim == 2:
                embedding = embedding.mean(axis=0)

            norm = np.linalg.norm(embedding)
            if norm > 1e-9:
                embedding = embedding / norm
            vectors.append(embedding)
        return vectors


def embed_texts(
    provider: EmbeddingProvider,
    texts: Sequence[str],
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_workers: int = 1,
    path: Optional[str] = None,
) -> List[np.ndarray]:
    """
    Embed texts in bounded batches, preserving order.

    Batches have no data dependency, so with max_workers > 1 they run on a
    thread pool; at most max_workers batches are in flight at once.

    Args:
        provider: Embedding provider
        texts: Normalized chunk strings
        batch_size: Texts per provider call
        max_workers: Concurrent provider calls
        path: Source file, for error context

    Returns:
        One float32 vector per text. Dimensions are not checked here; the
        index store rejects vectors of the wrong width.

    Raises:
        EmbeddingError: If the provider fails or returns a batch of the wrong length
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    batches = [list(texts[i:i + batch_size]) for i in range(0, len(texts), batch_size)]

    def run_batch(batch: List[str]) -> List[np.ndarray]:
        try:
            result = provider.embed(batch)
        except Exception as e:
            raise EmbeddingError(f"Embedding provider failed: {e}", path) from e

        if result is None or len(result) != len(batch):
            got = "None" if result is None else len(result)
            raise EmbeddingError(
                f"Embedding provider returned {got} vectors for {len(batch)} texts", path
            )
        return [np.asarray(vector, dtype=np.float32).ravel() for vector in result]

    if max_workers > 1 and len(batches) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(run_batch, batches))
    else:
        results = [run_batch(batch) for batch in batches]

    vectors = [vector for batch in results for vector in batch]
    logger.debug("Embedded %d texts in %d batches", len(vectors), len(batches))
    return vectors
