"""Shared fixtures for the test suite.

Puts the local src/ directory first on sys.path so the working tree is
tested rather than an installed copy.
"""

import hashlib
import os
import sys
from pathlib import Path
from typing import List, Sequence

import numpy as np
import pytest

_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from window_similarity.config import Settings  # noqa: E402
from window_similarity.embedder import EmbeddingProvider  # noqa: E402
from window_similarity.models import Chunk  # noqa: E402
from window_similarity.scheduler import AnalysisSession  # noqa: E402
from window_similarity.store import IndexStore  # noqa: E402

DIMENSION = 384


class HashEmbedder(EmbeddingProvider):
    """
    Deterministic stand-in for a real model.

    Identical texts get identical unit vectors; different texts get
    pseudo-random vectors that are nearly orthogonal in 384 dimensions.
    """

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.calls: List[List[str]] = []

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        self.calls.append(list(texts))
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
        vector = np.random.default_rng(seed).standard_normal(self.dimension)
        return (vector / np.linalg.norm(vector)).astype(np.float32)

    @property
    def model_id(self) -> str:
        return "hash-embedder"

    @property
    def texts_embedded(self) -> int:
        return sum(len(batch) for batch in self.calls)


def file_record(store, path: str):
    """Stored FileRecord for `path`, or None."""
    return next((f for f in store.list_files() if f.filepath == path), None)


def unit_vector(similarity: float, axis: int = 1, dimension: int = DIMENSION) -> np.ndarray:
    """Unit vector whose cosine similarity with e0 is exactly `similarity`."""
    vector = np.zeros(dimension, dtype=np.float64)
    vector[0] = similarity
    vector[axis] = np.sqrt(max(0.0, 1.0 - similarity ** 2))
    return vector.astype(np.float32)


def make_chunk(
    chunk_id: int,
    file: str = "a.py",
    start_line: int = 1,
    embedding=None,
    window_size: int = 5,
    workspace: str = "ws1",
) -> Chunk:
    return Chunk(
        id=chunk_id,
        file=file,
        start_line=start_line,
        end_line=start_line + window_size - 1,
        text=f"chunk {chunk_id}",
        workspace=workspace,
        embedding=embedding,
    )


def five_lines(tag: str) -> str:
    """Five distinct lines of fake code tagged with `tag`."""
    return "\n".join(f"value_{tag}_{n} = compute_{tag}({n})" for n in range(5)) + "\n"


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def store():
    with IndexStore(":memory:", dimension=DIMENSION) as index:
        yield index


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def session(store, embedder, settings):
    return AnalysisSession.start(store, embedder, "ws1", settings)


@pytest.fixture
def write_file(tmp_path):
    """Write a source file under tmp_path and return its path as a string."""

    def _write(name: str, content: str, mtime: float = None) -> str:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return str(path)

    return _write
