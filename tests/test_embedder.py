"""Tests for batched embedding and the llama.cpp provider."""

import sys
import types

import numpy as np
import pytest

from window_similarity import embedder as embedder_module
from window_similarity.embedder import LlamaEmbedder, embed_texts
from window_similarity.errors import EmbeddingError

from conftest import HashEmbedder


class TestEmbedTexts:
    def test_batches_and_order(self, embedder):
        texts = [f"text {n}" for n in range(25)]

        vectors = embed_texts(embedder, texts, batch_size=10)

        assert [len(batch) for batch in embedder.calls] == [10, 10, 5]
        assert len(vectors) == 25
        for text, vector in zip(texts, vectors):
            np.testing.assert_array_equal(vector, embedder._vector(text))

    def test_empty_input(self, embedder):
        assert embed_texts(embedder, []) == []
        assert embedder.calls == []

    def test_threaded_keeps_order(self):
        provider = HashEmbedder()
        texts = [f"text {n}" for n in range(37)]

        threaded = embed_texts(provider, texts, batch_size=4, max_workers=4)
        sequential = embed_texts(HashEmbedder(), texts, batch_size=4)

        for a, b in zip(threaded, sequential):
            np.testing.assert_array_equal(a, b)
        assert sorted(len(batch) for batch in provider.calls) == [1] + [4] * 9

    def test_vectors_are_float32(self):
        class ListEmbedder(HashEmbedder):
            def embed(self, texts):
                return [[1.0, 0.0, 0.0] for _ in texts]

        vectors = embed_texts(ListEmbedder(), ["a", "b"])

        assert all(v.dtype == np.float32 and v.shape == (3,) for v in vectors)

    def test_provider_exception_is_wrapped(self):
        class Broken(HashEmbedder):
            def embed(self, texts):
                raise RuntimeError("out of memory")

        with pytest.raises(EmbeddingError, match="out of memory") as excinfo:
            embed_texts(Broken(), ["a"], path="src/a.py")

        assert excinfo.value.path == "src/a.py"
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    @pytest.mark.parametrize("result", [None, [], [np.zeros(4)] * 3])
    def test_wrong_batch_length(self, result):
        class Odd(HashEmbedder):
            def embed(self, texts):
                return result

        with pytest.raises(EmbeddingError):
            embed_texts(Odd(), ["a", "b"])

    def test_bad_batch_size(self, embedder):
        with pytest.raises(ValueError):
            embed_texts(embedder, ["a"], batch_size=0)


def test_provider_defaults():
    class Plain(embedder_module.EmbeddingProvider):
        def embed(self, texts):
            return []

    assert Plain().dimension is None
    assert Plain().model_id == "Plain"


class FakeLlama:
    """Stands in for llama_cpp.Llama; returns one row per whitespace token."""

    instances = []

    def __init__(self, model_path, **kwargs):
        self.model_path = model_path
        self.kwargs = kwargs
        FakeLlama.instances.append(self)

    def embed(self, text):
        return [[3.0, 4.0] for _ in text.split()]

    def n_embd(self):
        return 2


@pytest.fixture
def fake_llama(monkeypatch):
    FakeLlama.instances = []
    module = types.ModuleType("llama_cpp")
    module.Llama = FakeLlama
    monkeypatch.setitem(sys.modules, "llama_cpp", module)
    return FakeLlama


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "tiny-embed-Q8_0.gguf"
    path.write_bytes(b"GGUF")
    return path


class TestLlamaEmbedder:
    def test_missing_model(self, monkeypatch):
        monkeypatch.setattr(embedder_module, "get_model_path", lambda: None)

        with pytest.raises(FileNotFoundError):
            LlamaEmbedder()

    def test_explicit_model_path(self, model_file):
        provider = LlamaEmbedder(model_file)

        assert provider.model_file == model_file
        assert provider.model_id == "tiny-embed-Q8_0"

    def test_loads_lazily_once(self, fake_llama, model_file):
        provider = LlamaEmbedder(model_file, n_threads=2)
        assert fake_llama.instances == []

        provider.embed(["a b"])
        provider.embed(["c"])

        assert len(fake_llama.instances) == 1
        assert fake_llama.instances[0].kwargs["embedding"] is True
        assert fake_llama.instances[0].kwargs["n_threads"] == 2

    def test_pools_and_normalizes(self, fake_llama, model_file):
        vectors = LlamaEmbedder(model_file).embed(["one two three", "four"])

        assert len(vectors) == 2
        for vector in vectors:
            np.testing.assert_allclose(vector, [0.6, 0.8], rtol=1e-6)
            assert vector.dtype == np.float32

    def test_dimension_comes_from_model(self, fake_llama, model_file):
        provider = LlamaEmbedder(model_file)

        assert provider.dimension == 2
        assert len(fake_llama.instances) == 1

    def test_cached_model_is_found(self, monkeypatch, model_file):
        monkeypatch.setattr(embedder_module, "get_model_path", lambda: model_file)

        assert LlamaEmbedder().model_file == model_file

    def test_missing_llama_cpp(self, monkeypatch, model_file):
        monkeypatch.setitem(sys.modules, "llama_cpp", None)

        with pytest.raises(ImportError, match="llm"):
            LlamaEmbedder(model_file).load()
