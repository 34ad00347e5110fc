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
Embedding model management for code-window-similarity.

Windows are embedded with one GGUF model, fetched from HuggingFace on
first use and cached in ~/.cache/wsim/models/. Its width is the default
dimension of a new index.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import logging
import os

from huggingface_hub import hf_hub_download

from .errors import EmbeddingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    """A downloadable GGUF embedding model."""
    name: str           # Human-readable name
    repo_id: str        # HuggingFace repo ID
    filename: str       # File to download
    size_mb: int        # Approximate size in MB
    dimension: int      # Embedding width, used as the index dimension


EMBEDDING_MODEL = ModelInfo(
    name="all-MiniLM-L6-v2",
    repo_id="second-state/All-MiniLM-L6-v2-Embedding-GGUF",
    filename="all-MiniLM-L6-v2-Q8_0.gguf",
    size_mb=25,
    dimension=384,
)


def get_models_dir() -> Path:
    """Get the models directory (~/.cache/wsim/models/), creating it if needed."""
    cache_dir = Path.home() / ".cache" / "wsim" / "models"
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def get_model_path(model: ModelInfo = EMBEDDING_MODEL) -> Optional[Path]:
    """Path of the cached model file, or None if it has not been downloaded."""
    path = get_models_dir() / model.filename
    return path if path.exists() else None


def download_model(model: ModelInfo = EMBEDDING_MODEL, force: bool = False) -> Path:
    """
    Fetch a model into the cache unless it is already there.

    Args:
        model: Model to fetch
        force: Download again even if cached

    Returns:
        Path to the cached model file

    Raises:
        EmbeddingError: If the download fails
    """
    cached = get_model_path(model)
    if cached and not force:
        logger.debug("%s already downloaded: %s", model.name, cached)
        return cached

    logger.info("Downloading %s (~%d MB) from %s", model.name, model.size_mb, model.repo_id)
    os.environ["HF_HUB_DISABLE_TELEMETRY"] = "1"
    try:
        path = hf_hub_download(
            repo_id=model.repo_id,
            filename=model.filename,
            local_dir=get_models_dir(),
        )
    except Exception as e:
        raise EmbeddingError(f"Download of {model.name} from {model.repo_id} failed: {e}") from e

    return Path(path)


def describe_model(model: ModelInfo = EMBEDDING_MODEL) -> Dict[str, Any]:
    """Name, source, cache location and size of a model."""
    path = get_model_path(model)
    return {
        "name": model.name,
        "repo_id": model.repo_id,
        "path": path,
        "size_mb": round(path.stat().st_size / (1024 * 1024), 1) if path else model.size_mb,
        "dimension": model.dimension,
    }
