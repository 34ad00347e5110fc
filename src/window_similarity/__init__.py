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
Code Window Similarity - Find near-duplicate code across a codebase.

Embeds fixed-size line windows, keeps them in an incremental per-file index
and reports groups of windows whose embeddings are nearly identical.

No telemetry. Models cached locally after first download.
"""

__version__ = "0.1.0"

from .chunker import split_into_chunks, normalize_chunk, chunk_file
from .embedder import EmbeddingProvider, LlamaEmbedder, embed_texts
from .store import IndexStore
from .searcher import find_similar_pairs
from .merger import merge_pairs
from .scheduler import AnalysisSession, analyze_file, analyze_workspace, run_analysis
from .reporter import report_groups
from .config import Settings, load_config, find_config_file

__all__ = [
    "__version__",
    "split_into_chunks",
    "normalize_chunk",
    "chunk_file",
    "EmbeddingProvider",
    "LlamaEmbedder",
    "embed_texts",
    "IndexStore",
    "find_similar_pairs",
    "merge_pairs",
    "AnalysisSession",
    "analyze_file",
    "analyze_workspace",
    "run_analysis",
    "report_groups",
    "Settings",
    "load_config",
    "find_config_file",
]
