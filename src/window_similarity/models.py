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
Data models for code-window-similarity.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, List, Union

import numpy as np


@dataclass(frozen=True)
class Chunk:
    """A normalized window of source lines, optionally with its embedding."""

    file: str                    # Path of the owning file
    start_line: int              # Starting line number (1-indexed)
    end_line: int                # Ending line number (inclusive)
    text: str                    # Normalized window text
    workspace: str = ""          # Workspace tag scoping the search
    embedding: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    id: Optional[int] = None     # Assigned by the index store on insert

    @property
    def line_count(self) -> int:
        """Number of lines in this chunk."""
        return self.end_line - self.start_line + 1

    def with_embedding(self, embedding: np.ndarray) -> "Chunk":
        """Copy of this chunk carrying the given embedding."""
        return replace(self, embedding=embedding)

    def preview(self, max_chars: int = 60) -> str:
        """Short preview of the content."""
        if len(self.text) > max_chars:
            return self.text[:max_chars-3] + "..."
        return self.text


@dataclass(frozen=True)
class FileRecord:
    """Last known modification time of an indexed file."""

    filepath: str
    modified_at: float           # Unix timestamp


@dataclass(frozen=True)
class SimilarityPair:
    """Two chunks whose embeddings are closer than the admission threshold."""

    chunk_a: Chunk               # Always the lower id
    chunk_b: Chunk
    similarity: float

    @property
    def files(self) -> tuple:
        """Unordered file pair identity."""
        return tuple(sorted((self.chunk_a.file, self.chunk_b.file)))


@dataclass
class SimilarityGroup:
    """Chunks merged from pairwise matches that share an endpoint."""

    similarity: float            # Similarity of the seeding pair
    chunks: List[Chunk]

    @property
    def size(self) -> int:
        """Number of chunks in this group."""
        return len(self.chunks)

    @property
    def files(self) -> List[str]:
        """Unique files in this group, in first-seen order."""
        return list(dict.fromkeys(c.file for c in self.chunks))

    @property
    def file_count(self) -> int:
        """Number of unique files."""
        return len(self.files)

    @property
    def representative(self) -> Chunk:
        return self.chunks[0]

    def total_lines(self) -> int:
        """Total lines covered by the group's windows."""
        return sum(c.line_count for c in self.chunks)


# Per-file analysis outcomes

@dataclass
class Analyzed:
    path: str
    chunk_count: int


@dataclass
class Skipped:
    path: str
    reason: str


@dataclass
class Failed:
    path: str
    error: Exception


FileOutcome = Union[Analyzed, Skipped, Failed]


@dataclass
class RunSummary:
    """Aggregated outcomes of one workspace scan."""

    outcomes: List[FileOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def analyzed(self) -> List[Analyzed]:
        return [o for o in self.outcomes if isinstance(o, Analyzed)]

    @property
    def skipped(self) -> List[Skipped]:
        return [o for o in self.outcomes if isinstance(o, Skipped)]

    @property
    def failed(self) -> List[Failed]:
        return [o for o in self.outcomes if isinstance(o, Failed)]
