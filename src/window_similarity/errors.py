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

"""Error types for indexing and similarity search."""

from typing import Optional


class WindowSimilarityError(Exception):
    """Base error for code-window-similarity."""

    pass


class InputError(WindowSimilarityError):
    """Source file could not be read or decoded."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot read {path}: {reason}")
        self.path = path
        self.reason = reason


class EmbeddingError(WindowSimilarityError):
    """Embedding provider failed or returned a malformed batch."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        if path:
            message = f"{message} ({path})"
        super().__init__(message)
        self.path = path


class DimensionMismatchError(EmbeddingError):
    """Embedding vector does not have the index dimension."""

    def __init__(self, expected: int, actual: int, path: Optional[str] = None) -> None:
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}", path)
        self.expected = expected
        self.actual = actual


class StoreError(WindowSimilarityError):
    """Index store operation failed; nothing from it was committed."""

    def __init__(self, operation: str, message: str, path: Optional[str] = None) -> None:
        target = f" for {path}" if path else ""
        super().__init__(f"{operation} failed{target}: {message}")
        self.operation = operation
        self.path = path


class StoreUnavailableError(StoreError):
    """Index database cannot be opened. Fatal for the whole run."""

    pass


class SearchError(WindowSimilarityError):
    """Similarity search cannot run."""

    pass
