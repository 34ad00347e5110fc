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
Line-window chunker.

Splits source text into overlapping windows of a fixed number of lines
(one window per line offset) and normalizes whitespace so that formatting
differences do not affect the embedding. No parsing, so every language
is handled the same way.
"""

import re
from typing import List

from .models import Chunk


DEFAULT_WINDOW_SIZE = 5

_WHITESPACE_RUN = re.compile(r"\s+")
_BETWEEN_TAGS = re.compile(r"(?<=>)\s+(?=<)")


def normalize_chunk(chunk: str) -> str:
    """
    Normalize a window of code for comparison.

    Collapses whitespace runs to a single space, drops whitespace between
    adjacent markup tags (``</div> <span>`` -> ``</div><span>``) and trims.
    Idempotent.
    """
    chunk = _WHITESPACE_RUN.sub(" ", chunk)
    chunk = _BETWEEN_TAGS.sub("", chunk)
    return chunk.strip()


def split_into_chunks(text: str, window_size: int = DEFAULT_WINDOW_SIZE) -> List[str]:
    """
    Split text into normalized sliding windows.

    Args:
        text: Full file content
        window_size: Lines per window

    Returns:
        One normalized string per window start ``i`` in
        ``[0, line_count - window_size]``; empty if the text is shorter
        than a single window.
    """
    if window_size <= 0:
        raise ValueError(f"window_size must be positive, got {window_size}")

    lines = text.splitlines()
    return [
        normalize_chunk("\n".join(lines[i:i + window_size]))
        for i in range(len(lines) - window_size + 1)
    ]


def chunk_file(
    text: str,
    file: str,
    window_size: int = DEFAULT_WINDOW_SIZE,
    workspace: str = "",
) -> List[Chunk]:
    """Chunk a file and attach 1-indexed line ranges to every window."""
    return [
        Chunk(
            file=file,
            start_line=i + 1,
            end_line=i + window_size,
            text=window,
            workspace=workspace,
        )
        for i, window in enumerate(split_into_chunks(text, window_size))
    ]
