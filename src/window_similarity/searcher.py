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
Similarity search - finds near-duplicate chunk pairs.

Brute-force cosine comparison over all chunks of a workspace, computed in
row blocks so memory stays bounded. Raw matches are then filtered and
collapsed so that the overlapping windows of one duplicated region are
reported once:

1. coarse admission (cosine distance below coarse_distance), capped
2. drop same-file windows that overlap or nearly overlap
3. fine admission (similarity strictly above threshold)
4. keep the best pair per (file pair, line bucket)
5. rank by similarity and cut at limit
"""

from typing import Dict, List, Sequence, Tuple
import logging

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .models import Chunk, SimilarityPair

logger = logging.getLogger(__name__)


BLOCK_ROWS = 256


def find_similar_pairs(
    chunks: Sequence[Chunk],
    window_size: int = 5,
    coarse_distance: float = 0.20,
    threshold: float = 0.80,
    max_candidates: int = 100_000,
    bucket_size: int = 5,
    limit: int = 50,
) -> List[SimilarityPair]:
    """
    Find ranked similar chunk pairs.

    Args:
        chunks: Persisted chunks with ids and embeddings
        window_size: Lines per window; same-file pairs starting within this
            distance are treated as trivially adjacent
        coarse_distance: Candidate admission, cosine distance must be below this
        threshold: Final admission, similarity must be above this
        max_candidates: Safety cap on coarse candidates; excess is dropped
        bucket_size: Line bucket width for de-duplication
        limit: Maximum pairs returned

    Returns:
        SimilarityPair list, highest similarity first, each with chunk_a.id < chunk_b.id
    """
    if len(chunks) < 2:
        return []

    ordered = sorted(chunks, key=lambda c: c.id)
    candidates = _coarse_candidates(ordered, coarse_distance, max_candidates)

    best: Dict[Tuple, SimilarityPair] = {}
    for i, j, similarity in candidates:
        a, b = ordered[i], ordered[j]

        if a.file == b.file and abs(a.start_line - b.start_line) <= window_size:
            continue
        if similarity <= threshold:
            continue

        pair = SimilarityPair(chunk_a=a, chunk_b=b, similarity=similarity)
        key = (pair.files, (min(a.start_line, b.start_line) // bucket_size) * bucket_size)
        current = best.get(key)
        if current is None or _rank_key(pair) < _rank_key(current):
            best[key] = pair

    ranked = sorted(best.values(), key=_rank_key)
    logger.debug(
        "%d candidates -> %d buckets -> %d returned",
        len(candidates), len(best), min(len(ranked), limit),
    )
    return ranked[:limit]


def _rank_key(pair: SimilarityPair) -> Tuple[float, int, int]:
    """Highest similarity first, then lowest ids."""
    return (-pair.similarity, pair.chunk_a.id, pair.chunk_b.id)


def _coarse_candidates(
    ordered: Sequence[Chunk],
    coarse_distance: float,
    max_candidates: int,
) -> List[Tuple[int, int, float]]:
    """
    Enumerate index pairs (i, j), i < j, with cosine distance below coarse_distance.

    Enumeration runs in (i, j) order and stops at max_candidates.
    """
    vectors = np.vstack([np.asarray(c.embedding, dtype=np.float64) for c in ordered])
    n = len(ordered)
    min_similarity = 1.0 - coarse_distance

    candidates: List[Tuple[int, int, float]] = []
    for start in range(0, n - 1, BLOCK_ROWS):
        stop = min(start + BLOCK_ROWS, n)
        sims = cosine_similarity(vectors[start:stop], vectors[start:])

        for offset in range(stop - start):
            i = start + offset
            row = sims[offset, offset + 1:]
            for k in np.flatnonzero(row > min_similarity):
                candidates.append((i, i + 1 + int(k), min(float(row[k]), 1.0)))
                if len(candidates) >= max_candidates:
                    logger.warning(
                        "Candidate cap of %d pairs reached; remaining pairs ignored",
                        max_candidates,
                    )
                    return candidates

    return candidates
