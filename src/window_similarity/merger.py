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
Group merge - coalesces ranked pairwise matches into similarity groups.

A single left-to-right pass: each group with more than one chunk absorbs
later, still-intact pairs that share an endpoint with it. This is not a
transitive closure. A chunk absorbed by an earlier group never causes two
later pairs to be merged with each other, and a chunk can end up in more
than one group.

A pair whose two endpoints are both already members of the absorbing
group is consumed without adding anything, so group sizes count distinct
chunks. Merging (A,B), (A,C), (B,C) gives one group of 3 chunks, where
re-appending the already present endpoint would report 4.
"""

from typing import List, Sequence

from .models import Chunk, SimilarityGroup, SimilarityPair


def merge_pairs(pairs: Sequence[SimilarityPair]) -> List[SimilarityGroup]:
    """
    Merge ranked pairs that share an endpoint.

    Args:
        pairs: SimilarityPair list as returned by the search, best first

    Returns:
        SimilarityGroup list with at least 2 chunks each, in seed order.
        The input pairs are not modified.
    """
    clusters: List[List[Chunk]] = [[p.chunk_a, p.chunk_b] for p in pairs]

    for i, target in enumerate(clusters):
        if len(target) <= 1:
            continue

        for candidate in clusters[i + 1:]:
            if len(candidate) != 2:
                continue

            member_ids = {c.id for c in target}
            if candidate[0].id is not None and candidate[0].id in member_ids:
                _absorb(target, candidate.pop(), member_ids)
            elif candidate[1].id is not None and candidate[1].id in member_ids:
                _absorb(target, candidate.pop(0), member_ids)

    return [
        SimilarityGroup(similarity=pair.similarity, chunks=chunks)
        for pair, chunks in zip(pairs, clusters)
        if len(chunks) > 1
    ]


def _absorb(target: List[Chunk], chunk: Chunk, member_ids: set) -> None:
    # Pair whose both endpoints are already members: consume it without duplicating
    if chunk.id not in member_ids:
        target.append(chunk)
