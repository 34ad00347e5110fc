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
Report generator - formats similarity groups for output.

Supports text, markdown, and json output formats.
"""

from typing import List
from pathlib import Path
from enum import Enum
import json
from datetime import datetime

from .models import Chunk, SimilarityGroup


class OutputFormat(Enum):
    TEXT = "text"
    MARKDOWN = "markdown"
    JSON = "json"


def report_groups(
    groups: List[SimilarityGroup],
    root_path: Path,
    threshold: float,
    output_format: OutputFormat = OutputFormat.TEXT,
) -> str:
    """
    Generate a report of similarity groups.

    Args:
        groups: List of SimilarityGroup objects
        root_path: Workspace root (paths are shown relative to it)
        threshold: Similarity threshold used
        output_format: Desired output format

    Returns:
        Formatted report string
    """
    if output_format == OutputFormat.TEXT:
        return _format_text(groups, root_path, threshold)
    elif output_format == OutputFormat.MARKDOWN:
        return _format_markdown(groups, root_path, threshold)
    elif output_format == OutputFormat.JSON:
        return _format_json(groups, root_path, threshold)
    else:
        raise ValueError(f"Unknown format: {output_format}")


def _display_path(chunk: Chunk, root_path: Path) -> str:
    try:
        return str(Path(chunk.file).relative_to(root_path))
    except ValueError:
        return chunk.file


def _location(chunk: Chunk, root_path: Path) -> str:
    return f"{_display_path(chunk, root_path)}:{chunk.start_line}-{chunk.end_line}"


def _format_text(
    groups: List[SimilarityGroup],
    root_path: Path,
    threshold: float,
) -> str:
    """Plain text format with unicode decorations."""
    lines = []

    lines.append(f"🔍 Found {len(groups)} similarity groups in {root_path}")
    lines.append(f"   Threshold: {threshold:.0%}")
    lines.append("")

    for number, group in enumerate(groups, 1):
        lines.append("━" * 70)
        lines.append(f"Group #{number}: Similarity {group.similarity:.1%}")
        lines.append(f"Files: {group.file_count} | Regions: {group.size} | Lines: {group.total_lines()}")
        lines.append("━" * 70)
        lines.append("")

        lines.append("📍 Similar Regions:")
        for chunk in group.chunks:
            lines.append(f"   • {_location(chunk, root_path)}")
            lines.append(f"     └─ {chunk.preview(60)}")
        lines.append("")

    return "\n".join(lines)


def _format_markdown(
    groups: List[SimilarityGroup],
    root_path: Path,
    threshold: float,
) -> str:
    """Markdown format for documentation."""
    lines = []

    lines.append("# Code Similarity Report")
    lines.append("")
    lines.append(f"**Path:** `{root_path}`  ")
    lines.append(f"**Threshold:** {threshold:.0%}  ")
    lines.append(f"**Groups Found:** {len(groups)}")
    lines.append("")

    for number, group in enumerate(groups, 1):
        lines.append(f"## Group {number}: {group.similarity:.1%} Similarity")
        lines.append("")
        lines.append(f"**{group.size} regions** across **{group.file_count} files**")
        lines.append("")

        lines.append("| File | Lines |")
        lines.append("|------|-------|")
        for chunk in group.chunks:
            lines.append(
                f"| `{_display_path(chunk, root_path)}` | {chunk.start_line}-{chunk.end_line} |"
            )
        lines.append("")

        rep = group.representative
        lines.append(f"Normalized text of `{_location(rep, root_path)}`:")
        lines.append("")
        lines.append("```")
        lines.append(rep.text)
        lines.append("```")
        lines.append("")
        lines.append("---")
        lines.append("")

    return "\n".join(lines)


def _format_json(
    groups: List[SimilarityGroup],
    root_path: Path,
    threshold: float,
) -> str:
    """JSON format for programmatic use."""
    data = {
        "meta": {
            "path": str(root_path),
            "threshold": threshold,
            "group_count": len(groups),
            "timestamp": datetime.now().isoformat(),
        },
        "groups": [
            {
                "similarity": round(group.similarity, 4),
                "file_count": group.file_count,
                "chunks": [
                    {
                        "id": chunk.id,
                        "file": _display_path(chunk, root_path),
                        "start_line": chunk.start_line,
                        "end_line": chunk.end_line,
                        "chunk": chunk.text,
                    }
                    for chunk in group.chunks
                ],
            }
            for group in groups
        ],
    }

    return json.dumps(data, indent=2)
