"""Tests for report formatting."""

import json
from pathlib import Path

from window_similarity.models import Chunk, SimilarityGroup
from window_similarity.reporter import OutputFormat, report_groups

ROOT = Path("/work/project")


def sample_groups():
    chunks = [
        Chunk(id=3, file="/work/project/src/a.py", start_line=10, end_line=14,
              text="def load(path): with open(path) as f: return f.read()"),
        Chunk(id=9, file="/work/project/lib/b.py", start_line=1, end_line=5,
              text="def load(path): with open(path) as f: return f.read()"),
        Chunk(id=12, file="/elsewhere/c.py", start_line=20, end_line=24, text="x"),
    ]
    return [SimilarityGroup(similarity=0.9734, chunks=chunks)]


def test_text_report():
    text = report_groups(sample_groups(), ROOT, 0.8)

    assert "Found 1 similarity groups" in text
    assert "Group #1: Similarity 97.3%" in text
    assert "Files: 3 | Regions: 3 | Lines: 15" in text
    assert "src/a.py:10-14" in text
    assert "/elsewhere/c.py:20-24" in text


def test_markdown_report():
    text = report_groups(sample_groups(), ROOT, 0.8, OutputFormat.MARKDOWN)

    assert text.startswith("# Code Similarity Report")
    assert "| `lib/b.py` | 1-5 |" in text
    assert "def load(path): with open(path) as f: return f.read()" in text


def test_json_report():
    data = json.loads(report_groups(sample_groups(), ROOT, 0.8, OutputFormat.JSON))

    assert data["meta"]["group_count"] == 1
    assert data["meta"]["threshold"] == 0.8
    group = data["groups"][0]
    assert group["similarity"] == 0.9734
    assert group["file_count"] == 3
    assert [c["id"] for c in group["chunks"]] == [3, 9, 12]
    assert group["chunks"][0] == {
        "id": 3,
        "file": "src/a.py",
        "start_line": 10,
        "end_line": 14,
        "chunk": "def load(path): with open(path) as f: return f.read()",
    }


def test_empty_report():
    text = report_groups([], ROOT, 0.8)

    assert "Found 0 similarity groups" in text
