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
Incremental scheduler - decides which files need re-embedding.

A file is re-chunked and re-embedded only when it is not in the index yet
or its modification time is newer than the one recorded. Each analysis run
owns an AnalysisSession holding its private copy of the file records, so
nothing leaks between runs.

Files are processed one at a time. The similarity search runs once, after
every write of the run has committed.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple
import fnmatch
import logging
import os
import threading

from .chunker import chunk_file
from .config import Settings
from .embedder import EmbeddingProvider, embed_texts
from .errors import EmbeddingError, InputError, StoreError, StoreUnavailableError
from .merger import merge_pairs
from .models import (
    Analyzed,
    Failed,
    FileOutcome,
    FileRecord,
    RunSummary,
    SimilarityGroup,
    SimilarityPair,
    Skipped,
)
from .store import IndexStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


# Source file extensions analyzed by default
DEFAULT_EXTENSIONS = {
    ".js", ".ts", ".jsx", ".tsx", ".vue", ".html", ".css", ".scss",
    ".py", ".rb", ".php", ".java", ".kt", ".go", ".rs", ".c", ".cpp", ".h",
    ".cs", ".swift", ".m", ".mm", ".sh", ".bash", ".zsh", ".lua", ".r",
    ".scala", ".tsv",
}

# Default patterns to always exclude
DEFAULT_EXCLUDES = [
    "*.git/*",
    "*node_modules/*",
    "*__pycache__/*",
    "*venv/*",
    "*.egg-info/*",
    "*build/*",
    "*dist/*",
    "*.tox/*",
    "*target/*",
    "*.wsim_cache/*",
    "*.d.ts",
    "*.test.*",
    "*.spec.*",
]


@dataclass
class AnalysisSession:
    """
    State of one analysis run.

    Created with AnalysisSession.start() at the beginning of a run and
    discarded at its end. file_cache mirrors the store's file records and
    is only updated after a successful replace_file.
    """
    store: IndexStore
    embedder: EmbeddingProvider
    workspace: str
    settings: Settings = field(default_factory=Settings)
    file_cache: Dict[str, FileRecord] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def start(
        cls,
        store: IndexStore,
        embedder: EmbeddingProvider,
        workspace: str,
        settings: Optional[Settings] = None,
    ) -> "AnalysisSession":
        """
        Create a session and load the current file records.

        An index built with another window size or embedding model is
        cleared first, so every file is analyzed again.
        """
        settings = (settings or Settings()).validate()
        store.reset_if_changed(settings.window_size, embedder.model_id)
        session = cls(
            store=store,
            embedder=embedder,
            workspace=workspace,
            settings=settings,
        )
        session.file_cache = {f.filepath: f for f in store.list_files()}
        return session

    def cancel(self) -> None:
        """Stop the scan before the next file."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


@dataclass
class AnalysisReport:
    """Everything one run produced."""
    summary: RunSummary
    pairs: List[SimilarityPair] = field(default_factory=list)
    groups: List[SimilarityGroup] = field(default_factory=list)


def get_modified_time(path: str) -> float:
    """On-disk modification time as a Unix timestamp. Raises OSError."""
    return os.stat(path).st_mtime


def is_stale(cached: Optional[FileRecord], modified_at: float) -> bool:
    """True if the file is unknown or changed after it was indexed. Equal times are unchanged."""
    return cached is None or modified_at > cached.modified_at


def analyze_file(
    session: AnalysisSession,
    path: str,
    content: bytes,
    modified_at: Optional[float] = None,
) -> FileOutcome:
    """
    Re-index a single file if it changed since it was last indexed.

    Args:
        session: Current analysis session
        path: File path, as stored in the index
        content: Raw file bytes
        modified_at: Modification time taken before content was read;
            looked up now if not given

    Returns:
        Analyzed, Skipped or Failed. Per-file problems never raise.

    Raises:
        StoreUnavailableError: If the index database is gone
    """
    if modified_at is None:
        try:
            modified_at = get_modified_time(path)
        except OSError as e:
            logger.error("Could not determine modification time for %s: %s", path, e)
            return Skipped(path, f"modification time unavailable: {e}")

    if not is_stale(session.file_cache.get(path), modified_at):
        logger.debug("%s unchanged, using indexed chunks", path)
        return Skipped(path, "unchanged")

    settings = session.settings
    try:
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InputError(path, f"not valid UTF-8 ({e.reason} at byte {e.start})") from e

        chunks = chunk_file(text, path, settings.window_size, session.workspace)
        vectors = embed_texts(
            session.embedder,
            [c.text for c in chunks],
            batch_size=settings.batch_size,
            max_workers=settings.embed_workers,
            path=path,
        )
        count = session.store.replace_file(
            path,
            modified_at,
            [c.with_embedding(v) for c, v in zip(chunks, vectors)],
            session.workspace,
        )
    except StoreUnavailableError:
        raise
    except (InputError, EmbeddingError, StoreError) as e:
        logger.error("Analysis failed for %s: %s", path, e)
        return Failed(path, e)

    session.file_cache[path] = FileRecord(filepath=path, modified_at=modified_at)
    logger.info("Analyzed %d chunks in %s", count, os.path.basename(path))
    return Analyzed(path, count)


def analyze_workspace(
    session: AnalysisSession,
    files: Iterable[Tuple[str, Optional[float], bytes]],
    total: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> RunSummary:
    """
    Analyze files sequentially.

    Cancellation is checked before each file; the file in flight either
    commits or rolls back, never half.

    Args:
        session: Current analysis session
        files: (path, modification time or None, raw bytes), consumed lazily
        total: Number of files, for progress reporting
        on_progress: Called as (processed, total, message) after each file
    """
    summary = RunSummary()

    for path, modified_at, content in files:
        if session.cancelled:
            summary.cancelled = True
            logger.warning("Analysis cancelled after %d files", len(summary.outcomes))
            break

        summary.outcomes.append(analyze_file(session, path, content, modified_at))

        if on_progress:
            processed = len(summary.outcomes)
            on_progress(processed, total or processed, "files")

    return summary


def find_source_files(
    root_path: Path,
    focus_patterns: Optional[List[str]] = None,
    exclude_patterns: Optional[List[str]] = None,
) -> List[Path]:
    """
    Find source files under root_path.

    Args:
        root_path: Root directory to scan
        focus_patterns: Only include files matching these patterns
        exclude_patterns: Glob patterns to exclude (added to defaults)

    Returns:
        Sorted list of file paths
    """
    all_excludes = DEFAULT_EXCLUDES + (exclude_patterns or [])
    source_files = []

    for file_path in root_path.rglob("*"):
        if not file_path.is_file():
            continue

        if file_path.suffix.lower() not in DEFAULT_EXTENSIONS:
            continue

        rel_path = str(file_path.relative_to(root_path))

        if any(fnmatch.fnmatch(rel_path, pat) or fnmatch.fnmatch(str(file_path), pat)
               for pat in all_excludes):
            continue

        # If focus patterns are given, file must match at least one
        if focus_patterns:
            if not any(fnmatch.fnmatch(rel_path, pat) or fnmatch.fnmatch(file_path.name, pat)
                       for pat in focus_patterns):
                continue

        source_files.append(file_path)

    return sorted(source_files)


def read_source_files(paths: Iterable[Path]) -> Iterator[Tuple[str, Optional[float], bytes]]:
    """
    Yield (path, modified_at, bytes) for each readable file.

    The modification time is taken before the content is read, so an edit
    landing in between leaves the file stale for the next run. It is None
    if the file cannot be stat'ed. Unreadable files are logged and skipped.
    """
    for path in paths:
        try:
            modified_at = get_modified_time(str(path))
        except OSError:
            modified_at = None
        try:
            content = path.read_bytes()
        except OSError as e:
            logger.error("Cannot read %s: %s", path, e)
            continue
        yield str(path), modified_at, content


def prune_missing(session: AnalysisSession, seen_paths: Set[str]) -> List[str]:
    """
    Drop index entries of workspace files that were not seen in this run.

    Returns:
        Paths that were removed
    """
    root = Path(session.workspace)
    indexed = set(session.store.workspace_files(session.workspace))
    indexed.update(p for p in session.file_cache if Path(p).is_relative_to(root))

    removed = []
    for path in sorted(indexed - seen_paths):
        session.store.delete_file(path)
        session.file_cache.pop(path, None)
        removed.append(path)
        logger.warning("Removed %s from the index (no longer in the workspace)", path)

    return removed


def run_analysis(
    session: AnalysisSession,
    root_path: Path,
    focus_patterns: Optional[List[str]] = None,
    exclude_patterns: Optional[List[str]] = None,
    prune: bool = True,
    on_progress: Optional[ProgressCallback] = None,
) -> AnalysisReport:
    """
    Index the workspace incrementally, then search and merge.

    The search is skipped when the run was cancelled.
    """
    paths = find_source_files(root_path, focus_patterns, exclude_patterns)
    logger.info("Found %d source files under %s", len(paths), root_path)

    summary = analyze_workspace(
        session, read_source_files(paths), total=len(paths), on_progress=on_progress
    )
    report = AnalysisReport(summary=summary)
    if summary.cancelled:
        return report

    if prune:
        prune_missing(session, {str(p) for p in paths})

    report.pairs = session.store.search_similar(
        session.workspace, **session.settings.search_params()
    )
    report.groups = merge_pairs(report.pairs)
    return report
