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
Index store for code-window-similarity.

Persists one row per chunk (file, line range, normalized text, embedding,
workspace) and one row per tracked file (path, last modification time)
in SQLite. Embeddings are stored as float32 blobs.

A file's chunks are only ever replaced as a whole: delete, upsert the file
record and insert run in one transaction, so a reader sees either the old
chunk set or the new one.
"""

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

import numpy as np

from .errors import DimensionMismatchError, SearchError, StoreError, StoreUnavailableError
from .models import Chunk, FileRecord, SimilarityPair
from .searcher import find_similar_pairs

logger = logging.getLogger(__name__)


CACHE_DIR = ".wsim_cache"
INDEX_DB = "index.db"
DEFAULT_DIMENSION = 384

SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    filepath TEXT PRIMARY KEY,
    modified_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS code_chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    start_line INTEGER NOT NULL,
    end_line INTEGER NOT NULL,
    chunk TEXT NOT NULL,
    file TEXT NOT NULL REFERENCES files(filepath),
    workspace TEXT NOT NULL,
    embedding BLOB NOT NULL
);

CREATE TABLE IF NOT EXISTS index_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_file ON code_chunks(file);
CREATE INDEX IF NOT EXISTS idx_chunks_workspace ON code_chunks(workspace);
"""

DROP_SCHEMA = """
DROP TABLE IF EXISTS code_chunks;
DROP TABLE IF EXISTS files;
DROP TABLE IF EXISTS index_meta;
"""


def get_index_path(project_root: Path = None) -> Path:
    """
    Get path to the index database. Creates .wsim_cache/ directory if needed.

    Args:
        project_root: Root directory for the cache. Defaults to current working directory.
    """
    if project_root is None:
        project_root = Path.cwd()

    cache_dir = project_root / CACHE_DIR
    cache_dir.mkdir(exist_ok=True)

    return cache_dir / INDEX_DB


class IndexStore:
    """
    SQLite-backed chunk index.

    All operations are serialized by a lock, so a search never observes a
    file's chunks half replaced. Use as a context manager or call close().
    """

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        dimension: Optional[int] = DEFAULT_DIMENSION,
    ):
        self.db_path = str(db_path)
        # None adopts the width recorded in an existing index
        self.dimension = dimension
        self._requested_dimension = dimension
        self._lock = threading.RLock()

        try:
            # Autocommit mode; transactions are opened explicitly
            self._conn = sqlite3.connect(
                self.db_path, isolation_level=None, check_same_thread=False
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError("open", str(e), self.db_path) from e

        try:
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA)
            self._check_dimension()
        except sqlite3.Error as e:
            self._conn.close()
            raise StoreUnavailableError("open", str(e), self.db_path) from e
        except DimensionMismatchError:
            self._conn.close()
            raise

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the body in one write transaction; roll back on any exception."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def _get_meta(self, key: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT value FROM index_meta WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row else None

    def _set_meta(self, key: str, value) -> None:
        self._conn.execute(
            """
            INSERT INTO index_meta (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (key, str(value)),
        )

    def _check_dimension(self) -> None:
        recorded = self._get_meta("dimension")
        if recorded is None:
            if self.dimension is not None:
                self._set_meta("dimension", self.dimension)
        elif self.dimension is None:
            self.dimension = int(recorded)
        elif int(recorded) != self.dimension:
            raise DimensionMismatchError(int(recorded), self.dimension, self.db_path)

    def reset_if_changed(self, window_size: int, model_id: str) -> bool:
        """
        Record the window size and model the indexed chunks were built with.

        Chunks cut with another window size or embedded by another model are
        not comparable with new ones. If either differs from what the index
        recorded, all chunks and file records are dropped, so every file is
        stale for the next analysis.

        Returns:
            True if the index was cleared.
        """
        expected = {"window_size": str(window_size), "model": model_id}
        try:
            with self._transaction() as conn:
                recorded = {key: self._get_meta(key) for key in expected}
                changed = any(
                    value is not None and value != expected[key]
                    for key, value in recorded.items()
                )
                if changed:
                    conn.execute("DELETE FROM code_chunks")
                    conn.execute("DELETE FROM files")
                for key, value in expected.items():
                    self._set_meta(key, value)
        except sqlite3.Error as e:
            raise StoreError("reset_if_changed", str(e), self.db_path) from e

        if changed:
            logger.warning(
                "Index was built with window_size=%s, model=%s; re-indexing with "
                "window_size=%s, model=%s",
                recorded["window_size"], recorded["model"], window_size, model_id,
            )
        return changed

    def _insert_chunks(
        self,
        conn: sqlite3.Connection,
        file_path: str,
        chunks: Iterable[Chunk],
        workspace: str,
    ) -> int:
        """Validate and insert chunk rows. Raises before anything is committed."""
        if self.dimension is None:
            raise StoreError("replace_file", "index has no embedding dimension", file_path)
        rows = []
        for chunk in chunks:
            if chunk.embedding is None:
                raise DimensionMismatchError(self.dimension, 0, file_path)
            embedding = np.asarray(chunk.embedding, dtype=np.float32).ravel()
            if embedding.shape[0] != self.dimension:
                raise DimensionMismatchError(self.dimension, embedding.shape[0], file_path)
            rows.append((
                chunk.start_line,
                chunk.end_line,
                chunk.text,
                file_path,
                workspace,
                embedding.tobytes(),
            ))

        conn.executemany(
            """
            INSERT INTO code_chunks (start_line, end_line, chunk, file, workspace, embedding)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        return len(rows)

    def replace_file(
        self,
        file_path: str,
        modified_at: float,
        chunks: Iterable[Chunk],
        workspace: str,
    ) -> int:
        """
        Atomically replace everything stored for a file.

        Deletes the file's chunks, upserts its modification time and inserts
        the new chunks in one transaction. On any failure the transaction is
        rolled back and the store is left exactly as before.

        Args:
            file_path: Path of the file
            modified_at: File modification time (Unix timestamp)
            chunks: Chunks carrying embeddings
            workspace: Workspace tag for the new rows

        Returns:
            Number of chunk rows inserted.

        Raises:
            DimensionMismatchError: If any embedding is missing or has the wrong width
            StoreError: If the transaction fails
        """
        try:
            with self._transaction() as conn:
                conn.execute("DELETE FROM code_chunks WHERE file = ?", (file_path,))
                conn.execute(
                    """
                    INSERT INTO files (filepath, modified_at) VALUES (?, ?)
                    ON CONFLICT (filepath) DO UPDATE SET modified_at = excluded.modified_at
                    """,
                    (file_path, modified_at),
                )
                inserted = self._insert_chunks(conn, file_path, chunks, workspace)
        except sqlite3.Error as e:
            raise StoreError("replace_file", str(e), file_path) from e

        logger.debug("Stored %d chunks for %s", inserted, file_path)
        return inserted

    def delete_file(self, file_path: str) -> int:
        """
        Remove a file's chunks and its record.

        Returns:
            Number of chunk rows removed.
        """
        try:
            with self._transaction() as conn:
                cursor = conn.execute("DELETE FROM code_chunks WHERE file = ?", (file_path,))
                conn.execute("DELETE FROM files WHERE filepath = ?", (file_path,))
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError("delete_file", str(e), file_path) from e

    def list_files(self) -> List[FileRecord]:
        """Return all tracked files."""
        with self._lock:
            rows = self._query(
                "list_files", "SELECT filepath, modified_at FROM files ORDER BY filepath"
            )
        return [FileRecord(filepath=row[0], modified_at=row[1]) for row in rows]

    def workspace_files(self, workspace: str) -> List[str]:
        """Distinct files that have chunks in the workspace."""
        with self._lock:
            rows = self._query(
                "workspace_files",
                "SELECT DISTINCT file FROM code_chunks WHERE workspace = ? ORDER BY file",
                (workspace,),
            )
        return [row[0] for row in rows]

    def load_chunks(self, workspace: str) -> List[Chunk]:
        """Load the workspace's chunks with embeddings, ordered by id."""
        with self._lock:
            rows = self._query(
                "load_chunks",
                """
                SELECT id, start_line, end_line, chunk, file, workspace, embedding
                FROM code_chunks
                WHERE workspace = ?
                ORDER BY id
                """,
                (workspace,),
            )
        return [
            Chunk(
                id=row[0],
                start_line=row[1],
                end_line=row[2],
                text=row[3],
                file=row[4],
                workspace=row[5],
                embedding=np.frombuffer(row[6], dtype=np.float32),
            )
            for row in rows
        ]

    def search_similar(
        self,
        workspace: Optional[str],
        window_size: int = 5,
        coarse_distance: float = 0.20,
        threshold: float = 0.80,
        max_candidates: int = 100_000,
        bucket_size: int = 5,
        limit: int = 50,
    ) -> List[SimilarityPair]:
        """
        Find ranked, de-duplicated similar chunk pairs within a workspace.

        Read-only. See searcher.find_similar_pairs for the ranking rules.

        Raises:
            SearchError: If no workspace tag is given
        """
        if not workspace:
            raise SearchError("No workspace given; similarity search needs a workspace tag")

        with self._lock:
            chunks = self.load_chunks(workspace)
            return find_similar_pairs(
                chunks,
                window_size=window_size,
                coarse_distance=coarse_distance,
                threshold=threshold,
                max_candidates=max_candidates,
                bucket_size=bucket_size,
                limit=limit,
            )

    def stats(self) -> dict:
        """
        Return statistics about the index.

        Returns:
            Dictionary with keys:
            - total_files: Number of tracked files
            - total_chunks: Number of stored chunks
            - workspaces: List of workspace tags present
            - dimension: Embedding width (None if nothing was recorded yet)
            - window_size: Lines per chunk the index was built with
            - model: Embedding model the index was built with
            - total_size_mb: Size of the database file (0 for in-memory)
        """
        with self._lock:
            total_files = self._query("stats", "SELECT COUNT(*) FROM files")[0][0]
            total_chunks = self._query("stats", "SELECT COUNT(*) FROM code_chunks")[0][0]
            meta = dict(self._query("stats", "SELECT key, value FROM index_meta"))
            workspaces = [
                row[0] for row in self._query(
                    "stats", "SELECT DISTINCT workspace FROM code_chunks ORDER BY workspace"
                )
            ]

        size_mb = 0.0
        if self.db_path != ":memory:" and Path(self.db_path).exists():
            size_mb = Path(self.db_path).stat().st_size / (1024 * 1024)

        return {
            "total_files": total_files,
            "total_chunks": total_chunks,
            "workspaces": workspaces,
            "dimension": self.dimension,
            "window_size": int(meta["window_size"]) if "window_size" in meta else None,
            "model": meta.get("model"),
            "total_size_mb": round(size_mb, 2),
        }

    def delete_database(self) -> None:
        """Drop all persisted state and start over with an empty index."""
        try:
            with self._lock:
                self._conn.executescript(DROP_SCHEMA)
                self._conn.executescript(SCHEMA)
                self.dimension = self._requested_dimension
                self._check_dimension()
                self._conn.execute("VACUUM")
        except sqlite3.Error as e:
            raise StoreError("delete_database", str(e), self.db_path) from e
        logger.warning("Deleted index database %s", self.db_path)

    def _query(self, operation: str, sql: str, params: tuple = ()) -> list:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(operation, str(e)) from e
