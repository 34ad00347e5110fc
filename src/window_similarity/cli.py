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
CLI entry point for code-window-similarity.

Usage:
    wsim <path> [options]
    wsim --download-models
    wsim --model-status
    wsim --delete-database
    wsim --help
"""

import contextlib
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .config import Settings, load_config, merge_config_with_cli
from .embedder import EmbeddingProvider, LlamaEmbedder
from .errors import EmbeddingError, SearchError, StoreError
from .model_manager import EMBEDDING_MODEL, describe_model, download_model, get_model_path
from .reporter import OutputFormat, report_groups
from .scheduler import AnalysisSession, run_analysis
from .store import IndexStore, get_index_path


# Extension to output format mapping for -o FILE.EXT
EXTENSION_FORMAT_MAP = {
    '.md': 'markdown',
    '.json': 'json',
    '.txt': 'text',
}

DEFAULTS = Settings()


@contextlib.contextmanager
def suppress_stderr():
    """
    Suppress stderr at the OS level (captures C library output like llama.cpp).

    This uses os.dup2 to redirect file descriptor 2 (stderr) to /dev/null,
    which catches output from C extensions that bypass Python's sys.stderr.
    """
    stderr_fd = 2
    saved_stderr = os.dup(stderr_fd)

    try:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, stderr_fd)
        os.close(devnull)
        sys.stderr.flush()
        yield
    finally:
        os.dup2(saved_stderr, stderr_fd)
        os.close(saved_stderr)


def print_progress(current: int, total: int, message: str, width: int = 30):
    """Print a progress bar with message."""
    filled = int(width * current / max(total, 1))
    bar = "=" * filled + ">" + " " * (width - filled - 1) if filled < width else "=" * width
    # Use \r to overwrite line, \033[K to clear to end of line
    click.echo(f"\r   [{bar}] {current}/{total} {message}\033[K", nl=False)
    if current >= total:
        click.echo()


def create_embedder(model_path: Optional[str]) -> EmbeddingProvider:
    """Build the embedding provider, downloading the default model if needed."""
    if model_path is None and get_model_path() is None:
        click.echo("   No embedding model found, downloading...")
        download_model()
    embedder = LlamaEmbedder(Path(model_path) if model_path else None)
    embedder.load()
    logging.getLogger(__name__).info("Embedding model: %s", embedder.model_id)
    return embedder


@contextlib.contextmanager
def cancel_on_interrupt(session: AnalysisSession):
    """
    First Ctrl-C cancels the session after the file in progress; a second one aborts.

    Only usable from the main thread.
    """
    def handle(signum, frame):
        if session.cancelled:
            raise KeyboardInterrupt
        session.cancel()
        click.echo("\n⏹️  Stopping after the current file (Ctrl-C again to abort)...", err=True)

    previous = signal.signal(signal.SIGINT, handle)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def configure_logging(verbose: bool, quiet: bool):
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@click.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, dir_okay=True), required=False)
@click.option(
    "-w", "--window-size",
    type=int,
    default=DEFAULTS.window_size,
    help=f"Lines per chunk (default: {DEFAULTS.window_size})"
)
@click.option(
    "-t", "--threshold",
    type=float,
    default=DEFAULTS.threshold,
    help=f"Similarity threshold 0.0-1.0 (default: {DEFAULTS.threshold})"
)
@click.option(
    "--coarse-distance",
    type=float,
    default=DEFAULTS.coarse_distance,
    help=f"Cosine distance for candidate pairs (default: {DEFAULTS.coarse_distance})"
)
@click.option(
    "--max-candidates",
    type=int,
    default=DEFAULTS.max_candidates,
    help=f"Safety cap on candidate pairs (default: {DEFAULTS.max_candidates})"
)
@click.option(
    "--bucket-size",
    type=int,
    default=DEFAULTS.bucket_size,
    help=f"Line bucket for collapsing overlapping matches (default: {DEFAULTS.bucket_size})"
)
@click.option(
    "--limit",
    type=int,
    default=DEFAULTS.limit,
    help=f"Maximum matches reported (default: {DEFAULTS.limit})"
)
@click.option(
    "--batch-size",
    type=int,
    default=DEFAULTS.batch_size,
    help=f"Embedding batch size (default: {DEFAULTS.batch_size})"
)
@click.option(
    "-e", "--exclude",
    multiple=True,
    help="Glob patterns to exclude (repeatable)"
)
@click.option(
    "-f", "--focus",
    multiple=True,
    help="Only analyze matching paths (repeatable)"
)
@click.option(
    "--db",
    type=click.Path(dir_okay=False),
    default=None,
    help="Index database (default: .wsim_cache/index.db)"
)
@click.option(
    "--model",
    type=click.Path(exists=True),
    default=None,
    help="Path to GGUF embedding model (auto-detected)"
)
@click.option(
    "-o", "--output",
    type=str,
    default=None,
    help="Output file path (e.g., report.md, data.json, report.txt)"
)
@click.option(
    "--prune/--no-prune",
    default=True,
    help="Drop index entries for files no longer in the workspace (default: on)"
)
@click.option(
    "--stats",
    is_flag=True,
    help="Show index statistics and exit"
)
@click.option(
    "--delete-database",
    is_flag=True,
    help="Delete the index database and exit"
)
@click.option(
    "-y", "--yes",
    is_flag=True,
    help="Do not ask for confirmation"
)
@click.option(
    "--download-models",
    is_flag=True,
    help="Download the embedding model and exit"
)
@click.option(
    "--model-status",
    is_flag=True,
    help="Show status of the embedding model and exit"
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Show debug logging"
)
@click.option(
    "-q", "--quiet",
    is_flag=True,
    help="Suppress progress and model loading messages"
)
@click.version_option(version=__version__)
def main(
    path: Optional[str],
    window_size: int,
    threshold: float,
    coarse_distance: float,
    max_candidates: int,
    bucket_size: int,
    limit: int,
    batch_size: int,
    exclude: tuple,
    focus: tuple,
    db: Optional[str],
    model: Optional[str],
    output: Optional[str],
    prune: bool,
    stats: bool,
    delete_database: bool,
    yes: bool,
    download_models: bool,
    model_status: bool,
    verbose: bool,
    quiet: bool,
):
    """
    Find near-duplicate code windows across a codebase.

    PATH is the workspace root to analyze. Unchanged files are not
    re-embedded; the index lives in .wsim_cache/ in the current directory.

    Examples:

      # Analyze and print groups
      wsim ./src

      # Stricter matches, markdown report
      wsim ./src --threshold 0.9 -o report.md

      # Start over
      wsim --delete-database
    """
    configure_logging(verbose, quiet)

    # Handle model management commands (don't require path)
    if model_status:
        info = describe_model()
        click.echo(f"📊 Embedding model: {info['name']}")
        click.echo(f"   Source: {info['repo_id']}")
        if info["path"]:
            click.echo(f"   ✅ Path: {info['path']}")
            click.echo(f"   Size: {info['size_mb']} MB, {info['dimension']} dimensions")
        else:
            click.echo("   ❌ Not downloaded (run: wsim --download-models)")
            click.echo(f"   Size: ~{info['size_mb']} MB, {info['dimension']} dimensions")
        sys.exit(0)

    if download_models:
        click.echo(f"📥 Downloading {EMBEDDING_MODEL.name} (~{EMBEDDING_MODEL.size_mb} MB)...")
        try:
            model_file = download_model()
        except EmbeddingError as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)
        click.echo(f"✅ Model ready: {model_file}")
        sys.exit(0)

    config = load_config(Path(path).resolve() if path else Path.cwd())
    db_path = Path(db or config.get("db") or get_index_path(Path.cwd()))

    if delete_database:
        if not yes:
            click.confirm(
                f"Delete the index database at {db_path}? This cannot be undone.",
                abort=True,
            )
        try:
            with IndexStore(db_path, dimension=None) as store:
                store.delete_database()
        except StoreError as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)
        click.echo("🗑️  Deleted index database")
        sys.exit(0)

    if stats:
        try:
            with IndexStore(db_path, dimension=None) as store:
                info = store.stats()
        except StoreError as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)
        click.echo(f"📊 Index: {db_path}")
        click.echo(f"   Files: {info['total_files']}")
        click.echo(f"   Chunks: {info['total_chunks']}")
        click.echo(f"   Workspaces: {', '.join(info['workspaces']) or '-'}")
        click.echo(f"   Window: {info['window_size'] or '-'} lines")
        click.echo(f"   Model: {info['model'] or '-'} ({info['dimension'] or '-'} dimensions)")
        click.echo(f"   Size: {info['total_size_mb']} MB")
        sys.exit(0)

    # Path is required for analysis
    if path is None:
        click.echo("❌ Error: PATH is required for analysis.", err=True)
        click.echo("   Use --help for usage information.", err=True)
        sys.exit(1)

    root_path = Path(path).resolve()

    # Config values override defaults, but explicit CLI args override config
    cli_values = {
        "window_size": window_size,
        "threshold": threshold,
        "coarse_distance": coarse_distance,
        "max_candidates": max_candidates,
        "bucket_size": bucket_size,
        "limit": limit,
        "batch_size": batch_size,
    }
    values = dict(config)
    for name, value in cli_values.items():
        values[name] = merge_config_with_cli(config, value, name, getattr(DEFAULTS, name))
    settings = Settings.from_mapping(values)

    # A lowered threshold widens the default coarse filter along with it
    if (settings.coarse_distance == DEFAULTS.coarse_distance
            and 1.0 - settings.coarse_distance > settings.threshold):
        settings.coarse_distance = round(1.0 - settings.threshold, 6)
    try:
        settings.validate()
    except (ValueError, TypeError) as e:
        click.echo(f"❌ Invalid settings: {e}", err=True)
        sys.exit(2)

    # These are lists in config, tuples from CLI
    if not exclude and isinstance(config.get("exclude"), list):
        exclude = tuple(config["exclude"])
    if not focus and isinstance(config.get("focus"), list):
        focus = tuple(config["focus"])
    if model is None and "model" in config:
        model = config["model"]

    if verbose:
        click.echo(f"🔍 Analyzing: {root_path}")
        click.echo(f"   Index: {db_path}")
        click.echo(f"   Window: {settings.window_size} lines, threshold: {settings.threshold}")

    try:
        with suppress_stderr() if quiet else contextlib.nullcontext():
            embedder = create_embedder(model)
            # The model decides the width of the index
            if embedder.dimension is not None:
                settings.dimension = embedder.dimension
        store = IndexStore(db_path, dimension=settings.dimension)
    except (ImportError, FileNotFoundError, EmbeddingError, StoreError) as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    with store:
        click.echo("📂 Indexing changed files...")
        try:
            session = AnalysisSession.start(store, embedder, str(root_path), settings)
            with cancel_on_interrupt(session):
                with suppress_stderr() if quiet else contextlib.nullcontext():
                    report = run_analysis(
                        session,
                        root_path,
                        focus_patterns=list(focus),
                        exclude_patterns=list(exclude),
                        prune=prune,
                        on_progress=None if quiet else print_progress,
                    )
        except KeyboardInterrupt:
            click.echo("\n⏹️  Aborted. The file in progress was rolled back.", err=True)
            sys.exit(130)
        except (StoreError, SearchError) as e:
            click.echo(f"\n❌ {e}", err=True)
            sys.exit(1)

    if report.summary.cancelled:
        click.echo(
            f"\n⏹️  Cancelled after {len(report.summary.outcomes)} files; no search was run.",
            err=True,
        )
        sys.exit(130)

    summary = report.summary
    click.echo(
        f"   Analyzed {len(summary.analyzed)}, unchanged {len(summary.skipped)}, "
        f"failed {len(summary.failed)}"
    )
    for failure in summary.failed:
        click.echo(f"   ⚠️  {failure.error}", err=True)

    if not report.groups:
        click.echo("✨ No similar regions found above threshold.")
        sys.exit(0)

    if output:
        output_path = Path(output)
        ext = output_path.suffix.lower()

        if ext not in EXTENSION_FORMAT_MAP:
            valid_exts = ', '.join(EXTENSION_FORMAT_MAP.keys())
            click.echo(f"❌ Invalid output extension '{ext}'. Valid: {valid_exts}", err=True)
            sys.exit(1)

        text = report_groups(
            report.groups, root_path, settings.threshold, OutputFormat(EXTENSION_FORMAT_MAP[ext])
        )
        output_path.write_text(text)
        click.echo(f"   ✅ Report written to: {output_path}")
    else:
        click.echo()
        click.echo(report_groups(report.groups, root_path, settings.threshold))


# Entry point alias for pyproject.toml
cli = main


if __name__ == "__main__":
    main()
