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
Configuration for wsim.

Analysis tunables live in Settings. Project overrides are read from
.wsimrc or .wsim.toml in the current directory or any parent.
"""

from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Optional, Dict, Any

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # type: ignore

from .model_manager import EMBEDDING_MODEL


CONFIG_NAMES = [".wsimrc", ".wsim.toml"]


@dataclass
class Settings:
    """Tunables for one analysis run."""
    window_size: int = 5            # Lines per chunk
    coarse_distance: float = 0.20   # Candidate admission (cosine distance)
    threshold: float = 0.80         # Final admission (similarity)
    max_candidates: int = 100_000   # Safety cap on candidate pairs
    bucket_size: int = 5            # Line bucket for de-duplication
    limit: int = 50                 # Pairs returned by the search
    batch_size: int = 10            # Texts per embedding call
    embed_workers: int = 1          # Concurrent embedding calls
    dimension: int = EMBEDDING_MODEL.dimension  # Embedding width of the index

    def validate(self) -> "Settings":
        """Raise ValueError if any value is out of range."""
        for name in ("window_size", "max_candidates", "bucket_size", "limit",
                     "batch_size", "embed_workers", "dimension"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1, got {getattr(self, name)}")
        if not 0.0 < self.coarse_distance <= 2.0:
            raise ValueError(f"coarse_distance must be in (0, 2], got {self.coarse_distance}")
        if not 0.0 <= self.threshold < 1.0:
            raise ValueError(f"threshold must be in [0, 1), got {self.threshold}")
        # The coarse filter may only be looser than the fine one
        if 1.0 - self.coarse_distance > self.threshold + 1e-9:
            raise ValueError(
                f"coarse_distance {self.coarse_distance} is stricter than "
                f"threshold {self.threshold}; need 1 - coarse_distance <= threshold"
            )
        return self

    def search_params(self) -> Dict[str, Any]:
        """Keyword arguments for IndexStore.search_similar."""
        params = asdict(self)
        for name in ("batch_size", "embed_workers", "dimension"):
            del params[name]
        return params

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "Settings":
        """Build Settings from a config dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})


def find_config_file(start_path: Path) -> Optional[Path]:
    """
    Search for .wsimrc or .wsim.toml in start_path and parent directories.

    Args:
        start_path: Directory to start searching from

    Returns:
        Path to config file if found, None otherwise
    """
    current = start_path.resolve()

    while True:
        for name in CONFIG_NAMES:
            config_path = current / name
            if config_path.is_file():
                return config_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_config(path: Path) -> Dict[str, Any]:
    """
    Load wsim configuration from .wsimrc or .wsim.toml.

    Returns an empty dict if no config file is found or it cannot be parsed.

    Example config file:
        [wsim]
        window_size = 5
        threshold = 0.85
        limit = 100
        exclude = ["**/tests/**", "**/node_modules/**"]
        focus = ["*.py", "*.ts"]
        db = ".wsim_cache/index.db"
        model = "/path/to/model.gguf"
    """
    config_path = find_config_file(path)

    if config_path is None:
        return {}

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return {}

    return data.get("wsim", {})


def merge_config_with_cli(
    config: dict,
    cli_value,
    config_key: str,
    default_value,
):
    """
    Merge config file value with CLI value.

    If CLI value differs from default, use CLI (user explicitly set it).
    Otherwise, use config value if present, else use default.
    """
    if cli_value != default_value:
        return cli_value

    return config.get(config_key, default_value)
