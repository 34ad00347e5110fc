"""Tests for settings validation and config file loading."""

import pytest

from window_similarity.config import (
    Settings,
    find_config_file,
    load_config,
    merge_config_with_cli,
)


class TestSettings:
    def test_defaults_are_valid(self):
        settings = Settings().validate()

        assert settings.window_size == 5
        assert settings.coarse_distance == 0.20
        assert settings.threshold == 0.80
        assert settings.limit == 50

    @pytest.mark.parametrize("overrides", [
        {"window_size": 0},
        {"limit": 0},
        {"batch_size": -1},
        {"embed_workers": 0},
        {"coarse_distance": 0.0},
        {"coarse_distance": 2.5},
        {"threshold": 1.0},
        {"threshold": -0.1},
        {"threshold": 0.5},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ValueError):
            Settings(**overrides).validate()

    def test_coarse_filter_must_be_looser(self):
        Settings(threshold=0.5, coarse_distance=0.5).validate()
        Settings(threshold=0.9, coarse_distance=0.2).validate()

        with pytest.raises(ValueError, match="coarse_distance"):
            Settings(threshold=0.7, coarse_distance=0.2).validate()

    def test_search_params(self):
        params = Settings(limit=7).search_params()

        assert params == {
            "window_size": 5,
            "coarse_distance": 0.20,
            "threshold": 0.80,
            "max_candidates": 100_000,
            "bucket_size": 5,
            "limit": 7,
        }

    def test_from_mapping_ignores_unknown_keys(self):
        settings = Settings.from_mapping({"threshold": 0.9, "exclude": ["x"], "db": "i.db"})

        assert settings.threshold == 0.9
        assert settings.window_size == 5


class TestConfigFile:
    def test_find_in_parent(self, tmp_path):
        (tmp_path / ".wsimrc").write_text("[wsim]\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)

        assert find_config_file(nested) == (tmp_path / ".wsimrc").resolve()

    def test_wsimrc_preferred(self, tmp_path):
        (tmp_path / ".wsimrc").write_text("[wsim]\n")
        (tmp_path / ".wsim.toml").write_text("[wsim]\n")

        assert find_config_file(tmp_path).name == ".wsimrc"

    def test_load_section(self, tmp_path):
        (tmp_path / ".wsim.toml").write_text(
            '[wsim]\nthreshold = 0.9\nexclude = ["vendor/*"]\n\n[other]\nx = 1\n'
        )

        assert load_config(tmp_path) == {"threshold": 0.9, "exclude": ["vendor/*"]}

    def test_invalid_toml_is_ignored(self, tmp_path):
        (tmp_path / ".wsimrc").write_text("[wsim\nthreshold = \n")

        assert load_config(tmp_path) == {}

    def test_missing_section(self, tmp_path):
        (tmp_path / ".wsimrc").write_text("[tool]\nx = 1\n")

        assert load_config(tmp_path) == {}


@pytest.mark.parametrize("config, cli_value, expected", [
    ({"threshold": 0.9}, 0.8, 0.9),
    ({"threshold": 0.9}, 0.95, 0.95),
    ({}, 0.8, 0.8),
])
def test_merge_config_with_cli(config, cli_value, expected):
    assert merge_config_with_cli(config, cli_value, "threshold", 0.8) == expected
