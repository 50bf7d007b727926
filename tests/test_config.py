"""
Tests for the configuration module.

Run with: pytest tests/test_config.py -v
"""

import logging
import os
import sys

import pytest
import yaml

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from biofusion.config import (
    DEFAULT_CONFIG_PATH,
    configure_logging,
    get_config,
    get_evaluation_config,
    get_gallery_config,
    get_score_fusion_config,
    get_section,
    get_template_fusion_config,
    load_config,
)


class TestLoadConfig:
    """Tests for reading YAML configuration files."""

    def test_default_file_exists(self):
        assert DEFAULT_CONFIG_PATH.exists()

    def test_default_sections(self):
        config = load_config()
        for section in ("logging", "gallery", "score_fusion", "template_fusion",
                        "verifier", "evaluation"):
            assert section in config

    def test_custom_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"gallery": {"kdtree_min_size": 10}}))
        config = load_config(str(path))
        assert config["gallery"]["kdtree_min_size"] == 10

    def test_empty_file_gives_empty_dict(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))


class TestConfigAccessors:
    """Tests for the cached singleton and section helpers."""

    def test_singleton_is_cached(self):
        assert get_config() is get_config()

    def test_reload_returns_fresh_dict(self):
        first = get_config()
        second = get_config(reload=True)
        assert first == second

    def test_unknown_section(self):
        with pytest.raises(KeyError):
            get_section("does_not_exist")

    def test_gallery_defaults(self):
        gallery = get_gallery_config()
        assert gallery["kdtree_min_size"] == 2048
        assert gallery["leafsize"] > 0

    def test_fusion_defaults(self):
        assert get_score_fusion_config()["combination"] == "mean"
        assert get_score_fusion_config()["min_valid_scores"] == 1
        assert get_template_fusion_config()["min_valid_inputs"] == 1

    def test_evaluation_targets(self):
        assert get_evaluation_config()["fmr_targets"] == [0.001, 0.01, 0.1]


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_does_not_raise(self):
        configure_logging()
        configure_logging("debug")
        assert logging.getLogger("biofusion") is not None
