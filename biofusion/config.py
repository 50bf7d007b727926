"""
Configuration Management Module

This module provides a centralized way to load and access the engine's
runtime settings from the config.yaml file shipped with the package.
The parsed configuration is cached at module level so it is read once.

Fusion *schemes* (calibration, weights, projections) are not part of
this file; they are loaded per engine from the directory given to
initialize(). See biofusion.fusion.scheme.

Usage:
    from biofusion.config import get_config, get_gallery_config
    config = get_config()
    kdtree_min_size = get_gallery_config()["kdtree_min_size"]
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


# Store the singleton instance (module-level variable)
_config_instance: Optional[Dict[str, Any]] = None

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Optional path to the config file.
                     If not provided, uses the config.yaml next to this module.

    Returns:
        Dict containing all configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
    """
    config_path = DEFAULT_CONFIG_PATH if config_path is None else Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    return config or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton.

    Args:
        reload: If True, forces reloading the configuration from disk.

    Returns:
        Dict containing all configuration values.
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get a specific section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "gallery", "score_fusion", "logging")

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


# Convenience functions for commonly used configuration sections
def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration."""
    return get_section("logging")


def get_gallery_config() -> Dict[str, Any]:
    """Get gallery index configuration."""
    return get_section("gallery")


def get_score_fusion_config() -> Dict[str, Any]:
    """Get score fusion defaults."""
    return get_section("score_fusion")


def get_template_fusion_config() -> Dict[str, Any]:
    """Get template fusion defaults."""
    return get_section("template_fusion")


def get_evaluation_config() -> Dict[str, Any]:
    """Get evaluation settings."""
    return get_section("evaluation")


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging from the logging section.

    Meant for entry points (scripts, harness drivers); library modules
    only create their own loggers.

    Args:
        level: Optional level name overriding the configured one.
    """
    log_config = get_logging_config()
    logging.basicConfig(
        level=getattr(logging, (level or log_config.get("level", "INFO")).upper()),
        format=log_config.get(
            "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ),
    )


if __name__ == "__main__":
    # Quick test of the config loading
    print("Testing configuration loader...")

    config = get_config()
    print(f"Successfully loaded config with sections: {list(config.keys())}")
    print(f"kd-tree threshold: {get_gallery_config()['kdtree_min_size']}")
