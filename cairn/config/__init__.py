"""
Configuration for cairn projects.
"""

from cairn.config.settings import (
    CairnConfig,
    load_config,
    DEFAULT_CONFIG_FILE,
)

__all__ = [
    "CairnConfig",
    "load_config",
    "DEFAULT_CONFIG_FILE",
]
