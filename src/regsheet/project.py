"""Store-level configuration and scaffolding."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


CONFIG_FILENAME = "regsheet.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "max_upload_bytes": 50 * 1024 * 1024,  # 50 MB
    "store_fsync": True,
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
    "model_types": ["BOM Diff", "AAS BOM Diff"],
    "build_types": ["KB Release", "Skinny Release"],
    "release_weeks_before": 2,
    "release_weeks_after": 4,
}

STORE_SUBDIRS = ("files", "sheets", "comments", "locks", "logs")

DEFAULT_STORE_CONFIG = """\
# regsheet store configuration
#
# Uploads larger than this are rejected before parsing.
max_upload_bytes: 52428800

# fsync record files before they replace the previous version.
store_fsync: true

# Vocabularies offered by the upload form and enforced on upload.
model_types:
  - BOM Diff
  - AAS BOM Diff
build_types:
  - KB Release
  - Skinny Release

# Release-week options: weeks before/after the current week.
release_weeks_before: 2
release_weeks_after: 4
"""


def load_store_config(store_dir: Path) -> dict[str, Any]:
    """Load store configuration from ``regsheet.yaml``, with defaults.

    Args:
        store_dir: Root of the regsheet store.

    Returns:
        Merged configuration dict.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = store_dir / CONFIG_FILENAME
    if config_path.exists():
        user_config = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"{config_path} must contain a mapping")
        config.update(user_config)
    return config


def is_store(store_dir: Path) -> bool:
    """Return True if *store_dir* has been initialised with :func:`init_store`."""
    return (store_dir / CONFIG_FILENAME).exists()


def init_store(target_dir: Path) -> Path:
    """Create a new, empty regsheet store at the target directory.

    Args:
        target_dir: Directory to create (must not already contain regsheet.yaml).

    Returns:
        Path to the created store directory.
    """
    target_dir = target_dir.resolve()
    target_dir.mkdir(parents=True, exist_ok=True)

    if is_store(target_dir):
        raise FileExistsError(f"{CONFIG_FILENAME} already exists in {target_dir}")

    (target_dir / CONFIG_FILENAME).write_text(DEFAULT_STORE_CONFIG)
    for name in STORE_SUBDIRS:
        (target_dir / name).mkdir(exist_ok=True)

    return target_dir
