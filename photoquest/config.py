"""
photoquest.config — YAML Configuration Loader
===============================================

Reads ``config.yaml`` for **infrastructure-only** settings (artifact
storage, classifier endpoint, API port).  Gameplay tuning values (XP
multiplier, daily quota, moderation thresholds) live in the ``settings``
database table and are read through :class:`ConfigCache`.

Secrets never go in YAML: ``DATABASE_URL``, ``JWT_SECRET`` and
``CLASSIFIER_API_KEY`` come from the environment (``.env``).

Usage::

    from photoquest.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.artifact_dir)      # "data/artifacts"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PhotoQuestConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    app_name: str

    # Object store
    artifact_dir: str
    artifact_base_url: str

    # API
    api_port: int

    # Remote classifier (None disables it; moderation falls back locally)
    classifier_url: str | None = None
    classifier_timeout_seconds: float = 10.0

    # Database calls made from async code
    db_timeout_seconds: float = 10.0

    # Seconds before a failed reward settlement is retried
    settlement_retry_delay: float = 5.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> PhotoQuestConfig:
    """Read *path* and return a :class:`PhotoQuestConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return PhotoQuestConfig(
        app_name=raw["app_name"],
        artifact_dir=raw["artifact_dir"],
        artifact_base_url=raw.get("artifact_base_url", "/api/artifacts"),
        api_port=int(raw["api_port"]),
        classifier_url=raw.get("classifier_url") or None,
        classifier_timeout_seconds=float(raw.get("classifier_timeout_seconds", 10.0)),
        db_timeout_seconds=float(raw.get("db_timeout_seconds", 10.0)),
        settlement_retry_delay=float(raw.get("settlement_retry_delay", 5.0)),
    )
