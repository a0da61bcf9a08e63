"""
villagerdb.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for **non-secret** settings: where the search index
lives on disk, the logical index name, and the indexer's batch and schedule
policy.  Secrets (``DATABASE_URL``, ``JWT_SECRET``) stay in ``.env``.

Usage::

    from villagerdb.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.town_index_name)       # "towns"
    print(cfg.delta_batch_size)      # 100
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class VillagerConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    site_name: str

    # Search index store
    search_index_dir: str
    town_index_name: str = "towns"  # Logical index name + pointer key

    # Delta indexer policy
    delta_batch_size: int = 100
    delta_interval_seconds: int = 300  # Every 5 minutes
    delta_max_batches: int = 1  # Batches drained per scheduled run

    # Housekeeping
    orphan_sweep_interval_seconds: int = 86400  # 0 disables the sweep job

    # Run serialization
    lease_ttl_seconds: int = 900
    full_reindex_lease_ttl_seconds: int = 3600

    # Dream directory
    search_page_size: int = 20


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> VillagerConfig:
    """Read *path* and return a :class:`VillagerConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a batch size or interval is not positive.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = VillagerConfig(site_name="", search_index_dir="")
    cfg = VillagerConfig(
        site_name=raw["site_name"],
        search_index_dir=str(raw["search_index_dir"]),
        town_index_name=raw.get("town_index_name", defaults.town_index_name),
        delta_batch_size=int(raw.get("delta_batch_size", defaults.delta_batch_size)),
        delta_interval_seconds=int(
            raw.get("delta_interval_seconds", defaults.delta_interval_seconds)
        ),
        delta_max_batches=int(raw.get("delta_max_batches", defaults.delta_max_batches)),
        orphan_sweep_interval_seconds=int(
            raw.get("orphan_sweep_interval_seconds", defaults.orphan_sweep_interval_seconds)
        ),
        lease_ttl_seconds=int(raw.get("lease_ttl_seconds", defaults.lease_ttl_seconds)),
        full_reindex_lease_ttl_seconds=int(
            raw.get("full_reindex_lease_ttl_seconds", defaults.full_reindex_lease_ttl_seconds)
        ),
        search_page_size=int(raw.get("search_page_size", defaults.search_page_size)),
    )

    for name in ("delta_batch_size", "delta_interval_seconds", "delta_max_batches",
                 "search_page_size"):
        if getattr(cfg, name) < 1:
            raise ValueError(f"{name} must be >= 1 (got {getattr(cfg, name)})")
    return cfg
