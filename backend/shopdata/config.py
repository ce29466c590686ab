# backend/shopdata/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Where snapshots live: "file" (one JSON document per collection),
    # "sql" (one row per collection) or "memory" (nothing survives restart)
    SNAPSHOT_BACKEND = os.environ.get("SHOPDATA_SNAPSHOT_BACKEND", "file")

    # Directory for the file backend, relative to the working directory
    DATA_DIR = os.environ.get("SHOPDATA_DATA_DIR", ".data")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopdata.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Quiet period before a burst of mutations is written out
    SAVE_DEBOUNCE_SECONDS = float(os.environ.get("SHOPDATA_SAVE_DEBOUNCE_SECONDS", "0.2"))

    ACTIVITY_LOG_LIMIT = int(os.environ.get("SHOPDATA_ACTIVITY_LOG_LIMIT", "1000"))

    # Seed the static catalog when the product collection loads empty
    SEED_CATALOG = _env_bool("SHOPDATA_SEED_CATALOG", True)

    # Net margin (%) under which profit alerts are raised
    PROFIT_LOW_MARGIN_THRESHOLD = float(os.environ.get("SHOPDATA_LOW_MARGIN_THRESHOLD", "10"))

    # Fraction of the selling price assumed as unit cost when no cost data exists
    ESTIMATED_COST_RATIO = float(os.environ.get("SHOPDATA_ESTIMATED_COST_RATIO", "0.7"))


class TestConfig(Config):
    TESTING = True
    SNAPSHOT_BACKEND = "memory"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SAVE_DEBOUNCE_SECONDS = 0.05
    SEED_CATALOG = False
