"""Configuration for the budget engine and its front end.

Values are module-level constants with environment variable overrides so
the Streamlit app, the tests and any other caller read the same settings.
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from pathlib import Path

_PROJECT_ROOT = Path(__file__).parent.parent.resolve()


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


DATA_DIR = Path(os.getenv("FINWISE_DATA_DIR", _PROJECT_ROOT / "data"))

# Single snapshot key used by the persistence collaborator
STORAGE_KEY = os.getenv("FINWISE_STORAGE_KEY", "finance_wise_budget")

TICK_SECONDS = float(os.getenv("FINWISE_TICK_SECONDS", "60"))
WARNING_WINDOW = timedelta(minutes=float(os.getenv("FINWISE_WARNING_MINUTES", "3")))

ENFORCE_PERCENTAGE_CAP = _env_flag("FINWISE_ENFORCE_PERCENTAGE_CAP")

LOG_LEVEL = os.getenv("FINWISE_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def ensure_data_dir() -> Path:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return DATA_DIR


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once; safe to call on every Streamlit rerun."""
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
