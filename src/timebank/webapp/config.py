"""Configuration constants for the TimeBank web API."""
from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

SQLITE_FILE_NAME = os.environ.get("TIMEBANK_SQLITE", "timebank.db")
STORAGE_KEY = os.environ.get("TIMEBANK_STORAGE_KEY", "timebankKidsState")
LOG_PATH: Optional[str] = os.environ.get("TIMEBANK_LOG_PATH") or None
APP_TITLE = "TimeBank Kids"

__all__ = [
    "APP_TITLE",
    "LOG_PATH",
    "SQLITE_FILE_NAME",
    "STORAGE_KEY",
]
