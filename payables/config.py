"""Runtime configuration for the payables desk, read from the environment."""
from __future__ import annotations

import os
from pathlib import Path

# Remote commission platform (GraphQL feeds + batch endpoints)
API_BASE_URL = os.getenv("PAYABLES_API_BASE_URL", "http://localhost:5000").rstrip("/")
API_TOKEN = os.getenv("PAYABLES_API_TOKEN", "")
REQUEST_TIMEOUT = float(os.getenv("PAYABLES_REQUEST_TIMEOUT", "60"))

# Rows requested per leaf-feed page, and rows shown per page of an expanded bonus
LEAF_PAGE_SIZE = int(os.getenv("PAYABLES_LEAF_PAGE_SIZE", "10000"))
DISPLAY_PAGE_SIZE = int(os.getenv("PAYABLES_DISPLAY_PAGE_SIZE", "10"))

DEFAULT_SQLITE_PATH = Path("data/payables.db")
DATABASE_URL = os.getenv("PAYABLES_DATABASE_URL", f"sqlite:///{DEFAULT_SQLITE_PATH}")

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
LOG_LEVEL = os.getenv("PAYABLES_LOG_LEVEL", "INFO").upper()
