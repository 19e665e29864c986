"""
Runtime settings for the ledger service, read from the environment.

Values are read once at import time. Code that needs a setting should
reference it through the module (``config.MAX_ARCHIVE_BYTES``) so tests
can override it with ``monkeypatch.setattr``.
"""

from __future__ import annotations

import os
from pathlib import Path


DATABASE_URL = os.getenv("LEDGER_DB_URL", "sqlite:///./ledger.db")

# Content-addressed avatar images land here as "<sha256>.png".
AVATAR_DIR = Path(os.getenv("LEDGER_AVATAR_DIR", "./avatars"))

MAX_ARCHIVE_BYTES = int(os.getenv("LEDGER_MAX_ARCHIVE_BYTES", str(10 * 1024 * 1024)))
MAX_MEMBER_BYTES = int(os.getenv("LEDGER_MAX_MEMBER_BYTES", str(5 * 1024 * 1024)))
MAX_TRANSACTIONS = int(os.getenv("LEDGER_MAX_TRANSACTIONS", "10000"))

# "reject" fails the whole import on a duplicate reference, "skip" leaves
# the stored row untouched and reports the reference as a conflict.
DUPLICATE_POLICY = os.getenv("LEDGER_DUPLICATE_POLICY", "reject")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("LEDGER_CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LEDGER_LOG_LEVEL", "INFO")

# Used by ledger.client when no base URL is passed explicitly.
API_BASE_URL = os.getenv("LEDGER_API_BASE_URL")
