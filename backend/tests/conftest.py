"""
Shared fixtures: a throwaway SQLite database and avatar directory, a
TestClient over the app, and a helper that builds archives in memory.

Run with: pytest -v
"""

import io
import json
import os
import tempfile
import zipfile

import pytest

# Point the service at scratch storage before ledger is imported.
_TMP_DIR = tempfile.mkdtemp(prefix="ledger-tests-")
os.environ["LEDGER_DB_URL"] = f"sqlite:///{_TMP_DIR}/ledger.db"
os.environ["LEDGER_AVATAR_DIR"] = os.path.join(_TMP_DIR, "avatars")

from fastapi.testclient import TestClient  # noqa: E402

from ledger.db import Base, engine  # noqa: E402
from ledger.main import app  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

ANA = {"firstName": "Ana", "lastName": "Lee"}
ANA_TRANSACTIONS = [
    {"reference": "T1", "amount": "12.50", "currency": "USD", "timestamp": "2024-01-01T00:00:00Z"},
]


def make_archive(user=ANA, transactions=ANA_TRANSACTIONS, avatar=None, extra=None, prefix=""):
    """
    Build a ZIP archive in memory.

    Pass ``user=None`` / ``transactions=None`` to leave a member out; pass
    bytes to write a member verbatim (for malformed JSON).
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        if user is not None:
            data = user if isinstance(user, bytes) else json.dumps(user).encode()
            archive.writestr(f"{prefix}userData.json", data)
        if transactions is not None:
            data = transactions if isinstance(transactions, bytes) else json.dumps(transactions).encode()
            archive.writestr(f"{prefix}transactions.json", data)
        if avatar is not None:
            archive.writestr(f"{prefix}avatar.png", avatar)
        for name, data in (extra or {}).items():
            archive.writestr(name, data)
    return buffer.getvalue()


def upload(client, data, filename="export.zip", content_type="application/zip", **params):
    return client.post(
        "/api/upload",
        files={"zipFile": (filename, data, content_type)},
        params=params or None,
    )


@pytest.fixture(autouse=True)
def clean_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
