"""
End-to-end tests for POST /api/upload and the import history endpoints.
"""

import json
import threading
import time
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from conftest import ANA, PNG_BYTES, make_archive, upload
from ledger import config
from ledger.db import get_session
from ledger.models import ImportJob, Transaction, User
from ledger.services import importer
from ledger.services.avatars import avatar_filename


def _counts():
    with get_session() as session:
        return (
            session.execute(select(func.count(User.id))).scalar_one(),
            session.execute(select(func.count(Transaction.id))).scalar_one(),
            session.execute(select(func.count(ImportJob.id))).scalar_one(),
        )


def _avatar_files():
    directory = Path(config.AVATAR_DIR)
    return sorted(path.name for path in directory.iterdir()) if directory.exists() else []


def _batch(n, prefix="R"):
    return [
        {"reference": f"{prefix}{i}", "amount": i + 0.25, "currency": "EUR", "timestamp": f"2024-03-{i + 1:02d}T10:00:00Z"}
        for i in range(n)
    ]


class TestUploadSuccess:

    def test_example_archive(self, client):
        response = upload(client, make_archive())

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["userProcessed"] is True
        assert body["transactionsProcessed"] == 1
        assert body["avatarProcessed"] is False
        assert body["conflicts"] == []
        assert body["message"].startswith("Import completed")
        assert _counts() == (1, 1, 1)

    def test_transactions_processed_matches_array_length(self, client):
        response = upload(client, make_archive(transactions=_batch(25)))

        assert response.status_code == 200, response.text
        assert response.json()["transactionsProcessed"] == 25
        assert _counts()[1] == 25

    def test_empty_transactions_array(self, client):
        response = upload(client, make_archive(transactions=[]))

        assert response.status_code == 200
        assert response.json()["transactionsProcessed"] == 0
        assert _counts() == (1, 0, 1)

    def test_transactions_are_linked_to_user(self, client):
        user = dict(ANA, userId="ana-1")
        upload(client, make_archive(user=user, transactions=_batch(3)))

        listed = client.get("/api/transactions/user/ana-1").json()
        assert sorted(t["reference"] for t in listed) == ["R0", "R1", "R2"]
        assert {t["userId"] for t in listed} == {"ana-1"}
        assert listed[0]["amount"] == 2.25

    def test_avatar_is_stored_and_served(self, client):
        user = dict(ANA, userId="ana-1")
        response = upload(client, make_archive(user=user, avatar=PNG_BYTES))

        assert response.json()["avatarProcessed"] is True
        stored = client.get("/api/users/ana-1").json()["avatar"]
        assert stored.endswith(".png")
        assert (config.AVATAR_DIR / stored).read_bytes() == PNG_BYTES

        image = client.get("/api/users/ana-1/avatar")
        assert image.status_code == 200
        assert image.headers["content-type"] == "image/png"
        assert image.content == PNG_BYTES

    def test_accepts_zip_suffix_with_generic_content_type(self, client):
        response = upload(client, make_archive(), content_type="application/octet-stream")
        assert response.status_code == 200

    def test_versioned_path(self, client):
        response = client.post(
            "/api/v1/upload", files={"zipFile": ("export.zip", make_archive(), "application/zip")}
        )
        assert response.status_code == 200

    def test_import_history(self, client):
        upload(client, make_archive(user=dict(ANA, userId="ana-1"), avatar=PNG_BYTES), filename="ana.zip")

        jobs = client.get("/api/imports").json()
        assert len(jobs) == 1
        job = jobs[0]
        assert job["fileName"] == "ana.zip"
        assert job["status"] == "completed"
        assert job["userId"] == "ana-1"
        assert job["transactionsInserted"] == 1
        assert job["avatarStored"] is True
        assert client.get(f"/api/imports/{job['id']}").json()["fileName"] == "ana.zip"
        assert client.get("/api/imports/999").status_code == 404


class TestUploadRejected:

    def test_missing_user_data(self, client):
        response = upload(client, make_archive(user=None))

        assert response.status_code == 400
        assert response.json() == {"error": "missing userData.json"}
        assert _counts() == (0, 0, 0)

    def test_missing_transactions(self, client):
        response = upload(client, make_archive(transactions=None))

        assert response.status_code == 400
        assert response.json()["error"] == "missing transactions.json"
        assert _counts() == (0, 0, 0)

    def test_non_numeric_amount_rejects_whole_batch(self, client):
        transactions = _batch(3) + [{"reference": "BAD", "amount": "abc"}]
        response = upload(client, make_archive(transactions=transactions))

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "transactions.json: 1 invalid entry"
        assert body["details"] == ["transactions[3]: amount 'abc' is not a number"]
        assert _counts() == (0, 0, 0)

    def test_invalid_timestamp_fails_import(self, client):
        transactions = [{"reference": "T1", "amount": 1, "timestamp": "31/12/2024"}]
        response = upload(client, make_archive(transactions=transactions))

        assert response.status_code == 422
        assert _counts() == (0, 0, 0)

    def test_invalid_user_json(self, client):
        response = upload(client, make_archive(user=b"{oops"))

        assert response.status_code == 422
        assert "userData.json" in response.json()["error"]

    def test_malformed_archive(self, client):
        response = upload(client, b"PK\x03\x04 definitely not a zip")

        assert response.status_code == 400
        assert "not a valid ZIP archive" in response.json()["error"]

    def test_wrong_file_type(self, client):
        response = upload(client, b"a,b\n1,2\n", filename="data.csv", content_type="text/csv")

        assert response.status_code == 400
        assert response.json()["error"] == "zipFile must be a .zip archive"

    def test_more_than_one_archive(self, client):
        response = client.post(
            "/api/upload",
            files=[
                ("zipFile", ("a.zip", make_archive(), "application/zip")),
                ("zipFile", ("b.zip", make_archive(), "application/zip")),
            ],
        )

        assert response.status_code == 400
        assert response.json()["error"] == "exactly one zipFile must be uploaded per request"
        assert _counts() == (0, 0, 0)

    def test_missing_file_field(self, client):
        response = client.post("/api/upload", files={"other": ("a.zip", make_archive(), "application/zip")})

        assert response.status_code == 422
        assert response.json()["error"] == "invalid request"

    def test_archive_too_large(self, client, monkeypatch):
        monkeypatch.setattr(config, "MAX_ARCHIVE_BYTES", 32)
        response = upload(client, make_archive())

        assert response.status_code == 413
        assert _counts() == (0, 0, 0)

    def test_unstorable_amounts_fail_import(self, client):
        transactions = [
            {"reference": "P1", "amount": "0.001"},
            {"reference": "P2", "amount": "12.345"},
            {"reference": "P3", "amount": "123456789012345678901234.5"},
        ]
        response = upload(client, make_archive(transactions=transactions))

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "transactions.json: 3 invalid entries"
        assert "more than 16 integer digits" in body["details"][2]
        assert _counts() == (0, 0, 0)

    def test_unknown_duplicate_policy(self, client):
        response = upload(client, make_archive(), onDuplicate="merge")
        assert response.status_code == 400


class TestReimport:

    def test_identical_archive_is_rejected_by_default(self, client):
        data = make_archive(transactions=_batch(4))
        assert upload(client, data).status_code == 200

        response = upload(client, data)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "4 transaction(s) already imported"
        assert body["details"] == ["R0", "R1", "R2", "R3"]
        assert _counts() == (1, 4, 1)

    def test_skip_policy_reports_conflicts(self, client):
        assert upload(client, make_archive(transactions=_batch(2))).status_code == 200

        response = upload(client, make_archive(transactions=_batch(3)), onDuplicate="skip")

        assert response.status_code == 200
        body = response.json()
        assert body["transactionsProcessed"] == 1
        assert body["conflicts"] == ["R0", "R1"]
        assert "2 duplicates skipped" in body["message"]
        assert _counts() == (1, 3, 2)

    def test_identical_archive_with_skip_does_not_double(self, client):
        data = make_archive(transactions=_batch(5))
        upload(client, data, onDuplicate="skip")
        upload(client, data, onDuplicate="skip")

        assert _counts()[:2] == (1, 5)

    def test_default_policy_from_config(self, client, monkeypatch):
        monkeypatch.setattr(config, "DUPLICATE_POLICY", "skip")
        data = make_archive()
        upload(client, data)

        response = upload(client, data)

        assert response.status_code == 200
        assert response.json()["conflicts"] == ["T1"]

    def test_user_is_upserted(self, client):
        upload(client, make_archive(user={"userId": "u-9", "firstName": "Ana", "lastName": "Lee", "country": "PT"}))
        upload(
            client,
            make_archive(
                user={"userId": "u-9", "firstName": "Ana", "lastName": "Lee-Costa"},
                transactions=[{"reference": "T2", "amount": 3}],
            ),
        )

        user = client.get("/api/users/u-9").json()
        assert user["lastName"] == "Lee-Costa"
        assert user["country"] is None
        assert sorted(t["reference"] for t in client.get("/api/transactions/user/u-9").json()) == ["T1", "T2"]
        assert _counts()[0] == 1

    def test_reimport_keeps_existing_avatar(self, client):
        user = {"userId": "u-9", "firstName": "Ana"}
        upload(client, make_archive(user=user, avatar=PNG_BYTES))
        avatar = client.get("/api/users/u-9").json()["avatar"]

        upload(client, make_archive(user=user, transactions=[]))

        assert client.get("/api/users/u-9").json()["avatar"] == avatar

    def test_failed_reimport_leaves_user_untouched(self, client):
        upload(client, make_archive(user={"userId": "u-9", "firstName": "Ana", "lastName": "Lee"}))

        response = upload(
            client,
            make_archive(
                user={"userId": "u-9", "firstName": "Changed"},
                transactions=[{"reference": "NEW", "amount": 1}, {"reference": "T1", "amount": 1}],
            ),
        )

        assert response.status_code == 409
        assert client.get("/api/users/u-9").json()["firstName"] == "Ana"
        assert _counts() == (1, 1, 1)



class TestFailedImportCleanup:

    def _collide(self, monkeypatch):
        def insert_transactions(*args):
            raise IntegrityError("INSERT INTO transactions", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(importer, "insert_transactions", insert_transactions)

    def test_integrity_error_rolls_back_everything(self, client, monkeypatch):
        self._collide(monkeypatch)
        avatar = PNG_BYTES + b"rolled back"
        before = _avatar_files()

        response = upload(client, make_archive(user=dict(ANA, userId="ana-1"), avatar=avatar))

        assert response.status_code == 409
        assert "retry the upload" in response.json()["error"]
        assert _counts() == (0, 0, 0)
        assert _avatar_files() == before
        assert avatar_filename(avatar) not in before

    def test_shared_avatar_survives_failed_import(self, client, monkeypatch):
        avatar = PNG_BYTES + b"shared"
        first = make_archive(user={"userId": "ana-1", "firstName": "Ana"}, avatar=avatar)
        assert upload(client, first).status_code == 200
        before = _avatar_files()
        self._collide(monkeypatch)

        response = upload(
            client,
            make_archive(
                user={"userId": "bo-2", "firstName": "Bo"},
                transactions=[{"reference": "B1", "amount": 1}],
                avatar=avatar,
            ),
        )

        assert response.status_code == 409
        assert _avatar_files() == before
        assert client.get("/api/users/ana-1/avatar").content == avatar

    def test_rejected_duplicates_write_no_avatar(self, client):
        data = make_archive(avatar=PNG_BYTES + b"first")
        assert upload(client, data).status_code == 200
        avatar = PNG_BYTES + b"second"
        before = _avatar_files()

        response = upload(client, make_archive(avatar=avatar))

        assert response.status_code == 409
        assert _avatar_files() == before


class TestSameUserConcurrency:

    def test_imports_for_one_user_are_serialized(self, monkeypatch):
        active = []
        overlaps = []
        insert = importer.insert_transactions

        def slow_insert(*args):
            active.append(1)
            overlaps.append(len(active))
            time.sleep(0.05)
            try:
                return insert(*args)
            finally:
                active.pop()

        monkeypatch.setattr(importer, "insert_transactions", slow_insert)
        user = {"userId": "ana-1", "firstName": "Ana"}
        results, errors = [], []

        def run(prefix):
            try:
                data = make_archive(user=user, transactions=_batch(3, prefix))
                results.append(importer.import_archive(data, f"{prefix}.zip"))
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=run, args=(prefix,)) for prefix in ("A", "B")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert max(overlaps) == 1
        assert sorted(result.transactions_processed for result in results) == [3, 3]
        assert _counts() == (1, 6, 2)
        assert importer._user_locks == {}

    def test_lock_entries_are_released(self, client):
        for i in range(20):
            data = make_archive(user={"userId": f"user-{i}", "firstName": "Ana"}, transactions=_batch(1, f"U{i}-"))
            response = upload(client, data)
            assert response.status_code == 200

        assert importer._user_locks == {}

    def test_lock_entry_exists_only_while_held(self):
        with importer.user_lock("ana-1"):
            assert importer._user_locks["ana-1"][1] == 1
        assert "ana-1" not in importer._user_locks


@pytest.mark.parametrize("raw_amount", [12.5, "12.50"])
def test_numeric_and_string_amounts_are_equivalent(client, raw_amount):
    transactions = [{"reference": "T1", "amount": raw_amount, "currency": "USD"}]
    upload(client, make_archive(user=dict(ANA, userId="ana-1"), transactions=transactions))

    assert client.get("/api/transactions").json()[0]["amount"] == 12.5


def test_error_body_is_json(client):
    response = upload(client, make_archive(user=None))
    assert json.loads(response.text) == {"error": "missing userData.json"}
