"""
tests/integration/test_expenses.py: Expense endpoints.

Endpoints covered:
  POST   /projects/:id/expenses               -> 201
  GET    /projects/:id/expenses               -> 200 (?month=&year=)
  GET    /projects/:id/expenses/:expense_id   -> 200
  PATCH  /projects/:id/expenses/:expense_id   -> 200 (creator only)
  DELETE /projects/:id/expenses/:expense_id   -> 200 (creator only)

Receipts are uploaded as multipart `files` parts and land in the local
receipt store configured by the conftest app fixture.
"""

from __future__ import annotations

import io
import json

import pytest
from sqlalchemy.exc import SQLAlchemyError

from spendsync.app.errors import AppError, ErrorCode
from spendsync.app.extensions import db
from spendsync.app.storage import LocalReceiptStorage

from .conftest import auth_headers, make_expense, make_project, register


@pytest.fixture
def trip(client):
    """Alice owns a trip that Bob is a member of. Returns (alice, bob, project)."""
    alice = register(client, "alice")
    bob = register(client, "bob")
    project = make_project(
        client, alice["access_token"],
        members=[{"email": "bob@test.com", "contribution": "0"}],
    ).get_json()["data"]
    return alice, bob, project


def _expense_url(project_id, expense_id=None):
    url = f"/api/v1/projects/{project_id}/expenses"
    return f"{url}/{expense_id}" if expense_id else url


def _post_with_files(client, token, project_id, filenames, **fields):
    data = {"description": "Dinner", "amount": "30.00", **fields}
    data["files"] = [(io.BytesIO(f"bytes of {n}".encode()), n) for n in filenames]
    return client.post(
        _expense_url(project_id),
        data=data,
        content_type="multipart/form-data",
        headers=auth_headers(token),
    )


# ═══════════════════════════════════════════════════════════════════════════
# POST /projects/:id/expenses
# ═══════════════════════════════════════════════════════════════════════════

class TestAddExpense:

    def test_add_expense_returns_201(self, client, trip):
        alice, _, project = trip
        resp = make_expense(client, alice["access_token"], project["id"], "12.50", description="Taxi")
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["amount"]      == "12.50"
        assert data["description"] == "Taxi"
        assert data["category"]    == "Other"
        assert data["created_by"]  == alice["user"]["id"]
        assert data["receipts"]    == []
        assert data["updated_at"] is None

    def test_custom_category_is_kept(self, client, trip):
        alice, _, project = trip
        resp = make_expense(client, alice["access_token"], project["id"], "5", category="Snacks")
        assert resp.get_json()["data"]["category"] == "Snacks"

    def test_non_member_returns_403(self, client, trip):
        _, _, project = trip
        mallory = register(client, "mallory")
        resp = make_expense(client, mallory["access_token"], project["id"], "5.00")
        assert resp.status_code == 403

    def test_three_decimal_places_returns_400(self, client, trip):
        alice, _, project = trip
        resp = make_expense(client, alice["access_token"], project["id"], "10.123")
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"]  == "INVALID_AMOUNT_PRECISION"
        assert error["field"] == "amount"

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_non_positive_amount_returns_400(self, client, trip, amount):
        alice, _, project = trip
        resp = make_expense(client, alice["access_token"], project["id"], amount)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_FIELD"

    def test_missing_description_returns_400(self, client, trip):
        alice, _, project = trip
        resp = client.post(
            _expense_url(project["id"]),
            json={"amount": "5.00"},
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"

    def test_upload_stores_receipts_in_order(self, client, trip, receipts_dir):
        alice, _, project = trip
        resp = _post_with_files(client, alice["access_token"], project["id"], ["one.jpg", "two.pdf"])
        assert resp.status_code == 201
        receipts = resp.get_json()["data"]["receipts"]
        assert [r["name"] for r in receipts] == ["one.jpg", "two.pdf"]
        for receipt in receipts:
            assert receipt["path"].startswith(f"expenses/{project['id']}/")
            assert receipt["url"] == f"/receipts/{receipt['path']}"
            assert (receipts_dir / receipt["path"]).is_file()

    def test_same_filename_twice_gets_distinct_paths(self, client, trip):
        alice, _, project = trip
        resp = _post_with_files(client, alice["access_token"], project["id"], ["scan.png", "scan.png"])
        paths = [r["path"] for r in resp.get_json()["data"]["receipts"]]
        assert len(set(paths)) == 2

    def test_stored_receipt_is_served(self, client, trip):
        alice, _, project = trip
        receipt = _post_with_files(
            client, alice["access_token"], project["id"], ["bill.txt"],
        ).get_json()["data"]["receipts"][0]

        resp = client.get(receipt["url"])
        assert resp.status_code == 200
        assert resp.data == b"bytes of bill.txt"

    def test_too_many_receipts_returns_400(self, client, trip, receipts_dir):
        alice, _, project = trip
        names = [f"r{i}.jpg" for i in range(11)]
        resp = _post_with_files(client, alice["access_token"], project["id"], names)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "TOO_MANY_RECEIPTS"
        assert not (receipts_dir / "expenses" / project["id"]).exists()


# ═══════════════════════════════════════════════════════════════════════════
# GET /projects/:id/expenses
# ═══════════════════════════════════════════════════════════════════════════

class TestListExpenses:

    def test_list_is_newest_first(self, client, trip):
        alice, bob, project = trip
        make_expense(client, alice["access_token"], project["id"], "1.00",
                     description="January", created_at="2024-01-10T10:00:00+00:00")
        make_expense(client, bob["access_token"], project["id"], "2.00",
                     description="February", created_at="2024-02-10T10:00:00+00:00")

        resp = client.get(_expense_url(project["id"]), headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 200
        assert [e["description"] for e in resp.get_json()["data"]] == ["February", "January"]

    def test_month_filter(self, client, trip):
        alice, _, project = trip
        make_expense(client, alice["access_token"], project["id"], "1.00",
                     description="January", created_at="2024-01-31T23:30:00+00:00")
        make_expense(client, alice["access_token"], project["id"], "2.00",
                     description="February", created_at="2024-02-01T00:30:00+00:00")

        resp = client.get(
            _expense_url(project["id"]) + "?month=1&year=2024",
            headers=auth_headers(alice["access_token"]),
        )
        assert [e["description"] for e in resp.get_json()["data"]] == ["January"]

    def test_year_filter(self, client, trip):
        alice, _, project = trip
        make_expense(client, alice["access_token"], project["id"], "1.00",
                     description="Old", created_at="2023-06-01T12:00:00+00:00")
        make_expense(client, alice["access_token"], project["id"], "2.00",
                     description="New", created_at="2024-06-01T12:00:00+00:00")

        resp = client.get(
            _expense_url(project["id"]) + "?year=2023",
            headers=auth_headers(alice["access_token"]),
        )
        assert [e["description"] for e in resp.get_json()["data"]] == ["Old"]

    def test_month_out_of_range_returns_400(self, client, trip):
        alice, _, project = trip
        resp = client.get(
            _expense_url(project["id"]) + "?month=13",
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "month"

    def test_expense_from_other_project_returns_404(self, client, trip):
        alice, _, project = trip
        other = make_project(client, alice["access_token"], name="Other").get_json()["data"]
        expense = make_expense(client, alice["access_token"], other["id"], "3.00").get_json()["data"]

        resp = client.get(
            _expense_url(project["id"], expense["id"]),
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# PATCH /projects/:id/expenses/:expense_id
# ═══════════════════════════════════════════════════════════════════════════

class TestEditExpense:

    def test_creator_can_edit(self, client, trip):
        alice, _, project = trip
        expense = make_expense(client, alice["access_token"], project["id"], "10.00").get_json()["data"]

        resp = client.patch(
            _expense_url(project["id"], expense["id"]),
            json={"amount": "20.00", "category": "Food"},
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["amount"]      == "20.00"
        assert data["category"]    == "Food"
        assert data["description"] == "Test Expense"
        assert data["updated_at"] is not None

    def test_other_member_cannot_edit(self, client, trip):
        alice, bob, project = trip
        expense = make_expense(client, alice["access_token"], project["id"], "10.00").get_json()["data"]

        resp = client.patch(
            _expense_url(project["id"], expense["id"]),
            json={"amount": "1.00"},
            headers=auth_headers(bob["access_token"]),
        )
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_dropped_receipts_are_deleted_from_storage(self, client, trip, receipts_dir):
        alice, _, project = trip
        expense = _post_with_files(
            client, alice["access_token"], project["id"], ["keep.jpg", "drop.jpg"],
        ).get_json()["data"]
        keep, drop = expense["receipts"]

        resp = client.patch(
            _expense_url(project["id"], expense["id"]),
            json={"receipts": [keep]},
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["receipts"] == [keep]
        assert (receipts_dir / keep["path"]).is_file()
        assert not (receipts_dir / drop["path"]).exists()

    def test_new_upload_is_appended(self, client, trip):
        alice, _, project = trip
        expense = _post_with_files(
            client, alice["access_token"], project["id"], ["first.jpg"],
        ).get_json()["data"]

        resp = client.patch(
            _expense_url(project["id"], expense["id"]),
            data={"files": [(io.BytesIO(b"second"), "second.jpg")]},
            content_type="multipart/form-data",
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 200
        names = [r["name"] for r in resp.get_json()["data"]["receipts"]]
        assert names == ["first.jpg", "second.jpg"]

    def test_unknown_receipt_path_returns_400(self, client, trip):
        alice, _, project = trip
        expense = make_expense(client, alice["access_token"], project["id"], "10.00").get_json()["data"]

        resp = client.patch(
            _expense_url(project["id"], expense["id"]),
            json={"receipts": [{"url": "/receipts/x", "path": "expenses/elsewhere/x.jpg"}]},
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"]  == "INVALID_FIELD"
        assert error["field"] == "receipts"

    def test_malformed_receipts_json_in_multipart_returns_400(self, client, trip):
        alice, _, project = trip
        expense = make_expense(client, alice["access_token"], project["id"], "10.00").get_json()["data"]

        resp = client.patch(
            _expense_url(project["id"], expense["id"]),
            data={"receipts": "not json"},
            content_type="multipart/form-data",
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "receipts"


# ═══════════════════════════════════════════════════════════════════════════
# DELETE /projects/:id/expenses/:expense_id
# ═══════════════════════════════════════════════════════════════════════════

class TestDeleteExpense:

    def test_creator_delete_removes_expense_and_files(self, client, trip, receipts_dir):
        alice, _, project = trip
        expense = _post_with_files(
            client, alice["access_token"], project["id"], ["gone.jpg"],
        ).get_json()["data"]
        path = expense["receipts"][0]["path"]
        headers = auth_headers(alice["access_token"])

        resp = client.delete(_expense_url(project["id"], expense["id"]), headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"id": expense["id"], "deleted": True}
        assert not (receipts_dir / path).exists()

        resp = client.get(_expense_url(project["id"], expense["id"]), headers=headers)
        assert resp.status_code == 404

    def test_other_member_cannot_delete(self, client, trip):
        alice, bob, project = trip
        expense = make_expense(client, alice["access_token"], project["id"], "10.00").get_json()["data"]

        resp = client.delete(
            _expense_url(project["id"], expense["id"]),
            headers=auth_headers(bob["access_token"]),
        )
        assert resp.status_code == 403

    def test_delete_unknown_expense_returns_404(self, client, trip):
        alice, _, project = trip
        resp = client.delete(
            _expense_url(project["id"], "nope"),
            headers=auth_headers(alice["access_token"]),
        )
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Receipt files vs. the database transaction
# ═══════════════════════════════════════════════════════════════════════════

class _FlakyDeleteStorage(LocalReceiptStorage):
    """Local storage whose n-th delete calls (1-based) fail."""

    def __init__(self, root_dir, failing_calls):
        super().__init__(root_dir)
        self.failing_calls = set(failing_calls)
        self.delete_calls = 0

    def delete(self, path):
        self.delete_calls += 1
        if self.delete_calls in self.failing_calls:
            raise AppError(ErrorCode.STORAGE_FAILURE, "storage unavailable", 502)
        super().delete(path)


def _failing_commit():
    raise SQLAlchemyError("connection lost during commit")


class TestReceiptCleanup:

    def test_failed_file_delete_does_not_undo_expense_delete(
            self, app, client, trip, receipts_dir, monkeypatch,
    ):
        alice, _, project = trip
        expense = _post_with_files(
            client, alice["access_token"], project["id"], ["a.jpg", "b.jpg"],
        ).get_json()["data"]
        first, second = (r["path"] for r in expense["receipts"])
        monkeypatch.setitem(
            app.extensions, "receipt_storage",
            _FlakyDeleteStorage(receipts_dir, failing_calls={2}),
        )
        headers = auth_headers(alice["access_token"])

        resp = client.delete(_expense_url(project["id"], expense["id"]), headers=headers)
        assert resp.status_code == 200

        resp = client.get(_expense_url(project["id"], expense["id"]), headers=headers)
        assert resp.status_code == 404
        assert not (receipts_dir / first).exists()
        # Left orphaned, but no row points at it.
        assert (receipts_dir / second).is_file()

    def test_failed_file_delete_does_not_undo_receipt_removal(
            self, app, client, trip, receipts_dir, monkeypatch,
    ):
        alice, _, project = trip
        expense = _post_with_files(
            client, alice["access_token"], project["id"], ["keep.jpg", "drop.jpg"],
        ).get_json()["data"]
        keep, _drop = expense["receipts"]
        monkeypatch.setitem(
            app.extensions, "receipt_storage",
            _FlakyDeleteStorage(receipts_dir, failing_calls={1}),
        )
        headers = auth_headers(alice["access_token"])

        resp = client.patch(
            _expense_url(project["id"], expense["id"]),
            json={"receipts": [keep], "description": "Lunch"},
            headers=headers,
        )
        assert resp.status_code == 200

        stored = client.get(_expense_url(project["id"], expense["id"]), headers=headers).get_json()["data"]
        assert stored["description"] == "Lunch"
        assert stored["receipts"] == [keep]

    def test_failed_commit_on_delete_keeps_every_file(
            self, client, trip, receipts_dir, monkeypatch,
    ):
        alice, _, project = trip
        expense = _post_with_files(
            client, alice["access_token"], project["id"], ["a.jpg", "b.jpg"],
        ).get_json()["data"]
        headers = auth_headers(alice["access_token"])

        monkeypatch.setattr(db.session, "commit", _failing_commit)
        resp = client.delete(_expense_url(project["id"], expense["id"]), headers=headers)
        monkeypatch.undo()

        assert resp.status_code == 503
        assert resp.get_json()["error"]["code"] == "WRITE_FAILURE"
        resp = client.get(_expense_url(project["id"], expense["id"]), headers=headers)
        assert resp.status_code == 200
        for receipt in resp.get_json()["data"]["receipts"]:
            assert (receipts_dir / receipt["path"]).is_file()

    def test_failed_commit_on_edit_removes_new_upload_and_keeps_old_files(
            self, client, trip, receipts_dir, monkeypatch,
    ):
        alice, _, project = trip
        expense = _post_with_files(
            client, alice["access_token"], project["id"], ["keep.jpg", "drop.jpg"],
        ).get_json()["data"]
        keep, drop = expense["receipts"]
        headers = auth_headers(alice["access_token"])
        before = set(receipts_dir.rglob("*"))

        monkeypatch.setattr(db.session, "commit", _failing_commit)
        resp = client.patch(
            _expense_url(project["id"], expense["id"]),
            data={
                "receipts": json.dumps([keep]),
                "files": [(io.BytesIO(b"new"), "new.jpg")],
            },
            content_type="multipart/form-data",
            headers=headers,
        )
        monkeypatch.undo()

        assert resp.status_code == 503
        assert (receipts_dir / keep["path"]).is_file()
        assert (receipts_dir / drop["path"]).is_file()
        assert set(receipts_dir.rglob("*")) == before
        stored = client.get(_expense_url(project["id"], expense["id"]), headers=headers).get_json()["data"]
        assert stored["receipts"] == [keep, drop]
