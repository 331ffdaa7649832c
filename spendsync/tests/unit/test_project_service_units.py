"""
Unit tests for project_service rules that can be checked without a database:
contribution matching, member resolution, access checks and deletion order.
"""

from __future__ import annotations

import re
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from spendsync.app import storage
from spendsync.app.errors import AppError, ErrorCode
from spendsync.app.services import project_service


def _user(user_id: str, email: str | None = None):
    return SimpleNamespace(
        id=user_id,
        display_name=user_id.capitalize(),
        email=email or f"{user_id}@test.com",
        avatar_url=None,
    )


def _session_with_users(*users) -> MagicMock:
    session = MagicMock()
    session.execute.return_value.scalars.return_value.all.return_value = list(users)
    return session


# ═══════════════════════════════════════════════════════════════════════════
# check_contributions
# ═══════════════════════════════════════════════════════════════════════════

def test_matching_contributions_pass():
    project_service.check_contributions(Decimal("1000"), [Decimal("600"), Decimal("400.00")])


def test_empty_contributions_match_zero_budget():
    project_service.check_contributions(Decimal("0"), [])


def test_mismatch_reports_totals_and_difference():
    with pytest.raises(AppError) as exc_info:
        project_service.check_contributions(Decimal("300"), [Decimal("0"), Decimal("100"), Decimal("150")])

    err = exc_info.value
    assert err.code        == ErrorCode.CONTRIBUTION_MISMATCH
    assert err.http_status == 422
    assert err.details     == {
        "contributions_total": "250.00",
        "total_budget": "300.00",
        "difference": "-50.00",
    }


def test_over_contribution_has_positive_difference():
    with pytest.raises(AppError) as exc_info:
        project_service.check_contributions(Decimal("100"), [Decimal("100.01")])
    assert exc_info.value.details["difference"] == "0.01"


# ═══════════════════════════════════════════════════════════════════════════
# _resolve_members
# ═══════════════════════════════════════════════════════════════════════════

def test_owner_is_prepended_with_zero_contribution():
    owner, bob = _user("owner"), _user("bob")
    session = _session_with_users(bob)

    resolved = project_service._resolve_members(
        [{"email": "Bob@Test.com", "contribution": Decimal("25")}], owner, session, personal=False,
    )

    assert [r["user"].id for r in resolved]    == ["owner", "bob"]
    assert [r["contribution"] for r in resolved] == [Decimal("0.00"), Decimal("25.00")]


def test_listed_owner_keeps_their_position():
    owner, bob = _user("owner"), _user("bob")
    session = _session_with_users(owner, bob)

    resolved = project_service._resolve_members(
        [{"email": "bob@test.com"}, {"email": "owner@test.com", "contribution": Decimal("5")}],
        owner, session, personal=False,
    )

    assert [r["user"].id for r in resolved] == ["bob", "owner"]
    assert resolved[0]["contribution"] == Decimal("0.00")


def test_every_unknown_email_is_reported():
    session = _session_with_users(_user("bob"))

    with pytest.raises(AppError) as exc_info:
        project_service._resolve_members(
            [{"email": "x@test.com"}, {"email": "bob@test.com"}, {"email": "y@test.com"}],
            _user("owner"), session, personal=False,
        )

    err = exc_info.value
    assert err.code    == ErrorCode.MEMBER_NOT_FOUND
    assert err.details == {"emails": ["x@test.com", "y@test.com"]}


def test_personal_project_rejects_other_members():
    session = _session_with_users(_user("bob"))

    with pytest.raises(AppError) as exc_info:
        project_service._resolve_members(
            [{"email": "bob@test.com"}], _user("owner"), session, personal=True,
        )

    assert exc_info.value.code == ErrorCode.PERSONAL_PROJECT_MEMBERS


def test_no_members_needs_no_query():
    session = MagicMock()
    resolved = project_service._resolve_members([], _user("owner"), session, personal=True)

    assert [r["user"].id for r in resolved] == ["owner"]
    session.execute.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════════
# Access checks and share tokens
# ═══════════════════════════════════════════════════════════════════════════

def test_require_member_raises_forbidden():
    project = SimpleNamespace(id="p1", members=[SimpleNamespace(user_id="alice")])

    with pytest.raises(AppError) as exc_info:
        project_service.require_member(project, "mallory")

    assert exc_info.value.code        == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


def test_get_member_project_reports_missing_project_first():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        project_service.get_member_project("p1", "alice", session)

    assert exc_info.value.code == ErrorCode.PROJECT_NOT_FOUND


def test_share_token_format():
    token = project_service._new_share_token("abc123")
    assert re.fullmatch(r"shared-abc123-[0-9a-z]{8}", token)


def test_share_tokens_differ():
    assert project_service._new_share_token("p") != project_service._new_share_token("p")


# ═══════════════════════════════════════════════════════════════════════════
# delete_project
# ═══════════════════════════════════════════════════════════════════════════

def test_delete_by_non_owner_is_forbidden():
    session = MagicMock()
    session.info = {}
    session.get.return_value = SimpleNamespace(id="p1", owner_id="alice", members=[])

    with pytest.raises(AppError) as exc_info:
        project_service.delete_project("p1", "bob", session)

    assert exc_info.value.code == ErrorCode.FORBIDDEN
    session.delete.assert_not_called()
    assert session.info == {}


def test_delete_queues_files_after_flushing_rows():
    project = SimpleNamespace(
        id="p1",
        owner_id="alice",
        members=[SimpleNamespace(user_id="alice"), SimpleNamespace(user_id="bob")],
    )
    expenses = [
        MagicMock(**{"stored_paths.return_value": ["a.jpg", "b.jpg"]}),
        MagicMock(**{"stored_paths.return_value": ["legacy.png"]}),
    ]
    session = MagicMock()
    session.info = {}
    session.get.return_value = project
    session.execute.return_value.scalars.return_value.all.return_value = expenses

    queued_at_flush: list[list[str]] = []
    session.flush.side_effect = lambda: queued_at_flush.append(
        list(session.info.get(storage._PENDING_DELETES, []))
    )

    member_ids = project_service.delete_project("p1", "alice", session)

    assert member_ids == ["alice", "bob"]
    assert queued_at_flush == [[]]
    assert session.info[storage._PENDING_DELETES] == ["a.jpg", "b.jpg", "legacy.png"]
    assert session.delete.call_count == 3
