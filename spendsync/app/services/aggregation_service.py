"""
services/aggregation_service.py: Spending analytics for a project.

compute_project_summary() is a pure function of
    (project, members, expenses, month/year selector, user resolver)
and is re-run on every change: by the summary endpoint, by the public share
view, by the dashboard, and by live subscribers on each new snapshot.

Budget modes:
  PERSONAL  shared_budget is false or the type is "Simple (Personal)".
            Only total_spent is reported.
  MONTHLY   Roommates/Flatmates and Family Budget. Spending is filtered to the
            selected month; utilization is measured against monthly_budget.
  TOTAL     Every other shared type. Spending over all time against
            total_budget; remaining_budget may go negative. With no positive
            total_budget there is nothing to measure against: total_budget,
            remaining_budget and spent_percentage are None and only the
            spending figures are reported.

Rules:
  - spent_percentage and monthly_utilization are clamped to [0, 100].
  - A budget that is zero or missing yields a percentage of exactly 0.
  - Per-member utilization is NOT clamped above 100, and is None when the
    member has no contribution set.
  - The per-member breakdown covers declared members plus every expense
    creator. A creator who is not a member is looked up through
    `resolve_user`; if that returns None the row is omitted.
  - Percentages are Decimal, rounded half-up to 2 dp. Money is 2 dp.

No Flask imports and no database access.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable

from spendsync.app.models.project import MONTHLY_BUDGET_TYPES, ProjectType

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")
_ZERO = Decimal("0.00")

# Spending above this share of the budget is flagged.
BUDGET_WARNING_THRESHOLD = Decimal("80")


class BudgetMode(str, enum.Enum):
    PERSONAL = "personal"
    MONTHLY  = "monthly"
    TOTAL    = "total"


# ── Arithmetic helpers ─────────────────────────────────────────────────────

def _money(value: Any) -> Decimal:
    if value is None:
        return _ZERO
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def _percentage(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100 at 2 dp. Callers guarantee whole > 0."""
    return (part / whole * _HUNDRED).quantize(_CENT, rounding=ROUND_HALF_UP)


def _clamp(value: Decimal, low: Decimal = _ZERO, high: Decimal = _HUNDRED) -> Decimal:
    return max(low, min(high, value)).quantize(_CENT)


def clamped_percentage(spent: Decimal, budget: Decimal | None) -> Decimal:
    """spent / budget * 100 clamped to [0, 100]; 0 when budget is not positive."""
    budget = _money(budget)
    if budget <= 0:
        return _ZERO
    return _clamp(_percentage(_money(spent), budget))


def member_utilization(spent: Decimal, contribution: Decimal | None) -> Decimal | None:
    """Unclamped above 100. None means no contribution set."""
    contribution = _money(contribution)
    if contribution <= 0:
        return None
    return max(_ZERO, _percentage(_money(spent), contribution))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def in_period(created_at: datetime, month: int, year: int) -> bool:
    created = _as_utc(created_at)
    return created.year == year and created.month == month


def shift_month(month: int, year: int, delta: int) -> tuple[int, int]:
    """Steps a 1-12 month forward or backward, carrying into the year."""
    index = year * 12 + (month - 1) + delta
    return index % 12 + 1, index // 12


def budget_mode(project) -> BudgetMode:
    if not project.shared_budget or project.project_type == ProjectType.PERSONAL:
        return BudgetMode.PERSONAL
    if project.project_type in MONTHLY_BUDGET_TYPES:
        return BudgetMode.MONTHLY
    return BudgetMode.TOTAL


# ── Per-member breakdown ───────────────────────────────────────────────────

def _member_breakdown(
        members: Iterable,
        expenses: list,
        resolve_user: Callable[[str], Any],
) -> list[dict]:
    spent: dict[str, Decimal] = {}
    creator_order: list[str] = []
    for expense in expenses:
        if expense.created_by not in spent:
            spent[expense.created_by] = _ZERO
            creator_order.append(expense.created_by)
        spent[expense.created_by] += _money(expense.amount)

    rows: list[dict] = []
    declared: set[str] = set()

    for member in members:
        declared.add(member.user_id)
        member_spent = spent.get(member.user_id, _ZERO)
        rows.append({
            "user_id": member.user_id,
            "display_name": member.display_name,
            "email": member.email,
            "avatar_url": member.avatar_url,
            "is_member": True,
            "contribution": _money(member.contribution),
            "spent": member_spent,
            "utilization": member_utilization(member_spent, member.contribution),
        })

    for user_id in creator_order:
        if user_id in declared:
            continue
        profile = resolve_user(user_id)
        if profile is None:
            continue
        rows.append({
            "user_id": user_id,
            "display_name": profile.display_name or profile.email or "Unknown",
            "email": profile.email,
            "avatar_url": profile.avatar_url,
            "is_member": False,
            "contribution": _ZERO,
            "spent": spent[user_id],
            "utilization": None,
        })

    return rows


# ── Public API ─────────────────────────────────────────────────────────────

def compute_project_summary(
        project,
        members: Iterable,
        expenses: Iterable,
        *,
        month: int | None = None,
        year: int | None = None,
        resolve_user: Callable[[str], Any] = lambda _user_id: None,
        today: datetime | None = None,
) -> dict:
    """
    Returns the analytics dict for one project.

    `project` needs project_type, shared_budget, total_budget and
    monthly_budget. Members need user_id, display_name, email, avatar_url and
    contribution. Expenses need created_by, amount and created_at.
    `month`/`year` only matter in MONTHLY mode and default to the month of
    `today` (now, UTC).
    """
    expenses = list(expenses)
    mode = budget_mode(project)
    total_spent = sum((_money(e.amount) for e in expenses), _ZERO)

    summary: dict = {
        "mode": mode.value,
        "total_spent": total_spent,
        "expense_count": len(expenses),
        "budget_warning": False,
        "members": [],
    }

    if mode is BudgetMode.PERSONAL:
        return summary

    if mode is BudgetMode.MONTHLY:
        today = _as_utc(today or datetime.now(timezone.utc))
        month = month or today.month
        year = year or today.year

        period_expenses = [e for e in expenses if in_period(e.created_at, month, year)]
        monthly_spent = sum((_money(e.amount) for e in period_expenses), _ZERO)
        utilization = clamped_percentage(monthly_spent, project.monthly_budget)

        prev_month, prev_year = shift_month(month, year, -1)
        next_month, next_year = shift_month(month, year, 1)

        summary.update({
            "period": {
                "month": month,
                "year": year,
                "previous": {"month": prev_month, "year": prev_year},
                "next": {"month": next_month, "year": next_year},
            },
            "monthly_budget": _money(project.monthly_budget),
            "monthly_spent": monthly_spent,
            "monthly_expense_count": len(period_expenses),
            "monthly_utilization": utilization,
            "budget_warning": utilization > BUDGET_WARNING_THRESHOLD,
            "members": _member_breakdown(members, period_expenses, resolve_user),
        })
        return summary

    summary["members"] = _member_breakdown(members, expenses, resolve_user)
    total_budget = _money(project.total_budget)
    if total_budget <= 0:
        summary.update({"total_budget": None, "remaining_budget": None, "spent_percentage": None})
        return summary

    spent_percentage = clamped_percentage(total_spent, total_budget)
    summary.update({
        "total_budget": total_budget,
        "remaining_budget": total_budget - total_spent,
        "spent_percentage": spent_percentage,
        "budget_warning": spent_percentage > BUDGET_WARNING_THRESHOLD,
    })
    return summary


def summarize_dashboard(entries: Iterable[tuple[Any, dict]]) -> dict:
    """
    Rolls per-project summaries up into the dashboard figures.

    `entries` is (project, summary) pairs. Total budget and overall
    utilization cover TOTAL-mode projects that have a positive budget; monthly
    budgets are reported per project for the current month.
    """
    projects: list[dict] = []
    total_budget = _ZERO
    total_spent = _ZERO
    budgeted_spent = _ZERO

    for project, summary in entries:
        total_spent += summary["total_spent"]
        row = {
            "id": project.id,
            "name": project.name,
            "project_type": project.project_type.value,
            "mode": summary["mode"],
            "total_spent": summary["total_spent"],
            "expense_count": summary["expense_count"],
            "budget": None,
            "utilization": None,
            "budget_warning": summary["budget_warning"],
        }
        if summary["mode"] == BudgetMode.TOTAL.value and summary["total_budget"] is not None:
            total_budget += summary["total_budget"]
            budgeted_spent += summary["total_spent"]
            row["budget"] = summary["total_budget"]
            row["utilization"] = summary["spent_percentage"]
        elif summary["mode"] == BudgetMode.MONTHLY.value:
            row["budget"] = summary["monthly_budget"]
            row["utilization"] = summary["monthly_utilization"]
        projects.append(row)

    return {
        "project_count": len(projects),
        "total_budget": total_budget,
        "total_spent": total_spent,
        "overall_utilization": clamped_percentage(budgeted_spent, total_budget),
        "projects": projects,
    }
