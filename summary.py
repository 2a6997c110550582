from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Iterable, Optional

from models import TransactionType
from periods import Period, SummaryView

if TYPE_CHECKING:  # pragma: no cover
    from projection import DaySnapshot, ProjectedTransaction, ProjectionResult

OTHER_CATEGORY = "other"


@dataclass(frozen=True)
class CategoryAmount:
    category: str
    amount_cents: int
    percentage: float


@dataclass
class DaySummary:
    date: date
    transactions: list["ProjectedTransaction"]
    balances: dict[int, int]
    total_credits_cents: int
    total_debits_cents: int


@dataclass
class MonthSummary:
    month: int
    year: int
    label: str
    total_credits_cents: int
    total_debits_cents: int
    transaction_count: int
    balances: dict[int, int]


@dataclass
class SummaryTotals:
    income_cents: int = 0
    expenses_cents: int = 0

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expenses_cents


@dataclass
class SummaryResult:
    view: SummaryView
    period: Period
    totals: SummaryTotals
    category_breakdown: list[CategoryAmount] = field(default_factory=list)
    days: Optional[list[DaySummary]] = None
    months: Optional[list[MonthSummary]] = None


def compute_totals(transactions: Iterable["ProjectedTransaction"]) -> SummaryTotals:
    """Income and expense totals; transfers are internal and never counted."""
    totals = SummaryTotals()
    for txn in transactions:
        if txn.type == TransactionType.credit:
            totals.income_cents += txn.amount_cents
        elif txn.type == TransactionType.debit:
            totals.expenses_cents += txn.amount_cents
    return totals


def _credits_and_debits(
    transactions: Iterable["ProjectedTransaction"],
) -> tuple[int, int]:
    totals = compute_totals(transactions)
    return totals.income_cents, totals.expenses_cents


def category_breakdown(
    transactions: Iterable["ProjectedTransaction"],
) -> list[CategoryAmount]:
    amounts: dict[str, int] = {}
    for txn in transactions:
        if txn.type != TransactionType.debit:
            continue
        tags = txn.category_tags or [OTHER_CATEGORY]
        for tag in tags:
            amounts[tag] = amounts.get(tag, 0) + txn.amount_cents

    total = sum(amounts.values())
    items = sorted(amounts.items(), key=lambda item: item[1], reverse=True)
    return [
        CategoryAmount(
            category=name,
            amount_cents=amount,
            percentage=(amount / total) if total > 0 else 0.0,
        )
        for name, amount in items
    ]


def day_summaries(timeline: list["DaySnapshot"]) -> list[DaySummary]:
    days: list[DaySummary] = []
    for snapshot in timeline:
        credits, debits = _credits_and_debits(snapshot.transactions)
        days.append(
            DaySummary(
                date=snapshot.date,
                transactions=snapshot.transactions,
                balances=snapshot.balances,
                total_credits_cents=credits,
                total_debits_cents=debits,
            )
        )
    return days


def month_summaries(timeline: list["DaySnapshot"]) -> list[MonthSummary]:
    months: list[MonthSummary] = []
    for snapshot in timeline:
        credits, debits = _credits_and_debits(snapshot.transactions)
        months.append(
            MonthSummary(
                month=snapshot.date.month,
                year=snapshot.date.year,
                label=snapshot.date.strftime("%B"),
                total_credits_cents=credits,
                total_debits_cents=debits,
                transaction_count=len(snapshot.transactions),
                balances=snapshot.balances,
            )
        )
    return months


def build_summary(
    view: SummaryView, period: Period, projection: "ProjectionResult"
) -> SummaryResult:
    """Reporting view over a projection of ``period``.

    The annual view expects a monthly-granularity projection, the other
    views a daily one.
    """
    view = SummaryView(view)
    transactions = [
        txn for snapshot in projection.timeline for txn in snapshot.transactions
    ]
    result = SummaryResult(
        view=view,
        period=period,
        totals=SummaryTotals(
            income_cents=projection.summary.total_income_cents,
            expenses_cents=projection.summary.total_expenses_cents,
        ),
        category_breakdown=category_breakdown(transactions),
    )
    if view == SummaryView.annual:
        result.months = month_summaries(projection.timeline)
    else:
        result.days = day_summaries(projection.timeline)
    return result
