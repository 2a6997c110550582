"""Balance projection over a window of calendar days.

``build_projection`` is the entry point. It runs four stages, each usable on
its own:

1. ``materialize`` flattens one-time transactions and recurring occurrences
   into dated ``ProjectedTransaction`` rows.
2. ``rewind_balances`` walks persisted balances back to the window start by
   reversing every effect already folded into them.
3. ``simulate`` replays the window day by day through the rules in
   ``ledger`` and records an alert for each capped amount.
4. ``aggregate`` re-buckets the daily timeline into weeks or months.

Everything here works on timezone-naive ``datetime.date`` values and on
fresh per-call state; nothing is persisted.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Optional, Sequence, Union

from config import local_today
from ledger import (
    AccountRules,
    AlertReason,
    rules_for,
    settle_transfer,
    transfer_reversal,
)
from models import Account, Transaction, TransactionType
from periods import month_start, next_month_start, to_calendar_day, week_start
from recurrence import expand_recurrence
from summary import compute_totals

logger = logging.getLogger(__name__)


class Granularity(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class ProjectionWindowError(ValueError):
    pass


@dataclass
class ProjectedTransaction:
    date: date
    amount_cents: int
    description: str
    account_id: int
    type: TransactionType
    category_tags: list[str] = field(default_factory=list)
    to_account_id: Optional[int] = None
    is_projected: bool = False
    is_recurring: bool = False
    balance_applied: bool = False
    source_transaction_id: Optional[int] = None
    original_amount_cents: Optional[int] = None

    def cap_to(self, applied: int) -> None:
        if applied < self.amount_cents:
            self.original_amount_cents = self.amount_cents
            self.amount_cents = applied


@dataclass(frozen=True)
class ProjectionAlert:
    date: date
    description: str
    account_id: int
    original_amount_cents: int
    adjusted_amount_cents: int
    reason: AlertReason
    to_account_id: Optional[int] = None
    source_transaction_id: Optional[int] = None


@dataclass
class DaySnapshot:
    date: date
    balances: dict[int, int]
    transactions: list[ProjectedTransaction]


@dataclass
class ProjectionSummary:
    total_income_cents: int
    total_expenses_cents: int
    net_change_cents: int
    start_balances: dict[int, int]
    end_balances: dict[int, int]


@dataclass
class ProjectionResult:
    timeline: list[DaySnapshot]
    alerts: list[ProjectionAlert]
    summary: ProjectionSummary


class BalanceBook:
    """Running balances for one projection call.

    Account ids map to slots in a flat list so the day loop only does list
    indexing. Unknown ids are reported as absent rather than raising.
    """

    def __init__(
        self,
        accounts: Iterable[Account],
        balances: Optional[dict[int, int]] = None,
    ) -> None:
        self._index: dict[int, int] = {}
        self._balances: list[int] = []
        self._rules: list[AccountRules] = []
        for account in accounts:
            if account.id in self._index:
                continue
            self._index[account.id] = len(self._balances)
            if balances is not None and account.id in balances:
                self._balances.append(balances[account.id])
            else:
                self._balances.append(int(account.balance_cents or 0))
            self._rules.append(rules_for(account))

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._index

    def balance(self, account_id: int) -> int:
        return self._balances[self._index[account_id]]

    def rules(self, account_id: Optional[int]) -> Optional[AccountRules]:
        slot = self._index.get(account_id) if account_id is not None else None
        if slot is None:
            return None
        return self._rules[slot]

    def adjust(self, account_id: Optional[int], delta: int) -> None:
        slot = self._index.get(account_id) if account_id is not None else None
        if slot is not None:
            self._balances[slot] += delta

    def snapshot(self, account_ids: Optional[Iterable[int]] = None) -> dict[int, int]:
        if account_ids is None:
            account_ids = self._index.keys()
        return {
            account_id: self._balances[self._index[account_id]]
            for account_id in account_ids
            if account_id in self._index
        }


def _projected_from(
    txn: Transaction,
    on_date: date,
    *,
    is_projected: bool,
    is_recurring: bool,
) -> ProjectedTransaction:
    return ProjectedTransaction(
        date=on_date,
        amount_cents=int(txn.amount_cents),
        description=txn.description,
        account_id=txn.account_id,
        to_account_id=txn.to_account_id,
        type=TransactionType(txn.type),
        category_tags=list(txn.category_tags or []),
        is_projected=is_projected,
        is_recurring=is_recurring,
        balance_applied=bool(txn.balance_applied) and not is_recurring,
        source_transaction_id=txn.id,
    )


def involves_account(txn: ProjectedTransaction, account_id: int) -> bool:
    return txn.account_id == account_id or txn.to_account_id == account_id


def materialize(
    transactions: Iterable[Transaction],
    window_start: date,
    window_end: date,
    *,
    today: Optional[date] = None,
    filter_account_id: Optional[int] = None,
) -> list[ProjectedTransaction]:
    """Flatten transactions into dated rows within ``[window_start, window_end]``.

    One-time transactions are historical. Recurring occurrences are projected
    when they fall after ``today``. With ``filter_account_id`` only rows
    where that account is the source or the destination are kept.
    """
    today = today or local_today()
    projected: list[ProjectedTransaction] = []
    for txn in transactions:
        if txn.is_recurring:
            rule = txn.recurrence_rule
            if rule is None:
                continue
            for occurrence in expand_recurrence(rule, window_start, window_end):
                projected.append(
                    _projected_from(
                        txn,
                        occurrence,
                        is_projected=occurrence > today,
                        is_recurring=True,
                    )
                )
        else:
            txn_day = to_calendar_day(txn.date)
            if window_start <= txn_day <= window_end:
                projected.append(
                    _projected_from(
                        txn, txn_day, is_projected=False, is_recurring=False
                    )
                )

    if filter_account_id is not None:
        projected = [
            txn for txn in projected if involves_account(txn, filter_account_id)
        ]
    return projected


def already_applied(txn: ProjectedTransaction, window_start: date, today: date) -> bool:
    """Whether ``txn`` is folded into persisted balances and must be rewound."""
    if txn.date < window_start:
        return False
    if txn.is_recurring:
        return txn.date <= today
    return txn.balance_applied


def rewind_balances(
    accounts: Sequence[Account],
    projected: Iterable[ProjectedTransaction],
    window_start: date,
    *,
    today: Optional[date] = None,
) -> dict[int, int]:
    """Balances as of the start of ``window_start``, for every known account."""
    today = today or local_today()
    book = BalanceBook(accounts)
    for txn in projected:
        if not already_applied(txn, window_start, today):
            continue
        if txn.type == TransactionType.transfer and txn.to_account_id is not None:
            source_delta, dest_delta = transfer_reversal(
                book.rules(txn.account_id),
                book.rules(txn.to_account_id),
                txn.amount_cents,
            )
            book.adjust(txn.account_id, source_delta)
            book.adjust(txn.to_account_id, dest_delta)
        else:
            rules = book.rules(txn.account_id)
            if rules is None:
                continue
            delta = rules.reversal_delta(txn.type, txn.amount_cents)
            book.adjust(txn.account_id, delta)
    return book.snapshot()


def _apply(
    book: BalanceBook, txn: ProjectedTransaction
) -> Optional[ProjectionAlert]:
    requested = txn.amount_cents
    if txn.type == TransactionType.transfer and txn.to_account_id is not None:
        source = book.rules(txn.account_id)
        dest = book.rules(txn.to_account_id)
        settlement = settle_transfer(
            source,
            book.balance(txn.account_id) if source is not None else 0,
            dest,
            book.balance(txn.to_account_id) if dest is not None else 0,
            requested,
        )
        txn.cap_to(settlement.applied)
        book.adjust(txn.account_id, settlement.source_delta)
        book.adjust(txn.to_account_id, settlement.dest_delta)
        applied, reason = settlement.applied, settlement.reason
    else:
        rules = book.rules(txn.account_id)
        if rules is None:
            return None
        application = rules.apply(txn.type, book.balance(txn.account_id), requested)
        txn.cap_to(application.applied)
        book.adjust(txn.account_id, application.delta)
        applied, reason = application.applied, application.reason

    if applied >= requested or reason is None:
        return None
    return ProjectionAlert(
        date=txn.date,
        description=txn.description,
        account_id=txn.account_id,
        to_account_id=txn.to_account_id,
        original_amount_cents=requested,
        adjusted_amount_cents=applied,
        reason=reason,
        source_transaction_id=txn.source_transaction_id,
    )


def simulate(
    book: BalanceBook,
    projected: Iterable[ProjectedTransaction],
    window_start: date,
    window_end: date,
    *,
    visible_account_ids: Optional[Sequence[int]] = None,
) -> tuple[list[DaySnapshot], list[ProjectionAlert]]:
    """Replay ``projected`` over the window, mutating ``book`` and capped rows.

    Rows on the same day are applied in the order given. Each day's snapshot
    holds the balances of ``visible_account_ids`` (all accounts when None)
    after that day's rows.
    """
    by_day: dict[date, list[ProjectedTransaction]] = defaultdict(list)
    for txn in projected:
        by_day[txn.date].append(txn)

    timeline: list[DaySnapshot] = []
    alerts: list[ProjectionAlert] = []
    day = window_start
    one_day = timedelta(days=1)
    while day <= window_end:
        day_transactions = by_day.get(day, [])
        for txn in day_transactions:
            alert = _apply(book, txn)
            if alert is not None:
                alerts.append(alert)
        timeline.append(
            DaySnapshot(
                date=day,
                balances=book.snapshot(visible_account_ids),
                transactions=day_transactions,
            )
        )
        day += one_day
    return timeline, alerts


def advance(book: BalanceBook, projected: Iterable[ProjectedTransaction]) -> None:
    """Apply rows in date order without recording snapshots or alerts."""
    for txn in sorted(projected, key=lambda row: row.date):
        _apply(book, txn)


def _buckets(
    granularity: Granularity, window_start: date, window_end: date
) -> list[tuple[date, date]]:
    buckets: list[tuple[date, date]] = []
    if granularity == Granularity.weekly:
        start = week_start(window_start)
        while start <= window_end:
            buckets.append((start, start + timedelta(days=6)))
            start += timedelta(days=7)
    else:
        start = month_start(window_start)
        while start <= window_end:
            following = next_month_start(start)
            buckets.append((start, following - date.resolution))
            start = following
    return buckets


def aggregate(
    timeline: list[DaySnapshot],
    granularity: Union[Granularity, str],
    window_start: date,
    window_end: date,
) -> list[DaySnapshot]:
    """Re-bucket a daily timeline into weekly (Sunday based) or monthly points.

    A bucket is dated at its own start, carries the balances of its last day
    and every transaction of its days.
    """
    granularity = Granularity(granularity)
    if granularity == Granularity.daily:
        return timeline

    aggregated: list[DaySnapshot] = []
    position = 0
    for bucket_start, bucket_end in _buckets(granularity, window_start, window_end):
        days: list[DaySnapshot] = []
        while position < len(timeline) and timeline[position].date <= bucket_end:
            if timeline[position].date >= bucket_start:
                days.append(timeline[position])
            position += 1
        if not days:
            continue
        aggregated.append(
            DaySnapshot(
                date=bucket_start,
                balances=days[-1].balances,
                transactions=[
                    txn for snapshot in days for txn in snapshot.transactions
                ],
            )
        )
    return aggregated


def build_projection(
    accounts: Sequence[Account],
    transactions: Sequence[Transaction],
    window_start: date,
    window_end: date,
    granularity: Union[Granularity, str] = Granularity.daily,
    filter_account_id: Optional[int] = None,
    *,
    today: Optional[date] = None,
) -> ProjectionResult:
    """Forecast every account's balance across ``[window_start, window_end]``.

    ``accounts`` carry their persisted (current) balances. ``transactions``
    must include every recurring transaction whose rule can touch the window
    and every one-time transaction from the earlier of ``window_start`` and
    ``today`` up to the later of ``window_end`` and ``today``. For a window
    starting after ``today`` the days in between are replayed first so the
    window opens on the balances they leave behind; their alerts are dropped.
    """
    window_start = to_calendar_day(window_start)
    window_end = to_calendar_day(window_end)
    if window_start > window_end:
        raise ProjectionWindowError("Start date must be before end date")
    granularity = Granularity(granularity)
    today = today or local_today()

    projected = materialize(
        transactions,
        window_start,
        window_end,
        today=today,
        filter_account_id=filter_account_id,
    )
    # Effects applied after a past window still sit in the persisted balance.
    rewind_rows = projected
    if today > window_end:
        rewind_rows = materialize(
            transactions,
            window_start,
            today,
            today=today,
            filter_account_id=filter_account_id,
        )
    start_balances = rewind_balances(accounts, rewind_rows, window_start, today=today)
    book = BalanceBook(accounts, start_balances)

    lead_in_start = today + timedelta(days=1)
    if window_start > lead_in_start:
        lead_in = materialize(
            transactions,
            lead_in_start,
            window_start - timedelta(days=1),
            today=today,
            filter_account_id=filter_account_id,
        )
        advance(book, lead_in)
        start_balances = book.snapshot()

    if filter_account_id is not None:
        target_ids = [a.id for a in accounts if a.id == filter_account_id]
    else:
        target_ids = [a.id for a in accounts]

    timeline, alerts = simulate(
        book,
        projected,
        window_start,
        window_end,
        visible_account_ids=target_ids,
    )
    totals = compute_totals(projected)
    end_balances = timeline[-1].balances if timeline else {}

    logger.debug(
        f"projection: window={window_start.isoformat()}..{window_end.isoformat()} "
        f"granularity={granularity.value} rows={len(projected)} alerts={len(alerts)}"
    )

    return ProjectionResult(
        timeline=aggregate(timeline, granularity, window_start, window_end),
        alerts=alerts,
        summary=ProjectionSummary(
            total_income_cents=totals.income_cents,
            total_expenses_cents=totals.expenses_cents,
            net_change_cents=totals.net_cents,
            start_balances={
                account_id: start_balances.get(account_id, 0)
                for account_id in target_ids
            },
            end_balances=end_balances,
        ),
    )
