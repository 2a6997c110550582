from datetime import date
from typing import Optional

import pytest

from ledger import AlertReason
from models import (
    Account,
    AccountType,
    Frequency,
    RecurrenceRule,
    Transaction,
    TransactionType,
)
from projection import (
    Granularity,
    ProjectionWindowError,
    aggregate,
    build_projection,
    materialize,
)


def _account(
    account_id: int,
    account_type: AccountType,
    balance: int,
    credit_limit: Optional[int] = None,
) -> Account:
    return Account(
        id=account_id,
        name=f"Account {account_id}",
        type=account_type,
        balance_cents=balance,
        credit_limit_cents=credit_limit,
    )


def _txn(
    txn_id: int,
    account_id: int,
    txn_type: TransactionType,
    amount: int,
    on: date,
    *,
    to_account_id: Optional[int] = None,
    applied: bool = False,
    rule: Optional[RecurrenceRule] = None,
    description: str = "txn",
) -> Transaction:
    return Transaction(
        id=txn_id,
        account_id=account_id,
        to_account_id=to_account_id,
        type=txn_type,
        amount_cents=amount,
        date=on,
        description=description,
        is_recurring=rule is not None,
        balance_applied=applied,
        recurrence_rule=rule,
    )


def _monthly(start: date, day: int) -> RecurrenceRule:
    return RecurrenceRule(
        frequency=Frequency.monthly, interval=1, start_date=start, day_of_month=day
    )


def _day(result, on: date):
    return next(snapshot for snapshot in result.timeline if snapshot.date == on)


def test_credit_card_balance_never_exceeds_limit():
    card = _account(1, AccountType.credit_card, 95_000, credit_limit=100_000)
    charge = _txn(
        1,
        1,
        TransactionType.debit,
        10_000,
        date(2025, 1, 5),
        rule=_monthly(date(2025, 1, 5), 5),
        description="Streaming",
    )
    result = build_projection(
        [card],
        [charge],
        date(2025, 1, 1),
        date(2025, 2, 28),
        today=date(2025, 1, 1),
    )

    assert all(s.balances[1] <= 100_000 for s in result.timeline)
    assert [a.adjusted_amount_cents for a in result.alerts] == [5000, 0]
    assert all(a.reason == AlertReason.credit_limit for a in result.alerts)
    assert result.alerts[0].original_amount_cents == 10_000

    jan_5 = _day(result, date(2025, 1, 5))
    assert jan_5.transactions[0].amount_cents == 5000
    assert jan_5.transactions[0].original_amount_cents == 10_000
    assert jan_5.transactions[0].is_projected
    assert result.summary.total_expenses_cents == 5000
    assert result.summary.end_balances == {1: 100_000}


def test_debt_payoff_stops_at_zero_and_conserves_money():
    bank = _account(1, AccountType.bank, 100_000)
    loan = _account(2, AccountType.debt, 15_000)
    payment = _txn(
        1,
        1,
        TransactionType.transfer,
        10_000,
        date(2025, 2, 1),
        to_account_id=2,
        rule=_monthly(date(2025, 2, 1), 1),
        description="Loan payment",
    )
    result = build_projection(
        [bank, loan],
        [payment],
        date(2025, 2, 1),
        date(2025, 3, 31),
        today=date(2025, 1, 15),
    )

    assert result.summary.end_balances == {1: 85_000, 2: 0}
    assert len(result.alerts) == 1
    alert = result.alerts[0]
    assert alert.reason == AlertReason.debt_paid_off
    assert alert.adjusted_amount_cents == 5000
    assert alert.to_account_id == 2
    assert all(s.balances[2] >= 0 for s in result.timeline)


def test_bank_balance_floors_at_zero():
    bank = _account(1, AccountType.bank, 3000)
    bill = _txn(1, 1, TransactionType.debit, 5000, date(2025, 1, 10))
    result = build_projection(
        [bank], [bill], date(2025, 1, 1), date(2025, 1, 31), today=date(2025, 1, 1)
    )

    assert result.summary.end_balances == {1: 0}
    assert result.alerts[0].reason == AlertReason.insufficient_balance
    assert result.alerts[0].adjusted_amount_cents == 3000


def test_balance_on_today_matches_persisted_balance():
    # 100_000 already includes the paycheck on Jan 1 and the applied bill.
    bank = _account(1, AccountType.bank, 100_000)
    paycheck = _txn(
        1,
        1,
        TransactionType.credit,
        50_000,
        date(2025, 1, 1),
        rule=_monthly(date(2025, 1, 1), 1),
    )
    bill = _txn(2, 1, TransactionType.debit, 20_000, date(2025, 1, 10), applied=True)
    today = date(2025, 1, 15)
    result = build_projection(
        [bank],
        [paycheck, bill],
        date(2025, 1, 1),
        date(2025, 1, 31),
        today=today,
    )

    assert result.summary.start_balances == {1: 70_000}
    assert _day(result, today).balances[1] == 100_000
    assert not _day(result, date(2025, 1, 1)).transactions[0].is_projected


def test_past_window_rewinds_effects_applied_after_it():
    bank = _account(1, AccountType.bank, 100_000)
    in_window = _txn(
        1, 1, TransactionType.debit, 10_000, date(2025, 1, 20), applied=True
    )
    after_window = _txn(
        2, 1, TransactionType.credit, 5000, date(2025, 2, 10), applied=True
    )
    result = build_projection(
        [bank],
        [in_window, after_window],
        date(2025, 1, 1),
        date(2025, 1, 31),
        today=date(2025, 2, 15),
    )

    assert result.summary.start_balances == {1: 105_000}
    assert result.summary.end_balances == {1: 95_000}
    assert result.summary.total_income_cents == 0
    assert result.summary.total_expenses_cents == 10_000


def test_transfer_between_banks_conserves_total():
    checking = _account(1, AccountType.bank, 50_000)
    savings = _account(2, AccountType.bank, 0)
    move = _txn(
        1, 1, TransactionType.transfer, 20_000, date(2025, 1, 10), to_account_id=2
    )
    result = build_projection(
        [checking, savings],
        [move],
        date(2025, 1, 1),
        date(2025, 1, 31),
        today=date(2025, 1, 1),
    )

    assert all(sum(s.balances.values()) == 50_000 for s in result.timeline)
    assert result.summary.end_balances == {1: 30_000, 2: 20_000}
    assert result.summary.total_income_cents == 0
    assert result.summary.total_expenses_cents == 0


def test_account_filter_keeps_incoming_transfers():
    checking = _account(1, AccountType.bank, 50_000)
    savings = _account(2, AccountType.bank, 0)
    move = _txn(
        1, 1, TransactionType.transfer, 20_000, date(2025, 1, 10), to_account_id=2
    )
    groceries = _txn(2, 1, TransactionType.debit, 3000, date(2025, 1, 12))
    result = build_projection(
        [checking, savings],
        [move, groceries],
        date(2025, 1, 1),
        date(2025, 1, 31),
        filter_account_id=2,
        today=date(2025, 1, 1),
    )

    rows = [txn for s in result.timeline for txn in s.transactions]
    assert [txn.source_transaction_id for txn in rows] == [1]
    assert result.timeline[-1].balances == {2: 20_000}
    assert result.summary.start_balances == {2: 0}


def test_unknown_account_is_skipped():
    bank = _account(1, AccountType.bank, 1000)
    stray = _txn(1, 99, TransactionType.debit, 500, date(2025, 1, 3))
    result = build_projection(
        [bank], [stray], date(2025, 1, 1), date(2025, 1, 5), today=date(2025, 1, 1)
    )

    assert result.alerts == []
    assert result.summary.end_balances == {1: 1000}


def test_unlimited_credit_card_never_alerts():
    card = _account(1, AccountType.credit_card, 0)
    charge = _txn(
        1,
        1,
        TransactionType.debit,
        40_000,
        date(2025, 1, 1),
        rule=_monthly(date(2025, 1, 1), 1),
    )
    result = build_projection(
        [card], [charge], date(2025, 1, 1), date(2025, 6, 30), today=date(2024, 12, 1)
    )

    assert result.alerts == []
    assert result.summary.end_balances == {1: 240_000}


def test_monthly_granularity_buckets_by_calendar_month():
    bank = _account(1, AccountType.bank, 10_000)
    deposit = _txn(1, 1, TransactionType.credit, 1000, date(2025, 2, 14))
    result = build_projection(
        [bank],
        [deposit],
        date(2025, 1, 15),
        date(2025, 3, 10),
        granularity=Granularity.monthly,
        today=date(2025, 1, 1),
    )

    assert [s.date for s in result.timeline] == [
        date(2025, 1, 1),
        date(2025, 2, 1),
        date(2025, 3, 1),
    ]
    assert [s.balances[1] for s in result.timeline] == [10_000, 11_000, 11_000]
    assert len(result.timeline[1].transactions) == 1


def test_weekly_granularity_starts_on_sunday():
    bank = _account(1, AccountType.bank, 10_000)
    result = build_projection(
        [bank],
        [],
        date(2025, 1, 1),
        date(2025, 1, 14),
        granularity="weekly",
        today=date(2025, 1, 1),
    )

    assert [s.date for s in result.timeline] == [
        date(2024, 12, 29),
        date(2025, 1, 5),
        date(2025, 1, 12),
    ]


def test_daily_aggregate_is_identity():
    bank = _account(1, AccountType.bank, 10_000)
    result = build_projection(
        [bank], [], date(2025, 1, 1), date(2025, 1, 3), today=date(2025, 1, 1)
    )
    same = aggregate(result.timeline, "daily", date(2025, 1, 1), date(2025, 1, 3))
    assert same is result.timeline
    assert len(result.timeline) == 3


def test_materialize_flags_projected_occurrences():
    paycheck = _txn(
        1,
        1,
        TransactionType.credit,
        50_000,
        date(2025, 1, 1),
        rule=_monthly(date(2025, 1, 1), 1),
    )
    rows = materialize(
        [paycheck], date(2025, 1, 1), date(2025, 3, 31), today=date(2025, 2, 1)
    )
    assert [(row.date, row.is_projected) for row in rows] == [
        (date(2025, 1, 1), False),
        (date(2025, 2, 1), False),
        (date(2025, 3, 1), True),
    ]
    assert all(row.source_transaction_id == 1 for row in rows)


def test_income_and_expenses_exclude_transfers():
    checking = _account(1, AccountType.bank, 100_000)
    card = _account(2, AccountType.credit_card, 30_000)
    transactions = [
        _txn(1, 1, TransactionType.credit, 40_000, date(2025, 1, 2)),
        _txn(2, 2, TransactionType.debit, 5000, date(2025, 1, 3)),
        _txn(
            3, 1, TransactionType.transfer, 30_000, date(2025, 1, 4), to_account_id=2
        ),
    ]
    result = build_projection(
        [checking, card],
        transactions,
        date(2025, 1, 1),
        date(2025, 1, 31),
        today=date(2025, 1, 1),
    )

    assert result.summary.total_income_cents == 40_000
    assert result.summary.total_expenses_cents == 5000
    assert result.summary.net_change_cents == 35_000
    assert result.summary.end_balances == {1: 110_000, 2: 5000}


def test_inverted_window_is_rejected():
    with pytest.raises(ProjectionWindowError):
        build_projection([], [], date(2025, 2, 1), date(2025, 1, 1))


def test_window_of_today_reproduces_persisted_balances():
    today = date(2025, 5, 20)
    bank = _account(1, AccountType.bank, 12_345)
    card = _account(2, AccountType.credit_card, 800, credit_limit=5000)
    earlier = _txn(1, 1, TransactionType.debit, 700, date(2025, 5, 2), applied=True)
    result = build_projection([bank, card], [earlier], today, today, today=today)

    assert result.summary.start_balances == {1: 12_345, 2: 800}
    assert result.summary.end_balances == result.summary.start_balances


def test_future_window_opens_on_balances_left_by_earlier_days():
    bank = _account(1, AccountType.bank, 100_000)
    rent = _txn(
        1,
        1,
        TransactionType.debit,
        50_000,
        date(2025, 1, 1),
        rule=_monthly(date(2025, 1, 1), 1),
        description="Rent",
    )
    today = date(2025, 1, 15)
    wide = build_projection([bank], [rent], today, date(2025, 3, 31), today=today)
    narrow = build_projection(
        [bank], [rent], date(2025, 3, 1), date(2025, 3, 31), today=today
    )

    assert narrow.summary.start_balances == {1: 50_000}
    assert [s.balances for s in narrow.timeline] == [
        s.balances for s in wide.timeline if s.date >= date(2025, 3, 1)
    ]
    assert _day(narrow, date(2025, 3, 1)).balances[1] == 0


def test_alerts_before_a_future_window_are_dropped():
    bank = _account(1, AccountType.bank, 30_000)
    rent = _txn(
        1,
        1,
        TransactionType.debit,
        50_000,
        date(2025, 1, 1),
        rule=_monthly(date(2025, 1, 1), 1),
    )
    result = build_projection(
        [bank], [rent], date(2025, 3, 1), date(2025, 3, 31), today=date(2025, 1, 15)
    )

    assert result.summary.start_balances == {1: 0}
    assert [(a.date, a.adjusted_amount_cents) for a in result.alerts] == [
        (date(2025, 3, 1), 0)
    ]


def test_recurring_credit_on_debt_stops_at_payoff():
    loan = _account(1, AccountType.debt, 500)
    payment = _txn(
        1,
        1,
        TransactionType.credit,
        1000,
        date(2025, 1, 10),
        rule=_monthly(date(2025, 1, 10), 10),
    )
    result = build_projection(
        [loan], [payment], date(2025, 1, 1), date(2025, 1, 31), today=date(2025, 1, 1)
    )

    assert result.summary.end_balances == {1: 0}
    assert len(result.alerts) == 1
    assert result.alerts[0].reason == AlertReason.debt_paid_off
    assert result.alerts[0].adjusted_amount_cents == 500
    assert _day(result, date(2025, 1, 10)).transactions[0].amount_cents == 500


def test_transfer_capped_to_zero_is_still_recorded():
    bank = _account(1, AccountType.bank, 0)
    loan = _account(2, AccountType.debt, 5000)
    payment = _txn(
        1, 1, TransactionType.transfer, 1000, date(2025, 1, 5), to_account_id=2
    )
    result = build_projection(
        [bank, loan],
        [payment],
        date(2025, 1, 1),
        date(2025, 1, 31),
        today=date(2025, 1, 1),
    )

    row = _day(result, date(2025, 1, 5)).transactions[0]
    assert row.amount_cents == 0
    assert row.original_amount_cents == 1000
    assert len(result.alerts) == 1
    assert result.alerts[0].adjusted_amount_cents == 0
    assert result.alerts[0].reason == AlertReason.insufficient_balance
    assert result.summary.end_balances == {1: 0, 2: 5000}
