from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ledger import AlertReason
from models import AccountType, Frequency, TransactionType
from periods import SummaryView
from projection import Granularity


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance_cents: int = 0
    credit_limit_cents: Optional[int] = Field(default=None, ge=0)
    is_loan: bool = False
    linked_account_id: Optional[int] = None
    currency: str = Field(default="USD", min_length=3, max_length=3)
    notes: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _check_type_fields(self) -> "AccountIn":
        if self.credit_limit_cents is not None and self.type != AccountType.credit_card:
            raise ValueError("Only credit cards have a credit limit")
        if self.is_loan and self.type != AccountType.debt:
            raise ValueError("Only debt accounts can be loans")
        if self.linked_account_id is not None and not self.is_loan:
            raise ValueError("A linked account requires a loan")
        self.currency = self.currency.upper()
        return self


class RecurrenceRuleIn(BaseModel):
    frequency: Frequency
    interval: int = Field(default=1, gt=0)
    start_date: date
    end_date: Optional[date] = None
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    days_of_month: Optional[list[int]] = None

    @model_validator(mode="after")
    def _check_anchors(self) -> "RecurrenceRuleIn":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("Recurrence end date must not precede its start date")
        if self.days_of_month is not None:
            if any(day < 1 or day > 31 for day in self.days_of_month):
                raise ValueError("Days of month must be between 1 and 31")
        if self.frequency == Frequency.semi_monthly:
            if self.days_of_month is None or len(self.days_of_month) != 2:
                raise ValueError("Semi-monthly rules need exactly two days of month")
        if self.frequency == Frequency.monthly and self.day_of_month is None:
            self.day_of_month = self.start_date.day
        return self


class TransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    account_id: int
    to_account_id: Optional[int] = None
    type: TransactionType
    is_recurring: bool = False
    recurrence_rule: Optional[RecurrenceRuleIn] = None
    category_tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _check_shape(self) -> "TransactionIn":
        if self.type == TransactionType.transfer:
            if self.to_account_id is None:
                raise ValueError("Transfers need a destination account")
            if self.to_account_id == self.account_id:
                raise ValueError("Cannot transfer to the same account")
        elif self.to_account_id is not None:
            raise ValueError("Only transfers have a destination account")
        if self.is_recurring and self.recurrence_rule is None:
            raise ValueError("Recurring transactions need a recurrence rule")
        if not self.is_recurring and self.recurrence_rule is not None:
            raise ValueError("Recurrence rule given for a one-time transaction")
        return self


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(default="#94a3b8", pattern=r"^#[0-9a-fA-F]{6}$")
    icon: str = Field(default="MoreHorizontal", min_length=1, max_length=50)
    is_default: bool = False


class ProjectionQuery(BaseModel):
    start_date: date
    end_date: date
    granularity: Granularity = Granularity.daily
    account_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_window(self) -> "ProjectionQuery":
        if self.start_date > self.end_date:
            raise ValueError("Start date must be before end date")
        return self


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    balance_cents: int
    credit_limit_cents: Optional[int] = None
    is_loan: bool
    linked_account_id: Optional[int] = None
    currency: str
    notes: Optional[str] = None
    is_cash: bool


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: Optional[str] = None
    icon: Optional[str] = None
    is_default: bool


class RecurrenceRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    frequency: Frequency
    interval: int
    start_date: date
    end_date: Optional[date] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    days_of_month: Optional[list[int]] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    date: date
    description: str
    account_id: int
    to_account_id: Optional[int] = None
    type: TransactionType
    is_recurring: bool
    balance_applied: bool
    recurrence_rule: Optional[RecurrenceRuleOut] = None
    category_tags: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class ProjectedTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    amount_cents: int
    original_amount_cents: Optional[int] = None
    description: str
    account_id: int
    to_account_id: Optional[int] = None
    type: TransactionType
    category_tags: list[str]
    is_projected: bool
    source_transaction_id: Optional[int] = None


class ProjectionAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    description: str
    account_id: int
    to_account_id: Optional[int] = None
    original_amount_cents: int
    adjusted_amount_cents: int
    reason: AlertReason
    source_transaction_id: Optional[int] = None


class DaySnapshotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    balances: dict[int, int]
    transactions: list[ProjectedTransactionOut]


class ProjectionSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_income_cents: int
    total_expenses_cents: int
    net_change_cents: int
    start_balances: dict[int, int]
    end_balances: dict[int, int]


class ProjectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timeline: list[DaySnapshotOut]
    alerts: list[ProjectionAlertOut]
    summary: ProjectionSummaryOut


class PeriodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: date
    end: date
    label: str


class CategoryAmountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category: str
    amount_cents: int
    percentage: float


class DaySummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    transactions: list[ProjectedTransactionOut]
    balances: dict[int, int]
    total_credits_cents: int
    total_debits_cents: int


class MonthSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: int
    year: int
    label: str
    total_credits_cents: int
    total_debits_cents: int
    transaction_count: int
    balances: dict[int, int]


class SummaryTotalsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    income_cents: int
    expenses_cents: int
    net_cents: int


class SummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    view: SummaryView
    period: PeriodOut
    totals: SummaryTotalsOut
    category_breakdown: list[CategoryAmountOut]
    days: Optional[list[DaySummaryOut]] = None
    months: Optional[list[MonthSummaryOut]] = None
