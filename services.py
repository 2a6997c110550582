from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from config import get_settings, local_today
from ledger import rules_for, settle_transfer, transfer_reversal
from models import (
    Account,
    AccountType,
    Category,
    RecurrenceRule,
    Transaction,
    TransactionType,
    transaction_categories,
)
from periods import SummaryView, resolve_summary_period
from projection import (
    Granularity,
    ProjectionResult,
    ProjectionWindowError,
    build_projection,
)
from schemas import (
    AccountIn,
    CategoryIn,
    ProjectionQuery,
    RecurrenceRuleIn,
    TransactionIn,
)
from summary import SummaryResult, build_summary

logger = logging.getLogger(__name__)

CASH_ACCOUNT_NAME = "Cash"
TRANSFER_CATEGORY = "transfer"

DEFAULT_CATEGORIES = [
    {"name": "salary", "color": "#22c55e", "icon": "Banknote"},
    {"name": "bills", "color": "#ef4444", "icon": "Receipt"},
    {"name": "subscriptions", "color": "#8b5cf6", "icon": "Repeat"},
    {"name": "auto", "color": "#f59e0b", "icon": "Car"},
    {"name": "grocery", "color": "#10b981", "icon": "ShoppingCart"},
    {"name": "credit", "color": "#6366f1", "icon": "CreditCard"},
    {"name": "entertainment", "color": "#ec4899", "icon": "Gamepad2"},
    {"name": "dining", "color": "#f97316", "icon": "UtensilsCrossed"},
    {"name": "healthcare", "color": "#06b6d4", "icon": "HeartPulse"},
    {"name": TRANSFER_CATEGORY, "color": "#64748b", "icon": "ArrowLeftRight"},
    {"name": "other", "color": "#94a3b8", "icon": "MoreHorizontal"},
]


class AccountNotFound(ValueError):
    pass


class TransactionNotFound(ValueError):
    pass


def apply_balance_effect(session: Session, txn: Transaction) -> int:
    """Fold a one-time transaction into stored balances.

    Uses the same capped rules as the projection, stores the applied amount
    on ``txn`` and marks it applied. Returns the applied amount.
    """
    account = session.get(Account, txn.account_id)
    requested = txn.amount_cents
    if txn.type == TransactionType.transfer and txn.to_account_id is not None:
        dest = session.get(Account, txn.to_account_id)
        settlement = settle_transfer(
            rules_for(account) if account else None,
            account.balance_cents if account else 0,
            rules_for(dest) if dest else None,
            dest.balance_cents if dest else 0,
            requested,
        )
        if account:
            account.balance_cents += settlement.source_delta
        if dest:
            dest.balance_cents += settlement.dest_delta
        applied, reason = settlement.applied, settlement.reason
    else:
        if account is None:
            raise AccountNotFound("Account not found")
        application = rules_for(account).apply(
            txn.type, account.balance_cents, requested
        )
        account.balance_cents += application.delta
        applied, reason = application.applied, application.reason

    if applied < requested:
        logger.info(
            f"balance_capped: transaction={txn.id} requested={requested} "
            f"applied={applied} reason={reason.value if reason else None}"
        )
    txn.amount_cents = applied
    txn.balance_applied = True
    return applied


def reverse_balance_effect(session: Session, txn: Transaction) -> None:
    """Undo a previously applied transaction; no-op when it was never applied."""
    if not txn.balance_applied:
        return
    account = session.get(Account, txn.account_id)
    if txn.type == TransactionType.transfer and txn.to_account_id is not None:
        dest = session.get(Account, txn.to_account_id)
        source_delta, dest_delta = transfer_reversal(
            rules_for(account) if account else None,
            rules_for(dest) if dest else None,
            txn.amount_cents,
        )
        if account:
            account.balance_cents += source_delta
        if dest:
            dest.balance_cents += dest_delta
    elif account is not None:
        account.balance_cents += rules_for(account).reversal_delta(
            txn.type, txn.amount_cents
        )
    txn.balance_applied = False


@dataclass
class TransactionFilters:
    account_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    is_recurring: Optional[bool] = None
    search: Optional[str] = None


@dataclass
class TransactionPage:
    items: list[Transaction]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def seed_defaults(self) -> int:
        count = self.session.execute(select(func.count(Category.id))).scalar_one()
        if count:
            return 0
        for item in DEFAULT_CATEGORIES:
            self.session.add(Category(is_default=True, **item))
        self.session.flush()
        return len(DEFAULT_CATEGORIES)

    def list_all(self) -> list[Category]:
        if self.seed_defaults():
            self.session.commit()
        stmt = select(Category).order_by(Category.is_default.desc(), Category.name)
        return list(self.session.scalars(stmt).all())

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip().lower()
        if not name:
            raise ValueError("Category name cannot be empty")
        existing = self.session.scalar(select(Category).where(Category.name == name))
        if existing:
            raise ValueError("Category already exists")
        category = Category(
            name=name, color=data.color, icon=data.icon, is_default=data.is_default
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def get_or_create(self, name: str) -> Category:
        clean_name = name.strip().lower()
        if not clean_name:
            raise ValueError("Category name cannot be empty")
        existing = self.session.scalar(
            select(Category).where(Category.name == clean_name)
        )
        if existing:
            return existing
        category = Category(name=clean_name)
        self.session.add(category)
        self.session.flush()
        return category

    def resolve(self, names: list[str]) -> list[Category]:
        categories: list[Category] = []
        seen: set[int] = set()
        for name in names:
            category = self.get_or_create(name)
            if category.id not in seen:
                categories.append(category)
                seen.add(category.id)
        return categories


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, account_type: Optional[AccountType] = None) -> list[Account]:
        stmt = select(Account)
        if account_type is not None:
            stmt = stmt.where(Account.type == account_type)
        stmt = stmt.order_by(Account.created_at.desc(), Account.id.desc())
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise AccountNotFound("Account not found")
        return account

    def ensure_cash_account(self) -> Account:
        existing = self.session.scalar(select(Account).where(Account.is_cash.is_(True)))
        if existing:
            return existing
        account = Account(
            name=CASH_ACCOUNT_NAME,
            type=AccountType.bank,
            balance_cents=0,
            currency=get_settings().default_currency,
            is_cash=True,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        logger.info(f"cash_account_created: id={account.id}")
        return account

    def create(self, data: AccountIn, *, today: Optional[date] = None) -> Account:
        linked: Optional[Account] = None
        if data.linked_account_id is not None:
            linked = self.session.get(Account, data.linked_account_id)
            if not linked:
                raise AccountNotFound("Linked account not found for loan disbursement")

        account = Account(
            name=data.name.strip(),
            type=data.type,
            balance_cents=data.balance_cents,
            credit_limit_cents=data.credit_limit_cents,
            is_loan=data.is_loan,
            linked_account_id=data.linked_account_id,
            currency=data.currency,
            notes=data.notes,
        )
        self.session.add(account)
        self.session.flush()

        if account.type == AccountType.debt and account.is_loan and linked:
            self._record_loan_disbursement(account, linked, today or local_today())

        self.session.commit()
        self.session.refresh(account)
        return account

    def _record_loan_disbursement(
        self, loan: Account, linked: Account, on_date: date
    ) -> Transaction:
        txn = Transaction(
            account_id=linked.id,
            type=TransactionType.credit,
            amount_cents=loan.balance_cents,
            description=f"Loan disbursement from {loan.name}",
            date=on_date,
            is_recurring=False,
            balance_applied=False,
        )
        txn.categories = CategoryService(self.session).resolve([TRANSFER_CATEGORY])
        self.session.add(txn)
        self.session.flush()
        apply_balance_effect(self.session, txn)
        logger.info(
            f"loan_disbursed: loan={loan.id} account={linked.id} "
            f"amount_cents={txn.amount_cents}"
        )
        return txn

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        if account.is_cash and data.type != AccountType.bank:
            raise ValueError("Cannot change the type of the Cash account")
        if data.linked_account_id == account.id:
            raise ValueError("An account cannot be linked to itself")
        if data.linked_account_id is not None:
            if not self.session.get(Account, data.linked_account_id):
                raise AccountNotFound("Linked account not found")
        account.name = data.name.strip()
        account.type = data.type
        # Balance edits are reconciliations against the real account.
        account.balance_cents = data.balance_cents
        account.credit_limit_cents = data.credit_limit_cents
        account.is_loan = data.is_loan
        account.linked_account_id = data.linked_account_id
        account.currency = data.currency
        account.notes = data.notes
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        if account.is_cash:
            raise ValueError("The Cash account cannot be deleted")
        txn_ids = select(Transaction.id).where(
            or_(
                Transaction.account_id == account_id,
                Transaction.to_account_id == account_id,
            )
        )
        self.session.execute(
            delete(RecurrenceRule).where(RecurrenceRule.transaction_id.in_(txn_ids))
        )
        self.session.execute(
            delete(transaction_categories).where(
                transaction_categories.c.transaction_id.in_(txn_ids)
            )
        )
        self.session.execute(
            delete(Transaction).where(
                or_(
                    Transaction.account_id == account_id,
                    Transaction.to_account_id == account_id,
                )
            )
        )
        for other in self.session.scalars(
            select(Account).where(Account.linked_account_id == account_id)
        ):
            other.linked_account_id = None
        self.session.delete(account)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _require_accounts(self, data: TransactionIn) -> None:
        if not self.session.get(Account, data.account_id):
            raise AccountNotFound("Account not found")
        if data.to_account_id is not None and not self.session.get(
            Account, data.to_account_id
        ):
            raise AccountNotFound("Source or destination account not found")

    @staticmethod
    def _should_apply(data: TransactionIn, today: date) -> bool:
        return not data.is_recurring and data.date <= today

    @staticmethod
    def _fill_rule(rule: RecurrenceRule, data: RecurrenceRuleIn) -> RecurrenceRule:
        rule.frequency = data.frequency
        rule.interval = data.interval
        rule.start_date = data.start_date
        rule.end_date = data.end_date
        rule.day_of_week = data.day_of_week
        rule.day_of_month = data.day_of_month
        rule.days_of_month = data.days_of_month
        return rule

    def _assign(self, txn: Transaction, data: TransactionIn) -> None:
        txn.amount_cents = data.amount_cents
        txn.date = data.date
        txn.description = data.description.strip()
        txn.account_id = data.account_id
        txn.to_account_id = data.to_account_id
        txn.type = data.type
        txn.is_recurring = data.is_recurring
        txn.notes = data.notes
        txn.categories = CategoryService(self.session).resolve(data.category_tags)
        if data.is_recurring and data.recurrence_rule is not None:
            # Edited in place; the rule row is unique per transaction.
            rule = txn.recurrence_rule or RecurrenceRule()
            txn.recurrence_rule = self._fill_rule(rule, data.recurrence_rule)
        else:
            txn.recurrence_rule = None

    def create(
        self, data: TransactionIn, *, today: Optional[date] = None
    ) -> Transaction:
        today = today or local_today()
        self._require_accounts(data)
        txn = Transaction(balance_applied=False)
        self._assign(txn, data)
        self.session.add(txn)
        self.session.flush()
        if self._should_apply(data, today):
            apply_balance_effect(self.session, txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                selectinload(Transaction.categories),
                selectinload(Transaction.recurrence_rule),
            )
            .where(Transaction.id == transaction_id)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return txn

    def update(
        self,
        transaction_id: int,
        data: TransactionIn,
        *,
        today: Optional[date] = None,
    ) -> Transaction:
        today = today or local_today()
        txn = self.get(transaction_id)
        self._require_accounts(data)
        reverse_balance_effect(self.session, txn)
        self.session.flush()
        self._assign(txn, data)
        self.session.flush()
        if self._should_apply(data, today):
            apply_balance_effect(self.session, txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        reverse_balance_effect(self.session, txn)
        self.session.delete(txn)
        self.session.commit()

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        *,
        page: int = 1,
        limit: int = 20,
        sort: str = "date",
        order: str = "desc",
    ) -> TransactionPage:
        filters = filters or TransactionFilters()
        conditions = []
        if filters.account_id is not None:
            conditions.append(
                or_(
                    Transaction.account_id == filters.account_id,
                    Transaction.to_account_id == filters.account_id,
                )
            )
        if filters.start_date is not None:
            conditions.append(Transaction.date >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Transaction.date <= filters.end_date)
        if filters.type is not None:
            conditions.append(Transaction.type == filters.type)
        if filters.category:
            conditions.append(
                Transaction.categories.any(
                    Category.name == filters.category.strip().lower()
                )
            )
        if filters.is_recurring is not None:
            conditions.append(Transaction.is_recurring.is_(filters.is_recurring))
        if filters.search:
            conditions.append(Transaction.description.ilike(f"%{filters.search}%"))

        sort_columns = {
            "date": Transaction.date,
            "amount": Transaction.amount_cents,
            "description": Transaction.description,
            "created_at": Transaction.created_at,
        }
        column = sort_columns.get(sort, Transaction.date)
        ordering = column.asc() if order == "asc" else column.desc()

        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        total = self.session.execute(
            select(func.count(Transaction.id)).where(*conditions)
        ).scalar_one()
        stmt = (
            select(Transaction)
            .options(
                selectinload(Transaction.categories),
                selectinload(Transaction.recurrence_rule),
            )
            .where(*conditions)
            .order_by(ordering, Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list(self.session.scalars(stmt).all())
        return TransactionPage(items=items, page=page, limit=limit, total=total)

    def settle_due(self, today: Optional[date] = None) -> int:
        """Apply one-time transactions whose day has arrived."""
        today = today or local_today()
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(False),
                Transaction.balance_applied.is_(False),
                Transaction.date <= today,
            )
            .order_by(Transaction.date, Transaction.id)
        )
        due = list(self.session.scalars(stmt).all())
        for txn in due:
            apply_balance_effect(self.session, txn)
        self.session.commit()
        return len(due)


class ProjectionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def candidate_transactions(self, start: date, end: date) -> list[Transaction]:
        """One-time rows dated in ``[start, end]`` and rules that can touch it."""
        stmt = (
            select(Transaction)
            .outerjoin(Transaction.recurrence_rule)
            .options(
                selectinload(Transaction.categories),
                selectinload(Transaction.recurrence_rule),
            )
            .where(
                or_(
                    and_(
                        Transaction.is_recurring.is_(False),
                        Transaction.date.between(start, end),
                    ),
                    and_(
                        Transaction.is_recurring.is_(True),
                        RecurrenceRule.start_date <= end,
                        or_(
                            RecurrenceRule.end_date.is_(None),
                            RecurrenceRule.end_date >= start,
                        ),
                    ),
                )
            )
            .order_by(Transaction.date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def project(
        self, query: ProjectionQuery, *, today: Optional[date] = None
    ) -> ProjectionResult:
        today = today or local_today()
        max_days = get_settings().max_projection_days
        window_days = (query.end_date - query.start_date).days + 1
        if window_days > max_days:
            raise ProjectionWindowError(
                f"Projection window of {window_days} days exceeds {max_days} days"
            )
        accounts = list(self.session.scalars(select(Account).order_by(Account.id)))
        transactions = self.candidate_transactions(
            min(query.start_date, today), max(query.end_date, today)
        )
        result = build_projection(
            accounts,
            transactions,
            query.start_date,
            query.end_date,
            granularity=query.granularity,
            filter_account_id=query.account_id,
            today=today,
        )
        logger.info(
            f"projection: start={query.start_date.isoformat()} "
            f"end={query.end_date.isoformat()} account={query.account_id} "
            f"points={len(result.timeline)} alerts={len(result.alerts)}"
        )
        return result


class SummaryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def summarize(
        self,
        view: SummaryView,
        anchor: Optional[date] = None,
        account_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> SummaryResult:
        today = today or local_today()
        view = SummaryView(view)
        period = resolve_summary_period(view, anchor or today)
        granularity = (
            Granularity.monthly if view == SummaryView.annual else Granularity.daily
        )
        projection = ProjectionService(self.session).project(
            ProjectionQuery(
                start_date=period.start,
                end_date=period.end,
                granularity=granularity,
                account_id=account_id,
            ),
            today=today,
        )
        return build_summary(view, period, projection)
