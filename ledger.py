"""Balance rules per account type.

Every place that moves an account balance goes through this module: the
forward simulator in ``projection`` and the persistence-time routines in
``services``. Balances are integer cents. For bank accounts the balance is
cash on hand; for credit cards and debts it is the amount owed.

Caps never raise. A capped operation reports the amount that could be
applied and the reason it was reduced.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models import Account, AccountType, TransactionType


class AlertReason(str, Enum):
    credit_limit = "credit_limit"
    debt_paid_off = "debt_paid_off"
    insufficient_balance = "insufficient_balance"


@dataclass(frozen=True)
class Application:
    requested: int
    applied: int
    delta: int
    reason: Optional[AlertReason] = None


@dataclass(frozen=True)
class TransferSettlement:
    requested: int
    applied: int
    source_delta: int
    dest_delta: int
    reason: Optional[AlertReason] = None


def cap_amount(available: int, amount: int) -> int:
    if available <= 0:
        return 0
    return min(amount, available)


class AccountRules(ABC):
    @abstractmethod
    def credit_delta(self, amount: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def debit_delta(self, amount: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def send_delta(self, amount: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def receive_delta(self, amount: int) -> int:
        raise NotImplementedError

    def credit_capacity(
        self, balance: int, amount: int
    ) -> tuple[int, Optional[AlertReason]]:
        return amount, None

    def debit_capacity(
        self, balance: int, amount: int
    ) -> tuple[int, Optional[AlertReason]]:
        return amount, None

    def send_capacity(
        self, balance: int, amount: int
    ) -> tuple[int, Optional[AlertReason]]:
        return amount, None

    def receive_capacity(
        self, balance: int, amount: int
    ) -> tuple[int, Optional[AlertReason]]:
        return amount, None

    def apply_credit(self, balance: int, amount: int) -> Application:
        applied, reason = self.credit_capacity(balance, amount)
        return Application(
            requested=amount,
            applied=applied,
            delta=self.credit_delta(applied),
            reason=reason if applied < amount else None,
        )

    def apply_debit(self, balance: int, amount: int) -> Application:
        applied, reason = self.debit_capacity(balance, amount)
        return Application(
            requested=amount,
            applied=applied,
            delta=self.debit_delta(applied),
            reason=reason if applied < amount else None,
        )

    def apply(
        self, txn_type: TransactionType, balance: int, amount: int
    ) -> Application:
        # A transfer without a destination only leaves the source account.
        if TransactionType(txn_type) == TransactionType.credit:
            return self.apply_credit(balance, amount)
        return self.apply_debit(balance, amount)

    def reversal_delta(self, txn_type: TransactionType, amount: int) -> int:
        if TransactionType(txn_type) == TransactionType.credit:
            return -self.credit_delta(amount)
        return -self.debit_delta(amount)


class BankRules(AccountRules):
    def credit_delta(self, amount: int) -> int:
        return amount

    def debit_delta(self, amount: int) -> int:
        return -amount

    def send_delta(self, amount: int) -> int:
        return -amount

    def receive_delta(self, amount: int) -> int:
        return amount

    def debit_capacity(self, balance, amount):
        return cap_amount(balance, amount), AlertReason.insufficient_balance

    def send_capacity(self, balance, amount):
        return cap_amount(balance, amount), AlertReason.insufficient_balance


class LiabilityRules(AccountRules):
    """Shared behaviour of accounts whose balance is an amount owed."""

    def credit_delta(self, amount: int) -> int:
        return -amount

    def debit_delta(self, amount: int) -> int:
        return amount

    def send_delta(self, amount: int) -> int:
        return amount

    def receive_delta(self, amount: int) -> int:
        return -amount

    def credit_capacity(self, balance, amount):
        return cap_amount(balance, amount), AlertReason.debt_paid_off

    def receive_capacity(self, balance, amount):
        return cap_amount(balance, amount), AlertReason.debt_paid_off


class CreditCardRules(LiabilityRules):
    def __init__(self, credit_limit: Optional[int] = None) -> None:
        # A zero limit is treated the same as no limit.
        self.credit_limit = credit_limit or None

    def _available_credit(self, balance: int, amount: int):
        if self.credit_limit is None:
            return amount, None
        return (
            cap_amount(self.credit_limit - balance, amount),
            AlertReason.credit_limit,
        )

    def debit_capacity(self, balance, amount):
        return self._available_credit(balance, amount)

    def send_capacity(self, balance, amount):
        return self._available_credit(balance, amount)


class DebtRules(LiabilityRules):
    """Loans and other debts: charges are never capped."""


def rules_for(account: Account) -> AccountRules:
    account_type = AccountType(account.type)
    if account_type == AccountType.credit_card:
        return CreditCardRules(account.credit_limit_cents)
    if account_type == AccountType.debt:
        return DebtRules()
    return BankRules()


def settle_transfer(
    source: Optional[AccountRules],
    source_balance: int,
    dest: Optional[AccountRules],
    dest_balance: int,
    amount: int,
) -> TransferSettlement:
    """Cap a transfer by what the source can send and the destination can take.

    Either side may be ``None`` for an account that is not known; that side
    imposes no cap and receives no delta. The reported reason belongs to the
    last cap that reduced the amount.
    """
    applied = amount
    reason: Optional[AlertReason] = None
    if source is not None:
        capped, cap_reason = source.send_capacity(source_balance, applied)
        if capped < applied:
            applied, reason = capped, cap_reason
    if dest is not None:
        capped, cap_reason = dest.receive_capacity(dest_balance, applied)
        if capped < applied:
            applied, reason = capped, cap_reason
    return TransferSettlement(
        requested=amount,
        applied=applied,
        source_delta=source.send_delta(applied) if source is not None else 0,
        dest_delta=dest.receive_delta(applied) if dest is not None else 0,
        reason=reason,
    )


def transfer_reversal(
    source: Optional[AccountRules], dest: Optional[AccountRules], amount: int
) -> tuple[int, int]:
    source_delta = -source.send_delta(amount) if source is not None else 0
    dest_delta = -dest.receive_delta(amount) if dest is not None else 0
    return source_delta, dest_delta
