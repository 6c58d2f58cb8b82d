from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from expense_ledger.domain.exceptions import CreditLimitExceededError, OwnerMismatchError


class TransactionType(Enum):
    EXPENSE = "expense"
    INCOME = "income"
    EXCLUDED = "excluded"


class AccountType(Enum):
    CREDIT = "credit"
    SAVINGS = "savings"


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Owner:
    id: UUID
    name: str
    sort_order: int = 0

    @classmethod
    def create(cls, name: str, sort_order: int = 0) -> "Owner":
        return cls(id=uuid4(), name=name, sort_order=sort_order)


@dataclass
class BillCategory:
    id: UUID
    name: str
    transaction_type: TransactionType = TransactionType.EXPENSE
    sort_order: int = 0

    @classmethod
    def create(
        cls,
        name: str,
        transaction_type: TransactionType = TransactionType.EXPENSE,
        sort_order: int = 0,
    ) -> "BillCategory":
        return cls(id=uuid4(), name=name, transaction_type=transaction_type, sort_order=sort_order)


@dataclass(frozen=True)
class CreditMethod:
    id: UUID
    name: str
    transaction_type: TransactionType
    owner_id: UUID
    credit_limit: Decimal
    outstanding_balance: Decimal
    billing_date: int
    sort_order: int = 0

    @property
    def account_type(self) -> AccountType:
        return AccountType.CREDIT

    @property
    def available_credit(self) -> Decimal:
        return self.credit_limit - self.outstanding_balance


@dataclass(frozen=True)
class SavingsMethod:
    id: UUID
    name: str
    transaction_type: TransactionType
    owner_id: UUID
    balance: Decimal
    sort_order: int = 0

    @property
    def account_type(self) -> AccountType:
        return AccountType.SAVINGS


PaymentMethod = CreditMethod | SavingsMethod


@dataclass
class Bill:
    id: UUID
    amount: Decimal
    payment_method_id: UUID
    category_ids: list[UUID]
    owner_id: UUID
    note: str | None = None
    affects_balance: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        amount: Decimal,
        payment_method_id: UUID,
        category_ids: list[UUID],
        owner_id: UUID,
        note: str | None = None,
        affects_balance: bool = True,
        created_at: datetime | None = None,
    ) -> "Bill":
        return cls(
            id=uuid4(),
            amount=amount,
            payment_method_id=payment_method_id,
            category_ids=list(category_ids),
            owner_id=owner_id,
            note=note,
            affects_balance=affects_balance,
            created_at=created_at or utc_now(),
            updated_at=utc_now(),
        )


def apply_bill_amount(method: PaymentMethod, amount: Decimal, owner_id: UUID) -> PaymentMethod:
    """Return ``method`` with a signed bill amount applied to its running total.

    Pass ``-amount`` to reverse a previously applied bill. Credit methods track
    debt, so a positive amount (repayment) lowers the outstanding balance and a
    negative one (spending) raises it; the result may go negative but never above
    the credit limit. Savings balances move with the sign and have no floor.
    """
    if method.owner_id != owner_id:
        raise OwnerMismatchError(method.id, method.owner_id, owner_id)

    match method:
        case CreditMethod():
            new_outstanding = method.outstanding_balance - amount
            if new_outstanding > method.credit_limit:
                raise CreditLimitExceededError(method.id, method.credit_limit, new_outstanding)
            return replace(method, outstanding_balance=new_outstanding)
        case SavingsMethod():
            return replace(method, balance=method.balance + amount)


def running_total(method: PaymentMethod) -> Decimal:
    match method:
        case CreditMethod():
            return method.outstanding_balance
        case SavingsMethod():
            return method.balance


def effective_transaction_type(
    bill: Bill,
    categories: dict[UUID, BillCategory],
) -> TransactionType:
    """Excluded when every known category of the bill is Excluded, else by sign."""
    attached = [categories[cid] for cid in bill.category_ids if cid in categories]
    if attached and all(c.transaction_type is TransactionType.EXCLUDED for c in attached):
        return TransactionType.EXCLUDED
    if bill.amount > 0:
        return TransactionType.INCOME
    return TransactionType.EXPENSE
