"""Domain layer - business entities and rules."""

from expense_ledger.domain.exceptions import (
    CreditLimitExceededError,
    DomainError,
    EmptyNameError,
    EntityNotFoundError,
    FeatureNotAvailableError,
    ImportFormatError,
    InvalidAmountError,
    InvalidCreditLimitError,
    MissingCategoryError,
    MissingOwnerError,
    MissingPaymentMethodError,
    NegativeOpeningBalanceError,
    OwnerMismatchError,
    PersistenceError,
    RollbackFailedError,
    StillReferencedError,
    StorageError,
)
from expense_ledger.domain.models import (
    AccountType,
    Bill,
    BillCategory,
    CreditMethod,
    Owner,
    PaymentMethod,
    SavingsMethod,
    TransactionType,
    apply_bill_amount,
    effective_transaction_type,
    running_total,
)


__all__ = [
    "AccountType",
    "Bill",
    "BillCategory",
    "CreditLimitExceededError",
    "CreditMethod",
    "DomainError",
    "EmptyNameError",
    "EntityNotFoundError",
    "FeatureNotAvailableError",
    "ImportFormatError",
    "InvalidAmountError",
    "InvalidCreditLimitError",
    "MissingCategoryError",
    "MissingOwnerError",
    "MissingPaymentMethodError",
    "NegativeOpeningBalanceError",
    "Owner",
    "OwnerMismatchError",
    "PaymentMethod",
    "PersistenceError",
    "RollbackFailedError",
    "SavingsMethod",
    "StillReferencedError",
    "StorageError",
    "TransactionType",
    "apply_bill_amount",
    "effective_transaction_type",
    "running_total",
]
