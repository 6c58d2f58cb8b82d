from decimal import Decimal
from uuid import UUID


class DomainError(Exception):
    """Base exception for domain errors."""


class InvalidAmountError(DomainError):
    """Raised when a bill amount is zero."""

    def __init__(self, amount: Decimal) -> None:
        self.amount = amount
        super().__init__(f"Invalid amount {amount}: bill amount must be non-zero")


class MissingPaymentMethodError(DomainError):
    """Raised when a bill references a payment method that does not exist."""

    def __init__(self, payment_method_id: UUID) -> None:
        self.payment_method_id = payment_method_id
        super().__init__(f"Payment method {payment_method_id} not found")


class MissingCategoryError(DomainError):
    """Raised when a bill has no category, or names one that does not exist."""

    def __init__(self, category_id: UUID | None = None) -> None:
        self.category_id = category_id
        if category_id is None:
            super().__init__("A bill needs at least one category")
        else:
            super().__init__(f"Category {category_id} not found")


class MissingOwnerError(DomainError):
    """Raised when a bill references an owner that does not exist."""

    def __init__(self, owner_id: UUID) -> None:
        self.owner_id = owner_id
        super().__init__(f"Owner {owner_id} not found")


class OwnerMismatchError(DomainError):
    """Raised when a bill's owner differs from its payment method's owner."""

    def __init__(self, payment_method_id: UUID, method_owner_id: UUID, bill_owner_id: UUID) -> None:
        self.payment_method_id = payment_method_id
        self.method_owner_id = method_owner_id
        self.bill_owner_id = bill_owner_id
        super().__init__(
            f"Payment method {payment_method_id} belongs to owner {method_owner_id}, not {bill_owner_id}"
        )


class CreditLimitExceededError(DomainError):
    """Raised when a bill would push a credit method's debt above its limit."""

    def __init__(self, payment_method_id: UUID, credit_limit: Decimal, attempted: Decimal) -> None:
        self.payment_method_id = payment_method_id
        self.credit_limit = credit_limit
        self.attempted = attempted
        super().__init__(
            f"Credit limit exceeded on {payment_method_id}: limit {credit_limit}, outstanding would be {attempted}"
        )


class PersistenceError(DomainError):
    """Raised when storage fails after the ledger changes were rolled back."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed to persist: {cause}")


class RollbackFailedError(DomainError):
    """Raised when undoing a partially applied ledger operation failed.

    The stored balances may no longer match the stored bills.
    """

    def __init__(self, operation: str, original: BaseException, rollback_error: BaseException) -> None:
        self.operation = operation
        self.original = original
        self.rollback_error = rollback_error
        super().__init__(
            f"{operation} failed ({original}) and the rollback also failed ({rollback_error}); "
            "balances may be inconsistent"
        )


class StorageError(DomainError):
    """Base exception for storage constraint failures."""


class EntityNotFoundError(StorageError):
    """Raised when a stored row cannot be found."""

    def __init__(self, entity: str, entity_id: UUID | None = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            super().__init__(f"No {entity} found")
        else:
            super().__init__(f"{entity} {entity_id} not found")


class StillReferencedError(StorageError):
    """Raised when deleting a row that other rows still reference."""

    def __init__(self, entity: str, entity_id: UUID) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} is still referenced by bills")


class EmptyNameError(DomainError):
    """Raised when a catalog entry is given a blank name."""

    def __init__(self, entity: str) -> None:
        self.entity = entity
        super().__init__(f"{entity} name cannot be empty")


class InvalidCreditLimitError(DomainError):
    """Raised when a credit limit is below the outstanding balance."""

    def __init__(self, credit_limit: Decimal, outstanding_balance: Decimal) -> None:
        self.credit_limit = credit_limit
        self.outstanding_balance = outstanding_balance
        super().__init__(f"Credit limit {credit_limit} is below outstanding balance {outstanding_balance}")


class NegativeOpeningBalanceError(DomainError):
    """Raised when a savings method is opened with a negative balance."""

    def __init__(self, balance: Decimal) -> None:
        self.balance = balance
        super().__init__(f"Opening balance cannot be negative: {balance}")


class FeatureNotAvailableError(DomainError):
    """Raised when the entitlement oracle denies a feature."""

    def __init__(self, feature: str) -> None:
        self.feature = feature
        super().__init__(f"Feature not available: {feature}")


class ImportFormatError(DomainError):
    """Raised when CSV input cannot be parsed."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        self.line_number = line_number
        prefix = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{prefix}{message}")
