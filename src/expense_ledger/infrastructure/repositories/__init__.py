"""Repository implementations."""

from expense_ledger.infrastructure.repositories.bill import BillRepository
from expense_ledger.infrastructure.repositories.category import CategoryRepository
from expense_ledger.infrastructure.repositories.owner import OwnerRepository
from expense_ledger.infrastructure.repositories.payment_method import PaymentMethodRepository


__all__ = [
    "BillRepository",
    "CategoryRepository",
    "OwnerRepository",
    "PaymentMethodRepository",
]
