"""Shared pytest fixtures for expense ledger tests."""

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

from expense_ledger.application.unit_of_work import UnitOfWork, UnitOfWorkFactory, unit_of_work_factory
from expense_ledger.domain.models import (
    Bill,
    BillCategory,
    CreditMethod,
    Owner,
    SavingsMethod,
    TransactionType,
)
from expense_ledger.infrastructure.database import Database


@pytest.fixture
def mock_owner_repository() -> AsyncMock:
    """Create mock OwnerRepository."""
    repo = AsyncMock()
    repo.get = AsyncMock(return_value=None)
    repo.list_all = AsyncMock(return_value=[])
    repo.add = AsyncMock(return_value=None)
    repo.update = AsyncMock(return_value=None)
    repo.delete = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def mock_category_repository() -> AsyncMock:
    """Create mock CategoryRepository."""
    repo = AsyncMock()
    repo.get = AsyncMock(return_value=None)
    repo.list_all = AsyncMock(return_value=[])
    repo.add = AsyncMock(return_value=None)
    repo.update = AsyncMock(return_value=None)
    repo.delete = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def mock_payment_method_repository() -> AsyncMock:
    """Create mock PaymentMethodRepository."""
    repo = AsyncMock()
    repo.get = AsyncMock(return_value=None)
    repo.list_all = AsyncMock(return_value=[])
    repo.add = AsyncMock(return_value=None)
    repo.update = AsyncMock(return_value=None)
    repo.delete = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def mock_bill_repository() -> AsyncMock:
    """Create mock BillRepository."""
    repo = AsyncMock()
    repo.get = AsyncMock(return_value=None)
    repo.list_all = AsyncMock(return_value=[])
    repo.add = AsyncMock(return_value=None)
    repo.update = AsyncMock(return_value=None)
    repo.delete = AsyncMock(return_value=None)
    repo.count_by_payment_method = AsyncMock(return_value=0)
    return repo


@pytest.fixture
def mock_uow(
    mock_owner_repository: AsyncMock,
    mock_category_repository: AsyncMock,
    mock_payment_method_repository: AsyncMock,
    mock_bill_repository: AsyncMock,
) -> AsyncMock:
    """Create mock Unit of Work with all repositories."""
    uow = AsyncMock(spec=UnitOfWork)
    uow.owners = mock_owner_repository
    uow.categories = mock_category_repository
    uow.payment_methods = mock_payment_method_repository
    uow.bills = mock_bill_repository
    uow.commit = AsyncMock(return_value=None)
    uow.rollback = AsyncMock(return_value=None)
    uow.clear_all = AsyncMock(return_value=None)

    # Configure async context manager
    uow.__aenter__ = AsyncMock(return_value=uow)
    uow.__aexit__ = AsyncMock(return_value=None)

    return uow


@pytest.fixture
def mock_uow_factory(mock_uow: AsyncMock) -> Callable[[], AbstractAsyncContextManager[UnitOfWork]]:
    """Factory handing out the same mock Unit of Work on every call."""
    return lambda: mock_uow


@pytest.fixture
def sample_owner() -> Owner:
    return Owner(id=UUID("00000000-0000-0000-0000-00000000000a"), name="男主")


@pytest.fixture
def other_owner() -> Owner:
    return Owner(id=UUID("00000000-0000-0000-0000-00000000000b"), name="女主", sort_order=1)


@pytest.fixture
def expense_category() -> BillCategory:
    return BillCategory(id=uuid4(), name="食", transaction_type=TransactionType.EXPENSE)


@pytest.fixture
def excluded_category() -> BillCategory:
    return BillCategory(id=uuid4(), name="还信用卡", transaction_type=TransactionType.EXCLUDED)


@pytest.fixture
def credit_method(sample_owner: Owner) -> CreditMethod:
    """Credit card with a 1000 limit and nothing owed."""
    return create_credit_method(sample_owner.id)


@pytest.fixture
def savings_method(sample_owner: Owner) -> SavingsMethod:
    """Savings account holding 100."""
    return create_savings_method(sample_owner.id)


@pytest.fixture
async def database(tmp_path: Path) -> AsyncIterator[Database]:
    """File-backed SQLite database with the schema created."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await db.create_schema()
    yield db
    await db.close()


@pytest.fixture
def uow_factory(database: Database) -> UnitOfWorkFactory:
    return unit_of_work_factory(database)


def create_credit_method(
    owner_id: UUID,
    credit_limit: str = "1000",
    outstanding_balance: str = "0",
    transaction_type: TransactionType = TransactionType.EXPENSE,
    name: str = "招商信用卡",
) -> CreditMethod:
    """Helper to create CreditMethod with custom values."""
    return CreditMethod(
        id=uuid4(),
        name=name,
        transaction_type=transaction_type,
        owner_id=owner_id,
        credit_limit=Decimal(credit_limit),
        outstanding_balance=Decimal(outstanding_balance),
        billing_date=1,
    )


def create_savings_method(
    owner_id: UUID,
    balance: str = "100",
    transaction_type: TransactionType = TransactionType.EXPENSE,
    name: str = "余额宝",
) -> SavingsMethod:
    """Helper to create SavingsMethod with custom values."""
    return SavingsMethod(
        id=uuid4(),
        name=name,
        transaction_type=transaction_type,
        owner_id=owner_id,
        balance=Decimal(balance),
    )


def create_bill(
    amount: str,
    payment_method_id: UUID,
    owner_id: UUID,
    category_ids: list[UUID] | None = None,
    affects_balance: bool = True,
    note: str | None = None,
) -> Bill:
    """Helper to create Bill with custom values."""
    return Bill.create(
        amount=Decimal(amount),
        payment_method_id=payment_method_id,
        category_ids=category_ids or [uuid4()],
        owner_id=owner_id,
        note=note,
        affects_balance=affects_balance,
    )
