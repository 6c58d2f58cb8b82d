from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from types import TracebackType
from typing import Self

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from expense_ledger.infrastructure.database import Database
from expense_ledger.infrastructure.repositories import (
    BillRepository,
    CategoryRepository,
    OwnerRepository,
    PaymentMethodRepository,
)
from expense_ledger.infrastructure.schema import DELETE_ORDER


class UnitOfWork:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.owners = OwnerRepository(session)
        self.categories = CategoryRepository(session)
        self.payment_methods = PaymentMethodRepository(session)
        self.bills = BillRepository(session)
        self._rollback_attempted = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None and not self._rollback_attempted:
            await self.rollback()

    async def commit(self) -> None:
        await self._session.commit()
        self._rollback_attempted = False

    async def rollback(self) -> None:
        # at most one rollback per failure
        self._rollback_attempted = True
        await self._session.rollback()

    async def clear_all(self) -> None:
        for table in DELETE_ORDER:
            await self._session.execute(text(f"DELETE FROM {table}"))


UnitOfWorkFactory = Callable[[], AbstractAsyncContextManager[UnitOfWork]]


def unit_of_work_factory(database: Database) -> UnitOfWorkFactory:
    """Open a fresh session and unit of work per call."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[UnitOfWork]:
        async with database.session() as session:
            async with UnitOfWork(session) as uow:
                yield uow

    return factory
