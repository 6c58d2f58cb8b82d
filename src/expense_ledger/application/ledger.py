import asyncio
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from expense_ledger.application.locks import KeyedLocks
from expense_ledger.application.unit_of_work import UnitOfWork, UnitOfWorkFactory
from expense_ledger.domain.exceptions import (
    DomainError,
    EntityNotFoundError,
    InvalidAmountError,
    MissingCategoryError,
    MissingOwnerError,
    MissingPaymentMethodError,
    OwnerMismatchError,
    PersistenceError,
    RollbackFailedError,
    StorageError,
)
from expense_ledger.domain.models import (
    Bill,
    PaymentMethod,
    TransactionType,
    apply_bill_amount,
    running_total,
    utc_now,
)
from expense_ledger.infrastructure.metrics import (
    LEDGER_OPERATIONS_TOTAL,
    LEDGER_ROLLBACKS_TOTAL,
    track_ledger_duration,
)


logger = structlog.get_logger()
T = TypeVar("T")


class LedgerService:
    """Creates, updates and deletes bills together with their payment method balance.

    Every stored payment method total equals its opening value plus the signed
    amounts of the stored bills that affect it. Each operation runs under the
    locks of the payment methods it touches and inside one unit of work; when a
    step fails after a balance was written, the unit of work is rolled back
    before the error is raised.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, locks: KeyedLocks | None = None) -> None:
        self._uow_factory = uow_factory
        self._locks = locks or KeyedLocks()

    @track_ledger_duration("create_bill")
    async def create_bill(
        self,
        amount: Decimal,
        payment_method_id: UUID,
        category_ids: list[UUID],
        owner_id: UUID,
        note: str | None = None,
        created_at: datetime | None = None,
    ) -> Bill:
        """Record a bill; the balance moves unless the payment method is Excluded."""
        return await self._run(
            "create_bill",
            self._create(
                "create_bill",
                amount,
                payment_method_id,
                category_ids,
                owner_id,
                note,
                created_at,
                always_apply=False,
            ),
        )

    @track_ledger_duration("create_excluded_bill")
    async def create_excluded_bill(
        self,
        amount: Decimal,
        payment_method_id: UUID,
        category_ids: list[UUID],
        owner_id: UUID,
        note: str | None = None,
        created_at: datetime | None = None,
    ) -> Bill:
        """Record a bill that is left out of statistics but still moves the balance."""
        return await self._run(
            "create_excluded_bill",
            self._create(
                "create_excluded_bill",
                amount,
                payment_method_id,
                category_ids,
                owner_id,
                note,
                created_at,
                always_apply=True,
            ),
        )

    @track_ledger_duration("update_bill")
    async def update_bill(
        self,
        existing: Bill,
        amount: Decimal,
        payment_method_id: UUID,
        category_ids: list[UUID],
        owner_id: UUID,
        note: str | None = None,
        created_at: datetime | None = None,
        *,
        excluded: bool = False,
    ) -> Bill:
        """Replace a bill's values.

        The old effect is reversed on the old payment method, the new values are
        validated, the new effect is applied to the new payment method and the
        row is rewritten. ``excluded`` keeps the balance effect even on an
        Excluded payment method, as ``create_excluded_bill`` does.
        """
        return await self._run(
            "update_bill",
            self._update(existing, amount, payment_method_id, category_ids, owner_id, note, created_at, excluded),
        )

    @track_ledger_duration("delete_bill")
    async def delete_bill(self, bill: Bill) -> None:
        await self._run("delete_bill", self._delete(bill))

    async def get_bill(self, bill_id: UUID) -> Bill | None:
        async with self._uow_factory() as uow:
            return await uow.bills.get(bill_id)

    async def list_bills(self) -> list[Bill]:
        async with self._uow_factory() as uow:
            return await uow.bills.list_all()

    async def _create(
        self,
        operation: str,
        amount: Decimal,
        payment_method_id: UUID,
        category_ids: list[UUID],
        owner_id: UUID,
        note: str | None,
        created_at: datetime | None,
        always_apply: bool,
    ) -> Bill:
        log = logger.bind(
            operation=operation,
            payment_method_id=str(payment_method_id),
            owner_id=str(owner_id),
            amount=str(amount),
        )

        async with self._locks.hold(payment_method_id):
            async with self._uow_factory() as uow:
                method = await self._validate(uow, amount, payment_method_id, category_ids, owner_id)
                affects_balance = always_apply or method.transaction_type is not TransactionType.EXCLUDED
                updated = apply_bill_amount(method, amount, owner_id) if affects_balance else None

                bill = Bill.create(
                    amount=amount,
                    payment_method_id=payment_method_id,
                    category_ids=category_ids,
                    owner_id=owner_id,
                    note=note,
                    affects_balance=affects_balance,
                    created_at=created_at,
                )
                log = log.bind(bill_id=str(bill.id))
                log.info("bill_validated", step="1/3", affects_balance=affects_balance)

                async with self._rollback_on_failure(uow, operation, log):
                    if updated is not None:
                        await uow.payment_methods.update(updated)
                        log.info(
                            "balance_applied",
                            step="2/3",
                            before=str(running_total(method)),
                            after=str(running_total(updated)),
                        )
                    await uow.bills.add(bill)
                    await uow.commit()

        log.info("bill_created", step="3/3")
        return bill

    async def _update(
        self,
        existing: Bill,
        amount: Decimal,
        payment_method_id: UUID,
        category_ids: list[UUID],
        owner_id: UUID,
        note: str | None,
        created_at: datetime | None,
        excluded: bool,
    ) -> Bill:
        log = logger.bind(
            operation="update_bill",
            bill_id=str(existing.id),
            new_payment_method_id=str(payment_method_id),
            new_amount=str(amount),
        )

        async with self._locked_bill(existing, payment_method_id) as (uow, stored):
            log = log.bind(old_payment_method_id=str(stored.payment_method_id), old_amount=str(stored.amount))
            async with self._rollback_on_failure(uow, "update_bill", log):
                if stored.affects_balance:
                    old_method = await uow.payment_methods.get(stored.payment_method_id)
                    if old_method is None:
                        raise MissingPaymentMethodError(stored.payment_method_id)
                    reverted = apply_bill_amount(old_method, -stored.amount, stored.owner_id)
                    await uow.payment_methods.update(reverted)
                    log.info(
                        "balance_reversed",
                        step="1/4",
                        before=str(running_total(old_method)),
                        after=str(running_total(reverted)),
                    )

                # Reads see the reversal above when the method is unchanged.
                new_method = await self._validate(uow, amount, payment_method_id, category_ids, owner_id)
                log.info("bill_validated", step="2/4")

                affects_balance = excluded or new_method.transaction_type is not TransactionType.EXCLUDED
                if affects_balance:
                    applied = apply_bill_amount(new_method, amount, owner_id)
                    await uow.payment_methods.update(applied)
                    log.info(
                        "balance_applied",
                        step="3/4",
                        before=str(running_total(new_method)),
                        after=str(running_total(applied)),
                    )

                updated_bill = replace(
                    stored,
                    amount=amount,
                    payment_method_id=payment_method_id,
                    category_ids=list(category_ids),
                    owner_id=owner_id,
                    note=note,
                    affects_balance=affects_balance,
                    created_at=created_at or stored.created_at,
                    updated_at=utc_now(),
                )
                await uow.bills.update(updated_bill)
                await uow.commit()

        log.info("bill_updated", step="4/4")
        return updated_bill

    async def _delete(self, bill: Bill) -> None:
        log = logger.bind(operation="delete_bill", bill_id=str(bill.id))

        async with self._locked_bill(bill) as (uow, stored):
            log = log.bind(payment_method_id=str(stored.payment_method_id), amount=str(stored.amount))
            reverted: PaymentMethod | None = None
            if stored.affects_balance:
                method = await uow.payment_methods.get(stored.payment_method_id)
                if method is None:
                    raise MissingPaymentMethodError(stored.payment_method_id)
                reverted = apply_bill_amount(method, -stored.amount, stored.owner_id)

            async with self._rollback_on_failure(uow, "delete_bill", log):
                if reverted is not None:
                    await uow.payment_methods.update(reverted)
                    log.info("balance_reversed", step="1/2", after=str(running_total(reverted)))
                await uow.bills.delete(stored.id)
                await uow.commit()

        log.info("bill_deleted", step="2/2")

    @asynccontextmanager
    async def _locked_bill(
        self,
        bill: Bill,
        *other_method_ids: UUID,
    ) -> AsyncIterator[tuple[UnitOfWork, Bill]]:
        """Open a unit of work holding the stored row of ``bill`` and its method's lock.

        The caller's copy may be out of date, so the row is read again under the
        lock. When it has moved to another payment method since, the locks are
        released and taken again for the method it is stored on now.
        """
        method_id = bill.payment_method_id
        while True:
            async with self._locks.hold(method_id, *other_method_ids):
                async with self._uow_factory() as uow:
                    stored = await uow.bills.get(bill.id)
                    if stored is None:
                        raise EntityNotFoundError("Bill", bill.id)
                    if stored.payment_method_id == method_id:
                        yield uow, stored
                        return
            method_id = stored.payment_method_id

    async def _validate(
        self,
        uow: UnitOfWork,
        amount: Decimal,
        payment_method_id: UUID,
        category_ids: list[UUID],
        owner_id: UUID,
    ) -> PaymentMethod:
        if amount == 0:
            raise InvalidAmountError(amount)

        method = await uow.payment_methods.get(payment_method_id)
        if method is None:
            raise MissingPaymentMethodError(payment_method_id)

        if not category_ids:
            raise MissingCategoryError()
        for category_id in category_ids:
            if await uow.categories.get(category_id) is None:
                raise MissingCategoryError(category_id)

        if await uow.owners.get(owner_id) is None:
            raise MissingOwnerError(owner_id)

        if method.owner_id != owner_id:
            raise OwnerMismatchError(method.id, method.owner_id, owner_id)

        return method

    @asynccontextmanager
    async def _rollback_on_failure(
        self,
        uow: UnitOfWork,
        operation: str,
        log: structlog.stdlib.BoundLogger,
    ) -> AsyncIterator[None]:
        try:
            yield
        except BaseException as error:
            await self._roll_back(uow, operation, error, log)
            if isinstance(error, (StorageError, SQLAlchemyError)):
                raise PersistenceError(operation, error) from error
            raise

    async def _roll_back(
        self,
        uow: UnitOfWork,
        operation: str,
        error: BaseException,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        try:
            await uow.rollback()
        except (Exception, asyncio.CancelledError) as rollback_error:
            LEDGER_ROLLBACKS_TOTAL.labels(operation=operation, result="failed").inc()
            log.error(
                "ledger_rollback_failed",
                error=str(error),
                rollback_error=str(rollback_error),
                exc_info=rollback_error,
            )
            raise RollbackFailedError(operation, error, rollback_error) from error
        LEDGER_ROLLBACKS_TOTAL.labels(operation=operation, result="succeeded").inc()
        log.warning("ledger_rolled_back", error=str(error), error_type=type(error).__name__)

    async def _run(self, operation: str, call: Awaitable[T]) -> T:
        try:
            result = await call
        except RollbackFailedError:
            LEDGER_OPERATIONS_TOTAL.labels(operation=operation, outcome="rollback_failed").inc()
            raise
        except PersistenceError:
            LEDGER_OPERATIONS_TOTAL.labels(operation=operation, outcome="persistence_error").inc()
            raise
        except DomainError as e:
            LEDGER_OPERATIONS_TOTAL.labels(operation=operation, outcome="rejected").inc()
            logger.info("ledger_operation_rejected", operation=operation, reason=type(e).__name__, detail=str(e))
            raise
        LEDGER_OPERATIONS_TOTAL.labels(operation=operation, outcome="success").inc()
        return result
