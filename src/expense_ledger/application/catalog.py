from dataclasses import replace
from decimal import Decimal
from uuid import UUID, uuid4

import structlog

from expense_ledger.application.locks import KeyedLocks
from expense_ledger.application.unit_of_work import UnitOfWorkFactory
from expense_ledger.domain.exceptions import (
    EmptyNameError,
    EntityNotFoundError,
    InvalidCreditLimitError,
    NegativeOpeningBalanceError,
)
from expense_ledger.domain.models import (
    BillCategory,
    CreditMethod,
    Owner,
    PaymentMethod,
    SavingsMethod,
    TransactionType,
)


logger = structlog.get_logger()


def _clean_name(name: str, entity: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise EmptyNameError(entity)
    return cleaned


class CatalogService:
    """Owners, categories and payment methods.

    Bills are not written here. Balance edits on a payment method take the
    same per-method lock as the ledger so they never interleave with a bill.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, locks: KeyedLocks | None = None) -> None:
        self._uow_factory = uow_factory
        self._locks = locks or KeyedLocks()

    # Owners

    async def list_owners(self) -> list[Owner]:
        async with self._uow_factory() as uow:
            return await uow.owners.list_all()

    async def create_owner(self, name: str) -> Owner:
        async with self._uow_factory() as uow:
            existing = await uow.owners.list_all()
            owner = Owner.create(_clean_name(name, "Owner"), sort_order=len(existing))
            await uow.owners.add(owner)
            await uow.commit()

        logger.info("owner_created", owner_id=str(owner.id), name=owner.name)
        return owner

    async def rename_owner(self, owner_id: UUID, name: str) -> Owner:
        async with self._uow_factory() as uow:
            owner = await uow.owners.get(owner_id)
            if owner is None:
                raise EntityNotFoundError("Owner", owner_id)
            owner.name = _clean_name(name, "Owner")
            await uow.owners.update(owner)
            await uow.commit()

        logger.info("owner_renamed", owner_id=str(owner_id), name=owner.name)
        return owner

    async def delete_owner(self, owner_id: UUID) -> None:
        async with self._uow_factory() as uow:
            await uow.owners.delete(owner_id)
            await uow.commit()

        logger.info("owner_deleted", owner_id=str(owner_id))

    # Categories

    async def list_categories(self) -> list[BillCategory]:
        async with self._uow_factory() as uow:
            return await uow.categories.list_all()

    async def create_category(
        self,
        name: str,
        transaction_type: TransactionType = TransactionType.EXPENSE,
    ) -> BillCategory:
        async with self._uow_factory() as uow:
            existing = await uow.categories.list_all()
            category = BillCategory.create(
                _clean_name(name, "Category"),
                transaction_type=transaction_type,
                sort_order=len(existing),
            )
            await uow.categories.add(category)
            await uow.commit()

        logger.info(
            "category_created",
            category_id=str(category.id),
            name=category.name,
            transaction_type=category.transaction_type.value,
        )
        return category

    async def update_category(
        self,
        category_id: UUID,
        name: str | None = None,
        transaction_type: TransactionType | None = None,
    ) -> BillCategory:
        async with self._uow_factory() as uow:
            category = await uow.categories.get(category_id)
            if category is None:
                raise EntityNotFoundError("Category", category_id)
            if name is not None:
                category.name = _clean_name(name, "Category")
            if transaction_type is not None:
                category.transaction_type = transaction_type
            await uow.categories.update(category)
            await uow.commit()

        logger.info("category_updated", category_id=str(category_id))
        return category

    async def delete_category(self, category_id: UUID) -> None:
        async with self._uow_factory() as uow:
            await uow.categories.delete(category_id)
            await uow.commit()

        logger.info("category_deleted", category_id=str(category_id))

    # Payment methods

    async def list_payment_methods(self) -> list[PaymentMethod]:
        async with self._uow_factory() as uow:
            return await uow.payment_methods.list_all()

    async def get_payment_method(self, payment_method_id: UUID) -> PaymentMethod | None:
        async with self._uow_factory() as uow:
            return await uow.payment_methods.get(payment_method_id)

    async def create_credit_method(
        self,
        name: str,
        transaction_type: TransactionType,
        credit_limit: Decimal,
        outstanding_balance: Decimal,
        billing_date: int,
        owner_id: UUID,
    ) -> CreditMethod:
        if credit_limit < outstanding_balance:
            raise InvalidCreditLimitError(credit_limit, outstanding_balance)

        async with self._uow_factory() as uow:
            if await uow.owners.get(owner_id) is None:
                raise EntityNotFoundError("Owner", owner_id)
            existing = await uow.payment_methods.list_all()
            method = CreditMethod(
                id=uuid4(),
                name=_clean_name(name, "PaymentMethod"),
                transaction_type=transaction_type,
                owner_id=owner_id,
                credit_limit=credit_limit,
                outstanding_balance=outstanding_balance,
                billing_date=billing_date,
                sort_order=len(existing),
            )
            await uow.payment_methods.add(method)
            await uow.commit()

        logger.info(
            "payment_method_created",
            payment_method_id=str(method.id),
            account_type=method.account_type.value,
            credit_limit=str(credit_limit),
            outstanding_balance=str(outstanding_balance),
        )
        return method

    async def create_savings_method(
        self,
        name: str,
        transaction_type: TransactionType,
        balance: Decimal,
        owner_id: UUID,
    ) -> SavingsMethod:
        if balance < 0:
            raise NegativeOpeningBalanceError(balance)

        async with self._uow_factory() as uow:
            if await uow.owners.get(owner_id) is None:
                raise EntityNotFoundError("Owner", owner_id)
            existing = await uow.payment_methods.list_all()
            method = SavingsMethod(
                id=uuid4(),
                name=_clean_name(name, "PaymentMethod"),
                transaction_type=transaction_type,
                owner_id=owner_id,
                balance=balance,
                sort_order=len(existing),
            )
            await uow.payment_methods.add(method)
            await uow.commit()

        logger.info(
            "payment_method_created",
            payment_method_id=str(method.id),
            account_type=method.account_type.value,
            balance=str(balance),
        )
        return method

    async def update_credit_method(
        self,
        payment_method_id: UUID,
        name: str | None = None,
        transaction_type: TransactionType | None = None,
        credit_limit: Decimal | None = None,
        billing_date: int | None = None,
    ) -> CreditMethod:
        async with self._locks.hold(payment_method_id):
            async with self._uow_factory() as uow:
                method = await uow.payment_methods.get(payment_method_id)
                if not isinstance(method, CreditMethod):
                    raise EntityNotFoundError("CreditMethod", payment_method_id)

                if credit_limit is not None and credit_limit < method.outstanding_balance:
                    raise InvalidCreditLimitError(credit_limit, method.outstanding_balance)

                updated = replace(
                    method,
                    name=method.name if name is None else _clean_name(name, "PaymentMethod"),
                    transaction_type=transaction_type or method.transaction_type,
                    credit_limit=method.credit_limit if credit_limit is None else credit_limit,
                    billing_date=method.billing_date if billing_date is None else billing_date,
                )
                await uow.payment_methods.update(updated)
                await uow.commit()

        logger.info("payment_method_updated", payment_method_id=str(payment_method_id))
        return updated

    async def update_savings_method(
        self,
        payment_method_id: UUID,
        name: str | None = None,
        transaction_type: TransactionType | None = None,
    ) -> SavingsMethod:
        async with self._locks.hold(payment_method_id):
            async with self._uow_factory() as uow:
                method = await uow.payment_methods.get(payment_method_id)
                if not isinstance(method, SavingsMethod):
                    raise EntityNotFoundError("SavingsMethod", payment_method_id)

                updated = replace(
                    method,
                    name=method.name if name is None else _clean_name(name, "PaymentMethod"),
                    transaction_type=transaction_type or method.transaction_type,
                )
                await uow.payment_methods.update(updated)
                await uow.commit()

        logger.info("payment_method_updated", payment_method_id=str(payment_method_id))
        return updated

    async def set_opening_balance(self, payment_method_id: UUID, value: Decimal) -> PaymentMethod:
        """Overwrite a method's running total directly.

        For a credit method ``value`` is the outstanding debt and may not exceed
        the limit; for a savings method it is the balance and may not be negative.
        """
        async with self._locks.hold(payment_method_id):
            async with self._uow_factory() as uow:
                method = await uow.payment_methods.get(payment_method_id)
                if method is None:
                    raise EntityNotFoundError("PaymentMethod", payment_method_id)

                updated: PaymentMethod
                match method:
                    case CreditMethod():
                        if value > method.credit_limit:
                            raise InvalidCreditLimitError(method.credit_limit, value)
                        updated = replace(method, outstanding_balance=value)
                    case SavingsMethod():
                        if value < 0:
                            raise NegativeOpeningBalanceError(value)
                        updated = replace(method, balance=value)

                await uow.payment_methods.update(updated)
                await uow.commit()

        logger.info(
            "opening_balance_set",
            payment_method_id=str(payment_method_id),
            value=str(value),
        )
        return updated

    async def delete_payment_method(self, payment_method_id: UUID) -> None:
        async with self._locks.hold(payment_method_id):
            async with self._uow_factory() as uow:
                await uow.payment_methods.delete(payment_method_id)
                await uow.commit()

        logger.info("payment_method_deleted", payment_method_id=str(payment_method_id))

    async def reorder_payment_methods(self, ordered_ids: list[UUID]) -> None:
        async with self._locks.hold(*ordered_ids):
            async with self._uow_factory() as uow:
                for position, payment_method_id in enumerate(ordered_ids):
                    method = await uow.payment_methods.get(payment_method_id)
                    if method is None:
                        raise EntityNotFoundError("PaymentMethod", payment_method_id)
                    await uow.payment_methods.update(replace(method, sort_order=position))
                await uow.commit()

        logger.info("payment_methods_reordered", count=len(ordered_ids))
