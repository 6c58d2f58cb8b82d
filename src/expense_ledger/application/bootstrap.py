from decimal import Decimal
from uuid import uuid4

import structlog

from expense_ledger.application.unit_of_work import UnitOfWork, UnitOfWorkFactory
from expense_ledger.domain.models import (
    BillCategory,
    CreditMethod,
    Owner,
    SavingsMethod,
    TransactionType,
)


logger = structlog.get_logger()

DEFAULT_CATEGORIES: list[tuple[str, TransactionType]] = [
    *[
        (name, TransactionType.EXPENSE)
        for name in (
            "衣", "食", "住", "行", "教育", "医疗", "娱乐", "保险",
            "购物", "燃气", "水费", "话费", "电费", "人情", "其他",
        )
    ],
    ("工资", TransactionType.INCOME),
    ("其他", TransactionType.INCOME),
    ("还信用卡", TransactionType.EXCLUDED),
]

DEFAULT_OWNERS = ["男主", "女主", "公主", "少主"]

DEFAULT_CREDIT_METHODS = ["花呗", "白条", "招商信用卡", "广发信用卡", "兴业信用卡", "农行信用卡", "光大信用卡"]
DEFAULT_CREDIT_LIMIT = Decimal("10000")
DEFAULT_BILLING_DATE = 1

DEFAULT_SAVINGS_METHODS = ["微信零钱", "余额宝"]


async def seed_defaults(uow: UnitOfWork) -> None:
    """Add the default catalog; payment methods belong to the first owner."""
    for position, (name, transaction_type) in enumerate(DEFAULT_CATEGORIES):
        await uow.categories.add(BillCategory.create(name, transaction_type=transaction_type, sort_order=position))

    owners = [Owner.create(name, sort_order=position) for position, name in enumerate(DEFAULT_OWNERS)]
    for owner in owners:
        await uow.owners.add(owner)
    holder = owners[0]

    position = 0
    for name in DEFAULT_CREDIT_METHODS:
        await uow.payment_methods.add(
            CreditMethod(
                id=uuid4(),
                name=name,
                transaction_type=TransactionType.EXPENSE,
                owner_id=holder.id,
                credit_limit=DEFAULT_CREDIT_LIMIT,
                outstanding_balance=Decimal("0"),
                billing_date=DEFAULT_BILLING_DATE,
                sort_order=position,
            )
        )
        position += 1
    for name in DEFAULT_SAVINGS_METHODS:
        await uow.payment_methods.add(
            SavingsMethod(
                id=uuid4(),
                name=name,
                transaction_type=TransactionType.EXPENSE,
                owner_id=holder.id,
                balance=Decimal("0"),
                sort_order=position,
            )
        )
        position += 1

    logger.info(
        "catalog_seeded",
        categories=len(DEFAULT_CATEGORIES),
        owners=len(DEFAULT_OWNERS),
        payment_methods=position,
    )


async def reset_and_seed(uow_factory: UnitOfWorkFactory) -> None:
    """Delete every row, bills included, and seed the default catalog in one transaction."""
    async with uow_factory() as uow:
        await uow.clear_all()
        await seed_defaults(uow)
        await uow.commit()

    logger.warning("ledger_reset")
