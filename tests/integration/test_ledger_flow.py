"""Integration tests for ledger operations against a real SQLite database."""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from expense_ledger.application import (
    CatalogService,
    CsvTransferService,
    DateRange,
    KeyedLocks,
    LedgerService,
    StatisticsService,
)
from expense_ledger.application.unit_of_work import UnitOfWorkFactory
from expense_ledger.domain.exceptions import (
    CreditLimitExceededError,
    EntityNotFoundError,
    MissingCategoryError,
    OwnerMismatchError,
    PersistenceError,
    StillReferencedError,
)
from expense_ledger.domain.models import (
    Bill,
    BillCategory,
    CreditMethod,
    Owner,
    PaymentMethod,
    SavingsMethod,
    TransactionType,
)
from expense_ledger.infrastructure.repositories import BillRepository


@dataclass
class Books:
    catalog: CatalogService
    ledger: LedgerService
    owner: Owner
    food: BillCategory
    card: CreditMethod
    wallet: SavingsMethod

    async def method(self, method: PaymentMethod) -> PaymentMethod:
        stored = await self.catalog.get_payment_method(method.id)
        assert stored is not None
        return stored


@pytest.fixture
async def books(uow_factory: UnitOfWorkFactory) -> Books:
    locks = KeyedLocks()
    catalog = CatalogService(uow_factory, locks)
    owner = await catalog.create_owner("男主")
    food = await catalog.create_category("食")
    card = await catalog.create_credit_method(
        "招商信用卡", TransactionType.EXPENSE, Decimal("1000"), Decimal("0"), 1, owner.id
    )
    wallet = await catalog.create_savings_method("余额宝", TransactionType.EXPENSE, Decimal("100"), owner.id)
    return Books(catalog, LedgerService(uow_factory, locks), owner, food, card, wallet)


class TestCreditMethodBalance:
    """Spending against a credit limit."""

    @pytest.mark.asyncio
    async def test_limit_is_enforced(self, books: Books) -> None:
        with pytest.raises(CreditLimitExceededError):
            await books.ledger.create_bill(Decimal("-1200"), books.card.id, [books.food.id], books.owner.id)

        assert await books.ledger.list_bills() == []
        assert (await books.method(books.card)).outstanding_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_spend_and_delete(self, books: Books) -> None:
        bill = await books.ledger.create_bill(Decimal("-800"), books.card.id, [books.food.id], books.owner.id)
        card = await books.method(books.card)
        assert card.outstanding_balance == Decimal("800")
        assert card.available_credit == Decimal("200")

        await books.ledger.delete_bill(bill)

        assert (await books.method(books.card)).outstanding_balance == Decimal("0")
        assert await books.ledger.get_bill(bill.id) is None

    @pytest.mark.asyncio
    async def test_spending_up_to_the_limit(self, books: Books) -> None:
        await books.ledger.create_bill(Decimal("-1000"), books.card.id, [books.food.id], books.owner.id)

        assert (await books.method(books.card)).outstanding_balance == Decimal("1000")


class TestSavingsMethodBalance:
    """Savings balances follow the bill sign."""

    @pytest.mark.asyncio
    async def test_spend_and_earn(self, books: Books) -> None:
        await books.ledger.create_bill(Decimal("-50"), books.wallet.id, [books.food.id], books.owner.id)
        assert (await books.method(books.wallet)).balance == Decimal("50")

        await books.ledger.create_bill(Decimal("0.25"), books.wallet.id, [books.food.id], books.owner.id)
        assert (await books.method(books.wallet)).balance == Decimal("50.25")

    @pytest.mark.asyncio
    async def test_balance_may_go_negative(self, books: Books) -> None:
        await books.ledger.create_bill(Decimal("-150"), books.wallet.id, [books.food.id], books.owner.id)

        assert (await books.method(books.wallet)).balance == Decimal("-50")


class TestExcludedMethods:
    """Bills on Excluded payment methods."""

    @pytest.mark.asyncio
    async def test_plain_bill_leaves_balance_alone(self, books: Books) -> None:
        await books.catalog.update_savings_method(books.wallet.id, transaction_type=TransactionType.EXCLUDED)

        bill = await books.ledger.create_bill(Decimal("-30"), books.wallet.id, [books.food.id], books.owner.id)
        assert bill.affects_balance is False
        assert (await books.method(books.wallet)).balance == Decimal("100")

        await books.ledger.delete_bill(bill)
        assert (await books.method(books.wallet)).balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_excluded_bill_moves_balance(self, books: Books) -> None:
        await books.catalog.update_savings_method(books.wallet.id, transaction_type=TransactionType.EXCLUDED)

        bill = await books.ledger.create_excluded_bill(
            Decimal("-30"), books.wallet.id, [books.food.id], books.owner.id
        )
        assert bill.affects_balance is True
        assert (await books.method(books.wallet)).balance == Decimal("70")

        # changing the method type later does not change how the bill is reversed
        await books.catalog.update_savings_method(books.wallet.id, transaction_type=TransactionType.EXPENSE)
        await books.ledger.delete_bill(bill)
        assert (await books.method(books.wallet)).balance == Decimal("100")


class TestUpdateBill:
    """Editing a bill moves its effect between payment methods."""

    @pytest.mark.asyncio
    async def test_same_method(self, books: Books) -> None:
        bill = await books.ledger.create_bill(Decimal("-300"), books.card.id, [books.food.id], books.owner.id)

        updated = await books.ledger.update_bill(
            bill, Decimal("-900"), books.card.id, [books.food.id], books.owner.id, note="改"
        )

        assert (await books.method(books.card)).outstanding_balance == Decimal("900")
        stored = await books.ledger.get_bill(bill.id)
        assert stored == updated
        assert stored.note == "改"
        assert stored.created_at == bill.created_at

    @pytest.mark.asyncio
    async def test_move_to_other_method(self, books: Books) -> None:
        bill = await books.ledger.create_bill(Decimal("-300"), books.card.id, [books.food.id], books.owner.id)

        await books.ledger.update_bill(bill, Decimal("-40"), books.wallet.id, [books.food.id], books.owner.id)

        assert (await books.method(books.card)).outstanding_balance == Decimal("0")
        assert (await books.method(books.wallet)).balance == Decimal("60")

    @pytest.mark.asyncio
    async def test_rejected_update_keeps_everything(self, books: Books) -> None:
        bill = await books.ledger.create_bill(Decimal("-300"), books.card.id, [books.food.id], books.owner.id)

        with pytest.raises(CreditLimitExceededError):
            await books.ledger.update_bill(bill, Decimal("-1001"), books.card.id, [books.food.id], books.owner.id)

        assert (await books.method(books.card)).outstanding_balance == Decimal("300")
        assert await books.ledger.get_bill(bill.id) == bill

    @pytest.mark.asyncio
    async def test_update_to_foreign_method(self, books: Books) -> None:
        other = await books.catalog.create_owner("女主")
        purse = await books.catalog.create_savings_method("微信零钱", TransactionType.EXPENSE, Decimal("10"), other.id)
        bill = await books.ledger.create_bill(Decimal("-5"), books.wallet.id, [books.food.id], books.owner.id)

        with pytest.raises(OwnerMismatchError):
            await books.ledger.update_bill(bill, Decimal("-5"), purse.id, [books.food.id], books.owner.id)

        assert (await books.method(books.wallet)).balance == Decimal("95")
        assert (await books.method(purse)).balance == Decimal("10")


class TestRollback:
    """Failures after a balance write leave no trace."""

    @pytest.mark.asyncio
    async def test_unknown_category_is_rejected(self, books: Books) -> None:
        missing_id = uuid4()

        with pytest.raises(MissingCategoryError) as exc_info:
            await books.ledger.create_bill(Decimal("-20"), books.wallet.id, [books.food.id, missing_id], books.owner.id)

        assert exc_info.value.category_id == missing_id
        assert (await books.method(books.wallet)).balance == Decimal("100")
        assert await books.ledger.list_bills() == []

    @pytest.mark.asyncio
    async def test_failed_bill_insert_rolls_back_balance(
        self, books: Books, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def failing_add(self: BillRepository, bill: Bill) -> None:
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(BillRepository, "add", failing_add)

        with pytest.raises(PersistenceError):
            await books.ledger.create_bill(Decimal("-20"), books.wallet.id, [books.food.id], books.owner.id)

        assert (await books.method(books.wallet)).balance == Decimal("100")
        assert await books.ledger.list_bills() == []

    @pytest.mark.asyncio
    async def test_failed_update_restores_both_methods(self, books: Books) -> None:
        bill = await books.ledger.create_bill(Decimal("-300"), books.card.id, [books.food.id], books.owner.id)

        with pytest.raises(MissingCategoryError):
            await books.ledger.update_bill(bill, Decimal("-40"), books.wallet.id, [uuid4()], books.owner.id)

        assert (await books.method(books.card)).outstanding_balance == Decimal("300")
        assert (await books.method(books.wallet)).balance == Decimal("100")
        assert await books.ledger.get_bill(bill.id) == bill

    @pytest.mark.asyncio
    async def test_deleting_a_missing_bill_keeps_balance(self, books: Books) -> None:
        bill = await books.ledger.create_bill(Decimal("-20"), books.wallet.id, [books.food.id], books.owner.id)
        await books.ledger.delete_bill(bill)

        with pytest.raises(EntityNotFoundError):
            await books.ledger.delete_bill(bill)

        assert (await books.method(books.wallet)).balance == Decimal("100")


class TestConcurrency:
    """Concurrent operations on one or several payment methods."""

    @pytest.mark.asyncio
    async def test_concurrent_bills_all_land(self, books: Books) -> None:
        await asyncio.gather(
            *[
                books.ledger.create_bill(Decimal("-10"), books.wallet.id, [books.food.id], books.owner.id)
                for _ in range(5)
            ]
        )

        assert (await books.method(books.wallet)).balance == Decimal("50")
        assert len(await books.ledger.list_bills()) == 5

    @pytest.mark.asyncio
    async def test_concurrent_spending_respects_limit(self, books: Books) -> None:
        results = await asyncio.gather(
            *[
                books.ledger.create_bill(Decimal("-400"), books.card.id, [books.food.id], books.owner.id)
                for _ in range(3)
            ],
            return_exceptions=True,
        )

        assert sum(isinstance(r, CreditLimitExceededError) for r in results) == 1
        assert (await books.method(books.card)).outstanding_balance == Decimal("800")

    @pytest.mark.asyncio
    async def test_bills_on_many_methods_run_in_parallel(self, books: Books) -> None:
        """Writers on different methods wait for the database instead of failing."""
        accounts = [
            await books.catalog.create_savings_method(f"储蓄卡{i}", TransactionType.EXPENSE, Decimal("100"), books.owner.id)
            for i in range(6)
        ]

        results = await asyncio.gather(
            *[
                books.ledger.create_bill(Decimal("-10"), account.id, [books.food.id], books.owner.id)
                for account in accounts
                for _ in range(3)
            ],
            return_exceptions=True,
        )

        assert [r for r in results if isinstance(r, BaseException)] == []
        for account in accounts:
            assert (await books.method(account)).balance == Decimal("70")
        assert len(await books.ledger.list_bills()) == 18

    @pytest.mark.asyncio
    async def test_concurrent_updates_from_one_copy(self, books: Books) -> None:
        """Each update reverses what is stored, whatever copy the caller holds."""
        bill = await books.ledger.create_bill(Decimal("-100"), books.wallet.id, [books.food.id], books.owner.id)

        await asyncio.gather(
            books.ledger.update_bill(bill, Decimal("-50"), books.wallet.id, [books.food.id], books.owner.id),
            books.ledger.update_bill(bill, Decimal("-30"), books.wallet.id, [books.food.id], books.owner.id),
        )

        stored = await books.ledger.get_bill(bill.id)
        assert stored is not None
        assert stored.amount in (Decimal("-50"), Decimal("-30"))
        assert (await books.method(books.wallet)).balance == Decimal("100") + stored.amount

    @pytest.mark.asyncio
    async def test_delete_with_copy_read_before_move(self, books: Books) -> None:
        other = await books.catalog.create_savings_method("零钱通", TransactionType.EXPENSE, Decimal("100"), books.owner.id)
        bill = await books.ledger.create_bill(Decimal("-40"), books.wallet.id, [books.food.id], books.owner.id)
        await books.ledger.update_bill(bill, Decimal("-40"), other.id, [books.food.id], books.owner.id)

        await books.ledger.delete_bill(bill)

        assert (await books.method(books.wallet)).balance == Decimal("100")
        assert (await books.method(other)).balance == Decimal("100")
        assert await books.ledger.list_bills() == []


class TestCatalogWithBills:
    """Catalog deletes guarded by existing bills."""

    @pytest.mark.asyncio
    async def test_method_with_bills_cannot_be_deleted(self, books: Books) -> None:
        await books.ledger.create_bill(Decimal("-1"), books.card.id, [books.food.id], books.owner.id)

        with pytest.raises(StillReferencedError):
            await books.catalog.delete_payment_method(books.card.id)

        await books.catalog.delete_payment_method(books.wallet.id)
        assert [m.id for m in await books.catalog.list_payment_methods()] == [books.card.id]


class TestStatisticsAndCsv:
    """Reading the ledger back out."""

    @pytest.mark.asyncio
    async def test_statistics(self, books: Books, uow_factory: UnitOfWorkFactory) -> None:
        salary = await books.catalog.create_category("工资", TransactionType.INCOME)
        repay = await books.catalog.create_category("还信用卡", TransactionType.EXCLUDED)
        await books.ledger.create_bill(
            Decimal("-12.5"), books.card.id, [books.food.id], books.owner.id,
            created_at=datetime(2026, 3, 1, tzinfo=UTC),
        )
        await books.ledger.create_bill(
            Decimal("3000"), books.wallet.id, [salary.id], books.owner.id,
            created_at=datetime(2026, 3, 2, tzinfo=UTC),
        )
        await books.ledger.create_excluded_bill(
            Decimal("12.5"), books.card.id, [repay.id], books.owner.id,
            created_at=datetime(2026, 3, 3, tzinfo=UTC),
        )

        stats, snapshot = await StatisticsService(uow_factory).calculate()

        assert stats.total_expense == Decimal("12.5")
        assert stats.total_income == Decimal("3000")
        assert stats.by_payment_method["男主-招商信用卡"] == {
            TransactionType.EXPENSE: Decimal("12.5"),
            TransactionType.EXCLUDED: Decimal("12.5"),
        }
        assert len(snapshot.bills) == 3
        assert (await books.method(books.card)).outstanding_balance == Decimal("0")

        march_first, _ = await StatisticsService(uow_factory).calculate(
            DateRange(datetime(2026, 3, 1, tzinfo=UTC), datetime(2026, 3, 1, 23, 59, tzinfo=UTC))
        )
        assert len(march_first.bills) == 1

    @pytest.mark.asyncio
    async def test_export_then_import_skips_everything(
        self,
        books: Books,
        uow_factory: UnitOfWorkFactory,
    ) -> None:
        await books.ledger.create_bill(
            Decimal("-12.50"), books.wallet.id, [books.food.id], books.owner.id, note="午饭",
            created_at=datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
        )
        transfer = CsvTransferService(uow_factory, books.ledger)

        content = await transfer.export_csv()
        result = await transfer.import_csv(content)

        assert content.splitlines()[1] == "2026-03-01 12:00:00,-12.50,食,男主,余额宝,午饭"
        assert result.duplicates == 1
        assert result.imported == 0
        assert len(await books.ledger.list_bills()) == 1

    @pytest.mark.asyncio
    async def test_import_into_empty_ledger(self, uow_factory: UnitOfWorkFactory) -> None:
        ledger = LedgerService(uow_factory)
        transfer = CsvTransferService(uow_factory, ledger)
        content = (
            "日期,金额,账单类型,归属人,支付方式,备注\n"
            "2026-03-01 08:00:00,-20,食,女主,微信零钱,早饭\n"
            "2026-03-02 08:00:00,5000,工资,女主,微信零钱,\n"
        )

        result = await transfer.import_csv(content)

        assert result.imported == 2
        assert (result.created_categories, result.created_owners, result.created_payment_methods) == (2, 1, 1)
        catalog = CatalogService(uow_factory)
        [wallet] = await catalog.list_payment_methods()
        assert isinstance(wallet, SavingsMethod)
        assert wallet.balance == Decimal("5980")
