from collections import defaultdict
from typing import Any, cast
from uuid import UUID

from sqlalchemy import CursorResult, text
from sqlalchemy.ext.asyncio import AsyncSession

from expense_ledger.domain.exceptions import EntityNotFoundError
from expense_ledger.domain.models import Bill
from expense_ledger.infrastructure.repositories.codec import (
    decode_datetime,
    decode_decimal,
    decode_uuid,
    encode_datetime,
    encode_decimal,
    encode_uuid,
)


class BillRepository:
    """Bills and their category set.

    Only the ledger service writes through this repository; writing bills
    anywhere else would bypass the payment method balance bookkeeping.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_all(self) -> list[Bill]:
        result = await self._session.execute(
            text("""
                SELECT id, amount, payment_method_id, owner_id, note,
                       affects_balance, created_at, updated_at
                FROM bills
                ORDER BY created_at DESC, id
            """),
        )
        rows = result.fetchall()
        category_ids = await self._fetch_all_category_ids()
        return [self._to_bill(row, category_ids.get(row.id, [])) for row in rows]

    async def get(self, bill_id: UUID) -> Bill | None:
        result = await self._session.execute(
            text("""
                SELECT id, amount, payment_method_id, owner_id, note,
                       affects_balance, created_at, updated_at
                FROM bills
                WHERE id = :id
            """),
            {"id": encode_uuid(bill_id)},
        )
        row = result.fetchone()
        if not row:
            return None
        return self._to_bill(row, await self._fetch_category_ids(row.id))

    async def add(self, bill: Bill) -> None:
        await self._session.execute(
            text("""
                INSERT INTO bills
                    (id, amount, payment_method_id, owner_id, note,
                     affects_balance, created_at, updated_at)
                VALUES
                    (:id, :amount, :payment_method_id, :owner_id, :note,
                     :affects_balance, :created_at, :updated_at)
            """),
            self._to_params(bill),
        )
        await self._insert_categories(bill.id, bill.category_ids)

    async def update(self, bill: Bill) -> None:
        result = cast(
            "CursorResult[Any]",
            await self._session.execute(
                text("""
                    UPDATE bills
                    SET amount = :amount,
                        payment_method_id = :payment_method_id,
                        owner_id = :owner_id,
                        note = :note,
                        affects_balance = :affects_balance,
                        created_at = :created_at,
                        updated_at = :updated_at
                    WHERE id = :id
                """),
                self._to_params(bill),
            ),
        )
        if (result.rowcount or 0) == 0:
            raise EntityNotFoundError("Bill", bill.id)
        await self._session.execute(
            text("DELETE FROM bill_categories WHERE bill_id = :bill_id"),
            {"bill_id": encode_uuid(bill.id)},
        )
        await self._insert_categories(bill.id, bill.category_ids)

    async def delete(self, bill_id: UUID) -> None:
        result = cast(
            "CursorResult[Any]",
            await self._session.execute(
                text("DELETE FROM bills WHERE id = :id"),
                {"id": encode_uuid(bill_id)},
            ),
        )
        if (result.rowcount or 0) == 0:
            raise EntityNotFoundError("Bill", bill_id)

    async def count_by_payment_method(self, payment_method_id: UUID) -> int:
        result = await self._session.execute(
            text("SELECT COUNT(*) FROM bills WHERE payment_method_id = :payment_method_id"),
            {"payment_method_id": encode_uuid(payment_method_id)},
        )
        return int(result.scalar_one())

    async def _insert_categories(self, bill_id: UUID, category_ids: list[UUID]) -> None:
        # dict.fromkeys keeps order and drops repeats, the pair is the primary key
        for category_id in dict.fromkeys(category_ids):
            await self._session.execute(
                text("""
                    INSERT INTO bill_categories (bill_id, category_id)
                    VALUES (:bill_id, :category_id)
                """),
                {"bill_id": encode_uuid(bill_id), "category_id": encode_uuid(category_id)},
            )

    async def _fetch_category_ids(self, bill_id: str) -> list[UUID]:
        result = await self._session.execute(
            text("""
                SELECT category_id
                FROM bill_categories
                WHERE bill_id = :bill_id
                ORDER BY rowid
            """),
            {"bill_id": bill_id},
        )
        return [decode_uuid(row.category_id) for row in result.fetchall()]

    async def _fetch_all_category_ids(self) -> dict[str, list[UUID]]:
        result = await self._session.execute(
            text("""
                SELECT bill_id, category_id
                FROM bill_categories
                ORDER BY bill_id, rowid
            """),
        )
        grouped: dict[str, list[UUID]] = defaultdict(list)
        for row in result.fetchall():
            grouped[row.bill_id].append(decode_uuid(row.category_id))
        return grouped

    @staticmethod
    def _to_params(bill: Bill) -> dict[str, Any]:
        return {
            "id": encode_uuid(bill.id),
            "amount": encode_decimal(bill.amount),
            "payment_method_id": encode_uuid(bill.payment_method_id),
            "owner_id": encode_uuid(bill.owner_id),
            "note": bill.note,
            "affects_balance": 1 if bill.affects_balance else 0,
            "created_at": encode_datetime(bill.created_at),
            "updated_at": encode_datetime(bill.updated_at),
        }

    @staticmethod
    def _to_bill(row: Any, category_ids: list[UUID]) -> Bill:
        return Bill(
            id=decode_uuid(row.id),
            amount=decode_decimal(row.amount),
            payment_method_id=decode_uuid(row.payment_method_id),
            category_ids=category_ids,
            owner_id=decode_uuid(row.owner_id),
            note=row.note,
            affects_balance=bool(row.affects_balance),
            created_at=decode_datetime(row.created_at),
            updated_at=decode_datetime(row.updated_at),
        )
