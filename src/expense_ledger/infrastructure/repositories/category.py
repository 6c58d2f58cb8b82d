from typing import Any, cast
from uuid import UUID

from sqlalchemy import CursorResult, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expense_ledger.domain.exceptions import EntityNotFoundError, StillReferencedError
from expense_ledger.domain.models import BillCategory, TransactionType
from expense_ledger.infrastructure.repositories.codec import decode_uuid, encode_uuid


class CategoryRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_all(self) -> list[BillCategory]:
        result = await self._session.execute(
            text("""
                SELECT id, name, transaction_type, sort_order
                FROM categories
                ORDER BY sort_order, name
            """),
        )
        return [self._to_category(row) for row in result.fetchall()]

    async def get(self, category_id: UUID) -> BillCategory | None:
        result = await self._session.execute(
            text("""
                SELECT id, name, transaction_type, sort_order
                FROM categories
                WHERE id = :id
            """),
            {"id": encode_uuid(category_id)},
        )
        row = result.fetchone()
        if not row:
            return None
        return self._to_category(row)

    async def add(self, category: BillCategory) -> None:
        await self._session.execute(
            text("""
                INSERT INTO categories (id, name, transaction_type, sort_order)
                VALUES (:id, :name, :transaction_type, :sort_order)
            """),
            {
                "id": encode_uuid(category.id),
                "name": category.name,
                "transaction_type": category.transaction_type.value,
                "sort_order": category.sort_order,
            },
        )

    async def update(self, category: BillCategory) -> None:
        result = cast(
            "CursorResult[Any]",
            await self._session.execute(
                text("""
                    UPDATE categories
                    SET name = :name,
                        transaction_type = :transaction_type,
                        sort_order = :sort_order
                    WHERE id = :id
                """),
                {
                    "id": encode_uuid(category.id),
                    "name": category.name,
                    "transaction_type": category.transaction_type.value,
                    "sort_order": category.sort_order,
                },
            ),
        )
        if (result.rowcount or 0) == 0:
            raise EntityNotFoundError("BillCategory", category.id)

    async def delete(self, category_id: UUID) -> None:
        try:
            result = cast(
                "CursorResult[Any]",
                await self._session.execute(
                    text("DELETE FROM categories WHERE id = :id"),
                    {"id": encode_uuid(category_id)},
                ),
            )
        except IntegrityError as e:
            raise StillReferencedError("BillCategory", category_id) from e
        if (result.rowcount or 0) == 0:
            raise EntityNotFoundError("BillCategory", category_id)

    @staticmethod
    def _to_category(row: Any) -> BillCategory:
        return BillCategory(
            id=decode_uuid(row.id),
            name=row.name,
            transaction_type=TransactionType(row.transaction_type),
            sort_order=row.sort_order,
        )
