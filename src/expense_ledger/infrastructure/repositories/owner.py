from typing import Any, cast
from uuid import UUID

from sqlalchemy import CursorResult, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expense_ledger.domain.exceptions import EntityNotFoundError, StillReferencedError
from expense_ledger.domain.models import Owner
from expense_ledger.infrastructure.repositories.codec import decode_uuid, encode_uuid


class OwnerRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_all(self) -> list[Owner]:
        result = await self._session.execute(
            text("""
                SELECT id, name, sort_order
                FROM owners
                ORDER BY sort_order, name
            """),
        )
        return [self._to_owner(row) for row in result.fetchall()]

    async def get(self, owner_id: UUID) -> Owner | None:
        result = await self._session.execute(
            text("""
                SELECT id, name, sort_order
                FROM owners
                WHERE id = :id
            """),
            {"id": encode_uuid(owner_id)},
        )
        row = result.fetchone()
        if not row:
            return None
        return self._to_owner(row)

    async def add(self, owner: Owner) -> None:
        await self._session.execute(
            text("""
                INSERT INTO owners (id, name, sort_order)
                VALUES (:id, :name, :sort_order)
            """),
            {
                "id": encode_uuid(owner.id),
                "name": owner.name,
                "sort_order": owner.sort_order,
            },
        )

    async def update(self, owner: Owner) -> None:
        result = cast(
            "CursorResult[Any]",
            await self._session.execute(
                text("""
                    UPDATE owners
                    SET name = :name, sort_order = :sort_order
                    WHERE id = :id
                """),
                {
                    "id": encode_uuid(owner.id),
                    "name": owner.name,
                    "sort_order": owner.sort_order,
                },
            ),
        )
        if (result.rowcount or 0) == 0:
            raise EntityNotFoundError("Owner", owner.id)

    async def delete(self, owner_id: UUID) -> None:
        """Delete an owner and, by cascade, its payment methods.

        Fails while any bill still references the owner or one of its methods.
        """
        try:
            result = cast(
                "CursorResult[Any]",
                await self._session.execute(
                    text("DELETE FROM owners WHERE id = :id"),
                    {"id": encode_uuid(owner_id)},
                ),
            )
        except IntegrityError as e:
            raise StillReferencedError("Owner", owner_id) from e
        if (result.rowcount or 0) == 0:
            raise EntityNotFoundError("Owner", owner_id)

    @staticmethod
    def _to_owner(row: Any) -> Owner:
        return Owner(
            id=decode_uuid(row.id),
            name=row.name,
            sort_order=row.sort_order,
        )
