from typing import Any, cast
from uuid import UUID

from sqlalchemy import CursorResult, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expense_ledger.domain.exceptions import EntityNotFoundError, StillReferencedError
from expense_ledger.domain.models import (
    AccountType,
    CreditMethod,
    PaymentMethod,
    SavingsMethod,
    TransactionType,
)
from expense_ledger.infrastructure.repositories.codec import (
    decode_decimal,
    decode_uuid,
    encode_decimal,
    encode_uuid,
)


_COLUMNS = """
    id, name, transaction_type, account_type, owner_id,
    credit_limit, outstanding_balance, billing_date, balance, sort_order
"""


class PaymentMethodRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_all(self) -> list[PaymentMethod]:
        result = await self._session.execute(
            text(f"""
                SELECT {_COLUMNS}
                FROM payment_methods
                ORDER BY sort_order, name
            """),
        )
        return [self._to_payment_method(row) for row in result.fetchall()]

    async def get(self, payment_method_id: UUID) -> PaymentMethod | None:
        result = await self._session.execute(
            text(f"""
                SELECT {_COLUMNS}
                FROM payment_methods
                WHERE id = :id
            """),
            {"id": encode_uuid(payment_method_id)},
        )
        row = result.fetchone()
        if not row:
            return None
        return self._to_payment_method(row)

    async def add(self, method: PaymentMethod) -> None:
        await self._session.execute(
            text("""
                INSERT INTO payment_methods
                    (id, name, transaction_type, account_type, owner_id,
                     credit_limit, outstanding_balance, billing_date, balance, sort_order)
                VALUES
                    (:id, :name, :transaction_type, :account_type, :owner_id,
                     :credit_limit, :outstanding_balance, :billing_date, :balance, :sort_order)
            """),
            self._to_params(method),
        )

    async def update(self, method: PaymentMethod) -> None:
        result = cast(
            "CursorResult[Any]",
            await self._session.execute(
                text("""
                    UPDATE payment_methods
                    SET name = :name,
                        transaction_type = :transaction_type,
                        account_type = :account_type,
                        owner_id = :owner_id,
                        credit_limit = :credit_limit,
                        outstanding_balance = :outstanding_balance,
                        billing_date = :billing_date,
                        balance = :balance,
                        sort_order = :sort_order
                    WHERE id = :id
                """),
                self._to_params(method),
            ),
        )
        if (result.rowcount or 0) == 0:
            raise EntityNotFoundError("PaymentMethod", method.id)

    async def delete(self, payment_method_id: UUID) -> None:
        try:
            result = cast(
                "CursorResult[Any]",
                await self._session.execute(
                    text("DELETE FROM payment_methods WHERE id = :id"),
                    {"id": encode_uuid(payment_method_id)},
                ),
            )
        except IntegrityError as e:
            raise StillReferencedError("PaymentMethod", payment_method_id) from e
        if (result.rowcount or 0) == 0:
            raise EntityNotFoundError("PaymentMethod", payment_method_id)

    @staticmethod
    def _to_params(method: PaymentMethod) -> dict[str, Any]:
        params: dict[str, Any] = {
            "id": encode_uuid(method.id),
            "name": method.name,
            "transaction_type": method.transaction_type.value,
            "account_type": method.account_type.value,
            "owner_id": encode_uuid(method.owner_id),
            "credit_limit": None,
            "outstanding_balance": None,
            "billing_date": None,
            "balance": None,
            "sort_order": method.sort_order,
        }
        match method:
            case CreditMethod():
                params["credit_limit"] = encode_decimal(method.credit_limit)
                params["outstanding_balance"] = encode_decimal(method.outstanding_balance)
                params["billing_date"] = method.billing_date
            case SavingsMethod():
                params["balance"] = encode_decimal(method.balance)
        return params

    @staticmethod
    def _to_payment_method(row: Any) -> PaymentMethod:
        account_type = AccountType(row.account_type)
        if account_type is AccountType.CREDIT:
            return CreditMethod(
                id=decode_uuid(row.id),
                name=row.name,
                transaction_type=TransactionType(row.transaction_type),
                owner_id=decode_uuid(row.owner_id),
                credit_limit=decode_decimal(row.credit_limit),
                outstanding_balance=decode_decimal(row.outstanding_balance),
                billing_date=row.billing_date,
                sort_order=row.sort_order,
            )
        return SavingsMethod(
            id=decode_uuid(row.id),
            name=row.name,
            transaction_type=TransactionType(row.transaction_type),
            owner_id=decode_uuid(row.owner_id),
            balance=decode_decimal(row.balance),
            sort_order=row.sort_order,
        )
