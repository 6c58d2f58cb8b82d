"""CSV export and import of bills.

Every column is handled as text so amounts never pass through float. Imported
bills are written through the ledger, so they move payment method balances
exactly like bills entered by hand.
"""

import io
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import UUID, uuid4

import pandas as pd
import structlog

from expense_ledger.application.entitlements import EXPORT_DATA, AllowAllEntitlements, EntitlementOracle
from expense_ledger.application.ledger import LedgerService
from expense_ledger.application.unit_of_work import UnitOfWorkFactory
from expense_ledger.domain.exceptions import (
    DomainError,
    EntityNotFoundError,
    FeatureNotAvailableError,
    ImportFormatError,
    RollbackFailedError,
)
from expense_ledger.domain.models import (
    Bill,
    BillCategory,
    Owner,
    PaymentMethod,
    SavingsMethod,
    TransactionType,
)
from expense_ledger.infrastructure.metrics import CSV_IMPORTED_ROWS_TOTAL


logger = structlog.get_logger()

DATE_COLUMN = "日期"
AMOUNT_COLUMN = "金额"
TYPE_COLUMN = "交易类型"
CATEGORY_COLUMN = "账单类型"
OWNER_COLUMN = "归属人"
PAYMENT_METHOD_COLUMN = "支付方式"
NOTE_COLUMN = "备注"

EXPORT_COLUMNS = [DATE_COLUMN, AMOUNT_COLUMN, CATEGORY_COLUMN, OWNER_COLUMN, PAYMENT_METHOD_COLUMN, NOTE_COLUMN]

EXPORT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
IMPORT_DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
]

CATEGORY_SEPARATOR = "; "
UNKNOWN = "未知"

TYPE_LABELS = {
    "收入": TransactionType.INCOME,
    "支出": TransactionType.EXPENSE,
    "不计入": TransactionType.EXCLUDED,
}


@dataclass
class ImportResult:
    total_rows: int = 0
    imported: int = 0
    duplicates: int = 0
    errors: int = 0
    created_categories: int = 0
    created_owners: int = 0
    created_payment_methods: int = 0


@dataclass
class _ParsedRow:
    line_number: int
    created_at: datetime
    amount: Decimal
    transaction_type: TransactionType
    category_ids: list[UUID]
    owner_id: UUID
    payment_method_id: UUID
    note: str | None


def render_csv(
    bills: list[Bill],
    categories: list[BillCategory],
    owners: list[Owner],
    payment_methods: list[PaymentMethod],
) -> str:
    category_names = {c.id: c.name for c in categories}
    owner_names = {o.id: o.name for o in owners}
    method_names = {m.id: m.name for m in payment_methods}

    rows = [
        {
            DATE_COLUMN: bill.created_at.astimezone(UTC).strftime(EXPORT_DATE_FORMAT),
            AMOUNT_COLUMN: str(bill.amount),
            CATEGORY_COLUMN: CATEGORY_SEPARATOR.join(
                category_names[cid] for cid in bill.category_ids if cid in category_names
            ),
            OWNER_COLUMN: owner_names.get(bill.owner_id, UNKNOWN),
            PAYMENT_METHOD_COLUMN: method_names.get(bill.payment_method_id, UNKNOWN),
            NOTE_COLUMN: bill.note or "",
        }
        for bill in bills
    ]
    frame = pd.DataFrame(rows, columns=EXPORT_COLUMNS, dtype=str)
    return frame.to_csv(index=False, lineterminator="\n")


def parse_date(value: str, line_number: int | None = None) -> datetime:
    for fmt in IMPORT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    raise ImportFormatError(f"unrecognised date {value!r}", line_number)


def parse_amount(value: str, line_number: int | None = None) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation as e:
        raise ImportFormatError(f"invalid amount {value!r}", line_number) from e
    if not amount.is_finite():
        raise ImportFormatError(f"invalid amount {value!r}", line_number)
    return amount


def read_frame(content: str) -> pd.DataFrame:
    if not content.strip():
        raise ImportFormatError("file is empty")
    try:
        frame = pd.read_csv(
            io.StringIO(content),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ImportFormatError(f"cannot parse CSV: {e}") from e

    frame.columns = [str(c).strip().lstrip("\ufeff") for c in frame.columns]
    if DATE_COLUMN not in frame.columns or AMOUNT_COLUMN not in frame.columns:
        raise ImportFormatError(f"missing required columns {DATE_COLUMN}, {AMOUNT_COLUMN}")
    if frame.empty:
        raise ImportFormatError("file has a header but no rows")
    return frame.fillna("")


def read_csv_file(path: Path) -> str:
    if path.suffix.lower() in {".xlsx", ".xls"}:
        raise ImportFormatError("Excel files are not supported, save the sheet as CSV first")
    raw = path.read_bytes()
    for encoding in ("utf-8-sig", "gb18030"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ImportFormatError("cannot decode file, save it as UTF-8")


def is_duplicate(
    candidate: _ParsedRow,
    seen: list[Bill | _ParsedRow],
    amount_tolerance: Decimal,
    time_tolerance: timedelta,
) -> bool:
    return any(
        abs(other.amount - candidate.amount) < amount_tolerance
        and other.payment_method_id == candidate.payment_method_id
        and other.owner_id == candidate.owner_id
        and other.note == candidate.note
        and abs(other.created_at - candidate.created_at) < time_tolerance
        for other in seen
    )


class CsvTransferService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        ledger: LedgerService,
        entitlements: EntitlementOracle | None = None,
        default_savings_balance: Decimal = Decimal("1000"),
        amount_tolerance: Decimal = Decimal("0.01"),
        time_tolerance_seconds: int = 60,
    ) -> None:
        self._uow_factory = uow_factory
        self._ledger = ledger
        self._entitlements = entitlements or AllowAllEntitlements()
        self._default_savings_balance = default_savings_balance
        self._amount_tolerance = amount_tolerance
        self._time_tolerance = timedelta(seconds=time_tolerance_seconds)

    async def export_csv(self) -> str:
        if not self._entitlements.is_entitled(EXPORT_DATA):
            raise FeatureNotAvailableError(EXPORT_DATA)

        async with self._uow_factory() as uow:
            bills = await uow.bills.list_all()
            categories = await uow.categories.list_all()
            owners = await uow.owners.list_all()
            payment_methods = await uow.payment_methods.list_all()

        if not bills:
            raise EntityNotFoundError("Bill")

        content = render_csv(bills, categories, owners, payment_methods)
        logger.info("csv_exported", bills=len(bills))
        return content

    async def import_csv(self, content: str) -> ImportResult:
        """Import bills from CSV text.

        Unknown category, owner and payment method names are created; rows
        matching an existing or earlier imported bill are skipped. Rows that
        cannot be parsed or that the ledger rejects are counted as errors.
        """
        frame = read_frame(content)
        has_type = TYPE_COLUMN in frame.columns
        log = logger.bind(rows=len(frame), has_type_column=has_type)

        async with self._uow_factory() as uow:
            existing_bills = await uow.bills.list_all()
            categories = await uow.categories.list_all()
            owners = await uow.owners.list_all()
            payment_methods = await uow.payment_methods.list_all()

        # first entry wins when names repeat
        category_by_name: dict[str, BillCategory] = {}
        for category in categories:
            category_by_name.setdefault(category.name, category)
        owner_by_name: dict[str, Owner] = {}
        for owner in owners:
            owner_by_name.setdefault(owner.name, owner)
        method_by_name: dict[str, PaymentMethod] = {}
        for method in payment_methods:
            method_by_name.setdefault(method.name, method)

        new_categories: list[BillCategory] = []
        new_owners: list[Owner] = []
        new_methods: list[PaymentMethod] = []

        result = ImportResult(total_rows=len(frame))
        accepted: list[_ParsedRow] = []
        seen: list[Bill | _ParsedRow] = list(existing_bills)

        for position, record in enumerate(frame.to_dict("records")):
            line_number = position + 2
            try:
                created_at = parse_date(record[DATE_COLUMN].strip(), line_number)
                amount = parse_amount(record[AMOUNT_COLUMN].strip(), line_number)
            except ImportFormatError as e:
                result.errors += 1
                log.warning("csv_row_rejected", line=line_number, error=str(e))
                continue

            if has_type:
                kind = TYPE_LABELS.get(record[TYPE_COLUMN].strip(), TransactionType.EXPENSE)
            else:
                kind = TransactionType.INCOME if amount > 0 else TransactionType.EXPENSE

            category_ids = []
            for name in record.get(CATEGORY_COLUMN, "").split(CATEGORY_SEPARATOR):
                name = name.strip()
                if not name:
                    continue
                if name not in category_by_name:
                    category = BillCategory.create(
                        name,
                        transaction_type=kind,
                        sort_order=len(category_by_name),
                    )
                    category_by_name[name] = category
                    new_categories.append(category)
                category_ids.append(category_by_name[name].id)

            owner_name = record.get(OWNER_COLUMN, "").strip() or UNKNOWN
            if owner_name not in owner_by_name:
                owner = Owner.create(owner_name, sort_order=len(owner_by_name))
                owner_by_name[owner_name] = owner
                new_owners.append(owner)
            owner_id = owner_by_name[owner_name].id

            method_name = record.get(PAYMENT_METHOD_COLUMN, "").strip() or UNKNOWN
            if method_name not in method_by_name:
                method = SavingsMethod(
                    id=uuid4(),
                    name=method_name,
                    transaction_type=TransactionType.EXPENSE,
                    owner_id=owner_id,
                    balance=self._default_savings_balance,
                    sort_order=len(method_by_name),
                )
                method_by_name[method_name] = method
                new_methods.append(method)

            row = _ParsedRow(
                line_number=line_number,
                created_at=created_at,
                amount=amount,
                transaction_type=kind,
                category_ids=category_ids,
                owner_id=owner_id,
                payment_method_id=method_by_name[method_name].id,
                note=record.get(NOTE_COLUMN, "").strip() or None,
            )
            if is_duplicate(row, seen, self._amount_tolerance, self._time_tolerance):
                result.duplicates += 1
                continue
            accepted.append(row)
            seen.append(row)

        if new_categories or new_owners or new_methods:
            async with self._uow_factory() as uow:
                for category in new_categories:
                    await uow.categories.add(category)
                for owner in new_owners:
                    await uow.owners.add(owner)
                for method in new_methods:
                    await uow.payment_methods.add(method)
                await uow.commit()
        result.created_categories = len(new_categories)
        result.created_owners = len(new_owners)
        result.created_payment_methods = len(new_methods)

        for row in accepted:
            create = (
                self._ledger.create_excluded_bill
                if row.transaction_type is TransactionType.EXCLUDED
                else self._ledger.create_bill
            )
            try:
                await create(
                    row.amount,
                    row.payment_method_id,
                    row.category_ids,
                    row.owner_id,
                    note=row.note,
                    created_at=row.created_at,
                )
            except RollbackFailedError:
                raise
            except DomainError as e:
                result.errors += 1
                log.warning("csv_row_rejected", line=row.line_number, error=str(e))
                continue
            result.imported += 1

        CSV_IMPORTED_ROWS_TOTAL.labels(result="imported").inc(result.imported)
        CSV_IMPORTED_ROWS_TOTAL.labels(result="duplicate").inc(result.duplicates)
        CSV_IMPORTED_ROWS_TOTAL.labels(result="error").inc(result.errors)
        log.info(
            "csv_imported",
            imported=result.imported,
            duplicates=result.duplicates,
            errors=result.errors,
            created_categories=result.created_categories,
            created_owners=result.created_owners,
            created_payment_methods=result.created_payment_methods,
        )
        return result

