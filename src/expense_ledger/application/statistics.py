"""Read-only aggregation over a snapshot of bills.

Everything here is a pure function of its inputs except ``StatisticsService``,
which loads the snapshot inside one unit of work so a half-applied ledger
update is never observed.
"""

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

import structlog

from expense_ledger.application.unit_of_work import UnitOfWorkFactory
from expense_ledger.domain.models import (
    Bill,
    BillCategory,
    Owner,
    PaymentMethod,
    TransactionType,
    effective_transaction_type,
)


logger = structlog.get_logger()

UNKNOWN_OWNER = "未知"
UNKNOWN_PAYMENT_METHOD = "未知支付方式"

Buckets = dict[TransactionType, Decimal]


@dataclass(frozen=True)
class DateRange:
    start: datetime | None = None
    end: datetime | None = None

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


@dataclass
class Snapshot:
    bills: list[Bill]
    categories: list[BillCategory]
    owners: list[Owner]
    payment_methods: list[PaymentMethod]


@dataclass
class Statistics:
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    by_category: dict[str, Buckets] = field(default_factory=dict)
    by_owner: dict[str, Buckets] = field(default_factory=dict)
    by_payment_method: dict[str, Buckets] = field(default_factory=dict)
    # bills inside the date range, kept for drill-down
    bills: list[Bill] = field(default_factory=list)


def filter_bills(
    bills: Iterable[Bill],
    category_ids: Iterable[UUID] | None = None,
    owner_ids: Iterable[UUID] | None = None,
    payment_method_ids: Iterable[UUID] | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Bill]:
    """Narrow ``bills`` by every non-empty filter; the date window is inclusive."""
    categories = set(category_ids or ())
    owners = set(owner_ids or ())
    methods = set(payment_method_ids or ())
    window = DateRange(start, end)

    result = []
    for bill in bills:
        if categories and categories.isdisjoint(bill.category_ids):
            continue
        if owners and bill.owner_id not in owners:
            continue
        if methods and bill.payment_method_id not in methods:
            continue
        if not window.contains(bill.created_at):
            continue
        result.append(bill)
    return result


def payment_method_label(owner_name: str | None, method_name: str | None) -> str:
    return f"{owner_name or UNKNOWN_OWNER}-{method_name or UNKNOWN_PAYMENT_METHOD}"


def calculate_statistics(
    bills: Iterable[Bill],
    categories: Iterable[BillCategory],
    owners: Iterable[Owner],
    payment_methods: Iterable[PaymentMethod],
    date_range: DateRange | None = None,
) -> Statistics:
    """Totals and per-category, per-owner, per-payment-method buckets.

    Bills whose payment method is unknown are skipped. Totals leave out bills
    whose categories are all Excluded; buckets hold absolute amounts keyed by
    the bill's effective transaction type.
    """
    category_by_id = {c.id: c for c in categories}
    owner_names = {o.id: o.name for o in owners}
    method_by_id = {m.id: m for m in payment_methods}

    window = date_range or DateRange()
    selected = [b for b in bills if window.contains(b.created_at)]

    stats = Statistics(bills=selected)
    by_category: dict[str, Buckets] = defaultdict(lambda: defaultdict(Decimal))
    by_owner: dict[str, Buckets] = defaultdict(lambda: defaultdict(Decimal))
    by_method: dict[str, Buckets] = defaultdict(lambda: defaultdict(Decimal))

    for bill in selected:
        method = method_by_id.get(bill.payment_method_id)
        if method is None:
            continue

        kind = effective_transaction_type(bill, category_by_id)
        amount = abs(bill.amount)

        if kind is not TransactionType.EXCLUDED:
            if bill.amount > 0:
                stats.total_income += bill.amount
            else:
                stats.total_expense += amount

        for category_id in bill.category_ids:
            category = category_by_id.get(category_id)
            if category is not None:
                by_category[category.name][kind] += amount

        owner_name = owner_names.get(bill.owner_id)
        if owner_name is not None:
            by_owner[owner_name][kind] += amount

        by_method[payment_method_label(owner_name, method.name)][kind] += amount

    stats.by_category = {name: dict(buckets) for name, buckets in by_category.items()}
    stats.by_owner = {name: dict(buckets) for name, buckets in by_owner.items()}
    stats.by_payment_method = {name: dict(buckets) for name, buckets in by_method.items()}
    return stats


def _of_type(bills: Iterable[Bill], categories: list[BillCategory], kind: TransactionType) -> list[Bill]:
    category_by_id = {c.id: c for c in categories}
    return [b for b in bills if effective_transaction_type(b, category_by_id) is kind]


def bills_for_category(snapshot: Snapshot, name: str, kind: TransactionType) -> list[Bill]:
    ids = {c.id for c in snapshot.categories if c.name == name}
    matching = [b for b in snapshot.bills if not ids.isdisjoint(b.category_ids)]
    return _of_type(matching, snapshot.categories, kind)


def bills_for_owner(snapshot: Snapshot, name: str, kind: TransactionType) -> list[Bill]:
    ids = {o.id for o in snapshot.owners if o.name == name}
    matching = [b for b in snapshot.bills if b.owner_id in ids]
    return _of_type(matching, snapshot.categories, kind)


def bills_for_payment_method(snapshot: Snapshot, label: str, kind: TransactionType) -> list[Bill]:
    owner_names = {o.id: o.name for o in snapshot.owners}
    method_names = {m.id: m.name for m in snapshot.payment_methods}
    matching = [
        b
        for b in snapshot.bills
        if payment_method_label(owner_names.get(b.owner_id), method_names.get(b.payment_method_id)) == label
    ]
    return _of_type(matching, snapshot.categories, kind)


class StatisticsService:
    def __init__(self, uow_factory: UnitOfWorkFactory) -> None:
        self._uow_factory = uow_factory

    async def snapshot(self) -> Snapshot:
        async with self._uow_factory() as uow:
            return Snapshot(
                bills=await uow.bills.list_all(),
                categories=await uow.categories.list_all(),
                owners=await uow.owners.list_all(),
                payment_methods=await uow.payment_methods.list_all(),
            )

    async def calculate(self, date_range: DateRange | None = None) -> tuple[Statistics, Snapshot]:
        snapshot = await self.snapshot()
        stats = calculate_statistics(
            snapshot.bills,
            snapshot.categories,
            snapshot.owners,
            snapshot.payment_methods,
            date_range,
        )
        logger.info(
            "statistics_calculated",
            bills=len(stats.bills),
            total_income=str(stats.total_income),
            total_expense=str(stats.total_expense),
        )
        # drill-down works on the bills inside the range
        return stats, Snapshot(stats.bills, snapshot.categories, snapshot.owners, snapshot.payment_methods)
