"""Application layer - use cases and orchestration."""

from expense_ledger.application.catalog import CatalogService
from expense_ledger.application.csv_transfer import CsvTransferService, ImportResult
from expense_ledger.application.entitlements import AllowAllEntitlements, EntitlementOracle
from expense_ledger.application.ledger import LedgerService
from expense_ledger.application.locks import KeyedLocks
from expense_ledger.application.statistics import (
    DateRange,
    Snapshot,
    Statistics,
    StatisticsService,
    calculate_statistics,
    filter_bills,
)
from expense_ledger.application.unit_of_work import UnitOfWork, UnitOfWorkFactory, unit_of_work_factory


__all__ = [
    "AllowAllEntitlements",
    "CatalogService",
    "CsvTransferService",
    "DateRange",
    "EntitlementOracle",
    "ImportResult",
    "KeyedLocks",
    "LedgerService",
    "Snapshot",
    "Statistics",
    "StatisticsService",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "calculate_statistics",
    "filter_bills",
    "unit_of_work_factory",
]
