"""
Test suite for the import reconciler

Covers idempotent imports, in-batch duplicates, canonical identifiers, date
range filtering and partial write failures.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from loan_servicing.storage import InMemoryStorage
from loan_servicing.audit import AuditTrail, AuditEventType
from loan_servicing.exceptions import InvalidInputError, NotFoundError
from loan_servicing.loans import LoanCycleManager
from loan_servicing.ledger import EntrySource, LedgerEntry, LedgerManager
from loan_servicing.reconciler import ImportReconciler, StorageLegacySource


LEGACY_ROWS = [
    {"LoanNo": "L-001", "PaymentDate": "2024-01-05", "CollectionReferenceNo": "OR-1",
     "CollectionPayment": "1,000.00", "RunningBalance": "9,000.00", "AccountId": "WRONG"},
    {"LoanNo": "L-001", "PaymentDate": "2024-01-12", "CollectionReferenceNo": "",
     "CollectionPayment": 1000, "RunningBalance": 8000},
    {"LoanNo": "L-001", "PaymentDate": "2024-01-12T09:00:00Z", "CollectionReferenceNo": None,
     "CollectionPayment": "1000.00", "RunningBalance": "8,000"},
]


class FlakyStorage(InMemoryStorage):
    """Rejects inserts of entries with a given reference number"""

    def __init__(self, bad_reference):
        super().__init__()
        self.bad_reference = bad_reference

    def insert(self, table, record_id, data):
        if data.get("collection_reference_no") == self.bad_reference:
            raise RuntimeError("write rejected")
        super().insert(table, record_id, data)


class TestImportReconciler:
    """Test ImportReconciler"""

    def setup_method(self):
        """Set up test fixtures"""
        self._build(InMemoryStorage())

    def _build(self, storage):
        self.storage = storage
        self.audit_trail = AuditTrail(self.storage)
        self.loans = LoanCycleManager(self.storage, self.audit_trail)
        self.ledger = LedgerManager(self.storage, self.loans, self.audit_trail)
        self.legacy = StorageLegacySource(self.storage)
        self.reconciler = ImportReconciler(self.loans, self.ledger, self.audit_trail, self.legacy)
        self.cycle = self.loans.create_cycle("L-001", "ACC-1", "C-001")

    def test_in_batch_duplicates(self):
        """Test three rows where the last two collide insert two and skip one"""
        result = self.reconciler.reconcile("L-001", LEGACY_ROWS)

        assert result.inserted == 2
        assert result.skipped == 1
        assert result.failed == 0

    def test_idempotent(self):
        """Test re-running the same import inserts nothing"""
        self.reconciler.reconcile("L-001", LEGACY_ROWS)

        second = self.reconciler.reconcile("L-001", LEGACY_ROWS)

        assert second.inserted == 0
        assert second.skipped == 3
        assert self.storage.count(self.ledger.table_name) == 2

    def test_canonical_identifiers(self):
        """Test inserted entries carry the cycle's account and client ids"""
        self.reconciler.reconcile("L-001", LEGACY_ROWS)

        entries = self.ledger.get_entries_for_cycle(self.cycle)

        assert {e.account_id for e in entries} == {"ACC-1"}
        assert {e.client_no for e in entries} == {"C-001"}
        assert {e.source for e in entries} == {EntrySource.DATABASE_IMPORT}
        assert entries[0].collection_payment == Decimal("1000.00")

    def test_existing_legacy_rows_count_as_present(self):
        """Test legacy rows without a cycle number suppress re-import"""
        now = datetime.now(timezone.utc)
        self.ledger.insert_entries([LedgerEntry(
            id="legacy", created_at=now, updated_at=now, account_id="ACC-1", client_no="C-001",
            loan_cycle_no="", payment_date="2024-01-05", collection_reference_no="OR-1",
            collection_payment="1000"
        )])

        result = self.reconciler.reconcile("L-001", LEGACY_ROWS[:1])

        assert result.inserted == 0
        assert result.skipped == 1

    def test_missing_cycle(self):
        """Test an unknown cycle fails without writes"""
        with pytest.raises(NotFoundError):
            self.reconciler.reconcile("L-404", LEGACY_ROWS)
        assert self.storage.count(self.ledger.table_name) == 0

    def test_client_mismatch(self):
        """Test a mismatching client number is a validation failure"""
        with pytest.raises(InvalidInputError):
            self.reconciler.reconcile("L-001", LEGACY_ROWS, client_no="C-999")
        assert self.storage.count(self.ledger.table_name) == 0

        result = self.reconciler.reconcile("L-001", LEGACY_ROWS, client_no="C-001")
        assert result.inserted == 2

    def test_date_range_filter(self):
        """Test rows outside the inclusive range are filtered"""
        rows = LEGACY_ROWS + [{"CollectionPayment": 5, "RunningBalance": 1}]

        result = self.reconciler.reconcile("L-001", rows, start_date="2024-01-06", end_date="2024-01-12")

        assert result.filtered == 2  # 2024-01-05 and the undated row
        assert result.inserted == 1
        assert result.skipped == 1

    def test_invalid_range(self):
        """Test inverted or unparseable ranges are rejected"""
        with pytest.raises(InvalidInputError):
            self.reconciler.reconcile("L-001", LEGACY_ROWS, start_date="2024-02-01", end_date="2024-01-01")
        with pytest.raises(InvalidInputError):
            self.reconciler.reconcile("L-001", LEGACY_ROWS, start_date="someday")

    def test_partial_failure(self):
        """Test a failed row is counted and the rest are written"""
        self._build(FlakyStorage("OR-1"))

        result = self.reconciler.reconcile("L-001", LEGACY_ROWS)

        assert result.inserted == 1
        assert result.failed == 1
        assert result.errors == ["write rejected"]

    def test_reconcile_from_legacy_source(self):
        """Test rows are read from the legacy store by loan number"""
        for index, row in enumerate(LEGACY_ROWS):
            self.storage.save(self.legacy.table_name, f"row-{index}", row)
        self.storage.save(self.legacy.table_name, "elsewhere", {"LoanNo": "L-999", "CollectionPayment": 1})

        result = self.reconciler.reconcile_from_source("L-001")

        assert result.inserted == 2
        assert result.skipped == 1
        events = self.audit_trail.get_events_by_type(AuditEventType.IMPORT_RECONCILED)
        assert events[0].metadata["inserted"] == 2
