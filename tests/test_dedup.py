"""
Test suite for dedup keys and the ledger deduplication sweep
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from loan_servicing.storage import InMemoryStorage
from loan_servicing.audit import AuditTrail, AuditEventType
from loan_servicing.loans import LoanCycleManager
from loan_servicing.ledger import LedgerEntry, LedgerManager
from loan_servicing.dedup import LedgerDeduplicator, build_dedup_key, entry_dedup_key


class TestBuildDedupKey:
    """Test deterministic identity keys"""

    def test_reference_key(self):
        """Test rows with a reference number use the REF form"""
        key = build_dedup_key("L-001", "2024-03-05T08:00:00Z", " OR-9 ", "1500", "100")

        assert key == "L-001|REF|OR-9|2024-03-05|1500.00"

    def test_alternate_key(self):
        """Test rows without a reference number use the ALT form"""
        key = build_dedup_key("L-001", "2024-03-05", "   ", 1500, "8,500")

        assert key == "L-001|ALT|2024-03-05|1500.00|8500.00"

    @pytest.mark.parametrize("amount", [1500, 1500.0, "1,500.00", "1500.000", Decimal("1500"), "₱1,500"])
    def test_amount_representations_agree(self, amount):
        """Test number, comma string and decimal string amounts produce one key"""
        assert build_dedup_key("L-001", "2024-03-05", None, amount, 0) == \
            build_dedup_key("L-001", "2024-03-05", None, "1500.00", "0")

    def test_time_of_day_ignored(self):
        """Test keys use the UTC calendar day only"""
        morning = build_dedup_key("L-001", "2024-03-05T01:00:00Z", "OR-1", 10, 0)
        evening = build_dedup_key("L-001", "2024-03-05T22:00:00Z", "OR-1", 10, 0)

        assert morning == evening

    def test_missing_values(self):
        """Test missing date and amounts give a deterministic key"""
        assert build_dedup_key("L-001", None, None, None, None) == "L-001|ALT||0.00|0.00"
        assert build_dedup_key("L-001", "garbage", None, "abc", None) == "L-001|ALT||0.00|0.00"

    def test_entry_key_rebinds_cycle(self):
        """Test a legacy entry can be keyed under the target cycle"""
        now = datetime.now(timezone.utc)
        entry = LedgerEntry(id="e", created_at=now, updated_at=now, account_id="A", client_no="C",
                            loan_cycle_no=None, payment_date="2024-03-05", collection_payment="10")

        assert entry_dedup_key(entry, "L-001") == "L-001|ALT|2024-03-05|10.00|0.00"


class TestLedgerDeduplicator:
    """Test the deduplication sweep"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.loans = LoanCycleManager(self.storage, self.audit_trail)
        self.ledger = LedgerManager(self.storage, self.loans, self.audit_trail)
        self.deduplicator = LedgerDeduplicator(self.ledger, self.audit_trail)
        self.loans.create_cycle("L-001", "ACC-1", "C-001")
        self.loans.create_cycle("L-002", "ACC-2", "C-002")

    def _entry(self, entry_id, loan_cycle_no, created_at, **fields):
        return LedgerEntry(id=entry_id, created_at=created_at, updated_at=created_at,
                           account_id="ACC", client_no="C", loan_cycle_no=loan_cycle_no, **fields)

    def _seed(self):
        base = datetime(2024, 3, 1, tzinfo=timezone.utc)
        row = {"payment_date": "2024-03-05", "collection_reference_no": "OR-1", "collection_payment": "500"}
        self.ledger.insert_entries([
            self._entry("old", "L-001", base, **row),
            self._entry("newest", "L-001", base + timedelta(days=2), **row),
            self._entry("middle", "L-001", base + timedelta(days=1), **row),
            self._entry("unique", "L-001", base, payment_date="2024-03-06", collection_payment="500"),
            self._entry("other-a", "L-002", base, payment_date="2024-03-05", collection_payment="1"),
            self._entry("other-b", "L-002", base + timedelta(days=1), payment_date="2024-03-05",
                        collection_payment="1.00"),
        ])

    def test_dry_run_counts_only(self):
        """Test a dry run reports groups and deletions without deleting"""
        self._seed()

        report = self.deduplicator.dedupe(dry_run=True)

        assert report.scope == "all"
        assert report.duplicate_groups == 2
        assert report.to_delete == 3
        assert report.deleted == 0
        assert self.storage.count(self.ledger.table_name) == 6

    def test_keeps_newest_per_group(self):
        """Test the newest entry by creation time survives"""
        self._seed()

        report = self.deduplicator.dedupe("L-001")

        assert report.scope == "L-001"
        assert report.duplicate_groups == 1
        assert report.deleted == 2
        remaining = {e.id for e in self.ledger.get_entries("L-001")}
        assert remaining == {"newest", "unique"}
        assert self.storage.count(self.ledger.table_name) == 4
        assert self.audit_trail.get_events_by_type(AuditEventType.LEDGER_DEDUPLICATED)

    def test_second_sweep_is_noop(self):
        """Test a clean ledger has nothing to delete"""
        self._seed()
        self.deduplicator.dedupe()

        report = self.deduplicator.dedupe()

        assert report.duplicate_groups == 0
        assert report.deleted == 0

    def test_legacy_rows_of_different_owners_survive(self):
        """Test legacy rows without a cycle number are only grouped with their own owner's rows"""
        self.loans.create_cycle("L-A", "ACC-A", "C-A")
        self.loans.create_cycle("L-B", "ACC-B", "C-B")
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        row = {"payment_date": "2024-01-05", "collection_payment": "500", "running_balance": "0"}
        self.ledger.insert_entries([
            LedgerEntry(id="legacy-a", created_at=base, updated_at=base,
                        account_id="ACC-A", client_no="C-A", loan_cycle_no="", **row),
            LedgerEntry(id="legacy-b", created_at=base, updated_at=base,
                        account_id="ACC-B", client_no="C-B", loan_cycle_no="", **row),
        ])

        report = self.deduplicator.dedupe()

        assert report.duplicate_groups == 0
        assert [e.id for e in self.ledger.get_entries_for_cycle(self.loans.require_cycle("L-A"))] == ["legacy-a"]
        assert [e.id for e in self.ledger.get_entries_for_cycle(self.loans.require_cycle("L-B"))] == ["legacy-b"]

    def test_legacy_duplicates_of_one_owner_removed(self):
        """Test repeated legacy rows of the same account and client are still swept"""
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        row = {"payment_date": "2024-01-05", "collection_payment": "500", "running_balance": "0"}
        self.ledger.insert_entries([
            LedgerEntry(id="legacy-old", created_at=base, updated_at=base,
                        account_id="ACC-A", client_no="C-A", loan_cycle_no=None, **row),
            LedgerEntry(id="legacy-new", created_at=base + timedelta(hours=1),
                        updated_at=base + timedelta(hours=1),
                        account_id="ACC-A", client_no="C-A", loan_cycle_no=None, **row),
        ])

        report = self.deduplicator.dedupe()

        assert report.deleted_ids == ["legacy-old"]
