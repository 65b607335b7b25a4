"""
Test suite for staged imports (stage then commit)
"""

import pytest
from decimal import Decimal

from loan_servicing.storage import InMemoryStorage
from loan_servicing.audit import AuditTrail, AuditEventType
from loan_servicing.exceptions import InvalidInputError, NotFoundError
from loan_servicing.loans import LoanCycleManager
from loan_servicing.ledger import EntrySource, LedgerManager
from loan_servicing.staging import StagedImportManager


def parsed_rows(count):
    return [
        {
            "PaymentDate": f"2024-02-{day:02d}",
            "CollectionReferenceNo": f"OR-{day}",
            "CollectionPayment": "500.00",
            "RunningBalance": f"{10000 - day * 500:,}.00",
            "Penalty": "0",
            "RawLine": f"02/{day:02d}/2024 OR-{day} 500.00",
        }
        for day in range(1, count + 1)
    ]


class TestStagedImportManager:
    """Test StagedImportManager"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.loans = LoanCycleManager(self.storage, self.audit_trail)
        self.ledger = LedgerManager(self.storage, self.loans, self.audit_trail)
        self.staging = StagedImportManager(self.storage, self.loans, self.ledger, self.audit_trail)
        self.cycle = self.loans.create_cycle("L-002", "ACC-2", "C-002")

    def test_stage_rows(self):
        """Test staged rows are normalized and pending"""
        staged = self.staging.stage("L-002", parsed_rows(2))

        assert len(staged) == 2
        assert all(not s.imported for s in staged)
        assert staged[0].collection_payment == Decimal("500.00")
        assert staged[0].running_balance == Decimal("9500.00")
        assert staged[0].raw_line.startswith("02/01/2024")
        assert len(self.staging.pending("L-002")) == 2

    def test_stage_validation(self):
        """Test missing loan number and empty batch are rejected"""
        with pytest.raises(InvalidInputError):
            self.staging.stage("", parsed_rows(1))
        with pytest.raises(InvalidInputError):
            self.staging.stage("L-002", [])

    def test_commit_five_rows(self):
        """Test committing five staged rows inserts five imported entries"""
        self.staging.stage("L-002", parsed_rows(5))

        result = self.staging.commit("L-002")

        assert result.success
        assert result.imported == 5
        assert result.message == "Imported 5 collections successfully"

        entries = self.ledger.get_entries_for_cycle(self.cycle)
        assert len(entries) == 5
        assert {e.source for e in entries} == {EntrySource.IMPORTED}
        assert {e.account_id for e in entries} == {"ACC-2"}
        assert {e.client_no for e in entries} == {"C-002"}

        staged = self.storage.find(self.staging.table_name, {"loan_no": "L-002"})
        assert len(staged) == 5
        assert all(row["imported"] for row in staged)
        assert self.staging.pending("L-002") == []

        events = self.audit_trail.get_events_by_type(AuditEventType.COLLECTIONS_COMMITTED)
        assert events[0].metadata["imported"] == 5

    def test_commit_nothing_pending(self):
        """Test committing with nothing staged is informational"""
        result = self.staging.commit("L-002")

        assert not result.success
        assert result.message == "No pending collections to import"
        assert self.storage.count(self.ledger.table_name) == 0

    def test_second_commit_has_nothing_pending(self):
        """Test committed rows are not imported twice"""
        self.staging.stage("L-002", parsed_rows(3))
        self.staging.commit("L-002")

        result = self.staging.commit("L-002")

        assert not result.success
        assert self.storage.count(self.ledger.table_name) == 3

    def test_commit_does_not_dedup(self):
        """Test commit inserts rows already present in the ledger"""
        self.staging.stage("L-002", parsed_rows(2))
        self.staging.commit("L-002")
        self.staging.stage("L-002", parsed_rows(2))

        result = self.staging.commit("L-002")

        assert result.imported == 2
        assert self.storage.count(self.ledger.table_name) == 4

    def test_commit_unknown_loan(self):
        """Test commit against a missing cycle"""
        self.staging.stage("L-404", parsed_rows(1))

        with pytest.raises(NotFoundError):
            self.staging.commit("L-404")
        assert len(self.staging.pending("L-404")) == 1
