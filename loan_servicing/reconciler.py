"""
Import Reconciler Module

Merges candidate collection rows (legacy database import, parsed uploads)
into a loan cycle's ledger without creating duplicates. Re-running the same
import inserts nothing.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidInputError
from .ledger import EntrySource, LedgerEntry, LedgerManager, pick
from .loans import LoanCycle, LoanCycleManager
from .dedup import build_dedup_key, entry_dedup_key
from .dates import parse_datetime, start_of_day, end_of_day
from .logging_config import get_logger, log_action


@dataclass
class ReconcileResult:
    """Counts reported by a reconciliation run"""
    loan_cycle_no: str
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    filtered: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loan_cycle_no": self.loan_cycle_no,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "failed": self.failed,
            "filtered": self.filtered,
            "errors": self.errors,
        }


class StorageLegacySource:
    """
    Legacy collection rows kept in a storage table.

    Rows are matched on the legacy loan number (LoanNo or loan_no); whatever
    account or client fields they carry are not trusted downstream.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "legacy_collections"):
        self.storage = storage
        self.table_name = table_name

    def fetch(self, loan_no: str) -> List[Dict[str, Any]]:
        def matches(row: Dict[str, Any]) -> bool:
            value = row.get('LoanNo', row.get('loan_no'))
            return value is not None and str(value).strip() == loan_no

        return self.storage.find_where(self.table_name, matches)


def resolve_date_range(
    start_date: Any = None,
    end_date: Any = None
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive UTC day bounds for an optional start/end pair"""
    start = end = None
    if start_date not in (None, ""):
        start = start_of_day(start_date)
        if start is None:
            raise InvalidInputError(f"Invalid start date: {start_date}")
    if end_date not in (None, ""):
        end = end_of_day(end_date)
        if end is None:
            raise InvalidInputError(f"Invalid end date: {end_date}")
    if start is not None and end is not None and start > end:
        raise InvalidInputError("Start date must not be after end date")
    return start, end


class ImportReconciler:
    """Deduplicating import of collection rows into the ledger"""

    def __init__(self, loan_manager: LoanCycleManager, ledger_manager: LedgerManager,
                 audit_trail: AuditTrail, legacy_source: Optional[StorageLegacySource] = None):
        self.loan_manager = loan_manager
        self.ledger_manager = ledger_manager
        self.audit_trail = audit_trail
        self.legacy_source = legacy_source
        self.logger = get_logger("loan_servicing.reconciler")

    def reconcile(
        self,
        loan_cycle_no: str,
        candidates: Sequence[Mapping[str, Any]],
        client_no: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
        source: EntrySource = EntrySource.DATABASE_IMPORT,
        performed_by: Optional[str] = None
    ) -> ReconcileResult:
        """
        Insert candidate rows whose dedup key is not already in the ledger.

        Args:
            loan_cycle_no: Target loan cycle
            candidates: Ordered candidate rows (snake_case or PascalCase keys)
            client_no: Optional client number that must match the cycle
            start_date: Optional inclusive lower payment day
            end_date: Optional inclusive upper payment day
            source: Source tag stamped on inserted entries
            performed_by: User running the import

        Returns:
            ReconcileResult with inserted/skipped/failed/filtered counts

        Raises:
            NotFoundError: The loan cycle does not exist
            InvalidInputError: Missing cycle number, client mismatch or bad range
        """
        cycle = self.loan_manager.require_cycle(loan_cycle_no)
        if client_no and str(client_no).strip() != cycle.client_no:
            raise InvalidInputError(
                f"Client {client_no} does not own loan cycle {cycle.loan_cycle_no}"
            )
        start, end = resolve_date_range(start_date, end_date)

        result = ReconcileResult(loan_cycle_no=cycle.loan_cycle_no)

        existing = self.ledger_manager.get_entries_for_cycle(cycle)
        # Legacy rows without a cycle number are keyed as if they carried this one
        seen = {entry_dedup_key(entry, cycle.loan_cycle_no) for entry in existing}

        now = datetime.now(timezone.utc)
        batch: List[LedgerEntry] = []
        for row in candidates:
            if start is not None or end is not None:
                if not self._within(parse_datetime(pick(row, 'payment_date')), start, end):
                    result.filtered += 1
                    continue

            key = build_dedup_key(
                cycle.loan_cycle_no,
                pick(row, 'payment_date'),
                pick(row, 'collection_reference_no'),
                pick(row, 'collection_payment'),
                pick(row, 'running_balance'),
            )
            if key in seen:
                result.skipped += 1
                continue
            seen.add(key)
            batch.append(LedgerEntry.from_row(row, cycle, source, now=now))

        if batch:
            write = self.ledger_manager.insert_entries(batch)
            result.inserted = write.written_count
            result.failed = write.failed_count
            result.errors = [error.message for error in write.errors]

        self._record(cycle, result, source, performed_by)
        return result

    def reconcile_from_source(
        self,
        loan_cycle_no: str,
        client_no: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
        performed_by: Optional[str] = None
    ) -> ReconcileResult:
        """Reconcile using rows fetched from the legacy collection store"""
        if self.legacy_source is None:
            raise InvalidInputError("No legacy collection source configured")
        cycle = self.loan_manager.require_cycle(loan_cycle_no)
        rows = self.legacy_source.fetch(cycle.loan_cycle_no)
        return self.reconcile(
            cycle.loan_cycle_no, rows, client_no=client_no,
            start_date=start_date, end_date=end_date,
            source=EntrySource.DATABASE_IMPORT, performed_by=performed_by
        )

    @staticmethod
    def _within(value: Optional[datetime], start: Optional[datetime],
                end: Optional[datetime]) -> bool:
        if value is None:
            return False
        if start is not None and value < start:
            return False
        if end is not None and value > end:
            return False
        return True

    def _record(self, cycle: LoanCycle, result: ReconcileResult,
                source: EntrySource, performed_by: Optional[str]) -> None:
        if result.inserted:
            self.audit_trail.log_event(
                event_type=AuditEventType.IMPORT_RECONCILED,
                entity_type="loan_cycle",
                entity_id=cycle.loan_cycle_no,
                metadata={
                    "inserted": result.inserted,
                    "skipped": result.skipped,
                    "failed": result.failed,
                    "source": source
                },
                user_id=performed_by
            )

        level = "warning" if result.failed else "info"
        log_action(
            self.logger, level,
            f"Reconciled {cycle.loan_cycle_no}: {result.inserted} inserted, "
            f"{result.skipped} skipped, {result.failed} failed",
            user_id=performed_by, action="reconcile_import",
            resource=f"loan_cycle:{cycle.loan_cycle_no}",
            extra={"filtered": result.filtered, "source": source.value}
        )
