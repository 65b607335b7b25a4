"""
Collection Ledger Module

Canonical record of payment/collection events against loan cycles. Entries
for one cycle ordered by payment date form its ledger. Rows from every source
(manual entry, parsed uploads, staged imports, legacy database import) are
normalized here into LedgerEntry objects bound to the cycle's canonical
account and client identifiers.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, List, Mapping, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, BulkWriteResult
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidInputError, NotFoundError
from .loans import LoanCycle, LoanCycleManager
from .money import normalize_amount
from .dates import parse_datetime, ensure_utc
from .logging_config import get_logger, log_action


class EntrySource(Enum):
    """Provenance of a ledger entry"""
    MANUAL = "manual"
    IMPORTED = "imported"
    DATABASE_IMPORT = "database-import"
    UPLOAD = "upload"


ENTRY_MONEY_FIELDS = (
    'amortization', 'principal_paid', 'interest_paid', 'penalty',
    'total_collected', 'collection_payment', 'running_balance',
)
ENTRY_TEXT_FIELDS = (
    'collector_name', 'payment_mode', 'collection_reference_no',
    'bank', 'branch', 'remarks',
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def pascal_case(name: str) -> str:
    """payment_date -> PaymentDate"""
    return ''.join(part.capitalize() for part in name.split('_'))


def pick(row: Mapping[str, Any], name: str) -> Any:
    """Read a field from a row keyed either snake_case or PascalCase"""
    if name in row:
        return row[name]
    return row.get(pascal_case(name))


def clean_text(value: Any) -> Optional[str]:
    """Trimmed string, or None for missing/blank values"""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class LedgerEntry(StorageRecord):
    """One collection event; loan_cycle_no may be empty on legacy rows"""
    account_id: str
    client_no: str
    loan_cycle_no: Optional[str] = None
    payment_date: Optional[datetime] = None
    collector_name: Optional[str] = None
    payment_mode: Optional[str] = None
    collection_reference_no: Optional[str] = None
    bank: Optional[str] = None
    branch: Optional[str] = None
    amortization: Optional[Decimal] = None
    principal_paid: Optional[Decimal] = None
    interest_paid: Optional[Decimal] = None
    penalty: Optional[Decimal] = None
    total_collected: Optional[Decimal] = None
    collection_payment: Optional[Decimal] = None
    running_balance: Optional[Decimal] = None
    source: EntrySource = EntrySource.MANUAL
    remarks: Optional[str] = None

    def __post_init__(self):
        for name in ENTRY_MONEY_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                setattr(self, name, normalize_amount(value))
        if self.payment_date is not None and not isinstance(self.payment_date, datetime):
            self.payment_date = parse_datetime(self.payment_date)
        if not isinstance(self.source, EntrySource):
            self.source = EntrySource(self.source)

    @property
    def collection_date(self) -> datetime:
        """Payment date, falling back to the last-modified timestamp"""
        if self.payment_date is not None:
            return self.payment_date
        return ensure_utc(self.updated_at)

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_row(
        cls,
        row: Mapping[str, Any],
        cycle: LoanCycle,
        source: EntrySource,
        now: Optional[datetime] = None
    ) -> 'LedgerEntry':
        """
        Build an entry from an untrusted external row.

        The row's own account/client identifiers are ignored; the loan
        cycle supplies them.
        """
        now = now or datetime.now(timezone.utc)
        values: Dict[str, Any] = {}
        for name in ENTRY_MONEY_FIELDS:
            values[name] = normalize_amount(pick(row, name))
        for name in ENTRY_TEXT_FIELDS:
            values[name] = clean_text(pick(row, name))

        return cls(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=cycle.account_id,
            client_no=cycle.client_no,
            loan_cycle_no=cycle.loan_cycle_no,
            payment_date=parse_datetime(pick(row, 'payment_date')),
            source=source,
            **values
        )


class LedgerManager:
    """Manager for collection ledger entries"""

    CORRECTABLE_FIELDS = ('payment_date',) + ENTRY_TEXT_FIELDS + ENTRY_MONEY_FIELDS

    def __init__(self, storage: StorageInterface, loan_manager: LoanCycleManager,
                 audit_trail: AuditTrail):
        self.storage = storage
        self.loan_manager = loan_manager
        self.audit_trail = audit_trail
        self.table_name = "ledger_entries"
        self.logger = get_logger("loan_servicing.ledger")

    def add_entry(
        self,
        loan_cycle_no: str,
        row: Mapping[str, Any],
        source: EntrySource = EntrySource.MANUAL,
        performed_by: Optional[str] = None
    ) -> LedgerEntry:
        """Record a single collection (manual entry or upload)"""
        cycle = self.loan_manager.require_cycle(loan_cycle_no)
        entry = LedgerEntry.from_row(row, cycle, source)

        self.storage.insert(self.table_name, entry.id, entry.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.LEDGER_ENTRY_CREATED,
            entity_type="ledger_entry",
            entity_id=entry.id,
            metadata={
                "loan_cycle_no": cycle.loan_cycle_no,
                "collection_payment": entry.collection_payment,
                "source": entry.source
            },
            user_id=performed_by
        )
        return entry

    def insert_entries(self, entries: Iterable[LedgerEntry]) -> BulkWriteResult:
        """Best-effort bulk insert; failed rows are reported, not raised"""
        result = self.storage.insert_many(
            self.table_name, [(entry.id, entry.to_dict()) for entry in entries]
        )
        for error in result.errors:
            log_action(
                self.logger, "warning", f"Ledger entry insert failed: {error.message}",
                action="insert_ledger_entry", resource=f"ledger_entry:{error.record_id}"
            )
        return result

    def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        data = self.storage.load(self.table_name, entry_id)
        if data:
            return self._entry_from_dict(data)
        return None

    def get_entries_for_cycle(
        self,
        cycle: LoanCycle,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[LedgerEntry]:
        """
        Ledger of a loan cycle ordered by payment date ascending.

        Legacy rows stored without a loan cycle number are joined by the
        cycle's account id or client number.

        Args:
            cycle: Resolved loan cycle
            start: Inclusive lower bound on payment date
            end: Inclusive upper bound on payment date
        """
        def belongs(record: Dict[str, Any]) -> bool:
            if record.get('loan_cycle_no'):
                return record['loan_cycle_no'] == cycle.loan_cycle_no
            return (record.get('account_id') == cycle.account_id or
                    record.get('client_no') == cycle.client_no)

        entries = [self._entry_from_dict(data)
                   for data in self.storage.find_where(self.table_name, belongs)]

        if start is not None or end is not None:
            entries = [e for e in entries if self._in_range(e.payment_date, start, end)]

        entries.sort(key=lambda e: (e.payment_date or _EPOCH, e.created_at, e.id))
        return entries

    def get_entries(self, loan_cycle_no: Optional[str] = None) -> List[LedgerEntry]:
        """Entries stamped with a loan cycle number, or every entry when None"""
        if loan_cycle_no:
            data = self.storage.find(self.table_name, {"loan_cycle_no": loan_cycle_no})
        else:
            data = self.storage.load_all(self.table_name)
        return [self._entry_from_dict(d) for d in data]

    @staticmethod
    def latest_entry(entries: Iterable[LedgerEntry]) -> Optional[LedgerEntry]:
        """Most recent collection by payment date (last-modified when undated)"""
        latest = None
        for entry in entries:
            if latest is None or (entry.collection_date, entry.created_at) >= (latest.collection_date, latest.created_at):
                latest = entry
        return latest

    def correct_entry(
        self,
        entry_id: str,
        corrections: Mapping[str, Any],
        performed_by: Optional[str] = None
    ) -> LedgerEntry:
        """Administrative correction of an existing entry"""
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Ledger entry {entry_id} not found")

        unknown = set(corrections) - set(self.CORRECTABLE_FIELDS)
        if unknown:
            raise InvalidInputError(f"Fields cannot be corrected: {', '.join(sorted(unknown))}")
        if not corrections:
            raise InvalidInputError("No corrections supplied")

        before = {name: getattr(entry, name) for name in corrections}
        for name, value in corrections.items():
            if name == 'payment_date':
                value = parse_datetime(value)
            elif name in ENTRY_MONEY_FIELDS:
                value = normalize_amount(value)
            else:
                value = clean_text(value)
            setattr(entry, name, value)
        entry.updated_at = datetime.now(timezone.utc)

        self.storage.save(self.table_name, entry.id, entry.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.LEDGER_ENTRY_CORRECTED,
            entity_type="ledger_entry",
            entity_id=entry.id,
            metadata={
                "before": before,
                "after": {name: getattr(entry, name) for name in corrections}
            },
            user_id=performed_by
        )
        log_action(
            self.logger, "info", f"Ledger entry corrected: {entry.id}",
            user_id=performed_by, action="correct_ledger_entry",
            resource=f"ledger_entry:{entry.id}", extra={"fields": sorted(corrections)}
        )
        return entry

    def delete_entry(self, entry_id: str, performed_by: Optional[str] = None) -> bool:
        """Explicit deletion of a single entry"""
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Ledger entry {entry_id} not found")

        deleted = self.storage.delete(self.table_name, entry_id)
        if deleted:
            self.audit_trail.log_event(
                event_type=AuditEventType.LEDGER_ENTRY_DELETED,
                entity_type="ledger_entry",
                entity_id=entry_id,
                metadata={"loan_cycle_no": entry.loan_cycle_no},
                user_id=performed_by
            )
        return deleted

    @staticmethod
    def _in_range(value: Optional[datetime], start: Optional[datetime],
                  end: Optional[datetime]) -> bool:
        if value is None:
            return False
        if start is not None and value < start:
            return False
        if end is not None and value > end:
            return False
        return True

    def _entry_from_dict(self, data: Dict[str, Any]) -> LedgerEntry:
        """Convert stored dictionary to LedgerEntry"""
        known = set(LedgerEntry.field_names())
        return LedgerEntry.from_dict({k: v for k, v in data.items() if k in known})
