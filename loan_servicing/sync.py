"""
Loan Sync Writer Module

Single write path for profile and loan cycle updates coming from edit forms
and from the automated status pass.

Edit forms submit every field, most of them empty. Blank values never replace
stored data, nested blocks (spouse) are merged field by field, and a write
that changes nothing is not issued at all. Automated writes never replace a
CLOSED status.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type
import re

from .storage import BulkWriteResult, StorageRecord, serialize_value
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidInputError
from .loans import LoanCycle, LoanCycleManager, LoanStatus, parse_status
from .clients import LoanClient, ClientManager
from .logging_config import get_logger, log_action


_ACRONYM_BOUNDARY = re.compile(r'([A-Z]+)([A-Z][a-z])')
_WORD_BOUNDARY = re.compile(r'([a-z0-9])([A-Z])')

AUTOMATED_STATUS_FIELDS = ('loan_status', 'automated_reason')


def snake_case(name: str) -> str:
    """LoanCycleNo / loanCycleNo / loan_cycle_no -> loan_cycle_no"""
    name = _ACRONYM_BOUNDARY.sub(r'\1_\2', name)
    name = _WORD_BOUNDARY.sub(r'\1_\2', name)
    return name.replace('-', '_').replace(' ', '_').lower()


def normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively snake_case the keys of a submitted payload"""
    result = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            value = normalize_keys(value)
        result[snake_case(str(key))] = value
    return result


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def merge_non_destructive(
    stored: Mapping[str, Any],
    incoming: Mapping[str, Any],
    nested_fields: Sequence[str] = ("spouse",)
) -> Dict[str, Any]:
    """
    Fields of incoming that would actually change stored.

    Args:
        stored: Persisted record as a dictionary
        incoming: Submitted values, snake_case keys
        nested_fields: Keys holding nested blocks merged per field

    Returns:
        Changed fields only; a nested block is returned whole (stored values
        overlaid with the changed sub-fields) or omitted when nothing in it
        changed
    """
    changes: Dict[str, Any] = {}
    for name, value in incoming.items():
        if name in nested_fields:
            if is_blank(value):
                continue
            if not isinstance(value, Mapping):
                raise InvalidInputError(f"{name} must be an object")
            current = stored.get(name) or {}
            nested = merge_non_destructive(current, value, ())
            if nested:
                merged = dict(current)
                merged.update(nested)
                changes[name] = merged
            continue

        if is_blank(value):
            continue
        if isinstance(value, str):
            value = value.strip()
        if serialize_value(value) == stored.get(name):
            continue
        changes[name] = value
    return changes


@dataclass
class SyncResult:
    """Outcome of a single merged write"""
    record_id: str
    changed_fields: List[str] = field(default_factory=list)
    written: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record_id,
            "changed_fields": self.changed_fields,
            "written": self.written,
        }


class LoanSyncWriter:
    """Merged writes for client profiles and loan cycles"""

    def __init__(self, loan_manager: LoanCycleManager, client_manager: ClientManager,
                 audit_trail: AuditTrail):
        self.loan_manager = loan_manager
        self.client_manager = client_manager
        self.audit_trail = audit_trail
        self.logger = get_logger("loan_servicing.sync")

    def apply_client_update(
        self,
        client_no: str,
        payload: Mapping[str, Any],
        performed_by: Optional[str] = None
    ) -> SyncResult:
        """Non-destructive client profile update"""
        client = self.client_manager.require_client(client_no)
        changes = self._prepare(
            client, payload, LoanClient, ClientManager.IDENTITY_FIELDS, ("spouse",)
        )
        result = SyncResult(record_id=client.client_no, changed_fields=sorted(changes))
        if not changes:
            return result

        updated = self._apply(client, changes, LoanClient)
        self.client_manager.save_client(updated)
        result.written = True

        self.audit_trail.log_event(
            event_type=AuditEventType.CLIENT_UPDATED,
            entity_type="client",
            entity_id=client.client_no,
            metadata={"fields": result.changed_fields},
            user_id=performed_by
        )
        log_action(
            self.logger, "info", f"Client updated: {client.client_no}",
            user_id=performed_by, action="update_client",
            resource=f"client:{client.client_no}", extra={"fields": result.changed_fields}
        )
        return result

    def apply_cycle_edit(
        self,
        loan_cycle_no: str,
        payload: Mapping[str, Any],
        performed_by: Optional[str] = None
    ) -> SyncResult:
        """
        Non-destructive manual edit of a loan cycle.

        This is the only path that may set or clear CLOSED.
        """
        cycle = self.loan_manager.require_cycle(loan_cycle_no)
        changes = self._prepare(cycle, payload, LoanCycle, LoanCycleManager.IDENTITY_FIELDS, ())
        result = SyncResult(record_id=cycle.loan_cycle_no, changed_fields=sorted(changes))
        if not changes:
            return result

        changes['date_modified'] = datetime.now(timezone.utc)
        updated = self._apply(cycle, changes, LoanCycle)
        self.loan_manager.save_cycle(updated)
        result.written = True

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_CYCLE_UPDATED,
            entity_type="loan_cycle",
            entity_id=cycle.loan_cycle_no,
            metadata={
                "fields": result.changed_fields,
                "loan_status": updated.loan_status,
                "automated": False
            },
            user_id=performed_by
        )
        log_action(
            self.logger, "info", f"Loan cycle edited: {cycle.loan_cycle_no}",
            user_id=performed_by, action="edit_loan_cycle",
            resource=f"loan_cycle:{cycle.loan_cycle_no}", extra={"fields": result.changed_fields}
        )
        return result

    def apply_automated_updates(self, updates: Mapping[str, Mapping[str, Any]]) -> BulkWriteResult:
        """
        Apply field updates from the status pass as one best-effort batch.

        Status fields are dropped for cycles whose stored status is CLOSED.

        Args:
            updates: loan_cycle_no -> fields to set

        Returns:
            BulkWriteResult of the batch
        """
        storage = self.loan_manager.storage
        table = self.loan_manager.table_name
        now = datetime.now(timezone.utc).isoformat()

        batch: Dict[str, Dict[str, Any]] = {}
        for loan_cycle_no, fields in updates.items():
            fields = dict(fields)
            stored = storage.load(table, loan_cycle_no)
            if stored is not None and parse_status(stored.get('loan_status')) is LoanStatus.CLOSED:
                for name in AUTOMATED_STATUS_FIELDS:
                    fields.pop(name, None)
            if not fields:
                continue
            fields = serialize_value(fields)
            fields['updated_at'] = now
            fields['date_modified'] = now
            batch[loan_cycle_no] = fields

        if not batch:
            return BulkWriteResult()

        result = storage.update_many(table, batch)
        if result.has_errors:
            log_action(
                self.logger, "warning",
                f"Automated loan update: {result.failed_count} of {len(batch)} writes failed",
                action="automated_loan_update", resource=f"table:{table}",
                extra={"errors": [e.message for e in result.errors]}
            )
        return result

    def _prepare(
        self,
        record: StorageRecord,
        payload: Mapping[str, Any],
        record_type: Type[StorageRecord],
        identity_fields: Sequence[str],
        nested_fields: Sequence[str]
    ) -> Dict[str, Any]:
        incoming = normalize_keys(payload)

        unknown = set(incoming) - set(record_type.field_names())
        if unknown:
            raise InvalidInputError(f"Unknown fields: {', '.join(sorted(unknown))}")

        stored = record.to_dict()
        for name in identity_fields:
            value = incoming.pop(name, None)
            if not is_blank(value) and str(value).strip() != str(stored.get(name)):
                raise InvalidInputError(f"{name} cannot be changed")

        changes = merge_non_destructive(stored, incoming, nested_fields)
        if not changes:
            return {}

        # Compare coerced values: "1,000" equals a stored 1000, unparseable input clears nothing
        candidate = self._apply(record, changes, record_type).to_dict()
        return {
            name: changes[name] for name in changes
            if candidate.get(name) is not None and candidate.get(name) != stored.get(name)
        }

    @staticmethod
    def _apply(record: StorageRecord, changes: Mapping[str, Any],
               record_type: Type[StorageRecord]) -> StorageRecord:
        data = record.to_dict()
        data.update(serialize_value(dict(changes)))
        data['updated_at'] = datetime.now(timezone.utc).isoformat()
        return record_type.from_dict(data)
