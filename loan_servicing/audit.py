"""
Audit Trail Module

Append-only record of servicing actions: imports, commits, status passes,
ledger corrections and admin deletes. Every event carries the SHA-256 of the
event before it, so rewriting or removing history breaks the chain and
verify_integrity() reports where.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum

from .storage import StorageInterface, StorageRecord, serialize_value


class AuditEventType(Enum):
    """Servicing actions that leave an audit record"""
    LOAN_CYCLE_CREATED = "loan_cycle_created"
    LOAN_CYCLE_UPDATED = "loan_cycle_updated"
    LOAN_CYCLE_DELETED = "loan_cycle_deleted"

    CLIENT_CREATED = "client_created"
    CLIENT_UPDATED = "client_updated"

    LEDGER_ENTRY_CREATED = "ledger_entry_created"
    LEDGER_ENTRY_CORRECTED = "ledger_entry_corrected"
    LEDGER_ENTRY_DELETED = "ledger_entry_deleted"
    LEDGER_DEDUPLICATED = "ledger_deduplicated"

    COLLECTIONS_STAGED = "collections_staged"
    COLLECTIONS_COMMITTED = "collections_committed"
    IMPORT_RECONCILED = "import_reconciled"

    STATUS_PASS_COMPLETED = "status_pass_completed"

    MAINTENANCE_TOGGLED = "maintenance_toggled"


# Covered by the event hash; current_hash and updated_at are not
HASHED_FIELDS = (
    'id', 'sequence', 'created_at', 'event_type', 'entity_type',
    'entity_id', 'previous_hash', 'user_id', 'metadata',
)


@dataclass
class AuditEvent(StorageRecord):
    """One link of the chain"""
    sequence: int
    event_type: AuditEventType
    entity_type: str  # loan_cycle, ledger_entry, client, system
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        # Metadata must hash identically before and after a storage round trip
        self.metadata = serialize_value(self.metadata or {})

    def calculate_hash(self) -> str:
        material = serialize_value({name: getattr(self, name) for name in HASHED_FIELDS})
        canonical = json.dumps(material, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(canonical.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained event log kept in a storage table.

    Appends are serialized with a lock so two writers never claim the same
    sequence number. A disabled trail accepts calls and records nothing.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()

    def _chain(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        return sorted(events, key=lambda e: e.sequence)

    def _tail(self) -> Optional[Dict[str, Any]]:
        records = self.storage.load_all(self.table_name)
        return max(records, key=lambda r: r['sequence']) if records else None

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Append an event to the chain.

        Args:
            event_type: What happened
            entity_type: loan_cycle, ledger_entry, client or system
            entity_id: Loan cycle number, entry id, client number ...
            metadata: Counts, before/after values and other details
            user_id: Acting user, None for automated runs

        Returns:
            The stored AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            tail = self._tail()
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=tail['sequence'] + 1 if tail else 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=tail['current_hash'] if tail else "",
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
        return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """History of one entity, oldest first"""
        matching = self.storage.find(
            self.table_name, {'entity_type': entity_type, 'entity_id': entity_id}
        )
        return sorted((AuditEvent.from_dict(data) for data in matching), key=lambda e: e.sequence)

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [event for event in self._chain() if event.event_type is event_type]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Recompute every hash and check every link.

        Returns:
            {"valid", "total_events", "hash_errors", "chain_breaks"}; each
            error names the event id and its position in the chain
        """
        chain = self._chain()
        hash_errors = []
        chain_breaks = []

        expected_previous = ""
        for position, event in enumerate(chain):
            recomputed = event.calculate_hash()
            if recomputed != event.current_hash:
                hash_errors.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': recomputed,
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != expected_previous:
                chain_breaks.append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': expected_previous,
                    'actual_previous_hash': event.previous_hash
                })
            expected_previous = event.current_hash

        return {
            'valid': not hash_errors and not chain_breaks,
            'total_events': len(chain),
            'hash_errors': hash_errors,
            'chain_breaks': chain_breaks,
        }
