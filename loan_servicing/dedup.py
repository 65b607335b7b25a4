"""
Collection Dedup Module

Deterministic identity keys for collection rows and the sweep that removes
already-persisted duplicates from the ledger.

Two rows describe the same collection event when they agree on loan cycle,
payment day and either (reference no, amount) or, without a reference no,
(amount, running balance).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .dates import day_key
from .ledger import LedgerEntry, LedgerManager
from .money import format_amount
from .logging_config import get_logger, log_action


def build_dedup_key(
    loan_cycle_no: Any,
    payment_date: Any,
    reference_no: Any,
    collection_payment: Any,
    running_balance: Any
) -> str:
    """
    Build the identity key of a collection row.

    Args:
        loan_cycle_no: Target loan cycle number
        payment_date: Any parseable date value; missing -> empty day
        reference_no: Collection reference number, may be blank
        collection_payment: Amount in any accepted representation
        running_balance: Balance after the payment

    Returns:
        "{loan}|REF|{ref}|{day}|{amount}" or "{loan}|ALT|{day}|{amount}|{balance}"
    """
    loan = str(loan_cycle_no or "").strip()
    day = day_key(payment_date)
    amount = format_amount(collection_payment)
    reference = str(reference_no).strip() if reference_no is not None else ""

    if reference:
        return f"{loan}|REF|{reference}|{day}|{amount}"
    # Zero-amount same-day rows without reference collide here; accepted
    return f"{loan}|ALT|{day}|{amount}|{format_amount(running_balance)}"


def entry_dedup_key(entry: LedgerEntry, loan_cycle_no: Optional[str] = None) -> str:
    """Key of a persisted entry, optionally re-bound to another cycle number"""
    return build_dedup_key(
        loan_cycle_no if loan_cycle_no is not None else entry.loan_cycle_no,
        entry.payment_date,
        entry.collection_reference_no,
        entry.collection_payment,
        entry.running_balance,
    )


@dataclass
class DedupeReport:
    """Outcome of a deduplication sweep"""
    scope: str
    duplicate_groups: int = 0
    to_delete: int = 0
    deleted: int = 0
    dry_run: bool = False
    deleted_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "duplicate_groups": self.duplicate_groups,
            "to_delete": self.to_delete,
            "deleted": self.deleted,
            "dry_run": self.dry_run,
        }


class LedgerDeduplicator:
    """Removes persisted ledger duplicates, keeping the newest row per key"""

    def __init__(self, ledger_manager: LedgerManager, audit_trail: AuditTrail):
        self.ledger_manager = ledger_manager
        self.audit_trail = audit_trail
        self.logger = get_logger("loan_servicing.dedup")

    @staticmethod
    def sweep_key(entry: LedgerEntry) -> str:
        """Dedup key scoped to the owning cycle; legacy rows are owned by account and client"""
        owner = entry.loan_cycle_no or f"{entry.account_id}/{entry.client_no}"
        return entry_dedup_key(entry, owner)

    def find_duplicate_groups(self, loan_cycle_no: Optional[str] = None) -> List[List[LedgerEntry]]:
        """Groups of entries sharing a dedup key, newest first within each group"""
        groups: Dict[str, List[LedgerEntry]] = {}
        for entry in self.ledger_manager.get_entries(loan_cycle_no):
            groups.setdefault(self.sweep_key(entry), []).append(entry)

        duplicates = []
        for entries in groups.values():
            if len(entries) > 1:
                entries.sort(key=lambda e: (e.created_at, e.id), reverse=True)
                duplicates.append(entries)
        return duplicates

    def dedupe(
        self,
        loan_cycle_no: Optional[str] = None,
        dry_run: bool = False,
        performed_by: Optional[str] = None
    ) -> DedupeReport:
        """
        Delete duplicate ledger entries.

        Args:
            loan_cycle_no: Limit the sweep to one cycle; global when None
            dry_run: Only count groups and deletions
            performed_by: User running the sweep

        Returns:
            DedupeReport
        """
        scope = loan_cycle_no or "all"
        report = DedupeReport(scope=scope, dry_run=dry_run)

        groups = self.find_duplicate_groups(loan_cycle_no)
        report.duplicate_groups = len(groups)
        doomed = [entry.id for entries in groups for entry in entries[1:]]
        report.to_delete = len(doomed)

        if not dry_run:
            for entry_id in doomed:
                if self.ledger_manager.storage.delete(self.ledger_manager.table_name, entry_id):
                    report.deleted_ids.append(entry_id)
            report.deleted = len(report.deleted_ids)

            if report.deleted:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LEDGER_DEDUPLICATED,
                    entity_type="ledger",
                    entity_id=scope,
                    metadata={
                        "duplicate_groups": report.duplicate_groups,
                        "deleted_ids": report.deleted_ids
                    },
                    user_id=performed_by
                )

        log_action(
            self.logger, "info",
            f"Ledger dedupe ({scope}): {report.duplicate_groups} groups, "
            f"{report.to_delete} duplicates, {report.deleted} deleted",
            user_id=performed_by, action="dedupe_ledger", resource=f"ledger:{scope}",
            extra={"dry_run": dry_run}
        )
        return report
