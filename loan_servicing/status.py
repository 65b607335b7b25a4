"""
Status Derivation Module

Computes the automated lifecycle status of each loan cycle from its latest
collection, maturity date and payment-mode arrears threshold, and writes the
result back together with the balance figures of the latest ledger entry.

Decision order, first match wins:
    DORMANT     no collection at all, or none within dormant_days
    LITIGATION  now > maturity + litigation days, last collection on/before maturity
    PAST DUE    now > maturity + past-due days, last collection on/before maturity
    ARREARS     days since last collection >= payment-mode threshold
    UPDATED     otherwise
CLOSED cycles are never evaluated.
"""

from dataclasses import dataclass, asdict, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .audit import AuditTrail, AuditEventType
from .config import get_config
from .exceptions import InvalidInputError
from .ledger import LedgerEntry, LedgerManager
from .loans import LoanCycle, LoanCycleManager, LoanStatus, PaymentMode, status_text
from .sync import LoanSyncWriter, normalize_keys, snake_case
from .dates import days_between, ensure_utc
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class StatusThresholds:
    """Day thresholds driving the status decision"""
    dormant_days: int = 365
    litigation_days_after_maturity: int = 180
    past_due_days_after_maturity: int = 7
    arrears_daily_days: int = 3
    arrears_weekly_days: int = 7
    arrears_semi_monthly_days: int = 15
    arrears_monthly_days: int = 30

    @classmethod
    def from_config(cls) -> 'StatusThresholds':
        return cls(**get_config().status_thresholds())

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> 'StatusThresholds':
        """
        Copy with a partial override applied.

        Keys may be camelCase (arrearsWeeklyDays) or snake_case.
        """
        if not overrides:
            return self

        known = {f.name for f in fields(self)}
        values = asdict(self)
        for key, raw in overrides.items():
            name = snake_case(key)
            if name not in known:
                raise InvalidInputError(f"Unknown threshold: {key}")
            if raw is None:
                continue
            try:
                days = int(raw)
            except (TypeError, ValueError) as e:
                raise InvalidInputError(f"Threshold {key} must be a whole number of days") from e
            if days < 0:
                raise InvalidInputError(f"Threshold {key} must not be negative")
            values[name] = days
        return StatusThresholds(**values)

    def arrears_days(self, mode: Optional[PaymentMode]) -> int:
        """Arrears threshold for a payment mode; monthly when unrecognized"""
        return {
            PaymentMode.DAILY: self.arrears_daily_days,
            PaymentMode.WEEKLY: self.arrears_weekly_days,
            PaymentMode.SEMI_MONTHLY: self.arrears_semi_monthly_days,
        }.get(mode, self.arrears_monthly_days)


@dataclass(frozen=True)
class StatusDecision:
    status: Optional[LoanStatus]
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"status": status_text(self.status), "reason": self.reason}


def _days(count: int) -> str:
    return f"{count} day" if count == 1 else f"{count} days"


def derive_status(
    payment_mode: Any,
    last_collection: Optional[datetime],
    maturity_date: Optional[datetime],
    now: datetime,
    thresholds: StatusThresholds
) -> StatusDecision:
    """
    Classify a loan cycle.

    Args:
        payment_mode: Stored payment mode (tolerant of legacy spellings)
        last_collection: Date of the latest collection, None when no ledger
        maturity_date: Maturity date, may be None
        now: Evaluation time
        thresholds: Day thresholds

    Returns:
        StatusDecision with the status and a human-readable reason
    """
    now = ensure_utc(now)

    if last_collection is None or days_between(last_collection, now) >= thresholds.dormant_days:
        return StatusDecision(
            LoanStatus.DORMANT,
            f"No collections within {_days(thresholds.dormant_days)}"
        )
    last_collection = ensure_utc(last_collection)

    if maturity_date is not None:
        maturity_date = ensure_utc(maturity_date)
        paid_up_to_maturity = last_collection <= maturity_date

        litigation_after = maturity_date + timedelta(days=thresholds.litigation_days_after_maturity)
        if now > litigation_after and paid_up_to_maturity:
            return StatusDecision(
                LoanStatus.LITIGATION,
                f"No collection {thresholds.litigation_days_after_maturity} days after maturity date"
            )

        past_due_after = maturity_date + timedelta(days=thresholds.past_due_days_after_maturity)
        if now > past_due_after and paid_up_to_maturity:
            return StatusDecision(
                LoanStatus.PAST_DUE,
                f"No collection {_days(thresholds.past_due_days_after_maturity)} after maturity date"
            )

    mode = PaymentMode.parse(payment_mode)
    limit = thresholds.arrears_days(mode)
    if days_between(last_collection, now) >= limit:
        label = (mode or PaymentMode.MONTHLY).value
        return StatusDecision(LoanStatus.ARREARS, f"No collection after {_days(limit)} ({label})")

    return StatusDecision(LoanStatus.UPDATED, "Latest collections and data updated")


def collection_date_of(entry: Optional[LedgerEntry]) -> Optional[datetime]:
    """Payment date of an entry, else its last-modified timestamp"""
    if entry is None:
        return None
    return entry.collection_date


@dataclass
class StatusPassResult:
    computed: int = 0
    changed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"computed": self.computed, "changed": self.changed, "failed": self.failed}


class StatusEngine:
    """Runs status passes over loan cycles"""

    def __init__(
        self,
        loan_manager: LoanCycleManager,
        ledger_manager: LedgerManager,
        sync_writer: LoanSyncWriter,
        audit_trail: AuditTrail,
        thresholds: Optional[StatusThresholds] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.loan_manager = loan_manager
        self.ledger_manager = ledger_manager
        self.sync_writer = sync_writer
        self.audit_trail = audit_trail
        self.thresholds = thresholds or StatusThresholds.from_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("loan_servicing.status")

    def evaluate(self, cycle: LoanCycle, thresholds: StatusThresholds,
                 now: datetime) -> Tuple[StatusDecision, Optional[LedgerEntry]]:
        latest = LedgerManager.latest_entry(self.ledger_manager.get_entries_for_cycle(cycle))
        decision = derive_status(
            cycle.payment_mode, collection_date_of(latest), cycle.maturity_date, now, thresholds
        )
        return decision, latest

    def preview(self, loan_cycle_no: str,
                thresholds: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Evaluate one cycle without writing anything"""
        cycle = self.loan_manager.require_cycle(loan_cycle_no)
        effective = self.thresholds.with_overrides(thresholds)

        if cycle.is_closed:
            return {
                "loan_cycle_no": cycle.loan_cycle_no,
                "current_status": cycle.loan_status,
                "status": LoanStatus.CLOSED.value,
                "reason": None,
                "last_collection_date": None,
            }

        decision, latest = self.evaluate(cycle, effective, self.clock())
        last = collection_date_of(latest)
        return {
            "loan_cycle_no": cycle.loan_cycle_no,
            "current_status": cycle.loan_status,
            "status": status_text(decision.status),
            "reason": decision.reason,
            "last_collection_date": last.isoformat() if last else None,
        }

    def run_pass(
        self,
        thresholds: Optional[Mapping[str, Any]] = None,
        filters: Optional[Mapping[str, Any]] = None,
        performed_by: Optional[str] = None
    ) -> StatusPassResult:
        """
        Recompute statuses and sync balance figures for every cycle in scope.

        Args:
            thresholds: Partial threshold override for this pass
            filters: Equality filters on loan cycle fields limiting the scope
            performed_by: User triggering the pass

        Returns:
            StatusPassResult with computed, changed and failed counts
        """
        effective = self.thresholds.with_overrides(thresholds)
        cycles = self.loan_manager.find_cycles(normalize_keys(filters or {}))
        now = self.clock()

        result = StatusPassResult()
        updates: Dict[str, Dict[str, Any]] = {}
        status_changes = set()

        for cycle in cycles:
            if cycle.is_closed:
                continue

            decision, latest = self.evaluate(cycle, effective, now)
            result.computed += 1

            fields: Dict[str, Any] = {}
            new_status = status_text(decision.status)
            if decision.status is not None and new_status != cycle.loan_status:
                fields['loan_status'] = new_status
                fields['automated_reason'] = decision.reason
                status_changes.add(cycle.loan_cycle_no)

            if latest is not None:
                if latest.running_balance is not None:
                    fields['loan_balance'] = latest.running_balance
                if latest.collection_payment is not None:
                    fields['loan_amortization'] = latest.collection_payment
                if latest.penalty is not None:
                    fields['penalty'] = latest.penalty

            if fields:
                updates[cycle.loan_cycle_no] = fields

        write = self.sync_writer.apply_automated_updates(updates)
        written = set(write.written_ids)
        result.changed = len(status_changes & written)
        result.failed = write.failed_count

        self.audit_trail.log_event(
            event_type=AuditEventType.STATUS_PASS_COMPLETED,
            entity_type="system",
            entity_id="status_pass",
            metadata={**result.to_dict(), "thresholds": asdict(effective)},
            user_id=performed_by
        )
        log_action(
            self.logger, "warning" if result.failed else "info",
            f"Status pass: {result.computed} computed, {result.changed} changed, "
            f"{result.failed} failed",
            user_id=performed_by, action="status_pass", resource="loan_cycles",
            extra={"filters": dict(filters or {})}
        )
        return result
