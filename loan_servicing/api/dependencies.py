"""
Servicing system container and request dependencies
"""

from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from ..storage import StorageInterface, create_storage
from ..audit import AuditTrail
from ..loans import LoanCycleManager
from ..clients import ClientManager
from ..ledger import LedgerManager
from ..dedup import LedgerDeduplicator
from ..reconciler import ImportReconciler, StorageLegacySource
from ..staging import StagedImportManager
from ..sync import LoanSyncWriter
from ..status import StatusEngine, StatusThresholds
from ..config import RuntimeFlags, ServicingConfig, get_config


class ServicingSystem:
    """Loan servicing core with all components initialized"""

    def __init__(
        self,
        config: Optional[ServicingConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or get_config()

        # Initialize storage
        self.storage = storage or create_storage(self.config.database_url)
        self.flags = RuntimeFlags.from_config(self.config)

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.loan_manager = LoanCycleManager(self.storage, self.audit_trail)
        self.client_manager = ClientManager(self.storage, self.audit_trail)
        self.ledger_manager = LedgerManager(self.storage, self.loan_manager, self.audit_trail)
        self.deduplicator = LedgerDeduplicator(self.ledger_manager, self.audit_trail)

        # Import paths
        self.legacy_source = StorageLegacySource(self.storage, self.config.legacy_collections_table)
        self.reconciler = ImportReconciler(
            self.loan_manager, self.ledger_manager, self.audit_trail,
            legacy_source=self.legacy_source
        )
        self.staged_imports = StagedImportManager(
            self.storage, self.loan_manager, self.ledger_manager, self.audit_trail
        )

        # Write-back and status derivation
        self.sync_writer = LoanSyncWriter(self.loan_manager, self.client_manager, self.audit_trail)
        self.status_engine = StatusEngine(
            self.loan_manager, self.ledger_manager, self.sync_writer, self.audit_trail,
            thresholds=StatusThresholds(**self.config.status_thresholds()),
            clock=clock
        )

    def close(self) -> None:
        self.storage.close()


def get_servicing_system(request: Request) -> ServicingSystem:
    """Dependency returning the system attached to the running app"""
    return request.app.state.system
