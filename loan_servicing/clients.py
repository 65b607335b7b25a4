"""
Client Profile Module

Borrower profiles referenced by loan cycles through the client number.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field, fields
from typing import Any, List, Optional

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import InvalidInputError, NotFoundError
from .money import normalize_amount
from .dates import parse_datetime
from .logging_config import get_logger, log_action


@dataclass
class SpouseInfo:
    """Spouse name block kept as one nested structure"""
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


@dataclass
class LoanClient(StorageRecord):
    """Client profile; the storage id is the client number"""
    client_no: str
    account_id: str
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    civil_status: Optional[str] = None
    contact_number: Optional[str] = None
    alternate_contact_number: Optional[str] = None
    email: Optional[str] = None
    birth_address: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    company_name: Optional[str] = None
    occupation: Optional[str] = None
    monthly_income: Optional[Decimal] = None
    number_of_children: Optional[int] = None
    work_address: Optional[str] = None
    barangay: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    spouse: SpouseInfo = field(default_factory=SpouseInfo)

    def __post_init__(self):
        if isinstance(self.spouse, dict):
            self.spouse = SpouseInfo(**{
                k: v for k, v in self.spouse.items() if k in SpouseInfo.field_names()
            })
        elif self.spouse is None:
            self.spouse = SpouseInfo()
        elif not isinstance(self.spouse, SpouseInfo):
            raise InvalidInputError(f"Invalid spouse: {self.spouse!r}")
        if self.monthly_income is not None and not isinstance(self.monthly_income, Decimal):
            self.monthly_income = normalize_amount(self.monthly_income)
        if self.date_of_birth is not None and not isinstance(self.date_of_birth, datetime):
            self.date_of_birth = parse_datetime(self.date_of_birth)
        if self.number_of_children is not None:
            try:
                self.number_of_children = int(self.number_of_children)
            except (TypeError, ValueError) as e:
                raise InvalidInputError(f"Invalid number_of_children: {self.number_of_children}") from e

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


class ClientManager:
    """Manager for client profiles"""

    IDENTITY_FIELDS = ('id', 'client_no', 'account_id', 'created_at', 'updated_at')

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "loan_clients"
        self.logger = get_logger("loan_servicing.clients")

    def create_client(
        self,
        client_no: str,
        account_id: str,
        performed_by: Optional[str] = None,
        **attributes: Any
    ) -> LoanClient:
        """Create a client profile"""
        if not client_no or not account_id:
            raise InvalidInputError("client_no and account_id are required")

        unknown = set(attributes) - set(LoanClient.field_names())
        if unknown:
            raise InvalidInputError(f"Unknown client fields: {', '.join(sorted(unknown))}")

        now = datetime.now(timezone.utc)
        client = LoanClient(
            id=client_no,
            created_at=now,
            updated_at=now,
            client_no=client_no,
            account_id=account_id,
            **attributes
        )
        self.storage.insert(self.table_name, client.id, client.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.CLIENT_CREATED,
            entity_type="client",
            entity_id=client_no,
            metadata={"account_id": account_id},
            user_id=performed_by
        )
        log_action(
            self.logger, "info", f"Client created: {client_no}",
            user_id=performed_by, action="create_client", resource=f"client:{client_no}"
        )
        return client

    def get_client(self, client_no: str) -> Optional[LoanClient]:
        if not client_no:
            return None
        data = self.storage.load(self.table_name, client_no)
        if data:
            return LoanClient.from_dict(data)
        return None

    def require_client(self, client_no: str) -> LoanClient:
        client = self.get_client(client_no)
        if client is None:
            raise NotFoundError(f"Client {client_no} not found")
        return client

    def save_client(self, client: LoanClient) -> None:
        self.storage.save(self.table_name, client.id, client.to_dict())
