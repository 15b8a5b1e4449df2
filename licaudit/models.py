"""
Data models for the license audit report.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .constants import LABEL_NO_MAILBOX


class IdentityKind(Enum):
    """Human user or non-human service principal."""
    USER = "user"
    SERVICE_PRINCIPAL = "service_principal"


class RecipientKind(Enum):
    """Canonical Exchange recipient type."""
    SHARED = "SharedMailbox"
    ROOM = "RoomMailbox"
    EQUIPMENT = "EquipmentMailbox"
    DISCOVERY = "DiscoveryMailbox"
    USER = "UserMailbox"

    @classmethod
    def from_raw(cls, value: Optional[str]) -> "RecipientKind":
        """Map a raw RecipientTypeDetails string, defaulting to UserMailbox."""
        raw = (value or "").strip()
        for kind in cls:
            if kind.value.lower() == raw.lower():
                return kind
        return cls.USER


class MailboxClassification(Enum):
    """Mailbox label for an identity: one of the recipient kinds, or no mailbox."""
    SHARED = RecipientKind.SHARED.value
    ROOM = RecipientKind.ROOM.value
    EQUIPMENT = RecipientKind.EQUIPMENT.value
    DISCOVERY = RecipientKind.DISCOVERY.value
    USER = RecipientKind.USER.value
    NONE = LABEL_NO_MAILBOX

    @classmethod
    def from_recipient_kind(cls, kind: Optional[RecipientKind]) -> "MailboxClassification":
        if kind is None:
            return cls.NONE
        return cls(kind.value)


class ActivitySource(Enum):
    """Provenance of a resolved last-activity value."""
    CLOUD = "cloud"
    ONPREM = "onprem"
    NONE = "none"


@dataclass(frozen=True)
class LicenseCatalogEntry:
    """One subscribed SKU from the tenant catalog."""
    product_name: str
    sku_id: str


@dataclass
class Identity:
    """
    Directory identity, either a user or a service principal.

    cloud_last_sign_in holds whatever the provider returned; it is only
    interpreted by the sign-in merger, which treats non-timestamps as absent.
    """
    display_name: str
    user_principal_name: str
    kind: IdentityKind = IdentityKind.USER
    object_id: Optional[str] = None
    email: Optional[str] = None
    country: Optional[str] = None
    created_at: Optional[datetime] = None
    employee_type: Optional[str] = None
    user_type: Optional[str] = None
    account_enabled: bool = True
    assigned_license_ids: FrozenSet[str] = field(default_factory=frozenset)
    cloud_last_sign_in: Any = None
    on_prem_last_logon: Optional[datetime] = None


@dataclass(frozen=True)
class MailboxRecord:
    """Raw mailbox listing entry from Exchange Online."""
    display_name: Optional[str] = None
    user_principal_name: Optional[str] = None
    primary_email: Optional[str] = None
    recipient_kind: Optional[str] = None

    @property
    def kind(self) -> RecipientKind:
        return RecipientKind.from_raw(self.recipient_kind)


@dataclass(frozen=True)
class ResolvedActivity:
    """Merged last activity with its provenance and recency in days."""
    source: ActivitySource
    last_activity: Optional[datetime] = None
    days_since: Optional[float] = None


@dataclass
class ReportRow:
    """
    One output row per identity.

    Service principal rows leave the license, mailbox and sign-in fields as
    None; rendering turns those into the not-applicable marker.
    """
    kind: IdentityKind
    display_name: str
    user_principal_name: str
    email: Optional[str] = None
    employee_type: Optional[str] = None
    user_type: Optional[str] = None
    country: Optional[str] = None
    created_at: Optional[datetime] = None
    account_enabled: bool = True
    matched_target_sku_names: Tuple[str, ...] = ()
    has_target_license: Optional[bool] = None
    all_license_names: Tuple[str, ...] = ()
    mailbox: Optional[MailboxClassification] = None
    activity: Optional[ResolvedActivity] = None
    cloud_last_sign_in: Optional[datetime] = None
    on_prem_last_logon: Optional[datetime] = None
    on_prem_available: bool = False


@dataclass
class ReportSummary:
    """Aggregate counters accumulated during the per-identity pass."""
    total_target_licensed: int = 0
    licensed_disabled: int = 0
    licensed_shared_mailbox: int = 0
    licensed_inactive: int = 0
    total_users: int = 0
    total_service_principals: int = 0
    flagged_identities: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class ReportResult:
    """Everything the core hands back to the export layer."""
    rows: List[ReportRow]
    summary: ReportSummary
    target_sku_ids: Dict[str, Optional[str]] = field(default_factory=dict)
