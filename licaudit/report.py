"""
Record assembly and report building.

Joins the SKU resolution, the mailbox index and the merged sign-in activity
into one ReportRow per identity, accumulating the summary counters on the
way. Display labels are only produced by render_row().
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from .constants import (
    DATE_FORMAT,
    DATETIME_FORMAT,
    DEFAULT_ALLOWED_EMPLOYEE_TYPES,
    DEFAULT_INACTIVE_DAYS,
    DEFAULT_TARGET_SKUS,
    LABEL_DISABLED,
    LABEL_ENABLED,
    LABEL_LICENSED,
    LABEL_NOT_LICENSED,
    LABEL_SERVICE_PRINCIPAL,
    LABEL_SOURCE_CLOUD,
    LABEL_SOURCE_NONE,
    LABEL_SOURCE_ONPREM,
    LABEL_USER,
    NEVER,
    NOT_APPLICABLE,
    REPORT_COLUMNS,
    UNKNOWN,
)
from .mailboxes import MailboxIndex, build_mailbox_index, normalize_key
from .models import (
    ActivitySource,
    Identity,
    IdentityKind,
    LicenseCatalogEntry,
    MailboxClassification,
    MailboxRecord,
    ReportResult,
    ReportRow,
    ReportSummary,
)
from .signins import merge_activity, parse_timestamp
from .skus import SkuResolution, resolve_skus

if TYPE_CHECKING:
    from .utils import ProgressTracker

logger = logging.getLogger(__name__)


@dataclass
class ReportOptions:
    """Policy knobs for a report run."""
    target_skus: Iterable[str] = DEFAULT_TARGET_SKUS
    inactive_days: int = DEFAULT_INACTIVE_DAYS
    validate_employee_type: bool = True
    allowed_employee_types: Tuple[str, ...] = DEFAULT_ALLOWED_EMPLOYEE_TYPES
    include_service_principals: bool = True
    # Derived; filled in __post_init__
    _allowed: frozenset = field(default=frozenset(), init=False, repr=False)

    def __post_init__(self):
        self.target_skus = frozenset(self.target_skus)
        self._allowed = frozenset(t.strip() for t in self.allowed_employee_types)

    def employee_type_allowed(self, employee_type: str) -> bool:
        # Exact match; surrounding whitespace is ignored
        return employee_type.strip() in self._allowed


# =============================================================================
# Row Assembly
# =============================================================================

def assemble_user_row(
    identity: Identity,
    skus: SkuResolution,
    mailboxes: MailboxIndex,
    now: datetime,
    options: ReportOptions,
    on_prem_available: bool = False,
) -> Tuple[ReportRow, bool]:
    """
    Build the row for a human identity.

    Returns:
        (row, flagged) where flagged is True when the employee type failed
        the allow-list check
    """
    matched = skus.target_names_for(identity.assigned_license_ids)
    activity = merge_activity(identity.cloud_last_sign_in, identity.on_prem_last_logon, now)

    employee_type = identity.employee_type
    flagged = False
    if options.validate_employee_type and employee_type and employee_type.strip():
        if not options.employee_type_allowed(employee_type):
            flagged = True
            employee_type = identity.email or identity.user_principal_name
            logger.debug(f"Unexpected employee type {identity.employee_type!r} "
                         f"for {identity.user_principal_name}")

    row = ReportRow(
        kind=IdentityKind.USER,
        display_name=identity.display_name,
        user_principal_name=identity.user_principal_name,
        email=identity.email,
        employee_type=employee_type,
        user_type=identity.user_type,
        country=identity.country,
        created_at=identity.created_at,
        account_enabled=identity.account_enabled,
        matched_target_sku_names=tuple(matched),
        has_target_license=bool(matched),
        all_license_names=tuple(skus.display_names_for(identity.assigned_license_ids)),
        mailbox=mailboxes.classify(identity.user_principal_name, identity.email),
        activity=activity,
        cloud_last_sign_in=parse_timestamp(identity.cloud_last_sign_in),
        on_prem_last_logon=identity.on_prem_last_logon,
        on_prem_available=on_prem_available,
    )
    return row, flagged


def assemble_service_row(identity: Identity) -> ReportRow:
    """Build the reduced row for a service principal."""
    return ReportRow(
        kind=IdentityKind.SERVICE_PRINCIPAL,
        display_name=identity.display_name,
        user_principal_name=identity.user_principal_name,
        created_at=identity.created_at,
        account_enabled=identity.account_enabled,
    )


def _accumulate(summary: ReportSummary, row: ReportRow, inactive_days: int) -> None:
    if not row.has_target_license:
        return
    summary.total_target_licensed += 1
    if not row.account_enabled:
        summary.licensed_disabled += 1
    if row.mailbox is MailboxClassification.SHARED:
        summary.licensed_shared_mailbox += 1
    # On-prem recency is whole days; only cloud recency feeds this counter
    activity = row.activity
    if (activity is not None and activity.source is ActivitySource.CLOUD
            and activity.days_since is not None and activity.days_since > inactive_days):
        summary.licensed_inactive += 1


def index_on_prem_logons(
    logons: Iterable[Tuple[str, Optional[datetime]]],
) -> Dict[str, Optional[datetime]]:
    """Key on-prem (UPN, last logon) pairs by normalized UPN; first entry wins."""
    indexed: Dict[str, Optional[datetime]] = {}
    for upn, last_logon in logons:
        key = normalize_key(upn)
        if key and key not in indexed:
            indexed[key] = last_logon
    return indexed


# =============================================================================
# Report Builder
# =============================================================================

def build_report(
    catalog: Iterable[LicenseCatalogEntry],
    users: Iterable[Identity],
    service_principals: Iterable[Identity],
    mailboxes: Iterable[MailboxRecord],
    on_prem_logons: Optional[Iterable[Tuple[str, Optional[datetime]]]] = None,
    options: Optional[ReportOptions] = None,
    now: Optional[datetime] = None,
    tracker: Optional['ProgressTracker'] = None,
) -> ReportResult:
    """
    Join the collaborator result sets into report rows.

    Args:
        catalog: Subscribed SKU catalog
        users: Human identities
        service_principals: Non-human identities
        mailboxes: Raw mailbox listing
        on_prem_logons: (UPN, last logon) pairs, or None when the on-prem
            directory is not part of this run; when None each identity's own
            on_prem_last_logon is used as given
        options: Policy options (target SKUs, inactivity threshold, ...)
        now: Reference time for recency; defaults to the current UTC time
        tracker: Optional ProgressTracker for UI updates

    Returns:
        ReportResult with rows in input order (users first)

    Raises:
        ConfigurationError: If no target SKU resolves; no rows are built
    """
    options = options or ReportOptions()
    now = now or datetime.now(timezone.utc)

    skus = resolve_skus(catalog, options.target_skus)
    mailbox_index = build_mailbox_index(mailboxes)

    on_prem_available = on_prem_logons is not None
    on_prem_index = index_on_prem_logons(on_prem_logons) if on_prem_available else {}

    rows: List[ReportRow] = []
    summary = ReportSummary()

    for identity in users:
        # Without an on-prem listing the identity keeps whatever logon it carries
        if on_prem_available:
            identity = replace(
                identity,
                on_prem_last_logon=on_prem_index.get(normalize_key(identity.user_principal_name)),
            )

        row, flagged = assemble_user_row(
            identity, skus, mailbox_index, now, options,
            on_prem_available=on_prem_available or identity.on_prem_last_logon is not None,
        )
        rows.append(row)
        summary.total_users += 1
        _accumulate(summary, row, options.inactive_days)
        if flagged:
            summary.flagged_identities.append(identity.user_principal_name)
        if tracker:
            tracker.complete_item()

    if options.include_service_principals:
        for identity in service_principals:
            rows.append(assemble_service_row(identity))
            summary.total_service_principals += 1
            if tracker:
                tracker.complete_item()

    if summary.flagged_identities:
        logger.warning(f"{len(summary.flagged_identities)} identities have an unexpected employee type")
    logger.info(f"Built {len(rows)} report rows ({summary.total_target_licensed} with a target license)")

    return ReportResult(rows=rows, summary=summary, target_sku_ids=dict(skus.target_ids))


# =============================================================================
# Rendering
# =============================================================================

def _format_date(value: Optional[datetime], fmt: str, missing: str) -> str:
    if value is None:
        return missing
    return value.strftime(fmt)


def _source_label(source: ActivitySource) -> str:
    return {
        ActivitySource.CLOUD: LABEL_SOURCE_CLOUD,
        ActivitySource.ONPREM: LABEL_SOURCE_ONPREM,
        ActivitySource.NONE: LABEL_SOURCE_NONE,
    }[source]


def render_row(row: ReportRow) -> Dict[str, str]:
    """Render a row into the CSV column layout."""
    common = {
        "Display Name": row.display_name or "",
        "User Principal Name": row.user_principal_name or "",
        "Created Date": _format_date(row.created_at, DATE_FORMAT, UNKNOWN),
        "Account Status": LABEL_ENABLED if row.account_enabled else LABEL_DISABLED,
    }

    if row.kind is IdentityKind.SERVICE_PRINCIPAL:
        rendered = {column: NOT_APPLICABLE for column in REPORT_COLUMNS}
        rendered.update(common)
        rendered["Identity Type"] = LABEL_SERVICE_PRINCIPAL
        rendered["Email"] = ""
        return rendered

    activity = row.activity
    if activity is None or activity.source is ActivitySource.NONE:
        last_activity = NEVER
        days = NOT_APPLICABLE
        source = LABEL_SOURCE_NONE
    else:
        last_activity = _format_date(activity.last_activity, DATETIME_FORMAT, NEVER)
        days = str(activity.days_since)
        source = _source_label(activity.source)

    if row.on_prem_available:
        on_prem = _format_date(row.on_prem_last_logon, DATETIME_FORMAT, NEVER)
    else:
        on_prem = NOT_APPLICABLE

    rendered = {
        "Identity Type": LABEL_USER,
        "Email": row.email or "",
        "Employee Type": row.employee_type or "",
        "User Type": row.user_type or "",
        "Country": row.country or UNKNOWN,
        "License Status": LABEL_LICENSED if row.has_target_license else LABEL_NOT_LICENSED,
        "E5 Licenses": "; ".join(row.matched_target_sku_names),
        "All Licenses": "; ".join(row.all_license_names),
        "Mailbox Type": (row.mailbox or MailboxClassification.NONE).value,
        "Last Activity": last_activity,
        "Activity Source": source,
        "Days Since Activity": days,
        "Cloud Last Sign-In": _format_date(row.cloud_last_sign_in, DATETIME_FORMAT, NEVER),
        "On-Prem Last Logon": on_prem,
    }
    rendered.update(common)
    return {column: rendered[column] for column in REPORT_COLUMNS}


def _sort_key(row: ReportRow):
    if row.has_target_license is True:
        license_rank = 0
    elif row.has_target_license is False:
        license_rank = 1
    else:
        license_rank = 2
    mailbox = row.mailbox.value if row.mailbox else ""
    return (license_rank, 0 if row.account_enabled else 1, mailbox, (row.display_name or "").lower())


def sort_rows(rows: Iterable[ReportRow]) -> List[ReportRow]:
    """
    Order rows for export: licensed first, then enabled before disabled,
    then by mailbox type and display name.
    """
    return sorted(rows, key=_sort_key)
