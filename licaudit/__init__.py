"""
License audit shared library.
"""
from . import constants
from .constants import (
    DEFAULT_INACTIVE_DAYS,
    DEFAULT_TARGET_SKUS,
    NOT_APPLICABLE,
    REPORT_COLUMNS,
)
from .mailboxes import MailboxIndex, build_mailbox_index, normalize_key
from .models import (
    ActivitySource,
    Identity,
    IdentityKind,
    LicenseCatalogEntry,
    MailboxClassification,
    MailboxRecord,
    RecipientKind,
    ReportResult,
    ReportRow,
    ReportSummary,
    ResolvedActivity,
)
from .report import (
    ReportOptions,
    build_report,
    render_row,
    sort_rows,
)
from .signins import (
    is_ambiguous_day_month,
    merge_activity,
    parse_directory_timestamp,
    parse_timestamp,
)
from .skus import ConfigurationError, SkuResolution, resolve_skus

__all__ = [
    'constants',
    'DEFAULT_INACTIVE_DAYS',
    'DEFAULT_TARGET_SKUS',
    'NOT_APPLICABLE',
    'REPORT_COLUMNS',
    # Models
    'ActivitySource',
    'Identity',
    'IdentityKind',
    'LicenseCatalogEntry',
    'MailboxClassification',
    'MailboxRecord',
    'RecipientKind',
    'ReportResult',
    'ReportRow',
    'ReportSummary',
    'ResolvedActivity',
    # Pipeline stages
    'ConfigurationError',
    'SkuResolution',
    'resolve_skus',
    'MailboxIndex',
    'build_mailbox_index',
    'normalize_key',
    'merge_activity',
    'parse_timestamp',
    'parse_directory_timestamp',
    'is_ambiguous_day_month',
    'ReportOptions',
    'build_report',
    'render_row',
    'sort_rows',
]
