"""
Constants for the license audit report.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# License Targets
# =============================================================================

# Office 365 E5 and Microsoft 365 E5 product names as reported by subscribedSkus
SKU_OFFICE_365_E5 = "ENTERPRISEPREMIUM"
SKU_MICROSOFT_365_E5 = "SPE_E5"

DEFAULT_TARGET_SKUS = frozenset({SKU_OFFICE_365_E5, SKU_MICROSOFT_365_E5})

# =============================================================================
# Policy Defaults
# =============================================================================

DEFAULT_INACTIVE_DAYS = 90
DEFAULT_ALLOWED_EMPLOYEE_TYPES = ("Employee", "FTE", "Permanent")

# Cloud sign-in placeholders that mean "no value"
SIGNIN_SENTINELS = frozenset({"", "-", "N/A", "n/a", "NA", "none", "None", "null", "Never"})

# =============================================================================
# Time Constants
# =============================================================================

SECONDS_PER_DAY = 86400

# Windows FILETIME epoch offset (100ns intervals between 1601-01-01 and 1970-01-01)
FILETIME_EPOCH_OFFSET = 116444736000000000
FILETIME_TICKS_PER_SECOND = 10_000_000

# =============================================================================
# Display Labels (rendered at the export boundary only)
# =============================================================================

NOT_APPLICABLE = "N/A"
UNKNOWN = "Unknown"
NEVER = "Never"

LABEL_USER = "User"
LABEL_SERVICE_PRINCIPAL = "Service Principal"

LABEL_ENABLED = "Enabled"
LABEL_DISABLED = "Disabled"

LABEL_LICENSED = "E5 Licensed"
LABEL_NOT_LICENSED = "No E5"

LABEL_SOURCE_CLOUD = "Cloud"
LABEL_SOURCE_ONPREM = "On-Prem"
LABEL_SOURCE_NONE = "Never observed"

LABEL_NO_MAILBOX = "None / No mailbox"

DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M"

# =============================================================================
# Graph / Exchange
# =============================================================================

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
EXCHANGE_SCOPE = "https://outlook.office365.com/.default"
EXCHANGE_ADMIN_API = "https://outlook.office365.com/adminapi/beta"
EXCHANGE_PAGE_SIZE = 1000
HTTP_TIMEOUT_SECONDS = 60

USER_SELECT_FIELDS = [
    "id",
    "displayName",
    "userPrincipalName",
    "mail",
    "country",
    "createdDateTime",
    "employeeType",
    "userType",
    "accountEnabled",
    "assignedLicenses",
    "signInActivity",
]

SERVICE_PRINCIPAL_SELECT_FIELDS = [
    "id",
    "appId",
    "displayName",
    "accountEnabled",
    "servicePrincipalType",
]

GRAPH_PAGE_SIZE = 999

# =============================================================================
# Output
# =============================================================================

REPORT_FILE_PREFIX = "E5_License_Report"
SUMMARY_FILE_PREFIX = "E5_License_Summary"
FILE_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

REPORT_COLUMNS = [
    "Identity Type",
    "Display Name",
    "User Principal Name",
    "Email",
    "Employee Type",
    "User Type",
    "Country",
    "Created Date",
    "Account Status",
    "License Status",
    "E5 Licenses",
    "All Licenses",
    "Mailbox Type",
    "Last Activity",
    "Activity Source",
    "Days Since Activity",
    "Cloud Last Sign-In",
    "On-Prem Last Logon",
]
