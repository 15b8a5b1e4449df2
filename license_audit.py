#!/usr/bin/env python3
"""
License Audit - E5 License Usage Report
Joins Entra ID users, Exchange Online mailboxes and (optionally) on-prem
Active Directory last logons into a single CSV of E5-licensed identities.

Requirements:
- Azure AD App Registration with following API permissions (Application type):
  - User.Read.All, AuditLog.Read.All (users and sign-in activity)
  - Organization.Read.All (subscribed SKUs)
  - Application.Read.All (service principals)
  - Exchange.ManageAsApp (Office 365 Exchange Online, mailbox types)

Usage:
    # Set environment variables (client secret MUST be env var for security)
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"

    # Run report
    python license_audit.py

    # Add on-prem AD last logons exported with Get-ADUser
    python license_audit.py --ad-csv ./ad_lastlogon.csv

    # Skip the employee type allow-list check
    python license_audit.py --no-validate-employee-type
"""

import argparse
import asyncio
import csv
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

# Check for required packages
try:
    import requests
    from azure.identity import ClientSecretCredential
    from kiota_abstractions.base_request_configuration import RequestConfiguration
    from msgraph.generated.service_principals.service_principals_request_builder import (
        ServicePrincipalsRequestBuilder,
    )
    from msgraph.generated.users.users_request_builder import UsersRequestBuilder
    from msgraph.graph_service_client import GraphServiceClient
except ImportError:
    print("ERROR: Required packages not found.")
    print("")
    print("Please install the required packages manually:")
    print("    pip install msgraph-sdk azure-identity requests")
    print("")
    print("Or if using a virtual environment:")
    print("    python -m pip install msgraph-sdk azure-identity requests")
    sys.exit(1)

from licaudit.config import generate_sample_config, load_config, options_from_config
from licaudit.constants import (
    EXCHANGE_ADMIN_API,
    EXCHANGE_PAGE_SIZE,
    EXCHANGE_SCOPE,
    FILE_TIMESTAMP_FORMAT,
    GRAPH_PAGE_SIZE,
    GRAPH_SCOPE,
    HTTP_TIMEOUT_SECONDS,
    REPORT_COLUMNS,
    REPORT_FILE_PREFIX,
    SERVICE_PRINCIPAL_SELECT_FIELDS,
    SIGNIN_SENTINELS,
    SUMMARY_FILE_PREFIX,
    USER_SELECT_FIELDS,
)
from licaudit.models import (
    Identity,
    IdentityKind,
    LicenseCatalogEntry,
    MailboxRecord,
    ReportResult,
)
from licaudit.report import build_report, render_row, sort_rows
from licaudit.signins import is_ambiguous_day_month, parse_directory_timestamp, parse_timestamp
from licaudit.skus import ConfigurationError
from licaudit.utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    generate_run_id,
    get_timestamp,
    mask_tenant_id,
    print_summary_table,
    setup_logging,
    write_csv,
    write_json,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Graph Client
# =============================================================================

def get_credential(tenant_id: str, client_id: str, client_secret: str) -> ClientSecretCredential:
    """Create the app credential shared by Graph and Exchange Online."""
    return ClientSecretCredential(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret
    )


def get_graph_client(credential: ClientSecretCredential) -> GraphServiceClient:
    """Create Microsoft Graph API client."""
    return GraphServiceClient(credentials=credential, scopes=[GRAPH_SCOPE])


async def collect_all_pages(initial_response, get_next_page_func: Callable) -> List[Any]:
    """Helper to collect all pages from a paginated Graph API response.

    Follows odata_next_link until the last page. A failing page aborts the
    whole fetch; a partial population would skew every counter.

    Args:
        initial_response: The first response from a Graph API call
        get_next_page_func: Async function to get next page given a next_link

    Returns:
        List of all items from all pages
    """
    all_items = []
    response = initial_response

    while response:
        if getattr(response, 'value', None):
            all_items.extend(response.value)

        next_link = getattr(response, 'odata_next_link', None)
        if not next_link:
            break
        response = await get_next_page_func(next_link)

    return all_items


def _additional(obj: Any, key: str) -> Any:
    data = getattr(obj, 'additional_data', None)
    if isinstance(data, dict):
        return data.get(key)
    return None


# =============================================================================
# License Catalog
# =============================================================================

async def fetch_license_catalog(graph_client: GraphServiceClient) -> List[LicenseCatalogEntry]:
    """Collect the tenant's subscribed SKUs."""
    try:
        logger.info("Collecting subscribed SKUs...")
        response = await graph_client.subscribed_skus.get()
        skus = await collect_all_pages(
            response, lambda link: graph_client.subscribed_skus.with_url(link).get()
        )
    except Exception as e:
        check_and_raise_auth_error(e, "collect subscribed SKUs", "graph")
        logger.error(f"Failed to collect subscribed SKUs: {e}")
        raise

    catalog = [
        LicenseCatalogEntry(product_name=sku.sku_part_number or "", sku_id=str(sku.sku_id))
        for sku in skus
        if sku.sku_id
    ]
    logger.info(f"Collected {len(catalog)} subscribed SKUs")
    return catalog


# =============================================================================
# Users and Service Principals
# =============================================================================

def user_to_identity(user: Any) -> Identity:
    """Convert a Graph user object to an Identity."""
    sign_in = None
    activity = getattr(user, 'sign_in_activity', None)
    if activity is not None:
        sign_in = activity.last_sign_in_date_time

    license_ids = frozenset(
        str(lic.sku_id) for lic in (user.assigned_licenses or []) if lic.sku_id
    )

    return Identity(
        kind=IdentityKind.USER,
        object_id=user.id,
        display_name=user.display_name or "",
        user_principal_name=user.user_principal_name or "",
        email=user.mail or None,
        country=user.country or None,
        created_at=parse_timestamp(user.created_date_time),
        employee_type=user.employee_type or None,
        user_type=user.user_type or None,
        account_enabled=bool(user.account_enabled),
        assigned_license_ids=license_ids,
        cloud_last_sign_in=sign_in,
    )


def service_principal_to_identity(sp: Any) -> Identity:
    """Convert a Graph servicePrincipal object to an Identity."""
    created = getattr(sp, 'created_date_time', None) or _additional(sp, 'createdDateTime')
    return Identity(
        kind=IdentityKind.SERVICE_PRINCIPAL,
        object_id=sp.id,
        display_name=sp.display_name or "",
        user_principal_name=sp.app_id or sp.id or "",
        created_at=parse_timestamp(created),
        account_enabled=bool(sp.account_enabled) if sp.account_enabled is not None else True,
    )


async def fetch_users(graph_client: GraphServiceClient) -> List[Identity]:
    """Collect all Entra ID users with licenses and sign-in activity."""
    try:
        logger.info("Collecting Entra ID users...")
        query_params = UsersRequestBuilder.UsersRequestBuilderGetQueryParameters(
            select=USER_SELECT_FIELDS,
            top=GRAPH_PAGE_SIZE,
        )
        request_config = RequestConfiguration(query_parameters=query_params)
        response = await graph_client.users.get(request_configuration=request_config)
        users = await collect_all_pages(
            response, lambda link: graph_client.users.with_url(link).get()
        )
    except Exception as e:
        check_and_raise_auth_error(e, "collect users", "graph")
        logger.error(f"Failed to collect users: {e}")
        raise

    identities = [user_to_identity(user) for user in users]
    logger.info(f"Collected {len(identities):,} users")
    return identities


async def fetch_service_principals(graph_client: GraphServiceClient) -> List[Identity]:
    """Collect all service principals."""
    try:
        logger.info("Collecting service principals...")
        query_params = ServicePrincipalsRequestBuilder.ServicePrincipalsRequestBuilderGetQueryParameters(
            select=SERVICE_PRINCIPAL_SELECT_FIELDS,
            top=GRAPH_PAGE_SIZE,
        )
        request_config = RequestConfiguration(query_parameters=query_params)
        response = await graph_client.service_principals.get(request_configuration=request_config)
        principals = await collect_all_pages(
            response, lambda link: graph_client.service_principals.with_url(link).get()
        )
    except Exception as e:
        check_and_raise_auth_error(e, "collect service principals", "graph")
        logger.error(f"Failed to collect service principals: {e}")
        raise

    identities = [service_principal_to_identity(sp) for sp in principals]
    logger.info(f"Collected {len(identities):,} service principals")
    return identities


# =============================================================================
# Exchange Online
# =============================================================================

def mailbox_from_dict(item: Dict[str, Any]) -> MailboxRecord:
    """Build a MailboxRecord from an Exchange row (API JSON or CSV)."""
    lowered = {str(k).lower(): v for k, v in item.items()}
    return MailboxRecord(
        display_name=lowered.get('displayname') or None,
        user_principal_name=lowered.get('userprincipalname') or None,
        primary_email=lowered.get('primarysmtpaddress') or None,
        recipient_kind=lowered.get('recipienttypedetails') or None,
    )


def fetch_mailboxes_api(
    credential: ClientSecretCredential,
    tenant_id: str,
    session: Optional[requests.Session] = None,
) -> List[MailboxRecord]:
    """
    Collect all mailboxes through the Exchange Online admin REST endpoint.

    Runs Get-Mailbox -ResultSize Unlimited and follows @odata.nextLink.
    A session created here is closed before returning.
    """
    if session is None:
        with requests.Session() as owned_session:
            return fetch_mailboxes_api(credential, tenant_id, owned_session)

    url: Optional[str] = f"{EXCHANGE_ADMIN_API}/{tenant_id}/InvokeCommand"
    body = {
        "CmdletInput": {
            "CmdletName": "Get-Mailbox",
            "Parameters": {"ResultSize": "Unlimited"},
        }
    }
    records: List[MailboxRecord] = []

    try:
        logger.info("Collecting Exchange Online mailboxes...")
        token = credential.get_token(EXCHANGE_SCOPE).token
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Prefer": f"odata.maxpagesize={EXCHANGE_PAGE_SIZE}",
        }
        while url:
            response = session.post(url, json=body, headers=headers, timeout=HTTP_TIMEOUT_SECONDS)
            response.raise_for_status()
            payload = response.json()
            records.extend(mailbox_from_dict(item) for item in payload.get("value", []))
            url = payload.get("@odata.nextLink")
    except Exception as e:
        check_and_raise_auth_error(e, "collect Exchange mailboxes", "exchange")
        logger.error(f"Failed to collect Exchange mailboxes: {e}")
        raise

    logger.info(f"Collected {len(records):,} mailboxes")
    return records


def load_mailboxes_csv(path: str) -> List[MailboxRecord]:
    """Load a Get-EXOMailbox | Export-Csv file."""
    logger.info(f"Loading mailboxes from {path}")
    with open(path, newline='', encoding='utf-8-sig') as f:
        records = [mailbox_from_dict(row) for row in csv.DictReader(f)]
    logger.info(f"Loaded {len(records):,} mailboxes")
    return records


# =============================================================================
# On-prem Active Directory
# =============================================================================

def load_onprem_logons_csv(path: str, day_first: bool = False) -> List[Tuple[str, Optional[datetime]]]:
    """
    Load a Get-ADUser -Properties lastLogonTimestamp | Export-Csv file.

    Uses LastLogonDate when present, otherwise the raw lastLogonTimestamp
    FILETIME. Rows without a usable value are kept with None.

    Args:
        path: Export file
        day_first: Slash dates in the export are dd/mm/yyyy
    """
    logger.info(f"Loading on-prem last logons from {path}")
    logons: List[Tuple[str, Optional[datetime]]] = []
    unparsed = 0
    ambiguous = 0

    with open(path, newline='', encoding='utf-8-sig') as f:
        for row in csv.DictReader(f):
            lowered = {str(k).lower(): (v or '').strip() for k, v in row.items() if k}
            upn = lowered.get('userprincipalname', '')
            if not upn:
                continue
            raw = lowered.get('lastlogondate') or lowered.get('lastlogontimestamp') or ''
            last_logon = parse_directory_timestamp(raw, day_first=day_first)
            if raw and last_logon is None and not raw.isdigit() and raw not in SIGNIN_SENTINELS:
                unparsed += 1
                logger.debug(f"Unparsable last logon {raw!r} for {upn}")
            elif last_logon is not None and is_ambiguous_day_month(raw):
                ambiguous += 1
            logons.append((upn, last_logon))

    if unparsed:
        logger.warning(f"{unparsed} on-prem last logon values could not be parsed and were treated as never")
    if ambiguous:
        order = "dd/mm/yyyy" if day_first else "mm/dd/yyyy"
        logger.warning(f"{ambiguous} on-prem last logon dates read either way round; "
                       f"interpreted as {order} (set onprem.day_first to match the export locale)")
    logger.info(f"Loaded {len(logons):,} on-prem accounts")
    return logons


# =============================================================================
# Collection
# =============================================================================

async def collect_graph_data(
    graph_client: GraphServiceClient,
    include_service_principals: bool,
    tracker: ProgressTracker,
) -> Tuple[List[LicenseCatalogEntry], List[Identity], List[Identity]]:
    """Fetch catalog, users and service principals, one after the other."""
    tracker.update_task("Collecting subscribed SKUs...")
    catalog = await fetch_license_catalog(graph_client)
    tracker.add_items(len(catalog))
    tracker.complete_step()

    tracker.update_task("Collecting users...")
    users = await fetch_users(graph_client)
    tracker.add_items(len(users))
    tracker.complete_step()

    principals: List[Identity] = []
    if include_service_principals:
        tracker.update_task("Collecting service principals...")
        principals = await fetch_service_principals(graph_client)
        tracker.add_items(len(principals))
        tracker.complete_step()

    return catalog, users, principals


def collect_sources(
    config: Dict[str, Any],
    graph_client: GraphServiceClient,
    credential: Optional[ClientSecretCredential],
) -> Dict[str, Any]:
    """Fetch every collaborator result set the report needs."""
    exchange = config.get('exchange', {})
    exchange_source = exchange.get('source', 'api')
    ad_csv = config.get('onprem', {}).get('csv')
    include_sps = config.get('include_service_principals', True)

    num_steps = 2 + (1 if include_sps else 0) + (1 if exchange_source != 'none' else 0) + (1 if ad_csv else 0)

    with ProgressTracker("Collection", total_steps=num_steps) as tracker:
        catalog, users, principals = asyncio.run(
            collect_graph_data(graph_client, include_sps, tracker)
        )

        mailboxes: List[MailboxRecord] = []
        if exchange_source == 'api':
            tracker.update_task("Collecting Exchange mailboxes...")
            mailboxes = fetch_mailboxes_api(credential, config['tenant_id'])
            tracker.add_items(len(mailboxes))
            tracker.complete_step()
        elif exchange_source == 'csv':
            tracker.update_task("Loading mailbox export...")
            mailboxes = load_mailboxes_csv(exchange['csv'])
            tracker.add_items(len(mailboxes))
            tracker.complete_step()
        else:
            logger.info("Exchange source disabled; every identity will show no mailbox")

        on_prem = None
        if ad_csv:
            tracker.update_task("Loading on-prem last logons...")
            on_prem = load_onprem_logons_csv(ad_csv, day_first=config['onprem'].get('day_first', False))
            tracker.add_items(len(on_prem))
            tracker.complete_step()

    return {
        'catalog': catalog,
        'users': users,
        'service_principals': principals,
        'mailboxes': mailboxes,
        'on_prem_logons': on_prem,
    }


# =============================================================================
# Output
# =============================================================================

def write_report_outputs(
    result: ReportResult,
    output_dir: str,
    run_time: datetime,
    tenant_id: str = "",
    write_xlsx: bool = False,
) -> Dict[str, str]:
    """Write the CSV, JSON summary and optional workbook; return their paths."""
    os.makedirs(output_dir, exist_ok=True)
    file_ts = run_time.strftime(FILE_TIMESTAMP_FORMAT)

    rendered = [render_row(row) for row in sort_rows(result.rows)]
    csv_path = os.path.join(output_dir, f"{REPORT_FILE_PREFIX}_{file_ts}.csv")
    write_csv(rendered, csv_path, fieldnames=REPORT_COLUMNS)

    summary = {
        'run_id': generate_run_id(),
        'generated_at': get_timestamp(),
        'tenant_id': tenant_id,
        'target_skus': result.target_sku_ids,
        'total_rows': len(result.rows),
        **result.summary.to_dict(),
    }
    summary_path = os.path.join(output_dir, f"{SUMMARY_FILE_PREFIX}_{file_ts}.json")
    write_json(summary, summary_path)

    outputs = {'csv': csv_path, 'summary': summary_path}

    if write_xlsx:
        from licaudit.workbook import generate_workbook
        xlsx_path = os.path.join(output_dir, f"{REPORT_FILE_PREFIX}_{file_ts}.xlsx")
        generate_workbook(rendered, summary, xlsx_path)
        outputs['xlsx'] = xlsx_path

    return outputs


def print_report_summary(result: ReportResult, inactive_days: int) -> None:
    """Print counters and the flagged-identity list to console."""
    s = result.summary
    print_summary_table([
        ("Users", f"{s.total_users:,}"),
        ("Service principals", f"{s.total_service_principals:,}"),
        ("E5 licensed", f"{s.total_target_licensed:,}"),
        ("E5 licensed, account disabled", f"{s.licensed_disabled:,}"),
        ("E5 licensed, shared mailbox", f"{s.licensed_shared_mailbox:,}"),
        (f"E5 licensed, no cloud sign-in for {inactive_days}+ days", f"{s.licensed_inactive:,}"),
    ], title="E5 LICENSE SUMMARY")

    if s.flagged_identities:
        print(f"Identities with unexpected employee type ({len(s.flagged_identities)}):")
        for upn in s.flagged_identities:
            print(f"  - {upn}")
        print()


def run_report(
    config: Dict[str, Any],
    graph_client: GraphServiceClient,
    credential: Optional[ClientSecretCredential] = None,
    now: Optional[datetime] = None,
) -> Tuple[ReportResult, Dict[str, str]]:
    """Collect, reconcile and export. Nothing is written if the core fails."""
    now = now or datetime.now(timezone.utc)
    options = options_from_config(config)

    sources = collect_sources(config, graph_client, credential)

    with ProgressTracker("Reconciliation",
                         total_steps=len(sources['users']) + len(sources['service_principals'])) as tracker:
        tracker.update_task("Building report rows...")
        result = build_report(
            sources['catalog'],
            sources['users'],
            sources['service_principals'],
            sources['mailboxes'],
            on_prem_logons=sources['on_prem_logons'],
            options=options,
            now=now,
            tracker=tracker,
        )

    outputs = write_report_outputs(
        result,
        config.get('output', './license_audit_output'),
        run_time=now.astimezone(),
        tenant_id=config.get('tenant_id', ''),
        write_xlsx=bool(config.get('xlsx', False)),
    )
    print_report_summary(result, options.inactive_days)
    return result, outputs


# =============================================================================
# Main Entry Point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='License Audit - E5 License Usage Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Using environment variables (client secret MUST be env var)
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"
    python license_audit.py

    # Use an exported mailbox list instead of the Exchange API
    python license_audit.py --exchange-source csv --mailbox-csv ./mailboxes.csv

    # Include on-prem AD last logons
    python license_audit.py --ad-csv ./ad_lastlogon.csv

Security Note:
    Client secrets must be provided via MS365_CLIENT_SECRET environment
    variable to avoid exposing secrets in shell history or process listings.
        """
    )

    parser.add_argument('--config', '-c', help='YAML config file')
    parser.add_argument('--generate-config', action='store_true',
                        help='Print a sample config file and exit')
    parser.add_argument('--tenant-id', help='Azure AD tenant ID (or set MS365_TENANT_ID env var)')
    parser.add_argument('--client-id', help='Application (client) ID (or set MS365_CLIENT_ID env var)')
    # Client secret is env-var only for security (no CLI arg to avoid shell history exposure)
    parser.add_argument('--output', '-o', help='Output directory (default: ./license_audit_output)')
    parser.add_argument('--target-skus', help='Comma-separated license product names (default: ENTERPRISEPREMIUM,SPE_E5)')
    parser.add_argument('--inactive-days', type=int, help='Inactivity threshold in days (default: 90)')
    parser.add_argument('--no-validate-employee-type', action='store_true',
                        help='Do not flag users whose employeeType is outside the allow-list')
    parser.add_argument('--allowed-employee-types',
                        help='Comma-separated employeeType allow-list (default: Employee,FTE,Permanent)')
    parser.add_argument('--skip-service-principals', action='store_true',
                        help='Leave service principals out of the report')
    parser.add_argument('--exchange-source', choices=['api', 'csv', 'none'],
                        help='Where mailbox types come from (default: api)')
    parser.add_argument('--mailbox-csv', help='Get-EXOMailbox export used with --exchange-source csv')
    parser.add_argument('--ad-csv', help='Get-ADUser export with lastLogonTimestamp / LastLogonDate')
    parser.add_argument('--ad-day-first', action='store_true',
                        help='Dates in the AD export are dd/mm/yyyy (default: mm/dd/yyyy)')
    parser.add_argument('--xlsx', action='store_true', help='Also write an Excel workbook')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return 0

    try:
        config = load_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    output_dir = config.get('output', './license_audit_output')
    config['output'] = output_dir
    level = 'DEBUG' if args.verbose else config.get('log_level', 'INFO')
    setup_logging(level, output_dir)

    # Get client secret from environment only (security: not from CLI args)
    client_secret = os.environ.get('MS365_CLIENT_SECRET')
    tenant_id = config.get('tenant_id')
    client_id = config.get('client_id')

    if not tenant_id or not client_id or not client_secret:
        print("ERROR: Missing credentials. Please provide:")
        print("  --tenant-id or MS365_TENANT_ID environment variable")
        print("  --client-id or MS365_CLIENT_ID environment variable")
        print("  MS365_CLIENT_SECRET environment variable (required for security)")
        print("\nRun with --help for more information.")
        return 1

    print(f"Tenant: {mask_tenant_id(tenant_id)}")
    print(f"Output: {output_dir}\n")

    try:
        logger.info("Initializing Microsoft Graph client...")
        credential = get_credential(tenant_id, client_id, client_secret)
        graph_client = get_graph_client(credential)
    except Exception as e:
        print(f"ERROR: Failed to initialize Graph client: {e}")
        return 1

    try:
        _, outputs = run_report(config, graph_client, credential)
    except ConfigurationError as e:
        print(f"\nERROR: {e}")
        if e.catalog_names:
            print(f"  Tenant SKUs: {', '.join(e.catalog_names)}")
        print("  No report was written. Check --target-skus.")
        return 2
    except AuthError as e:
        print(f"\nERROR: {e}")
        print("  Check the app registration's API permissions and admin consent.")
        return 1
    except Exception as e:
        logger.error(f"Report failed: {e}")
        print(f"\nERROR: Report failed: {e}")
        return 1

    print(f"Output files in: {output_dir}")
    for path in outputs.values():
        print(f"  {path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
