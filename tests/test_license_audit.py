"""
Tests for the license audit collectors and CLI using unittest.mock.

Covers:
- Graph paging helper
- Subscribed SKU, user and service principal collection
- Exchange Online mailbox collection (admin REST API and CSV export)
- On-prem AD last logon CSV loading
- End-to-end report run with mocked collaborators
- CLI exit codes
"""
import asyncio
import csv
import json
import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest
import requests
from azure.core.exceptions import ClientAuthenticationError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from license_audit import (
    collect_all_pages,
    fetch_license_catalog,
    fetch_mailboxes_api,
    fetch_service_principals,
    fetch_users,
    load_mailboxes_csv,
    load_onprem_logons_csv,
    mailbox_from_dict,
    main,
    run_report,
    service_principal_to_identity,
    user_to_identity,
)
from licaudit.config import ENV_VAR_MAPPING
from licaudit.constants import (
    EXCHANGE_ADMIN_API,
    REPORT_COLUMNS,
    SERVICE_PRINCIPAL_SELECT_FIELDS,
    USER_SELECT_FIELDS,
)
from licaudit.models import IdentityKind, LicenseCatalogEntry, MailboxRecord
from licaudit.skus import ConfigurationError
from licaudit.utils import AuthError

OFFICE_E5_ID = "c7df2760-2c81-4ef7-b578-5b5392b571df"
M365_E5_ID = "06ebc4ee-1bb5-47dd-8120-11324bc54e06"
EMS_ID = "efccb6f7-5641-4e0e-bd10-b4976e1bf68e"

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def tenant_id():
    """Test tenant ID."""
    return "12345678-1234-1234-1234-123456789012"


@pytest.fixture
def mock_graph_client():
    """Create a mock Microsoft Graph client."""
    return Mock()


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove config env vars and isolate default config lookups."""
    for env_var in ENV_VAR_MAPPING.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv("MS365_CLIENT_SECRET", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    return monkeypatch


# =============================================================================
# Helper Functions
# =============================================================================

def create_page(items, next_link=None):
    """Create a mock Graph collection response page."""
    page = Mock()
    page.value = items
    page.odata_next_link = next_link
    return page


def create_mock_sku(part_number: str, sku_id: str):
    """Create a mock subscribedSku object."""
    sku = Mock()
    sku.sku_part_number = part_number
    sku.sku_id = uuid.UUID(sku_id)
    return sku


def create_mock_user(
    user_id: str,
    upn: str,
    display_name: str = None,
    mail: str = None,
    licenses=(),
    enabled: bool = True,
    employee_type: str = "Employee",
    country: str = "US",
    last_sign_in: datetime = None,
):
    """Create a mock Graph user object."""
    user = Mock()
    user.id = user_id
    user.user_principal_name = upn
    user.display_name = display_name or upn.split('@')[0]
    user.mail = mail
    user.country = country
    user.created_date_time = datetime(2020, 1, 1, tzinfo=timezone.utc)
    user.employee_type = employee_type
    user.user_type = "Member"
    user.account_enabled = enabled
    user.assigned_licenses = [Mock(sku_id=uuid.UUID(sku_id)) for sku_id in licenses]
    if last_sign_in is None:
        user.sign_in_activity = None
    else:
        user.sign_in_activity = Mock(last_sign_in_date_time=last_sign_in)
    return user


def create_mock_service_principal(sp_id: str, app_id: str, display_name: str,
                                  enabled: bool = True, created: str = None):
    """Create a mock Graph servicePrincipal object."""
    sp = Mock()
    sp.id = sp_id
    sp.app_id = app_id
    sp.display_name = display_name
    sp.account_enabled = enabled
    sp.created_date_time = None
    sp.additional_data = {'createdDateTime': created} if created else {}
    return sp


def create_mock_response(payload, status_code=200):
    """Create a mock requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(
            f"{status_code} Client Error", response=response
        )
    return response


def write_text(path, content):
    path.write_text(content, encoding='utf-8')
    return str(path)


# =============================================================================
# Paging Tests
# =============================================================================

class TestCollectAllPages:
    """Tests for collect_all_pages helper."""

    def test_single_page(self):
        next_page = AsyncMock()
        items = asyncio.run(collect_all_pages(create_page([1, 2]), next_page))

        assert items == [1, 2]
        next_page.assert_not_called()

    def test_follows_next_link(self):
        next_page = AsyncMock(side_effect=[create_page([3], "link-2"), create_page([4])])

        items = asyncio.run(collect_all_pages(create_page([1, 2], "link-1"), next_page))

        assert items == [1, 2, 3, 4]
        assert [c.args[0] for c in next_page.call_args_list] == ["link-1", "link-2"]

    def test_null_response(self):
        assert asyncio.run(collect_all_pages(None, AsyncMock())) == []

    def test_page_failure_propagates(self):
        next_page = AsyncMock(side_effect=RuntimeError("page 2 failed"))

        with pytest.raises(RuntimeError):
            asyncio.run(collect_all_pages(create_page([1], "link-1"), next_page))


# =============================================================================
# License Catalog Tests
# =============================================================================

class TestFetchLicenseCatalog:
    """Tests for subscribed SKU collection."""

    def test_catalog(self, mock_graph_client):
        mock_graph_client.subscribed_skus.get = AsyncMock(return_value=create_page([
            create_mock_sku("SPE_E5", M365_E5_ID),
            create_mock_sku("EMS", EMS_ID),
        ]))

        catalog = asyncio.run(fetch_license_catalog(mock_graph_client))

        assert catalog == [
            LicenseCatalogEntry("SPE_E5", M365_E5_ID),
            LicenseCatalogEntry("EMS", EMS_ID),
        ]

    def test_auth_error(self, mock_graph_client):
        mock_graph_client.subscribed_skus.get = AsyncMock(side_effect=ClientAuthenticationError("denied"))

        with pytest.raises(AuthError) as excinfo:
            asyncio.run(fetch_license_catalog(mock_graph_client))

        assert excinfo.value.source == "graph"


# =============================================================================
# User Tests
# =============================================================================

class TestUserCollection:
    """Tests for Entra ID user collection."""

    def test_user_to_identity(self):
        sign_in = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
        user = create_mock_user("user-001", "alice@contoso.com", "Alice", mail="alice@contoso.com",
                                licenses=(M365_E5_ID, EMS_ID), last_sign_in=sign_in)

        identity = user_to_identity(user)

        assert identity.kind is IdentityKind.USER
        assert identity.object_id == "user-001"
        assert identity.display_name == "Alice"
        assert identity.email == "alice@contoso.com"
        assert identity.assigned_license_ids == frozenset({M365_E5_ID, EMS_ID})
        assert identity.cloud_last_sign_in == sign_in
        assert identity.created_at == datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert identity.account_enabled is True

    def test_user_without_sign_in_activity(self):
        user = create_mock_user("user-001", "a@contoso.com", mail="", country="")

        identity = user_to_identity(user)

        assert identity.cloud_last_sign_in is None
        assert identity.email is None
        assert identity.country is None

    def test_fetch_users_paged(self, mock_graph_client):
        mock_graph_client.users.get = AsyncMock(return_value=create_page(
            [create_mock_user("user-001", "a@contoso.com")], "https://graph/next"
        ))
        mock_graph_client.users.with_url.return_value.get = AsyncMock(return_value=create_page(
            [create_mock_user("user-002", "b@contoso.com")]
        ))

        users = asyncio.run(fetch_users(mock_graph_client))

        assert [u.user_principal_name for u in users] == ["a@contoso.com", "b@contoso.com"]
        mock_graph_client.users.with_url.assert_called_once_with("https://graph/next")

    def test_fetch_users_requests_sign_in_activity(self, mock_graph_client):
        mock_graph_client.users.get = AsyncMock(return_value=create_page([]))

        asyncio.run(fetch_users(mock_graph_client))

        config = mock_graph_client.users.get.call_args.kwargs['request_configuration']
        assert config.query_parameters.select == USER_SELECT_FIELDS
        assert 'signInActivity' in config.query_parameters.select

    def test_fetch_users_error_propagates(self, mock_graph_client):
        mock_graph_client.users.get = AsyncMock(side_effect=RuntimeError("API Error"))

        with pytest.raises(RuntimeError):
            asyncio.run(fetch_users(mock_graph_client))

    def test_fetch_users_second_page_failure(self, mock_graph_client):
        mock_graph_client.users.get = AsyncMock(return_value=create_page(
            [create_mock_user("user-001", "a@contoso.com")], "https://graph/next"
        ))
        mock_graph_client.users.with_url.return_value.get = AsyncMock(side_effect=RuntimeError("timeout"))

        with pytest.raises(RuntimeError):
            asyncio.run(fetch_users(mock_graph_client))


# =============================================================================
# Service Principal Tests
# =============================================================================

class TestServicePrincipalCollection:
    """Tests for service principal collection."""

    def test_service_principal_to_identity(self):
        sp = create_mock_service_principal("sp-001", "app-001", "Backup App",
                                           enabled=False, created="2023-01-01T00:00:00Z")

        identity = service_principal_to_identity(sp)

        assert identity.kind is IdentityKind.SERVICE_PRINCIPAL
        assert identity.user_principal_name == "app-001"
        assert identity.account_enabled is False
        assert identity.created_at == datetime(2023, 1, 1, tzinfo=timezone.utc)

    def test_missing_app_id_uses_object_id(self):
        sp = create_mock_service_principal("sp-001", None, "Legacy")

        identity = service_principal_to_identity(sp)

        assert identity.user_principal_name == "sp-001"
        assert identity.created_at is None

    def test_fetch_service_principals(self, mock_graph_client):
        mock_graph_client.service_principals.get = AsyncMock(return_value=create_page([
            create_mock_service_principal("sp-001", "app-001", "App One"),
            create_mock_service_principal("sp-002", "app-002", "App Two"),
        ]))

        principals = asyncio.run(fetch_service_principals(mock_graph_client))

        assert len(principals) == 2
        config = mock_graph_client.service_principals.get.call_args.kwargs['request_configuration']
        assert config.query_parameters.select == SERVICE_PRINCIPAL_SELECT_FIELDS


# =============================================================================
# Exchange Tests
# =============================================================================

class TestExchangeMailboxes:
    """Tests for Exchange Online mailbox collection."""

    def test_mailbox_from_dict_case_insensitive_keys(self):
        record = mailbox_from_dict({
            "DisplayName": "Shared",
            "UserPrincipalName": "shared@contoso.com",
            "primarySmtpAddress": "shared@contoso.com",
            "RecipientTypeDetails": "SharedMailbox",
        })

        assert record == MailboxRecord("Shared", "shared@contoso.com", "shared@contoso.com", "SharedMailbox")

    def test_fetch_mailboxes_paged(self, tenant_id):
        credential = Mock()
        credential.get_token.return_value = Mock(token="exo-token")
        session = Mock()
        session.post.side_effect = [
            create_mock_response({
                "value": [{"UserPrincipalName": "a@contoso.com", "RecipientTypeDetails": "UserMailbox"}],
                "@odata.nextLink": "https://outlook.office365.com/next",
            }),
            create_mock_response({
                "value": [{"UserPrincipalName": "room@contoso.com", "RecipientTypeDetails": "RoomMailbox"}],
            }),
        ]

        records = fetch_mailboxes_api(credential, tenant_id, session=session)

        assert [r.user_principal_name for r in records] == ["a@contoso.com", "room@contoso.com"]
        first, second = session.post.call_args_list
        assert first.args[0] == f"{EXCHANGE_ADMIN_API}/{tenant_id}/InvokeCommand"
        assert first.kwargs["json"]["CmdletInput"]["CmdletName"] == "Get-Mailbox"
        assert first.kwargs["headers"]["Authorization"] == "Bearer exo-token"
        assert second.args[0] == "https://outlook.office365.com/next"

    def test_fetch_mailboxes_forbidden(self, tenant_id):
        credential = Mock()
        credential.get_token.return_value = Mock(token="exo-token")
        session = Mock()
        session.post.return_value = create_mock_response({}, status_code=403)

        with pytest.raises(AuthError) as excinfo:
            fetch_mailboxes_api(credential, tenant_id, session=session)

        assert excinfo.value.source == "exchange"

    def test_fetch_mailboxes_closes_own_session(self, tenant_id):
        credential = Mock()
        credential.get_token.return_value = Mock(token="exo-token")

        with patch('license_audit.requests.Session') as session_class:
            session = session_class.return_value.__enter__.return_value
            session.post.return_value = create_mock_response({"value": []})

            records = fetch_mailboxes_api(credential, tenant_id)

        assert records == []
        session.post.assert_called_once()
        session_class.return_value.__exit__.assert_called_once()

    def test_fetch_mailboxes_leaves_caller_session_open(self, tenant_id):
        credential = Mock()
        credential.get_token.return_value = Mock(token="exo-token")
        session = Mock()
        session.post.return_value = create_mock_response({"value": []})

        fetch_mailboxes_api(credential, tenant_id, session=session)

        session.close.assert_not_called()

    def test_fetch_mailboxes_server_error(self, tenant_id):
        credential = Mock()
        credential.get_token.return_value = Mock(token="exo-token")
        session = Mock()
        session.post.return_value = create_mock_response({}, status_code=500)

        with pytest.raises(requests.HTTPError):
            fetch_mailboxes_api(credential, tenant_id, session=session)

    def test_load_mailboxes_csv(self, tmp_path):
        path = write_text(tmp_path / "mailboxes.csv", (
            "DisplayName,UserPrincipalName,PrimarySmtpAddress,RecipientTypeDetails\n"
            "Shared,shared@contoso.com,shared@contoso.com,SharedMailbox\n"
            "Alice,alice@contoso.com,alice.smith@contoso.com,UserMailbox\n"
        ))

        records = load_mailboxes_csv(path)

        assert len(records) == 2
        assert records[0].kind.value == "SharedMailbox"
        assert records[1].primary_email == "alice.smith@contoso.com"


# =============================================================================
# On-prem Tests
# =============================================================================

class TestOnPremLogons:
    """Tests for the AD last logon export loader."""

    def test_load_export(self, tmp_path, caplog):
        path = write_text(tmp_path / "ad.csv", (
            "SamAccountName,UserPrincipalName,lastLogonTimestamp,LastLogonDate\n"
            "alice,alice@contoso.com,133485408000000000,\n"
            "bob,bob@contoso.com,,1/15/2024 9:30:00 AM\n"
            "carol,carol@contoso.com,0,\n"
            "dave,dave@contoso.com,,not a date\n"
            "svc-backup,,133485408000000000,\n"
        ))

        logons = load_onprem_logons_csv(path)

        assert logons == [
            ("alice@contoso.com", datetime(2024, 1, 1, tzinfo=timezone.utc)),
            ("bob@contoso.com", datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)),
            ("carol@contoso.com", None),
            ("dave@contoso.com", None),
        ]
        assert "1 on-prem last logon values could not be parsed" in caplog.text

    def test_ambiguous_dates_warn(self, tmp_path, caplog):
        path = write_text(tmp_path / "ad.csv", (
            "UserPrincipalName,LastLogonDate\n"
            "alice@contoso.com,05/03/2024 10:00:00\n"
            "bob@contoso.com,12/31/2023 10:00:00\n"
        ))

        logons = load_onprem_logons_csv(path)

        assert logons[0] == ("alice@contoso.com", datetime(2024, 5, 3, 10, 0, tzinfo=timezone.utc))
        assert "1 on-prem last logon dates read either way round" in caplog.text
        assert "mm/dd/yyyy" in caplog.text

    def test_day_first_export(self, tmp_path):
        path = write_text(tmp_path / "ad.csv", (
            "UserPrincipalName,LastLogonDate\n"
            "alice@contoso.com,05/03/2024 10:00:00\n"
            "bob@contoso.com,31/12/2023 10:00:00\n"
        ))

        logons = load_onprem_logons_csv(path, day_first=True)

        assert logons == [
            ("alice@contoso.com", datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)),
            ("bob@contoso.com", datetime(2023, 12, 31, 10, 0, tzinfo=timezone.utc)),
        ]


# =============================================================================
# End-to-end Tests
# =============================================================================

class TestRunReport:
    """Tests for run_report with mocked collaborators."""

    @pytest.fixture
    def populated_graph_client(self, mock_graph_client):
        mock_graph_client.subscribed_skus.get = AsyncMock(return_value=create_page([
            create_mock_sku("ENTERPRISEPREMIUM", OFFICE_E5_ID),
            create_mock_sku("SPE_E5", M365_E5_ID),
            create_mock_sku("EMS", EMS_ID),
        ]))
        mock_graph_client.users.get = AsyncMock(return_value=create_page([
            create_mock_user("u1", "alice@contoso.com", "Alice", licenses=(M365_E5_ID,),
                             last_sign_in=NOW - timedelta(days=120)),
            create_mock_user("u2", "shared@contoso.com", "Shared Inbox", licenses=(OFFICE_E5_ID,),
                             enabled=False),
            create_mock_user("u3", "carl@contoso.com", "Carl", mail="carl@x.com", licenses=(EMS_ID,),
                             employee_type="Contractor"),
            create_mock_user("u4", "dana@contoso.com", "Dana", licenses=(M365_E5_ID,)),
        ]))
        mock_graph_client.service_principals.get = AsyncMock(return_value=create_page([
            create_mock_service_principal("sp-1", "app-1", "Backup App"),
        ]))
        return mock_graph_client

    @pytest.fixture
    def report_config(self, tmp_path):
        mailbox_csv = write_text(tmp_path / "mailboxes.csv", (
            "UserPrincipalName,PrimarySmtpAddress,RecipientTypeDetails\n"
            "alice@contoso.com,alice@contoso.com,UserMailbox\n"
            "shared@contoso.com,shared@contoso.com,SharedMailbox\n"
        ))
        ad_csv = write_text(tmp_path / "ad.csv", (
            "UserPrincipalName,LastLogonDate\n"
            "DANA@contoso.com,2024-05-20 10:00:00\n"
        ))
        return {
            'tenant_id': 'tenant-1',
            'output': str(tmp_path / "out"),
            'exchange': {'source': 'csv', 'csv': mailbox_csv},
            'onprem': {'csv': ad_csv},
            'validate_employee_type': True,
        }

    def test_end_to_end(self, populated_graph_client, report_config):
        result, outputs = run_report(report_config, populated_graph_client, now=NOW)

        summary = result.summary
        assert summary.total_users == 4
        assert summary.total_service_principals == 1
        assert summary.total_target_licensed == 3
        assert summary.licensed_disabled == 1
        assert summary.licensed_shared_mailbox == 1
        assert summary.licensed_inactive == 1
        assert summary.flagged_identities == ["carl@contoso.com"]

        with open(outputs['csv'], newline='', encoding='utf-8-sig') as f:
            reader = csv.DictReader(f)
            assert reader.fieldnames == REPORT_COLUMNS
            rows = list(reader)

        assert [r["Display Name"] for r in rows] == ["Dana", "Alice", "Shared Inbox", "Carl", "Backup App"]
        dana = rows[0]
        assert dana["Activity Source"] == "On-Prem"
        assert dana["Days Since Activity"] == "12"
        assert rows[3]["Employee Type"] == "carl@x.com"
        assert rows[4]["License Status"] == "N/A"

        with open(outputs['summary']) as f:
            written = json.load(f)
        assert written['tenant_id'] == 'tenant-1'
        assert written['total_rows'] == 5
        assert written['licensed_inactive'] == 1
        assert written['target_skus'] == {"ENTERPRISEPREMIUM": OFFICE_E5_ID, "SPE_E5": M365_E5_ID}

    def test_exchange_disabled(self, populated_graph_client, report_config):
        report_config['exchange'] = {'source': 'none'}

        result, _ = run_report(report_config, populated_graph_client, now=NOW)

        assert result.summary.licensed_shared_mailbox == 0
        assert all(r.mailbox is None or r.mailbox.value == "None / No mailbox" for r in result.rows)

    def test_service_principals_skipped(self, populated_graph_client, report_config):
        report_config['include_service_principals'] = False

        result, _ = run_report(report_config, populated_graph_client, now=NOW)

        assert result.summary.total_service_principals == 0
        populated_graph_client.service_principals.get.assert_not_called()

    def test_workbook_written(self, populated_graph_client, report_config):
        report_config['xlsx'] = True

        _, outputs = run_report(report_config, populated_graph_client, now=NOW)

        assert os.path.exists(outputs['xlsx'])

    def test_unresolved_skus_write_nothing(self, populated_graph_client, report_config):
        populated_graph_client.subscribed_skus.get = AsyncMock(return_value=create_page([
            create_mock_sku("EMS", EMS_ID),
        ]))

        with pytest.raises(ConfigurationError):
            run_report(report_config, populated_graph_client, now=NOW)

        assert not os.path.exists(report_config['output'])


# =============================================================================
# CLI Tests
# =============================================================================

class TestMain:
    """Tests for main entry point exit codes."""

    @pytest.fixture
    def credentials(self, clean_env):
        clean_env.setenv("MS365_TENANT_ID", "12345678-1234-1234-1234-123456789012")
        clean_env.setenv("MS365_CLIENT_ID", "client-1")
        clean_env.setenv("MS365_CLIENT_SECRET", "secret")
        return clean_env

    def test_generate_config(self, clean_env, capsys):
        assert main(['--generate-config']) == 0
        assert "target_skus" in capsys.readouterr().out

    @patch('license_audit.setup_logging')
    def test_missing_secret(self, mock_logging, clean_env, tmp_path, capsys):
        clean_env.setenv("MS365_TENANT_ID", "tenant-1")
        clean_env.setenv("MS365_CLIENT_ID", "client-1")

        assert main(['--output', str(tmp_path)]) == 1
        assert "Missing credentials" in capsys.readouterr().out

    @patch('license_audit.setup_logging')
    def test_invalid_config(self, mock_logging, credentials, capsys):
        assert main(['--exchange-source', 'csv']) == 1
        assert "ERROR" in capsys.readouterr().out

    @patch('license_audit.run_report')
    @patch('license_audit.get_graph_client')
    @patch('license_audit.get_credential')
    @patch('license_audit.setup_logging')
    def test_success(self, mock_logging, mock_credential, mock_client, mock_run, credentials, tmp_path):
        mock_run.return_value = (Mock(), {'csv': str(tmp_path / "report.csv")})

        assert main(['--output', str(tmp_path), '--inactive-days', '30']) == 0

        config = mock_run.call_args.args[0]
        assert config['inactive_days'] == 30
        assert config['output'] == str(tmp_path)
        mock_credential.assert_called_once_with(
            "12345678-1234-1234-1234-123456789012", "client-1", "secret"
        )

    @patch('license_audit.run_report')
    @patch('license_audit.get_graph_client')
    @patch('license_audit.get_credential')
    @patch('license_audit.setup_logging')
    def test_configuration_error(self, mock_logging, mock_credential, mock_client, mock_run,
                                 credentials, tmp_path, capsys):
        mock_run.side_effect = ConfigurationError(
            "no target licenses", target_names=["SPE_E5"], catalog_names=["EMS", "AAD_PREMIUM"]
        )

        assert main(['--output', str(tmp_path)]) == 2
        assert "Tenant SKUs: AAD_PREMIUM, EMS" in capsys.readouterr().out

    @patch('license_audit.run_report')
    @patch('license_audit.get_graph_client')
    @patch('license_audit.get_credential')
    @patch('license_audit.setup_logging')
    def test_auth_error(self, mock_logging, mock_credential, mock_client, mock_run,
                        credentials, tmp_path):
        mock_run.side_effect = AuthError("denied", source="graph")

        assert main(['--output', str(tmp_path)]) == 1

    @patch('license_audit.run_report')
    @patch('license_audit.get_graph_client')
    @patch('license_audit.get_credential')
    @patch('license_audit.setup_logging')
    def test_unexpected_error(self, mock_logging, mock_credential, mock_client, mock_run,
                              credentials, tmp_path):
        mock_run.side_effect = RuntimeError("boom")

        assert main(['--output', str(tmp_path)]) == 1
