"""
License Audit - Configuration Management

Supports loading configuration from:
1. Environment variables (LICAUDIT_*, MS365_*)
2. YAML config file (--config)
3. Command-line arguments (highest priority)

Config file example:
```yaml
tenant_id: ${MS365_TENANT_ID}
client_id: ${MS365_CLIENT_ID}
output: "./reports"

target_skus:
  - ENTERPRISEPREMIUM
  - SPE_E5
inactive_days: 90

validate_employee_type: true
allowed_employee_types: [Employee, FTE, Permanent]

exchange:
  source: api          # api | csv | none
onprem:
  csv: ./ad_lastlogon.csv
  day_first: false     # true for dd/mm/yyyy exports
```
"""
import logging
import os
import re
import stat
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .constants import (
    DEFAULT_ALLOWED_EMPLOYEE_TYPES,
    DEFAULT_INACTIVE_DAYS,
    DEFAULT_TARGET_SKUS,
)
from .report import ReportOptions

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './licaudit-config.yaml',
    './licaudit-config.yml',
    '~/.licaudit/config.yaml',
    '~/.licaudit/config.yml',
]

EXCHANGE_SOURCES = ('api', 'csv', 'none')

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'tenant_id': 'MS365_TENANT_ID',
    'client_id': 'MS365_CLIENT_ID',
    'output': 'LICAUDIT_OUTPUT',
    'log_level': 'LICAUDIT_LOG_LEVEL',
    'target_skus': 'LICAUDIT_TARGET_SKUS',
    'inactive_days': 'LICAUDIT_INACTIVE_DAYS',
    'include_service_principals': 'LICAUDIT_INCLUDE_SERVICE_PRINCIPALS',
    'xlsx': 'LICAUDIT_XLSX',
    'validate_employee_type': 'LICAUDIT_VALIDATE_EMPLOYEE_TYPE',
    'allowed_employee_types': 'LICAUDIT_ALLOWED_EMPLOYEE_TYPES',
    'exchange.source': 'LICAUDIT_EXCHANGE_SOURCE',
    'exchange.csv': 'LICAUDIT_MAILBOX_CSV',
    'onprem.csv': 'LICAUDIT_AD_CSV',
    'onprem.day_first': 'LICAUDIT_AD_DAY_FIRST',
}

_LIST_KEYS = ('target_skus', 'allowed_employee_types')
_BOOL_KEYS = ('include_service_principals', 'xlsx', 'validate_employee_type', 'onprem.day_first')
_INT_KEYS = ('inactive_days',)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    keys = key_path.split('.')
    value = data
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def _split_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(',') if v.strip()]


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Security check: warn if config file has loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):  # Group or world access
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        if config_key in _LIST_KEYS:
            value = _split_list(value)
        elif config_key in _BOOL_KEYS:
            value = _to_bool(value)
        elif config_key in _INT_KEYS:
            try:
                value = int(value)
            except ValueError:
                logger.warning(f"Ignoring non-integer {env_var}={value!r}")
                continue
        _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    arg_mapping = {
        'tenant_id': 'tenant_id',
        'client_id': 'client_id',
        'output': 'output',
        'log_level': 'log_level',
        'target_skus': 'target_skus',
        'inactive_days': 'inactive_days',
        'no_validate_employee_type': 'validate_employee_type',
        'allowed_employee_types': 'allowed_employee_types',
        'skip_service_principals': 'include_service_principals',
        'exchange_source': 'exchange.source',
        'mailbox_csv': 'exchange.csv',
        'ad_csv': 'onprem.csv',
        'ad_day_first': 'onprem.day_first',
        'xlsx': 'xlsx',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        # store_true flags are False when not given; leave lower layers in charge
        if value is None or value is False:
            continue
        if arg_name in ('skip_service_principals', 'no_validate_employee_type'):
            value = False
        elif config_key in _LIST_KEYS and isinstance(value, str):
            value = _split_list(value)
        _set_nested(config, config_key, value)

    return config


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    merged = merge_configs(*configs)

    source = _get_nested(merged, 'exchange.source', 'api')
    if source not in EXCHANGE_SOURCES:
        raise ValueError(f"exchange.source must be one of {EXCHANGE_SOURCES}, got {source!r}")
    if source == 'csv' and not _get_nested(merged, 'exchange.csv'):
        raise ValueError("exchange.source is 'csv' but no mailbox CSV was given")

    return merged


def options_from_config(config: Dict[str, Any]) -> ReportOptions:
    """Build the report policy options from a merged config."""
    target_skus = config.get('target_skus') or DEFAULT_TARGET_SKUS
    allowed = config.get('allowed_employee_types') or DEFAULT_ALLOWED_EMPLOYEE_TYPES

    return ReportOptions(
        target_skus=frozenset(_split_list(target_skus)),
        inactive_days=int(config.get('inactive_days', DEFAULT_INACTIVE_DAYS)),
        validate_employee_type=_to_bool(config.get('validate_employee_type', True)),
        allowed_employee_types=tuple(_split_list(allowed)),
        include_service_principals=_to_bool(config.get('include_service_principals', True)),
    )


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# License Audit Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value
#
# Required Microsoft Graph permissions (Application type):
#   - User.Read.All, AuditLog.Read.All (users, sign-in activity)
#   - Organization.Read.All (subscribed SKUs)
#   - Application.Read.All (service principals)
# Exchange Online (exchange.source: api):
#   - Exchange.ManageAsApp plus the Exchange "View-Only Recipients" role

# Azure AD tenant and app registration
tenant_id: ${MS365_TENANT_ID}
client_id: ${MS365_CLIENT_ID}
# Client secret is read from MS365_CLIENT_SECRET only; never put it here.

# Output directory for CSV / JSON / XLSX reports and the log file
output: "./license_audit_output"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# License products counted as "E5"
target_skus:
  - ENTERPRISEPREMIUM
  - SPE_E5

# Licensed users whose cloud sign-in is older than this are counted as inactive
inactive_days: 90

# Include service principals as "N/A" rows
include_service_principals: true

# Also write an Excel workbook next to the CSV
xlsx: false

# Replace unexpected employee types with the user's e-mail and list them
validate_employee_type: true
# Matched exactly (case-sensitive)
allowed_employee_types:
  - Employee
  - FTE
  - Permanent

exchange:
  # api: query Exchange Online; csv: read a Get-EXOMailbox export; none: skip
  source: api
  # csv: ./mailboxes.csv

onprem:
  # Get-ADUser -Filter * -Properties lastLogonTimestamp | Export-Csv
  # Leave unset when there is no on-prem directory
  # csv: ./ad_lastlogon.csv
  # Set when LastLogonDate is written dd/mm/yyyy (non-US locale)
  # day_first: true
'''
