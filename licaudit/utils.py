"""
Utility functions for the license audit report.

Logging Level Standards:
------------------------
- ERROR: Collaborator fetch failures that abort the run
         "Failed to collect users: {e}"
- WARNING: Data-quality anomalies that are surfaced, not fatal
           "Target license SPE_E5 not found in tenant catalog"
           "3 identities have an unexpected employee type"
- INFO: Progress messages, counts
        "Collected 1,204 users"
- DEBUG: Per-identity detail
         "Unexpected employee type 'Contractor' for c@contoso.com"
"""
import csv
import hashlib
import json
import logging
import os
import re
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

logger = logging.getLogger(__name__)


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for the collection and per-identity passes.

    Falls back to simple print statements if stdout is not a TTY
    (e.g., when piping output).

    Usage:
        with ProgressTracker("Graph", total_steps=4) as tracker:
            tracker.update_task("Collecting users...")
            users = fetch_users(...)
            tracker.add_items(len(users))
            tracker.complete_step()
    """

    def __init__(
        self,
        label: str,
        total_steps: int = 0,
        show_progress: bool = True
    ):
        self.label = label
        self.total_steps = total_steps
        self.show_progress = show_progress and sys.stdout.isatty()

        # Counters
        self.completed_steps = 0
        self.total_items = 0
        self.current_task = ""

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional[TaskID] = None
        self._use_rich = self.show_progress

    def __enter__(self):
        if self._use_rich:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(self.label, total=self.total_steps or 1)
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.label} Starting")
            print(f"{'='*60}")
            if self.total_steps:
                print(f"Steps: {self.total_steps}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._use_rich:
            assert self._progress is not None
            assert self._console is not None
            self._progress.stop()
            self._console.print()
            if exc_type is None:
                self._print_summary_rich()
        elif exc_type is None:
            self._print_summary_plain()
        return False

    def update_task(self, task_description: str):
        """Update the current task being performed."""
        self.current_task = task_description
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(
                self._main_task,
                description=f"{self.label}: {task_description}"
            )
        else:
            print(f"  {task_description}")

    def add_items(self, count: int):
        """Add collected items to the running total."""
        self.total_items += count

    def complete_step(self):
        """Mark one step (a collaborator fetch or one identity) as complete."""
        self.completed_steps += 1
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=1)

    def complete_item(self):
        """Mark one identity as processed during the per-identity pass."""
        self.total_items += 1
        self.complete_step()

    def _print_summary_rich(self):
        """Print a formatted summary using rich."""
        table = Table(title=f"{self.label} Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Steps", f"{self.completed_steps:,}")
        table.add_row("Items", f"{self.total_items:,}")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        """Print a plain text summary."""
        print(f"\n{'='*60}")
        print(f"{self.label} Complete")
        print(f"{'='*60}")
        print(f"  Steps: {self.completed_steps:,}")
        print(f"  Items: {self.total_items:,}")
        print()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def mask_tenant_id(tenant_id: str) -> str:
    """Shorten a tenant ID for console display: 12345678...9012"""
    if not tenant_id or len(tenant_id) < 12:
        return tenant_id
    return f"{tenant_id[:8]}...{tenant_id[-4:]}"


# =============================================================================
# Auth Errors
# =============================================================================

class AuthError(Exception):
    """Custom exception for authentication/authorization failures.

    Raised when a collaborator returns an auth error. The run stops with a
    permissions hint instead of a stack trace.
    """
    def __init__(self, message: str, source: str, original_error: Optional[Exception] = None):
        self.source = source
        self.original_error = original_error
        super().__init__(message)


# Azure identity / HTTP status codes that indicate auth/permission issues
AUTH_STATUS_CODES = {401, 403}

# Graph error codes that indicate auth/permission issues
GRAPH_AUTH_ERROR_CODES = {
    'Authorization_RequestDenied',
    'InvalidAuthenticationToken',
    'Authentication_RequestFromNonPremiumTenantOrB2CTenant',
}


def is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception represents an authentication/authorization error.

    Detects:
    - Graph: ODataError with auth-related codes or a 401/403 status
    - azure-identity: ClientAuthenticationError
    - requests: HTTPError whose response is 401/403 (Exchange admin API)

    Args:
        exc: The exception to check

    Returns:
        True if the exception is an authentication/authorization error
    """
    exc_type_name = type(exc).__name__

    if exc_type_name == 'ClientAuthenticationError':
        return True

    if exc_type_name == 'ODataError':
        if getattr(exc, 'response_status_code', None) in AUTH_STATUS_CODES:
            return True
        error = getattr(exc, 'error', None)
        if error:
            return getattr(error, 'code', '') in GRAPH_AUTH_ERROR_CODES
        return False

    if exc_type_name == 'HTTPError':
        response = getattr(exc, 'response', None)
        return getattr(response, 'status_code', None) in AUTH_STATUS_CODES

    return False


def check_and_raise_auth_error(exc: Exception, context: str, source: str) -> None:
    """
    Check if exception is an auth error and raise AuthError if so.

    Call this in exception handlers before logging and re-raising.

    Args:
        exc: The caught exception
        context: Description of what was being attempted (e.g., "collect users")
        source: Collaborator name (graph, exchange, onprem)

    Raises:
        AuthError: If exc is an authentication/authorization error
    """
    if is_auth_error(exc):
        raise AuthError(
            f"Authentication/authorization error while trying to {context}: {exc}",
            source=source,
            original_error=exc
        ) from exc


# =============================================================================
# Log Redaction
# =============================================================================

def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Hash a sensitive ID using consistent hashing.

    Uses first 8 chars of SHA256 so the same ID always maps to the same
    token within and across runs.

    Example: 3f2c...-...-9a1b -> id-a3f8b2c1
    """
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}" if prefix else hash_val


_LOG_REDACT_PATTERNS = [
    # GUIDs (tenant IDs, skuIds, object IDs)
    (re.compile(r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE),
     lambda m: f"id-{hash_sensitive_id(m.group(1).lower())}"),
    # UPNs / e-mail addresses - keep the domain for context
    (re.compile(r'\b([A-Za-z0-9._%+\'-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b'),
     lambda m: f"upn-{hash_sensitive_id(m.group(1).lower())}@{m.group(2)}"),
]


def redact_log_message(message: str) -> str:
    """Redact GUIDs and UPNs from a log message using consistent hashing."""
    if not message:
        return message

    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)

    return message


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts identities from log messages.

    Uses consistent hashing so the same ID produces the same hash,
    allowing correlation across a log file.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"license_audit_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        # Persisted logs never carry raw UPNs or object IDs
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return logging.getLogger(__name__)


# =============================================================================
# Output Writers
# =============================================================================

def _owner_only(path: str, flags: int) -> int:
    """open() opener creating files with owner read/write only."""
    return os.open(path, flags, 0o600)


def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with secure permissions."""
    # Summaries list flagged UPNs
    with open(filepath, 'w', opener=_owner_only) as f:
        json.dump(data, f, indent=2, default=str)
    print(f"Wrote {filepath}")


def write_csv(data: List[Dict], filepath: str, fieldnames: Optional[List[str]] = None) -> None:
    """Write data to CSV file with secure permissions."""
    if not fieldnames:
        if not data:
            return
        fieldnames = list(data[0].keys())

    # utf-8-sig so Excel opens non-ASCII display names correctly
    with open(filepath, 'w', newline='', encoding='utf-8-sig', opener=_owner_only) as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)
    print(f"Wrote {filepath}")


def print_summary_table(rows: List[List[str]], title: str = "SUMMARY") -> None:
    """Print a two-column metric table to console."""
    if not rows:
        print("Nothing to report.")
        return

    width = max(len(label) for label, _ in rows)
    print("\n" + "="*70)
    print(title)
    print("="*70)
    for label, value in rows:
        print(f"{label:<{width}}  {value:>12}")
    print("="*70 + "\n")
