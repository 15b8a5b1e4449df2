#!/usr/bin/env python3
"""
License Workbook Generator

Builds a formatted Excel workbook from a license audit CSV export and its
JSON summary, e.g. to re-render an older run without querying the tenant.
"""

import argparse
import csv
import glob
import json
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..'))

from licaudit.constants import REPORT_FILE_PREFIX, SUMMARY_FILE_PREFIX
from licaudit.workbook import generate_workbook


def load_report_csv(filepath: str) -> List[Dict[str, str]]:
    """Load rendered report rows from a CSV export."""
    with open(filepath, newline='', encoding='utf-8-sig') as f:
        return list(csv.DictReader(f))


def load_summary(filepath: Optional[str]) -> Dict[str, Any]:
    """Load a JSON summary, or an empty one when there is none."""
    if not filepath:
        return {}
    with open(filepath) as f:
        return json.load(f)


def summary_path_for(csv_path: str) -> Optional[str]:
    """Find the summary JSON written alongside a report CSV."""
    directory, name = os.path.split(csv_path)
    if not name.startswith(REPORT_FILE_PREFIX):
        return None
    candidate = os.path.join(
        directory,
        SUMMARY_FILE_PREFIX + name[len(REPORT_FILE_PREFIX):].rsplit('.', 1)[0] + '.json'
    )
    return candidate if os.path.exists(candidate) else None


def find_latest_report(directory: str) -> Tuple[Optional[str], Optional[str]]:
    """Return the newest report CSV in a directory and its summary."""
    files = sorted(glob.glob(os.path.join(directory, f"{REPORT_FILE_PREFIX}_*.csv")))
    if not files:
        return None, None
    latest = files[-1]
    return latest, summary_path_for(latest)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Generate an Excel workbook from a license audit CSV',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Newest report in the default output directory
  python generate_license_workbook.py

  # Specific report
  python generate_license_workbook.py --csv E5_License_Report_20260101_120000.csv
'''
    )
    parser.add_argument('--directory', '-d', default='./license_audit_output',
                        help='Directory to search for report files')
    parser.add_argument('--csv', help='Report CSV file')
    parser.add_argument('--summary', help='Summary JSON file (default: found next to the CSV)')
    parser.add_argument('--output', '-o', help='Output Excel filename (default: CSV name with .xlsx)')

    args = parser.parse_args()

    if args.csv:
        csv_path, summary_path = args.csv, args.summary or summary_path_for(args.csv)
    else:
        csv_path, summary_path = find_latest_report(args.directory)
        summary_path = args.summary or summary_path

    if not csv_path:
        print("Error: No report CSV found")
        print(f"Looking in: {os.path.abspath(args.directory)}")
        print("\nRun the report first:")
        print("  python license_audit.py")
        sys.exit(1)

    print(f"Report:  {csv_path}")
    print(f"Summary: {summary_path or '(none)'}")

    rows = load_report_csv(csv_path)
    summary = load_summary(summary_path)
    output = args.output or csv_path.rsplit('.', 1)[0] + '.xlsx'
    generate_workbook(rows, summary, output)


if __name__ == '__main__':
    main()
