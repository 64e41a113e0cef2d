#!/usr/bin/env python3
"""
Command-line maintenance for the message log and embedding store.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from knowledge.core.db import init_db
from knowledge.core.maintenance import (
    check_embedding_links,
    cleanup_orphaned_embeddings,
    MaintenanceReport,
    MaintenanceError
)


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = []

    lines.append(f"Operation: {report.operation}")
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.issues_found > report.issues_resolved:
        lines.append(f"Status: ISSUES FOUND ({report.issues_found} issues)")
    else:
        lines.append("Status: SUCCESS")

    if report.metadata:
        lines.append("Details:")
        for key, value in report.metadata.items():
            lines.append(f"  {key}: {value}")

    for title, items in (("Errors", report.errors), ("Recommendations", report.recommendations),
                         ("Actions Taken", report.actions_taken)):
        if items:
            lines.append(f"{title}:")
            lines.extend(f"  - {item}" for item in items)

    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Message log and embedding store maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --check-links             # Verify message/embedding links
  %(prog)s --cleanup-orphans         # Remove embeddings of deleted messages
  %(prog)s --check-links --json      # Output results as JSON

Environment variables:
- MAINTENANCE_ENABLED=true (required)
- DB_PATH=./data/knowledge.db (database location)
        """
    )
    parser.add_argument("--check-links", "-l", action="store_true",
                        help="Check message/embedding link consistency")
    parser.add_argument("--cleanup-orphans", "-c", action="store_true",
                        help="Delete embeddings no message references")
    parser.add_argument("--json", "-j", action="store_true",
                        help="Output results as JSON instead of human-readable text")
    args = parser.parse_args()

    if not (args.check_links or args.cleanup_orphans):
        parser.error("Must specify at least one maintenance operation")

    init_db()

    try:
        reports = []
        if args.check_links:
            reports.append(check_embedding_links())
        if args.cleanup_orphans:
            reports.append(cleanup_orphaned_embeddings())
    except MaintenanceError as e:
        print(f"❌ {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps([report.to_dict() for report in reports], indent=2, default=str))
    else:
        print("\n\n".join(format_report(report) for report in reports))

    if any(report.errors for report in reports):
        sys.exit(2)


if __name__ == "__main__":
    main()
