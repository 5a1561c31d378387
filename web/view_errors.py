"""Error log viewer and exporter for the storefront API.

Usage:
    storefront-errors                        # Summary plus recent errors
    storefront-errors --request abc123       # Errors for one request
    storefront-errors --type store_error     # Errors of one type
    storefront-errors --export errors.jsonl  # Export everything as JSONL
"""

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .config import ERROR_DB_PATH
from .error_logging import ErrorLogger

__all__ = ["main", "print_summary", "print_error"]


def format_timestamp(iso_string: str) -> str:
    """Format ISO timestamp to readable string."""
    try:
        return datetime.fromisoformat(iso_string).strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, TypeError):
        return iso_string


def print_summary(summary: Dict[str, Any]) -> None:
    print("=" * 70)
    print("ERROR SUMMARY")
    print("=" * 70)
    print(f"\nTotal Errors: {summary.get('total_errors', 0)}")

    if summary.get("errors_by_type"):
        print("\nErrors by Type:")
        for error_type, count in summary["errors_by_type"].items():
            print(f"  {error_type}: {count}")

    if summary.get("errors_by_endpoint"):
        print("\nErrors by Endpoint:")
        for endpoint, count in summary["errors_by_endpoint"].items():
            print(f"  {count:3d}x {endpoint}")


def print_error(error: Dict[str, Any]) -> None:
    """Pretty print a single error."""
    print(f"\n{'=' * 70}")
    print(f"Error ID: {error.get('id', 'N/A')}")
    print(f"Type: {error.get('error_type', 'unknown').upper()}")
    print(f"Time: {format_timestamp(error.get('timestamp', ''))}")
    if error.get("request_id"):
        print(f"Request ID: {error['request_id']}")
    if error.get("endpoint"):
        print(f"Endpoint: {error.get('method') or ''} {error['endpoint']}".rstrip())

    print("\nMessage:")
    print(f"  {error.get('error_message', 'N/A')}")

    if error.get("recovery_suggestion"):
        print(f"\nRecovery: {error['recovery_suggestion']}")

    if error.get("stack_trace"):
        print("\nStack Trace:")
        for line in error["stack_trace"].split("\n")[-10:]:
            if line.strip():
                print(f"  {line}")

    for field in ("params", "context"):
        values = error.get(field)
        if isinstance(values, dict) and values:
            print(f"\n{field.title()}:")
            for key, value in values.items():
                text = json.dumps(value) if isinstance(value, (dict, list)) else str(value)
                print(f"  {key}: {text[:100]}")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="View and export storefront API error logs")
    parser.add_argument("--db", type=Path, default=Path(ERROR_DB_PATH), help="Path to error database")
    parser.add_argument("--request", help="Filter errors by request ID")
    parser.add_argument("--type", help="Filter errors by type (store_error, llm_error, ...)")
    parser.add_argument("--limit", type=int, default=20, help="Max errors to display (default: 20)")
    parser.add_argument("--offset", type=int, default=0, help="Pagination offset (default: 0)")
    parser.add_argument("--export", type=Path, metavar="PATH", help="Export all errors to a JSONL file")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    error_logger = ErrorLogger(args.db)

    if args.export:
        count = error_logger.export_errors_jsonl(args.export)
        print(f"Exported {count} error(s) to {args.export}")
        return

    print_summary(error_logger.get_error_summary())

    errors = error_logger.get_errors(
        request_id=args.request,
        error_type=args.type,
        limit=args.limit,
        offset=args.offset,
    )
    if not errors:
        print("\nNo errors found.")
        return

    print(f"\nShowing {len(errors)} error(s)")
    for error in errors:
        print_error(error)
    if len(errors) == args.limit:
        print(f"\n(Run with --offset {args.offset + args.limit} to see more)")


if __name__ == "__main__":
    main()
