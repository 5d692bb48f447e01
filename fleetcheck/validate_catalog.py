#!/usr/bin/env python3
"""
Validate a check catalog against the typed schema and report authoring issues.

Usage:
    python -m fleetcheck.validate_catalog sql-checks.json
"""

from __future__ import annotations

import sys
from collections import Counter

from fleetcheck.catalog import ExecutionType, lint_catalog, load_catalog


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1 or argv[0].startswith("-"):
        print("Usage: python -m fleetcheck.validate_catalog <catalog file>", file=sys.stderr)
        print("Example: python -m fleetcheck.validate_catalog sql-checks.json", file=sys.stderr)
        return 1

    path = argv[0]
    try:
        checks = load_catalog(path)
    except FileNotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"ERROR: Invalid catalog at {path}", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return 1

    issues = lint_catalog(checks)
    types = Counter(c.execution_type for c in checks)

    print(f"Catalog: {path}")
    print(f"  Checks:      {len(checks)} ({sum(1 for c in checks if c.enabled)} enabled)")
    print(f"  Categories:  {', '.join(sorted({c.category for c in checks if c.category})) or '-'}")
    for execution_type in ExecutionType:
        if types.get(execution_type):
            print(f"  {execution_type.value + ':':<13}{types[execution_type]}")

    if issues:
        print()
        for issue in issues:
            print(issue)

    errors = [i for i in issues if i.level == "error"]
    if errors:
        print(f"\nCatalog validation failed: {len(errors)} error(s).")
        return 1
    print("\nCatalog validation passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
