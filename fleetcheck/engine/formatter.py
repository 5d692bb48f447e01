"""
Result message formatting.

Templates carry at most one "@" placeholder, replaced with the measured value,
and may mark optional plurals with "(s)":

    "@ database(s) have no backups"  value=1 → "1 database have no backups"
    "@ database(s) have no backups"  value=3 → "3 databases have no backups"

Everything here is pure and deterministic.
"""

from __future__ import annotations

import re

from fleetcheck.catalog import PLACEHOLDER, CheckDefinition

_PLURAL_RE = re.compile(r"\(s\)", re.IGNORECASE)
HIGH_PRIORITY_THRESHOLD = 2


def pluralize(text: str, count: int) -> str:
    return _PLURAL_RE.sub("" if count == 1 else "s", text)


def replace_placeholder(template: str, value: int) -> str:
    """Substitute the placeholder and resolve "(s)" tokens.

    A template without the placeholder is returned unchanged.
    """
    if not template or PLACEHOLDER not in template:
        return template
    return pluralize(template.replace(PLACEHOLDER, str(value)), value)


def format_check_message(check: CheckDefinition, passed: bool, value: int | None = None) -> str:
    template = check.pass_template if passed else check.fail_template
    message = template
    if value is not None and message:
        message = replace_placeholder(message, value)
    if not message:
        message = "Check passed" if passed else f"Check failed: {check.display_name}"
    return message


def build_detailed_message(check: CheckDefinition, passed: bool, value: int | None = None) -> str:
    """Formatted message plus remediation guidance for failed checks."""
    main = format_check_message(check, passed, value)
    if passed:
        return main

    lines = [main]
    if check.detailed_remediation:
        lines += ["", "Recommended Actions:", check.detailed_remediation]
    elif check.recommended_action:
        lines += ["", "Recommendation:", check.recommended_action]
    if check.priority <= HIGH_PRIORITY_THRESHOLD:
        lines += ["", "HIGH PRIORITY - take immediate action"]
    return "\n".join(lines)
