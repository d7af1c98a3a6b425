#!/usr/bin/env python3
"""
Multi-tenancy scoping lint check.

Scans the BookIt backend for queries on business-owned tables that lack a
business_id filter, and for hardcoded business ids.

USAGE:
    python scripts/check_tenant_scoping.py

    # Detailed findings, fail on critical/high issues (CI)
    python scripts/check_tenant_scoping.py -v --strict

EXIT CODES:
    0 - No critical/high issues (or not running with --strict)
    1 - Critical/high issues found in strict mode
"""

import argparse
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

# ────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────

SCAN_ROOT = Path(__file__).parent.parent / "Backend" / "bookit"

EXCLUDE_PATTERNS = [
    "__pycache__",
    ".pyc",
    "tenancy/",  # Owns the scoped helpers themselves
    "test_",
]

# Tables that carry a business_id column
SCOPED_MODELS = [
    "Service",
    "Staff",
    "Appointment",
    "AvailabilityRule",
    "AvailabilityException",
    "RecurringAppointment",
]

# (pattern, severity, description)
BAD_PATTERNS: List[Tuple[str, str, str]] = [
    (
        r"^[A-Z_]*BUSINESS_ID\s*=\s*\d+",
        "CRITICAL",
        "Hardcoded BUSINESS_ID constant - resolve BusinessContext from the URL",
    ),
    (
        r"business_id\s*=\s*\d+[,\)\s]",
        "WARNING",
        "Hardcoded business_id literal - use ctx.business_id",
    ),
] + [
    (
        rf"select\({model}\)",
        "HIGH",
        f"{model} query without business_id filter - potential cross-tenant leak",
    )
    for model in SCOPED_MODELS
]

IGNORE_PATTERNS = [
    r"^\s*#",  # Comments
    r"noqa:\s*tenant-scoping",  # Explicit suppression
]

# A query counts as scoped when one of these shows up within the statement
SCOPED_MARKERS = re.compile(
    r"\.business_id\s*==|scoped_select\(|tenant_filter\(|business_id\s*=\s*ctx\.business_id"
)
CONTEXT_LINES = 6


# ────────────────────────────────────────────────────────────────
# Data Classes
# ────────────────────────────────────────────────────────────────

@dataclass
class Finding:
    """A single tenant scoping issue."""

    file: Path
    line_num: int
    line_text: str
    severity: str
    description: str

    def __str__(self):
        return f"{self.severity}: {self.file}:{self.line_num} - {self.description}\n  > {self.line_text.strip()}"


# ────────────────────────────────────────────────────────────────
# Scanning Logic
# ────────────────────────────────────────────────────────────────

def should_exclude(path: Path) -> bool:
    path_str = path.as_posix()
    return any(excl in path_str for excl in EXCLUDE_PATTERNS)


def should_ignore_line(line: str) -> bool:
    return any(re.search(pattern, line) for pattern in IGNORE_PATTERNS)


def scan_source(source: str, file_path: Path) -> List[Finding]:
    """Scan Python source text for tenant scoping issues."""
    findings = []
    lines = source.split("\n")

    for line_num, line in enumerate(lines, 1):
        if should_ignore_line(line):
            continue

        for pattern, severity, description in BAD_PATTERNS:
            if not re.search(pattern, line):
                continue
            if severity == "HIGH":
                # Multi-line statements: look at the following lines too
                context_window = "\n".join(lines[line_num - 1:line_num - 1 + CONTEXT_LINES])
                if SCOPED_MARKERS.search(context_window):
                    continue
            findings.append(Finding(
                file=file_path,
                line_num=line_num,
                line_text=line,
                severity=severity,
                description=description,
            ))

    return findings


def scan_file(file_path: Path) -> List[Finding]:
    try:
        content = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print(f"Warning: Could not read {file_path}: {e}", file=sys.stderr)
        return []
    return scan_source(content, file_path)


def scan_directory(root: Path) -> List[Finding]:
    """Recursively scan a directory for tenant scoping issues."""
    all_findings = []
    for path in sorted(root.rglob("*.py")):
        if should_exclude(path):
            continue
        all_findings.extend(scan_file(path))
    return all_findings


# ────────────────────────────────────────────────────────────────
# Reporting
# ────────────────────────────────────────────────────────────────

SEVERITY_ORDER = ["CRITICAL", "HIGH", "MEDIUM", "WARNING", "INFO"]


def print_report(findings: List[Finding], verbose: bool = False):
    if not findings:
        print("✅ No tenant scoping issues found!")
        return

    by_severity = {}
    for f in findings:
        by_severity.setdefault(f.severity, []).append(f)

    print("\n" + "=" * 60)
    print("MULTI-TENANCY SCOPING CHECK REPORT")
    print("=" * 60)

    print("\nSUMMARY:")
    for sev in SEVERITY_ORDER:
        count = len(by_severity.get(sev, []))
        if count > 0:
            print(f"  {sev}: {count}")
    print(f"\nTOTAL: {len(findings)} issues")

    if verbose:
        print("\n" + "-" * 60)
        print("DETAILS:")
        print("-" * 60)
        for sev in SEVERITY_ORDER:
            for f in by_severity.get(sev, []):
                print(f"  {f.file}:{f.line_num}")
                print(f"    {f.description}")
                print(f"    > {f.line_text.strip()[:80]}")
    else:
        print("\nRun with -v for detailed findings.")


# ────────────────────────────────────────────────────────────────
# Main
# ────────────────────────────────────────────────────────────────

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Check the backend for multi-tenancy scoping issues"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed findings")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with code 1 if critical/high issues are found (for CI)",
    )
    parser.add_argument(
        "--path",
        type=Path,
        default=SCAN_ROOT,
        help=f"Path to scan (default: {SCAN_ROOT})",
    )
    args = parser.parse_args(argv)

    if not args.path.exists():
        print(f"Error: Path {args.path} does not exist", file=sys.stderr)
        return 1

    print(f"Scanning {args.path}...")
    findings = scan_directory(args.path)
    print_report(findings, verbose=args.verbose)

    if args.strict:
        critical_count = sum(1 for f in findings if f.severity in ("CRITICAL", "HIGH"))
        if critical_count > 0:
            print(f"\n❌ {critical_count} critical/high issues found. Failing.")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
