"""
Tests for scripts/check_tenant_scoping.py, plus a run over the real
bookit package so unscoped queries fail CI.
"""

import importlib.util
from pathlib import Path

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "check_tenant_scoping.py"

spec = importlib.util.spec_from_file_location("check_tenant_scoping", SCRIPT)
check_tenant_scoping = importlib.util.module_from_spec(spec)
spec.loader.exec_module(check_tenant_scoping)


def scan(source: str):
    return check_tenant_scoping.scan_source(source, Path("example.py"))


def test_unscoped_select_is_high():
    findings = scan("rows = await session.execute(select(Appointment))\n")
    assert [f.severity for f in findings] == ["HIGH"]


def test_business_filter_on_following_line_is_fine():
    source = (
        "stmt = select(Staff).where(\n"
        "    Staff.id == staff_id,\n"
        "    Staff.business_id == business_id,\n"
        ")\n"
    )
    assert scan(source) == []


def test_scoped_select_helper_is_fine():
    assert scan("stmt = scoped_select(Service, ctx.business_id) or select(Service)\n") == []


def test_hardcoded_constant_is_critical():
    findings = scan("DEMO_BUSINESS_ID = 1\n")
    assert findings[0].severity == "CRITICAL"


def test_comments_and_suppressions_are_ignored():
    source = (
        "# select(Service) is scoped below\n"
        "stmt = select(Service)  # noqa: tenant-scoping\n"
    )
    assert scan(source) == []


def test_bookit_package_is_clean():
    findings = check_tenant_scoping.scan_directory(check_tenant_scoping.SCAN_ROOT)
    blocking = [f for f in findings if f.severity in ("CRITICAL", "HIGH")]
    assert blocking == [], "\n".join(str(f) for f in blocking)
