"""
Unit Tests for Tenant Schema Validation and Usage Auditing

Tests:
- Type normalisation and declared schema introspection
- Table, column, convention and foreign key comparisons
- Report grading and summaries
- Source auditing for tenant schema bypasses
"""

import runpy
from pathlib import Path

import pytest
from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Uuid

from conductor.tenancy.schema_validator import (
    CORE_TABLES,
    SchemaIssue,
    SchemaReport,
    check_declared_foreign_keys,
    check_tenant_conventions,
    compare_columns,
    compare_foreign_key_types,
    compare_tables,
    declared_column_types,
    declared_indexes,
    expected_tables,
    grade_for,
    normalize_type,
    summarize_reports,
)
from conductor.tenancy.usage_auditor import (
    AuditResult,
    TenantSchemaUsageAuditor,
    UsageViolation,
    analyze_content,
    fix_suggestions,
    is_missing_tenant_validation,
    matches_pattern,
    violation_severity,
)


def _issue(severity):
    return SchemaIssue(severity, "test", "test issue")


class TestTypeNormalisation:
    """Test information_schema type spelling"""

    @pytest.mark.parametrize("raw,normalized", [
        ("VARCHAR(255)", "character varying"),
        ("varchar", "character varying"),
        ("FLOAT", "double precision"),
        ("TIMESTAMP WITH TIME ZONE", "timestamp with time zone"),
        ("timestamptz", "timestamp with time zone"),
        ("INTEGER", "integer"),
        ("int4", "integer"),
        ("UUID", "uuid"),
        ("JSONB", "jsonb"),
    ])
    def test_normalize(self, raw, normalized):
        assert normalize_type(raw) == normalized


class TestDeclaredSchema:
    """Test introspection of TenantBase metadata"""

    def test_expected_tables_include_core(self):
        tables = expected_tables()

        for table in CORE_TABLES:
            assert table in tables, f"Core table {table} should be declared"
        assert "sla_instances" in tables
        assert "expense_documents" in tables

    def test_every_table_has_tenant_index(self):
        indexes = declared_indexes()

        for table, names in indexes.items():
            assert f"idx_{table}_tenant_id" in names, f"{table} should declare its tenant_id index"

    def test_declared_types_compile_for_postgres(self):
        types = declared_column_types()

        assert types["tickets"]["id"] == "uuid"
        assert types["tickets"]["subject"] == "character varying"
        assert types["tickets"]["tags"] == "jsonb"
        assert types["sla_instances"]["started_at"] == "timestamp with time zone"

    def test_declared_foreign_keys_match(self):
        assert check_declared_foreign_keys() == [], "All model FKs should share the referenced type"

    def test_declared_foreign_key_mismatch(self):
        metadata = MetaData()
        Table("parents", metadata, Column("id", Uuid, primary_key=True))
        Table("children", metadata,
              Column("id", Integer, primary_key=True),
              Column("parent_id", String(36), ForeignKey("parents.id")))

        issues = check_declared_foreign_keys(metadata)

        assert len(issues) == 1
        assert issues[0].code == "foreign_key_type_mismatch"
        assert issues[0].table == "children"


class TestComparisons:
    """Test pure schema comparisons"""

    def test_all_tables_present(self):
        assert compare_tables({"tickets", "customers"}, ["tickets", "customers"]) == []

    def test_missing_core_and_regular_tables(self):
        issues = compare_tables({"tickets", "sla_events", "customers"}, ["customers", "legacy"])
        codes = [issue.code for issue in issues]

        assert codes == ["missing_table", "missing_core_table", "unexpected_table", "table_count_below_expected"]
        assert issues[-1].details == {"table_count": 1, "expected": 3}
        assert issues[2].severity == "info", "Extra tables are informational"

    def test_compare_columns(self):
        declared = {
            "tickets": {"id": "uuid", "subject": "character varying", "tenant_id": "uuid"},
            "absent": {"id": "uuid"},
        }
        actual = {"tickets": {"id": "uuid", "subject": "text", "legacy_flag": "boolean"}}

        issues = {(issue.code, issue.column) for issue in compare_columns(declared, actual)}

        assert issues == {
            ("column_type_mismatch", "subject"),
            ("missing_column", "tenant_id"),
            ("unexpected_column", "legacy_flag"),
        }

    def test_tenant_conventions(self):
        columns = {
            "tickets": {"id": "uuid", "tenant_id": "uuid"},
            "customers": {"id": "uuid"},
            "companies": {"id": "uuid", "tenant_id": "uuid"},
        }
        indexes = {"tickets": {"idx_tickets_tenant_id"}, "companies": set()}

        issues = check_tenant_conventions(columns, indexes, tables=["tickets", "customers", "companies", "missing"])
        by_table = {issue.table: issue for issue in issues}

        assert set(by_table) == {"customers", "companies"}
        assert by_table["customers"].code == "missing_tenant_id"
        assert by_table["customers"].severity == "critical"
        assert by_table["companies"].code == "missing_tenant_index"
        assert by_table["companies"].severity == "warning"

    def test_live_foreign_key_rows(self):
        rows = [
            {"table": "tickets", "column": "customer_id", "data_type": "uuid",
             "ref_table": "customers", "ref_column": "id", "ref_data_type": "uuid"},
            {"table": "beneficiaries", "column": "customer_id", "data_type": "character varying",
             "ref_table": "customers", "ref_column": "id", "ref_data_type": "uuid"},
        ]

        issues = compare_foreign_key_types(rows)

        assert len(issues) == 1
        assert issues[0].table == "beneficiaries"
        assert issues[0].details == {"expected": "uuid", "actual": "character varying"}


class TestGrading:
    """Test report grades"""

    @pytest.mark.parametrize("critical,warnings,grade", [
        (0, 0, "excellent"),
        (0, 1, "good"),
        (0, 2, "good"),
        (0, 3, "needs_attention"),
        (1, 0, "needs_attention"),
        (1, 5, "needs_attention"),
        (2, 0, "critical"),
    ])
    def test_grade_for(self, critical, warnings, grade):
        assert grade_for(critical, warnings) == grade

    def test_report_counts(self):
        report = SchemaReport(
            schema_name="tenant_x",
            issues=[_issue("critical"), _issue("warning"), _issue("info")],
        )

        assert report.critical_count == 1
        assert report.warning_count == 1
        assert not report.is_valid
        assert report.to_dict()["grade"] == "needs_attention"

    def test_summary(self):
        reports = [
            SchemaReport(schema_name="a"),
            SchemaReport(schema_name="b", issues=[_issue("warning")]),
            SchemaReport(schema_name="c", issues=[_issue("critical"), _issue("critical")]),
        ]

        summary = summarize_reports(reports)

        assert summary["total_tenants"] == 3
        assert summary["valid_tenants"] == 2
        assert summary["grades"] == {"excellent": 1, "good": 1, "needs_attention": 0, "critical": 1}
        assert summary["total_critical_issues"] == 2
        assert summary["exit_code"] == 1

    def test_summary_clean(self):
        assert summarize_reports([SchemaReport(schema_name="a")])["exit_code"] == 0


class TestUsageAuditor:
    """Test source auditing for tenant schema bypasses"""

    @pytest.mark.parametrize("path,pattern,expected", [
        ("conductor/api/routers/sla.py", "conductor/api/**/*.py", True),
        ("conductor/api/dependencies.py", "conductor/api/**/*.py", True),
        ("conductor/apis/x.py", "conductor/api/**/*.py", False),
        ("conductor/core/database.py", "conductor/core/database.py", True),
        ("scripts/create_tenant.py", "scripts/**/*.py", True),
        ("conductor/sla/service.py", "conductor/sla/*.txt", False),
    ])
    def test_matches_pattern(self, path, pattern, expected):
        assert matches_pattern(path, pattern) is expected

    @pytest.mark.parametrize("match,severity", [
        ("DELETE FROM tickets ", "critical"),
        ("UPDATE tickets SET", "critical"),
        ("INSERT INTO tickets ", "high"),
        ("FROM public.tickets", "medium"),
        ("public.", "low"),
    ])
    def test_violation_severity(self, match, severity):
        assert violation_severity(match) == severity

    def test_analyze_flags_raw_sql(self):
        content = 'rows = await db.execute(text("DELETE FROM tickets WHERE 1=1"))\n'

        violations = analyze_content("conductor/services/cleanup.py", content)
        types = {v.type for v in violations}

        assert "schema_violation" in types
        assert "missing_tenant_validation" in types, "No tenant reference in a file hitting the DB"
        assert any(v.severity == "critical" for v in violations)

    def test_tenant_reference_satisfies_validation(self):
        content = "async with get_tenant_session(tenant_id) as db:\n    await db.execute(select(Ticket))\n"

        assert not is_missing_tenant_validation(content)

    def test_fix_suggestions(self):
        violations = analyze_content("conductor/api/x.py", "x = 1\nq = 'FROM public.tickets'\n")
        fixes = fix_suggestions(violations)

        assert fixes and all(fix.startswith("conductor/api/x.py:2") for fix in fixes)

    def test_audit_tree(self, tmp_path: Path):
        (tmp_path / "conductor" / "api").mkdir(parents=True)
        (tmp_path / "conductor" / "core").mkdir(parents=True)
        (tmp_path / "conductor" / "api" / "bad.py").write_text(
            'await session.execute(text("UPDATE tickets SET status = 1"))\n'
        )
        (tmp_path / "conductor" / "api" / "good.py").write_text(
            "async with get_tenant_session(tenant_id) as db:\n    await db.execute(select(Ticket))\n"
        )
        (tmp_path / "conductor" / "core" / "database.py").write_text("SELECT * FROM public.tenants\n")

        result = TenantSchemaUsageAuditor(root=tmp_path).audit()

        assert result.files_audited == 2, "Only files under required paths are audited"
        assert {v.file for v in result.violations} == {"conductor/api/bad.py"}
        assert result.critical_count >= 1
        assert result.summary["by_type"]["missing_tenant_validation"] == 1

    def test_exclusions_win(self, tmp_path: Path):
        auditor = TenantSchemaUsageAuditor(
            root=tmp_path,
            required_paths=["conductor/**/*.py"],
            excluded_paths=["conductor/tenancy/**/*.py"],
        )

        assert auditor.should_audit("conductor/api/x.py")
        assert not auditor.should_audit("conductor/tenancy/provisioning.py")

    def test_audit_report_skips_missing_description(self, capsys):
        script = runpy.run_path(str(Path(__file__).parent.parent / "scripts" / "audit_tenant_usage.py"))
        result = AuditResult(violations=[
            UsageViolation("schema_violation", "low", "conductor/api/x.py", 2, match="public."),
            UsageViolation("missing_tenant_validation", "high", "conductor/api/y.py",
                           description="No tenant validation found"),
        ])

        script["print_result"](result)
        output = capsys.readouterr().out

        assert "None" not in output
        assert "   No tenant validation found" in output
        assert "   > public." in output
