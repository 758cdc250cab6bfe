"""Tests for icntrack.mcp.server tools.

Tests the tool functions directly (not via MCP protocol).
"""

import json

import pytest

from icntrack.db import IcnDB
from icntrack.models import AntibioticCourse, Resident
from icntrack.state import init_state, save_state


@pytest.fixture
def mcp_db(tmp_path, monkeypatch):
    """Set up a test database and configure MCP to use it."""
    db_path = str(tmp_path / "mcp_test.db")
    monkeypatch.setenv("ICNTRACK_DB", db_path)

    db = IcnDB(db_path)
    db.init_schema()
    state = init_state(db)
    state.residents_by_id["mrn_A1"] = Resident(
        id="mrn_A1", display_name="DOE, JOHN", mrn="A1", room="251-A", unit="Unit 2"
    )
    state.residents_by_id["mrn_A2"] = Resident(
        id="mrn_A2", display_name="SMITH, MARY", mrn="A2", status="discharged", locked_room="252-A"
    )
    state.abx_by_resident_id["mrn_A1"] = [
        AntibioticCourse(id="abt_1", resident_id="mrn_A1", antibiotic="Ceftriaxone",
                         start_date="2026-01-14"),
    ]
    save_state(db, state)
    db.close()

    import icntrack.mcp.server as srv

    monkeypatch.setattr(srv, "DB_PATH", db_path)
    yield srv


class TestStoreTools:
    def test_summary(self, mcp_db):
        summary = mcp_db.get_store_summary()
        assert summary["store_key"] == "icntrack-state-v1"
        assert summary["residents"] == 2

    def test_list_keys(self, mcp_db):
        keys = [row["key"] for row in mcp_db.list_store_keys()]
        assert keys == ["icntrack-state-v1"]


class TestClinicalTools:
    def test_antibiotic_flags(self, mcp_db):
        rows = mcp_db.get_antibiotic_flags("2026-01-16")
        assert rows[0]["day"] == 3
        assert rows[0]["review_due"] is True
        assert rows[0]["overdue"] is False

    def test_report(self, mcp_db):
        report = mcp_db.get_report_snapshot("2026-01-16")
        assert report["top_antibiotics"] == [("Ceftriaxone", 1)]
        assert report["vaccine_coverage"]["active_residents"] == 1

    def test_get_resident(self, mcp_db):
        result = mcp_db.get_resident("mrn_A1", "2026-01-16")
        assert result["resident"]["display_name"] == "DOE, JOHN"
        assert mcp_db.get_resident("nobody") == "Resident not found: nobody"

    def test_find_residents(self, mcp_db):
        assert [r["id"] for r in mcp_db.find_residents("252-a")] == ["mrn_A2"]
        assert [r["id"] for r in mcp_db.find_residents(status="active")] == ["mrn_A1"]
        assert len(mcp_db.find_residents()) == 2


class TestPreviewTools:
    def test_preview_census(self, mcp_db):
        result = mcp_db.preview_census("251-A\tDOE, JOHN (LON202332)\t5/12/1967\tActive")
        assert [r["id"] for r in result["residents"]] == ["mrn_LON202332"]
        assert result["warnings"] == []

    def test_preview_bulk_rows(self, mcp_db):
        result = mcp_db.preview_bulk_rows("Flu\t2026-01-16\tGiven at bedside", "vaccination", "mrn_A1")
        assert result["rows"] == 1
        assert result["items"][0]["resident_id"] == "mrn_A1"
        assert result["errors"] == []
        assert mcp_db.get_store_summary()["vaccinations"] == 0

    def test_preview_bulk_bad_dataset(self, mcp_db):
        assert "error" in mcp_db.preview_bulk_rows("x\ty", "wounds")

    def test_detect_legacy_export(self, mcp_db):
        content = json.dumps(
            {"antibiotics": [{"name": "Jane Doe", "drug": "Ceftriaxone", "startDate": "2026-01-16"}]}
        )
        result = mcp_db.detect_legacy_export(content)
        assert result["kind"] == "abt"
        assert result["counts"]["antibiotics"] == 1
        assert len(result["new_resident_ids"]) == 1
        assert mcp_db.get_store_summary()["residents"] == 2

    def test_detect_legacy_invalid_json(self, mcp_db):
        assert mcp_db.detect_legacy_export("{nope")["error"].startswith("Invalid JSON")
