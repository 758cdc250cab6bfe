"""Tests for icntrack.cli entry point."""

import json

import pytest

from icntrack.cli import main
from icntrack.db import IcnDB
from icntrack.state import load_state

NOW_CENSUS = """\
Date: 01/16/2026
Unit: Unit 2
251-A\tDOE, JOHN (LON202332)\t5/12/1967\tActive
252-A\tSMITH, MARY (LON100200)\t3/4/1940\tActive
"""


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli.db")


@pytest.fixture
def census_file(tmp_path):
    path = tmp_path / "census.txt"
    path.write_text(NOW_CENSUS)
    return str(path)


def _state(db_path):
    with IcnDB(db_path) as db:
        return load_state(db)[0]


class TestCensusCommands:
    def test_parse_previews(self, db_path, census_file, capsys):
        main(["census", "parse", census_file, "--db", db_path])
        out = capsys.readouterr().out
        assert "Parsed 2 residents" in out
        assert "mrn_LON202332" in out

    def test_apply(self, db_path, census_file, capsys):
        main(["census", "apply", census_file, "--db", db_path])
        assert "Applied: 2 new, 0 updated, 0 discharged" in capsys.readouterr().out
        assert set(_state(db_path).residents_by_id) == {"mrn_LON202332", "mrn_LON100200"}


class TestBulkCommands:
    def test_preview_does_not_save(self, db_path, census_file, tmp_path, capsys):
        main(["census", "apply", census_file, "--db", db_path])
        rows = tmp_path / "vax.txt"
        rows.write_text("251-A\tFlu\t2026-01-05\nnope\n")
        main(["bulk", "vax", str(rows), "--db", db_path])
        out = capsys.readouterr().out
        assert "1 rows parsed, 1 ready" in out
        assert "Errors:  1" in out
        assert _state(db_path).all_vaccines() == []

    def test_apply(self, db_path, census_file, tmp_path, capsys):
        main(["census", "apply", census_file, "--db", db_path])
        rows = tmp_path / "abx.txt"
        rows.write_text("Ceftriaxone\t2026-01-14\tUTI\n")
        main(["bulk", "abx", str(rows), "--resident", "SMITH", "--apply", "--db", db_path])
        assert "Added:   1" in capsys.readouterr().out
        assert [c.antibiotic for c in _state(db_path).all_courses()] == ["Ceftriaxone"]


class TestImportCommands:
    def test_legacy_apply(self, db_path, tmp_path, capsys):
        path = tmp_path / "legacy.json"
        path.write_text(json.dumps(
            {"antibiotics": [{"name": "Jane Doe", "drug": "Ceftriaxone", "startDate": "2026-01-16"}]}
        ))
        main(["legacy", str(path), "--apply", "--db", db_path])
        out = capsys.readouterr().out
        assert "Detected kind: abt" in out
        assert "Added:   2" in out

    def test_pack_build_queue_apply(self, db_path, tmp_path, capsys):
        upload = tmp_path / "upload.csv"
        upload.write_text("name,drug,start\nJane Doe,Cipro,2026-01-10\n")
        main(["pack", "build", str(upload), "--target", "abt", "--queue", "--db", db_path])
        main(["pack", "queue", "--db", db_path])
        out = capsys.readouterr().out
        assert "Queued (1 pending)" in out
        assert "1 pending pack(s)" in out
        main(["pack", "apply", "--db", db_path])
        assert "Added:   1" in capsys.readouterr().out
        assert len(_state(db_path).all_courses()) == 1

    def test_pack_build_output(self, db_path, tmp_path):
        upload = tmp_path / "upload.json"
        upload.write_text('[{"name": "Jane", "vaccine": "Flu", "date": "2025-10-01"}]')
        out_path = tmp_path / "pack.json"
        main(["pack", "build", str(upload), "--target", "vaccinations", "--output", str(out_path),
              "--db", db_path])
        pack = json.loads(out_path.read_text())
        assert pack["vaccinations"][0]["vaccine"] == "Flu"

    def test_invalid_json_exits(self, db_path, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        with pytest.raises(SystemExit) as exc:
            main(["legacy", str(path), "--db", db_path])
        assert exc.value.code == 1
        assert capsys.readouterr().err.startswith("Error:")


class TestViewsAndOperations:
    @pytest.fixture
    def loaded(self, db_path, census_file, tmp_path):
        main(["census", "apply", census_file, "--db", db_path])
        rows = tmp_path / "abx.txt"
        rows.write_text("251-A\tVanc\t2026-01-10\n")
        main(["bulk", "abx", str(rows), "--apply", "--db", db_path])
        return db_path

    def test_flags(self, loaded, capsys):
        main(["flags", "--today", "2026-01-16", "--db", loaded])
        out = capsys.readouterr().out
        assert "1 active antibiotic course(s)" in out
        assert "OVERDUE" in out

    def test_report_is_json(self, loaded, capsys):
        capsys.readouterr()
        main(["report", "--today", "2026-01-16", "--db", loaded])
        report = json.loads(capsys.readouterr().out)
        assert report["abt_active"][0]["day"] == 7

    def test_resident_missing(self, loaded, capsys):
        with pytest.raises(SystemExit):
            main(["resident", "nobody", "--db", loaded])
        assert "Resident not found" in capsys.readouterr().err

    def test_stop_and_delete(self, loaded, capsys):
        course = _state(loaded).all_courses()[0]
        main(["stop-abx", "mrn_LON202332", course.id, "2026-01-16", "--db", loaded])
        assert "Stopped Vanc" in capsys.readouterr().out
        main(["delete-abx", "mrn_LON202332", course.id, "--db", loaded])
        assert "Deleted." in capsys.readouterr().out
        assert _state(loaded).all_courses() == []

    def test_invalid_today_is_reported(self, loaded, capsys):
        capsys.readouterr()
        for command in ("flags", "report", "resident"):
            argv = [command, "mrn_LON202332"] if command == "resident" else [command]
            with pytest.raises(SystemExit) as exc:
                main(argv + ["--today", "someday", "--db", loaded])
            assert exc.value.code == 1
            assert capsys.readouterr().err.startswith("Error: Invalid --today date")

    def test_report_on_empty_store_rejects_bad_today(self, db_path, capsys):
        with pytest.raises(SystemExit):
            main(["report", "--today", "nope", "--db", db_path])
        assert "Error:" in capsys.readouterr().err


class TestInfectionCaseCommands:
    def test_add_list_resolve_delete(self, db_path, census_file, capsys):
        main(["census", "apply", census_file, "--db", db_path])
        main(["ip", "add", "mrn_LON202332", "2026-01-10", "--syndrome", "UTI", "--precautions", "contact",
              "--db", db_path])
        assert "Added case ip_" in capsys.readouterr().out
        case = _state(db_path).infection_cases[0]
        assert (case.syndrome, case.precaution_type) == ("UTI", "contact")

        main(["ip", "list", "--db", db_path])
        out = capsys.readouterr().out
        assert "1 infection case(s)" in out
        assert "DOE, JOHN" in out

        main(["ip", "resolve", case.id, "--date", "2026-01-16", "--db", db_path])
        assert f"Resolved {case.id} on 2026-01-16" in capsys.readouterr().out
        main(["ip", "list", "--db", db_path])
        assert "0 infection case(s)" in capsys.readouterr().out
        main(["ip", "list", "--all", "--db", db_path])
        assert "resolved" in capsys.readouterr().out

        main(["ip", "delete", case.id, "--db", db_path])
        assert "Deleted." in capsys.readouterr().out
        assert _state(db_path).infection_cases == []

    def test_add_unknown_resident(self, db_path, capsys):
        with pytest.raises(SystemExit):
            main(["ip", "add", "nobody", "2026-01-10", "--db", db_path])
        assert "Resident not found: nobody" in capsys.readouterr().err

    def test_missing_action(self, db_path):
        with pytest.raises(SystemExit):
            main(["ip"])


class TestStoreCommands:
    def test_summary(self, db_path, capsys):
        main(["summary", "--db", db_path])
        out = capsys.readouterr().out
        assert "Tracker Summary" in out
        assert "icntrack-state-v1" in out

    def test_detect_store(self, db_path, capsys):
        main(["detect-store", "--db", db_path])
        assert "No tracker state found." in capsys.readouterr().out
        main(["summary", "--db", db_path])
        main(["detect-store", "--db", db_path])
        assert "State key: icntrack-state-v1" in capsys.readouterr().out

    def test_reset_requires_yes(self, db_path):
        with pytest.raises(SystemExit):
            main(["reset", "--db", db_path])

    def test_init_config(self, db_path, tmp_path, capsys):
        out_path = tmp_path / "icntrack.toml"
        main(["init-config", "--output", str(out_path), "--db", db_path, "--facility", "Maple"])
        assert out_path.exists()
        assert 'facility_name = "Maple"' in out_path.read_text()

    def test_no_command(self):
        with pytest.raises(SystemExit):
            main([])
