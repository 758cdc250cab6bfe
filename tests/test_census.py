"""Tests for icntrack.sources.census parser."""

from icntrack.sources.base import CensusRules
from icntrack.sources.census import (
    NO_RESIDENTS_WARNING,
    CensusTextParser,
    parse_census,
    split_census_columns,
    split_resident_field,
)

NOW = "2026-01-16T08:00:00.123+00:00"


class TestSplitting:
    def test_tabs(self):
        assert split_census_columns("251-A\tDOE, JOHN\t5/12/1967") == ["251-A", "DOE, JOHN", "5/12/1967"]

    def test_space_fallback(self):
        cols = split_census_columns("251-A   DOE, JOHN (X1)   5/12/1967")
        assert cols == ["251-A", "DOE, JOHN (X1)", "5/12/1967"]

    def test_resident_field_with_code(self):
        assert split_resident_field("DOE, JOHN (LON202332)") == ("DOE, JOHN", "LON202332")

    def test_resident_field_without_code(self):
        assert split_resident_field("DOE,  JOHN") == ("DOE, JOHN", "")


class TestParseCensus:
    def test_single_line_scenario(self):
        text = "Date: 01/16/2026\n251-A\tEMPTY BED\t\t\t\n251-A\tDOE, JOHN (LON202332)\t5/12/1967\tActive"
        snap = parse_census(text, now=NOW)
        assert len(snap.residents) == 1
        r = snap.residents[0]
        assert r.id == "mrn_LON202332"
        assert r.display_name == "DOE, JOHN"
        assert r.room == "251-A"
        assert r.dob == "1967-05-12"
        assert snap.warnings == []

    def test_header_only_gives_no_residents(self):
        snap = parse_census("Date: 01/16/2026", now=NOW)
        assert snap.residents == []
        assert snap.warnings == [NO_RESIDENTS_WARNING]

    def test_unit_sections(self, sample_census):
        snap = parse_census(sample_census, now=NOW)
        units = {r.id: r.unit for r in snap.residents}
        assert units == {
            "mrn_LON202332": "Unit 2",
            "mrn_LON100200": "Unit 2",
            "mrn_LON300400": "Unit 3",
        }

    def test_unit_inferred_from_room_digit(self):
        snap = parse_census("410-B\tGREEN, TOM (A9)\t1/1/1930", now=NOW)
        assert snap.residents[0].unit == "Unit 4"

    def test_unknown_unit_for_unmapped_digit(self):
        snap = parse_census("510-B\tGREEN, TOM (A9)", now=NOW)
        assert snap.residents[0].unit == "unknown"

    def test_custom_unit_aliases(self):
        rules = CensusRules(unit_aliases={"5": "East Wing"})
        snap = parse_census("510-B\tGREEN, TOM (A9)", rules=rules, now=NOW)
        assert snap.residents[0].unit == "East Wing"

    def test_room_upper_cased(self):
        snap = parse_census("251-a\tDOE, JOHN (LON1)", now=NOW)
        assert snap.residents[0].room == "251-A"

    def test_no_code_uses_room_key(self):
        snap = parse_census("251-A\tDOE, JOHN\t5/12/1967", now=NOW)
        assert snap.residents[0].id == "room_251-A_doe-john"

    def test_duplicate_row_warns(self):
        text = "251-A\tDOE, JOHN (LON1)\n251-A\tDOE, JOHN (LON1)"
        snap = parse_census(text, now=NOW)
        assert len(snap.residents) == 1
        assert snap.warnings == ["Duplicate census row for DOE, JOHN (251-A) ignored"]

    def test_non_tabular_lines_dropped(self):
        snap = parse_census("Some free text\n251-A\tDOE, JOHN (LON1)", now=NOW)
        assert [r.id for r in snap.residents] == ["mrn_LON1"]

    def test_invalid_dob_ignored(self):
        snap = parse_census("251-A\tDOE, JOHN (LON1)\t13/45/1967", now=NOW)
        assert snap.residents[0].dob == ""

    def test_snapshot_metadata(self):
        snap = parse_census("251-A\tDOE, JOHN (LON1)", now=NOW)
        assert snap.created == NOW
        assert snap.id == "c_2026-01-16T08-00-00-123+00-00"
        assert snap.raw_text == "251-A\tDOE, JOHN (LON1)"
        assert snap.residents[0].last_seen == NOW

    def test_parser_is_deterministic(self, sample_census):
        a = CensusTextParser().parse(sample_census, now=NOW)
        b = CensusTextParser().parse(sample_census, now=NOW)
        assert a == b


class TestMetadataLines:
    def test_title_line(self):
        assert CensusTextParser().is_metadata_line("Facility Daily Census Report")

    def test_page_line(self):
        assert CensusTextParser().is_metadata_line("Page 2 of 3")

    def test_data_line_is_not_metadata(self):
        assert not CensusTextParser().is_metadata_line("251-A\tDOE, JOHN")

    def test_extra_prefix(self):
        rules = CensusRules(header_prefixes=["PRINTED BY"])
        assert CensusTextParser(rules).is_metadata_line("Printed by: admin")
