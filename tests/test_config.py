"""Tests for icntrack.config module."""

import tomllib

from icntrack.config import TrackerConfig, generate_config, infer_unit_aliases, load_config
from icntrack.models import Resident
from icntrack.sources.base import DEFAULT_HEADER_PREFIXES
from icntrack.state import TrackerState


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, tmp_path, capsys):
        config = load_config(str(tmp_path / "nonexistent.toml"))
        assert config == TrackerConfig()
        assert "not found, using defaults" in capsys.readouterr().err

    def test_loads_toml_file(self, tmp_path):
        toml_path = tmp_path / "test.toml"
        toml_path.write_text("""
facility_name = "Maple Grove"

[units]
"1" = "North"
"2" = "South"

[antibiotics]
review_day = 2
overdue_day = 5
""")
        config = load_config(str(toml_path))
        assert config.facility_name == "Maple Grove"
        assert config.unit_aliases == {"1": "North", "2": "South"}
        assert (config.review_day, config.overdue_day) == (2, 5)

    def test_partial_config_preserves_defaults(self, tmp_path):
        toml_path = tmp_path / "partial.toml"
        toml_path.write_text("[vaccines]\nflu_lookback_months = 8\n")
        config = load_config(str(toml_path))
        assert config.flu_lookback_months == 8
        assert config.covid_lookback_months == 12
        assert config.review_day == 3

    def test_empty_config(self, tmp_path):
        toml_path = tmp_path / "empty.toml"
        toml_path.write_text("")
        assert load_config(str(toml_path)) == TrackerConfig()


class TestCensusRules:
    def test_extra_prefixes_appended(self):
        rules = TrackerConfig(header_prefixes=["printed by", "DATE:"]).census_rules()
        assert rules.header_prefixes == DEFAULT_HEADER_PREFIXES + ["PRINTED BY"]


class TestGenerateConfig:
    def test_round_trip(self, tmp_path):
        path = generate_config(str(tmp_path / "icntrack.toml"), facility_name="Maple Grove")
        config = load_config(path)
        assert config.facility_name == "Maple Grove"
        assert config == TrackerConfig(facility_name="Maple Grove")

    def test_units_inferred_from_state(self, tmp_path):
        state = TrackerState()
        for rid, room, unit in (("a", "101-A", "East"), ("b", "102-A", "East"), ("c", "150-B", "West"),
                                ("d", "201-A", "unknown")):
            state.residents_by_id[rid] = Resident(id=rid, room=room, unit=unit)
        assert infer_unit_aliases(state) == {"1": "East"}
        path = generate_config(str(tmp_path / "c.toml"), state=state)
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        assert raw["units"] == {"1": "East"}
