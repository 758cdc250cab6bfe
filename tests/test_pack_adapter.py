"""Tests for icntrack.adapters.pack_adapter mappers and pack normalization."""

from icntrack.adapters.pack_adapter import (
    PACK_VERSION,
    canonical_dataset,
    make_pack,
    map_abt,
    map_ip,
    map_resident,
    map_vax,
    normalize_pack,
)
from icntrack.core.identity import ResidentRegistry
from icntrack.models import Resident

NOW = "2026-01-16T08:00:00+00:00"


class TestCanonicalDataset:
    def test_aliases(self):
        assert canonical_dataset("abt") == "antibiotic"
        assert canonical_dataset("Vaccinations") == "vaccination"
        assert canonical_dataset("ip") == "infection"
        assert canonical_dataset("census") == "residents"

    def test_unknown_passes_through(self):
        assert canonical_dataset("wounds") == "wounds"


class TestMapVax:
    def test_legacy_shape(self):
        reg = ResidentRegistry()
        warnings = []
        vax = map_vax(
            {"residentName": "Jane Doe", "room": "251-A", "vaccine": "Influenza", "dateGiven": "10/01/2025"},
            reg, warnings, now=NOW,
        )
        assert warnings == []
        assert vax.name == "Flu"
        assert vax.date == "2025-10-01"
        assert vax.status == "Given"
        assert vax.resident_id == "room_251-A_jane-doe"
        assert vax.created == NOW

    def test_exported_shape_uses_name_as_vaccine(self):
        existing = Resident(id="mrn_A1", display_name="Jane", mrn="A1")
        reg = ResidentRegistry({existing.id: existing})
        vax = map_vax(
            {"id": "vax_1", "resident_id": "mrn_A1", "name": "COVID", "date": "2025-11-02"},
            reg, [], now=NOW,
        )
        assert vax.id == "vax_1"
        assert vax.name == "COVID"
        assert vax.resident_id == "mrn_A1"
        assert reg.created_ids == []

    def test_missing_date_skipped_without_creating_resident(self):
        reg = ResidentRegistry()
        warnings = []
        assert map_vax({"name": "Jane Doe", "vaccine": "Flu"}, reg, warnings) is None
        assert warnings == ["Skipped a vaccination row missing type/date (Jane Doe)."]
        assert reg.residents_by_id == {}

    def test_missing_resident_skipped(self):
        warnings = []
        assert map_vax({"vaccine": "Flu", "date": "2025-10-01"}, ResidentRegistry(), warnings) is None
        assert warnings == ["Skipped a vaccination row with no resident (Flu 2025-10-01)."]

    def test_non_object(self):
        warnings = []
        assert map_vax("Flu", ResidentRegistry(), warnings) is None
        assert len(warnings) == 1


class TestMapAbt:
    def test_candidate_keys(self):
        reg = ResidentRegistry()
        course = map_abt(
            {"patientName": "Jane Doe", "MRN": "A1", "medication": "Cipro", "startDate": "2026-01-10T09:00:00Z",
             "endDate": "1/17/2026", "freq": "BID"},
            reg, [], now=NOW,
        )
        assert course.resident_id == "mrn_A1"
        assert course.antibiotic == "Cipro"
        assert course.start_date == "2026-01-10"
        assert course.stop_date == "2026-01-17"
        assert course.status == "stopped"
        assert course.frequency == "BID"

    def test_mrn_prefixed_resident_id(self):
        reg = ResidentRegistry()
        course = map_abt({"residentId": "MRN-LON9", "drug": "Vanc", "start": "2026-01-01"}, reg, [])
        assert course.resident_id == "mrn_LON9"
        assert reg.residents_by_id["mrn_LON9"].mrn == "LON9"

    def test_missing_start(self):
        warnings = []
        assert map_abt({"name": "Jane", "drug": "Vanc"}, ResidentRegistry(), warnings) is None
        assert warnings == ["Skipped an ABT row missing medication/start (Jane)."]


class TestMapIp:
    def test_case(self):
        case = map_ip(
            {"name": "Jane Doe", "onsetDate": "2026-01-05", "pathogen": "C. diff",
             "precautions": "Contact Plus", "category": "GI"},
            ResidentRegistry(), [], now=NOW,
        )
        assert case.organism == "C. diff"
        assert case.precaution_type == "contact"
        assert case.syndrome == "GI"
        assert case.is_active

    def test_unknown_precaution(self):
        case = map_ip({"name": "J", "onset": "2026-01-05", "precautions": "reverse"}, ResidentRegistry(), [])
        assert case.precaution_type == "unknown"

    def test_missing_onset(self):
        warnings = []
        assert map_ip({"name": "J"}, ResidentRegistry(), warnings) is None
        assert warnings == ["Skipped an IP row missing onset date (J)."]


class TestMapResident:
    def test_resident_record(self):
        reg = ResidentRegistry()
        r = map_resident({"name": "Jane Doe", "room": "251-A", "unit": "2"}, reg, [])
        assert r.id == "room_251-A_jane-doe"
        assert r.unit == "Unit 2"

    def test_no_identity(self):
        warnings = []
        assert map_resident({"room": "251-A"}, ResidentRegistry(), warnings) is None
        assert warnings == ["Skipped a resident row with no name or MRN."]


class TestNormalizePack:
    def test_single_dataset_form(self):
        pack = normalize_pack(make_pack("abt", [{"x": 1}], source="test", created=NOW))
        assert pack.created == NOW
        assert pack.source == "test"
        assert [(p.dataset, len(p.records)) for p in pack.parts] == [("abt", 1)]

    def test_datasets_form(self):
        pack = normalize_pack({
            "version": PACK_VERSION,
            "datasets": [
                {"dataset": "vaccinations", "records": [{}, {}]},
                {"dataset": "ip", "records": "bad"},
            ],
        })
        assert [(p.dataset, len(p.records)) for p in pack.parts] == [("vaccinations", 2), ("ip", 0)]
        assert pack.record_count() == 2

    def test_keyed_form(self):
        pack = normalize_pack({
            "version": PACK_VERSION, "createdAt": NOW, "recordCount": 3,
            "abt": [{}], "census": [{}, {}], "note": "ignored",
        })
        assert sorted(p.dataset for p in pack.parts) == ["abt", "census"]

    def test_wrong_version(self):
        assert normalize_pack({"version": "v0", "abt": []}) is None
        assert normalize_pack({"abt": []}) is None
        assert normalize_pack([]) is None
