"""Shared test fixtures for icntrack tests."""

import pytest

from icntrack.db import IcnDB, MemoryStore
from icntrack.models import AntibioticCourse, Resident, VaccineRecord
from icntrack.state import init_state, save_state
from icntrack.tracker import Tracker

NOW = "2026-01-16T08:00:00+00:00"

SAMPLE_CENSUS = """\
LONG TERM CARE CENSUS REPORT
Date: 01/16/2026
Time: 07:55
Page 1 of 1
Room-Bed\tResident\tDOB\tStatus\tPayor
Unit: Unit 2
251-A\tDOE, JOHN (LON202332)\t5/12/1967\tActive\tMedicare A
251-B\tEMPTY BED\t\t\t
252-A\tSMITH, MARY (LON100200)\t3/4/1940\tActive\tMedicaid
Unit: Unit 3
310-A\tBROWN, ALICE (LON300400)\t11/30/1935\tActive\tPrivate
"""


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite store with schema initialized."""
    db_path = str(tmp_path / "test.db")
    db = IcnDB(db_path)
    db.init_schema()
    yield db
    db.close()


@pytest.fixture
def store():
    """In-memory store holding a freshly created tracker state."""
    s = MemoryStore()
    init_state(s, now=NOW)
    return s


@pytest.fixture
def sample_census():
    return SAMPLE_CENSUS


@pytest.fixture
def sample_residents():
    return {
        "mrn_LON202332": Resident(
            id="mrn_LON202332", display_name="DOE, JOHN", mrn="LON202332",
            room="251-A", unit="Unit 2",
        ),
        "mrn_LON100200": Resident(
            id="mrn_LON100200", display_name="SMITH, MARY", mrn="LON100200",
            room="252-A", unit="Unit 2",
        ),
        "mrn_LON300400": Resident(
            id="mrn_LON300400", display_name="BROWN, ALICE", mrn="LON300400",
            room="310-A", unit="Unit 3",
        ),
    }


@pytest.fixture
def populated_store(store, sample_residents):
    """Store with three residents, one vaccine and two antibiotic courses."""
    state = init_state(store)
    state.residents_by_id.update(sample_residents)
    state.vaccines_by_resident_id["mrn_LON202332"] = [
        VaccineRecord(id="vax_1", resident_id="mrn_LON202332", name="Flu", date="2025-10-01",
                      created=NOW),
    ]
    state.abx_by_resident_id["mrn_LON100200"] = [
        AntibioticCourse(id="abt_1", resident_id="mrn_LON100200", antibiotic="Ceftriaxone",
                         start_date="2026-01-10", indication="UTI", created=NOW),
        AntibioticCourse(id="abt_2", resident_id="mrn_LON100200", antibiotic="Cephalexin",
                         start_date="2025-12-01", stop_date="2025-12-07", created=NOW),
    ]
    save_state(store, state)
    return store


@pytest.fixture
def tracker(populated_store):
    return Tracker(populated_store)
