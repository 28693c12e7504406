import copy
import os
import sys
from datetime import datetime, timezone

import pytest

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from rdso import db  # noqa: E402
from rdso.events import EventRecorder  # noqa: E402
from rdso.memstore import MemoryResourceStore, MemorySpecificationStore, RecordingEventSink  # noqa: E402
from rdso.reconciler import Reconciler  # noqa: E402

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

BASE_SPEC = {
    "image": "container-registry.oracle.com/database/ords:24.1.1",
    "workloadType": "Deployment",
    "replicas": 1,
    "autoRestart": True,
    "globalSettings": {},
    "poolSettings": [
        {
            "poolName": "pdb1",
            "dbSecret": {"secretName": "pdb1-db-secret"},
            "dbHostname": "db.example.com",
            "dbPort": 1521,
            "dbServicename": "FREEPDB1",
        }
    ],
}


@pytest.fixture(autouse=True)
def journal(tmp_path):
    """Every test writes to its own sqlite journal."""
    db.configure(str(tmp_path / "journal.db"))


@pytest.fixture
def make_spec():
    def _make(**overrides) -> dict:
        spec = copy.deepcopy(BASE_SPEC)
        spec.update(overrides)
        return spec

    return _make


@pytest.fixture
def make_pool():
    def _make(name: str, **extra) -> dict:
        out = {"poolName": name, "dbSecret": {"secretName": f"{name.lower()}-db-secret"}}
        out.update(extra)
        return out

    return _make


@pytest.fixture
def specs():
    return MemorySpecificationStore()


@pytest.fixture
def store():
    return MemoryResourceStore()


@pytest.fixture
def sink():
    return RecordingEventSink()


@pytest.fixture
def reconciler(specs, store, sink):
    return Reconciler(specs, store, EventRecorder(sink), clock=lambda: FIXED_NOW)
