import os
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ALCHEMIST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
for _name in ("ALCHEMIST_GEMINI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
    os.environ.pop(_name, None)

from alchemist.store import STORE


@pytest.fixture(autouse=True)
def reset_store():
    STORE.reset()
    yield


@pytest.fixture
def clients_rows():
    return [
        {
            "ClientID": "C1",
            "PriorityLevel": "3",
            "RequestedTaskIDs": "T1,T2",
            "GroupTag": "GroupA",
            "AttributesJSON": '{"location": "NY"}',
        },
        {
            "ClientID": "C2",
            "PriorityLevel": "5",
            "RequestedTaskIDs": "T2",
            "GroupTag": "GroupB",
            "AttributesJSON": "{}",
        },
    ]


@pytest.fixture
def workers_rows():
    return [
        {"WorkerID": "W1", "AvailableSlots": "[1,2,3]", "Skills": '["python", "sql"]', "MaxLoadPerPhase": "2"},
        {"WorkerID": "W2", "AvailableSlots": "[2,4]", "Skills": '["ml"]', "MaxLoadPerPhase": "1"},
    ]


@pytest.fixture
def tasks_rows():
    return [
        {"TaskID": "T1", "Duration": "2", "PreferredPhases": "1-3", "RequiredSkills": '["python"]', "MaxConcurrent": "1"},
        {"TaskID": "T2", "Duration": "1", "PreferredPhases": "[2,4]", "RequiredSkills": '["ml"]', "MaxConcurrent": "2"},
        {"TaskID": "T3", "Duration": "1", "PreferredPhases": "2", "RequiredSkills": "[]", "MaxConcurrent": "1"},
    ]
