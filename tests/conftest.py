"""
Pytest fixtures for the bulk job modules.

Everything runs against scripted transports and mocked clients; no org needed.
"""
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from requests.structures import CaseInsensitiveDict

# Ensure modules are importable from repo root
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from bulk_client import BulkJobClient, Job  # noqa: E402
from http_transport import HttpResponse  # noqa: E402
from org_connection import Session  # noqa: E402

INSTANCE_URL = "https://acme.my.salesforce.com"
INGEST_URL = f"{INSTANCE_URL}/services/data/v61.0/jobs/ingest"
QUERY_URL = f"{INSTANCE_URL}/services/data/v61.0/jobs/query"


def json_response(payload, status: int = 200) -> HttpResponse:
    return HttpResponse(status_code=status, headers=CaseInsensitiveDict({"Content-Type": "application/json"}),
                        content=json.dumps(payload).encode("utf-8"))


def csv_response(text: str, status: int = 200, headers=None) -> HttpResponse:
    return HttpResponse(status_code=status, headers=CaseInsensitiveDict(headers or {}),
                        content=text.encode("utf-8"))


def make_job(state: str, job_id: str = "750xx0000000001", **fields) -> Job:
    payload = {"id": job_id, "state": state}
    payload.update(fields)
    return Job.from_payload(payload)


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def session():
    return Session(instance_url=INSTANCE_URL, api_version="61.0", access_token="00Dxx!token")


@pytest.fixture
def transport():
    """Transport whose request() responses are set per test via side_effect."""
    return MagicMock()


@pytest.fixture
def client(session, transport):
    return BulkJobClient(session, transport)


@pytest.fixture
def mock_client():
    """BulkJobClient stand-in for orchestrator tests."""
    return MagicMock(spec=BulkJobClient)


@pytest.fixture
def fake_clock():
    return FakeClock()
