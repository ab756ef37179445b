import copy
import threading

import pytest

from wwdc_library.store.sqlite_store import EntityStore
from wwdc_library.sync.client import NetworkEmptyResponse, ServiceClient
from wwdc_library.sync.events import Event, EventBus

INDEX_URL = "https://config.example.com/index.json"
VIDEOS_URL = "https://catalog.example.com/videos.json"
SESSIONS_URL = "https://catalog.example.com/sessions.json"
TRANSCRIPT_BASE_URL = "https://transcripts.example.com/"


class FakeClient(ServiceClient):
    """ServiceClient serving canned documents keyed by URL."""

    def __init__(self, responses=None):
        super().__init__(
            index_url=INDEX_URL,
            transcript_base_url=TRANSCRIPT_BASE_URL,
            timeout=5,
        )
        self.responses = dict(responses or {})
        self.requested = []
        self._lock = threading.Lock()

    def get_json(self, url, headers=None):
        with self._lock:
            self.requested.append((url, headers))
        response = self.responses.get(url)
        if response is None:
            raise NetworkEmptyResponse(f"No data returned from {url}")
        if isinstance(response, Exception):
            raise response
        return copy.deepcopy(response)

    def urls(self):
        with self._lock:
            return [url for url, _ in self.requested]


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus):
        self.events = []
        self._lock = threading.Lock()
        bus.subscribe(Event, self._record)

    def _record(self, event):
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type):
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]


def config_doc(**overrides):
    doc = {
        "videosURL": VIDEOS_URL,
        "sessionsURL": SESSIONS_URL,
        "videosUpdatedAt": "",
        "scheduleEnabled": False,
        "ignoreCache": False,
        "isWWDCWeek": False,
    }
    doc.update(overrides)
    return doc


def session_record(session_id, year, **overrides):
    record = {
        "id": session_id,
        "year": year,
        "date": f"{year}-06-13",
        "track": "Developer Tools",
        "focus": ["macOS", "iOS"],
        "title": f"Session {session_id}",
        "description": f"About session {session_id}",
        "url": f"https://devstreaming.example.com/{year}/{session_id}_sd.mp4",
        "download_hd": f"https://devstreaming.example.com/{year}/{session_id}_hd_session.mp4",
        "slides": f"https://devstreaming.example.com/{year}/{session_id}.pdf",
        "images": {"shelf": f"https://devstreaming.example.com/{year}/{session_id}.jpg"},
        "duration": 3600,
    }
    record.update(overrides)
    return record


def catalog_doc(records, updated="2016-06-20T10:00:00Z"):
    return {"updated": updated, "sessions": records}


def transcript_doc(text="Hello and welcome.", annotations=None, timecodes=None):
    return {
        "transcript": text,
        "annotations": annotations if annotations is not None else ["Hello", "and welcome."],
        "timecodes": timecodes if timecodes is not None else [0.0, 1.5],
    }


def transcript_url(year, session_id):
    return f"{TRANSCRIPT_BASE_URL.rstrip('/')}/{year}/sessions/{session_id}"


@pytest.fixture
def store(tmp_path):
    return EntityStore(db_path=tmp_path / "wwdc.sqlite")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def client():
    return FakeClient()
