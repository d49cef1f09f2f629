import json
import os
import sys
from datetime import date
from pathlib import Path

import pytest
import sentry_sdk
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Disable outbound Sentry calls during tests
sentry_sdk.init = lambda *args, **kwargs: None  # type: ignore[assignment]
os.environ["SENTRY_DSN"] = ""
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["GOOGLE_MAPS_API_KEY"] = ""
test_data_dir = ROOT / "artifacts" / "test-data"
test_data_dir.mkdir(parents=True, exist_ok=True)
os.environ["DATA_DIR"] = str(test_data_dir)

SEED_PATH = ROOT / "backend" / "app" / "data" / "nightlife.json"
(test_data_dir / "nightlife.json").write_text(SEED_PATH.read_text(encoding="utf-8"), encoding="utf-8")

from backend.app.api.routes import chat as chat_routes  # noqa: E402
from backend.app.chat.engine import ChatEngine  # noqa: E402
from backend.app.geo_distance import DistanceUnavailable, parse_coordinates, straight_line  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.openai_async import LLMUnavailable  # noqa: E402
from backend.app.settings import settings  # noqa: E402
from backend.app.storage import DocumentStore  # noqa: E402

# all seed events dated 2026-11 or later count as upcoming
TODAY = date(2026, 10, 1)
DUBAI_USER = (25.10, 55.20)


class FakeLanguage:
    """Scripted stand-in for the language model.

    A reply of None makes the call raise LLMUnavailable; dict replies are JSON-encoded.
    """

    def __init__(self, *, intent=None, plan=None, response="Here is what I found."):
        self.intent_reply = intent
        self.plan_reply = plan
        self.response_reply = response
        self.calls: list[dict] = []

    @staticmethod
    def _reply(value):
        if value is None:
            raise LLMUnavailable("model offline")
        if isinstance(value, Exception):
            raise value
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value

    async def classify_intent(self, system_prompt, messages):
        self.calls.append({"kind": "intent", "system": system_prompt, "messages": messages})
        return self._reply(self.intent_reply)

    async def generate_text(self, system_prompt, prompt, *, max_tokens=None):
        # the planner is the only caller that sets max_tokens
        kind = "plan" if max_tokens is not None else "response"
        self.calls.append({"kind": kind, "system": system_prompt, "prompt": prompt})
        return self._reply(self.plan_reply if kind == "plan" else self.response_reply)

    def of_kind(self, kind):
        return [call for call in self.calls if call["kind"] == kind]


async def coordinate_distance(lat, lng, link, **_kwargs):
    coords = parse_coordinates(link)
    if coords is None:
        raise DistanceUnavailable(f"no coordinates in {link!r}")
    return straight_line((lat, lng), coords)


def load_seed_store() -> DocumentStore:
    return DocumentStore(json.loads(SEED_PATH.read_text(encoding="utf-8")))


@pytest.fixture
def store() -> DocumentStore:
    return load_seed_store()


@pytest.fixture
def make_engine(store):
    def factory(language, distance_fn=coordinate_distance):
        return ChatEngine(store, language, distance_fn=distance_fn, clock=lambda: TODAY)

    return factory


@pytest.fixture(scope="session")
def client() -> TestClient:
    return TestClient(app, base_url="http://api.testserver")


@pytest.fixture(autouse=True)
def isolate_settings():
    settings.OPENROUTER_API_KEY = None
    settings.GOOGLE_MAPS_API_KEY = None
    settings.SENTRY_DSN = None
    yield
    app.dependency_overrides.pop(chat_routes.get_engine, None)
