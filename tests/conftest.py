import json
import sys
from pathlib import Path

import pytest
import requests

sys.path.append(str(Path(__file__).resolve().parents[1]))


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None, url=""):
        self.status_code = status_code
        self.url = url
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        return json.loads(self.text)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}", response=self)


class FakeSession:
    """Stands in for requests.Session; replies are looked up by URL."""

    def __init__(self, replies=None):
        self.replies = dict(replies or {})
        self.calls = []

    def _reply(self, url):
        reply = self.replies[url]
        if not isinstance(reply, FakeResponse):
            reply = FakeResponse(reply)
        reply.url = url
        return reply

    def get(self, url, params=None, timeout=None):
        self.calls.append(("GET", url, dict(params or {})))
        return self._reply(url)

    def post(self, url, data=None, timeout=None):
        self.calls.append(("POST", url, dict(data or {})))
        return self._reply(url)


@pytest.fixture
def fake_session():
    return FakeSession()
