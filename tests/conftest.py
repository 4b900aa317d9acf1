import pytest
import requests
from fastapi.testclient import TestClient
from requests.structures import CaseInsensitiveDict

from main import app


class FakeResponse:
    def __init__(self, text="", status_code=200, headers=None):
        self.text = text
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})


class FakeGateway:
    """Stands in for requests.post and records every call."""

    def __init__(self):
        self.calls = []
        self.response = FakeResponse('{"code": 0}')
        self.error = None

    def reply(self, text="", status_code=200, headers=None):
        self.response = FakeResponse(text, status_code, headers)

    def __call__(self, url, data=None, **kwargs):
        self.calls.append({"url": url, "data": data, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def gateway_env(monkeypatch):
    for var in ["LG_APP_ID", "LG_SECRET_KEY", "NOTIFY_URL", "GATEWAY_URL", "GATEWAY_TIMEOUT"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("LG_APP_ID", "app-123")
    monkeypatch.setenv("LG_SECRET_KEY", "secret-xyz")
    monkeypatch.setenv("NOTIFY_URL", "https://merchant.example/notify")
    monkeypatch.setenv("GATEWAY_URL", "https://gateway.example/api/order/create")


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr(requests, "post", fake)
    return fake


@pytest.fixture
def client():
    return TestClient(app, follow_redirects=False)
