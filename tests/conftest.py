import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Tuple, Union

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from myfinance.config import Settings
from myfinance import create_app


API_BASE_URL = "https://finance.test/api"
USERNAME = "alice"
PASSWORD = "wonderland"
TOKEN = "upstream-token-123"
FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakeFinanceAPI:
    """In-process stand-in for the upstream finance API."""

    def __init__(self) -> None:
        self.accounts: Dict[int, Dict[str, object]] = {
            1: {"id": 1, "name": "Savings", "balance": 100.0},
            2: {"id": 2, "name": "Checking", "balance": 25.5},
        }
        self.requests: List[httpx.Request] = []
        self.overrides: Dict[Tuple[str, str], Union[httpx.Response, Exception]] = {}
        self.token_body: object = {"token": TOKEN}
        self._next_id = 3

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def respond(self, method: str, path: str, result: Union[httpx.Response, Exception]) -> None:
        self.overrides[(method, path)] = result

    def requests_to(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        override = self.overrides.get((request.method, request.url.path))
        if isinstance(override, Exception):
            raise override
        if override is not None:
            return override

        path = request.url.path
        if path == "/api/token" and request.method == "POST":
            body = json.loads(request.content)
            if body.get("username") == USERNAME and body.get("password") == PASSWORD:
                return httpx.Response(200, json=self.token_body)
            return httpx.Response(401, json={"detail": "invalid credentials"})

        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401)

        if path == "/api/accounts":
            if request.method == "GET":
                return httpx.Response(200, json=list(self.accounts.values()))
            if request.method == "POST":
                body = json.loads(request.content)
                record = {"id": self._next_id, **body}
                self.accounts[self._next_id] = record
                self._next_id += 1
                return httpx.Response(201, json=record)

        if path.startswith("/api/accounts/"):
            account_id = int(path.rsplit("/", 1)[1])
            if account_id not in self.accounts:
                return httpx.Response(404)
            if request.method == "GET":
                return httpx.Response(200, json=self.accounts[account_id])
            if request.method == "PUT":
                self.accounts[account_id] = json.loads(request.content)
                return httpx.Response(204)
            if request.method == "DELETE":
                del self.accounts[account_id]
                return httpx.Response(204)

        return httpx.Response(405)


@pytest.fixture
def upstream() -> FakeFinanceAPI:
    return FakeFinanceAPI()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_base_url=API_BASE_URL, session_secret="tests-secret-key")


@pytest.fixture
def client(settings, upstream):
    app = create_app(settings, transport=upstream.transport, clock=lambda: FIXED_NOW)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def signed_in(client, upstream):
    response = client.post(
        "/login",
        data={"username": USERNAME, "password": PASSWORD},
        follow_redirects=False,
    )
    assert response.status_code == 303
    upstream.requests.clear()
    return client
