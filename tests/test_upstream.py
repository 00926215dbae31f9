import json

import httpx
import pytest

from conftest import API_BASE_URL, FIXED_NOW, PASSWORD, TOKEN, USERNAME, FakeFinanceAPI
from myfinance.models import Account
from myfinance.outcomes import (
    ForbiddenError,
    IdentifierMismatchError,
    InvalidCredentialsError,
    NotFoundError,
    TransportFailure,
    UpstreamFailure,
)
from myfinance.sessions import SessionContext
from myfinance.upstream import AccountsClient, TokenClient, build_client


pytestmark = pytest.mark.anyio

SIGNED_IN = SessionContext(username=USERNAME, access_token=TOKEN)


def _accounts(api: FakeFinanceAPI, context: SessionContext = SIGNED_IN):
    client = build_client(API_BASE_URL, context, transport=api.transport)
    return client, AccountsClient(client, clock=lambda: FIXED_NOW)


async def test_client_attaches_bearer_token_and_accept_header() -> None:
    api = FakeFinanceAPI()
    client, accounts = _accounts(api)
    async with client:
        await accounts.list()

    request = api.requests[-1]
    assert request.url == httpx.URL(f"{API_BASE_URL}/accounts")
    assert request.headers["Authorization"] == f"Bearer {TOKEN}"
    assert request.headers["Accept"] == "application/json"


async def test_client_omits_authorization_without_token() -> None:
    api = FakeFinanceAPI()
    client, accounts = _accounts(api, SessionContext())
    async with client:
        with pytest.raises(UpstreamFailure) as excinfo:
            await accounts.list()

    assert "Authorization" not in api.requests[-1].headers
    assert excinfo.value.status_code == 401


async def test_list_sorts_by_name_and_stamps_read_time() -> None:
    api = FakeFinanceAPI()
    api.accounts = {
        1: {"id": 1, "name": "Zeta", "balance": 1.0},
        2: {"id": 2, "name": "alpha", "balance": 2.0, "executedAt": "1999-01-01T00:00:00"},
        3: {"Id": 3, "Name": "Beta", "Balance": 3.0},
    }
    client, accounts = _accounts(api)
    async with client:
        result = await accounts.list()

    assert [account.name for account in result] == ["Beta", "Zeta", "alpha"]
    assert all(account.executed_at == FIXED_NOW for account in result)


async def test_get_maps_missing_account_to_not_found() -> None:
    api = FakeFinanceAPI()
    client, accounts = _accounts(api)
    async with client:
        with pytest.raises(NotFoundError):
            await accounts.get(99)
        account = await accounts.get(1)

    assert account == Account(id=1, name="Savings", balance=100.0, executed_at=FIXED_NOW)


async def test_create_posts_name_and_balance_only() -> None:
    api = FakeFinanceAPI()
    client, accounts = _accounts(api)
    async with client:
        created = await accounts.create(Account(id=42, name="Holiday", balance=10.0, executed_at=FIXED_NOW))

    request = api.requests_to("POST", "/api/accounts")[0]
    assert json.loads(request.content) == {"name": "Holiday", "balance": 10.0}
    assert created is not None and created.id == 3


async def test_update_with_mismatched_identifier_never_calls_upstream() -> None:
    api = FakeFinanceAPI()
    client, accounts = _accounts(api)
    async with client:
        with pytest.raises(IdentifierMismatchError):
            await accounts.update(1, Account(id=2, name="Savings", balance=1.0))

    assert api.requests == []


async def test_update_sends_identifier_without_read_time() -> None:
    api = FakeFinanceAPI()
    client, accounts = _accounts(api)
    async with client:
        result = await accounts.update(1, Account(id=1, name="Rainy day", balance=5.0, executed_at=FIXED_NOW))

    request = api.requests_to("PUT", "/api/accounts/1")[0]
    assert json.loads(request.content) == {"id": 1, "name": "Rainy day", "balance": 5.0}
    assert result is None


async def test_delete_forbidden_maps_to_permission_denied() -> None:
    api = FakeFinanceAPI()
    api.respond("DELETE", "/api/accounts/1", httpx.Response(403))
    client, accounts = _accounts(api)
    async with client:
        with pytest.raises(ForbiddenError) as excinfo:
            await accounts.delete(1)

    assert excinfo.value.user_message == "Permission denied."


async def test_transport_errors_become_transport_failures() -> None:
    api = FakeFinanceAPI()
    api.respond("GET", "/api/accounts", httpx.ConnectTimeout("timed out"))
    client, accounts = _accounts(api)
    async with client:
        with pytest.raises(TransportFailure):
            await accounts.list()


async def test_invalid_json_is_an_upstream_failure() -> None:
    api = FakeFinanceAPI()
    api.respond("GET", "/api/accounts/1", httpx.Response(200, content=b"<html>"))
    client, accounts = _accounts(api)
    async with client:
        with pytest.raises(UpstreamFailure):
            await accounts.get(1)


@pytest.mark.parametrize("body", [{"token": TOKEN}, {"access_token": TOKEN}, TOKEN])
async def test_login_accepts_token_shapes(body) -> None:
    api = FakeFinanceAPI()
    api.token_body = body
    async with build_client(API_BASE_URL, SessionContext(), transport=api.transport) as client:
        token = await TokenClient(client).login(USERNAME, PASSWORD)

    assert token == TOKEN
    assert json.loads(api.requests[-1].content) == {"username": USERNAME, "password": PASSWORD}


@pytest.mark.parametrize("body", ["", "   ", {"token": ""}, {}])
async def test_login_with_empty_token_is_invalid_credentials(body) -> None:
    api = FakeFinanceAPI()
    api.token_body = body
    async with build_client(API_BASE_URL, SessionContext(), transport=api.transport) as client:
        with pytest.raises(InvalidCredentialsError):
            await TokenClient(client).login(USERNAME, PASSWORD)


async def test_login_rejected_by_upstream_is_invalid_credentials() -> None:
    api = FakeFinanceAPI()
    async with build_client(API_BASE_URL, SessionContext(), transport=api.transport) as client:
        with pytest.raises(InvalidCredentialsError):
            await TokenClient(client).login(USERNAME, "wrong")
