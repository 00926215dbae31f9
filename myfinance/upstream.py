"""HTTP clients for the upstream finance API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from operator import attrgetter
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Protocol, Type, TypeVar

import httpx

from .models import Account
from .outcomes import (
    IdentifierMismatchError,
    InvalidCredentialsError,
    TransportFailure,
    UpstreamFailure,
    raise_for_outcome,
)
from .sessions import SessionContext

logger = logging.getLogger("myfinance.upstream")


class _Resource(Protocol):
    id: int

    @staticmethod
    def from_payload(payload: Mapping[str, Any], *, executed_at: Optional[datetime] = None) -> Any:
        ...

    def to_payload(self, *, include_id: bool = True) -> Dict[str, Any]:
        ...


ModelT = TypeVar("ModelT", bound=_Resource)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_client(
    base_url: str,
    context: SessionContext,
    *,
    timeout: Optional[float] = None,
    verify: Optional[str | bool] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Return a client for one inbound request.

    The bearer header is only attached when the session holds a token; an
    anonymous request is still sent and left for the upstream API to reject.
    """

    headers = {"Accept": "application/json"}
    if context.access_token:
        headers["Authorization"] = f"Bearer {context.access_token}"

    options: Dict[str, Any] = {}
    if timeout is not None:
        options["timeout"] = timeout
    if verify is not None:
        options["verify"] = verify
    if transport is not None:
        options["transport"] = transport
    return httpx.AsyncClient(base_url=base_url, headers=headers, **options)


async def _send(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    try:
        return await client.request(method, url, **kwargs)
    except httpx.RequestError as exc:
        raise TransportFailure(f"{method} {url} failed: {exc!r}") from exc


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamFailure(response.status_code, "Upstream API returned an invalid JSON body") from exc


class ResourceClient(Generic[ModelT]):
    """CRUD proxy for one upstream resource collection."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        path: str,
        model: Type[ModelT],
        *,
        clock: Callable[[], datetime] = _utcnow,
        sort_key: Callable[[ModelT], Any] = attrgetter("name"),
    ) -> None:
        self._client = client
        self._path = path.strip("/")
        self._model = model
        self._clock = clock
        self._sort_key = sort_key

    def _item_path(self, identifier: int) -> str:
        return f"{self._path}/{identifier}"

    def _decode_item(self, payload: Any, status_code: int, executed_at: datetime) -> ModelT:
        try:
            return self._model.from_payload(payload, executed_at=executed_at)
        except (TypeError, ValueError) as exc:
            raise UpstreamFailure(status_code, f"Unexpected {self._path} payload: {exc}") from exc

    async def list(self) -> List[ModelT]:
        response = await _send(self._client, "GET", self._path)
        raise_for_outcome(response)
        payload = _decode_json(response)
        if payload is None:
            payload = []
        if not isinstance(payload, list):
            raise UpstreamFailure(response.status_code, f"Expected a list of {self._path}")
        executed_at = self._clock()
        items = [self._decode_item(item, response.status_code, executed_at) for item in payload]
        return sorted(items, key=self._sort_key)

    async def get(self, identifier: int) -> ModelT:
        response = await _send(self._client, "GET", self._item_path(identifier))
        raise_for_outcome(response)
        return self._decode_item(_decode_json(response), response.status_code, self._clock())

    async def create(self, record: ModelT) -> Optional[ModelT]:
        response = await _send(
            self._client,
            "POST",
            self._path,
            json=record.to_payload(include_id=False),
        )
        raise_for_outcome(response)
        return self._decode_optional(response)

    async def update(self, identifier: int, record: ModelT) -> Optional[ModelT]:
        if record.id != identifier:
            raise IdentifierMismatchError(identifier, record.id)
        response = await _send(
            self._client,
            "PUT",
            self._item_path(identifier),
            json=record.to_payload(include_id=True),
        )
        raise_for_outcome(response)
        return self._decode_optional(response)

    async def delete(self, identifier: int) -> None:
        response = await _send(self._client, "DELETE", self._item_path(identifier))
        raise_for_outcome(response)

    def _decode_optional(self, response: httpx.Response) -> Optional[ModelT]:
        # Write endpoints may answer 204 or echo the stored record.
        if not response.content:
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, Mapping):
            return None
        try:
            return self._model.from_payload(payload, executed_at=self._clock())
        except (TypeError, ValueError):
            logger.debug("Ignoring unrecognised %s write response body", self._path)
            return None


class AccountsClient(ResourceClient[Account]):
    def __init__(
        self,
        client: httpx.AsyncClient,
        path: str = "accounts",
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__(client, path, Account, clock=clock)


def _extract_token(payload: Any) -> str:
    if isinstance(payload, str):
        return payload.strip()
    if isinstance(payload, Mapping):
        for key in ("token", "access_token", "accessToken"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


class TokenClient:
    """Exchange user credentials for a bearer token."""

    def __init__(self, client: httpx.AsyncClient, path: str = "token") -> None:
        self._client = client
        self._path = path.strip("/")

    async def login(self, username: str, password: str) -> str:
        response = await _send(
            self._client,
            "POST",
            self._path,
            json={"username": username, "password": password},
        )
        if not response.is_success:
            raise InvalidCredentialsError()
        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidCredentialsError() from exc
        token = _extract_token(payload)
        if not token:
            raise InvalidCredentialsError()
        return token


__all__ = ["AccountsClient", "ResourceClient", "TokenClient", "build_client"]
