"""Cookie session helpers for the signed-in user and their bearer token."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, MutableMapping, Optional


USERNAME_KEY = "username"
ACCESS_TOKEN_KEY = "access_token"
FLASH_KEY = "flash_messages"


@dataclass(frozen=True)
class SessionContext:
    """Per-request snapshot of the session passed into the upstream layer."""

    username: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)


def session_context(session: Mapping[str, object]) -> SessionContext:
    if not isinstance(session, Mapping):
        return SessionContext()
    username = session.get(USERNAME_KEY)
    token = session.get(ACCESS_TOKEN_KEY)
    return SessionContext(
        username=username if isinstance(username, str) else None,
        access_token=token if isinstance(token, str) and token.strip() else None,
    )


def sign_in(session: MutableMapping[str, object], username: str, token: str) -> None:
    session.clear()
    session[USERNAME_KEY] = username
    session[ACCESS_TOKEN_KEY] = token


def sign_out(session: MutableMapping[str, object]) -> None:
    session.clear()


def flash(session: MutableMapping[str, object], message: str, *, category: str = "info") -> None:
    messages = session.get(FLASH_KEY)
    if not isinstance(messages, list):
        messages = []
    messages.append({"message": message, "category": category})
    session[FLASH_KEY] = messages


def consume_flashes(session: MutableMapping[str, object]) -> List[Dict[str, str]]:
    messages = session.pop(FLASH_KEY, [])
    if isinstance(messages, list):
        return messages
    return []


__all__ = [
    "SessionContext",
    "consume_flashes",
    "flash",
    "session_context",
    "sign_in",
    "sign_out",
]
