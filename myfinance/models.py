"""View models shuttled between the upstream API and the rendered pages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


@dataclass(frozen=True)
class Account:
    """An account as displayed by the front end.

    ``executed_at`` is stamped when the record is read for display and is
    never part of an upstream payload.
    """

    id: int
    name: str
    balance: float
    executed_at: Optional[datetime] = None

    @staticmethod
    def from_payload(payload: Mapping[str, Any], *, executed_at: Optional[datetime] = None) -> "Account":
        """Create an :class:`Account` from an upstream JSON object."""
        if not isinstance(payload, Mapping):
            raise ValueError("Account payload must be a JSON object")
        raw_id = _pick(payload, "id", "Id")
        raw_name = _pick(payload, "name", "Name")
        raw_balance = _pick(payload, "balance", "Balance")
        if raw_id is None or raw_name is None:
            raise ValueError("Account payload is missing 'id' or 'name'")
        return Account(
            id=int(raw_id),
            name=str(raw_name),
            balance=float(raw_balance or 0.0),
            executed_at=executed_at,
        )

    def to_payload(self, *, include_id: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "balance": self.balance}
        if include_id:
            payload = {"id": self.id, **payload}
        return payload


class AccountForm(BaseModel):
    """Account fields submitted through the create and edit forms."""

    id: Optional[int] = None
    name: str = Field(..., max_length=200)
    balance: float = Field(0.0, allow_inf_nan=False)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Name is required.")
        return cleaned

    def to_account(self) -> Account:
        return Account(id=self.id or 0, name=self.name, balance=self.balance)


class LoginForm(BaseModel):
    username: str
    password: str
    return_url: Optional[str] = None

    @field_validator("username", "password")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("This field is required.")
        return value


__all__ = ["Account", "AccountForm", "LoginForm"]
