"""Configuration management for the MyFinance web front end."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml


_ENV_OVERRIDES = {
    "MYFINANCE_API_BASE_URL": "api_base_url",
    "MYFINANCE_SESSION_SECRET": "session_secret",
    "MYFINANCE_TOKEN_PATH": "token_path",
    "MYFINANCE_ACCOUNTS_PATH": "accounts_path",
    "MYFINANCE_REQUEST_TIMEOUT": "request_timeout",
    "MYFINANCE_API_VERIFY": "verify",
    "MYFINANCE_SESSION_SECURE": "secure_cookies",
    "MYFINANCE_TRUSTED_PROXIES": "trusted_proxies",
}


def _env_flag(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_verify_setting(value: object) -> Optional[str | bool]:
    if value is None or isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"", "default"}:
        return None
    if lowered in {"0", "false", "no", "off"}:
        return False
    if lowered in {"1", "true", "yes", "on"}:
        return True
    return str(Path(str(value)).expanduser())


def _normalize_base_url(base_url: object) -> str:
    cleaned = str(base_url or "").strip()
    if not cleaned:
        raise ValueError("Upstream API base URL must not be empty")
    return cleaned.rstrip("/")


def _normalize_path(path: object, default: str) -> str:
    cleaned = str(path or "").strip().strip("/")
    return cleaned or default


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the web front end.

    ``token_path`` and ``accounts_path`` are always resolved relative to
    ``api_base_url``, including its path prefix; a leading slash is dropped.
    To reach an absolute path such as ``/api/Token``, set the base URL to the
    bare origin and include the prefix in both paths.
    """

    api_base_url: str
    session_secret: str
    token_path: str = "token"
    accounts_path: str = "accounts"
    request_timeout: Optional[float] = None
    verify: Optional[str | bool] = None
    session_cookie: str = "myfinance_session"
    secure_cookies: bool = False
    trusted_proxies: str = "*"

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from raw mapping data."""
        required_fields = {"api_base_url", "session_secret"}
        missing = {key for key in required_fields if not data.get(key)}
        if missing:
            raise ValueError(f"Missing required configuration fields: {', '.join(sorted(missing))}")

        timeout = data.get("request_timeout")
        return Settings(
            api_base_url=_normalize_base_url(data["api_base_url"]),
            session_secret=str(data["session_secret"]),
            token_path=_normalize_path(data.get("token_path"), "token"),
            accounts_path=_normalize_path(data.get("accounts_path"), "accounts"),
            request_timeout=float(timeout) if timeout not in (None, "") else None,
            verify=_parse_verify_setting(data.get("verify")),
            session_cookie=str(data.get("session_cookie") or "myfinance_session"),
            secure_cookies=_env_flag(data.get("secure_cookies"), False),
            trusted_proxies=str(data.get("trusted_proxies") or "*"),
        )

    def proxy_hosts(self) -> list[str] | str:
        hosts = [item.strip() for item in self.trusted_proxies.split(",") if item.strip()]
        if not hosts or hosts == ["*"]:
            return "*"
        return hosts

    def masked(self) -> "Settings":
        return replace(self, session_secret="********")


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "myfinance.yaml").resolve(strict=False)
    return candidate


def _read_config_file(config_path: Path) -> Dict[str, object]:
    if not config_path.is_file():
        return {}
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    section = raw.get("myfinance", raw)
    if not isinstance(section, dict):
        raise ValueError("The 'myfinance' configuration section must be a mapping")
    return dict(section)


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from the YAML file and overlay environment variables."""
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("MYFINANCE_CONFIG"))

    data = _read_config_file(config_path)
    for variable, key in _ENV_OVERRIDES.items():
        value = env.get(variable)
        if value is not None and value.strip():
            data[key] = value.strip()
    return Settings.from_dict(data)


__all__ = ["Settings", "load_settings", "resolve_config_path"]
