"""Browser-facing routes that proxy account operations to the upstream API."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import Settings, load_settings
from .models import AccountForm, LoginForm
from .outcomes import (
    COMMUNICATION_ERROR_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    TransportFailure,
    UpstreamError,
    UpstreamFailure,
    ValidationFailure,
)
from .sessions import SessionContext, consume_flashes, flash, session_context, sign_in, sign_out
from .upstream import AccountsClient, TokenClient, build_client


TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
STATIC_DIR = Path(__file__).resolve().parent / "static"


logger = logging.getLogger("myfinance.web")


def _is_local_url(url: Optional[str]) -> bool:
    if not url:
        return False
    return url.startswith("/") and not url.startswith("//") and not url.startswith("/\\")


def _format_datetime(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.astimezone(timezone.utc).strftime("%d %b %Y %H:%M:%S %Z")


def _format_money(value: object) -> str:
    try:
        return f"{float(value):,.2f}"
    except (TypeError, ValueError):
        return ""


def _validation_errors(exc: ValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        location = error.get("loc") or ("__all__",)
        field = str(location[0])
        message = str(error.get("msg", "Invalid value."))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, []).append(message)
    return errors


def _form_identifier(form: Mapping[str, object]) -> Optional[int]:
    raw = form.get("id")
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """Create the MyFinance web application."""

    if settings is None:
        settings = load_settings()
    if not settings.session_secret:
        raise RuntimeError("A session secret must be configured to use the web interface")

    app = FastAPI(
        title="MyFinance",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.proxy_hosts())
    app.state.settings = settings

    # No max_age: the cookie only lives for the browser session.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie,
        https_only=settings.secure_cookies,
        same_site="lax",
        max_age=None,
    )

    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.globals["format_datetime"] = _format_datetime
    templates.env.filters["money"] = _format_money

    def _context(request: Request) -> SessionContext:
        return session_context(request.session)

    def _client(context: SessionContext) -> httpx.AsyncClient:
        return build_client(
            settings.api_base_url,
            context,
            timeout=settings.request_timeout,
            verify=settings.verify,
            transport=transport,
        )

    def _accounts(client: httpx.AsyncClient) -> AccountsClient:
        if clock is None:
            return AccountsClient(client, settings.accounts_path)
        return AccountsClient(client, settings.accounts_path, clock=clock)

    def _render(
        request: Request,
        template: str,
        *,
        status_code: int = status.HTTP_200_OK,
        **extra: object,
    ) -> HTMLResponse:
        context: Dict[str, object] = {
            "current_user": _context(request),
            "flashes": consume_flashes(request.session),
        }
        context.update(extra)
        return templates.TemplateResponse(request, template, context, status_code=status_code)

    def _redirect(url: object) -> RedirectResponse:
        return RedirectResponse(str(url), status_code=status.HTTP_303_SEE_OTHER)

    def _redirect_to_login(request: Request) -> RedirectResponse:
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        return _redirect(request.url_for("show_login").include_query_params(return_url=target))

    def _redirect_to_error(request: Request, message: str) -> RedirectResponse:
        return _redirect(request.url_for("error_page").include_query_params(message=message))

    def _not_found(request: Request) -> HTMLResponse:
        return _render(request, "not_found.html", status_code=status.HTTP_404_NOT_FOUND)

    def _upstream_error_response(
        request: Request,
        exc: UpstreamError,
        *,
        action: str,
        message: str,
    ):
        if isinstance(exc, NotFoundError):
            return _not_found(request)
        if isinstance(exc, ForbiddenError):
            logger.warning("Upstream API denied permission to %s for %s", action, _context(request).username)
            return _redirect_to_error(request, exc.user_message)
        if isinstance(exc, TransportFailure):
            logger.error("Failed to %s: %s", action, exc, exc_info=exc)
            return _redirect_to_error(request, exc.user_message)
        status_code = exc.status_code if isinstance(exc, UpstreamFailure) else None
        logger.error("Failed to %s. Status: %s", action, status_code)
        return _redirect_to_error(request, message)

    def _render_login(
        request: Request,
        *,
        username: str = "",
        return_url: Optional[str] = None,
        error: Optional[str] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return _render(
            request,
            "login.html",
            status_code=status_code,
            username=username,
            return_url=return_url if _is_local_url(return_url) else None,
            error=error,
        )

    def _render_account_form(
        request: Request,
        *,
        mode: str,
        values: Mapping[str, object],
        errors: Optional[Mapping[str, List[str]]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return _render(
            request,
            "accounts/form.html",
            status_code=status_code,
            mode=mode,
            values=values,
            errors=errors or {},
        )

    def _parse_account_form(form: Mapping[str, object]) -> AccountForm:
        try:
            return AccountForm(
                id=_form_identifier(form),
                name=str(form.get("name") or ""),
                balance=str(form.get("balance") or "0").strip() or "0",
            )
        except ValidationError as exc:
            raise ValidationFailure(_validation_errors(exc)) from exc

    @app.get("/", name="home")
    async def home(request: Request):
        if _context(request).is_authenticated:
            return _redirect(request.url_for("accounts_index"))
        return _redirect(request.url_for("show_login"))

    @app.get("/privacy", response_class=HTMLResponse, name="privacy")
    async def privacy(request: Request):
        return _render(request, "privacy.html")

    @app.get("/error", response_class=HTMLResponse, name="error_page")
    async def error_page(request: Request, message: Optional[str] = None):
        response = _render(
            request,
            "error.html",
            message=message or GENERIC_ERROR_MESSAGE,
            request_id=request.headers.get("x-request-id") or uuid.uuid4().hex,
        )
        response.headers["Cache-Control"] = "no-store, no-cache"
        return response

    @app.get("/login", response_class=HTMLResponse, name="show_login")
    async def login_form(request: Request, return_url: Optional[str] = None):
        if _context(request).is_authenticated:
            return _redirect(request.url_for("accounts_index"))
        return _render_login(request, return_url=return_url)

    @app.post("/login", name="process_login")
    async def process_login(request: Request):
        form = await request.form()
        username = str(form.get("username") or "")
        return_url = str(form.get("return_url") or "") or None
        try:
            credentials = LoginForm(
                username=username,
                password=str(form.get("password") or ""),
                return_url=return_url,
            )
        except ValidationError:
            return _render_login(
                request,
                username=username,
                return_url=return_url,
                error="Please provide both username and password.",
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        try:
            async with _client(SessionContext()) as client:
                token = await TokenClient(client, settings.token_path).login(
                    credentials.username, credentials.password
                )
        except InvalidCredentialsError as exc:
            logger.warning("Failed login attempt for %s", credentials.username)
            return _render_login(
                request,
                username=credentials.username,
                return_url=return_url,
                error=str(exc),
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        except TransportFailure as exc:
            logger.error("Login request failed: %s", exc, exc_info=exc)
            return _render_login(
                request,
                username=credentials.username,
                return_url=return_url,
                error=COMMUNICATION_ERROR_MESSAGE,
                status_code=status.HTTP_502_BAD_GATEWAY,
            )

        sign_in(request.session, credentials.username, token)
        logger.info("User %s signed in", credentials.username)
        if _is_local_url(credentials.return_url):
            return _redirect(credentials.return_url)
        return _redirect(request.url_for("accounts_index"))

    @app.post("/logout", name="logout")
    async def logout(request: Request):
        username = _context(request).username
        sign_out(request.session)
        if username:
            logger.info("User %s signed out", username)
        return _redirect(request.url_for("show_login"))

    @app.get("/accounts", response_class=HTMLResponse, name="accounts_index")
    async def accounts_index(request: Request):
        context = _context(request)
        if not context.is_authenticated:
            return _redirect_to_login(request)
        try:
            async with _client(context) as client:
                accounts = await _accounts(client).list()
        except UpstreamError as exc:
            return _upstream_error_response(
                request, exc, action="list accounts", message="Unable to load accounts."
            )
        return _render(request, "accounts/index.html", accounts=accounts)

    @app.get("/accounts/create", response_class=HTMLResponse, name="accounts_create")
    async def accounts_create_form(request: Request):
        if not _context(request).is_authenticated:
            return _redirect_to_login(request)
        return _render_account_form(request, mode="create", values={"name": "", "balance": "0"})

    @app.post("/accounts/create", name="accounts_create_submit")
    async def accounts_create(request: Request):
        context = _context(request)
        if not context.is_authenticated:
            return _redirect_to_login(request)
        form = await request.form()
        try:
            parsed = _parse_account_form(form)
        except ValidationFailure as exc:
            return _render_account_form(
                request,
                mode="create",
                values={"name": form.get("name") or "", "balance": form.get("balance") or ""},
                errors=exc.errors,
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        try:
            async with _client(context) as client:
                await _accounts(client).create(parsed.to_account())
        except UpstreamError as exc:
            return _upstream_error_response(
                request, exc, action="create account", message="Unable to create account."
            )
        logger.info("Account %r created by %s", parsed.name, context.username)
        flash(request.session, f"Account '{parsed.name}' created.", category="success")
        return _redirect(request.url_for("accounts_index"))

    @app.get("/accounts/{account_id}", response_class=HTMLResponse, name="accounts_detail")
    async def accounts_detail(request: Request, account_id: int):
        context = _context(request)
        if not context.is_authenticated:
            return _redirect_to_login(request)
        try:
            async with _client(context) as client:
                account = await _accounts(client).get(account_id)
        except UpstreamError as exc:
            return _upstream_error_response(
                request, exc, action="load account details", message="Unable to load account details."
            )
        return _render(request, "accounts/detail.html", account=account)

    @app.get("/accounts/{account_id}/edit", response_class=HTMLResponse, name="accounts_edit")
    async def accounts_edit_form(request: Request, account_id: int):
        context = _context(request)
        if not context.is_authenticated:
            return _redirect_to_login(request)
        try:
            async with _client(context) as client:
                account = await _accounts(client).get(account_id)
        except UpstreamError as exc:
            return _upstream_error_response(
                request, exc, action="load account", message="Unable to load account."
            )
        return _render_account_form(
            request,
            mode="edit",
            values={"id": account.id, "name": account.name, "balance": account.balance},
        )

    @app.post("/accounts/{account_id}/edit", name="accounts_edit_submit")
    async def accounts_edit(request: Request, account_id: int):
        context = _context(request)
        if not context.is_authenticated:
            return _redirect_to_login(request)
        form = await request.form()
        if _form_identifier(form) != account_id:
            return _not_found(request)
        try:
            parsed = _parse_account_form(form)
        except ValidationFailure as exc:
            return _render_account_form(
                request,
                mode="edit",
                values={
                    "id": account_id,
                    "name": form.get("name") or "",
                    "balance": form.get("balance") or "",
                },
                errors=exc.errors,
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        try:
            async with _client(context) as client:
                await _accounts(client).update(account_id, parsed.to_account())
        except UpstreamError as exc:
            return _upstream_error_response(
                request, exc, action="update account", message="Unable to update account."
            )
        logger.info("Account %s updated by %s", account_id, context.username)
        flash(request.session, f"Account '{parsed.name}' updated.", category="success")
        return _redirect(request.url_for("accounts_index"))

    @app.get("/accounts/{account_id}/delete", response_class=HTMLResponse, name="accounts_delete")
    async def accounts_delete_confirm(request: Request, account_id: int):
        context = _context(request)
        if not context.is_authenticated:
            return _redirect_to_login(request)
        try:
            async with _client(context) as client:
                account = await _accounts(client).get(account_id)
        except UpstreamError as exc:
            return _upstream_error_response(
                request, exc, action="load account", message="Unable to load account."
            )
        return _render(request, "accounts/delete.html", account=account)

    @app.post("/accounts/{account_id}/delete", name="accounts_delete_submit")
    async def accounts_delete(request: Request, account_id: int):
        context = _context(request)
        if not context.is_authenticated:
            return _redirect_to_login(request)
        try:
            async with _client(context) as client:
                await _accounts(client).delete(account_id)
        except UpstreamError as exc:
            return _upstream_error_response(
                request, exc, action="delete account", message="Unable to delete account."
            )
        logger.info("Account %s deleted by %s", account_id, context.username)
        flash(request.session, "Account deleted.", category="success")
        return _redirect(request.url_for("accounts_index"))

    return app


__all__ = ["create_app"]
