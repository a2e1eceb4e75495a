# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory and HTTP schemas for the mailbox notifier.

The API is a thin layer over :meth:`MailboxNotifierCore.handle_command`:

- users and their filter rules
- monitored accounts (add, list, update, delete)
- monitor control (start, stop, restart) under ``/commands``
- health check, status and Prometheus metrics

Every endpoint except ``/health`` requires the ``X-API-Token`` header when a
token is configured.

Example::

    core = MailboxNotifierCore(settings)
    app = create_app(core, api_token="secret-token")
    uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from typing import Any, AsyncContextManager, Callable, Dict, List, Literal, Optional, Union
import logging

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from .core import MailboxNotifierCore

logger = logging.getLogger(__name__)

app = FastAPI(title="Mailbox Notifier")
service: MailboxNotifierCore | None = None
API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)
app.state.api_token = None

_ERROR_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "duplicate": status.HTTP_409_CONFLICT,
}


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    When no token is configured the dependency is bypassed.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


class CommandStatus(BaseModel):
    """Base schema shared by most responses produced by the service."""
    ok: bool
    error: Optional[str] = None


class BasicOkResponse(CommandStatus):
    pass


class StatusResponse(CommandStatus):
    users: int = 0
    accounts: int = 0
    active_monitors: int = 0


class UserPayload(BaseModel):
    """Chat user registered with ``addUser``."""
    id: int
    chat_id: Optional[Union[int, str]] = None
    login: Optional[str] = None


class UserInfo(BaseModel):
    id: int
    login: str = ""
    chat_id: Union[int, str]
    patterns: int = 0


class UserResponse(CommandStatus):
    user: UserInfo


class AccountPayload(BaseModel):
    """Mailbox to monitor; ``host`` may carry the port as ``host:port``."""
    user_id: int
    host: str
    port: Optional[int] = None
    login: str
    password: str
    poll_interval: Union[int, str]


class AccountUpdatePayload(BaseModel):
    password: Optional[str] = None
    poll_interval: Optional[Union[int, str]] = None


class MonitorInfo(BaseModel):
    """Runtime state of an account monitor."""
    phase: str
    cursor: Optional[int] = None
    connection_retries: int = 0
    auth_retries: int = 0
    connection_ok: bool = False
    restart_requested: bool = False
    running: bool = False
    retry_pending: bool = False


class AccountInfo(BaseModel):
    """Monitored account as returned by ``listAccounts``."""
    id: int
    user_id: int
    host: str
    port: int
    login: str
    poll_interval: int
    active: bool
    summary: str
    monitor: Optional[MonitorInfo] = None


class AccountResponse(CommandStatus):
    account: AccountInfo
    restarted: Optional[bool] = None


class AccountsResponse(CommandStatus):
    accounts: List[AccountInfo]


class PatternPayload(BaseModel):
    """One filter rule: the field to match and the substring to look for."""
    kind: Literal["subject", "from_email", "from_name"]
    value: str


class PatternInfo(BaseModel):
    id: int
    subject: str = ""
    from_email: str = ""
    from_name: str = ""
    description: str


class PatternResponse(CommandStatus):
    pattern: PatternInfo


class PatternsResponse(CommandStatus):
    patterns: List[PatternInfo]


class RemovedResponse(CommandStatus):
    removed: bool


def _checked(result: Dict[str, Any]) -> Dict[str, Any]:
    """Raise the HTTP error matching a failed command result."""
    if result.get("ok") is True:
        return result
    code = _ERROR_STATUS.get(result.get("reason"), status.HTTP_400_BAD_REQUEST)
    raise HTTPException(code, result.get("error") or "command failed")


def create_app(
    svc: MailboxNotifierCore,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    svc:
        Instance of :class:`mailbox_notifier.core.MailboxNotifierCore`
        executing each command.
    api_token:
        Optional secret required in the ``X-API-Token`` header.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn.
    """
    global service
    service = svc

    if lifespan is not None:
        api = FastAPI(title="Mailbox Notifier", lifespan=lifespan)
    else:
        api = app

    api.state.api_token = api_token
    router = APIRouter(prefix="/commands", tags=["commands"], dependencies=[auth_dependency])

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with full details."""
        logger.error("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    def _service() -> MailboxNotifierCore:
        if not service:
            raise HTTPException(500, "Service not initialized")
        return service

    @api.get("/health")
    async def health():
        """Health check endpoint (no authentication required)."""
        return {"status": "ok"}

    @api.get("/status", response_model=StatusResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def get_status():
        """Return counts of users, accounts and running monitors."""
        return StatusResponse.model_validate(_service().status())

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Expose Prometheus metrics collected by the monitors."""
        return Response(content=_service().metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    @api.post("/user", response_model=UserResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def add_user(payload: UserPayload):
        """Register a chat user or refresh its chat id."""
        result = await _service().handle_command("addUser", payload.model_dump(exclude_none=True))
        return UserResponse.model_validate(_checked(result))

    @api.post(
        "/user/{user_id}/pattern",
        response_model=PatternResponse,
        response_model_exclude_none=True,
        dependencies=[auth_dependency],
    )
    async def add_pattern(user_id: int, payload: PatternPayload):
        """Add a filter rule to a user."""
        result = await _service().handle_command("addPattern", {"user_id": user_id, **payload.model_dump()})
        return PatternResponse.model_validate(_checked(result))

    @api.get(
        "/user/{user_id}/patterns",
        response_model=PatternsResponse,
        response_model_exclude_none=True,
        dependencies=[auth_dependency],
    )
    async def list_patterns(user_id: int):
        result = await _service().handle_command("listPatterns", {"user_id": user_id})
        return PatternsResponse.model_validate(_checked(result))

    @api.delete(
        "/user/{user_id}/pattern/{pattern_id}",
        response_model=RemovedResponse,
        response_model_exclude_none=True,
        dependencies=[auth_dependency],
    )
    async def delete_pattern(user_id: int, pattern_id: int):
        result = await _service().handle_command("deletePattern", {"user_id": user_id, "id": pattern_id})
        result = _checked(result)
        if not result["removed"]:
            raise HTTPException(404, f"Pattern '{pattern_id}' not found")
        return RemovedResponse.model_validate(result)

    @api.post("/account", response_model=AccountResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def add_account(payload: AccountPayload):
        """Register a mailbox and start monitoring it."""
        result = await _service().handle_command("addAccount", payload.model_dump(exclude_none=True))
        return AccountResponse.model_validate(_checked(result))

    @api.get("/accounts", response_model=AccountsResponse, response_model_exclude_none=True, dependencies=[auth_dependency])
    async def list_accounts(user_id: Optional[int] = None):
        """List monitored accounts, optionally for one user."""
        data = {"user_id": user_id} if user_id is not None else {}
        result = await _service().handle_command("listAccounts", data)
        return AccountsResponse.model_validate(_checked(result))

    @api.put(
        "/account/{account_id}",
        response_model=AccountResponse,
        response_model_exclude_none=True,
        dependencies=[auth_dependency],
    )
    async def update_account(account_id: int, payload: AccountUpdatePayload):
        """Change password or poll interval; an active monitor is restarted."""
        data = payload.model_dump(exclude_none=True)
        data["id"] = account_id
        result = await _service().handle_command("updateAccount", data)
        return AccountResponse.model_validate(_checked(result))

    @api.delete(
        "/account/{account_id}",
        response_model=RemovedResponse,
        response_model_exclude_none=True,
        dependencies=[auth_dependency],
    )
    async def delete_account(account_id: int):
        """Stop monitoring an account and forget it."""
        result = await _service().handle_command("deleteAccount", {"id": account_id})
        return RemovedResponse.model_validate(_checked(result))

    @router.post("/start/{account_id}", response_model=AccountResponse, response_model_exclude_none=True)
    async def start_account(account_id: int):
        result = await _service().handle_command("startAccount", {"id": account_id})
        return AccountResponse.model_validate(_checked(result))

    @router.post("/stop/{account_id}", response_model=AccountResponse, response_model_exclude_none=True)
    async def stop_account(account_id: int):
        result = await _service().handle_command("stopAccount", {"id": account_id})
        return AccountResponse.model_validate(_checked(result))

    @router.post("/restart/{account_id}", response_model=AccountResponse, response_model_exclude_none=True)
    async def restart_account(account_id: int):
        result = await _service().handle_command("restartAccount", {"id": account_id})
        return AccountResponse.model_validate(_checked(result))

    api.include_router(router)
    return api


__all__ = ["app", "create_app"]
