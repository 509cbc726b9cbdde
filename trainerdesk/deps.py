from __future__ import annotations

from typing import Optional

from fastapi import BackgroundTasks, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .calendar_provider import CalendarProvider, get_calendar_provider
from .config import get_settings
from .context import TenantContext
from .database import get_db_session
from .email_sender import EmailSender, get_email_sender
from .models import Role
from .tasks import BackgroundTaskDispatcher, TaskDispatcher


def get_db() -> Session:
    yield from get_db_session()


def _bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return authorization.split(" ", 1)[1].strip()


def require_token(authorization: Optional[str] = Header(default=None)) -> str:
    token = _bearer(authorization)
    if token != get_settings().api_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return token


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> str:
    token = _bearer(authorization)
    if token != get_settings().cron_secret:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return token


def get_tenant(
    x_workspace_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> TenantContext:
    if not x_workspace_id or not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing tenant context")
    role = (x_user_role or "").upper()
    if role not in (Role.TRAINER, Role.CLIENT):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user role")
    return TenantContext(workspace_id=x_workspace_id, user_id=x_user_id, role=role)


def require_trainer(ctx: TenantContext = Depends(get_tenant)) -> TenantContext:
    if not ctx.is_trainer:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Trainer access required")
    return ctx


def get_dispatcher(background_tasks: BackgroundTasks) -> TaskDispatcher:
    return BackgroundTaskDispatcher(background_tasks)


def get_calendar() -> CalendarProvider:
    return get_calendar_provider()


def get_email() -> EmailSender:
    return get_email_sender()
