from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import select

from .core import create_access_token, hash_password
from .dependencies import (
    enforce_login_rate_limit,
    get_client_ip,
    get_current_user,
    get_login_handler,
    get_user_agent,
    rate_limit_headers,
    require_admin,
)
from .service import LoginHandler
from ..config import settings
from ..database import db_session
from ..models import User
from ..rate_limit import Allow, limiter
from ..schemas import (
    IpStatus,
    LoginAttemptList,
    LoginAttemptRead,
    LoginRequest,
    LoginResponse,
    MeData,
    MeResponse,
    MessageResponse,
    RegisterData,
    RegisterRequest,
    RegisterResponse,
    UserPublic,
)
from ..telemetry.login_audit import count_failures_since, recent_attempts, should_block_ip

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.jwt_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="strict",
    )


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

@router.post("/login", response_model=LoginResponse)
def login(
    request: Request,
    body: LoginRequest,
    allowed: Allow = Depends(enforce_login_rate_limit),
    handler: LoginHandler = Depends(get_login_handler),
) -> JSONResponse:
    outcome = handler.authenticate(
        email=body.email,
        password=body.password,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    headers = rate_limit_headers(allowed.remaining, allowed.reset_at)

    if not outcome.ok:
        return JSONResponse(
            status_code=outcome.status_code,
            content={"success": False, "message": outcome.message},
            headers=headers,
        )

    payload = LoginResponse(user=UserPublic.from_user(outcome.user))
    response = JSONResponse(
        content=payload.model_dump(mode="json", by_alias=True),
        headers=headers,
    )
    _set_session_cookie(response, outcome.token)
    return response


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

@router.post("/register", response_model=RegisterResponse, status_code=201)
@limiter.limit(settings.register_rate_limit)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    if not settings.registration_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Public registration is disabled. Contact an administrator.",
        )
    with db_session() as session:
        existing = session.execute(
            select(User).where(User.email == body.email)
        ).scalar_one_or_none()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User already exists with this email",
            )

        user = User(
            email=body.email,
            password_hash=hash_password(body.password),
            first_name=body.first_name,
            last_name=body.last_name,
            role="admin",
            is_active=True,
        )
        session.add(user)
        session.flush()
        session.refresh(user)

        token = create_access_token(user_id=user.id, role=user.role)
        return RegisterResponse(
            data=RegisterData(user=UserPublic.from_user(user), token=token),
        )


# ---------------------------------------------------------------------------
# Current session
# ---------------------------------------------------------------------------

@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(data=MeData(user=UserPublic.from_user(current_user)))


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response, _user: User = Depends(get_current_user)) -> MessageResponse:
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="strict",
    )
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Login attempt audit — admin only
# ---------------------------------------------------------------------------

@router.get("/login-attempts", response_model=LoginAttemptList)
def list_login_attempts(
    email: Optional[str] = None,
    ip_address: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    _admin: User = Depends(require_admin),
) -> LoginAttemptList:
    """Most recent login attempts, newest first."""
    rows = recent_attempts(limit=limit, email=email, ip_address=ip_address)
    return LoginAttemptList(data=[LoginAttemptRead.model_validate(r) for r in rows])


@router.get("/login-attempts/ip-status", response_model=IpStatus)
def ip_status(
    ip_address: str = Query(..., min_length=1),
    _admin: User = Depends(require_admin),
) -> IpStatus:
    """Failed logins from one IP over the lookback window, and whether that crosses the threshold."""
    now = datetime.now(timezone.utc)
    since = now - timedelta(minutes=settings.failed_login_lookback_minutes)
    return IpStatus(
        ip_address=ip_address,
        failures=count_failures_since(since, ip_address=ip_address),
        since=since,
        blocked=should_block_ip(ip_address, now=now),
    )
