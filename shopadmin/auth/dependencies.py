from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from .core import decode_token
from .service import LoginHandler
from ..config import settings
from ..database import db_session
from ..errors import LoginRateLimited
from ..models import User
from ..rate_limit import Allow, Block

bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Request metadata
# ---------------------------------------------------------------------------

def get_client_ip(request: Request) -> str:
    """
    Client address, honouring proxy headers when ``trust_proxy_headers`` is on.

    Order: X-Forwarded-For (first hop), X-Real-IP, then the socket peer.
    """
    if settings.trust_proxy_headers:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first_ip = forwarded_for.split(",")[0].strip()
            if first_ip:
                return first_ip
        real_ip = request.headers.get("X-Real-IP")
        if real_ip and real_ip.strip():
            return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "")[:512] or "unknown"


# ---------------------------------------------------------------------------
# Login throttling
# ---------------------------------------------------------------------------

def get_login_handler(request: Request) -> LoginHandler:
    return request.app.state.login_handler


def rate_limit_headers(remaining: int, reset_at) -> dict:
    return {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": reset_at.isoformat(),
    }


def enforce_login_rate_limit(
    request: Request,
    handler: LoginHandler = Depends(get_login_handler),
) -> Allow:
    """
    Count this request against the caller's login window.

    Resolved before the request body is validated, so malformed and blocked
    requests are counted and refused without touching the database.
    """
    decision = handler.rate_check(get_client_ip(request))
    if isinstance(decision, Block):
        headers = rate_limit_headers(0, decision.reset_at)
        headers["Retry-After"] = str(decision.retry_after_seconds)
        raise LoginRateLimited(decision.retry_after_minutes, headers)
    # Error handlers downstream of this dependency copy these onto 400/500 responses
    request.state.rate_limit_headers = rate_limit_headers(decision.remaining, decision.reset_at)
    return decision


# ---------------------------------------------------------------------------
# Resolve current user from the session cookie or a bearer token
# ---------------------------------------------------------------------------

def get_current_user(
    request: Request,
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> User:
    token: Optional[str] = request.cookies.get(settings.session_cookie_name)
    if not token and bearer and bearer.credentials:
        token = bearer.credentials
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token, authorization denied",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_token(token)
        user_id = int(payload.get("sub", ""))
    except (JWTError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid or expired token")

    with db_session() as session:
        user = session.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="User not found or inactive")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Admin access required")
    return current_user


