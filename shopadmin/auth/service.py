"""
service.py — Login request orchestration
========================================
One login request moves through a fixed sequence:

    RateCheck -> Lookup -> VerifyPassword -> CheckActive -> IssueSession

``LoginHandler.rate_check`` covers the first step and runs before the
request body is even validated. ``LoginHandler.authenticate`` covers the
rest and returns a ``LoginOutcome`` naming the terminal state reached.

"No such user" and "wrong password" produce identical outcomes so the
response cannot be used to enumerate accounts. The audit row is written
before a session token is issued.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .core import create_access_token, normalize_email, verify_password
from ..database import db_session
from ..errors import InfrastructureError
from ..models import FailureReason, User
from ..rate_limit import Block, RateDecision, SlidingWindowLimiter
from ..telemetry.login_audit import AuditResult, LoginAuditLog

log = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
INACTIVE_MESSAGE = "Account is deactivated. Please contact support."
LOGIN_SERVER_ERROR_MESSAGE = "Server error during authentication"


class LoginState(str, enum.Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    INACTIVE = "inactive"
    SUCCESS = "success"


@dataclass
class LoginOutcome:
    state: LoginState
    status_code: int
    message: str
    user: Optional[User] = None
    token: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is LoginState.SUCCESS


def _invalid() -> LoginOutcome:
    return LoginOutcome(LoginState.INVALID_CREDENTIALS, 401, INVALID_CREDENTIALS_MESSAGE)


class LoginHandler:
    def __init__(self, limiter: SlidingWindowLimiter, audit: LoginAuditLog) -> None:
        self.limiter = limiter
        self.audit = audit

    # -- RateCheck ---------------------------------------------------------

    def rate_check(self, ip_address: str) -> RateDecision:
        decision = self.limiter.check_and_record(ip_address)
        if isinstance(decision, Block):
            log.warning(
                "Login throttled for %s, window resets at %s",
                ip_address, decision.reset_at.isoformat(),
            )
        return decision

    # -- Lookup .. IssueSession ---------------------------------------------

    def authenticate(
        self,
        email: str,
        password: str,
        ip_address: str,
        user_agent: str,
    ) -> LoginOutcome:
        email = normalize_email(email)

        try:
            with db_session() as session:
                user = session.execute(
                    select(User).where(User.email == email)
                ).scalar_one_or_none()
        except SQLAlchemyError:
            log.exception("User lookup failed during login")
            raise InfrastructureError(LOGIN_SERVER_ERROR_MESSAGE)

        if user is None:
            self._audit(
                self.audit.log_attempt(
                    email=email,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    success=False,
                    failure_reason=FailureReason.INVALID_CREDENTIALS,
                )
            )
            return _invalid()

        if not verify_password(password, user.password_hash):
            self._audit(
                self.audit.log_attempt(
                    email=user.email,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    success=False,
                    failure_reason=FailureReason.INVALID_CREDENTIALS,
                    user_id=user.id,
                )
            )
            return _invalid()

        if not user.is_active:
            self._audit(
                self.audit.log_attempt(
                    email=user.email,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    success=False,
                    failure_reason=FailureReason.ACCOUNT_INACTIVE,
                    user_id=user.id,
                )
            )
            return LoginOutcome(LoginState.INACTIVE, 403, INACTIVE_MESSAGE, user=user)

        self._audit(
            self.audit.log_attempt(
                email=user.email,
                ip_address=ip_address,
                user_agent=user_agent,
                success=True,
                user_id=user.id,
            )
        )

        self._record_login(user.id)

        token = create_access_token(user_id=user.id, role=user.role)
        log.info("User %s logged in from %s", user.id, ip_address)
        return LoginOutcome(LoginState.SUCCESS, 200, "ok", user=user, token=token)

    @staticmethod
    def _record_login(user_id: int) -> None:
        # Bookkeeping only; the attempt is already audited as a success
        try:
            with db_session() as session:
                row = session.get(User, user_id)
                if row:
                    row.last_login_at = datetime.now(timezone.utc)
                    row.login_count = (row.login_count or 0) + 1
        except SQLAlchemyError:
            log.exception("Recording last login failed for user %s", user_id)

    @staticmethod
    def _audit(result: AuditResult) -> None:
        # The login outcome never depends on the audit write
        if not result.ok:
            log.debug("Login attempt not recorded: %s", result.error)
