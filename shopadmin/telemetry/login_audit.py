"""
login_audit.py — Persistent audit trail of login attempts
=========================================================
Every request to the login endpoint leaves exactly one ``LoginAttempt``
row. Writing is best-effort from the caller's point of view: the login
flow waits a bounded time for the insert, and any failure comes back as
an ``AuditResult`` instead of an exception.

Retention is enforced on write: each successful insert is followed by a
delete of rows older than ``login_attempt_retention_days``.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from ..auth.core import normalize_email
from ..config import settings
from ..database import db_session
from ..models import FailureReason, LoginAttempt

log = logging.getLogger(__name__)


def _naive_utc(dt: datetime) -> datetime:
    # Columns hold naive UTC; compare like with like
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


@dataclass(frozen=True)
class AuditResult:
    ok: bool
    attempt_id: Optional[int] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def purge_expired(now: Optional[datetime] = None) -> int:
    """Delete attempts older than the retention period. Returns rows removed."""
    now = now or datetime.now(timezone.utc)
    cutoff = _naive_utc(now - timedelta(days=settings.login_attempt_retention_days))
    with db_session() as session:
        result = session.execute(
            delete(LoginAttempt).where(LoginAttempt.created_at < cutoff)
        )
        return result.rowcount or 0


def write_attempt(
    email: str,
    ip_address: str,
    user_agent: str,
    success: bool,
    failure_reason: Optional[FailureReason] = None,
    user_id: Optional[int] = None,
    created_at: Optional[datetime] = None,
) -> int:
    """Insert one attempt, then sweep expired rows. Raises on DB errors."""
    created_at = created_at or datetime.now(timezone.utc)
    reason = failure_reason.value if failure_reason and failure_reason is not FailureReason.NONE else None
    with db_session() as session:
        row = LoginAttempt(
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
            failure_reason=None if success else reason,
            user_id=user_id,
            created_at=_naive_utc(created_at),
        )
        session.add(row)
        session.flush()
        attempt_id = row.id

    removed = purge_expired()
    if removed:
        log.info("Purged %d login attempts past retention", removed)
    return attempt_id


def count_failures_since(
    since: datetime,
    ip_address: Optional[str] = None,
    email: Optional[str] = None,
) -> int:
    """Failed attempts strictly after ``since`` for an IP, an email, or both."""
    if ip_address is None and email is None:
        raise ValueError("count_failures_since needs an ip_address or an email")

    stmt = (
        select(func.count())
        .select_from(LoginAttempt)
        .where(LoginAttempt.success.is_(False))
        .where(LoginAttempt.created_at > _naive_utc(since))
    )
    if ip_address is not None:
        stmt = stmt.where(LoginAttempt.ip_address == ip_address)
    if email is not None:
        stmt = stmt.where(LoginAttempt.email == normalize_email(email))

    with db_session() as session:
        return session.execute(stmt).scalar_one()


def should_block_ip(ip_address: str, now: Optional[datetime] = None) -> bool:
    """
    Coarse persistence-backed check: has this IP failed too often lately?

    Independent of the in-memory limiter and not consulted on the login
    path. Answers False when the database cannot be queried.
    """
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(minutes=settings.failed_login_lookback_minutes)
    try:
        failures = count_failures_since(since, ip_address=ip_address)
    except SQLAlchemyError:
        log.exception("Could not check failed logins for %s", ip_address)
        return False
    return failures >= settings.failed_login_threshold


def recent_attempts(
    limit: int = 100,
    email: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> List[LoginAttempt]:
    stmt = select(LoginAttempt).order_by(LoginAttempt.created_at.desc(), LoginAttempt.id.desc())
    if email:
        stmt = stmt.where(LoginAttempt.email == normalize_email(email))
    if ip_address:
        stmt = stmt.where(LoginAttempt.ip_address == ip_address)
    with db_session() as session:
        return list(session.execute(stmt.limit(limit)).scalars().all())


# ---------------------------------------------------------------------------
# Fire-and-forget writer used by the login flow
# ---------------------------------------------------------------------------

class LoginAuditLog:
    """
    Bounded-wait writer for login attempts.

    Inserts run on a small private thread pool. ``log_attempt`` waits at
    most ``timeout_seconds`` for the insert; a slow write keeps running in
    the background after the caller has moved on.
    """

    def __init__(self, timeout_seconds: float = 2.0, max_workers: int = 4) -> None:
        self.timeout_seconds = timeout_seconds
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="login-audit")

    def log_attempt(
        self,
        email: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        success: bool,
        failure_reason: Optional[FailureReason] = None,
        user_id: Optional[int] = None,
    ) -> AuditResult:
        """Record one attempt. Never raises."""
        try:
            future = self._pool.submit(
                write_attempt,
                email=normalize_email(email),
                ip_address=ip_address or "unknown",
                user_agent=user_agent or "unknown",
                success=success,
                failure_reason=failure_reason,
                user_id=user_id,
            )
            attempt_id = future.result(timeout=self.timeout_seconds)
        except FutureTimeout:
            log.warning(
                "Login attempt audit write exceeded %.1fs for %s; continuing",
                self.timeout_seconds, ip_address,
            )
            return AuditResult(ok=False, error="timeout")
        except Exception as exc:
            log.exception("Error logging login attempt")
            return AuditResult(ok=False, error=str(exc))
        return AuditResult(ok=True, attempt_id=attempt_id)

    def close(self) -> None:
        self._pool.shutdown(wait=False)
