"""
Tests for the login attempt audit log: writes, retention and failure queries.

Run with: pytest tests/test_login_audit.py -v
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from shopadmin.database import db_session
from shopadmin.models import FailureReason, LoginAttempt
from shopadmin.telemetry import login_audit
from shopadmin.telemetry.login_audit import (
    LoginAuditLog,
    count_failures_since,
    purge_expired,
    should_block_ip,
)


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _insert(
    email: str = "user@example.com",
    ip_address: str = "10.0.0.5",
    success: bool = False,
    age: timedelta = timedelta(0),
) -> None:
    with db_session() as session:
        session.add(LoginAttempt(
            email=email,
            ip_address=ip_address,
            user_agent="pytest",
            success=success,
            failure_reason=None if success else FailureReason.INVALID_CREDENTIALS.value,
            created_at=_utcnow_naive() - age,
        ))


def _all_attempts():
    with db_session() as session:
        return session.execute(select(LoginAttempt).order_by(LoginAttempt.id)).scalars().all()


@pytest.fixture
def audit():
    writer = LoginAuditLog(timeout_seconds=2.0)
    yield writer
    writer.close()


# ---------------------------------------------------------------------------
# log_attempt
# ---------------------------------------------------------------------------

def test_log_attempt_persists_normalized_row(audit):
    result = audit.log_attempt(
        email="  User@Example.COM ",
        ip_address="10.0.0.5",
        user_agent=None,
        success=False,
        failure_reason=FailureReason.INVALID_CREDENTIALS,
    )
    assert result.ok
    assert result.attempt_id is not None

    rows = _all_attempts()
    assert len(rows) == 1
    row = rows[0]
    assert row.id == result.attempt_id
    assert row.email == "user@example.com"
    assert row.user_agent == "unknown"
    assert row.success is False
    assert row.failure_reason == "invalid_credentials"
    assert row.user_id is None
    assert abs(row.created_at - _utcnow_naive()) < timedelta(seconds=30)


def test_successful_attempt_has_no_failure_reason(audit):
    audit.log_attempt(
        email="user@example.com",
        ip_address="10.0.0.5",
        user_agent="pytest",
        success=True,
        failure_reason=FailureReason.NONE,
        user_id=7,
    )
    row = _all_attempts()[0]
    assert row.success is True
    assert row.failure_reason is None
    assert row.user_id == 7


def test_log_attempt_swallows_database_errors(audit, monkeypatch):
    def boom(**kwargs):
        raise OperationalError("INSERT", {}, Exception("database is down"))

    monkeypatch.setattr(login_audit, "write_attempt", boom)
    result = audit.log_attempt(
        email="user@example.com", ip_address="10.0.0.5", user_agent="pytest", success=False,
    )
    assert not result.ok
    assert "database is down" in result.error


def test_log_attempt_gives_up_after_timeout(monkeypatch):
    def slow(**kwargs):
        time.sleep(0.5)
        return 1

    monkeypatch.setattr(login_audit, "write_attempt", slow)
    writer = LoginAuditLog(timeout_seconds=0.05)
    started = time.monotonic()
    result = writer.log_attempt(
        email="user@example.com", ip_address="10.0.0.5", user_agent="pytest", success=False,
    )
    assert time.monotonic() - started < 0.4
    assert result.ok is False
    assert result.error == "timeout"
    writer.close()


def test_log_attempt_after_close_does_not_raise():
    writer = LoginAuditLog()
    writer.close()
    result = writer.log_attempt(
        email="user@example.com", ip_address="10.0.0.5", user_agent="pytest", success=False,
    )
    assert result.ok is False


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

def test_write_purges_attempts_older_than_retention(audit):
    _insert(email="old@example.com", age=timedelta(days=31))
    _insert(email="recent@example.com", age=timedelta(days=29))

    audit.log_attempt(email="new@example.com", ip_address="10.0.0.7", user_agent="pytest", success=False)

    emails = {row.email for row in _all_attempts()}
    assert emails == {"recent@example.com", "new@example.com"}


def test_purge_expired_returns_count():
    _insert(age=timedelta(days=40))
    _insert(age=timedelta(days=35))
    _insert(age=timedelta(days=1))
    assert purge_expired() == 2
    assert len(_all_attempts()) == 1


# ---------------------------------------------------------------------------
# Failure queries
# ---------------------------------------------------------------------------

def test_count_failures_since_by_ip_and_email():
    since = datetime.now(timezone.utc) - timedelta(hours=1)
    _insert(email="a@example.com", ip_address="10.0.0.5")
    _insert(email="b@example.com", ip_address="10.0.0.5")
    _insert(email="a@example.com", ip_address="10.0.0.6")
    _insert(email="a@example.com", ip_address="10.0.0.5", success=True)
    _insert(email="a@example.com", ip_address="10.0.0.5", age=timedelta(hours=2))

    assert count_failures_since(since, ip_address="10.0.0.5") == 2
    assert count_failures_since(since, email="A@example.com") == 2
    assert count_failures_since(since, ip_address="10.0.0.5", email="a@example.com") == 1


def test_count_failures_since_requires_a_key():
    with pytest.raises(ValueError):
        count_failures_since(datetime.now(timezone.utc))


def test_should_block_ip_after_threshold_failures():
    for _ in range(4):
        _insert(ip_address="10.0.0.5")
    _insert(ip_address="10.0.0.5", age=timedelta(hours=2))
    assert should_block_ip("10.0.0.5") is False

    _insert(ip_address="10.0.0.5")
    assert should_block_ip("10.0.0.5") is True
    assert should_block_ip("10.0.0.6") is False


def test_should_block_ip_fails_open_on_database_error(monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is down"))

    monkeypatch.setattr(login_audit, "count_failures_since", boom)
    assert should_block_ip("10.0.0.5") is False


def test_failure_exactly_at_lookback_cutoff_is_not_counted():
    now = datetime.now(timezone.utc).replace(microsecond=0)
    cutoff = now - timedelta(minutes=60)
    with db_session() as session:
        for _ in range(5):
            session.add(LoginAttempt(
                email="user@example.com",
                ip_address="10.0.0.7",
                user_agent="pytest",
                success=False,
                failure_reason=FailureReason.INVALID_CREDENTIALS.value,
                created_at=cutoff.replace(tzinfo=None),
            ))

    assert count_failures_since(cutoff, ip_address="10.0.0.7") == 0
    assert should_block_ip("10.0.0.7", now=now) is False
    assert should_block_ip("10.0.0.7", now=now + timedelta(seconds=1)) is False

    _insert(ip_address="10.0.0.7")
    assert count_failures_since(cutoff - timedelta(seconds=1), ip_address="10.0.0.7") == 6
    assert should_block_ip("10.0.0.7", now=now - timedelta(seconds=1)) is True
