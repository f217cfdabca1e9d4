from __future__ import annotations

import logging

from sqlalchemy import select

from .core import hash_password, normalize_email
from ..config import settings
from ..database import db_session
from ..models import User

log = logging.getLogger(__name__)

_DEFAULT_PASSWORD = "admin123"


def seed_admin() -> None:
    """
    Create a default admin account on first startup if no admin exists.
    Credentials come from SHOPADMIN_ADMIN_* settings so they can be
    overridden before deployment.

    Defaults (for local dev only):
      SHOPADMIN_ADMIN_EMAIL    = admin@example.com
      SHOPADMIN_ADMIN_PASSWORD = admin123
    """
    with db_session() as session:
        existing = session.execute(
            select(User).where(User.role == "admin").limit(1)
        ).scalar_one_or_none()
        if existing:
            return  # Admin already present — don't overwrite

        if settings.admin_password == _DEFAULT_PASSWORD:
            log.warning(
                "Seeding admin with the DEFAULT password. "
                "Set SHOPADMIN_ADMIN_PASSWORD before deploying to production."
            )
            if not settings.is_development:
                log.error(
                    "Refusing to seed default password in non-development environment (%s).",
                    settings.environment,
                )
                return

        admin = User(
            email=normalize_email(settings.admin_email),
            password_hash=hash_password(settings.admin_password),
            first_name=settings.admin_first_name,
            last_name=settings.admin_last_name,
            role="admin",
            is_active=True,
        )
        session.add(admin)
        log.info("Default admin user created: %s", admin.email)
