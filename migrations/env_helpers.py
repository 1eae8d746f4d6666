"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without alembic.context.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_PREFIX = "postgresql+psycopg2://"


def _inject_password(url: str, password: str) -> str:
    """Put password into a URL that has a user but no password."""
    parsed = urlparse(url)
    if parsed.password or not password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname or ''}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def get_database_url(env: dict[str, str] | None = None) -> str:
    """SQLAlchemy URL for the migration engine, built from DATABASE_URL.

    postgres:// and postgresql:// are rewritten to the psycopg2 driver, and
    DB_PASSWORD is injected when the URL carries none.

    Raises:
        RuntimeError: If DATABASE_URL is missing or not a URL.
    """
    if env is None:
        env = dict(os.environ)

    url = env.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        raise RuntimeError("DATABASE_URL must be a postgresql:// URL to run migrations")

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = _DRIVER_PREFIX + url[len(scheme):]
            break

    return _inject_password(url, env.get("DB_PASSWORD", ""))
