"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
"""

from __future__ import annotations

import os
from typing import Mapping
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_PREFIX = "postgresql+psycopg2://"


def _inject_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password or not parsed.hostname:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def database_url_from_env(env: Mapping[str, str] | None = None) -> str:
    """Build the SQLAlchemy URL used by migrations.

    Accepts postgres:// and postgresql:// URLs (as found in DATABASE_URL for
    psycopg2) and pins the psycopg2 driver. DB_PASSWORD fills an empty
    password.

    Raises:
        RuntimeError: If DATABASE_URL is missing or not a URL.
    """
    env = os.environ if env is None else env
    url = env.get("DATABASE_URL", "")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        raise RuntimeError("DATABASE_URL must be a postgresql:// URL to run migrations")

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = _DRIVER_PREFIX + url[len(scheme):]
            break

    db_password = env.get("DB_PASSWORD", "")
    if db_password:
        url = _inject_password(url, db_password)
    return url
