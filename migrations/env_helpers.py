"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without triggering
alembic.context at import time.
"""

from __future__ import annotations

import os
import shlex
from urllib.parse import quote_plus

_SQLALCHEMY_SCHEME = "postgresql+psycopg2://"


def _parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq "key=value key='quoted value'" DSN."""
    tokens: dict[str, str] = {}
    for part in shlex.split(dsn):
        key, sep, value = part.partition("=")
        if sep:
            tokens[key] = value
    return tokens


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with "/" (Cloud SQL unix socket) is passed as the `host`
    query parameter; anything else becomes HOST:PORT.
    """
    tokens = _parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = f"{quote_plus(tokens.get('user', ''))}:{quote_plus(password)}"
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        return f"{_SQLALCHEMY_SCHEME}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{_SQLALCHEMY_SCHEME}{credentials}@{host}:{tokens.get('port', '5432')}/{dbname}"


def _get_database_url() -> str:
    """DATABASE_URL as a SQLAlchemy URL (URL or libpq DSN accepted)."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return _SQLALCHEMY_SCHEME + url[len(scheme):]
    return url
