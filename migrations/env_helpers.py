"""Database URL resolution for Alembic.

Kept apart from env.py so it can be imported (and tested) without an
active alembic context.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus

_DRIVER_PREFIX = "postgresql+psycopg2://"


def parse_keyword_dsn(dsn: str) -> dict[str, str]:
    """Split a libpq ``key=value`` DSN; single-quoted values may hold spaces."""
    params: dict[str, str] = {}
    pos, size = 0, len(dsn)
    while pos < size:
        while pos < size and dsn[pos].isspace():
            pos += 1
        eq = dsn.find("=", pos)
        if eq == -1:
            break
        key = dsn[pos:eq].strip()
        pos = eq + 1
        if pos < size and dsn[pos] == "'":
            pos += 1
            chars: list[str] = []
            while pos < size and dsn[pos] != "'":
                if dsn[pos] == "\\" and pos + 1 < size:
                    pos += 1
                chars.append(dsn[pos])
                pos += 1
            pos += 1  # closing quote
            params[key] = "".join(chars)
        else:
            end = pos
            while end < size and not dsn[end].isspace():
                end += 1
            params[key] = dsn[pos:end]
            pos = end
    return params


def keyword_dsn_to_url(dsn: str) -> str:
    """Render a keyword DSN as a SQLAlchemy URL for the psycopg2 driver."""
    params = parse_keyword_dsn(dsn)
    user = quote_plus(params.get("user", ""))
    password = quote_plus(params.get("password", ""))
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")
    port = params.get("port", "5432")
    auth = f"{user}:{password}@" if password else (f"{user}@" if user else "")

    if host.startswith("/"):
        # Unix socket directory
        return f"{_DRIVER_PREFIX}{auth}/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_PREFIX}{auth}{host}:{port}/{dbname}"


def get_database_url(environ: dict[str, str] | None = None) -> str:
    """Resolve DATABASE_URL (URL or keyword DSN) into a SQLAlchemy URL."""
    env = os.environ if environ is None else environ
    url = env.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return keyword_dsn_to_url(url)
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return _DRIVER_PREFIX + url[len(scheme):]
    return url
