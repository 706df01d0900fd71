"""
dsconfig JDBC URL parsing — Split a PostgreSQL JDBC connection string into
host, port and database, the way the PostgreSQL JDBC driver reads it.

Accepted:
    jdbc:postgresql://host:port/database
    jdbc:postgresql://host/database             (port 5432)
    jdbc:postgresql://[::1]:5432/database       (IPv6 literal)
    jdbc:postgresql://h1:5432,h2:5433/database  (multi-host)
    jdbc:postgresql:database                    (localhost:5432)
    ... any of the above followed by ?key=value&...

Usage:
    from dsconfig.engine.jdbc import parse_jdbc_url
    parsed = parse_jdbc_url("jdbc:postgresql://localhost:5432/studfolio_db")
    parsed.database  # "studfolio_db"
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl, quote, unquote, urlencode

logger = logging.getLogger("dsconfig.engine.jdbc")

JDBC_PREFIX = "jdbc:postgresql:"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432

# JDBC driver property -> libpq connection parameter
_LIBPQ_PARAMS = {
    "sslmode": "sslmode",
    "sslcert": "sslcert",
    "sslkey": "sslkey",
    "sslrootcert": "sslrootcert",
    "ApplicationName": "application_name",
    "connectTimeout": "connect_timeout",
    "targetServerType": "target_session_attrs",
}

_PASSWORD_PARAM = re.compile(r"(?i)(password=)[^&;\s]*")
_USERINFO_PASSWORD = re.compile(r"(//[^/:@\s]+:)[^@/\s]*(@)")


def redact_url(url: Any) -> str:
    """Mask any password embedded in a connection string."""
    text = "" if url is None else str(url)
    text = _PASSWORD_PARAM.sub(r"\1***", text)
    return _USERINFO_PASSWORD.sub(r"\1***\2", text)


@dataclass(frozen=True)
class JdbcUrl:
    """A parsed PostgreSQL JDBC connection string."""
    host: str
    port: int
    database: str
    hosts: Tuple[Tuple[str, int], ...] = ()
    params: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.hosts:
            object.__setattr__(self, "hosts", ((self.host, self.port),))

    @property
    def is_multi_host(self) -> bool:
        return len(self.hosts) > 1

    def to_jdbc(self) -> str:
        """Render the normalized JDBC form (always with explicit ports)."""
        authority = ",".join(f"{_format_host(h)}:{p}" for h, p in self.hosts)
        url = f"{JDBC_PREFIX}//{authority}/{quote(self.database, safe='')}"
        if self.params:
            url += "?" + urlencode(self.params)
        return url

    def libpq_params(self) -> Dict[str, str]:
        """
        Translate JDBC driver properties into libpq connection parameters.
        Properties with no libpq counterpart are dropped.
        """
        result: Dict[str, str] = {}
        for key, value in self.params.items():
            if key in ("user", "password"):
                continue
            if key == "currentSchema":
                result["options"] = f"-c search_path={value}"
            elif key in _LIBPQ_PARAMS:
                target = _LIBPQ_PARAMS[key]
                if target == "target_session_attrs":
                    value = {"master": "read-write", "primary": "read-write"}.get(value, value)
                result[target] = value
            else:
                logger.debug("Dropping JDBC property with no libpq equivalent: %s", key)
        return result

    def to_sqlalchemy_url(self, username: Optional[str] = None, password: Optional[str] = None):
        """Build a ``sqlalchemy.engine.URL`` for the psycopg2 driver."""
        from sqlalchemy.engine import URL

        query: Dict[str, Any] = dict(self.libpq_params())
        if self.is_multi_host:
            query["host"] = [f"{_format_host(h)}:{p}" for h, p in self.hosts]
            return URL.create(
                "postgresql+psycopg2",
                username=username,
                password=password,
                database=self.database,
                query=query,
            )
        return URL.create(
            "postgresql+psycopg2",
            username=username,
            password=password,
            host=self.host,
            port=self.port,
            database=self.database,
            query=query,
        )


def _format_host(host: str) -> str:
    return f"[{host}]" if ":" in host else host


def parse_jdbc_url(url: Any) -> JdbcUrl:
    """
    Parse a PostgreSQL JDBC connection string.

    Raises:
        MalformedURLError: The string lacks the jdbc:postgresql: scheme, or
            the host, port, or database component is missing or invalid.
    """
    from dsconfig.engine.errors import MalformedURLError

    if not isinstance(url, str) or not url.strip():
        raise MalformedURLError(str(url or ""), "empty connection string")

    raw = url.strip()
    if not raw.lower().startswith(JDBC_PREFIX):
        if "://" in raw:
            scheme = raw.split("://", 1)[0]
        elif raw.lower().startswith("jdbc:"):
            scheme = ":".join(raw.split(":", 2)[:2])
        else:
            scheme = None
        if scheme is None:
            reason = "missing scheme (expected jdbc:postgresql://host:port/database)"
        else:
            reason = f"unsupported scheme '{scheme}' (expected jdbc:postgresql:)"
        raise MalformedURLError(raw, reason)

    rest = raw[len(JDBC_PREFIX):]
    rest, _, query = rest.partition("?")
    params = dict(parse_qsl(query, keep_blank_values=True)) if query else {}

    if rest.startswith("//"):
        authority, slash, path = rest[2:].partition("/")
        if not slash:
            raise MalformedURLError(raw, "missing database name")
        hosts = _parse_hosts(authority, raw)
    else:
        path = rest[1:] if rest.startswith("/") else rest
        hosts = ((DEFAULT_HOST, DEFAULT_PORT),)

    database = unquote(path)
    if not database:
        raise MalformedURLError(raw, "missing database name")
    if "/" in database:
        raise MalformedURLError(raw, f"unexpected path after database name: '{database}'")

    host, port = hosts[0]
    return JdbcUrl(host=host, port=port, database=database, hosts=hosts, params=params)


def _parse_hosts(authority: str, raw: str) -> Tuple[Tuple[str, int], ...]:
    from dsconfig.engine.errors import MalformedURLError

    if not authority:
        raise MalformedURLError(raw, "missing host")
    if "@" in authority:
        raise MalformedURLError(raw, "credentials must not be embedded in the host part")

    hosts = []
    for entry in authority.split(","):
        entry = entry.strip()
        if entry.startswith("["):
            end = entry.find("]")
            if end == -1:
                raise MalformedURLError(raw, f"unterminated IPv6 address '{entry}'")
            host = entry[1:end]
            remainder = entry[end + 1:]
            if remainder and not remainder.startswith(":"):
                raise MalformedURLError(raw, f"unexpected text after IPv6 address '{entry}'")
            port_text = remainder[1:] if remainder else None
        else:
            host, sep, port_text = entry.partition(":")
            if not sep:
                port_text = None

        if not host:
            raise MalformedURLError(raw, "missing host")
        hosts.append((host, _parse_port(port_text, raw)))

    return tuple(hosts)


def _parse_port(port_text: Optional[str], raw: str) -> int:
    from dsconfig.engine.errors import MalformedURLError

    if port_text is None:
        return DEFAULT_PORT
    if not (port_text.isascii() and port_text.isdigit()):
        raise MalformedURLError(raw, f"port must be numeric, got '{port_text}'")
    port = int(port_text)
    if not 1 <= port <= 65535:
        raise MalformedURLError(raw, f"port out of range: {port}")
    return port
