"""
dsconfig Connection Diagnostics — Read-only checks against a live
PostgreSQL server, with driver errors mapped to operator remedies.

Steps:
    connect     — open a connection and SELECT 1
    identity    — current_user, current_database(), server version
    privileges  — has_schema_privilege(USAGE / CREATE) on the target schema

Failure mapping (first match wins):
    28P01 / 28000 / "password authentication failed"  → AuthenticationFailedError
    3D000 / 'database "x" does not exist'              → DatabaseNotFoundError
    42501 / "permission denied for schema"             → SchemaPermissionError
    "connection refused" / "could not connect" / ...   → ServerUnreachableError

Remedies are text for the operator; nothing here changes server state.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from dsconfig.engine.errors import (
    AuthenticationFailedError,
    ConnectionDiagnosticError,
    DatabaseNotFoundError,
    SchemaPermissionError,
    ServerUnreachableError,
)
from dsconfig.engine.jdbc import redact_url
from dsconfig.engine.validator import DatasourceRecord

logger = logging.getLogger("dsconfig.engine.health")


class HealthStatus(str, Enum):
    """Outcome of a single diagnostic step or of the whole run."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"


@dataclass
class CheckResult:
    """Result of a single diagnostic step."""
    name: str
    status: HealthStatus
    latency_ms: float = 0.0
    message: str = ""
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
            "details": self.details,
        }


@dataclass
class DiagnosticReport:
    """All step results of one diagnostic run plus the classified failure."""
    target: str
    schema: str
    checks: List[CheckResult] = field(default_factory=list)
    error: Optional[ConnectionDiagnosticError] = None

    @property
    def status(self) -> HealthStatus:
        if not self.checks:
            return HealthStatus.UNKNOWN
        if any(c.status == HealthStatus.UNHEALTHY for c in self.checks):
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY

    @property
    def ok(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def get(self, name: str) -> Optional[CheckResult]:
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "schema": self.schema,
            "status": self.status.value,
            "checks": [c.to_dict() for c in self.checks],
            "error": self.error.to_dict() if self.error else None,
        }


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

_AUTH_CODES = {"28P01", "28000"}
_UNREACHABLE_PATTERNS = (
    "connection refused",
    "could not connect",
    "could not translate host name",
    "name or service not known",
    "timeout expired",
    "no route to host",
    "server closed the connection unexpectedly",
)


def _quote_ident(name: str) -> str:
    if re.match(r"^[a-z_][a-z0-9_$]*$", name):
        return name
    return '"' + name.replace('"', '""') + '"'


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None) or exc
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _driver_message(exc: BaseException) -> str:
    orig = getattr(exc, "orig", None) or exc
    return redact_url(" ".join(str(orig).split()))


def classify_connection_error(
    exc: BaseException,
    record: DatasourceRecord,
    schema: str = "public",
) -> ConnectionDiagnosticError:
    """Map a driver/SQLAlchemy exception to the matching diagnostic error."""
    code = _sqlstate(exc)
    message = _driver_message(exc)
    lowered = message.lower()
    user = _quote_ident(record.username)
    context = {
        "sqlstate": code,
        "source": record.source,
        "host": record.host,
        "port": record.port,
        "database": record.database,
        "username": record.username,
    }

    if code in _AUTH_CODES or "password authentication failed" in lowered or "authentication failed" in lowered:
        return AuthenticationFailedError(
            f"Authentication failed for role '{record.username}': {message}",
            remedy=(
                f"Correct the credentials: update datasource.password, or reset the role "
                f"password with ALTER ROLE {user} WITH PASSWORD '<new password>';"
            ),
            **context,
        )

    if code == "3D000" or re.search(r'database ".*" does not exist', lowered):
        return DatabaseNotFoundError(
            f"Database '{record.database}' does not exist: {message}",
            remedy=(
                f"Create it with CREATE DATABASE {_quote_ident(record.database)} OWNER {user}; "
                f"or fix the database name in datasource.url"
            ),
            **context,
        )

    if code == "42501" or "permission denied for schema" in lowered:
        return SchemaPermissionError(
            f"Role '{record.username}' lacks permissions on schema '{schema}': {message}",
            remedy=f"GRANT ALL ON SCHEMA {_quote_ident(schema)} TO {user};",
            schema=schema,
            **context,
        )

    if code == "3F000" or re.search(r'schema ".*" does not exist', lowered):
        return ConnectionDiagnosticError(
            f"Schema '{schema}' does not exist: {message}",
            remedy=f"CREATE SCHEMA {_quote_ident(schema)} AUTHORIZATION {user};",
            schema=schema,
            **context,
        )

    if any(p in lowered for p in _UNREACHABLE_PATTERNS):
        return ServerUnreachableError(
            f"Cannot reach PostgreSQL at {record.host}:{record.port}: {message}",
            remedy=(
                f"Ensure the PostgreSQL server is running and listening on "
                f"{record.host}:{record.port}. At application startup this shows up "
                f"as a failure to determine the Hibernate dialect."
            ),
            **context,
        )

    return ConnectionDiagnosticError(f"Connection check failed: {message}", **context)


# ---------------------------------------------------------------------------
# Diagnostic run
# ---------------------------------------------------------------------------

def _skip_remaining(report: DiagnosticReport, names: List[str], reason: str) -> None:
    for name in names:
        report.checks.append(CheckResult(name=name, status=HealthStatus.SKIPPED, message=reason))


def diagnose(
    record: DatasourceRecord,
    schema: str = "public",
    connect_timeout: int = 5,
    engine_factory: Optional[Callable[..., Any]] = None,
) -> DiagnosticReport:
    """
    Run the connection diagnostics for a validated record.

    Never raises for connection or permission failures; they are reported in
    ``DiagnosticReport.error`` with a remedy.

    Args:
        record: Validated datasource record.
        schema: Schema whose privileges are checked.
        connect_timeout: Seconds before a connection attempt is abandoned.
        engine_factory: Callable(record, connect_timeout=...) → Engine.
            Defaults to ``dsconfig.db.session.build_engine``.
    """
    if engine_factory is None:
        from dsconfig.db.session import build_engine
        engine_factory = build_engine

    target = f"{record.username}@{record.host}:{record.port}/{record.database}"
    report = DiagnosticReport(target=target, schema=schema)
    logger.info("Diagnosing connection to %s", target)

    engine = engine_factory(record, connect_timeout=connect_timeout)
    try:
        start = time.monotonic()
        try:
            conn = engine.connect()
        except SQLAlchemyError as e:
            _connect_failed(report, e, record, schema, start)
            return report

        with conn:
            try:
                conn.execute(text("SELECT 1"))
            except SQLAlchemyError as e:
                _connect_failed(report, e, record, schema, start)
                return report

            report.checks.append(CheckResult(
                name="connect",
                status=HealthStatus.HEALTHY,
                latency_ms=(time.monotonic() - start) * 1000,
                message="OK",
            ))
            _check_identity(conn, report, record, schema)
            _check_privileges(conn, report, record, schema)
    finally:
        engine.dispose()

    logger.info("Diagnostics for %s: %s", target, report.status.value)
    return report


def _connect_failed(
    report: DiagnosticReport,
    exc: SQLAlchemyError,
    record: DatasourceRecord,
    schema: str,
    start: float,
) -> None:
    report.error = classify_connection_error(exc, record, schema)
    report.checks.append(CheckResult(
        name="connect",
        status=HealthStatus.UNHEALTHY,
        latency_ms=(time.monotonic() - start) * 1000,
        message=report.error.message,
    ))
    _skip_remaining(report, ["identity", "privileges"], "connection failed")
    logger.warning("Connection to %s failed: %s", report.target, report.error.error_type)


def _check_identity(conn: Any, report: DiagnosticReport, record: DatasourceRecord, schema: str) -> None:
    start = time.monotonic()
    try:
        row = conn.execute(
            text("SELECT current_user, current_database(), current_setting('server_version')")
        ).one()
    except SQLAlchemyError as e:
        error = classify_connection_error(e, record, schema)
        report.checks.append(CheckResult(
            name="identity",
            status=HealthStatus.UNHEALTHY,
            latency_ms=(time.monotonic() - start) * 1000,
            message=error.message,
        ))
        report.error = report.error or error
        return

    report.checks.append(CheckResult(
        name="identity",
        status=HealthStatus.HEALTHY,
        latency_ms=(time.monotonic() - start) * 1000,
        message="OK",
        details={
            "current_user": row[0],
            "current_database": row[1],
            "server_version": row[2],
        },
    ))


def _check_privileges(conn: Any, report: DiagnosticReport, record: DatasourceRecord, schema: str) -> None:
    start = time.monotonic()
    try:
        usage, create = conn.execute(
            text(
                "SELECT has_schema_privilege(current_user, :schema, 'USAGE'), "
                "has_schema_privilege(current_user, :schema, 'CREATE')"
            ),
            {"schema": schema},
        ).one()
    except SQLAlchemyError as e:
        error = classify_connection_error(e, record, schema)
        report.checks.append(CheckResult(
            name="privileges",
            status=HealthStatus.UNHEALTHY,
            latency_ms=(time.monotonic() - start) * 1000,
            message=error.message,
        ))
        report.error = report.error or error
        return

    latency_ms = (time.monotonic() - start) * 1000
    details = {"usage": bool(usage), "create": bool(create), "create_required": record.schema_auto_create}
    lacking = []
    if not usage:
        lacking.append("USAGE")
    if record.schema_auto_create and not create:
        lacking.append("CREATE")

    if lacking:
        error = SchemaPermissionError(
            f"Role '{record.username}' lacks {'/'.join(lacking)} on schema '{schema}'",
            remedy=f"GRANT ALL ON SCHEMA {_quote_ident(schema)} TO {_quote_ident(record.username)};",
            schema=schema,
            source=record.source,
        )
        report.error = report.error or error
        report.checks.append(CheckResult(
            name="privileges",
            status=HealthStatus.UNHEALTHY,
            latency_ms=latency_ms,
            message=error.message,
            details=details,
        ))
        return

    report.checks.append(CheckResult(
        name="privileges",
        status=HealthStatus.HEALTHY,
        latency_ms=latency_ms,
        message="OK",
        details=details,
    ))
