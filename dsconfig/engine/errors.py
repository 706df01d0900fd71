"""
dsconfig Error Hierarchy — Structured exceptions for datasource validation
and connection diagnostics.

Every error serializes to a JSON-compatible dict for the validation log.
Secret values (passwords, decrypted ENC(...) payloads) are never stored on
an error instance.

Hierarchy:
    DatasourceConfigError
    ├── ConfigFileError              — File missing / unreadable / unparseable
    ├── MissingFieldError            — url, username or password absent
    ├── MalformedURLError            — Connection string cannot be parsed
    ├── UnsupportedDriverError       — driver-class-name is not PostgreSQL
    ├── ConfigValidationError        — Any other field validation failure
    ├── SecretDecryptionError        — ENC(...) value could not be decrypted
    └── ConnectionDiagnosticError    — Live connection check failed
        ├── AuthenticationFailedError
        ├── SchemaPermissionError
        ├── DatabaseNotFoundError
        └── ServerUnreachableError
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class DatasourceConfigError(Exception):
    """
    Base error for all dsconfig failures.
    All context is serializable to JSON.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.error_type: str = self.__class__.__name__
        self.source: Optional[str] = context.get("source")
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "source": self.source,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k != "source"
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.source:
            parts.append(f"source={self.source}")
        return " | ".join(parts)


class ConfigFileError(DatasourceConfigError):
    """Configuration file missing, unreadable, or not valid YAML/properties."""

    def __init__(self, message: str, **context: Any):
        self.path: Optional[str] = context.get("path")
        super().__init__(message, **context)


class MissingFieldError(DatasourceConfigError):
    """
    A required field (url, username, password) is absent.

    ``field`` is the first absent field in url/username/password order;
    ``missing`` lists every absent one. When the value came from an
    unresolved ``${VAR}`` placeholder, ``placeholder`` names the variable.
    """

    def __init__(self, field: str, message: Optional[str] = None, **context: Any):
        self.field = field
        self.missing: List[str] = list(context.get("missing") or [field])
        self.placeholder: Optional[str] = context.get("placeholder")
        if message is None:
            message = f"Missing required field: {field}"
            if self.placeholder:
                message += f" (environment variable {self.placeholder} is not set)"
        context.setdefault("missing", self.missing)
        super().__init__(message, field=field, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field"] = self.field
        d["missing"] = self.missing
        d["placeholder"] = self.placeholder
        return d


class MalformedURLError(DatasourceConfigError):
    """Connection string cannot be parsed into host/port/database."""

    def __init__(self, url: str, reason: str, **context: Any):
        from dsconfig.engine.jdbc import redact_url

        self.url = redact_url(url)
        self.reason = reason
        super().__init__(f"Malformed connection URL '{self.url}': {reason}", **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["url"] = self.url
        d["reason"] = self.reason
        return d


class UnsupportedDriverError(DatasourceConfigError):
    """driver-class-name names something other than the PostgreSQL driver."""

    def __init__(self, message: str, **context: Any):
        self.driver: Optional[str] = context.get("driver")
        super().__init__(message, **context)


class ConfigValidationError(DatasourceConfigError):
    """
    Field validation failed (unknown ddl-auto, bad show-sql, bad tool setting).
    Includes field-level error details from Pydantic where available.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[list] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class SecretDecryptionError(DatasourceConfigError):
    """An ENC(...) value could not be decrypted with the configured key."""
    pass


# ---------------------------------------------------------------------------
# Connection diagnostics: operator-facing failures with a remedy
# ---------------------------------------------------------------------------

class ConnectionDiagnosticError(DatasourceConfigError):
    """
    A live connection check failed. ``remedy`` is a human instruction
    (possibly with a SQL statement) for the operator; it is never executed.
    """

    default_remedy = "Inspect the server log for details."

    def __init__(self, message: str, **context: Any):
        self.remedy: str = context.get("remedy") or self.default_remedy
        self.sqlstate: Optional[str] = context.get("sqlstate")
        context["remedy"] = self.remedy
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["remedy"] = self.remedy
        d["sqlstate"] = self.sqlstate
        return d


class AuthenticationFailedError(ConnectionDiagnosticError):
    """Credential mismatch between the configuration and the stored role."""

    default_remedy = "Correct the stored credentials for the role or the configured password."


class SchemaPermissionError(ConnectionDiagnosticError):
    """The role lacks grants on the target schema."""

    default_remedy = "Grant the role permissions on the schema."


class DatabaseNotFoundError(ConnectionDiagnosticError):
    """The configured database does not exist."""

    default_remedy = "Create the database or fix the database name in the URL."


class ServerUnreachableError(ConnectionDiagnosticError):
    """The server process is not running or cannot be reached."""

    default_remedy = (
        "Ensure the PostgreSQL server is running and accepting TCP connections "
        "on the configured host and port."
    )
