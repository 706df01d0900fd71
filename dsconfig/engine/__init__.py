"""dsconfig Engine — Config loading, validation, secrets, diagnostics."""

from dsconfig.engine.config import ApplicationConfig, load_application_config  # noqa: F401
from dsconfig.engine.jdbc import JdbcUrl, parse_jdbc_url  # noqa: F401
from dsconfig.engine.validator import DatasourceRecord, validate_datasource  # noqa: F401

__all__ = [
    "ApplicationConfig",
    "load_application_config",
    "JdbcUrl",
    "parse_jdbc_url",
    "DatasourceRecord",
    "validate_datasource",
]
