"""
dsconfig Configuration Validator — Turn a datasource configuration into a
normalized, frozen ``DatasourceRecord`` or fail with a structured error.

Checks, in order:
    1. url, username, password present (MissingFieldError)
    2. url parses to host/port/database (MalformedURLError)
    3. driver-class-name is the PostgreSQL driver (UnsupportedDriverError)
    4. ddl-auto / show-sql valid and free of unset placeholders
       (ConfigValidationError)

A field is absent when its key is missing, its value is None or blank, or it
came from a ``${VAR}`` placeholder whose variable is not set.

Pure: no I/O and nothing logged at INFO or above. The password is only
reachable through ``DatasourceRecord.password.get_secret_value()``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, SecretStr

from dsconfig.engine.config import (
    DRIVER_CLASS_NAME,
    ApplicationConfig,
    DdlAuto,
    canonicalize,
    load_application_config,
    unwrap_spring,
)
from dsconfig.engine.credentials import SecretCipher
from dsconfig.engine.environment import PlaceholderResolver
from dsconfig.engine.errors import (
    ConfigValidationError,
    DatasourceConfigError,
    MalformedURLError,
    MissingFieldError,
    UnsupportedDriverError,
)
from dsconfig.engine.jdbc import JdbcUrl, parse_jdbc_url, redact_url

logger = logging.getLogger("dsconfig.engine.validator")

REQUIRED_FIELDS = ("url", "username", "password")

_MASK = "**********"

# Keys a flat (un-nested) record may carry
_FLAT_DATASOURCE_KEYS = ("url", "username", "password", "driver-class-name")
_FLAT_DDL_KEYS = ("schema-auto-create", "ddl-auto")
# Optional settings whose unset placeholder is an error rather than a default
_SETTING_PATHS = ("datasource.driver-class-name", "jpa.")


class DatasourceRecord(BaseModel):
    """The normalized connection configuration record."""
    model_config = ConfigDict(frozen=True)

    url: str
    host: str
    port: int
    database: str
    hosts: Tuple[Tuple[str, int], ...]
    params: Dict[str, str] = {}
    username: str
    password: SecretStr
    driver_class_name: str = DRIVER_CLASS_NAME
    ddl_auto: DdlAuto = DdlAuto.NONE
    show_sql: bool = False
    source: Optional[str] = None

    @property
    def schema_auto_create(self) -> bool:
        """True when missing tables are created at application startup."""
        return self.ddl_auto.creates_tables

    @property
    def jdbc(self) -> JdbcUrl:
        return JdbcUrl(
            host=self.host,
            port=self.port,
            database=self.database,
            hosts=self.hosts,
            params=dict(self.params),
        )

    def sqlalchemy_url(self):
        """``sqlalchemy.engine.URL`` carrying the credentials."""
        return self.jdbc.to_sqlalchemy_url(
            username=self.username,
            password=self.password.get_secret_value(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view with the password masked."""
        return {
            "url": redact_url(self.url),
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "hosts": [f"{h}:{p}" for h, p in self.hosts],
            "params": {k: (_MASK if k.lower() == "password" else v) for k, v in self.params.items()},
            "username": self.username,
            "password": _MASK,
            "driver_class_name": self.driver_class_name,
            "ddl_auto": self.ddl_auto.value,
            "schema_auto_create": self.schema_auto_create,
            "show_sql": self.show_sql,
            "source": self.source,
        }


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------

def config_from_mapping(
    data: Mapping[str, Any],
    environ: Optional[Mapping[str, str]] = None,
    cipher: Optional[SecretCipher] = None,
    source: Optional[str] = None,
) -> ApplicationConfig:
    """
    Build an ApplicationConfig from literal values.

    Accepts a nested tree (``spring.datasource...`` or ``datasource...``) or a
    flat record ``{url, username, password, schemaAutoCreate}``. String values
    may be ``${VAR}`` placeholders.
    """
    tree = unwrap_spring(canonicalize(dict(data)))

    if "datasource" not in tree:
        datasource = {k: tree.pop(k) for k in _FLAT_DATASOURCE_KEYS if k in tree}
        jpa = tree.get("jpa") if isinstance(tree.get("jpa"), dict) else {}
        for key in _FLAT_DDL_KEYS:
            if key in tree:
                value = tree.pop(key)
                if isinstance(value, bool):
                    value = DdlAuto.UPDATE.value if value else DdlAuto.NONE.value
                jpa = {**jpa, "hibernate": {**(jpa.get("hibernate") or {}), "ddl-auto": value}}
        if "show-sql" in tree:
            jpa = {**jpa, "show-sql": tree.pop("show-sql")}
        tree = {"datasource": datasource, "jpa": jpa}

    resolver = PlaceholderResolver(environ=environ, cipher=cipher)
    resolved = resolver.resolve(tree)
    return ApplicationConfig.from_tree(
        resolved, strict=False, source=source, unresolved=resolver.unresolved,
    )


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def _raw_value(config: ApplicationConfig, field: str) -> Optional[str]:
    value = getattr(config.datasource, field)
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    return value


def _missing_field_error(config: ApplicationConfig) -> Optional[MissingFieldError]:
    missing: List[str] = []
    placeholders: Dict[str, str] = {}

    for field in REQUIRED_FIELDS:
        path = f"datasource.{field}"
        if path in config.unresolved:
            missing.append(field)
            placeholders[field] = config.unresolved[path]
            continue
        value = _raw_value(config, field)
        if value is None or not str(value).strip():
            missing.append(field)

    if not missing:
        return None
    return MissingFieldError(
        missing[0],
        missing=missing,
        placeholder=placeholders.get(missing[0]),
        source=config.source,
    )


def _check(config: ApplicationConfig) -> Tuple[List[DatasourceConfigError], Optional[JdbcUrl]]:
    problems: List[DatasourceConfigError] = []
    parsed: Optional[JdbcUrl] = None

    missing = _missing_field_error(config)
    if missing is not None:
        problems.append(missing)

    url = config.datasource.url
    if url and "url" not in (missing.missing if missing else []):
        try:
            parsed = parse_jdbc_url(url)
        except MalformedURLError as e:
            problems.append(MalformedURLError(url, e.reason, source=config.source))

    driver = config.datasource.driver_class_name
    if driver is not None and driver.strip() and driver.strip() != DRIVER_CLASS_NAME:
        problems.append(UnsupportedDriverError(
            f"Unsupported driver-class-name '{driver}' (expected {DRIVER_CLASS_NAME})",
            driver=driver,
            source=config.source,
        ))

    if config.jpa_error is not None:
        problems.append(config.jpa_error)
    problems.extend(_unresolved_setting_errors(config))

    return problems, parsed


def _unresolved_setting_errors(config: ApplicationConfig) -> List[ConfigValidationError]:
    """Unset ``${VAR}`` placeholders outside the required datasource fields."""
    required = {f"datasource.{field}" for field in REQUIRED_FIELDS}
    errors: List[ConfigValidationError] = []
    for path, variable in config.unresolved.items():
        if path in required or not path.startswith(_SETTING_PATHS):
            continue
        errors.append(ConfigValidationError(
            f"Invalid configuration: {path}: environment variable {variable} is not set",
            source=config.source,
            validation_errors=[{"loc": path, "msg": f"environment variable {variable} is not set"}],
            placeholder=variable,
        ))
    return errors


def collect_problems(
    source: Union[ApplicationConfig, Mapping[str, Any]],
    environ: Optional[Mapping[str, str]] = None,
    cipher: Optional[SecretCipher] = None,
) -> List[DatasourceConfigError]:
    """Run every check and return all problems instead of raising the first."""
    config = _as_config(source, environ, cipher)
    problems, _ = _check(config)
    return problems


def _as_config(
    source: Union[ApplicationConfig, Mapping[str, Any]],
    environ: Optional[Mapping[str, str]],
    cipher: Optional[SecretCipher],
) -> ApplicationConfig:
    if isinstance(source, ApplicationConfig):
        return source
    if isinstance(source, Mapping):
        return config_from_mapping(source, environ=environ, cipher=cipher)
    raise TypeError(
        f"Expected ApplicationConfig or mapping, got {type(source).__name__}"
    )


def validate_datasource(
    source: Union[ApplicationConfig, Mapping[str, Any]],
    environ: Optional[Mapping[str, str]] = None,
    cipher: Optional[SecretCipher] = None,
) -> DatasourceRecord:
    """
    Validate a datasource configuration and return the normalized record.

    Args:
        source: A loaded ApplicationConfig, or a mapping of literal values /
            ``${VAR}`` placeholders.
        environ: Environment for placeholders in a mapping source.
        cipher: SecretCipher for ENC(...) values in a mapping source.

    Raises:
        MissingFieldError: url, username or password is absent.
        MalformedURLError: url cannot be parsed into host/port/database.
        UnsupportedDriverError: driver-class-name is not org.postgresql.Driver.
        ConfigValidationError: ddl-auto or show-sql has an invalid value.
    """
    config = _as_config(source, environ, cipher)
    problems, parsed = _check(config)
    if problems:
        raise problems[0]

    ds = config.datasource
    record = DatasourceRecord(
        url=parsed.to_jdbc(),
        host=parsed.host,
        port=parsed.port,
        database=parsed.database,
        hosts=parsed.hosts,
        params=parsed.params,
        username=ds.username.strip(),
        password=ds.password,
        driver_class_name=DRIVER_CLASS_NAME,
        ddl_auto=config.jpa.hibernate.ddl_auto,
        show_sql=config.jpa.show_sql,
        source=config.source,
    )
    logger.debug("Validated datasource %s@%s:%s/%s", record.username, record.host, record.port, record.database)
    return record


def validate_config_file(
    config_path: Optional[str] = None,
    profile: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    cipher: Optional[SecretCipher] = None,
) -> DatasourceRecord:
    """Load application.yml (with profiles and placeholders) and validate it."""
    config = load_application_config(
        config_path, profile=profile, environ=environ, cipher=cipher, strict=False,
    )
    return validate_datasource(config)
