"""
dsconfig Configuration — Load application.yml / application.properties into
validated Pydantic models, plus the tool's own settings from DSCONFIG_* env.

Usage:
    from dsconfig.engine.config import load_application_config, get_tool_settings
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    SecretStr,
    ValidationError,
    field_validator,
)

from dsconfig.engine.credentials import SECRET_KEY_ENV, SecretCipher
from dsconfig.engine.environment import (
    PlaceholderResolver,
    active_profiles,
    apply_env_overrides,
    deep_merge,
)
from dsconfig.engine.errors import ConfigFileError, ConfigValidationError

logger = logging.getLogger("dsconfig.engine.config")

DRIVER_CLASS_NAME = "org.postgresql.Driver"

CONFIG_NAMES = ("application.yml", "application.yaml", "application.properties")
CONFIG_DIRS = ("", "config", "src/main/resources")


# ---------------------------------------------------------------------------
# Pydantic models for the datasource / jpa tree
# ---------------------------------------------------------------------------

class DdlAuto(str, Enum):
    """Hibernate schema-synchronization mode."""
    NONE = "none"
    VALIDATE = "validate"
    UPDATE = "update"
    CREATE = "create"
    CREATE_DROP = "create-drop"

    @property
    def creates_tables(self) -> bool:
        return self in (DdlAuto.UPDATE, DdlAuto.CREATE, DdlAuto.CREATE_DROP)


def _scalar_to_str(v: Any) -> Any:
    # YAML 1.1 reads yes/on/true as booleans; Spring binds them as "true"/"false"
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return str(v)
    return v


class DatasourceProperties(BaseModel):
    """``datasource:`` node. Required-ness is enforced by the validator."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    driver_class_name: Optional[str] = Field(default=None, alias="driver-class-name")

    @field_validator("url", "username", "password", "driver_class_name", mode="before")
    @classmethod
    def coerce_scalars(cls, v: Any) -> Any:
        return _scalar_to_str(v)


class HibernateProperties(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    ddl_auto: DdlAuto = Field(default=DdlAuto.NONE, alias="ddl-auto")

    @field_validator("ddl_auto", mode="before")
    @classmethod
    def normalize_ddl_auto(cls, v: Any) -> Any:
        if v is None:
            return DdlAuto.NONE
        if isinstance(v, str):
            v = v.strip().lower().replace("_", "-")
            if v not in {m.value for m in DdlAuto}:
                raise ValueError(
                    "ddl-auto must be one of none/validate/update/create/create-drop, "
                    f"got '{v}'"
                )
        return v


class JpaProperties(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    show_sql: bool = Field(default=False, alias="show-sql")
    hibernate: HibernateProperties = HibernateProperties()

    @field_validator("show_sql", mode="before")
    @classmethod
    def default_show_sql(cls, v: Any) -> Any:
        return False if v is None else v


class ApplicationConfig(BaseModel):
    """Root model for the datasource-relevant part of application.yml."""
    datasource: DatasourceProperties = DatasourceProperties()
    jpa: JpaProperties = JpaProperties()

    source: Optional[str] = None
    profiles: List[str] = Field(default_factory=list)
    # dotted key path → environment variable that had no value
    unresolved: Dict[str, str] = Field(default_factory=dict)

    _jpa_error: Optional[ConfigValidationError] = PrivateAttr(default=None)

    @property
    def jpa_error(self) -> Optional[ConfigValidationError]:
        """The deferred ``jpa:`` validation failure of a non-strict load."""
        return self._jpa_error

    @classmethod
    def from_tree(
        cls,
        tree: Mapping[str, Any],
        strict: bool = True,
        **extra: Any,
    ) -> "ApplicationConfig":
        """
        Build from a resolved tree (``spring:`` already unwrapped).

        With ``strict=False`` an invalid ``jpa:`` node (ddl-auto, show-sql)
        does not raise: the defaults are used and the error is kept on
        ``jpa_error`` so the validator can report it after the datasource
        checks.

        Raises:
            ConfigValidationError: A field failed Pydantic validation.
        """
        jpa = tree.get("jpa") or {}
        jpa_error: Optional[ConfigValidationError] = None
        if not strict:
            try:
                JpaProperties.model_validate(jpa)
            except ValidationError as e:
                jpa_error = _validation_error(e, source=extra.get("source"), prefix=("jpa",))
                jpa = {}

        try:
            config = cls(
                datasource=tree.get("datasource") or {},
                jpa=jpa,
                **extra,
            )
        except ValidationError as e:
            raise _validation_error(e, source=extra.get("source"))
        config._jpa_error = jpa_error
        return config


def _validation_error(
    exc: ValidationError,
    source: Optional[str] = None,
    prefix: Tuple[str, ...] = (),
) -> ConfigValidationError:
    """Wrap a Pydantic error without ever echoing input values."""
    errors = exc.errors(include_input=False, include_url=False)
    locs = [".".join(str(p) for p in (*prefix, *err["loc"])) for err in errors]
    detail = "; ".join(f"{loc}: {err['msg']}" for loc, err in zip(locs, errors))
    return ConfigValidationError(
        f"Invalid configuration: {detail}",
        source=source,
        validation_errors=[
            {"loc": loc, "msg": err["msg"]} for loc, err in zip(locs, errors)
        ],
    )


# ---------------------------------------------------------------------------
# Raw tree handling
# ---------------------------------------------------------------------------

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def canonical_key(key: Any) -> str:
    """``driverClassName`` / ``driver_class_name`` → ``driver-class-name``."""
    text = _CAMEL_BOUNDARY.sub("-", str(key))
    return text.replace("_", "-").lower()


def canonicalize(tree: Any) -> Any:
    """Apply ``canonical_key`` to every mapping key, recursively."""
    if isinstance(tree, dict):
        return {canonical_key(k): canonicalize(v) for k, v in tree.items()}
    if isinstance(tree, list):
        return [canonicalize(v) for v in tree]
    return tree


def unwrap_spring(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Keys may live under a top-level ``spring:`` node or at the root.
    Both forms are merged; the ``spring:`` node wins.
    """
    root = {k: v for k, v in raw.items() if k != "spring"}
    spring = raw.get("spring")
    if isinstance(spring, dict):
        return deep_merge(root, spring)
    return dict(root)


_PROPERTIES_ESCAPE = re.compile(r"\\(u[0-9a-fA-F]{4}|u|.)", re.DOTALL)
_PROPERTIES_CHARS = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_PROPERTIES_WS = " \t\f"


def _trailing_backslashes(text: str) -> int:
    return len(text) - len(text.rstrip("\\"))


def _logical_lines(text: str):
    """Yield ``(lineno, line)`` with comments dropped and ``\\`` continuations joined."""
    buffer: Optional[str] = None
    start = 0
    for lineno, line in enumerate(text.splitlines(), 1):
        stripped = line.lstrip(_PROPERTIES_WS)
        if buffer is None:
            if not stripped or stripped[0] in "#!":
                continue
            buffer, start = "", lineno
        if _trailing_backslashes(stripped) % 2:
            buffer += stripped[:-1]
            continue
        yield start, buffer + stripped
        buffer = None
    if buffer is not None:
        yield start, buffer


def _unescape_properties(text: str, lineno: int) -> str:
    def _replace(match: "re.Match[str]") -> str:
        escape = match.group(1)
        if escape == "u":
            raise ConfigFileError(
                f"Invalid properties line {lineno}: malformed \\uxxxx escape", line=lineno
            )
        if len(escape) == 5:
            return chr(int(escape[1:], 16))
        return _PROPERTIES_CHARS.get(escape, escape)

    return _PROPERTIES_ESCAPE.sub(_replace, text)


def _split_property(line: str) -> Tuple[str, str]:
    """Split at the first unescaped ``=``, ``:`` or whitespace."""
    i = 0
    while i < len(line):
        if line[i] == "\\":
            i += 2
            continue
        if line[i] in "=:" or line[i] in _PROPERTIES_WS:
            break
        i += 1
    key, rest = line[:i], line[i:].lstrip(_PROPERTIES_WS)
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(_PROPERTIES_WS)
    value = rest.rstrip()
    if value != rest and _trailing_backslashes(value) % 2:
        # keep the escaped whitespace character
        value = rest[:len(value) + 1]
    return key, value


def parse_properties(text: str) -> Dict[str, Any]:
    """
    Parse Java ``.properties`` text into a nested dict.

    Follows ``java.util.Properties``: ``=``, ``:`` or whitespace separates key
    from value, a line ending in an odd number of backslashes continues on
    the next one, and ``\\:``, ``\\=``, ``\\t``, ``\\n``, ``\\uXXXX`` escapes are
    decoded. ``a.b.c=value`` becomes ``{"a": {"b": {"c": "value"}}}``.
    """
    tree: Dict[str, Any] = {}
    for lineno, line in _logical_lines(text):
        raw_key, raw_value = _split_property(line)
        key = _unescape_properties(raw_key, lineno)
        value = _unescape_properties(raw_value, lineno)
        node = tree
        *parents, leaf = key.split(".")
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[leaf] = value
    return tree


def _document_profile(doc: Mapping[str, Any]) -> Optional[str]:
    """Profile a multi-document YAML section is activated on, if any."""
    spring = doc.get("spring") or {}
    if not isinstance(spring, dict):
        return None
    activate = (spring.get("config") or {}).get("activate") or {}
    if isinstance(activate, dict) and activate.get("on-profile"):
        return str(activate["on-profile"])
    legacy = spring.get("profiles")
    if isinstance(legacy, str):
        return legacy
    return None


def read_config_file(path: Path, profiles: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Read one application.yml / .yaml / .properties file into a canonical tree.

    YAML files may hold several ``---`` documents; a document activated on a
    profile (``spring.config.activate.on-profile``) is merged only when that
    profile is active.
    """
    profiles = profiles or []
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(f"Cannot read config file {path}: {e}", path=str(path))

    if path.suffix == ".properties":
        return unwrap_spring(canonicalize(parse_properties(text)))

    try:
        documents = [d for d in yaml.safe_load_all(text) if d is not None]
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Invalid YAML in {path}: {e}", path=str(path))

    tree: Dict[str, Any] = {}
    for doc in documents:
        if not isinstance(doc, dict):
            raise ConfigFileError(
                f"Expected a mapping at the top of {path}, got {type(doc).__name__}",
                path=str(path),
            )
        doc = canonicalize(doc)
        on_profile = _document_profile(doc)
        if on_profile is not None:
            wanted = [p.strip() for p in on_profile.split(",")]
            if not any(p in profiles for p in wanted):
                logger.debug("Skipping YAML document for inactive profile '%s'", on_profile)
                continue
        tree = deep_merge(tree, unwrap_spring(doc))
    return tree


def _profile_file(base: Path, profile: str) -> Optional[Path]:
    for suffix in (base.suffix, ".yml", ".yaml", ".properties"):
        candidate = base.with_name(f"{base.stem}-{profile}{suffix}")
        if candidate.exists():
            return candidate
    return None


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

def find_application_config(start: Optional[Path] = None) -> Optional[Path]:
    """
    Find application.yml/.yaml/.properties by walking up from *start*
    (default CWD), checking ./, ./config/ and ./src/main/resources/ at
    each level.
    """
    current = Path(start) if start else Path.cwd()
    for parent in [current, *current.parents]:
        for sub in CONFIG_DIRS:
            for name in CONFIG_NAMES:
                candidate = parent / sub / name if sub else parent / name
                if candidate.is_file():
                    return candidate
    return None


def load_application_config(
    config_path: Optional[str] = None,
    profile: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    cipher: Optional[SecretCipher] = None,
    strict: bool = True,
) -> ApplicationConfig:
    """
    Load, overlay and resolve an application configuration file.

    Args:
        config_path: Path to application.yml. If None, auto-discovers.
        profile: Active profile(s), comma-separated. Falls back to
            SPRING_PROFILES_ACTIVE.
        environ: Environment mapping for placeholders. Defaults to os.environ.
        cipher: SecretCipher for ENC(...) values.
        strict: When False, an invalid ddl-auto or show-sql is kept on
            ``ApplicationConfig.jpa_error`` instead of raised.

    Returns:
        ApplicationConfig with placeholders resolved. Required fields are not
        checked here; see ``dsconfig.engine.validator``.

    Raises:
        ConfigFileError: File not found, unreadable or unparseable.
        ConfigValidationError: A field has the wrong type or an unknown value.
        SecretDecryptionError: An ENC(...) value cannot be decrypted.
    """
    env = os.environ if environ is None else environ

    if config_path is None:
        found = find_application_config()
        if found is None:
            raise ConfigFileError(
                "No application.yml, application.yaml or application.properties found"
            )
        path = found
    else:
        path = Path(config_path)

    if not path.is_file():
        raise ConfigFileError(f"Config file not found: {path}", path=str(path))

    profiles = active_profiles(profile, env)
    tree = read_config_file(path, profiles)

    for name in profiles:
        overlay = _profile_file(path, name)
        if overlay is None:
            logger.debug("No config file for profile '%s' next to %s", name, path)
            continue
        logger.debug("Applying profile overlay %s", overlay)
        tree = deep_merge(tree, read_config_file(overlay, profiles))

    tree = apply_env_overrides(tree, env)

    resolver = PlaceholderResolver(environ=env, cipher=cipher)
    tree = resolver.resolve(tree)

    config = ApplicationConfig.from_tree(
        tree,
        strict=strict,
        source=str(path),
        profiles=profiles,
        unresolved=resolver.unresolved,
    )
    logger.info("Loaded %s (profiles: %s)", path, ",".join(profiles) or "default")
    return config


# ---------------------------------------------------------------------------
# Tool settings (DSCONFIG_* environment variables)
# ---------------------------------------------------------------------------

class ToolSettings(BaseModel):
    """Settings for dsconfig itself."""
    log_level: str = "INFO"
    log_format: str = "text"
    log_dir: str = ".dsconfig/logs"
    connect_timeout: int = 5
    secret_key: Optional[SecretStr] = None

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"log_level must be DEBUG/INFO/WARNING/ERROR/CRITICAL, got '{v}'")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            raise ValueError(f"log_format must be text/json, got '{v}'")
        return v

    @field_validator("connect_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"connect_timeout must be positive, got {v}")
        return v


_tool_settings: Optional[ToolSettings] = None


def load_tool_settings(environ: Optional[Mapping[str, str]] = None) -> ToolSettings:
    """Read DSCONFIG_* variables into ToolSettings."""
    global _tool_settings
    env = os.environ if environ is None else environ

    data: Dict[str, Any] = {}
    for field_name, var in (
        ("log_level", "DSCONFIG_LOG_LEVEL"),
        ("log_format", "DSCONFIG_LOG_FORMAT"),
        ("log_dir", "DSCONFIG_LOG_DIR"),
        ("connect_timeout", "DSCONFIG_CONNECT_TIMEOUT"),
        ("secret_key", SECRET_KEY_ENV),
    ):
        if env.get(var):
            data[field_name] = env[var]

    try:
        _tool_settings = ToolSettings(**data)
    except ValidationError as e:
        raise _validation_error(e, source="environment")
    return _tool_settings


def get_tool_settings() -> ToolSettings:
    """Get the currently loaded tool settings, loading if necessary."""
    global _tool_settings
    if _tool_settings is None:
        _tool_settings = load_tool_settings()
    return _tool_settings
