"""
dsconfig Environment Resolver — Resolves ``${VAR}`` placeholders, ``ENC(...)``
secrets, profile overlays and SPRING_* environment overrides for a raw
configuration tree.

Resolution order for a loaded configuration:
    1. Profile overlays (application-<profile>.yml) deep-merged over the base
    2. SPRING_DATASOURCE_* / SPRING_JPA_* environment overrides
    3. ``${NAME}`` / ``${NAME:default}`` placeholder substitution
    4. ``ENC(...)`` decryption

Placeholders that have neither a value nor a default are left unresolved and
recorded in ``PlaceholderResolver.unresolved`` (dotted key path → variable
name) so the validator can report the field as absent.
"""

from __future__ import annotations

import copy
import logging
import os
import re
from typing import Any, Dict, List, Mapping, Optional

from dsconfig.engine.credentials import SecretCipher, is_encrypted

logger = logging.getLogger("dsconfig.engine.environment")

PROFILES_ENV = "SPRING_PROFILES_ACTIVE"

_PLACEHOLDER = re.compile(r"\$\{(?P<name>[^}:]+)(?::(?P<default>[^}]*))?\}")

# Environment variable → dotted key path (Spring relaxed binding)
ENV_OVERRIDES = {
    "SPRING_DATASOURCE_URL": "datasource.url",
    "SPRING_DATASOURCE_USERNAME": "datasource.username",
    "SPRING_DATASOURCE_PASSWORD": "datasource.password",
    "SPRING_DATASOURCE_DRIVER_CLASS_NAME": "datasource.driver-class-name",
    "SPRING_DATASOURCE_DRIVERCLASSNAME": "datasource.driver-class-name",
    "SPRING_JPA_HIBERNATE_DDL_AUTO": "jpa.hibernate.ddl-auto",
    "SPRING_JPA_HIBERNATE_DDLAUTO": "jpa.hibernate.ddl-auto",
    "SPRING_JPA_SHOW_SQL": "jpa.show-sql",
    "SPRING_JPA_SHOWSQL": "jpa.show-sql",
}


class PlaceholderResolver:
    """
    Substitutes placeholders and decrypts secrets in a configuration tree.

    Usage:
        resolver = PlaceholderResolver(environ={"DB_PASSWORD": "s3cret"})
        tree = resolver.resolve({"datasource": {"password": "${DB_PASSWORD}"}})
        # → {"datasource": {"password": "s3cret"}}
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        cipher: Optional[SecretCipher] = None,
    ):
        self._environ = os.environ if environ is None else environ
        self._cipher = cipher
        self.unresolved: Dict[str, str] = {}

    @property
    def cipher(self) -> SecretCipher:
        if self._cipher is None:
            self._cipher = SecretCipher(environ=self._environ)
        return self._cipher

    def resolve(self, config: Any, path: str = "") -> Any:
        """Resolve placeholders and ENC(...) values throughout *config*."""
        if isinstance(config, dict):
            return {
                key: self.resolve(value, f"{path}.{key}" if path else str(key))
                for key, value in config.items()
            }
        if isinstance(config, list):
            return [self.resolve(item, f"{path}[{i}]") for i, item in enumerate(config)]
        if isinstance(config, str):
            return self.resolve_value(config, path)
        return copy.deepcopy(config)

    def resolve_value(self, value: str, path: str = "") -> Optional[str]:
        """
        Resolve a single string value.

        A value that is exactly one unresolved placeholder becomes None;
        an embedded unresolved placeholder keeps its literal text.
        """
        missing: List[str] = []

        def _substitute(match: "re.Match[str]") -> str:
            name = match.group("name").strip()
            default = match.group("default")
            if name in self._environ:
                return self._environ[name]
            if default is not None:
                return default
            missing.append(name)
            return match.group(0)

        result = _PLACEHOLDER.sub(_substitute, value)

        if missing:
            self.unresolved[path] = missing[0]
            logger.debug("Unresolved placeholder ${%s} at %s", missing[0], path or "<root>")
            if _PLACEHOLDER.fullmatch(value.strip()):
                return None
            return result

        if is_encrypted(result):
            logger.debug("Decrypting ENC(...) value at %s", path or "<root>")
            return self.cipher.decrypt(result)
        return result


# ---------------------------------------------------------------------------
# Profiles and overrides
# ---------------------------------------------------------------------------

def active_profiles(
    profile: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """
    Profiles to overlay, in order. An explicit *profile* (comma-separated
    allowed) wins over SPRING_PROFILES_ACTIVE.
    """
    env = os.environ if environ is None else environ
    raw = profile if profile is not None else env.get(PROFILES_ENV, "")
    return [p.strip() for p in raw.split(",") if p.strip()]


def apply_env_overrides(
    config: Dict[str, Any],
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Apply SPRING_DATASOURCE_* / SPRING_JPA_* variables on top of *config*."""
    env = os.environ if environ is None else environ
    result = copy.deepcopy(config)
    for var, dotted in ENV_OVERRIDES.items():
        if var not in env:
            continue
        node = result
        *parents, leaf = dotted.split(".")
        for part in parents:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[leaf] = env[var]
        logger.debug("Applied environment override %s → %s", var, dotted)
    return result


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge override dict into base dict. Override values win.

    Only nested dicts are merged; lists and scalars are replaced.
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result
