"""
dsconfig Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest


# ---------------------------------------------------------------------------
# Environment isolation: no real SPRING_* / DSCONFIG_* / DB_* leaks in
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Reset global singletons and scrub relevant environment variables."""
    import dsconfig.engine.config as cfg_mod

    cfg_mod._tool_settings = None
    for var in list(os.environ):
        if var.startswith(("SPRING_", "DSCONFIG_", "DB_")):
            monkeypatch.delenv(var, raising=False)

    yield

    root = logging.getLogger("dsconfig")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.propagate = True
    root.setLevel(logging.NOTSET)


STUDFOLIO_YAML = (
    "spring:\n"
    "  datasource:\n"
    "    url: jdbc:postgresql://localhost:5432/studfolio_db\n"
    "    username: studfolio_user\n"
    "    password: studfolio123\n"
    "    driver-class-name: org.postgresql.Driver\n"
    "  jpa:\n"
    "    hibernate:\n"
    "      ddl-auto: update\n"
    "    show-sql: true\n"
)


@pytest.fixture
def studfolio_values():
    """The literal record from the setup runbook."""
    return {
        "url": "jdbc:postgresql://localhost:5432/studfolio_db",
        "username": "studfolio_user",
        "password": "studfolio123",
    }


@pytest.fixture
def studfolio_record(studfolio_values):
    """A validated DatasourceRecord for the runbook values, ddl-auto=update."""
    from dsconfig.engine.validator import validate_datasource

    return validate_datasource({**studfolio_values, "ddl-auto": "update"})


@pytest.fixture
def project_root(tmp_path):
    """
    Create a minimal Spring project tree:
        src/main/resources/application.yml       (literal values)
        src/main/resources/application-prod.yml (${...} placeholders)
    Returns the root Path.
    """
    root = tmp_path / "project"
    resources = root / "src" / "main" / "resources"
    resources.mkdir(parents=True)

    (resources / "application.yml").write_text(STUDFOLIO_YAML, encoding="utf-8")
    (resources / "application-prod.yml").write_text(
        "spring:\n"
        "  datasource:\n"
        "    url: ${DB_URL}\n"
        "    username: ${DB_USERNAME:studfolio_user}\n"
        "    password: ${DB_PASSWORD}\n"
        "  jpa:\n"
        "    show-sql: false\n",
        encoding="utf-8",
    )
    return root


@pytest.fixture
def app_yml(project_root) -> Path:
    return project_root / "src" / "main" / "resources" / "application.yml"
