"""
dsconfig CLI — Validate and diagnose a Spring-style PostgreSQL datasource
configuration.

Commands:
- dsconfig validate  — Validate application.yml (placeholders, profiles, URL)
- dsconfig show      — Print the normalized record (password masked)
- dsconfig check     — Validate, then run live connection diagnostics
- dsconfig encrypt   — Produce an ENC(...) value for a secret
- dsconfig init      — Write an application.yml template using ${...} variables
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from dsconfig.engine.config import ToolSettings, load_application_config, load_tool_settings
from dsconfig.engine.credentials import SecretCipher
from dsconfig.engine.errors import ConnectionDiagnosticError, DatasourceConfigError
from dsconfig.engine.logging import (
    FileLogger,
    LogEntry,
    configure_logging,
    log_diagnostic_event,
    log_validation_event,
)
from dsconfig.engine.validator import collect_problems, validate_datasource

logger = logging.getLogger("dsconfig.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dsconfig",
        description="dsconfig — PostgreSQL datasource configuration validator",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_config_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--config", help="Path to application.yml (default: auto-discover)"
        )
        sub.add_argument(
            "--profile", help="Active profile(s), comma-separated (default: SPRING_PROFILES_ACTIVE)"
        )

    # dsconfig validate
    validate_parser = subparsers.add_parser("validate", help="Validate the datasource configuration")
    add_config_args(validate_parser)

    # dsconfig show
    show_parser = subparsers.add_parser("show", help="Print the normalized datasource record")
    add_config_args(show_parser)
    show_parser.add_argument("--json", action="store_true", help="Print as JSON")

    # dsconfig check
    check_parser = subparsers.add_parser("check", help="Run live connection diagnostics")
    add_config_args(check_parser)
    check_parser.add_argument("--schema", default="public", help="Schema to check grants on (default: public)")
    check_parser.add_argument("--timeout", type=int, help="Connect timeout in seconds")

    # dsconfig encrypt
    encrypt_parser = subparsers.add_parser("encrypt", help="Encrypt a value as ENC(...)")
    encrypt_parser.add_argument("--value", help="Value to encrypt (prompted if not provided)")

    # dsconfig init
    init_parser = subparsers.add_parser("init", help="Write an application.yml template")
    init_parser.add_argument(
        "--path", default="application.yml", help="Output path (default: application.yml)"
    )
    init_parser.add_argument("--database", default="app_db", help="Database name (default: app_db)")
    init_parser.add_argument("--username", default="app_user", help="Role name (default: app_user)")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing file")

    args = parser.parse_args(argv)

    try:
        settings = load_tool_settings()
    except DatasourceConfigError as e:
        print(f"[ERROR] {e.message}")
        return 1
    configure_logging(settings.log_level, settings.log_format)

    if args.command == "validate":
        return cmd_validate(args, settings)
    elif args.command == "show":
        return cmd_show(args, settings)
    elif args.command == "check":
        return cmd_check(args, settings)
    elif args.command == "encrypt":
        return cmd_encrypt(args, settings)
    elif args.command == "init":
        return cmd_init(args, settings)
    else:
        parser.print_help()
        return 0


def _cipher(settings: ToolSettings) -> SecretCipher:
    key = settings.secret_key.get_secret_value() if settings.secret_key else None
    return SecretCipher(secret_key=key)


def _load(args: argparse.Namespace, settings: ToolSettings):
    return load_application_config(
        args.config, profile=args.profile, cipher=_cipher(settings), strict=False,
    )


def _record_event(settings: ToolSettings, entry: LogEntry) -> None:
    """Append to the event log; an unwritable log directory is not fatal."""
    try:
        FileLogger(settings.log_dir).write(entry)
    except OSError as e:
        logger.warning("Could not write %s event log: %s", entry.category, e)
        print(f"[WARN] Could not write event log under {settings.log_dir}: {e.strerror or e}")


# ---------------------------------------------------------------------------
# dsconfig validate / show
# ---------------------------------------------------------------------------

def cmd_validate(args: argparse.Namespace, settings: ToolSettings) -> int:
    """Validate the configuration, reporting every problem found."""
    try:
        config = _load(args, settings)
    except DatasourceConfigError as e:
        print(f"[ERROR] {e.message}")
        _record_event(settings, log_validation_event(args.config, False, errors=[e.to_dict()]))
        return 1

    problems = collect_problems(config)
    if problems:
        for problem in problems:
            print(f"[ERROR] {problem.message}")
        _record_event(settings, log_validation_event(
            config.source, False, config.profiles, errors=[p.to_dict() for p in problems],
        ))
        print(f"\n{len(problems)} error(s) found in {config.source}")
        return 1

    record = validate_datasource(config)
    _record_event(settings, log_validation_event(
        config.source, True, config.profiles, record=record.to_dict(),
    ))
    print(f"[OK] {config.source}")
    print(f"     {record.username}@{record.host}:{record.port}/{record.database}")
    print(f"     ddl-auto={record.ddl_auto.value} show-sql={str(record.show_sql).lower()}")
    return 0


def cmd_show(args: argparse.Namespace, settings: ToolSettings) -> int:
    """Print the normalized record with the password masked."""
    try:
        record = validate_datasource(_load(args, settings))
    except DatasourceConfigError as e:
        print(f"[ERROR] {e.message}")
        return 1

    data = record.to_dict()
    if args.json:
        print(json.dumps(data, indent=2))
    else:
        width = max(len(k) for k in data)
        for key, value in data.items():
            print(f"{key.ljust(width)}  {value}")
    return 0


# ---------------------------------------------------------------------------
# dsconfig check
# ---------------------------------------------------------------------------

_STATUS_LABELS = {
    "healthy": "[OK]  ",
    "unhealthy": "[FAIL]",
    "skipped": "[SKIP]",
    "unknown": "[??]  ",
}


def cmd_check(args: argparse.Namespace, settings: ToolSettings) -> int:
    """Validate, then diagnose the live connection."""
    from dsconfig.engine.health import diagnose

    try:
        record = validate_datasource(_load(args, settings))
    except DatasourceConfigError as e:
        print(f"[ERROR] {e.message}")
        return 1

    timeout = args.timeout or settings.connect_timeout
    report = diagnose(record, schema=args.schema, connect_timeout=timeout)

    print(f"Checking {report.target} (schema '{report.schema}')")
    for check in report.checks:
        label = _STATUS_LABELS[check.status.value]
        line = f"  {label} {check.name}"
        if check.status.value in ("healthy", "unhealthy"):
            line += f" ({check.latency_ms:.1f} ms)"
        print(line)
        if check.details and check.name == "identity":
            print(f"         server {check.details.get('server_version')}")

    _record_event(settings, log_diagnostic_event(record.source, report.to_dict()))

    if report.error is not None:
        _print_diagnostic_error(report.error)
        return 1
    print("\nConnection OK")
    return 0


def _print_diagnostic_error(error: ConnectionDiagnosticError) -> None:
    print(f"\n[ERROR] {error.error_type}: {error.message}")
    print(f"  Remedy: {error.remedy}")


# ---------------------------------------------------------------------------
# dsconfig encrypt
# ---------------------------------------------------------------------------

def cmd_encrypt(args: argparse.Namespace, settings: ToolSettings) -> int:
    """Encrypt a value with DSCONFIG_SECRET_KEY."""
    cipher = _cipher(settings)
    if not cipher.configured:
        print("[ERROR] No secret key configured; set DSCONFIG_SECRET_KEY")
        return 1

    value = args.value
    if not value:
        while True:
            value = getpass.getpass("  Value to encrypt: ")
            confirm = getpass.getpass("  Confirm value: ")
            if value == confirm:
                break
            print("  Values do not match. Try again.")

    if not value:
        print("[ERROR] Refusing to encrypt an empty value")
        return 1

    print(cipher.encrypt(value))
    return 0


# ---------------------------------------------------------------------------
# dsconfig init
# ---------------------------------------------------------------------------

_TEMPLATE = """\
spring:
  datasource:
    # Set DB_URL, DB_USERNAME and DB_PASSWORD in deployed environments.
    url: "${{DB_URL:jdbc:postgresql://localhost:5432/{database}}}"
    username: "${{DB_USERNAME:{username}}}"
    password: "${{DB_PASSWORD}}"
    driver-class-name: org.postgresql.Driver
  jpa:
    hibernate:
      ddl-auto: update
    show-sql: true
"""


def cmd_init(args: argparse.Namespace, settings: ToolSettings) -> int:
    """Write an application.yml template with environment placeholders."""
    path = Path(args.path)
    database = args.database.strip()
    username = args.username.strip()

    if not database or not username:
        print("[ERROR] --database and --username must not be empty")
        return 1
    if path.exists() and not args.force:
        print(f"[ERROR] File already exists: {path} (use --force to overwrite)")
        return 1

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_TEMPLATE.format(database=database, username=username), encoding="utf-8")
    logger.debug("Wrote template %s", path)

    print(f"[OK] Created {path}")
    print()
    print("Next steps:")
    print("  1. export DB_PASSWORD=...   (never commit it)")
    print(f"  2. Run: dsconfig validate --config {path}")
    print(f"  3. Run: dsconfig check --config {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
