"""
dsconfig — PostgreSQL datasource configuration validator.

Loads a Spring-style application.yml, resolves ${VAR} placeholders,
profiles and ENC(...) secrets, validates the connection record and
diagnoses live connection failures.

    from dsconfig import validate_datasource
    record = validate_datasource({
        "url": "jdbc:postgresql://localhost:5432/studfolio_db",
        "username": "studfolio_user",
        "password": "studfolio123",
    })
    record.database  # "studfolio_db"
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "cli", "validate_datasource", "validate_config_file"]

from dsconfig.engine.validator import validate_config_file, validate_datasource  # noqa: E402,F401
