"""Unit tests for dsconfig.engine.config — file loading, profiles, tool settings."""

from pathlib import Path

import pytest

from dsconfig.engine.config import (
    ApplicationConfig,
    DdlAuto,
    ToolSettings,
    canonical_key,
    find_application_config,
    get_tool_settings,
    load_application_config,
    load_tool_settings,
    parse_properties,
)
from dsconfig.engine.errors import ConfigFileError, ConfigValidationError


class TestApplicationConfigModel:
    """Pydantic model defaults and coercion."""

    def test_defaults(self):
        cfg = ApplicationConfig()
        assert cfg.datasource.url is None
        assert cfg.datasource.password is None
        assert cfg.jpa.show_sql is False
        assert cfg.jpa.hibernate.ddl_auto == DdlAuto.NONE

    def test_from_tree_with_aliases(self):
        cfg = ApplicationConfig.from_tree({
            "datasource": {"url": "u", "driver-class-name": "org.postgresql.Driver"},
            "jpa": {"show-sql": "true", "hibernate": {"ddl-auto": "UPDATE"}},
        })
        assert cfg.datasource.driver_class_name == "org.postgresql.Driver"
        assert cfg.jpa.show_sql is True
        assert cfg.jpa.hibernate.ddl_auto == DdlAuto.UPDATE

    def test_numeric_password_coerced(self):
        cfg = ApplicationConfig.from_tree({"datasource": {"password": 123456}})
        assert cfg.datasource.password.get_secret_value() == "123456"

    def test_invalid_ddl_auto(self):
        with pytest.raises(ConfigValidationError, match="ddl-auto"):
            ApplicationConfig.from_tree({"jpa": {"hibernate": {"ddl-auto": "sometimes"}}})

    def test_invalid_show_sql(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            ApplicationConfig.from_tree({
                "datasource": {"password": "hunter2"},
                "jpa": {"show-sql": "perhaps"},
            })
        assert exc_info.value.validation_errors
        assert "hunter2" not in exc_info.value.to_json()
        assert "perhaps" not in exc_info.value.message

    @pytest.mark.parametrize("value,expected", [(True, "true"), (False, "false")])
    def test_boolean_credentials_coerced(self, value, expected):
        cfg = ApplicationConfig.from_tree({"datasource": {"username": value, "password": value}})
        assert cfg.datasource.username == expected
        assert cfg.datasource.password.get_secret_value() == expected

    def test_non_strict_defers_jpa_error(self):
        cfg = ApplicationConfig.from_tree(
            {"datasource": {"url": "u"}, "jpa": {"hibernate": {"ddl-auto": "sometimes"}}},
            strict=False,
            source="application.yml",
        )
        assert cfg.jpa.hibernate.ddl_auto == DdlAuto.NONE
        assert isinstance(cfg.jpa_error, ConfigValidationError)
        assert cfg.jpa_error.validation_errors[0]["loc"] == "jpa.hibernate.ddl-auto"
        assert cfg.jpa_error.source == "application.yml"

    def test_non_strict_without_jpa_error(self):
        cfg = ApplicationConfig.from_tree({"jpa": {"show-sql": "true"}}, strict=False)
        assert cfg.jpa_error is None
        assert cfg.jpa.show_sql is True

    def test_ddl_auto_creates_tables(self):
        assert DdlAuto.UPDATE.creates_tables
        assert DdlAuto.CREATE.creates_tables
        assert DdlAuto.CREATE_DROP.creates_tables
        assert not DdlAuto.NONE.creates_tables
        assert not DdlAuto.VALIDATE.creates_tables


class TestCanonicalKeys:
    @pytest.mark.parametrize("key,expected", [
        ("driverClassName", "driver-class-name"),
        ("driver_class_name", "driver-class-name"),
        ("driver-class-name", "driver-class-name"),
        ("ddlAuto", "ddl-auto"),
        ("showSql", "show-sql"),
        ("url", "url"),
    ])
    def test_canonical_key(self, key, expected):
        assert canonical_key(key) == expected


class TestParseProperties:
    def test_nested_keys(self):
        tree = parse_properties(
            "# comment\n"
            "! also a comment\n"
            "\n"
            "spring.datasource.url=jdbc:postgresql://localhost:5432/studfolio_db\n"
            "spring.datasource.username = studfolio_user\n"
            "spring.jpa.show-sql: true\n"
        )
        assert tree["spring"]["datasource"]["url"] == "jdbc:postgresql://localhost:5432/studfolio_db"
        assert tree["spring"]["datasource"]["username"] == "studfolio_user"
        assert tree["spring"]["jpa"]["show-sql"] == "true"

    def test_empty_value(self):
        assert parse_properties("a.b=\n") == {"a": {"b": ""}}

    def test_escaped_separators(self):
        tree = parse_properties(
            "spring.datasource.url=jdbc\\:postgresql\\://localhost\\:5432/studfolio_db\n"
            "spring.datasource.password=pa\\=ss\\\\word\n"
        )
        assert tree["spring"]["datasource"]["url"] == "jdbc:postgresql://localhost:5432/studfolio_db"
        assert tree["spring"]["datasource"]["password"] == "pa=ss\\word"

    def test_unicode_and_control_escapes(self):
        tree = parse_properties("a.b=caf\\u00e9\\tbar\n")
        assert tree["a"]["b"] == "café\tbar"

    def test_line_continuation(self):
        tree = parse_properties(
            "spring.datasource.url=jdbc:postgresql://localhost:5432/\\\n"
            "    studfolio_db\n"
            "spring.datasource.username=studfolio_user\n"
        )
        assert tree["spring"]["datasource"]["url"] == "jdbc:postgresql://localhost:5432/studfolio_db"
        assert tree["spring"]["datasource"]["username"] == "studfolio_user"

    def test_even_backslashes_do_not_continue(self):
        tree = parse_properties("a.b=x\\\\\na.c=y\n")
        assert tree["a"] == {"b": "x\\", "c": "y"}

    def test_escaped_key_separator(self):
        assert parse_properties("a\\:b=c\n") == {"a:b": "c"}

    def test_whitespace_separator_and_key_only(self):
        assert parse_properties("a.b  value here\nflag\n") == {
            "a": {"b": "value here"},
            "flag": "",
        }

    def test_comment_inside_continuation_is_value(self):
        tree = parse_properties("a.b=one \\\n#two\n")
        assert tree["a"]["b"] == "one #two"

    def test_malformed_unicode_escape(self):
        with pytest.raises(ConfigFileError, match="line 2"):
            parse_properties("a.b=ok\na.c=\\u12\n")


class TestLoadApplicationConfig:
    """load_application_config() from files."""

    def test_load_yaml(self, app_yml):
        cfg = load_application_config(str(app_yml), environ={})
        assert cfg.datasource.url == "jdbc:postgresql://localhost:5432/studfolio_db"
        assert cfg.datasource.username == "studfolio_user"
        assert cfg.datasource.password.get_secret_value() == "studfolio123"
        assert cfg.jpa.hibernate.ddl_auto == DdlAuto.UPDATE
        assert cfg.jpa.show_sql is True
        assert cfg.source == str(app_yml)
        assert cfg.profiles == []

    def test_root_level_keys(self, tmp_path):
        path = tmp_path / "application.yml"
        path.write_text(
            "datasource:\n"
            "  url: jdbc:postgresql://db/app\n"
            "  username: app\n"
            "jpa:\n"
            "  show-sql: false\n",
            encoding="utf-8",
        )
        cfg = load_application_config(str(path), environ={})
        assert cfg.datasource.url == "jdbc:postgresql://db/app"
        assert cfg.jpa.show_sql is False

    def test_camel_case_keys(self, tmp_path):
        path = tmp_path / "application.yml"
        path.write_text(
            "spring:\n"
            "  datasource:\n"
            "    driverClassName: org.postgresql.Driver\n"
            "  jpa:\n"
            "    showSql: true\n"
            "    hibernate:\n"
            "      ddlAuto: validate\n",
            encoding="utf-8",
        )
        cfg = load_application_config(str(path), environ={})
        assert cfg.datasource.driver_class_name == "org.postgresql.Driver"
        assert cfg.jpa.show_sql is True
        assert cfg.jpa.hibernate.ddl_auto == DdlAuto.VALIDATE

    def test_load_properties(self, tmp_path):
        path = tmp_path / "application.properties"
        path.write_text(
            "spring.datasource.url=jdbc:postgresql://localhost:5432/studfolio_db\n"
            "spring.datasource.username=studfolio_user\n"
            "spring.datasource.password=${DB_PASSWORD}\n"
            "spring.jpa.hibernate.ddl-auto=update\n",
            encoding="utf-8",
        )
        cfg = load_application_config(str(path), environ={"DB_PASSWORD": "pw"})
        assert cfg.datasource.password.get_secret_value() == "pw"
        assert cfg.jpa.hibernate.ddl_auto == DdlAuto.UPDATE

    def test_load_escaped_properties(self, tmp_path):
        path = tmp_path / "application.properties"
        path.write_text(
            "#Written by java.util.Properties\n"
            "spring.datasource.url=jdbc\\:postgresql\\://localhost\\:5432/studfolio_db\n"
            "spring.datasource.username=studfolio_user\n",
            encoding="utf-8",
        )
        cfg = load_application_config(str(path), environ={})
        assert cfg.datasource.url == "jdbc:postgresql://localhost:5432/studfolio_db"

    def test_yaml_boolean_password(self, tmp_path):
        path = tmp_path / "application.yml"
        path.write_text(
            "spring:\n"
            "  datasource:\n"
            "    username: on\n"
            "    password: yes\n",
            encoding="utf-8",
        )
        cfg = load_application_config(str(path), environ={})
        assert cfg.datasource.username == "true"
        assert cfg.datasource.password.get_secret_value() == "true"

    def test_non_strict_load_keeps_jpa_error(self, tmp_path):
        path = tmp_path / "application.yml"
        path.write_text("spring:\n  jpa:\n    show-sql: maybe\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            load_application_config(str(path), environ={})
        cfg = load_application_config(str(path), environ={}, strict=False)
        assert cfg.jpa_error is not None
        assert "jpa.show-sql" in cfg.jpa_error.message

    def test_profile_overlay(self, app_yml):
        cfg = load_application_config(
            str(app_yml),
            profile="prod",
            environ={"DB_URL": "jdbc:postgresql://prod-db:5432/studfolio", "DB_PASSWORD": "p"},
        )
        assert cfg.profiles == ["prod"]
        assert cfg.datasource.url == "jdbc:postgresql://prod-db:5432/studfolio"
        assert cfg.datasource.username == "studfolio_user"
        assert cfg.datasource.password.get_secret_value() == "p"
        assert cfg.jpa.show_sql is False
        assert cfg.jpa.hibernate.ddl_auto == DdlAuto.UPDATE

    def test_profile_from_environment(self, app_yml):
        cfg = load_application_config(
            str(app_yml), environ={"SPRING_PROFILES_ACTIVE": "prod"},
        )
        assert cfg.profiles == ["prod"]
        assert cfg.unresolved == {
            "datasource.url": "DB_URL",
            "datasource.password": "DB_PASSWORD",
        }
        assert cfg.datasource.url is None

    def test_missing_profile_file_skipped(self, app_yml):
        cfg = load_application_config(str(app_yml), profile="staging", environ={})
        assert cfg.datasource.username == "studfolio_user"

    def test_multi_document_yaml(self, tmp_path):
        path = tmp_path / "application.yml"
        path.write_text(
            "spring:\n"
            "  datasource:\n"
            "    url: jdbc:postgresql://localhost/dev\n"
            "---\n"
            "spring:\n"
            "  config:\n"
            "    activate:\n"
            "      on-profile: prod\n"
            "  datasource:\n"
            "    url: jdbc:postgresql://prod-db/prod\n",
            encoding="utf-8",
        )
        assert load_application_config(str(path), environ={}).datasource.url == (
            "jdbc:postgresql://localhost/dev"
        )
        assert load_application_config(str(path), profile="prod", environ={}).datasource.url == (
            "jdbc:postgresql://prod-db/prod"
        )

    def test_spring_env_override(self, app_yml):
        cfg = load_application_config(
            str(app_yml), environ={"SPRING_DATASOURCE_PASSWORD": "from-env"},
        )
        assert cfg.datasource.password.get_secret_value() == "from-env"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigFileError, match="not found"):
            load_application_config(str(tmp_path / "nonexistent.yml"), environ={})

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "application.yml"
        path.write_text("spring:\n  datasource: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigFileError, match="Invalid YAML"):
            load_application_config(str(path), environ={})

    def test_non_mapping_yaml_raises(self, tmp_path):
        path = tmp_path / "application.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigFileError, match="mapping"):
            load_application_config(str(path), environ={})

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "application.yml"
        path.write_text("", encoding="utf-8")
        cfg = load_application_config(str(path), environ={})
        assert cfg.datasource.url is None

    def test_auto_discovery(self, project_root, monkeypatch):
        nested = project_root / "src" / "main" / "java"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        cfg = load_application_config(environ={})
        assert cfg.datasource.username == "studfolio_user"

    def test_auto_discovery_nothing_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigFileError, match="No application"):
            load_application_config(environ={})


class TestFindApplicationConfig:
    def test_finds_resources_file(self, project_root, app_yml):
        assert find_application_config(project_root) == app_yml

    def test_prefers_root_file(self, project_root):
        root_file = project_root / "application.properties"
        root_file.write_text("", encoding="utf-8")
        assert find_application_config(project_root) == root_file

    def test_none_when_absent(self, tmp_path):
        assert find_application_config(tmp_path) is None


class TestToolSettings:
    def test_defaults(self):
        settings = ToolSettings()
        assert settings.log_level == "INFO"
        assert settings.log_format == "text"
        assert settings.log_dir == ".dsconfig/logs"
        assert settings.connect_timeout == 5
        assert settings.secret_key is None

    def test_from_environ(self):
        settings = load_tool_settings({
            "DSCONFIG_LOG_LEVEL": "debug",
            "DSCONFIG_LOG_FORMAT": "JSON",
            "DSCONFIG_CONNECT_TIMEOUT": "10",
            "DSCONFIG_SECRET_KEY": "k",
        })
        assert settings.log_level == "DEBUG"
        assert settings.log_format == "json"
        assert settings.connect_timeout == 10
        assert settings.secret_key.get_secret_value() == "k"

    @pytest.mark.parametrize("var,value", [
        ("DSCONFIG_LOG_LEVEL", "chatty"),
        ("DSCONFIG_LOG_FORMAT", "xml"),
        ("DSCONFIG_CONNECT_TIMEOUT", "0"),
        ("DSCONFIG_CONNECT_TIMEOUT", "soon"),
    ])
    def test_invalid_values(self, var, value):
        with pytest.raises(ConfigValidationError):
            load_tool_settings({var: value})

    def test_get_tool_settings_singleton(self):
        assert get_tool_settings() is get_tool_settings()
