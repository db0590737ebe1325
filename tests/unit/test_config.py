"""
Engine settings loading.

Covers:
- Defaults
- YAML file, with and without an ``engine:`` key
- Environment overrides win over the file
- Unknown keys and bad values
"""

import pytest

from equipment_kernel.config import (
    DEFAULT_DATABASE_URL,
    EngineSettings,
    load_settings,
    settings_from_mapping,
)


class TestDefaults:
    def test_defaults_without_file_or_env(self):
        settings = load_settings(environ={})
        assert settings == EngineSettings()
        assert settings.database_url == DEFAULT_DATABASE_URL
        assert settings.lock_timeout_seconds > 0

    def test_non_positive_lock_timeout_rejected(self):
        with pytest.raises(ValueError, match="lock_timeout_seconds"):
            EngineSettings(lock_timeout_seconds=0)

    def test_empty_database_url_rejected(self):
        with pytest.raises(ValueError):
            EngineSettings(database_url="")


class TestYamlFile:
    def test_settings_under_engine_key(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "engine:\n"
            "  database_url: postgresql://u:p@db/equipment\n"
            "  pool_size: 5\n"
            "  lock_timeout_seconds: 2.5\n"
            "  echo: yes\n"
        )
        settings = load_settings(path, environ={})
        assert settings.database_url == "postgresql://u:p@db/equipment"
        assert settings.pool_size == 5
        assert settings.lock_timeout_seconds == 2.5
        assert settings.echo is True

    def test_flat_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("log_level: DEBUG\nserial_prefix_separator: _\n")
        settings = load_settings(path, environ={})
        assert settings.log_level == "DEBUG"
        assert settings.serial_prefix_separator == "_"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")
        assert load_settings(path, environ={}) == EngineSettings()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml", environ={})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown engine setting"):
            settings_from_mapping({"databse_url": "sqlite://"})

    def test_bad_integer(self):
        with pytest.raises(ValueError, match="pool_size"):
            settings_from_mapping({"pool_size": "many"})

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_settings(path, environ={})


class TestEnvironmentOverrides:
    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("database_url: sqlite:///from_file.db\n")
        settings = load_settings(
            path,
            environ={
                "EQUIPMENT_DATABASE_URL": "sqlite:///from_env.db",
                "EQUIPMENT_LOCK_TIMEOUT_SECONDS": "3",
                "EQUIPMENT_DB_ECHO": "false",
            },
        )
        assert settings.database_url == "sqlite:///from_env.db"
        assert settings.lock_timeout_seconds == 3.0
        assert settings.echo is False

    def test_empty_env_value_ignored(self):
        settings = load_settings(environ={"EQUIPMENT_LOG_LEVEL": ""})
        assert settings.log_level == "INFO"
