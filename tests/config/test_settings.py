import pytest
import yaml

from contentsync.config.configuration import find_setting, get_settings_registry
from contentsync.config.settings import (
    SETTINGS_SECTION,
    load_engine_config,
    load_settings,
    save_settings,
)
from contentsync.updates.config import EngineConfig


class TestEngineConfig:
    """Tests for EngineConfig defaults and validation."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.default_throttle_interval == 1.0
        assert config.default_size_limit == 1000
        assert config.max_rollback_attempts == 3
        assert config.rollback_enabled is True
        assert config.corruption_detection_enabled is True
        assert config.max_error_log_size == 100

    def test_max_rollback_attempts_clamped(self):
        assert EngineConfig(max_rollback_attempts=0).max_rollback_attempts == 1

    @pytest.mark.parametrize(
        "overrides",
        [
            {"default_size_limit": 0},
            {"default_throttle_interval": -1.0},
            {"max_error_log_size": 0},
            {"warning_ratio": 1.5, "critical_ratio": 1.0},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            EngineConfig(**overrides)


class TestSettingsRegistry:
    """Tests for the registered engine settings."""

    def test_settings_are_registered(self):
        setting = find_setting("default_size_limit")
        assert setting is not None
        assert setting.env_var == "CONTENTSYNC_DEFAULT_SIZE_LIMIT"
        assert setting.default == 1000
        assert setting.group == "Size"

    def test_maps_are_not_registered(self):
        keys = {setting.key for setting in get_settings_registry()}
        assert "container_limits" not in keys
        assert "throttle_intervals" not in keys


class TestSettingsFile:
    """Tests for reading and writing settings.yaml."""

    def test_missing_file(self, tmp_path):
        assert load_settings(tmp_path / "settings.yaml") == {}

    def test_save_keeps_other_sections(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump({"ui": {"theme": "dark"}}))

        save_settings({"default_size_limit": 500}, path)

        document = yaml.safe_load(path.read_text())
        assert document["ui"] == {"theme": "dark"}
        assert document[SETTINGS_SECTION] == {"default_size_limit": 500}
        assert load_settings(path) == {"default_size_limit": 500}

    def test_non_mapping_section(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump({SETTINGS_SECTION: [1, 2]}))
        with pytest.raises(ValueError):
            load_settings(path)


class TestLoadEngineConfig:
    """Tests for load_engine_config."""

    def test_defaults_without_sources(self, tmp_path):
        config = load_engine_config(tmp_path / "settings.yaml", env={})
        assert config == EngineConfig()

    def test_file_values(self, tmp_path):
        path = tmp_path / "settings.yaml"
        save_settings(
            {
                "default_throttle_interval": 0.25,
                "rollback_enabled": "no",
                "container_limits": {"queries": 10},
                "throttle_intervals": {"messages": 2},
            },
            path,
        )

        config = load_engine_config(path, env={})

        assert config.default_throttle_interval == 0.25
        assert config.rollback_enabled is False
        assert config.container_limits == {"queries": 10}
        assert config.throttle_intervals == {"messages": 2.0}

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        save_settings({"default_size_limit": 500}, path)

        config = load_engine_config(
            path,
            env={"CONTENTSYNC_DEFAULT_SIZE_LIMIT": "750", "CONTENTSYNC_CORRUPTION_DETECTION_ENABLED": "false"},
        )

        assert config.default_size_limit == 750
        assert config.corruption_detection_enabled is False

    def test_unknown_keys_are_ignored(self, tmp_path, caplog):
        path = tmp_path / "settings.yaml"
        save_settings({"colour_scheme": "dark"}, path)

        config = load_engine_config(path, env={})

        assert config == EngineConfig()
        assert "colour_scheme" in caplog.text

    def test_invalid_values_raise(self, tmp_path):
        with pytest.raises(ValueError):
            load_engine_config(tmp_path / "settings.yaml", env={"CONTENTSYNC_ROLLBACK_ENABLED": "maybe"})
        with pytest.raises(ValueError):
            load_engine_config(tmp_path / "settings.yaml", env={"CONTENTSYNC_DEFAULT_SIZE_LIMIT": "lots"})
