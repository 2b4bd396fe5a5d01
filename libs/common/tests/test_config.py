"""
Tests for configuration loading: merging, TOML files, environment variables
and command line overrides.
"""
import argparse

import pytest
from pydantic import BaseModel, Field

from postit_common.config import (
    BaseConfig,
    ConfigError,
    deep_merge,
    load_config_with_overrides,
    namespace_to_dict,
)


class TimerSection(BaseModel):
    interval: float = 6.0
    enabled: bool = True


class SampleConfig(BaseConfig):
    service_name: str = "postit_sample"
    threshold: int = Field(default=5, ge=0)
    timer: TimerSection = Field(default_factory=TimerSection)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep POSTIT_* variables from the developer's shell out of these tests."""
    import os
    for key in list(os.environ):
        if key.startswith("POSTIT_"):
            monkeypatch.delenv(key)


class TestDeepMerge:
    def test_nested_values_override(self):
        base = {"a": 1, "section": {"x": 1, "y": 2}}
        merged = deep_merge(base, {"section": {"y": 3}})
        assert merged == {"a": 1, "section": {"x": 1, "y": 3}}

    def test_inputs_not_mutated(self):
        base = {"section": {"x": 1}}
        override = {"section": {"x": 2}}
        deep_merge(base, override)
        assert base == {"section": {"x": 1}}
        assert override == {"section": {"x": 2}}

    def test_non_dict_replaces_dict(self):
        assert deep_merge({"a": {"b": 1}}, {"a": 7}) == {"a": 7}


class TestNamespaceToDict:
    def test_only_explicit_args_included(self):
        ns = argparse.Namespace(threshold=9, **{"timer.interval": 2.5})
        ns._explicitly_set = {"timer.interval"}
        assert namespace_to_dict(ns) == {"timer": {"interval": 2.5}}

    def test_no_tracking_means_nothing_set(self):
        ns = argparse.Namespace(threshold=9)
        assert namespace_to_dict(ns) == {}


class TestLoadConfig:
    def test_file_then_override_priority(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text("threshold = 7\n[timer]\ninterval = 3.0\n")

        merged = load_config_with_overrides(
            override_config={"timer": {"interval": 1.0}},
            config_file=config_file,
            default_config={"threshold": 1, "timer": {"enabled": False}},
        )
        assert merged == {"threshold": 7, "timer": {"interval": 1.0, "enabled": False}}

    def test_missing_file_uses_defaults(self, tmp_path):
        merged = load_config_with_overrides(config_file=tmp_path / "absent.toml", default_config={"a": 1})
        assert merged == {"a": 1}

    def test_malformed_file_raises(self, tmp_path):
        config_file = tmp_path / "broken.toml"
        config_file.write_text("threshold = = 7\n")
        with pytest.raises(ConfigError):
            load_config_with_overrides(config_file=config_file)


class TestBaseConfig:
    def test_defaults(self):
        config = SampleConfig.from_overrides()
        assert config.threshold == 5
        assert config.timer.interval == 6.0

    def test_env_overrides_nested_field(self, monkeypatch):
        monkeypatch.setenv("POSTIT_TIMER_INTERVAL", "10")
        monkeypatch.setenv("POSTIT_TIMER_ENABLED", "false")
        monkeypatch.setenv("POSTIT_ENV", "production")
        config = SampleConfig.from_overrides()
        assert config.timer.interval == 10.0
        assert config.timer.enabled is False

    def test_override_beats_env(self, monkeypatch):
        monkeypatch.setenv("POSTIT_THRESHOLD", "3")
        config = SampleConfig.from_overrides(override_config={"threshold": 4})
        assert config.threshold == 4

    def test_args_beat_everything(self, tmp_path, monkeypatch):
        monkeypatch.setenv("POSTIT_THRESHOLD", "3")
        config_file = tmp_path / "config.toml"
        config_file.write_text("threshold = 7\n")
        ns = argparse.Namespace(threshold=11)
        ns._explicitly_set = {"threshold"}

        config = SampleConfig.from_overrides(config_file=config_file, args=ns)
        assert config.threshold == 11

    def test_invalid_value_raises_config_error(self):
        with pytest.raises(ConfigError):
            SampleConfig.from_overrides(override_config={"threshold": -1})

    def test_unknown_field_raises_config_error(self):
        with pytest.raises(ConfigError):
            SampleConfig.from_overrides(override_config={"bogus": 1})

    def test_env_value_conversion(self):
        assert SampleConfig._convert_env_value("on") is True
        assert SampleConfig._convert_env_value("12") == 12
        assert SampleConfig._convert_env_value("1.5") == 1.5
        assert SampleConfig._convert_env_value("[1, 2]") == [1, 2]
        assert SampleConfig._convert_env_value("kiosk") == "kiosk"
