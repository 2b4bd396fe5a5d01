"""
Tests for the core service configuration schema and the shipped config file.
"""
import pytest

from postit_common.config import ConfigError
from postit_core.config import (
    DEFAULT_CONFIG_PATH,
    BandPolarity,
    CoreServiceConfig,
    DisplayBackend,
    OverlayConfig,
    SourceConfig,
    StreamKind,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    import os
    for key in list(os.environ):
        if key.startswith("POSTIT_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_builtin_defaults(self):
        config = CoreServiceConfig()
        assert config.stream.kind == StreamKind.DEPTH
        assert (config.depth.low, config.depth.high) == (0, 96)
        assert config.depth.polarity == BandPolarity.INSIDE
        assert config.depth.divisor == 258
        assert config.mosaic.cell_size == 10
        assert config.mosaic.fill_size == 8
        assert config.mosaic.accent_color == (0, 255, 255)
        assert config.overlay.interval == 6.0
        assert [line.text for line in config.overlay.lines] == ["HAPPY", "BIRTHDAY", "POST-IT"]

    def test_shipped_file_matches_defaults(self):
        assert DEFAULT_CONFIG_PATH.exists()
        from_file = CoreServiceConfig.from_overrides(config_file=DEFAULT_CONFIG_PATH)
        assert from_file == CoreServiceConfig()

    def test_morphology_follows_stream_kind(self):
        depth = CoreServiceConfig()
        color = CoreServiceConfig(stream={"kind": "color"})
        assert depth.morphology is depth.depth_morphology
        assert color.morphology is color.color_morphology
        assert color.morphology.erode_iterations == 3


class TestOverrides:
    def test_partial_section_keeps_defaults(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text("[color_morphology]\nclose = false\n")
        config = CoreServiceConfig.from_overrides(config_file=config_file)
        assert config.color_morphology.close is False
        assert config.color_morphology.erode_iterations == 3

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("POSTIT_DEPTH_MORPHOLOGY_CLOSE", "false")
        monkeypatch.setenv("POSTIT_OVERLAY_INTERVAL", "10")
        monkeypatch.setenv("POSTIT_DISPLAY_BACKEND", "headless")
        config = CoreServiceConfig.from_overrides()
        assert config.depth_morphology.close is False
        assert config.overlay.interval == 10.0
        assert config.display.backend == DisplayBackend.HEADLESS

    def test_outside_policy(self):
        config = CoreServiceConfig.from_overrides(
            override_config={"depth": {"low": 96, "high": 256, "polarity": "outside"}})
        assert config.depth.polarity == BandPolarity.OUTSIDE


class TestValidation:
    @pytest.mark.parametrize("override", [
        {"depth": {"low": 100, "high": 50}},
        {"depth": {"high": 300}},
        {"depth_morphology": {"kernel_size": 4}},
        {"mosaic": {"fill_size": 12}},
        {"overlay": {"sweep_start": 10, "sweep_end": 0}},
        {"overlay": {"sweep_step": 0}},
        {"source": {"resolution": [0, 480]}},
        {"stream": {"kind": "infrared"}},
        {"unknown_section": {}},
    ])
    def test_invalid_config_raises(self, override):
        with pytest.raises(ConfigError):
            CoreServiceConfig.from_overrides(override_config=override)

    def test_too_many_overlay_lines(self):
        lines = [{"text": "A", "x": 0, "y": 0}] * 4
        with pytest.raises(ValueError):
            OverlayConfig(lines=lines)

    def test_resolution_is_width_height(self):
        assert SourceConfig(resolution=[320, 240]).resolution == (320, 240)
