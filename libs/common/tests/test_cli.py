"""
Tests for the shared service command line: generated flags, override
tracking and the runner.
"""
from enum import Enum
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel, Field

from postit_common.cli import create_service_parser, extract_cli_args_from_config, run_service_cli
from postit_common.config import BaseConfig, namespace_to_dict


class Mode(str, Enum):
    FAST = "fast"
    SLOW = "slow"


class Section(BaseModel):
    interval: float = Field(default=6.0, description="Seconds between runs")
    enabled: bool = True
    name: str = "demo"
    size: tuple = (1, 2)


class CliConfig(BaseConfig):
    service_name: str = "postit_cli"
    mode: Mode = Mode.FAST
    verbose: bool = False
    section: Section = Field(default_factory=Section)


class TestExtractCliArgs:
    def test_nested_fields_become_dashed_flags(self):
        args = extract_cli_args_from_config(CliConfig)
        assert "--section-interval" in args
        assert args["--section-interval"]["dest"] == "section.interval"
        assert args["--section-interval"]["type"] is float
        assert "[Section] Seconds between runs (default: 6.0)" == args["--section-interval"]["help"]

    def test_enum_gets_choices(self):
        args = extract_cli_args_from_config(CliConfig)
        assert args["--mode"]["choices"] == ["fast", "slow"]

    def test_bool_flags(self):
        args = extract_cli_args_from_config(CliConfig)
        assert "--verbose" in args
        # True by default, so only a negative flag makes sense
        assert "--no-section-enabled" in args
        assert "--section-enabled" not in args

    def test_unsupported_types_skipped(self):
        args = extract_cli_args_from_config(CliConfig)
        assert "--section-size" not in args


class TestServiceParser:
    def test_only_given_flags_are_overrides(self):
        parser = create_service_parser("Test", "testing", config_class=CliConfig)
        ns = parser.parse_args(["--section-interval", "2.5", "--no-section-enabled", "--mode", "slow"])

        overrides = namespace_to_dict(ns)
        assert overrides == {"mode": "slow", "section": {"interval": 2.5, "enabled": False}}

    def test_overrides_validate_into_config(self):
        parser = create_service_parser("Test", "testing", config_class=CliConfig)
        ns = parser.parse_args(["--verbose", "--section-name", "kiosk"])
        for name in ("log_level",):
            delattr(ns, name)

        config = CliConfig.from_overrides(args=ns)
        assert config.verbose is True
        assert config.section.name == "kiosk"
        assert config.section.interval == 6.0
        assert config.mode == Mode.FAST

    def test_invalid_choice_exits(self):
        parser = create_service_parser("Test", "testing", config_class=CliConfig)
        with pytest.raises(SystemExit):
            parser.parse_args(["--mode", "medium"])


class TestRunServiceCli:
    @pytest.mark.asyncio
    async def test_runner_receives_args_and_config_path(self, tmp_path):
        runner = AsyncMock()
        config_path = tmp_path / "config.toml"

        await run_service_cli("Test", "testing", runner, default_config_path=str(config_path),
                              config_class=CliConfig, argv=["--verbose", "-l", "DEBUG"])

        runner.assert_awaited_once()
        kwargs = runner.await_args.kwargs
        assert kwargs["config_path"] == str(config_path)
        assert not hasattr(kwargs["args"], "log_level")
        assert not hasattr(kwargs["args"], "config")
        assert namespace_to_dict(kwargs["args"]) == {"verbose": True}

    @pytest.mark.asyncio
    async def test_runner_failure_exits_nonzero(self):
        runner = AsyncMock(side_effect=RuntimeError("no display"))
        with pytest.raises(SystemExit) as exc_info:
            await run_service_cli("Test", "testing", runner, config_class=CliConfig, argv=[])
        assert exc_info.value.code == 1
