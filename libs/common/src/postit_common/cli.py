"""
Reusable command line interface utilities for PostIt services.

Every service gets the same argument parsing, logging setup and service
execution; config fields become command line flags automatically.
"""
import argparse
import asyncio
import logging
import sys
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Type, Union, get_args, get_origin

from pydantic import BaseModel

# Arguments that belong to the CLI and never to the config model
CLI_ONLY_ARGS = {"log_level", "config"}


class TrackedAction(argparse.Action):
    """Custom argparse action that tracks which arguments were explicitly provided."""

    def __call__(self, parser, namespace, values, option_string=None):
        if not hasattr(namespace, '_explicitly_set'):
            namespace._explicitly_set = set()
        namespace._explicitly_set.add(self.dest)
        setattr(namespace, self.dest, values)


class TrackedStoreTrueAction(argparse._StoreTrueAction):
    """store_true that records when the flag was given."""

    def __call__(self, parser, namespace, values, option_string=None):
        if not hasattr(namespace, '_explicitly_set'):
            namespace._explicitly_set = set()
        namespace._explicitly_set.add(self.dest)
        super().__call__(parser, namespace, values, option_string)


class TrackedStoreFalseAction(argparse._StoreFalseAction):
    """store_false that records when the flag was given."""

    def __call__(self, parser, namespace, values, option_string=None):
        if not hasattr(namespace, '_explicitly_set'):
            namespace._explicitly_set = set()
        namespace._explicitly_set.add(self.dest)
        super().__call__(parser, namespace, values, option_string)


def _unwrap_optional(field_type: Any) -> Any:
    """Optional[X] -> X, anything else unchanged."""
    if get_origin(field_type) is Union:
        args = [arg for arg in get_args(field_type) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return field_type


def extract_cli_args_from_config(config_class: Type[BaseModel], prefix: str = "") -> Dict[str, Dict[str, Any]]:
    """Extract CLI arguments from a Pydantic config class.

    Handles bool, int, float, str and Enum fields and recurses into nested
    BaseModel sections. Tuples, lists and dicts are left to the config file.

    Args:
        config_class: Pydantic BaseModel class to extract arguments from
        prefix: Prefix for nested field names (e.g., "overlay" for overlay.interval)

    Returns:
        Dictionary mapping argument names to argparse argument configurations
    """
    cli_args = {}

    for field_name, field_info in config_class.model_fields.items():
        field_type = _unwrap_optional(field_info.annotation)
        full_field_name = f"{prefix}.{field_name}" if prefix else field_name

        if isinstance(field_type, type) and issubclass(field_type, BaseModel):
            cli_args.update(extract_cli_args_from_config(field_type, full_field_name))
            continue

        is_enum = isinstance(field_type, type) and issubclass(field_type, Enum)
        if field_type not in (bool, int, float, str) and not is_enum:
            continue

        flag = full_field_name.replace('_', '-').replace('.', '-')
        arg_name = f"--{flag}"
        # dots in dest let namespace_to_dict rebuild the nested sections
        arg_config: Dict[str, Any] = {'dest': full_field_name}

        if field_type is bool:
            if field_info.default is True:
                arg_config['action'] = TrackedStoreFalseAction
                arg_name = f"--no-{flag}"
            else:
                arg_config['action'] = TrackedStoreTrueAction
        elif is_enum:
            arg_config['action'] = TrackedAction
            arg_config['choices'] = [member.value for member in field_type]
        else:
            arg_config['type'] = field_type
            arg_config['action'] = TrackedAction
            arg_config['metavar'] = {int: 'N', float: 'VALUE', str: 'TEXT'}[field_type]

        help_text = field_info.description or field_name
        if prefix:
            section_name = prefix.replace('_', ' ').replace('.', ' ').title()
            help_text = f"[{section_name}] {help_text}"
        default = field_info.default
        if default is not None and default is not ...:
            default = default.value if isinstance(default, Enum) else default
            help_text += f" (default: {default})"
        arg_config['help'] = help_text

        cli_args[arg_name] = arg_config

    return cli_args


def setup_logging(log_level: str, service_name: str) -> None:
    """Configure console logging with the specified level for a service."""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {log_level}')

    logging.basicConfig(
        level=numeric_level,
        format=f'%(asctime)s - {service_name} - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def create_service_parser(
    service_name: str,
    description: str,
    default_config_path: Optional[str] = None,
    extra_args: Optional[Dict[str, Dict[str, Any]]] = None,
    config_class: Optional[Type[BaseModel]] = None
) -> argparse.ArgumentParser:
    """Create a standard argument parser for PostIt services.

    Args:
        service_name: Name of the service (e.g., "Core")
        description: Description of the service
        default_config_path: Default path to config file (optional)
        extra_args: Additional arguments to add to parser
        config_class: Pydantic config class to auto-generate arguments from

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description=f'PostIt {service_name} Service - {description}'
    )

    parser.add_argument(
        '--log-level', '-l',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default='INFO',
        action=TrackedAction,
        help='Set the logging level (default: INFO)'
    )

    if default_config_path:
        parser.add_argument(
            '--config', '-c',
            default=str(default_config_path),
            action=TrackedAction,
            help=f'Path to configuration file (default: {default_config_path})'
        )

    if config_class:
        for arg_name, arg_config in extract_cli_args_from_config(config_class).items():
            parser.add_argument(arg_name, **arg_config)

    for arg_name, arg_config in (extra_args or {}).items():
        parser.add_argument(arg_name, **arg_config)

    return parser


async def run_service_cli(
    service_name: str,
    description: str,
    service_runner: Callable[..., Awaitable[None]],
    default_config_path: Optional[str] = None,
    extra_args: Optional[Dict[str, Dict[str, Any]]] = None,
    config_class: Optional[Type[BaseModel]] = None,
    argv: Optional[list] = None
) -> None:
    """Run a service with standard CLI argument parsing and error handling."""
    parser = create_service_parser(
        service_name=service_name,
        description=description,
        default_config_path=default_config_path,
        extra_args=extra_args,
        config_class=config_class
    )

    args = parser.parse_args(argv)

    setup_logging(args.log_level, service_name.upper())

    logger = logging.getLogger(__name__)
    logger.info(f"Starting PostIt {service_name} Service with log level: {args.log_level}")

    # strip CLI-only options so the config model never validates them
    config_path = getattr(args, 'config', default_config_path)
    for name in CLI_ONLY_ARGS:
        if hasattr(args, name):
            delattr(args, name)
    for arg in extra_args or {}:
        dest = arg.lstrip('-').replace('-', '_')
        if hasattr(args, dest):
            delattr(args, dest)

    try:
        if config_class:
            await service_runner(args=args, config_path=config_path)
        elif default_config_path:
            await service_runner(config_path=config_path)
        else:
            await service_runner()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.error(f"Unexpected error in {service_name} service: {e}", exc_info=True)
        sys.exit(1)


def create_simple_main(
    service_name: str,
    description: str,
    service_runner: Callable[..., Awaitable[None]],
    default_config_path: Optional[str] = None,
    extra_args: Optional[Dict[str, Dict[str, Any]]] = None,
    config_class: Optional[Type[BaseModel]] = None
) -> Callable[[], None]:
    """Create a main() function for a service that can be used in __main__.py."""
    def main() -> None:
        try:
            asyncio.run(run_service_cli(
                service_name=service_name,
                description=description,
                service_runner=service_runner,
                default_config_path=default_config_path,
                extra_args=extra_args,
                config_class=config_class
            ))
        except KeyboardInterrupt:
            pass

    return main
