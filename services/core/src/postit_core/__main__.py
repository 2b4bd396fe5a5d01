"""
Main entry point for the PostIt Core Service.

This allows the service to be run with:
    python -m postit_core [--log-level DEBUG] [--config path/to/config] [--stream-kind color]
"""
from postit_common.cli import create_simple_main
from postit_core.config import DEFAULT_CONFIG_PATH, CoreServiceConfig
from postit_core.postit_core import run_postit_core_service

# Create the main function using the CLI utility with auto-generated args
main = create_simple_main(
    service_name="Core",
    description="Depth/color silhouettes as mosaic tiles with a timed text overlay",
    service_runner=run_postit_core_service,
    default_config_path=DEFAULT_CONFIG_PATH,
    config_class=CoreServiceConfig
)


if __name__ == "__main__":
    main()
