"""
Default paths and shared constants for PostIt services.
"""
import os
from pathlib import Path

# libs/common/src/postit_common -> repository root
PROJECT_ROOT = (Path(__file__).parent.parent.parent.parent.parent).absolute()

SERVICES_DIR = PROJECT_ROOT / "services"
CORE_SERVICE_DIR = SERVICES_DIR / "core"

TICK = 0.001  # seconds, used for short polling sleeps


def is_production() -> bool:
    """Production installs log to /var/log and keep the console quiet."""
    return (
        os.environ.get("POSTIT_ENV") == "production" or
        Path("/etc/postit").exists()
    )


def get_service_config_path(service_dir: Path) -> Path:
    """Return the config file for a service.

    POSTIT_CONFIG wins when set, otherwise the service's own config.toml.
    """
    override = os.environ.get("POSTIT_CONFIG", "").strip()
    if override:
        return Path(override)
    return service_dir / "config.toml"
