"""
PostIt common package initialization.
"""

from dotenv import find_dotenv, load_dotenv

# values already in the environment win over the .env file
load_dotenv(find_dotenv(usecwd=True), override=False)

from postit_common.base_service import BaseService
from postit_common.config import BaseConfig, ConfigError
from postit_common.service_state import ServiceState

__all__ = [
    "BaseConfig",
    "BaseService",
    "ConfigError",
    "ServiceState",
]
