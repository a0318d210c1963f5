from .settings import ConfigurationError, Settings, load_settings
from .logging_config import configure_logging

__all__ = ["ConfigurationError", "Settings", "load_settings", "configure_logging"]
