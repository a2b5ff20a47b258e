"""Realty Listings.

A property listing site backend with a PKCE login client for owners
and editors.
"""

__version__ = "0.1.0"

from realty_listings.config import Config, ConfigError, load_config

__all__ = [
    "Config",
    "ConfigError",
    "__version__",
    "load_config",
]
