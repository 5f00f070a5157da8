"""DEMONICSKULL.COM: a 1999 fan site with a 56k modem simulator."""

from .app import create_app
from .config import Config

__all__ = ["Config", "create_app"]

__version__ = "1.0.0"
