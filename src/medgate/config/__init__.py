"""Configuration module for MedGate."""

from medgate.config.base import Settings
from medgate.config.loader import get_settings

__all__ = ["Settings", "get_settings"]
