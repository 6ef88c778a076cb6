"""Configuration module for the Godrick backend."""

from godrick.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
