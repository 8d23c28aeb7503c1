"""Configuration module for loading and managing application settings"""
from typing import Dict, Any
from .lib.load_settings_conf import load_settings_conf, validate_settings, SettingsError, DEFAULTS

__all__ = ['settings_conf', 'load_settings', 'SettingsError', 'DEFAULTS']

def load_settings(settings_path: str = ".") -> Dict[str, Any]:
    """Load and validate settings from settings.conf and the environment.

    Args:
        settings_path: Directory containing settings.conf

    Returns:
        Validated settings dictionary
    """
    return validate_settings(load_settings_conf(settings_path))

try:
    settings_conf: Dict[str, Any] = load_settings()
except SettingsError as e:
    # Re-raise the error but provide more context
    raise SettingsError(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please check settings.conf and any MARKET_* environment variables.\n"
        "See examples/settings.conf.example for the available settings."
    )
