"""Configuration management for pixelflow.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PIXELFLOW_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PIXELFLOW_* prefix)
2. .env file in the working directory
3. Default values defined in PixelflowConfig

Example .env file:
    PIXELFLOW_STRICT_PARAMETERS=true
    PIXELFLOW_AUTO_INSTALL=false
    PIXELFLOW_PACKAGE_MANAGER=uv

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time and
is used whenever a registry, resolver, or engine is constructed without an
explicit configuration.  Registries themselves are never global: each one is
created and passed around explicitly.

Usage Example
-------------
    from pixelflow.core.config import config

    print(config.default_save_provider)
    print(config.package_manager)
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PixelflowConfig(BaseSettings):
    """Main configuration for pixelflow.

    Attributes
    ----------
    Parameter Validation:
        strict_parameters : bool
            Reject parameters a capability schema does not declare.  When False
            (the default) unknown parameters are passed through to the
            implementation untouched.

    Saving:
        default_save_provider : str
            Save capability used for destinations without a ``scheme://``
            prefix (local paths and bare names).

    Plugin Installation:
        auto_install : bool
            Offer to install missing plugins.  The offer is only made when an
            interactive input channel is available.
        package_manager : Literal["auto", "pip", "uv", "poetry"]
            Package manager used for installs.  ``auto`` detects it from the
            launch environment.
        ephemeral : bool | None
            Force the ephemeral-launcher classification on or off.  ``None``
            detects it from the launch environment.
        global_prefix_fallback : str
            Global install prefix used when the package manager cannot be
            queried.
        install_timeout : float
            Seconds an install command may run before it is abandoned.

    Examples
    --------
        >>> strict = PixelflowConfig(strict_parameters=True, auto_install=False)
        >>> strict.default_save_provider
        'fs'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PIXELFLOW_",
        case_sensitive=False,
        extra="ignore",
    )

    # Parameter validation
    strict_parameters: bool = Field(
        default=False,
        description="Reject parameters that a capability schema does not declare",
    )

    # Saving
    default_save_provider: str = Field(
        default="fs",
        description="Save capability for destinations without a scheme",
    )

    # Plugin installation
    auto_install: bool = Field(
        default=True,
        description="Offer to install missing plugins in interactive sessions",
    )
    package_manager: Literal["auto", "pip", "uv", "poetry"] = Field(
        default="auto",
        description="Package manager for plugin installs (auto detects from launch metadata)",
    )
    ephemeral: bool | None = Field(
        default=None,
        description="Override ephemeral-launcher detection (None = detect)",
    )
    global_prefix_fallback: str = Field(
        default="/usr/local",
        description="Global install prefix used when the package manager cannot be queried",
    )
    install_timeout: float = Field(
        default=600.0,
        description="Seconds an install command may run",
        gt=0,
    )


# Global configuration instance
# Loads values from environment variables (PIXELFLOW_* prefix) and .env file.
config = PixelflowConfig()
