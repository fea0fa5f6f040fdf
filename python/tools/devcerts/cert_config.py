#!/usr/bin/env python3
"""
Configuration management module.

This module handles loading and validating the development certificate
settings from a TOML file, using Pydantic v2 for validation.
"""

from __future__ import annotations

import asyncio
import io
import tomllib
from pathlib import Path
from typing import List, Optional

import aiofiles
from cryptography import x509
from cryptography.x509.oid import NameOID
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .cert_types import (
    LOCALHOST_DISTINGUISHED_NAME,
    LOCALHOST_DNS_NAME,
    ConfigurationError,
)

DEFAULT_CONFIG_PATH = Path.home() / ".devcerts" / "config.toml"


class DevCertSettings(BaseModel):
    """Process-wide settings for the development certificate manager."""

    model_config = ConfigDict(
        extra="forbid", validate_assignment=True, str_strip_whitespace=True
    )

    # Issuance
    subject: str = Field(
        default=LOCALHOST_DISTINGUISHED_NAME, description="Certificate subject"
    )
    dns_names: List[str] = Field(
        default_factory=lambda: [LOCALHOST_DNS_NAME],
        min_length=1,
        description="Subject Alternative Names",
    )
    valid_days: int = Field(default=365, ge=1, le=7300, description="Validity in days")
    key_size: int = Field(default=2048, ge=1024, le=8192, description="RSA key size")

    # macOS
    https_directory: Path = Field(
        default_factory=lambda: Path.home() / ".aspnet" / "https",
        description="Disk mirror directory for PKCS#12 copies",
    )
    user_keychain: Path = Field(
        default_factory=lambda: Path.home() / "Library" / "Keychains" / "login.keychain-db",
        description="Login keychain",
    )
    system_keychain: Path = Field(
        default=Path("/Library/Keychains/System.keychain"), description="System keychain"
    )

    # Linux
    linux_store_directory: Path = Field(
        default_factory=lambda: Path.home() / ".dotnet" / "corefx" / "cryptography" / "x509stores" / "my",
        description="Personal store directory",
    )
    linux_trust_directory: Path = Field(
        default_factory=lambda: Path.home() / ".aspnet" / "dev-certs" / "trust",
        description="OpenSSL trust anchor directory",
    )
    nss_databases: List[Path] = Field(
        default_factory=lambda: [Path.home() / ".pki" / "nssdb"],
        description="NSS databases trusted alongside OpenSSL",
    )

    # Process invocation
    process_timeout: Optional[float] = Field(
        default=None, gt=0, description="Seconds to wait for platform tools"
    )

    @field_validator("subject")
    @classmethod
    def validate_subject(cls, v: str) -> str:
        """Parse the subject as an RFC 4514 name and require a common name."""
        try:
            name = x509.Name.from_rfc4514_string(v)
        except ValueError as e:
            raise ValueError(f"Subject '{v}' is not a valid RFC 4514 name") from e
        if not name.get_attributes_for_oid(NameOID.COMMON_NAME):
            raise ValueError("Subject must contain a CN= component")
        return name.rfc4514_string()


class ConfigManager:
    """
    Loads ``DevCertSettings`` from a TOML file.

    A missing file yields default settings. The file layout is a single
    ``[devcerts]`` table whose keys are the settings fields.
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._settings: Optional[DevCertSettings] = None

    async def load_settings_async(self, force_reload: bool = False) -> DevCertSettings:
        """
        Load settings asynchronously with caching and validation.

        Args:
            force_reload: Force reload even if cached settings exist

        Returns:
            Validated settings
        """
        if self._settings is not None and not force_reload:
            return self._settings

        if not self.config_path.exists():
            logger.debug(f"Configuration file not found, using defaults: {self.config_path}")
            self._settings = DevCertSettings()
            return self._settings

        try:
            logger.debug(f"Loading configuration from {self.config_path}")
            async with aiofiles.open(self.config_path, "rb") as f:
                content = await f.read()
            data = tomllib.load(io.BytesIO(content))
            self._settings = DevCertSettings.model_validate(data.get("devcerts", {}))
        except (OSError, tomllib.TOMLDecodeError, ValidationError) as e:
            raise ConfigurationError(
                f"Failed to load configuration from {self.config_path}: {e}",
                error_code="CONFIG_LOAD_FAILED",
                original_error=e,
                config_path=str(self.config_path),
            ) from e

        logger.info(f"Configuration loaded from {self.config_path}")
        return self._settings

    def load_settings(self, force_reload: bool = False) -> DevCertSettings:
        """Synchronous wrapper for load_settings_async."""
        return asyncio.run(self.load_settings_async(force_reload))
