"""
HTTPS Development Certificate Tool.

This package creates, persists, trusts and removes a locally generated HTTPS
development certificate across the Windows certificate store, the macOS
keychain and the Linux OpenSSL trust directory.
"""

import sys

from loguru import logger

from .cert_api import DevCertsAPI
from .cert_config import ConfigManager, DevCertSettings
from .cert_manager import CertificateManager, create_certificate_manager
from .cert_process import ProcessResult, ProcessRunner, build_sdk_environment
from .cert_types import (
    CertificateError, CertificateKeyExportFormat, CheckCertificateStateResult,
    DevelopmentCertificate, EnsureCertificateOutcome, EnsureCertificateResult,
    InvalidCertificateStateError, RemoveLocations, StoreLocation, StoreName,
    TrustCertificateError, TrustLevel, UserCancelledTrustError
)

# Module metadata
__version__ = "1.0.0"
__license__ = "GPL-3.0-or-later"

# Configure default logger
logger.configure(handlers=[
    {
        "sink": sys.stderr,
        "format": "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        "level": "INFO"
    }
])


def get_tool_info() -> dict:
    """
    Get metadata and information about the devcerts module.

    Returns:
        Dictionary containing module metadata, capabilities, and available functions.
    """
    return {
        "name": "devcerts",
        "version": __version__,
        "description": "HTTPS development certificate lifecycle manager",
        "license": __license__,
        "supported": True,
        "platform": ["windows", "linux", "macos"],
        "functions": [
            "create_certificate_manager",
            "ensure_development_certificate",
            "trust_certificate",
            "remove_trust",
            "remove_certificate",
            "clean_certificates",
            "list_certificates",
            "check_certificate_state",
            "build_sdk_environment",
        ],
        "requirements": [
            "cryptography",
            "loguru",
            "pydantic",
            "typer",
            "rich",
            "aiofiles"
        ],
        "capabilities": [
            "Create the HTTPS development certificate",
            "Trust it in the platform certificate store",
            "Reconcile the macOS keychain with its disk mirror",
            "Export certificates as PFX or PEM",
            "Remove certificates and trust rules",
            "Pin invoked tools to a specific SDK installation"
        ],
        "classes": {
            "CertificateManager": "Platform-independent certificate lifecycle",
            "DevelopmentCertificate": "Certificate value type identified by thumbprint",
            "DevCertSettings": "Process-wide settings model",
            "DevCertsAPI": "Dictionary-returning facade for embedding hosts"
        }
    }


__all__ = [
    'CertificateError', 'CertificateKeyExportFormat', 'CheckCertificateStateResult',
    'DevelopmentCertificate', 'EnsureCertificateOutcome', 'EnsureCertificateResult',
    'InvalidCertificateStateError', 'RemoveLocations', 'StoreLocation', 'StoreName',
    'TrustCertificateError', 'TrustLevel', 'UserCancelledTrustError',
    'CertificateManager', 'create_certificate_manager',
    'ConfigManager', 'DevCertSettings', 'ProcessResult', 'ProcessRunner',
    'build_sdk_environment',
    'DevCertsAPI', 'get_tool_info'
]
