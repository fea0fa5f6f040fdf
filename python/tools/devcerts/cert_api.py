#!/usr/bin/env python3
"""
Development certificate API.

This module provides a dictionary-returning interface over the certificate
manager for embedding hosts that cannot handle Python exceptions.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from .cert_config import DevCertSettings
from .cert_manager import CertificateManager, create_certificate_manager
from .cert_types import (
    CertificateError,
    CertificateKeyExportFormat,
    StoreLocation,
    StoreName,
)


class DevCertsAPI:
    """
    Stable facade over ``CertificateManager``.

    Every method returns a dictionary with a ``success`` flag; failures carry
    the error message and, for certificate errors, the structured details.
    """

    def __init__(
        self,
        settings: Optional[DevCertSettings] = None,
        manager: Optional[CertificateManager] = None,
    ) -> None:
        self.manager = manager or create_certificate_manager(settings)

    @staticmethod
    def _handle_exception(e: Exception, operation: str) -> Dict[str, Any]:
        """Centralized exception handling for API methods."""
        logger.exception(f"Error during {operation}: {e}")
        response: Dict[str, Any] = {"success": False, "error": str(e)}
        if isinstance(e, CertificateError):
            response["details"] = e.to_dict()
        return response

    def ensure_certificate(
        self,
        export_path: Optional[str] = None,
        trust: bool = False,
        include_private_key: bool = False,
        password: Optional[str] = None,
        export_format: str = CertificateKeyExportFormat.PFX.value,
        interactive: bool = True,
    ) -> Dict[str, Any]:
        """Ensure a development certificate exists and report the outcome."""
        try:
            outcome = self.manager.ensure_development_certificate(
                path=Path(export_path) if export_path else None,
                trust=trust,
                include_private_key=include_private_key,
                password=password,
                key_export_format=CertificateKeyExportFormat(export_format.lower()),
                is_interactive=interactive,
            )
        except (CertificateError, ValueError) as e:
            return self._handle_exception(e, "certificate ensure")

        response: Dict[str, Any] = {
            "success": outcome.success,
            "result": outcome.result.name,
            "thumbprint": outcome.certificate.thumbprint if outcome.certificate else None,
        }
        if outcome.error is not None:
            response["error"] = str(outcome.error)
        return response

    def list_certificates(
        self, store: str = "My", location: str = "CurrentUser", valid_only: bool = True
    ) -> Dict[str, Any]:
        """List development certificates in a store."""
        try:
            certificates = self.manager.list_certificates(
                StoreName.from_string(store),
                StoreLocation.from_string(location),
                is_valid=valid_only,
            )
            return {
                "success": True,
                "certificates": [
                    {
                        "thumbprint": c.thumbprint,
                        "subject": c.subject,
                        "not_before": c.not_before.isoformat(),
                        "not_after": c.not_after.isoformat(),
                        "version": c.version,
                        "trusted": self.manager.is_trusted(c),
                    }
                    for c in certificates
                ],
            }
        except (CertificateError, KeyError) as e:
            return self._handle_exception(e, "certificate listing")

    def trust_certificate(self) -> Dict[str, Any]:
        """Ensure a certificate exists and trust it."""
        return self.ensure_certificate(trust=True)

    def clean_certificates(self) -> Dict[str, Any]:
        """Remove every development certificate."""
        try:
            self.manager.clean_certificates()
            return {"success": True}
        except (CertificateError, OSError) as e:
            return self._handle_exception(e, "certificate cleanup")
