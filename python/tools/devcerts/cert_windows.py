#!/usr/bin/env python3
"""
Windows certificate manager.

Stores are read through PowerShell's ``Cert:`` drive and written with
``certutil``. Adding a root to the current user's store makes Windows show
a confirmation dialog, which the user may decline.
"""

import base64
import binascii
from typing import List

from loguru import logger

from .cert_io import load_pkcs12
from .cert_manager import CertificateManager
from .cert_types import (
    CertificateExportError,
    CertificateStoreError,
    CheckCertificateStateResult,
    DevelopmentCertificate,
    StoreLocation,
    StoreName,
    TrustCertificateError,
    TrustLevel,
    UserCancelledTrustError,
)
from .cert_utils import generate_transit_password, temporary_file

POWERSHELL = "powershell"
CERTUTIL = "certutil"

# HRESULT_FROM_WIN32(ERROR_CANCELLED), reported when the trust dialog is declined.
USER_CANCELLED_CODES = ("0x800704c7", "-2147023673")

_LIST_SCRIPT = (
    "Get-ChildItem -Path 'Cert:\\{location}\\{store}' | ForEach-Object "
    "{{ '{{0}}|{{1}}|{{2}}' -f $_.Thumbprint,$_.HasPrivateKey,"
    "[Convert]::ToBase64String($_.RawData) }}"
)


def parse_store_listing(output: str) -> List[DevelopmentCertificate]:
    """Parse ``thumbprint|hasPrivateKey|base64`` lines emitted by the listing script."""
    certificates = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split("|")
        if len(parts) != 3:
            logger.warning(f"Skipping unexpected store listing line: {line}")
            continue
        _, has_key, encoded = parts
        try:
            certificates.append(
                DevelopmentCertificate.from_der(
                    base64.b64decode(encoded), key_in_store=has_key.strip().lower() == "true"
                )
            )
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Skipping unreadable certificate in store listing: {e}")
    return certificates


class WindowsCertificateManager(CertificateManager):
    """Certificate manager backed by the Windows certificate stores."""

    @staticmethod
    def _user_flag(location: StoreLocation) -> List[str]:
        return ["-user"] if location is StoreLocation.CURRENT_USER else []

    def _populate_certificates(
        self, store_name: StoreName, location: StoreLocation
    ) -> List[DevelopmentCertificate]:
        script = _LIST_SCRIPT.format(location=location.value, store=store_name.value)
        result = self.runner.run(
            POWERSHELL, ["-NoProfile", "-NonInteractive", "-Command", script]
        )
        if not result.success:
            raise CertificateStoreError(
                f"Unable to open the {location.value}\\{store_name.value} store",
                error_code="STORE_UNAVAILABLE",
                exit_code=result.exit_code,
                output=result.output,
            )
        return parse_store_listing(result.stdout)

    def is_exportable(self, certificate: DevelopmentCertificate) -> bool:
        return certificate.has_private_key

    def _in_store(
        self, certificate: DevelopmentCertificate, store_name: StoreName, location: StoreLocation
    ) -> bool:
        return certificate in self._populate_certificates(store_name, location)

    def _save_certificate_core(
        self,
        certificate: DevelopmentCertificate,
        store_name: StoreName,
        location: StoreLocation,
    ) -> DevelopmentCertificate:
        if self._in_store(certificate, store_name, location):
            logger.debug(f"Certificate {certificate.thumbprint} is already in the store")
            return certificate

        password = generate_transit_password()
        with temporary_file(certificate.to_pkcs12(password), suffix=".pfx") as path:
            result = self.runner.run(
                CERTUTIL,
                [*self._user_flag(location), "-f", "-p", password, "-importpfx", store_name.value, str(path)],
            )
        if not result.success:
            raise CertificateStoreError(
                f"Failed to import the certificate into {location.value}\\{store_name.value}",
                error_code="IMPORT_FAILED",
                exit_code=result.exit_code,
                output=result.output,
            )
        return certificate

    def _load_private_key(self, certificate: DevelopmentCertificate) -> DevelopmentCertificate:
        if not certificate.key_in_store:
            return super()._load_private_key(certificate)
        password = generate_transit_password()
        with temporary_file(suffix=".pfx") as path:
            result = self.runner.run(
                CERTUTIL,
                ["-user", "-f", "-p", password, "-exportPFX", StoreName.MY.value, certificate.thumbprint, str(path)],
            )
            if not result.success:
                raise CertificateExportError(
                    f"The private key of certificate '{certificate.thumbprint}' could not be exported",
                    error_code="KEY_EXPORT_FAILED",
                    thumbprint=certificate.thumbprint,
                    exit_code=result.exit_code,
                )
            return load_pkcs12(path, password)

    def _remove_certificate_from_user_store_core(self, certificate: DevelopmentCertificate) -> None:
        result = self.runner.run(
            CERTUTIL, ["-user", "-delstore", StoreName.MY.value, certificate.thumbprint]
        )
        if not result.success:
            raise CertificateStoreError(
                f"Failed to remove certificate {certificate.thumbprint} from the personal store",
                error_code="DELETE_FAILED",
                exit_code=result.exit_code,
                output=result.output,
            )

    def _trust_certificate_core(self, public_certificate: DevelopmentCertificate) -> TrustLevel:
        with temporary_file(public_certificate.to_der(), suffix=".cer") as path:
            result = self.runner.run(
                CERTUTIL, ["-user", "-addstore", "-f", StoreName.ROOT.value, str(path)]
            )
        if result.success:
            return TrustLevel.FULL

        output = result.output.lower()
        if any(code in output for code in USER_CANCELLED_CODES):
            logger.warning("The user cancelled the trust step.")
            raise UserCancelledTrustError(
                "The user cancelled the trust step.",
                command=result.command,
                exit_code=result.exit_code,
                output=result.output,
            )
        raise TrustCertificateError(
            "There was an error trusting the HTTPS developer certificate.",
            command=result.command,
            exit_code=result.exit_code,
            output=result.output,
        )

    def is_trusted(self, certificate: DevelopmentCertificate) -> bool:
        try:
            return self._in_store(certificate, StoreName.ROOT, StoreLocation.CURRENT_USER)
        except CertificateStoreError as e:
            logger.warning(f"Unable to read the trusted root store: {e}")
            return False

    def _remove_certificate_from_trusted_roots(self, certificate: DevelopmentCertificate) -> None:
        if not self.is_trusted(certificate):
            logger.debug(f"Certificate {certificate.thumbprint} is not in the trusted root store")
            return
        result = self.runner.run(
            CERTUTIL, ["-user", "-delstore", StoreName.ROOT.value, certificate.thumbprint]
        )
        if not result.success:
            raise CertificateStoreError(
                f"Failed to remove certificate {certificate.thumbprint} from the trusted root store",
                error_code="UNTRUST_FAILED",
                exit_code=result.exit_code,
                output=result.output,
            )

    def check_certificate_state(
        self, certificate: DevelopmentCertificate, interactive: bool
    ) -> CheckCertificateStateResult:
        return CheckCertificateStateResult(True)

    def correct_certificate_state(self, certificate: DevelopmentCertificate) -> None:
        pass
