#!/usr/bin/env python3
"""
Linux certificate manager.

The personal store is a directory of ``<THUMBPRINT>.pfx`` files. Trust is
an OpenSSL hashed certificate directory, optionally mirrored into NSS
databases used by browsers.
"""

import os
from pathlib import Path
from typing import List

from loguru import logger

from .cert_io import load_directory, load_pkcs12, save_pem, save_pkcs12
from .cert_manager import CertificateManager
from .cert_process import ProcessResult
from .cert_types import (
    CertificateExportError,
    CheckCertificateStateResult,
    DevelopmentCertificate,
    StoreLocation,
    StoreName,
    TrustCertificateError,
    TrustLevel,
)
from .cert_utils import ensure_directory_exists, temporary_file

OPENSSL = "openssl"
NSS_CERTUTIL = "certutil"
TRUST_FILE_PREFIX = "aspnetcore-localhost-"


def get_trust_file_name(certificate: DevelopmentCertificate) -> str:
    return f"{TRUST_FILE_PREFIX}{certificate.thumbprint}.pem"


def get_nss_nickname(certificate: DevelopmentCertificate) -> str:
    return f"{TRUST_FILE_PREFIX}{certificate.thumbprint}"


class LinuxCertificateManager(CertificateManager):
    """Certificate manager backed by on-disk stores and OpenSSL trust directories."""

    @property
    def store_directory(self) -> Path:
        return self.settings.linux_store_directory

    @property
    def trust_directory(self) -> Path:
        return self.settings.linux_trust_directory

    def _store_path(self, certificate: DevelopmentCertificate) -> Path:
        return self.store_directory / f"{certificate.thumbprint}.pfx"

    def _trust_path(self, certificate: DevelopmentCertificate) -> Path:
        return self.trust_directory / get_trust_file_name(certificate)

    def _nss_databases(self) -> List[Path]:
        return [db for db in self.settings.nss_databases if db.is_dir()]

    def _populate_certificates(
        self, store_name: StoreName, location: StoreLocation
    ) -> List[DevelopmentCertificate]:
        if location is StoreLocation.LOCAL_MACHINE:
            logger.debug("Machine-wide stores are not managed on Linux")
            return []
        if store_name is StoreName.ROOT:
            return load_directory(self.trust_directory, TRUST_FILE_PREFIX + "*.pem", pem=True)
        return load_directory(self.store_directory, "*.pfx")

    def _save_certificate_core(
        self,
        certificate: DevelopmentCertificate,
        store_name: StoreName,
        location: StoreLocation,
    ) -> DevelopmentCertificate:
        path = self._store_path(certificate)
        if path.exists():
            logger.debug(f"Certificate {certificate.thumbprint} is already in the store")
            return certificate
        save_pkcs12(certificate, path)
        return certificate

    def _remove_certificate_from_user_store_core(self, certificate: DevelopmentCertificate) -> None:
        self._store_path(certificate).unlink(missing_ok=True)

    def _load_private_key(self, certificate: DevelopmentCertificate) -> DevelopmentCertificate:
        path = self._store_path(certificate)
        if not path.exists():
            return super()._load_private_key(certificate)
        try:
            return load_pkcs12(path)
        except (OSError, ValueError) as e:
            raise CertificateExportError(
                f"The stored copy of certificate '{certificate.thumbprint}' is unreadable",
                error_code="STORE_FILE_UNREADABLE",
                original_error=e,
                path=str(path),
            ) from e

    def _rehash(self) -> ProcessResult:
        return self.runner.run(OPENSSL, ["rehash", str(self.trust_directory)])

    def _trust_certificate_core(self, public_certificate: DevelopmentCertificate) -> TrustLevel:
        ensure_directory_exists(self.trust_directory)
        trust_path = self._trust_path(public_certificate)
        save_pem(public_certificate, trust_path)

        result = self._rehash()
        if not result.success:
            logger.error(f"openssl rehash failed with exit code {result.exit_code}")
            raise TrustCertificateError(
                f"There was an error trusting the certificate in {self.trust_directory}.",
                command=result.command,
                exit_code=result.exit_code,
                output=result.output,
            )

        level = TrustLevel.FULL
        for database in self._nss_databases():
            nss = self.runner.run(
                NSS_CERTUTIL,
                [
                    "-d", f"sql:{database}", "-A", "-t", "C,,",
                    "-n", get_nss_nickname(public_certificate), "-i", str(trust_path),
                ],
            )
            if not nss.success:
                logger.warning(f"Failed to trust the certificate in NSS database {database}")
                level = TrustLevel.PARTIAL

        cert_dirs = os.environ.get("SSL_CERT_DIR", "").split(os.pathsep)
        if str(self.trust_directory) not in cert_dirs:
            logger.warning(
                f"OpenSSL trusts the certificate only when SSL_CERT_DIR includes "
                f"'{self.trust_directory}'. Add it to your environment."
            )
        return level

    def is_trusted(self, certificate: DevelopmentCertificate) -> bool:
        if not self.trust_directory.is_dir():
            return False
        with temporary_file(certificate.to_pem(), suffix=".pem") as path:
            result = self.runner.run(
                OPENSSL, ["verify", "-CApath", str(self.trust_directory), str(path)]
            )
        return result.success

    def _remove_certificate_from_trusted_roots(self, certificate: DevelopmentCertificate) -> None:
        trust_path = self._trust_path(certificate)
        try:
            trust_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete trusted certificate file {trust_path}: {e}")

        for database in self._nss_databases():
            nss = self.runner.run(
                NSS_CERTUTIL, ["-d", f"sql:{database}", "-D", "-n", get_nss_nickname(certificate)]
            )
            if not nss.success:
                logger.debug(f"Certificate was not present in NSS database {database}")

        if self.trust_directory.is_dir() and not self._rehash().success:
            logger.warning(f"Failed to rehash {self.trust_directory}")

    def check_certificate_state(
        self, certificate: DevelopmentCertificate, interactive: bool
    ) -> CheckCertificateStateResult:
        return CheckCertificateStateResult(True)

    def correct_certificate_state(self, certificate: DevelopmentCertificate) -> None:
        pass
