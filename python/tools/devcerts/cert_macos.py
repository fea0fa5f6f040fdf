#!/usr/bin/env python3
"""
macOS certificate manager.

A macOS development certificate has two physical records: an entry in the
login keychain, which carries trust and is read by older tooling, and a
PKCS#12 disk mirror named by thumbprint, which newer tooling loads directly.
The two are written independently and reconciled by thumbprint when listed.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List

from loguru import logger

from .cert_io import load_directory, load_pkcs12, save_pkcs12, split_pem_certificates
from .cert_manager import CertificateManager
from .cert_types import (
    INVALID_CERTIFICATE_STATE,
    KEY_NOT_ACCESSIBLE_WITHOUT_USER_INTERACTION,
    CertificateError,
    CertificateExportError,
    CertificateStoreError,
    CheckCertificateStateResult,
    DevelopmentCertificate,
    ExternalToolError,
    InvalidCertificateStateError,
    PhysicalPresence,
    StoreLocation,
    StoreName,
    TrustCertificateError,
    TrustLevel,
)
from .cert_utils import ensure_directory_exists, generate_transit_password, temporary_file

CERTIFICATE_SUBJECT_REGEX = re.compile(r"CN=(.*[^,]+).*", re.DOTALL)
CERTIFICATE_FILE_PREFIX = "aspnetcore-localhost-"
CERTIFICATE_FILE_PATTERN = CERTIFICATE_FILE_PREFIX + "*.pfx"

SECURITY = "security"


def get_certificate_file_name(certificate: DevelopmentCertificate) -> str:
    """Disk mirror file name; existing certificates are found by this exact name."""
    return f"{CERTIFICATE_FILE_PREFIX}{certificate.thumbprint}.pfx"


def _distinct(certificates: Iterable[DevelopmentCertificate]) -> List[DevelopmentCertificate]:
    seen = set()
    result = []
    for certificate in certificates:
        if certificate not in seen:
            seen.add(certificate)
            result.append(certificate)
    return result


@dataclass
class CertificatePartition:
    """Certificates split by where they physically exist."""
    disk_only: List[DevelopmentCertificate] = field(default_factory=list)
    keychain_only: List[DevelopmentCertificate] = field(default_factory=list)
    both: List[DevelopmentCertificate] = field(default_factory=list)

    def presence_of(self, certificate: DevelopmentCertificate) -> PhysicalPresence:
        if certificate in self.both:
            return PhysicalPresence.BOTH
        if certificate in self.keychain_only:
            return PhysicalPresence.KEYCHAIN_ONLY
        if certificate in self.disk_only:
            return PhysicalPresence.DISK_ONLY
        return PhysicalPresence.NEITHER


def partition_by_thumbprint(
    disk: Iterable[DevelopmentCertificate], keychain: Iterable[DevelopmentCertificate]
) -> CertificatePartition:
    """
    Split disk and keychain certificates by thumbprint equality.

    Entries present in both are taken from the disk side, which carries the
    private key.
    """
    disk = _distinct(disk)
    keychain = _distinct(keychain)
    disk_set = set(disk)
    keychain_set = set(keychain)
    return CertificatePartition(
        disk_only=[c for c in disk if c not in keychain_set],
        keychain_only=[c for c in keychain if c not in disk_set],
        both=[c for c in disk if c in keychain_set],
    )


class MacCertificateManager(CertificateManager):
    """Certificate manager backed by the macOS keychain and a disk mirror."""

    @property
    def https_directory(self) -> Path:
        return self.settings.https_directory

    @property
    def user_keychain(self) -> str:
        return str(self.settings.user_keychain)

    def _certificate_path(self, certificate: DevelopmentCertificate) -> Path:
        return self.https_directory / get_certificate_file_name(certificate)

    def _keychain_for(self, location: StoreLocation) -> str:
        if location is StoreLocation.LOCAL_MACHINE:
            return str(self.settings.system_keychain)
        return self.user_keychain

    @staticmethod
    def _common_name(subject: str) -> str:
        match = CERTIFICATE_SUBJECT_REGEX.match(subject)
        if not match:
            raise CertificateError(
                f"Can't determine the subject for the certificate with subject '{subject}'.",
                error_code="SUBJECT_NOT_FOUND",
                subject=subject,
            )
        return match.group(1)

    # Enumeration

    def _keychain_certificates(self, keychain: str) -> List[DevelopmentCertificate]:
        """Development certificates in a keychain, identified by the product marker."""
        result = self.runner.run(
            SECURITY,
            ["find-certificate", "-c", self._common_name(self.subject), "-a", "-Z", "-p", keychain],
        )
        if not result.success:
            logger.debug(f"No matching certificates found in keychain {keychain}")
            return []
        return [
            c for c in split_pem_certificates(result.stdout) if c.is_https_development_certificate
        ]

    def _disk_certificates(self) -> List[DevelopmentCertificate]:
        return load_directory(self.https_directory, CERTIFICATE_FILE_PATTERN)

    def partition_certificates(self) -> CertificatePartition:
        """Current disk mirror and login keychain contents, split by presence."""
        return partition_by_thumbprint(
            self._disk_certificates(), self._keychain_certificates(self.user_keychain)
        )

    def _populate_certificates(
        self, store_name: StoreName, location: StoreLocation
    ) -> List[DevelopmentCertificate]:
        if store_name is StoreName.ROOT:
            return [
                c for c in self._keychain_certificates(self._keychain_for(location)) if self.is_trusted(c)
            ]
        if location is StoreLocation.LOCAL_MACHINE:
            return self._keychain_certificates(self._keychain_for(location))

        partition = self.partition_certificates()
        # Disk-only files are leftovers of older tool generations.
        for leftover in partition.disk_only:
            logger.debug(f"Ignoring certificate found only on disk: {leftover.thumbprint}")
        # When both a keychain-only and a disk+keychain certificate exist, one
        # of them has expired; the validity filter picks the survivor.
        return partition.keychain_only + partition.both

    def _certificates_to_remove(
        self, store_name: StoreName, location: StoreLocation
    ) -> List[DevelopmentCertificate]:
        return self.list_certificates(
            StoreName.MY, StoreLocation.CURRENT_USER, is_valid=False, require_exportable=False
        )

    # Saving

    def _save_certificate_core(
        self,
        certificate: DevelopmentCertificate,
        store_name: StoreName,
        location: StoreLocation,
    ) -> DevelopmentCertificate:
        # Keychain and disk mirror writes are independent.
        try:
            if certificate in self._keychain_certificates(self.user_keychain):
                logger.debug(f"Certificate {certificate.thumbprint} is already in the user keychain")
            else:
                self._save_certificate_to_user_keychain(certificate)
        except (CertificateError, OSError) as e:
            logger.error(
                f"There was an error saving the certificate into the user keychain "
                f"'{certificate.thumbprint}'.\n\n{e}"
            )

        try:
            ensure_directory_exists(self.https_directory)
            save_pkcs12(certificate, self._certificate_path(certificate))
        except (CertificateError, OSError) as e:
            logger.error(
                f"There was an error saving the certificate into the user profile folder "
                f"'{certificate.thumbprint}'.\n\n{e}"
            )

        return certificate

    def _save_certificate_to_user_keychain(self, certificate: DevelopmentCertificate) -> None:
        password = generate_transit_password()
        logger.debug(f"Adding certificate to keychain {self.user_keychain}: {certificate.thumbprint}")
        with temporary_file(certificate.to_pkcs12(password), suffix=".pfx") as path:
            result = self.runner.run(
                SECURITY,
                ["import", str(path), "-k", self.user_keychain, "-t", "cert", "-f", "pkcs12", "-P", password, "-A"],
            )
        if not result.success:
            raise ExternalToolError(
                f"There was an error importing the certificate into the user key chain "
                f"'{certificate.thumbprint}'.\n{result.output}",
                command=[SECURITY, "import"],
                exit_code=result.exit_code,
                output=result.output,
            )

    # Trust

    def _trust_certificate_core(self, public_certificate: DevelopmentCertificate) -> TrustLevel:
        with temporary_file(public_certificate.to_der(), suffix=".cer") as path:
            result = self.runner.run(
                SECURITY,
                ["add-trusted-cert", "-r", "trustRoot", "-p", "basic", "-p", "ssl", "-k", self.user_keychain, str(path)],
            )
        if not result.success:
            logger.error(f"Trust command failed with exit code {result.exit_code}")
            raise TrustCertificateError(
                "There was an error trusting the certificate.",
                command=result.command,
                exit_code=result.exit_code,
                output=result.output,
            )
        logger.info(f"Certificate {public_certificate.thumbprint} trusted in {self.user_keychain}")
        return TrustLevel.FULL

    def is_trusted(self, certificate: DevelopmentCertificate) -> bool:
        common_name = self._common_name(certificate.subject)
        with temporary_file(certificate.to_pem(), suffix=".pem") as path:
            result = self.runner.run(SECURITY, ["verify-cert", "-c", str(path), "-s", common_name])
        return result.success

    def _remove_certificate_trust_rule(self, certificate: DevelopmentCertificate) -> None:
        logger.debug(f"Removing trust rule for certificate {certificate.thumbprint}")
        with temporary_file(certificate.to_der(), suffix=".cer") as path:
            result = self.runner.run(SECURITY, ["remove-trusted-cert", str(path)])
        if not result.success:
            logger.warning(f"Removing the trust rule failed with exit code {result.exit_code}")

    def _remove_trust_core(self, certificate: DevelopmentCertificate) -> None:
        self._remove_certificate_trust_rule(certificate)

    def _try_remove_certificate_trust_rule(self, certificate: DevelopmentCertificate) -> None:
        try:
            self._remove_certificate_trust_rule(certificate)
        except (CertificateError, OSError) as e:
            logger.warning(f"Failed to remove the trust rule for certificate {certificate.thumbprint}: {e}")

    def _remove_certificate_from_keychain(self, keychain: str, certificate: DevelopmentCertificate) -> None:
        logger.debug(f"Removing certificate {certificate.thumbprint} from keychain {keychain}")
        result = self.runner.run(
            "sudo", [SECURITY, "delete-certificate", "-Z", certificate.thumbprint.upper(), keychain]
        )
        if not result.success:
            raise CertificateStoreError(
                f"There was an error removing the certificate with thumbprint "
                f"'{certificate.thumbprint}'.\n\n{result.output}",
                error_code="KEYCHAIN_DELETE_FAILED",
                exit_code=result.exit_code,
            )

    def _delete_disk_mirror(self, certificate: DevelopmentCertificate) -> None:
        path = self._certificate_path(certificate)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"There was an error deleting the certificate file '{path}'.\n\n{e}")

    def _remove_certificate_from_trusted_roots(self, certificate: DevelopmentCertificate) -> None:
        if not self.is_trusted(certificate):
            logger.info(f"The certificate is not trusted: {self.get_description(certificate)}")
            return
        # The trust rule must be gone before the keychain item can be deleted.
        self._try_remove_certificate_trust_rule(certificate)
        self._remove_certificate_from_keychain(self.user_keychain, certificate)
        self._delete_disk_mirror(certificate)

    def _remove_certificate_from_user_store_core(self, certificate: DevelopmentCertificate) -> None:
        if certificate in self._keychain_certificates(self.user_keychain):
            self._try_remove_certificate_trust_rule(certificate)
            self._remove_certificate_from_keychain(self.user_keychain, certificate)
        self._delete_disk_mirror(certificate)

    def _clean_leftovers(self) -> None:
        for leftover in self.partition_certificates().disk_only:
            logger.info(f"Removing certificate left only on disk: {leftover.thumbprint}")
            self._delete_disk_mirror(leftover)

    # Key access

    def check_certificate_state(
        self, certificate: DevelopmentCertificate, interactive: bool
    ) -> CheckCertificateStateResult:
        # Only the disk mirror guarantees key access without an OS prompt.
        if self._certificate_path(certificate).exists():
            return CheckCertificateStateResult(True)
        return CheckCertificateStateResult(
            False, KEY_NOT_ACCESSIBLE_WITHOUT_USER_INTERACTION, requires_user_interaction=True
        )

    def correct_certificate_state(self, certificate: DevelopmentCertificate) -> None:
        if certificate.private_key is None:
            raise InvalidCertificateStateError(
                INVALID_CERTIFICATE_STATE, thumbprint=certificate.thumbprint
            )
        try:
            ensure_directory_exists(self.https_directory)
            save_pkcs12(certificate, self._certificate_path(certificate))
        except (CertificateError, OSError) as e:
            logger.error(
                f"There was an error saving the certificate into the user profile folder "
                f"'{certificate.thumbprint}'.\n\n{e}"
            )

    def _load_private_key(self, certificate: DevelopmentCertificate) -> DevelopmentCertificate:
        path = self._certificate_path(certificate)
        if not path.exists():
            return super()._load_private_key(certificate)
        try:
            return load_pkcs12(path)
        except (OSError, ValueError) as e:
            raise CertificateExportError(
                f"The disk copy of certificate '{certificate.thumbprint}' is unreadable",
                error_code="DISK_MIRROR_UNREADABLE",
                original_error=e,
                path=str(path),
            ) from e
