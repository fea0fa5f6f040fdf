#!/usr/bin/env python3
"""
Development certificate lifecycle manager.

``CertificateManager`` orchestrates creation, export, state checking and
correction, trust installation and removal, and cleanup of the HTTPS
development certificate. Platform specifics live in the Windows, macOS and
Linux subclasses, selected once by ``create_certificate_manager``.
"""

from __future__ import annotations

import datetime
import platform
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional

from loguru import logger

from .cert_builder import IssuanceOptions, issue_development_certificate
from .cert_config import DevCertSettings
from .cert_io import export_certificate_file
from .cert_process import ProcessRunner
from .cert_types import (
    MINIMUM_CERTIFICATE_VERSION,
    CertificateError,
    CertificateExportError,
    CertificateGenerationError,
    CertificateKeyExportFormat,
    CheckCertificateStateResult,
    DevelopmentCertificate,
    EnsureCertificateOutcome,
    EnsureCertificateResult,
    InvalidCertificateStateError,
    RemoveLocations,
    StoreLocation,
    StoreName,
    TrustCertificateError,
    TrustLevel,
    UnsupportedPlatformError,
    UserCancelledTrustError,
)
from .cert_utils import log_operation


class CertificateManager(ABC):
    """
    Platform-independent lifecycle of the HTTPS development certificate.

    Subclasses provide the store adapter (enumerate, save, delete) and the
    trust backend (trust, verify, untrust) for one operating system. Callers
    must serialize operations on a given certificate; nothing here is
    designed for concurrent use.

    Args:
        settings: Process-wide settings, defaults when omitted
        runner: External process invoker shared by all platform calls
    """

    def __init__(
        self,
        settings: Optional[DevCertSettings] = None,
        runner: Optional[ProcessRunner] = None,
    ) -> None:
        self.settings = settings or DevCertSettings()
        self.runner = runner or ProcessRunner(timeout=self.settings.process_timeout)

    @property
    def subject(self) -> str:
        return self.settings.subject

    @staticmethod
    def _now() -> datetime.datetime:
        return datetime.datetime.now(datetime.timezone.utc)

    # Store adapter

    @abstractmethod
    def _populate_certificates(
        self, store_name: StoreName, location: StoreLocation
    ) -> List[DevelopmentCertificate]:
        """Enumerate every certificate in a store, development or not."""

    @abstractmethod
    def _save_certificate_core(
        self,
        certificate: DevelopmentCertificate,
        store_name: StoreName,
        location: StoreLocation,
    ) -> DevelopmentCertificate:
        """Persist a certificate with its key; idempotent by thumbprint."""

    @abstractmethod
    def _remove_certificate_from_user_store_core(
        self, certificate: DevelopmentCertificate
    ) -> None:
        """Delete a certificate from every personal backend."""

    def _certificates_to_remove(
        self, store_name: StoreName, location: StoreLocation
    ) -> List[DevelopmentCertificate]:
        return self.list_certificates(
            store_name, location, is_valid=False, require_exportable=False
        )

    def _load_private_key(
        self, certificate: DevelopmentCertificate
    ) -> DevelopmentCertificate:
        """Return the certificate with its private key loaded from the platform store."""
        raise CertificateExportError(
            f"The private key of certificate '{certificate.thumbprint}' is not available",
            error_code="NO_PRIVATE_KEY",
            thumbprint=certificate.thumbprint,
        )

    def is_exportable(self, certificate: DevelopmentCertificate) -> bool:
        return True

    # Trust backend

    @abstractmethod
    def _trust_certificate_core(self, public_certificate: DevelopmentCertificate) -> TrustLevel:
        """Install trust for a certificate that is not yet trusted."""

    @abstractmethod
    def _remove_certificate_from_trusted_roots(
        self, certificate: DevelopmentCertificate
    ) -> None:
        """Remove trust as part of deleting a certificate."""

    def _remove_trust_core(self, certificate: DevelopmentCertificate) -> None:
        self._remove_certificate_from_trusted_roots(certificate)

    @abstractmethod
    def is_trusted(self, certificate: DevelopmentCertificate) -> bool:
        """Ask the platform whether the certificate is trusted right now."""

    @abstractmethod
    def check_certificate_state(
        self, certificate: DevelopmentCertificate, interactive: bool
    ) -> CheckCertificateStateResult:
        """Check whether the certificate key is usable without user interaction."""

    @abstractmethod
    def correct_certificate_state(self, certificate: DevelopmentCertificate) -> None:
        """Repair a store/disk mismatch without regenerating key material."""

    # Lifecycle operations

    @log_operation
    def list_certificates(
        self,
        store_name: StoreName,
        location: StoreLocation,
        is_valid: bool,
        require_exportable: bool = True,
    ) -> List[DevelopmentCertificate]:
        """
        List development certificates in a store.

        Args:
            store_name: Personal or trusted root store
            location: Current user or local machine scope
            is_valid: Only return certificates inside their validity window,
                exportable when required, and of a supported version
            require_exportable: Apply the exportability filter

        Returns:
            Matching certificates, highest version first. Ordering does not
            reflect recency. Enumeration failures are logged and produce an
            empty list.
        """
        try:
            candidates = self._populate_certificates(store_name, location)
        except (CertificateError, OSError) as e:
            logger.error(f"Failed to list certificates in {location.value}\\{store_name.value}: {e}")
            return []

        matching = [c for c in candidates if c.is_https_development_certificate]
        if is_valid:
            now = self._now()
            matching = [
                c
                for c in matching
                if c.is_valid_at(now)
                and (not require_exportable or self.is_exportable(c))
                and c.version >= MINIMUM_CERTIFICATE_VERSION
            ]
        matching.sort(key=lambda c: c.version, reverse=True)

        for certificate in matching:
            logger.debug(f"Found certificate: {self.get_description(certificate)}")
        return matching

    def create_development_certificate(
        self, not_before: datetime.datetime, not_after: datetime.datetime
    ) -> DevelopmentCertificate:
        """Issue a new development certificate using the configured subject."""
        options = IssuanceOptions(
            not_before=not_before,
            not_after=not_after,
            subject=self.settings.subject,
            dns_names=list(self.settings.dns_names),
            key_size=self.settings.key_size,
        )
        return issue_development_certificate(options)

    @log_operation
    def save_certificate(self, certificate: DevelopmentCertificate) -> DevelopmentCertificate:
        """Persist a certificate to the current user's personal store."""
        logger.debug(f"Saving certificate {self.get_description(certificate)}")
        return self._save_certificate_core(
            certificate, StoreName.MY, StoreLocation.CURRENT_USER
        )

    @log_operation
    def export_certificate(
        self,
        certificate: DevelopmentCertificate,
        path: Path,
        include_private_key: bool,
        password: Optional[str] = None,
        export_format: CertificateKeyExportFormat = CertificateKeyExportFormat.PFX,
    ) -> None:
        """Export a certificate, fetching its key from the platform if needed."""
        if include_private_key and certificate.private_key is None:
            certificate = self._load_private_key(certificate)
        export_certificate_file(
            certificate, path, include_private_key, password, export_format
        )

    @log_operation
    def ensure_development_certificate(
        self,
        not_before: Optional[datetime.datetime] = None,
        not_after: Optional[datetime.datetime] = None,
        path: Optional[Path] = None,
        trust: bool = False,
        include_private_key: bool = False,
        password: Optional[str] = None,
        key_export_format: CertificateKeyExportFormat = CertificateKeyExportFormat.PFX,
        is_interactive: bool = True,
    ) -> EnsureCertificateOutcome:
        """
        Make sure a valid development certificate exists, optionally exporting and trusting it.

        An existing valid certificate is preferred over creating a new one.
        Failures are reported through the outcome rather than raised.
        """
        not_before = not_before or self._now()
        not_after = not_after or not_before + datetime.timedelta(days=self.settings.valid_days)

        current_user = self.list_certificates(
            StoreName.MY, StoreLocation.CURRENT_USER, is_valid=True
        )
        certificates = current_user + self.list_certificates(
            StoreName.MY, StoreLocation.LOCAL_MACHINE, is_valid=True
        )
        filtered = [c for c in certificates if c.subject == self.subject]
        for excluded in certificates:
            if excluded not in filtered:
                logger.debug(f"Ignoring certificate with a different subject: {self.get_description(excluded)}")

        if filtered:
            certificate = filtered[0]
            logger.info(f"Valid development certificate present: {self.get_description(certificate)}")
            result = EnsureCertificateResult.VALID_CERTIFICATE_PRESENT
            if is_interactive:
                for candidate in (c for c in filtered if c in current_user):
                    status = self.check_certificate_state(candidate, True)
                    if status.success:
                        continue
                    try:
                        self.correct_certificate_state(candidate)
                    except (CertificateError, OSError) as e:
                        logger.error(f"Failed to make the key of {candidate.thumbprint} accessible: {e}")
                        return EnsureCertificateOutcome(
                            EnsureCertificateResult.FAILED_TO_MAKE_KEY_ACCESSIBLE, certificate, e
                        )
        else:
            try:
                certificate = self.create_development_certificate(not_before, not_after)
            except CertificateGenerationError as e:
                return EnsureCertificateOutcome(
                    EnsureCertificateResult.ERROR_CREATING_THE_CERTIFICATE, None, e
                )
            logger.info(f"Created development certificate: {self.get_description(certificate)}")

            try:
                certificate = self.save_certificate(certificate)
            except (CertificateError, OSError) as e:
                return EnsureCertificateOutcome(
                    EnsureCertificateResult.ERROR_SAVING_THE_CERTIFICATE_INTO_THE_CURRENT_USER_PERSONAL_STORE,
                    certificate,
                    e,
                )

            if is_interactive:
                try:
                    self.correct_certificate_state(certificate)
                except (CertificateError, OSError) as e:
                    return EnsureCertificateOutcome(
                        EnsureCertificateResult.FAILED_TO_MAKE_KEY_ACCESSIBLE, certificate, e
                    )
            result = EnsureCertificateResult.SUCCEEDED

        if path is not None:
            try:
                self.export_certificate(
                    certificate, path, include_private_key, password, key_export_format
                )
            except (CertificateError, OSError) as e:
                return EnsureCertificateOutcome(
                    EnsureCertificateResult.ERROR_EXPORTING_THE_CERTIFICATE, certificate, e
                )

        if trust:
            try:
                level = self.trust_certificate(certificate)
            except UserCancelledTrustError as e:
                return EnsureCertificateOutcome(
                    EnsureCertificateResult.USER_CANCELLED_TRUST_STEP, certificate, e
                )
            except (CertificateError, OSError) as e:
                return EnsureCertificateOutcome(
                    EnsureCertificateResult.FAILED_TO_TRUST_THE_CERTIFICATE, certificate, e
                )
            if level is TrustLevel.PARTIAL:
                return EnsureCertificateOutcome(
                    EnsureCertificateResult.PARTIALLY_FAILED_TO_TRUST_THE_CERTIFICATE,
                    certificate,
                    TrustCertificateError("Trust was only partially installed", error_code="PARTIAL_TRUST"),
                )
            result = (
                EnsureCertificateResult.EXISTING_HTTPS_CERTIFICATE_TRUSTED
                if result is EnsureCertificateResult.VALID_CERTIFICATE_PRESENT
                else EnsureCertificateResult.NEW_HTTPS_CERTIFICATE_TRUSTED
            )

        return EnsureCertificateOutcome(result, certificate)

    def ensure_certificate(self, trust: bool = False) -> DevelopmentCertificate:
        """
        Return a valid development certificate, creating one if none exists.

        Raises:
            CertificateError: The typed error behind any failed outcome
        """
        outcome = self.ensure_development_certificate(trust=trust)
        if not outcome.success:
            if isinstance(outcome.error, CertificateError):
                raise outcome.error
            raise InvalidCertificateStateError(
                original_error=outcome.error, outcome=outcome.result.name
            )
        if outcome.certificate is None:
            raise InvalidCertificateStateError(outcome=outcome.result.name)
        return outcome.certificate

    @log_operation
    def trust_certificate(self, certificate: DevelopmentCertificate) -> TrustLevel:
        """
        Trust a certificate. Already trusted certificates are left as they are.

        Raises:
            TrustCertificateError: If the platform refuses to install trust
        """
        public_certificate = certificate.public_only()
        if self.is_trusted(public_certificate):
            logger.info(f"The certificate is already trusted: {certificate.thumbprint}")
            return TrustLevel.FULL
        logger.info(f"Trusting the development certificate {self.get_description(public_certificate)}")
        return self._trust_certificate_core(public_certificate)

    def remove_trust(self, certificate: DevelopmentCertificate) -> None:
        """Remove trust for a certificate; failures are logged and ignored."""
        try:
            self._remove_trust_core(certificate)
        except (CertificateError, OSError) as e:
            logger.warning(f"Failed to remove trust for certificate {certificate.thumbprint}: {e}")

    @log_operation
    def remove_certificate(
        self,
        certificate: DevelopmentCertificate,
        locations: RemoveLocations = RemoveLocations.ALL,
    ) -> None:
        """Remove a certificate, untrusting it before deleting it from the personal store."""
        match locations:
            case RemoveLocations.UNDEFINED:
                raise ValueError("A removal location must be specified")
            case RemoveLocations.LOCAL:
                self._remove_certificate_from_user_store(certificate)
            case RemoveLocations.TRUSTED:
                self._remove_certificate_from_trusted_roots(certificate)
            case RemoveLocations.ALL:
                self._remove_certificate_from_trusted_roots(certificate)
                self._remove_certificate_from_user_store(certificate)

    def _remove_certificate_from_user_store(self, certificate: DevelopmentCertificate) -> None:
        try:
            self._remove_certificate_from_user_store_core(certificate)
        except (CertificateError, OSError) as e:
            logger.error(f"Failed to remove certificate {certificate.thumbprint} from the user store: {e}")
            raise

    @log_operation
    def remove_all_certificates(self, store_name: StoreName, location: StoreLocation) -> None:
        """Remove every development certificate with the configured subject from one store."""
        certificates = [
            c for c in self._certificates_to_remove(store_name, location) if c.subject == self.subject
        ]
        remove_location = (
            RemoveLocations.LOCAL if store_name is StoreName.MY else RemoveLocations.TRUSTED
        )
        for certificate in certificates:
            self.remove_certificate(certificate, remove_location)

    @log_operation
    def clean_certificates(self) -> None:
        """Remove every development certificate with the configured subject, valid or not."""
        certificates = self.list_certificates(
            StoreName.MY, StoreLocation.CURRENT_USER, is_valid=False, require_exportable=False
        )
        for certificate in certificates:
            if certificate.subject == self.subject:
                self.remove_certificate(certificate, RemoveLocations.ALL)
        self._clean_leftovers()

    def _clean_leftovers(self) -> None:
        pass

    # Diagnostics

    def get_description(self, certificate: DevelopmentCertificate) -> str:
        return (
            f"{certificate.thumbprint} - {certificate.subject} - "
            f"Valid from {certificate.not_before:%Y-%m-%d %H:%M:%SZ} "
            f"to {certificate.not_after:%Y-%m-%d %H:%M:%SZ} - "
            f"IsHttpsDevelopmentCertificate: {str(certificate.is_https_development_certificate).lower()} - "
            f"IsExportable: {str(self.is_exportable(certificate)).lower()}"
        )

    def to_certificate_descriptions(
        self, certificates: Iterable[DevelopmentCertificate]
    ) -> List[str]:
        """Human readable lines for console display, including live trust status."""
        return [
            f"{self.get_description(c)} - IsTrusted: {str(self.is_trusted(c)).lower()}"
            for c in certificates
        ]


def create_certificate_manager(
    settings: Optional[DevCertSettings] = None,
    runner: Optional[ProcessRunner] = None,
    system: Optional[str] = None,
) -> CertificateManager:
    """
    Construct the certificate manager for the running operating system.

    Args:
        settings: Process-wide settings
        runner: External process invoker
        system: Override for ``platform.system()``

    Raises:
        UnsupportedPlatformError: If the system has no certificate manager
    """
    system = system or platform.system()
    match system:
        case "Windows":
            from .cert_windows import WindowsCertificateManager
            manager_class: type[CertificateManager] = WindowsCertificateManager
        case "Darwin":
            from .cert_macos import MacCertificateManager
            manager_class = MacCertificateManager
        case "Linux":
            from .cert_linux import LinuxCertificateManager
            manager_class = LinuxCertificateManager
        case _:
            raise UnsupportedPlatformError(system)
    logger.debug(f"Using {manager_class.__name__} for {system}")
    return manager_class(settings, runner)


__all__ = [
    "CertificateManager",
    "create_certificate_manager",
]
