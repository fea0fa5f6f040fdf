#!/usr/bin/env python3
"""
Development certificate types and data structures.

This module contains the enums, the ``DevelopmentCertificate`` value type,
result dataclasses and the exception hierarchy used throughout the
development certificate manager.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12

# Marks a certificate as an HTTPS development certificate. The extension
# payload is a single byte holding the certificate version.
ASPNET_HTTPS_OID = "1.3.6.1.4.1.311.84.1.1"
ASPNET_HTTPS_OID_FRIENDLY_NAME = "ASP.NET Core HTTPS development certificate"
SERVER_AUTHENTICATION_EKU_OID = "1.3.6.1.5.5.7.3.1"

LOCALHOST_DNS_NAME = "localhost"
LOCALHOST_DISTINGUISHED_NAME = "CN=" + LOCALHOST_DNS_NAME

CURRENT_CERTIFICATE_VERSION = 2
MINIMUM_CERTIFICATE_VERSION = 1

INVALID_CERTIFICATE_STATE = (
    "The ASP.NET Core developer certificate is in an invalid state. "
    "To fix this issue, run 'devcerts clean' and 'devcerts create' to remove all "
    "existing ASP.NET Core development certificates and create a new untrusted "
    "developer certificate. "
    "On macOS or Windows, use 'devcerts trust' to trust the new certificate."
)

KEY_NOT_ACCESSIBLE_WITHOUT_USER_INTERACTION = (
    "The application is trying to access the ASP.NET Core developer certificate key. "
    "A prompt might appear to ask for permission to access the key. "
    "When that happens, select 'Always Allow' to grant 'dotnet' access to the "
    "certificate key in the future."
)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]


class StoreName(Enum):
    """Logical certificate stores."""
    MY = "My"
    ROOT = "Root"

    @classmethod
    def from_string(cls, value: str) -> "StoreName":
        """Convert a string value to a StoreName."""
        return {
            "my": cls.MY,
            "personal": cls.MY,
            "root": cls.ROOT,
        }[value.lower()]


class StoreLocation(Enum):
    """Scope of a certificate store."""
    CURRENT_USER = "CurrentUser"
    LOCAL_MACHINE = "LocalMachine"

    @classmethod
    def from_string(cls, value: str) -> "StoreLocation":
        """Convert a string value to a StoreLocation."""
        return {
            "currentuser": cls.CURRENT_USER,
            "user": cls.CURRENT_USER,
            "localmachine": cls.LOCAL_MACHINE,
            "machine": cls.LOCAL_MACHINE,
        }[value.lower().replace("-", "").replace("_", "")]


class CertificateKeyExportFormat(str, Enum):
    """File formats supported when exporting a certificate."""
    PFX = "pfx"
    PEM = "pem"


class RemoveLocations(Enum):
    """Where a certificate is removed from."""
    UNDEFINED = auto()
    LOCAL = auto()
    TRUSTED = auto()
    ALL = auto()


class TrustLevel(Enum):
    """How completely trust was installed for a certificate."""
    NONE = auto()
    PARTIAL = auto()
    FULL = auto()


class PhysicalPresence(Enum):
    """Where a macOS certificate physically exists."""
    NEITHER = auto()
    DISK_ONLY = auto()
    KEYCHAIN_ONLY = auto()
    BOTH = auto()


class EnsureCertificateResult(Enum):
    """Outcome of ensuring a development certificate exists."""
    SUCCEEDED = auto()
    VALID_CERTIFICATE_PRESENT = auto()
    ERROR_CREATING_THE_CERTIFICATE = auto()
    ERROR_SAVING_THE_CERTIFICATE_INTO_THE_CURRENT_USER_PERSONAL_STORE = auto()
    ERROR_EXPORTING_THE_CERTIFICATE = auto()
    FAILED_TO_TRUST_THE_CERTIFICATE = auto()
    PARTIALLY_FAILED_TO_TRUST_THE_CERTIFICATE = auto()
    USER_CANCELLED_TRUST_STEP = auto()
    FAILED_TO_MAKE_KEY_ACCESSIBLE = auto()
    EXISTING_HTTPS_CERTIFICATE_TRUSTED = auto()
    NEW_HTTPS_CERTIFICATE_TRUSTED = auto()

    @property
    def is_error(self) -> bool:
        """Whether this outcome represents a failure."""
        return self not in (
            EnsureCertificateResult.SUCCEEDED,
            EnsureCertificateResult.VALID_CERTIFICATE_PRESENT,
            EnsureCertificateResult.EXISTING_HTTPS_CERTIFICATE_TRUSTED,
            EnsureCertificateResult.NEW_HTTPS_CERTIFICATE_TRUSTED,
        )


class DevelopmentCertificate:
    """
    A development certificate and, when available, its private key.

    Two instances are equal when their thumbprints are equal, so the same
    key material loaded from a keychain, a PEM file and a PKCS#12 file
    compares equal and hashes identically.
    """

    def __init__(
        self,
        certificate: x509.Certificate,
        private_key: Optional[PrivateKey] = None,
        *,
        key_in_store: bool = False,
    ) -> None:
        self.certificate = certificate
        self.private_key = private_key
        # The owning store reports an associated key that was not loaded.
        self.key_in_store = key_in_store
        self._thumbprint: Optional[str] = None

    @classmethod
    def from_der(cls, data: bytes, *, key_in_store: bool = False) -> "DevelopmentCertificate":
        return cls(x509.load_der_x509_certificate(data), key_in_store=key_in_store)

    @classmethod
    def from_pem(cls, data: bytes) -> "DevelopmentCertificate":
        return cls(x509.load_pem_x509_certificate(data))

    @classmethod
    def from_pkcs12(
        cls, data: bytes, password: Optional[bytes] = None
    ) -> "DevelopmentCertificate":
        """
        Load a certificate and key from a PKCS#12 container.

        Containers written without a password are sometimes encrypted with an
        empty one, so an empty password is tried when none is given.
        """
        try:
            key, cert, _ = pkcs12.load_key_and_certificates(data, password)
        except ValueError:
            if password is not None:
                raise
            key, cert, _ = pkcs12.load_key_and_certificates(data, b"")
        if cert is None:
            raise ValueError("PKCS#12 data does not contain a certificate")
        return cls(cert, key)  # type: ignore[arg-type]

    @property
    def thumbprint(self) -> str:
        if self._thumbprint is None:
            self._thumbprint = self.certificate.fingerprint(hashes.SHA1()).hex().upper()
        return self._thumbprint

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def not_before(self) -> datetime.datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime.datetime:
        return self.certificate.not_valid_after_utc

    @property
    def raw(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.DER)

    @property
    def has_private_key(self) -> bool:
        return self.private_key is not None or self.key_in_store

    @property
    def is_https_development_certificate(self) -> bool:
        return self._marker_extension() is not None

    @property
    def version(self) -> int:
        """Certificate version carried by the marker extension, 0 for legacy payloads."""
        extension = self._marker_extension()
        if extension is None:
            return 0
        payload = extension.value.value
        return payload[0] if len(payload) == 1 else 0

    def _marker_extension(self) -> Optional[x509.Extension]:
        for extension in self.certificate.extensions:
            if extension.oid.dotted_string == ASPNET_HTTPS_OID:
                return extension
        return None

    def is_valid_at(self, moment: datetime.datetime) -> bool:
        return self.not_before <= moment <= self.not_after

    def public_only(self) -> "DevelopmentCertificate":
        """Return a copy carrying no private key material."""
        return DevelopmentCertificate(self.certificate)

    def to_der(self) -> bytes:
        return self.raw

    def to_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def to_pkcs12(self, password: Optional[str] = None) -> bytes:
        if self.private_key is None:
            raise CertificateExportError(
                f"The certificate '{self.thumbprint}' has no private key loaded",
                error_code="NO_PRIVATE_KEY",
                thumbprint=self.thumbprint,
            )
        encryption = (
            serialization.BestAvailableEncryption(password.encode())
            if password
            else serialization.NoEncryption()
        )
        return pkcs12.serialize_key_and_certificates(
            name=ASPNET_HTTPS_OID_FRIENDLY_NAME.encode(),
            key=self.private_key,
            cert=self.certificate,
            cas=None,
            encryption_algorithm=encryption,
        )

    def private_key_to_pem(self, password: Optional[str] = None) -> bytes:
        if self.private_key is None:
            raise CertificateExportError(
                f"The certificate '{self.thumbprint}' has no private key loaded",
                error_code="NO_PRIVATE_KEY",
                thumbprint=self.thumbprint,
            )
        encryption = (
            serialization.BestAvailableEncryption(password.encode())
            if password
            else serialization.NoEncryption()
        )
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DevelopmentCertificate):
            return NotImplemented
        return self.thumbprint == other.thumbprint

    def __hash__(self) -> int:
        return hash(self.thumbprint)

    def __repr__(self) -> str:
        return f"DevelopmentCertificate(thumbprint={self.thumbprint!r}, subject={self.subject!r})"


@dataclass(frozen=True)
class CheckCertificateStateResult:
    """Point-in-time verdict on whether a certificate key is usable."""
    success: bool
    failure_message: Optional[str] = None
    requires_user_interaction: bool = False

    @property
    def is_valid(self) -> bool:
        return self.success


@dataclass
class EnsureCertificateOutcome:
    """Result of ensuring a development certificate exists."""
    result: EnsureCertificateResult
    certificate: Optional[DevelopmentCertificate] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return not self.result.is_error


class CertificateError(Exception):
    """Base exception for development certificate operations."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.original_error = original_error
        self.context = context

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.error_code:
            parts.append(f"Code: {self.error_code}")
        if self.original_error:
            parts.append(f"Cause: {self.original_error}")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "message": str(self.args[0]) if self.args else "",
            "error_code": self.error_code,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "exception_type": self.__class__.__name__,
        }


class CertificateGenerationError(CertificateError):
    """Raised when a development certificate cannot be created."""
    pass


class CertificateExportError(CertificateError):
    """Raised when a certificate cannot be exported."""
    pass


class CertificateStoreError(CertificateError):
    """Raised when a certificate store cannot be read or written."""
    pass


class InvalidCertificateStateError(CertificateError):
    """Raised when store, trust and disk state cannot be reconciled."""

    def __init__(self, message: str = INVALID_CERTIFICATE_STATE, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "INVALID_CERTIFICATE_STATE")
        super().__init__(message, **kwargs)


class ExternalToolError(CertificateError):
    """Raised when a platform utility exits with a nonzero code."""

    def __init__(
        self,
        message: str,
        *,
        command: Optional[list[str]] = None,
        exit_code: Optional[int] = None,
        output: str = "",
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", "EXTERNAL_TOOL_FAILED")
        super().__init__(message, command=command, exit_code=exit_code, **kwargs)
        self.command = command or []
        self.exit_code = exit_code
        self.output = output


class TrustCertificateError(ExternalToolError):
    """Raised when trust cannot be installed for a certificate."""
    pass


class UserCancelledTrustError(TrustCertificateError):
    """Raised when the user declines the OS trust prompt."""
    pass


class UnsupportedPlatformError(CertificateError):
    """Raised when no certificate manager exists for the running OS."""

    def __init__(self, platform_name: str) -> None:
        super().__init__(
            f"Development certificates are not supported on {platform_name}.",
            error_code="UNSUPPORTED_PLATFORM",
            platform=platform_name,
        )


class ConfigurationError(CertificateError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass
