#!/usr/bin/env python3
"""
Certificate I/O Module.

This module provides functions for reading and writing development
certificates in the formats the platform stores and tools understand.
"""

from pathlib import Path
from typing import Iterator, List, Optional

from cryptography import x509
from loguru import logger

from .cert_types import (
    CertificateExportError,
    CertificateKeyExportFormat,
    DevelopmentCertificate,
)
from .cert_utils import ensure_directory_exists

_PEM_BEGIN = b"-----BEGIN CERTIFICATE-----"
_PEM_END = b"-----END CERTIFICATE-----"


def write_bytes(path: Path, data: bytes) -> None:
    """Writes raw bytes, creating the parent directory first."""
    ensure_directory_exists(path.parent)
    with path.open("wb") as handle:
        handle.write(data)


def save_pkcs12(
    certificate: DevelopmentCertificate, path: Path, password: Optional[str] = None
) -> None:
    """Saves a certificate and its key to a PKCS#12 file."""
    write_bytes(path, certificate.to_pkcs12(password))
    logger.debug(f"Certificate {certificate.thumbprint} saved to PKCS#12 file: {path}")


def save_pem(certificate: DevelopmentCertificate, path: Path) -> None:
    """Saves the public certificate to a file in PEM format."""
    write_bytes(path, certificate.to_pem())
    logger.debug(f"Certificate {certificate.thumbprint} saved to PEM file: {path}")


def load_pkcs12(path: Path, password: Optional[str] = None) -> DevelopmentCertificate:
    """Loads a certificate and key from a PKCS#12 file."""
    if not path.exists():
        raise FileNotFoundError(f"Certificate file not found: {path}")
    with path.open("rb") as f:
        return DevelopmentCertificate.from_pkcs12(
            f.read(), password.encode() if password else None
        )


def load_pem(path: Path) -> DevelopmentCertificate:
    """Loads a certificate from a PEM file."""
    if not path.exists():
        raise FileNotFoundError(f"Certificate file not found: {path}")
    with path.open("rb") as f:
        return DevelopmentCertificate.from_pem(f.read())


def load_directory(path: Path, pattern: str, *, pem: bool = False) -> List[DevelopmentCertificate]:
    """
    Loads every certificate file matching a glob pattern in a directory.

    Unreadable files are logged and skipped.
    """
    if not path.is_dir():
        return []
    certificates = []
    for file_path in sorted(path.glob(pattern)):
        try:
            certificates.append(load_pem(file_path) if pem else load_pkcs12(file_path))
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable certificate file {file_path}: {e}")
    return certificates


def split_pem_certificates(text: str) -> Iterator[DevelopmentCertificate]:
    """Parses every PEM certificate block contained in tool output, ignoring text between blocks."""
    data = text.encode()
    for block in data.split(_PEM_BEGIN)[1:]:
        body, end, _ = block.partition(_PEM_END)
        try:
            yield DevelopmentCertificate(x509.load_pem_x509_certificate(_PEM_BEGIN + body + end))
        except ValueError as e:
            logger.warning(f"Skipping malformed PEM certificate block: {e}")


def export_certificate_file(
    certificate: DevelopmentCertificate,
    path: Path,
    include_private_key: bool,
    password: Optional[str],
    export_format: CertificateKeyExportFormat,
) -> None:
    """
    Exports a certificate to disk.

    Pfx with a key writes a PKCS#12 container, Pfx without a key writes the
    DER certificate. Pem writes the certificate to ``path`` and, with a key,
    the PKCS#8 key to a ``.key`` sibling, encrypted when a password is given.

    Raises:
        CertificateExportError: If the key is required but not loaded or
            the files cannot be written
    """
    try:
        match export_format:
            case CertificateKeyExportFormat.PFX:
                if include_private_key:
                    save_pkcs12(certificate, path, password)
                else:
                    write_bytes(path, certificate.to_der())
            case CertificateKeyExportFormat.PEM:
                save_pem(certificate, path)
                if include_private_key:
                    key_path = path.with_suffix(".key")
                    write_bytes(key_path, certificate.private_key_to_pem(password))
                    logger.debug(f"Private key saved to: {key_path}")
    except CertificateExportError:
        raise
    except (OSError, ValueError, TypeError) as e:
        raise CertificateExportError(
            f"Failed to export certificate {certificate.thumbprint} to {path}",
            error_code="EXPORT_FAILED",
            original_error=e,
            path=str(path),
        ) from e
    logger.info(f"Certificate {certificate.thumbprint} exported to: {path}")
