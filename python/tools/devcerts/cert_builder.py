#!/usr/bin/env python3
"""
Certificate Builder Module.

This module provides a fluent builder for issuing self-signed HTTPS
development certificates, abstracting the complexities of the
`cryptography` library.
"""

import datetime
from dataclasses import dataclass, field
from typing import List

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

from .cert_types import (
    ASPNET_HTTPS_OID,
    CURRENT_CERTIFICATE_VERSION,
    LOCALHOST_DISTINGUISHED_NAME,
    LOCALHOST_DNS_NAME,
    CertificateGenerationError,
    DevelopmentCertificate,
)
from .cert_utils import log_operation


@dataclass
class IssuanceOptions:
    """Options for issuing a development certificate."""
    not_before: datetime.datetime
    not_after: datetime.datetime
    subject: str = LOCALHOST_DISTINGUISHED_NAME
    dns_names: List[str] = field(default_factory=lambda: [LOCALHOST_DNS_NAME])
    key_size: int = 2048
    version: int = CURRENT_CERTIFICATE_VERSION


class CertificateBuilder:
    """A builder for HTTPS development certificates."""

    def __init__(self, options: IssuanceOptions, key: rsa.RSAPrivateKey):
        self._options = options
        self._key = key
        self._builder = x509.CertificateBuilder()

    def build(self) -> x509.Certificate:
        """Builds and signs the certificate."""
        self._prepare_subject_and_issuer()
        self._set_validity_period()
        self._add_basic_constraints()
        self._add_key_usage()
        self._add_extended_key_usage()
        self._add_subject_alternative_name()
        self._add_development_marker()

        return self._builder.sign(self._key, hashes.SHA256())

    def _prepare_subject_and_issuer(self) -> None:
        subject = x509.Name.from_rfc4514_string(self._options.subject)
        self._builder = self._builder.subject_name(subject)
        self._builder = self._builder.issuer_name(subject)  # Self-signed
        self._builder = self._builder.public_key(self._key.public_key())
        self._builder = self._builder.serial_number(x509.random_serial_number())

    def _set_validity_period(self) -> None:
        self._builder = self._builder.not_valid_before(self._options.not_before)
        self._builder = self._builder.not_valid_after(self._options.not_after)

    def _add_basic_constraints(self) -> None:
        self._builder = self._builder.add_extension(
            x509.BasicConstraints(ca=False, path_length=None),
            critical=True,
        )

    def _add_key_usage(self) -> None:
        self._builder = self._builder.add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )

    def _add_extended_key_usage(self) -> None:
        self._builder = self._builder.add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=True,
        )

    def _add_subject_alternative_name(self) -> None:
        self._builder = self._builder.add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName(name) for name in self._options.dns_names]
            ),
            critical=True,
        )

    def _add_development_marker(self) -> None:
        """Tags the certificate as a development certificate of the configured version."""
        self._builder = self._builder.add_extension(
            x509.UnrecognizedExtension(
                x509.ObjectIdentifier(ASPNET_HTTPS_OID),
                bytes([self._options.version]),
            ),
            critical=False,
        )


@log_operation
def issue_development_certificate(options: IssuanceOptions) -> DevelopmentCertificate:
    """
    Issues a new self-signed HTTPS development certificate.

    Args:
        options: Subject, validity window and key parameters

    Returns:
        The certificate together with its private key

    Raises:
        CertificateGenerationError: If key generation or signing fails
    """
    if options.not_after <= options.not_before:
        raise CertificateGenerationError(
            "The certificate validity window is empty",
            error_code="INVALID_VALIDITY",
            not_before=options.not_before.isoformat(),
            not_after=options.not_after.isoformat(),
        )
    try:
        key = rsa.generate_private_key(public_exponent=65537, key_size=options.key_size)
        certificate = CertificateBuilder(options, key).build()
    except (ValueError, TypeError) as e:
        raise CertificateGenerationError(
            f"Failed to create the development certificate: {e}",
            error_code="GENERATION_FAILED",
            original_error=e,
        ) from e
    return DevelopmentCertificate(certificate, key)
