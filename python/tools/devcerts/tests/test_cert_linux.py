#!/usr/bin/env python3
"""
Tests for the Linux on-disk store and OpenSSL trust directory.
"""

from pathlib import Path

import pytest

from devcerts.cert_linux import get_nss_nickname, get_trust_file_name
from devcerts.cert_types import (
    CertificateKeyExportFormat,
    EnsureCertificateResult,
    StoreLocation,
    StoreName,
    TrustCertificateError,
    TrustLevel,
)


def _trust_file(manager, certificate) -> Path:
    return manager.trust_directory / get_trust_file_name(certificate)


def test_save_is_idempotent(linux_manager, make_certificate):
    certificate = make_certificate()
    linux_manager.save_certificate(certificate)
    linux_manager.save_certificate(certificate)

    assert [p.name for p in linux_manager.store_directory.iterdir()] == [f"{certificate.thumbprint}.pfx"]
    assert linux_manager.list_certificates(
        StoreName.MY, StoreLocation.CURRENT_USER, is_valid=True
    ) == [certificate]


def test_local_machine_is_empty(linux_manager, make_certificate):
    linux_manager.save_certificate(make_certificate())
    assert linux_manager.list_certificates(
        StoreName.MY, StoreLocation.LOCAL_MACHINE, is_valid=False
    ) == []


def test_trust_round_trip(linux_manager, make_certificate):
    certificate = make_certificate()
    linux_manager.save_certificate(certificate)
    assert not linux_manager.is_trusted(certificate)

    assert linux_manager.trust_certificate(certificate) is TrustLevel.FULL

    assert _trust_file(linux_manager, certificate).read_bytes() == certificate.to_pem()
    assert linux_manager.is_trusted(certificate)
    assert ["openssl", "rehash", str(linux_manager.trust_directory)] in linux_manager.runner.calls
    assert linux_manager.list_certificates(
        StoreName.ROOT, StoreLocation.CURRENT_USER, is_valid=False
    ) == [certificate]

    linux_manager.remove_trust(certificate)
    assert not _trust_file(linux_manager, certificate).exists()
    assert not linux_manager.is_trusted(certificate)


def test_verification_uses_trust_directory(linux_manager, make_certificate):
    certificate = make_certificate()
    linux_manager.trust_certificate(certificate)
    linux_manager.is_trusted(certificate)

    verify = [c for c in linux_manager.runner.calls if c[:2] == ["openssl", "verify"]][-1]
    assert verify[2:4] == ["-CApath", str(linux_manager.trust_directory)]
    assert not Path(verify[4]).exists()


def test_rehash_failure_is_raised(linux_manager, openssl, make_certificate):
    openssl.rehash_fails = True
    with pytest.raises(TrustCertificateError):
        linux_manager.trust_certificate(make_certificate())


def test_nss_databases(linux_manager, openssl, make_certificate):
    database = linux_manager.settings.nss_databases[0]
    database.mkdir()
    certificate = make_certificate()

    assert linux_manager.trust_certificate(certificate) is TrustLevel.FULL
    assert openssl.nss_calls[0][:2] == ["-d", f"sql:{database}"]
    assert get_nss_nickname(certificate) in openssl.nss_calls[0]

    linux_manager.remove_trust(certificate)
    assert openssl.nss_calls[-1][2:] == ["-D", "-n", get_nss_nickname(certificate)]


def test_nss_failure_is_partial_trust(linux_manager, openssl, make_certificate):
    linux_manager.settings.nss_databases[0].mkdir()
    openssl.nss_fails = True

    outcome = linux_manager.ensure_development_certificate(trust=True)

    assert outcome.result is EnsureCertificateResult.PARTIALLY_FAILED_TO_TRUST_THE_CERTIFICATE


def test_missing_nss_database_is_skipped(linux_manager, openssl, make_certificate):
    linux_manager.trust_certificate(make_certificate())
    assert openssl.nss_calls == []


def test_ensure_and_remove_all(linux_manager):
    outcome = linux_manager.ensure_development_certificate(trust=True)
    assert outcome.result is EnsureCertificateResult.NEW_HTTPS_CERTIFICATE_TRUSTED

    linux_manager.remove_all_certificates(StoreName.ROOT, StoreLocation.CURRENT_USER)
    linux_manager.remove_all_certificates(StoreName.MY, StoreLocation.CURRENT_USER)

    for store_name in (StoreName.MY, StoreName.ROOT):
        assert linux_manager.list_certificates(store_name, StoreLocation.CURRENT_USER, is_valid=False) == []
    assert not linux_manager.is_trusted(outcome.certificate)


def test_export_loads_key_from_store(linux_manager, make_certificate, tmp_path: Path):
    certificate = make_certificate()
    linux_manager.save_certificate(certificate)
    path = tmp_path / "export.pem"

    linux_manager.export_certificate(
        certificate.public_only(), path, True, None, CertificateKeyExportFormat.PEM
    )

    assert path.exists()
    assert b"PRIVATE KEY" in (tmp_path / "export.key").read_bytes()
