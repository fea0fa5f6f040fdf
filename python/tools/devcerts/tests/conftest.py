#!/usr/bin/env python3
"""
Shared fixtures for the development certificate tests.

Platform utilities are replaced by scripted fakes behind ``ProcessRunner``
that keep their state in memory and read the temporary files the managers
hand them, so every platform variant runs on any host.
"""

import base64
import datetime
import re
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from devcerts.cert_builder import IssuanceOptions, issue_development_certificate
from devcerts.cert_config import DevCertSettings
from devcerts.cert_linux import LinuxCertificateManager
from devcerts.cert_macos import MacCertificateManager
from devcerts.cert_manager import CertificateManager
from devcerts.cert_process import ProcessResult, ProcessRunner
from devcerts.cert_types import (
    CURRENT_CERTIFICATE_VERSION,
    CheckCertificateStateResult,
    DevelopmentCertificate,
    StoreLocation,
    StoreName,
    TrustLevel,
)
from devcerts.cert_windows import WindowsCertificateManager

Handler = Callable[[List[str]], Tuple[int, str]]


class FakeProcessRunner(ProcessRunner):
    """Records command lines and answers them with a scripted handler."""

    def __init__(self, handler: Optional[Handler] = None) -> None:
        super().__init__()
        self.calls: List[List[str]] = []
        self.handler = handler

    def run(self, executable, arguments, working_directory=None, environment=None):
        command = [executable, *arguments]
        self.calls.append(command)
        if self.handler is None:
            return ProcessResult(exit_code=0, command=command)
        exit_code, stdout = self.handler(command)
        return ProcessResult(exit_code=exit_code, stdout=stdout, command=command)

    def verbs(self) -> List[str]:
        """The subcommand of every recorded call, skipping a leading sudo."""
        result = []
        for command in self.calls:
            if command[0] == "sudo":
                command = command[1:]
            result.append(command[1] if len(command) > 1 else command[0])
        return result


class FakeKeychain:
    """In-memory stand-in for the macOS ``security`` tool."""

    def __init__(self) -> None:
        self.certificates: Dict[str, DevelopmentCertificate] = {}
        self.trusted: Set[str] = set()
        self.fail_import = False

    def add(self, certificate: DevelopmentCertificate, trusted: bool = False) -> None:
        self.certificates[certificate.thumbprint] = certificate.public_only()
        if trusted:
            self.trusted.add(certificate.thumbprint)

    def __call__(self, command: List[str]) -> Tuple[int, str]:
        if command[0] == "sudo":
            command = command[1:]
        assert command[0] == "security"
        verb, args = command[1], command[2:]

        if verb == "find-certificate":
            if args[-1].endswith("System.keychain"):
                return 44, "security: SecKeychainSearchCopyNext: The specified item could not be found"
            output = "".join(
                f"SHA-1 hash: {c.thumbprint}\n{c.to_pem().decode()}"
                for c in self.certificates.values()
            )
            return (0, output) if output else (44, "")
        if verb == "import":
            if self.fail_import:
                return 1, "security: SecKeychainItemImport: failed"
            password = args[args.index("-P") + 1]
            certificate = DevelopmentCertificate.from_pkcs12(
                Path(args[0]).read_bytes(), password.encode()
            )
            self.add(certificate)
            return 0, ""
        if verb == "add-trusted-cert":
            certificate = DevelopmentCertificate.from_der(Path(args[-1]).read_bytes())
            self.trusted.add(certificate.thumbprint)
            return 0, ""
        if verb == "verify-cert":
            certificate = DevelopmentCertificate.from_pem(
                Path(args[args.index("-c") + 1]).read_bytes()
            )
            return (0, "...certificate verification successful.") if certificate.thumbprint in self.trusted else (1, "")
        if verb == "remove-trusted-cert":
            certificate = DevelopmentCertificate.from_der(Path(args[0]).read_bytes())
            if certificate.thumbprint not in self.trusted:
                return 1, "SecTrustSettingsRemoveTrustSettings: The specified item could not be found"
            self.trusted.discard(certificate.thumbprint)
            return 0, ""
        if verb == "delete-certificate":
            thumbprint = args[args.index("-Z") + 1]
            if thumbprint in self.trusted:
                return 1, "Unable to delete certificate matching a trusted item"
            if self.certificates.pop(thumbprint, None) is None:
                return 44, "Unable to delete certificate matching"
            return 0, ""
        raise AssertionError(f"Unexpected security command: {command}")


class FakeOpenSsl:
    """Stand-in for ``openssl`` and the NSS ``certutil``."""

    def __init__(self) -> None:
        self.rehash_fails = False
        self.nss_fails = False
        self.nss_calls: List[List[str]] = []

    def __call__(self, command: List[str]) -> Tuple[int, str]:
        tool, args = command[0], command[1:]
        if tool == "openssl" and args[0] == "rehash":
            return (1, "rehash: error") if self.rehash_fails else (0, "")
        if tool == "openssl" and args[0] == "verify":
            ca_path = Path(args[args.index("-CApath") + 1])
            pem = Path(args[-1]).read_bytes()
            trusted = any(p.read_bytes() == pem for p in ca_path.glob("*.pem"))
            return (0, f"{args[-1]}: OK") if trusted else (2, "error 18 at 0 depth lookup")
        if tool == "certutil":
            self.nss_calls.append(args)
            return (255, "certutil: function failed") if self.nss_fails else (0, "")
        raise AssertionError(f"Unexpected command: {command}")


class FakeWindowsStores:
    """Stand-in for PowerShell's ``Cert:`` drive and ``certutil``."""

    def __init__(self) -> None:
        self.stores: Dict[Tuple[str, str], Dict[str, DevelopmentCertificate]] = defaultdict(dict)
        self.cancel_trust = False

    def store(self, location: str, name: str) -> Dict[str, DevelopmentCertificate]:
        return self.stores[(location, name)]

    def __call__(self, command: List[str]) -> Tuple[int, str]:
        if command[0] == "powershell":
            location, name = re.search(r"Cert:\\(\w+)\\(\w+)", command[-1]).groups()
            lines = [
                f"{c.thumbprint}|{c.private_key is not None}|{base64.b64encode(c.raw).decode()}"
                for c in self.store(location, name).values()
            ]
            return 0, "\n".join(lines)

        assert command[0] == "certutil"
        args = command[1:]
        location = "CurrentUser" if "-user" in args else "LocalMachine"
        if "-importpfx" in args:
            i = args.index("-importpfx")
            password = args[args.index("-p") + 1]
            certificate = DevelopmentCertificate.from_pkcs12(
                Path(args[i + 2]).read_bytes(), password.encode()
            )
            self.store(location, args[i + 1])[certificate.thumbprint] = certificate
            return 0, "CertUtil: -importPFX command completed successfully."
        if "-addstore" in args:
            if self.cancel_trust:
                return -2147023673, "CertUtil: -addstore command FAILED: 0x800704c7 (WIN32: 1223 ERROR_CANCELLED)"
            certificate = DevelopmentCertificate.from_der(Path(args[-1]).read_bytes())
            self.store(location, args[-2])[certificate.thumbprint] = certificate
            return 0, "CertUtil: -addstore command completed successfully."
        if "-delstore" in args:
            i = args.index("-delstore")
            if self.store(location, args[i + 1]).pop(args[i + 2], None) is None:
                return 1, "CertUtil: -delstore command FAILED: 0x80090011"
            return 0, ""
        if "-exportPFX" in args:
            i = args.index("-exportPFX")
            password = args[args.index("-p") + 1]
            certificate = self.store(location, args[i + 1])[args[i + 2]]
            Path(args[i + 3]).write_bytes(certificate.to_pkcs12(password))
            return 0, ""
        raise AssertionError(f"Unexpected certutil command: {command}")


class InMemoryCertificateManager(CertificateManager):
    """Platform variant keeping stores and trust in dictionaries."""

    def __init__(self, settings: DevCertSettings) -> None:
        super().__init__(settings, FakeProcessRunner())
        self.stores: Dict[Tuple[StoreName, StoreLocation], Dict[str, DevelopmentCertificate]] = defaultdict(dict)
        self.trusted: Set[str] = set()
        self.trust_error: Optional[Exception] = None
        self.trust_level = TrustLevel.FULL
        self.trust_calls = 0

    def _populate_certificates(self, store_name, location):
        if store_name is StoreName.ROOT:
            return [c for c in self.stores[(StoreName.MY, location)].values() if c.thumbprint in self.trusted]
        return list(self.stores[(store_name, location)].values())

    def _save_certificate_core(self, certificate, store_name, location):
        self.stores[(store_name, location)][certificate.thumbprint] = certificate
        return certificate

    def _remove_certificate_from_user_store_core(self, certificate):
        self.stores[(StoreName.MY, StoreLocation.CURRENT_USER)].pop(certificate.thumbprint, None)

    def _trust_certificate_core(self, public_certificate):
        self.trust_calls += 1
        if self.trust_error is not None:
            raise self.trust_error
        self.trusted.add(public_certificate.thumbprint)
        return self.trust_level

    def _remove_certificate_from_trusted_roots(self, certificate):
        self.trusted.discard(certificate.thumbprint)

    def is_trusted(self, certificate):
        return certificate.thumbprint in self.trusted

    def check_certificate_state(self, certificate, interactive):
        return CheckCertificateStateResult(True)

    def correct_certificate_state(self, certificate):
        pass


@pytest.fixture
def settings(tmp_path: Path) -> DevCertSettings:
    """Settings pointing every on-disk location into a temporary directory."""
    return DevCertSettings(
        key_size=1024,  # Smaller keys keep the tests fast
        https_directory=tmp_path / "https",
        user_keychain=tmp_path / "login.keychain-db",
        system_keychain=tmp_path / "System.keychain",
        linux_store_directory=tmp_path / "x509stores" / "my",
        linux_trust_directory=tmp_path / "trust",
        nss_databases=[tmp_path / "nssdb"],
    )


@pytest.fixture
def make_certificate() -> Callable[..., DevelopmentCertificate]:
    """Factory issuing development certificates relative to now."""

    def _make(
        subject: str = "CN=localhost",
        start_days: int = -1,
        valid_days: int = 30,
        version: int = CURRENT_CERTIFICATE_VERSION,
    ) -> DevelopmentCertificate:
        now = datetime.datetime.now(datetime.timezone.utc)
        not_before = now + datetime.timedelta(days=start_days)
        return issue_development_certificate(
            IssuanceOptions(
                not_before=not_before,
                not_after=not_before + datetime.timedelta(days=valid_days),
                subject=subject,
                key_size=1024,
                version=version,
            )
        )

    return _make


@pytest.fixture
def memory_manager(settings: DevCertSettings) -> InMemoryCertificateManager:
    return InMemoryCertificateManager(settings)


@pytest.fixture
def keychain() -> FakeKeychain:
    return FakeKeychain()


@pytest.fixture
def mac_manager(settings: DevCertSettings, keychain: FakeKeychain) -> MacCertificateManager:
    return MacCertificateManager(settings, FakeProcessRunner(keychain))


@pytest.fixture
def openssl() -> FakeOpenSsl:
    return FakeOpenSsl()


@pytest.fixture
def linux_manager(settings: DevCertSettings, openssl: FakeOpenSsl) -> LinuxCertificateManager:
    return LinuxCertificateManager(settings, FakeProcessRunner(openssl))


@pytest.fixture
def windows_stores() -> FakeWindowsStores:
    return FakeWindowsStores()


@pytest.fixture
def windows_manager(settings: DevCertSettings, windows_stores: FakeWindowsStores) -> WindowsCertificateManager:
    return WindowsCertificateManager(settings, FakeProcessRunner(windows_stores))
