#!/usr/bin/env python3
"""
Tests for the command-line interface.
"""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from devcerts import cert_cli
from devcerts.cert_types import StoreLocation, StoreName, UserCancelledTrustError

runner = CliRunner()


@pytest.fixture
def invoke(memory_manager, monkeypatch, tmp_path: Path):
    """Invoke the CLI against the in-memory manager."""
    monkeypatch.setattr(cert_cli, "create_certificate_manager", lambda settings: memory_manager)
    config = str(tmp_path / "missing.toml")

    def _invoke(*args: str):
        return runner.invoke(cert_cli.app, ["--config", config, *args])

    return _invoke


def test_create(invoke, memory_manager):
    result = invoke("create")

    assert result.exit_code == 0
    assert "generated successfully" in result.stdout
    (certificate,) = memory_manager.list_certificates(
        StoreName.MY, StoreLocation.CURRENT_USER, is_valid=True
    )
    assert certificate.thumbprint in result.stdout


def test_create_twice_reports_existing_certificate(invoke):
    invoke("create")
    result = invoke("create")
    assert result.exit_code == 0
    assert "already present" in result.stdout


def test_create_with_export(invoke, tmp_path: Path):
    path = tmp_path / "devcert.pem"
    result = invoke("create", "--export-path", str(path), "--no-password", "--format", "pem")

    assert result.exit_code == 0
    assert path.exists()
    assert (tmp_path / "devcert.key").exists()


def test_create_password_requires_export_path(invoke):
    result = invoke("create", "--password", "secret")
    assert result.exit_code != 0


def test_check_without_certificate_fails(invoke):
    result = invoke("check")
    assert result.exit_code == 1
    assert "No valid certificate found" in result.stdout


def test_check_trust(invoke):
    invoke("create")
    assert invoke("check").exit_code == 0
    assert invoke("check", "--trust").exit_code == 1

    invoke("trust")
    result = invoke("check", "--trust")
    assert result.exit_code == 0
    assert "IsTrusted: true" in result.stdout


def test_trust_cancelled(invoke, memory_manager):
    memory_manager.trust_error = UserCancelledTrustError("cancelled")

    result = invoke("trust")

    assert result.exit_code == 1
    assert "cancelled" in result.stdout


def test_clean(invoke, memory_manager):
    invoke("trust")

    result = invoke("clean")

    assert result.exit_code == 0
    assert memory_manager.list_certificates(
        StoreName.MY, StoreLocation.CURRENT_USER, is_valid=False
    ) == []


def test_list(invoke):
    invoke("create")
    result = invoke("list", "--store", "root", "--all")
    assert result.exit_code == 0
    assert "CurrentUser\\Root" in result.stdout


def test_list_unknown_store(invoke):
    result = invoke("list", "--store", "Trust")
    assert result.exit_code != 0


def test_invalid_config_fails(tmp_path: Path):
    config = tmp_path / "config.toml"
    config.write_text("[devcerts]\nvalid_days = -1\n")

    result = runner.invoke(cert_cli.app, ["--config", str(config), "check"])

    assert result.exit_code == 1
