#!/usr/bin/env python3
"""
Tests for the dictionary-returning API facade.
"""

from devcerts.cert_api import DevCertsAPI
from devcerts.cert_types import TrustCertificateError


def test_ensure_and_list(memory_manager):
    api = DevCertsAPI(manager=memory_manager)

    created = api.ensure_certificate()
    listed = api.list_certificates()

    assert created["success"] is True
    assert created["result"] == "SUCCEEDED"
    assert [c["thumbprint"] for c in listed["certificates"]] == [created["thumbprint"]]
    assert listed["certificates"][0]["trusted"] is False


def test_trust_failure_is_reported(memory_manager):
    memory_manager.trust_error = TrustCertificateError("denied")
    response = DevCertsAPI(manager=memory_manager).trust_certificate()

    assert response["success"] is False
    assert response["result"] == "FAILED_TO_TRUST_THE_CERTIFICATE"
    assert "denied" in response["error"]


def test_unknown_store_is_reported(memory_manager):
    response = DevCertsAPI(manager=memory_manager).list_certificates(store="Trust")
    assert response["success"] is False
    assert "error" in response


def test_invalid_export_format_is_reported(memory_manager, tmp_path):
    response = DevCertsAPI(manager=memory_manager).ensure_certificate(
        export_path=str(tmp_path / "cert.der"), export_format="der"
    )
    assert response["success"] is False


def test_clean(memory_manager):
    api = DevCertsAPI(manager=memory_manager)
    api.trust_certificate()

    assert api.clean_certificates() == {"success": True}
    assert api.list_certificates(valid_only=False)["certificates"] == []
