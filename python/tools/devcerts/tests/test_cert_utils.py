#!/usr/bin/env python3
"""
Tests for the certificate utility helpers.
"""

import base64
from pathlib import Path

import pytest

from devcerts.cert_utils import (
    ensure_directory_exists,
    generate_transit_password,
    log_operation,
    temporary_file,
)


def test_temporary_file_contents_and_cleanup():
    with temporary_file(b"certificate bytes", suffix=".cer") as path:
        assert path.suffix == ".cer"
        assert path.read_bytes() == b"certificate bytes"
    assert not path.exists()


def test_temporary_file_without_data_is_empty():
    with temporary_file() as path:
        assert path.read_bytes() == b""
    assert not path.exists()


def test_temporary_file_removed_when_block_raises():
    created = []
    with pytest.raises(RuntimeError):
        with temporary_file(b"secret key material") as path:
            created.append(path)
            raise RuntimeError("tool crashed")

    (path,) = created
    assert not path.exists()


def test_temporary_file_already_deleted_by_caller():
    with temporary_file(b"data") as path:
        path.unlink()
    assert not path.exists()


def test_ensure_directory_exists(tmp_path: Path):
    target = tmp_path / "a" / "b"
    ensure_directory_exists(target)
    ensure_directory_exists(target)
    assert target.is_dir()


def test_ensure_directory_exists_over_file(tmp_path: Path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    with pytest.raises(OSError):
        ensure_directory_exists(blocker / "child")


def test_transit_passwords_are_random():
    first, second = generate_transit_password(), generate_transit_password()
    assert first != second
    assert len(base64.b64decode(first)) == 36


def test_log_operation_returns_result():
    @log_operation
    def add(a, b):
        return a + b

    assert add(2, b=3) == 5
    assert add.__name__ == "add"


def test_log_operation_reraises():
    @log_operation
    def fail():
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        fail()
