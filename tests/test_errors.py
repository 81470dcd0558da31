"""Tests for the error taxonomy and the Ok/Err channel."""

from __future__ import annotations

import dataclasses

import pytest

from ben_ten.errors import BenTenError, Err, ErrorCode, Ok, create_error, fail


def test_create_error_drops_none_details():
    err = create_error(ErrorCode.FS_NOT_FOUND, "missing", path="/x", extra=None)
    assert err.code is ErrorCode.FS_NOT_FOUND
    assert err.details == {"path": "/x"}


def test_error_to_dict_omits_empty_details():
    assert create_error(ErrorCode.CONFIG_INVALID, "bad").to_dict() == {
        "code": "CONFIG_INVALID",
        "message": "bad",
    }
    assert create_error(ErrorCode.CONFIG_INVALID, "bad", path="p").to_dict()["details"] == {
        "path": "p"
    }


def test_error_str_and_frozen():
    err = BenTenError(ErrorCode.SERIALIZE_FAILED, "boom")
    assert str(err) == "SERIALIZE_FAILED: boom"
    with pytest.raises(dataclasses.FrozenInstanceError):
        err.message = "other"  # type: ignore[misc]


def test_ok_and_err_flags():
    assert Ok(3).ok is True
    assert Ok(3).value == 3
    result = fail(ErrorCode.HOOK_INVALID_INPUT, "nope", field="cwd")
    assert isinstance(result, Err)
    assert result.ok is False
    assert result.error.details["field"] == "cwd"


def test_error_codes_are_strings():
    assert ErrorCode.CONTEXT_CORRUPTED == "CONTEXT_CORRUPTED"
    assert "CHECKSUM_MISMATCH" not in ErrorCode.__members__
