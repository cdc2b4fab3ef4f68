import json

import httpx
import pytest

from roundkeeper.errors import (
    ErrorCategory,
    PermissionDeniedError,
    RemoteServiceError,
    StorageError,
    as_roundkeeper_error,
    classify_exception,
)


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.supabase.co/rest/v1/rounds")
    return httpx.HTTPStatusError(
        "boom", request=request, response=httpx.Response(code, request=request)
    )


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (httpx.ConnectError("refused"), ErrorCategory.NETWORK),
        (httpx.ReadTimeout("slow"), ErrorCategory.TIMEOUT),
        (TimeoutError(), ErrorCategory.TIMEOUT),
        (_status_error(403), ErrorCategory.PERMISSION),
        (_status_error(409), ErrorCategory.REMOTE_SERVICE),
        (PermissionError("denied"), ErrorCategory.PERMISSION),
        (OSError("disk"), ErrorCategory.STORAGE),
        (json.JSONDecodeError("bad", "{", 0), ErrorCategory.STORAGE),
        (KeyError("x"), ErrorCategory.PROCESSING),
        (StorageError("tagged"), ErrorCategory.STORAGE),
    ],
)
def test_classify_exception_by_type(exc, category):
    assert classify_exception(exc) is category


def test_wrapping_keeps_cause_and_status_code():
    original = _status_error(401)
    wrapped = as_roundkeeper_error(original)

    assert isinstance(wrapped, PermissionDeniedError)
    assert wrapped.code == "401"
    assert wrapped.__cause__ is original
    assert wrapped.to_dict() == {"category": "permission", "message": "boom", "code": "401"}


def test_tagged_errors_pass_through():
    err = RemoteServiceError("round missing")
    assert as_roundkeeper_error(err) is err
