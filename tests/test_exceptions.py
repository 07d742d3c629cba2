"""Tests for error classification."""

import pytest

from pyovirt.exceptions import (
    NEVER_RETRY_CODES,
    ErrorCode,
    OvirtBugError,
    OvirtConnectionError,
    OvirtError,
    OvirtFieldMissingError,
    OvirtNotFoundError,
    OvirtServerError,
    OvirtTimeoutError,
    error_for_status,
    has_error_code,
)


class TestErrorCodes:
    @pytest.mark.parametrize(
        "code",
        [
            ErrorCode.CONFLICT,
            ErrorCode.CONNECTION,
            ErrorCode.DISK_LOCKED,
            ErrorCode.PENDING,
            ErrorCode.RELATED_OPERATION_IN_PROGRESS,
            ErrorCode.VM_LOCKED,
        ],
    )
    def test_transient_codes_are_retryable(self, code):
        assert code.can_auto_retry

    @pytest.mark.parametrize(
        "code",
        [
            ErrorCode.BAD_ARGUMENT,
            ErrorCode.BUG,
            ErrorCode.FIELD_MISSING,
            ErrorCode.NOT_FOUND,
            ErrorCode.TIMEOUT,
            ErrorCode.ACCESS_DENIED,
            ErrorCode.PERMANENT_HTTP_ERROR,
        ],
    )
    def test_other_codes_are_not_retryable(self, code):
        assert not code.can_auto_retry

    def test_never_retry_codes(self):
        assert NEVER_RETRY_CODES == {ErrorCode.BAD_ARGUMENT, ErrorCode.BUG, ErrorCode.FIELD_MISSING}

    def test_field_missing_message(self):
        error = OvirtFieldMissingError("VM", "comment")
        assert error.code == ErrorCode.FIELD_MISSING
        assert str(error) == "comment field missing from VM object"

    def test_str_includes_cause(self):
        error = OvirtBugError("outer", cause=ValueError("inner"))
        assert str(error) == "outer (inner)"


class TestHasErrorCode:
    def test_direct_match(self):
        assert has_error_code(OvirtNotFoundError("gone"), ErrorCode.NOT_FOUND)

    def test_match_through_cause(self):
        error = OvirtTimeoutError("giving up", cause=OvirtConnectionError("refused"))
        assert has_error_code(error, ErrorCode.CONNECTION)
        assert has_error_code(error, ErrorCode.TIMEOUT)
        assert not has_error_code(error, ErrorCode.NOT_FOUND)

    def test_match_through_chained_exception(self):
        try:
            try:
                raise OvirtNotFoundError("gone")
            except OvirtError as e:
                raise RuntimeError("wrapped") from e
        except RuntimeError as wrapped:
            assert has_error_code(wrapped, ErrorCode.NOT_FOUND)

    def test_plain_exception(self):
        assert not has_error_code(ValueError("x"), ErrorCode.BUG)


class TestErrorForStatus:
    def test_not_found(self):
        error = error_for_status(404, "Not Found", None, operation="GET /vms/1")
        assert isinstance(error, OvirtNotFoundError)
        assert "GET /vms/1" in str(error)

    @pytest.mark.parametrize("status", [401, 403])
    def test_access_denied(self, status):
        assert error_for_status(status).code == ErrorCode.ACCESS_DENIED

    def test_conflict(self):
        error = error_for_status(409, "Conflict")
        assert error.code == ErrorCode.CONFLICT
        assert error.can_auto_retry

    @pytest.mark.parametrize("status", [502, 503, 504])
    def test_gateway_errors_are_connection_errors(self, status):
        assert isinstance(error_for_status(status), OvirtConnectionError)

    @pytest.mark.parametrize(
        "detail,code",
        [
            ("Cannot run VM. Related operation is currently in progress.", ErrorCode.RELATED_OPERATION_IN_PROGRESS),
            ("Cannot remove VM: Disk is locked. Please try again in a few minutes.", ErrorCode.DISK_LOCKED),
            ("Cannot edit VM. VM is locked.", ErrorCode.VM_LOCKED),
            ("Cannot stop VM. VM is being migrated.", ErrorCode.VM_LOCKED),
            ("Cannot add VM. The VM name is already in use.", ErrorCode.PERMANENT_HTTP_ERROR),
        ],
    )
    def test_bad_request_lock_markers(self, detail, code):
        error = error_for_status(400, "Operation Failed", detail)
        assert isinstance(error, OvirtServerError)
        assert error.code == code
        assert error.status_code == 400

    def test_other_status_is_permanent(self):
        error = error_for_status(500, "Internal Server Error")
        assert error.code == ErrorCode.PERMANENT_HTTP_ERROR
        assert not error.can_auto_retry
