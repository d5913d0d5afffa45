"""Tests for the error taxonomy and ToolError rendering."""

from __future__ import annotations

from metabase_mcp.foundation.errors import (
    AggregateFailure,
    ErrorCode,
    ItemError,
    RequestValidationError,
    ToolError,
    UpstreamError,
    classify_exception,
)


def test_upstream_recoverable_follows_code() -> None:
    assert UpstreamError("slow", code=ErrorCode.TIMEOUT).recoverable
    assert UpstreamError("5xx").recoverable
    assert not UpstreamError("gone", code=ErrorCode.NOT_FOUND, http_status=404).recoverable


def test_validation_error_is_not_recoverable() -> None:
    err = RequestValidationError("ids", [], "At least one id is required")
    assert err.code is ErrorCode.INVALID_PARAMS
    assert not err.recoverable
    assert err.message == "Invalid parameter 'ids' ([]). At least one id is required"


def test_item_error_from_exception() -> None:
    known = ItemError.from_exception(3, UpstreamError("nope", code=ErrorCode.PERMISSION_DENIED, http_status=403))
    assert (known.id, known.code, known.http_status, known.recoverable) == (3, ErrorCode.PERMISSION_DENIED, 403, False)

    unknown = ItemError.from_exception(4, ConnectionResetError("connection reset"))
    assert unknown.code is ErrorCode.NETWORK_ERROR
    assert unknown.recoverable


def test_classify_exception() -> None:
    assert classify_exception(TimeoutError("request timeout")) is ErrorCode.TIMEOUT
    assert classify_exception(ValueError("bad json")) is ErrorCode.PARSE_ERROR
    assert classify_exception(UpstreamError("x", code=ErrorCode.RATE_LIMITED)) is ErrorCode.RATE_LIMITED


def test_aggregate_failure_renders_details() -> None:
    errors = [ItemError(id=4, message="gone", code=ErrorCode.NOT_FOUND, recoverable=False),
              ItemError(id=5, message="gone", code=ErrorCode.NOT_FOUND, recoverable=False)]
    exc = AggregateFailure("card", errors, "card not found: IDs 4, 5", ErrorCode.NOT_FOUND)

    rendered = ToolError.from_exception("retrieve", exc).render()

    assert rendered.startswith("**Tool Error (retrieve):** card not found: IDs 4, 5")
    assert "4: [NOT_FOUND] gone" in rendered
    assert "may be recoverable" not in rendered


def test_tool_error_retryable() -> None:
    err = ToolError.create("list", "rate limited", ErrorCode.RATE_LIMITED)
    assert err.is_retryable
    assert str(err) == err.render()
