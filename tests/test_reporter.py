from __future__ import annotations

import logging
from datetime import datetime, timezone

import pytest
from starlette.exceptions import HTTPException as StarletteHTTPException

from log_decoder.errors import CallerFault, DecodeFailure
from log_decoder.reporter import (
    SYSTEM_FAULT_MESSAGE,
    DiagnosticPolicy,
    FailureReporter,
    RequestContext,
)

DIAGNOSTIC_KEYS = {"trace", "stackTrace", "suppressed", "rootCause", "rootMessage"}

CTX = RequestContext(method="GET", path="/logs/decode", trace_id="trace-123")


def _fixed_clock() -> datetime:
    return datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _reporter(**policy: object) -> FailureReporter:
    return FailureReporter(DiagnosticPolicy(**policy), clock=_fixed_clock)  # type: ignore[arg-type]


def _body(reporter: FailureReporter, exc: BaseException, ctx: RequestContext = CTX) -> tuple[int, dict]:
    status, payload = reporter.report(exc, ctx)
    return status, payload.model_dump(by_alias=True, exclude_none=True)


def _decode_failure() -> DecodeFailure:
    try:
        try:
            b"\xff".decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeFailure("Decoder failed (utf-8)") from e
    except DecodeFailure as e:
        return e
    raise AssertionError("unreachable")


def _deep_failure(depth: int) -> RuntimeError:
    def recurse(n: int) -> None:
        if n == 0:
            raise RuntimeError("deep")
        recurse(n - 1)

    try:
        recurse(depth)
    except RuntimeError as e:
        return e
    raise AssertionError("unreachable")


def test_caller_fault_is_400_with_message_and_warning_log(caplog: pytest.LogCaptureFixture) -> None:
    reporter = _reporter()
    with caplog.at_level(logging.WARNING, logger="log_decoder.reporter"):
        status, body = _body(reporter, CallerFault("Query param 'input' must not be blank."))

    assert status == 400
    assert body == {
        "timestamp": "2026-01-02T03:04:05Z",
        "status": 400,
        "error": "Bad Request",
        "message": "Query param 'input' must not be blank.",
        "path": "/logs/decode",
        "exceptionType": "log_decoder.errors.CallerFault",
        "traceId": "trace-123",
    }
    assert list(body) == ["timestamp", "status", "error", "message", "path", "exceptionType", "traceId"]

    records = [r for r in caplog.records if r.name == "log_decoder.reporter"]
    assert len(records) == 1
    rec = records[0]
    assert rec.levelno == logging.WARNING
    assert rec.exc_info is None
    assert rec.getMessage() == (
        "400 at GET /logs/decode traceId=trace-123 -> CallerFault: "
        "Query param 'input' must not be blank."
    )


def test_system_fault_hides_detail_but_logs_it(caplog: pytest.LogCaptureFixture) -> None:
    reporter = _reporter()
    exc = _decode_failure()
    with caplog.at_level(logging.WARNING, logger="log_decoder.reporter"):
        status, body = _body(reporter, exc)

    assert status == 500
    assert body["error"] == "Internal Server Error"
    assert body["message"] == SYSTEM_FAULT_MESSAGE
    assert body["exceptionType"] == "log_decoder.errors.DecodeFailure"
    assert not DIAGNOSTIC_KEYS & set(body)

    records = [r for r in caplog.records if r.name == "log_decoder.reporter"]
    assert len(records) == 1
    assert records[0].levelno == logging.ERROR
    assert records[0].exc_info is not None
    # Full detail, including the chained low-level cause.
    assert "UnicodeDecodeError" in caplog.text
    assert "Decoder failed (utf-8)" in caplog.text


def test_trace_id_omitted_when_not_supplied() -> None:
    _, body = _body(_reporter(), CallerFault("nope"), RequestContext("GET", "/x"))
    assert "traceId" not in body


@pytest.mark.parametrize(
    "policy",
    [
        {"include_diagnostics_default": True},
        {"active_environment_tags": frozenset({"dev"})},
        {"active_environment_tags": frozenset({"LOCAL", "eu-west"})},
    ],
)
def test_diagnostics_attached_when_policy_allows(policy: dict) -> None:
    status, body = _body(_reporter(**policy), _decode_failure())

    assert status == 500
    assert body["message"] == SYSTEM_FAULT_MESSAGE
    assert "Traceback" in body["trace"]
    assert "UnicodeDecodeError" in body["trace"]
    assert isinstance(body["stackTrace"], list) and body["stackTrace"]
    assert body["rootCause"] == "UnicodeDecodeError"
    assert "invalid start byte" in body["rootMessage"]
    assert "suppressed" not in body


@pytest.mark.parametrize(
    "tags",
    [frozenset(), frozenset({"prod"}), frozenset({"staging", "development"})],
)
def test_diagnostics_never_attached_outside_allow_set(tags: frozenset[str]) -> None:
    _, body = _body(_reporter(active_environment_tags=tags), _decode_failure())
    assert not DIAGNOSTIC_KEYS & set(body)


def test_stack_trace_truncated_to_max_frames() -> None:
    exc = _deep_failure(20)

    _, body = _body(_reporter(include_diagnostics_default=True, max_frames=5), exc)
    assert len(body["stackTrace"]) == 5

    _, body = _body(_reporter(include_diagnostics_default=True, max_frames=0), exc)
    assert body["stackTrace"] == []
    assert "Traceback" in body["trace"]


def test_root_cause_omitted_when_failure_is_its_own_root() -> None:
    _, body = _body(_reporter(include_diagnostics_default=True), _deep_failure(1))
    assert "rootCause" not in body
    assert "rootMessage" not in body


def test_root_cause_with_cyclic_chain_terminates() -> None:
    a = RuntimeError("a")
    b = ValueError("b")
    a.__cause__ = b
    b.__cause__ = a

    _, body = _body(_reporter(include_diagnostics_default=True), a)
    assert body["rootCause"] == "ValueError"
    assert body["rootMessage"] == "b"


def test_suppressed_listed_for_exception_group() -> None:
    group = ExceptionGroup("request failed", [OSError("close failed"), ValueError("flush failed")])

    _, body = _body(_reporter(include_diagnostics_default=True), group)
    assert body["suppressed"] == ["OSError: close failed", "ValueError: flush failed"]
    assert "close failed" in body["trace"]


def test_http_exception_keeps_status() -> None:
    status, body = _body(_reporter(), StarletteHTTPException(status_code=404))
    assert status == 404
    assert body["error"] == "Not Found"
    assert body["message"] == "Not Found"

    status, body = _body(_reporter(), StarletteHTTPException(status_code=503, detail="db pool exhausted"))
    assert status == 503
    assert body["message"] == SYSTEM_FAULT_MESSAGE


def test_policy_rejects_negative_max_frames() -> None:
    with pytest.raises(ValueError):
        DiagnosticPolicy(max_frames=-1)
