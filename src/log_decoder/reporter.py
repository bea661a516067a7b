"""Failure reporter: the single place where a raised failure becomes an error response.

Operators always get full detail for system faults in the logs. Callers only
get internal detail (trace, frames, causes) in the response when the
process-wide `DiagnosticPolicy` allows it; nothing in a request can turn it on.
"""

from __future__ import annotations

import http
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from log_decoder.errors import (
    FaultKind,
    caller_message,
    classify,
    exception_type_name,
    format_frames,
    format_trace,
    root_cause,
    summarize,
    suppressed_of,
)

logger = logging.getLogger(__name__)

SYSTEM_FAULT_MESSAGE = "Unexpected error."

# Deployment tags that switch on response diagnostics regardless of the default.
DIAGNOSTIC_ENVIRONMENT_TAGS: frozenset[str] = frozenset({"dev", "local"})


@dataclass(frozen=True)
class DiagnosticPolicy:
    include_diagnostics_default: bool = False
    active_environment_tags: frozenset[str] = field(default_factory=frozenset)
    max_frames: int = 50

    def __post_init__(self) -> None:
        if self.max_frames < 0:
            raise ValueError("max_frames must be >= 0")

    def allows_diagnostics(self) -> bool:
        if self.include_diagnostics_default:
            return True
        return any(t.lower() in DIAGNOSTIC_ENVIRONMENT_TAGS for t in self.active_environment_tags)


@dataclass(frozen=True)
class RequestContext:
    method: str
    path: str
    trace_id: str | None = None


class DiagnosticPayload(BaseModel):
    """Error response body. Optional fields are dropped when serialized."""

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: str
    status: int
    error: str
    message: str
    path: str
    exception_type: str = Field(alias="exceptionType")
    trace_id: str | None = Field(default=None, alias="traceId")

    trace: str | None = None
    stack_trace: list[str] | None = Field(default=None, alias="stackTrace")
    suppressed: list[str] | None = None
    root_cause: str | None = Field(default=None, alias="rootCause")
    root_message: str | None = Field(default=None, alias="rootMessage")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso_instant(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _reason_phrase(status_code: int) -> str:
    try:
        return http.HTTPStatus(status_code).phrase
    except ValueError:
        return ""


class FailureReporter:
    def __init__(
        self,
        policy: DiagnosticPolicy,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.policy: DiagnosticPolicy = policy
        self._clock: Callable[[], datetime] = clock

    def report(self, exc: BaseException, ctx: RequestContext) -> tuple[int, DiagnosticPayload]:
        classification = classify(exc)
        status_code = classification.status_code

        if classification.kind is FaultKind.CALLER:
            message = caller_message(exc)
        else:
            message = SYSTEM_FAULT_MESSAGE

        payload = self._build_payload(exc, ctx, status_code, message)

        if classification.kind is FaultKind.CALLER:
            logger.warning(
                "%d at %s %s traceId=%s -> %s: %s",
                status_code,
                ctx.method,
                ctx.path,
                ctx.trace_id,
                type(exc).__name__,
                message,
            )
        else:
            # Full failure detail in the log regardless of response policy.
            logger.error(
                "%d at %s %s traceId=%s -> %s",
                status_code,
                ctx.method,
                ctx.path,
                ctx.trace_id,
                summarize(exc),
                exc_info=exc,
            )

        return status_code, payload

    def _build_payload(
        self,
        exc: BaseException,
        ctx: RequestContext,
        status_code: int,
        message: str,
    ) -> DiagnosticPayload:
        fields: dict[str, object] = {
            "timestamp": _iso_instant(self._clock()),
            "status": status_code,
            "error": _reason_phrase(status_code),
            "message": message,
            "path": ctx.path,
            "exception_type": exception_type_name(exc),
            "trace_id": ctx.trace_id,
        }

        # Evaluated per failure; there is no per-request override.
        if self.policy.allows_diagnostics():
            fields["trace"] = format_trace(exc)
            fields["stack_trace"] = format_frames(exc, self.policy.max_frames)

            suppressed = [summarize(s) for s in suppressed_of(exc)]
            if suppressed:
                fields["suppressed"] = suppressed

            root = root_cause(exc)
            if root is not exc:
                fields["root_cause"] = exception_type_name(root)
                fields["root_message"] = str(root)

        return DiagnosticPayload.model_validate(fields)
