"""Failure taxonomy and the helpers that render a failure for diagnostics.

Two kinds of failure cross the request boundary:

- caller faults (bad or missing input) -> 400, message echoed to the caller
- system faults (everything else) -> 500, generic message to the caller

`classify` maps any exception instance to a `Classification` explicitly; the
reporter never relies on handler selection by exception type.
"""

from __future__ import annotations

import enum
import traceback
from dataclasses import dataclass

from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException


class CallerFault(Exception):
    """The request itself is invalid (missing/blank/malformed input)."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message


class SystemFault(Exception):
    """A server-side failure; details never reach the caller by default."""


class DecodeFailure(SystemFault):
    """Byte-to-text decoding could not complete; the low-level error is chained."""


class FaultKind(str, enum.Enum):
    CALLER = "caller"
    SYSTEM = "system"


@dataclass(frozen=True)
class Classification:
    kind: FaultKind
    status_code: int


def classify(exc: BaseException) -> Classification:
    if isinstance(exc, CallerFault):
        return Classification(FaultKind.CALLER, 400)
    if isinstance(exc, RequestValidationError):
        return Classification(FaultKind.CALLER, 400)
    if isinstance(exc, StarletteHTTPException):
        # Routing faults (404/405/...) keep their own status.
        kind = FaultKind.CALLER if 400 <= exc.status_code < 500 else FaultKind.SYSTEM
        return Classification(kind, exc.status_code)
    return Classification(FaultKind.SYSTEM, 500)


def caller_message(exc: BaseException) -> str:
    if isinstance(exc, CallerFault):
        return exc.message
    if isinstance(exc, RequestValidationError):
        return "Request validation error"
    if isinstance(exc, StarletteHTTPException):
        return str(exc.detail)
    return str(exc)


def exception_type_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


def summarize(exc: BaseException) -> str:
    return f"{exception_type_name(exc)}: {exc}"


def _originating_cause(exc: BaseException) -> BaseException | None:
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__suppress_context__:
        return None
    return exc.__context__


def root_cause(exc: BaseException) -> BaseException:
    """Walk the cause chain to the innermost failure.

    Stops at the last failure not seen before, so a chain that loops back on
    itself still terminates.
    """

    seen: set[int] = {id(exc)}
    current = exc
    while True:
        nxt = _originating_cause(current)
        if nxt is None or id(nxt) in seen:
            return current
        seen.add(id(nxt))
        current = nxt


def suppressed_of(exc: BaseException) -> list[BaseException]:
    # Secondary failures attached to a primary one travel as an exception group.
    if isinstance(exc, BaseExceptionGroup):
        return list(exc.exceptions)
    return []


def format_frames(exc: BaseException, limit: int) -> list[str]:
    """Render the traceback frames of `exc`, innermost (raise site) first."""

    if limit <= 0:
        return []
    summary = traceback.extract_tb(exc.__traceback__)
    frames: list[str] = []
    for frame in reversed(summary):
        if len(frames) >= limit:
            break
        frames.append(f"{frame.name} ({frame.filename}:{frame.lineno})")
    return frames


def format_trace(exc: BaseException) -> str:
    # Includes chained causes/contexts and exception-group members.
    return "".join(traceback.format_exception(exc))
