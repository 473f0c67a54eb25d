"""Error taxonomy for the challenge solver.

Every failure the engine can hit is mapped onto an :class:`ErrorType`
so the orchestrator can log it uniformly and decide whether it merely
consumes an attempt or stops acting on a widget altogether.

Error Categories:
    - DETECTION_MISS: No widget or control found (routine, fall back).
    - TIMEOUT: Bridge or network call exceeded its bound (retryable).
    - TRANSCRIPTION_FAILED: Speech API exhausted or audio rejected
      (reload the challenge).
    - FATAL_WIDGET: Host reported an explicit failure (stop acting).
    - CONFIG_ERROR: Missing credential or bad settings (per-request).
    - UNKNOWN: Anything else (retryable within budget).
"""

import asyncio
from enum import Enum
from typing import Optional

import aiohttp


class ErrorType(Enum):
    """Classification of solver errors."""

    DETECTION_MISS = "detection_miss"
    TIMEOUT = "timeout"
    TRANSCRIPTION_FAILED = "transcription_failed"
    FATAL_WIDGET = "fatal_widget"
    CONFIG_ERROR = "config_error"
    UNKNOWN = "unknown"


class ChallengeError(Exception):
    """Base class for all solver errors."""

    error_type: ErrorType = ErrorType.UNKNOWN


class DetectionMiss(ChallengeError):
    """No widget or interactive control could be located."""

    error_type = ErrorType.DETECTION_MISS


class BridgeTimeout(ChallengeError, asyncio.TimeoutError):
    """A cross-context request did not resolve within its bound."""

    error_type = ErrorType.TIMEOUT

    def __init__(self, action: str, timeout: float) -> None:
        super().__init__(
            f"Bridge request '{action}' timed out after {timeout:.1f}s"
        )
        self.action = action
        self.timeout = timeout


class TranscriptionError(ChallengeError):
    """Speech transcription could not produce an answer."""

    error_type = ErrorType.TRANSCRIPTION_FAILED

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class AudioValidationError(TranscriptionError):
    """Downloaded audio was rejected before any network call."""


class CredentialMissing(ChallengeError):
    """The speech-API credential is not configured."""

    error_type = ErrorType.CONFIG_ERROR


class FatalWidgetState(ChallengeError):
    """The host page reported an unrecoverable widget failure.

    Flows never raise this: a fatal widget comes back from
    ``ChallengeFlow.attempt`` as ``WidgetStatus.FATAL`` so it consumes no
    attempt.  The class gives code embedding the engine a typed error to
    raise and lets :func:`classify_error` map it to ``FATAL_WIDGET``.
    """

    error_type = ErrorType.FATAL_WIDGET


def classify_error(exc: Optional[BaseException]) -> ErrorType:
    """Map an arbitrary exception onto :class:`ErrorType`.

    Args:
        exc: The exception raised by a component, or ``None``.

    Returns:
        The matching error category; ``UNKNOWN`` when nothing fits.
    """
    if exc is None:
        return ErrorType.UNKNOWN
    if isinstance(exc, ChallengeError):
        return exc.error_type
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return ErrorType.TIMEOUT
    if isinstance(exc, aiohttp.ClientError):
        return ErrorType.TRANSCRIPTION_FAILED
    # Playwright raises its own TimeoutError subclass of its Error type
    name = type(exc).__name__
    if name == "TimeoutError":
        return ErrorType.TIMEOUT
    return ErrorType.UNKNOWN
