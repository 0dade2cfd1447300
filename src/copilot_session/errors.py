"""
Structured errors for the session core.

Every failure that should reach the caller is a ``SessionError`` subclass
carrying a kind plus the normalized ``code / subcode / status / message``
fields. ``ErrorReporter`` is the single hook all user-visible errors flow
through; formatting for display happens only in ``ErrorReport.format()``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import httpx

from copilot_session.logger import get_logger

logger = get_logger(__name__)

INTERACTION_REQUIRED_CODES = frozenset(
    {"interaction_required", "login_required", "consent_required", "no_tokens_found"}
)
INTERACTION_REQUIRED_SUBCODES = frozenset(
    {"message_only", "basic_action", "additional_action"}
)


class ErrorKind(str, Enum):
    IDENTITY = "identity"
    NEGOTIATION = "negotiation"
    TRANSPORT = "transport"
    PROTOCOL = "protocol"


@dataclass(frozen=True)
class ErrorReport:
    """Normalized error tuple handed to the caller's error hook."""

    kind: ErrorKind
    message: str
    code: Optional[str] = None
    subcode: Optional[str] = None
    status: Optional[int] = None

    def format(self) -> str:
        parts = [self.code, self.subcode, self.status, self.message]
        return " | ".join(str(p) for p in parts if p)


class SessionError(Exception):
    """Base class for all errors raised by the session core."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        subcode: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.subcode = subcode
        self.status = status

    def to_report(self) -> ErrorReport:
        return ErrorReport(
            kind=self.kind,
            message=self.message,
            code=self.code,
            subcode=self.subcode,
            status=self.status,
        )


class IdentityError(SessionError):
    """Failure reported by the identity provider."""

    kind = ErrorKind.IDENTITY

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.code = (self.code or "").lower() or None
        self.subcode = (self.subcode or "").lower() or None

    @property
    def interaction_required(self) -> bool:
        """True when only a visible sign-in can resolve the failure."""
        return (self.code in INTERACTION_REQUIRED_CODES) or (
            self.subcode in INTERACTION_REQUIRED_SUBCODES
        )


class NegotiationError(SessionError):
    """The conversation channel could not be negotiated."""

    kind = ErrorKind.NEGOTIATION


class TargetValidationError(NegotiationError):
    """The configured agent URL is not an acceptable target."""


class TransportError(SessionError):
    """A request on an established channel failed."""

    kind = ErrorKind.TRANSPORT


class ProtocolError(SessionError):
    """An inbound activity could not be interpreted."""

    kind = ErrorKind.PROTOCOL


BLOCKED_TRANSPORT_HINT = (
    "Direct Line is unreachable. Allow https://directline.botframework.com "
    "(and regional *.botframework.com domains if needed) for outbound connections."
)


def report_from_exception(
    exc: BaseException, default_kind: ErrorKind = ErrorKind.TRANSPORT
) -> ErrorReport:
    """Normalize any exception into an ErrorReport."""
    if isinstance(exc, SessionError):
        return exc.to_report()
    if isinstance(exc, httpx.HTTPStatusError):
        return ErrorReport(
            kind=default_kind,
            message=str(exc),
            code=type(exc).__name__,
            status=exc.response.status_code,
        )
    if isinstance(exc, httpx.ConnectError):
        return ErrorReport(
            kind=default_kind, message=BLOCKED_TRANSPORT_HINT, code=type(exc).__name__
        )
    return ErrorReport(kind=default_kind, message=str(exc), code=type(exc).__name__)


ErrorHook = Callable[[ErrorReport], None]


class ErrorReporter:
    """Collects user-visible errors and forwards them to the caller's hook."""

    def __init__(self, hook: Optional[ErrorHook] = None):
        self._hook = hook
        self.last: Optional[ErrorReport] = None

    def report(
        self,
        error: BaseException | ErrorReport,
        default_kind: ErrorKind = ErrorKind.TRANSPORT,
    ) -> ErrorReport:
        report = (
            error
            if isinstance(error, ErrorReport)
            else report_from_exception(error, default_kind)
        )
        self.last = report
        logger.warning(f"[{report.kind.value}] {report.format()}")
        if self._hook:
            try:
                self._hook(report)
            except Exception as e:
                logger.error(f"Error hook raised: {e}")
        return report

    def clear(self) -> None:
        self.last = None
