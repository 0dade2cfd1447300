"""
Client-side session orchestrator for Copilot Studio agents.

Signs the user in, negotiates a streaming or polling Direct Line channel,
keeps an ordered transcript and hands tokens to agents that ask for sign-in.
"""

from copilot_session.config import SessionConfig
from copilot_session.context import SessionContext
from copilot_session.errors import ErrorKind, ErrorReport, SessionError
from copilot_session.logger import get_logger, setup_logging
from copilot_session.session.controller import SessionController, SessionState

__all__ = [
    "ErrorKind",
    "ErrorReport",
    "SessionConfig",
    "SessionContext",
    "SessionController",
    "SessionError",
    "SessionState",
    "get_logger",
    "setup_logging",
]
