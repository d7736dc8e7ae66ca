"""
Centralized logging using Loguru with context-aware verbosity.

This module provides a LOG() function that respects the verbosity of the
object currently connected to the logging context (a ProgramState for the
CLI, a Session for library use) without requiring explicit state passing.

Usage:
    from lib.log import LOG, LOG_error, state_connectToLogger

    # When a session or pipeline starts:
    state_connectToLogger(session)

    # Anywhere in that context:
    LOG("Parsed 4 messages", level=1)
    LOG("Span 12-18 shifted by +3", level=3)

    # Failures that must always surface:
    LOG_error("Executor for 'crawl' raised: timeout")
"""

from loguru import logger
from typing import Any, Optional
from contextvars import ContextVar
import sys

# Context variable to hold the object whose verbosity gates LOG()
_program_state: ContextVar[Optional[Any]] = ContextVar('program_state', default=None)

# Configure loguru with chatdoc-specific format
logger_format = (
    "<green>{time:HH:mm:ss}</green> │ "
    "<level>{level: <5}</level> │ "
    "<cyan>{function: <20}</cyan> @ "
    "<cyan>{line: <4}</cyan> ║ "
    "<level>{message}</level>"
)

logger.remove()  # Remove default handler
logger.add(sys.stderr, format=logger_format, level="DEBUG")


def state_connectToLogger(state: Any) -> None:
    """
    Connect an object with a ``verbosity`` attribute to the logging context.

    Args:
        state: ProgramState, Session, or any object with verbosity
    """
    _program_state.set(state)


def state_disconnectFromLogger() -> None:
    """Detach the current verbosity source (LOG() becomes silent)"""
    _program_state.set(None)


def LOG(message: str, level: int = 1, **kwargs: Any) -> None:
    """
    Log message if current state's verbosity allows.

    Args:
        message: Log message to display
        level: Minimum verbosity level required (1=normal, 2=verbose, 3=debug)
        **kwargs: Additional loguru metadata

    Verbosity levels:
        1 = Normal output (default)
        2 = Verbose (-v)
        3 = Debug (-vv or higher)
    """
    state = _program_state.get()

    if state and hasattr(state, 'verbosity') and state.verbosity >= level:
        logger.opt(depth=1).debug(message, **kwargs)


def LOG_error(message: str, **kwargs: Any) -> None:
    """
    Log a failure regardless of verbosity.

    Used where an error is caught and isolated (executor failures,
    subscriber exceptions) so it is never silently lost.
    """
    logger.opt(depth=1).error(message, **kwargs)
