"""Conversation ID logging context for tracing a session across modules.

Provides a conversation-aware logger that attaches the live conversation
identifier to every log record, making it easy to follow one browser
session through the engine, tools, and webhook handlers.

Usage:
    from voice_gateway.logging_context import get_conversation_logger, set_conversation_id

    set_conversation_id("conv-abc123")
    logger = get_conversation_logger(__name__)
    logger.info("Processing turn")  # record.conversation_id == "conv-abc123"
"""

import logging
from contextvars import ContextVar

_conversation_id: ContextVar[str] = ContextVar("conversation_id", default="NO_CONVERSATION")


def set_conversation_id(conversation_id: str) -> None:
    """Set the conversation ID for the current async context."""
    _conversation_id.set(conversation_id)


def get_conversation_id() -> str:
    """Retrieve the current conversation ID."""
    return _conversation_id.get()


class ConversationIdFilter(logging.Filter):
    """Injects conversation_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.conversation_id = _conversation_id.get()  # type: ignore[attr-defined]
        return True


def get_conversation_logger(name: str) -> logging.Logger:
    """Return a logger with the ConversationIdFilter attached.

    The filter adds ``conversation_id`` to each record so formatters can
    include ``%(conversation_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, ConversationIdFilter) for f in logger.filters):
        logger.addFilter(ConversationIdFilter())
    return logger


def install_conversation_filter(logger: logging.Logger | None = None) -> None:
    """Attach ConversationIdFilter to every handler of ``logger`` (root by default).

    Handler filters also see records propagated from child loggers, so a
    format string using ``%(conversation_id)s`` works for every module.
    """
    target = logger or logging.getLogger()
    for handler in target.handlers:
        if not any(isinstance(f, ConversationIdFilter) for f in handler.filters):
            handler.addFilter(ConversationIdFilter())
