"""
chatdoc - Chat documents as conversations

Turns a mutable, human-edited text document into an ordered conversation
and manages asynchronous expansion of the content blocks embedded in it.
"""

__version__ = "1.0.0"

from .lib import Parser, ProcessorRegistry, Document, BlockExpander, Session, LOG, state_connectToLogger

__all__ = [
    "Parser",
    "ProcessorRegistry",
    "Document",
    "BlockExpander",
    "Session",
    "LOG",
    "state_connectToLogger",
    "__version__",
]
