"""
chatdoc - Chat documents as conversations

Parse human-edited chat documents into role-tagged messages and expand the
content blocks embedded in them.
"""

__version__ = "1.0.0"

from .parser import Parser, document_parse
from .registry import ProcessorRegistry
from .aliases import AliasResolver, aliases_load
from .document import Document
from .expander import BlockExpander
from .executors import AsyncioExecutor, FunctionExecutor
from .store import StateStore
from .session import Session
from .log import LOG, state_connectToLogger

__all__ = [
    "Parser",
    "document_parse",
    "ProcessorRegistry",
    "AliasResolver",
    "aliases_load",
    "Document",
    "BlockExpander",
    "AsyncioExecutor",
    "FunctionExecutor",
    "StateStore",
    "Session",
    "LOG",
    "state_connectToLogger",
    "__version__",
]
