"""
Models package for chatdoc

Contains data structures and type definitions for parsing, block
expansion and request tracking.
"""

from .state import ProgramState, pipeline
from .markers import MARKERS, AUTO_TITLE_INSTRUCTION
from .processors import Role, Literal, Predicate, ProcessorDescriptor, AliasDescriptor
from .parser import Message, ParseResult, BlockContent
from .blocks import BlockState, BlockEvent, BlockType, PendingExpansion, ExpansionReport
from .requests import RequestStatus, RequestRecord

__all__ = [
    "ProgramState",
    "pipeline",
    "MARKERS",
    "AUTO_TITLE_INSTRUCTION",
    "Role",
    "Literal",
    "Predicate",
    "ProcessorDescriptor",
    "AliasDescriptor",
    "Message",
    "ParseResult",
    "BlockContent",
    "BlockState",
    "BlockEvent",
    "BlockType",
    "PendingExpansion",
    "ExpansionReport",
    "RequestStatus",
    "RequestRecord",
]
