"""
Parser-specific data models

Type-safe structures for parser operations and return values.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, TYPE_CHECKING

from .processors import Role

if TYPE_CHECKING:
    from ..lib.errors import ParseError


@dataclass
class Message:
    """
    A single role-tagged message of the conversation

    Produced fresh by every Parser.parse() call and never mutated in place
    by later passes (the alias resolver builds new Message objects).

    Attributes:
        role: Role of the message (system, user, assistant)
        content: Message text, trimmed or content-transformed
        extra: Extra fields captured from the marker line
               (e.g., {"alias": "translate"})

    Example:
        For the document ">>> user\\nHello\\n":
        Message(role=Role.USER, content="Hello", extra={})
    """
    role: Role
    content: str
    extra: Dict[str, Any] = field(default_factory=dict)

    def payload_make(self) -> Dict[str, str]:
        """Message as a downstream chat API expects it"""
        return {"role": self.role.value, "content": self.content}


@dataclass
class ParseResult:
    """
    Result of parsing a chat document

    Returned by Parser.parse().

    Attributes:
        messages: Ordered conversation, aliases already resolved and a
                  default system message prepended when none was declared
        config: Flat config merged from document block, alias config,
                global config and compiled defaults
        title: Title read from the document header, if any
        warnings: Non-fatal ParseErrors collected while parsing
                  (malformed config lines, unresolved aliases)
    """
    messages: List[Message]
    config: Dict[str, Any]
    title: str = ""
    warnings: List["ParseError"] = field(default_factory=list)

    def payload_make(self) -> List[Dict[str, str]]:
        return [message.payload_make() for message in self.messages]


@dataclass
class BlockContent:
    """
    Target and options extracted from a block span

    Returned by lib.blocks.content_extract() after scanning the lines that
    follow a block marker.

    Attributes:
        target: Contiguous non-blank, non-option lines after the marker,
                joined with newlines ("" when missing)
        target_lines: The same lines, unjoined
        options: '-- key: value' options with numbers and booleans coerced,
                 applied over the block type's defaults
        option_lines: The option lines as written in the document
    """
    target: str
    target_lines: List[str]
    options: Dict[str, Any]
    option_lines: List[str] = field(default_factory=list)
