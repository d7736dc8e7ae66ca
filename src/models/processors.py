"""
Processor descriptor models

Defines the contract a message or block type registers with the
ProcessorRegistry: how a marker line is recognized, which role the
resulting message takes, and how content is formatted and transformed.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class Role(Enum):
    """
    Roles a message can carry

    Values are the role names downstream chat APIs expect.
    """
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Literal:
    """
    Literal match rule: the marker line starts with ``text``

    Literal rules are always tried before predicate rules.
    """
    text: str

    def matches(self, line: str) -> bool:
        return line.startswith(self.text)


@dataclass(frozen=True)
class Predicate:
    """
    Predicate match rule: an arbitrary ``line -> bool`` test

    Among predicates the first registered wins.
    """
    test: Callable[[str], bool]

    def matches(self, line: str) -> bool:
        return bool(self.test(line))


MatchRule = Union[Literal, Predicate]


@dataclass
class ProcessorDescriptor:
    """
    Specification for a message or block processor

    Attributes:
        match: Literal or Predicate rule recognizing the marker line
        role: Role of the message a match begins
        format: Renders content back into document text (content -> str)
        content_transform: Optional transform applied instead of plain
                           trimming when the message is finalized
                           (lines -> str)
        extra_fields: Optional extractor of extra message fields from the
                      marker line (line -> dict)
        description: Human-readable description
    """
    match: Optional[MatchRule]
    role: Optional[Role]
    format: Optional[Callable[..., str]]
    content_transform: Optional[Callable[[List[str]], str]] = None
    extra_fields: Optional[Callable[[str], Dict[str, Any]]] = None
    description: str = ""

    def literal_is(self) -> bool:
        return isinstance(self.match, Literal)

    def matches(self, line: str) -> bool:
        return self.match is not None and self.match.matches(line)


class AliasDescriptor(BaseModel):
    """
    An alias expands into an injected system message plus a prefixed user
    message, and may carry request config.

    Example (YAML alias table):
        translate:
          system: You translate text to French.
          user_prefix: "Translate: "
          config:
            temperature: 0.1
    """
    system: str
    user_prefix: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
