"""
Parser for chat documents

Turns a human-edited chat document into an ordered list of role-tagged
messages plus the merged request config.

The parser is a single left-to-right scan over lines. Special regions are
checked in order before a line is offered to the processor registry:

1. Header:  a leading '---' ... '---' region, skipped (its YAML 'title' is read)
2. Ignore:  '```ignore' ... '```', inner lines kept verbatim, never matched
3. Config:  '>>> config' ... '<<< config', 'key: value' lines into the config
4. Markers: a registry match finalizes the open message and starts a new one
5. End of document finalizes the open message

Ignore regions do not nest: the first '```' line closes the region even if
another '```ignore' appeared inside it. This is intentional.

Example:
    result = Parser(">>> user\nHello\n").parse()
    [(m.role.value, m.content) for m in result.messages]
    -> [("system", <default prompt + auto-title request>), ("user", "Hello")]
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from ..config import AppSettings, appsettings
from ..models.markers import FILE_CONTENTS_PLACEHOLDERS, MARKERS
from ..models.parser import Message, ParseResult
from ..models.processors import AliasDescriptor, ProcessorDescriptor, Role
from .aliases import AliasResolver
from .blocks import lines_trim
from .document import Document
from .errors import ParseError
from .layering import config_merge, configLine_parse
from .log import LOG


Source = Union[str, List[str], Document]


def source_lines(source: Source) -> List[str]:
    """Lines of a string, line list or Document (copied, never aliased)"""
    if isinstance(source, Document):
        return source.lines_get()
    if isinstance(source, str):
        return Document.from_text(source).lines
    return list(source)


class Parser:
    """
    Parser for chat documents

    Handles:
    - Role markers and every other registered processor
    - Header, ignore and config regions
    - Alias expansion and config layering
    - Default system prompt with the auto-title request
    - $FILE_CONTENTS placeholders (when expand_placeholders is set)

    A Parser holds no state between parse() calls; every call produces
    fresh Message objects.
    """

    def __init__(
        self,
        source: Source,
        registry=None,
        settings: Optional[AppSettings] = None,
        global_config: Optional[Dict[str, Any]] = None,
        aliases: Optional[Mapping[str, AliasDescriptor]] = None,
    ):
        """
        Initialize parser with a document

        Args:
            source: Document text, list of lines, or Document
            registry: ProcessorRegistry used for marker matching
                      (a registry with the built-in processors by default)
            settings: AppSettings providing defaults and the system prompt
            global_config: Session/global config tier
            aliases: Alias table (name -> AliasDescriptor)

        Attributes:
            lines: Snapshot of the document lines being parsed
            warnings: ParseErrors collected during the current parse
        """
        self.lines = source_lines(source)
        if registry is None:
            from .registry import ProcessorRegistry
            registry = ProcessorRegistry()
        self.registry = registry
        self.settings = settings or appsettings
        self.global_config = dict(global_config or {})
        self.aliases = aliases or {}
        self.warnings: List[ParseError] = []

    def parse(self) -> ParseResult:
        """
        Parse the document

        Returns:
            ParseResult with messages, merged config, title and warnings
        """
        self.warnings = []
        title, pos = self.header_skip(self.lines)

        messages: List[Message] = []
        document_config: Dict[str, Any] = {}
        preamble: List[str] = []

        current: Optional[Message] = None
        descriptor: Optional[ProcessorDescriptor] = None
        buffer: List[str] = []
        in_ignore = False
        in_config = False

        def message_finalize() -> None:
            if current is None:
                return
            if descriptor is not None and descriptor.content_transform:
                current.content = descriptor.content_transform(buffer)
            else:
                current.content = lines_trim(buffer)
            messages.append(current)

        for index in range(pos, len(self.lines)):
            line = self.lines[index]
            stripped = line.strip()

            # 1. Ignore region: verbatim, no matching
            if in_ignore:
                if stripped == MARKERS["IGNORE_END"]:
                    in_ignore = False
                else:
                    (buffer if current is not None else preamble).append(line)
                continue
            if stripped.startswith(MARKERS["IGNORE"]):
                in_ignore = True
                continue

            # 2. Config region
            if stripped == MARKERS["CONFIG"]:
                in_config = True
                continue
            if in_config:
                if stripped == MARKERS["CONFIG_END"]:
                    in_config = False
                    continue
                name, _ = self.registry.match_line(line)
                if name is None:
                    if stripped:
                        self.configLine_add(document_config, line, index + 1)
                    continue
                # A marker closes an unterminated config region
                in_config = False

            # 3. Registry markers
            name, matched = self.registry.match_line(line)
            if matched is not None:
                message_finalize()
                current = Message(role=matched.role, content="")
                if matched.extra_fields:
                    current.extra.update(matched.extra_fields(line))
                descriptor = matched
                buffer = []
                LOG(f"Line {index + 1}: '{name}' opens a {matched.role.value} message", level=3)
                continue

            if current is not None:
                buffer.append(line)
            else:
                preamble.append(line)

        # 4. End of document
        message_finalize()

        if in_ignore:
            LOG("Ignore region left open at end of document", level=2)

        resolver = AliasResolver(self.aliases)
        messages, alias_config, alias_warnings = resolver.resolve(messages)
        self.warnings.extend(alias_warnings)

        config = config_merge(
            document=document_config,
            alias=alias_config,
            session=self.global_config,
            defaults=self.settings.defaults_make(),
        )

        if config.get("expand_placeholders"):
            messages = self.placeholders_expand(messages, lines_trim(preamble))

        if not any(message.role is Role.SYSTEM for message in messages):
            untitled = not title or title == self.settings.title_placeholder
            messages.insert(0, Message(
                role=Role.SYSTEM,
                content=self.settings.systemPrompt_make(untitled),
            ))

        LOG(f"Parsed {len(messages)} messages ({len(self.warnings)} warnings)", level=2)
        return ParseResult(messages=messages, config=config, title=title, warnings=list(self.warnings))

    def header_skip(self, lines: List[str]) -> Tuple[str, int]:
        """
        Skip a leading '---' delimited header

        An unterminated header is not a header: the document is then parsed
        from its first line.

        Returns:
            (title, index of the first line after the header)

        Example:
            ["---", "title: Notes", "---", ">>> user"] -> ("Notes", 3)
        """
        if not lines or lines[0].strip() != MARKERS["HEADER"]:
            return "", 0
        for index in range(1, len(lines)):
            if lines[index].strip() == MARKERS["HEADER"]:
                return self.header_title(lines[1:index]), index + 1
        self.warning_add(ParseError("Unterminated header ignored", 1))
        return "", 0

    def header_title(self, header_lines: List[str]) -> str:
        """Read the 'title' key of a YAML header ("" when absent)"""
        try:
            data = yaml.safe_load("\n".join(header_lines))
        except yaml.YAMLError as e:
            self.warning_add(ParseError(f"Header is not valid YAML: {e}", 2))
            return ""
        if isinstance(data, dict) and data.get("title") is not None:
            return str(data["title"]).strip()
        return ""

    def configLine_add(self, config: Dict[str, Any], line: str, line_number: int) -> None:
        """Parse a config line into ``config``; malformed lines become warnings"""
        try:
            key, value = configLine_parse(line, line_number)
        except ParseError as e:
            self.warning_add(e)
            return
        config[key] = value

    def placeholders_expand(self, messages: List[Message], contents: str) -> List[Message]:
        """Replace $FILE_CONTENTS in user messages with the document preamble"""
        expanded = []
        for message in messages:
            content = message.content
            if message.role is Role.USER:
                for placeholder in FILE_CONTENTS_PLACEHOLDERS:
                    content = content.replace(placeholder, contents)
            expanded.append(Message(role=message.role, content=content, extra=dict(message.extra)))
        return expanded

    def warning_add(self, warning: ParseError) -> None:
        self.warnings.append(warning)
        LOG(f"Parse warning: {warning}", level=1)


def document_parse(source: Source, **kwargs: Any) -> ParseResult:
    """Convenience wrapper: Parser(source, **kwargs).parse()"""
    return Parser(source, **kwargs).parse()
