"""
Processor registry for chat documents

Maps message/block type names to ProcessorDescriptor objects. The parser
asks the registry which descriptor (if any) a line opens; new message or
block types are added purely by registering a descriptor.

Built-in processors are registered by explicit calls made in a fixed order
from the constructor, never as an import side effect:

    user, assistant, system, alias, web, reference,
    then for every block type: <name> (pending/error markers) and
    <name>:completed (expanded blocks, content-transformed)
"""

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..config import appsettings
from ..models.blocks import BlockState, BlockType
from ..models.markers import MARKERS
from ..models.processors import Literal, Predicate, ProcessorDescriptor, Role
from .blocks import blockTypes_builtin, completedContent_transform, fetchedContent_transform
from .errors import DuplicateProcessor, InvalidProcessor, NoSuchProcessor

Fetcher = Callable[[str], str]


class ProcessorRegistry:
    """
    Registry of processor descriptors

    Literal descriptors are kept in registration order and tried before
    predicate descriptors, which are also kept in registration order. The
    first match wins, so a literal marker is never shadowed by a more general
    predicate registered earlier.
    """

    def __init__(
        self,
        block_types: Optional[Iterable[BlockType]] = None,
        builtins: bool = True,
        fetchers: Optional[Mapping[str, Fetcher]] = None,
    ) -> None:
        """
        Initialize the registry and register built-in processors

        Args:
            block_types: Block types whose markers become message processors
                         (defaults to the built-in block types)
            builtins: Register the built-in processors
            fetchers: "web" / "reference" -> fn(source) -> text
        """
        self.descriptors: Dict[str, ProcessorDescriptor] = {}
        self._literals: List[str] = []
        self._predicates: List[str] = []
        if builtins:
            self.coreProcessors_register()
            self.fetchProcessors_register(fetchers)
            self.blockProcessors_register(
                blockTypes_builtin() if block_types is None else block_types
            )

    def register(self, name: str, descriptor: ProcessorDescriptor) -> None:
        """
        Register a processor descriptor

        Raises:
            DuplicateProcessor: If ``name`` is already registered
            InvalidProcessor: If match, role or format is missing
        """
        if name in self.descriptors:
            raise DuplicateProcessor(name)
        for required in ("match", "role", "format"):
            if getattr(descriptor, required, None) is None:
                raise InvalidProcessor(name, required)

        self.descriptors[name] = descriptor
        if descriptor.literal_is():
            self._literals.append(name)
        else:
            self._predicates.append(name)

    def get(self, name: str) -> ProcessorDescriptor:
        """
        Get a descriptor by name

        Raises:
            NoSuchProcessor: If ``name`` was never registered
        """
        try:
            return self.descriptors[name]
        except KeyError:
            raise NoSuchProcessor(name) from None

    def match_line(self, line: str) -> Tuple[Optional[str], Optional[ProcessorDescriptor]]:
        """
        Find the processor a line opens

        Returns:
            (name, descriptor), or (None, None) if the line is not a marker
        """
        for name in self._literals + self._predicates:
            descriptor = self.descriptors[name]
            if descriptor.matches(line):
                return name, descriptor
        return None, None

    def names(self) -> List[str]:
        """Registered names in registration order"""
        return list(self.descriptors)

    def __contains__(self, name: object) -> bool:
        return name in self.descriptors

    def __len__(self) -> int:
        return len(self.descriptors)

    def coreProcessors_register(self) -> None:
        """Register the conversation role processors and aliases"""

        def user_format(content: str) -> str:
            return f"{MARKERS['USER']}\n\n{content}"

        def assistant_format(content: str) -> str:
            return f"\n{MARKERS['ASSISTANT']}\n\n{content}"

        def system_format(content: str) -> str:
            return f"\n{MARKERS['SYSTEM']}\n\n{content}"

        def alias_match(line: str) -> bool:
            return line.startswith(MARKERS["ALIAS"])

        def alias_fields(line: str) -> Dict[str, str]:
            """Handle '>>> alias:name' - capture the alias name"""
            return {"alias": line[len(MARKERS["ALIAS"]):].strip()}

        def alias_format(content: str, alias_name: str = "") -> str:
            return f"\n{MARKERS['ALIAS']}{alias_name}\n\n{content}"

        self.register("user", ProcessorDescriptor(
            match=Literal(MARKERS["USER"]),
            role=Role.USER,
            format=user_format,
            description="User message",
        ))

        self.register("assistant", ProcessorDescriptor(
            match=Literal(MARKERS["ASSISTANT"]),
            role=Role.ASSISTANT,
            format=assistant_format,
            description="Assistant response",
        ))

        self.register("system", ProcessorDescriptor(
            match=Literal(MARKERS["SYSTEM"]),
            role=Role.SYSTEM,
            format=system_format,
            description="System prompt",
        ))

        self.register("alias", ProcessorDescriptor(
            match=Predicate(alias_match),
            role=Role.USER,
            format=alias_format,
            extra_fields=alias_fields,
            description="User message expanded through a named alias",
        ))

    def fetchProcessors_register(self, fetchers: Optional[Mapping[str, Fetcher]] = None) -> None:
        """
        Register '>>> web' and '>>> reference'

        Both open a user message whose leading source lines are replaced by
        what the matching fetcher returns (fetchers["web"] gets URLs,
        fetchers["reference"] gets file paths). A missing fetcher keeps the
        text as written.
        """
        fetchers = fetchers or {}
        for name, description in (
            ("web", "User message with fetched web pages"),
            ("reference", "User message with referenced file contents"),
        ):
            self.register(name, self.fetchDescriptor_make(
                MARKERS[name.upper()], fetchers.get(name), description
            ))

    @staticmethod
    def fetchDescriptor_make(marker: str, fetcher: Optional[Fetcher], description: str) -> ProcessorDescriptor:
        def fetch_format(content: str) -> str:
            return f"\n{marker}\n\n{content}"

        def fetch_transform(lines: List[str]) -> str:
            return fetchedContent_transform(lines, fetcher)

        return ProcessorDescriptor(
            match=Literal(marker),
            role=Role.USER,
            format=fetch_format,
            content_transform=fetch_transform,
            description=description,
        )

    def blockProcessors_register(self, block_types: Iterable[BlockType]) -> None:
        """
        Register message processors for block types

        Every block marker starts a user message. Unexpanded, in-progress and
        failed blocks keep their raw text (trimmed); completed blocks are
        content-transformed down to their result body.
        """
        for block_type in block_types:
            self.register(block_type.name, self.blockDescriptor_make(block_type))
            self.register(f"{block_type.name}:completed", self.completedDescriptor_make(block_type))

    @staticmethod
    def blockDescriptor_make(block_type: BlockType) -> ProcessorDescriptor:
        """Descriptor for a block's unexpanded, in-progress and error markers"""

        def pending_match(line: str) -> bool:
            state = block_type.state_classify(line)
            return state is not None and state is not BlockState.COMPLETED

        def pending_format(content: str) -> str:
            return f"\n{block_type.marker}\n\n{content}"

        return ProcessorDescriptor(
            match=Predicate(pending_match),
            role=Role.USER,
            format=pending_format,
            description=block_type.description,
        )

    @staticmethod
    def completedDescriptor_make(block_type: BlockType) -> ProcessorDescriptor:
        """Descriptor for a block's completed marker"""

        def completed_match(line: str) -> bool:
            return block_type.state_classify(line) is BlockState.COMPLETED

        def completed_format(content: str, timestamp: str = "") -> str:
            timestamp = timestamp or datetime.now().strftime(appsettings.timestamp_format)
            marker = block_type.marker_forState(BlockState.COMPLETED, timestamp)
            return f"\n{marker}\n\n{content}"

        return ProcessorDescriptor(
            match=Predicate(completed_match),
            role=Role.USER,
            format=completed_format,
            content_transform=completedContent_transform,
            description=f"{block_type.description} (expanded)",
        )
