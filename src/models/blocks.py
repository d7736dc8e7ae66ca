"""
Block type definitions and expansion tracking models

A block is a directive span in the document (">>> crawl" followed by a
target and options) that an external executor expands in place. Block
state is encoded in the marker text itself, so it survives save/reload
without separate bookkeeping.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


class BlockState(Enum):
    """
    Lifecycle of one block occurrence

    UNEXPANDED -> IN_PROGRESS -> COMPLETED | ERROR, never reversed.
    """
    UNEXPANDED = "unexpanded"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class BlockEvent(Enum):
    """Events driving the block state machine"""
    START = "start"
    SUCCEED = "succeed"
    FAIL = "fail"


@dataclass
class BlockType:
    """
    Specification for an expandable block type

    Attributes:
        name: Block type name (e.g., "crawl")
        marker: Base marker of an unexpanded block (">>> crawl")
        progress_marker: Marker while the executor runs (">>> crawling")
        completed_marker: Marker prefix of an expanded block, followed by
                          " [timestamp]" (">>> crawled")
        error_marker: Marker of a failed expansion (">>> crawl-error")
        description: Human-readable description
        default_options: Options applied before '-- key: value' lines
        validate_target: Optional target check; False renders an error
        format_result: Optional (result, target, options) -> lines;
                       defaults to splitting a string result into lines
    """
    name: str
    marker: str
    progress_marker: str
    completed_marker: str
    error_marker: str
    description: str = ""
    default_options: Dict[str, Any] = field(default_factory=dict)
    validate_target: Optional[Callable[[str], bool]] = None
    format_result: Optional[Callable[[Any, str, Dict[str, Any]], List[str]]] = None

    def state_classify(self, line: str) -> Optional[BlockState]:
        """
        Read the block state encoded in a marker line

        The base marker is checked first, so a type whose completed marker
        equals its base marker (">>> tree" / ">>> tree [ts]") still
        distinguishes the two by the timestamp suffix.

        Args:
            line: Document line to classify

        Returns:
            BlockState if the line is one of this type's markers, else None

        Example:
            ">>> crawl"                       -> UNEXPANDED
            ">>> crawling"                    -> IN_PROGRESS
            ">>> crawled [2024-01-01 10:00:00]" -> COMPLETED
            ">>> crawl-error"                 -> ERROR
        """
        stripped = line.strip()
        if stripped == self.marker:
            return BlockState.UNEXPANDED
        if stripped == self.progress_marker:
            return BlockState.IN_PROGRESS
        if stripped == self.error_marker:
            return BlockState.ERROR
        if stripped.startswith(self.completed_marker):
            rest = stripped[len(self.completed_marker):]
            if not rest or rest.startswith(" ["):
                return BlockState.COMPLETED
        return None

    def marker_forState(self, state: BlockState, timestamp: str = "") -> str:
        """
        Marker text encoding ``state``

        Raises:
            ValueError: If COMPLETED is asked for without a timestamp; the
                        bare completed marker may equal the base marker
                        (">>> tree") and would be expanded again
        """
        if state is BlockState.UNEXPANDED:
            return self.marker
        if state is BlockState.IN_PROGRESS:
            return self.progress_marker
        if state is BlockState.ERROR:
            return self.error_marker
        if not timestamp:
            raise ValueError(f"Completed marker of '{self.name}' needs a timestamp")
        return f"{self.completed_marker} [{timestamp}]"


@dataclass
class PendingExpansion:
    """
    An expansion whose executor call is still outstanding

    Line numbers are 0-based; ``end_line`` is exclusive. Both are shifted
    when an earlier sibling expansion changes the document's line count.

    Attributes:
        request_id: Id under which the expansion is tracked and cancelled
        block_type: Name of the block type being expanded
        document: The document being rewritten
        start_line: Line of the (in-progress) marker
        end_line: One past the last line of the span
        target: Extracted target text
        target_lines: Extracted target lines
        options: Extracted options
        handle: Whatever the executor returned (e.g., an asyncio.Task)
    """
    request_id: str
    block_type: str
    document: Any
    start_line: int
    end_line: int
    target: str
    target_lines: List[str]
    options: Dict[str, Any]
    handle: Any = None

    def shift(self, delta: int) -> None:
        self.start_line += delta
        self.end_line += delta


@dataclass
class ExpansionReport:
    """
    Summary of one Expander.expand_all() pass

    Attributes:
        expanded: Per block type, number of blocks dispatched this pass
        pending: Block types with executor calls still outstanding
    """
    expanded: Dict[str, int] = field(default_factory=dict)
    pending: List[str] = field(default_factory=list)

    def total(self) -> int:
        return sum(self.expanded.values())

    def any(self) -> bool:
        return self.total() > 0 or bool(self.pending)
