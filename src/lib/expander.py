"""
Block expander

Finds unexpanded block markers in a document, hands their target and
options to the block type's executor, and rewrites the block in place as
the executor reports back:

    >>> crawl          (UNEXPANDED, found by its literal base marker)
    >>> crawling       (IN_PROGRESS, written before the executor is called)
    >>> crawled [ts]   (COMPLETED, target/options header + formatted result)
    >>> crawl-error    (ERROR, target/options header + '❌ Error: ...')

Spans are half-open line ranges [start_line, end_line). A span ends at the
next top-level marker ('>>>' or '<<<') or, at the end of the document, after
its last non-blank line. When a completed expansion changes the number of
lines, every other pending expansion of the same document that starts after
it is shifted by the difference, so completions may arrive in any order.
Edits made by others while expansions are pending (a new header title, an
appended response) must go through BlockExpander.lines_replace() for the
same reason.

Every executor call is registered with the RequestManager (kind "block")
and the IndicatorManager until its outcome, or its cancellation, has been
handled exactly once.
"""

from datetime import datetime
from itertools import count
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..config import AppSettings, appsettings
from ..models.blocks import BlockEvent, BlockState, BlockType, ExpansionReport, PendingExpansion
from ..models.markers import MARKERS, toplevel_is
from ..models.requests import RequestRecord
from .blocks import blockTypes_builtin, completedBlock_make, content_extract, errorBlock_make, state_transition
from .document import Document
from .errors import CancellationError
from .executors import error_message, executor_resolve
from .log import LOG, LOG_error
from .managers import IndicatorManager, RequestManager
from .store import StateStore


def span_end(lines: List[str], start: int) -> int:
    """
    Exclusive end of the block span whose marker is at ``start``

    Example:
        [">>> crawl", "url", "", ">>> user"], 0 -> 3
        [">>> crawl", "url", "", ""],         0 -> 2
    """
    end = start + 1
    while end < len(lines) and not toplevel_is(lines[end]):
        end += 1
    if end == len(lines):
        while end > start + 1 and not lines[end - 1].strip():
            end -= 1
    return end


def markers_find(lines: List[str], block_type: BlockType, state: BlockState = BlockState.UNEXPANDED) -> List[int]:
    """Indexes of ``block_type`` markers in ``state``, skipping ignore regions"""
    found = []
    in_ignore = False
    for index, line in enumerate(lines):
        stripped = line.strip()
        if in_ignore:
            if stripped == MARKERS["IGNORE_END"]:
                in_ignore = False
            continue
        if stripped.startswith(MARKERS["IGNORE"]):
            in_ignore = True
            continue
        if block_type.state_classify(line) is state:
            found.append(index)
    return found


class BlockExpander:
    """
    Drives block expansion for any number of documents

    Attributes:
        block_types: name -> BlockType, in registration order
        executors: name -> executor (see lib.executors)
        requests: RequestManager tracking in-flight executor calls
        indicators: IndicatorManager holding one record per in-flight span
        report: ExpansionReport of the most recent expand_all() pass
    """

    def __init__(
        self,
        block_types: Optional[Iterable[BlockType]] = None,
        executors: Optional[Dict[str, Any]] = None,
        requests: Optional[RequestManager] = None,
        indicators: Optional[IndicatorManager] = None,
        settings: Optional[AppSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if requests is None or indicators is None:
            store = StateStore()
            requests = requests or RequestManager(store)
            indicators = indicators or IndicatorManager(store)
        self.requests = requests
        self.indicators = indicators
        self.settings = settings or appsettings
        self.clock = clock
        self.block_types: Dict[str, BlockType] = {}
        self.executors: Dict[str, Any] = {}
        self._pending: Dict[str, PendingExpansion] = {}
        self._ids = count(1)
        self.report = ExpansionReport()

        for block_type in blockTypes_builtin() if block_types is None else block_types:
            self.blockType_register(block_type)
        for name, executor in (executors or {}).items():
            self.executor_register(name, executor)

    def blockType_register(self, block_type: BlockType, executor: Any = None) -> None:
        """Add a block type (and optionally its executor); order is expansion order"""
        self.block_types[block_type.name] = block_type
        if executor is not None:
            self.executor_register(block_type.name, executor)

    def executor_register(self, name: str, executor: Any) -> None:
        executor_resolve(executor)
        self.executors[name] = executor

    def blockType_get(self, block_type: Union[str, BlockType]) -> BlockType:
        if isinstance(block_type, BlockType):
            return block_type
        return self.block_types[block_type]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_unexpanded(self, document: Document, block_type: Union[str, BlockType, None] = None) -> bool:
        """Any unexpanded marker of ``block_type`` (of any type when None)"""
        types = [self.blockType_get(block_type)] if block_type is not None else list(self.block_types.values())
        return any(markers_find(document.lines, bt) for bt in types)

    def has_active_requests(self, block_type: Union[str, BlockType, None] = None) -> bool:
        """Any executor call still outstanding (for ``block_type`` when given)"""
        name = self.blockType_get(block_type).name if block_type is not None else None

        def block_match(data: Dict[str, Any]) -> bool:
            payload = data.get("payload") or {}
            return name is None or payload.get("block_type") == name

        return self.requests.has_active(kind="block", predicate=block_match)

    def pending(self, document: Optional[Document] = None) -> List[PendingExpansion]:
        return [
            expansion for expansion in self._pending.values()
            if document is None or expansion.document is document
        ]

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def expand_all(self, document: Document) -> bool:
        """
        Start expansion of every unexpanded block in the document

        Block types are processed in registration order; within a type,
        blocks are processed top to bottom. The number of blocks handled per
        type is bounded by the number of unexpanded markers found when the
        type's turn starts.

        Args:
            document: Document to rewrite

        Returns:
            True if at least one block was dispatched or rendered

        Example:
            expander = BlockExpander(executors={"tree": FunctionExecutor(listing)})
            expander.expand_all(Document.from_text(">>> tree\\n.\\n"))   # True
        """
        self.report = ExpansionReport()
        if not document.valid:
            LOG(f"Skipping expansion of closed document '{document.name}'", level=2)
            return False

        for block_type in list(self.block_types.values()):
            budget = len(markers_find(document.lines, block_type))
            for _ in range(budget):
                found = markers_find(document.lines, block_type)
                if not found:
                    break
                self.block_expand(document, block_type, found[0])
                self.report.expanded[block_type.name] = self.report.expanded.get(block_type.name, 0) + 1

        self.report.pending = sorted({expansion.block_type for expansion in self.pending(document)})
        if self.report.total():
            LOG(f"Expansion pass on '{document.name}': {self.report.expanded}", level=2)
        return self.report.total() > 0

    def block_expand(self, document: Document, block_type: BlockType, start: int) -> None:
        """Expand the single block whose base marker is at line ``start``"""
        end = span_end(document.lines, start)
        content = content_extract(document.lines_get(start + 1, end), block_type.default_options)
        request_id = f"{block_type.name}_{next(self._ids)}"

        state = state_transition(BlockState.UNEXPANDED, BlockEvent.START)
        document.lines_replace(start, start + 1, [block_type.marker_forState(state)])

        expansion = PendingExpansion(
            request_id=request_id,
            block_type=block_type.name,
            document=document,
            start_line=start,
            end_line=end,
            target=content.target,
            target_lines=content.target_lines,
            options=content.options,
        )

        failure = self.target_check(block_type, content.target)
        executor = self.executors.get(block_type.name)
        if failure is None and executor is None:
            failure = f"No executor registered for block type '{block_type.name}'"
        if failure is not None:
            LOG(f"{request_id}: {failure}", level=1)
            self.span_replace(expansion, errorBlock_make(block_type, content, failure))
            return

        self._pending[request_id] = expansion
        self.requests.register(request_id, RequestRecord(
            id=request_id,
            kind="block",
            payload={"block_type": block_type.name, "target": content.target, "options": content.options},
        ))
        self.indicators.register(request_id, {
            "document": document.name,
            "block_type": block_type.name,
            "start_line": start,
            "end_line": end,
            "status": state.value,
        })
        LOG(f"{request_id}: expanding '{content.target}' at lines {start}-{end}", level=2)

        def on_success(result: Any) -> None:
            self.expansion_succeed(request_id, result)

        def on_error(error: BaseException) -> None:
            self.expansion_fail(request_id, error)

        try:
            handle = executor_resolve(executor)(content.target, dict(content.options), on_success, on_error)
        except Exception as e:
            LOG_error(f"{request_id}: executor for '{block_type.name}' raised: {e!r}")
            on_error(e)
            return

        if request_id in self._pending:
            self._pending[request_id].handle = handle

    @staticmethod
    def target_check(block_type: BlockType, target: str) -> Optional[str]:
        if not target:
            return "No target specified"
        if block_type.validate_target is not None and not block_type.validate_target(target):
            return f"Invalid target for {block_type.name}: {target}"
        return None

    def expansion_settle(self, request_id: str) -> Optional[PendingExpansion]:
        """
        Take an expansion out of the pending table and clean up its records

        Returns None if it was already settled, which makes late or repeated
        callbacks and repeated cancellation no-ops.
        """
        expansion = self._pending.pop(request_id, None)
        if expansion is None:
            return None
        self.requests.clear(request_id)
        self.indicators.clear(request_id)
        return expansion

    def expansion_succeed(self, request_id: str, result: Any) -> None:
        """
        Render a result; a formatter that raises renders the error variant

        The replacement is built before the expansion is settled, so a
        failing formatter can never leave the block in progress.
        """
        expansion = self._pending.get(request_id)
        if expansion is None:
            LOG(f"{request_id}: late success ignored", level=3)
            return
        if not expansion.document.valid:
            self.expansion_settle(request_id)
            return
        block_type = self.block_types[expansion.block_type]
        content = content_extract(
            expansion.document.lines_get(expansion.start_line + 1, expansion.end_line),
            block_type.default_options,
        )
        try:
            timestamp = self.clock().strftime(self.settings.timestamp_format)
            lines = completedBlock_make(block_type, content, result, timestamp)
            state = state_transition(BlockState.IN_PROGRESS, BlockEvent.SUCCEED)
        except Exception as e:
            LOG_error(f"{request_id}: formatting the result of '{block_type.name}' failed: {e!r}")
            lines = errorBlock_make(block_type, content, error_message(e))
            state = state_transition(BlockState.IN_PROGRESS, BlockEvent.FAIL)
        self.expansion_settle(request_id)
        LOG(f"{request_id}: {state.value}", level=2)
        self.span_replace(expansion, lines)

    def expansion_fail(self, request_id: str, error: BaseException) -> None:
        if isinstance(error, CancellationError):
            if self.expansion_settle(request_id) is not None:
                LOG(f"{request_id}: cancelled by executor", level=2)
            return
        expansion = self.expansion_settle(request_id)
        if expansion is None:
            LOG(f"{request_id}: late error ignored", level=3)
            return
        if not expansion.document.valid:
            return
        block_type = self.block_types[expansion.block_type]
        message = error_message(error)
        state = state_transition(BlockState.IN_PROGRESS, BlockEvent.FAIL)
        content = content_extract(
            expansion.document.lines_get(expansion.start_line + 1, expansion.end_line),
            block_type.default_options,
        )
        LOG(f"{request_id}: {state.value}: {message}", level=1)
        self.span_replace(expansion, errorBlock_make(block_type, content, message))

    def span_replace(self, expansion: PendingExpansion, lines: List[str]) -> None:
        """Replace an expansion's span and shift the spans that start after it"""
        document = expansion.document
        if expansion.end_line < len(document) and lines and lines[-1].strip():
            lines = lines + [""]
        delta = document.lines_replace(expansion.start_line, expansion.end_line, lines)
        self.pending_shift(document, expansion.start_line + 1, delta)

    def lines_replace(self, document: Document, start: int, end: int, lines: List[str]) -> int:
        """
        Edit ``document`` outside any pending span, keeping pending spans valid

        Every other line-count change to a document with outstanding
        expansions (header rewrites, appended responses) goes through here.
        Expansions starting at or after ``end`` are shifted.

        Returns:
            Net line-count delta
        """
        delta = document.lines_replace(start, end, lines)
        self.pending_shift(document, end, delta)
        return delta

    def pending_shift(self, document: Document, first_line: int, delta: int) -> None:
        """Shift pending expansions of ``document`` starting at or after ``first_line``"""
        if not delta:
            return
        for other in self.pending(document):
            if other.start_line >= first_line:
                other.shift(delta)
                self.indicators.update(other.request_id, {
                    "start_line": other.start_line,
                    "end_line": other.end_line,
                })
                LOG(f"{other.request_id}: shifted by {delta:+d}", level=3)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, request_id: str) -> bool:
        """
        Cancel one outstanding expansion

        The block keeps its in-progress marker; it is not rendered as a
        failure. Cancelling an unknown, finished or already cancelled request
        is a no-op.

        Returns:
            True if this call cancelled the expansion
        """
        expansion = self.expansion_settle(request_id)
        if expansion is None:
            return False
        handle = expansion.handle
        if handle is not None and hasattr(handle, "cancel"):
            handle.cancel()
        LOG(f"{request_id}: cancelled", level=2)
        return True

    def cancel_all(self, document: Optional[Document] = None) -> int:
        """Cancel every outstanding expansion (of ``document`` when given)"""
        return sum(1 for expansion in self.pending(document) if self.cancel(expansion.request_id))
