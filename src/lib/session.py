"""
Session: one StateStore and everything that shares it

The session is the composition root. It builds the store, the domain
managers, the processor registry, the block expander and the request
dispatcher once, wires them to each other, and tears them down in close().
Nothing in chatdoc keeps module-level mutable state; two sessions are fully
independent.

Example:
    with Session(executors={"tree": FunctionExecutor(tree_list)},
                 chat_executor=my_llm) as session:
        doc = session.buffer_open(1, Document.from_file(Path("chat.md")))
        session.document_expand(doc)
        if session.ready_for_request(doc):
            session.chat_send(doc)
"""

from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from ..config import AppSettings, appsettings
from ..models.blocks import BlockType
from ..models.markers import MARKERS
from ..models.parser import ParseResult
from ..models.processors import AliasDescriptor
from ..models.requests import RequestRecord, RequestStatus
from .blocks import blockTypes_builtin
from .dispatch import CompletionCallback, RequestDispatcher
from .document import Document
from .expander import BlockExpander
from .log import LOG, state_connectToLogger, state_disconnectFromLogger
from .managers import BufferManager, IndicatorManager, RequestManager, UIManager
from .parser import Parser
from .registry import ProcessorRegistry
from .store import StateStore

TITLE_PREFIX = "Proposed Title:"


def header_make(title: str, today: Optional[date] = None) -> List[str]:
    """
    YAML header lines for a new chat document

    Example:
        header_make("Untitled", date(2024, 5, 1))
        -> ['---', 'title: Untitled', 'date: 2024-05-01', 'tags: [ai]', '---']
    """
    today = today or date.today()
    return [
        MARKERS["HEADER"],
        yaml.safe_dump({"title": title}, default_flow_style=False, allow_unicode=True).strip(),
        f"date: {today.isoformat()}",
        "tags: [ai]",
        MARKERS["HEADER"],
    ]


def title_extract(response: str) -> Tuple[Optional[str], str]:
    """Split a 'Proposed Title: ...' first line off a response"""
    first, _, rest = response.partition("\n")
    if not first.strip().startswith(TITLE_PREFIX):
        return None, response
    title = first.strip()[len(TITLE_PREFIX):].strip()
    return title or None, rest.lstrip("\n")


class Session:
    """
    Composition root for one editor (or CLI) session

    Attributes:
        settings: AppSettings in effect
        verbosity: LOG() verbosity while the session is connected
        store: The single StateStore
        requests, buffers, indicators, ui: Domain managers on ``store``
        registry: ProcessorRegistry used by the parser
        expander: BlockExpander
        dispatcher: RequestDispatcher for chat requests
        aliases: Alias table used by every parse
        global_config: Session config tier
        documents: handle -> Document of activated buffers
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        block_types: Optional[Iterable[BlockType]] = None,
        executors: Optional[Dict[str, Any]] = None,
        chat_executor: Any = None,
        aliases: Optional[Mapping[str, AliasDescriptor]] = None,
        global_config: Optional[Dict[str, Any]] = None,
        verbosity: Optional[int] = None,
        fetchers: Optional[Mapping[str, Callable[[str], str]]] = None,
    ) -> None:
        self.settings = settings or appsettings
        self.verbosity = self.settings.verbosity if verbosity is None else verbosity
        block_types = list(blockTypes_builtin() if block_types is None else block_types)

        self.store = StateStore()
        self.requests = RequestManager(self.store)
        self.buffers = BufferManager(self.store)
        self.indicators = IndicatorManager(self.store)
        self.ui = UIManager(
            self.store,
            providers=self.settings.providers,
            provider=self.settings.provider,
            model=self.settings.model,
        )

        self.registry = ProcessorRegistry(block_types=block_types, fetchers=fetchers)
        self.expander = BlockExpander(
            block_types=block_types,
            executors=executors,
            requests=self.requests,
            indicators=self.indicators,
            settings=self.settings,
        )
        self.dispatcher = RequestDispatcher(self.requests, self.ui, chat_executor)
        self.aliases: Dict[str, AliasDescriptor] = dict(aliases or {})
        self.global_config: Dict[str, Any] = dict(global_config or {})
        self.documents: Dict[int, Document] = {}
        self.closed = False

    def __enter__(self) -> "Session":
        state_connectToLogger(self)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
        state_disconnectFromLogger()

    def blockType_register(self, block_type: BlockType, executor: Any = None) -> None:
        """Make a new block type known to both the parser and the expander"""
        self.registry.blockProcessors_register([block_type])
        self.expander.blockType_register(block_type, executor)

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    def buffer_open(self, handle: int, document: Document) -> Document:
        ok, reason = self.buffers.activate(handle)
        if not ok:
            raise ValueError(reason)
        self.documents[handle] = document
        return document

    def buffer_close(self, handle: int) -> None:
        """Deactivate a buffer; its outstanding expansions are cancelled"""
        document = self.documents.pop(handle, None)
        if document is not None:
            self.expander.cancel_all(document)
            document.close()
        self.buffers.deactivate(handle)

    # ------------------------------------------------------------------
    # Parsing, expansion, requests
    # ------------------------------------------------------------------

    def config_session(self) -> Dict[str, Any]:
        """Global config with the current provider/model selection on top"""
        config = dict(self.global_config)
        for key, value in (("provider", self.ui.get_provider()), ("model", self.ui.get_model())):
            if value:
                config[key] = value
        return config

    def document_parse(self, document: Document) -> ParseResult:
        return Parser(
            document,
            registry=self.registry,
            settings=self.settings,
            global_config=self.config_session(),
            aliases=self.aliases,
        ).parse()

    def document_expand(self, document: Document) -> bool:
        return self.expander.expand_all(document)

    def ready_for_request(self, document: Document) -> bool:
        """No unexpanded block left and no expansion of ``document`` outstanding"""
        return not self.expander.has_unexpanded(document) and not self.expander.pending(document)

    def chat_send(self, document: Document, on_complete: Optional[CompletionCallback] = None) -> Optional[str]:
        """
        Parse ``document`` and dispatch it as a chat request

        A completed response is appended to the document (assistant message
        followed by an empty user message). Returns None without sending if
        the document still has block work to do.
        """
        if not self.ready_for_request(document):
            LOG(f"'{document.name}' has pending blocks; request not sent", level=1)
            return None
        parsed = self.document_parse(document)
        untitled = not parsed.title or parsed.title == self.settings.title_placeholder

        def request_done(record: RequestRecord) -> None:
            if record.status is RequestStatus.COMPLETED and document.valid:
                self.response_append(document, str(record.result or ""), untitled)
            if on_complete is not None:
                on_complete(record)

        return self.dispatcher.dispatch(parsed, on_complete=request_done)

    def response_append(self, document: Document, response: str, untitled: bool = False) -> None:
        """Append an assistant response and a fresh user marker"""
        if untitled:
            title, response = title_extract(response)
            if title:
                self.title_set(document, title)
        text = self.registry.get("assistant").format(response) + "\n\n" + self.registry.get("user").format("")
        lines = text.split("\n")
        self.expander.lines_replace(document, len(document), len(document), lines)

    def title_set(self, document: Document, title: str) -> None:
        """Write ``title`` into the document header, creating the header if needed"""
        lines = document.lines
        title_line = header_make(title)[1]
        if lines and lines[0].strip() == MARKERS["HEADER"]:
            closing = next((i for i in range(1, len(lines)) if lines[i].strip() == MARKERS["HEADER"]), None)
            if closing is not None:
                for index in range(1, closing):
                    if lines[index].startswith("title:"):
                        self.expander.lines_replace(document, index, index + 1, [title_line])
                        return
                self.expander.lines_replace(document, 1, 1, [title_line])
                return
        self.expander.lines_replace(document, 0, 0, header_make(title) + [""])

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def cancel_all(self) -> int:
        return self.expander.cancel_all() + self.dispatcher.cancel_all()

    def close(self) -> None:
        """Cancel outstanding work and reset the store; idempotent"""
        if self.closed:
            return
        cancelled = self.cancel_all()
        for handle in list(self.documents):
            self.buffer_close(handle)
        self.store.reset()
        self.closed = True
        LOG(f"Session closed ({cancelled} requests cancelled)", level=2)
