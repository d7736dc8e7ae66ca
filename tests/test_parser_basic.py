"""
Basic parser tests - simplest cases

Tests empty documents, single messages, role markers and the default
system prompt.
"""

import pytest

from chatdoc.config import AppSettings
from chatdoc.lib.document import Document
from chatdoc.lib.parser import Parser
from chatdoc.lib.registry import ProcessorRegistry
from chatdoc.models import AUTO_TITLE_INSTRUCTION, Role


DEFAULT_PROMPT = "You are a general assistant."


@pytest.fixture
def settings():
    return AppSettings(auto_title=True, default_system_prompt=DEFAULT_PROMPT)


def roles(result):
    return [message.role for message in result.messages]


class TestEmptyAndSimple:
    """Test empty documents and the simplest conversations"""

    def test_empty_document(self, settings):
        """Empty document yields only the default system message"""
        result = Parser("", settings=settings).parse()

        assert roles(result) == [Role.SYSTEM]

    def test_text_without_markers(self, settings):
        """Text before any marker is not a message"""
        result = Parser("just some notes\nmore notes\n", settings=settings).parse()

        assert roles(result) == [Role.SYSTEM]

    def test_single_user_message(self, settings):
        """'>>> user' then 'Hello' -> default system + user"""
        result = Parser(">>> user\nHello\n", settings=settings).parse()

        assert roles(result) == [Role.SYSTEM, Role.USER]
        assert result.messages[0].content == DEFAULT_PROMPT + AUTO_TITLE_INSTRUCTION
        assert result.messages[1].content == "Hello"

    def test_conversation(self, settings):
        """User, assistant, user in document order"""
        source = ">>> user\n\nQuestion\n\n<<< assistant\n\nAnswer\n\n>>> user\n\nFollow-up\n"
        result = Parser(source, settings=settings).parse()

        assert roles(result) == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.USER]
        assert [m.content for m in result.messages[1:]] == ["Question", "Answer", "Follow-up"]

    def test_inner_blank_lines_kept(self, settings):
        """Only leading and trailing blank lines are trimmed"""
        result = Parser(">>> user\n\n\nLine 1\n\n  Line 2\n\n\n", settings=settings).parse()

        assert result.messages[1].content == "Line 1\n\n  Line 2"

    def test_empty_message_kept(self, settings):
        """A marker with no content still opens a message"""
        result = Parser(">>> user\n", settings=settings).parse()

        assert roles(result) == [Role.SYSTEM, Role.USER]
        assert result.messages[1].content == ""

    def test_accepts_document_and_lines(self, settings):
        """Strings, line lists and Documents are all parseable"""
        lines = [">>> user", "Hi"]
        from_lines = Parser(lines, settings=settings).parse()
        from_document = Parser(Document(lines), settings=settings).parse()

        assert from_lines.payload_make() == from_document.payload_make()

    def test_fresh_messages_each_parse(self, settings):
        """Every parse produces new Message objects"""
        parser = Parser(">>> user\nHi\n", settings=settings)
        first = parser.parse()
        second = parser.parse()

        assert first.messages[1] == second.messages[1]
        assert first.messages[1] is not second.messages[1]


class TestSystemPrompt:
    """Test the default system message and auto-title request"""

    def test_declared_system_message(self, settings):
        """A document system message suppresses the default one"""
        result = Parser(">>> system\nBe terse.\n>>> user\nHi\n", settings=settings).parse()

        assert roles(result) == [Role.SYSTEM, Role.USER]
        assert result.messages[0].content == "Be terse."

    def test_auto_title_disabled(self):
        settings = AppSettings(auto_title=False, default_system_prompt=DEFAULT_PROMPT)
        result = Parser(">>> user\nHello\n", settings=settings).parse()

        assert result.messages[0].content == DEFAULT_PROMPT

    def test_titled_document_has_no_title_request(self, settings):
        source = "---\ntitle: Trip planning\n---\n>>> user\nHello\n"
        result = Parser(source, settings=settings).parse()

        assert result.title == "Trip planning"
        assert result.messages[0].content == DEFAULT_PROMPT

    def test_placeholder_title_counts_as_unset(self, settings):
        source = "---\ntitle: Untitled\n---\n>>> user\nHello\n"
        result = Parser(source, settings=settings).parse()

        assert result.messages[0].content == DEFAULT_PROMPT + AUTO_TITLE_INSTRUCTION


class TestFormatRoundTrip:
    """format(content) parsed back gives the processor's role and content"""

    @pytest.mark.parametrize("name", ProcessorRegistry().names())
    def test_format_then_parse(self, name, settings):
        registry = ProcessorRegistry()
        descriptor = registry.get(name)
        content = "First line\n\nSecond line"

        result = Parser(descriptor.format(content), registry=registry, settings=settings).parse()
        message = result.messages[-1]

        assert message.role is descriptor.role
        assert message.content == content


class TestMarkerMatching:
    """Test how marker lines are recognized"""

    def test_literal_markers_match_by_prefix(self, settings):
        result = Parser(">>> user (follow-up)\nHi\n", settings=settings).parse()

        assert roles(result) == [Role.SYSTEM, Role.USER]

    def test_indented_marker_is_content(self, settings):
        result = Parser(">>> user\n  >>> user\n", settings=settings).parse()

        assert roles(result) == [Role.SYSTEM, Role.USER]
        assert result.messages[1].content == "  >>> user"

    def test_unexpanded_block_is_raw_user_content(self, settings):
        """Unexpanded blocks are trimmed like plain text"""
        source = ">>> crawl\n\nhttps://example.com\n-- limit: 3\n"
        result = Parser(source, settings=settings).parse()

        assert roles(result) == [Role.SYSTEM, Role.USER]
        assert result.messages[1].content == "https://example.com\n-- limit: 3"

    def test_completed_block_keeps_result_only(self, settings):
        """Expanded blocks drop their target/option header"""
        source = (
            ">>> scraped [2024-05-01 09:30:00]\n"
            "https://example.com\n"
            "-- format: markdown\n"
            "\n"
            "# Example Domain\n"
            "\n"
            "Body text\n"
        )
        result = Parser(source, settings=settings).parse()

        assert result.messages[1].role is Role.USER
        assert result.messages[1].content == "# Example Domain\n\nBody text"

    def test_error_block_is_kept_verbatim(self, settings):
        source = ">>> crawl-error\nhttps://example.com\n\n❌ Error: timeout\n"
        result = Parser(source, settings=settings).parse()

        assert result.messages[1].content == "https://example.com\n\n❌ Error: timeout"


class TestFetchMessages:
    """'>>> web' and '>>> reference' user messages"""

    @pytest.mark.parametrize("marker", [">>> web", ">>> reference"])
    def test_starts_user_message(self, marker, settings):
        source = f">>> user\nHello\n\n{marker}\n\nhttps://example.com\n\nSummarize this\n"
        result = Parser(source, settings=settings).parse()

        assert roles(result) == [Role.SYSTEM, Role.USER, Role.USER]
        assert result.messages[1].content == "Hello"
        assert result.messages[2].content == "https://example.com\n\nSummarize this"

    def test_web_fetcher_replaces_urls(self, settings):
        registry = ProcessorRegistry(fetchers={"web": lambda url: f"# Page at {url}"})
        source = ">>> web\nhttps://a.io\nhttps://b.io\n\nCompare them\n"
        result = Parser(source, registry=registry, settings=settings).parse()

        assert result.messages[1].content == "# Page at https://a.io\n\n# Page at https://b.io\n\nCompare them"

    def test_reference_fetcher_only_for_reference(self, settings):
        registry = ProcessorRegistry(fetchers={"reference": lambda path: f"contents of {path}"})
        source = ">>> reference\nnotes.txt\n\n>>> web\nhttps://a.io\n"
        result = Parser(source, registry=registry, settings=settings).parse()

        assert result.messages[1].content == "contents of notes.txt"
        assert result.messages[2].content == "https://a.io"

    def test_failing_fetcher_reported_in_content(self, settings):
        def fetch(url):
            raise ConnectionError("refused")

        registry = ProcessorRegistry(fetchers={"web": fetch})
        result = Parser(">>> web\nhttps://a.io\n\nWhat is this?\n", registry=registry, settings=settings).parse()

        assert result.messages[1].role is Role.USER
        assert result.messages[1].content == "Error: could not fetch https://a.io: refused\n\nWhat is this?"
