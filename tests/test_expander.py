"""
Block expander tests - synchronous and manually driven executors

Tests span detection, in-place rewriting, failure isolation, boundary
shifting between pending expansions and cancellation.
"""

from datetime import datetime

import pytest

from chatdoc.lib.blocks import blockTypes_builtin
from chatdoc.lib.document import Document
from chatdoc.lib.errors import CancellationError, ExpansionError
from chatdoc.lib.executors import FunctionExecutor
from chatdoc.lib.expander import BlockExpander, span_end
from chatdoc.lib.managers import IndicatorManager, RequestManager
from chatdoc.lib.store import StateStore
from chatdoc.models import BlockType

TS = "2024-05-01 09:30:00"


def clock():
    return datetime(2024, 5, 1, 9, 30, 0)


def block_type(name, **kwargs):
    return BlockType(
        name=name,
        marker=f">>> {name}",
        progress_marker=f">>> {name}-running",
        completed_marker=f">>> {name}-done",
        error_marker=f">>> {name}-failed",
        **kwargs,
    )


class Handle:
    def __init__(self):
        self.cancelled = 0

    def cancel(self):
        self.cancelled += 1


class ManualExecutor:
    """Records calls; the test decides when and how each one completes"""

    def __init__(self):
        self.calls = []

    def execute(self, target, options, on_success, on_error):
        handle = Handle()
        self.calls.append({
            "target": target,
            "options": options,
            "success": on_success,
            "error": on_error,
            "handle": handle,
        })
        return handle


@pytest.fixture
def store():
    return StateStore()


def expander_make(store, types, executors):
    return BlockExpander(
        block_types=types,
        executors=executors,
        requests=RequestManager(store),
        indicators=IndicatorManager(store),
        clock=clock,
    )


class TestSpans:
    """Span end detection"""

    def test_span_ends_before_next_marker(self):
        assert span_end([">>> crawl", "url", "", ">>> user"], 0) == 3

    def test_span_ends_before_assistant(self):
        assert span_end([">>> crawl", "url", "<<< assistant"], 0) == 2

    def test_span_at_end_trims_blanks(self):
        assert span_end([">>> crawl", "url", "", ""], 0) == 2

    def test_marker_only(self):
        assert span_end([">>> crawl"], 0) == 1


class TestSynchronousExpansion:
    """Executors that report before returning"""

    def test_no_blocks_is_noop(self, store):
        document = Document.from_text(">>> user\nHello\n")
        expander = expander_make(store, [block_type("echo")], {"echo": FunctionExecutor(lambda t, o: "R")})

        assert expander.expand_all(document) is False
        assert document.lines == [">>> user", "Hello"]
        assert expander.report.total() == 0

    def test_success_replaces_block(self, store):
        """Base marker becomes the completed variant plus the result"""
        document = Document([">>> user", "Hi", "", ">>> echo", "target", "", ">>> user", "next"])
        expander = expander_make(store, [block_type("echo")], {"echo": FunctionExecutor(lambda t, o: "RESULT")})

        assert expander.expand_all(document) is True
        assert document.lines == [
            ">>> user", "Hi", "",
            f">>> echo-done [{TS}]", "target", "", "RESULT", "",
            ">>> user", "next",
        ]
        assert expander.report.expanded == {"echo": 1}
        assert not expander.has_active_requests()
        assert store.get("requests.processing") is False

    def test_options_reach_executor(self, store):
        seen = {}

        def record(target, options):
            seen.update(target=target, options=options)
            return "ok"

        document = Document([">>> echo", "", "a", "b", "", "-- depth: 3", "-- verbose: true"])
        echo = block_type("echo", default_options={"depth": 1, "mode": "fast"})
        expander_make(store, [echo], {"echo": FunctionExecutor(record)}).expand_all(document)

        assert seen == {"target": "a\nb", "options": {"depth": 3, "mode": "fast", "verbose": True}}
        assert document.lines[:5] == [f">>> echo-done [{TS}]", "a", "b", "-- depth: 3", "-- verbose: true"]

    def test_result_list_and_formatter(self, store):
        echo = block_type("echo", format_result=lambda result, target, options: [f"# {target}"] + result)
        document = Document([">>> echo", "t"])
        expander_make(store, [echo], {"echo": FunctionExecutor(lambda t, o: ["a", "b"])}).expand_all(document)

        assert document.lines == [f">>> echo-done [{TS}]", "t", "", "# t", "a", "b"]

    def test_every_block_of_a_type(self, store):
        document = Document([">>> echo", "one", ">>> echo", "two"])
        expander = expander_make(store, [block_type("echo")], {"echo": FunctionExecutor(lambda t, o: t.upper())})
        expander.expand_all(document)

        assert document.lines == [
            f">>> echo-done [{TS}]", "one", "", "ONE", "",
            f">>> echo-done [{TS}]", "two", "", "TWO",
        ]
        assert expander.report.expanded == {"echo": 2}

    def test_completed_blocks_not_expanded_again(self, store):
        calls = []
        document = Document([f">>> echo-done [{TS}]", "t", "", "R", ">>> echo-failed", "u"])
        expander = expander_make(store, [block_type("echo")], {"echo": FunctionExecutor(lambda t, o: calls.append(t))})

        assert expander.expand_all(document) is False
        assert calls == []

    def test_blocks_in_ignore_region_skipped(self, store):
        document = Document([">>> user", "```ignore", ">>> echo", "t", "```"])
        expander = expander_make(store, [block_type("echo")], {"echo": FunctionExecutor(lambda t, o: "R")})

        assert expander.has_unexpanded(document, "echo") is False
        assert expander.expand_all(document) is False
        assert document.lines[2] == ">>> echo"

    def test_result_containing_marker_is_not_reexpanded(self, store):
        """A pass handles only the blocks present when the type's turn starts"""
        document = Document([">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": FunctionExecutor(lambda t, o: ">>> echo\nagain")})

        expander.expand_all(document)

        assert expander.report.expanded == {"echo": 1}
        assert expander.has_unexpanded(document, "echo") is True


class TestFailures:
    """Errors are rendered per block and never stop the pass"""

    def test_executor_error_callback(self, store):
        def failing(target, options):
            raise ExpansionError("site unreachable")

        document = Document([">>> echo", "t", "", ">>> other", "u"])
        expander = expander_make(
            store,
            [block_type("echo"), block_type("other")],
            {"echo": FunctionExecutor(failing), "other": FunctionExecutor(lambda t, o: "fine")},
        )

        assert expander.expand_all(document) is True
        assert document.lines == [
            ">>> echo-failed", "t", "", "❌ Error: site unreachable", "",
            f">>> other-done [{TS}]", "u", "", "fine",
        ]

    def test_executor_raising_directly(self, store):
        def broken(target, options, on_success, on_error):
            raise RuntimeError("kaput")

        document = Document([">>> echo", "a", ">>> echo", "b"])
        expander = expander_make(store, [block_type("echo")], {"echo": broken})
        expander.expand_all(document)

        assert document.lines.count(">>> echo-failed") == 2
        assert "❌ Error: kaput" in document.lines
        assert not expander.has_active_requests()

    def test_missing_target(self, store):
        calls = []
        document = Document([">>> echo", "", ">>> user", "hi"])
        expander = expander_make(store, [block_type("echo")], {"echo": FunctionExecutor(lambda t, o: calls.append(t))})
        expander.expand_all(document)

        assert calls == []
        assert document.lines == [">>> echo-failed", "", "❌ Error: No target specified", "", ">>> user", "hi"]

    def test_invalid_target(self, store):
        echo = block_type("echo", validate_target=lambda target: target.startswith("https://"))
        document = Document([">>> echo", "ftp://x"])
        expander_make(store, [echo], {"echo": FunctionExecutor(lambda t, o: "R")}).expand_all(document)

        assert document.lines[0] == ">>> echo-failed"
        assert document.lines[-1] == "❌ Error: Invalid target for echo: ftp://x"

    def test_no_executor(self, store):
        document = Document([">>> echo", "t"])
        expander_make(store, [block_type("echo")], {}).expand_all(document)

        assert document.lines[0] == ">>> echo-failed"

    def test_closed_document_skipped(self, store):
        document = Document([">>> echo", "t"])
        document.close()

        assert expander_make(store, [block_type("echo")], {"echo": FunctionExecutor(lambda t, o: "R")}).expand_all(document) is False
        assert document.lines == [">>> echo", "t"]


class TestPendingExpansions:
    """Asynchronous lifetimes driven by hand"""

    def test_in_progress_marker_and_records(self, store):
        manual = ManualExecutor()
        document = Document([">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": manual})

        assert expander.expand_all(document) is True
        assert document.lines == [">>> echo-running", "t"]
        assert expander.report.pending == ["echo"]
        assert expander.has_active_requests("echo") is True
        assert store.get("requests.processing") is True

        [pending] = expander.pending(document)
        assert store.get(f"indicators.active.{pending.request_id}")["start_line"] == 0

    def test_later_block_shifted_by_earlier_completion(self, store):
        """N lines inserted before a pending span move it to start + N"""
        manual = ManualExecutor()
        document = Document([">>> alpha", "a", "", ">>> beta", "b"])
        expander = expander_make(store, [block_type("alpha"), block_type("beta")], {"alpha": manual, "beta": manual})
        expander.expand_all(document)

        alpha_call, beta_call = manual.calls
        beta = [p for p in expander.pending() if p.block_type == "beta"][0]
        assert (beta.start_line, beta.end_line) == (3, 5)

        alpha_call["success"]("r1\nr2\nr3")

        assert (beta.start_line, beta.end_line) == (7, 9)
        assert document.lines[7] == ">>> beta-running"

        beta_call["success"]("rb")

        assert document.lines == [
            f">>> alpha-done [{TS}]", "a", "", "r1", "r2", "r3", "",
            f">>> beta-done [{TS}]", "b", "", "rb",
        ]

    def test_completion_order_does_not_matter(self, store):
        manual = ManualExecutor()
        document = Document([">>> alpha", "a", "", ">>> beta", "b"])
        expander = expander_make(store, [block_type("alpha"), block_type("beta")], {"alpha": manual, "beta": manual})
        expander.expand_all(document)

        alpha_call, beta_call = manual.calls
        beta_call["success"]("rb")
        alpha_call["success"]("r1\nr2\nr3")

        assert document.lines == [
            f">>> alpha-done [{TS}]", "a", "", "r1", "r2", "r3", "",
            f">>> beta-done [{TS}]", "b", "", "rb",
        ]

    def test_earlier_block_not_shifted(self, store):
        manual = ManualExecutor()
        document = Document([">>> alpha", "a", "", ">>> beta", "b"])
        expander = expander_make(store, [block_type("alpha"), block_type("beta")], {"alpha": manual, "beta": manual})
        expander.expand_all(document)

        alpha = [p for p in expander.pending() if p.block_type == "alpha"][0]
        manual.calls[1]["success"]("one\ntwo\nthree")

        assert (alpha.start_line, alpha.end_line) == (0, 3)

    def test_second_callback_ignored(self, store):
        manual = ManualExecutor()
        document = Document([">>> echo", "t"])
        expander_make(store, [block_type("echo")], {"echo": manual}).expand_all(document)

        call = manual.calls[0]
        call["success"]("first")
        snapshot = list(document.lines)
        call["success"]("second")
        call["error"](ExpansionError("late"))

        assert document.lines == snapshot

    def test_document_closed_while_pending(self, store):
        manual = ManualExecutor()
        document = Document([">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": manual})
        expander.expand_all(document)

        document.close()
        manual.calls[0]["success"]("R")

        assert document.lines == [">>> echo-running", "t"]
        assert expander.pending() == []
        assert store.get("requests.active") == {}


class TestCancellation:
    """Idempotent cancellation"""

    def test_cancel_once(self, store):
        manual = ManualExecutor()
        document = Document([">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": manual})
        expander.expand_all(document)
        [pending] = expander.pending()

        notifications = []
        store.subscribe("requests.active", lambda new, old, path: notifications.append(new))

        assert expander.cancel(pending.request_id) is True
        assert expander.cancel(pending.request_id) is False
        assert manual.calls[0]["handle"].cancelled == 1
        assert notifications == [{}]
        assert store.get("indicators.active") == {}
        assert document.lines == [">>> echo-running", "t"]

    def test_cancel_after_completion(self, store):
        manual = ManualExecutor()
        document = Document([">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": manual})
        expander.expand_all(document)
        [pending] = expander.pending()

        manual.calls[0]["success"]("R")

        assert expander.cancel(pending.request_id) is False
        assert manual.calls[0]["handle"].cancelled == 0
        assert document.lines[-1] == "R"

    def test_late_result_after_cancel_ignored(self, store):
        manual = ManualExecutor()
        document = Document([">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": manual})
        expander.expand_all(document)
        expander.cancel_all()

        manual.calls[0]["success"]("R")

        assert document.lines == [">>> echo-running", "t"]

    def test_cancellation_from_executor_is_not_an_error(self, store):
        manual = ManualExecutor()
        document = Document([">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": manual})
        expander.expand_all(document)

        manual.calls[0]["error"](CancellationError())

        assert document.lines == [">>> echo-running", "t"]
        assert not expander.has_active_requests()

    def test_cancel_unknown(self, store):
        expander = expander_make(store, [block_type("echo")], {})

        assert expander.cancel("nope") is False
        assert expander.cancel_all() == 0


class TestFormatterFailures:
    """A result formatter that raises renders the error variant"""

    def test_raising_formatter_synchronous(self, store):
        def format_result(result, target, options):
            raise ValueError("unexpected result shape")

        document = Document([">>> echo", "t", "", ">>> user", "next"])
        expander = expander_make(store, [block_type("echo", format_result=format_result)], {"echo": FunctionExecutor(lambda t, o: "R")})

        assert expander.expand_all(document) is True
        assert document.lines == [">>> echo-failed", "t", "", "❌ Error: unexpected result shape", "", ">>> user", "next"]
        assert expander.pending() == []
        assert expander.has_active_requests() is False

    def test_malformed_crawl_result_pending(self, store):
        """Crawl results whose pages are not mappings never stay in progress"""
        manual = ManualExecutor()
        crawl = blockTypes_builtin()[0]
        document = Document([">>> crawl", "https://a.io"])
        expander = expander_make(store, [crawl], {"crawl": manual})
        expander.expand_all(document)

        manual.calls[0]["success"]({"results": ["page"]})

        assert document.lines[0] == ">>> crawl-error"
        assert document.lines[-1].startswith("❌ Error: ")
        assert ">>> crawling" not in document.lines
        assert expander.pending() == []
        assert expander.has_active_requests("crawl") is False
        assert store.get("indicators.active") == {}


class TestLinesReplace:
    """Edits outside pending spans keep the spans aligned"""

    def test_insert_before_pending_span(self, store):
        manual = ManualExecutor()
        document = Document([">>> user", "hi", "", ">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": manual})
        expander.expand_all(document)
        [pending] = expander.pending(document)

        assert expander.lines_replace(document, 0, 0, ["---", "title: x", "---", ""]) == 4

        assert (pending.start_line, pending.end_line) == (7, 9)
        assert store.get(f"indicators.active.{pending.request_id}")["start_line"] == 7
        manual.calls[0]["success"]("R")
        assert document.lines[7:] == [f">>> echo-done [{TS}]", "t", "", "R"]

    def test_append_after_pending_span(self, store):
        manual = ManualExecutor()
        document = Document([">>> echo", "t"])
        expander = expander_make(store, [block_type("echo")], {"echo": manual})
        expander.expand_all(document)
        [pending] = expander.pending(document)

        expander.lines_replace(document, 2, 2, ["<<< assistant", "", "Hello"])

        assert (pending.start_line, pending.end_line) == (0, 2)
        manual.calls[0]["success"]("R")
        assert document.lines == [f">>> echo-done [{TS}]", "t", "", "R", "", "<<< assistant", "", "Hello"]
