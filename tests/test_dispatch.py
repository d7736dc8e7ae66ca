"""
Request dispatcher tests

Tests chat request tracking, exactly-once settlement, cancellation and
the ui busy flag.
"""

import pytest

from chatdoc.lib.dispatch import RequestDispatcher
from chatdoc.lib.errors import CancellationError
from chatdoc.lib.executors import FunctionExecutor
from chatdoc.lib.managers import RequestManager, UIManager
from chatdoc.lib.store import StateStore
from chatdoc.models import Message, ParseResult, RequestStatus, Role


class Handle:
    def __init__(self):
        self.cancelled = 0

    def cancel(self):
        self.cancelled += 1


class ManualExecutor:
    """Keeps callbacks so the test decides when (and how) a request ends"""

    def __init__(self):
        self.calls = []

    def execute(self, messages, config, on_success, on_error):
        handle = Handle()
        self.calls.append({
            "messages": messages,
            "config": config,
            "success": on_success,
            "error": on_error,
            "handle": handle,
        })
        return handle


def parsed_make(content="Hello"):
    return ParseResult(
        messages=[Message(role=Role.SYSTEM, content="S"), Message(role=Role.USER, content=content)],
        config={"provider": "openai", "model": "gpt-4o", "temperature": 0.7},
        title="",
        warnings=[],
    )


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def requests(store):
    return RequestManager(store)


@pytest.fixture
def ui(store):
    return UIManager(store, ["openai", "ollama"], provider="openai", model="gpt-4o")


class TestDispatch:
    """Dispatch and completion"""

    def test_payload_and_record(self, requests, ui):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, ui, executor)

        request_id = dispatcher.dispatch(parsed_make())

        assert request_id == "request_1"
        [call] = executor.calls
        assert call["messages"] == [{"role": "system", "content": "S"}, {"role": "user", "content": "Hello"}]
        assert call["config"]["temperature"] == 0.7
        record = requests.record_get(request_id)
        assert record.status is RequestStatus.PENDING
        assert (record.provider, record.model) == ("openai", "gpt-4o")
        assert ui.is_processing() is True

    def test_record_present_during_callback(self, requests, ui):
        """The completion callback sees the final record before it is cleared"""
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, ui, executor)
        seen = []

        def on_complete(record):
            seen.append((record.status, record.result, requests.get(record.id)["status"]))

        request_id = dispatcher.dispatch(parsed_make(), on_complete)
        executor.calls[0]["success"]("Hi!")

        assert seen == [(RequestStatus.COMPLETED, "Hi!", "completed")]
        assert requests.get(request_id) is None
        assert ui.is_processing() is False

    def test_error(self, requests):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, executor=executor)
        seen = []

        dispatcher.dispatch(parsed_make(), seen.append)
        executor.calls[0]["error"](RuntimeError("rate limited"))

        assert seen[0].status is RequestStatus.ERROR
        assert seen[0].error == "rate limited"
        assert dispatcher.active() == []

    def test_executor_raising(self, requests):
        def broken(messages, config, on_success, on_error):
            raise RuntimeError("no network")

        seen = []
        RequestDispatcher(requests, executor=broken).dispatch(parsed_make(), seen.append)

        assert [record.status for record in seen] == [RequestStatus.ERROR]
        assert requests.get_all() == {}

    def test_synchronous_executor(self, requests):
        seen = []
        dispatcher = RequestDispatcher(requests, executor=FunctionExecutor(lambda messages, config: "sync reply"))
        dispatcher.dispatch(parsed_make(), seen.append)

        assert [record.result for record in seen] == ["sync reply"]
        assert requests.is_processing() is False

    def test_no_executor(self, requests):
        with pytest.raises(ValueError):
            RequestDispatcher(requests).dispatch(parsed_make())

    def test_executor_override(self, requests):
        default, override = ManualExecutor(), ManualExecutor()
        RequestDispatcher(requests, executor=default).dispatch(parsed_make(), executor=override)

        assert default.calls == []
        assert len(override.calls) == 1

    def test_nested_dispatch_runs_depth_first(self, requests, ui):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, ui, executor)
        order = []

        def outer_done(record):
            order.append("outer-start")
            dispatcher.dispatch(
                parsed_make("again"),
                lambda inner: order.append("inner"),
                executor=FunctionExecutor(lambda messages, config: "inner reply"),
            )
            order.append("outer-end")

        dispatcher.dispatch(parsed_make(), outer_done)
        executor.calls[0]["success"]("outer reply")

        assert order == ["outer-start", "inner", "outer-end"]
        assert requests.get_all() == {}
        assert ui.is_processing() is False


class TestSettleOnce:
    """Cancellation and late outcomes"""

    def test_cancel(self, requests, ui):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, ui, executor)
        seen = []
        request_id = dispatcher.dispatch(parsed_make(), seen.append)

        assert dispatcher.cancel(request_id) is True
        assert dispatcher.cancel(request_id) is False
        assert executor.calls[0]["handle"].cancelled == 1
        assert [record.status for record in seen] == [RequestStatus.CANCELLED]
        assert ui.is_processing() is False

    def test_late_result_ignored(self, requests):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, executor=executor)
        seen = []
        request_id = dispatcher.dispatch(parsed_make(), seen.append)

        dispatcher.cancel(request_id)
        executor.calls[0]["success"]("too late")
        executor.calls[0]["error"](CancellationError(request_id))

        assert len(seen) == 1
        assert requests.get_all() == {}

    def test_cancel_after_completion(self, requests):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, executor=executor)
        request_id = dispatcher.dispatch(parsed_make())
        executor.calls[0]["success"]("done")

        assert dispatcher.cancel(request_id) is False
        assert executor.calls[0]["handle"].cancelled == 0

    def test_cancellation_from_executor(self, requests):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, executor=executor)
        seen = []
        dispatcher.dispatch(parsed_make(), seen.append)
        executor.calls[0]["error"](CancellationError())

        assert [record.status for record in seen] == [RequestStatus.CANCELLED]

    def test_cancel_all(self, requests):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, executor=executor)
        dispatcher.dispatch(parsed_make())
        dispatcher.dispatch(parsed_make())

        assert dispatcher.cancel_all() == 2
        assert dispatcher.active() == []
        assert requests.is_processing() is False


class TestFailingCallback:
    """A completion callback that raises is logged, the request still settles"""

    @staticmethod
    def on_complete(record):
        raise RuntimeError("editor went away")

    def test_cancel_does_not_raise(self, requests, ui):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, ui, executor)
        request_id = dispatcher.dispatch(parsed_make(), self.on_complete)

        assert dispatcher.cancel(request_id) is True
        assert dispatcher.cancel(request_id) is False
        assert executor.calls[0]["handle"].cancelled == 1
        assert requests.get_all() == {}
        assert ui.is_processing() is False

    def test_success_does_not_raise(self, requests, ui):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, ui, executor)
        dispatcher.dispatch(parsed_make(), self.on_complete)

        executor.calls[0]["success"]("done")

        assert dispatcher.active() == []
        assert requests.get_all() == {}
        assert ui.is_processing() is False

    def test_cancel_all_counts_every_request(self, requests):
        executor = ManualExecutor()
        dispatcher = RequestDispatcher(requests, executor=executor)
        dispatcher.dispatch(parsed_make(), self.on_complete)
        dispatcher.dispatch(parsed_make(), self.on_complete)

        assert dispatcher.cancel_all() == 2
        assert requests.is_processing() is False
