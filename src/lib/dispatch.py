"""
Chat request dispatch

Hands a parsed conversation to a chat executor and tracks the request in
the RequestManager until its completion callback has run:

    dispatch()  -> record registered (PENDING), ui busy flag set
    outcome     -> record updated (COMPLETED | ERROR), on_complete(record),
                   record cleared, ui busy flag recomputed
    cancel()    -> record updated (CANCELLED), on_complete(record), cleared

Each request settles exactly once; a failing completion callback is logged,
not raised. A late outcome after cancellation, a second cancel or a cancel
after completion are no-ops. Everything a callback triggers (store
notifications included) runs to completion before control returns,
depth first.

Chat executors follow the block executor contract, with the message
payload as target and the merged config as options:

    execute(messages, config, on_success, on_error)
"""

from itertools import count
from typing import Any, Callable, Dict, List, Optional

from ..models.parser import ParseResult
from ..models.requests import RequestRecord, RequestStatus
from .errors import CancellationError
from .executors import error_message, executor_resolve
from .log import LOG, LOG_error
from .managers import RequestManager, UIManager

CompletionCallback = Callable[[RequestRecord], None]


class RequestDispatcher:
    """
    Dispatches chat requests and settles them exactly once

    Attributes:
        requests: RequestManager holding live records
        ui: Optional UIManager whose busy flag mirrors requests.processing
        executor: Default chat executor
    """

    def __init__(self, requests: RequestManager, ui: Optional[UIManager] = None, executor: Any = None) -> None:
        self.requests = requests
        self.ui = ui
        self.executor = executor
        self._live: Dict[str, Dict[str, Any]] = {}
        self._ids = count(1)

    def dispatch(
        self,
        parsed: ParseResult,
        on_complete: Optional[CompletionCallback] = None,
        executor: Any = None,
    ) -> str:
        """
        Send a parsed conversation to the chat executor

        Args:
            parsed: ParseResult whose messages and config are sent
            on_complete: Called with the final RequestRecord, before the
                         record leaves the store
            executor: Overrides the dispatcher's default executor

        Returns:
            The request id

        Raises:
            ValueError: If no executor is available
        """
        executor = executor or self.executor
        if executor is None:
            raise ValueError("No chat executor configured")

        request_id = f"request_{next(self._ids)}"
        messages: List[Dict[str, str]] = parsed.payload_make()
        config = dict(parsed.config)
        record = RequestRecord(
            id=request_id,
            provider=config.get("provider"),
            model=config.get("model"),
            payload={"messages": messages, "config": config},
        )
        ok, reason = self.requests.register(request_id, record)
        if not ok:
            raise ValueError(reason)
        self._live[request_id] = {"handle": None, "on_complete": on_complete}
        self.busy_refresh()
        LOG(f"{request_id}: dispatched {len(messages)} messages to {record.provider}/{record.model}", level=2)

        def on_success(result: Any) -> None:
            self.request_settle(request_id, RequestStatus.COMPLETED, result=result)

        def on_error(error: BaseException) -> None:
            if isinstance(error, CancellationError):
                self.request_settle(request_id, RequestStatus.CANCELLED)
            else:
                self.request_settle(request_id, RequestStatus.ERROR, error=error_message(error))

        try:
            handle = executor_resolve(executor)(messages, config, on_success, on_error)
        except Exception as e:
            LOG_error(f"{request_id}: chat executor raised: {e!r}")
            on_error(e)
            return request_id

        if request_id in self._live:
            self._live[request_id]["handle"] = handle
        return request_id

    def request_settle(self, request_id: str, status: RequestStatus, result: Any = None, error: Optional[str] = None) -> bool:
        """Record the outcome, run the completion callback, then drop the record"""
        live = self._live.pop(request_id, None)
        if live is None:
            LOG(f"{request_id}: already settled, {status.value} ignored", level=3)
            return False

        self.requests.update(request_id, {"status": status.value, "result": result, "error": error})
        record = self.requests.record_get(request_id)
        if status is RequestStatus.ERROR:
            LOG(f"{request_id}: failed: {error}", level=1)
        else:
            LOG(f"{request_id}: {status.value}", level=2)

        try:
            if live["on_complete"] is not None and record is not None:
                live["on_complete"](record)
        except Exception as e:
            LOG_error(f"{request_id}: completion callback failed: {e!r}")
        finally:
            self.requests.clear(request_id)
            self.busy_refresh()
        return True

    def cancel(self, request_id: str) -> bool:
        """
        Cancel a live request

        Returns:
            True if this call cancelled it; False if the request was unknown,
            finished or already cancelled
        """
        live = self._live.get(request_id)
        if live is None:
            return False
        handle = live["handle"]
        settled = self.request_settle(request_id, RequestStatus.CANCELLED)
        if handle is not None and hasattr(handle, "cancel"):
            handle.cancel()
        return settled

    def cancel_all(self) -> int:
        return sum(1 for request_id in list(self._live) if self.cancel(request_id))

    def active(self) -> List[str]:
        return list(self._live)

    def busy_refresh(self) -> None:
        if self.ui is not None:
            self.ui.set_processing(self.requests.is_processing())
