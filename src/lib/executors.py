"""
Executors: the boundary between chatdoc and the code doing real work

Contract:

    execute(target, options, on_success, on_error) -> handle | None

An executor reports its outcome by calling exactly one of the callbacks,
either before returning (synchronous) or on a later event loop turn
(asynchronous). The returned handle, if any, is kept so the work can be
cancelled; a handle only needs a cancel() method.

Adapters:
    FunctionExecutor  - wrap a plain ``fn(target, options) -> result``
    AsyncioExecutor   - wrap ``async fn(target, options) -> result`` in an
                        asyncio.Task; task cancellation is reported as
                        CancellationError
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from .errors import CancellationError, ExpansionError
from .log import LOG

SuccessCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


class Executor(Protocol):
    def execute(
        self,
        target: str,
        options: Dict[str, Any],
        on_success: SuccessCallback,
        on_error: ErrorCallback,
    ) -> Any:
        ...


def executor_resolve(executor: Any) -> Callable[..., Any]:
    """An Executor's execute method, or a plain callable with the same shape"""
    execute = getattr(executor, "execute", executor)
    if not callable(execute):
        raise TypeError(f"{executor!r} is not an executor")
    return execute


def error_message(error: BaseException) -> str:
    """Human-readable text of an executor failure"""
    if isinstance(error, ExpansionError):
        return error.message
    return str(error) or type(error).__name__


class FunctionExecutor:
    """
    Run a synchronous function and report its outcome before returning

    Example:
        executor = FunctionExecutor(lambda target, options: f"listing of {target}")
    """

    def __init__(self, fn: Callable[[str, Dict[str, Any]], Any]) -> None:
        self.fn = fn

    def execute(
        self,
        target: str,
        options: Dict[str, Any],
        on_success: SuccessCallback,
        on_error: ErrorCallback,
    ) -> None:
        try:
            result = self.fn(target, options)
        except Exception as e:
            on_error(e)
            return None
        on_success(result)
        return None


class AsyncioExecutor:
    """
    Run a coroutine function as an asyncio.Task

    The task is created on the running loop (or ``loop`` when given) and
    returned as the cancellation handle. Outcomes are delivered from the
    task's done callback, always on a later loop turn.
    """

    def __init__(
        self,
        coro_fn: Callable[[str, Dict[str, Any]], Awaitable[Any]],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.coro_fn = coro_fn
        self.loop = loop

    def execute(
        self,
        target: str,
        options: Dict[str, Any],
        on_success: SuccessCallback,
        on_error: ErrorCallback,
    ) -> asyncio.Task:
        loop = self.loop or asyncio.get_running_loop()
        task = loop.create_task(self.coro_fn(target, options))

        def task_done(finished: asyncio.Task) -> None:
            if finished.cancelled():
                LOG(f"Task for '{target}' was cancelled", level=3)
                on_error(CancellationError())
                return
            error = finished.exception()
            if error is not None:
                on_error(error)
            else:
                on_success(finished.result())

        task.add_done_callback(task_done)
        return task
