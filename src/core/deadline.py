"""
WasteWatch - Deadline Races
Bounds a blocking call by racing it against a timer on a worker thread.
"""

import logging
from concurrent.futures import Executor, Future, TimeoutError as FutureTimeout
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class DeadlineExceeded(Exception):
    """The call did not complete before its deadline."""

    def __init__(self, timeout: float):
        super().__init__(f"Deadline of {timeout}s exceeded")
        self.timeout = timeout


def call_with_deadline(
    executor: Executor,
    fn: Callable[..., Any],
    *args: Any,
    timeout: float,
    on_late_result: Optional[Callable[[Any], None]] = None,
    **kwargs: Any
) -> Any:
    """
    Run a call on the executor and wait for it at most `timeout` seconds.

    A call still queued when the deadline fires is cancelled and never runs.
    A call already running is not interrupted: it keeps running and its
    outcome is ignored. If `on_late_result` is given it receives the value
    of a running call that succeeds after the deadline.

    Args:
        executor: Executor running the call
        fn: Callable to run
        timeout: Deadline in seconds
        on_late_result: Optional handler for a value that arrives too late

    Returns:
        Return value of fn

    Raises:
        DeadlineExceeded: If the deadline fires first
        Exception: Whatever fn raised, if it finished in time
    """
    future = executor.submit(fn, *args, **kwargs)

    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        if future.cancel():
            logger.debug("Deadline fired before the call started, dropped it")
        elif on_late_result is not None:
            future.add_done_callback(_late_result_forwarder(on_late_result))
        raise DeadlineExceeded(timeout) from None


def _late_result_forwarder(handler: Callable[[Any], None]) -> Callable[[Future], None]:
    def forward(future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        try:
            handler(future.result())
        except Exception as e:
            logger.warning(f"Late result handler failed: {e}")

    return forward
