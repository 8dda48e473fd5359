"""
Helpers for carrying error records across function boundaries.

The record model takes locations as plain arguments. This module supplies
them from the running interpreter:
- caller_location() reads the calling frame
- capture() turns any exception into a record (extending TracedError chains)
- traced() is a decorator that does the same for every exception escaping
  a sync or async function
"""

import inspect
from functools import wraps
from types import TracebackType
from typing import Any, Callable, Optional, TypeVar

from tracechain.errors import TracedError
from tracechain.models.frame import Clock
from tracechain.models.location import SourceLocation
from tracechain.models.record import ErrorRecord

F = TypeVar("F", bound=Callable[..., Any])


def caller_location(depth: int = 0) -> SourceLocation:
    """
    Return the location of the code calling this function.

    Args:
        depth: Extra frames to skip; 1 returns the caller's caller

    Returns:
        SourceLocation of the selected frame

    Raises:
        ValueError: If the stack is shallower than depth
    """
    frame = inspect.currentframe()
    try:
        for _ in range(depth + 1):
            if frame is None:
                break
            frame = frame.f_back
        if frame is None:
            raise ValueError(f"call stack is not {depth + 1} frames deep")
        return SourceLocation(file=frame.f_code.co_filename, line=frame.f_lineno or 0)
    finally:
        del frame


def capture(
    exc: BaseException,
    message: Optional[str] = None,
    location: Optional[SourceLocation] = None,
    *,
    clock: Optional[Clock] = None,
) -> ErrorRecord:
    """
    Build the record for an exception observed at a call site.

    A TracedError is extended with a new frame; the message defaults to its
    current headline. Any other exception starts a new record whose payload
    is ``{"error": str(exc)}``.

    Args:
        exc: Exception being handled
        message: Context message for the new frame
        location: Call site; defaults to the caller of capture()
        clock: Optional time source

    Returns:
        ErrorRecord describing the exception
    """
    if location is None:
        location = caller_location(depth=1)
    if isinstance(exc, TracedError):
        headline = message if message is not None else exc.record.headline
        return exc.record.extend(headline, location, clock=clock)
    return ErrorRecord.new(message or "", location, clock=clock).with_extra_data({"error": str(exc)})


def _failure_location(func: Callable[..., Any], tb: Optional[TracebackType]) -> SourceLocation:
    # partials, callable objects and other wrappers may have no code object
    code = getattr(inspect.unwrap(func), "__code__", None)
    innermost = None
    while tb is not None:
        if code is not None and tb.tb_frame.f_code is code:
            return SourceLocation(file=code.co_filename, line=tb.tb_lineno or 0)
        innermost = tb
        tb = tb.tb_next
    if innermost is not None:
        return SourceLocation(file=innermost.tb_frame.f_code.co_filename, line=innermost.tb_lineno or 0)
    if code is not None:
        return SourceLocation(file=code.co_filename, line=code.co_firstlineno)
    return SourceLocation(file="<unknown>", line=0)


def traced(message: Optional[str] = None) -> Callable[[F], F]:
    """
    Decorator that records a frame whenever an exception leaves the function.

    The frame points at the line inside the function where the exception
    passed through. The original exception is kept as ``__cause__``.

    Args:
        message: Context message for the frame (see capture())

    Example:
        @traced("loading invoice failed")
        async def load_invoice(invoice_id):
            return await repo.get(invoice_id)
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                location = _failure_location(func, e.__traceback__)
                raise TracedError(capture(e, message, location)) from e

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                location = _failure_location(func, e.__traceback__)
                raise TracedError(capture(e, message, location)) from e

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator
