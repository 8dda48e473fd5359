"""
Reporting handlers for finished error records.

A single process-wide handler receives records passed to report(). It may
be a plain function or a coroutine function. Without a custom handler,
records are written as JSON files by write_json_file().
"""

import asyncio
import inspect
import json
import time
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Set, Union

from tracechain.config import Settings, get_settings
from tracechain.models.record import METADATA_FIELDS, ErrorRecord
from tracechain.utils.logging import get_logger

logger = get_logger(__name__)

ErrorHandler = Callable[[ErrorRecord], Union[None, Awaitable[None], Any]]

_handler: Optional[ErrorHandler] = None

# Tasks of async handlers scheduled by report(), held until they finish
_pending_tasks: Set["asyncio.Task[Any]"] = set()


def set_handler(handler: ErrorHandler) -> None:
    """Install the handler used by report()."""
    global _handler
    _handler = handler


def reset_handler() -> None:
    """Restore the default JSON file handler."""
    global _handler
    _handler = None


def get_handler() -> ErrorHandler:
    return _handler or write_json_file


def write_json_file(record: ErrorRecord, directory: Optional[Union[str, Path]] = None) -> Path:
    """
    Write a record to ``<directory>/<timestamp>.<nanoseconds>.json``.

    Args:
        record: Record to persist
        directory: Target directory, defaults to Settings.errors_dir

    Returns:
        Path of the written file

    Raises:
        SerializationFailed: If the payload cannot be represented in JSON
        OSError: If the directory or file cannot be written
    """
    target = Path(directory if directory is not None else get_settings().errors_dir)
    target.mkdir(parents=True, exist_ok=True)

    now = datetime.now(timezone.utc)
    path = target / f"{now.strftime('%Y-%m-%d.%H-%M-%S')}.{time.time_ns()}.json"

    content = json.dumps(record.to_structured(), indent=2)
    path.write_text(content, encoding="utf-8")

    logger.debug(f"Wrote error record to {path}", extra={"path": str(path)})
    return path


def report(record: ErrorRecord, settings: Optional[Settings] = None) -> Any:
    """
    Hand a finished record to the installed handler.

    Environment metadata from settings is added for fields the record does
    not already carry. Coroutine handlers are run to completion with
    asyncio.run(), or scheduled on the running loop when called from async
    code, in which case the task is returned.

    Args:
        record: Record to report
        settings: Settings supplying environment metadata

    Returns:
        The handler's result, or an asyncio.Task for async handlers called
        inside a running loop. The task is referenced until it finishes;
        await it to observe the handler's exceptions
    """
    settings = settings or get_settings()
    for field in METADATA_FIELDS:
        value = getattr(settings, field)
        if value is not None and field not in record.metadata:
            record = record.with_metadata(field, value)

    handler = _handler or partial(write_json_file, directory=settings.errors_dir)
    logger.debug(
        f"Reporting error record: {record.headline}",
        extra={"handler": getattr(handler, "__name__", "write_json_file"), "frames": len(record)},
    )

    result = handler(record)
    if inspect.isawaitable(result):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(_await(result))
        task = loop.create_task(_await(result))
        _pending_tasks.add(task)
        task.add_done_callback(_pending_tasks.discard)
        return task
    return result


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable
